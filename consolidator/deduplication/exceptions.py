"""
Error taxonomy for consolidation runs.

Only TransientStoreError is ever retried; every other error aborts the
invocation and leaves the store as it was before the run.
"""

from typing import Optional

from sqlalchemy.exc import DBAPIError, IntegrityError

# SQLSTATE codes
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
FOREIGN_KEY_VIOLATION = "23503"

TRANSIENT_SQLSTATES = {SERIALIZATION_FAILURE, DEADLOCK_DETECTED}


class ConsolidationError(Exception):
    """Base class for all consolidation failures."""

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target


class ConfigurationError(ConsolidationError):
    """Target configuration is invalid or does not match the live schema."""
    pass


class ReferentialIntegrityError(ConsolidationError):
    """A foreign key still pointed at a row being deleted or repointed."""

    def __init__(self, message: str, table: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message, target=target)
        self.table = table


class VerificationError(ConsolidationError):
    """Postcondition check failed after mutation; indicates a logic bug."""
    pass


class TransientStoreError(ConsolidationError):
    """Deadlock or serialization failure; safe to retry the whole run."""
    pass


class GuardError(ConsolidationError):
    """The natural-key unique index could not be installed."""
    pass


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def failing_table(exc: DBAPIError) -> Optional[str]:
    """Table named by the driver's error diagnostics, when it exposes one."""
    diag = getattr(getattr(exc, "orig", None), "diag", None)
    return getattr(diag, "table_name", None)


def is_transient(exc: BaseException) -> bool:
    """True for errors where rerunning the whole transaction may succeed."""
    if not isinstance(exc, DBAPIError):
        return False
    if _sqlstate(exc) in TRANSIENT_SQLSTATES:
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return "database is locked" in message or "deadlock" in message


def classify_db_error(exc: DBAPIError, target: Optional[str] = None) -> ConsolidationError:
    """
    Map a SQLAlchemy/DBAPI error onto the consolidation error taxonomy.

    Errors that are neither transient nor integrity violations come back as
    a plain ConsolidationError wrapping the driver message.
    """
    if is_transient(exc):
        return TransientStoreError(f"Transient store error: {exc.orig}", target=target)

    if isinstance(exc, IntegrityError) or _sqlstate(exc) == FOREIGN_KEY_VIOLATION:
        table = failing_table(exc)
        where = f" (table {table})" if table else ""
        return ReferentialIntegrityError(
            f"Foreign key violation{where}: {exc.orig}. "
            "Is every referrer of this entity registered?",
            table=table,
            target=target,
        )

    return ConsolidationError(f"Database error: {exc.orig}", target=target)
