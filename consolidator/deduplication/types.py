"""
Data types shared by the consolidation components.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from consolidator.deduplication.exceptions import ConfigurationError

NULL_KEY_POLICIES = ("ignore", "reject")


class RunState(str, Enum):
    """States of a single consolidation invocation."""
    SCANNING = "scanning"
    NO_DUPLICATES = "no_duplicates"
    DONE = "done"
    MIGRATING = "migrating"
    PURGING = "purging"
    VERIFYING = "verifying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class ReferrerSpec:
    """A (table, column) pair holding a foreign key into the entity table."""
    table: str
    column: str
    schema: Optional[str] = None

    @property
    def label(self) -> str:
        """Result key: table.column, prefixed with the schema when one is set."""
        if self.schema:
            return f"{self.schema}.{self.table}.{self.column}"
        return f"{self.table}.{self.column}"


@dataclass(frozen=True)
class EntitySpec:
    """
    Caller-supplied description of one entity type to consolidate.

    The referrer list must name every foreign key pointing at the entity
    table. The engine cannot discover a missing one; with enforced foreign
    keys the purge step fails, without them the reference is orphaned.
    """
    name: str
    table: str
    natural_key: tuple[str, ...]
    referrers: tuple[ReferrerSpec, ...] = ()
    id_column: str = "id"
    created_column: str = "created_at"
    casefold_columns: tuple[str, ...] = ()
    null_keys: str = "ignore"
    index_name: Optional[str] = None
    schema: Optional[str] = None
    description: str = ""

    def validate(self) -> None:
        """Raise ConfigurationError for specs that cannot be run."""
        if not self.table:
            raise ConfigurationError("Entity table name is required", target=self.name)
        if not self.natural_key:
            raise ConfigurationError("At least one natural-key column is required", target=self.name)
        if len(set(self.natural_key)) != len(self.natural_key):
            raise ConfigurationError(
                f"Natural key lists a column twice: {list(self.natural_key)}", target=self.name
            )
        if self.id_column in self.natural_key:
            raise ConfigurationError(
                f"Synthetic id column {self.id_column!r} cannot be part of the natural key",
                target=self.name,
            )
        stray = set(self.casefold_columns) - set(self.natural_key)
        if stray:
            raise ConfigurationError(
                f"casefold_columns not in natural key: {sorted(stray)}", target=self.name
            )
        if self.null_keys not in NULL_KEY_POLICIES:
            raise ConfigurationError(
                f"null_keys must be one of {NULL_KEY_POLICIES}, got {self.null_keys!r}",
                target=self.name,
            )

        seen = set()
        for ref in self.referrers:
            if not ref.table or not ref.column:
                raise ConfigurationError(f"Incomplete referrer: {ref}", target=self.name)
            key = (ref.schema, ref.table, ref.column)
            if key in seen:
                raise ConfigurationError(f"Referrer registered twice: {ref.label}", target=self.name)
            seen.add(key)

    @property
    def unique_index_name(self) -> str:
        if self.index_name:
            return self.index_name
        return f"uq_{self.table}_{'_'.join(self.natural_key)}".lower()


@dataclass
class GroupMember:
    """One entity row inside a duplicate group."""
    id: Any
    created_at: Optional[datetime]
    # Place in the store's (created, id) order; breaks timestamp ties by the
    # database's own id ordering rather than Python's
    position: Optional[int] = None


@dataclass
class DuplicateGroup:
    """Entity rows sharing one natural-key value."""
    key: tuple
    members: list[GroupMember] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass
class ConsolidationResult:
    """Result of a consolidation run."""
    target: str
    groups_found: int = 0
    repointed: int = 0
    repointed_by_referrer: dict[str, int] = field(default_factory=dict)
    deleted: int = 0
    losers: int = 0
    # loser id -> survivor id, kept for the audit log
    mapping: dict[Any, Any] = field(default_factory=dict)
    dry_run: bool = False
    state: RunState = RunState.SCANNING
    attempts: int = 1
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "groupsFound": self.groups_found,
            "repointed": self.repointed,
            "deleted": self.deleted,
            "repointedByReferrer": dict(self.repointed_by_referrer),
            "dryRun": self.dry_run,
            "state": self.state.value,
            "attempts": self.attempts,
        }
