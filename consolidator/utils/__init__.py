"""Utility modules for the consolidator."""

from consolidator.utils.logging import add_audit_log, setup_logging

__all__ = [
    "add_audit_log",
    "setup_logging",
]
