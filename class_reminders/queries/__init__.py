"""Database queries and store adapters for the reminder engine."""

from .sessions import SqlEventStore
from .users import SqlIdentityDirectory
from .delivery_log import SqlLedgerStore

__all__ = [
    "SqlEventStore",
    "SqlIdentityDirectory",
    "SqlLedgerStore",
]
