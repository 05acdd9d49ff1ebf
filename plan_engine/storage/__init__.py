"""
Storage Package

The storage contract plus in-memory and SQLAlchemy implementations.
"""

from .base import LedgerSession, LedgerStore
from .memory import MemoryLedgerStore
from .sql import SqlLedgerStore, build_engine

__all__ = [
    "LedgerSession",
    "LedgerStore",
    "MemoryLedgerStore",
    "SqlLedgerStore",
    "build_engine",
]
