# src/xbridge/adapters/persistence/__init__.py
"""
Persistence Adapters - Durable Storage

SQLite implementation of the IntentStore port.
"""

from xbridge.adapters.persistence.sqlite_store import SqliteIntentStore

__all__ = ["SqliteIntentStore"]
