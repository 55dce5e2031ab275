"""Database module."""

from flowdef.db.database import close_database, get_db, init_database, transaction
from flowdef.db.definition_store import DefinitionStore, definition_store
from flowdef.db.version_store import VersionStore, version_store

__all__ = [
    "get_db",
    "init_database",
    "close_database",
    "transaction",
    "definition_store",
    "DefinitionStore",
    "version_store",
    "VersionStore",
]
