"""
dyndb - schema-less entity storage on a relational database.

Types and Properties are defined at runtime and stored as ordinary entities
of two built-in types, Type and Property. Every entity lives in three
generic tables (identities, string values, reference values), so adding a
type never changes the database schema.

- DataStore for sessions (open, define types, fetch, commit)
- Entity for validated property access and persistence
- TypeCatalog for type and property metadata
- DynDbSettings and setup_logging for configuration

Example:
    >>> from dyndb import DataStore, DynDbSettings
    >>>
    >>> with DataStore.open(DynDbSettings(database="people.sqlite3")) as store:
    ...     person = store.create_type("Person")
    ...     store.create_property(person, "FirstName", "String")
    ...     tom = store.create_entity("Person")
    ...     tom.set_string("FirstName", "Tom")
    ...     tom.persist()
    ...     store.commit()

Invariants:
    - Ids 1-99 are built-in metadata and cannot be written
    - A Property's data type is "String" or the name of a registered Type
    - Writes become durable only on commit()

Version: 1.0.0
"""

__version__ = "1.0.0"

from .errors import (
    ClosedSessionError,
    DynDbError,
    InvalidDataTypeError,
    InvalidEntityError,
    ProtectedEntityError,
    StorageFailure,
    TypeMismatchError,
    UnknownPropertyError,
    UnknownTypeError,
)
from .entity import Entity, EntityState, Resolved, Unresolved
from .schema.catalog import TypeCatalog
from .store import PersistenceCoordinator, SqliteGateway
from .datastore import DataStore
from .config import DynDbSettings
from .logging_setup import setup_logging
from .schema import DataKind, DataType, PropertyDef, PropertyInfo

__all__ = [
    # Version
    "__version__",
    # Session
    "DataStore",
    "DynDbSettings",
    "setup_logging",
    # Entities
    "Entity",
    "EntityState",
    "Resolved",
    "Unresolved",
    # Schema
    "TypeCatalog",
    "DataKind",
    "DataType",
    "PropertyDef",
    "PropertyInfo",
    # Storage
    "SqliteGateway",
    "PersistenceCoordinator",
    # Errors
    "DynDbError",
    "UnknownTypeError",
    "UnknownPropertyError",
    "TypeMismatchError",
    "InvalidDataTypeError",
    "ProtectedEntityError",
    "ClosedSessionError",
    "StorageFailure",
    "InvalidEntityError",
]
