"""
Storage layer for dyndb.

- SqliteGateway: connection, ambient transaction, id generator, reset script
- PersistenceCoordinator: entity insert/update/delete and fetch statements
"""

from .coordinator import PersistenceCoordinator
from .gateway import SqliteGateway

__all__ = ["PersistenceCoordinator", "SqliteGateway"]
