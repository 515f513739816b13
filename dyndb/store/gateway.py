"""
SQLite storage gateway for dyndb.

This module owns the single database connection of a data store session:
- Parameterized statements and queries inside one ambient transaction
- Explicit commit and rollback
- The identity generator (first issued id is 100)
- The reset script that recreates tables and bootstrap metadata rows

Invariants:
    - One connection per session, closed exactly once
    - A transaction is opened lazily by the first write after a
      commit/rollback and stays open until the caller ends it; reads outside
      a write transaction run in autocommit and hold no lock afterwards
    - Issued ids are never issued again, even after a rollback
    - Every sqlite3 error surfaces as StorageFailure
    - Foreign keys are immediate, so attribute rows must be removed before
      the identity row they point to

Table schema:
    objects:
        - object_id INTEGER PRIMARY KEY
        - type_id INTEGER -> objects.object_id

    value_string:
        - object_id INTEGER -> objects.object_id
        - property_id INTEGER -> objects.object_id
        - value TEXT
        - PRIMARY KEY (object_id, property_id)

    value_reference:
        - object_id INTEGER -> objects.object_id
        - property_id INTEGER -> objects.object_id
        - value_id INTEGER -> objects.object_id
        - PRIMARY KEY (object_id, property_id)

    id_sequence:
        - name TEXT PRIMARY KEY
        - next_value INTEGER
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import DynDbSettings
from ..errors import ClosedSessionError, StorageFailure
from ..schema.types import FIRST_USER_ID

logger = logging.getLogger(__name__)

OBJECT_SEQUENCE = "objects"
WORK_SAVEPOINT = "dyndb_work"

DROP_SCRIPT = (
    "DROP TABLE IF EXISTS value_reference",
    "DROP TABLE IF EXISTS value_string",
    "DROP TABLE IF EXISTS objects",
    "DROP TABLE IF EXISTS id_sequence",
)

CREATE_SCRIPT = (
    """
    CREATE TABLE objects (
        object_id INTEGER NOT NULL PRIMARY KEY,
        type_id INTEGER NOT NULL REFERENCES objects (object_id)
    )
    """,
    "CREATE INDEX idx_objects_type ON objects (type_id)",
    """
    CREATE TABLE value_string (
        object_id INTEGER NOT NULL REFERENCES objects (object_id),
        property_id INTEGER NOT NULL REFERENCES objects (object_id),
        value TEXT NOT NULL,
        PRIMARY KEY (object_id, property_id)
    )
    """,
    "CREATE INDEX idx_value_string_match ON value_string (property_id, value)",
    """
    CREATE TABLE value_reference (
        object_id INTEGER NOT NULL REFERENCES objects (object_id),
        property_id INTEGER NOT NULL REFERENCES objects (object_id),
        value_id INTEGER NOT NULL REFERENCES objects (object_id),
        PRIMARY KEY (object_id, property_id)
    )
    """,
    "CREATE INDEX idx_value_reference_match ON value_reference (property_id, value_id)",
    "CREATE INDEX idx_value_reference_target ON value_reference (value_id)",
    """
    CREATE TABLE id_sequence (
        name TEXT NOT NULL PRIMARY KEY,
        next_value INTEGER NOT NULL
    )
    """,
)

# Built-in metadata rows. Identity rows come first so every foreign key
# already has its target when the attribute rows are inserted.
BOOTSTRAP_OBJECTS = (
    (1, 1),  # Type "Type"
    (2, 1),  # Type "Property"
    (5, 2),  # Type.Name
    (6, 2),  # Property.Owner
    (7, 2),  # Property.Name
    (8, 2),  # Property.Type
)

BOOTSTRAP_STRINGS = (
    (1, 5, "Type"),
    (2, 5, "Property"),
    (5, 7, "Name"),
    (5, 8, "String"),
    (6, 7, "Owner"),
    (6, 8, "Type"),
    (7, 7, "Name"),
    (7, 8, "String"),
    (8, 7, "Type"),
    (8, 8, "String"),
)

BOOTSTRAP_REFERENCES = (
    (5, 6, 1),
    (6, 6, 2),
    (7, 6, 2),
    (8, 6, 2),
)


class SqliteGateway:
    """Synchronous SQLite client used by the persistence coordinator.

    Example:
        >>> gateway = SqliteGateway.connect(DynDbSettings(database=":memory:"))
        >>> gateway.next_id()
        100
        >>> gateway.commit()
        >>> gateway.close()
    """

    def __init__(self, connection: sqlite3.Connection, settings: DynDbSettings) -> None:
        """Wrap an open connection. Use connect() to create one."""
        self._conn: Optional[sqlite3.Connection] = connection
        self.settings = settings
        # Highest id issued in the open transaction
        self._issued: Optional[int] = None

    @classmethod
    def connect(cls, settings: DynDbSettings) -> SqliteGateway:
        """Open the database, creating tables and metadata on first use.

        Args:
            settings: dyndb settings (database path, timeouts, foreign keys)

        Returns:
            Connected gateway

        Raises:
            StorageFailure: The database could not be opened or initialized
        """
        if not settings.in_memory:
            Path(settings.database).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                settings.database,
                timeout=settings.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Transactions are opened explicitly
            )
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout = {settings.busy_timeout_ms}")
            if settings.wal_mode and not settings.in_memory:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute(f"PRAGMA foreign_keys = {'ON' if settings.foreign_keys else 'OFF'}")
        except sqlite3.Error as e:
            raise StorageFailure(
                f"Exception in connecting to database {settings.database}", cause=e
            ) from e

        gateway = cls(conn, settings)
        if not gateway.has_schema():
            gateway.initialize()

        logger.info(f"Connected to dyndb database: {settings.database}")
        return gateway

    @property
    def closed(self) -> bool:
        return self._conn is None

    # -- statements ---------------------------------------------------------

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement in the ambient transaction.

        Returns:
            Number of rows changed
        """
        conn = self._connection()
        with self._storage_errors("statement"):
            self._begin(conn)
            cursor = conn.execute(sql, tuple(params))
            return cursor.rowcount

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Run a query and return all rows.

        Inside a write transaction the query sees its uncommitted changes;
        otherwise it runs in autocommit.
        """
        conn = self._connection()
        with self._storage_errors("query"):
            return conn.execute(sql, tuple(params)).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        """Run a query and return its first row, or None."""
        conn = self._connection()
        with self._storage_errors("query"):
            return conn.execute(sql, tuple(params)).fetchone()

    def next_id(self) -> int:
        """Issue the next object id."""
        self.execute(
            "UPDATE id_sequence SET next_value = next_value + 1 WHERE name = ?",
            (OBJECT_SEQUENCE,),
        )
        row = self.query_one(
            "SELECT next_value - 1 FROM id_sequence WHERE name = ?", (OBJECT_SEQUENCE,)
        )
        if row is None:
            raise StorageFailure("No sequence data returned")
        object_id = int(row[0])
        self._issued = object_id
        return object_id

    # -- transactions -------------------------------------------------------

    def commit(self) -> None:
        """Commit the ambient transaction, if one is open."""
        conn = self._connection()
        with self._storage_errors("commit"):
            if conn.in_transaction:
                conn.execute("COMMIT")
        self._issued = None
        logger.debug("Committed transaction")

    def rollback(self) -> None:
        """Roll back the ambient transaction, if one is open.

        Ids issued in the transaction stay spent. The work is undone back to
        the savepoint taken at BEGIN and only the advanced sequence is
        committed, under the same write lock.
        """
        conn = self._connection()
        issued, self._issued = self._issued, None
        with self._storage_errors("rollback"):
            if issued is None:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
            else:
                if conn.in_transaction:
                    conn.execute(f"ROLLBACK TO SAVEPOINT {WORK_SAVEPOINT}")
                else:
                    self._begin(conn)
                conn.execute(
                    "UPDATE id_sequence SET next_value = MAX(next_value, ?) WHERE name = ?",
                    (issued + 1, OBJECT_SEQUENCE),
                )
                conn.execute("COMMIT")
        logger.debug("Rolled back transaction", extra={"last_issued_id": issued})

    # -- schema -------------------------------------------------------------

    def has_schema(self) -> bool:
        """Whether the dyndb tables exist in this database."""
        row = self.query_one(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'objects'"
        )
        return row is not None

    def initialize(self) -> None:
        """Create tables and bootstrap metadata rows, then commit."""
        self._run_script(CREATE_SCRIPT)
        logger.info(f"Initialized dyndb database: {self.settings.database}")

    def reset(self) -> None:
        """Drop all data and recreate the freshly initialized state.

        Pending uncommitted work is discarded.
        """
        self.rollback()
        self._run_script(DROP_SCRIPT + CREATE_SCRIPT)
        logger.info(f"Reset dyndb database: {self.settings.database}")

    def _run_script(self, statements: Sequence[str]) -> None:
        conn = self._connection()
        with self._storage_errors("database initialization"):
            self._begin(conn)
            try:
                for statement in statements:
                    conn.execute(statement)
                conn.executemany(
                    "INSERT INTO objects (object_id, type_id) VALUES (?, ?)",
                    BOOTSTRAP_OBJECTS,
                )
                conn.executemany(
                    "INSERT INTO value_string (object_id, property_id, value) VALUES (?, ?, ?)",
                    BOOTSTRAP_STRINGS,
                )
                conn.executemany(
                    "INSERT INTO value_reference (object_id, property_id, value_id) "
                    "VALUES (?, ?, ?)",
                    BOOTSTRAP_REFERENCES,
                )
                conn.execute(
                    "INSERT INTO id_sequence (name, next_value) VALUES (?, ?)",
                    (OBJECT_SEQUENCE, FIRST_USER_ID),
                )
                conn.execute("COMMIT")
            except sqlite3.Error:
                conn.execute("ROLLBACK")
                raise

    def dump(self) -> Dict[str, List[tuple]]:
        """Return every stored row, ordered by object and property id."""
        return {
            "objects": [
                tuple(row)
                for row in self.query(
                    "SELECT object_id, type_id FROM objects ORDER BY object_id, type_id"
                )
            ],
            "value_string": [
                tuple(row)
                for row in self.query(
                    "SELECT object_id, property_id, value FROM value_string "
                    "ORDER BY object_id, property_id"
                )
            ],
            "value_reference": [
                tuple(row)
                for row in self.query(
                    "SELECT object_id, property_id, value_id FROM value_reference "
                    "ORDER BY object_id, property_id"
                )
            ],
        }

    # -- lifecycle ----------------------------------------------------------

    def close(self) -> None:
        """Roll back uncommitted work and close the connection.

        Raises:
            ClosedSessionError: Already closed
        """
        conn = self._connection()
        try:
            self.rollback()
        finally:
            self._conn = None
            with self._storage_errors("close"):
                conn.close()
        logger.info(f"Closed dyndb database: {self.settings.database}")

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ClosedSessionError("Connection closed")
        return self._conn

    @staticmethod
    def _begin(conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(f"SAVEPOINT {WORK_SAVEPOINT}")

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as e:
            raise StorageFailure(f"Exception on {action}: {e}", cause=e) from e
