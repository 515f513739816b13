"""
Unit tests for the SQLite storage gateway.

Tests cover:
- Schema creation and bootstrap rows
- Identity generation
- Ambient transaction commit/rollback
- Reset
- Error wrapping and closed connections
- Journal mode and locking between connections
"""

import os
import sqlite3
import tempfile

import pytest

from dyndb.config import DynDbSettings
from dyndb.errors import ClosedSessionError, StorageFailure
from dyndb.store.gateway import (
    BOOTSTRAP_OBJECTS,
    BOOTSTRAP_REFERENCES,
    BOOTSTRAP_STRINGS,
    SqliteGateway,
)

BOOTSTRAP_DUMP = {
    "objects": list(BOOTSTRAP_OBJECTS),
    "value_string": list(BOOTSTRAP_STRINGS),
    "value_reference": list(BOOTSTRAP_REFERENCES),
}


class TestSqliteGateway:
    """Tests for SqliteGateway on an in-memory database."""

    @pytest.fixture
    def gateway(self):
        """Connected in-memory gateway."""
        gateway = SqliteGateway.connect(DynDbSettings(database=":memory:"))
        yield gateway
        if not gateway.closed:
            gateway.close()

    def test_connect_creates_schema(self, gateway):
        """A fresh database gets tables and bootstrap rows."""
        assert gateway.has_schema()
        assert gateway.dump() == BOOTSTRAP_DUMP

    def test_bootstrap_rows(self, gateway):
        """Bootstrap rows describe Type and Property."""
        rows = gateway.query(
            "SELECT object_id, value FROM value_string WHERE property_id = ? ORDER BY object_id",
            (5,),
        )
        assert [(row["object_id"], row["value"]) for row in rows] == [(1, "Type"), (2, "Property")]

    def test_next_id_starts_at_100(self, gateway):
        """Issued ids start above the built-in range."""
        assert gateway.next_id() == 100
        assert gateway.next_id() == 101
        assert gateway.next_id() == 102

    def test_commit(self, gateway):
        """Committed statements persist."""
        gateway.execute("INSERT INTO objects (object_id, type_id) VALUES (?, ?)", (100, 1))
        gateway.commit()
        gateway.rollback()

        assert (100, 1) in gateway.dump()["objects"]

    def test_rollback(self, gateway):
        """Rolled back statements are discarded."""
        object_id = gateway.next_id()
        gateway.execute("INSERT INTO objects (object_id, type_id) VALUES (?, ?)", (object_id, 1))
        gateway.rollback()

        assert gateway.dump() == BOOTSTRAP_DUMP

    def test_rollback_keeps_ids_spent(self, gateway):
        """Ids issued before a rollback are never issued again."""
        first = gateway.next_id()
        gateway.execute("INSERT INTO objects (object_id, type_id) VALUES (?, ?)", (first, 1))
        gateway.rollback()

        second = gateway.next_id()
        gateway.rollback()
        third = gateway.next_id()

        assert first < second < third
        assert gateway.dump() == BOOTSTRAP_DUMP

    def test_commit_without_transaction(self, gateway):
        """Commit and rollback without pending work are no-ops."""
        gateway.commit()
        gateway.rollback()
        assert gateway.has_schema()

    def test_execute_rowcount(self, gateway):
        """execute returns the number of changed rows."""
        changed = gateway.execute("UPDATE value_string SET value = value WHERE object_id = ?", (5,))
        assert changed == 2

    def test_reset(self, gateway):
        """Reset restores the freshly initialized state."""
        object_id = gateway.next_id()
        gateway.execute("INSERT INTO objects (object_id, type_id) VALUES (?, ?)", (object_id, 1))
        gateway.execute(
            "INSERT INTO value_string (object_id, property_id, value) VALUES (?, ?, ?)",
            (object_id, 5, "Address"),
        )
        gateway.commit()

        gateway.reset()

        assert gateway.dump() == BOOTSTRAP_DUMP
        assert gateway.next_id() == 100

    def test_foreign_key_violation(self, gateway):
        """Constraint errors surface as StorageFailure with the cause."""
        with pytest.raises(StorageFailure) as exc_info:
            gateway.execute("INSERT INTO objects (object_id, type_id) VALUES (?, ?)", (100, 999))

        assert isinstance(exc_info.value.cause, sqlite3.IntegrityError)
        assert exc_info.value.__cause__ is exc_info.value.cause

    def test_delete_order_enforced(self, gateway):
        """Identity rows with attribute rows cannot be deleted first."""
        with pytest.raises(StorageFailure):
            gateway.execute("DELETE FROM objects WHERE object_id = ?", (6,))

    def test_bad_sql(self, gateway):
        """Syntax errors surface as StorageFailure."""
        with pytest.raises(StorageFailure):
            gateway.query("SELEC * FROM objects")

    def test_closed(self, gateway):
        """Every call after close raises ClosedSessionError."""
        gateway.close()

        assert gateway.closed
        with pytest.raises(ClosedSessionError):
            gateway.query("SELECT 1")
        with pytest.raises(ClosedSessionError):
            gateway.next_id()
        with pytest.raises(ClosedSessionError):
            gateway.commit()
        with pytest.raises(ClosedSessionError):
            gateway.close()


class TestSqliteGatewayFile:
    """Tests for SqliteGateway on a database file."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    def test_creates_parent_directory(self, data_dir):
        """Missing parent directories are created."""
        path = os.path.join(data_dir, "nested", "store.sqlite3")
        gateway = SqliteGateway.connect(DynDbSettings(database=path))
        gateway.close()

        assert os.path.exists(path)

    def test_reopen_keeps_sequence(self, data_dir):
        """Committed ids are not issued again after reopening."""
        settings = DynDbSettings(database=os.path.join(data_dir, "store.sqlite3"))

        gateway = SqliteGateway.connect(settings)
        assert gateway.next_id() == 100
        gateway.commit()
        gateway.close()

        gateway = SqliteGateway.connect(settings)
        assert gateway.next_id() == 101
        gateway.close()

    def test_close_keeps_ids_spent(self, data_dir):
        """Ids issued in a transaction discarded by close stay spent."""
        settings = DynDbSettings(database=os.path.join(data_dir, "store.sqlite3"))

        gateway = SqliteGateway.connect(settings)
        first = gateway.next_id()
        gateway.close()

        gateway = SqliteGateway.connect(settings)
        assert gateway.next_id() == first + 1
        gateway.close()

    @pytest.mark.parametrize("wal_mode, journal_mode", [(True, "wal"), (False, "delete")])
    def test_journal_mode(self, data_dir, wal_mode, journal_mode):
        """Database files use WAL unless it is switched off."""
        settings = DynDbSettings(database=os.path.join(data_dir, "store.sqlite3"), wal_mode=wal_mode)

        gateway = SqliteGateway.connect(settings)
        assert gateway.query_one("PRAGMA journal_mode")[0] == journal_mode
        gateway.close()

    @pytest.mark.parametrize("wal_mode", [True, False])
    def test_reader_does_not_block_writer(self, data_dir, wal_mode):
        """A connection that only read holds no lock."""
        settings = DynDbSettings(
            database=os.path.join(data_dir, "store.sqlite3"), wal_mode=wal_mode, busy_timeout_ms=200
        )
        reader = SqliteGateway.connect(settings)
        writer = SqliteGateway.connect(settings)

        assert reader.dump() == BOOTSTRAP_DUMP
        writer.execute("INSERT INTO objects (object_id, type_id) VALUES (?, ?)", (writer.next_id(), 1))
        writer.commit()

        assert (100, 1) in reader.dump()["objects"]
        assert reader.next_id() == 101
        reader.commit()
        reader.close()
        writer.close()

    def test_uncommitted_work_discarded_on_close(self, data_dir):
        """Closing without commit discards pending statements."""
        settings = DynDbSettings(database=os.path.join(data_dir, "store.sqlite3"))

        gateway = SqliteGateway.connect(settings)
        gateway.execute("INSERT INTO objects (object_id, type_id) VALUES (?, ?)", (100, 1))
        gateway.close()

        gateway = SqliteGateway.connect(settings)
        assert gateway.dump() == BOOTSTRAP_DUMP
        gateway.close()
