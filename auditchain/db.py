"""
Database module for auditchain.

Provides SQLite-based storage for registered clients, the hash chain and
cross-sign bookkeeping. Connections are opened per unit of work; the
client store is the only writer of the ``clients`` table.
"""

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

from .errors import DuplicateClientIdError, PersistenceCommitError


@dataclass(frozen=True)
class ClientRecord:
    """A registered participant."""
    client_id: str
    public_key: str
    comment: str
    is_admin: bool
    created: str
    modified: str


def connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    """
    Open a connection in autocommit mode; callers issue BEGIN explicitly.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=30, isolation_level=None, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=30000;")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Context manager for write transactions.
    Takes the write lock up front, commits on success, rolls back on failure.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db(db_path: Union[str, Path]) -> None:
    """
    Initialize database schema.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    conn = connect(db_path)
    try:
        with transaction(conn):
            conn.execute("""
            CREATE TABLE IF NOT EXISTS clients (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                client_id TEXT NOT NULL UNIQUE,
                public_key TEXT NOT NULL,
                comment TEXT NOT NULL DEFAULT '',
                is_admin INTEGER NOT NULL DEFAULT 0,
                created TEXT NOT NULL,
                modified TEXT NOT NULL
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS chain (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                data TEXT NOT NULL,
                signature TEXT NOT NULL,
                publickey TEXT NOT NULL,
                prevhash TEXT,
                currhash TEXT NOT NULL UNIQUE,
                summaryhash TEXT NOT NULL UNIQUE,
                created TEXT NOT NULL
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS xsign_targets (
                name TEXT PRIMARY KEY,
                last_run TEXT,
                last_seq INTEGER NOT NULL DEFAULT 0
            );""")
    finally:
        conn.close()


class ClientStore(ABC):
    """Persistence interface for client records."""

    @abstractmethod
    def client_exists(self, client_id: str) -> bool:
        pass

    @abstractmethod
    def insert_client(self, record: ClientRecord) -> None:
        """
        Insert and commit a client row.

        Raises:
            DuplicateClientIdError: the id is already taken (nothing written)
            PersistenceCommitError: the commit failed (rolled back)
        """
        pass

    @abstractmethod
    def delete_client(self, client_id: str) -> None:
        """Remove a client row; used to undo a registration that was not published."""
        pass

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        pass

    @abstractmethod
    def count_clients(self) -> int:
        pass


class SqliteClientStore(ClientStore):
    """SQLite client store; the UNIQUE constraint on client_id guards inserts."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        return connect(self.db_path)

    def _commit(self, conn: sqlite3.Connection) -> None:
        conn.commit()

    def client_exists(self, client_id: str) -> bool:
        conn = self._connect()
        try:
            cur = conn.execute("SELECT 1 FROM clients WHERE client_id=?", (client_id,))
            return cur.fetchone() is not None
        finally:
            conn.close()

    def insert_client(self, record: ClientRecord) -> None:
        conn = self._connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise PersistenceCommitError(f"Could not start transaction: {e}") from e
            try:
                conn.execute(
                    "INSERT INTO clients(client_id, public_key, comment, is_admin, created, modified) "
                    "VALUES(?,?,?,?,?,?)",
                    (record.client_id, record.public_key, record.comment,
                     1 if record.is_admin else 0, record.created, record.modified)
                )
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "UNIQUE" in str(e):
                    raise DuplicateClientIdError(record.client_id) from e
                raise PersistenceCommitError(f"Could not insert client: {e}") from e

            try:
                self._commit(conn)
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceCommitError(f"Could not commit client: {e}") from e
        finally:
            conn.close()

    def delete_client(self, client_id: str) -> None:
        conn = self._connect()
        try:
            with transaction(conn):
                conn.execute("DELETE FROM clients WHERE client_id=?", (client_id,))
        except sqlite3.Error as e:
            raise PersistenceCommitError(f"Could not remove client: {e}") from e
        finally:
            conn.close()

    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        conn = self._connect()
        try:
            cur = conn.execute(
                "SELECT client_id, public_key, comment, is_admin, created, modified "
                "FROM clients WHERE client_id=?",
                (client_id,)
            )
            row = cur.fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return ClientRecord(
            client_id=row["client_id"],
            public_key=row["public_key"],
            comment=row["comment"],
            is_admin=bool(row["is_admin"]),
            created=row["created"],
            modified=row["modified"],
        )

    def count_clients(self) -> int:
        conn = self._connect()
        try:
            return conn.execute("SELECT COUNT(*) AS cnt FROM clients").fetchone()["cnt"]
        finally:
            conn.close()
