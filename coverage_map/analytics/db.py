"""
SQLite Access for the Coverage Map
==================================

CherryPy serves each request on its own worker thread and sqlite3
connections must not be shared across threads, so every unit of work
opens its own connection through CoverageDB.connection().

Journal mode is WAL: the bulk reads behind get-nodes never block
put-sample writes.

Usage
-----
    from coverage_map.analytics.db import CoverageDB, with_connection

    db = CoverageDB("/var/lib/coverage_map/coverage.db")

    with db.connection() as conn:
        rows = conn.execute("SELECT geohash FROM samples").fetchall()

    @with_connection
    def count_repeaters(conn) -> int:
        return conn.execute("SELECT COUNT(*) FROM repeaters").fetchone()[0]

    count_repeaters(db)
"""

import logging
import sqlite3
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar, Union

logger = logging.getLogger("Analytics.DB")

SQLITE_PRAGMAS = {
    "journal_mode": "WAL",
    "synchronous": "NORMAL",
    "busy_timeout": 30000,          # ms; put-sample bursts from several drivers
}


class CoverageDBError(Exception):
    """Base exception for coverage database errors."""
    pass


class DBConnectionError(CoverageDBError):
    """Failed to open the database file."""
    pass


class QueryError(CoverageDBError):
    """A storage statement failed."""
    pass


class CoverageDB:
    """
    Owner of the coverage database file.

    The file and its parent directories are created on construction so a
    fresh deployment can start with only a configured path.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.db_path.exists():
            self.db_path.touch()
            logger.info(f"Created database file: {self.db_path}")

        logger.info(f"CoverageDB initialized: {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as e:
            logger.error(f"Failed to open {self.db_path}: {e}")
            raise DBConnectionError(f"Cannot connect to {self.db_path}: {e}") from e

        for pragma, value in SQLITE_PRAGMAS.items():
            try:
                conn.execute(f"PRAGMA {pragma} = {value}")
            except sqlite3.Error as e:
                logger.warning(f"Failed to set PRAGMA {pragma}: {e}")

        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Connection scoped to one unit of work: commit on success, rollback on error."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def table_exists(self, table_name: str) -> bool:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
                (table_name,),
            ).fetchone()
        return row is not None

    @property
    def path(self) -> str:
        return str(self.db_path)


# Storage functions accept either the manager or an open connection
DBConnection = Union[sqlite3.Connection, CoverageDB]

F = TypeVar('F', bound=Callable[..., Any])


def with_connection(func: F) -> F:
    """
    Let a storage function take a CoverageDB or a raw connection as its
    first argument.

    A CoverageDB gets its own committed connection per call; a raw
    connection is used as-is and left to the caller, so several calls can
    share one transaction. sqlite3 errors surface as QueryError.
    """
    @wraps(func)
    def wrapper(conn_or_db: DBConnection, *args: Any, **kwargs: Any) -> Any:
        try:
            if isinstance(conn_or_db, CoverageDB):
                with conn_or_db.connection() as conn:
                    return func(conn, *args, **kwargs)
            return func(conn_or_db, *args, **kwargs)
        except sqlite3.Error as e:
            logger.error(f"{func.__name__} failed: {e}")
            raise QueryError(f"{func.__name__} failed: {e}") from e

    return wrapper  # type: ignore[return-value]
