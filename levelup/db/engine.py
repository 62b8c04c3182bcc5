"""PostgreSQL engine for LevelUp.

Owns the single psycopg connection, maps driver errors onto the LevelUp
hierarchy and runs ``schema.sql``. The repository is the only caller.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from levelup.core.config import DatabaseConfig
from levelup.core.exceptions import ConnectionError, DatabaseError, SchemaInitError

logger = logging.getLogger("levelup.db")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

Params = Optional[Sequence[Any]]


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Lost or refused connections become ConnectionError; everything else DatabaseError."""
    try:
        yield
    except psycopg.OperationalError as e:
        raise ConnectionError(f"Database unreachable: {e}") from e
    except psycopg.Error as e:
        raise DatabaseError(f"Query failed: {e}") from e


class DatabaseEngine:
    """Autocommit connection with explicit, nestable transactions.

    Usage:
        engine = DatabaseEngine(config)
        engine.fetch_all("SELECT * FROM submissions WHERE status = %s", ["pending"])

        with engine.transaction():
            engine.execute("UPDATE attribute_sets ...")
            with engine.transaction():      # SAVEPOINT
                engine.execute("UPDATE subjects ...")
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._conn: Optional[psycopg.Connection] = None

    @property
    def conn(self) -> psycopg.Connection:
        """The live connection, reconnecting lazily after close or loss."""
        if self._conn is None or self._conn.closed:
            try:
                self._conn = psycopg.connect(
                    self.config.connection_string, row_factory=dict_row, autocommit=True
                )
            except psycopg.OperationalError as e:
                raise ConnectionError(f"Failed to connect to database: {e}") from e
            logger.info("Connected to PostgreSQL at %s:%s/%s",
                        self.config.host, self.config.port, self.config.dbname)
        return self._conn

    def initialize_schema(self) -> None:
        """Apply schema.sql. Every statement in it is idempotent."""
        if not SCHEMA_PATH.exists():
            raise SchemaInitError(f"Schema file not found: {SCHEMA_PATH}")
        try:
            self.conn.execute(SCHEMA_PATH.read_text())
        except psycopg.Error as e:
            raise SchemaInitError(f"Failed to initialize schema: {e}") from e
        logger.info("Database schema initialized")

    def execute(self, query: str, params: Params = None) -> int:
        """Run a statement; returns the affected row count."""
        with _translate_errors():
            return self.conn.execute(query, params).rowcount

    def fetch_one(self, query: str, params: Params = None) -> Optional[dict[str, Any]]:
        with _translate_errors():
            return self.conn.execute(query, params).fetchone()

    def fetch_all(self, query: str, params: Params = None) -> list[dict[str, Any]]:
        with _translate_errors():
            return self.conn.execute(query, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[psycopg.Connection]:
        """BEGIN/COMMIT at the outermost level, SAVEPOINT when nested.

        Any exception rolls back to the matching level and propagates.
        """
        with _translate_errors(), self.conn.transaction():
            yield self.conn

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    def __del__(self):
        self.close()
