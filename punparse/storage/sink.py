"""Database sink for migrated records.

One SQLAlchemy connection shared by every worker. All access goes through a
single lock, so the destination sees one writer no matter how many files are
parsed at once. Every insert is insert-if-absent keyed by primary key, which
makes reruns over the same export harmless.
"""
import threading
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from punparse.config import get_logger
from punparse.models import Category, Forum, Record, SinkClosedError, SinkConnectionError, StorageError
from punparse.storage.dialects import Dialect, SchemaProvisioner

logger = get_logger(__name__)


def normalize_url(url: str) -> str:
    """Accept the short "sqlite:forum.db" form next to SQLAlchemy URLs."""
    if url.startswith("sqlite:") and not url.startswith("sqlite://"):
        return "sqlite:///" + url[len("sqlite:"):]
    return url


class DatabaseSink:
    """Idempotent, serialized gateway to the destination database."""

    def __init__(self, engine: Engine, connection: Connection, table_prefix: str = ""):
        self.engine = engine
        self.dialect = Dialect.from_name(engine.dialect.name)
        self.schema = SchemaProvisioner(self.dialect, table_prefix)
        self._conn: Optional[Connection] = connection
        self._lock = threading.Lock()
        self._category_ids: dict[tuple[str, int], int] = {}

    @classmethod
    def connect(cls, url: str, table_prefix: str = "") -> "DatabaseSink":
        """Connect to the destination database.

        Args:
            url: SQLAlchemy URL (sqlite:///forum.db, mysql+pymysql://...,
                postgresql://...) or sqlite:forum.db
            table_prefix: Prefix for every table name

        Raises:
            SinkConnectionError: If the database can't be reached or its
                type is not supported
        """
        url = normalize_url(url)
        try:
            if url.startswith("sqlite:"):
                # Workers share the connection; the sink lock serializes it
                engine = create_engine(url, connect_args={"check_same_thread": False})
            else:
                engine = create_engine(url, pool_pre_ping=True)
            connection = engine.connect()
        except (SQLAlchemyError, ImportError) as e:
            raise SinkConnectionError(f"Couldn't connect to database: {e}") from e

        try:
            sink = cls(engine, connection, table_prefix)
        except ValueError as e:
            connection.close()
            engine.dispose()
            raise SinkConnectionError(str(e)) from e

        logger.info(f"Connected to {sink.dialect.value} database "
                    f"(prefix: {table_prefix!r})")
        return sink

    # ========================================================================
    # Schema
    # ========================================================================

    def provision_schema(self) -> None:
        """Drop and recreate every destination table, then seed default rows.

        Raises:
            StorageError: If a statement fails
        """
        with self._lock:
            conn = self._connection()
            statements = self.schema.provision_statements()
            try:
                for statement in statements:
                    conn.execute(text(statement))
                conn.commit()
            except SQLAlchemyError as e:
                conn.rollback()
                raise StorageError(f"Couldn't create tables: {e}") from e
            self._category_ids.clear()
        logger.info(f"Created {len(statements)} schema objects")

    # ========================================================================
    # Writes
    # ========================================================================

    def insert(self, record: Record) -> bool:
        """Insert a record unless a row with its key already exists.

        Forums have their category ID looked up (or the category created)
        first. Redirect forums have no ID in the export; they get a new one
        unless a redirect with the same name and URL is already stored.

        Returns:
            True if a row was written, False if it already existed

        Raises:
            StorageError: If the database rejects the statement. The
                connection stays usable.
        """
        with self._lock:
            conn = self._connection()
            try:
                if isinstance(record, Category):
                    _, created = self._category_id_locked(conn, record.name, record.display_position)
                    return created

                row = record.to_row()
                if isinstance(record, Forum):
                    row["cat_id"], _ = self._category_id_locked(
                        conn, record.category_name, record.category_position)
                    if record.is_redirect:
                        return self._insert_redirect_locked(conn, row)

                statement = self.schema.insert_if_absent(record.TABLE, list(row))
                result = conn.execute(text(statement), row)
                conn.commit()
                return result.rowcount == 1
            except SQLAlchemyError as e:
                conn.rollback()
                raise StorageError(f"Couldn't insert into {record.TABLE}: {e}") from e

    def category_id(self, name: str, display_position: int = 0) -> int:
        """ID of the category called name at display_position, creating it if needed.

        Raises:
            StorageError: If the lookup or insert fails
        """
        with self._lock:
            conn = self._connection()
            try:
                category_id, _ = self._category_id_locked(conn, name, display_position)
                return category_id
            except SQLAlchemyError as e:
                conn.rollback()
                raise StorageError(f"Couldn't get category {name!r}: {e}") from e

    # ========================================================================
    # Reads
    # ========================================================================

    def count(self, table: str) -> int:
        """Number of rows in a destination table."""
        with self._lock:
            conn = self._connection()
            try:
                result = conn.execute(text(f"SELECT COUNT(*) FROM {self.schema.table(table)}"))
                value = result.scalar_one()
                conn.commit()
                return int(value)
            except SQLAlchemyError as e:
                conn.rollback()
                raise StorageError(f"Couldn't count rows of {table}: {e}") from e

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        with self._lock:
            if self._conn is None:
                return
            conn, self._conn = self._conn, None
            try:
                conn.close()
            finally:
                self.engine.dispose()
        logger.debug("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # ========================================================================
    # Internals (lock held)
    # ========================================================================

    def _connection(self) -> Connection:
        if self._conn is None:
            raise SinkClosedError("Database sink is closed")
        return self._conn

    def _find_id(self, conn: Connection, table: str, criteria: dict) -> Optional[int]:
        # Lowest ID of the rows matching every column = value in criteria
        quote = self.schema.quote
        where = " AND ".join(f"{quote(column)} = :{column}" for column in criteria)
        result = conn.execute(
            text(f"SELECT {quote('id')} FROM {self.schema.table(table)} "
                 f"WHERE {where} ORDER BY {quote('id')}"),
            criteria,
        )
        row = result.first()
        return int(row[0]) if row is not None else None

    def _insert_new_id(self, conn: Connection, table: str, row: dict) -> int:
        statement = self.schema.insert_returning_id(table, list(row))
        result = conn.execute(text(statement), row)
        return int(result.scalar_one() if self.dialect.caps.returning_id else result.lastrowid)

    def _category_id_locked(self, conn: Connection, name: str,
                            display_position: int) -> tuple[int, bool]:
        """(category ID, whether it was created now).

        Categories have no ID in the export. Name and position together
        identify one, so two categories sharing a name stay apart.
        """
        key = (name, display_position)
        cached = self._category_ids.get(key)
        if cached is not None:
            return cached, False

        row = {"cat_name": name, "disp_position": display_position}
        category_id = self._find_id(conn, "categories", row)
        created = category_id is None
        if created:
            category_id = self._insert_new_id(conn, "categories", row)
            logger.debug(f"Created category {name!r} at position {display_position} with ID {category_id}")
        conn.commit()
        self._category_ids[key] = category_id
        return category_id, created

    def _insert_redirect_locked(self, conn: Connection, row: dict) -> bool:
        criteria = {"forum_name": row["forum_name"], "redirect_url": row["redirect_url"]}
        if self._find_id(conn, "forums", criteria) is not None:
            conn.commit()
            return False
        # Above every stored forum ID. Index pages list redirects after their
        # real forums, so those keep the IDs from the export.
        result = conn.execute(text(
            f"SELECT MAX({self.schema.quote('id')}) FROM {self.schema.table('forums')}"))
        forum_id = (result.scalar_one() or 0) + 1
        row = {**row, "id": forum_id}
        conn.execute(text(self.schema.insert_if_absent("forums", list(row))), row)
        conn.commit()
        logger.debug(f"Redirect forum {row['forum_name']!r} written with ID {forum_id}")
        return True
