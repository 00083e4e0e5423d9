#!/usr/bin/env python3
"""
Database models and operations for the Feed Aggregator.

This module contains the article store: a single SQLite connection owned by
an asyncio worker that executes named operations one at a time, so callers
never share the connection and every operation runs in its own transaction.
"""

from os import path, access, R_OK
import json
from sqlite3 import connect, Row, Error
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Optional, Any, Iterable

from config import config, get_logger
from errors import StoreError
from telemetry import trace_span

# Module-specific logger
logger = get_logger("models")

# Signed 64-bit bounds of an SQLite INTEGER
SQLITE_MIN_INTEGER = -(2 ** 63)
SQLITE_MAX_INTEGER = 2 ** 63 - 1

_ARTICLE_COLUMNS = """
    a.id,
    a.title,
    a.description,
    a.link,
    a.pub_date,
    a.thumbnail,
    a.source_id,
    a.categories,
    a.created_at,
    s.name AS source_name,
    s.homepage AS source_homepage,
    s.locale AS source_locale,
    s.logo AS source_logo
"""


def initialize_database(conn) -> None:
    """Initialize the database with the schema from the SQL file."""
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='articles'")
        articles_table_exists = cursor.fetchone() is not None

        if not articles_table_exists:
            logger.info("Database is new or empty. Initializing schema.")
            cursor.executescript(_read_schema_file())
            conn.commit()
            logger.info("Database schema initialized successfully")
        else:
            logger.debug("Database already exists with proper schema")
            _run_migrations(conn)

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise
    finally:
        cursor.close()


def _run_migrations(conn) -> None:
    """Run any necessary database migrations."""
    cursor = conn.cursor()

    try:
        # Migration 1: sources.category arrived with the admin endpoint
        cursor.execute("PRAGMA table_info(sources)")
        columns = [column[1] for column in cursor.fetchall()]
        if 'category' not in columns:
            logger.info("Adding category column to sources table")
            cursor.execute("ALTER TABLE sources ADD COLUMN category TEXT")
            conn.commit()
            logger.info("Migration completed: added category column")
    except Exception as e:
        logger.error(f"Error running migrations: {e}")
        raise
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file."""
    schema_path = config.SCHEMA_FILE_PATH

    if not path.isfile(schema_path):
        raise FileNotFoundError(f"Schema file not found at {schema_path}")
    if not access(schema_path, R_OK):
        raise PermissionError(f"No read permission for schema file at {schema_path}")
    file_size = path.getsize(schema_path)
    max_size = config.SCHEMA_FILE_SIZE_LIMIT_MB * 1024 * 1024
    if file_size > max_size:
        raise ValueError(f"Schema file too large: {file_size} bytes (limit: {max_size} bytes)")

    with open(schema_path, 'r') as f:
        return f.read()


def _decode_categories(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return [str(v) for v in value] if isinstance(value, list) else []


def _source_from_row(row) -> Dict[str, Any]:
    return {
        'id': row['id'],
        'name': row['name'],
        'homepage': row['homepage'],
        'url': row['url'],
        'locale': row['locale'],
        'category': row['category'],
        'logo': row['logo'],
        'last_fetched_at': row['last_fetched_at'],
        'etag': row['etag'],
    }


def _article_from_row(row) -> Dict[str, Any]:
    return {
        'id': row['id'],
        'title': row['title'],
        'description': row['description'],
        'link': row['link'],
        'pub_date': row['pub_date'],
        'thumbnail': row['thumbnail'],
        'source_id': row['source_id'],
        'categories': _decode_categories(row['categories']),
        'created_at': row['created_at'],
        'source': {
            'id': row['source_id'],
            'name': row['source_name'],
            'homepage': row['source_homepage'],
            'locale': row['source_locale'],
            'logo': row['source_logo'],
        },
    }


class DatabaseQueue:
    """A queue for database operations to keep SQLite access on one connection."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None
        self._ready = Event()

    async def start(self) -> None:
        """Start the database worker and wait until the schema is ready."""
        if self.running:
            return

        self.running = True
        self.worker_task = create_task(self._worker())
        await self._ready.wait()
        if self.conn is None:
            self.running = False
            raise StoreError("start", f"could not open database at {self.db_path}")
        logger.info("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass

        if self.conn:
            self.conn.close()
            self.conn = None

        # Release any waiters so nothing hangs on a stopped queue
        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()

        logger.info("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations."""
        if not path.isfile(self.db_path):
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")
        else:
            logger.info(f"Using existing database at {self.db_path}")

        try:
            self.conn = connect(self.db_path)
            self.conn.row_factory = Row
            initialize_database(self.conn)
        except Exception as e:
            logger.error(f"Failed to open database {self.db_path}: {e}")
            if self.conn:
                self.conn.close()
            self.conn = None
            self._ready.set()
            return
        self._ready.set()

        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    method = getattr(self, operation_name, None)
                    if operation_name.startswith('_') or not callable(method):
                        self.results[operation_id] = {"error": f"Unknown operation: {operation_name}"}
                    else:
                        self.results[operation_id] = {"result": method(**params)}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    self.results[operation_id] = {"error": str(e)}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.info("Database worker cancelled")
                break

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {
            "db.operation": operation_name,
            "db.params.keys": ",".join(sorted(params.keys())) if params else "",
        },
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a named database operation.

        Raises:
            StoreError: if the store is not running or the operation failed.
        """
        if not self.running:
            raise StoreError(operation_name, "database worker is not running")

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id, None)
            if result is None:
                raise StoreError(operation_name, "database worker stopped before completing the operation")
            if "error" in result:
                raise StoreError(operation_name, result["error"])

            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Source Operations
    def list_sources(self) -> List[Dict[str, Any]]:
        """List all sources in stable order (by name, then id)."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT * FROM sources ORDER BY name, id")
            return [_source_from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def upsert_sources(self, sources: List[Dict[str, Any]]) -> int:
        """Insert or replace sources by id, keeping their fetch state.

        Args:
            sources: Validated source dicts.

        Returns:
            Number of sources written.
        """
        if not sources:
            return 0
        try:
            with self.conn:
                for source in sources:
                    self.conn.execute(
                        """
                        INSERT INTO sources (id, name, homepage, url, locale, category, logo)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            name = excluded.name,
                            homepage = excluded.homepage,
                            url = excluded.url,
                            locale = excluded.locale,
                            category = excluded.category,
                            logo = excluded.logo
                        """,
                        (
                            source['id'],
                            source['name'],
                            source['homepage'],
                            source['url'],
                            source.get('locale') or config.DEFAULT_LOCALE,
                            source.get('category'),
                            source.get('logo'),
                        ),
                    )
            logger.info(f"Upserted {len(sources)} sources")
            return len(sources)
        except Error as e:
            logger.error(f"Error upserting sources: {e}")
            raise

    def get_source_etag(self, source_id: str) -> Optional[str]:
        """Get the stored validator token for a source."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT etag FROM sources WHERE id = ?", (source_id,))
            row = cursor.fetchone()
            return row['etag'] if row else None
        finally:
            cursor.close()

    def set_fetch_info(self, source_id: str, etag: Optional[str], fetched_at: int) -> bool:
        """Record the outcome of a successful fetch (validator token + timestamp)."""
        with self.conn:
            cursor = self.conn.execute(
                "UPDATE sources SET etag = ?, last_fetched_at = ? WHERE id = ?",
                (etag, int(fetched_at), source_id),
            )
        return cursor.rowcount > 0

    # Article Operations
    def upsert_articles(self, articles: List[Dict[str, Any]]) -> int:
        """Insert articles, ignoring any whose link is already stored.

        The whole batch runs in one transaction; a duplicate link (against the
        table or earlier in the same batch) is skipped, never merged.

        Returns:
            Number of rows actually inserted.
        """
        if not articles:
            return 0
        inserted = 0
        try:
            with self.conn:
                for article in articles:
                    cursor = self.conn.execute(
                        """
                        INSERT INTO articles
                            (title, description, link, pub_date, thumbnail, source_id, categories)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(link) DO NOTHING
                        """,
                        (
                            article['title'],
                            article.get('description'),
                            article['link'],
                            int(article['pub_date']),
                            article.get('thumbnail'),
                            article['source_id'],
                            json.dumps(list(article.get('categories') or [])),
                        ),
                    )
                    if cursor.rowcount > 0:
                        inserted += 1
        except Error as e:
            logger.error(f"Error upserting {len(articles)} articles: {e}")
            raise
        logger.debug(f"Inserted {inserted} of {len(articles)} articles")
        return inserted

    def delete_articles_older_than(self, cutoff: int) -> int:
        """Delete every article whose pub_date is strictly before ``cutoff``."""
        try:
            with self.conn:
                cursor = self.conn.execute("DELETE FROM articles WHERE pub_date < ?", (int(cutoff),))
            deleted = cursor.rowcount
        except Error as e:
            logger.error(f"Error deleting articles older than {cutoff}: {e}")
            raise
        if deleted:
            logger.info(f"Retention: deleted {deleted} articles older than {cutoff}")
        return deleted

    def get_article_pub_date(self, article_id: Any) -> Optional[int]:
        """Resolve an article id to its pub_date; None when it does not exist."""
        try:
            key = int(article_id)
        except (TypeError, ValueError):
            return None
        if not SQLITE_MIN_INTEGER <= key <= SQLITE_MAX_INTEGER:
            return None
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT pub_date FROM articles WHERE id = ?", (key,))
            row = cursor.fetchone()
            return row['pub_date'] if row else None
        finally:
            cursor.close()

    def query_articles(
        self,
        limit: int,
        category: Optional[str] = None,
        locale: Optional[str] = None,
        sources: Optional[Iterable[str]] = None,
        since: Optional[int] = None,
        before: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return one page of articles joined with their source, newest first.

        Args:
            limit: Maximum rows to return.
            category: Only articles whose categories contain this tag.
            locale: Only articles whose source has this locale.
            sources: Only articles from these source ids.
            since: Inclusive lower bound on pub_date.
            before: Exclusive upper bound on pub_date (resolved cursor).
        """
        clauses: List[str] = []
        params: List[Any] = []

        if category:
            clauses.append("EXISTS (SELECT 1 FROM json_each(a.categories) WHERE json_each.value = ?)")
            params.append(category)
        if locale:
            clauses.append("s.locale = ?")
            params.append(locale)
        source_ids = [s for s in (sources or []) if s]
        if source_ids:
            placeholders = ','.join(['?' for _ in source_ids])
            clauses.append(f"a.source_id IN ({placeholders})")
            params.extend(source_ids)
        if since is not None:
            clauses.append("a.pub_date >= ?")
            params.append(int(since))
        if before is not None:
            clauses.append("a.pub_date < ?")
            params.append(int(before))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"""
            SELECT {_ARTICLE_COLUMNS}
            FROM articles a
            JOIN sources s ON s.id = a.source_id
            {where}
            ORDER BY a.pub_date DESC, a.id DESC
            LIMIT ?
        """
        params.append(int(limit))

        cursor = self.conn.cursor()
        try:
            cursor.execute(query, params)
            return [_article_from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    # Maintenance / Status Operations
    def count_articles(self) -> int:
        """Return total number of stored articles."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT COUNT(*) FROM articles")
            return int(cursor.fetchone()[0])
        finally:
            cursor.close()

    def count_sources(self) -> int:
        """Return total number of configured sources."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT COUNT(*) FROM sources")
            return int(cursor.fetchone()[0])
        finally:
            cursor.close()
