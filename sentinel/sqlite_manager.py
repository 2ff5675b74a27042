"""
Thread-safe SQLite connection manager for Content Sentinel.

The scheduler verifies items on a thread pool, so every worker thread gets
its own connection:
- Thread-local connections, one per worker thread
- WAL mode so readers never block the writer
- Tuned PRAGMA settings and periodic PRAGMA optimize
"""

import sqlite3
import threading
import logging
import time
import contextlib
from typing import Dict, Any, Optional, Generator, List
from pathlib import Path

from sentinel.constants import SQLITE_TIMEOUT_SECONDS

OPTIMIZE_INTERVAL_SECONDS = 300


class ThreadLocalSQLiteManager:
    """
    SQLite connection manager using thread-local storage.

    Every connection opened through the manager is tracked so that
    close_all() can release connections created by pool threads that have
    already finished.
    """

    def __init__(self, db_path: str, timeout: float = SQLITE_TIMEOUT_SECONDS):
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._local = threading.local()
        self._lock = threading.RLock()
        self._connections: List[sqlite3.Connection] = []
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.pragma_settings = {
            'journal_mode': 'WAL',
            'synchronous': 'NORMAL',
            'cache_size': -64000,  # 64MB cache
            'temp_store': 'MEMORY',
            'foreign_keys': 'ON',
        }

        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local SQLite connection with tuned settings."""
        if getattr(self._local, 'connection', None) is None:
            self._logger.debug(f"Creating new SQLite connection for thread {threading.current_thread().ident}")

            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                check_same_thread=False  # Closed from close_all() on another thread
            )
            conn.row_factory = sqlite3.Row

            cursor = conn.cursor()
            for pragma, value in self.pragma_settings.items():
                cursor.execute(f"PRAGMA {pragma}={value}")

            cursor.execute("PRAGMA journal_mode")
            journal_mode = cursor.fetchone()[0]
            if journal_mode.upper() != 'WAL':
                self._logger.warning(f"Failed to enable WAL mode, using {journal_mode}")

            self._local.connection = conn
            self._local.last_optimize = time.time()
            with self._lock:
                self._connections.append(conn)

        return self._local.connection

    @contextlib.contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for getting thread-local SQLite connection.

        Usage:
            with sqlite_manager.get_connection() as conn:
                conn.execute("UPDATE content SET available = ? WHERE content_id = ?", (1, cid))
                conn.commit()
        """
        conn = self._get_connection()
        try:
            yield conn
        except Exception as e:
            conn.rollback()
            self._logger.error(f"SQLite operation failed, rolling back: {e}")
            raise
        finally:
            if time.time() - getattr(self._local, 'last_optimize', time.time()) > OPTIMIZE_INTERVAL_SECONDS:
                try:
                    conn.execute("PRAGMA optimize")
                    self._local.last_optimize = time.time()
                    self._logger.debug("Performed periodic database optimization")
                except sqlite3.Error as e:
                    self._logger.warning(f"Failed to optimize database: {e}")

    def fetch_one(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        """Execute query and fetch one result."""
        with self.get_connection() as conn:
            return conn.execute(query, params).fetchone()

    def fetch_all(self, query: str, params: tuple = ()) -> list:
        """Execute query and fetch all results."""
        with self.get_connection() as conn:
            return conn.execute(query, params).fetchall()

    def get_connection_info(self) -> Dict[str, Any]:
        """Get information about the database for status output."""
        try:
            with self.get_connection() as conn:
                info = {'database_path': str(self.db_path)}
                for pragma in ('journal_mode', 'page_count', 'page_size'):
                    row = conn.execute(f"PRAGMA {pragma}").fetchone()
                    info[pragma] = row[0] if row else None

                if info.get('page_count') and info.get('page_size'):
                    info['size_mb'] = info['page_count'] * info['page_size'] / (1024 * 1024)
                return info

        except sqlite3.Error as e:
            self._logger.error(f"Failed to get connection info: {e}")
            return {'error': str(e)}

    def close_all(self):
        """Close every connection this manager has opened."""
        with self._lock:
            connections, self._connections = self._connections, []

        for conn in connections:
            try:
                conn.execute("PRAGMA optimize")
                conn.close()
            except sqlite3.Error as e:
                self._logger.warning(f"Error closing SQLite connection: {e}")

        self._local = threading.local()
        self._logger.debug(f"Closed {len(connections)} SQLite connection(s)")
