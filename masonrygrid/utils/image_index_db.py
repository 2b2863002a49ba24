"""Database caching for resolved image dimensions, shared across runs."""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DB_VERSION = 1  # Increment to force cache invalidation


class ImageIndexDB:
    """SQLite database for caching image dimensions keyed by reference."""

    def __init__(self, db_path: Path, enabled: bool = True):
        self.enabled = enabled
        self.db_path = Path(db_path)
        self.conn = None
        self._lock = threading.Lock()

        if self.enabled:
            self._init_db()

    def _init_db(self, retry: bool = True):
        """Create database and tables if they don't exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Shared by the resolver's worker threads, guarded by self._lock
            self.conn = sqlite3.connect(str(self.db_path),
                                        check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            cursor = self.conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS dimensions (
                    reference TEXT PRIMARY KEY,
                    width INTEGER NOT NULL,
                    height INTEGER NOT NULL,
                    source TEXT NOT NULL,
                    resolved_at REAL NOT NULL
                )
            ''')

            cursor.execute('SELECT value FROM meta WHERE key = ?', ('version',))
            row = cursor.fetchone()

            if row is None:
                cursor.execute('INSERT INTO meta (key, value) VALUES (?, ?)',
                               ('version', str(DB_VERSION)))
                self.conn.commit()
            elif int(row['value']) != DB_VERSION:
                # Version mismatch, clear database
                cursor.execute('DELETE FROM dimensions')
                cursor.execute('UPDATE meta SET value = ? WHERE key = ?',
                               (str(DB_VERSION), 'version'))
                self.conn.commit()

        except sqlite3.Error as e:
            logger.error('Failed to initialize dimension database %s: %s',
                         self.db_path, e)
            if self.conn:
                self.conn.close()
                self.conn = None
            if not retry:
                self.enabled = False
                return
            # If DB is corrupted, delete and retry once
            try:
                self.db_path.unlink()
            except OSError as unlink_error:
                logger.error('Could not remove corrupted database: %s',
                             unlink_error)
                self.enabled = False
                return
            self._init_db(retry=False)

    def get_cached_info(self, reference: str,
                        min_resolved_at: float = 0.0) -> Optional[dict]:
        """
        Get cached dimensions for a reference.

        Args:
            reference: Normalized image reference
            min_resolved_at: Rows resolved before this epoch time are stale

        Returns:
            Dict with width, height, source and resolved_at, or None on
            a miss or a stale row
        """
        if not self.enabled or not self.conn:
            return None

        try:
            with self._lock:
                cursor = self.conn.cursor()
                cursor.execute('''
                    SELECT width, height, source, resolved_at
                    FROM dimensions
                    WHERE reference = ?
                ''', (reference,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            logger.warning('Dimension database read error: %s', e)
            return None

        if row is None or row['resolved_at'] < min_resolved_at:
            return None
        return {
            'width': row['width'],
            'height': row['height'],
            'source': row['source'],
            'resolved_at': row['resolved_at'],
        }

    def save_info(self, reference: str, width: int, height: int,
                  source: str, resolved_at: float):
        """Upsert dimensions for a reference and commit."""
        if not self.enabled or not self.conn:
            return

        try:
            with self._lock:
                self.conn.execute('''
                    INSERT OR REPLACE INTO dimensions
                    (reference, width, height, source, resolved_at)
                    VALUES (?, ?, ?, ?, ?)
                ''', (reference, width, height, source, resolved_at))
                self.conn.commit()
        except sqlite3.Error as e:
            logger.warning('Dimension database write error: %s', e)

    def delete_info(self, reference: str):
        if not self.enabled or not self.conn:
            return
        try:
            with self._lock:
                self.conn.execute('DELETE FROM dimensions WHERE reference = ?',
                                  (reference,))
                self.conn.commit()
        except sqlite3.Error as e:
            logger.warning('Dimension database delete error: %s', e)

    def delete_older_than(self, resolved_at: float) -> int:
        """Drop rows resolved before the given epoch time."""
        if not self.enabled or not self.conn:
            return 0
        try:
            with self._lock:
                cursor = self.conn.execute(
                    'DELETE FROM dimensions WHERE resolved_at < ?',
                    (resolved_at,))
                self.conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            logger.warning('Dimension database purge error: %s', e)
            return 0

    def clear(self):
        if not self.enabled or not self.conn:
            return
        try:
            with self._lock:
                self.conn.execute('DELETE FROM dimensions')
                self.conn.commit()
        except sqlite3.Error as e:
            logger.warning('Dimension database clear error: %s', e)

    def close(self):
        """Close database connection."""
        if self.conn:
            with self._lock:
                try:
                    self.conn.commit()
                    self.conn.close()
                except sqlite3.Error as e:
                    logger.debug('Error closing dimension database: %s', e)
                self.conn = None

    def __del__(self):
        """Ensure connection is closed on deletion."""
        self.close()
