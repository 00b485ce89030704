"""
Durable on-device key/value storage for the Timesheet client.

The sync engine keeps its snapshot, timestamp and version token here and the
timer store keeps the active timer, each under its own key.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from shared.errors import TimesheetError
from shared.utils import get_data_path


class LocalStoreException(TimesheetError):
    """Raised when the local store cannot be read or written"""
    pass


class LocalStore:
    """Key/value contract shared by all local store implementations"""

    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    def set(self, key: str, value: bytes) -> None:
        raise NotImplementedError

    def set_many(self, items: Dict[str, bytes]) -> None:
        """Write several keys together; stores that can, do it atomically"""
        for key, value in items.items():
            self.set(key, value)

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        raise NotImplementedError

    def set_setting(self, key: str, value: str) -> None:
        raise NotImplementedError

    # Text helpers used by engine and timer store
    def get_text(self, key: str) -> Optional[str]:
        raw = self.get(key)
        return raw.decode('utf-8') if raw is not None else None

    def set_text(self, key: str, value: str) -> None:
        self.set(key, value.encode('utf-8'))


class SQLiteStore(LocalStore):
    """Local store backed by a SQLite file (one row per key)"""

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.db_path = Path(db_path) if db_path else get_data_path('timesheet.db')
        self.init_database()

    def get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory"""
        conn = sqlite3.connect(str(self.db_path))
        # Wait up to 5s on locks held by another process
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self):
        """Create the key/value and settings tables"""
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LocalStoreException(f"Failed to initialize local store: {e}")
        finally:
            conn.close()

    def get(self, key: str) -> Optional[bytes]:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return bytes(row['value']) if row else None
        except sqlite3.Error as e:
            raise LocalStoreException(f"Failed to read {key}: {e}")
        finally:
            conn.close()

    def set(self, key: str, value: bytes) -> None:
        conn = self.get_connection()
        try:
            conn.execute("""
                INSERT OR REPLACE INTO kv (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
            """, (key, sqlite3.Binary(value)))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LocalStoreException(f"Failed to write {key}: {e}")
        finally:
            conn.close()

    def set_many(self, items: Dict[str, bytes]) -> None:
        conn = self.get_connection()
        try:
            conn.executemany("""
                INSERT OR REPLACE INTO kv (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
            """, list(items.items()))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LocalStoreException(f"Failed to write {', '.join(items)}: {e}")
        finally:
            conn.close()

    def remove(self, key: str) -> None:
        conn = self.get_connection()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LocalStoreException(f"Failed to remove {key}: {e}")
        finally:
            conn.close()

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a setting value from the database"""
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            return row['value'] if row else default
        finally:
            conn.close()

    def set_setting(self, key: str, value: str) -> None:
        """Set a setting value in the database"""
        conn = self.get_connection()
        try:
            conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value))
            conn.commit()
        finally:
            conn.close()


class MemoryStore(LocalStore):
    """In-process store; nothing survives the process"""

    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._settings: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def set_many(self, items: Dict[str, bytes]) -> None:
        with self._lock:
            self._data.update((key, bytes(value)) for key, value in items.items())

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._settings.get(key, default)

    def set_setting(self, key: str, value: str) -> None:
        with self._lock:
            self._settings[key] = value
