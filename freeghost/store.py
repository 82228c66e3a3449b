"""Encrypted key-value store backed by an SQLite file inside a directory."""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

from freeghost.cipher import StorageCipher
from freeghost.errors import DatabaseError, InvalidFormatError, StorageError

logger = logging.getLogger(__name__)

_DB_FILE = "store.db"
_BACKUP_PREFIX = "backup-"
_BACKUP_SUFFIX = ".db"


def _key(key) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key)
    raise TypeError("store keys must be str or bytes")


def _serialize(value) -> bytes:
    try:
        return json.dumps(value, separators=(",", ":"), allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise InvalidFormatError(str(exc)) from exc


def _deserialize(data: bytes):
    try:
        return json.loads(data.decode("utf-8"))
    except ValueError as exc:
        raise InvalidFormatError(str(exc)) from exc


def _backup_numbers(directory: Path) -> list[int]:
    numbers = []
    for entry in directory.glob(f"{_BACKUP_PREFIX}*{_BACKUP_SUFFIX}"):
        tail = entry.name[len(_BACKUP_PREFIX):-len(_BACKUP_SUFFIX)]
        if tail.isdigit():
            numbers.append(int(tail))
    return numbers


class WriteBatch:
    """Puts and deletes collected to be written in one transaction."""

    def __init__(self) -> None:
        self._ops: list[tuple[bytes, bytes | None]] = []

    def put(self, key, value) -> None:
        self._ops.append((_key(key), _serialize(value)))

    def delete(self, key) -> None:
        self._ops.append((_key(key), None))

    def __len__(self) -> int:
        return len(self._ops)


class EncryptedStore:
    """Stores JSON-serialisable values encrypted with a StorageCipher."""

    def __init__(self, path, key) -> None:
        self.path = Path(path)
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create storage directory: {exc}") from exc
        self._cipher = StorageCipher(key)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                self.path / _DB_FILE, check_same_thread=False, isolation_level=None
            )
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS entries (key BLOB PRIMARY KEY, value BLOB NOT NULL)"
            )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Failed to open database: {exc}") from exc

    @classmethod
    def from_config(cls, config) -> "EncryptedStore":
        """Open the store described by a StorageConfig."""
        return cls(config.path, config.encryption_key)

    @contextmanager
    def _database(self, action: str):
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise DatabaseError(f"{action} failed: {exc}") from exc

    @staticmethod
    @contextmanager
    def _transaction(conn: sqlite3.Connection):
        conn.execute("BEGIN")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def store(self, key, value) -> None:
        encrypted = self._cipher.encrypt(_serialize(value))
        with self._database("Database write") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO entries (key, value) VALUES (?, ?)",
                (_key(key), encrypted),
            )

    def retrieve(self, key):
        """Return the stored value, or None when the key is absent."""
        with self._database("Database read") as conn:
            row = conn.execute("SELECT value FROM entries WHERE key = ?", (_key(key),)).fetchone()
            cipher = self._cipher
        if row is None:
            return None
        return _deserialize(cipher.decrypt(row[0]))

    def delete(self, key) -> None:
        with self._database("Database delete") as conn:
            conn.execute("DELETE FROM entries WHERE key = ?", (_key(key),))

    def keys_with_prefix(self, prefix) -> list[bytes]:
        wanted = _key(prefix)
        with self._database("Database read") as conn:
            rows = conn.execute("SELECT key FROM entries ORDER BY key").fetchall()
        return [bytes(row[0]) for row in rows if bytes(row[0]).startswith(wanted)]

    @contextmanager
    def batch(self):
        """Collect writes in a WriteBatch and apply them atomically on exit."""
        pending = WriteBatch()
        yield pending
        with self._database("Batch operation") as conn:
            rows = [
                (key, None if data is None else self._cipher.encrypt(data))
                for key, data in pending._ops
            ]
            with self._transaction(conn):
                for key, encrypted in rows:
                    if encrypted is None:
                        conn.execute("DELETE FROM entries WHERE key = ?", (key,))
                    else:
                        conn.execute(
                            "INSERT OR REPLACE INTO entries (key, value) VALUES (?, ?)",
                            (key, encrypted),
                        )

    def rotate_encryption_key(self, new_key) -> None:
        """Re-encrypt every record under ``new_key`` and switch to it."""
        new_cipher = StorageCipher(new_key)
        with self._database("Key rotation") as conn:
            rows = conn.execute("SELECT key, value FROM entries").fetchall()
            updated = [
                (new_cipher.encrypt(self._cipher.decrypt(value)), key) for key, value in rows
            ]
            with self._transaction(conn):
                conn.executemany("UPDATE entries SET value = ? WHERE key = ?", updated)
            self._cipher = new_cipher

    def backup(self, backup_path) -> Path:
        """Write a new numbered backup into ``backup_path`` and return its file."""
        target = Path(backup_path)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create backup directory: {exc}") from exc
        with self._database("Backup creation") as conn:
            number = max(_backup_numbers(target), default=0) + 1
            destination = target / f"{_BACKUP_PREFIX}{number}{_BACKUP_SUFFIX}"
            dest_conn = sqlite3.connect(destination)
            try:
                conn.backup(dest_conn)
            finally:
                dest_conn.close()
        logger.info("Created backup at %s", target)
        return destination

    def restore(self, backup_path) -> None:
        """Replace the store's contents with the latest backup in ``backup_path``."""
        source = Path(backup_path)
        if not source.exists():
            raise StorageError("Backup path does not exist")
        numbers = _backup_numbers(source)
        if not numbers:
            raise StorageError("No backup found")
        latest = source / f"{_BACKUP_PREFIX}{max(numbers)}{_BACKUP_SUFFIX}"
        with self._database("Restore") as conn:
            src_conn = sqlite3.connect(latest)
            try:
                src_conn.backup(conn)
            finally:
                src_conn.close()
        logger.info("Restored from backup at %s", source)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "EncryptedStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()