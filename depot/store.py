"""
Depot - Store Module

This file handles:
- SQLite database (one file per depot)
- The store-wide salt (created once, never changed)
- Stowing, fetching and dropping values, optionally encrypted

Database structure:
- salt: exactly one row, the 32-byte salt all sealed values derive from
- storage: one row per key; nonce is NULL for plain values
"""

import base64
import binascii
import logging
import os
import sqlite3
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidTag

from . import crypto
from .errors import (
    BadPasswordError,
    DepotIOError,
    MalformedDataError,
    NotFoundError,
    PasswordRequiredError,
    StorageError,
)

logger = logging.getLogger(__name__)

Password = Union[str, bytes]


# =============================================================================
# DATABASE SCHEMA
# =============================================================================

# Same layout the original depot tool writes, so existing files open as-is.
SCHEMA = """
CREATE TABLE IF NOT EXISTS storage (
    modified   INT  DEFAULT (strftime('%s', 'now')),
    key        TEXT UNIQUE NOT NULL,
    val        TEXT NOT NULL,
    nonce      BLOB UNIQUE
);

CREATE TABLE IF NOT EXISTS salt (
    data BLOB NOT NULL
);
"""

UPSERT = """
INSERT INTO storage (key, val, nonce)
VALUES (?, ?, ?)
ON CONFLICT (key) DO UPDATE SET
    modified = (strftime('%s', 'now')),
    val = excluded.val,
    nonce = excluded.nonce
"""


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class PlainRecord:
    """A value stored verbatim."""
    key: str
    value: str
    modified: Optional[int] = None

    encrypted = False


@dataclass(frozen=True)
class SealedRecord:
    """A value stored as base64 AES-GCM ciphertext, with its nonce."""
    key: str
    value: str
    nonce: bytes
    modified: Optional[int] = None

    encrypted = True


Record = Union[PlainRecord, SealedRecord]


def as_blob(value, what: str) -> bytes:
    """Column value as bytes. SQLite does not enforce declared column types."""
    if not isinstance(value, bytes):
        raise MalformedDataError(f"{what} is {type(value).__name__}, expected bytes")
    return value


def as_text(value, what: str) -> str:
    if not isinstance(value, str):
        raise MalformedDataError(f"{what} is {type(value).__name__}, expected text")
    return value


def record_from_row(row: sqlite3.Row) -> Record:
    """
    Build the right record variant from a storage row.

    Raises:
        MalformedDataError: val is not text or nonce is not a blob
    """
    key = row['key']
    value = as_text(row['val'], f"value for {key!r}")
    if row['nonce'] is None:
        return PlainRecord(key, value, row['modified'])
    nonce = as_blob(row['nonce'], f"nonce for {key!r}")
    return SealedRecord(key, value, nonce, row['modified'])


# =============================================================================
# DEPOT CLASS
# =============================================================================

class Depot:
    """
    Key-value store with optional per-value encryption.

    Usage:
        with Depot("depot.db") as depot:
            depot.stow("note", "buy milk")
            depot.stow("token", "s3cr3t", password="hunter2")

            depot.fetch("note")                       # 'buy milk'
            depot.fetch("token", password="hunter2")  # 's3cr3t'
            depot.fetch("token")                      # PasswordRequiredError

            depot.drop("token")
    """

    def __init__(self, db_path: str, iterations: int = crypto.PBKDF2_ITERATIONS):
        """
        Open (creating if needed) the depot at db_path.

        Args:
            db_path: Path to SQLite database file. Its directory must exist.
            iterations: PBKDF2 round count. Leave at the default for files
                written by other depot installs.

        Raises:
            DepotIOError: directory missing or file cannot be opened
            StorageError: schema or query failure
            MalformedDataError: stored salt has the wrong size or type
        """
        self.db_path = db_path
        self.iterations = iterations
        self.conn: Optional[sqlite3.Connection] = None
        self._salt: Optional[bytes] = None

        directory = os.path.dirname(os.path.abspath(db_path))
        if not os.path.isdir(directory):
            raise DepotIOError(f"directory does not exist: {directory}")

        try:
            self.conn = sqlite3.connect(db_path)
        except sqlite3.OperationalError as exc:
            raise DepotIOError(f"cannot open {db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row

        try:
            self._salt = self._load_salt()
            if self._salt is None:
                self._salt = self._initialize()
        except sqlite3.Error as exc:
            self.close()
            if os.path.isdir(db_path):
                raise DepotIOError(f"cannot open {db_path}: {exc}") from exc
            raise StorageError(str(exc)) from exc
        except Exception:
            self.close()
            raise

    def __enter__(self) -> "Depot":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection. Safe to call twice."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def stow(self, key: str, value: str, password: Optional[Password] = None) -> None:
        """
        Store value under key, replacing whatever was there.

        With a password the value is encrypted; without one it is stored
        as-is. Overwriting may switch a key between the two.

        Raises:
            BadPasswordError: encryption failed
            StorageError: the write failed
        """
        conn = self._require_open()

        if password is None:
            data, nonce = value, None
        else:
            try:
                ciphertext, nonce = crypto.encrypt(
                    password, self._salt, value.encode('utf-8'), self.iterations
                )
            except OverflowError as exc:
                raise BadPasswordError() from exc
            data = base64.b64encode(ciphertext).decode('ascii')

        try:
            with conn:
                conn.execute(UPSERT, (key, data, nonce))
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

        logger.debug("stowed %r (encrypted=%s)", key, nonce is not None)

    def record(self, key: str) -> Record:
        """
        Return the raw stored record for key, without decrypting it.

        Raises:
            NotFoundError: no such key
            MalformedDataError: val or nonce column holds the wrong type
        """
        conn = self._require_open()
        try:
            row = conn.execute(
                "SELECT key, val, nonce, modified FROM storage WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        if row is None:
            raise NotFoundError()
        return record_from_row(row)

    def fetch(self, key: str, password: Optional[Password] = None) -> str:
        """
        Return the value stored under key.

        Plain values come back unchanged and the password is ignored.
        Encrypted values need the password they were stowed with.

        Raises:
            NotFoundError: no such key
            PasswordRequiredError: value is encrypted and no password given
            BadPasswordError: decryption failed (any reason)
            MalformedDataError: stored base64 or decrypted UTF-8 is broken
        """
        rec = self.record(key)
        logger.debug("fetched %r (encrypted=%s)", key, rec.encrypted)

        if isinstance(rec, PlainRecord):
            return rec.value

        if password is None:
            raise PasswordRequiredError()

        try:
            ciphertext = base64.b64decode(rec.value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedDataError(f"invalid base64 for {key!r}: {exc}") from exc

        try:
            plaintext = crypto.decrypt(
                password, self._salt, rec.nonce, ciphertext, self.iterations
            )
        except (InvalidTag, ValueError):
            raise BadPasswordError() from None

        try:
            return plaintext.decode('utf-8')
        except UnicodeDecodeError as exc:
            raise MalformedDataError(f"invalid UTF-8 for {key!r}: {exc}") from exc

    def drop(self, key: str) -> bool:
        """
        Delete key from the depot. Dropping a missing key is not an error.

        Returns:
            True if a record was removed
        """
        conn = self._require_open()
        try:
            with conn:
                cur = conn.execute("DELETE FROM storage WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        logger.debug("dropped %r (existed=%s)", key, cur.rowcount > 0)
        return cur.rowcount > 0

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _load_salt(self) -> Optional[bytes]:
        """Return the stored salt, or None on a fresh database."""
        exists = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'salt'"
        ).fetchone()
        if not exists:
            return None
        return self._select_salt()

    def _select_salt(self) -> Optional[bytes]:
        row = self.conn.execute(
            "SELECT data FROM salt ORDER BY rowid LIMIT 1"
        ).fetchone()
        if row is None:
            return None
        salt = as_blob(row['data'], "depot salt")
        if len(salt) != crypto.SALT_SIZE:
            raise MalformedDataError(
                f"depot salt is {len(salt)} bytes, expected {crypto.SALT_SIZE}"
            )
        return salt

    def _initialize(self) -> bytes:
        """Create the schema and persist a fresh salt, once per file."""
        self.conn.executescript(SCHEMA)
        # Write lock before re-checking: a concurrent opener may have won.
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            salt = self._select_salt()
            if salt is None:
                salt = crypto.generate_salt()
                self.conn.execute("INSERT INTO salt (data) VALUES (?)", (salt,))
                logger.debug("initialized new depot at %s", self.db_path)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return salt

    def _require_open(self) -> sqlite3.Connection:
        if not self.conn:
            raise StorageError("depot is closed")
        return self.conn


def open_depot(db_path: str, iterations: int = crypto.PBKDF2_ITERATIONS) -> Depot:
    """Open the depot at db_path. Same as Depot(db_path)."""
    return Depot(db_path, iterations)
