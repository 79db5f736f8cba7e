#!/usr/bin/env python3
"""Vault Store - Durable storage of the single encrypted vault record.

The record lives in one row of a SQLite file. Every save replaces that row
inside a transaction, so a crash leaves either the previous record or the
new one. The store never sees plaintext.
"""

import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .crypto import MIN_PBKDF2_ITERATIONS, NONCE_SIZE, SALT_SIZE, TAG_SIZE
from .errors import StorageIoError, VaultCorruptedError

SCHEMA = """
    CREATE TABLE IF NOT EXISTS vault (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        salt BLOB NOT NULL,
        nonce BLOB NOT NULL,
        ciphertext BLOB NOT NULL,
        kdf_iterations INTEGER NOT NULL,
        updated TEXT NOT NULL
    )
"""

# SQLite companion files removed together with the vault on reset
SIDECAR_SUFFIXES = ("-journal", "-wal", "-shm")

# Primary SQLite result codes that mean the medium failed, not the content:
# SQLITE_BUSY, SQLITE_LOCKED, SQLITE_IOERR, SQLITE_FULL, SQLITE_CANTOPEN
IO_RESULT_CODES = {5, 6, 10, 13, 14}
IO_ERROR_MESSAGES = (
    "disk I/O error",
    "database or disk is full",
    "unable to open database file",
    "database is locked",
    "database table is locked",
)


@dataclass(frozen=True)
class VaultRecord:
    """The sole durable artifact: salt, latest nonce and sealed payload."""

    salt: bytes
    nonce: bytes
    ciphertext: bytes
    kdf_iterations: int


def set_permissions(path, mode=0o600):
    """Set file permissions."""
    os.chmod(path, mode)


def is_io_error(error: sqlite3.Error) -> bool:
    """True if error reports a failing medium rather than malformed data."""
    code = getattr(error, "sqlite_errorcode", None)
    if code is not None:
        return code & 0xFF in IO_RESULT_CODES
    message = str(error)
    return any(m in message for m in IO_ERROR_MESSAGES)


class VaultStore:
    """SQLite-backed storage for exactly one VaultRecord."""

    def __init__(self, vault_path: Path):
        self.vault_path = Path(vault_path)
        self.conn: Optional[sqlite3.Connection] = None
        self.lock = threading.Lock()

    def _connect(self) -> sqlite3.Connection:
        """Open the vault file and take an exclusive lock on it.

        Another process holding the vault makes this fail immediately
        instead of sharing the file.
        """
        if self.conn is not None:
            return self.conn

        try:
            if not self.vault_path.parent.exists():
                self.vault_path.parent.mkdir(mode=0o700, parents=True)
            # Access is serialized by self.lock, so threads may share it
            conn = sqlite3.connect(
                str(self.vault_path),
                timeout=0,
                isolation_level=None,
                check_same_thread=False,
            )
        except OSError as e:
            raise StorageIoError(f"Cannot open vault {self.vault_path}: {e}") from e
        except sqlite3.Error as e:
            raise StorageIoError(f"Cannot open vault {self.vault_path}: {e}") from e

        try:
            conn.execute("PRAGMA locking_mode = EXCLUSIVE")
            conn.execute("PRAGMA synchronous = FULL")
            conn.execute("BEGIN EXCLUSIVE")
            conn.execute(SCHEMA)
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            conn.close()
            if "locked" in str(e) or "busy" in str(e):
                raise StorageIoError(
                    f"Vault is in use by another process: {self.vault_path}"
                ) from e
            raise StorageIoError(f"Cannot open vault {self.vault_path}: {e}") from e
        except sqlite3.DatabaseError as e:
            conn.close()
            raise VaultCorruptedError(
                f"Vault file is not a valid vault database: {e}"
            ) from e

        try:
            set_permissions(self.vault_path)
        except OSError as e:
            conn.close()
            raise StorageIoError(f"Cannot secure vault {self.vault_path}: {e}") from e
        self.conn = conn
        return conn

    def load(self) -> Optional[VaultRecord]:
        """Load the stored record.

        Returns:
            The VaultRecord, or None if no vault was ever created

        Raises:
            VaultCorruptedError: If the stored row does not have the
                expected shape. The data is left in place.
            StorageIoError: If the file cannot be read

        """
        with self.lock:
            if self.conn is None and not self.vault_path.exists():
                return None

            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT salt, nonce, ciphertext, kdf_iterations FROM vault WHERE id = 1"
                ).fetchone()
            except sqlite3.DatabaseError as e:
                if is_io_error(e):
                    raise StorageIoError(f"Cannot read vault {self.vault_path}: {e}") from e
                raise VaultCorruptedError(f"Vault table is unreadable: {e}") from e

        if row is None:
            return None

        salt, nonce, ciphertext, kdf_iterations = row
        if not all(isinstance(v, bytes) for v in (salt, nonce, ciphertext)):
            raise VaultCorruptedError("Vault record fields have the wrong type")
        if len(salt) != SALT_SIZE:
            raise VaultCorruptedError(f"Vault salt must be {SALT_SIZE} bytes")
        if len(nonce) != NONCE_SIZE:
            raise VaultCorruptedError(f"Vault nonce must be {NONCE_SIZE} bytes")
        if len(ciphertext) < TAG_SIZE:
            raise VaultCorruptedError("Vault ciphertext is truncated")
        if not isinstance(kdf_iterations, int) or kdf_iterations < MIN_PBKDF2_ITERATIONS:
            raise VaultCorruptedError("Vault KDF iteration count is invalid")

        return VaultRecord(
            salt=salt,
            nonce=nonce,
            ciphertext=ciphertext,
            kdf_iterations=kdf_iterations,
        )

    def save(self, record: VaultRecord) -> None:
        """Atomically replace the stored record.

        Raises:
            StorageIoError: If the write fails; the previous record is kept

        """
        now = datetime.now(timezone.utc).isoformat()

        with self.lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                conn.execute(
                    """INSERT OR REPLACE INTO vault (id, salt, nonce, ciphertext, kdf_iterations, updated)
                       VALUES (1, ?, ?, ?, ?, ?)""",
                    (record.salt, record.nonce, record.ciphertext, record.kdf_iterations, now)
                )
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    try:
                        conn.execute("ROLLBACK")
                    except sqlite3.Error:
                        pass
                raise StorageIoError(f"Failed to write vault: {e}") from e

    def reset(self) -> None:
        """Erase the vault file and its journals. Irreversible."""
        with self.lock:
            self._close()
            paths = [self.vault_path] + [
                self.vault_path.with_name(self.vault_path.name + suffix)
                for suffix in SIDECAR_SUFFIXES
            ]
            try:
                for path in paths:
                    if path.exists():
                        path.unlink()
            except OSError as e:
                raise StorageIoError(f"Failed to erase vault: {e}") from e

    def close(self) -> None:
        """Release the file lock."""
        with self.lock:
            self._close()

    def _close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
