#!/usr/bin/env python3
"""Vault Manager - Lock/unlock state machine and credential CRUD.

The manager owns the derived key and the in-memory repository for one
session. Every operation runs under a single re-entrant lock for its whole
critical section, persistence included, and every mutation is written to
the store before it returns. If the write fails the mutation is undone.
"""

import threading
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from . import audit
from .audit import AuditLogger
from .crypto import PBKDF2_ITERATIONS, decrypt, derive_key, encrypt, generate_salt
from .errors import (
    AuthenticationError,
    CredentialNotFoundError,
    VaultError,
    VaultLockedError,
)
from .models import Credential, CredentialKind, CredentialPatch
from .repository import CredentialRepository
from .secure_memory import SecretBuffer
from .store import VaultRecord, VaultStore


class VaultState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class VaultManager:
    """Single-session owner of a vault's key material and credentials."""

    def __init__(
        self,
        store: VaultStore,
        audit_logger: Optional[AuditLogger] = None,
        kdf_iterations: int = PBKDF2_ITERATIONS
    ):
        """Initialize a locked manager.

        Args:
            store: Durable storage for the vault record
            audit_logger: Optional event log
            kdf_iterations: PBKDF2 cost used when creating a new vault.
                Existing vaults keep the count stored with them.

        """
        self.store = store
        self.audit_logger = audit_logger
        self.kdf_iterations = kdf_iterations

        self._mutex = threading.RLock()
        self._repository = CredentialRepository()
        self._key: Optional[SecretBuffer] = None
        self._salt: Optional[bytes] = None
        self._vault_iterations: Optional[int] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> VaultState:
        return VaultState.UNLOCKED if self._key is not None else VaultState.LOCKED

    def is_unlocked(self) -> bool:
        return self._key is not None

    def unlock(self, password: Union[str, bytes]) -> bool:
        """Unlock the vault, creating it if none exists yet.

        A wrong password is an expected outcome and is reported by
        returning False, never by raising.

        Returns:
            True if unlocked (or newly created), False on a wrong password

        Raises:
            StorageIoError: If the vault cannot be read or the initial
                record cannot be written
            VaultCorruptedError: If the stored record, or the payload it
                decrypts to, is malformed. Nothing is deleted.

        """
        with self._mutex:
            if self._key is not None:
                self._discard()

            try:
                record = self.store.load()
            except VaultError as e:
                self._audit(audit.ERROR, "UNLOCK", reason=e.code)
                raise

            if record is None:
                return self._create(password)

            key = SecretBuffer(derive_key(password, record.salt, record.kdf_iterations))
            try:
                plaintext = bytearray(decrypt(record.ciphertext, record.nonce, key.reveal()))
            except AuthenticationError:
                key.wipe()
                self._audit(audit.DENIED, "UNLOCK", reason=AuthenticationError.code)
                return False
            except VaultError as e:
                key.wipe()
                self._audit(audit.ERROR, "UNLOCK", reason=e.code)
                raise

            try:
                repository = CredentialRepository.loads(plaintext)
            except VaultError as e:
                key.wipe()
                self._audit(audit.ERROR, "UNLOCK", reason=e.code)
                raise
            finally:
                plaintext[:] = bytes(len(plaintext))

            self._install(repository, key, record.salt, record.kdf_iterations)
            self._audit(audit.ALLOWED, "UNLOCK")
            return True

    def _create(self, password: Union[str, bytes]) -> bool:
        """Start a new vault with password as its master password."""
        salt = generate_salt()
        key = SecretBuffer(derive_key(password, salt, self.kdf_iterations))
        repository = CredentialRepository()

        try:
            self._write_record(repository, key, salt, self.kdf_iterations)
        except VaultError as e:
            key.wipe()
            self._audit(audit.ERROR, "CREATE", reason=e.code)
            raise

        self._install(repository, key, salt, self.kdf_iterations)
        self._audit(audit.ALLOWED, "CREATE")
        return True

    def _install(
        self,
        repository: CredentialRepository,
        key: SecretBuffer,
        salt: bytes,
        iterations: int
    ) -> None:
        self._repository = repository
        self._key = key
        self._salt = salt
        self._vault_iterations = iterations

    def lock(self) -> None:
        """Scrub key material and secrets from memory. Always succeeds."""
        with self._mutex:
            was_unlocked = self._key is not None
            self._discard()
            if was_unlocked:
                self._audit(audit.ALLOWED, "LOCK")

    def _discard(self) -> None:
        if self._key is not None:
            self._key.wipe()
        self._key = None
        self._salt = None
        self._vault_iterations = None
        self._repository.wipe()

    def save(self) -> None:
        """Re-encrypt the whole repository under a fresh nonce and persist it.

        The salt and KDF cost recorded at creation are carried over as-is.
        """
        with self._mutex:
            self._require_unlocked()
            try:
                self._persist()
            except VaultError as e:
                self._audit(audit.ERROR, "SAVE", reason=e.code)
                raise
            self._audit(audit.ALLOWED, "SAVE")

    def reset(self) -> None:
        """Erase the persisted vault and return to Locked. Irreversible.

        Confirmation belongs to the caller; this always proceeds.
        """
        with self._mutex:
            self._discard()
            try:
                self.store.reset()
            except VaultError as e:
                self._audit(audit.ERROR, "RESET", reason=e.code)
                raise
            self._audit(audit.ALLOWED, "RESET")

    def close(self) -> None:
        """Lock and release the storage file."""
        with self._mutex:
            self.lock()
            self.store.close()

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def add_password(
        self,
        service: str,
        username: str,
        secret: Union[str, bytes],
        notes: str = "",
        tags: Iterable[str] = (),
        custom_fields: Optional[Dict[str, str]] = None
    ) -> str:
        """Store a new password entry.

        Returns:
            The new credential id

        Raises:
            VaultLockedError: If the vault is locked
            StorageIoError: If the entry could not be persisted (the
                repository is left without it)

        """
        with self._mutex:
            self._require_unlocked()
            credential = Credential.create(
                CredentialKind.PASSWORD,
                service,
                username,
                secret,
                notes=notes,
                tags=tags,
                custom_fields=custom_fields,
            )
            return self._insert(credential)

    def add_api_key(
        self,
        service: str,
        account: str,
        secret: Union[str, bytes],
        notes: str = "",
        is_active: bool = True,
        tags: Iterable[str] = (),
        custom_fields: Optional[Dict[str, str]] = None
    ) -> str:
        """Store a new API key entry. Same contract as add_password."""
        with self._mutex:
            self._require_unlocked()
            credential = Credential.create(
                CredentialKind.API_KEY,
                service,
                account,
                secret,
                notes=notes,
                tags=tags,
                is_active=is_active,
                custom_fields=custom_fields,
            )
            return self._insert(credential)

    def _insert(self, credential: Credential) -> str:
        self._repository.put(credential)
        try:
            self._persist()
        except Exception as e:
            self._repository.pop(credential.id)
            credential.wipe()
            self._audit(audit.ERROR, "ADD", credential.id, getattr(e, "code", "ERROR"))
            raise
        self._audit(audit.ALLOWED, "ADD", credential.id)
        return credential.id

    def update_credential(self, credential_id: str, patch: CredentialPatch) -> Credential:
        """Apply a patch to one credential and persist it.

        Only fields present in the patch change; updated_at always advances.

        Returns:
            A snapshot of the updated credential

        Raises:
            VaultLockedError: If the vault is locked
            CredentialNotFoundError: If no credential has this id
            StorageIoError: If persisting failed; the credential keeps its
                previous value

        """
        with self._mutex:
            self._require_unlocked()
            current = self._repository.get(credential_id)
            if current is None:
                self._audit(audit.DENIED, "UPDATE", credential_id, CredentialNotFoundError.code)
                raise CredentialNotFoundError(credential_id)

            updated = patch.apply(current)
            self._repository.put(updated)
            try:
                self._persist()
            except Exception as e:
                self._repository.put(current)
                updated.wipe()
                self._audit(audit.ERROR, "UPDATE", credential_id, getattr(e, "code", "ERROR"))
                raise

            current.wipe()
            self._audit(audit.ALLOWED, "UPDATE", credential_id)
            return updated.snapshot()

    def remove_credential(self, credential_id: str) -> None:
        """Delete one credential and persist the smaller set.

        Raises:
            VaultLockedError: If the vault is locked
            CredentialNotFoundError: If no credential has this id
            StorageIoError: If persisting failed; the credential is restored

        """
        with self._mutex:
            self._require_unlocked()
            removed = self._repository.pop(credential_id)
            if removed is None:
                self._audit(audit.DENIED, "REMOVE", credential_id, CredentialNotFoundError.code)
                raise CredentialNotFoundError(credential_id)

            try:
                self._persist()
            except Exception as e:
                self._repository.put(removed)
                self._audit(audit.ERROR, "REMOVE", credential_id, getattr(e, "code", "ERROR"))
                raise

            removed.wipe()
            self._audit(audit.ALLOWED, "REMOVE", credential_id)

    def list_credentials(self) -> List[Credential]:
        """Snapshots of every credential, by service then creation time."""
        with self._mutex:
            self._require_unlocked()
            return [credential.snapshot() for credential in self._repository.sorted()]

    def get_credential(self, credential_id: str) -> Credential:
        with self._mutex:
            self._require_unlocked()
            credential = self._repository.get(credential_id)
            if credential is None:
                raise CredentialNotFoundError(credential_id)
            return credential.snapshot()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_unlocked(self) -> None:
        if self._key is None:
            raise VaultLockedError()

    def _persist(self) -> None:
        self._write_record(self._repository, self._key, self._salt, self._vault_iterations)

    def _write_record(
        self,
        repository: CredentialRepository,
        key: SecretBuffer,
        salt: bytes,
        iterations: int
    ) -> None:
        payload = repository.dumps()
        try:
            nonce, sealed = encrypt(payload, key.reveal())
        finally:
            payload[:] = bytes(len(payload))

        self.store.save(VaultRecord(
            salt=salt,
            nonce=nonce,
            ciphertext=sealed,
            kdf_iterations=iterations,
        ))

    def _audit(
        self,
        result: str,
        action: str,
        target: str = "vault",
        reason: Optional[str] = None
    ) -> None:
        if self.audit_logger is None:
            return
        try:
            self.audit_logger.log_event(result, action, target, reason)
        except OSError:
            # An unwritable log never changes an operation's outcome
            pass
