#!/usr/bin/env python3
"""Vault Errors - Closed error taxonomy shared by every layer.

Each exception carries a stable ``code`` so front ends can branch on the
kind of failure instead of matching message text.
"""

from typing import Optional

# Error codes
ERROR_CODES = {
    "VAULT_ERROR": "Vault error",
    "AUTH_FAILED": "Authentication failed",
    "VAULT_LOCKED": "Vault is locked",
    "NOT_FOUND": "Credential not found",
    "STORAGE_IO": "Vault storage error",
    "VAULT_CORRUPTED": "Vault data is corrupted",
    "CRYPTO_ERROR": "Cryptographic error",
    "MALFORMED_INPUT": "Malformed ciphertext or nonce",
}


class VaultError(Exception):
    """Base class for all vault errors."""

    code = "VAULT_ERROR"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or ERROR_CODES[self.code])


class AuthenticationError(VaultError):
    """Ciphertext failed authentication.

    Deliberately carries no detail: a wrong key and tampered bytes look the
    same from here.
    """

    code = "AUTH_FAILED"


class VaultLockedError(VaultError):
    """Operation requires an unlocked vault."""

    code = "VAULT_LOCKED"


class CredentialNotFoundError(VaultError):
    """No credential with the requested id."""

    code = "NOT_FOUND"

    def __init__(self, credential_id: str):
        self.credential_id = credential_id
        super().__init__(f"Credential not found: {credential_id}")


class StorageIoError(VaultError):
    """The storage medium failed or the vault is held by another process."""

    code = "STORAGE_IO"


class VaultCorruptedError(VaultError):
    """Stored or decrypted bytes do not have the expected structure."""

    code = "VAULT_CORRUPTED"


class CryptoError(VaultError):
    """Invalid key material or an internal cipher failure."""

    code = "CRYPTO_ERROR"


class MalformedInputError(CryptoError):
    """Nonce or sealed payload has an impossible length."""

    code = "MALFORMED_INPUT"
