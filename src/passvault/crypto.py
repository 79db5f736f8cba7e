#!/usr/bin/env python3
"""Vault Crypto - Password-based key derivation and authenticated encryption.

Keys come from PBKDF2-HMAC-SHA256 (cryptography). Payloads are sealed with
ChaCha20-Poly1305 IETF from libsodium via pynacl, which takes a 96-bit nonce
and appends a 128-bit tag.
"""

from typing import Tuple, Union

import nacl.bindings
import nacl.exceptions
import nacl.utils
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationError, CryptoError, MalformedInputError

# Constants
SALT_SIZE = 32
KEY_SIZE = nacl.bindings.crypto_aead_chacha20poly1305_ietf_KEYBYTES  # 32
NONCE_SIZE = nacl.bindings.crypto_aead_chacha20poly1305_ietf_NPUBBYTES  # 12
TAG_SIZE = nacl.bindings.crypto_aead_chacha20poly1305_ietf_ABYTES  # 16
PBKDF2_ITERATIONS = 600_000
MIN_PBKDF2_ITERATIONS = 100_000


def generate_salt() -> bytes:
    """Generate a fresh vault salt. Called once per vault, never on save."""
    return nacl.utils.random(SALT_SIZE)


def derive_key(
    password: Union[bytes, str],
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """Derive a 32-byte key from a master password with PBKDF2-HMAC-SHA256.

    Deterministic for identical inputs, which is what lets the same master
    password reopen the vault on every unlock.

    Args:
        password: Master password (str is UTF-8 encoded)
        salt: The vault's salt
        iterations: PBKDF2 iteration count, at least MIN_PBKDF2_ITERATIONS

    Returns:
        KEY_SIZE bytes of key material

    Raises:
        CryptoError: If the iteration count is below the minimum or the
            salt is empty

    """
    if iterations < MIN_PBKDF2_ITERATIONS:
        raise CryptoError(
            f"PBKDF2 iterations must be at least {MIN_PBKDF2_ITERATIONS}"
        )
    if not salt:
        raise CryptoError("Salt must not be empty")

    if isinstance(password, str):
        password = password.encode("utf-8")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=bytes(salt),
        iterations=iterations,
    )
    return kdf.derive(bytes(password))


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise CryptoError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")


def encrypt(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
    """Seal plaintext under key with a fresh random nonce.

    A nonce is drawn from the CSPRNG on every call and is never accepted
    from the caller, so a (key, nonce) pair cannot be replayed.

    Returns:
        Tuple of (nonce, sealed) where sealed is ciphertext || tag

    """
    _check_key(key)
    nonce = nacl.utils.random(NONCE_SIZE)
    try:
        sealed = nacl.bindings.crypto_aead_chacha20poly1305_ietf_encrypt(
            bytes(plaintext), None, nonce, bytes(key)
        )
    except nacl.exceptions.CryptoError as e:
        raise CryptoError(f"Encryption failed: {e}") from e
    return nonce, sealed


def decrypt(sealed: bytes, nonce: bytes, key: bytes) -> bytes:
    """Open a sealed payload.

    Raises:
        MalformedInputError: If the nonce or sealed payload has an
            impossible length (checked before any cipher work)
        AuthenticationError: If the tag does not verify, whether from a
            wrong key or tampered bytes
        CryptoError: If the key has the wrong length

    """
    if len(nonce) != NONCE_SIZE:
        raise MalformedInputError(
            f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}"
        )
    if len(sealed) < TAG_SIZE:
        raise MalformedInputError(
            f"Sealed payload shorter than the {TAG_SIZE}-byte tag"
        )
    _check_key(key)

    try:
        return nacl.bindings.crypto_aead_chacha20poly1305_ietf_decrypt(
            bytes(sealed), None, bytes(nonce), bytes(key)
        )
    except nacl.exceptions.CryptoError:
        # No chaining: the cause must not leak which input was wrong
        raise AuthenticationError() from None
