"""Unit tests for key derivation and authenticated encryption."""

import pytest

from passvault.crypto import (
    KEY_SIZE,
    MIN_PBKDF2_ITERATIONS,
    NONCE_SIZE,
    SALT_SIZE,
    TAG_SIZE,
    decrypt,
    derive_key,
    encrypt,
    generate_salt,
)
from passvault.errors import AuthenticationError, CryptoError, MalformedInputError

from conftest import TEST_ITERATIONS


@pytest.fixture(scope="module")
def key():
    return derive_key("test_password_123", b"s" * SALT_SIZE, TEST_ITERATIONS)


def flip_bit(data: bytes, bit: int) -> bytes:
    flipped = bytearray(data)
    flipped[bit // 8] ^= 1 << (bit % 8)
    return bytes(flipped)


class TestDeriveKey:
    """Tests for PBKDF2 key derivation."""

    def test_key_length(self, key):
        assert len(key) == KEY_SIZE

    def test_deterministic(self):
        """Same password and salt always give the same key."""
        salt = generate_salt()
        assert derive_key("pw", salt, TEST_ITERATIONS) == derive_key("pw", salt, TEST_ITERATIONS)

    def test_str_and_bytes_password_agree(self):
        salt = generate_salt()
        assert derive_key("pässword", salt, TEST_ITERATIONS) == \
            derive_key("pässword".encode("utf-8"), salt, TEST_ITERATIONS)

    def test_different_salts_different_keys(self):
        assert derive_key("pw", generate_salt(), TEST_ITERATIONS) != \
            derive_key("pw", generate_salt(), TEST_ITERATIONS)

    def test_different_passwords_different_keys(self):
        salt = generate_salt()
        assert derive_key("pw1", salt, TEST_ITERATIONS) != derive_key("pw2", salt, TEST_ITERATIONS)

    def test_iteration_count_matters(self):
        salt = generate_salt()
        assert derive_key("pw", salt, MIN_PBKDF2_ITERATIONS) != \
            derive_key("pw", salt, MIN_PBKDF2_ITERATIONS + 1)

    def test_too_few_iterations_rejected(self):
        with pytest.raises(CryptoError):
            derive_key("pw", generate_salt(), MIN_PBKDF2_ITERATIONS - 1)

    def test_empty_salt_rejected(self):
        with pytest.raises(CryptoError):
            derive_key("pw", b"", TEST_ITERATIONS)


class TestGenerateSalt:
    """Tests for salt generation."""

    def test_salt_length(self):
        assert len(generate_salt()) == SALT_SIZE

    def test_salts_unique(self):
        assert len({generate_salt() for _ in range(100)}) == 100


class TestEncrypt:
    """Tests for sealing payloads."""

    def test_output_shape(self, key):
        nonce, sealed = encrypt(b"hello", key)
        assert len(nonce) == NONCE_SIZE
        assert len(sealed) == len(b"hello") + TAG_SIZE

    def test_ciphertext_differs_from_plaintext(self, key):
        plaintext = b"A" * 64
        _, sealed = encrypt(plaintext, key)
        assert plaintext not in sealed

    def test_same_plaintext_different_output(self, key):
        """Fresh nonce per call means repeated plaintexts seal differently."""
        first = encrypt(b"same", key)
        second = encrypt(b"same", key)
        assert first[0] != second[0]
        assert first[1] != second[1]

    def test_nonce_uniqueness(self, key):
        """No nonce repeats across 10,000 encryptions under one key."""
        nonces = {encrypt(b"x", key)[0] for _ in range(10_000)}
        assert len(nonces) == 10_000

    def test_accepts_bytearray(self, key):
        nonce, sealed = encrypt(bytearray(b"buffer"), key)
        assert decrypt(sealed, nonce, key) == b"buffer"

    @pytest.mark.parametrize("bad_len", [0, 16, 31, 33])
    def test_wrong_key_length(self, bad_len):
        with pytest.raises(CryptoError):
            encrypt(b"data", b"k" * bad_len)


class TestDecrypt:
    """Tests for opening sealed payloads."""

    @pytest.mark.parametrize("length", list(range(0, 65)) + [255, 256, 4096])
    def test_round_trip(self, key, length):
        plaintext = bytes(range(256)) * (length // 256 + 1)
        plaintext = plaintext[:length]
        nonce, sealed = encrypt(plaintext, key)
        assert decrypt(sealed, nonce, key) == plaintext

    def test_wrong_key_fails(self, key):
        nonce, sealed = encrypt(b"secret", key)
        other = derive_key("other_password", b"s" * SALT_SIZE, TEST_ITERATIONS)
        with pytest.raises(AuthenticationError):
            decrypt(sealed, nonce, other)

    def test_tampered_sealed_fails_every_bit(self, key):
        """Flipping any single bit of ciphertext or tag is detected."""
        nonce, sealed = encrypt(b"tamper me", key)
        for bit in range(len(sealed) * 8):
            with pytest.raises(AuthenticationError):
                decrypt(flip_bit(sealed, bit), nonce, key)

    def test_tampered_nonce_fails_every_bit(self, key):
        nonce, sealed = encrypt(b"tamper me", key)
        for bit in range(NONCE_SIZE * 8):
            with pytest.raises(AuthenticationError):
                decrypt(sealed, flip_bit(nonce, bit), key)

    def test_authentication_error_is_opaque(self, key):
        """Failure carries no cause that could hint at what was wrong."""
        nonce, sealed = encrypt(b"secret", key)
        with pytest.raises(AuthenticationError) as exc_info:
            decrypt(flip_bit(sealed, 0), nonce, key)
        assert exc_info.value.__cause__ is None
        assert exc_info.value.__suppress_context__

    @pytest.mark.parametrize("nonce_len", [0, 11, 13, 24])
    def test_bad_nonce_length_is_malformed(self, key, nonce_len):
        _, sealed = encrypt(b"secret", key)
        with pytest.raises(MalformedInputError) as exc_info:
            decrypt(sealed, b"n" * nonce_len, key)
        assert not isinstance(exc_info.value, AuthenticationError)

    @pytest.mark.parametrize("sealed_len", [0, 1, TAG_SIZE - 1])
    def test_short_sealed_is_malformed(self, key, sealed_len):
        with pytest.raises(MalformedInputError):
            decrypt(b"c" * sealed_len, b"n" * NONCE_SIZE, key)

    def test_tag_only_payload_is_not_malformed(self, key):
        """Exactly TAG_SIZE bytes is a legal (empty) payload shape."""
        with pytest.raises(AuthenticationError):
            decrypt(b"c" * TAG_SIZE, b"n" * NONCE_SIZE, key)

    def test_wrong_key_length(self, key):
        nonce, sealed = encrypt(b"secret", key)
        with pytest.raises(CryptoError):
            decrypt(sealed, nonce, key[:16])
