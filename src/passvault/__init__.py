"""passvault - A local, single-user encrypted credential vault.
Uses SQLite storage, PBKDF2 key derivation and libsodium AEAD via pynacl.
"""

__version__ = "1.0.0"
