#!/usr/bin/env python3
"""Secure Memory - Wipe-on-release container for key material and secrets.

Python's garbage collector makes no promise that freed bytes are scrubbed,
so anything holding a derived key or a plaintext secret lives in a mutable
buffer that its owner overwrites explicitly when done with it.
"""

import hmac
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview, str]


class SecretBuffer:
    """Mutable byte buffer that is zeroed in place on wipe()."""

    __slots__ = ("_data",)

    def __init__(self, data: BytesLike = b""):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._data = bytearray(data)
        # Scrub a caller's mutable source once we hold our own copy
        if isinstance(data, bytearray):
            data[:] = bytes(len(data))

    def reveal(self) -> bytes:
        """Return an immutable copy of the contents.

        The copy cannot be wiped, so keep its lifetime short.
        """
        return bytes(self._data)

    def copy(self) -> "SecretBuffer":
        return SecretBuffer(bytes(self._data))

    def wipe(self) -> None:
        """Overwrite every byte with zero, then release the storage."""
        if self._data:
            self._data[:] = bytes(len(self._data))
            self._data.clear()

    @property
    def wiped(self) -> bool:
        return not self._data

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other) -> bool:
        if isinstance(other, SecretBuffer):
            return hmac.compare_digest(self._data, other._data)
        if isinstance(other, (bytes, bytearray)):
            return hmac.compare_digest(self._data, other)
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"<SecretBuffer len={len(self._data)}>"

    def __del__(self):
        if hasattr(self, "_data"):
            self.wipe()
