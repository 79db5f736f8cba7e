"""Unit tests for the wipe-on-release secret buffer."""

from passvault.secure_memory import SecretBuffer


class TestSecretBuffer:
    """Tests for SecretBuffer."""

    def test_reveal(self):
        assert SecretBuffer(b"abc").reveal() == b"abc"

    def test_str_is_utf8_encoded(self):
        assert SecretBuffer("pässword").reveal() == "pässword".encode("utf-8")

    def test_bytearray_source_is_scrubbed(self):
        source = bytearray(b"hunter2")
        buf = SecretBuffer(source)
        assert buf.reveal() == b"hunter2"
        assert source == bytearray(7)

    def test_wipe_zeroes_in_place(self):
        buf = SecretBuffer(b"top-secret")
        backing = buf._data
        buf.wipe()
        assert buf.wiped
        assert len(buf) == 0
        # The same bytearray object was overwritten, not replaced
        assert backing is buf._data
        assert bytes(backing) == b""

    def test_wipe_is_idempotent(self):
        buf = SecretBuffer(b"x")
        buf.wipe()
        buf.wipe()
        assert buf.reveal() == b""

    def test_copy_is_independent(self):
        original = SecretBuffer(b"abc")
        duplicate = original.copy()
        original.wipe()
        assert duplicate.reveal() == b"abc"

    def test_equality(self):
        assert SecretBuffer(b"abc") == SecretBuffer(b"abc")
        assert SecretBuffer(b"abc") == b"abc"
        assert SecretBuffer(b"abc") != SecretBuffer(b"abd")

    def test_repr_hides_contents(self):
        assert "hunter2" not in repr(SecretBuffer(b"hunter2"))
        assert "len=7" in repr(SecretBuffer(b"hunter2"))
