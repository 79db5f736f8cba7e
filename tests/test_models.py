"""Unit tests for credential models and patches."""

from datetime import timedelta

import pytest

from passvault.models import Credential, CredentialKind, CredentialPatch, normalize_tags


@pytest.fixture
def credential():
    return Credential.create(
        CredentialKind.PASSWORD,
        "github",
        "alice",
        "s3cr3t",
        notes="work",
        tags=["dev", "code"],
        custom_fields={"recovery": "codes in safe"},
    )


class TestCredentialCreate:
    """Tests for Credential.create."""

    def test_fields(self, credential):
        assert credential.kind == CredentialKind.PASSWORD
        assert credential.service == "github"
        assert credential.principal == "alice"
        assert credential.secret == b"s3cr3t"
        assert credential.tags == ["dev", "code"]
        assert credential.custom_fields == {"recovery": "codes in safe"}
        assert credential.created_at == credential.updated_at
        assert credential.created_at.tzinfo is not None

    def test_unique_ids(self):
        ids = {
            Credential.create(CredentialKind.PASSWORD, "s", "u", "p").id
            for _ in range(100)
        }
        assert len(ids) == 100

    def test_password_entries_always_active(self):
        credential = Credential.create(CredentialKind.PASSWORD, "s", "u", "p", is_active=False)
        assert credential.is_active is True

    def test_api_key_active_flag(self):
        credential = Credential.create(CredentialKind.API_KEY, "s", "acct", "k", is_active=False)
        assert credential.is_active is False

    def test_custom_fields_copied(self):
        fields = {"a": "1"}
        credential = Credential.create(CredentialKind.PASSWORD, "s", "u", "p", custom_fields=fields)
        fields["b"] = "2"
        assert credential.custom_fields == {"a": "1"}


class TestTags:
    """Tests for tag normalization and matching."""

    def test_normalize_dedupes_keeping_order(self):
        assert normalize_tags(["dev", " prod ", "dev", "", "ops", "prod"]) == ["dev", "prod", "ops"]

    def test_normalize_keeps_case_variants(self):
        assert normalize_tags(["Dev", "dev", "DEV "]) == ["Dev", "dev", "DEV"]

    def test_create_keeps_case_variants(self):
        credential = Credential.create(CredentialKind.PASSWORD, "s", "u", "p", tags=["Dev", "dev"])
        assert credential.tags == ["Dev", "dev"]
        assert credential.has_tag("DEV")

    def test_has_tag_ignores_case(self, credential):
        assert credential.has_tag("DEV")
        assert not credential.has_tag("prod")


class TestSnapshot:
    """Tests for Credential.snapshot."""

    def test_snapshot_is_independent(self, credential):
        copy = credential.snapshot()
        copy.tags.append("extra")
        copy.custom_fields["x"] = "y"
        copy.secret.wipe()

        assert credential.tags == ["dev", "code"]
        assert "x" not in credential.custom_fields
        assert credential.secret == b"s3cr3t"

    def test_snapshot_equal(self, credential):
        assert credential.snapshot() == credential


class TestCredentialPatch:
    """Tests for CredentialPatch.apply."""

    def test_only_present_fields_change(self, credential):
        updated = CredentialPatch(service="gitlab").apply(credential)

        assert updated.service == "gitlab"
        assert updated.principal == "alice"
        assert updated.notes == "work"
        assert updated.tags == ["dev", "code"]
        assert updated.secret == b"s3cr3t"
        assert updated.id == credential.id
        assert updated.created_at == credential.created_at

    def test_original_untouched(self, credential):
        CredentialPatch(service="gitlab", secret="new").apply(credential)
        assert credential.service == "github"
        assert credential.secret == b"s3cr3t"

    def test_secret_replaced_with_own_buffer(self, credential):
        updated = CredentialPatch(secret=b"n3w").apply(credential)
        assert updated.secret == b"n3w"
        assert updated.secret is not credential.secret

    def test_unchanged_secret_not_shared(self, credential):
        """Wiping the old entry must not wipe the new one."""
        updated = CredentialPatch(notes="x").apply(credential)
        credential.wipe()
        assert updated.secret == b"s3cr3t"

    def test_empty_values_are_present(self, credential):
        updated = CredentialPatch(notes="", tags=[], custom_fields={}).apply(credential)
        assert updated.notes == ""
        assert updated.tags == []
        assert updated.custom_fields == {}

    def test_updated_at_advances(self, credential):
        updated = CredentialPatch().apply(credential)
        assert updated.updated_at >= credential.updated_at

    def test_updated_at_never_moves_backwards(self, credential):
        credential.updated_at = credential.updated_at + timedelta(days=1)
        updated = CredentialPatch(notes="x").apply(credential)
        assert updated.updated_at == credential.updated_at

    def test_is_active_ignored_for_passwords(self, credential):
        updated = CredentialPatch(is_active=False).apply(credential)
        assert updated.is_active is True

    def test_is_active_for_api_keys(self):
        key = Credential.create(CredentialKind.API_KEY, "stripe", "billing", "sk")
        updated = CredentialPatch(is_active=False).apply(key)
        assert updated.is_active is False

    def test_present_fields(self):
        patch = CredentialPatch(service="s", is_active=False, notes="")
        assert sorted(patch.present_fields()) == ["is_active", "notes", "service"]
