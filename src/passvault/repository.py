#!/usr/bin/env python3
"""Credential Repository - In-memory credential set and its payload codec.

The repository is owned by exactly one VaultManager and is only populated
while that manager is unlocked. It is serialized as a whole: the payload is
a JSON object mapping credential id to credential.
"""

import base64
import binascii
import json
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from .errors import VaultCorruptedError
from .models import Credential, CredentialKind
from .secure_memory import SecretBuffer


class CredentialRepository:
    """Mapping of credential id to Credential."""

    def __init__(self):
        self._credentials: Dict[str, Credential] = {}

    def __len__(self) -> int:
        return len(self._credentials)

    def __contains__(self, credential_id: str) -> bool:
        return credential_id in self._credentials

    def __iter__(self) -> Iterator[Credential]:
        return iter(list(self._credentials.values()))

    def get(self, credential_id: str) -> Optional[Credential]:
        return self._credentials.get(credential_id)

    def put(self, credential: Credential) -> Optional[Credential]:
        """Insert or replace a credential, returning what it displaced."""
        previous = self._credentials.get(credential.id)
        self._credentials[credential.id] = credential
        return previous

    def pop(self, credential_id: str) -> Optional[Credential]:
        return self._credentials.pop(credential_id, None)

    def sorted(self) -> List[Credential]:
        """Credentials ordered by service (case-insensitive), then age."""
        return sorted(
            self._credentials.values(),
            key=lambda c: (c.service.lower(), c.created_at, c.id)
        )

    def wipe(self) -> None:
        """Scrub every secret and empty the repository."""
        for credential in self._credentials.values():
            credential.wipe()
        self._credentials.clear()

    def dumps(self) -> bytearray:
        """Serialize the whole repository to a UTF-8 JSON payload.

        Returned as a bytearray so the caller can scrub it after sealing.
        """
        payload = {
            credential.id: _credential_to_dict(credential)
            for credential in self._credentials.values()
        }
        return bytearray(json.dumps(payload, sort_keys=True).encode("utf-8"))

    @classmethod
    def loads(cls, data: bytes) -> "CredentialRepository":
        """Rebuild a repository from a decrypted payload.

        Raises:
            VaultCorruptedError: If the payload is not the expected shape

        """
        try:
            payload = json.loads(bytes(data).decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise VaultCorruptedError(f"Vault payload is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise VaultCorruptedError("Vault payload must be a mapping of credentials")

        repository = cls()
        try:
            for credential_id, entry in payload.items():
                credential = _credential_from_dict(entry)
                if credential.id != credential_id:
                    raise VaultCorruptedError(
                        f"Credential id mismatch: {credential_id} != {credential.id}"
                    )
                repository.put(credential)
        except VaultCorruptedError:
            repository.wipe()
            raise
        return repository


def _credential_to_dict(credential: Credential) -> dict:
    return {
        "id": credential.id,
        "kind": credential.kind.value,
        "service": credential.service,
        "principal": credential.principal,
        "secret": base64.b64encode(credential.secret.reveal()).decode("ascii"),
        "notes": credential.notes,
        "tags": list(credential.tags),
        "is_active": credential.is_active,
        "custom_fields": dict(credential.custom_fields),
        "created_at": credential.created_at.isoformat(),
        "updated_at": credential.updated_at.isoformat(),
    }


def _require(entry: dict, key: str, kind):
    value = entry.get(key)
    if not isinstance(value, kind):
        raise VaultCorruptedError(f"Credential field '{key}' is missing or invalid")
    return value


def _credential_from_dict(entry) -> Credential:
    if not isinstance(entry, dict):
        raise VaultCorruptedError("Credential entry must be an object")

    tags = _require(entry, "tags", list)
    custom_fields = _require(entry, "custom_fields", dict)
    if not all(isinstance(t, str) for t in tags):
        raise VaultCorruptedError("Credential tags must be strings")
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in custom_fields.items()):
        raise VaultCorruptedError("Credential custom fields must map strings to strings")

    try:
        kind = CredentialKind(_require(entry, "kind", str))
        secret = base64.b64decode(_require(entry, "secret", str), validate=True)
        created_at = datetime.fromisoformat(_require(entry, "created_at", str))
        updated_at = datetime.fromisoformat(_require(entry, "updated_at", str))
    except (ValueError, binascii.Error) as e:
        raise VaultCorruptedError(f"Credential entry is malformed: {e}") from e

    return Credential(
        id=_require(entry, "id", str),
        kind=kind,
        service=_require(entry, "service", str),
        principal=_require(entry, "principal", str),
        secret=SecretBuffer(secret),
        notes=_require(entry, "notes", str),
        tags=tags,
        is_active=_require(entry, "is_active", bool),
        custom_fields=custom_fields,
        created_at=created_at,
        updated_at=updated_at,
    )
