#!/usr/bin/env python3
"""Credential Models - Stored entries and the patch descriptor that edits them."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from .secure_memory import SecretBuffer


class CredentialKind(str, Enum):
    """What a credential's secret is."""

    PASSWORD = "password"
    API_KEY = "api_key"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_tags(tags: Iterable[str]) -> List[str]:
    """Strip and de-duplicate tags, keeping first-seen order for display.

    Duplicates are exact matches only: "Dev" and "dev" are distinct labels.
    """
    result = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in result:
            result.append(tag)
    return result


@dataclass
class Credential:
    """One stored secret entry."""

    id: str                      # UUID4, immutable repository key
    kind: CredentialKind
    service: str                 # Display label
    principal: str               # Username (password) or account (API key)
    secret: SecretBuffer
    notes: str = ""
    tags: List[str] = field(default_factory=list)
    is_active: bool = True       # Only meaningful for API keys
    custom_fields: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        kind: CredentialKind,
        service: str,
        principal: str,
        secret: Union[bytes, str],
        notes: str = "",
        tags: Iterable[str] = (),
        is_active: bool = True,
        custom_fields: Optional[Dict[str, str]] = None
    ) -> "Credential":
        """Build a new credential with a fresh id and matching timestamps."""
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            kind=kind,
            service=service,
            principal=principal,
            secret=SecretBuffer(secret),
            notes=notes,
            tags=normalize_tags(tags),
            is_active=is_active if kind == CredentialKind.API_KEY else True,
            custom_fields=dict(custom_fields or {}),
            created_at=now,
            updated_at=now,
        )

    def has_tag(self, tag: str) -> bool:
        """Case-insensitive tag match."""
        return tag.strip().lower() in {t.lower() for t in self.tags}

    def snapshot(self) -> "Credential":
        """Independent copy, including its own secret buffer."""
        return replace(
            self,
            secret=self.secret.copy(),
            tags=list(self.tags),
            custom_fields=dict(self.custom_fields),
        )

    def wipe(self) -> None:
        self.secret.wipe()


@dataclass
class CredentialPatch:
    """Field-update descriptor for a credential.

    A field set to None is absent and left unchanged; any other value
    replaces the stored one. id, kind and created_at cannot be patched.
    """

    service: Optional[str] = None
    principal: Optional[str] = None
    secret: Optional[Union[bytes, str]] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None
    custom_fields: Optional[Dict[str, str]] = None

    def present_fields(self) -> List[str]:
        return [name for name, value in vars(self).items() if value is not None]

    def apply(self, credential: Credential) -> Credential:
        """Return a new credential with the present fields replaced.

        The original is left untouched so callers can roll back. The result
        always gets its own secret buffer and a fresh updated_at.
        """
        updated = credential.snapshot()

        if self.service is not None:
            updated.service = self.service
        if self.principal is not None:
            updated.principal = self.principal
        if self.secret is not None:
            updated.secret.wipe()
            updated.secret = SecretBuffer(self.secret)
        if self.notes is not None:
            updated.notes = self.notes
        if self.tags is not None:
            updated.tags = normalize_tags(self.tags)
        if self.is_active is not None and updated.kind == CredentialKind.API_KEY:
            updated.is_active = self.is_active
        if self.custom_fields is not None:
            updated.custom_fields = dict(self.custom_fields)

        # Never move backwards even if the wall clock does
        updated.updated_at = max(utcnow(), credential.updated_at)
        return updated
