from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class SyncConfigError(HTTPException):
    """Sync cannot start: missing credentials, username or profile."""

    def __init__(self, message: str, *, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
        super().__init__(status_code=status_code, detail={"error": message})
        self.message = message


class ProviderError(HTTPException):
    """Scraping provider failed or returned nothing usable."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        **context: Any,
    ) -> None:
        super().__init__(status_code=status_code, detail={"error": message, **context})
        self.message = message
        self.context = context


class DuplicateExternalIdError(Exception):
    """A record with this (profile_id, external_id) already exists."""

    def __init__(self, profile_id: int, external_id: str) -> None:
        super().__init__(f"profile {profile_id} already has external_id {external_id!r}")
        self.profile_id = profile_id
        self.external_id = external_id


class MediaUploadError(Exception):
    """Permanent media store rejected an upload."""


class RecordLinkedElsewhereError(Exception):
    """The matched record was linked to a different post by another run."""

    def __init__(self, record_id: int, linked_external_id: str | None) -> None:
        super().__init__(f"record {record_id} is linked to {linked_external_id!r}")
        self.record_id = record_id
        self.linked_external_id = linked_external_id
