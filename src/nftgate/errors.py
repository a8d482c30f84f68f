from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class GatewayError(Exception):
    """Canonical error type for upload and metadata lookup failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InvalidArgument(GatewayError):
    """Bad or missing upload fields. Surfaced to the caller, never retried."""

    CODE = "invalid_argument"

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__(self.CODE, reason, details)


class InvalidProperties(InvalidArgument):
    """The `properties` JSON string does not parse into an object."""


class InvalidAttributes(InvalidArgument):
    """The `attributes` JSON string does not parse into a list of objects."""


class StorageUnavailable(GatewayError):
    """Transient backend failure. Retried at the blob store boundary."""

    CODE = "storage_unavailable"

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__(self.CODE, reason, details)


class NotFound(GatewayError):
    CODE = "not_found"

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__(self.CODE, reason, details)


class CorruptMetadata(GatewayError):
    """A stored blob exists but is not a well-formed metadata document."""

    CODE = "corrupt_metadata"

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__(self.CODE, reason, details)


class CorruptBlob(GatewayError):
    """Stored bytes no longer hash to their identifier."""

    CODE = "corrupt_blob"

    def __init__(self, reason: str, details: Any | None = None) -> None:
        super().__init__(self.CODE, reason, details)
