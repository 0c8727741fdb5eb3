# -*- coding: utf-8 -*-
"""Typed failures raised by the DreamWeaver core.

Crypto and codec helpers never swallow errors; stores translate backend
failures into the classes below so callers can decide what is retryable.
"""
from __future__ import annotations

from typing import Optional


class DreamWeaverError(Exception):
    """Base class for every error raised by this package."""


class InvalidInputError(DreamWeaverError, ValueError):
    """Caller supplied empty or malformed arguments. Not retryable."""


class KeyNotLoadedError(InvalidInputError):
    """An encrypted operation was requested before the session key was derived."""


class DecryptionError(DreamWeaverError):
    """Ciphertext could not be decrypted (wrong key or corrupted data)."""

    def __init__(
        self,
        message: str = "Cannot read this entry, check your passphrase",
        entry_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.entry_id = entry_id


class MalformedEnvelopeError(DecryptionError):
    """Envelope text does not parse into an IV part and a ciphertext part."""


class RecordNotFoundError(DreamWeaverError, LookupError):
    """No live record matches the requested id."""


class BackendError(DreamWeaverError):
    """Remote store failure. ``code`` keeps the backend's own error code."""

    retryable = False

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class DuplicateRecordError(BackendError):
    """Unique-constraint violation on the remote store."""


class BackendPermissionError(BackendError):
    """Remote store rejected the credentials or row-level policy."""


class BackendUnavailableError(BackendError):
    """Transient connectivity failure; the only retryable backend error."""

    retryable = True


class UnknownBackendError(BackendError):
    """Any other remote failure; message carries the backend's diagnostics."""


class MigrationError(DreamWeaverError):
    """Local -> remote migration stopped at the first failing record."""

    def __init__(self, message: str, entry_id: Optional[str] = None, migrated: int = 0) -> None:
        super().__init__(message)
        self.entry_id = entry_id
        self.migrated = migrated


def is_retryable(exc: BaseException) -> bool:
    """True if a caller may retry the operation that raised *exc*."""
    return isinstance(exc, BackendError) and exc.retryable
