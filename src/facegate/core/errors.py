"""Exception hierarchy for the face gate core.

"No signal" conditions (no face in frame, empty gallery) are never raised;
they are ordinary verdicts and match results.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from facegate.core.types import MatchResult


class FaceGateError(Exception):
    """Base class for all facegate errors."""


class MalformedEmbedding(FaceGateError, ValueError):
    """An embedding could not be interpreted as a finite 1-D float vector."""


class DimensionMismatch(MalformedEmbedding):
    """Probe embedding length differs from the gallery embedding length."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected {expected}-d embedding, got {actual}-d")
        self.expected = expected
        self.actual = actual


class MalformedGalleryEntry(FaceGateError, ValueError):
    """A gallery record is missing its id or carries an unusable embedding."""

    def __init__(self, message: str, record_id: str | None = None) -> None:
        super().__init__(message)
        self.record_id = record_id


class ExtractorUnavailable(FaceGateError, RuntimeError):
    """The detection/embedding models are not loaded or failed to load."""


class DuplicateIdentity(FaceGateError):
    """Enrollment blocked because the face already matches an enrolled identity."""

    def __init__(self, reason: str, match: MatchResult) -> None:
        super().__init__(reason)
        self.reason = reason
        self.match = match


class UnknownIdentity(FaceGateError, KeyError):
    """No identity record with the requested id."""

    def __init__(self, identity_id: str) -> None:
        super().__init__(identity_id)
        self.identity_id = identity_id

    def __str__(self) -> str:
        return f"Unknown identity: {self.identity_id}"


class IdentityExists(FaceGateError, ValueError):
    """An identity with the same id is already enrolled."""

    def __init__(self, identity_id: str) -> None:
        super().__init__(f"Identity {identity_id!r} is already enrolled")
        self.identity_id = identity_id
