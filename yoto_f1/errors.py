"""Exception hierarchy shared by every layer of yoto-f1.

Only :class:`AuthenticationError` requires the user to reconnect their Yoto
account.  Every other error is retryable with the same inputs.
"""

from __future__ import annotations


class YotoF1Error(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(YotoF1Error):
    """Raised when a required setting (endpoint, secret, key) is missing."""


class AuthenticationError(YotoF1Error):
    """Raised when authentication fails and cannot be automatically recovered."""


class UpstreamDataError(YotoF1Error):
    """Raised when the race data provider is unreachable or returns bad data."""


class SynthesisError(YotoF1Error):
    """Raised when text-to-speech synthesis fails for a track or script."""

    def __init__(self, message: str, track_key: str | None = None) -> None:
        super().__init__(message)
        self.track_key = track_key


class UploadRejectedError(YotoF1Error):
    """Raised when the server refuses an audio upload (no URL, PUT rejected)."""


class TranscodeFailedError(YotoF1Error):
    """Raised when the server reports that transcoding failed permanently."""


class TranscodeTimeoutError(YotoF1Error):
    """Raised when transcoding does not reach a terminal state in time."""


class LabsJobError(YotoF1Error):
    """Raised when a Yoto Labs text-to-speech job fails."""


class LabsJobTimeoutError(LabsJobError):
    """Raised when a Labs job does not reach a terminal state in time."""


class ContentBackendError(YotoF1Error):
    """Raised when the card content API rejects or garbles a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ContentBackendError):
    """Raised when the Yoto API responds with HTTP 429."""


class UpdateNotSupportedError(ContentBackendError):
    """Raised when an existing card can never be updated in place."""


class CardNotFoundError(UpdateNotSupportedError):
    """Raised when the stored card id no longer exists on the server."""
