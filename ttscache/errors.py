"""Error taxonomy shared by the generation cache and its clients."""
from typing import Optional


class TTSCacheError(Exception):
    """Base exception for generation cache errors."""

    status_code = 500

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(TTSCacheError):
    """Request rejected before any work started (empty or oversized text, bad parameters)."""

    status_code = 400


class UpstreamAuthError(TTSCacheError):
    """The owner's credential was rejected by the speech provider."""

    status_code = 401


class NotFoundError(TTSCacheError):
    """Job missing, owned by someone else, or not ready.

    The message never distinguishes between those cases.
    """

    status_code = 404


class GenerationError(TTSCacheError):
    """A chunk failed mid-synthesis, or the artifact could not be written."""

    status_code = 500

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, original_error)
        self.job_id = job_id


class IntegrityError(TTSCacheError):
    """A job is marked ready but its artifact is missing from storage."""

    status_code = 404


class SynthesisError(TTSCacheError):
    """The speech provider failed a single synthesis call."""

    status_code = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, original_error)
        self.status = status


class SynthesisAuthError(SynthesisError):
    """The speech provider rejected the credential."""


class RetrievalError(TTSCacheError):
    """Transport failure or unexpected response from a remote retrieval API."""

    status_code = 502


class PollTimeoutError(TTSCacheError):
    """Chunks were still generating when the poll ceiling was reached.

    Distinct from a failed generation: the caller may keep waiting.
    """

    status_code = 504

    def __init__(self, message: str, completed: int = 0, total: int = 0) -> None:
        super().__init__(message)
        self.completed = completed
        self.total = total


class SyncCancelledError(TTSCacheError):
    """Chunk synchronisation was cancelled by the caller."""

    status_code = 499
