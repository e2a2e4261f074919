"""Exception hierarchy for the analysis pipeline."""

from typing import List, Optional


class VisionEngineError(Exception):
    """Base class for all pipeline errors."""
    pass


class ValidationError(VisionEngineError):
    """
    Raised when an ingestion payload is rejected.

    Never retried. A payload that fails validation never creates a session.

    Attributes:
        errors: Human readable reasons the payload was rejected.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid payload")

    def to_dict(self) -> dict:
        """Structured validation-error response."""
        return {"valid": False, "errors": self.errors}


class TransientStreamError(VisionEngineError):
    """Recoverable failure inside one analysis stream (I/O, download, timeout)."""
    pass


class StreamTimeoutError(TransientStreamError):
    """A stream attempt exceeded its wall-clock budget."""
    pass


class FatalStreamError(VisionEngineError):
    """Unrecoverable stream failure. The stream is failed without retry."""
    pass


class DecodeError(FatalStreamError):
    """The video could not be decoded."""

    def __init__(self, message: str, video_ref: Optional[str] = None):
        self.video_ref = video_ref
        super().__init__(message)


class SessionCancelled(FatalStreamError):
    """The session was cancelled while the stream was running."""
    pass


class SynthesisError(VisionEngineError):
    """Timeline merge or composite computation failed after both streams completed."""
    pass


class ReportExistsError(VisionEngineError):
    """A final report was already written for the session."""
    pass
