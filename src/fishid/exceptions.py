"""Error taxonomy shared by the pipeline and the API layer."""

from __future__ import annotations


class FishIdError(Exception):
    """Base class for errors surfaced to API clients."""

    code: str = "FISHID_ERROR"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ClassificationUnavailable(FishIdError):  # noqa: N818
    """The image classifier could not be initialized or invoked.

    Covers model download failures, session creation errors (e.g. a missing
    execution provider), inference errors, and an exhausted inference queue.
    Surfaced once to the caller; the client decides whether to try again.
    """

    code = "CLASSIFICATION_UNAVAILABLE"
    retryable = True


class InvalidInput(FishIdError):  # noqa: N818
    """Submitted data is not a usable image. Raised before classification."""

    code = "INVALID_INPUT"

    def __init__(self, message: str, *, unsupported_media_type: bool = False) -> None:
        super().__init__(message)
        self.unsupported_media_type = unsupported_media_type
