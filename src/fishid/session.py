"""Client-side identification session.

An explicit state machine for UI layers that drive the identifier: one
image at a time, one outstanding request at a time. Every analysis gets a
monotonically increasing request id; swapping images while a request is in
flight makes that request stale, and its eventual result is dropped.

    IDLE --select_image--> IMAGE_SELECTED --begin_analysis--> ANALYZING
    ANALYZING --resolve--> RESULTS        ANALYZING --fail--> FAILED
    RESULTS | FAILED --begin_analysis--> ANALYZING   (retry, same image)
    any --select_image--> IMAGE_SELECTED             any --reset--> IDLE
"""

from __future__ import annotations

import itertools
import logging
import threading
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fishid.interpretation import Interpretation

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    IDLE = "idle"
    IMAGE_SELECTED = "image_selected"
    ANALYZING = "analyzing"
    RESULTS = "results"
    FAILED = "failed"


class InvalidTransition(Exception):  # noqa: N818
    """An event arrived in a state that does not accept it."""

    def __init__(self, state: SessionState, event: str) -> None:
        super().__init__(f"Cannot {event} while {state}")
        self.state = state
        self.event = event


class IdentificationSession:
    """Tracks the lifecycle of identifying a user-selected image."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._state = SessionState.IDLE
        self._image: bytes | None = None
        self._pending_id: int | None = None
        self._interpretation: Interpretation | None = None
        self._error: Exception | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def image(self) -> bytes | None:
        return self._image

    @property
    def busy(self) -> bool:
        return self._state is SessionState.ANALYZING

    @property
    def pending_request_id(self) -> int | None:
        return self._pending_id

    @property
    def interpretation(self) -> Interpretation | None:
        return self._interpretation

    @property
    def error(self) -> Exception | None:
        return self._error

    def select_image(self, image: bytes) -> None:
        """Choose a new image, clearing previous results and orphaning any pending request."""
        with self._lock:
            if self._pending_id is not None:
                logger.debug("Request %d superseded by a new image", self._pending_id)
            self._image = image
            self._pending_id = None
            self._interpretation = None
            self._error = None
            self._state = SessionState.IMAGE_SELECTED

    def begin_analysis(self) -> int:
        """Start analyzing the selected image and return the new request id."""
        with self._lock:
            if self._image is None or self._state in (SessionState.IDLE, SessionState.ANALYZING):
                raise InvalidTransition(self._state, "begin analysis")
            request_id = next(self._ids)
            self._pending_id = request_id
            self._error = None
            self._state = SessionState.ANALYZING
            return request_id

    def resolve(self, request_id: int, interpretation: Interpretation) -> bool:
        """Deliver a result. Returns False when the request is stale and the result was dropped."""
        with self._lock:
            if not self._accepts(request_id):
                return False
            self._pending_id = None
            self._interpretation = interpretation
            self._state = SessionState.RESULTS
            return True

    def fail(self, request_id: int, error: Exception) -> bool:
        """Deliver a failure. Returns False when the request is stale."""
        with self._lock:
            if not self._accepts(request_id):
                return False
            self._pending_id = None
            self._error = error
            self._state = SessionState.FAILED
            return True

    def reset(self) -> None:
        """Forget the image and any results."""
        with self._lock:
            self._image = None
            self._pending_id = None
            self._interpretation = None
            self._error = None
            self._state = SessionState.IDLE

    def _accepts(self, request_id: int) -> bool:
        if self._state is SessionState.ANALYZING and request_id == self._pending_id:
            return True
        logger.debug("Dropping stale result for request %d", request_id)
        return False
