"""The shared "current result" slot and its generation counter.

Each classification request takes a new generation when it starts. Only the
request holding the latest generation may write its outcome; older requests
that finish late are discarded.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from ortclassify.ml.errors import StaleResultDiscarded

if TYPE_CHECKING:
    from ortclassify.ml.image_classifier import ClassificationResult

logger = logging.getLogger(__name__)


class ClassificationStatus(StrEnum):
    IDLE = "idle"
    BUSY = "busy"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True)
class ClassificationState:
    """Immutable snapshot of the current result slot."""

    status: ClassificationStatus
    generation: int
    result: ClassificationResult | None = None
    error: str | None = None


StateListener = Callable[[ClassificationState], None]


class RequestTracker:
    """Owns the current result slot and notifies listeners on every transition."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generation = 0
        self._state = ClassificationState(status=ClassificationStatus.IDLE, generation=0)
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ClassificationState:
        with self._lock:
            return self._state

    @property
    def generation(self) -> int:
        """The most recently issued generation."""
        with self._lock:
            return self._generation

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def begin(self) -> int:
        """Start a new request and return its generation."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            # Keep the previous result visible while busy.
            state = ClassificationState(
                status=ClassificationStatus.BUSY,
                generation=generation,
                result=self._state.result,
            )
            self._state = state
        self._notify(state)
        return generation

    def complete(self, generation: int, result: ClassificationResult) -> None:
        """Publish the result of ``generation``.

        Raises:
            StaleResultDiscarded: If a newer request has started since.
        """
        self._transition(generation, ClassificationStatus.RESULT, result=result)

    def fail(self, generation: int, error: str) -> None:
        """Record the failure of ``generation``; the last good result stays visible.

        Raises:
            StaleResultDiscarded: If a newer request has started since.
        """
        self._transition(generation, ClassificationStatus.ERROR, error=error)

    def _transition(
        self,
        generation: int,
        status: ClassificationStatus,
        result: ClassificationResult | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            if generation != self._generation:
                raise StaleResultDiscarded(generation, self._generation)
            state = ClassificationState(
                status=status,
                generation=generation,
                result=result if result is not None else self._state.result,
                error=error,
            )
            self._state = state
        self._notify(state)

    def _notify(self, state: ClassificationState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("State listener %r failed", listener)
