"""Error kinds raised by the classification pipeline.

Every error is local to a single request. Routes translate them into HTTP
responses; none of them is allowed to take the process down.
"""

from __future__ import annotations


class ClassificationError(Exception):
    """Base class for all per-request classification failures."""


class ImageDecodeError(ClassificationError):
    """The uploaded bytes could not be decoded into an image."""


class TensorShapeMismatch(ClassificationError):  # noqa: N818
    """The pixel buffer does not fill the model input exactly."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected {expected} values after dropping alpha, got {actual}")
        self.expected = expected
        self.actual = actual


class EngineLoadError(ClassificationError):
    """The model artifact is missing or could not be loaded by the engine."""


class EngineRunError(ClassificationError):
    """The forward pass failed or produced malformed output."""


class InferenceBusyError(ClassificationError):
    """No inference slot became free within the queue timeout."""


class InferenceTimeoutError(ClassificationError):
    """The engine did not answer within the inference timeout."""


class StaleResultDiscarded(Exception):  # noqa: N818
    """A finished request was superseded by a newer one.

    Not a user-visible error: the result is simply not written to the shared
    state slot.
    """

    def __init__(self, generation: int, latest: int) -> None:
        super().__init__(f"Generation {generation} superseded by {latest}")
        self.generation = generation
        self.latest = latest
