"""End-to-end classification of one uploaded image."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ortclassify.ml.errors import ClassificationError, ImageDecodeError, StaleResultDiscarded
from ortclassify.ml.preprocessing import decode_image, encode_preview, image_data_to_tensor, resize_to_square

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from ortclassify.config import Settings
    from ortclassify.ml.image_classifier import ClassificationResult, OnnxImageClassifier
    from ortclassify.ml.inference import InferencePool
    from ortclassify.ml.request_state import RequestTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOutcome:
    """What a single request gets back, independent of the shared state slot."""

    generation: int
    result: ClassificationResult
    preview: str | None = None


class ClassificationPipeline:
    """Image bytes -> RGBA array -> square RGBA -> tensor -> top class."""

    def __init__(
        self,
        settings: Settings,
        classifier: OnnxImageClassifier,
        pool: InferencePool,
        tracker: RequestTracker,
    ) -> None:
        self._settings = settings
        self._classifier = classifier
        self._pool = pool
        self._tracker = tracker
        size = settings.image_size
        self._dims = (1, 3, size, size)

    @property
    def dims(self) -> tuple[int, int, int, int]:
        return self._dims

    async def classify(self, image_bytes: bytes, *, preview: bool = False) -> PipelineOutcome:
        """Classify one image and publish the outcome to the tracker.

        Decoding, resizing, the forward pass and the preview all run in one
        inference-pool call, so the event loop stays free and the inference
        timeout covers the whole request.

        Raises:
            ClassificationError: Any per-request failure; the tracker is left
                in the error state (unless a newer request owns it).
        """
        generation = self._tracker.begin()
        try:
            result, preview_png = await self._pool.run(self._process, image_bytes, preview)
        except ClassificationError as exc:
            logger.warning("Request %d failed: %s: %s", generation, type(exc).__name__, exc)
            self._publish_failure(generation, exc)
            raise
        except Exception as exc:
            logger.exception("Request %d failed unexpectedly", generation)
            self._publish_failure(generation, exc)
            raise

        try:
            self._tracker.complete(generation, result)
        except StaleResultDiscarded as exc:
            logger.debug("Dropping result of request %d: %s", generation, exc)

        return PipelineOutcome(generation=generation, result=result, preview=preview_png)

    def _process(self, image_bytes: bytes, preview: bool) -> tuple[ClassificationResult, str | None]:
        square = self._preprocess(image_bytes)
        tensor = image_data_to_tensor(square, self._dims)
        result = self._classifier.classify(tensor)
        return result, encode_preview(square) if preview else None

    def _preprocess(self, image_bytes: bytes) -> NDArray[np.uint8]:
        try:
            rgba = decode_image(image_bytes, max_pixels=self._settings.max_image_pixels)
            return resize_to_square(rgba, self._settings.image_size, self._settings.resize_filter)
        except (ValueError, MemoryError) as exc:
            raise ImageDecodeError(f"Cannot preprocess image: {type(exc).__name__}: {exc}") from exc

    def _publish_failure(self, generation: int, exc: Exception) -> None:
        try:
            self._tracker.fail(generation, f"{type(exc).__name__}: {exc}")
        except StaleResultDiscarded as stale:
            logger.debug("Dropping failure of request %d: %s", generation, stale)
