"""Fish identification service: decode -> classify -> interpret."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from fishid.interpretation import FishResultInterpreter, Interpretation
    from fishid.ml.image_classifier import ClassificationEntry, ImageClassifier
    from fishid.ml.inference import InferencePool
    from fishid.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


class FishIdentifier:
    """Runs the full identification pipeline for one image."""

    def __init__(
        self,
        preprocessor: ImagePreprocessor,
        classifier: ImageClassifier,
        interpreter: FishResultInterpreter,
        pool: InferencePool,
    ) -> None:
        self._preprocessor = preprocessor
        self._classifier = classifier
        self._interpreter = interpreter
        self._pool = pool

    @property
    def model_name(self) -> str:
        return self._classifier.model_name

    async def classify(self, image_bytes: bytes) -> list[ClassificationEntry]:
        """Return the classifier's full ranking for an image.

        Decoding happens before the classifier is touched, so invalid input
        is rejected without loading a model.
        """
        image = self._preprocessor.decode_image(image_bytes)
        return await self._pool.run(self._classify_decoded, image)

    async def identify(self, image_bytes: bytes, top_k: int | None = None) -> Interpretation:
        """Classify an image and interpret the top ``top_k`` labels."""
        entries = await self.classify(image_bytes)
        interpretation = self._interpreter.interpret(entries, top_k)

        if interpretation.records:
            top = interpretation.records[0]
            logger.debug("Top label %r (%.3f) from %s", top.label, top.score, self.model_name)
        if not interpretation.fish_detected:
            logger.info("No fish detected among %d candidate labels", len(interpretation))
        return interpretation

    def _classify_decoded(self, image: NDArray[np.uint8]) -> list[ClassificationEntry]:
        tensor = self._preprocessor.preprocess_for_classification(image)
        return self._classifier.classify(tensor)
