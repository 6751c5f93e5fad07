"""
Detector Capability

Every modality detector maps one input item (a VideoFrame or an AudioSegment)
to zero or more DetectionResults. A failure on one item is logged and skipped;
it never aborts the batch.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import PerItemDetectionError
from ..media.frames import RasterBuffer
from ..models import DetectionResult, Modality

logger = logging.getLogger(__name__)

# Inference collaborator contracts
TextRecognizer = Callable[[RasterBuffer], str]
ImageClassifier = Callable[[RasterBuffer], Sequence[Tuple[str, float]]]
AudioClassifier = Callable[[np.ndarray, int], Sequence[Tuple[str, float]]]


def matches_any(text: str, terms: Iterable[str]) -> bool:
    """Case-insensitive substring match against a vocabulary."""
    lowered = text.lower()
    return any(term.lower() in lowered for term in terms)


@dataclass
class BatchResult:
    """Detections gathered over many items plus the number of skipped items."""
    detections: List[DetectionResult] = field(default_factory=list)
    processed: int = 0
    skipped: int = 0

    def extend(self, other: "BatchResult") -> None:
        self.detections.extend(other.detections)
        self.processed += other.processed
        self.skipped += other.skipped


class Detector(ABC):
    """Base class for a single-modality kill detector."""

    modality: Modality

    @abstractmethod
    def _detect(self, item) -> List[DetectionResult]:
        """Run detection on one item; may raise anything."""

    def detect(self, item) -> List[DetectionResult]:
        """
        Detect kill evidence in one frame or audio segment.

        Raises:
            PerItemDetectionError: Wrapping whatever the collaborator raised
        """
        try:
            return self._detect(item)
        except PerItemDetectionError:
            raise
        except Exception as e:
            raise PerItemDetectionError(self.modality.value, getattr(item, 'timestamp', 0.0), e) from e

    def try_detect(self, item, batch: Optional[BatchResult] = None) -> List[DetectionResult]:
        """Detect, logging and counting a failure instead of raising it."""
        batch = batch if batch is not None else BatchResult()
        try:
            results = self.detect(item)
        except PerItemDetectionError as e:
            logger.warning(f"Skipping item: {e}")
            batch.skipped += 1
            return []

        batch.processed += 1
        batch.detections.extend(results)
        return results

    def detect_batch(self, items: Iterable) -> BatchResult:
        """Detect over a sequence of items, skipping the ones that fail."""
        batch = BatchResult()
        for item in items:
            self.try_detect(item, batch)

        if batch.skipped:
            logger.warning(f"{self.modality.value} detector skipped {batch.skipped} of "
                           f"{batch.processed + batch.skipped} items")
        return batch

    def __repr__(self):
        return f"{self.__class__.__name__}(modality={self.modality.value})"
