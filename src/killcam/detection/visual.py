"""
Visual Indicator Detector

Scores the whole frame with an image classifier and keeps the strongest label
that names a kill indicator (crosshair, elimination, scope...).
"""

from typing import List, Optional, Sequence

from ..game_profile import VALORANT
from ..media.frames import VideoFrame
from ..models import DetectionResult, Modality
from .base import Detector, ImageClassifier, matches_any


class VisualDetector(Detector):
    """Flag frames where a kill-related label scores above a threshold.

    Scores from the classifier are 0-1 and scaled to 0-100 before the
    comparison. The detection confidence is the best kill-related scaled score.
    """

    modality = Modality.VISUAL

    def __init__(self,
                 classifier: ImageClassifier,
                 terms: Optional[Sequence[str]] = None,
                 threshold: float = 70.0):
        self.classifier = classifier
        self.terms = tuple(terms) if terms is not None else VALORANT.visual_terms
        self.threshold = threshold

    def _detect(self, frame: VideoFrame) -> List[DetectionResult]:
        best_label = None
        best_score = 0.0

        for label, score in self.classifier(frame.image):
            scaled = min(100.0, max(0.0, float(score) * 100.0))
            if matches_any(label, self.terms) and scaled > best_score:
                best_label, best_score = label, scaled

        if best_label is None or best_score <= self.threshold:
            return []

        return [DetectionResult(
            timestamp=frame.timestamp,
            confidence=best_score,
            modality=self.modality,
            evidence=best_label,
        )]
