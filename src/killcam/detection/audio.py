"""
Audio Event Detector

Classifies each audio segment and flags it when the top-scoring label is a
kill sound (gunshot, explosion...) with enough confidence.
"""

from typing import List, Optional, Sequence

from ..game_profile import VALORANT
from ..media.frames import AudioSegment
from ..models import DetectionResult, Modality
from .base import AudioClassifier, Detector, matches_any


class AudioDetector(Detector):
    """Flag audio segments whose top label is a kill sound.

    Attributes:
        classifier: Callable (samples, sample_rate) -> [(label, score 0-1)].
        terms: Kill-sound vocabulary.
        min_score: Raw score the top label must exceed.
    """

    modality = Modality.AUDIO

    def __init__(self,
                 classifier: AudioClassifier,
                 terms: Optional[Sequence[str]] = None,
                 min_score: float = 0.6):
        self.classifier = classifier
        self.terms = tuple(terms) if terms is not None else VALORANT.audio_terms
        self.min_score = min_score

    def _detect(self, segment: AudioSegment) -> List[DetectionResult]:
        predictions = list(self.classifier(segment.samples, segment.sample_rate))
        if not predictions:
            return []

        label, score = max(predictions, key=lambda p: p[1])
        score = float(score)
        if not matches_any(label, self.terms) or score <= self.min_score:
            return []

        return [DetectionResult(
            timestamp=segment.timestamp,
            confidence=float(min(100, round(score * 100))),
            modality=self.modality,
            evidence=label,
        )]
