"""
Kill Feed Detector

OCR on the top-right corner of the frame, where the kill feed is drawn. A frame
is flagged when the recognized text contains any kill or weapon term.
"""

from typing import List, Optional, Sequence, Tuple

from ..game_profile import VALORANT
from ..media.frames import VideoFrame, crop_top_right
from ..models import DetectionResult, Modality
from .base import Detector, TextRecognizer, matches_any

# (width fraction, height fraction) of the frame
DEFAULT_REGION = (0.3, 0.4)


class KillFeedDetector(Detector):
    """Flag frames whose kill-feed text mentions an elimination.

    Attributes:
        recognizer: Callable turning a RasterBuffer into text.
        terms: Kill-feed vocabulary (case-insensitive substrings).
        confidence: Fixed confidence assigned to every hit.
        region: Top-right crop as (width fraction, height fraction).
    """

    modality = Modality.KILLFEED

    def __init__(self,
                 recognizer: TextRecognizer,
                 terms: Optional[Sequence[str]] = None,
                 confidence: float = 85.0,
                 region: Tuple[float, float] = DEFAULT_REGION):
        if not 0 <= confidence <= 100:
            raise ValueError(f"confidence must be within 0-100, got {confidence}")

        self.recognizer = recognizer
        self.terms = tuple(terms) if terms is not None else VALORANT.killfeed_terms
        self.confidence = confidence
        self.region = region

    def _detect(self, frame: VideoFrame) -> List[DetectionResult]:
        region = crop_top_right(frame.image, *self.region)
        text = (self.recognizer(region) or "").strip()

        if not text or not matches_any(text, self.terms):
            return []

        return [DetectionResult(
            timestamp=frame.timestamp,
            confidence=self.confidence,
            modality=self.modality,
            evidence=text,
        )]
