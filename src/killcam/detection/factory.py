"""
Detector Set Construction

Builds one detector per enabled modality. A modality whose backend cannot be
initialized is dropped and reported as a DegradedResult; it never produces
placeholder detections.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..config import DetectionSettings
from ..errors import ModelUnavailableError
from ..game_profile import GameProfile, get_profile
from ..models import DegradedReason, DegradedResult, Modality
from . import backends
from .audio import AudioDetector
from .base import AudioClassifier, Detector, ImageClassifier, TextRecognizer
from .killfeed import KillFeedDetector
from .visual import VisualDetector

logger = logging.getLogger(__name__)

OCR_BACKENDS = ('auto', 'paddleocr', 'tesseract')


@dataclass
class DetectorSet:
    """Detectors that initialized, plus the modalities that did not."""
    detectors: Dict[Modality, Detector] = field(default_factory=dict)
    degraded: List[DegradedResult] = field(default_factory=list)

    @property
    def frame_detectors(self) -> List[Detector]:
        return [self.detectors[m] for m in (Modality.KILLFEED, Modality.VISUAL) if m in self.detectors]

    @property
    def audio_detector(self) -> Optional[Detector]:
        return self.detectors.get(Modality.AUDIO)

    @property
    def modalities(self) -> List[Modality]:
        return list(self.detectors)

    def __bool__(self):
        return bool(self.detectors)


def create_recognizer(ocr_backend: str = 'auto') -> TextRecognizer:
    """
    Create a kill-feed text recognizer.

    Args:
        ocr_backend: 'paddleocr', 'tesseract' or 'auto' (PaddleOCR, then Tesseract)

    Raises:
        ModelUnavailableError: If no requested OCR engine is available
    """
    if ocr_backend not in OCR_BACKENDS:
        raise ValueError(f"ocr_backend must be one of {OCR_BACKENDS}, got '{ocr_backend}'")

    if ocr_backend == 'paddleocr':
        return backends.PaddleOCRRecognizer()
    if ocr_backend == 'tesseract':
        return backends.TesseractRecognizer()

    try:
        return backends.PaddleOCRRecognizer()
    except ModelUnavailableError as e:
        logger.warning(f"{e}, falling back to Tesseract")
        return backends.TesseractRecognizer()


def _try_build(modality: Modality,
               build: Callable[[], Detector],
               detector_set: DetectorSet) -> None:
    try:
        detector_set.detectors[modality] = build()
        logger.info(f"{modality.value} detector ready")
    except ModelUnavailableError as e:
        logger.warning(f"Disabling {modality.value} detection: {e}")
        detector_set.degraded.append(DegradedResult(
            modality=modality,
            reason=DegradedReason.MODEL_UNAVAILABLE,
            detail=str(e),
        ))


def build_detectors(settings: DetectionSettings,
                    profile: Optional[GameProfile] = None,
                    ocr_backend: str = 'auto',
                    device: Optional[str] = None,
                    recognizer: Optional[TextRecognizer] = None,
                    image_classifier: Optional[ImageClassifier] = None,
                    audio_classifier: Optional[AudioClassifier] = None) -> DetectorSet:
    """
    Build detectors for every modality enabled in settings.

    Injected collaborators (recognizer, image_classifier, audio_classifier) are
    used as-is; missing ones are created from the default backends.

    Returns:
        DetectorSet; may be empty if every modality failed to initialize
    """
    profile = profile or get_profile(settings.game)
    detector_set = DetectorSet()

    if settings.killfeed_detection:
        _try_build(Modality.KILLFEED, lambda: KillFeedDetector(
            recognizer or create_recognizer(ocr_backend),
            terms=profile.killfeed_terms,
            confidence=settings.killfeed_confidence,
        ), detector_set)

    if settings.visual_detection:
        _try_build(Modality.VISUAL, lambda: VisualDetector(
            image_classifier or backends.ClipFrameClassifier(device=device),
            terms=profile.visual_terms,
            threshold=settings.visual_threshold,
        ), detector_set)

    if settings.audio_detection:
        _try_build(Modality.AUDIO, lambda: AudioDetector(
            audio_classifier or backends.ClapAudioClassifier(device=device),
            terms=profile.audio_terms,
            min_score=settings.audio_min_score,
        ), detector_set)

    return detector_set
