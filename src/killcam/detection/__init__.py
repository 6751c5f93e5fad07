"""
Detection Module

Independent kill detectors, one per modality:
1. Kill feed - OCR on the top-right kill feed (PaddleOCR or Tesseract)
2. Visual - zero-shot frame classification (CLIP)
3. Audio - zero-shot audio event classification (CLAP)
"""

from .base import BatchResult, Detector
from .killfeed import KillFeedDetector
from .visual import VisualDetector
from .audio import AudioDetector
from .factory import DetectorSet, build_detectors, create_recognizer

__all__ = [
    'BatchResult',
    'Detector',
    'KillFeedDetector',
    'VisualDetector',
    'AudioDetector',
    'DetectorSet',
    'build_detectors',
    'create_recognizer'
]
