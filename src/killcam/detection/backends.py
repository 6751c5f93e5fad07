"""
Inference Backends

Concrete collaborators for the detectors:

- PaddleOCRRecognizer / TesseractRecognizer: raster -> text (kill feed)
- ClipFrameClassifier: raster -> [(label, probability)] (visual indicators)
- ClapAudioClassifier: samples -> [(label, probability)] (audio events)

The classifiers are zero-shot: labels are plain text prompts, so they can be
tuned per game without training. Custom labels can be defined in .env:

    KILLCAM_CLIP_LABELS='label1|label2|label3'
    KILLCAM_CLAP_LABELS='label1|label2|label3'

Model packages are imported when a backend is constructed. A missing package
or a failed model load raises ModelUnavailableError so the caller can run
without that modality.
"""

import logging
import os
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np
import pytesseract
import torch
from PIL import Image
from dotenv import load_dotenv

from ..errors import ModelUnavailableError
from ..media.frames import RasterBuffer

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

CLAP_SAMPLE_RATE = 48000


def resolve_device(device: Optional[str] = None) -> str:
    if device is None:
        return "cuda" if torch.cuda.is_available() else "cpu"
    return device


def resolve_labels(labels: Optional[Sequence[str]], env_var: str, defaults: Sequence[str]) -> List[str]:
    """Pick labels with priority: parameter > environment variable > defaults."""
    if labels is not None:
        logger.info(f"Using {len(labels)} custom labels (parameter)")
        return list(labels)

    env_labels = os.getenv(env_var)
    if env_labels:
        parsed = [label.strip() for label in env_labels.split('|') if label.strip()]
        logger.info(f"Using {len(parsed)} custom labels (from {env_var})")
        return parsed

    return list(defaults)


class PaddleOCRRecognizer:
    """Kill-feed text recognition with PaddleOCR.

    PaddleOCR handles the low-contrast, stylized fonts of game HUDs better
    than Tesseract and is the default recognizer.
    """

    def __init__(self, lang: str = 'en', use_angle_cls: bool = False, show_log: bool = False):
        try:
            from paddleocr import PaddleOCR
        except ImportError as e:
            raise ModelUnavailableError("paddleocr", f"package not installed ({e})")

        logger.info(f"Initializing PaddleOCR (lang={lang})...")
        try:
            self.ocr = PaddleOCR(lang=lang, use_angle_cls=use_angle_cls, show_log=show_log)
        except Exception as e:
            raise ModelUnavailableError("paddleocr", str(e))
        self.use_angle_cls = use_angle_cls

    def __call__(self, raster: RasterBuffer) -> str:
        # PaddleOCR expects BGR (OpenCV default)
        bgr = cv2.cvtColor(np.asarray(raster.pixels), cv2.COLOR_RGB2BGR)
        result = self.ocr.ocr(bgr, cls=self.use_angle_cls)

        if not result or not result[0]:
            return ""

        # line format: [[[x1,y1], [x2,y2], [x3,y3], [x4,y4]], (text, confidence)]
        return " ".join(line[1][0] for line in result[0] if line)


class TesseractRecognizer:
    """Kill-feed text recognition with Tesseract (lighter fallback)."""

    def __init__(self, config: str = '--psm 6 --oem 3', upscale: int = 2):
        try:
            version = pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise ModelUnavailableError("tesseract", str(e))

        logger.info(f"Using Tesseract {version}")
        self.config = config
        self.upscale = upscale

    def preprocess(self, pixels: np.ndarray) -> np.ndarray:
        """Grayscale + upscale + Otsu threshold for HUD text."""
        gray = cv2.cvtColor(pixels, cv2.COLOR_RGB2GRAY) if pixels.ndim == 3 else pixels
        if self.upscale > 1:
            gray = cv2.resize(gray, None, fx=self.upscale, fy=self.upscale, interpolation=cv2.INTER_CUBIC)
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        return binary

    def __call__(self, raster: RasterBuffer) -> str:
        image = Image.fromarray(self.preprocess(np.asarray(raster.pixels)))
        return pytesseract.image_to_string(image, config=self.config).strip()


class ClipFrameClassifier:
    """Zero-shot frame classification with OpenAI CLIP.

    Attributes:
        device: Computation device ('cuda' or 'cpu').
        labels: Text prompts scored against each frame.
        text_features: Precomputed, normalized label embeddings.
    """

    DEFAULT_LABELS = [
        # Kill indicators
        "crosshair on an enemy player",
        "enemy elimination effect on screen",
        "sniper scope view aimed at a target",
        "first person view holding a weapon while shooting",
        "red elimination banner in the center of the screen",

        # Everything else
        "player walking with no enemies visible",
        "buy phase weapon shop menu",
        "spectating a teammate after dying",
        "main menu or lobby screen",
        "loading screen or agent select",
        "round end scoreboard",
    ]

    def __init__(self,
                 model_name: str = "ViT-B/32",
                 device: Optional[str] = None,
                 labels: Optional[Sequence[str]] = None):
        """
        Args:
            model_name: CLIP architecture ('ViT-B/32' fast, 'ViT-L/14' most accurate)
            device: 'cuda' or 'cpu'. Auto-detects if None.
            labels: Custom prompts. Priority: parameter > KILLCAM_CLIP_LABELS > defaults.

        Raises:
            ModelUnavailableError: If CLIP cannot be imported or loaded
        """
        try:
            import clip
        except ImportError as e:
            raise ModelUnavailableError("clip", f"package not installed ({e})")

        self.device = resolve_device(device)
        self.labels = resolve_labels(labels, 'KILLCAM_CLIP_LABELS', self.DEFAULT_LABELS)
        if not self.labels:
            raise ModelUnavailableError("clip", "no labels configured")

        logger.info(f"Loading CLIP model '{model_name}' on {self.device}...")
        try:
            self.model, self.preprocess = clip.load(model_name, device=self.device)
            text_inputs = clip.tokenize(self.labels).to(self.device)
            with torch.no_grad():
                self.text_features = self.model.encode_text(text_inputs)
                self.text_features /= self.text_features.norm(dim=-1, keepdim=True)
        except Exception as e:
            raise ModelUnavailableError("clip", str(e))
        logger.info(f"CLIP ready with {len(self.labels)} labels")

    def __call__(self, raster: RasterBuffer) -> List[Tuple[str, float]]:
        image_input = self.preprocess(Image.fromarray(np.asarray(raster.pixels))).unsqueeze(0).to(self.device)

        with torch.no_grad():
            image_features = self.model.encode_image(image_input)
            image_features /= image_features.norm(dim=-1, keepdim=True)
            similarity = (100.0 * image_features @ self.text_features.T).softmax(dim=-1)

        probs = similarity.cpu().numpy()[0]
        return sorted(((label, float(p)) for label, p in zip(self.labels, probs)),
                      key=lambda x: x[1], reverse=True)


class ClapAudioClassifier:
    """Zero-shot audio event classification with LAION-CLAP.

    CLAP expects 48kHz mono float audio, which is what the extractor produces.
    """

    DEFAULT_LABELS = [
        # Kill sounds
        "rifle gunshot",
        "sniper rifle shot",
        "rapid automatic weapon fire",
        "grenade explosion",
        "headshot impact bang",

        # Everything else
        "footsteps running",
        "character ability sound effect",
        "voice chat or teammate callouts",
        "menu music or UI sounds",
        "silence or very quiet ambient noise",
    ]

    def __init__(self,
                 device: Optional[str] = None,
                 labels: Optional[Sequence[str]] = None,
                 checkpoint: Optional[str] = None):
        """
        Args:
            device: 'cuda' or 'cpu'. Auto-detects if None.
            labels: Custom prompts. Priority: parameter > KILLCAM_CLAP_LABELS > defaults.
            checkpoint: Local checkpoint path (default: download pretrained weights).

        Raises:
            ModelUnavailableError: If CLAP cannot be imported or loaded
        """
        try:
            import laion_clap
        except ImportError as e:
            raise ModelUnavailableError("laion_clap", f"package not installed ({e})")

        self.device = resolve_device(device)
        self.labels = resolve_labels(labels, 'KILLCAM_CLAP_LABELS', self.DEFAULT_LABELS)
        if not self.labels:
            raise ModelUnavailableError("laion_clap", "no labels configured")

        logger.info(f"Loading CLAP model on {self.device}...")
        try:
            self.model = laion_clap.CLAP_Module(enable_fusion=False, device=self.device)
            if checkpoint:
                self.model.load_ckpt(checkpoint)
            else:
                self.model.load_ckpt()  # Downloads pretrained weights on first run
            self.text_features = self.model.get_text_embedding(self.labels)
        except Exception as e:
            raise ModelUnavailableError("laion_clap", str(e))
        logger.info(f"CLAP ready with {len(self.labels)} labels")

    def __call__(self, samples: np.ndarray, sample_rate: int) -> List[Tuple[str, float]]:
        if sample_rate != CLAP_SAMPLE_RATE:
            raise ValueError(f"CLAP expects {CLAP_SAMPLE_RATE}Hz audio, got {sample_rate}Hz")

        batch = np.asarray(samples, dtype=np.float32).reshape(1, -1)
        audio_embed = self.model.get_audio_embedding_from_data(x=batch, use_tensor=False)

        similarity = audio_embed @ self.text_features.T
        probs = torch.nn.functional.softmax(torch.tensor(similarity[0]), dim=0).numpy()
        return sorted(((label, float(p)) for label, p in zip(self.labels, probs)),
                      key=lambda x: x[1], reverse=True)
