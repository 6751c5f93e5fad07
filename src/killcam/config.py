"""
Configuration

Detection and highlight-reel settings. Values resolve with the priority
explicit argument > environment variable (KILLCAM_*, .env supported) > default.

Example .env:
    KILLCAM_SENSITIVITY=75
    KILLCAM_CLIP_DURATION=12
    KILLCAM_AUDIO_DETECTION=false
    KILLCAM_FFMPEG=/usr/local/bin/ffmpeg
"""

import os
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .models import Modality

# Load environment variables
load_dotenv()

SENSITIVITY_RANGE = (10, 100)
SENSITIVITY_STEP = 5
CLIP_DURATION_RANGE = (5.0, 30.0)
PRE_KILL_BUFFER_RANGE = (1.0, 10.0)
PRE_KILL_BUFFER_STEP = 0.5
TRANSITION_RANGE = (0.0, 2.0)

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {raw!r}")


def _is_step(value: float, step: float) -> bool:
    return abs(value / step - round(value / step)) < 1e-9


def get_ffmpeg_path() -> str:
    return os.getenv('KILLCAM_FFMPEG', 'ffmpeg')


def get_ffprobe_path() -> str:
    return os.getenv('KILLCAM_FFPROBE', 'ffprobe')


@dataclass(frozen=True)
class DetectionSettings:
    """Settings for one kill detection run.

    Attributes:
        audio_detection: Enable the audio-event modality.
        visual_detection: Enable the visual-indicator modality.
        killfeed_detection: Enable the kill-feed OCR modality.
        sensitivity: 10-100 in steps of 5. Higher accepts lower-confidence clusters.
        clip_duration: Length of every produced clip in seconds (5-30).
        pre_kill_buffer: Seconds of lead-up kept before a kill (1-10, step 0.5).
        frame_interval: Seconds between sampled frames.
        audio_segment_seconds: Length of each audio window.
        proximity_threshold: Max gap in seconds between chained detections in a cluster.
        killfeed_confidence: Fixed confidence assigned to kill-feed hits.
        visual_threshold: Scaled score (0-100) a visual label must exceed.
        audio_min_score: Raw score (0-1) the top audio label must exceed.
        game: Game profile name.
    """
    audio_detection: bool = True
    visual_detection: bool = True
    killfeed_detection: bool = True
    sensitivity: int = 80
    clip_duration: float = 15.0
    pre_kill_buffer: float = 3.0
    frame_interval: float = 0.5
    audio_segment_seconds: float = 1.0
    proximity_threshold: float = 2.0
    killfeed_confidence: float = 85.0
    visual_threshold: float = 70.0
    audio_min_score: float = 0.6
    game: str = 'valorant'

    ENV_PREFIX = 'KILLCAM_'

    @classmethod
    def from_env(cls, **overrides: Any) -> "DetectionSettings":
        """Build settings from KILLCAM_* environment variables.

        Args:
            **overrides: Explicit values. ``None`` values are ignored so CLI
                arguments can be passed straight through.

        Raises:
            ValueError: If an environment value cannot be parsed or the
                resulting settings are out of range.
        """
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = os.getenv(f"{cls.ENV_PREFIX}{f.name.upper()}")
            if raw is None or raw.strip() == '':
                continue
            try:
                if f.type in (bool, 'bool'):
                    values[f.name] = _parse_bool(raw)
                elif f.type in (int, 'int'):
                    values[f.name] = int(raw)
                elif f.type in (float, 'float'):
                    values[f.name] = float(raw)
                else:
                    values[f.name] = raw.strip()
            except ValueError as e:
                raise ValueError(f"Invalid {cls.ENV_PREFIX}{f.name.upper()}: {e}")

        values.update({k: v for k, v in overrides.items() if v is not None})
        settings = cls(**values)
        settings.validate()
        return settings

    def with_overrides(self, **overrides: Any) -> "DetectionSettings":
        settings = replace(self, **{k: v for k, v in overrides.items() if v is not None})
        settings.validate()
        return settings

    @property
    def enabled_modalities(self) -> list:
        enabled = []
        if self.killfeed_detection:
            enabled.append(Modality.KILLFEED)
        if self.visual_detection:
            enabled.append(Modality.VISUAL)
        if self.audio_detection:
            enabled.append(Modality.AUDIO)
        return enabled

    def validate(self) -> None:
        """Check every value against the supported configuration surface.

        Raises:
            ValueError: Listing every out-of-range value.
        """
        problems = []

        low, high = SENSITIVITY_RANGE
        if not low <= self.sensitivity <= high or self.sensitivity % SENSITIVITY_STEP != 0:
            problems.append(f"sensitivity must be {low}-{high} in steps of {SENSITIVITY_STEP} (got {self.sensitivity})")

        low, high = CLIP_DURATION_RANGE
        if not low <= self.clip_duration <= high:
            problems.append(f"clip_duration must be {low:g}-{high:g}s (got {self.clip_duration})")

        low, high = PRE_KILL_BUFFER_RANGE
        if not low <= self.pre_kill_buffer <= high or not _is_step(self.pre_kill_buffer, PRE_KILL_BUFFER_STEP):
            problems.append(
                f"pre_kill_buffer must be {low:g}-{high:g}s in steps of {PRE_KILL_BUFFER_STEP} (got {self.pre_kill_buffer})"
            )

        if self.frame_interval <= 0:
            problems.append(f"frame_interval must be > 0 (got {self.frame_interval})")
        if self.audio_segment_seconds <= 0:
            problems.append(f"audio_segment_seconds must be > 0 (got {self.audio_segment_seconds})")
        if self.proximity_threshold < 0:
            problems.append(f"proximity_threshold must be >= 0 (got {self.proximity_threshold})")
        if not 0 <= self.killfeed_confidence <= 100:
            problems.append(f"killfeed_confidence must be 0-100 (got {self.killfeed_confidence})")
        if not 0 <= self.visual_threshold <= 100:
            problems.append(f"visual_threshold must be 0-100 (got {self.visual_threshold})")
        if not 0 <= self.audio_min_score <= 1:
            problems.append(f"audio_min_score must be 0-1 (got {self.audio_min_score})")

        if problems:
            raise ValueError("Invalid detection settings: " + "; ".join(problems))


class ReelOrder(str, Enum):
    CHRONOLOGICAL = "chronological"
    CONFIDENCE = "confidence"


@dataclass(frozen=True)
class HighlightReelSettings:
    """Per-compile highlight reel options."""
    transition_duration: float = 0.5
    order_by: ReelOrder = ReelOrder.CHRONOLOGICAL
    include_intro: bool = True
    include_outro: bool = True
    fade_transitions: bool = True

    def __post_init__(self):
        try:
            object.__setattr__(self, 'order_by', ReelOrder(self.order_by))
        except ValueError:
            raise ValueError(f"order_by must be one of {[o.value for o in ReelOrder]} (got {self.order_by!r})")

        low, high = TRANSITION_RANGE
        if not low <= self.transition_duration <= high:
            raise ValueError(f"transition_duration must be {low:g}-{high:g}s (got {self.transition_duration})")

    @property
    def crossfade(self) -> Optional[float]:
        """Crossfade length in seconds, or None for hard cuts."""
        if self.fade_transitions and self.transition_duration > 0:
            return self.transition_duration
        return None
