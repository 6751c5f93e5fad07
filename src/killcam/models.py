"""
Core data model shared by the extractor, detectors, fusion engine and reel
compiler.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class Modality(str, Enum):
    """Independent detection channel."""
    VISUAL = "visual"
    AUDIO = "audio"
    KILLFEED = "killfeed"


@dataclass(frozen=True)
class DetectionResult:
    """Single detector hit, consumed only by the fusion engine."""
    timestamp: float
    confidence: float
    modality: Modality
    evidence: str = ""

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"Confidence must be within 0-100, got {self.confidence}")


@dataclass(frozen=True)
class DetectionGroup:
    """Summary of one temporal cluster of detections."""
    members: tuple
    avg_timestamp: float
    max_confidence: float
    weapon: str
    enemies_killed: int

    @property
    def is_multi_kill(self) -> bool:
        return self.enemies_killed > 1

    @property
    def modalities(self) -> List[Modality]:
        seen = []
        for detection in self.members:
            if detection.modality not in seen:
                seen.append(detection.modality)
        return seen


@dataclass
class KillClip:
    """
    A detected kill, ready for export or reel compilation.

    Only ``thumbnail`` and ``media_ref`` may change after creation.
    ``is_multi_kill`` is derived from ``enemies_killed``.
    """
    id: str
    timestamp: float
    duration: float
    confidence: float
    weapon: str = "Unknown"
    enemies_killed: int = 1
    thumbnail: Optional[bytes] = field(default=None, repr=False)
    media_ref: Optional[str] = None

    def __post_init__(self):
        if self.timestamp < 0:
            raise ValueError(f"Clip timestamp must be >= 0, got {self.timestamp}")
        if self.duration <= 0:
            raise ValueError(f"Clip duration must be > 0, got {self.duration}")
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"Clip confidence must be within 0-100, got {self.confidence}")
        if self.enemies_killed < 1:
            raise ValueError(f"enemies_killed must be >= 1, got {self.enemies_killed}")

    @property
    def is_multi_kill(self) -> bool:
        return self.enemies_killed > 1

    @property
    def end_time(self) -> float:
        return self.timestamp + self.duration

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'duration': self.duration,
            'confidence': self.confidence,
            'weapon': self.weapon,
            'enemies_killed': self.enemies_killed,
            'is_multi_kill': self.is_multi_kill,
            'media_ref': self.media_ref,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "KillClip":
        # is_multi_kill is recomputed, never read back
        return cls(
            id=str(data['id']),
            timestamp=float(data['timestamp']),
            duration=float(data['duration']),
            confidence=float(data['confidence']),
            weapon=data.get('weapon') or "Unknown",
            enemies_killed=int(data.get('enemies_killed', 1)),
            media_ref=data.get('media_ref'),
        )


class RunStatus(str, Enum):
    COMPLETE = "complete"
    DEGRADED = "degraded"
    FAILED = "failed"


class DegradedReason(str, Enum):
    """Why a modality did not contribute to a run."""
    MODEL_UNAVAILABLE = "model_unavailable"
    NO_AUDIO_TRACK = "no_audio_track"
    DETECTOR_FAILED = "detector_failed"


@dataclass(frozen=True)
class DegradedResult:
    """Explicit marker that a modality ran with reduced capability."""
    modality: Modality
    reason: DegradedReason
    detail: str = ""

    def to_dict(self) -> Dict:
        return {'modality': self.modality.value, 'reason': self.reason.value, 'detail': self.detail}


@dataclass
class DetectionRun:
    """Outcome of one extraction + detection + fusion run."""
    video_path: str
    status: RunStatus
    clips: List[KillClip] = field(default_factory=list)
    detection_counts: Dict[str, int] = field(default_factory=dict)
    skipped_items: int = 0
    degraded: List[DegradedResult] = field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.status != RunStatus.FAILED

    def to_dict(self) -> Dict:
        return {
            'video_path': self.video_path,
            'status': self.status.value,
            'clips': [clip.to_dict() for clip in self.clips],
            'detection_counts': dict(self.detection_counts),
            'skipped_items': self.skipped_items,
            'degraded': [d.to_dict() for d in self.degraded],
            'error': self.error,
            'cancelled': self.cancelled,
        }
