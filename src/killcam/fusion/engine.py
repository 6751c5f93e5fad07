"""Detection Fusion Engine.

Merges the detections of every enabled modality into KillClip candidates.

Algorithm:
    1. Concatenate detections from all enabled modalities.
    2. Sort ascending by timestamp.
    3. Greedy forward-chain clustering: a detection joins the current group
       when it is within ``proximity_threshold`` seconds of the group's most
       recent member, otherwise it starts a new group. Slow drift can chain
       many detections into one long group.
    4. Summarize each group: mean timestamp, max confidence, first weapon
       match in member order, killfeed member count (floored at 1).
    5. Keep a group only if ``max_confidence >= 100 - sensitivity``.
    6. Clip start is ``max(0, avg_timestamp - pre_kill_buffer)``; every clip
       in a run has the configured duration.

Typical usage example:

    engine = DetectionFusionEngine(sensitivity=80, clip_duration=15, pre_kill_buffer=3)
    clips = engine.fuse(killfeed_results + visual_results + audio_results)
"""

import logging
from typing import Iterable, List, Optional, Sequence

from ..config import DetectionSettings
from ..game_profile import VALORANT, GameProfile, get_profile
from ..models import DetectionGroup, DetectionResult, KillClip, Modality

logger = logging.getLogger(__name__)

DEFAULT_PROXIMITY_THRESHOLD = 2.0
DEFAULT_WEAPONS = VALORANT.weapons

# Deterministic placement of simultaneous detections
_MODALITY_ORDER = {Modality.KILLFEED: 0, Modality.VISUAL: 1, Modality.AUDIO: 2}


def _sort_key(detection: DetectionResult):
    return (
        detection.timestamp,
        _MODALITY_ORDER.get(detection.modality, len(_MODALITY_ORDER)),
        -detection.confidence,
        detection.evidence,
    )


def group_nearby_detections(
    detections: Iterable[DetectionResult],
    threshold: float = DEFAULT_PROXIMITY_THRESHOLD
) -> List[List[DetectionResult]]:
    """Cluster detections by forward-chained temporal proximity.

    Args:
        detections: Detections from any number of modalities, in any order.
        threshold: Maximum gap in seconds between a detection and the
            previous member of its group.

    Returns:
        Non-overlapping groups in ascending time order. Each group keeps its
        members in ascending time order.
    """
    ordered = sorted(detections, key=_sort_key)
    groups: List[List[DetectionResult]] = []
    current: List[DetectionResult] = []

    for detection in ordered:
        if not current or detection.timestamp - current[-1].timestamp <= threshold:
            current.append(detection)
        else:
            groups.append(current)
            current = [detection]

    if current:
        groups.append(current)

    return groups


def extract_weapon(group: Sequence[DetectionResult], weapons: Sequence[str] = DEFAULT_WEAPONS) -> str:
    """Return the first weapon named in the group's evidence, else "Unknown".

    Members are scanned in group order; within one member the weapon list
    order decides.
    """
    for detection in group:
        evidence = detection.evidence.lower()
        for weapon in weapons:
            if weapon.lower() in evidence:
                return weapon[:1].upper() + weapon[1:].lower()
    return "Unknown"


def estimate_kill_count(group: Sequence[DetectionResult]) -> int:
    """Count kill-feed members; every group represents at least one kill."""
    killfeed_hits = sum(1 for d in group if d.modality == Modality.KILLFEED)
    return max(1, killfeed_hits)


def summarize_group(group: Sequence[DetectionResult], weapons: Sequence[str] = DEFAULT_WEAPONS) -> DetectionGroup:
    """Compute the fused statistics of one cluster."""
    if not group:
        raise ValueError("Cannot summarize an empty detection group")

    return DetectionGroup(
        members=tuple(group),
        avg_timestamp=sum(d.timestamp for d in group) / len(group),
        max_confidence=max(d.confidence for d in group),
        weapon=extract_weapon(group, weapons),
        enemies_killed=estimate_kill_count(group),
    )


def passes_sensitivity(max_confidence: float, sensitivity: float) -> bool:
    """Acceptance bar: higher sensitivity lowers the required confidence."""
    return max_confidence >= (100 - sensitivity)


class DetectionFusionEngine:
    """Turn noisy per-modality detections into a deduplicated clip list.

    Attributes:
        sensitivity: 0-100. A cluster becomes a clip when its max confidence
            is at least ``100 - sensitivity``.
        clip_duration: Duration in seconds of every produced clip.
        pre_kill_buffer: Seconds subtracted from the cluster mean timestamp.
        proximity_threshold: Forward-chain gap in seconds.
        weapons: Weapon vocabulary searched in detection evidence.
    """

    def __init__(self,
                 sensitivity: float = 80,
                 clip_duration: float = 15.0,
                 pre_kill_buffer: float = 3.0,
                 proximity_threshold: float = DEFAULT_PROXIMITY_THRESHOLD,
                 weapons: Sequence[str] = DEFAULT_WEAPONS,
                 enabled_modalities: Optional[Iterable[Modality]] = None):
        if not 0 <= sensitivity <= 100:
            raise ValueError(f"sensitivity must be within 0-100, got {sensitivity}")
        if clip_duration <= 0:
            raise ValueError(f"clip_duration must be > 0, got {clip_duration}")
        if pre_kill_buffer < 0:
            raise ValueError(f"pre_kill_buffer must be >= 0, got {pre_kill_buffer}")

        self.sensitivity = sensitivity
        self.clip_duration = clip_duration
        self.pre_kill_buffer = pre_kill_buffer
        self.proximity_threshold = proximity_threshold
        self.weapons = tuple(weapons)
        self.enabled_modalities = set(enabled_modalities) if enabled_modalities is not None else None

    @classmethod
    def from_settings(cls, settings: DetectionSettings, profile: Optional[GameProfile] = None) -> "DetectionFusionEngine":
        profile = profile or get_profile(settings.game)
        return cls(
            sensitivity=settings.sensitivity,
            clip_duration=settings.clip_duration,
            pre_kill_buffer=settings.pre_kill_buffer,
            proximity_threshold=settings.proximity_threshold,
            weapons=profile.weapons,
            enabled_modalities=settings.enabled_modalities,
        )

    def _filter_enabled(self, detections: Iterable[DetectionResult]) -> List[DetectionResult]:
        if self.enabled_modalities is None:
            return list(detections)
        return [d for d in detections if d.modality in self.enabled_modalities]

    def group(self, detections: Iterable[DetectionResult]) -> List[DetectionGroup]:
        """Cluster and summarize detections without applying the sensitivity filter."""
        groups = group_nearby_detections(self._filter_enabled(detections), self.proximity_threshold)
        return [summarize_group(g, self.weapons) for g in groups]

    def fuse(self, detections: Iterable[DetectionResult]) -> List[KillClip]:
        """Run the full fusion algorithm.

        Args:
            detections: All detection results of the run.

        Returns:
            Accepted clips in ascending time order. Clip ids are derived from
            the group index (``clip-1``, ``clip-2``...), so fusing the same
            detections twice yields identical lists.
        """
        summaries = self.group(detections)
        clips = []

        for index, summary in enumerate(summaries):
            if not passes_sensitivity(summary.max_confidence, self.sensitivity):
                logger.debug(
                    f"Dropped group at {summary.avg_timestamp:.2f}s "
                    f"(max confidence {summary.max_confidence:.1f} < {100 - self.sensitivity:.1f})"
                )
                continue

            clips.append(KillClip(
                id=f"clip-{index + 1}",
                timestamp=max(0.0, summary.avg_timestamp - self.pre_kill_buffer),
                duration=self.clip_duration,
                confidence=summary.max_confidence,
                weapon=summary.weapon,
                enemies_killed=summary.enemies_killed,
            ))

        logger.info(f"Fused {len(summaries)} groups into {len(clips)} clips (sensitivity {self.sensitivity})")
        return clips


def combine_detections(detections: Iterable[DetectionResult],
                       settings: DetectionSettings,
                       profile: Optional[GameProfile] = None) -> List[KillClip]:
    """Convenience wrapper: fuse detections using a DetectionSettings object."""
    return DetectionFusionEngine.from_settings(settings, profile).fuse(detections)
