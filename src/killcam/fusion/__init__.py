"""
Fusion Module

Merges detections from every modality into deduplicated kill clips.
"""

from .engine import DetectionFusionEngine, combine_detections, group_nearby_detections

__all__ = [
    'DetectionFusionEngine',
    'combine_detections',
    'group_nearby_detections'
]
