"""
Media Module

Decodes recordings into sampled frames, fixed-length audio segments and
standalone clip segments.
"""

from .frames import AudioSegment, RasterBuffer, VideoFrame, crop, crop_top_right
from .extractor import MediaExtractor, MediaSegment, VideoInfo, probe_video

__all__ = [
    'AudioSegment',
    'RasterBuffer',
    'VideoFrame',
    'crop',
    'crop_top_right',
    'MediaExtractor',
    'MediaSegment',
    'VideoInfo',
    'probe_video'
]
