"""
Highlight Reel Module

Compiles kill clips into a single video with optional bumpers and crossfades.
"""

from .compiler import HighlightReel, HighlightReelCompiler, order_clips

__all__ = [
    'HighlightReel',
    'HighlightReelCompiler',
    'order_clips'
]
