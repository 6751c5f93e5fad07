"""
Recording Module

Gameplay capture with auto-start when the game is running.
"""

from .session import CaptureSource, RecordingSession, RecordingState, SaveResult, choose_source
from .controller import RecordingController
from .ffmpeg_capture import FFmpegCaptureHost
from .sinks import DirectorySink

__all__ = [
    'CaptureSource',
    'RecordingSession',
    'RecordingState',
    'SaveResult',
    'choose_source',
    'RecordingController',
    'FFmpegCaptureHost',
    'DirectorySink'
]
