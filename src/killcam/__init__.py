"""Kill Clip Detection & Highlight Reel Toolkit.

Finds kills in recorded gameplay by fusing kill-feed OCR, visual indicators
and audio cues, cuts them into clips and compiles highlight reels. Also
records gameplay, starting automatically when the game is running.

Modules:
    media: Frame, audio and segment extraction
    detection: Per-modality kill detectors and model backends
    fusion: Temporal clustering of detections into kill clips
    recording: Screen capture state machine
    reel: Highlight reel compilation

Example:
    >>> from src.killcam.pipeline import KillDetectionPipeline
    >>> from src.killcam.reel import HighlightReelCompiler
    >>>
    >>> run = KillDetectionPipeline().run("match.mp4")
    >>> reel = HighlightReelCompiler().compile("match.mp4", run.clips, output_path="reel.mp4")
"""

__version__ = "1.0.0"
__author__ = "Killcam"
__all__ = ['media', 'detection', 'fusion', 'recording', 'reel']
