"""
Pytest configuration and shared fixtures.

This module provides fixtures used across multiple test files.
"""

import json
import sys
from pathlib import Path
from typing import List

import pytest
import numpy as np

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.killcam.media.frames import AudioSegment, RasterBuffer, VideoFrame  # noqa: E402
from src.killcam.models import DetectionResult, KillClip, Modality  # noqa: E402


@pytest.fixture
def project_root_path() -> Path:
    """Return the project root directory path."""
    return Path(__file__).parent.parent


@pytest.fixture
def temp_output_dir(tmp_path) -> Path:
    """Return a temporary output directory for tests."""
    output_dir = tmp_path / "test_output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


@pytest.fixture
def sample_frame() -> np.ndarray:
    """Create a sample 1920x1080 RGB frame (numpy array) for testing."""
    frame = np.zeros((1080, 1920, 3), dtype=np.uint8)

    # Colored regions so crops are easy to tell apart
    frame[0:360, 0:640] = [255, 0, 0]  # Red, top-left
    frame[360:720, 640:1280] = [0, 255, 0]  # Green, center
    frame[0:432, 1344:1920] = [0, 0, 255]  # Blue, kill feed area (top-right 30% x 40%)

    return frame


@pytest.fixture
def sample_raster(sample_frame) -> RasterBuffer:
    return RasterBuffer.from_array(sample_frame)


@pytest.fixture
def sample_video_frame(sample_raster) -> VideoFrame:
    return VideoFrame(timestamp=12.5, image=sample_raster)


@pytest.fixture
def sample_audio_segment() -> AudioSegment:
    """One second of a 440Hz tone at 48kHz."""
    t = np.arange(48000, dtype=np.float32) / 48000
    samples = (0.5 * np.sin(2 * np.pi * 440 * t)).astype(np.float32)
    return AudioSegment(timestamp=7.0, samples=samples, sample_rate=48000)


def make_detection(timestamp: float,
                   confidence: float = 85.0,
                   modality: Modality = Modality.KILLFEED,
                   evidence: str = "") -> DetectionResult:
    return DetectionResult(timestamp=timestamp, confidence=confidence, modality=modality, evidence=evidence)


@pytest.fixture
def detection_factory():
    """Factory for DetectionResult objects."""
    return make_detection


@pytest.fixture
def sample_detections() -> List[DetectionResult]:
    """Two kills: a double kill around 10s and a single kill at 30s."""
    return [
        make_detection(10.0, 85, Modality.KILLFEED, "Player1 eliminated Enemy1 Vandal"),
        make_detection(10.5, 72, Modality.VISUAL, "crosshair on an enemy player"),
        make_detection(11.0, 88, Modality.AUDIO, "rifle gunshot"),
        make_detection(11.5, 85, Modality.KILLFEED, "Player1 eliminated Enemy2"),
        make_detection(30.0, 90, Modality.AUDIO, "sniper rifle shot"),
    ]


@pytest.fixture
def sample_clips() -> List[KillClip]:
    return [
        KillClip(id="clip-1", timestamp=7.75, duration=15.0, confidence=88.0, weapon="Vandal", enemies_killed=2),
        KillClip(id="clip-2", timestamp=27.0, duration=15.0, confidence=90.0),
        KillClip(id="clip-3", timestamp=50.0, duration=15.0, confidence=75.0, weapon="Operator"),
    ]


@pytest.fixture
def sample_clips_json(tmp_path, sample_clips) -> Path:
    """Clip list file in the detect-kills output format."""
    json_path = tmp_path / "clips.json"
    with open(json_path, 'w') as f:
        json.dump({'clips': [clip.to_dict() for clip in sample_clips]}, f, indent=2)
    return json_path


@pytest.fixture
def sample_video_file(tmp_path) -> Path:
    """Placeholder video path; content is never decoded in unit tests."""
    video_path = tmp_path / "match.mp4"
    video_path.write_bytes(b"\x00" * 16)
    return video_path


# Markers for conditional test skipping
def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "unit: fast tests with mocked models and subprocesses"
    )
    config.addinivalue_line(
        "markers", "integration: tests spanning several modules"
    )
    config.addinivalue_line(
        "markers", "slow: tests that need ffmpeg or real media"
    )
