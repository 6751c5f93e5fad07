"""
Integration tests for complete workflows.

Tests end-to-end functionality across multiple modules.
"""

import pytest
import json
import shutil
import subprocess
from pathlib import Path
from unittest.mock import patch

import numpy as np


@pytest.mark.integration
class TestDetectToReelWorkflow:
    """Detections -> fusion -> clip list on disk -> reel order."""

    def test_detections_to_reel_order(self, sample_detections, temp_output_dir):
        from src.killcam.clips import load_clips, save_clips
        from src.killcam.config import DetectionSettings, ReelOrder
        from src.killcam.fusion import combine_detections
        from src.killcam.reel import order_clips

        clips = combine_detections(sample_detections, DetectionSettings())
        assert [c.id for c in clips] == ["clip-1", "clip-2"]
        assert clips[0].is_multi_kill

        clips_file = temp_output_dir / "clips.json"
        save_clips(clips, str(clips_file))
        loaded = load_clips(str(clips_file))

        assert loaded == clips
        assert [c.id for c in order_clips(loaded, ReelOrder.CONFIDENCE)] == ["clip-2", "clip-1"]

    def test_pipeline_to_compiler(self, sample_video_file, temp_output_dir):
        """A full run with fake models feeding the reel compiler."""
        from src.killcam.config import DetectionSettings, HighlightReelSettings
        from src.killcam.detection import build_detectors
        from src.killcam.media import AudioSegment, MediaSegment, RasterBuffer, VideoFrame
        from src.killcam.pipeline import KillDetectionPipeline
        from src.killcam.reel import HighlightReelCompiler

        class ScriptedExtractor:
            audio_error = None

            def __init__(self, path):
                self.path = path

            def extract_frames(self, interval_seconds=0.5, cancel_event=None):
                raster = RasterBuffer.from_array(np.zeros((8, 8, 3), dtype=np.uint8))
                for k in range(120):
                    yield VideoFrame(k * interval_seconds, raster)

            def extract_audio(self, segment_seconds=1.0, sample_rate=48000, cancel_event=None):
                for k in range(60):
                    yield AudioSegment(float(k), np.zeros(10, dtype=np.float32), sample_rate)

            def extract_segment(self, start, duration, output_path=None):
                return MediaSegment(output_path, start, duration, True)

        kill_frames = {20.0, 45.0}
        frame_index = iter(range(10000))

        def recognizer(raster):
            return "You eliminated Enemy Phantom" if next(frame_index) * 0.5 in kill_frames else ""

        settings = DetectionSettings(visual_detection=False)
        detector_set = build_detectors(settings, recognizer=recognizer,
                                       audio_classifier=lambda samples, rate: [("silence", 0.9)])
        run = KillDetectionPipeline(settings, detector_set=detector_set, extractor_factory=ScriptedExtractor) \
            .run(str(sample_video_file))

        assert run.ok
        assert [c.timestamp for c in run.clips] == [17.0, 42.0]
        assert all(c.weapon == "Phantom" for c in run.clips)

        def fake_ffmpeg(cmd, **kwargs):
            Path(cmd[-1]).write_bytes(b"mp4")

        compiler = HighlightReelCompiler(extractor_factory=ScriptedExtractor)
        with patch('src.killcam.reel.compiler.subprocess.run', side_effect=fake_ffmpeg):
            reel = compiler.compile(str(sample_video_file), run.clips,
                                    HighlightReelSettings(include_intro=False, include_outro=False),
                                    str(temp_output_dir / "reel.mp4"))

        assert reel.clip_count == 2
        assert reel.duration == pytest.approx(29.5)
        assert (temp_output_dir / "reel.mp4").read_bytes() == b"mp4"


@pytest.mark.integration
@pytest.mark.slow
@pytest.mark.skipif(shutil.which('ffmpeg') is None or shutil.which('ffprobe') is None,
                    reason="Requires ffmpeg and ffprobe")
class TestRealMedia:
    """Exercises the extractor against a generated test video."""

    @pytest.fixture
    def test_video(self, tmp_path):
        path = tmp_path / "testsrc.mp4"
        subprocess.run([
            'ffmpeg', '-y', '-loglevel', 'error',
            '-f', 'lavfi', '-i', 'testsrc=size=320x240:rate=30:duration=6',
            '-f', 'lavfi', '-i', 'sine=frequency=440:sample_rate=48000:duration=6',
            '-c:v', 'libx264', '-pix_fmt', 'yuv420p', '-c:a', 'aac', '-shortest', str(path)
        ], check=True)
        return path

    def test_frames_audio_and_segment(self, test_video, tmp_path):
        from src.killcam.errors import RangeError
        from src.killcam.media import MediaExtractor

        extractor = MediaExtractor(str(test_video))

        frames = list(extractor.extract_frames(1.0))
        assert [f.timestamp for f in frames] == [0.0, 1.0, 2.0, 3.0, 4.0, 5.0]
        assert frames[0].image.size == (320, 240)

        segments = list(extractor.extract_audio(1.0))
        assert len(segments) >= 5
        assert all(len(s.samples) == 48000 for s in segments)

        segment = extractor.extract_segment(4.0, 15.0, str(tmp_path / "cut.mp4"))
        assert segment.duration == pytest.approx(2.0, abs=0.1)
        assert Path(segment.path).stat().st_size > 0

        with pytest.raises(RangeError):
            extractor.extract_segment(30.0, 5.0)


def _has_encoders(*names):
    if shutil.which('ffmpeg') is None or shutil.which('ffprobe') is None:
        return False
    result = subprocess.run(['ffmpeg', '-hide_banner', '-encoders'], capture_output=True, text=True)
    return all(f" {name} " in result.stdout for name in names)


@pytest.mark.integration
@pytest.mark.slow
@pytest.mark.skipif(not _has_encoders('libvpx', 'libopus'), reason="Requires ffmpeg with libvpx and libopus")
class TestRecordedWebM:
    """Recordings are WebM streamed to a pipe, so they carry no duration or cues."""

    @pytest.fixture
    def recording(self, tmp_path):
        from src.killcam.recording.ffmpeg_capture import FFmpegCaptureHost, SCREEN_SOURCE_ID
        from src.killcam.recording.sinks import DirectorySink

        host = FFmpegCaptureHost(platform="linux", ffmpeg_path="ffmpeg")
        # Same encoder and muxer settings, test sources instead of a screen
        host._input_args = lambda source_id: [
            '-f', 'lavfi', '-i', 'testsrc=size=320x240:rate=30:duration=10',
            '-f', 'lavfi', '-i', 'sine=frequency=440:sample_rate=48000:duration=10',
        ]
        cmd = host.build_command(SCREEN_SOURCE_ID)
        assert cmd[-3:] == ['-f', 'webm', 'pipe:1']

        data = subprocess.run(cmd, stdin=subprocess.DEVNULL, capture_output=True, check=True).stdout
        result = DirectorySink(str(tmp_path / "recordings")).persist(data, "valorant-recording-1.webm")
        assert result.success
        return result.path

    def test_duration_measured_from_packets(self, recording):
        from src.killcam.media import MediaExtractor

        info = MediaExtractor(recording).probe()

        assert info.duration == pytest.approx(10.0, abs=0.2)
        assert info.has_audio is True

    def test_frames_audio_and_segment(self, recording, tmp_path):
        from src.killcam.errors import RangeError
        from src.killcam.media import MediaExtractor

        extractor = MediaExtractor(recording)

        frames = list(extractor.extract_frames(1.0))
        assert len(frames) >= 9
        assert [f.timestamp for f in frames][:9] == [float(t) for t in range(9)]
        assert frames[0].image.size == (320, 240)

        segments = list(extractor.extract_audio(1.0))
        assert len(segments) >= 9
        assert all(len(s.samples) == 48000 for s in segments)
        assert extractor.audio_error is None

        segment = extractor.extract_segment(8.0, 15.0, str(tmp_path / "kill-clip-1-8s.mp4"))
        assert segment.duration == pytest.approx(2.0, abs=0.2)
        assert Path(segment.path).stat().st_size > 0

        with pytest.raises(RangeError):
            extractor.extract_segment(30.0, 5.0)


@pytest.mark.integration
class TestOutputDirectoryCreation:
    """Test that output directories are created correctly."""

    def test_output_dir_created(self, tmp_path, monkeypatch):
        """Test that output/ directory is created if it doesn't exist."""
        import main

        monkeypatch.chdir(tmp_path)
        assert not Path("output").exists()

        result = main.get_output_path("match.mp4", "_kills.json")

        assert Path("output").exists()
        assert Path("output").is_dir()
        assert result.startswith("output")

    def test_saved_clip_list_in_nested_dir(self, tmp_path, sample_clips):
        from src.killcam.clips import save_clips

        target = tmp_path / "a" / "b" / "clips.json"
        save_clips(sample_clips, str(target))

        with open(target) as f:
            assert json.load(f)['total_clips'] == 3
