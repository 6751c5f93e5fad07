"""
Media Extraction Utility

Decodes a gameplay recording into sampled frames, fixed-length audio segments
and standalone clip segments.

- Frames: OpenCV sequential decode, one frame per sampling interval
- Audio: PyAV decode + resample to mono float32
- Segments: ffmpeg re-encode (frame-accurate cuts, playable on their own)
"""

import json
import logging
import math
import os
import subprocess
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Optional

import av
import cv2
import numpy as np

from ..config import get_ffmpeg_path, get_ffprobe_path
from ..errors import DecodeError, RangeError
from .frames import AudioSegment, RasterBuffer, VideoFrame

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 48000


@dataclass(frozen=True)
class VideoInfo:
    """Container/stream properties reported by ffprobe."""
    path: str
    duration: float
    fps: float
    width: int
    height: int
    has_audio: bool
    audio_sample_rate: Optional[int] = None

    @property
    def duration_formatted(self) -> str:
        return format_time(self.duration)


@dataclass(frozen=True)
class MediaSegment:
    """Standalone playable excerpt of a source recording."""
    path: str
    start_time: float
    duration: float
    has_audio: bool

    def read_bytes(self) -> bytes:
        return Path(self.path).read_bytes()


def format_time(seconds: float) -> str:
    """Format seconds as HH:MM:SS"""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _parse_duration(stream: dict, format_info: dict) -> float:
    """Duration from stream field, stream DURATION tag (mkv/webm) or container."""
    if stream.get('duration'):
        return float(stream['duration'])

    tag = stream.get('tags', {}).get('DURATION')
    if tag:
        try:
            hours, minutes, seconds = tag.split(':')
            return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
        except ValueError:
            pass

    if format_info.get('duration'):
        return float(format_info['duration'])
    return 0.0


def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove partial segment {path}: {e}")


def demux_duration(video_path: str) -> float:
    """
    Duration from the last packet timestamp.

    WebM written to a pipe (as the screen recorder does) has no duration
    element and no cues, so the only way to learn its length is to walk the
    packets. Nothing is decoded.

    Raises:
        DecodeError: If the file cannot be opened
    """
    try:
        container = av.open(video_path)
    except (av.error.FFmpegError, OSError) as e:
        raise DecodeError(f"Could not open video: {e}")

    end = 0.0
    try:
        for packet in container.demux():
            if packet.pts is None or packet.time_base is None:
                continue
            end = max(end, float((packet.pts + (packet.duration or 0)) * packet.time_base))
    except av.error.FFmpegError as e:
        # Truncated tail (recorder killed mid-write): keep what was readable
        logger.warning(f"Stopped scanning {video_path} at {end:.2f}s: {e}")
    finally:
        start = container.start_time
        container.close()

    if start:
        end -= start / av.time_base
    return max(0.0, end)


def probe_video(video_path: str, ffprobe_path: Optional[str] = None) -> VideoInfo:
    """
    Probe a video file with ffprobe.

    Args:
        video_path: Path to video file
        ffprobe_path: ffprobe executable (default: KILLCAM_FFPROBE or 'ffprobe')

    Returns:
        VideoInfo for the first video stream

    Raises:
        DecodeError: If the file cannot be probed or has no video stream
    """
    cmd = [
        ffprobe_path or get_ffprobe_path(),
        '-v', 'quiet',
        '-print_format', 'json',
        '-show_streams',
        '-show_format',
        video_path
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        data = json.loads(result.stdout)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise DecodeError(f"Failed to probe video with ffprobe: {e}")
    except json.JSONDecodeError as e:
        raise DecodeError(f"Failed to parse ffprobe output: {e}")

    streams = data.get('streams', [])
    video_streams = [s for s in streams if s.get('codec_type') == 'video']
    audio_streams = [s for s in streams if s.get('codec_type') == 'audio']

    if not video_streams:
        raise DecodeError(f"No video streams found in: {video_path}")

    stream = video_streams[0]
    fps_str = stream.get('r_frame_rate', '0/1')
    try:
        num, den = map(int, fps_str.split('/'))
        fps = num / den if den > 0 else 0.0
    except ValueError:
        fps = 0.0

    duration = _parse_duration(stream, data.get('format', {}))
    if duration <= 0:
        duration = demux_duration(video_path)
        logger.info(f"No duration metadata in {video_path}, measured {duration:.2f}s from packets")
    audio_rate = int(audio_streams[0]['sample_rate']) if audio_streams and audio_streams[0].get('sample_rate') else None

    return VideoInfo(
        path=video_path,
        duration=duration,
        fps=fps,
        width=int(stream.get('width', 0)),
        height=int(stream.get('height', 0)),
        has_audio=bool(audio_streams),
        audio_sample_rate=audio_rate,
    )


class MediaExtractor:
    """Extract frames, audio segments and clip segments from one recording.

    Each extraction call re-opens the source, so calling it again from the
    start yields the same sequence. Frames and segments are produced lazily
    and never accumulated.
    """

    def __init__(self,
                 video_path: str,
                 ffmpeg_path: Optional[str] = None,
                 ffprobe_path: Optional[str] = None,
                 work_dir: Optional[str] = None):
        """
        Initialize media extractor.

        Args:
            video_path: Path to video file
            ffmpeg_path: ffmpeg executable (default: KILLCAM_FFMPEG or 'ffmpeg')
            ffprobe_path: ffprobe executable (default: KILLCAM_FFPROBE or 'ffprobe')
            work_dir: Directory for temporary segment files (default: system temp)

        Raises:
            DecodeError: If the video file does not exist
        """
        if not os.path.exists(video_path):
            raise DecodeError(f"Video file not found: {video_path}")

        self.video_path = str(video_path)
        self.ffmpeg_path = ffmpeg_path or get_ffmpeg_path()
        self.ffprobe_path = ffprobe_path or get_ffprobe_path()
        self.work_dir = work_dir
        self.audio_error: Optional[str] = None
        self._info: Optional[VideoInfo] = None

    def probe(self) -> VideoInfo:
        if self._info is None:
            self._info = probe_video(self.video_path, self.ffprobe_path)
        return self._info

    def _open_capture(self) -> cv2.VideoCapture:
        capture = cv2.VideoCapture(self.video_path, cv2.CAP_FFMPEG)
        if not capture.isOpened():
            capture.release()
            raise DecodeError(f"Could not open video: {self.video_path}")
        return capture

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def extract_frames(self,
                       interval_seconds: float = 0.5,
                       cancel_event: Optional[threading.Event] = None) -> Generator[VideoFrame, None, None]:
        """
        Yield one frame per sampling interval.

        The last partial interval is dropped: a 9s video sampled every 2s
        yields frames at 0, 2, 4 and 6s.

        Args:
            interval_seconds: Time between frames
            cancel_event: Optional event; extraction stops once it is set

        Yields:
            VideoFrame with an RGB raster

        Raises:
            DecodeError: If the video cannot be opened or has no frames
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")

        capture = self._open_capture()
        try:
            fps = capture.get(cv2.CAP_PROP_FPS)
            duration = self._capture_duration(capture, fps)
            total = int(math.floor(duration / interval_seconds + 1e-9))
            if total <= 0:
                raise DecodeError(f"Video reports no decodable frames: {self.video_path}")

            logger.info(f"Sampling {total} frames every {interval_seconds:.2f}s from {self.video_path} "
                        f"({format_time(duration)})")

            # A frame counts for a sample point within half a frame of it
            tolerance = 0.5 / fps if fps > 0 else 0.0
            decoded = 0
            index = 0
            while index < total:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Frame extraction cancelled at frame {index}/{total}")
                    return

                # Skip frames without decoding them into images
                if not capture.grab():
                    logger.warning(f"Video ended early after {decoded} frames ({index}/{total} samples)")
                    return
                decoded += 1

                position = self._frame_position(capture, decoded, fps)
                if position + tolerance < index * interval_seconds:
                    continue

                success, frame = capture.retrieve()
                if not success:
                    logger.warning(f"Failed to decode frame at {position:.2f}s, stopping extraction")
                    return

                rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                raster = RasterBuffer.from_array(rgb)
                # Variable frame rate gaps can span several sample points
                while index < total and position + tolerance >= index * interval_seconds:
                    yield VideoFrame(timestamp=index * interval_seconds, image=raster)
                    index += 1
        finally:
            capture.release()

    def _capture_duration(self, capture: cv2.VideoCapture, fps: float) -> float:
        frame_count = capture.get(cv2.CAP_PROP_FRAME_COUNT)
        if fps > 0 and frame_count > 0:
            return frame_count / fps

        # Recordings streamed to disk carry no frame count (OpenCV reports
        # garbage), so fall back to the probed or demuxed duration
        logger.info(f"No usable frame count for {self.video_path} ({frame_count:g}), probing duration")
        return self.probe().duration

    @staticmethod
    def _frame_position(capture: cv2.VideoCapture, decoded: int, fps: float) -> float:
        """Timestamp of the last grabbed frame in seconds."""
        msec = capture.get(cv2.CAP_PROP_POS_MSEC)
        if msec > 0 or decoded == 1 or fps <= 0:
            return max(0.0, msec) / 1000.0
        return (decoded - 1) / fps

    def extract_thumbnail(self, timestamp: float, max_width: int = 320) -> Optional[bytes]:
        """
        Grab a single frame as JPEG bytes.

        Args:
            timestamp: Time in seconds
            max_width: Downscale frames wider than this

        Returns:
            JPEG bytes or None if the frame could not be read
        """
        capture = self._open_capture()
        try:
            capture.set(cv2.CAP_PROP_POS_MSEC, max(0.0, timestamp) * 1000.0)
            success, frame = capture.read()
            if not success:
                return None

            height, width = frame.shape[:2]
            if width > max_width:
                scale = max_width / width
                frame = cv2.resize(frame, (max_width, int(height * scale)), interpolation=cv2.INTER_AREA)

            ok, encoded = cv2.imencode('.jpg', frame)
            return encoded.tobytes() if ok else None
        finally:
            capture.release()

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def extract_audio(self,
                      segment_seconds: float = 1.0,
                      sample_rate: int = DEFAULT_SAMPLE_RATE,
                      cancel_event: Optional[threading.Event] = None) -> Generator[AudioSegment, None, None]:
        """
        Yield contiguous, non-overlapping mono audio segments.

        Audio is optional to the pipeline: a missing or undecodable audio track
        ends the sequence (possibly empty) instead of raising. The reason is
        kept in ``audio_error``.

        Args:
            segment_seconds: Length of each segment
            sample_rate: Output sample rate in Hz (48kHz matches CLAP)
            cancel_event: Optional event; extraction stops once it is set

        Yields:
            AudioSegment with float32 samples. The trailing partial segment is
            zero-padded to full length.
        """
        self.audio_error = None
        try:
            yield from self._decode_audio(segment_seconds, sample_rate, cancel_event)
        except DecodeError as e:
            self.audio_error = str(e)
            logger.warning(f"Audio unavailable for {self.video_path}: {e}")

    def _decode_audio(self,
                      segment_seconds: float,
                      sample_rate: int,
                      cancel_event: Optional[threading.Event]) -> Generator[AudioSegment, None, None]:
        if segment_seconds <= 0:
            raise ValueError(f"segment_seconds must be > 0, got {segment_seconds}")

        try:
            container = av.open(self.video_path)
        except (av.error.FFmpegError, OSError) as e:
            raise DecodeError(f"Could not open audio: {e}")

        samples_per_segment = int(round(segment_seconds * sample_rate))
        pending = np.zeros(0, dtype=np.float32)
        index = 0

        try:
            if not container.streams.audio:
                raise DecodeError("no audio track")

            stream = container.streams.audio[0]
            resampler = av.AudioResampler(format='flt', layout='mono', rate=sample_rate)

            def drain(frames):
                nonlocal pending
                for resampled in frames:
                    pending = np.concatenate([pending, resampled.to_ndarray().reshape(-1).astype(np.float32)])

            for frame in container.decode(stream):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Audio extraction cancelled at segment {index}")
                    return

                drain(resampler.resample(frame))
                while len(pending) >= samples_per_segment:
                    yield AudioSegment(
                        timestamp=index * segment_seconds,
                        samples=pending[:samples_per_segment].copy(),
                        sample_rate=sample_rate,
                    )
                    pending = pending[samples_per_segment:]
                    index += 1

            drain(resampler.resample(None))
            while len(pending) > 0:
                chunk = pending[:samples_per_segment]
                if len(chunk) < samples_per_segment:
                    chunk = np.pad(chunk, (0, samples_per_segment - len(chunk)))
                yield AudioSegment(timestamp=index * segment_seconds, samples=chunk.copy(), sample_rate=sample_rate)
                pending = pending[samples_per_segment:]
                index += 1

        except av.error.FFmpegError as e:
            raise DecodeError(f"Audio decode failed after {index} segments: {e}")
        finally:
            container.close()

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    def clamp_range(self, start_time: float, duration: float):
        """
        Clamp a requested range to the source.

        Returns:
            (start_time, duration) of the maximal valid segment

        Raises:
            RangeError: If no part of the range lies inside the source
        """
        source_duration = self.probe().duration
        start = max(0.0, start_time)

        if start >= source_duration:
            raise RangeError(f"Segment start {start_time:.2f}s is beyond source duration {source_duration:.2f}s")

        clamped = min(duration, source_duration - start)
        if clamped <= 0:
            raise RangeError(f"Empty segment requested at {start_time:.2f}s (duration {duration:.2f}s)")

        if clamped < duration:
            logger.info(f"Clamped segment {start:.2f}s+{duration:.2f}s to {clamped:.2f}s "
                        f"(source ends at {source_duration:.2f}s)")
        return start, clamped

    def extract_segment(self,
                        start_time: float,
                        duration: float,
                        output_path: Optional[str] = None) -> MediaSegment:
        """
        Cut a standalone, re-encoded segment.

        Args:
            start_time: Start time in seconds
            duration: Duration in seconds; clamped to the end of the source
            output_path: Output file (default: temp .mp4 in work_dir)

        Returns:
            MediaSegment describing the written file

        Raises:
            RangeError: If the start lies at or beyond the end of the source
            DecodeError: If ffmpeg fails
        """
        start, clamped = self.clamp_range(start_time, duration)
        has_audio = self.probe().has_audio

        if output_path is None:
            fd, output_path = tempfile.mkstemp(suffix='.mp4', prefix='killcam_segment_', dir=self.work_dir)
            os.close(fd)

        cmd = [
            self.ffmpeg_path,
            '-y',
            '-ss', f"{start:.3f}",
            '-i', self.video_path,
            '-t', f"{clamped:.3f}",
            '-c:v', 'libx264',
            '-preset', 'veryfast',
            '-crf', '20',
            '-pix_fmt', 'yuv420p',
        ]
        if has_audio:
            cmd.extend(['-c:a', 'aac', '-b:a', '160k'])
        else:
            cmd.append('-an')
        cmd.extend([
            '-movflags', '+faststart',
            '-avoid_negative_ts', 'make_zero',
            output_path
        ])

        try:
            subprocess.run(cmd, capture_output=True, check=True)
        except subprocess.CalledProcessError as e:
            _remove_partial(output_path)
            stderr = e.stderr.decode(errors='replace') if isinstance(e.stderr, bytes) else (e.stderr or '')
            raise DecodeError(f"ffmpeg segment extraction failed: {stderr.strip()[-500:]}")
        except FileNotFoundError as e:
            _remove_partial(output_path)
            raise DecodeError(f"ffmpeg not found: {e}")

        logger.debug(f"Extracted segment {start:.2f}s+{clamped:.2f}s -> {output_path}")
        return MediaSegment(path=output_path, start_time=start, duration=clamped, has_audio=has_audio)

    def close(self):
        """Drop cached probe data; captures are opened per call."""
        self._info = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
