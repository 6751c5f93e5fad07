"""
FFmpeg Screen Capture Host

Captures the screen (or a window on Windows) with ffmpeg and streams WebM
(VP8/Opus) chunks from its stdout.

Platform inputs:
    Linux:   x11grab (+ PulseAudio when capture_audio)
    Windows: gdigrab (desktop or title=<window>)
    macOS:   avfoundation
"""

import logging
import os
import subprocess
import sys
import threading
from typing import Callable, List, Optional, Sequence

from ..config import get_ffmpeg_path
from .session import CaptureHost, CaptureSource, CaptureStream

logger = logging.getLogger(__name__)

SCREEN_SOURCE_ID = "screen:0"
WINDOW_PREFIX = "window:"
CHUNK_SIZE = 64 * 1024


class FFmpegCaptureStream(CaptureStream):
    """One ffmpeg capture process plus the thread reading its output."""

    def __init__(self,
                 process: subprocess.Popen,
                 on_chunk: Callable[[bytes], None],
                 on_ended: Callable[[], None],
                 chunk_size: int = CHUNK_SIZE,
                 stop_timeout: float = 10.0):
        self.process = process
        self.on_chunk = on_chunk
        self.on_ended = on_ended
        self.chunk_size = chunk_size
        self.stop_timeout = stop_timeout
        self._stopping = threading.Event()
        self._reader = threading.Thread(target=self._read_loop, name="killcam-capture", daemon=True)
        self._reader.start()

    def _read_loop(self) -> None:
        while True:
            data = self.process.stdout.read(self.chunk_size)
            if not data:
                break
            self.on_chunk(data)

        if not self._stopping.is_set():
            logger.warning(f"ffmpeg capture exited with code {self.process.poll()}")
            self.on_ended()

    def stop(self) -> None:
        if self._stopping.is_set():
            return
        self._stopping.set()

        # 'q' lets ffmpeg finalize the container
        try:
            if self.process.stdin:
                self.process.stdin.write(b"q")
                self.process.stdin.flush()
                self.process.stdin.close()
        except (BrokenPipeError, OSError):
            pass

        try:
            self.process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg did not exit in time, killing capture process")
            self.process.kill()
            self.process.wait()

        if threading.current_thread() is not self._reader:
            self._reader.join()


class FFmpegCaptureHost(CaptureHost):
    """Capture host backed by an ffmpeg subprocess.

    Attributes:
        windows: Window titles offered as extra sources (Windows only).
        framerate: Capture frame rate.
        capture_audio: Record system audio where the platform input allows it.
    """

    def __init__(self,
                 windows: Optional[Sequence[str]] = None,
                 framerate: int = 30,
                 video_bitrate: str = "4M",
                 capture_audio: bool = True,
                 display: Optional[str] = None,
                 screen_input: str = "1:0",
                 ffmpeg_path: Optional[str] = None,
                 platform: Optional[str] = None):
        self.windows = list(windows or [])
        self.framerate = framerate
        self.video_bitrate = video_bitrate
        self.capture_audio = capture_audio
        self.display = display or os.getenv('DISPLAY', ':0.0')
        self.screen_input = screen_input
        self.ffmpeg_path = ffmpeg_path or get_ffmpeg_path()
        self.platform = platform or sys.platform

    def enumerate_sources(self) -> List[CaptureSource]:
        sources = [CaptureSource(id=SCREEN_SOURCE_ID, name="Entire screen")]
        if self.platform.startswith('win'):
            sources.extend(CaptureSource(id=f"{WINDOW_PREFIX}{title}", name=title) for title in self.windows)
        return sources

    def _input_args(self, source_id: str) -> List[str]:
        rate = ['-framerate', str(self.framerate)]

        if source_id.startswith(WINDOW_PREFIX):
            if not self.platform.startswith('win'):
                raise ValueError("Window capture is only supported on Windows")
            return ['-f', 'gdigrab', *rate, '-i', f"title={source_id[len(WINDOW_PREFIX):]}"]

        if source_id != SCREEN_SOURCE_ID:
            raise ValueError(f"Unknown capture source: {source_id}")

        if self.platform.startswith('win'):
            return ['-f', 'gdigrab', *rate, '-i', 'desktop']
        if self.platform == 'darwin':
            return ['-f', 'avfoundation', *rate, '-i', self.screen_input]

        args = ['-f', 'x11grab', *rate, '-i', self.display]
        if self.capture_audio:
            args.extend(['-f', 'pulse', '-i', 'default'])
        return args

    def build_command(self, source_id: str) -> List[str]:
        cmd = [self.ffmpeg_path, '-hide_banner', '-loglevel', 'error']
        cmd.extend(self._input_args(source_id))
        cmd.extend([
            '-c:v', 'libvpx',
            '-deadline', 'realtime',
            '-cpu-used', '8',
            '-b:v', self.video_bitrate,
        ])
        # avfoundation takes "<video>:<audio>" in a single input
        has_audio_input = cmd.count('-i') > 1 or (
            self.platform == 'darwin' and not self.screen_input.endswith(':none') and ':' in self.screen_input
        )
        if self.capture_audio and has_audio_input:
            cmd.extend(['-c:a', 'libopus'])
        else:
            cmd.append('-an')
        cmd.extend(['-f', 'webm', 'pipe:1'])
        return cmd

    def acquire_stream(self,
                       source_id: str,
                       on_chunk: Callable[[bytes], None],
                       on_ended: Callable[[], None]) -> FFmpegCaptureStream:
        cmd = self.build_command(source_id)
        logger.info(f"Starting capture: {' '.join(cmd)}")

        process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
        if process.poll() is not None:
            raise RuntimeError(f"ffmpeg exited immediately with code {process.returncode}")

        return FFmpegCaptureStream(process, on_chunk, on_ended)
