"""
Highlight Reel Compiler

Joins selected kill clips into one continuous video:

1. Order clips (chronological, or by confidence with time as tie-break)
2. Cut each clip from the source through the MediaExtractor
3. Add optional intro/outro bumpers
4. Normalize every input (size, frame rate, pixel format, audio layout)
5. Join with crossfades (xfade/acrossfade) or hard cuts (concat)

The reel is rendered to a temporary file next to the output and moved into
place only when ffmpeg succeeds, so a failed compile leaves nothing behind.

Typical usage example:

    compiler = HighlightReelCompiler()
    reel = compiler.compile("match.mp4", clips, HighlightReelSettings(), "highlights.mp4")
    print(f"{reel.clip_count} clips, {reel.duration:.1f}s")
"""

import logging
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from ..config import HighlightReelSettings, ReelOrder, get_ffmpeg_path
from ..errors import CompilationError, DecodeError, RangeError
from ..media.extractor import MediaExtractor, probe_video
from ..models import KillClip

logger = logging.getLogger(__name__)

AUDIO_RATE = 48000


@dataclass(frozen=True)
class HighlightReel:
    path: str
    duration: float
    clip_count: int


@dataclass(frozen=True)
class ReelInput:
    """One file fed to the final render."""
    path: str
    duration: float
    has_audio: bool


def order_clips(clips: Sequence[KillClip], order_by: ReelOrder = ReelOrder.CHRONOLOGICAL) -> List[KillClip]:
    """
    Order clips for the reel.

    chronological: ascending timestamp
    confidence: descending confidence, ties by ascending timestamp
    """
    order_by = ReelOrder(order_by)
    if order_by == ReelOrder.CONFIDENCE:
        return sorted(clips, key=lambda c: (-c.confidence, c.timestamp))
    return sorted(clips, key=lambda c: c.timestamp)


def effective_transition(durations: Sequence[float], transition: Optional[float]) -> Optional[float]:
    """Crossfade length usable with these inputs (at most half the shortest input)."""
    if not transition or len(durations) < 2:
        return None
    limit = min(durations) / 2
    if transition > limit:
        logger.warning(f"Transition {transition:.2f}s too long for a {min(durations):.2f}s input, using {limit:.2f}s")
        return limit
    return transition


def xfade_offsets(durations: Sequence[float], transition: float) -> List[float]:
    """
    Start offsets of each crossfade on the accumulated timeline.

    The k-th fade (0-based) starts ``transition`` seconds before the end of
    everything joined so far: sum(durations[0..k]) - (k + 1) * transition.
    """
    offsets = []
    elapsed = 0.0
    for k, duration in enumerate(durations[:-1]):
        elapsed += duration
        offsets.append(round(elapsed - (k + 1) * transition, 3))
    return offsets


def reel_duration(durations: Sequence[float], transition: Optional[float]) -> float:
    total = sum(durations)
    if transition and len(durations) > 1:
        total -= (len(durations) - 1) * transition
    return total


def build_filter_graph(durations: Sequence[float],
                       has_audio: bool,
                       transition: Optional[float],
                       width: int = 1920,
                       height: int = 1080,
                       fps: int = 30) -> Tuple[str, str, Optional[str]]:
    """
    Build the ffmpeg filter_complex joining the inputs.

    Returns:
        (filter graph, video output label, audio output label or None)
    """
    count = len(durations)
    if count == 0:
        raise ValueError("At least one input is required")

    filters = []
    for i in range(count):
        filters.append(
            f"[{i}:v]scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps},format=yuv420p,settb=AVTB[v{i}]"
        )
        if has_audio:
            filters.append(
                f"[{i}:a]aresample={AUDIO_RATE},aformat=sample_fmts=fltp:channel_layouts=stereo,"
                f"asetpts=PTS-STARTPTS[a{i}]"
            )

    if count == 1:
        return ";".join(filters), "[v0]", "[a0]" if has_audio else None

    if transition:
        video_label, audio_label = "v0", "a0"
        for k, offset in enumerate(xfade_offsets(durations, transition), start=1):
            out = f"vx{k}"
            filters.append(f"[{video_label}][v{k}]xfade=transition=fade:duration={transition:g}:offset={offset:g}[{out}]")
            video_label = out
            if has_audio:
                aout = f"ax{k}"
                filters.append(f"[{audio_label}][a{k}]acrossfade=d={transition:g}[{aout}]")
                audio_label = aout
        return ";".join(filters), f"[{video_label}]", f"[{audio_label}]" if has_audio else None

    if has_audio:
        pairs = "".join(f"[v{i}][a{i}]" for i in range(count))
        filters.append(f"{pairs}concat=n={count}:v=1:a=1[vout][aout]")
        return ";".join(filters), "[vout]", "[aout]"

    pairs = "".join(f"[v{i}]" for i in range(count))
    filters.append(f"{pairs}concat=n={count}:v=1:a=0[vout]")
    return ";".join(filters), "[vout]", None


class HighlightReelCompiler:
    """Render highlight reels with ffmpeg.

    Attributes:
        width, height, fps: Output format; inputs are letterboxed to fit.
        bumper_duration: Length of generated intro/outro cards.
        intro_path, outro_path: Optional user bumpers used instead of
            generated ones.
    """

    def __init__(self,
                 extractor_factory: Callable[[str], MediaExtractor] = MediaExtractor,
                 ffmpeg_path: Optional[str] = None,
                 width: int = 1920,
                 height: int = 1080,
                 fps: int = 30,
                 bumper_duration: float = 2.0,
                 intro_path: Optional[str] = None,
                 outro_path: Optional[str] = None,
                 work_dir: Optional[str] = None):
        self.extractor_factory = extractor_factory
        self.ffmpeg_path = ffmpeg_path or get_ffmpeg_path()
        self.width = width
        self.height = height
        self.fps = fps
        self.bumper_duration = bumper_duration
        self.intro_path = intro_path
        self.outro_path = outro_path
        self.work_dir = work_dir

    def _run_ffmpeg(self, cmd: List[str], what: str) -> None:
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            subprocess.run(cmd, capture_output=True, check=True)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors='replace') if isinstance(e.stderr, bytes) else (e.stderr or '')
            raise CompilationError(f"ffmpeg failed to {what}: {stderr.strip()[-500:]}")
        except FileNotFoundError as e:
            raise CompilationError(f"ffmpeg not found: {e}")

    def _generate_bumper(self, output_path: str, with_audio: bool) -> ReelInput:
        """Render a black card of bumper_duration seconds."""
        duration = f"{self.bumper_duration:g}"
        cmd = [
            self.ffmpeg_path, '-y',
            '-f', 'lavfi', '-i', f"color=c=black:s={self.width}x{self.height}:r={self.fps}:d={duration}",
        ]
        if with_audio:
            cmd.extend(['-f', 'lavfi', '-i', f"anullsrc=r={AUDIO_RATE}:cl=stereo", '-c:a', 'aac'])
        cmd.extend(['-t', duration, '-c:v', 'libx264', '-pix_fmt', 'yuv420p', '-shortest', output_path])

        self._run_ffmpeg(cmd, "render bumper")
        return ReelInput(path=output_path, duration=self.bumper_duration, has_audio=with_audio)

    def _bumper(self, user_path: Optional[str], output_path: str, with_audio: bool) -> ReelInput:
        if user_path:
            try:
                info = probe_video(user_path)
            except DecodeError as e:
                raise CompilationError(f"Unreadable bumper {user_path}: {e}")
            return ReelInput(path=user_path, duration=info.duration, has_audio=info.has_audio)
        return self._generate_bumper(output_path, with_audio)

    def _extract_segments(self, extractor: MediaExtractor, clips: Sequence[KillClip], tmp_dir: str) -> List[ReelInput]:
        segments = []
        for index, clip in enumerate(clips):
            target = os.path.join(tmp_dir, f"{index:03d}-{clip.id}.mp4")
            try:
                segment = extractor.extract_segment(clip.timestamp, clip.duration, target)
            except (RangeError, DecodeError) as e:
                raise CompilationError(f"Could not extract {clip.id} at {clip.timestamp:.2f}s: {e}") from e
            segments.append(ReelInput(path=segment.path, duration=segment.duration, has_audio=segment.has_audio))
            logger.info(f"Extracted {clip.id} ({index + 1}/{len(clips)})")
        return segments

    def compile(self,
                source_video: str,
                clips: Sequence[KillClip],
                settings: Optional[HighlightReelSettings] = None,
                output_path: str = "highlight_reel.mp4") -> HighlightReel:
        """
        Compile clips from one source recording into a highlight reel.

        Args:
            source_video: Recording the clips were detected in
            clips: Clips to include
            settings: Reel options (default: HighlightReelSettings())
            output_path: Final video path

        Returns:
            HighlightReel describing the written file

        Raises:
            CompilationError: No clips, a clip could not be extracted, or
                ffmpeg failed. No output file is left in these cases.
        """
        settings = settings or HighlightReelSettings()
        if not clips:
            raise CompilationError("No clips to compile")

        ordered = order_clips(clips, settings.order_by)
        try:
            extractor = self.extractor_factory(source_video)
        except DecodeError as e:
            raise CompilationError(f"Cannot open source video: {e}") from e

        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix='killcam_reel_', dir=self.work_dir) as tmp_dir:
            inputs = self._extract_segments(extractor, ordered, tmp_dir)
            clips_have_audio = all(s.has_audio for s in inputs)

            if settings.include_intro:
                inputs.insert(0, self._bumper(self.intro_path, os.path.join(tmp_dir, 'intro.mp4'), clips_have_audio))
            if settings.include_outro:
                inputs.append(self._bumper(self.outro_path, os.path.join(tmp_dir, 'outro.mp4'), clips_have_audio))

            durations = [i.duration for i in inputs]
            has_audio = all(i.has_audio for i in inputs)
            transition = effective_transition(durations, settings.crossfade)
            graph, video_label, audio_label = build_filter_graph(
                durations, has_audio, transition, self.width, self.height, self.fps
            )

            fd, partial_path = tempfile.mkstemp(suffix=output.suffix or '.mp4', prefix='.reel-', dir=str(output.parent))
            os.close(fd)

            cmd = [self.ffmpeg_path, '-y']
            for item in inputs:
                cmd.extend(['-i', item.path])
            cmd.extend(['-filter_complex', graph, '-map', video_label])
            if audio_label:
                cmd.extend(['-map', audio_label, '-c:a', 'aac', '-b:a', '192k'])
            cmd.extend([
                '-c:v', 'libx264',
                '-preset', 'medium',
                '-crf', '20',
                '-pix_fmt', 'yuv420p',
                '-movflags', '+faststart',
                partial_path
            ])

            logger.info(f"Rendering reel: {len(ordered)} clips, {len(inputs)} inputs, "
                        f"{'crossfade ' + format(transition, 'g') + 's' if transition else 'hard cuts'}")
            try:
                self._run_ffmpeg(cmd, "render reel")
                os.replace(partial_path, output)
            finally:
                if os.path.exists(partial_path):
                    os.remove(partial_path)

        reel = HighlightReel(path=str(output), duration=reel_duration(durations, transition), clip_count=len(ordered))
        logger.info(f"Highlight reel saved to {reel.path} ({reel.duration:.1f}s)")
        return reel
