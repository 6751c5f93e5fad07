"""
Kill Detection Pipeline

Runs one detection pass over a recording:

    extract frames ──> kill-feed + visual detectors ──┐
                                                      ├──> fusion ──> KillClips
    extract audio  ──> audio detector ────────────────┘

Frame and audio work run in parallel worker threads. Fusion starts only after
both have finished. Frames are consumed as they are decoded and never kept.

Typical usage example:

    settings = DetectionSettings.from_env(sensitivity=75)
    pipeline = KillDetectionPipeline(settings)
    run = pipeline.run("match.mp4")
    for clip in run.clips:
        print(clip.id, clip.timestamp, clip.weapon)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional

from .config import DetectionSettings
from .detection.base import BatchResult
from .detection.factory import DetectorSet, build_detectors
from .errors import DecodeError
from .fusion.engine import DetectionFusionEngine
from .game_profile import GameProfile, get_profile
from .media.extractor import MediaExtractor
from .models import DegradedReason, DegradedResult, DetectionRun, Modality, RunStatus

logger = logging.getLogger(__name__)

PROGRESS_LOG_EVERY = 100


class KillDetectionPipeline:
    """Orchestrates extraction, detection and fusion for one recording at a time.

    A pipeline can be reused for many runs; every run gets its own extractor,
    batches and cancellation event.
    """

    def __init__(self,
                 settings: Optional[DetectionSettings] = None,
                 detector_set: Optional[DetectorSet] = None,
                 profile: Optional[GameProfile] = None,
                 extractor_factory: Callable[[str], MediaExtractor] = MediaExtractor,
                 **detector_options):
        """
        Initialize pipeline.

        Args:
            settings: Detection settings (default: from environment)
            detector_set: Pre-built detectors (default: built from settings)
            profile: Game profile (default: settings.game)
            extractor_factory: Callable creating a MediaExtractor for a path
            **detector_options: Passed to build_detectors (ocr_backend, device...)
        """
        self.settings = settings or DetectionSettings.from_env()
        self.settings.validate()
        self.profile = profile or get_profile(self.settings.game)
        self.extractor_factory = extractor_factory
        self.detector_set = detector_set if detector_set is not None else build_detectors(
            self.settings, self.profile, **detector_options
        )

    def _process_frames(self,
                        extractor: MediaExtractor,
                        batches: Dict[Modality, BatchResult],
                        cancel_event: threading.Event) -> int:
        detectors = self.detector_set.frame_detectors
        count = 0

        for frame in extractor.extract_frames(self.settings.frame_interval, cancel_event):
            for detector in detectors:
                detector.try_detect(frame, batches[detector.modality])
            count += 1
            if count % PROGRESS_LOG_EVERY == 0:
                logger.info(f"Processed {count} frames (t={frame.timestamp:.1f}s)")

        return count

    def _process_audio(self,
                       extractor: MediaExtractor,
                       batch: BatchResult,
                       cancel_event: threading.Event) -> int:
        detector = self.detector_set.audio_detector
        count = 0

        for segment in extractor.extract_audio(self.settings.audio_segment_seconds, cancel_event=cancel_event):
            detector.try_detect(segment, batch)
            count += 1

        return count

    def run(self, video_path: str, cancel_event: Optional[threading.Event] = None) -> DetectionRun:
        """
        Detect kills in a recording.

        Args:
            video_path: Path to the recording
            cancel_event: Optional event; setting it stops extraction and
                returns a cancelled run without clips

        Returns:
            DetectionRun. Video that cannot be decoded gives status FAILED with
            the error; missing modalities give status DEGRADED with reasons.
        """
        cancel_event = cancel_event or threading.Event()
        degraded: List[DegradedResult] = list(self.detector_set.degraded)

        if not self.detector_set:
            error = "No detection modality available"
            logger.error(f"{error} for {video_path}")
            return DetectionRun(video_path=video_path, status=RunStatus.FAILED, degraded=degraded, error=error)

        try:
            extractor = self.extractor_factory(video_path)
        except DecodeError as e:
            logger.error(f"Cannot open {video_path}: {e}")
            return DetectionRun(video_path=video_path, status=RunStatus.FAILED, degraded=degraded, error=str(e))

        batches = {modality: BatchResult() for modality in self.detector_set.modalities}
        logger.info(f"Starting detection on {video_path} with {', '.join(m.value for m in batches)}")

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="killcam") as executor:
            future_to_task = {}
            if self.detector_set.frame_detectors:
                future_to_task[executor.submit(self._process_frames, extractor, batches, cancel_event)] = "frames"
            if self.detector_set.audio_detector is not None:
                future_to_task[executor.submit(
                    self._process_audio, extractor, batches[Modality.AUDIO], cancel_event
                )] = "audio"

            failure: Optional[Exception] = None
            for future in as_completed(future_to_task):
                task = future_to_task[future]
                try:
                    count = future.result()
                    logger.info(f"{task.capitalize()} task finished: {count} items")
                except Exception as e:
                    logger.error(f"{task.capitalize()} task failed: {e}")
                    if failure is None:
                        failure = e
                    # Stop the sibling task; its result is discarded
                    cancel_event.set()

        if failure is not None:
            return DetectionRun(
                video_path=video_path,
                status=RunStatus.FAILED,
                degraded=degraded,
                error=str(failure),
                skipped_items=sum(b.skipped for b in batches.values()),
            )

        if cancel_event.is_set():
            logger.info(f"Detection on {video_path} cancelled")
            return DetectionRun(
                video_path=video_path,
                status=RunStatus.FAILED,
                degraded=degraded,
                error="Run cancelled",
                cancelled=True,
            )

        degraded.extend(self._collect_degraded(extractor, batches))

        detections = [d for batch in batches.values() for d in batch.detections]
        engine = DetectionFusionEngine.from_settings(self.settings, self.profile)
        clips = engine.fuse(detections)

        status = RunStatus.DEGRADED if degraded else RunStatus.COMPLETE
        run = DetectionRun(
            video_path=video_path,
            status=status,
            clips=clips,
            detection_counts={m.value: len(b.detections) for m, b in batches.items()},
            skipped_items=sum(b.skipped for b in batches.values()),
            degraded=degraded,
        )
        logger.info(f"Detection finished ({status.value}): {len(detections)} detections, {len(clips)} clips")
        return run

    @staticmethod
    def _collect_degraded(extractor: MediaExtractor, batches: Dict[Modality, BatchResult]) -> List[DegradedResult]:
        degraded = []

        audio = batches.get(Modality.AUDIO)
        if audio is not None and extractor.audio_error and audio.processed == 0 and audio.skipped == 0:
            degraded.append(DegradedResult(Modality.AUDIO, DegradedReason.NO_AUDIO_TRACK, extractor.audio_error))

        for modality, batch in batches.items():
            if batch.skipped and batch.processed == 0:
                degraded.append(DegradedResult(
                    modality,
                    DegradedReason.DETECTOR_FAILED,
                    f"all {batch.skipped} items failed",
                ))

        return degraded


def detect_kills(video_path: str,
                 settings: Optional[DetectionSettings] = None,
                 **options) -> DetectionRun:
    """One-shot helper: build a pipeline and run it on a single recording."""
    return KillDetectionPipeline(settings, **options).run(video_path)
