#!/usr/bin/env python3
"""Killcam - Unified CLI Entry Point.

Command-line interface for kill detection, clip export, highlight reel
compilation and gameplay recording.

Usage:
    python main.py detect-kills match.mp4 -o clips.json --sensitivity 75
    python main.py export-clips match.mp4 clips.json -o clips/
    python main.py compile-reel match.mp4 clips.json -o reel.mp4 --order confidence
    python main.py record -o recordings/ --auto

For detailed help on each command:
    python main.py detect-kills --help
    python main.py export-clips --help
    python main.py compile-reel --help
    python main.py record --help
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional


def get_output_path(input_path: str, suffix: str, explicit_output: Optional[str] = None) -> str:
    """Get output file path with default to output/ directory with timestamp.

    Args:
        input_path: Path to input file.
        suffix: Suffix to append to input filename (e.g., '_kills.json').
        explicit_output: Explicitly specified output path (takes priority).

    Returns:
        Output file path with timestamp (e.g., output/match_kills_20250111_143052.json).
    """
    if explicit_output:
        return explicit_output

    output_dir = Path('output')
    output_dir.mkdir(exist_ok=True)

    from datetime import datetime
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    input_stem = Path(input_path).stem

    # "_kills.json" becomes "_kills_20250111_143052.json"
    suffix_parts = suffix.rsplit('.', 1)
    if len(suffix_parts) == 2:
        suffix_with_timestamp = f"{suffix_parts[0]}_{timestamp}.{suffix_parts[1]}"
    else:
        suffix_with_timestamp = f"{suffix}_{timestamp}"

    return str(output_dir / f"{input_stem}{suffix_with_timestamp}")


def ensure_output_dir(output_path: str) -> None:
    """Ensure output directory exists for the given path."""
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)


def check_output_file_exists(output_path: str) -> bool:
    """Check if output file exists and prompt user for action.

    Args:
        output_path: Path to output file.

    Returns:
        True if should proceed with writing.

    Raises:
        SystemExit: If user chooses to quit or use existing file.
    """
    if not Path(output_path).exists():
        return True

    print(f"\n⚠️  Output file already exists: {output_path}")
    print("\nWhat would you like to do?")
    print("  [U] Use existing file (skip processing)")
    print("  [O] Overwrite (continue processing)")
    print("  [Q] Quit (exit without processing)")

    while True:
        choice = input("\nChoice (U/O/Q): ").strip().upper()

        if choice == 'U':
            print(f"\n✓ Using existing file: {output_path}")
            print("Skipping processing.")
            raise SystemExit(0)
        elif choice == 'O':
            print(f"\n⚠️  Will overwrite: {output_path}")
            return True
        elif choice == 'Q':
            print("\n✓ Exiting without processing.")
            raise SystemExit(0)
        else:
            print("Invalid choice. Please enter U, O, or Q.")


def parse_clip_ids(raw: Optional[str]) -> Optional[List[str]]:
    """Parse a comma-separated clip id list ("clip-1,clip-3")."""
    if not raw:
        return None
    return [clip_id.strip() for clip_id in raw.split(',') if clip_id.strip()]


def select_clips(clips, clip_ids: Optional[List[str]]):
    if clip_ids is None:
        return list(clips)
    wanted = set(clip_ids)
    missing = wanted - {clip.id for clip in clips}
    if missing:
        raise ValueError(f"Unknown clip id(s): {', '.join(sorted(missing))}")
    return [clip for clip in clips if clip.id in wanted]


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the kill clip toolkit.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        description='Killcam - Detect kills in gameplay recordings and build highlight reels',
        epilog='For detailed help: python main.py <command> --help'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        title='Available Commands',
        description='Select a command to run',
        help='Use <command> --help for more information'
    )

    # =========================================================================
    # KILL DETECTION COMMAND
    # =========================================================================
    detect_parser = subparsers.add_parser(
        'detect-kills',
        help='Detect kills using kill-feed OCR, visual and audio cues',
        description='Detect kills in a gameplay recording and save the clip list (JSON or CSV)'
    )
    detect_parser.add_argument(
        'video',
        help='Path to video file'
    )
    detect_parser.add_argument(
        '-o', '--output',
        help='Output clip list (.json or .csv, default: output/{video_stem}_kills_YYYYMMDD_HHMMSS.json)'
    )
    detect_parser.add_argument(
        '--sensitivity',
        type=int,
        help='Detection sensitivity 10-100, step 5 (default: 80, env KILLCAM_SENSITIVITY)'
    )
    detect_parser.add_argument(
        '--clip-duration',
        type=float,
        help='Clip length in seconds, 5-30 (default: 15)'
    )
    detect_parser.add_argument(
        '--pre-kill-buffer',
        type=float,
        help='Seconds kept before each kill, 1-10 step 0.5 (default: 3)'
    )
    detect_parser.add_argument(
        '--interval',
        type=float,
        help='Frame sampling interval in seconds (default: 0.5)'
    )
    detect_parser.add_argument(
        '--no-killfeed',
        action='store_true',
        help='Disable kill-feed OCR detection'
    )
    detect_parser.add_argument(
        '--no-visual',
        action='store_true',
        help='Disable CLIP visual indicator detection'
    )
    detect_parser.add_argument(
        '--no-audio',
        action='store_true',
        help='Disable CLAP audio event detection'
    )
    detect_parser.add_argument(
        '--ocr',
        choices=['auto', 'paddleocr', 'tesseract'],
        default='auto',
        help='Kill-feed OCR engine (default: auto = PaddleOCR, falling back to Tesseract)'
    )
    detect_parser.add_argument(
        '--device',
        choices=['cuda', 'cpu'],
        help='Device for CLIP/CLAP (default: auto-detect)'
    )
    detect_parser.add_argument(
        '--game',
        help='Game profile (default: valorant)'
    )
    detect_parser.add_argument(
        '--thumbnails',
        metavar='DIR',
        help='Save a JPEG thumbnail per clip into DIR'
    )
    detect_parser.add_argument(
        '--export-dir',
        metavar='DIR',
        help='Also cut every detected clip into DIR'
    )
    detect_parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Print debug logging'
    )

    # =========================================================================
    # CLIP EXPORT COMMAND
    # =========================================================================
    export_parser = subparsers.add_parser(
        'export-clips',
        help='Cut detected clips into standalone video files',
        description='Cut clips from a clip list (detect-kills output) into individual MP4 files'
    )
    export_parser.add_argument(
        'video',
        help='Path to the source video file'
    )
    export_parser.add_argument(
        'clips',
        help='Clip list from detect-kills (.json or .csv)'
    )
    export_parser.add_argument(
        '-o', '--output',
        help='Output directory (default: output/{video_stem}_clips/)'
    )
    export_parser.add_argument(
        '--ids',
        help='Comma-separated clip ids to export (default: all). Example: "clip-1,clip-4"'
    )
    export_parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Print debug logging'
    )

    # =========================================================================
    # HIGHLIGHT REEL COMMAND
    # =========================================================================
    reel_parser = subparsers.add_parser(
        'compile-reel',
        help='Compile clips into one highlight reel',
        description='Join clips from a clip list into a single highlight video'
    )
    reel_parser.add_argument(
        'video',
        help='Path to the source video file'
    )
    reel_parser.add_argument(
        'clips',
        help='Clip list from detect-kills (.json or .csv)'
    )
    reel_parser.add_argument(
        '-o', '--output',
        help='Output video (default: output/{video_stem}_reel_YYYYMMDD_HHMMSS.mp4)'
    )
    reel_parser.add_argument(
        '--ids',
        help='Comma-separated clip ids to include (default: all)'
    )
    reel_parser.add_argument(
        '--order',
        choices=['chronological', 'confidence'],
        default='chronological',
        help='Clip order (default: chronological)'
    )
    reel_parser.add_argument(
        '--transition',
        type=float,
        default=0.5,
        help='Crossfade duration in seconds, 0-2 (default: 0.5)'
    )
    reel_parser.add_argument(
        '--no-fade',
        action='store_true',
        help='Use hard cuts instead of crossfades'
    )
    reel_parser.add_argument(
        '--no-intro',
        action='store_true',
        help='Skip the intro bumper'
    )
    reel_parser.add_argument(
        '--no-outro',
        action='store_true',
        help='Skip the outro bumper'
    )
    reel_parser.add_argument(
        '--intro',
        metavar='FILE',
        help='Video used as intro (default: generated black card)'
    )
    reel_parser.add_argument(
        '--outro',
        metavar='FILE',
        help='Video used as outro (default: generated black card)'
    )
    reel_parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Print debug logging'
    )

    # =========================================================================
    # RECORDING COMMAND
    # =========================================================================
    record_parser = subparsers.add_parser(
        'record',
        help='Record gameplay with ffmpeg screen capture',
        description='Record the screen (or a window) to WebM. Ctrl+C stops and saves.'
    )
    record_parser.add_argument(
        '-o', '--output',
        default='recordings',
        help='Directory for recordings (default: recordings/)'
    )
    record_parser.add_argument(
        '--source',
        help='Capture source id (see --list-sources, default: auto-select)'
    )
    record_parser.add_argument(
        '--window',
        action='append',
        default=[],
        help='Window title offered as a capture source (Windows, repeatable)'
    )
    record_parser.add_argument(
        '--list-sources',
        action='store_true',
        help='List capture sources and exit'
    )
    record_parser.add_argument(
        '--auto',
        action='store_true',
        help='Treat the game as running: start after the auto-start delay'
    )
    record_parser.add_argument(
        '--duration',
        type=float,
        help='Stop automatically after N seconds'
    )
    record_parser.add_argument(
        '--no-audio',
        action='store_true',
        help='Do not capture system audio'
    )
    record_parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Print debug logging'
    )

    # Parse arguments
    args = parser.parse_args(argv)

    # Show help if no command provided
    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    # =========================================================================
    # ROUTE TO APPROPRIATE COMMAND HANDLER
    # =========================================================================

    try:
        if args.command == 'detect-kills':
            return cmd_detect_kills(args)
        elif args.command == 'export-clips':
            return cmd_export_clips(args)
        elif args.command == 'compile-reel':
            return cmd_compile_reel(args)
        elif args.command == 'record':
            return cmd_record(args)
        else:
            print(f"Error: Unknown command '{args.command}'")
            return 1

    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user")
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def cmd_detect_kills(args: argparse.Namespace) -> int:
    """Execute kill detection command.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Exit code (0 for success, 1 if the run failed).
    """
    from src.killcam.clips import attach_thumbnails, export_clips, save_clips
    from src.killcam.config import DetectionSettings
    from src.killcam.media import MediaExtractor
    from src.killcam.pipeline import KillDetectionPipeline

    output_path = get_output_path(args.video, '_kills.json', args.output)
    ensure_output_dir(output_path)
    check_output_file_exists(output_path)

    settings = DetectionSettings.from_env(
        sensitivity=args.sensitivity,
        clip_duration=args.clip_duration,
        pre_kill_buffer=args.pre_kill_buffer,
        frame_interval=args.interval,
        game=args.game,
        killfeed_detection=False if args.no_killfeed else None,
        visual_detection=False if args.no_visual else None,
        audio_detection=False if args.no_audio else None,
    )

    print("=" * 70)
    print("KILL DETECTION")
    print("=" * 70)
    print(f"Video: {args.video}")
    print(f"Output: {output_path}")
    print(f"Modalities: {', '.join(m.value for m in settings.enabled_modalities) or 'none'}")
    print(f"Sensitivity: {settings.sensitivity}  Clip: {settings.clip_duration:g}s  "
          f"Pre-kill buffer: {settings.pre_kill_buffer:g}s")
    print("=" * 70)

    pipeline = KillDetectionPipeline(settings, ocr_backend=args.ocr, device=args.device)
    run = pipeline.run(args.video)

    for degraded in run.degraded:
        print(f"⚠️  {degraded.modality.value} detection degraded ({degraded.reason.value}): {degraded.detail}")

    if not run.ok:
        print(f"Error: Detection failed: {run.error}", file=sys.stderr)
        return 1

    if run.clips and (args.thumbnails or args.export_dir):
        extractor = MediaExtractor(args.video)
        if args.thumbnails:
            attach_thumbnails(extractor, run.clips)
            thumb_dir = Path(args.thumbnails)
            thumb_dir.mkdir(parents=True, exist_ok=True)
            for clip in run.clips:
                if clip.thumbnail:
                    (thumb_dir / f"{clip.id}.jpg").write_bytes(clip.thumbnail)
            print(f"✓ Thumbnails saved to: {thumb_dir}")
        if args.export_dir:
            exported = export_clips(extractor, run.clips, args.export_dir)
            print(f"✓ Exported {len(exported)}/{len(run.clips)} clips to: {args.export_dir}")

    save_clips(run.clips, output_path, run=run, metadata={
        'video_path': args.video,
        'settings': {
            'sensitivity': settings.sensitivity,
            'clip_duration': settings.clip_duration,
            'pre_kill_buffer': settings.pre_kill_buffer,
            'frame_interval': settings.frame_interval,
            'modalities': [m.value for m in settings.enabled_modalities],
        },
    })

    print(f"\n✓ Kill detection complete ({run.status.value})")
    print("  Detections: " + ", ".join(f"{k}={v}" for k, v in run.detection_counts.items()))
    if run.skipped_items:
        print(f"  Skipped items: {run.skipped_items}")
    print(f"  Clips: {len(run.clips)} ({sum(1 for c in run.clips if c.is_multi_kill)} multi-kills)")
    for clip in run.clips:
        marker = " [MULTI]" if clip.is_multi_kill else ""
        print(f"    {clip.id}: {clip.timestamp:7.1f}s  {clip.confidence:5.1f}%  {clip.weapon}{marker}")
    print(f"  Results saved to: {output_path}")

    return 0


def cmd_export_clips(args: argparse.Namespace) -> int:
    """Execute clip export command."""
    from src.killcam.clips import export_clips, load_clips
    from src.killcam.media import MediaExtractor

    clips = select_clips(load_clips(args.clips), parse_clip_ids(args.ids))
    output_dir = args.output or str(Path('output') / f"{Path(args.video).stem}_clips")

    print(f"Exporting {len(clips)} clips from {args.video} to {output_dir}")
    extractor = MediaExtractor(args.video)
    exported = export_clips(extractor, clips, output_dir)

    print(f"\n✓ Exported {len(exported)}/{len(clips)} clips")
    return 0 if len(exported) == len(clips) else 1


def cmd_compile_reel(args: argparse.Namespace) -> int:
    """Execute highlight reel compilation command."""
    from src.killcam.clips import load_clips
    from src.killcam.config import HighlightReelSettings
    from src.killcam.reel import HighlightReelCompiler

    output_path = get_output_path(args.video, '_reel.mp4', args.output)
    ensure_output_dir(output_path)
    check_output_file_exists(output_path)

    clips = select_clips(load_clips(args.clips), parse_clip_ids(args.ids))
    settings = HighlightReelSettings(
        transition_duration=args.transition,
        order_by=args.order,
        include_intro=not args.no_intro,
        include_outro=not args.no_outro,
        fade_transitions=not args.no_fade,
    )

    print(f"Compiling {len(clips)} clips ({settings.order_by.value}, "
          f"{'crossfade ' + format(settings.crossfade, 'g') + 's' if settings.crossfade else 'hard cuts'})")

    compiler = HighlightReelCompiler(intro_path=args.intro, outro_path=args.outro)
    reel = compiler.compile(args.video, clips, settings, output_path)

    print(f"\n✓ Highlight reel saved to: {reel.path}")
    print(f"  Clips: {reel.clip_count}  Duration: {reel.duration:.1f}s")
    return 0


def cmd_record(args: argparse.Namespace) -> int:
    """Execute gameplay recording command."""
    from src.killcam.recording import DirectorySink, FFmpegCaptureHost, RecordingController, RecordingState

    host = FFmpegCaptureHost(windows=args.window, capture_audio=not args.no_audio)

    if args.list_sources:
        print("Capture sources:")
        for source in host.enumerate_sources():
            print(f"  {source.id}  {source.name}")
        return 0

    controller = RecordingController(host, DirectorySink(args.output))
    controller.add_listener(lambda state, session: print(f"  [{state.value}]"))

    if args.auto and not args.source:
        controller.update_target_status(True)
        print(f"Waiting {controller.auto_start_delay:g}s before recording (Ctrl+C to cancel)...")
    else:
        sources = controller.refresh_sources()
        source_id = args.source or sources[0].id
        controller.start(source_id)

    started = time.monotonic()
    try:
        while True:
            time.sleep(0.2)
            state = controller.state
            if state == RecordingState.RECORDING and args.duration and controller.duration >= args.duration:
                break
            if state == RecordingState.IDLE and controller.last_result is not None:
                # Stream ended by itself and was saved
                break
            if state == RecordingState.IDLE and not controller.auto_start_pending and time.monotonic() - started > 1:
                print("Error: Recording did not start", file=sys.stderr)
                return 1
    except KeyboardInterrupt:
        print("\nStopping...")

    result = controller.shutdown() or controller.last_result
    if result is None:
        print("Nothing was recorded")
        return 1
    if not result.success:
        print(f"Error: Save failed: {result.error}", file=sys.stderr)
        return 1

    print(f"\n✓ Recording saved to: {result.path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
