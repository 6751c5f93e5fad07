"""
Kill Clip Utilities

Attach thumbnails, export clips as standalone files and persist clip lists.

Clip lists are saved as JSON (run metadata + clips) or CSV (one row per clip).
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from .errors import DecodeError, RangeError
from .media.extractor import MediaExtractor
from .models import DetectionRun, KillClip

logger = logging.getLogger(__name__)

CLIP_COLUMNS = ['id', 'timestamp', 'duration', 'confidence', 'weapon', 'enemies_killed', 'is_multi_kill', 'media_ref']


def clip_filename(clip: KillClip, extension: str = 'mp4') -> str:
    """Filename for an exported clip, e.g. kill-clip-3-125s.mp4"""
    return f"kill-{clip.id}-{int(clip.timestamp)}s.{extension}"


def attach_thumbnails(extractor: MediaExtractor,
                      clips: Iterable[KillClip],
                      offset: float = 0.0,
                      max_width: int = 320) -> int:
    """
    Grab a JPEG thumbnail for every clip.

    The frame is taken ``offset`` seconds after the clip start. A frame that
    cannot be read leaves the clip without a thumbnail.

    Returns:
        Number of clips that received a thumbnail
    """
    attached = 0
    for clip in clips:
        thumbnail = extractor.extract_thumbnail(clip.timestamp + offset, max_width=max_width)
        if thumbnail is None:
            logger.warning(f"No thumbnail for {clip.id} at {clip.timestamp:.2f}s")
            continue
        clip.thumbnail = thumbnail
        attached += 1
    return attached


def export_clips(extractor: MediaExtractor,
                 clips: Iterable[KillClip],
                 output_dir: str,
                 verbose: bool = True) -> List[KillClip]:
    """
    Cut every clip into its own file and set ``media_ref`` to the file path.

    Clips that cannot be cut (beyond the end of the source, ffmpeg failure) are
    logged and left without ``media_ref``.

    Returns:
        Clips that were exported
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    exported = []
    for clip in clips:
        target = output_path / clip_filename(clip)
        try:
            segment = extractor.extract_segment(clip.timestamp, clip.duration, str(target))
        except (RangeError, DecodeError) as e:
            logger.error(f"Could not export {clip.id}: {e}")
            continue

        clip.media_ref = segment.path
        exported.append(clip)
        if verbose:
            print(f"  ✓ {clip.id}: {segment.start_time:.1f}s +{segment.duration:.1f}s -> {target.name}")

    return exported


def save_clips(clips: List[KillClip],
               output_file: str,
               run: Optional[DetectionRun] = None,
               metadata: Optional[Dict] = None) -> str:
    """
    Save a clip list.

    Args:
        clips: Clips to save
        output_file: Path ending in .json or .csv
        run: Optional run whose status/counts are stored with JSON output
        metadata: Extra JSON metadata (settings, source...)

    Returns:
        Path written
    """
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if output_path.suffix.lower() == '.csv':
        df = pd.DataFrame([clip.to_dict() for clip in clips], columns=CLIP_COLUMNS)
        df.to_csv(output_path, index=False)
    else:
        output_data = {
            'created_at': datetime.now().isoformat(),
            'total_clips': len(clips),
            'multi_kills': sum(1 for c in clips if c.is_multi_kill),
            'clips': [clip.to_dict() for clip in clips],
        }
        if run is not None:
            output_data['run'] = {k: v for k, v in run.to_dict().items() if k != 'clips'}
        if metadata:
            output_data['metadata'] = metadata

        with open(output_path, 'w') as f:
            json.dump(output_data, f, indent=2)

    logger.info(f"Saved {len(clips)} clips to {output_path}")
    return str(output_path)


def load_clips(input_file: str) -> List[KillClip]:
    """
    Load a clip list written by save_clips (JSON or CSV).

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file holds no clip list
    """
    input_path = Path(input_file)
    if not input_path.exists():
        raise FileNotFoundError(f"Clip list not found: {input_file}")

    if input_path.suffix.lower() == '.csv':
        df = pd.read_csv(input_path)
        records = df.astype(object).where(pd.notnull(df), None).to_dict(orient='records')
    else:
        with open(input_path, 'r') as f:
            data = json.load(f)
        if isinstance(data, list):
            records = data
        elif isinstance(data, dict) and 'clips' in data:
            records = data['clips']
        else:
            raise ValueError(f"No clip list in {input_file}")

    return [KillClip.from_dict(record) for record in records]
