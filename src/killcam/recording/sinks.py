"""Persistence sinks for finished recordings."""

import logging
from pathlib import Path

from .session import PersistenceSink, SaveResult

logger = logging.getLogger(__name__)


class DirectorySink(PersistenceSink):
    """Write recordings into a directory, never overwriting an existing file."""

    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)

    def _unique_path(self, filename: str) -> Path:
        path = self.output_dir / Path(filename).name
        counter = 1
        while path.exists():
            path = self.output_dir / f"{Path(filename).stem}-{counter}{Path(filename).suffix}"
            counter += 1
        return path

    def persist(self, data: bytes, suggested_filename: str) -> SaveResult:
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self._unique_path(suggested_filename)
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Could not save recording: {e}")
            return SaveResult(success=False, error=str(e))

        logger.info(f"Wrote {len(data)} bytes to {path}")
        return SaveResult(success=True, path=str(path))
