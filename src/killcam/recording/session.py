"""
Recording Session Types

States, capture sources, save results and the host-side contracts the
recording controller talks to.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from ..game_profile import GameProfile


class RecordingState(str, Enum):
    IDLE = "idle"
    SOURCE_SELECTED = "source_selected"
    RECORDING = "recording"
    STOPPING = "stopping"


@dataclass(frozen=True)
class CaptureSource:
    """A capturable screen or window."""
    id: str
    name: str
    thumbnail: Optional[bytes] = field(default=None, repr=False)


@dataclass(frozen=True)
class SaveResult:
    success: bool
    path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RecordingSession:
    """The one active recording. Owned by RecordingController."""
    source: CaptureSource
    token: int
    started_at: float = field(default_factory=time.time)
    chunks: List[bytes] = field(default_factory=list, repr=False)
    duration: int = 0
    stream: Optional["CaptureStream"] = field(default=None, repr=False)

    @property
    def total_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    def join_chunks(self) -> bytes:
        return b"".join(self.chunks)


class CaptureStream(ABC):
    """A running capture; produces chunks until stopped or ended."""

    @abstractmethod
    def stop(self) -> None:
        """Stop capturing. Pending chunks are delivered before this returns."""


class CaptureHost(ABC):
    """Platform side of screen capture."""

    @abstractmethod
    def enumerate_sources(self) -> List[CaptureSource]:
        """List capturable screens and windows."""

    @abstractmethod
    def acquire_stream(self,
                       source_id: str,
                       on_chunk: Callable[[bytes], None],
                       on_ended: Callable[[], None]) -> CaptureStream:
        """
        Start capturing a source.

        ``on_chunk`` receives encoded media data as it is produced.
        ``on_ended`` is called once if the stream stops by itself.
        """


class PersistenceSink(ABC):
    """Where finished recordings go."""

    @abstractmethod
    def persist(self, data: bytes, suggested_filename: str) -> SaveResult:
        """Store one recording."""


def choose_source(sources: Sequence[CaptureSource], profile: GameProfile) -> Optional[CaptureSource]:
    """
    Pick the capture source for auto-recording.

    The game window wins (name contains one of the profile's capture keywords);
    otherwise a full-screen source; otherwise nothing.
    """
    for keywords in (profile.capture_keywords, profile.screen_keywords):
        for source in sources:
            name = source.name.lower()
            if any(keyword in name for keyword in keywords):
                return source
    return None


def recording_filename(profile: GameProfile, timestamp_ms: Optional[int] = None) -> str:
    """Suggested filename, e.g. valorant-recording-1700000000000.webm"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{profile.slug}-recording-{timestamp_ms}.webm"
