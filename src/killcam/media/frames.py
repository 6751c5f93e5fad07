"""
Frame and Audio Value Types

Opaque raster buffer plus the timestamped frame and audio-segment values the
extractor yields. Region extraction is a pure buffer-to-buffer function.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class RasterBuffer:
    """Read-only image buffer of shape (H, W, C)."""
    pixels: np.ndarray
    pixel_format: str = "rgb24"

    def __post_init__(self):
        if self.pixels.ndim not in (2, 3):
            raise ValueError(f"Expected (H, W) or (H, W, C) array, got shape {self.pixels.shape}")
        if self.pixels.flags.writeable:
            frozen = self.pixels.copy()
            frozen.flags.writeable = False
            object.__setattr__(self, 'pixels', frozen)

    @classmethod
    def from_array(cls, array: np.ndarray, pixel_format: str = "rgb24") -> "RasterBuffer":
        return cls(pixels=np.ascontiguousarray(array, dtype=np.uint8), pixel_format=pixel_format)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def to_bytes(self) -> bytes:
        return self.pixels.tobytes()


def crop(raster: RasterBuffer, x: int, y: int, width: int, height: int) -> RasterBuffer:
    """
    Extract a pixel region, clipped to the raster bounds.

    Args:
        raster: Source raster
        x, y: Top-left corner coordinates
        width, height: Region dimensions

    Returns:
        New RasterBuffer holding the region
    """
    x0 = max(0, min(x, raster.width))
    y0 = max(0, min(y, raster.height))
    x1 = max(x0, min(x + width, raster.width))
    y1 = max(y0, min(y + height, raster.height))
    region = raster.pixels[y0:y1, x0:x1].copy()
    region.flags.writeable = False
    return RasterBuffer(pixels=region, pixel_format=raster.pixel_format)


def crop_top_right(raster: RasterBuffer, width_fraction: float, height_fraction: float) -> RasterBuffer:
    """Crop the top-right corner covering the given fractions of the frame."""
    if not (0 < width_fraction <= 1 and 0 < height_fraction <= 1):
        raise ValueError("Region fractions must be in (0, 1]")

    region_width = int(raster.width * width_fraction)
    region_height = int(raster.height * height_fraction)
    return crop(raster, raster.width - region_width, 0, region_width, region_height)


@dataclass(frozen=True)
class VideoFrame:
    """Sampled video frame."""
    timestamp: float
    image: RasterBuffer

    def __post_init__(self):
        if self.timestamp < 0:
            raise ValueError(f"Frame timestamp must be >= 0, got {self.timestamp}")


@dataclass(frozen=True)
class AudioSegment:
    """Fixed-length mono audio window."""
    timestamp: float
    samples: np.ndarray
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate
