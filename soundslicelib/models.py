from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class FileType(Enum):
    WAV = "wav"
    AMR = "amr"
    MP4_AAC = "mp4_aac"


def _frozen_table(values) -> np.ndarray:
    arr = np.array(values, dtype=np.int64).reshape(-1)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True)
class SoundHandle:
    """Result of a single parse pass over one sound file.

    The three frame tables are parallel, read-only ``int64`` arrays:
    frame *i* occupies ``frame_lengths[i]`` bytes starting at absolute
    file offset ``frame_offsets[i]`` and has loudness estimate
    ``frame_gains[i]``.  Frames never overlap and are offset-ordered.

    Gains are codec-specific and only comparable within one file.
    """
    file_type: FileType
    filepath: str
    file_size: int
    sample_rate: int
    channels: int
    samples_per_frame: int
    frame_offsets: np.ndarray = field(repr=False)
    frame_lengths: np.ndarray = field(repr=False)
    frame_gains: np.ndarray = field(repr=False)
    avg_bitrate_kbps: int = 0
    codec: str = ""
    complete: bool = True   # False when parsing was cancelled

    def __post_init__(self) -> None:
        offsets = _frozen_table(self.frame_offsets)
        lengths = _frozen_table(self.frame_lengths)
        gains = _frozen_table(self.frame_gains)
        if not (len(offsets) == len(lengths) == len(gains)):
            raise ValueError(
                f"Frame tables differ in length: offsets={len(offsets)}, "
                f"lengths={len(lengths)}, gains={len(gains)}"
            )
        object.__setattr__(self, "frame_offsets", offsets)
        object.__setattr__(self, "frame_lengths", lengths)
        object.__setattr__(self, "frame_gains", gains)

    @property
    def frame_count(self) -> int:
        return int(len(self.frame_offsets))

    @property
    def total_audio_bytes(self) -> int:
        return int(self.frame_lengths.sum())

    @property
    def duration_sec(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frame_count * self.samples_per_frame / self.sample_rate

    def seconds_to_frames(self, seconds: float) -> int:
        """Nearest frame index for a time offset, clamped to the table."""
        if self.sample_rate <= 0 or self.samples_per_frame <= 0:
            return 0
        frame = int(seconds * self.sample_rate / self.samples_per_frame + 0.5)
        return min(max(frame, 0), self.frame_count)


@dataclass(frozen=True)
class PyramidLevel:
    factor: float
    heights: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        heights = np.array(self.heights, dtype=np.float64).reshape(-1)
        heights.flags.writeable = False
        object.__setattr__(self, "heights", heights)

    def __len__(self) -> int:
        return int(len(self.heights))


@dataclass(frozen=True)
class WaveformPyramid:
    """Five calibrated display levels derived from one gain table.

    Level 1 is native frame resolution, level 0 doubles it, levels 2-4
    halve it successively.  ``factor`` is pixels per frame at a level.
    """
    levels: tuple[PyramidLevel, ...]
    initial_level: int
    sample_rate: int
    samples_per_frame: int

    @property
    def level_count(self) -> int:
        return len(self.levels)

    def level_length(self, level: int) -> int:
        return len(self.levels[level])

    def zoom_factor(self, level: int) -> float:
        return self.levels[level].factor

    def zoom_in(self, level: int) -> int:
        return max(level - 1, 0)

    def zoom_out(self, level: int) -> int:
        return min(level + 1, self.level_count - 1)

    def display_heights(self, level: int, half_height: int) -> np.ndarray:
        """Heights at *level* scaled to pixels, truncated toward zero."""
        return (self.levels[level].heights * half_height).astype(np.int64)

    # -- time / pixel conversion ------------------------------------------

    def seconds_to_frames(self, seconds: float) -> int:
        return int(1.0 * seconds * self.sample_rate / self.samples_per_frame + 0.5)

    def seconds_to_pixels(self, seconds: float, level: int) -> int:
        z = self.zoom_factor(level)
        return int(z * seconds * self.sample_rate / self.samples_per_frame + 0.5)

    def pixels_to_seconds(self, pixels: int, level: int) -> float:
        z = self.zoom_factor(level)
        return pixels * self.samples_per_frame / (self.sample_rate * z)

    def millisecs_to_pixels(self, msecs: int, level: int) -> int:
        z = self.zoom_factor(level)
        return int(
            (msecs * 1.0 * self.sample_rate * z)
            / (1000.0 * self.samples_per_frame) + 0.5
        )

    def pixels_to_millisecs(self, pixels: int, level: int) -> int:
        z = self.zoom_factor(level)
        return int(
            (pixels * (1000.0 * self.samples_per_frame))
            / (self.sample_rate * z) + 0.5
        )
