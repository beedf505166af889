from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, BinaryIO

from .config import ParamSpec
from .errors import FileIOError
from .events import ProgressCallback
from .models import FileType, SoundHandle

log = logging.getLogger(__name__)


class FrameTable:
    """Growable offset/length/gain table filled during one parse pass."""

    def __init__(self) -> None:
        self.offsets: list[int] = []
        self.lengths: list[int] = []
        self.gains: list[int] = []

    def __len__(self) -> int:
        return len(self.offsets)

    def add(self, offset: int, length: int, gain: int) -> None:
        self.offsets.append(offset)
        self.lengths.append(length)
        self.gains.append(gain)

    def extend(self, offsets, lengths, gains) -> None:
        self.offsets.extend(int(v) for v in offsets)
        self.lengths.extend(int(v) for v in lengths)
        self.gains.extend(int(v) for v in gains)


class SoundParser(ABC):
    """One container format.

    Subclasses declare the extensions they own and implement
    :meth:`read`, which receives an open binary stream and returns the
    frame table.  :meth:`parse` handles opening the file, timing and
    wrapping OS errors.
    """
    id: str = ""
    name: str = ""
    file_type: FileType
    codec: str = ""
    extensions: tuple[str, ...] = ()

    @classmethod
    def config_params(cls) -> list[ParamSpec]:
        """Return the configuration keys this parser reads in :meth:`configure`."""
        return []

    def configure(self, config: dict[str, Any]) -> None:
        """Pull relevant keys from the (validated) config dict."""
        pass

    def accepts(self, filepath: str) -> bool:
        ext = os.path.splitext(filepath)[1].lower().lstrip(".")
        return ext in self.extensions

    def parse(self, filepath: str, progress: ProgressCallback | None = None) -> SoundHandle:
        """Parse *filepath* in one sequential pass.

        *progress* is called with the fraction done; returning ``False``
        stops the pass early and yields a handle with ``complete=False``.
        """
        t0 = time.perf_counter()
        try:
            file_size = os.path.getsize(filepath)
            with open(filepath, "rb") as f:
                handle = self.read(f, filepath, file_size, progress)
        except OSError as e:
            raise FileIOError(f"Cannot read {filepath}: {e}") from e
        log.debug("%s: parsed %s in %.1f ms (%d frames%s)", self.id, filepath,
                  (time.perf_counter() - t0) * 1000.0, handle.frame_count,
                  "" if handle.complete else ", cancelled")
        return handle

    @abstractmethod
    def read(
        self,
        stream: BinaryIO,
        filepath: str,
        file_size: int,
        progress: ProgressCallback | None,
    ) -> SoundHandle:
        """Walk *stream* and build the :class:`SoundHandle`."""
        ...

    def _handle(self, filepath: str, file_size: int, table: FrameTable, *,
                sample_rate: int, channels: int, samples_per_frame: int,
                avg_bitrate_kbps: int, complete: bool) -> SoundHandle:
        return SoundHandle(
            file_type=self.file_type,
            filepath=filepath,
            file_size=file_size,
            sample_rate=sample_rate,
            channels=channels,
            samples_per_frame=samples_per_frame,
            frame_offsets=table.offsets,
            frame_lengths=table.lengths,
            frame_gains=table.gains,
            avg_bitrate_kbps=avg_bitrate_kbps,
            codec=self.codec,
            complete=complete,
        )


def byte_bitrate_kbps(total_bytes: int, duration_sec: float) -> int:
    """Average bitrate of compressed frames in kbit/s, truncated."""
    if duration_sec <= 0:
        return 0
    return int(total_bytes * 8 / duration_sec / 1000)
