from __future__ import annotations

import logging
import struct
from typing import Any, BinaryIO

import numpy as np

from ..bitstream import ByteCursor
from ..config import ParamSpec, PARSER_PARAMS
from ..errors import BadFormatError, TruncatedFileError, UnsupportedFormatError
from ..events import ProgressCallback
from ..models import FileType, SoundHandle
from ..parser import FrameTable, SoundParser

log = logging.getLogger(__name__)

# Frames processed per read / progress report.
_BATCH_FRAMES = 256


class WavParser(SoundParser):
    """RIFF/WAVE with 16-bit linear PCM.

    PCM has no frames of its own, so the ``data`` chunk is cut into
    virtual frames of ``1 / wav_frames_per_second`` seconds (the last one
    truncated).  The gain of a frame is the largest magnitude among the
    high bytes of every second sample frame, a cheap peak proxy.
    """
    id = "wav"
    name = "WAV"
    file_type = FileType.WAV
    codec = "PCM-16"
    extensions = ("wav",)

    def __init__(self) -> None:
        self.frames_per_second: int = 50

    @classmethod
    def config_params(cls) -> list[ParamSpec]:
        return [p for p in PARSER_PARAMS if p.key == "wav_frames_per_second"]

    def configure(self, config: dict[str, Any]) -> None:
        self.frames_per_second = config.get("wav_frames_per_second", 50)

    def read(self, stream: BinaryIO, filepath: str, file_size: int,
             progress: ProgressCallback | None) -> SoundHandle:
        cursor = ByteCursor(stream, 0, file_size)
        if file_size < 12:
            raise UnsupportedFormatError(f"{filepath}: too short to be a WAV file")
        preamble = cursor.read(12)
        if preamble[:4] != b"RIFF" or preamble[8:12] != b"WAVE":
            raise UnsupportedFormatError(
                f"{filepath}: not a RIFF/WAVE file "
                f"({preamble[:4]!r} / {preamble[8:12]!r})"
            )

        fmt: tuple[int, int] | None = None
        table = FrameTable()
        frame_bytes = 0
        found_data = False
        complete = True

        while cursor.remaining > 0:
            if cursor.remaining < 8:
                raise TruncatedFileError(
                    f"{filepath}: partial chunk header at offset {cursor.position}"
                )
            chunk_id = cursor.read(4)
            chunk_size = cursor.u32le()
            log.debug("chunk %r @%d size=%d", chunk_id, cursor.position - 8, chunk_size)
            if chunk_size > cursor.remaining:
                raise TruncatedFileError(
                    f"{filepath}: chunk {chunk_id!r} declares {chunk_size} bytes, "
                    f"only {cursor.remaining} remain"
                )

            if chunk_id == b"fmt ":
                fmt = self._read_fmt(cursor, chunk_size, filepath)
            elif chunk_id == b"data" and not found_data:
                if fmt is None:
                    raise BadFormatError(f"{filepath}: 'data' chunk precedes 'fmt '")
                channels, sample_rate = fmt
                frame_bytes = channels * 2 * round(sample_rate / self.frames_per_second)
                if frame_bytes <= 0:
                    raise BadFormatError(
                        f"{filepath}: sample rate {sample_rate} Hz is too low for "
                        f"{self.frames_per_second} frames per second"
                    )
                found_data = True
                complete = self._read_frames(cursor, chunk_size, frame_bytes,
                                             channels, table, progress)
                if not complete:
                    break
            else:
                cursor.skip(chunk_size)

            # RIFF chunks are padded to even length
            if chunk_size % 2 and cursor.remaining > 0:
                cursor.skip(1)

        if fmt is None:
            raise BadFormatError(f"{filepath}: no 'fmt ' chunk")
        if not found_data:
            raise BadFormatError(f"{filepath}: no 'data' chunk")

        channels, sample_rate = fmt
        return self._handle(
            filepath, file_size, table,
            sample_rate=sample_rate,
            channels=channels,
            samples_per_frame=frame_bytes // (2 * channels),
            avg_bitrate_kbps=sample_rate * channels * 2 // 1024,
            complete=complete,
        )

    def _read_fmt(self, cursor: ByteCursor, chunk_size: int,
                  filepath: str) -> tuple[int, int]:
        if chunk_size < 16:
            raise BadFormatError(f"{filepath}: 'fmt ' chunk is only {chunk_size} bytes")
        payload = cursor.read(chunk_size)
        (format_tag, channels, sample_rate, _byte_rate,
         _block_align, bits) = struct.unpack("<HHIIHH", payload[:16])
        if format_tag != 1:
            raise BadFormatError(
                f"{filepath}: format code {format_tag} is not linear PCM"
            )
        if bits != 16:
            raise BadFormatError(f"{filepath}: {bits}-bit PCM is not supported")
        if channels == 0 or sample_rate == 0:
            raise BadFormatError(
                f"{filepath}: invalid fmt ({channels} channels, {sample_rate} Hz)"
            )
        return channels, sample_rate

    def _read_frames(self, cursor: ByteCursor, data_size: int, frame_bytes: int,
                     channels: int, table: FrameTable,
                     progress: ProgressCallback | None) -> bool:
        """Append one entry per frame; returns False when cancelled."""
        start = cursor.position
        stride = 4 * channels
        done = 0
        while done < data_size:
            batch = min(_BATCH_FRAMES * frame_bytes, data_size - done)
            raw = np.frombuffer(cursor.read(batch), dtype=np.int8)
            full = batch // frame_bytes

            if full:
                frames = raw[:full * frame_bytes].reshape(full, frame_bytes)
                peaks = np.abs(frames[:, 1::stride].astype(np.int16)).max(axis=1)
                offsets = start + done + np.arange(full, dtype=np.int64) * frame_bytes
                table.extend(offsets, np.full(full, frame_bytes), peaks)

            tail = raw[full * frame_bytes:]
            if len(tail):
                high_bytes = tail[1::stride].astype(np.int16)
                gain = int(np.abs(high_bytes).max()) if len(high_bytes) else 0
                table.add(start + done + full * frame_bytes, len(tail), gain)

            done += batch
            if progress is not None and progress(done / data_size) is False:
                return False
        return True
