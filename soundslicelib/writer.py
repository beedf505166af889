from __future__ import annotations

import logging
import os

from .errors import FileIOError
from .events import EventBus, SUBSET_WRITE_COMPLETE
from .headers import build_amr_header, build_mp4_header, build_wav_header
from .models import FileType, SoundHandle

log = logging.getLogger(__name__)


def subset_header(handle: SoundHandle, start_frame: int, end_frame: int,
                  *, creation_time: int | None = None) -> bytes:
    """Header for a file holding frames ``[start_frame, end_frame)`` of *handle*."""
    lengths = handle.frame_lengths[start_frame:end_frame]
    if handle.file_type is FileType.WAV:
        return build_wav_header(handle.sample_rate, handle.channels, int(lengths.sum()))
    if handle.file_type is FileType.AMR:
        return build_amr_header()
    return build_mp4_header(
        handle.sample_rate,
        handle.channels,
        [int(n) for n in lengths if n > 0],
        handle.avg_bitrate_kbps * 1000,
        samples_per_frame=handle.samples_per_frame,
        creation_time=creation_time,
    )


def write_subset(
    handle: SoundHandle,
    source_path: str | None,
    start_frame: int,
    end_frame: int,
    dest_path: str,
    *,
    event_bus: EventBus | None = None,
    creation_time: int | None = None,
) -> int:
    """Write frames ``[start_frame, end_frame)`` of *handle* to *dest_path*.

    A fresh header is built for the subset and each frame's bytes are
    copied verbatim from *source_path* (``handle.filepath`` when
    ``None``), skipping gaps between frames and zero-length entries.
    Nothing is re-encoded.

    Returns
    -------
    int
        Total bytes written, header included.

    Raises
    ------
    ValueError
        If the frame range is outside ``[0, handle.frame_count]``.
    FileIOError
        On any read or write failure.  A partially written file is left
        on disk.
    """
    if not 0 <= start_frame <= end_frame <= handle.frame_count:
        raise ValueError(
            f"Frame range [{start_frame}, {end_frame}) outside "
            f"[0, {handle.frame_count}]"
        )
    source_path = source_path or handle.filepath
    header = subset_header(handle, start_frame, end_frame, creation_time=creation_time)

    offsets = handle.frame_offsets[start_frame:end_frame].tolist()
    lengths = handle.frame_lengths[start_frame:end_frame].tolist()
    written = 0
    try:
        with open(source_path, "rb") as src, open(dest_path, "wb") as dst:
            dst.write(header)
            written += len(header)
            pos = 0
            for offset, length in zip(offsets, lengths):
                if length <= 0 or offset < pos:
                    continue
                src.seek(offset)
                data = src.read(length)
                if len(data) < length:
                    raise FileIOError(
                        f"{source_path}: expected {length} bytes at offset "
                        f"{offset}, got {len(data)}"
                    )
                dst.write(data)
                written += length
                pos = offset + length
    except OSError as e:
        raise FileIOError(f"Cannot write subset to {dest_path}: {e}") from e

    log.debug("wrote frames [%d, %d) of %s to %s (%d bytes)", start_frame,
              end_frame, source_path, dest_path, written)
    if event_bus is not None:
        event_bus.emit(SUBSET_WRITE_COMPLETE, filepath=os.fspath(dest_path),
                       start_frame=start_frame, end_frame=end_frame,
                       bytes_written=written)
    return written
