"""MP4 / M4A parser for a single AAC audio track.

The atom tree is read once.  ``stsz`` gives the frame sizes, ``stts``
the samples per frame and ``stsd`` (with its ``esds`` descriptor) the
channel count and sample rate.  Frames are laid out back to back from
the start of the ``mdat`` payload.  The gain of a frame is the
``global_gain`` field of the first channel element in its
``raw_data_block``, read without Huffman decoding.
"""

from __future__ import annotations

import logging
import struct
from typing import BinaryIO

import numpy as np

from ..atoms import Atom, read_atoms
from ..bitstream import BitReader, ByteCursor
from ..errors import (
    BadFormatError,
    MissingAtomError,
    TruncatedFileError,
    UnsupportedFormatError,
)
from ..events import ProgressCallback
from ..gain_tables import (
    AAC_EIGHT_SHORT_SEQUENCE,
    AAC_ID_CPE,
    AAC_ID_SCE,
    AAC_SAMPLES_PER_FRAME,
    AAC_SAMPLING_FREQUENCIES,
)
from ..models import FileType, SoundHandle
from ..parser import FrameTable, SoundParser, byte_bitrate_kbps

log = logging.getLogger(__name__)

REQUIRED_ATOMS: frozenset[str] = frozenset({
    "dinf", "hdlr", "mdhd", "mdia", "minf", "moov", "mvhd",
    "smhd", "stbl", "stsd", "stsz", "stts", "tkhd", "trak",
})

_CONTAINERS = frozenset({"moov", "trak", "mdia", "minf", "stbl"})
_LOADED = frozenset({
    "stsd", "stsz", "stts", "mdhd", "hdlr", "mvhd", "tkhd", "smhd", "dinf",
})

AAC_LC_OBJECT_TYPE = 2
_PROGRESS_EVERY = 64


# ---------------------------------------------------------------------------
# Sample tables
# ---------------------------------------------------------------------------

def parse_stsz(data: bytes) -> np.ndarray:
    """Per-sample byte sizes from an ``stsz`` payload (after version/flags)."""
    if len(data) < 8:
        raise TruncatedFileError("'stsz' atom is too short")
    sample_size, count = struct.unpack(">II", data[:8])
    if sample_size:
        return np.full(count, sample_size, dtype=np.int64)
    if len(data) < 8 + 4 * count:
        raise TruncatedFileError(
            f"'stsz' declares {count} samples but holds only "
            f"{(len(data) - 8) // 4}"
        )
    return np.frombuffer(data[8:8 + 4 * count], dtype=">u4").astype(np.int64)


def parse_stts(data: bytes) -> int:
    """Samples per frame: the first non-zero ``stts`` delta."""
    if len(data) < 4:
        raise TruncatedFileError("'stts' atom is too short")
    count = struct.unpack(">I", data[:4])[0]
    if len(data) < 4 + 8 * count:
        raise TruncatedFileError(f"'stts' declares {count} entries")
    for i in range(count):
        _samples, delta = struct.unpack_from(">II", data, 4 + 8 * i)
        if delta:
            return delta
    return AAC_SAMPLES_PER_FRAME


def _descriptor_length(cursor: ByteCursor) -> int:
    length = 0
    for _ in range(4):
        b = cursor.u8()
        length = (length << 7) | (b & 0x7F)
        if not b & 0x80:
            break
    return length


def parse_esds(data: bytes) -> bytes | None:
    """Return the AudioSpecificConfig bytes from an ``esds`` payload, if any."""
    cursor = ByteCursor.from_bytes(data)
    if cursor.remaining < 2 or cursor.u8() != 0x03:
        return None
    es = cursor.sub(min(_descriptor_length(cursor), cursor.remaining))
    es.skip(2)                          # ES_ID
    flags = es.u8()
    if flags & 0x80:
        es.skip(2)                      # dependsOn_ES_ID
    if flags & 0x40:
        es.skip(es.u8())                # URL
    if flags & 0x20:
        es.skip(2)                      # OCR_ES_ID
    while es.remaining >= 2:
        tag = es.u8()
        body = es.sub(min(_descriptor_length(es), es.remaining))
        if tag != 0x04:
            continue
        body.skip(13)                   # objectType .. avgBitrate
        while body.remaining >= 2:
            sub_tag = body.u8()
            sub = body.sub(min(_descriptor_length(body), body.remaining))
            if sub_tag == 0x05:
                return sub.read(sub.remaining)
        return None
    return None


def parse_audio_specific_config(asc: bytes) -> tuple[int, int | None, int]:
    """Return ``(object_type, sample_rate, channel_config)``.

    *sample_rate* is ``None`` for a reserved frequency index.
    """
    bits = BitReader(asc)
    object_type = bits.read_bits(5)
    if object_type == 31:
        object_type = 32 + bits.read_bits(6)
    index = bits.read_bits(4)
    if index == 15:
        sample_rate: int | None = bits.read_bits(24)
    elif index < len(AAC_SAMPLING_FREQUENCIES):
        sample_rate = AAC_SAMPLING_FREQUENCIES[index]
    else:
        sample_rate = None
    channel_config = bits.read_bits(4)
    return object_type, sample_rate, channel_config


def parse_stsd(data: bytes) -> tuple[int, int, bytes | None]:
    """Return ``(channels, sample_rate, audio_specific_config)`` from ``stsd``.

    The first sample entry must be ``mp4a``.  Channels and sample rate
    come from the AudioSpecificConfig when it names them, else from the
    audio sample entry.
    """
    if len(data) < 12:
        raise TruncatedFileError("'stsd' atom is too short")
    entry_size, entry_type = struct.unpack(">I4s", data[4:12])
    if entry_type != b"mp4a":
        raise BadFormatError(
            f"Sample entry is {entry_type.decode('latin-1')!r}, expected 'mp4a'"
        )
    entry = data[4:4 + entry_size]
    if len(entry) < 36 or entry_size < 36:
        raise TruncatedFileError("'mp4a' sample entry is too short")

    qt_version = struct.unpack(">H", entry[16:18])[0]
    channels = struct.unpack(">H", entry[24:26])[0]
    sample_rate = struct.unpack(">H", entry[32:34])[0]
    children_start = 36 + {1: 16, 2: 36}.get(qt_version, 0)

    asc = None
    if len(entry) > children_start:
        children = read_atoms(ByteCursor.from_bytes(entry[children_start:]),
                              containers=frozenset(), load={"esds"})
        esds = next((a for a in children if a.type == "esds"), None)
        if esds is not None:
            asc = parse_esds(esds.data)

    if asc:
        object_type, asc_rate, channel_config = parse_audio_specific_config(asc)
        if object_type != AAC_LC_OBJECT_TYPE:
            log.warning("AAC object type %d is not AAC-LC; gains may be meaningless",
                        object_type)
        if asc_rate:
            sample_rate = asc_rate
        if channel_config:
            channels = channel_config
    return channels, sample_rate, asc


# ---------------------------------------------------------------------------
# raw_data_block gain
# ---------------------------------------------------------------------------

def raw_data_block_gain(bits: BitReader, prev_gain: int) -> int:
    """``global_gain`` of the first element of an AAC raw_data_block.

    SCE and CPE are understood; any other element keeps *prev_gain*.
    """
    element = bits.peek_bits(0, 3)
    if element == AAC_ID_SCE:
        # id(3) element_instance_tag(4) global_gain(8)
        return bits.peek_bits(7, 8)
    if element != AAC_ID_CPE:
        return prev_gain

    # id(3) element_instance_tag(4) common_window(1)
    if not bits.bit(7):
        return bits.peek_bits(8, 8)

    # ics_info: reserved(1) window_sequence(2) window_shape(1) ...
    window_sequence = bits.peek_bits(9, 2)
    if window_sequence == AAC_EIGHT_SHORT_SEQUENCE:
        max_sfb = bits.peek_bits(12, 4)
        grouping = bits.peek_bits(16, 7)
        ms_mask_present = bits.peek_bits(23, 2)
        start = 25
    else:
        max_sfb = bits.peek_bits(12, 6)
        grouping = 0x7F                 # one window group
        ms_mask_present = bits.peek_bits(19, 2)
        start = 21

    if ms_mask_present == 1:
        window_groups = 1 + (7 - bin(grouping).count("1"))
        start += max_sfb * window_groups
    return bits.peek_bits(start, 8)


class Mp4Parser(SoundParser):
    id = "mp4"
    name = "MP4/AAC"
    file_type = FileType.MP4_AAC
    codec = "AAC"
    extensions = ("aac", "m4a")

    def read(self, stream: BinaryIO, filepath: str, file_size: int,
             progress: ProgressCallback | None) -> SoundHandle:
        cursor = ByteCursor(stream, 0, file_size)
        head = cursor.read_upto(8)
        if len(head) < 8 or head[4:8] != b"ftyp":
            raise UnsupportedFormatError(f"{filepath}: no 'ftyp' atom at start of file")
        cursor.seek(0)

        root = Atom("root", children=read_atoms(cursor, containers=_CONTAINERS, load=_LOADED))
        visited = {a.type for a in root.walk()}
        missing = set(REQUIRED_ATOMS - visited)
        if "mdat" not in visited:
            missing.add("mdat")
        if missing:
            raise MissingAtomError(sorted(missing))

        trak = self._audio_track(root, filepath)
        stbl = trak.child("mdia.minf.stbl")
        tables = {t: stbl.child(t) if stbl is not None else None
                  for t in ("stsz", "stts", "stsd")}
        absent = [t for t, atom in tables.items() if atom is None]
        if absent:
            raise MissingAtomError(absent)

        sizes = parse_stsz(tables["stsz"].data)
        samples_per_frame = parse_stts(tables["stts"].data)
        channels, sample_rate, _asc = parse_stsd(tables["stsd"].data)
        if sample_rate <= 0:
            raise BadFormatError(f"{filepath}: sample rate is zero")

        mdat = next(a for a in root.walk() if a.type == "mdat")
        if int(sizes.sum()) > mdat.payload_size:
            raise TruncatedFileError(
                f"{filepath}: {len(sizes)} frames need {int(sizes.sum())} bytes, "
                f"'mdat' holds {mdat.payload_size}"
            )

        table, complete = self._read_gains(
            ByteCursor(stream, mdat.payload_offset, mdat.payload_offset + mdat.payload_size),
            sizes, progress,
        )
        duration = len(sizes) * samples_per_frame / sample_rate
        return self._handle(
            filepath, file_size, table,
            sample_rate=sample_rate,
            channels=channels,
            samples_per_frame=samples_per_frame,
            avg_bitrate_kbps=byte_bitrate_kbps(int(sizes.sum()), duration),
            complete=complete,
        )

    def _audio_track(self, root: Atom, filepath: str) -> Atom:
        moov = root.child("moov")
        for trak in moov.children_of_type("trak") if moov is not None else []:
            hdlr = trak.child("mdia.hdlr")
            if hdlr is not None and hdlr.data[4:8] == b"soun":
                return trak
        raise BadFormatError(f"{filepath}: no audio ('soun') track")

    def _read_gains(self, mdat: ByteCursor, sizes: np.ndarray,
                    progress: ProgressCallback | None) -> tuple[FrameTable, bool]:
        table = FrameTable()
        prev_gain = 0
        n = len(sizes)
        for i, length in enumerate(sizes.tolist()):
            offset = mdat.position
            frame = mdat.sub(length)
            if i == 0 or length < 4:
                gain = 0
            else:
                bits = BitReader(frame.read(4), refill=frame.read_upto)
                try:
                    gain = raw_data_block_gain(bits, prev_gain)
                except TruncatedFileError:
                    log.debug("frame %d: gain field beyond %d-byte frame", i, length)
                    gain = prev_gain
            table.add(offset, length, gain)
            prev_gain = gain

            if progress is not None and (i + 1) % _PROGRESS_EVERY == 0:
                if progress((i + 1) / n) is False:
                    return table, False
        if progress is not None:
            progress(1.0)
        return table, True
