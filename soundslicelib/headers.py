"""Container headers for trimmed output files.

Every builder is a pure function of the stream parameters and the
frame-size table of the subset being written; the audio payload itself
is appended by :mod:`soundslicelib.writer`.
"""

from __future__ import annotations

import logging
import struct
import time
from typing import Sequence

from .atoms import Atom, full_atom
from .gain_tables import (
    AAC_DEFAULT_SAMPLING_INDEX,
    AAC_SAMPLES_PER_FRAME,
    AMR_MAGIC,
    sampling_frequency_index,
)

log = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44

# Seconds between 1904-01-01 (MP4 epoch) and 1970-01-01.
MP4_EPOCH_OFFSET = (66 * 365 + 16) * 24 * 60 * 60

_UNITY_MATRIX = struct.pack(">9I", 0x00010000, 0, 0, 0, 0x00010000, 0, 0, 0, 0x40000000)


# ---------------------------------------------------------------------------
# WAV / AMR
# ---------------------------------------------------------------------------

def build_wav_header(sample_rate: int, channels: int, data_size: int) -> bytes:
    """Canonical 44-byte PCM-16 RIFF/WAVE header for *data_size* audio bytes."""
    block_align = 2 * channels
    return b"".join((
        b"RIFF", struct.pack("<I", 36 + data_size), b"WAVE",
        b"fmt ", struct.pack("<IHHIIHH", 16, 1, channels, sample_rate,
                             sample_rate * block_align, block_align, 16),
        b"data", struct.pack("<I", data_size),
    ))


def build_amr_header() -> bytes:
    return AMR_MAGIC


# ---------------------------------------------------------------------------
# MP4 / AAC
# ---------------------------------------------------------------------------

def decoder_buffer_size(max_frame_size: int) -> int:
    """Smallest multiple of 256 that holds two of the largest frames (at least 256)."""
    size = max(2 * max_frame_size, 1)
    return max(256, -(-size // 256) * 256)


def build_audio_specific_config(sample_rate: int, channels: int) -> bytes:
    """Two-byte AAC-LC AudioSpecificConfig."""
    index = sampling_frequency_index(sample_rate)
    if index is None:
        log.warning("Sample rate %d Hz has no AAC index, writing 44100 Hz", sample_rate)
        index = AAC_DEFAULT_SAMPLING_INDEX
    # object type 2 (AAC LC): 5 bits, frequency index: 4 bits, channels: 4 bits
    return bytes((
        0x10 | ((index >> 1) & 0x07),
        ((index & 1) << 7) | ((channels & 0x0F) << 3),
    ))


def build_es_descriptor(sample_rate: int, channels: int, bitrate: int,
                        max_frame_size: int) -> bytes:
    """ES_Descriptor for an ISO/IEC 14496-3 audio stream."""
    asc = build_audio_specific_config(sample_rate, channels)
    dsi = bytes((0x05, len(asc))) + asc
    buffer_size = decoder_buffer_size(max_frame_size)
    dcd_body = (
        bytes((0x40, 0x15))                       # audio 14496-3, AudioStream
        + buffer_size.to_bytes(3, "big")
        + struct.pack(">II", bitrate, bitrate)    # max / avg bitrate
        + dsi
    )
    dcd = bytes((0x04, len(dcd_body))) + dcd_body
    sl = bytes((0x06, 0x01, 0x02))
    es_body = b"\x00\x00\x00" + dcd + sl           # ES_ID 0, no flags
    return bytes((0x03, len(es_body))) + es_body


def _mp4a_entry(sample_rate: int, channels: int, esds: Atom) -> Atom:
    ase = (
        b"\x00" * 6 + struct.pack(">H", 1)        # reserved, data reference index
        + b"\x00" * 8
        + struct.pack(">HHHH", channels, 16, 0, 0)
        + struct.pack(">HH", sample_rate & 0xFFFF, 0)
    )
    return Atom("mp4a", data=ase + esds.to_bytes())


def _time_to_sample(frame_sizes: Sequence[int], samples_per_frame: int) -> list[tuple[int, int]]:
    n = len(frame_sizes)
    if n == 0:
        return []
    # A first frame too short to hold audio is the encoder's priming frame.
    if frame_sizes[0] < 4:
        entries = [(1, 0)]
        if n > 1:
            entries.append((n - 1, samples_per_frame))
        return entries
    return [(n, samples_per_frame)]


def build_mp4_header(
    sample_rate: int,
    channels: int,
    frame_sizes: Sequence[int],
    bitrate: int,
    *,
    samples_per_frame: int = AAC_SAMPLES_PER_FRAME,
    creation_time: int | None = None,
) -> bytes:
    """Build ``ftyp``, ``moov`` and the ``mdat`` header for an AAC-LC stream.

    Parameters
    ----------
    sample_rate, channels : int
        Stream parameters written to ``mdhd``, the sample entry and the
        AudioSpecificConfig.
    frame_sizes : Sequence[int]
        Byte length of every frame that will follow the header, in order.
    bitrate : int
        Bits per second for the decoder configuration descriptor.
    samples_per_frame : int
        Per-frame duration in ``mdhd`` timescale units.
    creation_time : int | None
        Unix time for the creation/modification fields.  Defaults to now.

    Returns
    -------
    bytes
        The header; the frame payload must be appended immediately.
        Its ``stco`` entry points at the first byte after the header.
    """
    frame_sizes = [int(s) for s in frame_sizes]
    n = len(frame_sizes)
    total = sum(frame_sizes)
    max_frame = max(frame_sizes, default=0)

    if creation_time is None:
        creation_time = int(time.time())
    mp4_time = (creation_time + MP4_EPOCH_OFFSET) & 0xFFFFFFFF

    stts_entries = _time_to_sample(frame_sizes, samples_per_frame)
    num_samples = sum(count * delta for count, delta in stts_entries)
    duration_ms = -(-num_samples * 1000 // sample_rate) if sample_rate > 0 else 0

    ftyp = Atom("ftyp", data=b"M4A " + struct.pack(">I", 0) + b"M4A mp42isom")

    mvhd = full_atom("mvhd", (
        struct.pack(">IIII", mp4_time, mp4_time, 1000, duration_ms)
        + struct.pack(">IH", 0x00010000, 0x0100)   # rate 1.0, volume 1.0
        + b"\x00" * 10
        + _UNITY_MATRIX
        + b"\x00" * 24
        + struct.pack(">I", 2)                      # next track ID
    ))
    tkhd = full_atom("tkhd", (
        struct.pack(">IIIII", mp4_time, mp4_time, 1, 0, duration_ms)
        + b"\x00" * 8
        + struct.pack(">hhHH", 0, 0, 0x0100, 0)     # layer, group, volume
        + _UNITY_MATRIX
        + struct.pack(">II", 0, 0)
    ), flags=0x07)
    mdhd = full_atom("mdhd", (
        struct.pack(">IIII", mp4_time, mp4_time, sample_rate, num_samples)
        + struct.pack(">HH", 0, 0)
    ))
    hdlr = full_atom("hdlr", (
        struct.pack(">I", 0) + b"soun" + b"\x00" * 12 + b"SoundHandle\x00"
    ))
    smhd = full_atom("smhd", struct.pack(">hH", 0, 0))
    url = full_atom("url ", flags=0x01)
    dinf = Atom("dinf").add(full_atom("dref", struct.pack(">I", 1) + url.to_bytes()))

    esds = full_atom("esds", build_es_descriptor(sample_rate, channels, bitrate, max_frame))
    stsd = full_atom("stsd", struct.pack(">I", 1) + _mp4a_entry(sample_rate, channels, esds).to_bytes())
    stts = full_atom("stts", struct.pack(">I", len(stts_entries)) + b"".join(
        struct.pack(">II", count, delta) for count, delta in stts_entries
    ))
    stsc = full_atom("stsc", struct.pack(">IIII", 1, 1, n, 1))
    stsz = full_atom("stsz", struct.pack(">II", 0, n) + struct.pack(f">{n}I", *frame_sizes))
    stco = full_atom("stco", struct.pack(">II", 1, 0))

    stbl = Atom("stbl").add(stsd, stts, stsc, stsz, stco)
    minf = Atom("minf").add(smhd, dinf, stbl)
    mdia = Atom("mdia").add(mdhd, hdlr, minf)
    trak = Atom("trak").add(tkhd, mdia)
    moov = Atom("moov").add(mvhd, trak)
    mdat_header_size = 8

    # stco's size does not depend on its value, so the offset can be patched last.
    chunk_offset = ftyp.size + moov.size + mdat_header_size
    stco.data = struct.pack(">II", 1, chunk_offset)

    mdat_header = struct.pack(">I4s", mdat_header_size + total, b"mdat")
    return ftyp.to_bytes() + moov.to_bytes() + mdat_header
