from __future__ import annotations

import struct
from pathlib import Path
from typing import Callable, Sequence

import numpy as np
import pytest

from soundslicelib.headers import build_mp4_header


def pack_bits(*fields: tuple[int, int], length: int | None = None) -> bytes:
    """Pack ``(value, width)`` fields MSB-first, zero-padded to *length* bytes."""
    acc = 0
    nbits = 0
    for value, width in fields:
        acc = (acc << width) | (value & ((1 << width) - 1))
        nbits += width
    nbytes = (nbits + 7) // 8
    acc <<= nbytes * 8 - nbits
    data = acc.to_bytes(nbytes, "big") if nbytes else b""
    if length is not None:
        data = data.ljust(length, b"\x00")
    return data


def riff(chunks: Sequence[tuple[bytes, bytes]], *, riff_size: int | None = None) -> bytes:
    body = b"WAVE"
    for chunk_id, payload in chunks:
        body += chunk_id + struct.pack("<I", len(payload)) + payload
        if len(payload) % 2:
            body += b"\x00"
    size = len(body) if riff_size is None else riff_size
    return b"RIFF" + struct.pack("<I", size) + body


def fmt_chunk(sample_rate: int, channels: int, *, format_tag: int = 1, bits: int = 16) -> bytes:
    block_align = channels * bits // 8
    return struct.pack("<HHIIHH", format_tag, channels, sample_rate,
                       sample_rate * block_align, block_align, bits)


def box(box_type: bytes, payload: bytes) -> bytes:
    return struct.pack(">I", 8 + len(payload)) + box_type + payload


def sce_frame(gain: int, length: int = 16) -> bytes:
    """AAC raw_data_block starting with a single channel element."""
    return pack_bits((0, 3), (0, 4), (gain, 8), length=length)


def cpe_long_frame(gain: int, *, max_sfb: int = 0, ms_mask: int = 0,
                   length: int = 16) -> bytes:
    """Channel pair element with a common long window."""
    fields = [(1, 3), (0, 4), (1, 1),            # id, tag, common_window
              (0, 1), (0, 2), (0, 1),            # reserved, window_sequence, shape
              (max_sfb, 6), (0, 1), (ms_mask, 2)]
    if ms_mask == 1:
        fields.append((0, max_sfb))
    fields.append((gain, 8))
    return pack_bits(*fields, length=length)


@pytest.fixture
def make_wav(tmp_path: Path) -> Callable[..., Path]:
    def _make(
        name: str = "test.wav",
        *,
        sample_rate: int = 8000,
        channels: int = 1,
        samples: np.ndarray | None = None,
        seconds: float = 1.0,
    ) -> Path:
        if samples is None:
            samples = np.zeros((int(sample_rate * seconds), channels), dtype=np.int16)
        data = np.asarray(samples, dtype="<i2").tobytes()
        path = tmp_path / name
        path.write_bytes(riff([(b"fmt ", fmt_chunk(sample_rate, channels)), (b"data", data)]))
        return path
    return _make


@pytest.fixture
def make_amr(tmp_path: Path) -> Callable[..., Path]:
    def _make(frames: Sequence[bytes], name: str = "test.amr", *, boxed: bool = False) -> Path:
        payload = b"".join(frames)
        if boxed:
            content = (
                box(b"ftyp", b"3gp4" + b"\x00\x00\x02\x00" + b"isom3gp4")
                + box(b"free", b"\x00" * 4)
                + box(b"mdat", payload)
            )
        else:
            content = b"#!AMR\n" + payload
        path = tmp_path / name
        path.write_bytes(content)
        return path
    return _make


@pytest.fixture
def make_m4a(tmp_path: Path) -> Callable[..., Path]:
    def _make(
        frames: Sequence[bytes],
        name: str = "test.m4a",
        *,
        sample_rate: int = 44100,
        channels: int = 2,
        rename_atoms: dict[bytes, bytes] | None = None,
        truncate: int = 0,
    ) -> Path:
        header = build_mp4_header(sample_rate, channels, [len(f) for f in frames],
                                  128000, creation_time=0)
        for old, new in (rename_atoms or {}).items():
            header = header.replace(old, new, 1)
        content = header + b"".join(frames)
        if truncate:
            content = content[:-truncate]
        path = tmp_path / name
        path.write_bytes(content)
        return path
    return _make
