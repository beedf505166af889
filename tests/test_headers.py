import logging
import struct

import numpy as np
import pytest
import soundfile as sf

from soundslicelib.headers import (
    MP4_EPOCH_OFFSET,
    WAV_HEADER_SIZE,
    build_audio_specific_config,
    build_mp4_header,
    build_wav_header,
    decoder_buffer_size,
)


def _atom_payload(header: bytes, atom_type: bytes) -> bytes:
    pos = header.index(atom_type)
    size = struct.unpack(">I", header[pos - 4:pos])[0]
    return header[pos + 4:pos - 4 + size]


def test_wav_header_fields() -> None:
    header = build_wav_header(22050, 2, 1000)
    assert len(header) == WAV_HEADER_SIZE
    assert header[:4] == b"RIFF"
    assert struct.unpack("<I", header[4:8])[0] == 1036
    assert header[8:16] == b"WAVEfmt "
    fmt = struct.unpack("<IHHIIHH", header[16:36])
    assert fmt == (16, 1, 2, 22050, 88200, 4, 16)
    assert header[36:40] == b"data"
    assert struct.unpack("<I", header[40:44])[0] == 1000


def test_wav_header_is_readable(tmp_path) -> None:
    samples = np.arange(-500, 500, dtype="<i2")
    path = tmp_path / "out.wav"
    path.write_bytes(build_wav_header(8000, 1, samples.nbytes) + samples.tobytes())

    data, sr = sf.read(str(path), dtype="int16")
    assert sr == 8000
    assert np.array_equal(data, samples)


@pytest.mark.parametrize("max_frame, expected", [(0, 256), (100, 256), (128, 256),
                                                 (129, 512), (300, 768)])
def test_decoder_buffer_size(max_frame: int, expected: int) -> None:
    assert decoder_buffer_size(max_frame) == expected


def test_audio_specific_config() -> None:
    assert build_audio_specific_config(44100, 2) == bytes((0x12, 0x10))
    assert build_audio_specific_config(8000, 1) == bytes((0x15, 0x88))


def test_unknown_rate_falls_back_with_warning(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="soundslicelib.headers"):
        asc = build_audio_specific_config(12345, 1)
    assert asc == build_audio_specific_config(44100, 1)
    assert "12345" in caplog.text


def test_mp4_chunk_offset_points_past_header() -> None:
    sizes = [2, 300, 280, 310]
    header = build_mp4_header(44100, 2, sizes, 128000, creation_time=0)

    assert header[4:8] == b"ftyp"
    assert header[-4:] == b"mdat"
    assert struct.unpack(">I", header[-8:-4])[0] == 8 + sum(sizes)

    stco = _atom_payload(header, b"stco")
    assert struct.unpack(">III", stco) == (0, 1, len(header))

    stsz = _atom_payload(header, b"stsz")
    assert struct.unpack(">II4I", stsz[4:]) == (0, 4, *sizes)


def test_mp4_time_to_sample_with_priming_frame() -> None:
    stts = _atom_payload(build_mp4_header(44100, 2, [2, 300, 300], 1, creation_time=0), b"stts")
    assert struct.unpack(">5I", stts[4:]) == (2, 1, 0, 2, 1024)

    stts = _atom_payload(build_mp4_header(44100, 2, [300, 300], 1, creation_time=0), b"stts")
    assert struct.unpack(">3I", stts[4:]) == (1, 2, 1024)


def test_mp4_durations_and_times() -> None:
    header = build_mp4_header(8000, 1, [2] + [100] * 10, 64000,
                              samples_per_frame=1024, creation_time=1000)
    mvhd = _atom_payload(header, b"mvhd")
    created, modified, timescale, duration = struct.unpack(">IIII", mvhd[4:20])
    assert created == modified == 1000 + MP4_EPOCH_OFFSET
    assert timescale == 1000
    assert duration == 1280            # 10240 samples at 8 kHz

    mdhd = _atom_payload(header, b"mdhd")
    assert struct.unpack(">II", mdhd[12:20]) == (8000, 10240)


def test_mp4_descriptor_bytes() -> None:
    header = build_mp4_header(44100, 2, [2, 300], 128000, creation_time=0)
    esds = _atom_payload(header, b"esds")[4:]
    assert esds[:2] == bytes((0x03, 0x19))
    assert esds[5:9] == bytes((0x04, 0x11, 0x40, 0x15))
    assert int.from_bytes(esds[9:12], "big") == 768
    assert struct.unpack(">II", esds[12:20]) == (128000, 128000)
    assert esds[20:24] == bytes((0x05, 0x02, 0x12, 0x10))
    assert esds[24:] == bytes((0x06, 0x01, 0x02))
