import struct
from pathlib import Path

import pytest

from conftest import box, cpe_long_frame, pack_bits, sce_frame
from soundslicelib import FileType, open_sound
from soundslicelib.bitstream import BitReader
from soundslicelib.errors import MissingAtomError, TruncatedFileError, UnsupportedFormatError
from soundslicelib.headers import build_es_descriptor, build_mp4_header
from soundslicelib.parsers.mp4 import (
    parse_audio_specific_config,
    parse_esds,
    parse_stsd,
    parse_stts,
    raw_data_block_gain,
)

PRIMING = b"\x21\x00"


def test_frames_and_gains(make_m4a) -> None:
    frames = [PRIMING, sce_frame(100), cpe_long_frame(120), sce_frame(90, length=24)]
    handle = open_sound(str(make_m4a(frames)))

    assert handle.file_type is FileType.MP4_AAC
    assert handle.codec == "AAC"
    assert handle.sample_rate == 44100
    assert handle.channels == 2
    assert handle.samples_per_frame == 1024
    assert handle.frame_count == 4
    assert handle.frame_lengths.tolist() == [2, 16, 16, 24]
    assert handle.frame_gains.tolist() == [0, 100, 120, 90]


def test_frames_are_contiguous_after_header(make_m4a) -> None:
    frames = [PRIMING, sce_frame(10), sce_frame(20)]
    header = build_mp4_header(44100, 2, [len(f) for f in frames], 128000, creation_time=0)
    handle = open_sound(str(make_m4a(frames)))

    assert handle.frame_offsets.tolist() == [len(header), len(header) + 2, len(header) + 18]
    assert handle.file_size == len(header) + 34


def test_first_frame_gain_is_zero_even_when_large(make_m4a) -> None:
    handle = open_sound(str(make_m4a([sce_frame(200), sce_frame(50)])))
    assert handle.frame_gains.tolist() == [0, 50]


def test_mono_stream(make_m4a) -> None:
    handle = open_sound(str(make_m4a([PRIMING, sce_frame(80)], "mono.m4a",
                                     sample_rate=22050, channels=1)))
    assert handle.channels == 1
    assert handle.sample_rate == 22050


def test_ms_mask_skips_band_flags(make_m4a) -> None:
    frames = [PRIMING, cpe_long_frame(77, max_sfb=3, ms_mask=1)]
    handle = open_sound(str(make_m4a(frames)))
    assert handle.frame_gains.tolist() == [0, 77]


def test_unknown_element_copies_previous_gain(make_m4a) -> None:
    fill = pack_bits((6, 3), length=16)        # ID_FIL
    handle = open_sound(str(make_m4a([PRIMING, sce_frame(64), fill, fill])))
    assert handle.frame_gains.tolist() == [0, 64, 64, 64]


def test_cpe_without_common_window() -> None:
    data = pack_bits((1, 3), (0, 4), (0, 1), (150, 8), length=8)
    assert raw_data_block_gain(BitReader(data), 0) == 150


def test_eight_short_sequence_with_ms_mask() -> None:
    # grouping 0b1110000 gives five window groups, so ms_mask skips 2 * 5 flag bits
    data = pack_bits(
        (1, 3), (0, 4), (1, 1),
        (0, 1), (2, 2), (0, 1), (2, 4), (0b1110000, 7), (1, 2),
        (0, 10), (99, 8),
        length=16,
    )
    assert raw_data_block_gain(BitReader(data), 0) == 99


def test_gain_beyond_frame_end_copies_previous(make_m4a) -> None:
    frames = [PRIMING, sce_frame(40), cpe_long_frame(5, max_sfb=63, ms_mask=1, length=4)[:4]]
    handle = open_sound(str(make_m4a(frames)))
    assert handle.frame_gains.tolist() == [0, 40, 40]


def test_missing_atom_is_reported(make_m4a) -> None:
    path = make_m4a([PRIMING, sce_frame(1)], rename_atoms={b"stsz": b"free"})
    with pytest.raises(MissingAtomError) as excinfo:
        open_sound(str(path))
    assert excinfo.value.missing == ["stsz"]
    assert "stsz" in str(excinfo.value)


def test_truncated_mdat(make_m4a) -> None:
    path = make_m4a([PRIMING, sce_frame(1), sce_frame(2)], truncate=5)
    with pytest.raises(TruncatedFileError):
        open_sound(str(path))


def test_file_without_ftyp_is_unsupported(tmp_path: Path) -> None:
    path = tmp_path / "x.m4a"
    path.write_bytes(b"\x00\x00\x00\x08moov" + b"\x00" * 32)
    with pytest.raises(UnsupportedFormatError):
        open_sound(str(path))


def test_esds_round_trip_through_audio_specific_config() -> None:
    asc = parse_esds(build_es_descriptor(48000, 1, 64000, 200))
    assert asc == bytes((0x11, 0x88))
    assert parse_audio_specific_config(asc) == (2, 48000, 1)


def test_stts_uses_first_nonzero_delta() -> None:
    data = bytes.fromhex("00000002" "00000001 00000000" "0000000a 00000400".replace(" ", ""))
    assert parse_stts(data) == 1024


def test_stsd_shorter_than_first_entry_header() -> None:
    with pytest.raises(TruncatedFileError):
        parse_stsd(b"\x00\x00\x00\x01\x00\x00\x00\x10")


# Files below are assembled atom by atom rather than with build_mp4_header,
# so the layouts other muxers produce are covered.

FTYP = box(b"ftyp", b"M4A \x00\x00\x00\x00isomM4A ")
FRAMES = [PRIMING, sce_frame(70), sce_frame(80)]

# ES descriptor wrapping an AudioSpecificConfig for AAC-LC, 22050 Hz, mono.
ESDS_22050_MONO = bytes.fromhex(
    "0319000000" "0411401500030000" "01f4000001f400" "0502" "1388" "060102"
)


def _full(atom_type: bytes, payload: bytes, version: int = 0) -> bytes:
    return box(atom_type, bytes([version, 0, 0, 0]) + payload)


def _mp4a(version: int = 0, *, rate: int = 44100, channels: int = 2,
          esds: bytes | None = None) -> bytes:
    body = bytes(6) + struct.pack(">H", 1)
    body += struct.pack(">HH4sHHHH", version, 0, bytes(4), channels, 16, 0, 0)
    body += struct.pack(">I", rate << 16)
    body += {0: b"", 1: bytes(16), 2: bytes(36)}[version]
    if esds is not None:
        body += _full(b"esds", esds)
    return box(b"mp4a", body)


def _moov(sizes: list[int], *, entry: bytes | None = None, uniform: int = 0) -> bytes:
    if uniform:
        stsz = struct.pack(">II", uniform, len(sizes))
    else:
        stsz = struct.pack(f">II{len(sizes)}I", 0, len(sizes), *sizes)
    stbl = box(b"stbl",
               _full(b"stsd", struct.pack(">I", 1) + (entry or _mp4a()))
               + _full(b"stts", struct.pack(">III", 1, len(sizes), 1024))
               + _full(b"stsz", stsz))
    minf = box(b"minf", _full(b"smhd", bytes(4)) + box(b"dinf", b"") + stbl)
    hdlr = _full(b"hdlr", bytes(4) + b"soun" + bytes(12) + b"\x00")
    mdia = box(b"mdia", _full(b"mdhd", bytes(20)) + hdlr + minf)
    trak = box(b"trak", _full(b"tkhd", bytes(80)) + mdia)
    return box(b"moov", _full(b"mvhd", bytes(96)) + trak)


def _write(tmp_path: Path, content: bytes) -> str:
    path = tmp_path / "muxed.m4a"
    path.write_bytes(content)
    return str(path)


def test_mdat_with_size_zero_runs_to_end_of_file(tmp_path: Path) -> None:
    moov = _moov([len(f) for f in FRAMES])
    start = len(FTYP) + len(moov) + 8
    content = FTYP + moov + struct.pack(">I4s", 0, b"mdat") + b"".join(FRAMES)
    handle = open_sound(_write(tmp_path, content))

    assert handle.frame_offsets.tolist() == [start, start + 2, start + 18]
    assert handle.frame_gains.tolist() == [0, 70, 80]


def test_mdat_with_64_bit_size(tmp_path: Path) -> None:
    payload = b"".join(FRAMES)
    moov = _moov([len(f) for f in FRAMES])
    start = len(FTYP) + len(moov) + 16
    content = FTYP + moov + struct.pack(">I4sQ", 1, b"mdat", 16 + len(payload)) + payload
    handle = open_sound(_write(tmp_path, content))

    assert handle.frame_offsets[0] == start
    assert handle.frame_lengths.tolist() == [2, 16, 16]
    assert handle.frame_gains.tolist() == [0, 70, 80]


def test_mdat_before_moov(tmp_path: Path) -> None:
    mdat = box(b"mdat", b"".join(FRAMES))
    content = FTYP + mdat + _moov([len(f) for f in FRAMES])
    handle = open_sound(_write(tmp_path, content))

    start = len(FTYP) + 8
    assert handle.frame_offsets.tolist() == [start, start + 2, start + 18]
    assert handle.frame_gains.tolist() == [0, 70, 80]
    assert handle.sample_rate == 44100
    assert handle.channels == 2


def test_uniform_sample_size_table(tmp_path: Path) -> None:
    frames = [sce_frame(50), sce_frame(70), sce_frame(80)]
    content = FTYP + _moov([16] * 3, uniform=16) + box(b"mdat", b"".join(frames))
    handle = open_sound(_write(tmp_path, content))

    assert handle.frame_lengths.tolist() == [16, 16, 16]
    assert handle.frame_offsets.tolist()[1] - handle.frame_offsets.tolist()[0] == 16
    assert handle.frame_gains.tolist() == [0, 70, 80]


def test_sample_entry_fields_without_esds(tmp_path: Path) -> None:
    entry = _mp4a(rate=32000, channels=1)
    content = FTYP + _moov([len(f) for f in FRAMES], entry=entry) + box(b"mdat", b"".join(FRAMES))
    handle = open_sound(_write(tmp_path, content))
    assert handle.sample_rate == 32000
    assert handle.channels == 1


@pytest.mark.parametrize("version", [0, 1, 2])
def test_quicktime_sound_entry_versions(tmp_path: Path, version: int) -> None:
    # The AudioSpecificConfig overrides the entry's 44100 Hz stereo fields.
    entry = _mp4a(version, esds=ESDS_22050_MONO)
    content = FTYP + _moov([len(f) for f in FRAMES], entry=entry) + box(b"mdat", b"".join(FRAMES))
    handle = open_sound(_write(tmp_path, content))

    assert handle.sample_rate == 22050
    assert handle.channels == 1
    assert handle.samples_per_frame == 1024
    assert handle.frame_gains.tolist() == [0, 70, 80]
