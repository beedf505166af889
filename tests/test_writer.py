from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from conftest import cpe_long_frame, sce_frame
from soundslicelib import open_sound
from soundslicelib.errors import FileIOError
from soundslicelib.events import EventBus, SUBSET_WRITE_COMPLETE
from soundslicelib.headers import WAV_HEADER_SIZE
from soundslicelib.writer import subset_header, write_subset

MR515 = 0x0C


def _ramp(n: int) -> np.ndarray:
    return (np.arange(n, dtype=np.int64) % 2000 - 1000).astype(np.int16).reshape(-1, 1)


def test_full_range_wav_is_byte_identical(make_wav, tmp_path: Path) -> None:
    src = make_wav(samples=_ramp(8000))
    handle = open_sound(str(src))
    dest = tmp_path / "copy.wav"

    written = write_subset(handle, str(src), 0, handle.frame_count, str(dest))
    assert dest.read_bytes() == src.read_bytes()
    assert written == src.stat().st_size


def test_wav_subset_decodes(make_wav, tmp_path: Path) -> None:
    samples = _ramp(8000)
    src = make_wav(samples=samples)
    handle = open_sound(str(src))
    dest = tmp_path / "part.wav"

    write_subset(handle, None, 10, 20, str(dest))
    data, sr = sf.read(str(dest), dtype="int16", always_2d=True)
    assert sr == 8000
    assert np.array_equal(data, samples[1600:3200])


def test_payload_is_sum_of_frame_lengths(make_wav, make_amr, make_m4a, tmp_path: Path) -> None:
    sources = [
        make_wav(samples=_ramp(4000)),
        make_amr([bytes([MR515]) + bytes([i]) * 13 for i in range(6)]),
        make_m4a([b"\x21\x00"] + [sce_frame(i) for i in range(8)]),
    ]
    for i, src in enumerate(sources):
        handle = open_sound(str(src))
        a, b = 1, handle.frame_count - 1
        dest = tmp_path / f"out{i}{src.suffix}"
        written = write_subset(handle, str(src), a, b, str(dest), creation_time=0)

        header = subset_header(handle, a, b, creation_time=0)
        payload = int(handle.frame_lengths[a:b].sum())
        assert written == len(header) + payload
        assert dest.stat().st_size == written
        assert dest.read_bytes()[:len(header)] == header


def test_amr_subset_reparses(make_amr, tmp_path: Path) -> None:
    frames = [bytes([MR515]) + bytes([0x11 * i]) * 13 for i in range(5)]
    handle = open_sound(str(make_amr(frames)))
    dest = tmp_path / "cut.amr"

    # Frame boundaries fall on multiples of four entries.
    write_subset(handle, None, 4, 12, str(dest))
    content = dest.read_bytes()
    assert content == b"#!AMR\n" + frames[1] + frames[2]

    cut = open_sound(str(dest))
    assert cut.frame_count == 8
    assert cut.frame_lengths.tolist()[::4] == [14, 14]


def test_amr_subframe_range_copies_each_frame_once(make_amr, tmp_path: Path) -> None:
    frames = [bytes([MR515]) + bytes([i]) * 13 for i in range(3)]
    handle = open_sound(str(make_amr(frames)))
    dest = tmp_path / "mid.amr"

    # Starts on a zero-length entry of frame 0 and ends inside frame 2.
    write_subset(handle, None, 2, 9, str(dest))
    assert dest.read_bytes() == b"#!AMR\n" + frames[1] + frames[2]


def test_mp4_subset_reparses(make_m4a, tmp_path: Path) -> None:
    frames = [b"\x21\x00", sce_frame(30), cpe_long_frame(40), sce_frame(50), sce_frame(60)]
    handle = open_sound(str(make_m4a(frames)))
    dest = tmp_path / "cut.m4a"

    write_subset(handle, None, 1, 4, str(dest), creation_time=0)
    cut = open_sound(str(dest))
    assert cut.frame_lengths.tolist() == [16, 16, 16]
    assert cut.sample_rate == handle.sample_rate
    assert cut.channels == handle.channels
    # The first frame of any MP4 stream is reported silent.
    assert cut.frame_gains.tolist() == [0, 40, 50]
    assert dest.read_bytes()[-48:] == b"".join(frames[1:4])


def test_empty_range_writes_header_only(make_wav, tmp_path: Path) -> None:
    src = make_wav()
    handle = open_sound(str(src))
    dest = tmp_path / "empty.wav"
    assert write_subset(handle, None, 5, 5, str(dest)) == WAV_HEADER_SIZE


@pytest.mark.parametrize("start, end", [(-1, 3), (4, 2), (0, 10_000)])
def test_bad_range(make_wav, tmp_path: Path, start: int, end: int) -> None:
    handle = open_sound(str(make_wav()))
    with pytest.raises(ValueError):
        write_subset(handle, None, start, end, str(tmp_path / "x.wav"))


def test_missing_source_is_io_error(make_wav, tmp_path: Path) -> None:
    src = make_wav()
    handle = open_sound(str(src))
    src.unlink()
    with pytest.raises(FileIOError):
        write_subset(handle, None, 0, 2, str(tmp_path / "x.wav"))


def test_short_source_is_io_error(make_wav, tmp_path: Path) -> None:
    src = make_wav()
    handle = open_sound(str(src))
    src.write_bytes(src.read_bytes()[:100])
    with pytest.raises(FileIOError):
        write_subset(handle, None, 0, 2, str(tmp_path / "x.wav"))


def test_write_complete_event(make_wav, tmp_path: Path) -> None:
    handle = open_sound(str(make_wav()))
    bus = EventBus()
    seen = []
    bus.subscribe(SUBSET_WRITE_COMPLETE, lambda **data: seen.append(data))
    dest = tmp_path / "e.wav"

    written = write_subset(handle, None, 0, 3, str(dest), event_bus=bus)
    assert seen == [{"filepath": str(dest), "start_frame": 0, "end_frame": 3,
                     "bytes_written": written}]
