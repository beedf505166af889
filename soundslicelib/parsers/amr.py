"""AMR-NB parser, for raw ``#!AMR`` streams and 3GPP-boxed files.

Frames are not decoded.  For the 4.75, 5.15 and 12.2 kbit/s modes the
gain-quantiser indices are pulled out of the payload and pushed through
the codec's 4-tap log-energy predictor, giving one loudness estimate
per 40-sample subframe.  Every AMR frame therefore contributes four
entries to the frame table: the first carries the frame's bytes, the
other three are zero-length entries positioned at the frame end.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Any, BinaryIO

from ..atoms import read_atom_header
from ..bitstream import BitReader, ByteCursor
from ..config import ParamSpec, PARSER_PARAMS
from ..errors import BadFormatError, TruncatedFileError, UnsupportedFormatError
from ..events import ProgressCallback
from ..gain_tables import (
    AMR_BLOCK_SIZES,
    AMR_MAGIC,
    AMR_MC_MAGIC,
    AMR_MODE_NAMES,
    AMR_SAMPLE_RATE,
    AMR_SAMPLES_PER_SUBFRAME,
    AMR_SUBFRAMES_PER_FRAME,
    AMR_WB_MAGIC,
    DB_TO_LOG2_Q15,
    DGRAY,
    GAIN_FAC_MR515,
    L_SUBFR,
    MEAN_ENER_MR122,
    MR122_BIT_ORDER,
    MR122_GAIN_CODE_BITS,
    MR122_GAIN_PITCH_BITS,
    MR122_LAG_BITS,
    MR122_LSP_BITS,
    MR122_PULSE1_BITS,
    MR122_PULSE2_BITS,
    MR122_PULSE_TRACKS,
    MR475_GAIN_BITS,
    MR515_GAIN_BITS,
    MR515_PRED,
    MR515_PRED_OFFSET,
    PIT_MAX,
    PIT_MIN_MR122,
    PRED_MR122,
    QUA_ENER_MR515,
    QUA_GAIN_CODE,
    QUA_GAIN_PITCH,
    SHARPMAX,
    storage_positions,
)
from ..models import FileType, SoundHandle
from ..parser import FrameTable, SoundParser, byte_bitrate_kbps

log = logging.getLogger(__name__)

MODE_MR475 = 0
MODE_MR515 = 1
MODE_MR122 = 7

# Boxes searched for 'mdat' when the stream is 3GPP-wrapped.
_BOX_CONTAINERS = frozenset({"moov", "trak", "mdia", "minf", "stbl"})

_PROGRESS_EVERY = 64


def frame_type(header: int) -> int:
    """Frame type from the storage-format header byte ``P FT FT FT FT Q P P``."""
    return (header >> 3) & 0x0F


def frame_size(header: int) -> int:
    """Bytes occupied by the frame starting with *header*, header included."""
    return AMR_BLOCK_SIZES[frame_type(header)] + 1


class GainPredictor:
    """Rolling 4-entry quantised-energy history shared by all modes.

    ``past_db`` holds 20*log10 energies (Q10) for the MR475/MR515
    predictor; ``past_log2`` holds the same history in log2 (Q10) for
    MR122.  Both start at zero.
    """

    def __init__(self) -> None:
        self.past_db = [0, 0, 0, 0]
        self.past_log2 = [0, 0, 0, 0]

    def push(self, qua_ener_db: int, qua_ener_log2: int) -> None:
        self.past_db = [qua_ener_db] + self.past_db[:3]
        self.past_log2 = [qua_ener_log2] + self.past_log2[:3]

    # -- MR475 / MR515 ----------------------------------------------------

    def mr515_subframe(self, index: int) -> int:
        gcode0 = (MR515_PRED_OFFSET + sum(
            p * c for p, c in zip(self.past_db, MR515_PRED)
        )) >> 15
        qua_ener = QUA_ENER_MR515[index]
        self.push(qua_ener, (qua_ener * DB_TO_LOG2_Q15) >> 15)
        return (gcode0 * GAIN_FAC_MR515[index]) >> 24

    # -- MR122 --------------------------------------------------------------

    def mr122_subframe(self, code: list[int], index: int) -> int:
        energy = sum(c * c for c in code) / float(1 << 24)
        energy = max(energy, 1.0 / (1 << 24))
        predicted = (MEAN_ENER_MR122 + sum(
            2 * p * c for p, c in zip(self.past_log2, PRED_MR122)
        )) / float(1 << 17)
        log2_gcode0 = predicted - 0.5 * math.log2(energy / L_SUBFR)
        g_fac, qua_ener_log2, qua_ener_db = QUA_GAIN_CODE[index]
        self.push(qua_ener_db, qua_ener_log2)
        g_code = (2.0 ** log2_gcode0) * g_fac / 2048.0
        return max(0, int(round(20.0 * math.log10(g_code))))


def _gather(bits: BitReader, positions: tuple[int, ...]) -> int:
    """Assemble an index from payload bit *positions*, least significant first."""
    value = 0
    for shift, pos in enumerate(positions):
        value |= bits.bit(pos) << shift
    return value


def mr515_gains(payload: bytes, predictor: GainPredictor) -> list[int]:
    bits = BitReader(payload)
    return [predictor.mr515_subframe(_gather(bits, pos)) for pos in MR515_GAIN_BITS]


def mr475_gains(payload: bytes, predictor: GainPredictor) -> list[int]:
    # One 8-bit joint index covers a subframe pair; its top six bits are
    # looked up in the MR515 code gain table.
    bits = BitReader(payload)
    gains = []
    for positions in MR475_GAIN_BITS:
        index = _gather(bits, positions) >> 2
        gains.append(predictor.mr515_subframe(index))
        gains.append(predictor.mr515_subframe(index))
    return gains


def _decode_lag(index: int, subframe: int, prev_t0: int) -> int:
    if subframe % 2 == 0:
        if index < 463:
            return (index + 5) // 6 + 17
        return index - 368
    t0_min = max(prev_t0 - 5, PIT_MIN_MR122)
    if t0_min + 9 > PIT_MAX:
        t0_min = PIT_MAX - 9
    return (index + 5) // 6 - 1 + t0_min


def _mr122_codevector(first: list[int], second: list[int]) -> list[int]:
    code = [0] * L_SUBFR
    for track in range(MR122_PULSE_TRACKS):
        pos1 = DGRAY[first[track] & 7] * 5 + track
        sign = -4096 if first[track] & 8 else 4096
        pos2 = DGRAY[second[track] & 7] * 5 + track
        code[pos1] += sign
        if pos2 < pos1:
            sign = -sign
        code[pos2] += sign
    return code


def _mr122_fields() -> tuple[tuple[tuple[int, ...], ...], ...]:
    # Per subframe: lag, pitch gain, 5 pulse signs+positions, 5 pulse
    # positions, code gain.  Each field is a tuple of payload bit positions.
    layout = []
    start = MR122_LSP_BITS
    for lag_bits in MR122_LAG_BITS:
        widths = ([lag_bits, MR122_GAIN_PITCH_BITS]
                  + [MR122_PULSE1_BITS] * MR122_PULSE_TRACKS
                  + [MR122_PULSE2_BITS] * MR122_PULSE_TRACKS
                  + [MR122_GAIN_CODE_BITS])
        fields = []
        for width in widths:
            fields.append(storage_positions(MR122_BIT_ORDER, start, width))
            start += width
        layout.append(tuple(fields))
    return tuple(layout)


_MR122_FIELDS = _mr122_fields()


def mr122_gains(payload: bytes, predictor: GainPredictor) -> list[int]:
    bits = BitReader(payload)
    gains = []
    t0 = PIT_MIN_MR122
    for subframe, fields in enumerate(_MR122_FIELDS):
        lag, pitch, *pulses, code_gain = (_gather(bits, pos) for pos in fields)
        t0 = _decode_lag(lag, subframe, t0)
        gain_pit = QUA_GAIN_PITCH[pitch] & 0xFFFC

        code = _mr122_codevector(pulses[:MR122_PULSE_TRACKS], pulses[MR122_PULSE_TRACKS:])
        sharp = min(gain_pit, SHARPMAX)
        for i in range(t0, L_SUBFR):
            code[i] += (code[i - t0] * sharp) >> 14

        gains.append(predictor.mr122_subframe(code, code_gain))
    return gains


_GAIN_DECODERS = {
    MODE_MR475: mr475_gains,
    MODE_MR515: mr515_gains,
    MODE_MR122: mr122_gains,
}


class AmrParser(SoundParser):
    id = "amr"
    name = "AMR"
    file_type = FileType.AMR
    codec = "AMR-NB"
    extensions = ("3gpp", "3gp", "amr")

    def __init__(self) -> None:
        self.allow_truncated_tail: bool = False

    @classmethod
    def config_params(cls) -> list[ParamSpec]:
        return [p for p in PARSER_PARAMS if p.key == "amr_allow_truncated_tail"]

    def configure(self, config: dict[str, Any]) -> None:
        self.allow_truncated_tail = config.get("amr_allow_truncated_tail", False)

    def read(self, stream: BinaryIO, filepath: str, file_size: int,
             progress: ProgressCallback | None) -> SoundHandle:
        cursor = ByteCursor(stream, 0, file_size)
        start, end = self._locate_frames(cursor, filepath)
        table, complete = self._read_frames(cursor, start, end, filepath, progress)

        duration = len(table) * AMR_SAMPLES_PER_SUBFRAME / AMR_SAMPLE_RATE
        return self._handle(
            filepath, file_size, table,
            sample_rate=AMR_SAMPLE_RATE,
            channels=1,
            samples_per_frame=AMR_SAMPLES_PER_SUBFRAME,
            avg_bitrate_kbps=byte_bitrate_kbps(sum(table.lengths), duration),
            complete=complete,
        )

    def _locate_frames(self, cursor: ByteCursor, filepath: str) -> tuple[int, int]:
        """Return the ``[start, end)`` byte range holding AMR frames."""
        head = cursor.read_upto(12)
        if head.startswith(AMR_WB_MAGIC) or head.startswith(AMR_MC_MAGIC):
            raise UnsupportedFormatError(
                f"{filepath}: AMR-WB and multichannel AMR are not supported"
            )
        if head.startswith(AMR_MAGIC):
            return len(AMR_MAGIC), cursor.end
        if head[4:8] == b"ftyp":
            cursor.seek(0)
            found = self._find_mdat(cursor, filepath)
            if found is None:
                raise BadFormatError(f"{filepath}: no 'mdat' box in 3GPP file")
            return found
        raise UnsupportedFormatError(f"{filepath}: no AMR magic or 3GPP 'ftyp' box")

    def _find_mdat(self, cursor: ByteCursor, filepath: str) -> tuple[int, int] | None:
        while cursor.remaining > 0:
            try:
                box_type, offset, header_size, payload_size = read_atom_header(cursor)
            except TruncatedFileError as e:
                raise BadFormatError(f"{filepath}: {e}") from e
            log.debug("3gpp box '%s' @%d size=%d", box_type, offset,
                      header_size + payload_size)
            body = cursor.sub(payload_size)
            if box_type == "mdat":
                return body.start, body.end
            if box_type in _BOX_CONTAINERS:
                found = self._find_mdat(body, filepath)
                if found is not None:
                    return found
        return None

    def _read_frames(self, cursor: ByteCursor, start: int, end: int, filepath: str,
                     progress: ProgressCallback | None) -> tuple[FrameTable, bool]:
        cursor.seek(start)
        table = FrameTable()
        predictor = GainPredictor()
        modes: Counter[int] = Counter()
        prev_gain = 0
        span = max(end - start, 1)
        count = 0

        while cursor.position < end:
            offset = cursor.position
            header = cursor.u8()
            ftype = frame_type(header)
            size = frame_size(header)
            if offset + size > end:
                message = (
                    f"{filepath}: AMR frame at offset {offset} needs {size} bytes, "
                    f"only {end - offset} remain"
                )
                if not self.allow_truncated_tail:
                    raise TruncatedFileError(message)
                log.warning("%s; dropping it", message)
                break

            payload = cursor.read(size - 1)
            modes[ftype] += 1
            decoder = _GAIN_DECODERS.get(ftype)
            if decoder is not None:
                gains = decoder(payload, predictor)
            else:
                gains = [prev_gain] * AMR_SUBFRAMES_PER_FRAME

            table.add(offset, size, gains[0])
            for g in gains[1:]:
                table.add(offset + size, 0, g)
            prev_gain = gains[-1]

            count += 1
            if progress is not None and count % _PROGRESS_EVERY == 0:
                if progress((cursor.position - start) / span) is False:
                    return table, False

        unsupported = {m: n for m, n in modes.items() if m not in _GAIN_DECODERS}
        if unsupported:
            log.warning("%s: gain copied forward for unsupported frame types %s",
                        filepath, ", ".join(
                            f"{AMR_MODE_NAMES.get(m, m)} x{n}"
                            for m, n in sorted(unsupported.items())))
        log.debug("%s: frame types %s", filepath, dict(sorted(modes.items())))
        if progress is not None:
            progress(1.0)
        return table, True
