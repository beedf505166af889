"""Fixed-point tables used to estimate loudness from partially parsed
AMR-NB and AAC frames.

All AMR values come from the codec's gain-quantisation stage.  Q
formats are noted per table; nothing here is ever used to resynthesise
speech.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# AMR-NB storage format
# ---------------------------------------------------------------------------

AMR_MAGIC = b"#!AMR\n"
AMR_WB_MAGIC = b"#!AMR-WB\n"
AMR_MC_MAGIC = b"#!AMR_MC1.0\n"

# Payload bytes per frame type, excluding the 1-byte frame header.
# 0-7: speech modes MR475 .. MR122, 8: SID, 15: NO_DATA.
AMR_BLOCK_SIZES: tuple[int, ...] = (
    12, 13, 15, 17, 19, 20, 26, 31, 5, 0, 0, 0, 0, 0, 0, 0,
)

AMR_MODE_NAMES: dict[int, str] = {
    0: "MR475", 1: "MR515", 2: "MR59", 3: "MR67",
    4: "MR74", 5: "MR795", 6: "MR102", 7: "MR122",
    8: "SID", 15: "NO_DATA",
}

AMR_SAMPLE_RATE = 8000
AMR_SUBFRAMES_PER_FRAME = 4
AMR_SAMPLES_PER_SUBFRAME = 40

# ---------------------------------------------------------------------------
# MR475 / MR515 gain predictor
# ---------------------------------------------------------------------------

# gcode0 = (MR515_PRED_OFFSET + sum(past[i] * MR515_PRED[i])) >> 15
MR515_PRED_OFFSET = 385963008
MR515_PRED: tuple[int, ...] = (5571, 4751, 2785, 1556)

# Fixed-codebook gain correction factor per 6-bit index.
GAIN_FAC_MR515: tuple[int, ...] = (
    28753, 2785, 6594, 7413, 10444, 1269, 4423, 1556,
    12820, 2498, 4833, 2498, 7864, 1884, 3153, 1802,
    20193, 3031, 5857, 4014, 8970, 1392, 4096, 655,
    13926, 3112, 4669, 2703, 6553, 901, 2662, 655,
    23511, 2457, 5079, 4096, 8560, 737, 4259, 2088,
    12288, 1474, 4628, 1433, 7004, 737, 2252, 1228,
    17326, 2334, 5816, 3686, 8601, 778, 3809, 614,
    9256, 1761, 3522, 1966, 5529, 737, 3194, 778,
)

# Quantised energy error (20*log10, Q10) fed back into the predictor.
QUA_ENER_MR515: tuple[int, ...] = (
    17333, -3431, 4235, 5276, 8325, -10422, 683, -8609,
    10148, -4398, 1472, -4398, 5802, -6907, -2327, -7303,
    14189, -2678, 3181, -180, 6972, -9599, 0, -16305,
    10884, -2444, 1165, -3697, 4180, -13468, -3833, -16305,
    15543, -4546, 1913, 0, 6556, -15255, 347, -5993,
    9771, -9090, 1086, -9341, 4772, -15255, -5321, -10714,
    12827, -5002, 3118, -938, 6598, -14774, -646, -16879,
    7251, -7508, -1343, -6529, 2668, -15255, -2212, -2454,
    -14774,
)

# MR515 gain index bits (payload bit positions, LSB first) per subframe.
MR515_GAIN_BITS: tuple[tuple[int, ...], ...] = (
    (24, 25, 26, 36, 45, 55),
    (27, 28, 29, 37, 46, 56),
    (30, 31, 32, 38, 47, 57),
    (33, 34, 35, 39, 48, 58),
)

# MR475 carries one 8-bit joint gain index per subframe pair: parameter
# bits 40-47 (subframes 1-2) and 74-81 (subframes 3-4) in the storage
# order below.
MR475_GAIN_BITS: tuple[tuple[int, ...], ...] = (
    (28, 29, 30, 31, 46, 47, 48, 49),
    (32, 33, 34, 35, 40, 41, 42, 43),
)

# Storage order for MR475 (3GPP TS 26.101, Annex B).
MR475_BIT_ORDER: tuple[int, ...] = (
    0, 1, 2, 3, 4, 5, 6, 7, 8, 9,
    10, 11, 12, 13, 14, 15, 23, 24, 25, 26,
    27, 28, 48, 49, 61, 62, 82, 83, 47, 46,
    45, 44, 81, 80, 79, 78, 17, 18, 20, 22,
    77, 76, 75, 74, 29, 30, 43, 42, 41, 40,
    38, 39, 16, 19, 21, 50, 51, 59, 60, 63,
    64, 72, 73, 84, 85, 93, 94, 32, 33, 35,
    36, 53, 54, 56, 57, 66, 67, 69, 70, 87,
    88, 90, 91, 34, 55, 68, 89, 37, 58, 71,
    92, 31, 52, 65, 86,
)

# 20*log10 (Q10) to log2 (Q10): multiply by 5443 (Q15) and shift.
DB_TO_LOG2_Q15 = 5443

# ---------------------------------------------------------------------------
# MR122
# ---------------------------------------------------------------------------

# (g_fac Q11, qua_ener_MR122 log2 Q10, qua_ener 20*log10 Q10)
QUA_GAIN_CODE: tuple[tuple[int, int, int], ...] = (
    (159, -3776, -22731),
    (206, -3394, -20428),
    (268, -3005, -18088),
    (349, -2615, -15739),
    (419, -2345, -14113),
    (482, -2138, -12867),
    (554, -1932, -11629),
    (637, -1726, -10387),
    (733, -1518, -9139),
    (842, -1314, -7906),
    (969, -1106, -6656),
    (1114, -900, -5416),
    (1281, -694, -4173),
    (1473, -487, -2931),
    (1694, -281, -1688),
    (1948, -75, -445),
    (2241, 133, 801),
    (2577, 339, 2044),
    (2963, 545, 3285),
    (3408, 752, 4530),
    (3919, 958, 5772),
    (4507, 1165, 7016),
    (5183, 1371, 8259),
    (5960, 1577, 9501),
    (6855, 1784, 10745),
    (7883, 1991, 11988),
    (9065, 2197, 13231),
    (10425, 2404, 14474),
    (12510, 2673, 16096),
    (16263, 3060, 18429),
    (21142, 3448, 20763),
    (27485, 3836, 23097),
)

# Adaptive-codebook (pitch) gain, Q14.
QUA_GAIN_PITCH: tuple[int, ...] = (
    0, 3277, 6556, 8192, 9830, 11469, 12288, 13107,
    13926, 14746, 15565, 16384, 17203, 18022, 18842, 19661,
)

# Gray decoding of the 3-bit pulse position index.
DGRAY: tuple[int, ...] = (0, 1, 3, 2, 5, 6, 4, 7)

PRED_MR122: tuple[int, ...] = (44, 37, 22, 12)   # Q6
MEAN_ENER_MR122 = 783741                          # Q17, log2 domain
SHARPMAX = 13017                                  # Q14
PIT_MIN_MR122 = 18
PIT_MAX = 143
L_SUBFR = 40

MR122_LSP_BITS = 38
# Per-subframe field widths in transmission order:
# lag, pitch gain, 5 x (sign + position), 5 x position, codebook gain.
MR122_PULSE_TRACKS = 5
MR122_LAG_BITS: tuple[int, ...] = (9, 6, 9, 6)
MR122_GAIN_PITCH_BITS = 4
MR122_PULSE1_BITS = 4
MR122_PULSE2_BITS = 3
MR122_GAIN_CODE_BITS = 5

# Storage payloads are sorted by subjective importance (3GPP TS 26.101,
# Annex B).  Entry i is the parameter-stream bit carried by payload bit i.
MR122_BIT_ORDER: tuple[int, ...] = (
    0, 1, 2, 3, 4, 5, 6, 7, 8, 9,
    10, 11, 12, 13, 14, 23, 15, 16, 17, 18,
    19, 20, 21, 22, 24, 25, 26, 27, 28, 38,
    141, 39, 142, 40, 143, 41, 144, 42, 145, 43,
    146, 44, 147, 45, 148, 46, 149, 47, 97, 150,
    200, 48, 98, 151, 201, 49, 99, 152, 202, 86,
    136, 189, 239, 87, 137, 190, 240, 88, 138, 191,
    241, 91, 194, 92, 195, 93, 196, 94, 197, 95,
    198, 29, 30, 31, 32, 33, 34, 35, 50, 100,
    153, 203, 89, 139, 192, 242, 51, 101, 154, 204,
    55, 105, 158, 208, 90, 140, 193, 243, 59, 109,
    162, 212, 63, 113, 166, 216, 67, 117, 170, 220,
    36, 37, 54, 53, 52, 58, 57, 56, 62, 61,
    60, 66, 65, 64, 70, 69, 68, 104, 103, 102,
    108, 107, 106, 112, 111, 110, 116, 115, 114, 120,
    119, 118, 157, 156, 155, 161, 160, 159, 165, 164,
    163, 169, 168, 167, 173, 172, 171, 207, 206, 205,
    211, 210, 209, 215, 214, 213, 219, 218, 217, 223,
    222, 221, 73, 72, 71, 76, 75, 74, 79, 78,
    77, 82, 81, 80, 85, 84, 83, 123, 122, 121,
    126, 125, 124, 129, 128, 127, 132, 131, 130, 135,
    134, 133, 176, 175, 174, 179, 178, 177, 182, 181,
    180, 185, 184, 183, 188, 187, 186, 226, 225, 224,
    229, 228, 227, 232, 231, 230, 235, 234, 233, 238,
    237, 236, 96, 199,
)

# ---------------------------------------------------------------------------
# AAC
# ---------------------------------------------------------------------------

AAC_SAMPLING_FREQUENCIES: tuple[int, ...] = (
    96000, 88200, 64000, 48000, 44100, 32000, 24000,
    22050, 16000, 12000, 11025, 8000, 7350,
)
AAC_DEFAULT_SAMPLING_INDEX = 4   # 44100 Hz

AAC_SAMPLES_PER_FRAME = 1024

# raw_data_block syntactic element ids (3 bits).
AAC_ID_SCE = 0
AAC_ID_CPE = 1

# window_sequence value with 8 short windows.
AAC_EIGHT_SHORT_SEQUENCE = 2


def sampling_frequency_index(sample_rate: int) -> int | None:
    """Return the AAC sampling-frequency index for *sample_rate*, or ``None``."""
    try:
        return AAC_SAMPLING_FREQUENCIES.index(sample_rate)
    except ValueError:
        return None


def storage_positions(order: tuple[int, ...], start: int, width: int) -> tuple[int, ...]:
    """Payload bit positions of parameter bits ``start .. start+width-1``.

    *order* maps payload bit to parameter bit.  The result is LSB first,
    the layout :func:`soundslicelib.parsers.amr._gather` expects.
    """
    return tuple(order.index(start + width - 1 - k) for k in range(width))
