"""Multi-resolution waveform heights from a per-frame gain table.

Gains are smoothed, scaled into ``[0, 255]``, calibrated against a
256-bin histogram so that the quietest and loudest few percent of
frames saturate, normalised to ``[0, 1]`` and squared.  The result is
level 1 of a five-level pyramid (level 0 doubles it, levels 2-4 halve
it in turn).
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np

from .config import resolve_config
from .models import PyramidLevel, SoundHandle, WaveformPyramid

log = logging.getLogger(__name__)

NUM_LEVELS = 5
NATIVE_LEVEL = 1
ZOOM_FACTORS = (2.0, 1.0, 0.5, 0.25, 0.125)


def smooth_gains(gains: Sequence[int] | np.ndarray) -> np.ndarray:
    """3-tap running mean; the two edge values use 2 taps."""
    g = np.asarray(gains, dtype=np.float64)
    n = len(g)
    if n <= 2:
        return g.copy()
    out = np.empty(n, dtype=np.float64)
    out[0] = g[0] / 2.0 + g[1] / 2.0
    out[1:-1] = g[:-2] / 3.0 + g[1:-1] / 3.0 + g[2:] / 3.0
    out[-1] = g[-2] / 2.0 + g[-1] / 2.0
    return out


def calibrate(
    smoothed: np.ndarray,
    floor_percent: float = 5.0,
    ceiling_percent: float = 1.0,
) -> np.ndarray:
    """Map smoothed gains to perceptual heights in ``[0, 1]``."""
    n = len(smoothed)
    if n == 0:
        return np.zeros(0, dtype=np.float64)

    max_gain = max(1.0, float(smoothed.max()))
    scale = 255.0 / max_gain if max_gain > 255.0 else 1.0
    scaled = smoothed * scale

    bins = np.clip(np.trunc(scaled), 0, 255).astype(np.int64)
    hist = np.bincount(bins, minlength=256)

    min_gain = 0
    total = 0
    while min_gain < 255 and total < n * floor_percent / 100.0:
        total += hist[min_gain]
        min_gain += 1

    max_gain_bin = 255
    total = 0
    while max_gain_bin > 2 and total < n * ceiling_percent / 100.0:
        total += hist[max_gain_bin]
        max_gain_bin -= 1

    span = max(max_gain_bin - min_gain, 1)
    log.debug("calibration: min=%d max=%d scale=%.3f", min_gain, max_gain_bin, scale)
    values = np.clip((scaled - min_gain) / span, 0.0, 1.0)
    return values * values


def _upsample(heights: np.ndarray) -> np.ndarray:
    n = len(heights)
    out = np.empty(2 * n, dtype=np.float64)
    if n == 0:
        return out
    out[0] = 0.5 * heights[0]
    out[1] = heights[0]
    out[2::2] = 0.5 * (heights[:-1] + heights[1:])
    out[3::2] = heights[1:]
    return out


def _halve(heights: np.ndarray) -> np.ndarray:
    m = len(heights) // 2
    return 0.5 * (heights[0:2 * m:2] + heights[1:2 * m:2])


def initial_zoom_level(frame_count: int, thresholds: Sequence[int] = (5000, 1000, 300)) -> int:
    """Coarsest level at which a clip of *frame_count* frames roughly fits."""
    for level, threshold in zip((3, 2, 1), thresholds):
        if frame_count > threshold:
            return level
    return 0


def build_pyramid_from_gains(
    gains: Sequence[int] | np.ndarray,
    sample_rate: int,
    samples_per_frame: int,
    config: dict[str, Any] | None = None,
) -> WaveformPyramid:
    config = resolve_config(config)
    native = calibrate(
        smooth_gains(gains),
        config["pyramid_floor_percent"],
        config["pyramid_ceiling_percent"],
    )

    heights = [_upsample(native), native]
    for _ in range(NATIVE_LEVEL + 1, NUM_LEVELS):
        heights.append(_halve(heights[-1]))

    return WaveformPyramid(
        levels=tuple(PyramidLevel(f, h) for f, h in zip(ZOOM_FACTORS, heights)),
        initial_level=initial_zoom_level(len(native), config["zoom_thresholds"]),
        sample_rate=sample_rate,
        samples_per_frame=samples_per_frame,
    )


def build_pyramid(handle: SoundHandle, config: dict[str, Any] | None = None) -> WaveformPyramid:
    """Build the display pyramid for *handle*'s gain table."""
    return build_pyramid_from_gains(
        handle.frame_gains, handle.sample_rate, handle.samples_per_frame, config,
    )
