from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any

import numpy as np

from .audio import format_duration
from .models import SoundHandle


def build_summary(handle: SoundHandle) -> dict[str, Any]:
    """Plain-dict description of a parsed file, suitable for JSON."""
    gains = handle.frame_gains
    has_frames = handle.frame_count > 0
    return {
        "filepath": os.path.abspath(handle.filepath),
        "file_type": handle.file_type.value,
        "codec": handle.codec,
        "sample_rate": handle.sample_rate,
        "channels": handle.channels,
        "frames": handle.frame_count,
        "samples_per_frame": handle.samples_per_frame,
        "duration_sec": round(handle.duration_sec, 3),
        "duration": format_duration(handle.frame_count * handle.samples_per_frame,
                                    handle.sample_rate),
        "avg_bitrate_kbps": handle.avg_bitrate_kbps,
        "file_size": handle.file_size,
        "audio_bytes": handle.total_audio_bytes,
        "gain_min": int(gains.min()) if has_frames else None,
        "gain_max": int(gains.max()) if has_frames else None,
        "gain_mean": round(float(np.mean(gains)), 2) if has_frames else None,
        "complete": handle.complete,
    }


def render_summary_text(summary: dict[str, Any]) -> str:
    """Human-readable multi-line rendering of :func:`build_summary` output."""
    gain = "-"
    if summary.get("gain_min") is not None:
        gain = (f"{summary['gain_min']} .. {summary['gain_max']} "
                f"(mean {summary['gain_mean']})")
    lines = [
        f"File:       {summary['filepath']}",
        f"Format:     {summary['file_type']} ({summary['codec']})",
        f"Stream:     {summary['sample_rate']} Hz, {summary['channels']} ch, "
        f"{summary['avg_bitrate_kbps']} kbps",
        f"Frames:     {summary['frames']} x {summary['samples_per_frame']} samples",
        f"Duration:   {summary['duration']}",
        f"Size:       {summary['file_size']} bytes ({summary['audio_bytes']} audio)",
        f"Gain:       {gain}",
    ]
    if not summary.get("complete", True):
        lines.append("Status:     INCOMPLETE (parse cancelled)")
    return "\n".join(lines)


def save_json(summary: dict[str, Any], output_path: str) -> None:
    """Write *summary* with a schema version and timestamp."""
    data = {
        "schema_version": "1.0",
        "timestamp": datetime.now().isoformat(),
        "sound": summary,
    }
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=4, ensure_ascii=False)
