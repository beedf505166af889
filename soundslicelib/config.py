from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

PRESET_SCHEMA_VERSION = "1.0"


class ConfigError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class ConfigFieldError:
    """A single validation error for one configuration field.

    Attributes:
        key:     The config key that failed validation.
        value:   The offending value.
        message: Human-readable explanation of what is wrong.
    """
    key: str
    value: Any
    message: str


@dataclass(frozen=True)
class ParamSpec:
    """Declarative specification for a single configuration parameter.

    Used by the parsers and the waveform builder to describe the keys
    they read, including type, default, valid range, and labels.
    """
    key: str
    type: type | tuple              # expected Python type(s)
    default: Any
    label: str                       # short UI label
    description: str = ""            # longer help text
    min: float | int | None = None   # inclusive lower bound
    max: float | int | None = None   # inclusive upper bound
    item_type: type | None = None    # element type for list fields
    length: int | None = None        # exact length for list fields


# ---------------------------------------------------------------------------
# Parameter sections
# ---------------------------------------------------------------------------

PARSER_PARAMS: list[ParamSpec] = [
    ParamSpec(
        key="wav_frames_per_second", type=int, default=50, min=1, max=1000,
        label="WAV frames per second",
        description=(
            "PCM data has no natural frames, so it is cut into virtual "
            "frames of 1/N seconds. Each frame gets one gain value."
        ),
    ),
    ParamSpec(
        key="amr_allow_truncated_tail", type=bool, default=False,
        label="Allow truncated AMR tail",
        description=(
            "Drop a final AMR frame that is cut short by the end of the "
            "file (with a warning) instead of failing the parse."
        ),
    ),
]

PYRAMID_PARAMS: list[ParamSpec] = [
    ParamSpec(
        key="pyramid_floor_percent", type=(int, float), default=5.0,
        min=0.0, max=100.0,
        label="Histogram floor (%)",
        description=(
            "Share of the quietest frames mapped to zero height when "
            "calibrating the waveform."
        ),
    ),
    ParamSpec(
        key="pyramid_ceiling_percent", type=(int, float), default=1.0,
        min=0.0, max=100.0,
        label="Histogram ceiling (%)",
        description=(
            "Share of the loudest frames mapped to full height when "
            "calibrating the waveform."
        ),
    ),
    ParamSpec(
        key="zoom_thresholds", type=list, default=[5000, 1000, 300],
        item_type=int, length=3,
        label="Initial zoom thresholds",
        description=(
            "Frame counts above which the initial zoom level is 3, 2 "
            "and 1 respectively; shorter clips start at level 0."
        ),
    ),
]


def all_param_specs() -> list[ParamSpec]:
    return list(PARSER_PARAMS) + list(PYRAMID_PARAMS)


def default_config() -> dict[str, Any]:
    """Returns the built-in default configuration."""
    return {
        p.key: (list(p.default) if isinstance(p.default, list) else p.default)
        for p in all_param_specs()
    }


def merge_configs(*configs: dict[str, Any] | None) -> dict[str, Any]:
    """
    Merge multiple config dicts left-to-right.
    Later values override earlier ones; ``None`` entries are skipped.
    """
    result: dict[str, Any] = {}
    for cfg in configs:
        if not cfg:
            continue
        for k, v in cfg.items():
            result[k] = v
    return result


def resolve_config(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Merge *overrides* over the defaults and validate the result.

    Raises :class:`ConfigError` on unknown keys or invalid values.
    """
    config = merge_configs(default_config(), overrides)
    validate_config(config)
    return config


def load_preset(path: str) -> dict[str, Any]:
    """
    Load a JSON preset file. Returns a partial config dict.
    Raises ConfigError if the file cannot be read or parsed.
    """
    if not os.path.isfile(path):
        raise ConfigError(f"Preset file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in preset file {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read preset file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Preset file must contain a JSON object, got {type(data).__name__}")

    # Metadata keys are informational only
    return {k: v for k, v in data.items() if k not in ("schema_version", "_description")}


def save_preset(config: dict[str, Any], path: str, *, description: str | None = None) -> None:
    """
    Save a config dict as a JSON preset file.
    Only values that differ from the defaults are written.
    """
    preset: dict[str, Any] = {"schema_version": PRESET_SCHEMA_VERSION}
    if description:
        preset["_description"] = description

    defaults = default_config()
    for k, v in config.items():
        if k.startswith("_"):
            continue
        if k in defaults and defaults[k] == v:
            continue
        preset[k] = v

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(preset, f, indent=4, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Validation  (ParamSpec-driven)
# ---------------------------------------------------------------------------

_TYPE_LABELS: dict[Any, str] = {
    bool: "true or false",
    int: "an integer",
    (int, float): "a number",
    list: "a list",
}


def _field_problem(spec: ParamSpec, value: Any) -> str | None:
    """Return why *value* is unacceptable for *spec*, or ``None``."""
    # bool is an int subclass, so it is only accepted where bool is declared
    is_bool = isinstance(value, bool)
    if is_bool != (spec.type is bool) or not isinstance(value, spec.type):
        label = _TYPE_LABELS.get(spec.type, str(spec.type))
        return f"{spec.label} must be {label}, got {type(value).__name__}."

    if spec.min is not None and value < spec.min:
        return f"{spec.label} must be at least {spec.min}."
    if spec.max is not None and value > spec.max:
        return f"{spec.label} must be at most {spec.max}."

    if spec.length is not None and len(value) != spec.length:
        return f"{spec.label} must have exactly {spec.length} entries."
    if spec.item_type is not None:
        for i, item in enumerate(value):
            if isinstance(item, bool) or not isinstance(item, spec.item_type):
                return (f"{spec.label}[{i}] must be {spec.item_type.__name__}, "
                        f"got {type(item).__name__}.")
    return None


def validate_param_values(
    params: list[ParamSpec],
    values: dict[str, Any],
) -> list[ConfigFieldError]:
    """Validate *values* against a list of :class:`ParamSpec` definitions.

    Only keys present in *values* are checked; missing keys receive their
    default.
    """
    errors: list[ConfigFieldError] = []
    for spec in params:
        if spec.key not in values:
            continue
        problem = _field_problem(spec, values[spec.key])
        if problem is not None:
            errors.append(ConfigFieldError(spec.key, values[spec.key], problem))
    return errors


def validate_config_fields(config: dict[str, Any]) -> list[ConfigFieldError]:
    """Validate a flat config dict against every known :class:`ParamSpec`.

    Unknown keys are reported too.  Never raises.
    """
    specs = all_param_specs()
    known = {p.key for p in specs}
    errors = validate_param_values(specs, config)
    for k, v in config.items():
        if k not in known and not k.startswith("_"):
            errors.append(ConfigFieldError(k, v, f"Unknown configuration key '{k}'."))
    return errors


def validate_config(config: dict[str, Any]) -> None:
    """Validate a flat config dict.

    Raises :class:`ConfigError` listing every invalid field.
    """
    errors = validate_config_fields(config)
    if errors:
        lines = [e.message for e in errors]
        raise ConfigError(
            "Configuration has invalid values:\n  • " + "\n  • ".join(lines)
        )
