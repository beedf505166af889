from ._version import __version__
from .models import FileType, SoundHandle, PyramidLevel, WaveformPyramid
from .errors import (
    SoundFileError,
    UnsupportedFormatError,
    BadFormatError,
    TruncatedFileError,
    MissingAtomError,
    FileIOError,
)
from .audio import open_sound, format_duration, SUPPORTED_EXTENSIONS
from .pyramid import build_pyramid, build_pyramid_from_gains, initial_zoom_level
from .writer import write_subset
from .headers import build_wav_header, build_mp4_header, build_amr_header
from .config import (
    default_config,
    merge_configs,
    resolve_config,
    validate_config,
    validate_config_fields,
    validate_param_values,
    load_preset,
    save_preset,
    ConfigError,
    ConfigFieldError,
    ParamSpec,
)
from .parser import SoundParser
from .parsers import default_parsers, parser_for_path
from .reports import build_summary, render_summary_text, save_json
from .events import EventBus

__all__ = [
    "__version__",
    "FileType",
    "SoundHandle",
    "PyramidLevel",
    "WaveformPyramid",
    "SoundFileError",
    "UnsupportedFormatError",
    "BadFormatError",
    "TruncatedFileError",
    "MissingAtomError",
    "FileIOError",
    "open_sound",
    "format_duration",
    "SUPPORTED_EXTENSIONS",
    "build_pyramid",
    "build_pyramid_from_gains",
    "initial_zoom_level",
    "write_subset",
    "build_wav_header",
    "build_mp4_header",
    "build_amr_header",
    "default_config",
    "merge_configs",
    "resolve_config",
    "validate_config",
    "validate_config_fields",
    "validate_param_values",
    "load_preset",
    "save_preset",
    "ConfigError",
    "ConfigFieldError",
    "ParamSpec",
    "SoundParser",
    "default_parsers",
    "parser_for_path",
    "build_summary",
    "render_summary_text",
    "save_json",
    "EventBus",
]
