from __future__ import annotations

import os

from ..errors import UnsupportedFormatError
from ..parser import SoundParser
from .amr import AmrParser
from .mp4 import Mp4Parser
from .wav import WavParser

# Recognised by name but never parsed.
UNSUPPORTED_EXTENSIONS = ("mp3",)


def default_parsers() -> list[SoundParser]:
    """Returns all built-in parsers in dispatch order."""
    return [
        AmrParser(),
        Mp4Parser(),
        WavParser(),
    ]


def supported_extensions(parsers: list[SoundParser] | None = None) -> tuple[str, ...]:
    parsers = parsers if parsers is not None else default_parsers()
    return tuple(ext for p in parsers for ext in p.extensions)


def parser_for_path(filepath: str, parsers: list[SoundParser] | None = None) -> SoundParser:
    """Select the parser owning *filepath*'s extension (case-insensitive).

    Raises :class:`UnsupportedFormatError` when no parser matches.
    """
    parsers = parsers if parsers is not None else default_parsers()
    for parser in parsers:
        if parser.accepts(filepath):
            return parser
    ext = os.path.splitext(filepath)[1].lower()
    if ext.lstrip(".") in UNSUPPORTED_EXTENSIONS:
        raise UnsupportedFormatError(f"{ext} files are recognised but cannot be parsed")
    raise UnsupportedFormatError(f"No parser for extension '{ext or filepath}'")


__all__ = [
    "default_parsers",
    "supported_extensions",
    "parser_for_path",
    "UNSUPPORTED_EXTENSIONS",
    "AmrParser",
    "Mp4Parser",
    "WavParser",
]
