from __future__ import annotations


class SoundFileError(Exception):
    """Base class for every failure raised while parsing or writing a sound file."""
    pass


class UnsupportedFormatError(SoundFileError):
    """Extension or magic bytes not recognised."""
    pass


class BadFormatError(SoundFileError):
    """The container is present but violates a structural assumption
    (non-PCM WAV, ``data`` before ``fmt``, oversize box, ...)."""
    pass


class TruncatedFileError(SoundFileError):
    """A declared length runs past the bytes actually available."""
    pass


class MissingAtomError(SoundFileError):
    """One or more required MP4 atoms were never visited.

    Attributes:
        missing: Sorted list of the four-character codes that were absent.
    """

    def __init__(self, missing: list[str]):
        self.missing = sorted(missing)
        super().__init__(
            "Required atom(s) not found: " + ", ".join(self.missing)
        )


class FileIOError(SoundFileError):
    """Read or write failure at the OS boundary.

    Chained to the underlying :class:`OSError` when there is one.
    """
    pass
