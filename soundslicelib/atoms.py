"""ISO base media (MP4 / 3GPP) atom tree.

An :class:`Atom` is either a leaf with a flat payload or a container of
child atoms.  "Full" atoms additionally carry a 1-byte version and a
3-byte flags field in front of their payload.  The same class is used
for atoms read from a file (:func:`read_atoms`) and for atoms built from
scratch and serialised with :meth:`Atom.to_bytes`.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from typing import Iterator

from .bitstream import ByteCursor
from .errors import BadFormatError, TruncatedFileError

log = logging.getLogger(__name__)

# Atoms whose payload is a sequence of child atoms.
CONTAINER_ATOMS: frozenset[str] = frozenset({
    "moov", "trak", "mdia", "minf", "stbl", "dinf", "edts", "udta",
})

# Atoms whose payload starts with version + flags.
FULL_ATOMS: frozenset[str] = frozenset({
    "mvhd", "tkhd", "mdhd", "hdlr", "smhd", "vmhd", "dref", "url ",
    "stsd", "stts", "stsc", "stsz", "stco", "co64", "esds", "elst",
})


@dataclass
class Atom:
    """One node of the atom tree.

    Attributes:
        type:     Four-character code, e.g. ``"moov"``.
        data:     Leaf payload (after version/flags for full atoms).
        children: Child atoms for containers.
        version:  Version byte, or ``None`` for plain atoms.
        flags:    24-bit flags (full atoms only).
        offset:   Absolute file offset of the atom header (parsed atoms),
                  ``-1`` for atoms built in memory.
        header_size: 8, or 16 when a 64-bit size was used.
        payload_size: Bytes following the header in the source file.
    """
    type: str
    data: bytes = b""
    children: list["Atom"] = field(default_factory=list)
    version: int | None = None
    flags: int = 0
    offset: int = -1
    header_size: int = 8
    payload_size: int = 0

    @property
    def is_full(self) -> bool:
        return self.version is not None

    @property
    def payload_offset(self) -> int:
        return self.offset + self.header_size

    @property
    def size(self) -> int:
        """Serialised size including the 8-byte header."""
        body = sum(c.size for c in self.children) if self.children else len(self.data)
        return 8 + (4 if self.is_full else 0) + body

    def add(self, *children: "Atom") -> "Atom":
        self.children.extend(children)
        return self

    def child(self, path: str) -> "Atom | None":
        """Return the first descendant matching a dotted *path*, e.g. ``"mdia.minf.stbl"``."""
        node: Atom | None = self
        for part in path.split("."):
            if node is None:
                return None
            node = next((c for c in node.children if c.type == part), None)
        return node

    def children_of_type(self, atom_type: str) -> list["Atom"]:
        return [c for c in self.children if c.type == atom_type]

    def walk(self) -> Iterator["Atom"]:
        yield self
        for c in self.children:
            yield from c.walk()

    def to_bytes(self) -> bytes:
        out = bytearray(struct.pack(">I4s", self.size, self.type.encode("latin-1")))
        if self.is_full:
            out += struct.pack(">I", ((self.version & 0xFF) << 24) | (self.flags & 0xFFFFFF))
        if self.children:
            for c in self.children:
                out += c.to_bytes()
        else:
            out += self.data
        return bytes(out)


def full_atom(atom_type: str, data: bytes = b"", *, version: int = 0, flags: int = 0) -> Atom:
    return Atom(atom_type, data=data, version=version, flags=flags)


def read_atom_header(cursor: ByteCursor) -> tuple[str, int, int, int]:
    """Read one atom header at the cursor.

    Returns ``(type, offset, header_size, payload_size)``.  Size 0
    extends the atom to the end of the enclosing range; size 1 means a
    64-bit size follows the type.
    """
    offset = cursor.position
    if cursor.remaining < 8:
        raise TruncatedFileError(
            f"Atom header at offset {offset} needs 8 bytes, "
            f"only {cursor.remaining} remain"
        )
    size = cursor.u32be()
    atom_type = cursor.fourcc()
    header_size = 8
    if size == 1:
        size = cursor.u64be()
        header_size = 16
    elif size == 0:
        size = cursor.end - offset
    if size < header_size:
        raise BadFormatError(
            f"Atom '{atom_type}' at offset {offset} has invalid size {size}"
        )
    if offset + size > cursor.end:
        raise TruncatedFileError(
            f"Atom '{atom_type}' at offset {offset} declares {size} bytes, "
            f"only {cursor.end - offset} available"
        )
    return atom_type, offset, header_size, size - header_size


def read_atoms(
    cursor: ByteCursor,
    *,
    containers: frozenset[str] = CONTAINER_ATOMS,
    load: frozenset[str] | set[str] = frozenset(),
    depth: int = 0,
) -> list[Atom]:
    """Parse sibling atoms until the cursor is exhausted.

    Container types are descended into.  Leaves listed in *load* have
    their payload buffered; all other leaves only record offset and
    size so large payloads such as ``mdat`` are never read.
    """
    atoms: list[Atom] = []
    while cursor.remaining > 0:
        atom_type, offset, header_size, payload_size = read_atom_header(cursor)
        body = cursor.sub(payload_size)
        atom = Atom(atom_type, offset=offset, header_size=header_size,
                    payload_size=payload_size)
        log.debug("%satom '%s' @%d size=%d", "  " * depth, atom_type,
                  offset, header_size + payload_size)

        if atom_type in containers:
            atom.children = read_atoms(body, containers=containers,
                                       load=load, depth=depth + 1)
        elif atom_type in load:
            payload = body.read(payload_size)
            if atom_type in FULL_ATOMS:
                if len(payload) < 4:
                    raise TruncatedFileError(
                        f"Full atom '{atom_type}' at offset {offset} "
                        f"is too short for version/flags"
                    )
                vf = struct.unpack(">I", payload[:4])[0]
                atom.version = vf >> 24
                atom.flags = vf & 0xFFFFFF
                payload = payload[4:]
            atom.data = payload
        atoms.append(atom)
    return atoms
