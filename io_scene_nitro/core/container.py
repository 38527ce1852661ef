"""Nitro container envelope.

Every Nitro file kind shares the same outer layout:
- a 16-byte header (stamp, byte-order mark, version, file size, header size,
  section count) followed by one u32 offset per section
- sections, each starting with a 4-byte stamp and a u32 size

Offsets stored inside a section are relative to a base inside that section;
`NitroContainer.resolve` bounds-checks them before anything is read.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..errors import KindMismatch, MalformedContainer, SectionNotFound
from .binreader import _BinReader

KINDS: Dict[bytes, str] = {
    b"BMD0": "model",
    b"BTX0": "texture",
    b"BCA0": "animation",
    b"BTP0": "pattern",
    b"BTA0": "material_animation",
}

HEADER_SIZE = 16
NAME_SIZE = 16


@dataclass(frozen=True)
class Section:
    name: str
    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.offset + self.size


@dataclass(frozen=True)
class NitroContainer:
    stamp: str
    kind: str
    byte_order: str
    version: int
    declared_size: int
    sections: Tuple[Section, ...]
    data: bytes
    name: str = ""

    def sections_named(self, name: str) -> List[Section]:
        return [s for s in self.sections if s.name == name]

    def section(self, name: str) -> Section:
        for s in self.sections:
            if s.name == name:
                return s
        raise SectionNotFound(name)

    def has_section(self, name: str) -> bool:
        return any(s.name == name for s in self.sections)

    def resolve(self, section: Section, rel_off: int, size: int = 0) -> int:
        return resolve(section, rel_off, size)

    def reader(self, section: Section, rel_off: int = 0) -> _BinReader:
        """Reader positioned at `rel_off`; reads cannot leave the section."""
        off = resolve(section, rel_off)
        return _BinReader(memoryview(self.data)[: section.end], off, self.byte_order)


def resolve(section: Section, rel_off: int, size: int = 0) -> int:
    """Section-relative offset to absolute file offset.

    Raises MalformedContainer when [rel_off, rel_off + size) leaves the section.
    """
    rel_off = int(rel_off)
    if rel_off < 0 or size < 0 or rel_off + size > section.size:
        raise MalformedContainer(
            f"pointer outside section {section.name}",
            offset=section.offset + max(rel_off, 0),
            expected=f"<= 0x{section.size:x}",
            found=f"0x{rel_off:x}+0x{size:x}",
        )
    return section.offset + rel_off


def detect_kind(data: bytes) -> Optional[str]:
    return KINDS.get(bytes(data[:4]))


def read_container(data: bytes, *, kind: Optional[str] = None, name: str = "") -> NitroContainer:
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise MalformedContainer(
            "buffer too short for header", offset=0, expected=HEADER_SIZE, found=len(data)
        )
    stamp = data[:4]
    actual_kind = KINDS.get(stamp)
    if actual_kind is None:
        raise MalformedContainer(
            "unknown container stamp",
            offset=0,
            expected=sorted(k.decode("ascii") for k in KINDS),
            found=stamp,
        )
    if kind is not None and kind != actual_kind:
        raise KindMismatch(kind, actual_kind)

    bom = data[4:6]
    if bom == b"\xff\xfe":
        byte_order = "<"
    elif bom == b"\xfe\xff":
        byte_order = ">"
    else:
        raise MalformedContainer("bad byte-order mark", offset=4, expected=0xFEFF, found=bom)

    r = _BinReader(data, 6, byte_order)
    version = r.u16()
    file_size = r.u32()
    header_size = r.u16()
    num_sections = r.u16()
    if file_size > len(data):
        raise MalformedContainer(
            "declared size exceeds buffer", offset=8, expected=len(data), found=file_size
        )
    if header_size != HEADER_SIZE:
        raise MalformedContainer(
            "bad header size", offset=12, expected=HEADER_SIZE, found=header_size
        )
    limit = file_size or len(data)
    if HEADER_SIZE + 4 * num_sections > limit:
        raise MalformedContainer(
            "section table exceeds file", offset=14, expected=limit, found=num_sections
        )
    offsets = r.u32s(num_sections)

    sections: List[Section] = []
    for i, off in enumerate(offsets):
        if off + 8 > limit:
            raise MalformedContainer(
                f"section {i} header out of range", offset=off, expected=limit, found=off + 8
            )
        sr = _BinReader(data, off, byte_order)
        sect_stamp = sr.read(4)
        size = sr.u32()
        if size < 8 or off + size > limit:
            raise MalformedContainer(
                f"section {i} size out of range", offset=off + 4, expected=limit - off, found=size
            )
        sections.append(Section(sect_stamp.decode("ascii", "replace"), off, size))

    return NitroContainer(
        stamp=stamp.decode("ascii"),
        kind=actual_kind,
        byte_order=byte_order,
        version=version,
        declared_size=file_size,
        sections=tuple(sections),
        data=data,
        name=name,
    )


def read_info_block(r: _BinReader, datum_size: int) -> List[Tuple[bytes, str]]:
    """Read the shared (datum, name) dictionary at the reader's position."""
    start = r.tell
    dummy = r.u8()
    count = r.u8()
    if dummy != 0:
        raise MalformedContainer("bad info block", offset=start, expected=0, found=dummy)
    r.skip(2 + 2 + 2 + 4 + 4 * count)
    size_of_datum = r.u16()
    r.skip(2)
    if size_of_datum != datum_size:
        raise MalformedContainer(
            "unexpected info block datum size",
            offset=r.tell - 4,
            expected=datum_size,
            found=size_of_datum,
        )
    data = [r.read(datum_size) for _ in range(count)]
    names = [r.padded_string(NAME_SIZE) for _ in range(count)]
    return list(zip(data, names))


_UNSAFE = re.compile(r"[^0-9A-Za-z]")


def safe_name(name: str) -> str:
    """Name restricted to [0-9A-Za-z_]; used for ids and file names."""
    s = _UNSAFE.sub("_", name)
    return s or "_"
