"""PAT0 (texture pattern) and SRT0 (texture SRT) material animations."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import List, Tuple

from ..errors import MalformedContainer
from .container import NAME_SIZE, NitroContainer, Section, read_info_block
from .fixed import fix
from .motion import Curve
from .types import UVTransform

_log = logging.getLogger(__name__)

_SRT_CHANNELS = 5
_SRT_TRANSLATION_U = 3
_SRT_TRANSLATION_V = 4
_SRT_SAMPLED = 16


@dataclass(frozen=True)
class PatternKeyframe:
    frame: int
    texture: int
    palette: int


@dataclass(frozen=True)
class PatternTrack:
    material_name: str
    keyframes: Tuple[PatternKeyframe, ...]

    def sample(self, frame: int) -> PatternKeyframe:
        """Keyframe in effect at `frame` (step interpolation)."""
        keys = self.keyframes
        for i, key in enumerate(keys):
            if key.frame > frame:
                return keys[max(i - 1, 0)]
        return keys[-1]


@dataclass(frozen=True)
class Pattern:
    name: str
    source: str
    frame_count: int
    texture_names: Tuple[str, ...]
    palette_names: Tuple[str, ...]
    tracks: Tuple[PatternTrack, ...]


@dataclass(frozen=True)
class SRTTrack:
    material_name: str
    translation_u: Curve
    translation_v: Curve

    def sample(self, frame: int) -> UVTransform:
        return UVTransform(
            translation=(self.translation_u.sample_at(frame, 0.0), self.translation_v.sample_at(frame, 0.0))
        )


@dataclass(frozen=True)
class SRTAnimation:
    name: str
    source: str
    frame_count: int
    tracks: Tuple[SRTTrack, ...]


def _records(container: NitroContainer, section: Section, stamp: bytes) -> List[Tuple[int, str]]:
    r = container.reader(section)
    found = r.read(4)
    if found != stamp:
        raise MalformedContainer(
            f"bad {stamp.decode('ascii')} stamp", offset=section.offset, expected=stamp, found=found
        )
    r.u32()
    return [
        (struct.unpack(container.byte_order + "I", datum)[0], name) for datum, name in read_info_block(r, 4)
    ]


def read_pat0(container: NitroContainer, section: Section) -> List[Pattern]:
    return [_read_pattern(container, section, off, name) for off, name in _records(container, section, b"PAT0")]


def _read_pattern(container: NitroContainer, section: Section, base: int, name: str) -> Pattern:
    r = container.reader(section, base)
    r.skip(4)
    num_frames = r.u16()
    num_textures = r.u8()
    num_palettes = r.u8()
    textures_off = r.u16()
    palettes_off = r.u16()
    if num_frames == 0:
        raise MalformedContainer(f"pattern animation {name!r} has no frames", offset=r.tell, found=0)

    def names(off: int, count: int) -> Tuple[str, ...]:
        nr = container.reader(section, base + off)
        return tuple(nr.padded_string(NAME_SIZE) for _ in range(count))

    texture_names = names(textures_off, num_textures)
    palette_names = names(palettes_off, num_palettes)

    tracks: List[PatternTrack] = []
    for datum, material_name in read_info_block(r, 8):
        num_keys, _, off = struct.unpack(container.byte_order + "IHH", datum)
        if num_keys == 0:
            _log.debug("%s: pattern %r track %r has no keyframes", container.name, name, material_name)
            continue
        kr = container.reader(section, base + off)
        keys = []
        for _ in range(num_keys):
            frame = kr.u16()
            keys.append(PatternKeyframe(frame, kr.u8(), kr.u8()))
        tracks.append(PatternTrack(material_name, tuple(keys)))

    return Pattern(
        name=name,
        source=container.name,
        frame_count=num_frames,
        texture_names=texture_names,
        palette_names=palette_names,
        tracks=tuple(tracks),
    )


def read_srt0(container: NitroContainer, section: Section) -> List[SRTAnimation]:
    return [_read_srt(container, section, off, name) for off, name in _records(container, section, b"SRT0")]


def _read_srt(container: NitroContainer, section: Section, base: int, name: str) -> SRTAnimation:
    r = container.reader(section, base)
    r.skip(4)
    num_frames = r.u16()
    r.u16()
    if num_frames == 0:
        raise MalformedContainer(f"material animation {name!r} has no frames", offset=r.tell, found=0)

    tracks: List[SRTTrack] = []
    for datum, material_name in read_info_block(r, 8 * _SRT_CHANNELS):
        curves = []
        for ch in range(_SRT_CHANNELS):
            ch_frames, _, flags, off = struct.unpack_from(container.byte_order + "HBBI", datum, 8 * ch)
            if ch not in (_SRT_TRANSLATION_U, _SRT_TRANSLATION_V):
                continue
            if flags != _SRT_SAMPLED or ch_frames == 0:
                curves.append(Curve())
                continue
            values = container.reader(section, base + off).u16s(ch_frames)
            curves.append(Curve.samples(0, ch_frames, (fix(v, 1, 10, 5) for v in values)))
        tracks.append(SRTTrack(material_name, curves[0], curves[1]))

    _log.debug("%s: material animation %r: %d tracks", container.name, name, len(tracks))
    return SRTAnimation(name=name, source=container.name, frame_count=num_frames, tracks=tuple(tracks))
