"""JNT0 joint animation decoding.

A JNT0 section holds `J\\0AC` animations. Each one carries per-object TRS
curves; rotations are stored as indices into pivot or basis tables shared by
the whole animation.
"""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple

from mathutils import Matrix, Vector

from ..errors import MalformedContainer
from .binreader import _BinReader
from .container import NitroContainer, Section, read_info_block
from .fixed import bits, fx16, fx32
from .rotation import basis_mat, pivot_mat
from .types import JointPose

_log = logging.getLogger(__name__)

CURVE_NONE = "none"
CURVE_CONSTANT = "constant"
CURVE_SAMPLES = "samples"


def _lerp(a: float, b: float, t: float) -> float:
    return a * (1.0 - t) + b * t


@dataclass(frozen=True)
class Curve:
    """A value over time: undefined, constant, or sampled on [start, end)."""

    kind: str = CURVE_NONE
    values: Tuple[Any, ...] = ()
    start_frame: int = 0
    end_frame: int = 0

    @classmethod
    def constant(cls, value: Any) -> "Curve":
        return cls(CURVE_CONSTANT, (value,))

    @classmethod
    def samples(cls, start_frame: int, end_frame: int, values) -> "Curve":
        return cls(CURVE_SAMPLES, tuple(values), start_frame, end_frame)

    def sample_at(self, frame: int, default: Any, mix: Callable[[Any, Any, float], Any] = _lerp) -> Any:
        if self.kind == CURVE_NONE or not self.values:
            return default
        if self.kind == CURVE_CONSTANT:
            return self.values[0]

        # Hold the end values outside the sampled range.
        if frame <= self.start_frame:
            return self.values[0]
        if frame >= self.end_frame - 1:
            return self.values[-1]

        lam = (frame - self.start_frame) / float(self.end_frame - 1 - self.start_frame)
        idx = lam * (len(self.values) - 1)
        lo = int(math.floor(idx))
        hi = int(math.ceil(idx))
        return mix(self.values[lo], self.values[hi], idx - lo)


_NO_CURVE = Curve()
_IDENTITY3 = Matrix.Identity(3).freeze()


@dataclass(frozen=True)
class CurveInfo:
    start_frame: int
    end_frame: int
    data_width: int
    rate: int

    @classmethod
    def from_u32(cls, x: int, *, offset: int = 0) -> "CurveInfo":
        info = cls(
            start_frame=bits(x, 0, 16),
            end_frame=bits(x, 16, 28),
            data_width=bits(x, 28, 30),
            rate=bits(x, 30, 32),
        )
        if info.start_frame >= info.end_frame:
            raise MalformedContainer(
                "curve start frame not before end frame",
                offset=offset,
                expected=f"< {info.end_frame}",
                found=info.start_frame,
            )
        return info

    @property
    def num_samples(self) -> int:
        return max(1, (self.end_frame - self.start_frame) >> self.rate)


@dataclass(frozen=True)
class TRSCurves:
    translation: Tuple[Curve, Curve, Curve] = (_NO_CURVE, _NO_CURVE, _NO_CURVE)
    rotation: Curve = _NO_CURVE
    scale: Tuple[Curve, Curve, Curve] = (_NO_CURVE, _NO_CURVE, _NO_CURVE)

    @property
    def animated(self) -> bool:
        return any(c.kind != CURVE_NONE for c in (*self.translation, self.rotation, *self.scale))

    def pose(self, frame: int) -> JointPose:
        t = Vector(tuple(c.sample_at(frame, 0.0) for c in self.translation))
        # 3x3 matrices lerped element-wise; pivot matrices may be improper.
        r = self.rotation.sample_at(frame, _IDENTITY3)
        s = Vector(tuple(c.sample_at(frame, 1.0) for c in self.scale))
        return JointPose(translation=t, rotation=Matrix(r), scale=s)


@dataclass(frozen=True)
class JointAnimation:
    name: str
    source: str
    frame_count: int
    objects: Tuple[TRSCurves, ...]


def read_jnt0(container: NitroContainer, section: Section) -> List[JointAnimation]:
    r = container.reader(section)
    stamp = r.read(4)
    if stamp != b"JNT0":
        raise MalformedContainer("bad JNT0 stamp", offset=section.offset, expected=b"JNT0", found=stamp)
    r.u32()
    out: List[JointAnimation] = []
    for datum, name in read_info_block(r, 4):
        (off,) = struct.unpack(container.byte_order + "I", datum)
        out.append(_read_animation(container, section, off, name))
    return out


class _AnimReader:
    """Reads curve data addressed relative to one J.AC record."""

    __slots__ = ("container", "section", "base", "pivot_off", "basis_off")

    def __init__(self, container: NitroContainer, section: Section, base: int, pivot_off: int, basis_off: int):
        self.container = container
        self.section = section
        self.base = base
        self.pivot_off = pivot_off
        self.basis_off = basis_off

    def at(self, off: int) -> _BinReader:
        return self.container.reader(self.section, self.base + off)

    def rotation(self, x: int) -> Matrix:
        idx = bits(x, 0, 15)
        if bits(x, 15, 16):
            selneg, a, b = self.at(self.pivot_off + 6 * idx).u16s(3)
            m = pivot_mat(bits(selneg, 0, 4), bits(selneg, 4, 8), fx16(a), fx16(b))
        else:
            m = basis_mat(self.at(self.basis_off + 10 * idx).u16s(5))
        m.freeze()
        return m


def _read_animation(container: NitroContainer, section: Section, base: int, name: str) -> JointAnimation:
    r = container.reader(section, base)
    stamp = r.read(4)
    if stamp != b"J\0AC":
        raise MalformedContainer(
            f"bad joint animation stamp for {name!r}", offset=r.tell - 4, expected=b"J\0AC", found=stamp
        )
    num_frames = r.u16()
    num_objects = r.u16()
    r.u32()
    pivot_off = r.u32()
    basis_off = r.u32()
    object_offs = r.u16s(num_objects)
    if num_frames == 0:
        raise MalformedContainer(f"joint animation {name!r} has no frames", offset=r.tell, found=0)

    ar = _AnimReader(container, section, base, pivot_off, basis_off)
    objects = tuple(_read_object(ar, ar.at(off)) for off in object_offs)

    _log.debug(
        "%s: joint animation %r: %d frames, %d objects", container.name, name, num_frames, num_objects
    )
    return JointAnimation(name=name, source=container.name, frame_count=num_frames, objects=objects)


def _read_object(ar: _AnimReader, r: _BinReader) -> TRSCurves:
    flags = r.u16()
    r.u8()
    _index = r.u8()

    if bits(flags, 0, 1) != 0:
        return TRSCurves()

    translation = [_NO_CURVE] * 3
    rotation = _NO_CURVE
    scale = [_NO_CURVE] * 3

    if bits(flags, 1, 3) == 0:
        for i in range(3):
            if bits(flags, 3 + i, 4 + i):
                translation[i] = Curve.constant(fx32(r.u32()))
            else:
                translation[i] = _read_scalar_curve(ar, r, pairs=False)

    if bits(flags, 6, 8) == 0:
        if bits(flags, 8, 9):
            v = r.u16()
            r.u16()
            rotation = Curve.constant(ar.rotation(v))
        else:
            info_at = r.tell
            info = CurveInfo.from_u32(r.u32(), offset=info_at)
            off = r.u32()
            refs = ar.at(off).u16s(info.num_samples)
            rotation = Curve.samples(info.start_frame, info.end_frame, (ar.rotation(x) for x in refs))

    if bits(flags, 9, 11) == 0:
        for i in range(3):
            if bits(flags, 11 + i, 12 + i):
                scale[i] = Curve.constant(fx32(r.u32s(2)[0]))
            else:
                scale[i] = _read_scalar_curve(ar, r, pairs=True)

    return TRSCurves(translation=tuple(translation), rotation=rotation, scale=tuple(scale))


def _read_scalar_curve(ar: _AnimReader, r: _BinReader, *, pairs: bool) -> Curve:
    # Scale samples come in pairs; only the first of each is used.
    info_at = r.tell
    info = CurveInfo.from_u32(r.u32(), offset=info_at)
    off = r.u32()
    n = info.num_samples
    step = 2 if pairs else 1
    data = ar.at(off)
    if info.data_width == 0:
        values = [fx32(v) for v in data.u32s(n * step)[::step]]
    else:
        values = [fx16(v) for v in data.u16s(n * step)[::step]]
    return Curve.samples(info.start_frame, info.end_frame, values)
