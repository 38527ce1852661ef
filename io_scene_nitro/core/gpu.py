"""DS geometry-engine command FIFO decoding.

Commands are packed four at a time: one word holding four opcode bytes (low
byte first), followed by the u32 parameters of each of the four commands in
order. This module only unpacks commands; `interpreter` executes them.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..errors import InterpreterFault
from .fixed import bits, fix, fx16, fx32, rgb555

# Parameter word count per opcode, None for opcodes that never appear in a
# display list.
_SIZES: Tuple[Optional[int], ...] = (
    (0,) + (None,) * 15
    + (1, 0, 1, 1, 1, 0, 16, 12, 16, 12, 9, 3, 3) + (None,) * 3
    + (1, 1, 1, 2, 1, 1, 1, 1, 1, 1, 1, 1) + (None,) * 4
    + (1, 1, 1, 1, 32) + (None,) * 11
    + (1, 0)
)

PRIM_TRIS = 0
PRIM_QUADS = 1
PRIM_TRI_STRIP = 2
PRIM_QUAD_STRIP = 3


@dataclass(frozen=True)
class Nop:
    pass


@dataclass(frozen=True)
class Push:
    pass


@dataclass(frozen=True)
class Pop:
    count: int


@dataclass(frozen=True)
class Store:
    slot: int


@dataclass(frozen=True)
class Restore:
    slot: int


@dataclass(frozen=True)
class Identity:
    pass


@dataclass(frozen=True)
class LoadMatrix:
    """Rows of a 4x4 matrix in column-vector convention."""

    rows: Tuple[Tuple[float, ...], ...]


@dataclass(frozen=True)
class MultMatrix:
    rows: Tuple[Tuple[float, ...], ...]


@dataclass(frozen=True)
class Scale:
    scale: Tuple[float, float, float]


@dataclass(frozen=True)
class Translate:
    translation: Tuple[float, float, float]


@dataclass(frozen=True)
class Color:
    color: Tuple[float, float, float]


@dataclass(frozen=True)
class Normal:
    normal: Tuple[float, float, float]


@dataclass(frozen=True)
class TexCoord:
    texcoord: Tuple[float, float]


@dataclass(frozen=True)
class Vertex:
    position: Tuple[float, float, float]


@dataclass(frozen=True)
class VertexXY:
    x: float
    y: float


@dataclass(frozen=True)
class VertexXZ:
    x: float
    z: float


@dataclass(frozen=True)
class VertexYZ:
    y: float
    z: float


@dataclass(frozen=True)
class VertexDiff:
    delta: Tuple[float, float, float]


@dataclass(frozen=True)
class Begin:
    prim: int


@dataclass(frozen=True)
class End:
    pass


@dataclass(frozen=True)
class Other:
    """Valid command with no effect on geometry (lighting, polygon attrs...)."""

    opcode: int
    params: Tuple[int, ...]


def num_params(opcode: int) -> int:
    n = _SIZES[opcode] if opcode < len(_SIZES) else None
    if n is None:
        raise InterpreterFault(f"unknown GPU opcode: 0x{opcode:02x}")
    return n


def _matrix_rows(p: List[int], size: int) -> Tuple[Tuple[float, ...], ...]:
    # Parameters are row-major in the hardware's row-vector convention, which
    # is column-major here. A 4x3 load has the translation as its last column.
    rows = 4 if size == 16 else 3
    cols = 3 if size == 9 else 4
    m = [[1.0 if r == c else 0.0 for c in range(4)] for r in range(4)]
    for c in range(cols):
        for r in range(rows):
            m[r][c] = fx32(p[c * rows + r])
    return tuple(tuple(row) for row in m)


def _parse(opcode: int, p: List[int]):
    if opcode == 0x00:
        return Nop()
    if opcode == 0x11:
        return Push()
    if opcode == 0x12:
        return Pop(int(fix(p[0], 1, 5, 0)))
    if opcode == 0x13:
        return Store(p[0] & 31)
    if opcode == 0x14:
        return Restore(p[0] & 31)
    if opcode == 0x15:
        return Identity()
    if opcode == 0x16:
        return LoadMatrix(_matrix_rows(p, 16))
    if opcode == 0x17:
        return LoadMatrix(_matrix_rows(p, 12))
    if opcode == 0x18:
        return MultMatrix(_matrix_rows(p, 16))
    if opcode == 0x19:
        return MultMatrix(_matrix_rows(p, 12))
    if opcode == 0x1A:
        return MultMatrix(_matrix_rows(p, 9))
    if opcode == 0x1B:
        return Scale((fx32(p[0]), fx32(p[1]), fx32(p[2])))
    if opcode == 0x1C:
        return Translate((fx32(p[0]), fx32(p[1]), fx32(p[2])))
    if opcode == 0x20:
        return Color(rgb555(p[0]))
    if opcode == 0x21:
        x = p[0]
        return Normal((fix(bits(x, 0, 10), 1, 0, 9), fix(bits(x, 10, 20), 1, 0, 9), fix(bits(x, 20, 30), 1, 0, 9)))
    if opcode == 0x22:
        return TexCoord((fix(bits(p[0], 0, 16), 1, 11, 4), fix(bits(p[0], 16, 32), 1, 11, 4)))
    if opcode == 0x23:
        return Vertex((fx16(bits(p[0], 0, 16)), fx16(bits(p[0], 16, 32)), fx16(bits(p[1], 0, 16))))
    if opcode == 0x24:
        x = p[0]
        return Vertex((fix(bits(x, 0, 10), 1, 3, 6), fix(bits(x, 10, 20), 1, 3, 6), fix(bits(x, 20, 30), 1, 3, 6)))
    if opcode == 0x25:
        return VertexXY(fx16(bits(p[0], 0, 16)), fx16(bits(p[0], 16, 32)))
    if opcode == 0x26:
        return VertexXZ(fx16(bits(p[0], 0, 16)), fx16(bits(p[0], 16, 32)))
    if opcode == 0x27:
        return VertexYZ(fx16(bits(p[0], 0, 16)), fx16(bits(p[0], 16, 32)))
    if opcode == 0x28:
        # 10-bit deltas scaled by 1/8 into the 1.3.12 vertex format.
        x = p[0]
        return VertexDiff(tuple(fix(bits(x, lo, lo + 10), 1, 0, 9) / 8.0 for lo in (0, 10, 20)))
    if opcode == 0x40:
        return Begin(p[0] & 3)
    if opcode == 0x41:
        return End()
    return Other(opcode, tuple(p))


def decode_gpu_commands(data: bytes, byte_order: str = "<") -> List[object]:
    """Unpack a command buffer; any unknown opcode or truncation is fatal."""
    if len(data) % 4 != 0:
        raise InterpreterFault("GPU command buffer length is not a multiple of 4")
    words = struct.unpack(f"{byte_order}{len(data) // 4}I", data)
    cmds: List[object] = []
    i = 0
    while i < len(words):
        packed = words[i]
        i += 1
        for k in range(4):
            opcode = (packed >> (8 * k)) & 0xFF
            n = num_params(opcode)
            if i + n > len(words):
                raise InterpreterFault(
                    f"truncated parameters for GPU opcode 0x{opcode:02x}: need {n}, have {len(words) - i}"
                )
            cmds.append(_parse(opcode, list(words[i : i + n])))
            i += n
    return cmds
