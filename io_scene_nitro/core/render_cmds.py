"""Model render command ("SBC") decoding.

Each render command is a one-byte opcode with byte parameters. Commands are
expanded into micro-ops that the interpreter executes in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

from ..errors import InterpreterFault

_log = logging.getLogger(__name__)

# Fixed parameter counts; 0x09 is variable-length and handled separately.
_PARAMS = {
    0x00: 0,
    0x01: 0,
    0x02: 2,
    0x03: 1,
    0x04: 1,
    0x05: 1,
    0x06: 3,
    0x07: 1,
    0x08: 1,
    0x0B: 0,
    0x0C: 2,
    0x0D: 2,
    0x24: 1,
    0x26: 4,
    0x2B: 0,
    0x40: 0,
    0x44: 1,
    0x46: 4,
    0x47: 2,
    0x66: 5,
    0x80: 0,
}


@dataclass(frozen=True)
class LoadSlot:
    slot: int


@dataclass(frozen=True)
class StoreSlot:
    slot: int


@dataclass(frozen=True)
class MulObject:
    object: int


@dataclass(frozen=True)
class SkinTerm:
    slot: int
    inv_bind: int
    weight: float


@dataclass(frozen=True)
class Skin:
    terms: Tuple[SkinTerm, ...]


@dataclass(frozen=True)
class ScaleUp:
    pass


@dataclass(frozen=True)
class ScaleDown:
    pass


@dataclass(frozen=True)
class BindMaterial:
    material: int


@dataclass(frozen=True)
class Draw:
    mesh: int


def decode_render_ops(data: bytes) -> List[object]:
    ops: List[object] = []
    i = 0
    n = len(data)

    def take(count: int, opcode: int) -> bytes:
        if i + 1 + count > n:
            raise InterpreterFault(f"truncated render command 0x{opcode:02x} at 0x{i:x}")
        return data[i + 1 : i + 1 + count]

    while True:
        if i >= n:
            raise InterpreterFault("render commands ended without an end command")
        opcode = data[i]

        if opcode == 0x09:
            head = take(2, opcode)
            count = head[1]
            params = take(2 + 3 * count, opcode)
            terms = tuple(
                SkinTerm(params[2 + 3 * k], params[3 + 3 * k], params[4 + 3 * k] / 256.0)
                for k in range(count)
            )
            ops.append(Skin(terms))
            ops.append(StoreSlot(params[0]))
            i += 1 + len(params)
            continue

        if opcode not in _PARAMS:
            raise InterpreterFault(f"unknown render command opcode: 0x{opcode:02x}")
        params = take(_PARAMS[opcode], opcode)
        i += 1 + len(params)

        if opcode == 0x01:
            return ops
        if opcode == 0x03:
            ops.append(LoadSlot(params[0]))
        elif opcode in (0x04, 0x24, 0x44):
            ops.append(BindMaterial(params[0]))
        elif opcode == 0x05:
            ops.append(Draw(params[0]))
        elif opcode in (0x06, 0x26, 0x46, 0x66):
            # p1 is the parent object and p2 is unknown; the stack ops
            # already carry the hierarchy.
            store = params[3] if opcode in (0x26, 0x66) else None
            load = {0x46: 3, 0x66: 4}.get(opcode)
            if load is not None:
                ops.append(LoadSlot(params[load]))
            ops.append(MulObject(params[0]))
            if store is not None:
                ops.append(StoreSlot(store))
        elif opcode == 0x0B:
            ops.append(ScaleUp())
        elif opcode == 0x2B:
            ops.append(ScaleDown())
        elif opcode != 0x00:
            _log.debug("skipping render command 0x%02x %s", opcode, params.hex())
