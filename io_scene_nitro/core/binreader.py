from __future__ import annotations

import struct

from ..errors import MalformedContainer


class _BinReader:
    """Cursor over an in-memory buffer with a fixed byte order ("<" or ">")."""

    __slots__ = ("_b", "_o", "_e")

    def __init__(self, data: bytes, offset: int = 0, byte_order: str = "<"):
        self._b = memoryview(data)
        self._o = offset
        self._e = byte_order

    @property
    def tell(self) -> int:
        return self._o

    @property
    def byte_order(self) -> str:
        return self._e

    def __len__(self) -> int:
        return len(self._b)

    def seek(self, offset: int) -> None:
        if offset < 0 or offset > len(self._b):
            raise MalformedContainer("seek out of range", offset=offset)
        self._o = offset

    def skip(self, size: int) -> None:
        self.seek(self._o + size)

    def _need(self, size: int) -> int:
        o = self._o
        if o + size > len(self._b):
            raise MalformedContainer("read past end", offset=o)
        self._o = o + size
        return o

    def read(self, size: int) -> bytes:
        o = self._need(size)
        return self._b[o : o + size].tobytes()

    def u8(self) -> int:
        o = self._need(1)
        return int(self._b[o])

    def u16(self) -> int:
        o = self._need(2)
        return int(struct.unpack_from(self._e + "H", self._b, o)[0])

    def u32(self) -> int:
        o = self._need(4)
        return int(struct.unpack_from(self._e + "I", self._b, o)[0])

    def u16s(self, n: int) -> list:
        o = self._need(2 * n)
        return list(struct.unpack_from(f"{self._e}{n}H", self._b, o))

    def u32s(self, n: int) -> list:
        o = self._need(4 * n)
        return list(struct.unpack_from(f"{self._e}{n}I", self._b, o))

    def padded_string(self, length: int) -> str:
        raw = self.read(length)
        end = raw.find(b"\0")
        if end >= 0:
            raw = raw[:end]
        return raw.decode("ascii", "replace")
