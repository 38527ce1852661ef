"""Nintendo LZ77 decompressors (BIOS types 0x10 and 0x11).

Nitro files are frequently shipped compressed; `maybe_decompress` peels that
layer off before the container is parsed.
"""

from __future__ import annotations

import logging
import struct

from ..errors import MalformedContainer
from .container import KINDS

_log = logging.getLogger(__name__)

# Anything larger is not a Nitro asset.
MAX_DECODED_LEN = 4 << 20


def looks_compressed(data: bytes) -> bool:
    if len(data) < 4 or data[0] not in (0x10, 0x11):
        return False
    decoded_len = data[1] | (data[2] << 8) | (data[3] << 16)
    return 0 < decoded_len <= MAX_DECODED_LEN


def _header(data: bytes, kind: int):
    hdr = struct.unpack_from("<I", data, 0)[0]
    if (hdr & 0xFF) != kind:
        raise MalformedContainer("bad compression header", offset=0, expected=kind, found=hdr & 0xFF)
    decoded_len = hdr >> 8
    in_off = 4
    if decoded_len == 0:
        if len(data) < 8:
            raise MalformedContainer("truncated compression header", offset=4)
        decoded_len = struct.unpack_from("<I", data, 4)[0]
        in_off = 8
    if decoded_len > MAX_DECODED_LEN:
        raise MalformedContainer(
            "decompressed size too large", offset=1, expected=MAX_DECODED_LEN, found=decoded_len
        )
    return decoded_len, in_off


def decompress_lz10(data: bytes) -> bytes:
    decoded_len, in_off = _header(data, 0x10)
    out = bytearray()
    try:
        while len(out) < decoded_len:
            flags = data[in_off]
            in_off += 1
            for _ in range(8):
                if flags & 0x80 == 0:
                    out.append(data[in_off])
                    in_off += 1
                else:
                    # Big-endian: 4 bits length-3, 12 bits displacement-1.
                    x = (data[in_off] << 8) | data[in_off + 1]
                    in_off += 2
                    disp = (x & 0xFFF) + 1
                    length = (x >> 12) + 3
                    if disp > len(out) or len(out) + length > decoded_len:
                        raise MalformedContainer("bad lz10 back-reference", offset=in_off - 2)
                    for _k in range(length):
                        out.append(out[-disp])
                flags <<= 1
                if len(out) >= decoded_len:
                    break
    except IndexError:
        raise MalformedContainer("truncated lz10 stream", offset=in_off) from None
    return bytes(out)


def decompress_lz11(data: bytes) -> bytes:
    decoded_len, in_off = _header(data, 0x11)
    inp = memoryview(data)
    out = bytearray(decoded_len)
    out_off = 0

    mask = 0
    header = 0
    try:
        while out_off < decoded_len:
            mask >>= 1
            if mask == 0:
                header = int(inp[in_off])
                in_off += 1
                mask = 0x80

            if (header & mask) == 0:
                out[out_off] = int(inp[in_off])
                out_off += 1
                in_off += 1
                continue

            byte1 = int(inp[in_off])
            in_off += 1
            top = byte1 >> 4

            if top == 0:
                byte2 = int(inp[in_off])
                byte3 = int(inp[in_off + 1])
                in_off += 2
                position = ((byte2 & 0xF) << 8) | byte3
                length = (((byte1 & 0xF) << 4) | (byte2 >> 4)) + 0x11
            elif top == 1:
                byte2 = int(inp[in_off])
                byte3 = int(inp[in_off + 1])
                byte4 = int(inp[in_off + 2])
                in_off += 3
                position = ((byte3 & 0xF) << 8) | byte4
                length = (((byte1 & 0xF) << 12) | (byte2 << 4) | (byte3 >> 4)) + 0x111
            else:
                byte2 = int(inp[in_off])
                in_off += 1
                position = ((byte1 & 0xF) << 8) | byte2
                length = (byte1 >> 4) + 1

            position += 1
            if position > out_off:
                raise MalformedContainer("bad lz11 back-reference", offset=in_off)
            for _ in range(length):
                out[out_off] = out[out_off - position]
                out_off += 1
                if out_off >= decoded_len:
                    break
    except IndexError:
        raise MalformedContainer("truncated lz11 stream", offset=in_off) from None

    return bytes(out)


def maybe_decompress(data: bytes) -> bytes:
    """Return the decompressed payload if `data` is a compressed Nitro file."""
    if bytes(data[:4]) in KINDS or not looks_compressed(data):
        return data
    try:
        if data[0] == 0x10:
            out = decompress_lz10(data)
        else:
            out = decompress_lz11(data)
    except MalformedContainer as e:
        _log.debug("lz%02x header but decompression failed (%s); using raw bytes", data[0], e)
        return data
    if bytes(out[:4]) not in KINDS:
        _log.debug("decompressed payload is not a nitro file; using raw bytes")
        return data
    _log.debug("decompressed lz%02x payload: %d -> %d bytes", data[0], len(data), len(out))
    return out
