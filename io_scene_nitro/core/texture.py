"""TEX0 texture blocks and DS texel format decoding.

Includes:
- TEX0 section parsing (texture/palette dictionaries and data regions)
- TEXIMAGE_PARAM bitfield decoding
- texel decoders for formats 1-7 producing RGBA8 rasters (top row first)
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..errors import MalformedContainer, UnsupportedFormat
from .container import NitroContainer, Section, read_info_block
from .fixed import bits

_log = logging.getLogger(__name__)

FORMAT_NAMES = {
    1: "A3I5",
    2: "4-color",
    3: "16-color",
    4: "256-color",
    5: "4x4 compressed",
    6: "A5I3",
    7: "direct",
}
_BPP = {1: 8, 2: 2, 3: 4, 4: 8, 5: 2, 6: 8, 7: 16}

_TRANSPARENT = (0, 0, 0, 0)


@dataclass(frozen=True)
class TextureParams:
    value: int

    @property
    def offset(self) -> int:
        return bits(self.value, 0, 16) << 3

    @property
    def repeat_s(self) -> bool:
        return bits(self.value, 16, 17) != 0

    @property
    def repeat_t(self) -> bool:
        return bits(self.value, 17, 18) != 0

    @property
    def mirror_s(self) -> bool:
        return bits(self.value, 18, 19) != 0

    @property
    def mirror_t(self) -> bool:
        return bits(self.value, 19, 20) != 0

    @property
    def width(self) -> int:
        return 8 << bits(self.value, 20, 23)

    @property
    def height(self) -> int:
        return 8 << bits(self.value, 23, 26)

    @property
    def format(self) -> int:
        return bits(self.value, 26, 29)

    @property
    def color0_transparent(self) -> bool:
        return bits(self.value, 29, 30) != 0

    @property
    def texcoord_transform_mode(self) -> int:
        return bits(self.value, 30, 32)

    @property
    def requires_palette(self) -> bool:
        return self.format in (1, 2, 3, 4, 5, 6)

    def byte_len(self) -> int:
        return self.width * self.height * _BPP.get(self.format, 0) // 8


@dataclass(frozen=True)
class TextureInfo:
    name: str
    params: TextureParams


@dataclass(frozen=True)
class PaletteInfo:
    name: str
    offset: int


@dataclass(frozen=True)
class TextureBlock:
    """One TEX0 section: dictionaries plus the raw data regions."""

    source: str
    byte_order: str
    textures: Tuple[TextureInfo, ...]
    palettes: Tuple[PaletteInfo, ...]
    texture_data: bytes
    palette_data: bytes
    compressed_data: bytes
    compressed_extra: bytes

    def find_texture(self, name: str) -> Optional[TextureInfo]:
        for t in self.textures:
            if t.name == name:
                return t
        return None

    def find_palette(self, name: str) -> Optional[PaletteInfo]:
        for p in self.palettes:
            if p.name == name:
                return p
        return None

    def texel_data(self, info: TextureInfo) -> Tuple[bytes, bytes]:
        """(texels, index data) for one texture; index data only for format 5."""
        p = info.params
        n = p.byte_len()
        off = p.offset
        if p.format == 5:
            texels = self.compressed_data[off : off + n]
            extra = self.compressed_extra[off // 2 : off // 2 + n // 2]
            if len(texels) != n or len(extra) != n // 2:
                raise MalformedContainer(
                    f"texture {info.name!r} data out of range", offset=off, expected=n, found=len(texels)
                )
            return texels, extra
        texels = self.texture_data[off : off + n]
        if len(texels) != n:
            raise MalformedContainer(
                f"texture {info.name!r} data out of range", offset=off, expected=n, found=len(texels)
            )
        return texels, b""

    def palette_colors(self, info: PaletteInfo) -> Tuple[int, ...]:
        raw = self.palette_data[info.offset :]
        n = len(raw) // 2
        return tuple(struct.unpack_from(f"{self.byte_order}{n}H", raw, 0))


def read_tex0(container: NitroContainer, section: Section) -> TextureBlock:
    r = container.reader(section)
    stamp = r.read(4)
    if stamp != b"TEX0":
        raise MalformedContainer("bad TEX0 stamp", offset=section.offset, expected=b"TEX0", found=stamp)
    r.skip(4 + 4)
    tex_data_size = r.u16() << 3
    tex_info_off = r.u16()
    r.skip(4)
    tex_data_off = r.u32()
    r.skip(4)
    comp_data_size = r.u16() << 3
    _comp_info_off = r.u16()
    r.skip(4)
    comp_data_off = r.u32()
    comp_extra_off = r.u32()
    r.skip(4)
    pal_data_size = r.u16() << 3
    _unknown = r.u16()
    pal_info_off = r.u32()
    pal_data_off = r.u32()

    def region(off: int, size: int) -> bytes:
        start = container.resolve(section, off, size)
        return container.data[start : start + size]

    textures: List[TextureInfo] = []
    for datum, name in read_info_block(container.reader(section, tex_info_off), 8):
        params, _ = struct.unpack(f"{r.byte_order}II", datum)
        textures.append(TextureInfo(name, TextureParams(params)))

    palettes: List[PaletteInfo] = []
    for datum, name in read_info_block(container.reader(section, pal_info_off), 4):
        off_shr_3, _ = struct.unpack(f"{r.byte_order}HH", datum)
        palettes.append(PaletteInfo(name, off_shr_3 << 3))

    _log.debug(
        "%s: TEX0 with %d textures, %d palettes", container.name, len(textures), len(palettes)
    )
    return TextureBlock(
        source=container.name,
        byte_order=container.byte_order,
        textures=tuple(textures),
        palettes=tuple(palettes),
        texture_data=region(tex_data_off, tex_data_size),
        palette_data=region(pal_data_off, pal_data_size),
        compressed_data=region(comp_data_off, comp_data_size),
        compressed_extra=region(comp_extra_off, comp_data_size // 2),
    )


def _expand5(x: int) -> int:
    return (x << 3) | (x >> 2)


def _rgb555a5(rgb: int, a5: int) -> Tuple[int, int, int, int]:
    return (
        _expand5(rgb & 0x1F),
        _expand5((rgb >> 5) & 0x1F),
        _expand5((rgb >> 10) & 0x1F),
        _expand5(a5),
    )


def _avg(c1: Sequence[int], c2: Sequence[int]) -> Tuple[int, ...]:
    return tuple((a + b) // 2 for a, b in zip(c1, c2))


def _avg358(c1: Sequence[int], c2: Sequence[int]) -> Tuple[int, ...]:
    """(3*c1 + 5*c2) / 8"""
    return tuple((3 * a + 5 * b) // 8 for a, b in zip(c1, c2))


def decode_texture(
    fmt: int,
    width: int,
    height: int,
    texels: bytes,
    palette: Sequence[int] = (),
    *,
    color0_transparent: bool = False,
    index_data: bytes = b"",
    byte_order: str = "<",
) -> bytes:
    """Decode DS texels to RGBA8, row-major, top row first.

    Palette indices past the end of `palette` decode to transparent black.
    `byte_order` applies to the 16- and 32-bit words of formats 5 and 7.
    """
    fmt = int(fmt)
    if fmt not in FORMAT_NAMES:
        raise UnsupportedFormat(f"unsupported texture format: {fmt}")
    n = width * height
    need = n * _BPP[fmt] // 8
    if len(texels) < need:
        raise MalformedContainer("texel data truncated", offset=len(texels), expected=need, found=len(texels))

    out = bytearray(n * 4)
    npal = len(palette)

    def pal(idx: int, a5: int) -> Tuple[int, int, int, int]:
        if idx >= npal:
            return _TRANSPARENT
        return _rgb555a5(palette[idx], a5)

    if fmt == 5:
        _decode_compressed(out, width, height, texels, index_data, palette, byte_order)
        return bytes(out)

    if fmt == 7:
        vals = struct.unpack_from(f"{byte_order}{n}H", texels, 0)
        for i, v in enumerate(vals):
            out[i * 4 : i * 4 + 4] = bytes(_rgb555a5(v, 31 if v & 0x8000 else 0))
        return bytes(out)

    if fmt in (1, 6):
        for i in range(n):
            x = texels[i]
            if fmt == 1:
                a3 = x >> 5
                px = pal(x & 0x1F, (a3 << 2) | (a3 >> 1))
            else:
                px = pal(x & 0x07, x >> 3)
            out[i * 4 : i * 4 + 4] = bytes(px)
        return bytes(out)

    bpp = _BPP[fmt]
    per_byte = 8 // bpp
    mask = (1 << bpp) - 1
    i = 0
    for byte in texels[:need]:
        for k in range(per_byte):
            idx = (byte >> (k * bpp)) & mask
            a5 = 0 if (idx == 0 and color0_transparent) else 31
            out[i * 4 : i * 4 + 4] = bytes(pal(idx, a5))
            i += 1
    return bytes(out)


def _decode_compressed(
    out: bytearray,
    width: int,
    height: int,
    texels: bytes,
    index_data: bytes,
    palette: Sequence[int],
    byte_order: str,
) -> None:
    blocks_x = width // 4
    num_blocks = width * height // 16
    if len(index_data) < num_blocks * 2:
        raise MalformedContainer(
            "compressed index data truncated", offset=len(index_data), expected=num_blocks * 2, found=len(index_data)
        )
    words = struct.unpack_from(f"{byte_order}{num_blocks}I", texels, 0)
    extras = struct.unpack_from(f"{byte_order}{num_blocks}H", index_data, 0)
    npal = len(palette)

    for b in range(num_blocks):
        block = words[b]
        extra = extras[b]
        mode = bits(extra, 14, 16)
        base = bits(extra, 0, 14) << 1

        def color(k: int) -> Tuple[int, int, int, int]:
            if base + k >= npal:
                return _TRANSPARENT
            return _rgb555a5(palette[base + k], 31)

        c0 = color(0)
        c1 = color(1)
        if mode == 0:
            table = (c0, c1, color(2), _TRANSPARENT)
        elif mode == 1:
            table = (c0, c1, _avg(c0, c1), _TRANSPARENT)
        elif mode == 2:
            table = (c0, c1, color(2), color(3))
        else:
            table = (c0, c1, _avg358(c1, c0), _avg358(c0, c1))

        bx = (b % blocks_x) * 4
        by = (b // blocks_x) * 4
        for ty in range(4):
            for tx in range(4):
                texel = bits(block, 2 * (4 * ty + tx), 2 * (4 * ty + tx) + 2)
                o = ((by + ty) * width + bx + tx) * 4
                out[o : o + 4] = bytes(table[texel])


def texture_raster(block: TextureBlock, info: TextureInfo, colors: Sequence[int]) -> bytes:
    texels, extra = block.texel_data(info)
    p = info.params
    return decode_texture(
        p.format,
        p.width,
        p.height,
        texels,
        colors,
        color0_transparent=p.color0_transparent,
        index_data=extra,
        byte_order=block.byte_order,
    )
