from __future__ import annotations

import struct

import pytest

import nitro_files as nf
from io_scene_nitro.core.container import read_container
from io_scene_nitro.core.texture import TextureParams, decode_texture, read_tex0, texture_raster
from io_scene_nitro.errors import MalformedContainer, UnsupportedFormat

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)
CLEAR = (0, 0, 0, 0)

PALETTE = [0x001F, 0x03E0, 0x7C00, 0x7FFF]


def pixels(rgba: bytes):
    return [tuple(rgba[i : i + 4]) for i in range(0, len(rgba), 4)]


def block_4x4(mode: int) -> list:
    # Texel (x, y) uses table entry x, so each row reads entries 0..3.
    word = 0
    for i in range(16):
        word |= (i % 4) << (2 * i)
    out = decode_texture(
        5,
        4,
        4,
        struct.pack("<I", word),
        PALETTE,
        index_data=struct.pack("<H", mode << 14),
    )
    px = pixels(out)
    for row in range(4):
        assert px[row * 4 : row * 4 + 4] == px[0:4]
    return px[0:4]


def test_compressed_mode_0():
    assert block_4x4(0) == [RED, GREEN, BLUE, CLEAR]


def test_compressed_mode_1():
    assert block_4x4(1) == [RED, GREEN, (127, 127, 0, 255), CLEAR]


def test_compressed_mode_2():
    assert block_4x4(2) == [RED, GREEN, BLUE, WHITE]


def test_compressed_mode_3():
    assert block_4x4(3) == [RED, GREEN, (159, 95, 0, 255), (95, 159, 0, 255)]


def test_compressed_palette_base():
    # Base 1 (in pairs of colors) starts the table at palette entry 2.
    out = decode_texture(5, 4, 4, b"\0\0\0\0", PALETTE, index_data=struct.pack("<H", (2 << 14) | 1))
    assert pixels(out)[0] == BLUE


def test_compressed_needs_index_data():
    with pytest.raises(MalformedContainer):
        decode_texture(5, 4, 4, b"\0\0\0\0", PALETTE, index_data=b"")


def test_direct_color():
    texels = struct.pack("<4H", 0x801F, 0x001F, 0xFC00, 0xFFFF)
    assert pixels(decode_texture(7, 2, 2, texels)) == [RED, (255, 0, 0, 0), BLUE, WHITE]


def test_four_color():
    # 2bpp, lowest bits first.
    out = decode_texture(2, 4, 1, bytes([0b11100100]), PALETTE)
    assert pixels(out) == [RED, GREEN, BLUE, WHITE]


def test_sixteen_color_transparent_zero():
    out = decode_texture(3, 2, 1, bytes([0x10]), PALETTE, color0_transparent=True)
    assert pixels(out) == [(255, 0, 0, 0), GREEN]


def test_256_color_out_of_palette_is_transparent():
    out = decode_texture(4, 2, 1, bytes([3, 200]), PALETTE)
    assert pixels(out) == [WHITE, CLEAR]


def test_a3i5():
    # Alpha 7 of 7 expands to 31 of 31; alpha 0 stays 0.
    out = decode_texture(1, 2, 1, bytes([(7 << 5) | 1, 2]), PALETTE)
    assert pixels(out) == [GREEN, (0, 0, 255, 0)]


def test_a5i3():
    out = decode_texture(6, 2, 1, bytes([(31 << 3) | 2, (16 << 3) | 3]), PALETTE)
    assert pixels(out) == [BLUE, (255, 255, 255, 132)]


def test_unsupported_format():
    with pytest.raises(UnsupportedFormat):
        decode_texture(0, 8, 8, b"")


def test_truncated_texels():
    with pytest.raises(MalformedContainer):
        decode_texture(7, 8, 8, b"\0" * 10)


def test_params_bitfields():
    p = TextureParams(nf.teximage(3, 16, 32, repeat_s=True, color0_transparent=True) | 5)
    assert p.offset == 40
    assert (p.width, p.height) == (16, 32)
    assert p.format == 3
    assert p.repeat_s and not p.repeat_t
    assert p.color0_transparent
    assert p.requires_palette
    assert p.byte_len() == 16 * 32 // 2
    assert not TextureParams(nf.teximage(7)).requires_palette


def test_read_tex0_and_decode(texture_file):
    c = read_container(texture_file)
    block = read_tex0(c, c.section("TEX0"))
    info = block.find_texture("tex")
    pal = block.find_palette("pal")
    assert info is not None and pal is not None
    assert block.find_texture("missing") is None
    assert (info.params.width, info.params.height, info.params.format) == (8, 8, 3)

    colors = block.palette_colors(pal)
    assert list(colors[:4]) == nf.PALETTE16[:4]
    px = pixels(texture_raster(block, info, colors))
    assert len(px) == 64
    assert px[:4] == [RED, GREEN, BLUE, WHITE]


def test_read_tex0_big_endian():
    data = nf.btx0(bo=">")
    c = read_container(data)
    block = read_tex0(c, c.section("TEX0"))
    colors = block.palette_colors(block.find_palette("pal"))
    assert list(colors[:4]) == nf.PALETTE16[:4]


def test_read_tex0_big_endian_direct_texels():
    texels = struct.pack(">64H", 0x801F, 0x83E0, *([0x7C00] * 62))
    data = nf.btx0(textures=[("direct", nf.teximage(7), texels)], bo=">")
    c = read_container(data)
    block = read_tex0(c, c.section("TEX0"))
    info = block.find_texture("direct")
    px = pixels(texture_raster(block, info, ()))
    assert px[:3] == [RED, GREEN, (0, 0, 255, 0)]


def test_read_tex0_big_endian_compressed_texels():
    # Row y of every block uses table entry y; mode 2 reads palette 0..3.
    word = 0xFFAA5500
    data = nf.btx0(
        textures=[],
        bo=">",
        compressed=[("packed", nf.teximage(5), struct.pack(">4I", *[word] * 4), struct.pack(">4H", *[2 << 14] * 4))],
    )
    c = read_container(data)
    block = read_tex0(c, c.section("TEX0"))
    info = block.find_texture("packed")
    assert info.params.format == 5
    colors = block.palette_colors(block.find_palette("pal"))
    px = pixels(texture_raster(block, info, colors))
    assert [px[y * 8] for y in range(8)] == [RED, GREEN, BLUE, WHITE] * 2
    assert px[7] == RED


def test_texture_data_out_of_range(texture_file):
    c = read_container(texture_file)
    block = read_tex0(c, c.section("TEX0"))
    info = block.find_texture("tex")
    bad = type(info)(info.name, TextureParams(info.params.value | 0x100))
    with pytest.raises(MalformedContainer):
        block.texel_data(bad)
