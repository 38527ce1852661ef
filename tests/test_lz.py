from __future__ import annotations

import pytest

import nitro_files as nf
from io_scene_nitro.core.container import read_container
from io_scene_nitro.core.lz import decompress_lz10, decompress_lz11, looks_compressed, maybe_decompress
from io_scene_nitro.errors import MalformedContainer


def test_lz10_back_reference():
    data = bytes([0x10, 9, 0, 0, 0x10]) + b"ABC" + bytes([0x30, 0x02])
    assert decompress_lz10(data) == b"ABCABCABC"


def test_lz11_back_reference():
    data = bytes([0x11, 9, 0, 0, 0x10]) + b"ABC" + bytes([0x50, 0x02])
    assert decompress_lz11(data) == b"ABCABCABC"


def test_lz10_bad_back_reference():
    # Displacement reaches before the start of the output.
    data = bytes([0x10, 4, 0, 0, 0x40]) + b"A" + bytes([0x00, 0x05])
    with pytest.raises(MalformedContainer):
        decompress_lz10(data)


def test_lz11_truncated():
    data = bytes([0x11, 9, 0, 0, 0x00]) + b"ABC"
    with pytest.raises(MalformedContainer):
        decompress_lz11(data)


def test_wrong_header_type():
    with pytest.raises(MalformedContainer):
        decompress_lz11(bytes([0x10, 1, 0, 0, 0, 0x41]))


def test_maybe_decompress_peels_compressed_container(texture_file):
    packed = nf.lz10_literals(texture_file)
    assert looks_compressed(packed)
    assert not looks_compressed(texture_file)
    unpacked = maybe_decompress(packed)
    assert unpacked == texture_file
    assert read_container(unpacked).kind == "texture"


def test_maybe_decompress_passes_through_plain_data(texture_file):
    assert maybe_decompress(texture_file) is texture_file
    # Looks compressed but does not decode to a Nitro file.
    junk = nf.lz10_literals(b"not a nitro file")
    assert maybe_decompress(junk) is junk


def test_maybe_decompress_falls_back_on_broken_stream():
    # Valid LZ10 header, then a back-reference before any output.
    broken = bytes([0x10, 0x20, 0, 0, 0x80, 0x00, 0x05])
    assert looks_compressed(broken)
    with pytest.raises(MalformedContainer):
        decompress_lz10(broken)
    assert maybe_decompress(broken) is broken
