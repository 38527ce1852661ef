from __future__ import annotations

import pytest

import nitro_files as nf
from io_scene_nitro.core.assemble import assemble
from io_scene_nitro.core.container import read_container
from io_scene_nitro.core.material_motion import read_pat0, read_srt0
from io_scene_nitro.core.types import ImageSwap, UVTransform


def pattern_file() -> bytes:
    rec = nf.pattern_record(
        4,
        ["tex", "tex2"],
        ["pal"],
        [("mat", [(0, 0, 0), (2, 1, 0)]), ("other", [(0, 0, 0)])],
    )
    return nf.btp0([("blink", rec)])


def srt_file() -> bytes:
    return nf.bta0([("scroll", nf.srt_record(3, [("mat", [0.0, 0.5, 1.0], [0.25])]))])


def test_read_pat0():
    c = read_container(pattern_file(), name="a.nsbtp")
    (pat,) = read_pat0(c, c.section("PAT0"))
    assert pat.name == "blink"
    assert pat.frame_count == 4
    assert pat.texture_names == ("tex", "tex2")
    assert pat.palette_names == ("pal",)
    track = pat.tracks[0]
    assert track.material_name == "mat"
    assert [track.sample(f).texture for f in range(4)] == [0, 0, 1, 1]


def test_read_srt0():
    c = read_container(srt_file())
    (srt,) = read_srt0(c, c.section("SRT0"))
    assert srt.name == "scroll"
    assert srt.frame_count == 3
    (track,) = srt.tracks
    assert track.material_name == "mat"
    assert track.sample(0) == UVTransform((0.0, 0.25))
    assert track.sample(1).translation == pytest.approx((0.5, 0.25))
    assert track.sample(2).translation == pytest.approx((1.0, 0.25))


def test_pattern_animation_swaps_images(model_file, texture_file):
    (model,) = assemble([model_file, texture_file, pattern_file()])
    (anim,) = model.animations
    assert anim.name == "blink"
    (track,) = anim.tracks
    assert (track.target_kind, track.channel, track.target) == ("material", "image", 0)
    # Frame 0 shows the material's own texture, decoded only once.
    assert track.sample(0) == ImageSwap(0)
    assert track.sample(4) == ImageSwap(0)
    assert track.sample(2) == ImageSwap(None)
    assert len(model.textures) == 1

    kinds = {(u.kind, u.name) for u in model.unresolved}
    assert ("texture", "tex2") in kinds
    assert ("material", "other") in kinds


def test_srt_animation_moves_uvs(model_file, texture_file):
    (model,) = assemble([model_file, texture_file, srt_file()])
    (anim,) = model.animations
    (track,) = anim.tracks
    assert (track.target_kind, track.channel) == ("material", "uv")
    assert track.sample(1).translation == pytest.approx((0.5, 0.25))
    assert track.sample(4).translation == pytest.approx((0.5, 0.25))


def test_material_animations_for_other_models_are_ignored(model_file, texture_file):
    rec = nf.pattern_record(2, ["tex"], ["pal"], [("elsewhere", [(0, 0, 0)])])
    (model,) = assemble([model_file, texture_file, nf.btp0([("other", rec)])])
    assert model.animations == ()
    assert all(u.kind != "material" for u in model.unresolved)
