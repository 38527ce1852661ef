from __future__ import annotations

import math

import pytest
from mathutils import Matrix

import nitro_files as nf
from io_scene_nitro.core.assemble import AssembleOptions, assemble
from io_scene_nitro.core.container import read_container
from io_scene_nitro.core.motion import Curve, CurveInfo, read_jnt0
from io_scene_nitro.errors import MalformedContainer


def test_curve_holds_ends_and_interpolates():
    c = Curve.samples(2, 6, [0.0, 3.0])
    assert c.sample_at(0, 9.0) == 0.0
    assert c.sample_at(2, 9.0) == 0.0
    assert c.sample_at(5, 9.0) == 3.0
    assert c.sample_at(9, 9.0) == 3.0
    assert c.sample_at(3, 9.0) == pytest.approx(1.0)
    assert Curve().sample_at(3, 9.0) == 9.0
    assert Curve.constant(4.0).sample_at(100, 9.0) == 4.0


def test_curve_info_fields():
    info = CurveInfo.from_u32(nf.curve_info(4, 20, width=1, rate=2))
    assert (info.start_frame, info.end_frame, info.data_width, info.rate) == (4, 20, 1, 2)
    assert info.num_samples == 4
    with pytest.raises(MalformedContainer):
        CurveInfo.from_u32(nf.curve_info(5, 5))


def test_read_jnt0():
    data = nf.bca0([("walk", nf.jac_record(2, 2, [0.0, 1.0], rotate_x90=True))])
    c = read_container(data, name="walk.nsbca")
    (anim,) = read_jnt0(c, c.section("JNT0"))
    assert anim.name == "walk"
    assert anim.source == "walk.nsbca"
    assert anim.frame_count == 2
    moving, still = anim.objects
    assert moving.animated
    assert not still.animated

    pose = moving.pose(1)
    assert tuple(pose.translation) == pytest.approx((1.0, 0.0, 0.0))
    assert tuple(pose.scale) == (1.0, 1.0, 1.0)
    expected = Matrix.Rotation(math.radians(90), 3, "X")
    assert [x for row in pose.rotation for x in row] == pytest.approx([x for row in expected for x in row], abs=1e-6)


def test_improper_pivot_rotation_is_kept():
    # o and c negated: a reflection, determinant -1.
    data = nf.bca0([("flip", nf.jac_record(2, 1, [0.0, 1.0], rotate_x90=True, pivot_selneg=0x30))])
    c = read_container(data)
    (anim,) = read_jnt0(c, c.section("JNT0"))
    pose = anim.objects[0].pose(0)
    assert [list(row) for row in pose.rotation] == [[-1.0, 0.0, 0.0], [0.0, 0.0, -1.0], [0.0, 1.0, 0.0]]
    assert pose.rotation.determinant() == pytest.approx(-1.0)
    m = pose.matrix()
    assert m.to_3x3().determinant() == pytest.approx(-1.0)
    assert tuple(m.col[0])[:3] == (-1.0, 0.0, 0.0)


def test_jnt0_without_frames():
    data = nf.bca0([("empty", nf.jac_record(0, 1, [0.0, 1.0]))])
    c = read_container(data)
    with pytest.raises(MalformedContainer):
        read_jnt0(c, c.section("JNT0"))


def _animated_model(model_file, loop: bool):
    anim_file = nf.bca0([("walk", nf.jac_record(2, 1, [0.0, 1.0]))])
    (model,) = assemble(
        [("m.nsbmd", model_file), ("m.nsbca", anim_file)],
        AssembleOptions(loop_animations=loop),
    )
    (anim,) = model.animations
    (track,) = anim.tracks
    return anim, track


def test_looping_two_frame_animation(model_file):
    anim, track = _animated_model(model_file, loop=True)
    assert anim.loop
    assert track.target_kind == "joint"
    assert track.target == 0
    assert track.sample(4).translation.x == 0.0
    assert track.sample(5).translation.x == 1.0


def test_clamped_two_frame_animation(model_file):
    _, track = _animated_model(model_file, loop=False)
    assert track.sample(4).translation.x == 1.0
    assert track.sample(5).translation.x == 1.0
    assert track.sample(-3).translation.x == 0.0


def test_pose_matrix(model_file):
    _, track = _animated_model(model_file, loop=True)
    m = track.sample(1).matrix()
    assert tuple(m.translation) == pytest.approx((1.0, 0.0, 0.0))
