from __future__ import annotations

import base64
import json
import xml.etree.ElementTree as ET

import pytest

import nitro_files as nf
from io_scene_nitro.convert.collada import COLLADA_NS, export_collada, export_images
from io_scene_nitro.convert.options import ExportOptions
from io_scene_nitro.core.assemble import assemble

NS = {"c": COLLADA_NS}


def parse(doc: bytes) -> ET.Element:
    assert doc.startswith(b"<?xml")
    return ET.fromstring(doc)


def floats(el: ET.Element):
    return [float(x) for x in el.text.split()]


def test_one_triangle_round_trip(textured_model):
    root = parse(export_collada(textured_model))
    assert root.tag == f"{{{COLLADA_NS}}}COLLADA"
    assert root.get("version") == "1.4.1"
    assert root.find("c:asset/c:up_axis", NS).text == "Y_UP"

    (geom,) = root.findall("c:library_geometries/c:geometry", NS)
    assert geom.get("name") == "tri"
    tris = geom.find("c:mesh/c:triangles", NS)
    assert tris.get("count") == "1"
    assert tris.get("material") == "material0"
    assert [int(x) for x in tris.find("c:p", NS).text.split()] == [0, 1, 2]

    pos = geom.find("c:mesh/c:source[@id='geometry0-positions']/c:float_array", NS)
    assert floats(pos) == [1.0, 2.0, 3.0, 2.0, 2.0, 3.0, 1.0, 3.0, 3.0]
    uv = geom.find("c:mesh/c:source[@id='geometry0-texcoords']/c:float_array", NS)
    assert floats(uv) == [0.0, 1.0, 1.0, 1.0, 0.0, 0.0]


def test_skin_controller(textured_model):
    root = parse(export_collada(textured_model))
    skin = root.find("c:library_controllers/c:controller[@id='controller0']/c:skin", NS)
    assert skin.get("source") == "#geometry0"
    names = skin.find("c:source[@id='controller0-joints']/c:Name_array", NS)
    assert names.text.split() == ["root"]
    inv = floats(skin.find("c:source[@id='controller0-bind-poses']/c:float_array", NS))
    assert len(inv) == 16
    assert (inv[3], inv[7], inv[11]) == (-1.0, -2.0, -3.0)
    vw = skin.find("c:vertex_weights", NS)
    assert vw.get("count") == "3"
    assert vw.find("c:vcount", NS).text.split() == ["1", "1", "1"]
    assert vw.find("c:v", NS).text.split() == ["0", "0"] * 3


def test_visual_scene(textured_model):
    root = parse(export_collada(textured_model))
    scene = root.find("c:library_visual_scenes/c:visual_scene", NS)
    joint = scene.find("c:node[@id='joint0']", NS)
    assert joint.get("type") == "JOINT"
    assert joint.get("sid") == "root"
    assert floats(joint.find("c:matrix", NS))[3] == 1.0
    mesh = scene.find("c:node[@id='mesh0']", NS)
    ic = mesh.find("c:instance_controller", NS)
    assert ic.get("url") == "#controller0"
    assert ic.find("c:skeleton", NS).text == "#joint0"
    im = ic.find("c:bind_material/c:technique_common/c:instance_material", NS)
    assert im.get("target") == "#material0"
    assert root.find("c:scene/c:instance_visual_scene", NS).get("url") == "#scene"


def test_embedded_and_sibling_images(textured_model):
    root = parse(export_collada(textured_model))
    uri = root.find("c:library_images/c:image/c:init_from", NS).text
    assert uri.startswith("data:image/png;base64,")
    assert base64.b64decode(uri.split(",", 1)[1]).startswith(b"\x89PNG")

    opts = ExportOptions(embed_images=False, image_dir="textures/", up_axis="Z_UP")
    root = parse(export_collada(textured_model, opts))
    assert root.find("c:library_images/c:image/c:init_from", NS).text == "textures/tex_pal.png"
    assert root.find("c:asset/c:up_axis", NS).text == "Z_UP"

    files = export_images(textured_model)
    assert list(files) == ["tex_pal.png"]
    assert files["tex_pal.png"].startswith(b"\x89PNG")


def test_double_sided_material(textured_model):
    root = parse(export_collada(textured_model))
    effect = root.find("c:library_effects/c:effect", NS)
    assert effect.find(".//c:double_sided", NS).text == "1"
    assert effect.find(".//c:wrap_s", NS).text == "CLAMP"


def test_joint_animation(model_file, texture_file):
    anim_file = nf.bca0([("walk", nf.jac_record(2, 1, [0.0, 1.0]))])
    (model,) = assemble([model_file, texture_file, anim_file])
    root = parse(export_collada(model, ExportOptions(frame_rate=30.0)))
    anim = root.find("c:library_animations/c:animation[@id='anim0-joint0']", NS)
    times = floats(anim.find("c:source[@id='anim0-joint0-time']/c:float_array", NS))
    assert times == pytest.approx([0.0, 1 / 30])
    mats = floats(anim.find("c:source[@id='anim0-joint0-matrix']/c:float_array", NS))
    assert len(mats) == 32
    assert (mats[3], mats[16 + 3]) == (0.0, 1.0)
    assert anim.find("c:channel", NS).get("target") == "joint0/transform"
    clip = root.find("c:library_animation_clips/c:animation_clip", NS)
    assert clip.get("name") == "walk"
    assert clip.find("c:instance_animation", NS).get("url") == "#anim0-joint0"


def test_material_tracks_go_to_extra(model_file, texture_file):
    srt = nf.bta0([("scroll", nf.srt_record(2, [("mat", [0.0, 0.5], [0.0])]))])
    (model,) = assemble([model_file, texture_file, srt])
    root = parse(export_collada(model))
    tech = root.find("c:extra/c:technique[@profile='io_scene_nitro']", NS)
    el = tech.find("c:material_animation", NS)
    assert el.get("name") == "scroll"
    assert el.get("frame_count") == "2"
    track = el.find("c:track", NS)
    assert track.get("material") == "material0"
    assert track.get("channel") == "uv"
    assert json.loads(track.text) == [[0.0, 0.0], [0.5, 0.0]]


def test_export_with_missing_texture():
    (model,) = assemble([nf.bmd0()])
    assert len(model.unresolved) == 1
    root = parse(export_collada(model))
    assert root.find("c:library_images", NS) is None
    assert root.find("c:library_geometries/c:geometry", NS) is not None


def test_export_is_deterministic(textured_model):
    assert export_collada(textured_model) == export_collada(textured_model)
