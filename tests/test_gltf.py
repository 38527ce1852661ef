from __future__ import annotations

import json
import struct

import numpy as np
import pytest
from pygltflib import GLTF2

import nitro_files as nf
from io_scene_nitro.convert.gltf import export, export_glb, export_gltf
from io_scene_nitro.convert.options import ExportOptions
from io_scene_nitro.core.assemble import assemble
from io_scene_nitro.core.types import Model


def parse_glb(data: bytes):
    magic, version, length = struct.unpack_from("<4sII", data, 0)
    assert (magic, version, length) == (b"glTF", 2, len(data))
    json_len, json_type = struct.unpack_from("<II", data, 12)
    assert json_type == 0x4E4F534A
    doc = data[20 : 20 + json_len]
    bin_len, bin_type = struct.unpack_from("<II", data, 20 + json_len)
    assert bin_type == 0x004E4942
    blob = data[28 + json_len : 28 + json_len + bin_len]
    return GLTF2.from_json(doc.decode("utf-8")), blob


def read_accessor(gltf: GLTF2, blob: bytes, index: int) -> np.ndarray:
    acc = gltf.accessors[index]
    view = gltf.bufferViews[acc.bufferView]
    dtype = {5121: np.uint8, 5123: np.uint16, 5125: np.uint32, 5126: np.float32}[acc.componentType]
    width = {"SCALAR": 1, "VEC2": 2, "VEC3": 3, "VEC4": 4, "MAT4": 16}[acc.type]
    arr = np.frombuffer(blob, dtype=dtype, count=acc.count * width, offset=view.byteOffset + (acc.byteOffset or 0))
    return arr.reshape(acc.count, width)


def test_glb_one_triangle_round_trip(textured_model):
    gltf, blob = parse_glb(export_glb(textured_model))
    assert gltf.asset.version == "2.0"
    assert len(gltf.buffers) == 1
    assert gltf.buffers[0].byteLength <= len(blob)

    (mesh,) = gltf.meshes
    (prim,) = mesh.primitives
    assert prim.material == 0
    pos = read_accessor(gltf, blob, prim.attributes.POSITION)
    assert pos.tolist() == [[1.0, 2.0, 3.0], [2.0, 2.0, 3.0], [1.0, 3.0, 3.0]]
    assert gltf.accessors[prim.attributes.POSITION].min == [1.0, 2.0, 3.0]
    assert gltf.accessors[prim.attributes.POSITION].max == [2.0, 3.0, 3.0]
    assert read_accessor(gltf, blob, prim.indices).ravel().tolist() == [0, 1, 2]
    assert read_accessor(gltf, blob, prim.attributes.TEXCOORD_0).tolist() == [[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]]

    joints = read_accessor(gltf, blob, prim.attributes.JOINTS_0)
    assert gltf.accessors[prim.attributes.JOINTS_0].componentType == 5121
    assert joints.tolist() == [[0, 0, 0, 0]] * 3
    weights = read_accessor(gltf, blob, prim.attributes.WEIGHTS_0)
    assert weights.tolist() == [[1.0, 0.0, 0.0, 0.0]] * 3


def test_glb_nodes_and_skin(textured_model):
    gltf, blob = parse_glb(export_glb(textured_model))
    joint, mesh_node = gltf.nodes
    assert joint.name == "root"
    assert joint.translation == pytest.approx([1.0, 2.0, 3.0])
    assert joint.rotation == pytest.approx([0.0, 0.0, 0.0, 1.0])
    assert (mesh_node.mesh, mesh_node.skin) == (0, 0)
    assert gltf.scenes[gltf.scene].nodes == [0, 1]

    (skin,) = gltf.skins
    assert skin.joints == [0]
    inv = read_accessor(gltf, blob, skin.inverseBindMatrices)
    # Column-major: translation in the last column.
    assert inv[0][12:15].tolist() == [-1.0, -2.0, -3.0]


def test_glb_material_and_image(textured_model):
    gltf, blob = parse_glb(export_glb(textured_model))
    (mat,) = gltf.materials
    assert mat.doubleSided
    assert mat.alphaMode == "OPAQUE"
    assert mat.pbrMetallicRoughness.baseColorTexture.index == 0
    assert "KHR_materials_unlit" in gltf.extensionsUsed

    (sampler,) = gltf.samplers
    assert (sampler.magFilter, sampler.minFilter) == (9728, 9728)
    assert (sampler.wrapS, sampler.wrapT) == (33071, 33071)

    (image,) = gltf.images
    assert image.mimeType == "image/png"
    view = gltf.bufferViews[image.bufferView]
    assert blob[view.byteOffset : view.byteOffset + 8] == b"\x89PNG\r\n\x1a\n"


def test_separate_files_with_sibling_images(textured_model):
    files = export_gltf(textured_model, ExportOptions(binary=False, embed_images=False, image_dir="img/"))
    assert set(files) == {"model.gltf", "model.bin", "tex_pal.png"}
    doc = json.loads(files["model.gltf"])
    assert doc["buffers"][0]["uri"] == "model.bin"
    assert doc["buffers"][0]["byteLength"] == len(files["model.bin"])
    assert doc["images"][0]["uri"] == "img/tex_pal.png"
    assert files["tex_pal.png"].startswith(b"\x89PNG")


def test_export_follows_binary_option(textured_model):
    assert list(export(textured_model)) == ["model.glb"]
    assert set(export(textured_model, ExportOptions(binary=False))) == {"model.gltf", "model.bin"}


def test_joint_animation_channels(model_file, texture_file):
    anim_file = nf.bca0([("walk", nf.jac_record(2, 1, [0.0, 1.0]))])
    (model,) = assemble([model_file, texture_file, anim_file])
    gltf, blob = parse_glb(export_glb(model))
    (anim,) = gltf.animations
    assert anim.name == "walk"
    assert anim.extras["frame_count"] == 2
    assert sorted(c.target.path for c in anim.channels) == ["rotation", "scale", "translation"]
    assert {c.target.node for c in anim.channels} == {0}

    sampler = anim.samplers[0]
    assert sampler.interpolation == "LINEAR"
    times = read_accessor(gltf, blob, sampler.input)
    assert times.ravel().tolist() == pytest.approx([0.0, 1 / 60])
    assert gltf.accessors[sampler.input].max == pytest.approx([1 / 60])

    (translation,) = [c for c in anim.channels if c.target.path == "translation"]
    out = read_accessor(gltf, blob, anim.samplers[translation.sampler].output)
    assert out.tolist() == [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]]


def test_material_only_animation_goes_to_extras(model_file, texture_file):
    srt = nf.bta0([("scroll", nf.srt_record(2, [("mat", [0.0, 0.5], [0.0])]))])
    (model,) = assemble([model_file, texture_file, srt])
    gltf, _ = parse_glb(export_glb(model))
    assert not gltf.animations
    (entry,) = gltf.extras["material_animations"]
    assert entry["name"] == "scroll"
    (track,) = entry["material_tracks"]
    assert track["material"] == "mat"
    assert track["channel"] == "uv"
    assert track["samples"] == [[0.0, 0.0], [0.5, 0.0]]


def test_empty_model_scene_has_no_nodes():
    model = Model(name="empty", joints=(), meshes=(), materials=(), textures=())
    files = export_gltf(model)
    assert set(files) == {"empty.gltf"}
    doc = json.loads(files["empty.gltf"])
    (scene,) = doc["scenes"]
    assert "nodes" not in scene
    assert "buffers" not in doc
