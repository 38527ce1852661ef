"""COLLADA 1.4.1 writer.

The document carries one geometry and one skin controller per mesh, all
skinned rigidly against a single joint forest, plus per-frame sampled joint
matrices for every joint animation track.
"""

from __future__ import annotations

import base64
import json
import logging
import xml.etree.ElementTree as ET
from typing import Dict, Iterable, List, Optional, Sequence

from mathutils import Matrix

from ..core.types import Animation, Material, Model
from .common import (
    FlatMesh,
    flatten_mesh,
    frame_times,
    joint_names,
    make_invertible,
    material_sample_value,
    matrix_rows,
    mesh_names,
    sample_track_frames,
)
from .images import encode_png, export_images, image_filename
from .options import ExportOptions

_log = logging.getLogger(__name__)

COLLADA_NS = "http://www.collada.org/2005/11/COLLADASchema"
EXTRA_PROFILE = "io_scene_nitro"

# Exports are reproducible, so no wall-clock time goes into the asset block.
_TIMESTAMP = "1970-01-01T00:00:00Z"

__all__ = ["export_collada", "export_images"]


def _floats(values: Iterable[float]) -> str:
    return " ".join(f"{float(v):.7g}" for v in values)


def _ints(values: Iterable[int]) -> str:
    return " ".join(str(int(v)) for v in values)


def _sub(parent: ET.Element, tag: str, text: Optional[str] = None, **attrib: str) -> ET.Element:
    el = ET.SubElement(parent, tag, {k.rstrip("_"): str(v) for k, v in attrib.items()})
    if text is not None:
        el.text = text
    return el


def _source(parent: ET.Element, id: str, values: Sequence, params: Sequence[str], kind: str = "float") -> None:
    """<source> with a float/Name array and a technique_common accessor."""
    stride = len(params) if kind != "float4x4" else 16
    count = len(values) // stride if stride else 0
    src = _sub(parent, "source", id=id)
    if kind == "Name":
        _sub(src, "Name_array", " ".join(values), id=f"{id}-array", count=str(len(values)))
    else:
        _sub(src, "float_array", _floats(values), id=f"{id}-array", count=str(len(values)))
    tc = _sub(src, "technique_common")
    acc = _sub(tc, "accessor", source=f"#{id}-array", count=str(count), stride=str(stride))
    param_type = {"Name": "Name", "float4x4": "float4x4"}.get(kind, "float")
    for p in params:
        _sub(acc, "param", name=p, type=param_type)


def _color(parent: ET.Element, tag: str, rgb: Sequence[float], alpha: float = 1.0) -> None:
    _sub(_sub(parent, tag), "color", _floats((*rgb, alpha)), sid=tag)


def _asset(root: ET.Element, options: ExportOptions) -> None:
    asset = _sub(root, "asset")
    contrib = _sub(asset, "contributor")
    _sub(contrib, "authoring_tool", "io_scene_nitro")
    _sub(asset, "created", _TIMESTAMP)
    _sub(asset, "modified", _TIMESTAMP)
    _sub(asset, "unit", name="meter", meter="1")
    _sub(asset, "up_axis", options.up_axis)


def _library_images(root: ET.Element, model: Model, options: ExportOptions) -> None:
    if not model.textures:
        return
    lib = _sub(root, "library_images")
    for tex in model.textures:
        img = _sub(lib, "image", id=f"image-{tex.name}", name=tex.name)
        if options.embed_images:
            uri = "data:image/png;base64," + base64.b64encode(encode_png(tex)).decode("ascii")
        else:
            uri = options.image_dir + image_filename(tex)
        _sub(img, "init_from", uri)


def _wrap(repeat: bool, mirror: bool) -> str:
    if not repeat:
        return "CLAMP"
    return "MIRROR" if mirror else "WRAP"


def _effect(lib: ET.Element, i: int, mat: Material, model: Model) -> None:
    effect = _sub(lib, "effect", id=f"effect{i}", name=mat.name)
    profile = _sub(effect, "profile_COMMON")
    tex = model.textures[mat.texture] if mat.texture is not None else None
    if tex is not None:
        surf = _sub(_sub(profile, "newparam", sid="Image-surface"), "surface", type="2D")
        _sub(surf, "init_from", f"image-{tex.name}")
        _sub(surf, "format", "A8R8G8B8")
        samp = _sub(_sub(profile, "newparam", sid="Image-sampler"), "sampler2D")
        _sub(samp, "source", "Image-surface")
        _sub(samp, "wrap_s", _wrap(mat.repeat_s, mat.mirror_s))
        _sub(samp, "wrap_t", _wrap(mat.repeat_t, mat.mirror_t))
        for f in ("minfilter", "magfilter", "mipfilter"):
            _sub(samp, f, "NEAREST")

    phong = _sub(_sub(profile, "technique", sid="common"), "phong")
    _color(phong, "emission", mat.emission)
    _color(phong, "ambient", mat.ambient)
    if tex is not None:
        _sub(_sub(phong, "diffuse"), "texture", texture="Image-sampler", texcoord="tc")
    else:
        _color(phong, "diffuse", mat.diffuse, mat.alpha)
    _color(phong, "specular", mat.specular)
    if tex is not None and tex.has_alpha:
        _sub(_sub(phong, "transparent", opaque="A_ONE"), "texture", texture="Image-sampler", texcoord="tc")
    if mat.alpha != 1.0:
        _sub(_sub(phong, "transparency"), "float", _floats((mat.alpha,)))

    if not mat.cull_back and not mat.cull_front:
        tech = _sub(_sub(profile, "extra"), "technique", profile="GOOGLEEARTH")
        _sub(tech, "double_sided", "1")


def _library_materials(root: ET.Element, model: Model) -> None:
    if not model.materials:
        return
    effects = _sub(root, "library_effects")
    for i, mat in enumerate(model.materials):
        _effect(effects, i, mat, model)
    mats = _sub(root, "library_materials")
    for i, mat in enumerate(model.materials):
        m = _sub(mats, "material", id=f"material{i}", name=mat.name)
        _sub(m, "instance_effect", url=f"#effect{i}")


def _geometry(lib: ET.Element, k: int, name: str, flat: FlatMesh, material: Optional[int]) -> None:
    gid = f"geometry{k}"
    mesh = _sub(_sub(lib, "geometry", id=gid, name=name), "mesh")
    _source(mesh, f"{gid}-positions", flat.positions.ravel().tolist(), ("X", "Y", "Z"))
    if flat.normals is not None:
        _source(mesh, f"{gid}-normals", flat.normals.ravel().tolist(), ("X", "Y", "Z"))
    if flat.texcoords is not None:
        # COLLADA puts the texture origin at the bottom left.
        uv = flat.texcoords.copy()
        uv[:, 1] = 1.0 - uv[:, 1]
        _source(mesh, f"{gid}-texcoords", uv.ravel().tolist(), ("S", "T"))
    if flat.colors is not None:
        _source(mesh, f"{gid}-colors", flat.colors.ravel().tolist(), ("R", "G", "B"))

    verts = _sub(mesh, "vertices", id=f"{gid}-vertices")
    _sub(verts, "input", semantic="POSITION", source=f"#{gid}-positions")
    if flat.normals is not None:
        _sub(verts, "input", semantic="NORMAL", source=f"#{gid}-normals")
    if flat.texcoords is not None:
        _sub(verts, "input", semantic="TEXCOORD", source=f"#{gid}-texcoords")
    if flat.colors is not None:
        _sub(verts, "input", semantic="COLOR", source=f"#{gid}-colors")

    attrs = {"count": str(len(flat.indices) // 3)}
    if material is not None:
        attrs["material"] = f"material{material}"
    tris = _sub(mesh, "triangles", **attrs)
    _sub(tris, "input", semantic="VERTEX", source=f"#{gid}-vertices", offset="0")
    _sub(tris, "p", _ints(flat.indices.tolist()))


def _controller(
    lib: ET.Element, k: int, flat: FlatMesh, sids: Sequence[str], inv_binds: Sequence[Matrix]
) -> None:
    cid = f"controller{k}"
    skin = _sub(_sub(lib, "controller", id=cid), "skin", source=f"#geometry{k}")
    _sub(skin, "bind_shape_matrix", _floats(matrix_rows(Matrix.Identity(4))))
    _source(skin, f"{cid}-joints", list(sids), ("JOINT",), kind="Name")
    _source(
        skin,
        f"{cid}-bind-poses",
        [x for m in inv_binds for x in matrix_rows(m)],
        ("TRANSFORM",),
        kind="float4x4",
    )
    _source(skin, f"{cid}-weights", [1.0], ("WEIGHT",))

    joints = _sub(skin, "joints")
    _sub(joints, "input", semantic="JOINT", source=f"#{cid}-joints")
    _sub(joints, "input", semantic="INV_BIND_MATRIX", source=f"#{cid}-bind-poses")

    n = flat.vertex_count
    vw = _sub(skin, "vertex_weights", count=str(n))
    _sub(vw, "input", semantic="JOINT", source=f"#{cid}-joints", offset="0")
    _sub(vw, "input", semantic="WEIGHT", source=f"#{cid}-weights", offset="1")
    _sub(vw, "vcount", _ints([1] * n))
    _sub(vw, "v", _ints(x for j in flat.joints.tolist() for x in (j, 0)))


def _joint_track_animations(
    root: ET.Element, model: Model, options: ExportOptions
) -> Dict[int, List[str]]:
    """<library_animations>; returns the animation ids per clip."""
    clips: Dict[int, List[str]] = {}
    lib: Optional[ET.Element] = None
    for ai, anim in enumerate(model.animations):
        for track in anim.tracks:
            if track.target_kind != "joint":
                continue
            if lib is None:
                lib = _sub(root, "library_animations")
            aid = f"anim{ai}-joint{track.target}"
            clips.setdefault(ai, []).append(aid)
            a = _sub(lib, "animation", id=aid)
            n = track.frame_count
            _source(a, f"{aid}-time", frame_times(n, options.frame_rate).tolist(), ("TIME",))
            mats = [x for pose in sample_track_frames(track) for x in matrix_rows(pose.matrix())]
            _source(a, f"{aid}-matrix", mats, ("TRANSFORM",), kind="float4x4")
            _source(a, f"{aid}-interpolation", ["LINEAR"] * n, ("INTERPOLATION",), kind="Name")
            samp = _sub(a, "sampler", id=f"{aid}-sampler")
            for sem, suffix in (("INPUT", "time"), ("OUTPUT", "matrix"), ("INTERPOLATION", "interpolation")):
                _sub(samp, "input", semantic=sem, source=f"#{aid}-{suffix}")
            _sub(a, "channel", source=f"#{aid}-sampler", target=f"joint{track.target}/transform")
    return clips


def _animation_clips(root: ET.Element, model: Model, clips: Dict[int, List[str]], options: ExportOptions) -> None:
    if not clips:
        return
    lib = _sub(root, "library_animation_clips")
    for ai, ids in clips.items():
        anim = model.animations[ai]
        end = (anim.frame_count - 1) / options.frame_rate
        clip = _sub(lib, "animation_clip", id=f"anim{ai}", name=anim.name, start="0", end=_floats((end,)))
        for aid in ids:
            _sub(clip, "instance_animation", url=f"#{aid}")


def _material_track_extra(root: ET.Element, model: Model, options: ExportOptions) -> None:
    anims: List[Animation] = [a for a in model.animations if any(t.target_kind == "material" for t in a.tracks)]
    if not anims:
        return
    tech = _sub(_sub(root, "extra"), "technique", profile=EXTRA_PROFILE)
    for anim in anims:
        el = _sub(
            tech,
            "material_animation",
            name=anim.name,
            frame_count=str(anim.frame_count),
            frame_rate=_floats((options.frame_rate,)),
            loop="true" if anim.loop else "false",
        )
        for track in anim.tracks:
            if track.target_kind != "material":
                continue
            values = [material_sample_value(model, s) for s in sample_track_frames(track)]
            _sub(
                el,
                "track",
                json.dumps(values, separators=(",", ":")),
                material=f"material{track.target}",
                channel=track.channel,
            )


def _joint_node(parent: ET.Element, model: Model, jid: int, sids: Sequence[str]) -> None:
    j = model.joints[jid]
    node = _sub(parent, "node", id=f"joint{jid}", sid=sids[jid], name=sids[jid], type="JOINT")
    _sub(node, "matrix", _floats(matrix_rows(j.local_matrix)), sid="transform")
    for child in model.children(jid):
        _joint_node(node, model, child.id, sids)


def _visual_scene(root: ET.Element, model: Model, names: Sequence[str], sids: Sequence[str]) -> None:
    scene = _sub(_sub(root, "library_visual_scenes"), "visual_scene", id="scene", name=model.name)
    roots = model.roots()
    for j in roots:
        _joint_node(scene, model, j.id, sids)
    for k, mesh in enumerate(model.meshes):
        node = _sub(scene, "node", id=f"mesh{k}", name=names[k], type="NODE")
        ic = _sub(node, "instance_controller", url=f"#controller{k}")
        for j in roots:
            _sub(ic, "skeleton", f"#joint{j.id}")
        if mesh.material is not None:
            tc = _sub(_sub(ic, "bind_material"), "technique_common")
            im = _sub(tc, "instance_material", symbol=f"material{mesh.material}", target=f"#material{mesh.material}")
            _sub(im, "bind_vertex_input", semantic="tc", input_semantic="TEXCOORD", input_set="0")
    _sub(_sub(root, "scene"), "instance_visual_scene", url="#scene")


def export_collada(model: Model, options: Optional[ExportOptions] = None) -> bytes:
    options = options or ExportOptions()
    root = ET.Element("COLLADA", {"xmlns": COLLADA_NS, "version": "1.4.1"})
    _asset(root, options)
    _library_images(root, model, options)
    _library_materials(root, model)

    if model.meshes:
        names = mesh_names(model.meshes)
        sids = joint_names(model)
        inv_binds = [make_invertible(j.bind_matrix).inverted() for j in model.joints]
        flats = [flatten_mesh(m) for m in model.meshes]
        geoms = _sub(root, "library_geometries")
        for k, (mesh, flat) in enumerate(zip(model.meshes, flats)):
            _geometry(geoms, k, names[k], flat, mesh.material)
        ctrls = _sub(root, "library_controllers")
        for k, flat in enumerate(flats):
            _controller(ctrls, k, flat, sids, inv_binds)
        clips = _joint_track_animations(root, model, options)
        _animation_clips(root, model, clips, options)
        _visual_scene(root, model, names, sids)
    _material_track_extra(root, model, options)

    _log.debug("collada: %s with %d meshes", model.name, len(model.meshes))
    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
