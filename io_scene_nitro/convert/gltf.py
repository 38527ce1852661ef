"""glTF 2.0 writer (separate .gltf/.bin or a single GLB).

Layout:
- nodes 0..J-1 are the joints (node index == joint id), followed by one node
  per mesh carrying the shared skin
- all binary data lives in one buffer built with numpy
- material tracks have no glTF channel; their per-frame samples go into
  `extras`
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from pygltflib import (
    GLTF2,
    Accessor,
    Animation,
    AnimationChannel,
    AnimationChannelTarget,
    AnimationSampler,
    Asset,
    Attributes,
    Buffer,
    BufferView,
    Image,
    Material,
    Mesh,
    Node,
    PbrMetallicRoughness,
    Primitive,
    Sampler,
    Scene,
    Skin,
    Texture,
    TextureInfo,
)

from ..core.container import safe_name
from ..core.types import Model
from ..core.types import Texture as NitroTexture
from .common import (
    flatten_mesh,
    frame_times,
    joint_names,
    make_invertible,
    material_sample_value,
    matrix_columns,
    mesh_names,
    sample_track_frames,
)
from .images import encode_png, image_filename
from .options import ExportOptions

_log = logging.getLogger(__name__)

_UNSIGNED_BYTE = 5121
_UNSIGNED_SHORT = 5123
_UNSIGNED_INT = 5125
_FLOAT = 5126

_ARRAY_BUFFER = 34962
_ELEMENT_ARRAY_BUFFER = 34963

_NEAREST = 9728
_CLAMP_TO_EDGE = 33071
_MIRRORED_REPEAT = 33648
_REPEAT = 10497

_UNLIT = "KHR_materials_unlit"

_TYPES = {1: "SCALAR", 2: "VEC2", 3: "VEC3", 4: "VEC4", 16: "MAT4"}


class _BufferBuilder:
    """Accumulates the single binary buffer and its views/accessors."""

    __slots__ = ("data", "views", "accessors")

    def __init__(self) -> None:
        self.data = bytearray()
        self.views: List[BufferView] = []
        self.accessors: List[Accessor] = []

    def add_view(self, blob: bytes, target: Optional[int] = None) -> int:
        while len(self.data) % 4:
            self.data.append(0)
        self.views.append(
            BufferView(buffer=0, byteOffset=len(self.data), byteLength=len(blob), target=target)
        )
        self.data += blob
        return len(self.views) - 1

    def add_accessor(
        self,
        arr: np.ndarray,
        component_type: int,
        *,
        target: Optional[int] = None,
        minmax: bool = False,
    ) -> int:
        width = 1 if arr.ndim == 1 else int(arr.shape[1])
        view = self.add_view(arr.tobytes(), target)
        acc = Accessor(
            bufferView=view,
            byteOffset=0,
            componentType=component_type,
            count=int(arr.shape[0]),
            type=_TYPES[width],
        )
        if minmax and arr.shape[0]:
            flat = arr.reshape(arr.shape[0], width)
            acc.min = [_py(x) for x in flat.min(axis=0)]
            acc.max = [_py(x) for x in flat.max(axis=0)]
        self.accessors.append(acc)
        return len(self.accessors) - 1


def _py(x: Any) -> Any:
    return float(x) if isinstance(x, np.floating) else int(x)


def _wrap(repeat: bool, mirror: bool) -> int:
    if not repeat:
        return _CLAMP_TO_EDGE
    return _MIRRORED_REPEAT if mirror else _REPEAT


def _alpha_mode(tex: Optional[NitroTexture], alpha: float) -> str:
    if alpha < 1.0:
        return "BLEND"
    if tex is None or not tex.has_alpha:
        return "OPAQUE"
    if all(a in (0, 0xFF) for a in tex.rgba[3::4]):
        return "MASK"
    return "BLEND"


def _build(model: Model, options: ExportOptions, *, glb: bool) -> Tuple[GLTF2, bytes, Dict[str, bytes]]:
    buf = _BufferBuilder()
    gltf = GLTF2(asset=Asset(generator="io_scene_nitro", version="2.0"))
    sibling_images: Dict[str, bytes] = {}
    used_unlit = False

    # Images, samplers and textures, one each per model texture.
    for tex in model.textures:
        png = encode_png(tex)
        if glb or options.embed_images:
            gltf.images.append(Image(name=tex.name, mimeType="image/png", bufferView=buf.add_view(png)))
        else:
            fname = image_filename(tex)
            sibling_images[fname] = png
            gltf.images.append(Image(name=tex.name, uri=options.image_dir + fname))

    tex_slots: Dict[tuple, int] = {}
    for mat in model.materials:
        tex = model.textures[mat.texture] if mat.texture is not None else None
        pbr = PbrMetallicRoughness(metallicFactor=0.0, roughnessFactor=1.0)
        if tex is not None:
            key = (mat.texture, _wrap(mat.repeat_s, mat.mirror_s), _wrap(mat.repeat_t, mat.mirror_t))
            slot = tex_slots.get(key)
            if slot is None:
                gltf.samplers.append(
                    Sampler(magFilter=_NEAREST, minFilter=_NEAREST, wrapS=key[1], wrapT=key[2])
                )
                gltf.textures.append(Texture(sampler=len(gltf.samplers) - 1, source=mat.texture))
                slot = tex_slots[key] = len(gltf.textures) - 1
            pbr.baseColorTexture = TextureInfo(index=slot)
        if tex is not None or mat.default_vertex_color is not None:
            pbr.baseColorFactor = [1.0, 1.0, 1.0, float(mat.alpha)]
        else:
            pbr.baseColorFactor = [*map(float, mat.diffuse), float(mat.alpha)]
        alpha_mode = _alpha_mode(tex, mat.alpha)
        gmat = Material(
            name=mat.name,
            pbrMetallicRoughness=pbr,
            alphaMode=alpha_mode,
            doubleSided=not mat.cull_back and not mat.cull_front,
            extensions={_UNLIT: {}},
        )
        if alpha_mode == "MASK":
            gmat.alphaCutoff = 0.5
        gltf.materials.append(gmat)
        used_unlit = True

    # Joint nodes.
    sids = joint_names(model)
    for j in model.joints:
        t, r, s = j.local_matrix.decompose()
        gltf.nodes.append(
            Node(
                name=sids[j.id],
                translation=[float(t.x), float(t.y), float(t.z)],
                rotation=[float(r.x), float(r.y), float(r.z), float(r.w)],
                scale=[float(s.x), float(s.y), float(s.z)],
                children=[c.id for c in model.children(j.id)] or None,
            )
        )
    scene_nodes = [j.id for j in model.roots()]

    if model.meshes:
        inv = np.array(
            [matrix_columns(make_invertible(j.bind_matrix).inverted()) for j in model.joints],
            dtype=np.float32,
        )
        gltf.skins.append(
            Skin(
                inverseBindMatrices=buf.add_accessor(inv, _FLOAT),
                joints=[j.id for j in model.joints],
                skeleton=scene_nodes[0] if len(scene_nodes) == 1 else None,
            )
        )

    joint_type = _UNSIGNED_SHORT if len(model.joints) > 255 else _UNSIGNED_BYTE
    joint_dtype = np.uint16 if joint_type == _UNSIGNED_SHORT else np.uint8
    names = mesh_names(model.meshes)
    for k, mesh in enumerate(model.meshes):
        flat = flatten_mesh(mesh)
        n = flat.vertex_count
        attrs = Attributes(
            POSITION=buf.add_accessor(flat.positions, _FLOAT, target=_ARRAY_BUFFER, minmax=True)
        )
        if flat.normals is not None:
            attrs.NORMAL = buf.add_accessor(flat.normals, _FLOAT, target=_ARRAY_BUFFER, minmax=True)
        if flat.texcoords is not None:
            attrs.TEXCOORD_0 = buf.add_accessor(flat.texcoords, _FLOAT, target=_ARRAY_BUFFER, minmax=True)
        if flat.colors is not None:
            attrs.COLOR_0 = buf.add_accessor(flat.colors, _FLOAT, target=_ARRAY_BUFFER)
        joints = np.zeros((n, 4), dtype=joint_dtype)
        joints[:, 0] = flat.joints
        weights = np.zeros((n, 4), dtype=np.float32)
        weights[:, 0] = 1.0
        attrs.JOINTS_0 = buf.add_accessor(joints, joint_type, target=_ARRAY_BUFFER, minmax=True)
        attrs.WEIGHTS_0 = buf.add_accessor(weights, _FLOAT, target=_ARRAY_BUFFER)

        if n < 0xFFFF:
            indices = buf.add_accessor(
                flat.indices.astype(np.uint16), _UNSIGNED_SHORT, target=_ELEMENT_ARRAY_BUFFER
            )
        else:
            indices = buf.add_accessor(flat.indices, _UNSIGNED_INT, target=_ELEMENT_ARRAY_BUFFER)

        gltf.meshes.append(
            Mesh(name=names[k], primitives=[Primitive(attributes=attrs, indices=indices, material=mesh.material)])
        )
        gltf.nodes.append(Node(name=names[k], mesh=k, skin=0))
        scene_nodes.append(len(gltf.nodes) - 1)

    _animations(gltf, buf, model, options)

    gltf.scenes.append(Scene(name=model.name, nodes=scene_nodes or None))
    gltf.scene = 0
    if used_unlit:
        gltf.extensionsUsed = [_UNLIT]

    gltf.accessors = buf.accessors
    gltf.bufferViews = buf.views
    blob = bytes(buf.data)
    if blob:
        gltf.buffers.append(Buffer(byteLength=len(blob)))
    return gltf, blob, sibling_images


def _material_tracks(model: Model, anim) -> List[Dict[str, Any]]:
    return [
        {
            "material": model.materials[t.target].name,
            "channel": t.channel,
            "samples": [material_sample_value(model, s) for s in sample_track_frames(t)],
        }
        for t in anim.tracks
        if t.target_kind == "material"
    ]


def _animations(gltf: GLTF2, buf: _BufferBuilder, model: Model, options: ExportOptions) -> None:
    material_only: List[Dict[str, Any]] = []
    for anim in model.animations:
        extras = {"frame_count": anim.frame_count, "loop": anim.loop}
        mat_tracks = _material_tracks(model, anim)
        joint_tracks = [t for t in anim.tracks if t.target_kind == "joint"]
        if not joint_tracks:
            material_only.append({"name": anim.name, **extras, "material_tracks": mat_tracks})
            continue
        if mat_tracks:
            extras["material_tracks"] = mat_tracks

        times = buf.add_accessor(frame_times(anim.frame_count, options.frame_rate), _FLOAT, minmax=True)
        samplers: List[AnimationSampler] = []
        channels: List[AnimationChannel] = []
        for t in joint_tracks:
            trs = [p.matrix().decompose() for p in sample_track_frames(t)]
            outputs = {
                "translation": np.array([tuple(loc) for loc, _, _ in trs], dtype=np.float32),
                "rotation": np.array([(q.x, q.y, q.z, q.w) for _, q, _ in trs], dtype=np.float32),
                "scale": np.array([tuple(s) for _, _, s in trs], dtype=np.float32),
            }
            for path, arr in outputs.items():
                samplers.append(
                    AnimationSampler(input=times, output=buf.add_accessor(arr, _FLOAT), interpolation="LINEAR")
                )
                channels.append(
                    AnimationChannel(
                        sampler=len(samplers) - 1, target=AnimationChannelTarget(node=t.target, path=path)
                    )
                )
        gltf.animations.append(Animation(name=anim.name, samplers=samplers, channels=channels, extras=extras))

    if material_only:
        gltf.extras = {"material_animations": material_only}


def export_gltf(model: Model, options: Optional[ExportOptions] = None) -> Dict[str, bytes]:
    """{name.gltf, name.bin, sibling PNGs} for one model."""
    options = options or ExportOptions()
    gltf, blob, images = _build(model, options, glb=False)
    _log.debug("gltf: %s with %d meshes", model.name, len(model.meshes))
    base = safe_name(model.name)
    out: Dict[str, bytes] = {}
    if blob:
        gltf.buffers[0].uri = f"{base}.bin"
        out[f"{base}.bin"] = blob
    out[f"{base}.gltf"] = gltf.to_json().encode("utf-8")
    out.update(images)
    return out


def export_glb(model: Model, options: Optional[ExportOptions] = None) -> bytes:
    """One GLB container holding the document and its buffer."""
    options = options or ExportOptions()
    gltf, blob, _ = _build(model, options, glb=True)
    _log.debug("glb: %s with %d meshes", model.name, len(model.meshes))
    if blob:
        gltf.set_binary_blob(blob)
    return b"".join(gltf.save_to_bytes())


def export(model: Model, options: Optional[ExportOptions] = None) -> Dict[str, bytes]:
    """Output files keyed by name, GLB or .gltf/.bin depending on `options.binary`."""
    options = options or ExportOptions()
    if options.binary:
        return {f"{safe_name(model.name)}.glb": export_glb(model, options)}
    return export_gltf(model, options)
