"""MDL0 model section parsing.

A MDL0 section holds one or more models. Each model carries:
- objects (joint-local TRS transforms)
- inverse bind matrices used by skinning render commands
- materials and their texture/palette name pairings
- meshes (GPU command buffers)
- the render command list that ties all of the above together
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from mathutils import Matrix

from ..errors import MalformedContainer
from .binreader import _BinReader
from .container import NitroContainer, Section, read_info_block
from .fixed import bits, fx16, fx32, rgb555
from .render_cmds import decode_render_ops
from .rotation import pivot_mat
from .texture import TextureParams
from .types import RGB, LocalTransform

_log = logging.getLogger(__name__)

_MODEL_HEADER_SIZE = 64
_INV_BIND_SIZE = (4 * 3 + 3 * 3) * 4


@dataclass(frozen=True)
class ObjectDef:
    name: str
    local: LocalTransform
    matrix: Matrix


@dataclass(frozen=True)
class MeshDef:
    name: str
    commands: bytes


@dataclass(frozen=True)
class MaterialDef:
    name: str
    params: TextureParams
    width: int
    height: int
    diffuse: RGB
    diffuse_is_default_vertex_color: bool
    ambient: RGB
    specular: RGB
    emission: RGB
    alpha: float
    cull_back: bool
    cull_front: bool
    texture_scale: Optional[Tuple[float, float]] = None
    texture_name: Optional[str] = None
    palette_name: Optional[str] = None


@dataclass(frozen=True)
class ModelDef:
    name: str
    source: str
    byte_order: str
    objects: Tuple[ObjectDef, ...]
    materials: Tuple[MaterialDef, ...]
    meshes: Tuple[MeshDef, ...]
    inv_binds: Tuple[Matrix, ...]
    render_ops: Tuple[object, ...]
    up_scale: float
    down_scale: float


def read_mdl0(container: NitroContainer, section: Section) -> List[ModelDef]:
    r = container.reader(section)
    stamp = r.read(4)
    if stamp != b"MDL0":
        raise MalformedContainer("bad MDL0 stamp", offset=section.offset, expected=b"MDL0", found=stamp)
    r.u32()
    models: List[ModelDef] = []
    for datum, name in read_info_block(r, 4):
        (off,) = struct.unpack(container.byte_order + "I", datum)
        models.append(_read_model(container, section, off, name))
    return models


def _read_model(container: NitroContainer, section: Section, base: int, name: str) -> ModelDef:
    r = container.reader(section, base)
    r.u32()
    render_cmds_off = r.u32()
    materials_off = r.u32()
    mesh_off = r.u32()
    inv_binds_off = r.u32()
    r.skip(3)
    num_objects = r.u8()
    _num_materials = r.u8()
    _num_meshes = r.u8()
    r.skip(2)
    up_scale = fx32(r.u32())
    down_scale = fx32(r.u32())
    r.skip(4 * 2 + 6 * 2 + 8)

    objects = _read_objects(container, section, base + _MODEL_HEADER_SIZE)
    materials = _read_materials(container, section, base + materials_off)
    meshes = _read_meshes(container, section, base + mesh_off)
    inv_binds = _read_inv_binds(container, section, base + inv_binds_off, num_objects)

    cmds_start = container.resolve(section, base + render_cmds_off)
    render_ops = decode_render_ops(container.data[cmds_start : section.end])

    _log.debug(
        "%s: model %r: %d objects, %d materials, %d meshes, %d inverse binds",
        container.name,
        name,
        len(objects),
        len(materials),
        len(meshes),
        len(inv_binds),
    )
    return ModelDef(
        name=name,
        source=container.name,
        byte_order=container.byte_order,
        objects=tuple(objects),
        materials=tuple(materials),
        meshes=tuple(meshes),
        inv_binds=tuple(inv_binds),
        render_ops=tuple(render_ops),
        up_scale=up_scale,
        down_scale=down_scale,
    )


def _offsets(r: _BinReader, byte_order: str) -> List[Tuple[int, str]]:
    return [(struct.unpack(byte_order + "I", d)[0], n) for d, n in read_info_block(r, 4)]


def _read_objects(container: NitroContainer, section: Section, base: int) -> List[ObjectDef]:
    r = container.reader(section, base)
    return [
        _read_object(container.reader(section, base + off), name)
        for off, name in _offsets(r, container.byte_order)
    ]


def _read_object(r: _BinReader, name: str) -> ObjectDef:
    flags = r.u16()
    m0 = r.u16()
    translation = None
    rotation = None
    scale = None

    if bits(flags, 0, 1) == 0:
        translation = tuple(fx32(v) for v in r.u32s(3))

    if bits(flags, 3, 4) == 1:
        a = fx16(r.u16())
        b = fx16(r.u16())
        m = pivot_mat(bits(flags, 4, 8), bits(flags, 8, 12), a, b)
        rotation = tuple(tuple(row) for row in m)
    elif bits(flags, 1, 2) == 0:
        # Column-major, m0 being the first entry.
        vals = [fx16(m0)] + [fx16(v) for v in r.u16s(8)]
        rotation = tuple(tuple(vals[c * 3 + row] for c in range(3)) for row in range(3))

    if bits(flags, 2, 3) == 0:
        scale = tuple(fx32(v) for v in r.u32s(3))

    local = LocalTransform(translation=translation, rotation=rotation, scale=scale)
    return ObjectDef(name=name, local=local, matrix=local.matrix())


def _read_inv_binds(container: NitroContainer, section: Section, base: int, count: int) -> List[Matrix]:
    # Each entry is a 4x3 inverse bind followed by a 3x3 we ignore. Only as
    # many entries as fit in the section are read.
    out: List[Matrix] = []
    if base >= section.size:
        return out
    r = container.reader(section, base)
    for _ in range(count):
        if r.tell + _INV_BIND_SIZE > section.end:
            break
        e = [fx32(v) for v in r.u32s(12)]
        r.skip(9 * 4)
        out.append(
            Matrix(
                (
                    (e[0], e[3], e[6], e[9]),
                    (e[1], e[4], e[7], e[10]),
                    (e[2], e[5], e[8], e[11]),
                    (0.0, 0.0, 0.0, 1.0),
                )
            )
        )
    return out


def _read_meshes(container: NitroContainer, section: Section, base: int) -> List[MeshDef]:
    r = container.reader(section, base)
    meshes: List[MeshDef] = []
    for off, name in _offsets(r, container.byte_order):
        mr = container.reader(section, base + off)
        _dummy = mr.u16()
        size = mr.u16()
        if size != 16:
            raise MalformedContainer(
                f"bad mesh record size for {name!r}", offset=mr.tell - 2, expected=16, found=size
            )
        mr.u32()
        cmds_off = mr.u32()
        cmds_len = mr.u32()
        if cmds_len % 4 != 0:
            raise MalformedContainer(
                f"mesh {name!r} command length not word aligned", offset=mr.tell - 4, found=cmds_len
            )
        start = container.resolve(section, base + off + cmds_off, cmds_len)
        meshes.append(MeshDef(name=name, commands=container.data[start : start + cmds_len]))
    return meshes


def _read_materials(container: NitroContainer, section: Section, base: int) -> List[MaterialDef]:
    r = container.reader(section, base)
    tex_pairing_off = r.u16()
    pal_pairing_off = r.u16()
    materials = [
        _read_material(container.reader(section, base + off), name)
        for off, name in _offsets(r, container.byte_order)
    ]

    for field_name, pairing_off in (("texture_name", tex_pairing_off), ("palette_name", pal_pairing_off)):
        pr = container.reader(section, base + pairing_off)
        for datum, pair_name in read_info_block(pr, 4):
            off, num, _ = struct.unpack(container.byte_order + "HBB", datum)
            ids = container.reader(section, base + off).read(num)
            for mat_id in ids:
                if mat_id >= len(materials):
                    raise MalformedContainer(
                        f"{field_name} pairing {pair_name!r} names material {mat_id}",
                        offset=section.offset + base + off,
                        expected=f"< {len(materials)}",
                        found=mat_id,
                    )
                materials[mat_id] = replace(materials[mat_id], **{field_name: pair_name})
    return materials


def _read_material(r: _BinReader, name: str) -> MaterialDef:
    r.u16()
    r.u16()
    dif_amb = r.u32()
    spe_emi = r.u32()
    polygon_attr = r.u32()
    polygon_attr_mask = r.u32()
    teximage_param = r.u32()
    r.u32()
    _pltt_base = r.u16()
    misc = r.u16()
    width = r.u16()
    height = r.u16()
    r.u32()
    r.u32()

    texture_scale = None
    if bits(misc, 0, 1):
        # Optional scale, rotation and translation pairs; only scale is used.
        if bits(misc, 1, 2) == 0:
            texture_scale = (fx32(r.u32()), fx32(r.u32()))
        if bits(misc, 2, 3) == 0:
            r.u16s(2)
        if bits(misc, 3, 4) == 0:
            r.u32s(2)

    return MaterialDef(
        name=name,
        params=TextureParams(teximage_param & polygon_attr_mask),
        width=width,
        height=height,
        diffuse=rgb555(bits(dif_amb, 0, 15)),
        diffuse_is_default_vertex_color=bits(dif_amb, 15, 16) != 0,
        ambient=rgb555(bits(dif_amb, 16, 31)),
        specular=rgb555(bits(spe_emi, 0, 15)),
        emission=rgb555(bits(spe_emi, 16, 31)),
        alpha=bits(polygon_attr, 16, 21) / 31.0,
        cull_back=bits(polygon_attr, 6, 7) == 0,
        cull_front=bits(polygon_attr, 7, 8) == 0,
        texture_scale=texture_scale,
    )
