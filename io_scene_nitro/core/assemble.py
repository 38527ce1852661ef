"""Scene assembly: Nitro files in, immutable `Model`s out.

`ModelBuilder` collects decoded sections from any number of files, then
`build` interprets each model and connects it to the textures, palettes and
animations it refers to by name. References that cannot be resolved are
recorded on the Model instead of failing the build.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..errors import UnresolvedReference
from .container import NitroContainer, read_container, safe_name
from .interpreter import InterpretedModel, interpret_model
from .lz import maybe_decompress
from .material_motion import Pattern, PatternTrack, SRTAnimation, read_pat0, read_srt0
from .mdl import MaterialDef, ModelDef, read_mdl0
from .motion import JointAnimation, TRSCurves, read_jnt0
from .texture import PaletteInfo, TextureBlock, TextureInfo, read_tex0, texture_raster
from .types import (
    Animation,
    AnimationTrack,
    ImageSwap,
    Joint,
    JointId,
    Material,
    Mesh,
    Model,
    Palette,
    Texture,
    TextureTransform,
)

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssembleOptions:
    loop_animations: bool = True
    apply_animations: bool = True
    # Attach joint animations even when their object count differs from the
    # model's.
    all_animations: bool = False

    def to_json(self) -> str:
        return json.dumps(
            {
                "v": 1,
                "loop_animations": bool(self.loop_animations),
                "apply_animations": bool(self.apply_animations),
                "all_animations": bool(self.all_animations),
            },
            separators=(",", ":"),
            sort_keys=True,
        )


def assemble_options_from_json(s: str) -> AssembleOptions:
    obj = json.loads(s)
    if not isinstance(obj, dict):
        raise ValueError("assemble options json must be an object")
    v = int(obj.get("v", 1))
    if v != 1:
        raise ValueError(f"unsupported assemble options version: {v}")
    out = {}
    for key in ("loop_animations", "apply_animations", "all_animations"):
        if key in obj:
            if not isinstance(obj[key], bool):
                raise ValueError(f"assemble option {key} must be a boolean")
            out[key] = obj[key]
    return AssembleOptions(**out)


@dataclass(frozen=True)
class _Source:
    name: str
    models: Tuple[ModelDef, ...] = ()
    textures: Tuple[TextureBlock, ...] = ()
    animations: Tuple[JointAnimation, ...] = ()
    patterns: Tuple[Pattern, ...] = ()
    srt_animations: Tuple[SRTAnimation, ...] = ()


def _read_source(container: NitroContainer) -> _Source:
    models: List[ModelDef] = []
    textures: List[TextureBlock] = []
    animations: List[JointAnimation] = []
    patterns: List[Pattern] = []
    srts: List[SRTAnimation] = []
    for section in container.sections:
        if section.name == "MDL0":
            models.extend(read_mdl0(container, section))
        elif section.name == "TEX0":
            textures.append(read_tex0(container, section))
        elif section.name == "JNT0":
            animations.extend(read_jnt0(container, section))
        elif section.name == "PAT0":
            patterns.extend(read_pat0(container, section))
        elif section.name == "SRT0":
            srts.extend(read_srt0(container, section))
        else:
            _log.debug("%s: skipping section %r", container.name, section.name)
    return _Source(
        name=container.name,
        models=tuple(models),
        textures=tuple(textures),
        animations=tuple(animations),
        patterns=tuple(patterns),
        srt_animations=tuple(srts),
    )


class _UniqueNamer:
    __slots__ = ("_taken",)

    def __init__(self) -> None:
        self._taken: Dict[str, int] = {}

    def fresh(self, base: str) -> str:
        base = safe_name(base)
        n = self._taken.get(base)
        if n is None:
            self._taken[base] = 0
            return base
        while True:
            n += 1
            name = f"{base}_{n}"
            if name not in self._taken:
                self._taken[base] = n
                self._taken[name] = 0
                return name


def _image_name(texture_name: str, pal_info: Optional[PaletteInfo]) -> str:
    if pal_info is None:
        return texture_name
    return f"{texture_name}_{pal_info.name}"


class _ModelAssembly:
    """Working state for one model; discarded once the Model is built."""

    def __init__(self, model: ModelDef, source: _Source, sources: Sequence[_Source], options: AssembleOptions):
        self.model = model
        self.options = options
        # Blocks from the model's own file are searched first.
        self.blocks: List[TextureBlock] = list(source.textures) + [
            b for s in sources if s is not source for b in s.textures
        ]
        self.textures: List[Texture] = []
        self._texture_index: Dict[Tuple[int, str, Optional[Tuple[int, int]]], int] = {}
        self._namer = _UniqueNamer()
        self.unresolved: List[UnresolvedReference] = []
        self._seen: set = set()

    def report(self, kind: str, name: str, detail: str = "") -> None:
        if (kind, name) in self._seen:
            return
        self._seen.add((kind, name))
        ref = UnresolvedReference(kind=kind, source=self.model.source, name=name, detail=detail)
        _log.warning("%s", ref)
        self.unresolved.append(ref)

    def _find_texture(self, name: str, has_palette: Optional[bool]) -> Optional[Tuple[int, TextureInfo]]:
        for bi, block in enumerate(self.blocks):
            info = block.find_texture(name)
            if info is None:
                continue
            if has_palette is not None and info.params.requires_palette != has_palette:
                continue
            return bi, info
        return None

    def _find_palette(self, name: str, prefer: int) -> Optional[Tuple[int, PaletteInfo]]:
        order = [prefer] + [i for i in range(len(self.blocks)) if i != prefer]
        for bi in order:
            info = self.blocks[bi].find_palette(name)
            if info is not None:
                return bi, info
        return None

    def resolve_texture(self, texture_name: str, palette_name: Optional[str], context: str) -> Optional[int]:
        """Index into `textures` for a (texture, palette) pair, decoding it once."""
        found = self._find_texture(texture_name, palette_name is not None)
        if found is None:
            found = self._find_texture(texture_name, None)
        if found is None:
            self.report("texture", texture_name, context)
            return None
        bi, info = found

        pal_key: Optional[Tuple[int, int]] = None
        pal_info: Optional[PaletteInfo] = None
        if info.params.requires_palette:
            if palette_name is None:
                self.report("palette", f"{texture_name} (none named)", context)
                return None
            pal = self._find_palette(palette_name, bi)
            if pal is None:
                self.report("palette", palette_name, context)
                return None
            pal_key = (pal[0], self.blocks[pal[0]].palettes.index(pal[1]))
            pal_info = pal[1]

        key = (bi, texture_name, pal_key)
        idx = self._texture_index.get(key)
        if idx is not None:
            return idx

        block = self.blocks[bi]
        colors: Tuple[int, ...] = ()
        palette: Optional[Palette] = None
        if pal_info is not None and pal_key is not None:
            colors = self.blocks[pal_key[0]].palette_colors(pal_info)
            palette = Palette(name=pal_info.name, colors=colors)
        rgba = texture_raster(block, info, colors)
        p = info.params
        tex = Texture(
            name=self._namer.fresh(_image_name(texture_name, pal_info)),
            texture_name=texture_name,
            palette_name=pal_info.name if pal_info is not None else None,
            width=p.width,
            height=p.height,
            format=p.format,
            rgba=rgba,
            palette=palette,
        )
        idx = len(self.textures)
        self.textures.append(tex)
        self._texture_index[key] = idx
        return idx


def _material(m: MaterialDef, texture: Optional[int]) -> Material:
    p = m.params
    return Material(
        name=m.name,
        texture=texture,
        diffuse=m.diffuse,
        ambient=m.ambient,
        specular=m.specular,
        emission=m.emission,
        alpha=m.alpha,
        texture_transform=TextureTransform(scale=m.texture_scale or (1.0, 1.0)),
        repeat_s=p.repeat_s,
        repeat_t=p.repeat_t,
        mirror_s=p.mirror_s,
        mirror_t=p.mirror_t,
        cull_front=m.cull_front,
        cull_back=m.cull_back,
        default_vertex_color=m.diffuse if m.diffuse_is_default_vertex_color else None,
    )


def _root_of(joints: Sequence[Joint], joint: JointId) -> JointId:
    while joints[joint].parent is not None:
        joint = joints[joint].parent
    return joint


def _meshes(interp: InterpretedModel) -> List[Mesh]:
    meshes: List[Mesh] = []
    for d in interp.meshes:
        if not d.polygons:
            _log.debug("skipping draw of mesh %r with no polygons", d.name)
            continue
        first = d.polygons[0].vertices[0]
        meshes.append(
            Mesh(
                name=d.name,
                material=d.material,
                polygons=d.polygons,
                joint=_root_of(interp.joints, first.joint),
            )
        )
    return meshes


def _joint_animations(
    asm: _ModelAssembly, joints: Sequence[Joint], anims: Iterable[JointAnimation]
) -> List[Animation]:
    out: List[Animation] = []
    num_objects = len(asm.model.objects)
    loop = asm.options.loop_animations
    for anim in anims:
        if len(anim.objects) != num_objects and not asm.options.all_animations:
            asm.report(
                "animation",
                anim.name,
                f"animates {len(anim.objects)} objects, model has {num_objects}",
            )
            continue
        tracks = []
        for j in joints:
            if j.object_index is None or j.object_index >= len(anim.objects):
                continue
            curves: TRSCurves = anim.objects[j.object_index]
            if not curves.animated:
                continue
            tracks.append(
                AnimationTrack(
                    target_kind="joint",
                    target=j.id,
                    frame_count=anim.frame_count,
                    loop=loop,
                    sampler=curves.pose,
                )
            )
        if tracks:
            out.append(Animation(name=anim.name, frame_count=anim.frame_count, loop=loop, tracks=tuple(tracks)))
    return out


def _material_index(model: ModelDef) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for i, m in enumerate(model.materials):
        out.setdefault(m.name, i)
    return out


def _pattern_sampler(track: PatternTrack, resolved: Sequence[Optional[int]]):
    keys = track.keyframes

    def sample(frame: int) -> ImageSwap:
        return ImageSwap(resolved[keys.index(track.sample(frame))])

    return sample


def _pattern_animations(asm: _ModelAssembly, patterns: Iterable[Pattern]) -> List[Animation]:
    out: List[Animation] = []
    by_name = _material_index(asm.model)
    loop = asm.options.loop_animations
    for pat in patterns:
        if not any(t.material_name in by_name for t in pat.tracks):
            continue
        tracks = []
        for t in pat.tracks:
            mat = by_name.get(t.material_name)
            if mat is None:
                asm.report("material", t.material_name, f"pattern {pat.name}")
                continue
            resolved: List[Optional[int]] = []
            for k in t.keyframes:
                if k.texture >= len(pat.texture_names):
                    asm.report("texture", f"{pat.name}[{k.texture}]", f"pattern {pat.name}")
                    resolved.append(None)
                    continue
                pal = pat.palette_names[k.palette] if k.palette < len(pat.palette_names) else None
                resolved.append(asm.resolve_texture(pat.texture_names[k.texture], pal, f"pattern {pat.name}"))
            tracks.append(
                AnimationTrack(
                    target_kind="material",
                    target=mat,
                    frame_count=pat.frame_count,
                    loop=loop,
                    sampler=_pattern_sampler(t, tuple(resolved)),
                    channel="image",
                )
            )
        if tracks:
            out.append(Animation(name=pat.name, frame_count=pat.frame_count, loop=loop, tracks=tuple(tracks)))
    return out


def _srt_animations(asm: _ModelAssembly, srts: Iterable[SRTAnimation]) -> List[Animation]:
    out: List[Animation] = []
    by_name = _material_index(asm.model)
    loop = asm.options.loop_animations
    for srt in srts:
        if not any(t.material_name in by_name for t in srt.tracks):
            continue
        tracks = []
        for t in srt.tracks:
            mat = by_name.get(t.material_name)
            if mat is None:
                asm.report("material", t.material_name, f"material animation {srt.name}")
                continue
            tracks.append(
                AnimationTrack(
                    target_kind="material",
                    target=mat,
                    frame_count=srt.frame_count,
                    loop=loop,
                    sampler=t.sample,
                    channel="uv",
                )
            )
        if tracks:
            out.append(Animation(name=srt.name, frame_count=srt.frame_count, loop=loop, tracks=tuple(tracks)))
    return out


@dataclass
class ModelBuilder:
    """Collects Nitro files, then builds one immutable Model per MDL0 model."""

    sources: List[_Source] = field(default_factory=list)

    def add_file(self, data: bytes, *, name: str = "", kind: Optional[str] = None) -> "ModelBuilder":
        data = maybe_decompress(data)
        return self.add_container(read_container(data, kind=kind, name=name))

    def add_container(self, container: NitroContainer) -> "ModelBuilder":
        src = _read_source(container)
        _log.debug(
            "%s: %d models, %d texture blocks, %d joint animations, %d patterns, %d material animations",
            src.name,
            len(src.models),
            len(src.textures),
            len(src.animations),
            len(src.patterns),
            len(src.srt_animations),
        )
        self.sources.append(src)
        return self

    def build(self, options: Optional[AssembleOptions] = None) -> List[Model]:
        options = options or AssembleOptions()
        models: List[Model] = []
        for src in self.sources:
            for mdef in src.models:
                models.append(self._build_model(mdef, src, options))
        return models

    def _build_model(self, mdef: ModelDef, src: _Source, options: AssembleOptions) -> Model:
        interp = interpret_model(mdef)
        asm = _ModelAssembly(mdef, src, self.sources, options)

        materials = []
        for m in mdef.materials:
            tex = None
            if m.texture_name is not None:
                tex = asm.resolve_texture(m.texture_name, m.palette_name, f"material {m.name}")
            materials.append(_material(m, tex))

        animations: List[Animation] = []
        if options.apply_animations:
            all_joint = [a for s in self.sources for a in s.animations]
            animations += _joint_animations(asm, interp.joints, all_joint)
            animations += _pattern_animations(asm, [p for s in self.sources for p in s.patterns])
            animations += _srt_animations(asm, [a for s in self.sources for a in s.srt_animations])

        model = Model(
            name=mdef.name,
            joints=interp.joints,
            meshes=tuple(_meshes(interp)),
            materials=tuple(materials),
            textures=tuple(asm.textures),
            animations=tuple(animations),
            unresolved=tuple(asm.unresolved),
        )
        _log.info(
            "%s: assembled model %r: %d joints, %d meshes, %d textures, %d animations, %d unresolved",
            src.name,
            model.name,
            len(model.joints),
            len(model.meshes),
            len(model.textures),
            len(model.animations),
            len(model.unresolved),
        )
        return model


def assemble(
    buffers: Iterable[Union[bytes, Tuple[str, bytes]]], options: Optional[AssembleOptions] = None
) -> List[Model]:
    """Build every model found in `buffers` (raw bytes or (name, bytes) pairs)."""
    builder = ModelBuilder()
    for i, item in enumerate(buffers):
        if isinstance(item, tuple):
            name, data = item
        else:
            name, data = f"file{i}", item
        builder.add_file(data, name=name)
    return builder.build(options)
