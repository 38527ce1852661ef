"""Data model for assembled Nitro scenes.

Everything a `Model` owns is a frozen dataclass holding tuples; exporters only
read it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from mathutils import Matrix, Vector

from ..errors import UnresolvedReference

JointId = int
RGB = Tuple[float, float, float]


@dataclass(frozen=True)
class LocalTransform:
    """Object transform as decoded; None marks an identity component."""

    translation: Optional[Tuple[float, float, float]] = None
    rotation: Optional[Tuple[Tuple[float, ...], ...]] = None
    scale: Optional[Tuple[float, float, float]] = None

    def matrix(self) -> Matrix:
        m = Matrix.Identity(4)
        if self.scale is not None:
            m = Matrix.Diagonal(Vector((*self.scale, 1.0)))
        if self.rotation is not None:
            m = Matrix(self.rotation).to_4x4() @ m
        if self.translation is not None:
            m = Matrix.Translation(Vector(self.translation)) @ m
        return m


@dataclass(frozen=True)
class Joint:
    id: JointId
    name: str
    parent: Optional[JointId]
    object_index: Optional[int]
    local: LocalTransform
    local_matrix: Matrix
    bind_matrix: Matrix


@dataclass(frozen=True)
class Vertex:
    position: Tuple[float, float, float]
    joint: JointId
    normal: Optional[Tuple[float, float, float]] = None
    color: Optional[RGB] = None
    texcoord: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class Polygon:
    kind: str
    vertices: Tuple[Vertex, ...]


@dataclass(frozen=True)
class Mesh:
    name: str
    material: Optional[int]
    polygons: Tuple[Polygon, ...]
    joint: JointId


@dataclass(frozen=True)
class TextureTransform:
    scale: Tuple[float, float] = (1.0, 1.0)
    rotation: float = 0.0
    translation: Tuple[float, float] = (0.0, 0.0)


@dataclass(frozen=True)
class Material:
    name: str
    texture: Optional[int] = None
    diffuse: RGB = (1.0, 1.0, 1.0)
    ambient: RGB = (0.0, 0.0, 0.0)
    specular: RGB = (0.0, 0.0, 0.0)
    emission: RGB = (0.0, 0.0, 0.0)
    alpha: float = 1.0
    texture_transform: TextureTransform = field(default_factory=TextureTransform)
    repeat_s: bool = False
    repeat_t: bool = False
    mirror_s: bool = False
    mirror_t: bool = False
    cull_front: bool = False
    cull_back: bool = True
    default_vertex_color: Optional[RGB] = None


@dataclass(frozen=True)
class Palette:
    name: str
    colors: Tuple[int, ...]


@dataclass(frozen=True)
class Texture:
    name: str
    texture_name: str
    palette_name: Optional[str]
    width: int
    height: int
    format: int
    rgba: bytes = field(repr=False)
    palette: Optional[Palette] = field(default=None, repr=False)

    @property
    def has_alpha(self) -> bool:
        return any(a != 0xFF for a in self.rgba[3::4])


@dataclass(frozen=True)
class JointPose:
    translation: Vector
    rotation: Matrix
    scale: Vector

    def matrix(self) -> Matrix:
        t = Matrix.Translation(self.translation)
        r = self.rotation.to_4x4()
        s = Matrix.Diagonal(Vector((self.scale[0], self.scale[1], self.scale[2], 1.0)))
        return t @ r @ s


@dataclass(frozen=True)
class ImageSwap:
    texture: Optional[int]


@dataclass(frozen=True)
class UVTransform:
    translation: Tuple[float, float] = (0.0, 0.0)


def wrap_frame(frame: int, frame_count: int, loop: bool) -> int:
    frame = int(frame)
    if loop:
        return frame % frame_count
    return min(max(frame, 0), frame_count - 1)


@dataclass(frozen=True)
class AnimationTrack:
    target_kind: str
    target: int
    frame_count: int
    loop: bool
    sampler: Callable[[int], Any] = field(repr=False, compare=False)
    channel: str = "transform"

    def __post_init__(self) -> None:
        if self.frame_count < 1:
            raise ValueError("animation track needs at least one frame")

    def sample(self, frame: int) -> Any:
        return self.sampler(wrap_frame(frame, self.frame_count, self.loop))


@dataclass(frozen=True)
class Animation:
    name: str
    frame_count: int
    loop: bool
    tracks: Tuple[AnimationTrack, ...]


@dataclass(frozen=True)
class Model:
    name: str
    joints: Tuple[Joint, ...]
    meshes: Tuple[Mesh, ...]
    materials: Tuple[Material, ...]
    textures: Tuple[Texture, ...]
    animations: Tuple[Animation, ...] = ()
    unresolved: Tuple[UnresolvedReference, ...] = ()

    @property
    def tracks(self) -> Tuple[AnimationTrack, ...]:
        return tuple(t for a in self.animations for t in a.tracks)

    def roots(self) -> Tuple[Joint, ...]:
        return tuple(j for j in self.joints if j.parent is None)

    def children(self, joint: JointId) -> Tuple[Joint, ...]:
        return tuple(j for j in self.joints if j.parent == joint)

    def root_of(self, joint: JointId) -> JointId:
        while self.joints[joint].parent is not None:
            joint = self.joints[joint].parent
        return joint
