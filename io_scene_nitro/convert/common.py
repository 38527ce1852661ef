"""Pieces shared by the COLLADA and glTF writers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from mathutils import Matrix

from ..core.container import safe_name
from ..core.types import AnimationTrack, ImageSwap, Mesh, Model, Polygon, UVTransform, Vertex

_log = logging.getLogger(__name__)

_DEFAULT_NORMAL = (0.0, 0.0, 1.0)
_DEFAULT_TEXCOORD = (0.0, 0.0)
_DEFAULT_COLOR = (1.0, 1.0, 1.0)


def triangulate(polygon: Polygon) -> List[Tuple[Vertex, Vertex, Vertex]]:
    """Fan from the first vertex: (0,1,2), (0,2,3), ..."""
    v = polygon.vertices
    return [(v[0], v[i], v[i + 1]) for i in range(1, len(v) - 1)]


@dataclass(frozen=True)
class FlatMesh:
    """Deduplicated vertex arrays plus a triangle index list.

    Attribute arrays are None when no vertex of the mesh carries them. Every
    vertex is bound rigidly to `joints[i]` with weight 1.0.
    """

    positions: np.ndarray
    normals: Optional[np.ndarray]
    texcoords: Optional[np.ndarray]
    colors: Optional[np.ndarray]
    joints: np.ndarray
    indices: np.ndarray

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])


def flatten_mesh(mesh: Mesh) -> FlatMesh:
    index: Dict[Vertex, int] = {}
    verts: List[Vertex] = []
    indices: List[int] = []
    for poly in mesh.polygons:
        for tri in triangulate(poly):
            for v in tri:
                i = index.get(v)
                if i is None:
                    i = index[v] = len(verts)
                    verts.append(v)
                indices.append(i)

    def attr(name: str, default: Tuple[float, ...]) -> Optional[np.ndarray]:
        vals = [getattr(v, name) for v in verts]
        if all(x is None for x in vals):
            return None
        return np.array([default if x is None else x for x in vals], dtype=np.float32)

    return FlatMesh(
        positions=np.array([v.position for v in verts], dtype=np.float32).reshape(-1, 3),
        normals=attr("normal", _DEFAULT_NORMAL),
        texcoords=attr("texcoord", _DEFAULT_TEXCOORD),
        colors=attr("color", _DEFAULT_COLOR),
        joints=np.array([v.joint for v in verts], dtype=np.uint32),
        indices=np.array(indices, dtype=np.uint32),
    )


def frame_times(frame_count: int, frame_rate: float) -> np.ndarray:
    return np.arange(frame_count, dtype=np.float32) / np.float32(frame_rate)


def sample_track_frames(track: AnimationTrack) -> List[Any]:
    return [track.sample(f) for f in range(track.frame_count)]


def material_sample_value(model: Model, sample: Any) -> Any:
    """JSON-friendly value of one material track sample."""
    if isinstance(sample, ImageSwap):
        if sample.texture is None:
            return None
        return model.textures[sample.texture].name
    if isinstance(sample, UVTransform):
        return [float(sample.translation[0]), float(sample.translation[1])]
    raise TypeError(f"unknown material sample: {sample!r}")


def unique_names(names: Iterable[str]) -> List[str]:
    """Sanitized names, suffixed `_1`, `_2`... where they would collide."""
    taken: Dict[str, int] = {}
    out: List[str] = []
    for name in names:
        base = safe_name(name)
        cand = base
        n = 0
        while cand in taken:
            n += 1
            cand = f"{base}_{n}"
        taken[cand] = 1
        out.append(cand)
    return out


def matrix_rows(m: Matrix) -> List[float]:
    """Row-major floats of a 4x4 matrix."""
    return [float(m[r][c]) for r in range(4) for c in range(4)]


def matrix_columns(m: Matrix) -> List[float]:
    """Column-major floats of a 4x4 matrix."""
    return [float(m[r][c]) for c in range(4) for r in range(4)]


def make_invertible(m: Matrix) -> Matrix:
    """`m`, or `m` nudged along the diagonal until it can be inverted.

    Zero object matrices (used to hide parts) would otherwise have no inverse
    bind matrix. Falls back to the identity.
    """
    if abs(m.determinant()) > 1e-15:
        return m.copy()
    for eps in (1e-6, 1e-5, 1e-4, 1e-3):
        m2 = m + Matrix.Identity(4) * eps
        if abs(m2.determinant()) > 1e-15:
            return m2
    _log.warning("singular joint matrix; using the identity")
    return Matrix.Identity(4)


def joint_names(model: Model) -> List[str]:
    return unique_names(j.name for j in model.joints)


def mesh_names(meshes: Sequence[Mesh]) -> List[str]:
    return unique_names(m.name for m in meshes)
