"""Render-command and GPU-command interpreter.

The DS draws a model by running its render commands, which manipulate a
matrix stack and dispatch mesh command buffers to the geometry engine. We
execute the same sequence to recover:
- a joint forest: every object multiplication creates (or revisits) a joint
  under the joint the current matrix belongs to
- rest-pose geometry: each vertex is transformed by the current matrix and
  tagged with the joint that matrix belongs to

All interpreter state lives in `InterpreterState`, and `step` is a pure
transition `(state, op, ctx) -> (state', polygons)`. Multiplication order
follows the hardware: its row-vector "premultiply" is `current @ m` with the
column vectors used here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple

from mathutils import Matrix, Vector

from ..errors import InterpreterFault
from . import gpu, render_cmds
from .mdl import MaterialDef, ModelDef
from .types import RGB, Joint, JointId, LocalTransform, Polygon, Vertex

_log = logging.getLogger(__name__)

MATRIX_STACK_DEPTH = 32
ROOT_JOINT_NAME = "__root__"

Slot = Optional[Tuple[Matrix, Optional[JointId]]]


def _frozen(m: Matrix) -> Matrix:
    m = m.copy()
    m.freeze()
    return m


_IDENTITY = _frozen(Matrix.Identity(4))


@dataclass(frozen=True)
class InterpretContext:
    """Read-only model data the interpreter consults."""

    object_names: Tuple[str, ...]
    object_locals: Tuple[LocalTransform, ...]
    object_matrices: Tuple[Matrix, ...]
    inv_binds: Tuple[Matrix, ...]
    materials: Tuple[MaterialDef, ...]
    num_meshes: int
    up_scale: float = 1.0
    down_scale: float = 1.0

    @classmethod
    def from_model(cls, model: ModelDef) -> "InterpretContext":
        return cls(
            object_names=tuple(o.name for o in model.objects),
            object_locals=tuple(o.local for o in model.objects),
            object_matrices=tuple(_frozen(o.matrix) for o in model.objects),
            inv_binds=tuple(_frozen(m) for m in model.inv_binds),
            materials=model.materials,
            num_meshes=len(model.meshes),
            up_scale=model.up_scale,
            down_scale=model.down_scale,
        )


@dataclass(frozen=True)
class InterpreterState:
    matrix: Matrix = _IDENTITY
    joint: Optional[JointId] = None
    stack: Tuple[Slot, ...] = (None,) * MATRIX_STACK_DEPTH
    sp: int = 0

    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    normal: Optional[Tuple[float, float, float]] = None
    color: Optional[RGB] = None
    texcoord: Optional[Tuple[float, float]] = None

    material: Optional[int] = None
    mesh: Optional[int] = None
    texture_size: Tuple[float, float] = (1.0, 1.0)
    texture_scale: Tuple[float, float] = (1.0, 1.0)

    prim: Optional[int] = None
    pending: Tuple[Vertex, ...] = ()
    parity: int = 0

    joints: Tuple[Joint, ...] = field(default=(), repr=False)


def _child_joint(state: InterpreterState, ctx: InterpretContext, obj: int) -> Tuple[InterpreterState, JointId]:
    parent = state.joint
    for j in state.joints:
        if j.parent == parent and j.object_index == obj:
            return state, j.id
    parent_bind = state.joints[parent].bind_matrix if parent is not None else _IDENTITY
    local = ctx.object_matrices[obj]
    joint = Joint(
        id=len(state.joints),
        name=ctx.object_names[obj],
        parent=parent,
        object_index=obj,
        local=ctx.object_locals[obj],
        local_matrix=local,
        bind_matrix=_frozen(parent_bind @ local),
    )
    return replace(state, joints=state.joints + (joint,)), joint.id


def _root_joint(state: InterpreterState) -> Tuple[InterpreterState, JointId]:
    for j in state.joints:
        if j.object_index is None and j.parent is None:
            return state, j.id
    joint = Joint(
        id=len(state.joints),
        name=ROOT_JOINT_NAME,
        parent=None,
        object_index=None,
        local=LocalTransform(),
        local_matrix=_IDENTITY,
        bind_matrix=_IDENTITY,
    )
    return replace(state, joints=state.joints + (joint,)), joint.id


def _load_slot(state: InterpreterState, slot: int) -> InterpreterState:
    if not 0 <= slot < MATRIX_STACK_DEPTH:
        raise InterpreterFault(f"matrix stack slot out of range: {slot}")
    entry = state.stack[slot]
    if entry is None:
        _log.debug("restoring uninitialized matrix slot %d", slot)
        return replace(state, matrix=_IDENTITY, joint=None)
    return replace(state, matrix=entry[0], joint=entry[1])


def _store_slot(state: InterpreterState, slot: int) -> InterpreterState:
    if not 0 <= slot < MATRIX_STACK_DEPTH:
        raise InterpreterFault(f"matrix stack slot out of range: {slot}")
    stack = list(state.stack)
    stack[slot] = (state.matrix, state.joint)
    return replace(state, stack=tuple(stack))


def _skin(state: InterpreterState, ctx: InterpretContext, terms: Sequence[render_cmds.SkinTerm]) -> InterpreterState:
    if not terms:
        raise InterpreterFault("skin command with no terms")
    acc = Matrix.Identity(4) * 0.0
    best: Optional[render_cmds.SkinTerm] = None
    best_joint: Optional[JointId] = None
    for t in terms:
        if not 0 <= t.slot < MATRIX_STACK_DEPTH or state.stack[t.slot] is None:
            raise InterpreterFault(f"skin term reads empty matrix slot {t.slot}")
        if t.inv_bind >= len(ctx.inv_binds):
            raise InterpreterFault(f"skin term inverse bind out of range: {t.inv_bind}")
        m, j = state.stack[t.slot]
        acc = acc + (m @ ctx.inv_binds[t.inv_bind]) * t.weight
        if best is None or t.weight > best.weight:
            best = t
            best_joint = j
    if best_joint is None:
        state, best_joint = _root_joint(state)
    return replace(state, matrix=_frozen(acc), joint=best_joint)


def _postmultiply(state: InterpreterState, m: Matrix) -> InterpreterState:
    return replace(state, matrix=_frozen(state.matrix @ m))


def _scale_matrix(s: Sequence[float]) -> Matrix:
    return Matrix.Diagonal(Vector((s[0], s[1], s[2], 1.0)))


def _emit_vertex(
    state: InterpreterState, position: Tuple[float, float, float]
) -> Tuple[InterpreterState, Tuple[Polygon, ...]]:
    if state.prim is None:
        raise InterpreterFault("vertex emitted outside of a begin/end pair")
    joint = state.joint
    if joint is None:
        state, joint = _root_joint(state)
    p = state.matrix @ Vector(position)
    v = Vertex(
        position=(p.x, p.y, p.z),
        joint=joint,
        normal=state.normal,
        color=state.color,
        texcoord=state.texcoord,
    )
    state = replace(state, position=tuple(position))
    pending = state.pending + (v,)
    prim = state.prim

    if prim == gpu.PRIM_TRIS:
        if len(pending) == 3:
            return replace(state, pending=()), (Polygon("tri", pending),)
    elif prim == gpu.PRIM_QUADS:
        if len(pending) == 4:
            return replace(state, pending=()), (Polygon("quad", pending),)
    elif prim == gpu.PRIM_TRI_STRIP:
        if len(pending) == 3:
            a, b, c = pending
            tri = (a, b, c) if state.parity == 0 else (a, c, b)
            return replace(state, pending=(b, c), parity=state.parity ^ 1), (Polygon("tri", tri),)
    else:
        if len(pending) == 4:
            a, b, c, d = pending
            return replace(state, pending=(c, d)), (Polygon("quad", (a, b, d, c)),)
    return replace(state, pending=pending), ()


def _end(state: InterpreterState) -> InterpreterState:
    if state.prim in (gpu.PRIM_TRIS, gpu.PRIM_QUADS) and state.pending:
        _log.debug("dropping %d vertices of an incomplete primitive", len(state.pending))
    return replace(state, prim=None, pending=(), parity=0)


def _draw(state: InterpreterState, ctx: InterpretContext, mesh: int) -> InterpreterState:
    if not 0 <= mesh < ctx.num_meshes:
        raise InterpreterFault(f"draw of unknown mesh {mesh}")
    size = (1.0, 1.0)
    scale = (1.0, 1.0)
    color = state.color
    if state.material is not None:
        mat = ctx.materials[state.material]
        w = mat.width or mat.params.width
        h = mat.height or mat.params.height
        size = (float(w), float(h))
        if mat.texture_scale is not None and mat.params.texcoord_transform_mode == 1:
            scale = mat.texture_scale
        if mat.diffuse_is_default_vertex_color:
            color = mat.diffuse
    return replace(
        state,
        mesh=mesh,
        texture_size=size,
        texture_scale=scale,
        color=color,
        normal=None,
        texcoord=None,
    )


def step(state: InterpreterState, op: object, ctx: InterpretContext) -> Tuple[InterpreterState, Tuple[Polygon, ...]]:
    """Execute one render op or GPU command."""
    if isinstance(op, (gpu.Vertex, gpu.VertexXY, gpu.VertexXZ, gpu.VertexYZ, gpu.VertexDiff)):
        x, y, z = state.position
        if isinstance(op, gpu.Vertex):
            pos = op.position
        elif isinstance(op, gpu.VertexXY):
            pos = (op.x, op.y, z)
        elif isinstance(op, gpu.VertexXZ):
            pos = (op.x, y, op.z)
        elif isinstance(op, gpu.VertexYZ):
            pos = (x, op.y, op.z)
        else:
            dx, dy, dz = op.delta
            pos = (x + dx, y + dy, z + dz)
        return _emit_vertex(state, pos)

    if isinstance(op, gpu.Begin):
        if state.prim is not None:
            state = _end(state)
        return replace(state, prim=op.prim, pending=(), parity=0), ()
    if isinstance(op, gpu.End):
        return _end(state), ()

    if isinstance(op, gpu.Normal):
        n = state.matrix.to_3x3() @ Vector(op.normal)
        if n.length > 0.0:
            n.normalize()
        return replace(state, normal=(n.x, n.y, n.z)), ()
    if isinstance(op, gpu.Color):
        return replace(state, color=op.color), ()
    if isinstance(op, gpu.TexCoord):
        (w, h), (sx, sy) = state.texture_size, state.texture_scale
        s, t = op.texcoord
        return replace(state, texcoord=(s * sx / w, t * sy / h)), ()

    if isinstance(op, gpu.Push):
        if state.sp >= MATRIX_STACK_DEPTH:
            raise InterpreterFault(f"matrix stack overflow (depth {MATRIX_STACK_DEPTH})")
        state = _store_slot(state, state.sp)
        return replace(state, sp=state.sp + 1), ()
    if isinstance(op, gpu.Pop):
        sp = state.sp - op.count
        if sp < 0:
            raise InterpreterFault(f"matrix stack underflow (pop {op.count} at depth {state.sp})")
        if sp > MATRIX_STACK_DEPTH:
            raise InterpreterFault(f"matrix stack overflow (pop {op.count} at depth {state.sp})")
        if sp == MATRIX_STACK_DEPTH:
            return replace(state, sp=sp), ()
        return replace(_load_slot(state, sp), sp=sp), ()
    if isinstance(op, (gpu.Store, render_cmds.StoreSlot)):
        return _store_slot(state, op.slot), ()
    if isinstance(op, (gpu.Restore, render_cmds.LoadSlot)):
        return _load_slot(state, op.slot), ()
    if isinstance(op, gpu.Identity):
        return replace(state, matrix=_IDENTITY, joint=None), ()
    if isinstance(op, gpu.LoadMatrix):
        state, root = _root_joint(state)
        return replace(state, matrix=_frozen(Matrix(op.rows)), joint=root), ()
    if isinstance(op, gpu.MultMatrix):
        return _postmultiply(state, Matrix(op.rows)), ()
    if isinstance(op, gpu.Scale):
        return _postmultiply(state, _scale_matrix(op.scale)), ()
    if isinstance(op, gpu.Translate):
        return _postmultiply(state, Matrix.Translation(Vector(op.translation))), ()

    if isinstance(op, render_cmds.MulObject):
        if not 0 <= op.object < len(ctx.object_matrices):
            raise InterpreterFault(f"object index out of range: {op.object}")
        state, joint = _child_joint(state, ctx, op.object)
        state = _postmultiply(state, ctx.object_matrices[op.object])
        return replace(state, joint=joint), ()
    if isinstance(op, render_cmds.Skin):
        return _skin(state, ctx, op.terms), ()
    if isinstance(op, render_cmds.ScaleUp):
        return _postmultiply(state, _scale_matrix((ctx.up_scale,) * 3)), ()
    if isinstance(op, render_cmds.ScaleDown):
        return _postmultiply(state, _scale_matrix((ctx.down_scale,) * 3)), ()
    if isinstance(op, render_cmds.BindMaterial):
        if not 0 <= op.material < len(ctx.materials):
            raise InterpreterFault(f"bind of unknown material {op.material}")
        return replace(state, material=op.material), ()
    if isinstance(op, render_cmds.Draw):
        return _draw(state, ctx, op.mesh), ()

    if isinstance(op, (gpu.Nop, gpu.Other)):
        return state, ()
    raise InterpreterFault(f"unknown interpreter op: {op!r}")


@dataclass(frozen=True)
class DrawnMesh:
    mesh: int
    name: str
    material: Optional[int]
    polygons: Tuple[Polygon, ...]


@dataclass(frozen=True)
class InterpretedModel:
    joints: Tuple[Joint, ...]
    meshes: Tuple[DrawnMesh, ...]

    @property
    def polygons(self) -> Tuple[Polygon, ...]:
        return tuple(p for m in self.meshes for p in m.polygons)


def interpret_model(model: ModelDef) -> InterpretedModel:
    """Run a model's render commands and every mesh they draw.

    Any fault aborts the whole model; nothing partial is returned.
    """
    ctx = InterpretContext.from_model(model)
    state = InterpreterState()
    drawn: List[DrawnMesh] = []

    for op in model.render_ops:
        state, _ = step(state, op, ctx)
        if not isinstance(op, render_cmds.Draw):
            continue
        polys: List[Polygon] = []
        for cmd in gpu.decode_gpu_commands(model.meshes[op.mesh].commands, model.byte_order):
            state, out = step(state, cmd, ctx)
            polys.extend(out)
        if state.prim is not None:
            state = _end(state)
        drawn.append(
            DrawnMesh(
                mesh=op.mesh,
                name=model.meshes[op.mesh].name,
                material=state.material,
                polygons=tuple(polys),
            )
        )

    _log.debug(
        "%s: interpreted %r: %d joints, %d draws, %d polygons",
        model.source,
        model.name,
        len(state.joints),
        len(drawn),
        sum(len(d.polygons) for d in drawn),
    )
    return InterpretedModel(joints=state.joints, meshes=tuple(drawn))
