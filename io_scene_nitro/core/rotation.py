"""Compressed 3x3 rotation encodings used by model objects and joint animations."""

from __future__ import annotations

from typing import Sequence

from mathutils import Matrix, Vector

from ..errors import MalformedContainer
from .fixed import bits, fix

# Index permutations for select // 3 (columns) and select % 3 (rows).
_PERMS = ((0, 1, 2), (1, 0, 2), (1, 2, 0))


def pivot_mat(select: int, neg: int, a: float, b: float) -> Matrix:
    """Rotation with one axis-aligned unit entry ("pivot") and a 2x2 block.

    The base matrix is

        o . .
        . a c
        . b d

    with signs from `neg`; `select` permutes its rows and columns.
    """
    if select > 9:
        raise MalformedContainer("unknown pivot select", expected="<= 9", found=select)
    if select == 9:
        return Matrix(((-a, 0.0, 0.0), (0.0, 0.0, 0.0), (0.0, 0.0, 0.0)))

    o = 1.0 if bits(neg, 0, 1) == 0 else -1.0
    c = b if bits(neg, 1, 2) == 0 else -b
    d = a if bits(neg, 2, 3) == 0 else -a
    base = ((o, 0.0, 0.0), (0.0, a, c), (0.0, b, d))

    cols = _PERMS[select // 3]
    rows = _PERMS[select % 3]
    return Matrix(tuple(tuple(base[rows[i]][cols[j]] for j in range(3)) for i in range(3)))


def basis_mat(words: Sequence[int]) -> Matrix:
    """Orthonormal basis packed into five u16s.

    Six 13-bit components: the high 13 bits of each word, plus a sixth built
    from the low 3 bits of all five. The third column is the cross product.
    """
    in0, in1, in2, in3, in4 = (int(w) for w in words)
    out = [0] * 6
    for i, w in enumerate((in4, in0, in1, in2, in3)):
        out[i] = bits(w, 3, 16)
        out[5] = ((out[5] << 3) | bits(w, 0, 3)) & 0xFFFF

    f = [fix(x, 1, 0, 12) for x in out]
    a = Vector((f[1], f[2], f[3]))
    b = Vector((f[4], f[0], f[5]))
    c = a.cross(b)
    m = Matrix.Identity(3)
    for i in range(3):
        m[i][0] = a[i]
        m[i][1] = b[i]
        m[i][2] = c[i]
    return m
