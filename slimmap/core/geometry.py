"""Geometry primitives: element measures, local frames and gradient operators.

Canonical data format used across slimmap:
    vertices:  (N, 2) or (N, 3) float64 array
    elements:  (M, 3) int array (triangles) or (M, 4) int array (tetrahedra)
"""
from __future__ import annotations

import math
from typing import List, Tuple

import numpy as np
from scipy import sparse

from .errors import ElementArityError

__all__ = [
    'element_dimension', 'as_vertices', 'as_elements', 'doublearea', 'signed_areas',
    'signed_volumes', 'element_measures', 'signed_element_measures', 'local_basis',
    'gradient_operators', 'regular_tetrahedron',
]


def element_dimension(elements) -> int:
    """Return the intrinsic dimension of the elements: 2 for triangles, 3 for tetrahedra."""
    F = np.asarray(elements)
    if F.ndim != 2 or F.shape[1] not in (3, 4):
        raise ElementArityError(
            f"elements must be (M, 3) triangles or (M, 4) tetrahedra, got shape {F.shape}")
    return F.shape[1] - 1


def as_vertices(vertices) -> np.ndarray:
    V = np.ascontiguousarray(vertices, dtype=np.float64)
    if V.ndim != 2 or V.shape[1] not in (2, 3):
        raise ElementArityError(f"vertices must be (N, 2) or (N, 3), got shape {V.shape}")
    return V


def as_elements(elements, n_vertices: int) -> np.ndarray:
    F = np.ascontiguousarray(elements, dtype=np.int64)
    element_dimension(F)
    if F.size and (F.min() < 0 or F.max() >= n_vertices):
        raise ElementArityError("element indices out of range")
    return F


def _pad3(V: np.ndarray) -> np.ndarray:
    if V.shape[1] == 3:
        return V
    return np.column_stack([V, np.zeros(V.shape[0])])


def doublearea(vertices, triangles) -> np.ndarray:
    """Twice the (unsigned) area of each triangle; works for 2-D and 3-D vertices."""
    V = _pad3(as_vertices(vertices))
    T = np.asarray(triangles, dtype=np.int64)
    e1 = V[T[:, 1]] - V[T[:, 0]]
    e2 = V[T[:, 2]] - V[T[:, 0]]
    return np.linalg.norm(np.cross(e1, e2), axis=1)


def signed_areas(points, triangles) -> np.ndarray:
    """Signed area of 2-D triangles (positive when counter-clockwise)."""
    P = np.asarray(points, dtype=np.float64)
    T = np.asarray(triangles, dtype=np.int64)
    if T.size == 0:
        return np.empty((0,), dtype=np.float64)
    e1 = P[T[:, 1]] - P[T[:, 0]]
    e2 = P[T[:, 2]] - P[T[:, 0]]
    return 0.5 * (e1[:, 0] * e2[:, 1] - e1[:, 1] * e2[:, 0])


def signed_volumes(points, tets) -> np.ndarray:
    """Signed volume of tetrahedra (positive for right-handed vertex order)."""
    P = np.asarray(points, dtype=np.float64)
    T = np.asarray(tets, dtype=np.int64)
    if T.size == 0:
        return np.empty((0,), dtype=np.float64)
    edges = np.stack([P[T[:, k]] - P[T[:, 0]] for k in (1, 2, 3)], axis=2)
    return np.linalg.det(edges) / 6.0


def element_measures(vertices, elements) -> np.ndarray:
    """Unsigned area (triangles) or volume (tetrahedra) per element."""
    if element_dimension(elements) == 2:
        return 0.5 * doublearea(vertices, elements)
    return np.abs(signed_volumes(vertices, elements))


def signed_element_measures(points, elements) -> np.ndarray:
    """Signed area of 2-D triangles or signed volume of tetrahedra."""
    if element_dimension(elements) == 2:
        return signed_areas(points, elements)
    return signed_volumes(points, elements)


def local_basis(vertices, triangles) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-face orthonormal frame.

    B1 follows the first edge, B3 is the unit normal and B2 = B3 x B1, so the
    triangle has positive orientation in the (B1, B2) plane.
    """
    V = _pad3(as_vertices(vertices))
    T = np.asarray(triangles, dtype=np.int64)
    e1 = V[T[:, 1]] - V[T[:, 0]]
    e2 = V[T[:, 2]] - V[T[:, 0]]
    B1 = e1 / np.linalg.norm(e1, axis=1, keepdims=True)
    n = np.cross(e1, e2)
    B3 = n / np.linalg.norm(n, axis=1, keepdims=True)
    B2 = np.cross(B3, B1)
    B2 /= np.linalg.norm(B2, axis=1, keepdims=True)
    return B1, B2, B3


def regular_tetrahedron(volume: float = 1.0 / (6.0 * math.sqrt(2.0))) -> np.ndarray:
    """Vertices (4, 3) of a positively oriented regular tetrahedron with the given volume."""
    edge = (6.0 * math.sqrt(2.0) * abs(volume)) ** (1.0 / 3.0)
    return edge * np.array([
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [0.5, math.sqrt(3.0) / 2.0, 0.0],
        [0.5, math.sqrt(3.0) / 6.0, math.sqrt(2.0 / 3.0)],
    ])


def _edge_matrices(V: np.ndarray, F: np.ndarray) -> np.ndarray:
    """(M, d, d) matrices whose columns are the edges leaving the first vertex."""
    return np.stack([V[F[:, k]] - V[F[:, 0]] for k in range(1, F.shape[1])], axis=2)


def _operators_from_inverse(G: np.ndarray, F: np.ndarray, n_vertices: int) -> List[sparse.csr_matrix]:
    # G[e, j, a]: derivative of barycentric coordinate j+1 along axis a
    m, d = G.shape[0], G.shape[2]
    grads = np.empty((m, d + 1, d), dtype=np.float64)
    grads[:, 1:, :] = G
    grads[:, 0, :] = -G.sum(axis=1)
    rows = np.repeat(np.arange(m), d + 1)
    cols = F.ravel()
    return [
        sparse.csr_matrix((grads[:, :, a].ravel(), (rows, cols)), shape=(m, n_vertices))
        for a in range(d)
    ]


def gradient_operators(vertices, elements, uniform: bool = False) -> List[sparse.csr_matrix]:
    """Per-axis gradient operators of piecewise-linear functions.

    Returns ``dim`` sparse (M, N) matrices ``D_a`` such that ``(D_a @ u)[e]`` is
    the derivative of the scalar field ``u`` along local axis ``a`` inside
    element ``e``. Triangle axes are the local basis of each face; tetrahedra
    use the world axes. With ``uniform=True`` tetrahedra are measured against a
    regular reference element of the same volume instead of their rest shape.
    """
    V = as_vertices(vertices)
    F = as_elements(elements, V.shape[0])
    dim = element_dimension(F)
    if dim == 2:
        B1, B2, _ = local_basis(V, F)
        E = _edge_matrices(_pad3(V), F)                   # (M, 3, 2)
        Dm = np.stack([np.einsum('mi,mij->mj', B1, E),
                       np.einsum('mi,mij->mj', B2, E)], axis=1)   # (M, 2, 2)
    else:
        if V.shape[1] != 3:
            raise ElementArityError("tetrahedral meshes need (N, 3) vertices")
        if uniform:
            vols = signed_volumes(V, F)
            Dm = np.empty((F.shape[0], 3, 3))
            for e, vol in enumerate(vols):
                ref = regular_tetrahedron(vol)
                if vol < 0:
                    ref[:, 2] *= -1.0
                Dm[e] = (ref[1:] - ref[0]).T
        else:
            Dm = _edge_matrices(V, F)
    return _operators_from_inverse(np.linalg.inv(Dm), F, V.shape[0])
