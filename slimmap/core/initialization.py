"""Flip-free initial maps for SLIM: boundary extraction and Tutte embedding."""
from __future__ import annotations

from typing import List

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import splu

from .geometry import as_vertices, element_dimension, signed_areas
from .logging_utils import get_logger

logger = get_logger('slimmap.initialization')


def boundary_edges(faces) -> np.ndarray:
    """Directed edges (K, 2) used by exactly one triangle, in face orientation."""
    F = np.asarray(faces, dtype=np.int64)
    if F.size == 0:
        return np.empty((0, 2), dtype=np.int64)
    edges = np.vstack((F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]))
    n = int(F.max()) + 1
    keys = edges[:, 0] * n + edges[:, 1]
    reverse = edges[:, 1] * n + edges[:, 0]
    return edges[~np.isin(reverse, keys)]


def boundary_loops(faces) -> List[List[int]]:
    """Ordered boundary loops of a consistently oriented triangle mesh.

    Each loop is walked along the face orientation, so a counter-clockwise
    triangulated disk yields a counter-clockwise loop.
    """
    element_dimension(faces)
    edges = boundary_edges(faces)
    nxt = {}
    for a, b in edges:
        a = int(a); b = int(b)
        if a in nxt:
            raise ValueError(f"non-manifold boundary at vertex {a}")
        nxt[a] = b
    loops: List[List[int]] = []
    visited = set()
    for start in sorted(nxt):
        if start in visited:
            continue
        loop = [start]
        visited.add(start)
        cur = nxt[start]
        while cur != start:
            if cur in visited or cur not in nxt:
                raise ValueError(f"boundary does not close into a loop at vertex {cur}")
            loop.append(cur)
            visited.add(cur)
            cur = nxt[cur]
        loops.append(loop)
    return loops


def boundary_loop(faces) -> List[int]:
    """Longest boundary loop, or an empty list for closed meshes."""
    loops = boundary_loops(faces)
    if not loops:
        return []
    return max(loops, key=len)


def map_vertices_to_circle(vertices, loop) -> np.ndarray:
    """Place loop vertices on the unit circle, spaced by arc length."""
    V = as_vertices(vertices)
    idx = np.asarray(loop, dtype=np.int64)
    if idx.size < 3:
        raise ValueError("a boundary loop needs at least 3 vertices")
    seg = np.linalg.norm(V[np.roll(idx, -1)] - V[idx], axis=1)
    total = seg.sum()
    if total <= 0.0:
        raise ValueError("boundary loop has zero length")
    theta = 2.0 * np.pi * np.concatenate([[0.0], np.cumsum(seg[:-1])]) / total
    return np.column_stack([np.cos(theta), np.sin(theta)])


def _cotangent_weights(V: np.ndarray, F: np.ndarray):
    rows, cols, vals = [], [], []
    for i, j, k in ((0, 1, 2), (1, 2, 0), (2, 0, 1)):
        # angle at corner k opposite edge (i, j)
        u = V[F[:, i]] - V[F[:, k]]
        w = V[F[:, j]] - V[F[:, k]]
        cross = np.linalg.norm(np.cross(u, w), axis=1)
        cot = np.einsum('ij,ij->i', u, w) / np.maximum(cross, np.finfo(float).tiny)
        rows.append(F[:, i]); cols.append(F[:, j]); vals.append(0.5 * cot)
    return np.concatenate(rows), np.concatenate(cols), np.concatenate(vals)


def harmonic_parameterization(vertices, faces, weights: str = 'uniform') -> np.ndarray:
    """Map a disk-topology triangle mesh into the unit disk.

    The boundary loop is fixed on the unit circle and interior vertices solve
    a discrete Laplace equation. With ``weights='uniform'`` (Tutte embedding)
    the map is guaranteed flip-free; ``'cotan'`` weights follow the surface
    metric more closely but may flip elements on obtuse meshes.

    Raises
    ------
    ValueError
        If the mesh is not a single disk or ``weights`` is unknown.
    """
    V = as_vertices(vertices)
    F = np.asarray(faces, dtype=np.int64)
    if element_dimension(F) != 2:
        raise ValueError("harmonic_parameterization needs a triangle mesh")
    if weights not in ('uniform', 'cotan'):
        raise ValueError(f"unknown weights {weights!r}; expected 'uniform' or 'cotan'")
    loops = boundary_loops(F)
    if len(loops) != 1:
        raise ValueError(f"expected a disk-topology mesh with one boundary loop, found {len(loops)}")
    used = np.unique(F)
    n_edges = np.unique(np.sort(np.vstack((F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]])), axis=1), axis=0).shape[0]
    euler = used.size - n_edges + F.shape[0]
    if euler != 1:
        raise ValueError(f"expected a disk-topology mesh (Euler characteristic 1), got {euler}")

    n = V.shape[0]
    P3 = np.column_stack([V, np.zeros(n)]) if V.shape[1] == 2 else V
    if weights == 'uniform':
        e = np.vstack((F[:, [0, 1]], F[:, [1, 2]], F[:, [2, 0]]))
        rows, cols, vals = e[:, 0], e[:, 1], np.ones(e.shape[0])
    else:
        rows, cols, vals = _cotangent_weights(P3, F)
    Wadj = sparse.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()
    Wadj = Wadj + Wadj.T
    if weights == 'uniform':
        # interior edges are seen twice; only adjacency matters
        Wadj.data[:] = 1.0
    L = (sparse.diags(np.asarray(Wadj.sum(axis=1)).ravel()) - Wadj).tocsr()

    bnd = np.asarray(loops[0], dtype=np.int64)
    uv = np.zeros((n, 2))
    uv[bnd] = map_vertices_to_circle(V, bnd)
    is_free = np.zeros(n, dtype=bool)
    is_free[used] = True
    is_free[bnd] = False
    free = np.nonzero(is_free)[0]
    if free.size:
        L_ff = L[free][:, free].tocsc()
        rhs = -(L[free][:, bnd] @ uv[bnd])
        uv[free] = splu(L_ff).solve(np.ascontiguousarray(rhs))

    areas = signed_areas(uv, F)
    if np.count_nonzero(areas < 0.0) > areas.size // 2:
        uv[:, 1] *= -1.0
    logger.debug('harmonic map: %d interior / %d boundary vertices (%s weights)',
                 free.size, bnd.size, weights)
    return uv


__all__ = [
    'boundary_edges', 'boundary_loops', 'boundary_loop',
    'map_vertices_to_circle', 'harmonic_parameterization',
]
