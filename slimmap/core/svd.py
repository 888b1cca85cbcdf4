"""Batched polar / singular value decomposition of small square matrices."""
from __future__ import annotations

from typing import Tuple

import numpy as np


def polar_svd(A) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Polar decomposition ``A = R T`` computed through the SVD ``A = U diag(S) V^T``.

    Parameters
    ----------
    A : (m, d, d) or (d, d) array

    Returns
    -------
    R : closest proper rotation (det = +1)
    T : symmetric factor ``V diag(S) V^T``
    U, S, V : singular factors with ``U`` and ``V`` proper rotations

    Notes
    -----
    Singular values come in decreasing order. When ``det(U V^T) < 0`` (a
    reflection, i.e. an inverted element) the last column of ``U`` and the
    last singular value are negated so ``R`` stays a rotation; the smallest
    singular value is then negative.
    """
    A = np.asarray(A, dtype=np.float64)
    single = A.ndim == 2
    if single:
        A = A[None]
    U, S, Vt = np.linalg.svd(A)
    V = np.swapaxes(Vt, 1, 2).copy()
    # make V a rotation first, moving the sign onto U
    flip_v = np.linalg.det(V) < 0
    if np.any(flip_v):
        V[flip_v, :, -1] *= -1.0
        U[flip_v, :, -1] *= -1.0
    flip_u = np.linalg.det(U) < 0
    if np.any(flip_u):
        U[flip_u, :, -1] *= -1.0
        S[flip_u, -1] *= -1.0
    R = U @ np.swapaxes(V, 1, 2)
    T = V @ (S[:, :, None] * np.swapaxes(V, 1, 2))
    if single:
        return R[0], T[0], U[0], S[0], V[0]
    return R, T, U, S, V


__all__ = ['polar_svd']
