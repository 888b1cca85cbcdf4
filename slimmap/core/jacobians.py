"""Per-element Jacobians of the map from the rest mesh to the target positions."""
from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy import sparse

from .errors import ElementArityError


def compute_jacobians(gradients: Sequence[sparse.spmatrix], positions) -> np.ndarray:
    """Return the (M, d, d) stack of element Jacobians.

    ``J[e, i, a]`` is the derivative of target coordinate ``i`` along local
    axis ``a`` of element ``e``; in 2-D each element holds
    ``[[du/dx, du/dy], [dv/dx, dv/dy]]``.
    """
    X = np.asarray(positions, dtype=np.float64)
    d = len(gradients)
    if X.ndim != 2 or X.shape[1] != d:
        raise ElementArityError(
            f"positions must be (N, {d}) for {d} gradient operators, got shape {X.shape}")
    if gradients[0].shape[1] != X.shape[0]:
        raise ElementArityError(
            f"gradient operators expect {gradients[0].shape[1]} vertices, got {X.shape[0]}")
    # (d, M, d): axis a, element e, coordinate i
    per_axis = np.stack([D @ X for D in gradients])
    return np.ascontiguousarray(np.transpose(per_axis, (1, 2, 0)))


def flatten_jacobians(jacobians: np.ndarray) -> np.ndarray:
    """Row-major ``d*d`` entries per element."""
    J = np.asarray(jacobians)
    return J.reshape(J.shape[0], -1)


def jacobian_determinants(gradients: Sequence[sparse.spmatrix], positions) -> np.ndarray:
    return np.linalg.det(compute_jacobians(gradients, positions))


__all__ = ['compute_jacobians', 'flatten_jacobians', 'jacobian_determinants']
