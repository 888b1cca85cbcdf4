"""True (non-proxy) energy of a candidate position set."""
from __future__ import annotations

from typing import Sequence, Union

import numpy as np
from scipy import sparse

from .energies import EnergyKind, energy_terms
from .jacobians import compute_jacobians
from .svd import polar_svd


def element_singular_values(gradients: Sequence[sparse.spmatrix], positions) -> np.ndarray:
    """Signed singular values (M, d) of every element Jacobian at ``positions``.

    Rows whose Jacobian is not finite are NaN.
    """
    J = compute_jacobians(gradients, positions)
    finite = np.all(np.isfinite(J), axis=(1, 2))
    if np.all(finite):
        return polar_svd(J)[3]
    s = np.full(J.shape[:2], np.nan)
    if np.any(finite):
        s[finite] = polar_svd(J[finite])[3]
    return s


def per_element_energy(gradients, positions, energy: Union[str, EnergyKind],
                       exp_factor: float = 1.0) -> np.ndarray:
    """Distortion density of each element (zero at rest, inf where the Jacobian is not finite)."""
    s = element_singular_values(gradients, positions)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        values = energy_terms(energy).value(s, exp_factor)
    return np.where(np.any(np.isnan(s), axis=1), np.inf, values)


def distortion_energy(gradients, areas, positions, energy: Union[str, EnergyKind],
                      exp_factor: float = 1.0) -> float:
    """Area/volume weighted sum of the per-element distortion."""
    return float(np.dot(np.asarray(areas, dtype=np.float64),
                        per_element_energy(gradients, positions, energy, exp_factor)))


def soft_constraint_energy(positions, indices, targets, penalty: float) -> float:
    if indices is None or len(indices) == 0 or penalty == 0.0:
        return 0.0
    X = np.asarray(positions, dtype=np.float64)
    diff = np.asarray(targets, dtype=np.float64).reshape(len(indices), X.shape[1]) - X[np.asarray(indices)]
    return float(penalty * np.sum(diff * diff))


def compute_energy(state, positions) -> float:
    """Distortion plus soft-constraint penalty (not normalized by mesh area).

    Inverted or collapsed elements make most energies non-finite; the value
    is returned as is and callers decide how to treat it.
    """
    e = distortion_energy(state.gradients, state.areas, positions, state.energy_kind, state.exp_factor)
    return e + soft_constraint_energy(positions, state.soft_indices, state.soft_targets, state.soft_penalty)


__all__ = [
    'element_singular_values', 'per_element_energy', 'distortion_energy',
    'soft_constraint_energy', 'compute_energy',
]
