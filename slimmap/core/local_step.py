"""Local step: closest rotations and proxy weights per element.

For every element the Jacobian ``J = U diag(s) V^T`` is replaced by a target
``R = U diag(t) V^T`` (a rotation for rigidity energies, a scaled rotation
for the conformal family) and a symmetric weight ``W = U diag(w) U^T`` chosen
so that the weighted ARAP term ``||W (J - R)||^2`` has the same gradient as
the selected distortion energy at the current iterate:

    w_k = sqrt(g_k / (2 (s_k - t_k)))      g_k = dE/ds_k

The ratio is a removable 0/0 where ``s_k`` meets its target; those entries
are set to 1.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import NamedTuple, Union

import numpy as np

from .constants import EPS_SINGULAR
from .energies import EnergyKind, EnergyTerms, energy_terms
from .errors import DegenerateElementError
from .logging_utils import get_logger
from .svd import polar_svd

logger = get_logger('slimmap.local_step')

# below this many elements per worker the thread pool costs more than it saves
_MIN_ELEMENTS_PER_WORKER = 2048


class LocalStepResult(NamedTuple):
    weights: np.ndarray           # (M, d, d) symmetric
    rotations: np.ndarray         # (M, d, d)
    singular_values: np.ndarray   # (M, d), decreasing


def reweighted_singular_values(s: np.ndarray, terms: EnergyTerms, exp_factor: float,
                               target: np.ndarray) -> np.ndarray:
    """Proxy weights ``w_k`` for singular values ``s`` (M, d)."""
    if terms.rigid:
        return np.ones_like(s)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        g = terms.gradient(s, exp_factor)
        w = np.sqrt(g / (2.0 * (s - target)))
    if terms.similarity:
        w = np.where(np.abs(s - target) < EPS_SINGULAR, 1.0, w)
    return np.where(np.abs(s - 1.0) < EPS_SINGULAR, 1.0, w)


def _local_step_block(J: np.ndarray, terms: EnergyTerms, exp_factor: float, offset: int = 0) -> LocalStepResult:
    nonfinite = ~np.all(np.isfinite(J), axis=(1, 2))
    if np.any(nonfinite):
        idx = np.nonzero(nonfinite)[0] + offset
        raise DegenerateElementError(
            f"{idx.size} element(s) with non-finite Jacobian reached the local step (first: {int(idx[0])})",
            elements=idx)
    _, _, U, s, V = polar_svd(J)
    bad = ~np.all(np.isfinite(s), axis=1) | np.any(s <= 0.0, axis=1)
    if np.any(bad):
        idx = np.nonzero(bad)[0] + offset
        raise DegenerateElementError(
            f"{idx.size} inverted or degenerate element(s) reached the local step (first: {int(idx[0])})",
            elements=idx)
    target = terms.target(s)
    w = reweighted_singular_values(s, terms, exp_factor, target)
    if not np.all(np.isfinite(w)):
        idx = np.nonzero(~np.all(np.isfinite(w), axis=1))[0] + offset
        raise DegenerateElementError(
            f"non-finite proxy weights for {idx.size} element(s) (first: {int(idx[0])})", elements=idx)
    Ut = np.swapaxes(U, 1, 2)
    rotations = U @ (target[:, :, None] * np.swapaxes(V, 1, 2))
    weights = U @ (w[:, :, None] * Ut)
    return LocalStepResult(weights, rotations, s)


def update_weights_and_rotations(jacobians, energy: Union[str, EnergyKind],
                                 exp_factor: float = 1.0, n_workers: int = 1) -> LocalStepResult:
    """Run the local step on a (M, d, d) stack of Jacobians.

    Elements are independent; with ``n_workers > 1`` large meshes are split in
    contiguous chunks processed on a thread pool and joined before returning.

    Raises
    ------
    DegenerateElementError
        If any element has a non-positive or non-finite singular value.
    """
    J = np.asarray(jacobians, dtype=np.float64)
    terms = energy_terms(energy)
    m = J.shape[0]
    n_chunks = min(n_workers, max(1, m // _MIN_ELEMENTS_PER_WORKER))
    if n_chunks <= 1:
        return _local_step_block(J, terms, exp_factor)
    bounds = np.linspace(0, m, n_chunks + 1).astype(int)
    logger.debug('local step: %d elements on %d workers', m, n_chunks)
    with ThreadPoolExecutor(max_workers=n_chunks) as pool:
        futures = [pool.submit(_local_step_block, J[lo:hi], terms, exp_factor, lo)
                   for lo, hi in zip(bounds[:-1], bounds[1:])]
        parts = [f.result() for f in futures]
    return LocalStepResult(*(np.concatenate(arrs) for arrs in zip(*parts)))


__all__ = ['LocalStepResult', 'reweighted_singular_values', 'update_weights_and_rotations']
