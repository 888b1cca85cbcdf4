"""Flip-avoiding line search.

Along ``x(t) = x + t d`` the signed area of a triangle is a quadratic in
``t`` and the signed volume of a tetrahedron a cubic. The smallest positive
root over all elements bounds the step before the first element collapses;
the search starts from a safety fraction of that bound (capped at 1) and
halves the step until the energy strictly decreases.
"""
from __future__ import annotations

from typing import Callable, NamedTuple, Optional

import numpy as np

from .constants import EPS_ROOT, MAX_LINE_SEARCH_ITERATIONS, STEP_SAFETY_FACTOR
from .geometry import element_dimension
from .logging_utils import get_logger

logger = get_logger('slimmap.line_search')

EnergyFn = Callable[[np.ndarray], float]


class LineSearchResult(NamedTuple):
    positions: np.ndarray
    energy: float
    step: float        # accepted fraction of the direction, 0 when nothing was accepted
    max_step: float    # safe upper bound the search started from


def _min_positive(roots: np.ndarray) -> np.ndarray:
    roots = np.where(np.isfinite(roots) & (roots > 0.0), roots, np.inf)
    return roots.min(axis=1)


def smallest_positive_quadratic_roots(a, b, c) -> np.ndarray:
    """Smallest positive root of ``a t^2 + b t + c`` per entry (inf when none)."""
    a, b, c = (np.asarray(v, dtype=np.float64) for v in (a, b, c))
    out = np.full(a.shape, np.inf)
    scale = np.maximum(np.maximum(np.abs(a), np.abs(b)), np.abs(c))
    quad = np.abs(a) > EPS_ROOT * scale
    lin = ~quad & (np.abs(b) > EPS_ROOT * scale)

    disc = b * b - 4.0 * a * c
    ok = quad & (disc >= 0.0)
    if np.any(ok):
        # q never cancels; the second root comes from the product c / a
        q = -0.5 * (b[ok] + np.copysign(np.sqrt(disc[ok]), b[ok]))
        with np.errstate(divide='ignore', invalid='ignore'):
            roots = np.column_stack([q / a[ok], c[ok] / q])
        out[ok] = _min_positive(roots)
    if np.any(lin):
        out[lin] = _min_positive((-c[lin] / b[lin])[:, None])
    return out


def smallest_positive_cubic_roots(a, b, c, d) -> np.ndarray:
    """Smallest positive real root of ``a t^3 + b t^2 + c t + d`` per entry (inf when none)."""
    a, b, c, d = (np.asarray(v, dtype=np.float64) for v in (a, b, c, d))
    scale = np.max(np.abs(np.stack([a, b, c, d])), axis=0)
    cubic = np.abs(a) > EPS_ROOT * scale
    out = np.full(a.shape, np.inf)
    if np.any(~cubic):
        out[~cubic] = smallest_positive_quadratic_roots(b[~cubic], c[~cubic], d[~cubic])
    if np.any(cubic):
        # eigenvalues of the companion matrix of the monic polynomial
        k = int(np.count_nonzero(cubic))
        comp = np.zeros((k, 3, 3))
        comp[:, 0, 0] = -b[cubic] / a[cubic]
        comp[:, 0, 1] = -c[cubic] / a[cubic]
        comp[:, 0, 2] = -d[cubic] / a[cubic]
        comp[:, 1, 0] = 1.0
        comp[:, 2, 1] = 1.0
        ev = np.linalg.eigvals(comp)
        real = np.abs(ev.imag) <= 1e-10 * np.maximum(1.0, np.abs(ev))
        out[cubic] = _min_positive(np.where(real, ev.real, np.inf))
    return out


def _det3(u, v, w):
    return np.einsum('ij,ij->i', u, np.cross(v, w))


def max_step_to_singularity(elements, positions, direction) -> float:
    """Largest ``t`` such that no element of ``positions + s * direction`` degenerates for ``s < t``."""
    F = np.asarray(elements, dtype=np.int64)
    X = np.asarray(positions, dtype=np.float64)
    D = np.asarray(direction, dtype=np.float64)
    if F.size == 0:
        return np.inf
    if element_dimension(F) == 2:
        e1, e2 = X[F[:, 1]] - X[F[:, 0]], X[F[:, 2]] - X[F[:, 0]]
        d1, d2 = D[F[:, 1]] - D[F[:, 0]], D[F[:, 2]] - D[F[:, 0]]

        def cross(u, v):
            return u[:, 0] * v[:, 1] - u[:, 1] * v[:, 0]

        roots = smallest_positive_quadratic_roots(
            cross(d1, d2), cross(e1, d2) + cross(d1, e2), cross(e1, e2))
    else:
        E = [X[F[:, k]] - X[F[:, 0]] for k in (1, 2, 3)]
        dE = [D[F[:, k]] - D[F[:, 0]] for k in (1, 2, 3)]
        c3 = _det3(*dE)
        c2 = _det3(dE[0], dE[1], E[2]) + _det3(dE[0], E[1], dE[2]) + _det3(E[0], dE[1], dE[2])
        c1 = _det3(dE[0], E[1], E[2]) + _det3(E[0], dE[1], E[2]) + _det3(E[0], E[1], dE[2])
        c0 = _det3(*E)
        roots = smallest_positive_cubic_roots(c3, c2, c1, c0)
    return float(roots.min())


def line_search(positions, direction, step: float, energy_fn: EnergyFn,
                current_energy: Optional[float] = None,
                max_iterations: int = MAX_LINE_SEARCH_ITERATIONS) -> LineSearchResult:
    """Backtracking search for a strictly lower energy along ``direction``.

    Returns the input positions and energy (``step == 0``) when no tried step
    decreases the energy; non-finite energies count as no decrease.
    """
    X = np.asarray(positions, dtype=np.float64)
    D = np.asarray(direction, dtype=np.float64)
    old = energy_fn(X) if current_energy is None else float(current_energy)
    start = step
    for _ in range(max_iterations):
        candidate = X + step * D
        e = energy_fn(candidate)
        if np.isfinite(e) and e < old:
            return LineSearchResult(candidate, float(e), step, start)
        step *= 0.5
    logger.debug('line search found no decrease after %d halvings', max_iterations)
    return LineSearchResult(X, old, 0.0, start)


def flip_avoiding_line_search(elements, current, candidate, energy_fn: EnergyFn,
                              current_energy: Optional[float] = None,
                              max_iterations: int = MAX_LINE_SEARCH_ITERATIONS,
                              safety_factor: float = STEP_SAFETY_FACTOR) -> LineSearchResult:
    """Move from ``current`` towards ``candidate`` without inverting any element.

    The energy of the returned positions never exceeds ``current_energy``.
    """
    X = np.asarray(current, dtype=np.float64)
    D = np.asarray(candidate, dtype=np.float64) - X
    max_step = min(1.0, safety_factor * max_step_to_singularity(elements, X, D))
    return line_search(X, D, max_step, energy_fn, current_energy, max_iterations)


__all__ = [
    'LineSearchResult', 'smallest_positive_quadratic_roots', 'smallest_positive_cubic_roots',
    'max_step_to_singularity', 'line_search', 'flip_avoiding_line_search',
]
