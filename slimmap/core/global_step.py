"""Global step: weighted proxy assembly and sparse solve.

Unknowns are flattened coordinate-block by coordinate-block,
``x[k * N + v] = positions[v, k]``. The proxy energy

    sum_e area_e ||W_e (J_e(x) - R_e)||_F^2 + p ||x - x_cur||^2 + sum_i q ||x_i - c_i||^2

is quadratic in ``x``; its normal equations ``L x = rhs`` are assembled from
a fat operator ``A`` with one row per (element, output component, axis):

    row (c * d + a) * M + e,  column k * N + v,  value W_e[c, k] * D_a[e, v]

so ``(A x)`` holds ``(W_e J_e)[c, a]`` and the matching target entry is
``(W_e R_e)[c, a]``.
"""
from __future__ import annotations

import warnings
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import cg, splu

from .constants import CG_TOLERANCE
from .errors import SingularSystemError, SolverConvergenceWarning
from .jacobians import compute_jacobians
from .local_step import update_weights_and_rotations
from .logging_utils import get_logger

logger = get_logger('slimmap.global_step')


def flatten_positions(positions) -> np.ndarray:
    return np.ascontiguousarray(np.asarray(positions, dtype=np.float64).T).reshape(-1)


def unflatten_positions(x, dim: int) -> np.ndarray:
    return np.ascontiguousarray(np.asarray(x, dtype=np.float64).reshape(dim, -1).T)


def weight_vector(areas, dim: int) -> np.ndarray:
    """Element areas replicated over the ``dim * dim`` row blocks of ``A``."""
    return np.tile(np.asarray(areas, dtype=np.float64), dim * dim)


def build_weighted_operator(gradients: Sequence[sparse.spmatrix], weights, n_vertices: int) -> sparse.csr_matrix:
    """Assemble ``A`` from triplets in one batch."""
    W = np.asarray(weights, dtype=np.float64)
    m, d = W.shape[0], W.shape[1]
    rows, cols, vals = [], [], []
    for a, D in enumerate(gradients):
        C = D.tocoo()
        for c in range(d):
            for k in range(d):
                rows.append((c * d + a) * m + C.row)
                cols.append(k * n_vertices + C.col)
                vals.append(C.data * W[C.row, c, k])
    return sparse.coo_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
        shape=(d * d * m, d * n_vertices),
    ).tocsr()


def build_target_vector(weights, rotations) -> np.ndarray:
    """Per-row targets ``(W_e R_e)[c, a]`` in the row layout of ``A``."""
    WR = np.asarray(weights) @ np.asarray(rotations)
    return np.ascontiguousarray(np.transpose(WR, (1, 2, 0))).reshape(-1)


def assemble_system(gradients, weights, rotations, weights_per_row, positions,
                    proximal_penalty: float, soft_indices=None, soft_targets=None,
                    soft_penalty: float = 0.0) -> Tuple[sparse.csr_matrix, np.ndarray]:
    """Return ``(L, rhs)`` of the weighted proxy problem.

    ``L = A^T diag(wv) A + p I + soft diagonal`` is symmetric positive
    definite whenever ``p > 0``.
    """
    X = np.asarray(positions, dtype=np.float64)
    n, d = X.shape
    A = build_weighted_operator(gradients, weights, n)
    At = A.T.tocsr()
    AtW = At @ sparse.diags(weights_per_row)
    L = (AtW @ A + proximal_penalty * sparse.identity(d * n, format='csr')).tocsr()
    rhs = AtW @ build_target_vector(weights, rotations) + proximal_penalty * flatten_positions(X)

    if soft_indices is not None and len(soft_indices) and soft_penalty > 0.0:
        b = np.asarray(soft_indices, dtype=np.int64)
        bc = np.asarray(soft_targets, dtype=np.float64).reshape(len(b), d)
        diag = np.zeros(d * n)
        for k in range(d):
            np.add.at(diag, k * n + b, soft_penalty)
            np.add.at(rhs, k * n + b, soft_penalty * bc[:, k])
        L = (L + sparse.diags(diag)).tocsr()
    return L, rhs


def build_linear_system(state) -> Tuple[sparse.csr_matrix, np.ndarray]:
    """Assemble the system for the current local-step output stored on ``state``."""
    return assemble_system(
        state.gradients, state.weights, state.rotations, state.weight_vector, state.positions,
        state.proximal_penalty, state.soft_indices, state.soft_targets, state.soft_penalty,
    )


def solve_linear_system(L: sparse.spmatrix, rhs, dim: int, guess: Optional[np.ndarray] = None,
                        tol: float = CG_TOLERANCE, maxiter: Optional[int] = None) -> Tuple[np.ndarray, bool]:
    """Solve ``L x = rhs``; returns ``(x, converged)``.

    2-D problems use a sparse LU factorization with a symmetric fill-reducing
    ordering. 3-D problems use Jacobi-preconditioned conjugate gradients
    warm-started from ``guess``; when the iteration budget runs out the last
    iterate is returned with ``converged=False`` and a
    ``SolverConvergenceWarning`` is emitted.
    """
    rhs = np.asarray(rhs, dtype=np.float64)
    if dim == 2:
        try:
            lu = splu(sparse.csc_matrix(L), permc_spec='MMD_AT_PLUS_A')
        except RuntimeError as exc:
            raise SingularSystemError(f"global system factorization failed: {exc}") from exc
        x = lu.solve(rhs)
        if not np.all(np.isfinite(x)):
            raise SingularSystemError("global system solve produced non-finite values")
        return x, True

    diag = L.diagonal()
    if np.any(diag <= 0.0):
        raise SingularSystemError("global system has a non-positive diagonal entry")
    precond = sparse.diags(1.0 / diag)
    x, info = cg(L, rhs, x0=guess, rtol=tol, maxiter=maxiter, M=precond)
    if info < 0:
        raise SingularSystemError(f"conjugate gradient breakdown (info={info})")
    if info > 0:
        residual = np.linalg.norm(L @ x - rhs) / max(np.linalg.norm(rhs), np.finfo(float).tiny)
        logger.warning('CG stopped after %d iterations with relative residual %.3e (tol %.1e)',
                       info, residual, tol)
        warnings.warn(
            f"iterative global solve did not converge (relative residual {residual:.3e})",
            SolverConvergenceWarning, stacklevel=2)
        return x, False
    return x, True


def solve_weighted_proxy(state, n_workers: int = 1, tol: float = CG_TOLERANCE,
                         maxiter: Optional[int] = None) -> Tuple[np.ndarray, bool]:
    """Local step, assembly and solve; returns candidate positions and the solve status.

    Updates ``state.jacobians``, ``state.weights``, ``state.rotations``,
    ``state.singular_values`` and ``state.rhs`` in place.
    """
    state.jacobians = compute_jacobians(state.gradients, state.positions)
    local = update_weights_and_rotations(state.jacobians, state.energy_kind, state.exp_factor, n_workers)
    state.weights, state.rotations, state.singular_values = local
    L, rhs = build_linear_system(state)
    state.rhs = rhs
    x, converged = solve_linear_system(
        L, rhs, state.dim, guess=flatten_positions(state.positions), tol=tol, maxiter=maxiter)
    return unflatten_positions(x, state.dim), converged


__all__ = [
    'flatten_positions', 'unflatten_positions', 'weight_vector', 'build_weighted_operator',
    'build_target_vector', 'assemble_system', 'build_linear_system', 'solve_linear_system',
    'solve_weighted_proxy',
]
