"""SLIM solve driver: precompute once, then alternate local/global steps.

Typical use::

    solver = SlimSolver(V, F, uv0, energy='symmetric_dirichlet')
    solver.precompute()
    uv = solver.solve(20)

Each outer iteration runs the local step, assembles and solves the weighted
proxy, and moves towards the proxy minimizer with a flip-avoiding line
search, so the normalized energy never increases.
"""
from __future__ import annotations

import time
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional, Union

import numpy as np

from .config import SolverConfig
from .constants import EPS_MEASURE
from .energies import EnergyKind
from .errors import DegenerateElementError, ElementArityError, SolverStateError
from .evaluator import compute_energy
from .geometry import as_elements, as_vertices, element_dimension, element_measures, gradient_operators
from .global_step import solve_weighted_proxy, weight_vector
from .jacobians import jacobian_determinants
from .line_search import LineSearchResult, flip_avoiding_line_search
from .logging_utils import get_logger
from .state import SolverState
from .stats import IterationRecord

logger = get_logger('slimmap.solver')

LineSearchFn = Callable[..., LineSearchResult]


class SolverPhase(Enum):
    UNINITIALIZED = 'uninitialized'
    PRECOMPUTED = 'precomputed'
    ITERATING = 'iterating'
    CONVERGED = 'converged'
    STOPPED = 'stopped'


class SlimSolver:
    """Driver of one SLIM solve session.

    Parameters
    ----------
    vertices : (N, 2|3) array
        Rest positions.
    elements : (M, 3) or (M, 4) int array
        Triangles or tetrahedra.
    initial_positions : (N, d) array
        Flip-free starting map (``d`` = 2 for triangles, 3 for tetrahedra).
    energy : str or EnergyKind, optional
        Overrides ``config.energy``.
    soft_indices, soft_targets : array, optional
        Vertices pulled towards fixed positions with ``config.soft_penalty``.
    config : SolverConfig, optional
    line_search : callable, optional
        Replacement for :func:`flip_avoiding_line_search` with the same signature.
    """

    def __init__(self, vertices, elements, initial_positions,
                 energy: Optional[Union[str, EnergyKind]] = None,
                 soft_indices=None, soft_targets=None,
                 config: Optional[SolverConfig] = None,
                 line_search: Optional[LineSearchFn] = None):
        config = config if config is not None else SolverConfig()
        if energy is not None:
            config = replace(config, energy=EnergyKind.parse(energy))
        self.config = config

        V = as_vertices(vertices)
        F = as_elements(elements, V.shape[0])
        dim = element_dimension(F)
        if dim == 3 and V.shape[1] != 3:
            raise ElementArityError("tetrahedral meshes need (N, 3) rest vertices")
        X = np.array(initial_positions, dtype=np.float64)
        if X.shape != (V.shape[0], dim):
            raise ElementArityError(
                f"initial positions must have shape {(V.shape[0], dim)}, got {X.shape}")

        if soft_indices is None:
            idx = np.empty((0,), dtype=np.int64)
            targets = np.empty((0, dim))
        else:
            idx = np.asarray(soft_indices, dtype=np.int64).reshape(-1)
            targets = np.asarray(soft_targets, dtype=np.float64).reshape(-1, dim)
            if targets.shape[0] != idx.shape[0]:
                raise ValueError(
                    f"{idx.shape[0]} soft constraint indices but {targets.shape[0]} targets")
            if idx.size and (idx.min() < 0 or idx.max() >= V.shape[0]):
                raise ValueError("soft constraint index out of range")

        self._state = SolverState(
            vertices=V, elements=F, positions=X, dim=dim,
            energy_kind=config.energy, exp_factor=config.exp_factor,
            soft_indices=idx, soft_targets=targets,
            soft_penalty=config.soft_penalty, proximal_penalty=config.proximal_penalty,
        )
        self._line_search = line_search if line_search is not None else flip_avoiding_line_search
        self._phase = SolverPhase.UNINITIALIZED
        self._history: List[IterationRecord] = []

    @property
    def state(self) -> SolverState:
        return self._state

    @property
    def phase(self) -> SolverPhase:
        return self._phase

    @property
    def positions(self) -> np.ndarray:
        return self._state.positions.copy()

    @property
    def energy(self) -> float:
        """Current energy normalized by the total rest area (or volume)."""
        return self._state.energy

    @property
    def history(self) -> List[IterationRecord]:
        return list(self._history)

    def _check_active(self):
        if self._phase is SolverPhase.STOPPED:
            raise SolverStateError("solver was stopped; create a new SlimSolver")

    def _energy_of(self, positions) -> float:
        return compute_energy(self._state, positions)

    def precompute(self) -> None:
        """Build gradient operators and rest measures, evaluate the initial energy.

        Runs once; later calls are no-ops.

        Raises
        ------
        DegenerateElementError
            If a rest element has zero measure or the initial map inverts or
            collapses an element.
        """
        self._check_active()
        st = self._state
        if st.has_precomputed:
            return
        t0 = time.perf_counter()
        areas = element_measures(st.vertices, st.elements)
        tiny = areas <= EPS_MEASURE * float(areas.max(initial=0.0))
        if np.any(tiny):
            bad = np.nonzero(tiny)[0]
            raise DegenerateElementError(
                f"{bad.size} rest element(s) with zero measure (first: {int(bad[0])})", elements=bad)

        uniform = self.config.mesh_improvement_3d and st.dim == 3
        gradients = gradient_operators(st.vertices, st.elements, uniform=uniform)
        dets = jacobian_determinants(gradients, st.positions)
        inverted = ~(dets > 0.0)
        if np.any(inverted):
            bad = np.nonzero(inverted)[0]
            raise DegenerateElementError(
                f"initial positions invert or collapse {bad.size} element(s) (first: {int(bad[0])})",
                elements=bad)

        st.gradients = gradients
        st.areas = areas
        st.mesh_area = float(areas.sum())
        st.weight_vector = weight_vector(areas, st.dim)
        e = self._energy_of(st.positions)
        if not np.isfinite(e):
            raise DegenerateElementError("initial energy is not finite")
        st.energy = e / st.mesh_area
        st.has_precomputed = True
        self._phase = SolverPhase.PRECOMPUTED
        logger.info('precompute: %d vertices, %d %s, energy=%s, initial energy %.6e (%.3fs)',
                    st.n_vertices, st.n_elements, 'triangles' if st.dim == 2 else 'tetrahedra',
                    st.energy_kind.value, st.energy, time.perf_counter() - t0)

    def solve(self, iterations: int, energy_tolerance: Optional[float] = None) -> np.ndarray:
        """Run up to ``iterations`` outer iterations and return the positions.

        Stops early (phase ``CONVERGED``) once two successive normalized
        energies differ by less than ``energy_tolerance``, or when the line
        search can no longer decrease the energy.
        """
        self._check_active()
        if iterations < 0:
            raise ValueError("iterations must be non-negative")
        if not self._state.has_precomputed:
            self.precompute()
        st = self._state
        cfg = self.config
        self._phase = SolverPhase.ITERATING
        for _ in range(iterations):
            t0 = time.perf_counter()
            candidate, solve_ok = solve_weighted_proxy(
                st, n_workers=cfg.n_workers, tol=cfg.cg_tolerance, maxiter=cfg.cg_max_iterations)
            previous = st.energy
            result = self._line_search(
                st.elements, st.positions, candidate, self._energy_of, previous * st.mesh_area,
                max_iterations=cfg.line_search_max_iterations, safety_factor=cfg.step_safety_factor)
            st.positions = np.asarray(result.positions, dtype=np.float64)
            st.energy = float(result.energy) / st.mesh_area
            record = IterationRecord(len(self._history), st.energy, float(result.step),
                                     bool(solve_ok), time.perf_counter() - t0)
            self._history.append(record)
            logger.debug('iter %d: energy %.6e step %.4f%s', record.iteration, record.energy,
                         record.step, '' if solve_ok else ' (iterative solve hit maxiter)')

            if record.step == 0.0:
                logger.info('no energy decrease along the proxy direction; stopping at iteration %d',
                            record.iteration)
                self._phase = SolverPhase.CONVERGED
                break
            if energy_tolerance is not None and abs(previous - st.energy) < energy_tolerance:
                logger.info('converged at iteration %d: energy %.6e', record.iteration, st.energy)
                self._phase = SolverPhase.CONVERGED
                break
        return self.positions

    def stop(self) -> None:
        """End the session; further ``precompute``/``solve`` calls raise ``SolverStateError``."""
        self._phase = SolverPhase.STOPPED


def slim_precompute(vertices, elements, initial_positions,
                    energy: Optional[Union[str, EnergyKind]] = None,
                    soft_indices=None, soft_targets=None,
                    config: Optional[SolverConfig] = None) -> SlimSolver:
    solver = SlimSolver(vertices, elements, initial_positions, energy=energy,
                        soft_indices=soft_indices, soft_targets=soft_targets, config=config)
    solver.precompute()
    return solver


def slim_solve(solver: SlimSolver, iterations: int) -> np.ndarray:
    return solver.solve(iterations)


__all__ = ['SolverPhase', 'SlimSolver', 'slim_precompute', 'slim_solve']
