"""Configuration objects for the SLIM solver and its command line driver."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

from .constants import (
    CG_TOLERANCE,
    DEFAULT_EXP_FACTOR,
    DEFAULT_SOFT_PENALTY,
    MAX_LINE_SEARCH_ITERATIONS,
    PROXIMAL_PENALTY,
    STEP_SAFETY_FACTOR,
)
from .energies import EnergyKind


@dataclass
class SolverConfig:
    """Numerical parameters of a solve session.

    Attributes
    ----------
    energy : EnergyKind
        Distortion energy minimized by the solver.
    soft_penalty : float
        Strength of the soft positional constraints.
    proximal_penalty : float
        Strength of the proximal anchor to the previous iterate.
    exp_factor : float
        Sharpness of the exponential energies (ignored otherwise).
    cg_tolerance, cg_max_iterations
        Relative residual target and iteration budget of the 3-D iterative solve
        (``None`` lets scipy pick ``10 * n``).
    mesh_improvement_3d : bool
        Measure tetrahedra against a regular reference element instead of
        their rest shape.
    n_workers : int
        Threads used by the per-element local step (1 = serial).
    """
    energy: EnergyKind = EnergyKind.SYMMETRIC_DIRICHLET
    soft_penalty: float = DEFAULT_SOFT_PENALTY
    proximal_penalty: float = PROXIMAL_PENALTY
    exp_factor: float = DEFAULT_EXP_FACTOR
    cg_tolerance: float = CG_TOLERANCE
    cg_max_iterations: Optional[int] = None
    mesh_improvement_3d: bool = False
    n_workers: int = 1
    line_search_max_iterations: int = MAX_LINE_SEARCH_ITERATIONS
    step_safety_factor: float = STEP_SAFETY_FACTOR

    def __post_init__(self):
        self.energy = EnergyKind.parse(self.energy)
        if self.proximal_penalty <= 0.0:
            raise ValueError("proximal_penalty must be positive to keep the global system definite")
        if self.soft_penalty < 0.0:
            raise ValueError("soft_penalty must be non-negative")
        if self.n_workers < 1:
            raise ValueError("n_workers must be >= 1")
        if not 0.0 < self.step_safety_factor <= 1.0:
            raise ValueError("step_safety_factor must lie in (0, 1]")

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['energy'] = self.energy.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SolverConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown SolverConfig keys: {unknown}")
        return cls(**data)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_json(cls, path: str) -> 'SolverConfig':
        with open(path, 'r', encoding='utf-8') as f:
            return cls.from_dict(json.load(f))


@dataclass
class RunConfig:
    """Unified configuration of a command line run.

    Attributes
    ----------
    solver : SolverConfig
        Numerical parameters forwarded to SlimSolver.
    iterations : int
        Outer iterations to run.
    energy_tolerance : float, optional
        Stop early once successive normalized energies differ by less than this.
    out, plot : str, optional
        Output mesh path and optional PNG of the resulting map.
    history_json : str, optional
        Write the per-iteration records as a JSON list.
    soft_constraints : str, optional
        Table of ``index x y [z]`` rows pinning vertices with ``solver.soft_penalty``.
    """
    solver: SolverConfig = field(default_factory=SolverConfig)
    iterations: int = 20
    energy_tolerance: Optional[float] = None
    out: Optional[str] = None
    plot: Optional[str] = None
    history_json: Optional[str] = None
    soft_constraints: Optional[str] = None


__all__ = ['SolverConfig', 'RunConfig', 'EnergyKind']
