"""Mutable aggregate threaded through the solver components."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from scipy import sparse

from .constants import DEFAULT_EXP_FACTOR, DEFAULT_SOFT_PENALTY, PROXIMAL_PENALTY
from .energies import EnergyKind


@dataclass
class SolverState:
    """Everything one solve session reads and writes.

    Topology and rest geometry never change. ``positions`` and the
    per-element buffers (``jacobians``, ``rotations``, ``weights``) are
    rewritten each iteration; ``gradients``, ``areas`` and
    ``weight_vector`` are filled once by the precompute step.
    """
    vertices: np.ndarray                      # rest positions (N, 2|3)
    elements: np.ndarray                      # (M, 3|4)
    positions: np.ndarray                     # current target positions (N, dim)
    dim: int
    energy_kind: EnergyKind = EnergyKind.SYMMETRIC_DIRICHLET
    exp_factor: float = DEFAULT_EXP_FACTOR
    soft_indices: np.ndarray = field(default_factory=lambda: np.empty((0,), dtype=np.int64))
    soft_targets: np.ndarray = field(default_factory=lambda: np.empty((0, 2)))
    soft_penalty: float = DEFAULT_SOFT_PENALTY
    proximal_penalty: float = PROXIMAL_PENALTY

    # filled by precompute
    areas: Optional[np.ndarray] = None        # (M,) rest area / volume
    mesh_area: float = 0.0
    gradients: List[sparse.csr_matrix] = field(default_factory=list)
    weight_vector: Optional[np.ndarray] = None  # (dim*dim*M,) areas replicated per output row
    has_precomputed: bool = False

    # rewritten every iteration
    jacobians: Optional[np.ndarray] = None    # (M, dim, dim)
    rotations: Optional[np.ndarray] = None    # (M, dim, dim)
    weights: Optional[np.ndarray] = None      # (M, dim, dim), symmetric
    singular_values: Optional[np.ndarray] = None
    rhs: Optional[np.ndarray] = None
    energy: float = float('nan')              # normalized by mesh_area

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_elements(self) -> int:
        return int(self.elements.shape[0])


__all__ = ['SolverState']
