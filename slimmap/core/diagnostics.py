"""Diagnostics for SLIM maps: inverted elements and distortion statistics."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .constants import EPS_MEASURE
from .energies import energy_terms
from .evaluator import element_singular_values
from .geometry import signed_element_measures


def find_inverted_elements(positions, elements, eps: float = EPS_MEASURE) -> List[Tuple[int, float]]:
    """Return list of (element_idx, signed_measure) for inverted or near-degenerate elements."""
    F = np.asarray(elements, dtype=np.int64)
    if F.size == 0:
        return []
    measures = signed_element_measures(positions, F)
    bad = np.nonzero((measures <= 0.0) | (np.abs(measures) <= eps))[0]
    return [(int(i), float(measures[i])) for i in bad]


def distortion_summary(state, positions: Optional[np.ndarray] = None) -> Dict[str, Any]:
    """Summarize the distortion of ``positions`` (default: the state's current positions).

    Needs a precomputed state (gradient operators and rest measures).
    """
    if not state.has_precomputed:
        raise ValueError("distortion_summary needs a precomputed solver state")
    X = state.positions if positions is None else np.asarray(positions, dtype=np.float64)
    s = element_singular_values(state.gradients, X)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        per_element = energy_terms(state.energy_kind).value(s, state.exp_factor)
    finite = per_element[np.isfinite(per_element)]
    total = float(np.dot(state.areas, per_element))
    return {
        'energy': state.energy_kind.value,
        'n_elements': int(s.shape[0]),
        'min_singular_value': float(s.min()) if s.size else float('nan'),
        'max_singular_value': float(s.max()) if s.size else float('nan'),
        'flipped': int(np.count_nonzero(s[:, -1] <= 0.0)) if s.size else 0,
        'energy_mean': float(finite.mean()) if finite.size else float('nan'),
        'energy_max': float(finite.max()) if finite.size else float('nan'),
        'energy_normalized': total / state.mesh_area if state.mesh_area > 0 else float('nan'),
    }


__all__ = ['find_inverted_elements', 'distortion_summary']
