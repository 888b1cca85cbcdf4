"""Central numerical tolerances and solver constants.

This module centralizes tiny numeric thresholds used across the codebase so
they can be tuned consistently and referenced without scattering literals.
"""
from __future__ import annotations

# Local step tolerances
EPS_SINGULAR: float = 1e-8        # |s - 1| (or |s - target|) below this forces weight 1

# Geometry tolerances
EPS_MEASURE: float = 1e-14        # zero-measure threshold (relative to the largest rest element in precompute)
EPS_ROOT: float = 1e-12           # leading-coefficient threshold in step-to-singularity roots

# Global step
PROXIMAL_PENALTY: float = 1e-4    # strength of the ||x - x_current||^2 anchor
CG_TOLERANCE: float = 1e-8        # relative residual target of the 3-D iterative solve

# Line search
MAX_LINE_SEARCH_ITERATIONS: int = 12
STEP_SAFETY_FACTOR: float = 0.8   # fraction of the step that would collapse an element

# Defaults exposed through SolverConfig
DEFAULT_SOFT_PENALTY: float = 1e5
DEFAULT_EXP_FACTOR: float = 1.0

__all__ = [
    'EPS_SINGULAR',
    'EPS_MEASURE',
    'EPS_ROOT',
    'PROXIMAL_PENALTY',
    'CG_TOLERANCE',
    'MAX_LINE_SEARCH_ITERATIONS',
    'STEP_SAFETY_FACTOR',
    'DEFAULT_SOFT_PENALTY',
    'DEFAULT_EXP_FACTOR',
]
