"""Distortion energies expressed in the singular values of element Jacobians.

Each energy kind is one entry of a closed table. An entry carries vectorized
closed forms over an ``(m, d)`` array of singular values (``d`` = 2 for
triangles, 3 for tetrahedra):

- ``raw_value``: the energy density as usually written in the literature,
- ``gradient``: its partial derivatives with respect to each singular value,
- ``target``: the singular values of the closest rotation / projection the
  local step pulls each element towards.

``EnergyTerms.value`` is ``raw_value`` shifted so the undeformed state
(all singular values equal to 1) evaluates to exactly 0. The shift is a
per-element constant and does not change minimizers or step acceptance.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Union

import numpy as np


class EnergyKind(Enum):
    ARAP = 'arap'
    SYMMETRIC_DIRICHLET = 'symmetric_dirichlet'
    LOG_ARAP = 'log_arap'
    CONFORMAL = 'conformal'
    EXP_CONFORMAL = 'exp_conformal'
    EXP_SYMMETRIC_DIRICHLET = 'exp_symmetric_dirichlet'

    @classmethod
    def parse(cls, value: Union[str, 'EnergyKind']) -> 'EnergyKind':
        """Accept an EnergyKind, its value or its name (case and dash insensitive)."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace('-', '_')
        for kind in cls:
            if key in (kind.value, kind.name.lower()):
                return kind
        choices = ', '.join(k.value for k in cls)
        raise ValueError(f"Unknown energy kind {value!r} (expected one of: {choices})")


SingularFn = Callable[[np.ndarray, float], np.ndarray]


# --- closed forms -----------------------------------------------------------

def _arap_value(s, exp_factor):
    return np.sum((s - 1.0) ** 2, axis=1)


def _arap_gradient(s, exp_factor):
    return 2.0 * (s - 1.0)


def _symmetric_dirichlet_value(s, exp_factor):
    return np.sum(s ** 2 + s ** -2, axis=1)


def _symmetric_dirichlet_gradient(s, exp_factor):
    return 2.0 * (s - s ** -3)


def _log_arap_value(s, exp_factor):
    return np.sum(np.log(s) ** 2, axis=1)


def _log_arap_gradient(s, exp_factor):
    return 2.0 * np.log(s) / s


def _conformal_value(s, exp_factor):
    # sum(s^2) / (d * prod(s)^(2/d)): (s1^2+s2^2)/(2 s1 s2) in 2-D,
    # (s1^2+s2^2+s3^2)/(3 (s1 s2 s3)^(2/3)) in 3-D
    d = s.shape[1]
    return np.sum(s ** 2, axis=1) / (d * np.prod(s, axis=1) ** (2.0 / d))


def _conformal_gradient(s, exp_factor):
    d = s.shape[1]
    sq_sum = np.sum(s ** 2, axis=1, keepdims=True)
    scale = 2.0 / (d * np.prod(s, axis=1, keepdims=True) ** (2.0 / d))
    return scale * (s - sq_sum / (d * s))


def _exponential(inner_value: SingularFn, inner_gradient: SingularFn):
    def value(s, exp_factor):
        return np.exp(exp_factor * inner_value(s, exp_factor))

    def gradient(s, exp_factor):
        boost = np.exp(exp_factor * inner_value(s, exp_factor)) * exp_factor
        return inner_gradient(s, exp_factor) * boost[:, None]

    return value, gradient


def _unit_target(s):
    return np.ones_like(s)


def _conformal_target(s):
    """Closest similarity: geometric mean in 2-D, balance of the extremes in 3-D."""
    if s.shape[1] == 2:
        closest = np.sqrt(s[:, 0] * s[:, 1])
    else:
        # singular values come sorted in decreasing order
        closest = np.sqrt((s[:, 0] ** 2 + s[:, -1] ** 2) / 2.0)
    return np.repeat(closest[:, None], s.shape[1], axis=1)


@dataclass(frozen=True)
class EnergyTerms:
    kind: EnergyKind
    raw_value: SingularFn
    gradient: SingularFn
    target: Callable[[np.ndarray], np.ndarray]
    rigid: bool = False        # proxy weights are identically 1 (plain ARAP)
    similarity: bool = False   # targets are scaled rotations rather than rotations

    def rest_value(self, dim: int, exp_factor: float = 1.0) -> float:
        return float(self.raw_value(np.ones((1, dim)), exp_factor)[0])

    def value(self, s: np.ndarray, exp_factor: float = 1.0) -> np.ndarray:
        s = np.asarray(s, dtype=np.float64)
        return self.raw_value(s, exp_factor) - self.rest_value(s.shape[1], exp_factor)


_exp_sd_value, _exp_sd_gradient = _exponential(_symmetric_dirichlet_value, _symmetric_dirichlet_gradient)
_exp_conf_value, _exp_conf_gradient = _exponential(_conformal_value, _conformal_gradient)

ENERGY_TABLE: Dict[EnergyKind, EnergyTerms] = {
    EnergyKind.ARAP: EnergyTerms(EnergyKind.ARAP, _arap_value, _arap_gradient, _unit_target, rigid=True),
    EnergyKind.SYMMETRIC_DIRICHLET: EnergyTerms(
        EnergyKind.SYMMETRIC_DIRICHLET, _symmetric_dirichlet_value, _symmetric_dirichlet_gradient, _unit_target),
    EnergyKind.LOG_ARAP: EnergyTerms(EnergyKind.LOG_ARAP, _log_arap_value, _log_arap_gradient, _unit_target),
    EnergyKind.CONFORMAL: EnergyTerms(
        EnergyKind.CONFORMAL, _conformal_value, _conformal_gradient, _conformal_target, similarity=True),
    EnergyKind.EXP_CONFORMAL: EnergyTerms(
        EnergyKind.EXP_CONFORMAL, _exp_conf_value, _exp_conf_gradient, _conformal_target, similarity=True),
    EnergyKind.EXP_SYMMETRIC_DIRICHLET: EnergyTerms(
        EnergyKind.EXP_SYMMETRIC_DIRICHLET, _exp_sd_value, _exp_sd_gradient, _unit_target),
}


def energy_terms(kind: Union[str, EnergyKind]) -> EnergyTerms:
    return ENERGY_TABLE[EnergyKind.parse(kind)]


__all__ = ['EnergyKind', 'EnergyTerms', 'ENERGY_TABLE', 'energy_terms']
