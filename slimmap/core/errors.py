"""Exception and warning types raised by the solver."""
from __future__ import annotations


class SlimError(Exception):
    """Base class for slimmap errors."""


class ElementArityError(SlimError, ValueError):
    """Elements are neither triangles nor tetrahedra, or array shapes disagree."""


class DegenerateElementError(SlimError, ValueError):
    """An element is inverted or collapsed (non-positive / non-finite singular value)."""

    def __init__(self, message: str, elements=None):
        super().__init__(message)
        self.elements = [] if elements is None else [int(e) for e in elements]


class SingularSystemError(SlimError, RuntimeError):
    """The global linear system could not be factorized."""


class SolverStateError(SlimError, RuntimeError):
    """The solver was used in a phase that does not allow the request."""


class SolverConvergenceWarning(RuntimeWarning):
    """The iterative global solve stopped before reaching its tolerance."""


__all__ = [
    'SlimError',
    'ElementArityError',
    'DegenerateElementError',
    'SingularSystemError',
    'SolverStateError',
    'SolverConvergenceWarning',
]
