"""Public package API for slimmap (scalable locally injective mappings).

This facade provides a flat import surface on top of the internal
implementation package ``slimmap.core`` while deferring the matplotlib
dependent plotting module until first use to keep ``import slimmap`` fast.

Example
-------
    from slimmap import SlimSolver, harmonic_parameterization

    uv0 = harmonic_parameterization(V, F)
    solver = SlimSolver(V, F, uv0, energy='symmetric_dirichlet')
    uv = solver.solve(20)

The deeper modules (``slimmap.core.*``) are considered internal and may
change; rely on this layer for public symbols.
"""
from importlib import import_module as _imp
import logging as _logging

try:
    from importlib.metadata import version as _pkg_version
    __version__ = _pkg_version("slimmap")
except Exception:  # pragma: no cover - running from a source checkout
    __version__ = "0.1.0+dev"

_logging.getLogger(__name__).addHandler(_logging.NullHandler())

# numpy/scipy-only modules, imported with the package
_const = _imp('slimmap.core.constants')
_errors = _imp('slimmap.core.errors')
_config = _imp('slimmap.core.config')
_energies = _imp('slimmap.core.energies')
_geom = _imp('slimmap.core.geometry')
_init = _imp('slimmap.core.initialization')
_diag = _imp('slimmap.core.diagnostics')
_solver = _imp('slimmap.core.solver')
_io = _imp('slimmap.core.io')
_logs = _imp('slimmap.core.logging_utils')


def _lazy_module(mod_name):
    class _ModuleProxy:
        __slots__ = ('_m',)
        def _load(self):  # type: ignore
            # read the slot directly; hasattr would route through __getattr__
            try:
                return object.__getattribute__(self, '_m')
            except AttributeError:
                mod = _imp(mod_name)
                object.__setattr__(self, '_m', mod)
                return mod
        def __getattr__(self, item):  # type: ignore
            return getattr(self._load(), item)
        def __dir__(self):  # type: ignore
            return dir(self._load())
    return _ModuleProxy()


# Lazily loaded dependency-rich modules
visualization = _lazy_module('slimmap.core.visualization')

# Solver entry points
SlimSolver = _solver.SlimSolver
SolverPhase = _solver.SolverPhase
slim_precompute = _solver.slim_precompute
slim_solve = _solver.slim_solve

# Configuration
EnergyKind = _energies.EnergyKind
SolverConfig = _config.SolverConfig
RunConfig = _config.RunConfig

# Errors
SlimError = _errors.SlimError
ElementArityError = _errors.ElementArityError
DegenerateElementError = _errors.DegenerateElementError
SingularSystemError = _errors.SingularSystemError
SolverStateError = _errors.SolverStateError
SolverConvergenceWarning = _errors.SolverConvergenceWarning

# Initial maps and diagnostics
harmonic_parameterization = _init.harmonic_parameterization
boundary_loop = _init.boundary_loop
find_inverted_elements = _diag.find_inverted_elements

# Mesh files
read_obj = _io.read_obj
write_obj = _io.write_obj
read_soft_constraints = _io.read_soft_constraints
read_msh = _io.read_msh
write_vtk = _io.write_vtk

configure_logging = _logs.configure_logging

# Submodules reachable as slimmap.<name>
constants = _const
geometry = _geom
energies = _energies
initialization = _init
diagnostics = _diag
io = _io

__all__ = [
    '__version__',
    # solver
    'SlimSolver', 'SolverPhase', 'slim_precompute', 'slim_solve',
    # configuration
    'EnergyKind', 'SolverConfig', 'RunConfig',
    # errors
    'SlimError', 'ElementArityError', 'DegenerateElementError', 'SingularSystemError',
    'SolverStateError', 'SolverConvergenceWarning',
    # initial maps / diagnostics / io
    'harmonic_parameterization', 'boundary_loop', 'find_inverted_elements',
    'read_obj', 'write_obj', 'read_soft_constraints', 'read_msh', 'write_vtk', 'configure_logging',
    # submodules
    'constants', 'geometry', 'energies', 'initialization', 'diagnostics', 'io', 'visualization',
]
