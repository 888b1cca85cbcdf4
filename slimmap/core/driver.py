"""Command line driver: load a mesh, build an initial map, run SLIM, write the result.

Usage::

    python -m slimmap.core.driver run mesh.obj --energy symmetric_dirichlet --iterations 50 --out map.obj
    python -m slimmap.core.driver config-dump > solver.json
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import replace
from typing import Optional, Tuple

import numpy as np

from .config import RunConfig, SolverConfig
from .diagnostics import distortion_summary, find_inverted_elements
from .energies import EnergyKind
from .evaluator import per_element_energy
from .geometry import element_dimension
from .initialization import harmonic_parameterization
from .io import read_msh, read_obj, read_soft_constraints, write_obj, write_vtk
from .logging_utils import configure_logging, get_logger
from .solver import SlimSolver
from .stats import format_history_table

logger = get_logger('slimmap.driver')

_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def load_mesh(path: str) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """Read ``.obj`` or ``.msh``; returns (vertices, elements, uv or None)."""
    ext = os.path.splitext(path)[1].lower()
    if ext == '.obj':
        return read_obj(path)
    if ext == '.msh':
        V, F = read_msh(path)
        return V, F, None
    raise ValueError(f"unsupported mesh format {ext!r} (expected .obj or .msh)")


def initial_positions(vertices, elements, uv=None) -> np.ndarray:
    """Flip-free starting map: file uv when valid, a harmonic disk map for triangles, rest positions for tets."""
    if element_dimension(elements) == 3:
        return np.array(vertices, dtype=np.float64)
    if uv is not None and not find_inverted_elements(uv, elements):
        logger.info('using texture coordinates from the input as initial map')
        return np.array(uv, dtype=np.float64)
    if uv is not None:
        logger.warning('input texture coordinates invert elements; falling back to a harmonic map')
    V = np.asarray(vertices, dtype=np.float64)
    if V.shape[1] == 2 and not find_inverted_elements(V, elements):
        return V.copy()
    return harmonic_parameterization(V, elements)


def run_slim(vertices, elements, run_config: RunConfig, uv=None,
             soft_indices=None, soft_targets=None) -> SlimSolver:
    """Build the solver for a loaded mesh and run ``run_config.iterations`` iterations.

    Pinned vertices come from ``soft_indices``/``soft_targets`` or, when those
    are not given, from the ``run_config.soft_constraints`` table.
    """
    X0 = initial_positions(vertices, elements, uv)
    if soft_indices is None and run_config.soft_constraints:
        soft_indices, soft_targets = read_soft_constraints(run_config.soft_constraints,
                                                           dim=element_dimension(elements))
        logger.info('pinning %d vertices (soft penalty %g)', len(soft_indices),
                    run_config.solver.soft_penalty)
    solver = SlimSolver(vertices, elements, X0, soft_indices=soft_indices, soft_targets=soft_targets,
                        config=run_config.solver)
    solver.precompute()
    solver.solve(run_config.iterations, energy_tolerance=run_config.energy_tolerance)
    return solver


def write_result(path: str, solver: SlimSolver) -> None:
    st = solver.state
    ext = os.path.splitext(path)[1].lower()
    if ext == '.obj':
        if st.dim != 2:
            raise ValueError("OBJ output is only supported for triangle meshes")
        write_obj(path, st.vertices, st.elements, uv=st.positions)
    elif ext == '.vtk':
        distortion = per_element_energy(st.gradients, st.positions, st.energy_kind, st.exp_factor)
        write_vtk(path, st.positions, st.elements, cell_data={'distortion': distortion},
                  title=f"slimmap {st.energy_kind.value}")
    else:
        raise ValueError(f"unsupported output format {ext!r} (expected .obj or .vtk)")
    logger.info('wrote %s', path)


def _solver_config_from_args(args) -> SolverConfig:
    cfg = SolverConfig.from_json(args.config_json) if args.config_json else SolverConfig()
    overrides = {}
    if args.energy is not None:
        overrides['energy'] = EnergyKind.parse(args.energy)
    if args.soft_penalty is not None:
        overrides['soft_penalty'] = args.soft_penalty
    if args.exp_factor is not None:
        overrides['exp_factor'] = args.exp_factor
    if args.workers is not None:
        overrides['n_workers'] = args.workers
    if args.mesh_improvement:
        overrides['mesh_improvement_3d'] = True
    return replace(cfg, **overrides) if overrides else cfg


def _cmd_run(args) -> int:
    run_cfg = RunConfig(
        solver=_solver_config_from_args(args),
        iterations=args.iterations,
        energy_tolerance=args.energy_tolerance,
        out=args.out,
        plot=args.plot,
        history_json=args.history_json,
        soft_constraints=args.soft_constraints,
    )
    V, F, uv = load_mesh(args.mesh)
    solver = run_slim(V, F, run_cfg, uv)
    logger.info('final energy %.6e after %d iterations (%s)', solver.energy,
                len(solver.history), solver.phase.value)
    logger.debug('iteration history:\n%s', format_history_table(solver.history))
    summary = distortion_summary(solver.state)
    logger.info('singular values in [%.4f, %.4f], %d flipped', summary['min_singular_value'],
                summary['max_singular_value'], summary['flipped'])
    if run_cfg.out:
        write_result(run_cfg.out, solver)
    if run_cfg.history_json:
        with open(run_cfg.history_json, 'w', encoding='utf-8') as fh:
            json.dump([r.to_dict() for r in solver.history], fh, indent=2)
    if run_cfg.plot:
        st = solver.state
        if st.dim != 2:
            logger.warning('--plot is only supported for triangle meshes; skipped')
        else:
            from .visualization import plot_parameterization
            values = per_element_energy(st.gradients, st.positions, st.energy_kind, st.exp_factor)
            plot_parameterization(st.positions, st.elements, run_cfg.plot, cell_values=values,
                                  title=f"{st.energy_kind.value}: E = {solver.energy:.4g}")
    return 0


def main(argv=None) -> int:
    """Unified CLI for slimmap.

    Modes:
      run:         optimize a map of the given mesh.
      config-dump: print the effective solver configuration as JSON.
    """
    parser = argparse.ArgumentParser(prog='slimmap', description='Scalable locally injective mappings (SLIM) driver.')
    parser.add_argument('--log-level', type=str, choices=_LEVELS, default='INFO', help='Logging verbosity (default: INFO)')
    parser.add_argument('--log-timestamps', action='store_true', help='Prefix log records with wall-clock time')
    sub = parser.add_subparsers(dest='mode', help='mode of operation')

    p_run = sub.add_parser('run', help='Optimize the map of a triangle (.obj/.msh) or tetrahedral (.msh) mesh')
    p_run.add_argument('mesh', type=str, help='Input mesh (.obj or .msh)')
    p_run.add_argument('--log-level', dest='sub_log_level', type=str, choices=_LEVELS, default=None, help='Logging verbosity override for this command')
    p_run.add_argument('--energy', type=str, default=None, choices=[k.value for k in EnergyKind])
    p_run.add_argument('--iterations', type=int, default=20)
    p_run.add_argument('--energy-tolerance', type=float, default=None, help='Stop once the energy changes by less than this')
    p_run.add_argument('--soft-constraints', type=str, default=None, help='File of "index x y [z]" rows pinning vertices to target positions')
    p_run.add_argument('--soft-penalty', type=float, default=None, help='Strength of the --soft-constraints pull')
    p_run.add_argument('--exp-factor', type=float, default=None)
    p_run.add_argument('--workers', type=int, default=None, help='Threads for the local step')
    p_run.add_argument('--mesh-improvement', action='store_true', help='Measure tetrahedra against a regular reference element')
    p_run.add_argument('--out', type=str, default=None, help='Output mesh (.obj for triangles, .vtk for both)')
    p_run.add_argument('--plot', type=str, default=None, help='Write a PNG of the resulting 2-D map')
    p_run.add_argument('--history-json', type=str, default=None, help='Write the per-iteration energy history as JSON')
    p_run.add_argument('--config-json', type=str, default=None, help='Path to JSON solver configuration (as produced by config-dump)')

    p_dump = sub.add_parser('config-dump', help='Emit the effective solver configuration as JSON (no solve)')
    p_dump.add_argument('--log-level', dest='sub_log_level', type=str, choices=_LEVELS, default=None, help='Logging verbosity override for this command')
    p_dump.add_argument('--config-json', type=str, default=None, help='Start from this JSON configuration')

    args = parser.parse_args(argv)
    configure_logging(getattr(args, 'sub_log_level', None) or args.log_level,
                      timestamps=True if args.log_timestamps else None)
    if args.mode is None:
        parser.print_help()
        return 2
    if args.mode == 'config-dump':
        cfg = SolverConfig.from_json(args.config_json) if args.config_json else SolverConfig()
        sys.stdout.write(cfg.to_json() + "\n")
        return 0
    return _cmd_run(args)


if __name__ == '__main__':  # pragma: no cover
    sys.exit(main())
