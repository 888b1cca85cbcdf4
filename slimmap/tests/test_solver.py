"""End-to-end tests of the SLIM solve driver."""
import numpy as np
import pytest

from slimmap.core.config import SolverConfig
from slimmap.core.diagnostics import distortion_summary, find_inverted_elements
from slimmap.core.errors import DegenerateElementError, ElementArityError, SolverStateError
from slimmap.core.geometry import signed_areas, signed_volumes
from slimmap.core.initialization import harmonic_parameterization
from slimmap.core.line_search import LineSearchResult
from slimmap.core.solver import SlimSolver, SolverPhase, slim_precompute, slim_solve


def _assert_non_increasing(history, initial):
    energies = [initial] + [r.energy for r in history]
    assert all(b <= a for a, b in zip(energies, energies[1:]))


class TestScenarios:

    def test_arap_square_returns_to_rest(self, unit_square):
        V, F = unit_square
        pinned = np.array([0, 1, 2])
        solver = SlimSolver(V, F, 1.5 * V, energy='arap', soft_indices=pinned, soft_targets=V[pinned],
                            config=SolverConfig(soft_penalty=1e5))
        solver.precompute()
        start = solver.energy
        X = solver.solve(50)
        assert solver.energy < 1e-6
        assert solver.energy < start
        assert np.allclose(X, V, atol=1e-3)

    def test_symmetric_dirichlet_strip_converges(self, curved_strip):
        V, F = curved_strip
        uv0 = harmonic_parameterization(V, F)
        solver = SlimSolver(V, F, uv0, energy='symmetric_dirichlet')
        solver.precompute()
        start = solver.energy
        uv = solver.solve(200, energy_tolerance=1e-6)
        assert solver.phase is SolverPhase.CONVERGED
        assert len(solver.history) < 200
        _assert_non_increasing(solver.history, start)
        assert solver.energy < start
        assert np.all(signed_areas(uv, F) > 0.0)
        assert not find_inverted_elements(uv, F)

    def test_inverted_initial_guess_is_rejected(self, unit_square):
        V, F = unit_square
        X = V.copy()
        X[1] = [-1.0, 0.0]
        solver = SlimSolver(V, F, X, energy='symmetric_dirichlet')
        with pytest.raises(DegenerateElementError) as exc:
            solver.precompute()
        assert exc.value.elements == [0]
        assert solver.phase is SolverPhase.UNINITIALIZED


@pytest.mark.parametrize("kind", ['log_arap', 'conformal', 'exp_conformal', 'exp_symmetric_dirichlet'])
def test_every_energy_decreases_on_strip(curved_strip, kind):
    V, F = curved_strip
    uv0 = harmonic_parameterization(V, F)
    solver = SlimSolver(V, F, uv0, config=SolverConfig(energy=kind, exp_factor=0.5))
    solver.precompute()
    start = solver.energy
    uv = solver.solve(10)
    _assert_non_increasing(solver.history, start)
    assert solver.energy <= start
    assert np.all(signed_areas(uv, F) > 0.0)


def test_tetrahedral_solve(cube_grid_tets):
    V, T = cube_grid_tets
    X0 = V * np.array([1.6, 1.0, 0.8])
    solver = SlimSolver(V, T, X0, energy='symmetric_dirichlet')
    solver.precompute()
    start = solver.energy
    X = solver.solve(15)
    _assert_non_increasing(solver.history, start)
    assert solver.energy < 0.5 * start
    assert np.all(signed_volumes(X, T) > 0.0)


def test_mesh_improvement_mode(unit_cube_tets):
    V, T = unit_cube_tets
    solver = SlimSolver(V, T, V, config=SolverConfig(mesh_improvement_3d=True))
    solver.precompute()
    start = solver.energy
    assert start > 0.0
    X = solver.solve(10)
    assert solver.energy < start
    assert np.all(signed_volumes(X, T) > 0.0)


class TestLifecycle:

    def test_phases(self, square_grid):
        V, F = square_grid
        solver = SlimSolver(V, F, V * np.array([1.2, 0.9]))
        assert solver.phase is SolverPhase.UNINITIALIZED
        solver.precompute()
        assert solver.phase is SolverPhase.PRECOMPUTED
        solver.solve(2)
        assert solver.phase in (SolverPhase.ITERATING, SolverPhase.CONVERGED)
        solver.stop()
        assert solver.phase is SolverPhase.STOPPED
        with pytest.raises(SolverStateError):
            solver.solve(1)
        with pytest.raises(SolverStateError):
            solver.precompute()

    def test_precompute_is_idempotent(self, square_grid):
        V, F = square_grid
        solver = SlimSolver(V, F, V * 1.1)
        solver.precompute()
        gradients, wv = solver.state.gradients, solver.state.weight_vector
        solver.precompute()
        assert solver.state.gradients is gradients
        assert solver.state.weight_vector is wv
        assert solver.state.mesh_area == pytest.approx(1.0)
        assert wv.shape == (4 * F.shape[0],)

    def test_solve_precomputes_lazily(self, square_grid):
        V, F = square_grid
        solver = SlimSolver(V, F, V * 1.1)
        solver.solve(1)
        assert solver.state.has_precomputed
        assert len(solver.history) == 1

    def test_zero_iterations(self, square_grid):
        V, F = square_grid
        solver = slim_precompute(V, F, V * 1.1)
        X = slim_solve(solver, 0)
        assert np.array_equal(X, V * 1.1)
        assert solver.history == []

    def test_positions_are_a_copy(self, square_grid):
        V, F = square_grid
        solver = SlimSolver(V, F, V * 1.1)
        X = solver.positions
        X[:] = 0.0
        assert not np.allclose(solver.positions, 0.0)

    def test_history_records(self, square_grid):
        V, F = square_grid
        solver = slim_precompute(V, F, V * np.array([1.3, 0.8]), energy='symmetric_dirichlet')
        solver.solve(3)
        for i, rec in enumerate(solver.history):
            assert rec.iteration == i
            assert rec.solve_converged
            assert 0.0 <= rec.step <= 1.0
            assert rec.time >= 0.0


class TestValidation:

    def test_bad_arity(self, square_grid):
        V, F = square_grid
        with pytest.raises(ElementArityError):
            SlimSolver(V, F[:, :2], V)

    def test_positions_shape_mismatch(self, square_grid):
        V, F = square_grid
        with pytest.raises(ElementArityError):
            SlimSolver(V, F, V[:-1])
        with pytest.raises(ElementArityError):
            SlimSolver(V, F, np.zeros((V.shape[0], 3)))

    def test_soft_constraint_count_mismatch(self, square_grid):
        V, F = square_grid
        with pytest.raises(ValueError):
            SlimSolver(V, F, V, soft_indices=[0, 1], soft_targets=[[0.0, 0.0]])

    def test_small_scale_mesh_is_accepted(self, unit_square):
        V, F = unit_square
        V = 1e-7 * V
        solver = SlimSolver(V, F, 1.2 * V, energy='symmetric_dirichlet')
        solver.precompute()
        assert solver.phase is SolverPhase.PRECOMPUTED
        assert solver.state.mesh_area == pytest.approx(1e-14, rel=1e-9)
        assert np.isfinite(solver.energy) and solver.energy > 0.0

    def test_degenerate_rest_element(self):
        V = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [0.0, 1.0]])
        F = np.array([[0, 1, 2], [0, 1, 3]])
        solver = SlimSolver(V, F, V)
        with pytest.raises(DegenerateElementError) as exc:
            solver.precompute()
        assert exc.value.elements == [0]


def test_injected_line_search_is_used(square_grid):
    V, F = square_grid
    calls = []

    def accept_candidate(elements, current, candidate, energy_fn, current_energy, **kwargs):
        calls.append(kwargs)
        return LineSearchResult(candidate, energy_fn(candidate), 1.0, 1.0)

    solver = SlimSolver(V, F, V * 1.2, line_search=accept_candidate,
                        config=SolverConfig(line_search_max_iterations=5, step_safety_factor=0.5))
    solver.solve(2)
    assert len(calls) == 2
    assert calls[0] == {'max_iterations': 5, 'safety_factor': 0.5}


def test_distortion_summary(square_grid):
    V, F = square_grid
    solver = slim_precompute(V, F, V * np.array([2.0, 1.0]), energy='arap')
    summary = distortion_summary(solver.state)
    assert summary['max_singular_value'] == pytest.approx(2.0)
    assert summary['min_singular_value'] == pytest.approx(1.0)
    assert summary['flipped'] == 0
    assert summary['energy_normalized'] == pytest.approx(solver.energy)
