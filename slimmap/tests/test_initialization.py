import numpy as np
import pytest

from slimmap.core.initialization import (
    boundary_edges,
    boundary_loop,
    boundary_loops,
    harmonic_parameterization,
    map_vertices_to_circle,
)
from slimmap.core.geometry import signed_areas


def _polygon_area(P):
    x, y = P[:, 0], P[:, 1]
    return 0.5 * np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y)


def test_boundary_edges_of_square(unit_square):
    _, F = unit_square
    E = boundary_edges(F)
    assert E.shape == (4, 2)


def test_boundary_loop_is_ordered_and_counter_clockwise(square_grid):
    V, F = square_grid
    loop = boundary_loop(F)
    assert len(loop) == 16
    assert len(set(loop)) == 16
    assert _polygon_area(V[loop]) == pytest.approx(1.0)
    # consecutive loop vertices are mesh neighbours
    steps = np.linalg.norm(V[np.roll(loop, -1)] - V[loop], axis=1)
    assert np.allclose(steps, 0.25)


def test_two_components_give_two_loops():
    F = np.array([[0, 1, 2], [3, 4, 5]])
    loops = boundary_loops(F)
    assert sorted(len(l) for l in loops) == [3, 3]


def test_closed_surface_has_no_boundary():
    F = np.array([[0, 2, 1], [0, 1, 3], [1, 2, 3], [0, 3, 2]])
    assert boundary_loops(F) == []
    assert boundary_loop(F) == []


def test_map_vertices_to_circle_uses_arc_length(unit_square):
    V, F = unit_square
    loop = boundary_loop(F)
    P = map_vertices_to_circle(V, loop)
    assert np.allclose(np.linalg.norm(P, axis=1), 1.0)
    assert np.allclose(P[0], [1.0, 0.0])
    # equal edge lengths give quarter turns
    angles = np.mod(np.arctan2(P[:, 1], P[:, 0]), 2 * np.pi)
    assert np.allclose(np.sort(angles), [0.0, np.pi / 2, np.pi, 3 * np.pi / 2])


def test_harmonic_map_of_grid_is_flip_free(square_grid):
    V, F = square_grid
    uv = harmonic_parameterization(V, F)
    assert uv.shape == (V.shape[0], 2)
    assert np.all(signed_areas(uv, F) > 0.0)
    assert np.all(np.linalg.norm(uv, axis=1) <= 1.0 + 1e-12)


def test_harmonic_map_of_surface(curved_strip):
    V, F = curved_strip
    uv = harmonic_parameterization(V, F)
    assert np.all(signed_areas(uv, F) > 0.0)
    loop = boundary_loop(F)
    assert np.allclose(np.linalg.norm(uv[loop], axis=1), 1.0)


def test_harmonic_map_rejects_closed_mesh():
    V = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    F = np.array([[0, 2, 1], [0, 1, 3], [1, 2, 3], [0, 3, 2]])
    with pytest.raises(ValueError, match="boundary loop"):
        harmonic_parameterization(V, F)


def test_harmonic_map_rejects_annulus(square_grid):
    V, F = square_grid
    # drop the two triangles of an interior cell to punch a hole
    keep = np.ones(F.shape[0], dtype=bool)
    keep[[10, 11]] = False
    with pytest.raises(ValueError):
        harmonic_parameterization(V, F[keep])


def test_harmonic_map_rejects_unknown_weights(square_grid):
    V, F = square_grid
    with pytest.raises(ValueError, match="unknown weights"):
        harmonic_parameterization(V, F, weights='mean_value')


def test_harmonic_map_rejects_tets(unit_cube_tets):
    V, T = unit_cube_tets
    with pytest.raises(ValueError):
        harmonic_parameterization(V, T)


def test_cotan_weights_give_finite_disk_map(square_grid):
    # right-angled grid triangles put zero weight on the diagonals
    V, F = square_grid
    uv = harmonic_parameterization(V, F, weights='cotan')
    loop = boundary_loop(F)
    assert np.allclose(np.linalg.norm(uv[loop], axis=1), 1.0)
    assert np.all(np.isfinite(uv))
