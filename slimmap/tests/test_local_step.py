import numpy as np
import pytest

from slimmap.core import local_step
from slimmap.core.energies import EnergyKind, energy_terms
from slimmap.core.errors import DegenerateElementError
from slimmap.core.local_step import reweighted_singular_values, update_weights_and_rotations
from slimmap.core.svd import polar_svd


def _random_jacobians(m, d, seed=0):
    rng = np.random.default_rng(seed)
    J = np.eye(d) + 0.3 * rng.normal(size=(m, d, d))
    # keep every element positively oriented
    neg = np.linalg.det(J) < 0
    J[neg, :, 0] *= -1.0
    return J


@pytest.mark.parametrize("kind", list(EnergyKind))
@pytest.mark.parametrize("d", [2, 3])
def test_weights_are_symmetric_positive(kind, d):
    J = _random_jacobians(30, d)
    W, R, S = update_weights_and_rotations(J, kind, exp_factor=0.5)
    assert W.shape == R.shape == (30, d, d)
    assert np.allclose(W, np.swapaxes(W, 1, 2))
    assert np.all(np.linalg.eigvalsh(W) > 0.0)
    assert np.all(np.isfinite(R))
    assert np.all(S > 0.0)


def test_arap_weights_are_identity_and_rotations_are_polar():
    J = _random_jacobians(10, 2)
    W, R, _ = update_weights_and_rotations(J, 'arap')
    assert np.allclose(W, np.eye(2))
    assert np.allclose(R, polar_svd(J)[0])


@pytest.mark.parametrize("kind", [EnergyKind.SYMMETRIC_DIRICHLET, EnergyKind.LOG_ARAP,
                                  EnergyKind.EXP_SYMMETRIC_DIRICHLET])
def test_proxy_gradient_matches_energy_gradient(kind):
    # d/ds ||W (J - R)||^2 = 2 w^2 (s - 1) must equal dE/ds
    terms = energy_terms(kind)
    s = np.array([[1.7, 0.6], [1.2, 0.9]])
    w = reweighted_singular_values(s, terms, 0.5, terms.target(s))
    assert np.allclose(2.0 * w ** 2 * (s - 1.0), terms.gradient(s, 0.5))


@pytest.mark.parametrize("kind", list(EnergyKind))
@pytest.mark.parametrize("d", [2, 3])
def test_rest_state_guard_gives_unit_weights(kind, d):
    J = np.repeat(np.eye(d)[None], 4, axis=0)
    J[1] += 1e-10 * np.eye(d)
    W, R, _ = update_weights_and_rotations(J, kind, exp_factor=1.0)
    assert np.allclose(W, np.eye(d))
    assert np.allclose(R, np.eye(d))


def test_exp_conformal_guard_in_3d():
    # one singular value at 1, the others away from it and from their target
    J = np.diag([1.5, 1.0, 0.7])[None]
    terms = energy_terms(EnergyKind.EXP_CONFORMAL)
    _, _, _, s, _ = polar_svd(J)
    w = reweighted_singular_values(s, terms, 1.0, terms.target(s))
    assert w[0, 1] == 1.0
    assert np.all(np.isfinite(w))


def test_conformal_uniform_scale_targets_itself():
    J = 2.0 * np.repeat(np.eye(2)[None], 3, axis=0)
    W, R, _ = update_weights_and_rotations(J, 'conformal')
    assert np.allclose(W, np.eye(2))
    assert np.allclose(R, J)


def test_exp_conformal_2d_uses_similarity_projection():
    J = np.array([[[2.0, 0.0], [0.0, 0.7]]])
    res = update_weights_and_rotations(J, 'exp_conformal', exp_factor=0.5)
    conf = update_weights_and_rotations(J, 'conformal')
    # scaled rotation, not the closest rotation
    assert np.allclose(res.rotations, conf.rotations)
    assert not np.allclose(np.linalg.det(res.rotations), 1.0)
    # the proxy gradient 2 w^2 (s - t) reproduces the exp-conformal gradient
    terms = energy_terms(EnergyKind.EXP_CONFORMAL)
    s = res.singular_values
    t = terms.target(s)
    w = reweighted_singular_values(s, terms, 0.5, t)
    assert np.allclose(2.0 * w ** 2 * (s - t), terms.gradient(s, 0.5))


@pytest.mark.parametrize("bad", ["nan", "inverted", "collapsed"])
def test_degenerate_jacobian_raises(bad):
    J = _random_jacobians(6, 2)
    if bad == "nan":
        J[3, 0, 0] = np.nan
    elif bad == "inverted":
        J[3] = np.diag([1.0, -1.0])
    else:
        J[3] = np.zeros((2, 2))
    with pytest.raises(DegenerateElementError) as exc:
        update_weights_and_rotations(J, 'symmetric_dirichlet')
    assert exc.value.elements == [3]


def test_threaded_local_step_matches_serial(monkeypatch):
    monkeypatch.setattr(local_step, '_MIN_ELEMENTS_PER_WORKER', 4)
    J = _random_jacobians(50, 3, seed=3)
    serial = update_weights_and_rotations(J, 'symmetric_dirichlet', n_workers=1)
    threaded = update_weights_and_rotations(J, 'symmetric_dirichlet', n_workers=4)
    for a, b in zip(serial, threaded):
        assert np.array_equal(a, b)


def test_threaded_error_reports_global_index(monkeypatch):
    monkeypatch.setattr(local_step, '_MIN_ELEMENTS_PER_WORKER', 4)
    J = _random_jacobians(40, 2, seed=4)
    J[33] = np.diag([1.0, -1.0])
    with pytest.raises(DegenerateElementError) as exc:
        update_weights_and_rotations(J, 'arap', n_workers=4)
    assert exc.value.elements == [33]
