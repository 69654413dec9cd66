import numpy as np
import pytest

from slamkit.sim3 import Sim3, Sim3Solver, camera_to_image, compute_sim3, project

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def _rot_y(angle):
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def _scene(n=20, scale=1.5, seed=0):
    rng = np.random.default_rng(seed)
    p1 = np.column_stack([
        rng.uniform(-1, 1, n), rng.uniform(-1, 1, n), rng.uniform(4, 8, n)
    ])
    truth = Sim3(_rot_y(0.1), np.array([0.1, -0.2, 0.3]), scale)
    p2 = truth.inverse().map(p1)
    return p1, p2, truth


def test_compute_sim3_recovers_transform():
    p1, p2, truth = _scene()
    est = compute_sim3(p1, p2, fix_scale=False)
    assert np.allclose(est.rotation, truth.rotation, atol=1e-9)
    assert np.allclose(est.translation, truth.translation, atol=1e-9)
    assert est.scale == pytest.approx(truth.scale)


def test_compute_sim3_fixed_scale():
    p1, p2, truth = _scene(scale=1.0)
    est = compute_sim3(p1, p2, fix_scale=True)
    assert est.scale == 1.0
    assert np.allclose(est.rotation, truth.rotation, atol=1e-9)
    assert np.allclose(est.map(p2), p1, atol=1e-9)


def test_compute_sim3_rejects_bad_input():
    p1, p2, _ = _scene()
    with pytest.raises(ValueError):
        compute_sim3(p1[:2], p2[:2])
    with pytest.raises(ValueError):
        compute_sim3(p1, p2[:5])


def test_inverse_composes_to_identity():
    _, _, truth = _scene()
    assert np.allclose(truth.matrix @ truth.inverse().matrix, np.eye(4))


def test_map_round_trip():
    p1, _, truth = _scene()
    assert np.allclose(truth.inverse().map(truth.map(p1)), p1)


def test_camera_to_image_principal_point():
    uv = camera_to_image([[0.0, 0.0, 2.0]], K)
    assert np.allclose(uv, [[K[0, 2], K[1, 2]]])


def test_project_identity_matches_camera_to_image():
    p1, _, _ = _scene()
    assert np.allclose(project(p1, np.eye(4), K), camera_to_image(p1, K))


def test_project_rejects_bad_transform():
    p1, _, _ = _scene()
    with pytest.raises(ValueError):
        project(p1, np.eye(3), K)


def test_solver_all_inliers():
    p1, p2, truth = _scene()
    solver = Sim3Solver(p1, p2, None, None, K, K, fix_scale=False, seed=1)
    sim, inliers, count, no_more = solver.find()
    assert sim is not None
    assert np.allclose(sim.rotation, truth.rotation, atol=1e-6)
    assert sim.scale == pytest.approx(truth.scale, rel=1e-6)
    assert inliers.all()
    assert count == len(p1)
    assert no_more is False
    assert solver.best is sim


def test_solver_flags_outliers():
    p1, p2, truth = _scene()
    p2 = p2.copy()
    p2[:4, 0] += 0.5
    solver = Sim3Solver(p1, p2, None, None, K, K, fix_scale=False, seed=3)
    sim, inliers, count, _ = solver.find()
    expected = np.ones(len(p1), dtype=bool)
    expected[:4] = False
    assert sim is not None
    assert np.array_equal(inliers, expected)
    assert count == int(expected.sum())
    assert np.allclose(sim.translation, truth.translation, atol=1e-6)


def test_solver_with_too_few_points():
    p1, p2, _ = _scene(n=4)
    solver = Sim3Solver(p1, p2, None, None, K, K, seed=0)
    sim, inliers, count, no_more = solver.find()
    assert sim is None
    assert count == 0
    assert no_more is True
    assert not inliers.any()


def test_min_inliers_equal_to_n_means_single_iteration():
    p1, p2, _ = _scene()
    solver = Sim3Solver(p1, p2, None, None, K, K)
    solver.set_ransac_parameters(min_inliers=len(p1))
    assert solver.max_iterations == 1


def test_solver_rejects_mismatched_sigma():
    p1, p2, _ = _scene()
    with pytest.raises(ValueError):
        Sim3Solver(p1, p2, [1.0, 2.0], None, K, K)