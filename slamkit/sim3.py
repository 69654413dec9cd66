"""Similarity transform estimation between two sets of 3D points with RANSAC."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass

import numpy as np

_CHI2_TWO_DOF = 9.210
_MIN_SET = 3


def _as_points(points, name: str = "points") -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.ndim == 1 and arr.size == 3:
        arr = arr.reshape(1, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must have shape (n, 3)")
    return arr


def _as_intrinsics(k) -> np.ndarray:
    kk = np.asarray(k, dtype=float)
    if kk.shape != (3, 3):
        raise ValueError("intrinsic matrix must be 3x3")
    return kk


@dataclass(frozen=True, eq=False)
class Sim3:
    """A similarity transform ``x -> scale * rotation @ x + translation``."""

    rotation: np.ndarray
    translation: np.ndarray
    scale: float = 1.0

    @property
    def matrix(self) -> np.ndarray:
        """The 4x4 homogeneous matrix ``[sR t; 0 1]``."""
        m = np.eye(4)
        m[:3, :3] = self.scale * np.asarray(self.rotation, dtype=float)
        m[:3, 3] = np.asarray(self.translation, dtype=float).ravel()
        return m

    def inverse(self) -> "Sim3":
        rot_t = np.asarray(self.rotation, dtype=float).T
        inv_scale = 1.0 / self.scale
        translation = -inv_scale * rot_t @ np.asarray(self.translation, dtype=float).ravel()
        return Sim3(rot_t, translation, inv_scale)

    def map(self, points) -> np.ndarray:
        """Apply the transform to an array of points of shape (n, 3)."""
        pts = _as_points(points)
        rot = np.asarray(self.rotation, dtype=float)
        return self.scale * pts @ rot.T + np.asarray(self.translation, dtype=float).ravel()


def _quaternion_to_rotation(q: np.ndarray) -> np.ndarray:
    w, x, y, z = q / np.linalg.norm(q)
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ])


def compute_sim3(points1, points2, fix_scale: bool = True) -> Sim3:
    """Closed-form similarity mapping ``points2`` onto ``points1``.

    Uses Horn's unit-quaternion solution of absolute orientation; with
    ``fix_scale`` the scale is kept at one.
    """
    p1 = _as_points(points1, "points1")
    p2 = _as_points(points2, "points2")
    if p1.shape != p2.shape:
        raise ValueError("point sets differ in size")
    if len(p1) < _MIN_SET:
        raise ValueError("at least three point pairs are needed")

    o1 = p1.mean(axis=0)
    o2 = p2.mean(axis=0)
    pr1 = p1 - o1
    pr2 = p2 - o2

    m = pr2.T @ pr1
    n11 = m[0, 0] + m[1, 1] + m[2, 2]
    n12 = m[1, 2] - m[2, 1]
    n13 = m[2, 0] - m[0, 2]
    n14 = m[0, 1] - m[1, 0]
    n22 = m[0, 0] - m[1, 1] - m[2, 2]
    n23 = m[0, 1] + m[1, 0]
    n24 = m[2, 0] + m[0, 2]
    n33 = -m[0, 0] + m[1, 1] - m[2, 2]
    n34 = m[1, 2] + m[2, 1]
    n44 = -m[0, 0] - m[1, 1] + m[2, 2]
    n = np.array([
        [n11, n12, n13, n14],
        [n12, n22, n23, n24],
        [n13, n23, n33, n34],
        [n14, n24, n34, n44],
    ])

    eigenvalues, eigenvectors = np.linalg.eigh(n)
    rotation = _quaternion_to_rotation(eigenvectors[:, int(np.argmax(eigenvalues))])

    p3 = pr2 @ rotation.T
    if fix_scale:
        scale = 1.0
    else:
        den = float(np.sum(p3 * p3))
        if den == 0:
            raise ValueError("points2 are all identical")
        scale = float(np.sum(pr1 * p3)) / den

    translation = o1 - scale * rotation @ o2
    return Sim3(rotation, translation, scale)


def camera_to_image(points, k) -> np.ndarray:
    """Project points given in camera coordinates with intrinsics ``k``."""
    pts = _as_points(points)
    kk = _as_intrinsics(k)
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / pts[:, 2]
        u = kk[0, 0] * pts[:, 0] * inv_z + kk[0, 2]
        v = kk[1, 1] * pts[:, 1] * inv_z + kk[1, 2]
    return np.column_stack([u, v])


def project(points, transform, k) -> np.ndarray:
    """Transform points (a Sim3 or 4x4 matrix) and project them into the image."""
    t = transform.matrix if isinstance(transform, Sim3) else np.asarray(transform, dtype=float)
    if t.shape != (4, 4):
        raise ValueError("transform must be a 4x4 matrix")
    pts = _as_points(points)
    return camera_to_image(pts @ t[:3, :3].T + t[:3, 3], k)


class Sim3Solver:
    """RANSAC estimation of the similarity from camera 2 to camera 1.

    ``points1`` and ``points2`` are matched 3D points expressed in the frames
    of camera 1 and camera 2; ``sigma2_1`` and ``sigma2_2`` are the squared
    sigmas of their image observations (None means one for each point).
    """

    def __init__(self, points1, points2, sigma2_1, sigma2_2, k1, k2, fix_scale=True, seed=None):
        p1 = _as_points(points1, "points1")
        p2 = _as_points(points2, "points2")
        if p1.shape != p2.shape:
            raise ValueError("point sets differ in size")
        n = len(p1)
        self._points1 = p1
        self._points2 = p2
        self._k1 = _as_intrinsics(k1)
        self._k2 = _as_intrinsics(k2)
        self._max_error1 = _CHI2_TWO_DOF * self._sigma(sigma2_1, n)
        self._max_error2 = _CHI2_TWO_DOF * self._sigma(sigma2_2, n)
        self._p1_in_1 = camera_to_image(p1, self._k1)
        self._p2_in_2 = camera_to_image(p2, self._k2)
        self.fix_scale = fix_scale
        self._rng = random.Random(seed)

        self._best: Sim3 | None = None
        self._best_inliers = np.zeros(n, dtype=bool)
        self._n_best_inliers = 0
        self._iterations_done = 0

        self.set_ransac_parameters()

    @staticmethod
    def _sigma(sigma2, n: int) -> np.ndarray:
        if sigma2 is None:
            return np.ones(n)
        sig = np.asarray(sigma2, dtype=float).ravel()
        if len(sig) != n:
            raise ValueError("sigma2 must hold one value per correspondence")
        return sig

    def __len__(self) -> int:
        return len(self._points1)

    @property
    def best(self) -> Sim3 | None:
        """The transform with the most inliers found so far."""
        return self._best

    def set_ransac_parameters(self, probability=0.99, min_inliers=6, max_iterations=300) -> None:
        """Set the RANSAC parameters and reset the iteration count."""
        n = len(self._points1)
        self.probability = probability
        self.min_inliers = min_inliers
        if min_inliers >= n:
            iterations = 1
        else:
            epsilon = min_inliers / n
            iterations = math.ceil(math.log(1 - probability) / math.log(1 - epsilon**3))
        self.max_iterations = max(1, min(iterations, max_iterations))
        self._iterations_done = 0

    def _check_inliers(self, sim: Sim3) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            p2_in_1 = project(self._points2, sim, self._k1)
            p1_in_2 = project(self._points1, sim.inverse(), self._k2)
            err1 = np.sum((self._p1_in_1 - p2_in_1) ** 2, axis=1)
            err2 = np.sum((p1_in_2 - self._p2_in_2) ** 2, axis=1)
            return (err1 < self._max_error1) & (err2 < self._max_error2)

    def iterate(self, iterations):
        """Run up to ``iterations`` more rounds.

        Returns ``(sim3, inliers, n_inliers, no_more)``; ``sim3`` is None
        unless a transform with more than ``min_inliers`` inliers was found.
        """
        n = len(self._points1)
        no_inliers = np.zeros(n, dtype=bool)
        if n < self.min_inliers or n < _MIN_SET:
            return None, no_inliers, 0, True

        current = 0
        while self._iterations_done < self.max_iterations and current < iterations:
            current += 1
            self._iterations_done += 1

            sample = self._rng.sample(range(n), _MIN_SET)
            try:
                sim = compute_sim3(self._points1[sample], self._points2[sample], self.fix_scale)
            except (ValueError, np.linalg.LinAlgError):
                continue
            inliers = self._check_inliers(sim)
            count = int(inliers.sum())

            if count >= self._n_best_inliers:
                self._best = sim
                self._best_inliers = inliers
                self._n_best_inliers = count
                if count > self.min_inliers:
                    return sim, inliers.copy(), count, False

        return None, no_inliers, 0, self._iterations_done >= self.max_iterations

    def find(self):
        """Run the full RANSAC budget; see :meth:`iterate`."""
        return self.iterate(self.max_iterations)