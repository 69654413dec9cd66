"""Efficient Perspective-n-Point pose estimation and its numerical helpers."""

from __future__ import annotations

import math

import numpy as np

_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))
# Order of the quadratic beta terms: B11 B12 B22 B13 B23 B33 B14 B24 B34 B44.
_BETA_TERMS = (
    (0, 0), (0, 1), (1, 1), (0, 2), (1, 2), (2, 2), (0, 3), (1, 3), (2, 3), (3, 3),
)
_GAUSS_NEWTON_ITERATIONS = 5


def _as_points(points, dims: int, name: str) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != dims:
        raise ValueError(f"{name} must have shape (n, {dims})")
    return arr


def qr_solve(a, b) -> np.ndarray:
    """Solve ``a x = b`` in the least-squares sense with Householder QR.

    Raises ``numpy.linalg.LinAlgError`` when a column of ``a`` is all zero.
    """
    mat = np.array(a, dtype=float)
    rhs = np.array(b, dtype=float).ravel()
    if mat.ndim != 2:
        raise ValueError("matrix must be two-dimensional")
    nr, nc = mat.shape
    if nr < nc:
        raise ValueError("matrix must have at least as many rows as columns")
    if rhs.size != nr:
        raise ValueError("right-hand side does not match the matrix rows")

    a1 = np.zeros(nc)
    a2 = np.zeros(nc)
    for k in range(nc):
        column = mat[k:, k]
        eta = np.max(np.abs(column))
        if eta == 0:
            raise np.linalg.LinAlgError("matrix is singular")
        column /= eta
        sigma = math.sqrt(float(column @ column))
        if column[0] < 0:
            sigma = -sigma
        column[0] += sigma
        a1[k] = sigma * column[0]
        a2[k] = -eta * sigma
        if k + 1 < nc:
            tau = (column @ mat[k:, k + 1:]) / a1[k]
            mat[k:, k + 1:] -= np.outer(column, tau)

    for j in range(nc):
        column = mat[j:, j]
        tau = float(column @ rhs[j:]) / a1[j]
        rhs[j:] -= tau * column

    x = np.zeros(nc)
    x[nc - 1] = rhs[nc - 1] / a2[nc - 1]
    for i in range(nc - 2, -1, -1):
        x[i] = (rhs[i] - mat[i, i + 1:] @ x[i + 1:]) / a2[i]
    return x


def reprojection_error(rotation, translation, points3d, points2d, fx, fy, cx, cy) -> float:
    """Mean pixel distance between observed points and projected 3D points."""
    rot = np.asarray(rotation, dtype=float)
    t = np.asarray(translation, dtype=float).ravel()
    pws = _as_points(points3d, 3, "points3d")
    us = _as_points(points2d, 2, "points2d")
    if len(pws) != len(us):
        raise ValueError("points3d and points2d differ in length")
    if len(pws) == 0:
        raise ValueError("no correspondences")
    pc = pws @ rot.T + t
    inv_z = 1.0 / pc[:, 2]
    ue = cx + fx * pc[:, 0] * inv_z
    ve = cy + fy * pc[:, 1] * inv_z
    return float(np.mean(np.hypot(us[:, 0] - ue, us[:, 1] - ve)))


def _choose_control_points(pws: np.ndarray) -> np.ndarray:
    n = len(pws)
    c0 = pws.mean(axis=0)
    centred = pws - c0
    u, s, _ = np.linalg.svd(centred.T @ centred)
    cws = [c0] + [c0 + math.sqrt(s[i] / n) * u[:, i] for i in range(3)]
    return np.array(cws)


def _barycentric_coordinates(pws: np.ndarray, cws: np.ndarray) -> np.ndarray:
    cc = (cws[1:] - cws[0]).T
    cc_inv = np.linalg.pinv(cc)
    rest = (pws - cws[0]) @ cc_inv.T
    return np.column_stack([1.0 - rest.sum(axis=1), rest])


def _build_m(alphas, us, fx, fy, cx, cy) -> np.ndarray:
    n = len(alphas)
    m = np.zeros((2 * n, 12))
    m[0::2, 0::3] = alphas * fx
    m[0::2, 2::3] = alphas * (cx - us[:, 0])[:, None]
    m[1::2, 1::3] = alphas * fy
    m[1::2, 2::3] = alphas * (cy - us[:, 1])[:, None]
    return m


def _compute_l_6x10(v: np.ndarray) -> np.ndarray:
    dv = np.stack([v[:, a] - v[:, b] for a, b in _PAIRS], axis=1)  # (4, 6, 3)
    columns = [
        (1.0 if p == q else 2.0) * np.sum(dv[p] * dv[q], axis=1)
        for p, q in _BETA_TERMS
    ]
    return np.column_stack(columns)


def _compute_rho(cws: np.ndarray) -> np.ndarray:
    return np.array([float(np.sum((cws[a] - cws[b]) ** 2)) for a, b in _PAIRS])


def _betas_approx_1(l6x10, rho) -> np.ndarray:
    b4 = np.linalg.lstsq(l6x10[:, [0, 1, 3, 6]], rho, rcond=None)[0]
    betas = np.zeros(4)
    if b4[0] < 0:
        betas[0] = np.sqrt(-b4[0])
        betas[1:] = -b4[1:] / betas[0]
    else:
        betas[0] = np.sqrt(b4[0])
        betas[1:] = b4[1:] / betas[0]
    return betas


def _betas_approx_2(l6x10, rho) -> np.ndarray:
    b3 = np.linalg.lstsq(l6x10[:, :3], rho, rcond=None)[0]
    betas = np.zeros(4)
    if b3[0] < 0:
        betas[0] = np.sqrt(-b3[0])
        betas[1] = np.sqrt(-b3[2]) if b3[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b3[0])
        betas[1] = np.sqrt(b3[2]) if b3[2] > 0 else 0.0
    if b3[1] < 0:
        betas[0] = -betas[0]
    return betas


def _betas_approx_3(l6x10, rho) -> np.ndarray:
    b5 = np.linalg.lstsq(l6x10[:, :5], rho, rcond=None)[0]
    betas = np.zeros(4)
    if b5[0] < 0:
        betas[0] = np.sqrt(-b5[0])
        betas[1] = np.sqrt(-b5[2]) if b5[2] < 0 else 0.0
    else:
        betas[0] = np.sqrt(b5[0])
        betas[1] = np.sqrt(b5[2]) if b5[2] > 0 else 0.0
    if b5[1] < 0:
        betas[0] = -betas[0]
    betas[2] = b5[3] / betas[0]
    return betas


def _gauss_newton(l6x10, rho, betas: np.ndarray) -> np.ndarray:
    betas = betas.copy()
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        a = np.zeros((6, 4))
        products = np.zeros(10)
        for k, (p, q) in enumerate(_BETA_TERMS):
            a[:, p] += l6x10[:, k] * betas[q]
            a[:, q] += l6x10[:, k] * betas[p]
            products[k] = betas[p] * betas[q]
        b = rho - l6x10 @ products
        try:
            betas += qr_solve(a, b)
        except np.linalg.LinAlgError:
            break
    return betas


def _estimate_r_and_t(pcs: np.ndarray, pws: np.ndarray):
    pc0 = pcs.mean(axis=0)
    pw0 = pws.mean(axis=0)
    abt = (pcs - pc0).T @ (pws - pw0)
    u, _, vt = np.linalg.svd(abt)
    rot = u @ vt
    if np.linalg.det(rot) < 0:
        rot[2] = -rot[2]
    t = pc0 - rot @ pw0
    return rot, t


def _compute_r_and_t(v, betas, alphas, pws, us, fx, fy, cx, cy):
    ccs = np.tensordot(betas, v, axes=1)  # (4, 3)
    pcs = alphas @ ccs
    if pcs[0, 2] < 0.0:
        pcs = -pcs
    rot, t = _estimate_r_and_t(pcs, pws)
    error = reprojection_error(rot, t, pws, us, fx, fy, cx, cy)
    return rot, t, error


def epnp(points3d, points2d, fx, fy, cx, cy) -> tuple[np.ndarray, np.ndarray, float]:
    """Estimate the camera pose from 3D-2D correspondences.

    Returns the world-to-camera rotation (3x3), translation (3,) and the mean
    reprojection error in pixels of the chosen solution.
    """
    pws = _as_points(points3d, 3, "points3d")
    us = _as_points(points2d, 2, "points2d")
    if len(pws) != len(us):
        raise ValueError("points3d and points2d differ in length")
    if len(pws) < 4:
        raise ValueError("at least four correspondences are needed")

    with np.errstate(divide="ignore", invalid="ignore"):
        cws = _choose_control_points(pws)
        alphas = _barycentric_coordinates(pws, cws)
        m = _build_m(alphas, us, fx, fy, cx, cy)
        u, _, _ = np.linalg.svd(m.T @ m)
        ut = u.T
        v = ut[[11, 10, 9, 8]].reshape(4, 4, 3)

        l6x10 = _compute_l_6x10(v)
        rho = _compute_rho(cws)

        solutions = []
        for approx in (_betas_approx_1, _betas_approx_2, _betas_approx_3):
            betas = _gauss_newton(l6x10, rho, approx(l6x10, rho))
            solutions.append(
                _compute_r_and_t(v, betas, alphas, pws, us, fx, fy, cx, cy)
            )

    best = 0
    if solutions[1][2] < solutions[0][2]:
        best = 1
    if solutions[2][2] < solutions[best][2]:
        best = 2
    return solutions[best]


def mat_to_quat(rotation) -> np.ndarray:
    """Convert a rotation matrix to a quaternion ``(x, y, z, w)``."""
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be 3x3")
    tr = r[0, 0] + r[1, 1] + r[2, 2]
    if tr > 0.0:
        q = [r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], tr + 1.0]
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = [1.0 + r[0, 0] - r[1, 1] - r[2, 2], r[1, 0] + r[0, 1],
             r[2, 0] + r[0, 2], r[1, 2] - r[2, 1]]
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = [r[1, 0] + r[0, 1], 1.0 + r[1, 1] - r[0, 0] - r[2, 2],
             r[2, 1] + r[1, 2], r[2, 0] - r[0, 2]]
        n4 = q[1]
    else:
        q = [r[2, 0] + r[0, 2], r[2, 1] + r[1, 2],
             1.0 + r[2, 2] - r[0, 0] - r[1, 1], r[0, 1] - r[1, 0]]
        n4 = q[2]
    return np.array(q) * (0.5 / math.sqrt(n4))


def relative_error(r_true, t_true, r_est, t_est) -> tuple[float, float]:
    """Relative rotation (quaternion) and translation errors of an estimate."""
    q_true = mat_to_quat(r_true)
    q_est = mat_to_quat(r_est)
    norm_q = np.linalg.norm(q_true)
    rot_err = min(
        np.linalg.norm(q_true - q_est) / norm_q,
        np.linalg.norm(q_true + q_est) / norm_q,
    )
    tt = np.asarray(t_true, dtype=float).ravel()
    te = np.asarray(t_est, dtype=float).ravel()
    transl_err = np.linalg.norm(tt - te) / np.linalg.norm(tt)
    return float(rot_err), float(transl_err)