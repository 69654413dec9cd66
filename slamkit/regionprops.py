"""Shape and intensity properties of an image region bounded by a contour."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

Point = tuple[int, int]


def _as_contour(contour) -> np.ndarray:
    arr = np.asarray(contour, dtype=float)
    if arr.size == 0:
        return np.zeros((0, 2), dtype=np.int64)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError("contour must have shape (n, 2)")
    return np.rint(arr).astype(np.int64)


def _to_points(arr) -> list[Point]:
    return [(int(x), int(y)) for x, y in arr]


def contour_area(contour) -> float:
    """Area enclosed by a closed polygon, independent of its orientation."""
    pts = _as_contour(contour).astype(float)
    if len(pts) < 3:
        return 0.0
    x, y = pts[:, 0], pts[:, 1]
    return abs(float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))) / 2.0


def arc_length(contour) -> float:
    """Perimeter of a closed polygon."""
    pts = _as_contour(contour).astype(float)
    if len(pts) < 2:
        return 0.0
    return float(np.sum(np.hypot(*(np.roll(pts, -1, axis=0) - pts).T)))


def convex_hull(contour) -> list[Point]:
    """Convex hull of the contour points, without collinear points."""
    pts = sorted(set(_to_points(_as_contour(contour))))
    if len(pts) < 3:
        return pts

    def cross(o, a, b):
        return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])

    def half(points):
        chain: list[Point] = []
        for p in points:
            while len(chain) >= 2 and cross(chain[-2], chain[-1], p) <= 0:
                chain.pop()
            chain.append(p)
        return chain

    lower = half(pts)
    upper = half(reversed(pts))
    return lower[:-1] + upper[:-1]


def _segment_distances(points: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
    ab = b - a
    length2 = float(ab @ ab)
    if length2 == 0:
        return np.hypot(*(points - a).T)
    t = np.clip((points - a) @ ab / length2, 0.0, 1.0)
    return np.hypot(*(points - (a + np.outer(t, ab))).T)


def _simplify(chain: np.ndarray, epsilon: float) -> np.ndarray:
    keep = np.zeros(len(chain), dtype=bool)
    keep[0] = keep[-1] = True
    stack = [(0, len(chain) - 1)]
    while stack:
        start, end = stack.pop()
        if end - start < 2:
            continue
        dists = _segment_distances(chain[start + 1:end], chain[start], chain[end])
        offset = int(np.argmax(dists))
        if dists[offset] > epsilon:
            split = start + 1 + offset
            keep[split] = True
            stack.append((start, split))
            stack.append((split, end))
    return chain[keep]


def approx_poly(contour, epsilon) -> list[Point]:
    """Simplify a closed contour with the Douglas-Peucker algorithm."""
    pts = _as_contour(contour)
    if len(pts) < 3:
        return _to_points(pts)
    fpts = pts.astype(float)
    far = int(np.argmax(np.hypot(*(fpts - fpts[0]).T)))
    if far == 0:
        return _to_points(pts[:1])
    first = _simplify(fpts[: far + 1], epsilon)
    second = _simplify(np.vstack([fpts[far:], fpts[:1]]), epsilon)
    return _to_points(np.vstack([first, second[1:-1]]))


def _draw_line(mask: np.ndarray, p0, p1) -> None:
    steps = int(max(abs(p1[0] - p0[0]), abs(p1[1] - p0[1])))
    t = np.linspace(0.0, 1.0, steps + 1)
    xs = np.rint(p0[0] + (p1[0] - p0[0]) * t).astype(int)
    ys = np.rint(p0[1] + (p1[1] - p0[1]) * t).astype(int)
    h, w = mask.shape
    ok = (xs >= 0) & (xs < w) & (ys >= 0) & (ys < h)
    mask[ys[ok], xs[ok]] = 255


def fill_polygon(contour, shape) -> np.ndarray:
    """Rasterise a filled contour, edges included, into a uint8 mask of 0/255."""
    h, w = shape[:2]
    mask = np.zeros((h, w), dtype=np.uint8)
    pts = _as_contour(contour).astype(float)
    if len(pts) == 0:
        return mask

    ys, xs = np.mgrid[0:h, 0:w]
    inside = np.zeros((h, w), dtype=bool)
    for (x0, y0), (x1, y1) in zip(pts, np.roll(pts, -1, axis=0)):
        if y0 == y1:
            continue
        crosses = (y0 > ys) != (y1 > ys)
        x_cross = x0 + (ys - y0) * (x1 - x0) / (y1 - y0)
        inside ^= crosses & (xs < x_cross)
    mask[inside] = 255

    for p0, p1 in zip(pts, np.roll(pts, -1, axis=0)):
        _draw_line(mask, p0, p1)
    return mask


def _moments(pts: np.ndarray) -> dict[str, float]:
    x, y = pts[:, 0], pts[:, 1]
    xj, yj = np.roll(x, -1), np.roll(y, -1)
    cross = x * yj - xj * y
    m = {
        "m00": cross.sum() / 2,
        "m10": np.sum(cross * (x + xj)) / 6,
        "m01": np.sum(cross * (y + yj)) / 6,
        "m20": np.sum(cross * (x * x + x * xj + xj * xj)) / 12,
        "m11": np.sum(cross * (x * yj + 2 * x * y + 2 * xj * yj + xj * y)) / 24,
        "m02": np.sum(cross * (y * y + y * yj + yj * yj)) / 12,
        "m30": np.sum(cross * (x**3 + x * x * xj + x * xj * xj + xj**3)) / 20,
        "m21": np.sum(cross * (x * x * (3 * y + yj) + 2 * x * xj * (y + yj)
                               + xj * xj * (y + 3 * yj))) / 60,
        "m12": np.sum(cross * (y * y * (3 * x + xj) + 2 * y * yj * (x + xj)
                               + yj * yj * (x + 3 * xj))) / 60,
        "m03": np.sum(cross * (y**3 + y * y * yj + y * yj * yj + yj**3)) / 20,
    }
    if m["m00"] < 0:
        m = {key: -value for key, value in m.items()}
    m = {key: float(value) for key, value in m.items()}

    central = dict.fromkeys(("mu20", "mu11", "mu02", "mu30", "mu21", "mu12", "mu03"), 0.0)
    if m["m00"] != 0:
        cx = m["m10"] / m["m00"]
        cy = m["m01"] / m["m00"]
        mu20 = m["m20"] - cx * m["m10"]
        mu11 = m["m11"] - cx * m["m01"]
        mu02 = m["m02"] - cy * m["m01"]
        central = {
            "mu20": mu20,
            "mu11": mu11,
            "mu02": mu02,
            "mu30": m["m30"] - cx * (3 * mu20 + cx * m["m10"]),
            "mu21": m["m21"] - cx * (2 * mu11 + cx * m["m01"]) - cy * mu20,
            "mu12": m["m12"] - cy * (2 * mu11 + cy * m["m10"]) - cx * mu02,
            "mu03": m["m03"] - cy * (3 * mu02 + cy * m["m01"]),
        }
    m.update(central)
    return m


def _fit_ellipse(pts: np.ndarray):
    """Least-squares ellipse: ((cx, cy), (width, height), angle in degrees)."""
    if len(pts) < 5:
        raise ValueError("fitting an ellipse needs at least five points")
    x, y = pts[:, 0].astype(float), pts[:, 1].astype(float)
    mx, my = x.mean(), y.mean()
    sc = max(np.abs(x - mx).max(), np.abs(y - my).max()) or 1.0
    xs, ys = (x - mx) / sc, (y - my) / sc

    d1 = np.column_stack([xs * xs, xs * ys, ys * ys])
    d2 = np.column_stack([xs, ys, np.ones_like(xs)])
    s1, s2, s3 = d1.T @ d1, d1.T @ d2, d2.T @ d2
    try:
        t = -np.linalg.solve(s3, s2.T)
    except np.linalg.LinAlgError as exc:
        raise ValueError("points are degenerate for an ellipse fit") from exc
    m = s1 + s2 @ t
    m = np.vstack([m[2] / 2, -m[1], m[0] / 2])
    _, evecs = np.linalg.eig(m)
    evecs = evecs.real
    cond = 4 * evecs[0] * evecs[2] - evecs[1] ** 2
    candidates = np.flatnonzero(cond > 0)
    if candidates.size == 0:
        raise ValueError("points do not fit an ellipse")
    a1 = evecs[:, candidates[0]]
    a, b, c = a1
    d, e, f = t @ a1

    det = b * b - 4 * a * c
    xc = (2 * c * d - b * e) / det
    yc = (2 * a * e - b * d) / det
    f0 = a * xc * xc + b * xc * yc + c * yc * yc + d * xc + e * yc + f
    lam, vecs = np.linalg.eigh(np.array([[a, b / 2], [b / 2, c]]))
    ratios = -f0 / lam
    if np.any(ratios <= 0):
        raise ValueError("points do not fit an ellipse")
    axes = 2.0 * np.sqrt(ratios) * sc
    angle = math.degrees(math.atan2(vecs[1, 0], vecs[0, 0])) % 180.0
    return (float(mx + sc * xc), float(my + sc * yc)), (float(axes[0]), float(axes[1])), angle


@dataclass
class Region:
    """Geometric and intensity properties of a contour over an image."""

    area: float
    perimeter: float
    moments: dict[str, float]
    centroid: Point
    bounding_box: tuple[int, int, int, int]
    aspect_ratio: float
    convex_hull: list[Point]
    convex_area: float
    ellipse: tuple[tuple[float, float], tuple[float, float], float]
    solidity: float
    major_axis: float
    minor_axis: float
    orientation: float
    eccentricity: float
    approx: list[Point]
    filled_image: np.ndarray
    filled_area: int
    pixel_list: np.ndarray
    convex_image: np.ndarray
    min_val: float
    max_val: float
    min_loc: Point | None
    max_loc: Point | None
    mean_val: float
    extrema: list[Point]

    @property
    def equivalent_diameter(self) -> float:
        return math.sqrt(4 * self.area / math.pi)

    @property
    def extent(self) -> float:
        _, _, w, h = self.bounding_box
        return self.area / (w * h)


def _extrema(pts: np.ndarray, shape) -> list[Point]:
    rows, cols = shape[:2]
    right, left, top, bottom = (0, 0), (cols, 0), (0, 0), (0, rows)
    for x, y in _to_points(pts):
        if x > right[0]:
            right = (x, y)
        if x < left[0]:
            left = (x, y)
        if y > top[1]:
            top = (x, y)
        if y < bottom[1]:
            bottom = (x, y)
    return [right, left, top, bottom]


def region_props(contour, image) -> Region:
    """Compute the properties of the region bounded by ``contour`` in ``image``.

    ``image`` must be single-channel; the contour needs at least five points.
    """
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError("image must be single-channel")
    pts = _as_contour(contour)
    if len(pts) == 0:
        raise ValueError("contour is empty")

    area = contour_area(pts)
    perimeter = arc_length(pts)
    moments = _moments(pts.astype(float))
    centroid = (0, 0)
    if moments["m00"] != 0.0:
        centroid = (int(moments["m10"] / moments["m00"]), int(moments["m01"] / moments["m00"]))

    x0, y0 = pts.min(axis=0)
    x1, y1 = pts.max(axis=0)
    bbox = (int(x0), int(y0), int(x1 - x0) + 1, int(y1 - y0) + 1)

    hull = convex_hull(pts)
    convex_area = contour_area(hull)
    ellipse = _fit_ellipse(pts)
    major = max(ellipse[1])
    minor = min(ellipse[1])

    filled = fill_polygon(pts, img.shape)
    pixel_list = np.argwhere(filled)[:, ::-1]
    values = img[filled > 0]
    if values.size:
        imin, imax = int(np.argmin(values)), int(np.argmax(values))
        min_val, max_val = float(values[imin]), float(values[imax])
        min_loc = (int(pixel_list[imin][0]), int(pixel_list[imin][1]))
        max_loc = (int(pixel_list[imax][0]), int(pixel_list[imax][1]))
        mean_val = float(values.mean())
    else:
        min_val = max_val = mean_val = 0.0
        min_loc = max_loc = None

    return Region(
        area=area,
        perimeter=perimeter,
        moments=moments,
        centroid=centroid,
        bounding_box=bbox,
        aspect_ratio=bbox[2] / bbox[3],
        convex_hull=hull,
        convex_area=convex_area,
        ellipse=ellipse,
        solidity=area / convex_area if convex_area else math.nan,
        major_axis=major,
        minor_axis=minor,
        orientation=ellipse[2],
        eccentricity=math.sqrt(1 - (minor / major) ** 2),
        approx=approx_poly(pts, 0.02 * perimeter),
        filled_image=filled,
        filled_area=int(np.count_nonzero(filled)),
        pixel_list=pixel_list,
        convex_image=fill_polygon(hull, img.shape),
        min_val=min_val,
        max_val=max_val,
        min_loc=min_loc,
        max_loc=max_loc,
        mean_val=mean_val,
        extrema=_extrema(pts, img.shape),
    )