# slamkit

Building blocks for feature-based visual SLAM, written with NumPy.

## Modules

- `slamkit.matching`: `descriptor_distance` (Hamming distance between two
  binary descriptors of equal length, given as bytes or uint8 arrays),
  the `KeyPoint` dataclass, `RotationHistogram` for rejecting matches whose
  relative keypoint rotation falls outside the three dominant bins,
  `compute_three_maxima`, `radius_by_viewing_cos` and
  `check_dist_epipolar_line`.
- `slamkit.search`: `ORBMatcher` with a nearest-neighbour ratio test and
  optional orientation check.
  - `search_by_bow` matches the map points of two keyframes that share a
    vocabulary node and returns, for each point of the first keyframe, the
    matched point of the second or `None`.
  - `search_for_initialization` matches finest-level keypoints of one frame
    to another around prior positions, using a `features_in_area` callable
    you supply, and returns the matched indices together with the updated
    prior positions.
- `slamkit.epnp`: `epnp` estimates a world-to-camera rotation and
  translation from four or more 3D-2D correspondences and returns them with
  the mean reprojection error. Also `reprojection_error`, `qr_solve`
  (Householder least squares), `mat_to_quat` and `relative_error`.
- `slamkit.sim3`: the `Sim3` similarity transform (`matrix`, `inverse`,
  `map`), `compute_sim3` (Horn's closed-form absolute orientation, scale
  fixed to one by default), `project`, `camera_to_image`, and `Sim3Solver`,
  a RANSAC estimator of the similarity from camera 2 to camera 1.
- `slamkit.regionprops`: `region_props` returns a `Region` with area,
  perimeter, moments, centroid, bounding box, convex hull, fitted ellipse,
  solidity, eccentricity, simplified polygon, filled and convex masks,
  pixel statistics and extreme points. The helpers `contour_area`,
  `arc_length`, `convex_hull`, `approx_poly` and `fill_polygon` are usable
  on their own.

## Installation

```
pip install .
```

## Examples

Distance between two binary descriptors:

```python
import numpy as np
from slamkit.matching import descriptor_distance

a = np.zeros(32, dtype=np.uint8)
b = np.full(32, 0xFF, dtype=np.uint8)
descriptor_distance(a, b)  # 256
```

Camera pose from matched points:

```python
from slamkit.epnp import epnp

rotation, translation, error = epnp(points3d, points2d, fx, fy, cx, cy)
```

Aligning two sets of camera-frame points:

```python
from slamkit.sim3 import Sim3Solver, compute_sim3

sim3 = compute_sim3(points1, points2, fix_scale=False)
print(sim3.scale, sim3.rotation, sim3.translation)

solver = Sim3Solver(points1, points2, None, None, k1, k2, fix_scale=False, seed=0)
sim3, inliers, n_inliers, no_more = solver.find()
```

`sim3` is `None` unless a transform with more than `min_inliers` inliers
(six by default) was found.

Properties of a contour in a single-channel image (the contour needs at
least five points for the ellipse fit):

```python
from slamkit.regionprops import region_props

region = region_props(contour, image)
print(region.area, region.centroid, region.solidity, region.extent)
```

## What the package does not do

- `epnp` solves once on all the correspondences it is given; there is no
  RANSAC loop around it for outlier rejection or refinement on inliers.
- There is no epipolar-constrained matcher for triangulating new points;
  `check_dist_epipolar_line` provides only the per-pair test.
- There is no command-line program, tracking loop, map storage or viewer.

## Running the tests

```
pip install .[test]
pytest
```