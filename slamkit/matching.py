"""Descriptor distances, rotation-consistency histograms and epipolar checks."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

TH_HIGH = 100
TH_LOW = 50
HISTO_LENGTH = 30


@dataclass(frozen=True)
class KeyPoint:
    """An image feature: position, orientation in degrees and pyramid level."""

    x: float
    y: float
    angle: float = 0.0
    octave: int = 0


def descriptor_distance(a, b) -> int:
    """Return the Hamming distance between two binary descriptors."""
    arr_a = np.frombuffer(bytes(a), dtype=np.uint8) if isinstance(a, (bytes, bytearray)) else np.asarray(a, dtype=np.uint8).ravel()
    arr_b = np.frombuffer(bytes(b), dtype=np.uint8) if isinstance(b, (bytes, bytearray)) else np.asarray(b, dtype=np.uint8).ravel()
    if arr_a.shape != arr_b.shape:
        raise ValueError(
            f"descriptors differ in length: {arr_a.size} and {arr_b.size} bytes"
        )
    return int(np.unpackbits(np.bitwise_xor(arr_a, arr_b)).sum())


def compute_three_maxima(counts: Sequence[int]) -> tuple[int | None, int | None, int | None]:
    """Return the indices of the three largest counts.

    The second and third are dropped (None) when they are below a tenth of
    the largest; an index is also None when no count exceeds zero there.
    """
    max1 = max2 = max3 = 0
    ind1: int | None = None
    ind2: int | None = None
    ind3: int | None = None
    for i, s in enumerate(counts):
        if s > max1:
            max3, max2, max1 = max2, max1, s
            ind3, ind2, ind1 = ind2, ind1, i
        elif s > max2:
            max3, max2 = max2, s
            ind3, ind2 = ind2, i
        elif s > max3:
            max3 = s
            ind3 = i

    if max2 < 0.1 * max1:
        ind2 = ind3 = None
    elif max3 < 0.1 * max1:
        ind3 = None
    return ind1, ind2, ind3


def radius_by_viewing_cos(view_cos: float) -> float:
    """Search window radius factor for a given viewing-angle cosine."""
    return 2.5 if view_cos > 0.998 else 4.0


def check_dist_epipolar_line(kp1: KeyPoint, kp2: KeyPoint, f12, sigma2: Sequence[float]) -> bool:
    """Check that kp2 lies close to the epipolar line of kp1.

    ``f12`` is the 3x3 fundamental matrix from image 1 to image 2 and
    ``sigma2`` holds the squared scale sigma of each pyramid level of image 2.
    """
    f = np.asarray(f12, dtype=float)
    if f.shape != (3, 3):
        raise ValueError("fundamental matrix must be 3x3")
    a, b, c = np.array([kp1.x, kp1.y, 1.0]) @ f
    num = a * kp2.x + b * kp2.y + c
    den = a * a + b * b
    if den == 0:
        return False
    return bool(num * num / den < 3.84 * sigma2[kp2.octave])


class RotationHistogram:
    """Histogram of relative keypoint rotations used to reject inconsistent matches."""

    def __init__(self, length: int = HISTO_LENGTH):
        if length <= 0:
            raise ValueError("histogram length must be positive")
        self.length = length
        self._factor = 1.0 / length
        self._bins: list[list[int]] = [[] for _ in range(length)]

    def add(self, index: int, angle1: float, angle2: float) -> int:
        """Record a match by the rotation between its two keypoints; return its bin."""
        rot = angle1 - angle2
        if rot < 0.0:
            rot += 360.0
        bin_index = math.floor(rot * self._factor + 0.5)
        if bin_index == self.length:
            bin_index = 0
        if not 0 <= bin_index < self.length:
            raise ValueError(f"rotation {rot} falls outside the histogram")
        self._bins[bin_index].append(index)
        return bin_index

    @property
    def counts(self) -> list[int]:
        return [len(b) for b in self._bins]

    def rejected(self) -> list[int]:
        """Indices recorded outside the three dominant rotation bins."""
        kept = set(compute_three_maxima(self.counts)) - {None}
        return [
            index
            for i, entries in enumerate(self._bins)
            if i not in kept
            for index in entries
        ]