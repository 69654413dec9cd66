"""Descriptor matching between keyframes and between frames for initialization."""

from __future__ import annotations

import math
from typing import Any, Callable, Mapping, Sequence

from slamkit.matching import (
    HISTO_LENGTH,
    TH_LOW,
    KeyPoint,
    RotationHistogram,
    descriptor_distance,
)

FeaturesInArea = Callable[[float, float, float, int, int], Sequence[int]]


def _usable(point: Any) -> bool:
    """A map point takes part in matching unless it is missing or flagged bad."""
    if point is None:
        return False
    flag = getattr(point, "is_bad", False)
    if callable(flag):
        flag = flag()
    return not flag


class ORBMatcher:
    """Matches binary descriptors with a nearest-neighbour ratio test.

    ``nn_ratio`` is the largest allowed ratio between the best and second-best
    distance; ``check_orientation`` enables rejection of matches whose relative
    keypoint rotation disagrees with the dominant rotations.
    """

    def __init__(self, nn_ratio: float = 0.6, check_orientation: bool = True):
        self.nn_ratio = nn_ratio
        self.check_orientation = check_orientation

    def search_by_bow(
        self,
        feat_vec1: Mapping[int, Sequence[int]],
        keys1: Sequence[KeyPoint],
        descriptors1: Sequence,
        points1: Sequence[Any],
        feat_vec2: Mapping[int, Sequence[int]],
        keys2: Sequence[KeyPoint],
        descriptors2: Sequence,
        points2: Sequence[Any],
    ) -> list[Any]:
        """Match the map points of two keyframes through shared vocabulary nodes.

        Feature vectors map a vocabulary node id to the indices of the
        features under it. Returns a list as long as ``points1`` holding, for
        each index, the matched point of the second keyframe or None.
        """
        matches12: list[Any] = [None] * len(points1)
        matched2 = [False] * len(points2)
        histogram = RotationHistogram(HISTO_LENGTH)

        for node in sorted(set(feat_vec1) & set(feat_vec2)):
            indices2 = feat_vec2[node]
            for idx1 in feat_vec1[node]:
                if not _usable(points1[idx1]):
                    continue
                d1 = descriptors1[idx1]

                best_dist1 = 256
                best_dist2 = 256
                best_idx2: int | None = None
                for idx2 in indices2:
                    if matched2[idx2] or not _usable(points2[idx2]):
                        continue
                    dist = descriptor_distance(d1, descriptors2[idx2])
                    if dist < best_dist1:
                        best_dist2 = best_dist1
                        best_dist1 = dist
                        best_idx2 = idx2
                    elif dist < best_dist2:
                        best_dist2 = dist

                if best_idx2 is None or best_dist1 >= TH_LOW:
                    continue
                if not best_dist1 < self.nn_ratio * best_dist2:
                    continue

                matches12[idx1] = points2[best_idx2]
                matched2[best_idx2] = True
                if self.check_orientation:
                    histogram.add(idx1, keys1[idx1].angle, keys2[best_idx2].angle)

        if self.check_orientation:
            for idx1 in histogram.rejected():
                matches12[idx1] = None

        return matches12

    def search_for_initialization(
        self,
        keys1: Sequence[KeyPoint],
        descriptors1: Sequence,
        keys2: Sequence[KeyPoint],
        descriptors2: Sequence,
        prev_matched: Sequence[tuple[float, float]],
        window_size: float,
        features_in_area: FeaturesInArea,
    ) -> tuple[list[int | None], list[tuple[float, float]]]:
        """Match finest-level keypoints of frame 1 to frame 2 around prior positions.

        ``features_in_area(x, y, radius, min_level, max_level)`` returns the
        indices of frame-2 keypoints in the search window. Returns the index
        in frame 2 matched by each keypoint of frame 1 (or None), and the prior
        positions with matched entries moved to their new locations.
        """
        matches12: list[int | None] = [None] * len(keys1)
        matches21: list[int | None] = [None] * len(keys2)
        matched_distance = [math.inf] * len(keys2)
        histogram = RotationHistogram(HISTO_LENGTH)

        for i1, kp1 in enumerate(keys1):
            level1 = kp1.octave
            if level1 > 0:
                continue
            px, py = prev_matched[i1]
            candidates = features_in_area(px, py, window_size, level1, level1)
            if not candidates:
                continue
            d1 = descriptors1[i1]

            best_dist = math.inf
            best_dist2 = math.inf
            best_idx2: int | None = None
            for i2 in candidates:
                dist = descriptor_distance(d1, descriptors2[i2])
                if matched_distance[i2] <= dist:
                    continue
                if dist < best_dist:
                    best_dist2 = best_dist
                    best_dist = dist
                    best_idx2 = i2
                elif dist < best_dist2:
                    best_dist2 = dist

            if best_idx2 is None or best_dist > TH_LOW:
                continue
            if not best_dist < best_dist2 * self.nn_ratio:
                continue

            previous = matches21[best_idx2]
            if previous is not None:
                matches12[previous] = None
            matches12[i1] = best_idx2
            matches21[best_idx2] = i1
            matched_distance[best_idx2] = best_dist

            if self.check_orientation:
                histogram.add(i1, kp1.angle, keys2[best_idx2].angle)

        if self.check_orientation:
            for i1 in histogram.rejected():
                matches12[i1] = None

        updated = list(prev_matched)
        for i1, i2 in enumerate(matches12):
            if i2 is not None:
                updated[i1] = (keys2[i2].x, keys2[i2].y)
        return matches12, updated