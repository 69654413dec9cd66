from dataclasses import dataclass

import numpy as np
import pytest

from slamkit.matching import KeyPoint
from slamkit.search import ORBMatcher


@dataclass(eq=False)
class Point:
    name: str
    is_bad: bool = False


def random_descriptors(n, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(n, 32), dtype=np.uint8)


def flip_bits(desc, count):
    out = desc.copy()
    for bit in range(count):
        out[bit // 8] ^= np.uint8(1 << (bit % 8))
    return out


def window_search(keys):
    def search(x, y, r, min_level, max_level):
        return [
            i
            for i, kp in enumerate(keys)
            if abs(kp.x - x) <= r
            and abs(kp.y - y) <= r
            and min_level <= kp.octave <= max_level
        ]

    return search


def make_bow_case(n=15, angle2=0.0):
    desc = random_descriptors(n)
    keys1 = [KeyPoint(float(i), 0.0, angle=10.0) for i in range(n)]
    keys2 = [KeyPoint(float(i), 0.0, angle=10.0 - angle2) for i in range(n)]
    points1 = [Point(f"a{i}") for i in range(n)]
    points2 = [Point(f"b{i}") for i in range(n)]
    fv = {3: list(range(n))}
    return fv, keys1, desc, points1, keys2, points2


def test_bow_matches_identical_descriptors():
    fv, keys1, desc, points1, keys2, points2 = make_bow_case()
    matcher = ORBMatcher(0.6, True)
    matches = matcher.search_by_bow(fv, keys1, desc, points1, fv, keys2, desc.copy(), points2)
    assert matches == points2


def test_bow_skips_missing_and_bad_points():
    fv, keys1, desc, points1, keys2, points2 = make_bow_case()
    points1[0] = None
    points2[1] = Point("bad", is_bad=True)
    matches = ORBMatcher(0.6, False).search_by_bow(
        fv, keys1, desc, points1, fv, keys2, desc.copy(), points2
    )
    assert matches[0] is None
    assert matches[1] is None
    assert matches[2] is points2[2]


def test_bow_requires_shared_node():
    fv, keys1, desc, points1, keys2, points2 = make_bow_case()
    matches = ORBMatcher(0.6, False).search_by_bow(
        {1: list(range(15))}, keys1, desc, points1, {2: list(range(15))}, keys2, desc, points2
    )
    assert matches == [None] * 15


def test_bow_rejects_ambiguous_candidates():
    desc1 = random_descriptors(1, seed=1)
    desc2 = np.stack([desc1[0], desc1[0]])
    keys = [KeyPoint(0.0, 0.0), KeyPoint(1.0, 0.0)]
    matches = ORBMatcher(0.6, False).search_by_bow(
        {0: [0]}, keys[:1], desc1, [Point("a")], {0: [0, 1]}, keys, desc2, [Point("b"), Point("c")]
    )
    assert matches == [None]


def test_bow_rejects_distant_descriptors():
    desc1 = random_descriptors(1, seed=2)
    desc2 = np.stack([flip_bits(desc1[0], 60)])
    keys = [KeyPoint(0.0, 0.0)]
    matches = ORBMatcher(0.6, False).search_by_bow(
        {0: [0]}, keys, desc1, [Point("a")], {0: [0]}, keys, desc2, [Point("b")]
    )
    assert matches == [None]


def test_bow_orientation_filter_drops_outlier():
    fv, keys1, desc, points1, keys2, points2 = make_bow_case(n=13)
    keys2[12] = KeyPoint(12.0, 0.0, angle=190.0)
    matches = ORBMatcher(0.6, True).search_by_bow(
        fv, keys1, desc, points1, fv, keys2, desc.copy(), points2
    )
    assert matches[12] is None
    assert matches[:12] == points2[:12]


def test_initialization_matches_shifted_keypoints():
    n = 6
    desc = random_descriptors(n, seed=3)
    keys1 = [KeyPoint(10.0 * i, 5.0) for i in range(n)]
    keys2 = [KeyPoint(10.0 * i + 2.0, 6.0) for i in range(n)]
    prev = [(kp.x, kp.y) for kp in keys1]
    matcher = ORBMatcher(0.9, True)
    matches, updated = matcher.search_for_initialization(
        keys1, desc, keys2, desc.copy(), prev, 4, window_search(keys2)
    )
    assert matches == list(range(n))
    assert updated == [(kp.x, kp.y) for kp in keys2]
    assert prev == [(kp.x, kp.y) for kp in keys1]


def test_initialization_ignores_coarse_levels():
    desc = random_descriptors(2, seed=4)
    keys1 = [KeyPoint(0.0, 0.0, octave=1), KeyPoint(50.0, 0.0)]
    keys2 = [KeyPoint(0.0, 0.0, octave=1), KeyPoint(50.0, 0.0)]
    prev = [(0.0, 0.0), (50.0, 0.0)]
    matches, updated = ORBMatcher(0.9, False).search_for_initialization(
        keys1, desc, keys2, desc.copy(), prev, 10, window_search(keys2)
    )
    assert matches == [None, 1]
    assert updated[0] == (0.0, 0.0)


def test_initialization_better_match_takes_over():
    base = random_descriptors(1, seed=5)[0]
    desc1 = np.stack([flip_bits(base, 10), base])
    desc2 = np.stack([base])
    keys1 = [KeyPoint(0.0, 0.0), KeyPoint(1.0, 0.0)]
    keys2 = [KeyPoint(0.5, 0.0)]
    prev = [(0.0, 0.0), (1.0, 0.0)]
    matches, updated = ORBMatcher(0.9, False).search_for_initialization(
        keys1, desc1, keys2, desc2, prev, 10, window_search(keys2)
    )
    assert matches == [None, 0]
    assert updated == [(0.0, 0.0), (0.5, 0.0)]


def test_initialization_empty_window_gives_no_match():
    desc = random_descriptors(1, seed=6)
    keys1 = [KeyPoint(0.0, 0.0)]
    keys2 = [KeyPoint(100.0, 100.0)]
    matches, updated = ORBMatcher(0.9, False).search_for_initialization(
        keys1, desc, keys2, desc.copy(), [(0.0, 0.0)], 5, window_search(keys2)
    )
    assert matches == [None]
    assert updated == [(0.0, 0.0)]


def test_mismatched_descriptor_lengths_raise():
    keys = [KeyPoint(0.0, 0.0)]
    desc1 = np.zeros((1, 32), dtype=np.uint8)
    desc2 = np.zeros((1, 16), dtype=np.uint8)
    with pytest.raises(ValueError):
        ORBMatcher().search_for_initialization(
            keys, desc1, keys, desc2, [(0.0, 0.0)], 5, window_search(keys)
        )