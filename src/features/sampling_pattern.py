"""
Phase 3 - Step 3.2: ORB Sampling Pattern
Fixed table of intensity-test point pairs used by the rotated BRIEF descriptor.

The embedded table (version 'orb-gaussian-v1') holds 256 pairs
(x1, y1, x2, y2) of integer offsets inside a 27x27 window, drawn once from
an isotropic Gaussian (sigma = 31/5) and frozen. It is configuration data:
it is never regenerated at runtime, so descriptors stay comparable across
runs and machines.

Pattern learning (greedy decorrelation over a corpus of oriented patches)
is provided separately by learn_sampling_pattern(); learned tables are
persisted with save_sampling_pattern() and loaded with load_sampling_pattern().
"""

import json
import numpy as np
from pathlib import Path
from typing import Optional

from config import cfg
from utils.math_utils import correlation_matrix, max_offset_radius


PATTERN_VERSION = 'orb-gaussian-v1'

# (x1, y1, x2, y2) offsets relative to the keypoint, x right, y down
_ORB_PATTERN_V1 = (
    (1, -3, -4, -9), (-7, -10, 8, 1), (-8, -2, -8, 5), (3, -8, 6, 13),
    (2, -6, -11, -1), (1, -12, 4, -5), (-6, -2, -1, 6), (9, -4, -12, 6),
    (3, -8, -9, -2), (-2, 5, -9, -8), (0, 9, 2, 1), (-3, 4, -1, -4),
    (-12, -3, 3, -5), (-7, -6, 3, -5), (1, 4, -13, 13), (10, 3, 11, -4),
    (6, -4, -8, -2), (-5, -3, 6, -11), (6, 4, -5, -12), (11, -6, -2, -5),
    (-4, 1, 1, -10), (8, -1, 1, 12), (-2, -6, -2, 4), (7, 1, 5, -5),
    (-8, 6, -10, -6), (-6, -12, 2, -4), (5, 0, 1, -10), (-2, -4, -4, 13),
    (0, 10, 2, -2), (-4, 4, -3, -5), (-3, -4, 7, -9), (1, -1, 12, 9),
    (-10, 13, -6, -2), (8, 2, -7, 4), (-11, -6, -7, 1), (10, -5, 1, 5),
    (-8, -3, -11, -6), (2, 6, 0, 2), (-1, 4, -5, 8), (3, -2, -4, 8),
    (-12, 3, 1, -6), (5, 7, -6, 3), (-4, -7, -4, 4), (-8, 8, 9, 0),
    (-4, -7, 4, 2), (-10, -11, 4, -5), (6, 2, 6, 3), (3, 3, 1, 2),
    (-5, 1, -4, 6), (-13, 4, 6, 5), (1, -13, -8, 7), (11, 5, 4, 1),
    (5, 1, 2, -13), (-10, -1, -4, -4), (-4, 13, 0, 1), (-8, 8, -3, 8),
    (6, -5, -4, 9), (-2, -5, 3, 10), (-1, 0, -1, 2), (8, 0, -8, -3),
    (9, 8, -8, -2), (-13, 0, 4, -10), (7, 11, 2, 2), (10, -2, -6, 0),
    (-5, 5, -13, 6), (-1, -9, -8, 1), (3, -2, 6, -7), (0, -6, -3, -13),
    (1, 2, 11, 6), (-5, 0, -6, 1), (-4, 6, -7, -1), (4, -3, -2, -3),
    (0, -1, 0, 4), (-3, 3, -10, 3), (1, -8, 5, -6), (0, -12, -1, -10),
    (10, 4, 8, -1), (-5, -3, -2, 5), (8, 8, 4, 1), (-10, 0, -4, 4),
    (2, 5, -4, -2), (-5, 0, -1, 0), (-3, -10, -5, 11), (-13, 9, 1, -3),
    (-5, -6, 12, 1), (1, -8, -2, 4), (9, 7, -2, -10), (-2, 4, -8, 4),
    (-2, 7, -1, 5), (-12, -9, 7, -3), (12, -4, 0, 10), (7, 0, 6, 9),
    (-7, -13, 0, 10), (-3, 5, 5, 1), (-13, 6, -5, -2), (7, -3, 1, 4),
    (5, -4, -10, 8), (-1, 12, 3, 4), (7, -2, -4, 3), (-5, 0, -3, 6),
    (-6, -8, -11, -6), (-9, 9, 8, 2), (-13, 3, -11, -10), (10, -2, 4, 3),
    (-4, 3, -11, 0), (-1, -10, 6, -5), (2, 0, -9, -7), (-2, 9, -6, 7),
    (7, -6, -2, -7), (0, -2, 1, -10), (-11, -9, -11, -1), (2, -1, 4, 9),
    (-9, -4, 4, -10), (5, -13, 1, -2), (3, 5, -2, -5), (-3, -4, 7, -5),
    (7, 6, -4, -5), (2, 2, -1, 10), (4, -1, -5, -4), (-13, -13, -1, 13),
    (-2, -12, 3, -1), (3, -3, -5, -3), (-8, 4, -10, 2), (-2, -5, -5, 3),
    (0, 1, 0, 11), (-4, -1, -5, 13), (-4, 1, 3, 8), (5, 0, 4, 1),
    (5, 6, -8, 4), (1, -2, 10, 0), (-6, 3, 4, -1), (-1, -1, -8, 1),
    (7, -5, -2, -3), (-3, 0, 4, 0), (-9, 13, 9, -3), (-4, -13, -2, -6),
    (6, -1, -1, 0), (1, 1, 13, -8), (-7, 0, -3, -8), (13, 9, -4, -3),
    (0, -4, -1, -4), (-3, 8, -1, 9), (2, -4, 4, -12), (-1, -6, 0, -2),
    (-2, 1, -9, 10), (-4, 1, -3, -3), (-9, -1, 5, -13), (-7, -13, 12, 10),
    (6, -4, -2, 5), (-9, -4, -1, 2), (9, -1, -6, -11), (5, -3, 5, -2),
    (-8, 8, 3, 0), (0, 3, 7, -2), (-13, 8, -11, -2), (-1, 5, 3, 3),
    (8, 8, 8, 3), (3, 0, -11, 2), (-5, -3, 2, -5), (1, -7, 9, -5),
    (1, 0, -2, 1), (6, -3, 6, -2), (10, 2, -4, -3), (1, 4, -7, -6),
    (-7, 5, 1, -3), (2, -7, 3, 13), (12, 11, 5, -3), (12, -8, 6, -3),
    (-10, 2, -8, 0), (7, 5, -4, -9), (-1, 3, -8, -1), (1, 2, -5, 4),
    (-1, -10, 2, 1), (-5, -2, -1, -3), (5, 3, -4, -6), (4, 4, -5, -1),
    (3, -1, -2, 1), (1, -10, 1, -6), (3, -7, -6, -3), (2, -7, 0, -3),
    (-11, 13, 5, -3), (10, 1, 1, -10), (-9, 2, -4, 7), (5, -3, 0, -3),
    (-2, -8, 5, 4), (0, -2, 2, -2), (8, 1, -6, -1), (1, 0, 4, -6),
    (-2, -12, 3, -7), (1, -11, -5, -4), (5, 1, 7, 13), (-2, 4, 1, 1),
    (-7, -3, 5, 12), (-7, -1, 3, 3), (-7, -4, 2, -5), (6, -3, 2, 8),
    (-5, 1, 9, -10), (-7, 5, -4, 1), (-2, 11, -4, 6), (1, -3, -8, 3),
    (-1, 2, -4, 6), (0, 3, 3, 5), (2, 2, 1, 3), (-1, -1, 0, 6),
    (-7, 9, 0, 12), (7, 4, -6, 8), (9, -13, 0, 3), (-2, 5, -8, 4),
    (3, 12, 3, -12), (6, -7, -11, -4), (-4, -3, -3, -9), (-8, 2, 13, 1),
    (-1, -3, -3, 0), (-6, -5, 3, -4), (-2, 2, -4, -1), (2, 7, 1, -7),
    (-2, 1, 7, -9), (3, 3, -1, -3), (-8, 2, 4, -3), (4, -3, 8, 5),
    (-1, -2, 13, 0), (-1, -5, 1, 0), (-8, 7, 8, 4), (-7, -3, 7, -1),
    (-8, -11, 7, 0), (4, 1, 3, 2), (-10, -13, -3, -2), (-13, 0, -5, 1),
    (5, -7, -3, 4), (-5, 7, 3, 4), (3, 0, 2, 1), (5, -9, 6, -8),
    (10, -13, 1, -4), (6, 4, 13, 0), (7, 13, 9, 4), (2, -8, 0, 0),
    (4, 3, -5, 2), (-9, -11, 6, -11), (5, -5, -1, 9), (-5, 6, -7, 0),
    (4, 3, 6, 9), (-7, 8, -7, -6), (4, 4, 7, -1), (-4, -2, 2, -4),
    (10, -2, 2, -5), (7, 3, 5, -10), (13, -4, -10, 4), (-1, 3, 6, -2),
    (-1, -1, -4, 11), (-4, -3, 3, -1), (-9, -12, 1, -2), (-5, -4, -4, 1),
    (-8, 3, 11, 13), (6, 0, -8, -1), (5, -5, 3, 8), (1, -4, 5, 2),
)


class SamplingPattern:
    """
    Read-only ordered table of point-pair offsets

    Attributes:
        pairs: Integer array (L, 4) of (x1, y1, x2, y2) offsets
        version: Table identifier
    """

    def __init__(self, pairs, version: str = PATTERN_VERSION):
        pairs = np.array(pairs, dtype=np.int32).reshape(-1, 4)
        if len(pairs) == 0:
            raise ValueError("Sampling pattern must contain at least one pair")
        pairs.setflags(write=False)

        self.pairs = pairs
        self.version = version

    def __len__(self):
        return len(self.pairs)

    def __repr__(self):
        return f"SamplingPattern(version={self.version!r}, length={len(self)})"

    def __eq__(self, other):
        if not isinstance(other, SamplingPattern):
            return NotImplemented
        return np.array_equal(self.pairs, other.pairs)

    def __hash__(self):
        return hash(self.pairs.tobytes())

    @property
    def first(self) -> np.ndarray:
        """First points of every pair (L, 2) as (dx, dy)"""
        return self.pairs[:, 0:2]

    @property
    def second(self) -> np.ndarray:
        """Second points of every pair (L, 2) as (dx, dy)"""
        return self.pairs[:, 2:4]

    @property
    def extent(self) -> float:
        """Radius of the smallest disc containing every offset (rotation invariant)"""
        return max(max_offset_radius(self.first), max_offset_radius(self.second))

    def truncate(self, length: int) -> 'SamplingPattern':
        """
        Keep the first `length` pairs

        Tables are ordered by decreasing usefulness, so a prefix is itself
        a valid (shorter) pattern.
        """
        if length <= 0:
            raise ValueError(f"Descriptor length must be positive, got {length}")
        if length > len(self):
            raise ValueError(f"Descriptor length {length} exceeds sampling pattern "
                             f"'{self.version}' with {len(self)} pairs")
        if length == len(self):
            return self
        return SamplingPattern(self.pairs[:length], version=f"{self.version}[:{length}]")


def default_sampling_pattern(descriptor_length: int = None) -> SamplingPattern:
    """
    Embedded sampling pattern with `descriptor_length` pairs

    Args:
        descriptor_length: Number of pairs (default: from config)

    Returns:
        SamplingPattern
    """
    if descriptor_length is None:
        descriptor_length = cfg.DESCRIPTOR_LENGTH
    return SamplingPattern(_ORB_PATTERN_V1).truncate(descriptor_length)


def resolve_sampling_pattern(pattern=None, descriptor_length: int = None) -> SamplingPattern:
    """
    Turn a pattern argument into a SamplingPattern of the requested length

    Args:
        pattern: None (embedded table or cfg.SAMPLING_PATTERN), a path to a
                 saved table, an (L, 4) array, or a SamplingPattern
        descriptor_length: Required number of pairs (default: from config)

    Returns:
        SamplingPattern with exactly descriptor_length pairs
    """
    if descriptor_length is None:
        descriptor_length = cfg.DESCRIPTOR_LENGTH
    if pattern is None:
        pattern = cfg.SAMPLING_PATTERN

    if pattern is None:
        return default_sampling_pattern(descriptor_length)
    if isinstance(pattern, (str, Path)):
        pattern = load_sampling_pattern(pattern)
    elif not isinstance(pattern, SamplingPattern):
        pattern = SamplingPattern(pattern, version='custom')

    return pattern.truncate(descriptor_length)


# ==================== Persistence ====================

def save_sampling_pattern(pattern: SamplingPattern, filepath: str) -> None:
    """
    Save a sampling pattern as .npy (pairs only) or .json (pairs + version)

    Args:
        pattern: Pattern to save
        filepath: Output path, format chosen by extension
    """
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix == '.npy':
        np.save(path, np.asarray(pattern.pairs))
    elif path.suffix == '.json':
        with open(path, 'w') as f:
            json.dump({'version': pattern.version, 'pairs': pattern.pairs.tolist()}, f, indent=2)
    else:
        raise ValueError(f"Unsupported sampling pattern format: {path.suffix} (use .npy or .json)")


def load_sampling_pattern(filepath: str) -> SamplingPattern:
    """
    Load a sampling pattern saved by save_sampling_pattern()

    Args:
        filepath: Path to .npy or .json file

    Returns:
        SamplingPattern
    """
    path = Path(filepath)
    if not path.exists():
        raise ValueError(f"Sampling pattern file does not exist: {filepath}")

    if path.suffix == '.npy':
        return SamplingPattern(np.load(path), version=path.stem)
    if path.suffix == '.json':
        with open(path, 'r') as f:
            data = json.load(f)
        return SamplingPattern(data['pairs'], version=data.get('version', path.stem))

    raise ValueError(f"Unsupported sampling pattern format: {path.suffix} (use .npy or .json)")


# ==================== Offline Learning ====================

def candidate_tests(radius: int = 13, n_candidates: int = 10000,
                    seed: int = None) -> np.ndarray:
    """
    Draw candidate point pairs uniformly from a square window

    Args:
        radius: Half width of the window
        n_candidates: Number of distinct pairs to draw
        seed: Random seed (default: from config)

    Returns:
        Candidate pairs (M, 4), M <= n_candidates
    """
    if seed is None:
        seed = cfg.RANDOM_SEED
    rng = np.random.default_rng(seed)

    pairs = rng.integers(-radius, radius + 1, size=(n_candidates, 4))
    same_point = (pairs[:, 0] == pairs[:, 2]) & (pairs[:, 1] == pairs[:, 3])
    pairs = pairs[~same_point]
    _, first_index = np.unique(pairs, axis=0, return_index=True)
    return pairs[np.sort(first_index)].astype(np.int32)


def evaluate_tests(patches: np.ndarray, pairs: np.ndarray) -> np.ndarray:
    """
    Run every binary test on every patch

    Args:
        patches: Oriented, smoothed patches (P, S, S), keypoint at the center
        pairs: Tests (M, 4) as (x1, y1, x2, y2)

    Returns:
        Results (P, M) as bool, True where I(p1) > I(p2)
    """
    patches = np.asarray(patches, dtype=np.float32)
    if patches.ndim != 3 or patches.shape[1] != patches.shape[2]:
        raise ValueError(f"Expected square patches (P, S, S), got {patches.shape}")

    center = patches.shape[1] // 2
    pairs = np.asarray(pairs)
    if np.abs(pairs).max() > center:
        raise ValueError(f"Tests reach {np.abs(pairs).max()} pixels but patches only allow {center}")

    v1 = patches[:, center + pairs[:, 1], center + pairs[:, 0]]
    v2 = patches[:, center + pairs[:, 3], center + pairs[:, 2]]
    return v1 > v2


def learn_sampling_pattern(patches: np.ndarray, n_pairs: int = None,
                           candidates: Optional[np.ndarray] = None,
                           correlation_threshold: float = None,
                           threshold_step: float = None,
                           verbose: bool = None) -> SamplingPattern:
    """
    Learn a decorrelated sampling pattern from a corpus of oriented patches

    1. Run every candidate test on every patch
    2. Order tests by distance of their mean from 0.5 (high variance first)
    3. Greedy pass: accept a test if its absolute correlation with every
       accepted test is below the threshold
    4. If fewer than n_pairs were accepted, raise the threshold and repeat

    Args:
        patches: Oriented, smoothed patches (P, S, S)
        n_pairs: Number of tests to select (default: cfg.DESCRIPTOR_LENGTH)
        candidates: Candidate tests (M, 4) (default: candidate_tests())
        correlation_threshold: Initial correlation threshold (default: from config)
        threshold_step: Threshold increase per extra pass (default: from config)
        verbose: Print progress (default: cfg.VERBOSE)

    Returns:
        SamplingPattern ordered by selection
    """
    if n_pairs is None:
        n_pairs = cfg.DESCRIPTOR_LENGTH
    if correlation_threshold is None:
        correlation_threshold = cfg.LEARN_CORRELATION_THRESHOLD
    if threshold_step is None:
        threshold_step = cfg.LEARN_CORRELATION_STEP
    if verbose is None:
        verbose = cfg.VERBOSE
    if candidates is None:
        candidates = candidate_tests(radius=np.asarray(patches).shape[1] // 2 - 2)

    candidates = np.asarray(candidates, dtype=np.int32)
    if len(candidates) < n_pairs:
        raise ValueError(f"Need at least {n_pairs} candidate tests, got {len(candidates)}")

    results = evaluate_tests(patches, candidates)
    means = results.mean(axis=0)
    order = np.argsort(np.abs(means - 0.5), kind='stable')

    corr = correlation_matrix(results)

    selected = []
    selected_mask = np.zeros(len(candidates), dtype=bool)
    threshold = correlation_threshold

    while len(selected) < n_pairs and threshold <= 1.0 + 1e-9:
        for idx in order:
            if selected_mask[idx]:
                continue
            if selected and corr[idx, selected].max() >= threshold:
                continue
            selected.append(idx)
            selected_mask[idx] = True
            if len(selected) == n_pairs:
                break

        if verbose:
            print(f"  Pattern learning: {len(selected)}/{n_pairs} tests at correlation < {threshold:.2f}")
        threshold += threshold_step

    if len(selected) < n_pairs:
        # Only degenerate (constant) tests are left
        remaining = [idx for idx in order if not selected_mask[idx]]
        selected.extend(remaining[:n_pairs - len(selected)])

    return SamplingPattern(candidates[selected], version=f"learned-{len(patches)}p-{n_pairs}b")
