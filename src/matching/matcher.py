"""
Phase 4 - Step 4.1: Brute-force Hamming Matching
Finds feature correspondences between two images using binary descriptor matching.
"""

import numpy as np
from concurrent.futures import ThreadPoolExecutor
from typing import List, Tuple
from config import cfg
from src.features.keypoint import Keypoint, Match, keypoints_to_array, matches_to_array


MATCH_POLICIES = ('one_to_one', 'best')

# Set bits per byte value
_POPCOUNT = np.unpackbits(np.arange(256, dtype=np.uint8)[:, np.newaxis], axis=1).sum(axis=1).astype(np.uint8)


class DescriptorMismatchError(ValueError):
    """Descriptor sets with different bit lengths cannot be compared"""


def match_descriptors(desc1: np.ndarray, desc2: np.ndarray,
                      threshold: float = None,
                      ratio_threshold: float = None,
                      policy: str = None,
                      use_crosscheck: bool = None,
                      n_workers: int = None,
                      debug: bool = False) -> List[Match]:
    """
    Match binary descriptors between two images

    For each descriptor of image 1 (in order) the best descriptor of image 2
    is accepted when:
    - its normalized Hamming distance (bits / L) is below `threshold`
    - and, if ratio_threshold is set, best / second best < ratio_threshold

    Policy 'one_to_one' assigns greedily: a descriptor of image 2 matched by
    an earlier query is no longer available. Policy 'best' allows several
    queries to share the same train descriptor.

    Args:
        desc1: Bit descriptors from image 1 (N1, L)
        desc2: Bit descriptors from image 2 (N2, L)
        threshold: Max normalized Hamming distance (default: from config)
        ratio_threshold: Lowe's ratio test threshold (default: from config, 0 = off)
        policy: 'one_to_one' or 'best' (default: from config)
        use_crosscheck: Keep only mutual best matches (default: from config)
        n_workers: Worker threads for the distance matrix (default: from config)
        debug: Print debug information

    Returns:
        matches: List of Match ordered by query index
    """
    if threshold is None:
        threshold = cfg.MATCH_THRESHOLD
    if ratio_threshold is None:
        ratio_threshold = cfg.RATIO_TEST_THRESHOLD
    if policy is None:
        policy = cfg.MATCH_POLICY
    if use_crosscheck is None:
        use_crosscheck = cfg.USE_CROSSCHECK
    if policy not in MATCH_POLICIES:
        raise ValueError(f"Unknown match policy: {policy}. Must be one of {MATCH_POLICIES}")

    desc1, desc2 = check_descriptor_sets(desc1, desc2)
    if len(desc1) == 0 or len(desc2) == 0:
        return []

    n_bits = desc1.shape[1]
    dist_matrix = compute_distance_matrix(desc1, desc2, n_workers=n_workers)

    if debug:
        print(f"    Distance matrix shape: {dist_matrix.shape}")
        print(f"    Distance stats - min: {dist_matrix.min():.0f}, max: {dist_matrix.max():.0f}, "
              f"mean: {dist_matrix.mean():.1f} (of {n_bits} bits)")

    # Candidates allowed for each query
    allowed = dist_matrix < threshold * n_bits

    if ratio_threshold:
        allowed &= ratio_test_mask(dist_matrix, ratio_threshold)[:, np.newaxis]
        if debug:
            print(f"    Passed ratio test: {allowed.any(axis=1).sum()}/{len(desc1)}")

    if use_crosscheck:
        allowed &= mutual_best_mask(dist_matrix)
        if debug:
            print(f"    Cross-checked candidates: {allowed.any(axis=1).sum()}")

    if policy == 'one_to_one':
        matches = greedy_assignment(dist_matrix, allowed)
    else:
        matches = best_assignment(dist_matrix, allowed)

    if debug:
        print(f"    Matches: {len(matches)}")

    return matches


def check_descriptor_sets(desc1: np.ndarray, desc2: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Validate two descriptor sets and return them as 2D bool arrays

    Raises:
        DescriptorMismatchError: If the bit lengths differ
    """
    desc1 = np.asarray(desc1, dtype=bool)
    desc2 = np.asarray(desc2, dtype=bool)

    for name, desc in (('desc1', desc1), ('desc2', desc2)):
        if desc.ndim != 2:
            raise DescriptorMismatchError(f"{name} must be a bit matrix (N, L), got shape {desc.shape}")

    if desc1.shape[1] != desc2.shape[1]:
        raise DescriptorMismatchError(f"Descriptor lengths differ: {desc1.shape[1]} vs {desc2.shape[1]} bits")

    return desc1, desc2


def compute_distance_matrix(desc1: np.ndarray, desc2: np.ndarray,
                            n_workers: int = None, chunk_size: int = None) -> np.ndarray:
    """
    Compute pairwise Hamming distance matrix between bit descriptors

    Bits are packed into bytes, XORed, and the set bits counted with a
    per-byte lookup table. Query rows are split into chunks that can run
    on worker threads.

    Args:
        desc1: Bit descriptors from image 1 (N1, L)
        desc2: Bit descriptors from image 2 (N2, L)
        n_workers: Worker threads (default: from config)
        chunk_size: Query rows per work item (default: from config)

    Returns:
        dist_matrix: Distance matrix (N1, N2) int32, in bits
    """
    if n_workers is None:
        n_workers = cfg.N_WORKERS
    if chunk_size is None:
        chunk_size = cfg.CHUNK_SIZE

    desc1, desc2 = check_descriptor_sets(desc1, desc2)
    N1, N2 = len(desc1), len(desc2)
    if N1 == 0 or N2 == 0:
        return np.zeros((N1, N2), dtype=np.int32)

    # Zero padding is identical in both sets, so it never adds distance
    packed1 = np.packbits(desc1, axis=1)
    packed2 = np.packbits(desc2, axis=1)

    def work(start):
        block = packed1[start:start + chunk_size]
        xor_result = np.bitwise_xor(block[:, np.newaxis, :], packed2[np.newaxis, :, :])
        return _POPCOUNT[xor_result].sum(axis=2, dtype=np.int32)

    starts = range(0, N1, chunk_size)
    if n_workers > 1 and N1 > chunk_size:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            blocks = list(executor.map(work, starts))
    else:
        blocks = [work(start) for start in starts]

    return np.concatenate(blocks, axis=0)


def ratio_test_mask(dist_matrix: np.ndarray, ratio_threshold: float = 0.8) -> np.ndarray:
    """
    Lowe's ratio test per query

    Accept the query only if distance to 1st NN / distance to 2nd NN < threshold.
    With a single train descriptor there is no second neighbour and every
    query passes. An exact match (distance 0) always passes, also when an
    identical train descriptor is its second neighbour.

    Args:
        dist_matrix: Distance matrix (N1, N2)
        ratio_threshold: Ratio test threshold (typically 0.75-0.8)

    Returns:
        mask: Boolean mask (N1,)
    """
    N1, N2 = dist_matrix.shape
    if N2 < 2:
        return np.ones(N1, dtype=bool)

    nearest = np.partition(dist_matrix, 1, axis=1)[:, :2].astype(np.float64)
    nn1_distances = nearest[:, 0]
    nn2_distances = nearest[:, 1]

    # nn2 == 0 implies nn1 == 0
    ratios = np.where(nn2_distances > 0, nn1_distances / np.maximum(nn2_distances, 1e-10), 0.0)
    return ratios < ratio_threshold


def mutual_best_mask(dist_matrix: np.ndarray) -> np.ndarray:
    """
    Cross-check: (i, j) is allowed only if j is i's best match AND i is j's best match

    Args:
        dist_matrix: Distance matrix (N1, N2)

    Returns:
        mask: Boolean mask (N1, N2)
    """
    N1, N2 = dist_matrix.shape
    mask = np.zeros((N1, N2), dtype=bool)
    if N1 == 0 or N2 == 0:
        return mask

    best_12 = np.argmin(dist_matrix, axis=1)  # (N1,)
    best_21 = np.argmin(dist_matrix, axis=0)  # (N2,)

    idx1 = np.arange(N1)
    mutual = best_21[best_12] == idx1
    mask[idx1[mutual], best_12[mutual]] = True
    return mask


def greedy_assignment(dist_matrix: np.ndarray, allowed: np.ndarray) -> List[Match]:
    """
    One-to-one greedy matching in query order

    Each query takes its closest allowed train descriptor that no earlier
    query has taken (lowest index on ties). Queries are always visited in
    desc1 order, whichever set is smaller, so swapping the arguments can
    change the result.

    Args:
        dist_matrix: Distance matrix (N1, N2)
        allowed: Boolean mask (N1, N2) of acceptable pairs

    Returns:
        List of Match
    """
    available = np.ones(dist_matrix.shape[1], dtype=bool)
    sentinel = np.iinfo(np.int64).max

    matches = []
    for i in np.nonzero(allowed.any(axis=1))[0]:
        candidates = allowed[i] & available
        if not candidates.any():
            continue
        row = np.where(candidates, dist_matrix[i].astype(np.int64), sentinel)
        j = int(np.argmin(row))
        available[j] = False
        matches.append(Match(query_idx=int(i), train_idx=j, distance=float(dist_matrix[i, j])))

    return matches


def best_assignment(dist_matrix: np.ndarray, allowed: np.ndarray) -> List[Match]:
    """
    Each query takes its closest allowed train descriptor (many-to-one allowed)
    """
    sentinel = np.iinfo(np.int64).max
    masked = np.where(allowed, dist_matrix.astype(np.int64), sentinel)
    best = np.argmin(masked, axis=1)

    matches = []
    for i in np.nonzero(allowed.any(axis=1))[0]:
        j = int(best[i])
        matches.append(Match(query_idx=int(i), train_idx=j, distance=float(dist_matrix[i, j])))
    return matches


def match_keypoints(keypoints1: List[Keypoint], keypoints2: List[Keypoint],
                    desc1: np.ndarray, desc2: np.ndarray,
                    threshold: float = None, **kwargs) -> List[Tuple[Tuple[float, float], Tuple[float, float]]]:
    """
    Match descriptors and return the matched keypoint locations

    Args:
        keypoints1: Keypoints of image 1 (row i of desc1 belongs to keypoints1[i])
        keypoints2: Keypoints of image 2
        desc1: Bit descriptors of image 1 (N1, L)
        desc2: Bit descriptors of image 2 (N2, L)
        threshold: Max normalized Hamming distance (default: from config)
        **kwargs: Forwarded to match_descriptors()

    Returns:
        List of ((x1, y1), (x2, y2)) point pairs
    """
    if len(keypoints1) != len(desc1) or len(keypoints2) != len(desc2):
        raise ValueError(f"Keypoint/descriptor count mismatch: "
                         f"{len(keypoints1)}/{len(desc1)} and {len(keypoints2)}/{len(desc2)}")

    matches = match_descriptors(desc1, desc2, threshold=threshold, **kwargs)
    return [(keypoints1[m.query_idx].pt, keypoints2[m.train_idx].pt) for m in matches]


def get_matched_points(keypoints1, keypoints2, matches: List[Match]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Extract matched point coordinates from keypoints and matches

    Args:
        keypoints1: Keypoints from image 1 (list of Keypoint or (N1, 2) array)
        keypoints2: Keypoints from image 2 (list of Keypoint or (N2, 2) array)
        matches: List of Match

    Returns:
        points1: Matched points from image 1 (M, 2)
        points2: Matched points from image 2 (M, 2)
    """
    if not isinstance(keypoints1, np.ndarray):
        keypoints1 = keypoints_to_array(keypoints1)
    if not isinstance(keypoints2, np.ndarray):
        keypoints2 = keypoints_to_array(keypoints2)

    pairs = matches_to_array(matches)
    return keypoints1[pairs[:, 0]].reshape(-1, 2), keypoints2[pairs[:, 1]].reshape(-1, 2)
