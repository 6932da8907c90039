"""
Phase 3 - Step 3.3: Rotated BRIEF Descriptor
Builds binary descriptors for oriented keypoints from pairwise intensity tests.

For each keypoint with orientation θ and each pattern pair (p1, p2):

    bit = 1  if  I(k + R(θ) p1) > I(k + R(θ) p2)  else 0

where I is the Gaussian-smoothed image. Rotated offsets are generally not
integer; the interpolation policy is fixed per call:

- 'nearest':  round to the closest pixel (numpy.rint, ties to even)
- 'bilinear': scipy.ndimage.map_coordinates with order=1

Keypoints whose rotated pattern or orientation patch leaves the image are
dropped under the 'discard' edge policy; under 'clamp' sample coordinates
are clamped to the image.
"""

import numpy as np
from concurrent.futures import ThreadPoolExecutor
from typing import Tuple
from scipy.ndimage import gaussian_filter, map_coordinates

from config import cfg
from utils.math_utils import rotate_offsets_batch
from .orientation import compute_orientations, patch_in_bounds
from .sampling_pattern import SamplingPattern, resolve_sampling_pattern


INTERPOLATION_POLICIES = ('nearest', 'bilinear')
EDGE_POLICIES = ('discard', 'clamp')


def compute_orb_descriptors(image: np.ndarray, keypoints: np.ndarray,
                            angles: np.ndarray = None,
                            pattern: SamplingPattern = None,
                            patch_radius: int = None,
                            blur_sigma: float = None,
                            interpolation: str = None,
                            edge_policy: str = None,
                            n_workers: int = None,
                            chunk_size: int = None,
                            smoothed: bool = False) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Compute rotated BRIEF descriptors for keypoints

    Args:
        image: Grayscale image (H, W) with values 0-1
        keypoints: Keypoint coordinates (N, 2) as (x, y)
        angles: Orientations (N,) in radians (default: intensity centroid)
        pattern: Sampling pattern (default: embedded table, cfg.DESCRIPTOR_LENGTH pairs)
        patch_radius: Orientation patch radius (default: from config)
        blur_sigma: Smoothing applied before the tests (default: from config)
        interpolation: 'nearest' or 'bilinear' (default: from config)
        edge_policy: 'discard' or 'clamp' (default: from config)
        n_workers: Worker threads (default: from config)
        chunk_size: Keypoints per work item (default: from config)
        smoothed: True if `image` is already smoothed (skips blur_sigma)

    Returns:
        descriptors: Bit matrix (M, L) bool, M <= N, L = len(pattern)
        valid_mask: Boolean mask (N,) of keypoints that were kept
        angles: Orientations (M,) of the kept keypoints
    """
    if pattern is None:
        pattern = resolve_sampling_pattern()
    if patch_radius is None:
        patch_radius = cfg.PATCH_RADIUS
    if blur_sigma is None:
        blur_sigma = cfg.BLUR_SIGMA
    if interpolation is None:
        interpolation = cfg.INTERPOLATION
    if edge_policy is None:
        edge_policy = cfg.EDGE_POLICY
    if n_workers is None:
        n_workers = cfg.N_WORKERS
    if chunk_size is None:
        chunk_size = cfg.CHUNK_SIZE

    if interpolation not in INTERPOLATION_POLICIES:
        raise ValueError(f"Unknown interpolation: {interpolation}. "
                         f"Must be one of {INTERPOLATION_POLICIES}")
    if edge_policy not in EDGE_POLICIES:
        raise ValueError(f"Unknown edge policy: {edge_policy}. Must be one of {EDGE_POLICIES}")
    if image.ndim != 2:
        raise ValueError(f"Expected grayscale image (H, W), got {image.shape}")

    L = len(pattern)
    keypoints = np.asarray(keypoints, dtype=np.float64).reshape(-1, 2)
    if len(keypoints) == 0:
        return np.zeros((0, L), dtype=bool), np.zeros(0, dtype=bool), np.zeros(0)

    if not smoothed and blur_sigma > 0:
        image = gaussian_filter(image.astype(np.float32), sigma=blur_sigma, mode='reflect')

    if angles is None:
        angles = compute_orientations(image, keypoints, patch_radius)
    angles = np.asarray(angles, dtype=np.float64).reshape(-1)
    if len(angles) != len(keypoints):
        raise ValueError(f"Got {len(angles)} angles for {len(keypoints)} keypoints")

    if edge_policy == 'discard':
        valid_mask = (patch_in_bounds(keypoints, image.shape, patch_radius) &
                      pattern_in_bounds(keypoints, angles, pattern, image.shape, interpolation))
    else:
        valid_mask = np.ones(len(keypoints), dtype=bool)

    kept = keypoints[valid_mask]
    kept_angles = angles[valid_mask]
    if len(kept) == 0:
        return np.zeros((0, L), dtype=bool), valid_mask, kept_angles

    def work(start):
        stop = start + chunk_size
        return _describe_chunk(image, kept[start:stop], kept_angles[start:stop],
                               pattern, interpolation)

    starts = range(0, len(kept), chunk_size)
    if n_workers > 1 and len(kept) > chunk_size:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            chunks = list(executor.map(work, starts))
    else:
        chunks = [work(start) for start in starts]

    return np.concatenate(chunks, axis=0), valid_mask, kept_angles


def rotated_sample_coordinates(keypoints: np.ndarray, angles: np.ndarray,
                               offsets: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Absolute (x, y) sample coordinates of rotated offsets around each keypoint

    Args:
        keypoints: Keypoints (N, 2) as (x, y)
        angles: Orientations (N,)
        offsets: Pattern offsets (L, 2) as (dx, dy)

    Returns:
        xs, ys: Sample coordinates (N, L) (not rounded)
    """
    rot_x, rot_y = rotate_offsets_batch(offsets, angles)
    centers = np.rint(np.asarray(keypoints, dtype=np.float64))
    return centers[:, 0:1] + rot_x, centers[:, 1:2] + rot_y


def pattern_in_bounds(keypoints: np.ndarray, angles: np.ndarray, pattern: SamplingPattern,
                      shape: Tuple[int, int], interpolation: str = 'nearest') -> np.ndarray:
    """
    True for keypoints whose every rotated sample lands inside the image

    Args:
        keypoints: Keypoints (N, 2) as (x, y)
        angles: Orientations (N,)
        pattern: Sampling pattern
        shape: Image shape (H, W)
        interpolation: Policy used for sampling (bilinear needs one extra pixel)

    Returns:
        Boolean mask (N,)
    """
    H, W = shape[:2]
    valid = np.ones(len(keypoints), dtype=bool)

    for offsets in (pattern.first, pattern.second):
        xs, ys = rotated_sample_coordinates(keypoints, angles, offsets)
        if interpolation == 'nearest':
            xs, ys = np.rint(xs), np.rint(ys)
            max_x, max_y = W - 1, H - 1
        else:
            # bilinear reads floor and floor + 1
            xs, ys = np.floor(xs), np.floor(ys)
            max_x, max_y = W - 2, H - 2
        valid &= ((xs >= 0) & (xs <= max_x) & (ys >= 0) & (ys <= max_y)).all(axis=1)

    return valid


def sample_image(image: np.ndarray, xs: np.ndarray, ys: np.ndarray,
                 interpolation: str = 'nearest') -> np.ndarray:
    """
    Sample image intensities at (possibly non-integer) coordinates

    Coordinates outside the image are clamped to the nearest edge pixel.

    Args:
        image: Grayscale image (H, W)
        xs: X coordinates, any shape
        ys: Y coordinates, same shape as xs
        interpolation: 'nearest' or 'bilinear'

    Returns:
        Intensities with the shape of xs
    """
    H, W = image.shape
    if interpolation == 'nearest':
        cols = np.clip(np.rint(xs), 0, W - 1).astype(np.int64)
        rows = np.clip(np.rint(ys), 0, H - 1).astype(np.int64)
        return image[rows, cols]

    coordinates = np.array([ys.reshape(-1), xs.reshape(-1)])
    values = map_coordinates(image, coordinates, order=1, mode='nearest')
    return values.reshape(xs.shape)


def _describe_chunk(image: np.ndarray, keypoints: np.ndarray, angles: np.ndarray,
                    pattern: SamplingPattern, interpolation: str) -> np.ndarray:
    x1, y1 = rotated_sample_coordinates(keypoints, angles, pattern.first)
    x2, y2 = rotated_sample_coordinates(keypoints, angles, pattern.second)

    v1 = sample_image(image, x1, y1, interpolation)
    v2 = sample_image(image, x2, y2, interpolation)
    return v1 > v2


# ==================== Bit vector helpers ====================

def pack_descriptors(descriptors: np.ndarray) -> np.ndarray:
    """
    Pack bit descriptors (N, L) into bytes (N, ceil(L/8)), little bit order

    256-bit descriptors become the usual 32-byte ORB layout.
    """
    descriptors = np.asarray(descriptors, dtype=bool)
    if descriptors.ndim != 2:
        raise ValueError(f"Expected descriptor matrix (N, L), got {descriptors.shape}")
    return np.packbits(descriptors, axis=1, bitorder='little')


def unpack_descriptors(packed: np.ndarray, descriptor_length: int) -> np.ndarray:
    """
    Inverse of pack_descriptors()

    Args:
        packed: Packed descriptors (N, B) uint8
        descriptor_length: Number of bits L per descriptor (L <= 8 * B)

    Returns:
        Bit descriptors (N, L) bool
    """
    packed = np.asarray(packed, dtype=np.uint8)
    if descriptor_length > 8 * packed.shape[1]:
        raise ValueError(f"Cannot unpack {descriptor_length} bits from {packed.shape[1]} bytes")
    bits = np.unpackbits(packed, axis=1, count=descriptor_length, bitorder='little')
    return bits.astype(bool)
