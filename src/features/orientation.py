"""
Phase 3 - Step 3.1: Keypoint Orientation (Intensity Centroid)

Image moments over a circular patch of radius r around the keypoint:

    M_pq = Σ x^p y^q I(x, y),   x² + y² <= r²

The centroid is C = (M10/M00, M01/M00) and the orientation is the angle of
the vector from the patch center to C:

    θ = atan2(M01, M10)

x points right and y points down, so positive angles turn clockwise on
screen. A patch with M00 == 0 has no centroid; its orientation is 0.
"""

import numpy as np
from typing import Tuple
from config import cfg


def circular_offsets(radius: int) -> np.ndarray:
    """
    Integer offsets (dx, dy) inside a disc of the given radius

    Args:
        radius: Disc radius in pixels

    Returns:
        Offsets (K, 2) as (dx, dy)
    """
    ax = np.arange(-radius, radius + 1)
    dy, dx = np.meshgrid(ax, ax, indexing='ij')
    inside = dx ** 2 + dy ** 2 <= radius ** 2
    return np.column_stack([dx[inside], dy[inside]]).astype(np.int32)


def patch_moments(image: np.ndarray, x: int, y: int, radius: int) -> Tuple[float, float, float]:
    """
    Raw moments M00, M10, M01 of the circular patch around (x, y)

    Pixels outside the image contribute nothing.

    Args:
        image: Grayscale image (H, W)
        x: Keypoint column
        y: Keypoint row
        radius: Patch radius

    Returns:
        (m00, m10, m01)
    """
    m00, m10, m01 = _moments(image, np.array([[x, y]]), circular_offsets(radius))
    return float(m00[0]), float(m10[0]), float(m01[0])


def compute_orientation(image: np.ndarray, x: int, y: int, patch_radius: int = None) -> float:
    """
    Orientation of a single keypoint from its intensity centroid

    Args:
        image: Grayscale image (H, W)
        x: Keypoint column
        y: Keypoint row
        patch_radius: Patch radius (default: from config)

    Returns:
        angle: Orientation in radians in [-pi, pi], 0.0 for a degenerate patch
    """
    return float(compute_orientations(image, np.array([[x, y]]), patch_radius)[0])


def compute_orientations(image: np.ndarray, keypoints: np.ndarray,
                         patch_radius: int = None) -> np.ndarray:
    """
    Orientation of every keypoint from its intensity centroid (vectorized)

    Args:
        image: Grayscale image (H, W)
        keypoints: Keypoint coordinates (N, 2) as (x, y); rounded to pixels
        patch_radius: Patch radius (default: from config)

    Returns:
        angles: Orientations (N,) in radians
    """
    if patch_radius is None:
        patch_radius = cfg.PATCH_RADIUS

    keypoints = np.asarray(keypoints).reshape(-1, 2)
    if len(keypoints) == 0:
        return np.zeros(0, dtype=np.float64)

    m00, m10, m01 = _moments(image, keypoints, circular_offsets(patch_radius))

    angles = np.arctan2(m01, m10)
    # Degenerate (all-zero) patch: no centroid
    angles[m00 <= 0] = 0.0
    return angles


def patch_in_bounds(keypoints: np.ndarray, shape: Tuple[int, int], radius: int) -> np.ndarray:
    """
    True for keypoints whose full circular patch lies inside the image

    Args:
        keypoints: Keypoint coordinates (N, 2) as (x, y)
        shape: Image shape (H, W)
        radius: Patch radius

    Returns:
        Boolean mask (N,)
    """
    keypoints = np.rint(np.asarray(keypoints, dtype=np.float64).reshape(-1, 2)).astype(np.int64)
    H, W = shape[:2]
    return ((keypoints[:, 0] >= radius) & (keypoints[:, 0] <= W - 1 - radius) &
            (keypoints[:, 1] >= radius) & (keypoints[:, 1] <= H - 1 - radius))


def _moments(image: np.ndarray, keypoints: np.ndarray, offsets: np.ndarray):
    """Moments (m00, m10, m01), each (N,), of the patches at keypoints"""
    H, W = image.shape
    centers = np.rint(np.asarray(keypoints, dtype=np.float64)).astype(np.int64)

    xs = centers[:, 0:1] + offsets[np.newaxis, :, 0]  # (N, K)
    ys = centers[:, 1:2] + offsets[np.newaxis, :, 1]
    inside = (xs >= 0) & (xs < W) & (ys >= 0) & (ys < H)

    values = image[np.clip(ys, 0, H - 1), np.clip(xs, 0, W - 1)].astype(np.float64)
    values = np.where(inside, values, 0.0)

    dx = offsets[:, 0].astype(np.float64)
    dy = offsets[:, 1].astype(np.float64)

    m00 = values.sum(axis=1)
    m10 = values @ dx
    m01 = values @ dy
    return m00, m10, m01
