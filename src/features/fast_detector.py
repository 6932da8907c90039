"""
Phase 2 - Step 2.1: FAST Corner Detection
Features from Accelerated Segment Test on a 16-pixel Bresenham circle,
ranked by Harris response.
"""

import numpy as np
from typing import Tuple
from config import cfg
from .harris_detector import harris_response_map, non_maximum_suppression


# Bresenham circle of radius 3, clockwise starting at 12 o'clock, as (dx, dy)
CIRCLE_OFFSETS = np.array([
    (0, -3), (1, -3), (2, -2), (3, -1),
    (3, 0), (3, 1), (2, 2), (1, 3),
    (0, 3), (-1, 3), (-2, 2), (-3, 1),
    (-3, 0), (-3, -1), (-2, -2), (-1, -3)
], dtype=np.int32)

CIRCLE_RADIUS = 3


def fast_corner_mask(image: np.ndarray, threshold: float = None, n: int = None) -> np.ndarray:
    """
    Segment test for every pixel at once

    A pixel p is a corner if at least n contiguous circle pixels are all
    brighter than I(p) + threshold or all darker than I(p) - threshold.
    Pixels closer than 3 to the border are never corners.

    Args:
        image: Grayscale image (H, W) with values 0-1
        threshold: Intensity threshold (default: from config)
        n: Required contiguous arc length, 9-16 (default: from config)

    Returns:
        mask: Boolean corner mask (H, W)
    """
    if threshold is None:
        threshold = cfg.FAST_THRESHOLD
    if n is None:
        n = cfg.FAST_N
    if not 1 <= n <= 16:
        raise ValueError(f"FAST arc length must be between 1 and 16, got {n}")

    H, W = image.shape
    r = CIRCLE_RADIUS
    mask = np.zeros((H, W), dtype=bool)
    if H <= 2 * r or W <= 2 * r:
        return mask

    image = image.astype(np.float32)
    center = image[r:H - r, r:W - r]

    # Circle samples (16, H-2r, W-2r)
    ring = np.stack([
        image[r + dy:H - r + dy, r + dx:W - r + dx]
        for dx, dy in CIRCLE_OFFSETS
    ])

    brighter = ring > center + threshold
    darker = ring < center - threshold

    mask[r:H - r, r:W - r] = _has_contiguous_arc(brighter, n) | _has_contiguous_arc(darker, n)
    return mask


def _has_contiguous_arc(flags: np.ndarray, n: int) -> np.ndarray:
    """True where n consecutive entries of the (wrapping) first axis are set"""
    extended = np.concatenate([flags, flags[:n - 1]], axis=0)
    found = np.zeros(flags.shape[1:], dtype=bool)
    for start in range(len(flags)):
        found |= np.logical_and.reduce(extended[start:start + n], axis=0)
    return found


def detect_fast_corners(image: np.ndarray, threshold: float = None, n: int = None,
                        border: int = 0, max_corners: int = None,
                        harris_k: float = None, nms_size: int = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Detect FAST corners and rank them by Harris response

    Steps:
    1. Segment test (FAST mask)
    2. Harris response map
    3. Non-maximum suppression of the Harris response among FAST corners
    4. Drop corners within `border` pixels of the image edge
    5. Sort by descending response, keep max_corners

    Args:
        image: Grayscale image (H, W) with values 0-1
        threshold: FAST intensity threshold (default: from config)
        n: FAST arc length (default: from config)
        border: Minimum distance from the image edge
        max_corners: Maximum number of corners (None = all)
        harris_k: Harris parameter (default: from config)
        nms_size: NMS window size (default: from config)

    Returns:
        corners: Integer corner coordinates (N, 2) as (x, y)
        responses: Harris responses (N,), descending
    """
    if nms_size is None:
        nms_size = cfg.NMS_WINDOW_SIZE

    H, W = image.shape
    fast_mask = fast_corner_mask(image, threshold, n)
    if not fast_mask.any():
        return np.zeros((0, 2), dtype=np.int32), np.zeros(0, dtype=np.float32)

    R = harris_response_map(image, k=harris_k)
    # Suppress among FAST corners only
    R = np.where(fast_mask, R, 0.0).astype(np.float32)
    corner_mask = non_maximum_suppression(R, nms_size)

    # Border is symmetric so that exact 90 degree rotations keep the same set
    if border > 0:
        corner_mask[:border, :] = False
        corner_mask[H - border:, :] = False
        corner_mask[:, :border] = False
        corner_mask[:, W - border:] = False

    y_coords, x_coords = np.nonzero(corner_mask)
    responses = R[y_coords, x_coords]

    order = np.argsort(-responses, kind='stable')
    if max_corners is not None:
        order = order[:max_corners]

    corners = np.column_stack([x_coords[order], y_coords[order]]).astype(np.int32)
    return corners, responses[order].astype(np.float32)
