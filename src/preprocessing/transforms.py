"""
Phase 1 - Step 1.2: Geometric Image Transforms
Produces rotated / translated copies of an image with known ground truth,
used by the demo and by the matching tests.
"""

import numpy as np
from typing import Tuple
from scipy.ndimage import affine_transform

from utils.math_utils import transform_points


def image_center(image: np.ndarray) -> Tuple[float, float]:
    """Center of an image in pixel coordinates (x, y)"""
    H, W = image.shape[:2]
    return (W - 1) / 2.0, (H - 1) / 2.0


def warp_image(image: np.ndarray, angle: float,
               translation: Tuple[float, float] = (0.0, 0.0),
               order: int = 1, cval: float = 0.0) -> np.ndarray:
    """
    Rotate an image about its center, then translate it

    Pixel p of the input lands at R(angle) (p - c) + c + t in the output,
    matching utils.math_utils.transform_points(). The output has the same
    size as the input; uncovered pixels are filled with cval.

    Args:
        image: Grayscale image (H, W)
        angle: Rotation angle in radians (positive = clockwise on screen)
        translation: Translation (tx, ty) in pixels
        order: Spline order for resampling (1 = bilinear)
        cval: Fill value outside the input

    Returns:
        Warped image (H, W)
    """
    if image.ndim != 2:
        raise ValueError(f"Expected grayscale image (H, W), got {image.shape}")

    c = np.cos(angle)
    s = np.sin(angle)
    cx, cy = image_center(image)
    tx, ty = translation

    # affine_transform maps output (row, col) -> input (row, col):
    # p_in = R(-angle) (p_out - c - t) + c, written in (y, x) order
    matrix = np.array([[c, -s],
                       [s, c]], dtype=np.float64)
    center_yx = np.array([cy, cx])
    shifted_yx = np.array([cy + ty, cx + tx])
    offset = center_yx - matrix @ shifted_yx

    warped = affine_transform(image.astype(np.float64), matrix, offset=offset,
                              order=order, mode='constant', cval=cval)
    return warped.astype(np.float32)


def rotate90(image: np.ndarray, k: int = 1) -> np.ndarray:
    """
    Exact rotation by k * 90 degrees (counter-clockwise on screen)

    Args:
        image: Image (H, W)
        k: Number of quarter turns

    Returns:
        Rotated image (no resampling)
    """
    return np.ascontiguousarray(np.rot90(image, k))


def rotate90_points(points: np.ndarray, shape: Tuple[int, int], k: int = 1) -> np.ndarray:
    """
    Map (x, y) points of an image with `shape` into rotate90(image, k)

    One counter-clockwise quarter turn sends (x, y) to (y, W - 1 - x).

    Args:
        points: Points (N, 2) as (x, y)
        shape: Shape (H, W) of the original image
        k: Number of quarter turns

    Returns:
        Mapped points (N, 2)
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2).copy()
    H, W = shape[:2]

    for _ in range(k % 4):
        x = points[:, 0].copy()
        y = points[:, 1].copy()
        points[:, 0] = y
        points[:, 1] = W - 1 - x
        H, W = W, H

    return points


def warp_points(points: np.ndarray, image: np.ndarray, angle: float,
                translation: Tuple[float, float] = (0.0, 0.0)) -> np.ndarray:
    """
    Ground-truth location of points after warp_image(image, angle, translation)

    Args:
        points: Points (N, 2) as (x, y) in the input image
        image: Input image (only its shape is used)
        angle: Rotation angle in radians
        translation: Translation (tx, ty)

    Returns:
        Points (N, 2) in the warped image
    """
    return transform_points(points, angle, image_center(image), translation)
