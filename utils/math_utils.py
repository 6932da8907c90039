"""
Common mathematical utility functions for ORB feature matching
"""

import numpy as np
from typing import Tuple


# ==================== 2D Rotations ====================

def rotation_matrix_2d(angle: float) -> np.ndarray:
    """
    Create 2D rotation matrix in image coordinates (x right, y down)

    R(a) = [cos a  -sin a]
           [sin a   cos a]

    Args:
        angle: Rotation angle in radians

    Returns:
        2x2 rotation matrix
    """
    c = np.cos(angle)
    s = np.sin(angle)
    return np.array([[c, -s], [s, c]], dtype=np.float64)


def rotate_offsets(offsets: np.ndarray, angle: float) -> np.ndarray:
    """
    Rotate offsets (N, 2) given as (dx, dy) by angle

    Stateless: x' = x cos a - y sin a, y' = x sin a + y cos a

    Args:
        offsets: Offsets (N, 2) or a single offset (2,)
        angle: Rotation angle in radians

    Returns:
        Rotated offsets with the same shape (float64)
    """
    offsets = np.asarray(offsets, dtype=np.float64)
    return offsets @ rotation_matrix_2d(angle).T


def rotate_offsets_batch(offsets: np.ndarray, angles: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Rotate the same offsets by one angle per keypoint

    Args:
        offsets: Offsets (L, 2) as (dx, dy)
        angles: Angles (N,) in radians

    Returns:
        rot_x: Rotated x offsets (N, L)
        rot_y: Rotated y offsets (N, L)
    """
    offsets = np.asarray(offsets, dtype=np.float64)
    angles = np.asarray(angles, dtype=np.float64)

    c = np.cos(angles)[:, np.newaxis]  # (N, 1)
    s = np.sin(angles)[:, np.newaxis]
    dx = offsets[np.newaxis, :, 0]     # (1, L)
    dy = offsets[np.newaxis, :, 1]

    rot_x = dx * c - dy * s
    rot_y = dx * s + dy * c
    return rot_x, rot_y


def wrap_angle(angle):
    """Wrap angle(s) to [-pi, pi)"""
    return (np.asarray(angle) + np.pi) % (2 * np.pi) - np.pi


def angle_difference(a, b):
    """Smallest signed difference a - b between two angles"""
    return wrap_angle(np.asarray(a) - np.asarray(b))


# ==================== Point Transformations ====================

def transform_points(points: np.ndarray, angle: float, center: Tuple[float, float],
                     translation: Tuple[float, float] = (0.0, 0.0)) -> np.ndarray:
    """
    Rotate points about a center, then translate them

    p' = R(angle) (p - c) + c + t

    Args:
        points: Points (N, 2) as (x, y)
        angle: Rotation angle in radians (positive = clockwise on screen, since y points down)
        center: Rotation center (x, y)
        translation: Translation (tx, ty) applied after the rotation

    Returns:
        Transformed points (N, 2)
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    center = np.asarray(center, dtype=np.float64)
    return rotate_offsets(points - center, angle) + center + np.asarray(translation, dtype=np.float64)


def max_offset_radius(offsets: np.ndarray) -> float:
    """
    Largest distance of any offset from the origin

    Args:
        offsets: Offsets (N, 2)

    Returns:
        Maximum Euclidean norm (0.0 for empty input)
    """
    offsets = np.asarray(offsets, dtype=np.float64).reshape(-1, 2)
    if len(offsets) == 0:
        return 0.0
    return float(np.sqrt((offsets ** 2).sum(axis=1)).max())


# ==================== Statistical Functions ====================

def correlation_matrix(samples: np.ndarray) -> np.ndarray:
    """
    Absolute Pearson correlation between columns of a binary sample matrix

    Constant columns have zero variance; their correlation is reported as 1
    so they are never preferred.

    Args:
        samples: Matrix (n_samples, n_tests) of 0/1 values

    Returns:
        Matrix (n_tests, n_tests) of absolute correlations
    """
    samples = np.asarray(samples, dtype=np.float64)
    centered = samples - samples.mean(axis=0, keepdims=True)
    std = centered.std(axis=0)
    degenerate = std < 1e-12
    std = np.where(degenerate, 1.0, std)

    normalized = centered / std
    corr = np.abs(normalized.T @ normalized) / len(samples)
    corr[degenerate, :] = 1.0
    corr[:, degenerate] = 1.0
    return corr
