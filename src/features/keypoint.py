"""
Feature records shared by the detector and the matcher
"""

import numpy as np
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Keypoint:
    """Detected keypoint in input-image pixel coordinates"""
    x: float
    y: float
    angle: Optional[float] = None  # radians, None until oriented
    response: float = 0.0          # Harris score used for ranking
    level: int = 0                 # pyramid level it was detected on

    @property
    def pt(self):
        return (self.x, self.y)


@dataclass(frozen=True)
class Match:
    query_idx: int
    train_idx: int
    distance: float  # Hamming distance in bits


def keypoints_to_array(keypoints: List[Keypoint]) -> np.ndarray:
    """
    Stack keypoint locations into an array

    Args:
        keypoints: List of Keypoint

    Returns:
        Array (N, 2) as (x, y)
    """
    if len(keypoints) == 0:
        return np.zeros((0, 2), dtype=np.float64)
    return np.array([kp.pt for kp in keypoints], dtype=np.float64)


def keypoints_from_arrays(points: np.ndarray, angles: np.ndarray = None,
                          responses: np.ndarray = None, levels: np.ndarray = None) -> List[Keypoint]:
    """
    Build Keypoint records from parallel arrays

    Args:
        points: Locations (N, 2) as (x, y)
        angles: Orientations (N,) or None
        responses: Detector responses (N,) or None
        levels: Pyramid levels (N,) or None

    Returns:
        List of Keypoint
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    keypoints = []
    for i, (x, y) in enumerate(points):
        keypoints.append(Keypoint(
            x=float(x),
            y=float(y),
            angle=None if angles is None else float(angles[i]),
            response=0.0 if responses is None else float(responses[i]),
            level=0 if levels is None else int(levels[i])
        ))
    return keypoints


def matches_to_array(matches: List[Match]) -> np.ndarray:
    """Index pairs (M, 2) as [query_idx, train_idx]"""
    if len(matches) == 0:
        return np.zeros((0, 2), dtype=np.int64)
    return np.array([[m.query_idx, m.train_idx] for m in matches], dtype=np.int64)
