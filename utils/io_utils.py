"""
File I/O utility functions for ORB features and matches
"""

import numpy as np
import json
from dataclasses import replace
from pathlib import Path
from typing import List, Dict, Any, Tuple
from PIL import Image

from src.features.descriptor import pack_descriptors, unpack_descriptors
from src.features.keypoint import Keypoint, Match, keypoints_from_arrays, keypoints_to_array


def save_features(keypoints: List[Keypoint], descriptors: np.ndarray, filepath: str,
                  pattern_version: str = None) -> None:
    """
    Save keypoints and descriptors to a compressed .npz file

    Descriptors are stored packed (ceil(L/8) bytes per keypoint) together
    with their bit length.

    Args:
        keypoints: Keypoints (row i of descriptors belongs to keypoints[i])
        descriptors: Bit descriptors (N, L)
        filepath: Output file path
        pattern_version: Sampling pattern identifier, stored for reference
    """
    descriptors = np.asarray(descriptors, dtype=bool)
    if len(keypoints) != len(descriptors):
        raise ValueError(f"Keypoints and descriptors must have same length: "
                         f"{len(keypoints)} vs {len(descriptors)}")

    Path(filepath).parent.mkdir(parents=True, exist_ok=True)

    np.savez_compressed(
        filepath,
        points=keypoints_to_array(keypoints),
        angles=np.array([np.nan if kp.angle is None else kp.angle for kp in keypoints], dtype=np.float64),
        responses=np.array([kp.response for kp in keypoints], dtype=np.float64),
        levels=np.array([kp.level for kp in keypoints], dtype=np.int32),
        descriptors=pack_descriptors(descriptors),
        descriptor_length=np.int32(descriptors.shape[1]),
        pattern_version=np.str_(pattern_version or '')
    )

    print(f"Saved {len(keypoints)} features to {filepath}")


def load_features(filepath: str) -> Tuple[List[Keypoint], np.ndarray]:
    """
    Load keypoints and descriptors saved by save_features()

    Args:
        filepath: Input .npz file path

    Returns:
        keypoints: List of Keypoint
        descriptors: Bit descriptors (N, L) bool
    """
    with np.load(filepath) as data:
        keypoints = keypoints_from_arrays(data['points'], angles=data['angles'],
                                          responses=data['responses'], levels=data['levels'])
        descriptors = unpack_descriptors(data['descriptors'], int(data['descriptor_length']))

    # Unoriented keypoints were stored as NaN
    keypoints = [replace(kp, angle=None) if np.isnan(kp.angle) else kp for kp in keypoints]
    return keypoints, descriptors


def save_matches(matches: List[Match], filepath: str, metadata: Dict[str, Any] = None) -> None:
    """
    Save matches to a JSON file

    Args:
        matches: List of Match
        filepath: Output file path
        metadata: Extra fields stored next to the matches
    """
    data = dict(metadata or {})
    data['matches'] = [[m.query_idx, m.train_idx, m.distance] for m in matches]
    save_json(data, filepath)


def load_matches(filepath: str) -> List[Match]:
    """
    Load matches saved by save_matches()

    Args:
        filepath: Input file path

    Returns:
        List of Match
    """
    data = load_json(filepath)
    return [Match(int(q), int(t), float(d)) for q, t, d in data['matches']]


def save_json(data: Dict[str, Any], filepath: str) -> None:
    """
    Save dictionary to JSON file

    Args:
        data: Dictionary to save
        filepath: Output file path
    """
    Path(filepath).parent.mkdir(parents=True, exist_ok=True)

    # Convert numpy arrays to lists for JSON serialization
    def convert_numpy(obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, dict):
            return {k: convert_numpy(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [convert_numpy(item) for item in obj]
        return obj

    with open(filepath, 'w') as f:
        json.dump(convert_numpy(data), f, indent=2)

    print(f"Saved JSON to {filepath}")


def load_json(filepath: str) -> Dict[str, Any]:
    """
    Load dictionary from JSON file

    Args:
        filepath: Input file path

    Returns:
        Dictionary
    """
    with open(filepath, 'r') as f:
        data = json.load(f)
    return data


def save_image(image: np.ndarray, filepath: str) -> None:
    """
    Save image to file

    Args:
        image: Image array (grayscale or RGB), 0-1 floats or uint8
        filepath: Output file path
    """
    Path(filepath).parent.mkdir(parents=True, exist_ok=True)

    if image.dtype != np.uint8:
        image = (np.clip(image, 0.0, 1.0) * 255).astype(np.uint8)

    Image.fromarray(image).save(filepath)
