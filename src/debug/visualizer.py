"""
Debugging visualizations for the ORB feature matching pipeline
Draws keypoints with orientations and matched line segments on a combined canvas
"""

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import numpy as np
from pathlib import Path
from typing import List, Tuple

from src.features.keypoint import Keypoint, Match, keypoints_to_array


def side_by_side(img1: np.ndarray, img2: np.ndarray) -> Tuple[np.ndarray, int]:
    """
    Place two grayscale images next to each other

    Args:
        img1, img2: Grayscale images

    Returns:
        combined: Canvas (max(H1, H2), W1 + W2)
        offset: Horizontal offset of img2 on the canvas (= W1)
    """
    h1, w1 = img1.shape
    h2, w2 = img2.shape

    combined = np.zeros((max(h1, h2), w1 + w2), dtype=np.float32)
    combined[:h1, :w1] = img1
    combined[:h2, w1:] = img2
    return combined, w1


class DebugVisualizer:
    """Handles all debugging visualizations for the ORB pipeline"""

    def __init__(self, output_dir: str = "output/debug"):
        """
        Initialize debug visualizer

        Args:
            output_dir: Directory to save debug visualizations
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def visualize_keypoints(self, image: np.ndarray, keypoints: List[Keypoint],
                            img_idx: int = 0, save_name: str = None,
                            arrow_length: float = 10.0) -> Path:
        """
        Visualize keypoints and their orientations on an image

        Args:
            image: Grayscale image (H, W)
            keypoints: Oriented keypoints
            img_idx: Image index
            save_name: Optional custom save name
            arrow_length: Length of the orientation ticks in pixels

        Returns:
            Path of the saved figure
        """
        fig, ax = plt.subplots(figsize=(10, 10))
        ax.imshow(image, cmap='gray', vmin=0.0, vmax=1.0)

        if len(keypoints) > 0:
            points = keypoints_to_array(keypoints)
            ax.scatter(points[:, 0], points[:, 1], c='red', s=12, alpha=0.7, marker='o')

            angles = np.array([0.0 if kp.angle is None else kp.angle for kp in keypoints])
            ax.quiver(points[:, 0], points[:, 1],
                      np.cos(angles) * arrow_length, np.sin(angles) * arrow_length,
                      angles='xy', scale_units='xy', scale=1, color='yellow', width=0.002)

        ax.set_title(f'ORB Keypoints - Image {img_idx}\n{len(keypoints)} keypoints',
                     fontsize=14, fontweight='bold')
        ax.axis('off')

        if save_name is None:
            save_name = f"keypoints_img_{img_idx:03d}.png"

        path = self.output_dir / save_name
        plt.tight_layout()
        plt.savefig(path, dpi=150, bbox_inches='tight')
        plt.close(fig)
        return path

    def visualize_matches(self, img1: np.ndarray, img2: np.ndarray,
                          kp1: List[Keypoint], kp2: List[Keypoint],
                          matches: List[Match],
                          correct_mask: np.ndarray = None,
                          idx1: int = 0, idx2: int = 1,
                          save_name: str = None) -> Path:
        """
        Draw matched line segments between two images on a combined canvas

        Args:
            img1, img2: Grayscale images
            kp1, kp2: Keypoints for each image
            matches: Matches (query indexes kp1, train indexes kp2)
            correct_mask: Optional boolean mask (M,) of matches known to be correct
            idx1, idx2: Image indices for naming
            save_name: Optional custom save name

        Returns:
            Path of the saved figure
        """
        combined, offset = side_by_side(img1, img2)

        fig, ax = plt.subplots(figsize=(16, 8))
        ax.imshow(combined, cmap='gray', vmin=0.0, vmax=1.0)

        if correct_mask is None:
            correct_mask = np.ones(len(matches), dtype=bool)

        for match, correct in zip(matches, correct_mask):
            x1, y1 = kp1[match.query_idx].pt
            x2, y2 = kp2[match.train_idx].pt
            if correct:
                ax.plot([x1, x2 + offset], [y1, y2], 'g-', linewidth=0.8, alpha=0.7)
            else:
                ax.plot([x1, x2 + offset], [y1, y2], 'r-', linewidth=0.5, alpha=0.4)

        n_correct = int(np.sum(correct_mask))
        n_matches = len(matches)
        ratio = n_correct / n_matches if n_matches > 0 else 0.0

        ax.set_title(f'ORB Matching: Image {idx1} ↔ Image {idx2}\n'
                     f'Matches: {n_matches} | Correct: {n_correct} (green) | Ratio: {ratio:.1%}',
                     fontsize=14, fontweight='bold')
        ax.axis('off')

        textstr = f'Keypoints: {len(kp1)} / {len(kp2)}\nMatches: {n_matches}'
        props = dict(boxstyle='round', facecolor='white', alpha=0.8)
        ax.text(0.02, 0.98, textstr, transform=ax.transAxes, fontsize=11,
                verticalalignment='top', bbox=props)

        if save_name is None:
            save_name = f"matches_{idx1:03d}_{idx2:03d}.png"

        path = self.output_dir / save_name
        plt.tight_layout()
        plt.savefig(path, dpi=150, bbox_inches='tight')
        plt.close(fig)
        return path

    def plot_distance_histogram(self, matches: List[Match], descriptor_length: int,
                                save_name: str = "match_distances.png") -> Path:
        """
        Histogram of match Hamming distances

        Args:
            matches: Matches to summarize
            descriptor_length: Bits per descriptor (x axis range)
            save_name: Output file name

        Returns:
            Path of the saved figure
        """
        distances = np.array([m.distance for m in matches], dtype=np.float64)

        fig, ax = plt.subplots(figsize=(8, 5))
        ax.hist(distances, bins=32, range=(0, descriptor_length), color='steelblue', edgecolor='black')
        ax.set_xlabel('Hamming distance (bits)')
        ax.set_ylabel('Matches')
        ax.set_title(f'Match distances ({len(matches)} matches)')
        ax.grid(True, alpha=0.3)

        path = self.output_dir / save_name
        plt.tight_layout()
        plt.savefig(path, dpi=150, bbox_inches='tight')
        plt.close(fig)
        return path
