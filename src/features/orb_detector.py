"""
ORB (Oriented FAST and Rotated BRIEF) detector implementation

ORB combines:
- FAST keypoint detector on an image pyramid
- Harris corner measure for ranking
- Orientation from intensity centroid
- Rotated BRIEF descriptors from a fixed sampling pattern

Binary descriptors are returned as (N, L) bool bit matrices
(L = descriptor_length, 256 by default = 32 bytes when packed).
"""

import math
import numpy as np
from typing import List, Tuple
from scipy.ndimage import gaussian_filter, zoom

from config import cfg
from src.preprocessing.image_loader import as_grayscale
from .descriptor import EDGE_POLICIES, INTERPOLATION_POLICIES, compute_orb_descriptors
from .fast_detector import CIRCLE_RADIUS, detect_fast_corners
from .keypoint import Keypoint, keypoints_to_array
from .sampling_pattern import resolve_sampling_pattern


class ORBDetector:
    """
    ORB feature detector implementation

    Holds the parameters of one configuration; detect_and_compute() can be
    called on any number of images and has no side effects.
    """

    def __init__(self, num_keypoints=None, patch_radius=None, descriptor_length=None,
                 n_levels=None, scale_factor=None, fast_threshold=None, fast_n=None,
                 harris_k=None, blur_sigma=None, interpolation=None, edge_policy=None,
                 pattern=None, n_workers=None, verbose=None):
        """
        Initialize ORB detector (every argument defaults to the config value)

        Args:
            num_keypoints: Maximum number of keypoints to retain
            patch_radius: Radius of the orientation (intensity centroid) patch
            descriptor_length: Number of sampling pairs = descriptor bits
            n_levels: Number of pyramid levels
            scale_factor: Pyramid decimation ratio (>1)
            fast_threshold: Threshold for FAST detector (0-1 intensity scale)
            fast_n: Contiguous arc length for FAST
            harris_k: Harris parameter for ranking
            blur_sigma: Smoothing before descriptor intensity tests
            interpolation: 'nearest' or 'bilinear' sampling
            edge_policy: 'discard' or 'clamp' for samples outside the image
            pattern: Sampling pattern (SamplingPattern, (L, 4) array or file path)
            n_workers: Worker threads for descriptor construction
            verbose: Print progress
        """
        self.num_keypoints = cfg.ORB_N_KEYPOINTS if num_keypoints is None else num_keypoints
        self.patch_radius = cfg.PATCH_RADIUS if patch_radius is None else patch_radius
        self.descriptor_length = cfg.DESCRIPTOR_LENGTH if descriptor_length is None else descriptor_length
        self.n_levels = cfg.ORB_N_LEVELS if n_levels is None else n_levels
        self.scale_factor = cfg.ORB_SCALE_FACTOR if scale_factor is None else scale_factor
        self.fast_threshold = cfg.FAST_THRESHOLD if fast_threshold is None else fast_threshold
        self.fast_n = cfg.FAST_N if fast_n is None else fast_n
        self.harris_k = cfg.HARRIS_K if harris_k is None else harris_k
        self.blur_sigma = cfg.BLUR_SIGMA if blur_sigma is None else blur_sigma
        self.interpolation = cfg.INTERPOLATION if interpolation is None else interpolation
        self.edge_policy = cfg.EDGE_POLICY if edge_policy is None else edge_policy
        self.n_workers = cfg.N_WORKERS if n_workers is None else n_workers
        self.verbose = cfg.VERBOSE if verbose is None else verbose

        self._validate()

        # Fixed for the lifetime of the detector, shared read-only
        self.pattern = resolve_sampling_pattern(pattern, self.descriptor_length)

        if self.edge_policy == 'discard':
            # Rotated samples stay within ceil(extent) (+1 for bilinear reads)
            self.border = max(self.patch_radius, int(math.ceil(self.pattern.extent)) + 1)
        else:
            self.border = CIRCLE_RADIUS

    def _validate(self):
        if self.num_keypoints <= 0:
            raise ValueError(f"num_keypoints must be positive, got {self.num_keypoints}")
        if self.patch_radius <= 0:
            raise ValueError(f"patch_radius must be positive, got {self.patch_radius}")
        if self.n_levels < 1:
            raise ValueError(f"n_levels must be at least 1, got {self.n_levels}")
        if self.n_levels > 1 and self.scale_factor <= 1.0:
            raise ValueError(f"scale_factor must be > 1 for a pyramid, got {self.scale_factor}")
        if self.interpolation not in INTERPOLATION_POLICIES:
            raise ValueError(f"Unknown interpolation: {self.interpolation}. "
                             f"Must be one of {INTERPOLATION_POLICIES}")
        if self.edge_policy not in EDGE_POLICIES:
            raise ValueError(f"Unknown edge policy: {self.edge_policy}. Must be one of {EDGE_POLICIES}")
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be at least 1, got {self.n_workers}")

    def __repr__(self):
        return (f"ORBDetector(num_keypoints={self.num_keypoints}, patch_radius={self.patch_radius}, "
                f"descriptor_length={self.descriptor_length}, n_levels={self.n_levels}, "
                f"scale_factor={self.scale_factor}, pattern={self.pattern.version!r})")

    def detect_and_compute(self, image) -> Tuple[List[Keypoint], np.ndarray]:
        """
        Detect ORB keypoints and compute descriptors

        Args:
            image: Input image (H, W) in range [0, 1], uint8, or RGB

        Returns:
            keypoints: List of oriented Keypoint (at most num_keypoints), strongest first
            descriptors: Bit matrix (N, descriptor_length) bool, row i belongs to keypoints[i]
        """
        image = as_grayscale(image)
        pyramid = self.build_pyramid(image)

        # Detect FAST keypoints at each level
        candidates = []
        for level, (img, _) in enumerate(pyramid):
            corners, responses = detect_fast_corners(
                img,
                threshold=self.fast_threshold,
                n=self.fast_n,
                border=self.border,
                max_corners=self.num_keypoints,
                harris_k=self.harris_k
            )
            for (x, y), response in zip(corners, responses):
                candidates.append((float(response), level, int(x), int(y)))

        if len(candidates) == 0:
            if self.verbose:
                print("  Warning: No ORB keypoints detected!")
            return [], np.zeros((0, self.descriptor_length), dtype=bool)

        # Select top keypoints by Harris response over all levels
        candidates.sort(key=lambda c: -c[0])
        candidates = candidates[:self.num_keypoints]

        keypoints = []
        descriptors = []
        for level, (img, (sx, sy)) in enumerate(pyramid):
            level_candidates = [c for c in candidates if c[1] == level]
            if not level_candidates:
                continue

            level_points = np.array([[c[2], c[3]] for c in level_candidates], dtype=np.float64)
            desc, valid_mask, angles = compute_orb_descriptors(
                img,
                level_points,
                pattern=self.pattern,
                patch_radius=self.patch_radius,
                blur_sigma=self.blur_sigma,
                interpolation=self.interpolation,
                edge_policy=self.edge_policy,
                n_workers=self.n_workers
            )

            kept = [c for c, valid in zip(level_candidates, valid_mask) if valid]
            for (response, _, x, y), angle in zip(kept, angles):
                keypoints.append(Keypoint(x=x * sx, y=y * sy, angle=float(angle),
                                          response=response, level=level))
            descriptors.append(desc)

        descriptors = np.concatenate(descriptors, axis=0)

        # Strongest first, across levels
        order = sorted(range(len(keypoints)), key=lambda i: -keypoints[i].response)
        keypoints = [keypoints[i] for i in order]
        descriptors = descriptors[order]

        if self.verbose:
            dropped = len(candidates) - len(keypoints)
            print(f"  ORB: {len(keypoints)} keypoints over {len(pyramid)} level(s)"
                  + (f" ({dropped} dropped at the border)" if dropped else ""))

        return keypoints, descriptors

    def compute(self, image, keypoints) -> Tuple[List[Keypoint], np.ndarray]:
        """
        Compute descriptors for given level-0 keypoints (no detection)

        Args:
            image: Input image (H, W)
            keypoints: List of Keypoint or array (N, 2) of (x, y)

        Returns:
            keypoints: Kept keypoints with orientation assigned
            descriptors: Bit matrix (M, descriptor_length)
        """
        image = as_grayscale(image)
        if isinstance(keypoints, np.ndarray):
            points = keypoints.reshape(-1, 2).astype(np.float64)
            responses = np.zeros(len(points))
        else:
            points = keypoints_to_array(keypoints)
            responses = np.array([kp.response for kp in keypoints])

        desc, valid_mask, angles = compute_orb_descriptors(
            image,
            points,
            pattern=self.pattern,
            patch_radius=self.patch_radius,
            blur_sigma=self.blur_sigma,
            interpolation=self.interpolation,
            edge_policy=self.edge_policy,
            n_workers=self.n_workers
        )

        kept = []
        for (x, y), response, angle in zip(points[valid_mask], responses[valid_mask], angles):
            kept.append(Keypoint(x=float(x), y=float(y), angle=float(angle), response=float(response)))
        return kept, desc

    def build_pyramid(self, image: np.ndarray) -> List[Tuple[np.ndarray, Tuple[float, float]]]:
        """
        Build image pyramid

        Each level is the previous one smoothed and resized by 1/scale_factor.

        Returns:
            List of (level image, (sx, sy)) where (sx, sy) maps level
            coordinates back to level 0: x0 = x * sx, y0 = y * sy
        """
        H0, W0 = image.shape
        pyramid = [(image, (1.0, 1.0))]
        min_size = max(cfg.PYRAMID_MIN_SIZE, 2 * self.border + 1)

        for _ in range(1, self.n_levels):
            prev = pyramid[-1][0]
            new_height = int(round(prev.shape[0] / self.scale_factor))
            new_width = int(round(prev.shape[1] / self.scale_factor))
            if new_width < min_size or new_height < min_size:
                break

            # Smooth to avoid aliasing, then resample
            smoothed = gaussian_filter(prev, sigma=0.5 * self.scale_factor)
            level = zoom(smoothed, (new_height / prev.shape[0], new_width / prev.shape[1]), order=1)
            level = level.astype(np.float32)

            h, w = level.shape
            pyramid.append((level, ((W0 - 1) / max(w - 1, 1), (H0 - 1) / max(h - 1, 1))))

        return pyramid


def create_descriptor(image, orb: ORBDetector = None) -> Tuple[np.ndarray, List[Keypoint]]:
    """
    Run the ORB pipeline on an image

    Args:
        image: Input image
        orb: Detector holding the parameters (default: ORBDetector())

    Returns:
        descriptors: Bit matrix (N, descriptor_length)
        keypoints: List of Keypoint, row i of descriptors belongs to keypoints[i]
    """
    if orb is None:
        orb = ORBDetector()
    keypoints, descriptors = orb.detect_and_compute(image)
    return descriptors, keypoints


def detect_orb_features(image, n_keypoints=None, n_levels=None, scale_factor=None,
                        fast_threshold=None, descriptor_length=None):
    """
    Convenience function to detect ORB features

    Args:
        image: Input grayscale image
        n_keypoints: Maximum number of keypoints
        n_levels: Number of pyramid levels
        scale_factor: Pyramid scale factor
        fast_threshold: FAST detector threshold
        descriptor_length: Bits per descriptor

    Returns:
        keypoints: Array of (x, y) coordinates (N, 2)
        descriptors: Bit matrix (N, descriptor_length)
    """
    detector = ORBDetector(num_keypoints=n_keypoints, n_levels=n_levels,
                           scale_factor=scale_factor, fast_threshold=fast_threshold,
                           descriptor_length=descriptor_length)
    keypoints, descriptors = detector.detect_and_compute(image)
    return keypoints_to_array(keypoints), descriptors
