"""
Phase 1 - Step 1.1: Image Loading and Normalization
Loads images and converts them to normalized grayscale format.
"""

import numpy as np
from pathlib import Path
from typing import Tuple
from PIL import Image
from scipy.ndimage import gaussian_filter

from config import cfg


def load_grayscale(filepath: str) -> Tuple[np.ndarray, dict]:
    """
    Load an image file as a normalized grayscale image

    Args:
        filepath: Path to image file

    Returns:
        image: Grayscale image (H, W) with values 0-1
        metadata: Dictionary with filename, width, height, original_shape
    """
    path = Path(filepath)
    if not path.exists():
        raise ValueError(f"Image file does not exist: {filepath}")

    img_rgb = load_image(str(path))
    img_norm = normalize_image(rgb_to_grayscale(img_rgb))

    if cfg.TARGET_IMAGE_SIZE is not None:
        width, height = cfg.TARGET_IMAGE_SIZE
        img_norm = np.asarray(
            Image.fromarray(img_norm.astype(np.float32)).resize((width, height), Image.BILINEAR),
            dtype=np.float32
        )

    metadata = {
        'filename': path.name,
        'width': img_norm.shape[1],
        'height': img_norm.shape[0],
        'original_shape': img_rgb.shape
    }
    return img_norm, metadata


def load_image(filepath: str) -> np.ndarray:
    """
    Load a single image file (JPEG, PNG, TIFF, etc.)

    Args:
        filepath: Path to image file

    Returns:
        RGB image as numpy array (height, width, 3) with values 0-255
    """
    img = Image.open(filepath)

    # Convert to RGB if needed (handles RGBA, L, etc.)
    if img.mode != 'RGB':
        img = img.convert('RGB')

    return np.array(img, dtype=np.float32)


def rgb_to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert RGB image to grayscale using weighted channel averaging

    Mathematical formula: I_gray = 0.299*R + 0.587*G + 0.114*B

    Args:
        image: RGB image (H, W, 3)

    Returns:
        Grayscale image (H, W) in the input's value range
    """
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError(f"Expected RGB image with shape (H, W, 3), got {image.shape}")

    weights = np.array([0.299, 0.587, 0.114], dtype=np.float32)
    gray = np.dot(image.astype(np.float32), weights)

    return gray.astype(np.float32)


def normalize_image(image: np.ndarray) -> np.ndarray:
    """
    Normalize image to 0-1 range

    Args:
        image: Grayscale image with values 0-255

    Returns:
        Normalized image with values 0-1
    """
    return image / 255.0


def as_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Coerce any supported image array into a float grayscale image in [0, 1]

    uint8 input is scaled by 1/255, RGB(A) input is converted with the
    luminance weights, float input is assumed to be in [0, 1] already.

    Args:
        image: Image (H, W), (H, W, 3) or (H, W, 4)

    Returns:
        Grayscale image (H, W) float32
    """
    image = np.asarray(image)

    if image.ndim == 3 and image.shape[2] == 4:
        image = image[:, :, :3]
    if image.ndim == 3:
        gray = rgb_to_grayscale(image)
    elif image.ndim == 2:
        gray = image.astype(np.float32)
    else:
        raise ValueError(f"Expected grayscale (H, W) or RGB (H, W, 3) image, got {image.shape}")

    if image.dtype == np.uint8:
        gray = normalize_image(gray)

    return gray.astype(np.float32)


def denormalize_image(image: np.ndarray) -> np.ndarray:
    """
    Convert normalized image (0-1) back to 0-255 range

    Args:
        image: Normalized image (0-1)

    Returns:
        Image with values 0-255
    """
    return (np.clip(image, 0.0, 1.0) * 255.0).astype(np.uint8)


def synthetic_test_image(width: int = None, height: int = None,
                         seed: int = None) -> np.ndarray:
    """
    Build a textured grayscale test image (smoothed noise plus rectangles)

    Used by the demo when no image is given, and by the tests.

    Args:
        width: Image width (default: from config)
        height: Image height (default: from config)
        seed: Random seed (default: from config)

    Returns:
        Grayscale image (H, W) with values 0-1
    """
    if width is None or height is None:
        width, height = cfg.SYNTHETIC_IMAGE_SIZE
    if seed is None:
        seed = cfg.RANDOM_SEED

    rng = np.random.default_rng(seed)

    # Blob texture
    noise = rng.random((height, width))
    image = gaussian_filter(noise, sigma=3.0)
    image = (image - image.min()) / max(image.max() - image.min(), 1e-10)

    # High-contrast rectangles give strong corners
    n_rects = max(4, (width * height) // 2500)
    for _ in range(n_rects):
        w = rng.integers(6, max(7, width // 6))
        h = rng.integers(6, max(7, height // 6))
        x0 = rng.integers(0, width - w)
        y0 = rng.integers(0, height - h)
        image[y0:y0 + h, x0:x0 + w] = rng.choice([0.05, 0.95])

    return image.astype(np.float32)
