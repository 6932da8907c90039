"""
Phase 2 - Step 2.2: Harris Corner Response
Scores candidate keypoints with the Harris corner measure so the strongest
FAST corners can be kept.

    R = det(M) - k * trace(M)²,   M = G_σ * [Ix²  IxIy; IxIy  Iy²]
"""

import numpy as np
from scipy.ndimage import gaussian_filter, maximum_filter, sobel
from config import cfg


def harris_response_map(image: np.ndarray, k: float = None, window_size: int = None,
                        sigma: float = None) -> np.ndarray:
    """
    Harris corner response for every pixel

    Args:
        image: Grayscale image (H, W) with values 0-1
        k: Harris parameter (default: from config)
        window_size: Odd width of the Gaussian window (default: from config)
        sigma: Gaussian sigma of the window (default: from config)

    Returns:
        R: Corner response (H, W) float32
    """
    if k is None:
        k = cfg.HARRIS_K
    if window_size is None:
        window_size = cfg.HARRIS_WINDOW_SIZE
    if sigma is None:
        sigma = cfg.HARRIS_SIGMA

    image = np.asarray(image, dtype=np.float64)
    # Mirrored borders (edge pixel repeated)
    Ix = sobel(image, axis=1, mode='reflect')
    Iy = sobel(image, axis=0, mode='reflect')

    truncate = (window_size // 2) / sigma
    Sxx = gaussian_filter(Ix * Ix, sigma, mode='reflect', truncate=truncate)
    Sxy = gaussian_filter(Ix * Iy, sigma, mode='reflect', truncate=truncate)
    Syy = gaussian_filter(Iy * Iy, sigma, mode='reflect', truncate=truncate)

    R = (Sxx * Syy - Sxy * Sxy) - k * (Sxx + Syy) ** 2
    return R.astype(np.float32)


def non_maximum_suppression(response: np.ndarray, window_size: int = 3) -> np.ndarray:
    """
    Keep only positive local maxima of a response map

    Args:
        response: Corner response map (H, W)
        window_size: Window size for NMS

    Returns:
        mask: Boolean mask of local maxima (H, W)
    """
    max_response = maximum_filter(response, size=window_size, mode='nearest')
    return (response == max_response) & (response > 0)
