"""
Test script for Phase 1: Image Input and Geometric Transforms
"""

import sys
import numpy as np
import pytest
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from src.preprocessing import image_loader, transforms
from utils import io_utils
from utils.math_utils import angle_difference, rotate_offsets, transform_points, wrap_angle


def test_as_grayscale_scales_uint8():
    gray = image_loader.as_grayscale(np.full((4, 5), 255, dtype=np.uint8))

    assert gray.shape == (4, 5)
    assert gray.dtype == np.float32
    assert np.allclose(gray, 1.0)


def test_as_grayscale_converts_rgb_and_rgba():
    rgb = np.zeros((6, 7, 3), dtype=np.float32)
    rgb[..., 1] = 1.0
    rgba = np.concatenate([rgb, np.ones((6, 7, 1), dtype=np.float32)], axis=2)

    assert np.allclose(image_loader.as_grayscale(rgb), 0.587, atol=1e-6)
    assert np.allclose(image_loader.as_grayscale(rgba), 0.587, atol=1e-6)


def test_as_grayscale_rejects_bad_shapes():
    with pytest.raises(ValueError):
        image_loader.as_grayscale(np.zeros(10))
    with pytest.raises(ValueError):
        image_loader.rgb_to_grayscale(np.zeros((4, 4, 2)))


def test_load_grayscale_from_disk(tmp_path):
    ramp = np.tile(np.arange(0, 256, 4, dtype=np.uint8), (16, 1))
    filepath = tmp_path / "ramp.png"
    io_utils.save_image(ramp, str(filepath))

    image, metadata = image_loader.load_grayscale(str(filepath))

    assert image.shape == ramp.shape
    assert metadata['filename'] == "ramp.png"
    assert np.allclose(image, ramp / 255.0, atol=1e-3)


def test_load_grayscale_missing_file(tmp_path):
    with pytest.raises(ValueError):
        image_loader.load_grayscale(str(tmp_path / "missing.png"))


def test_synthetic_image_is_deterministic():
    img1 = image_loader.synthetic_test_image(64, 48, seed=3)
    img2 = image_loader.synthetic_test_image(64, 48, seed=3)

    assert img1.shape == (48, 64)
    assert img1.min() >= 0.0 and img1.max() <= 1.0
    assert np.array_equal(img1, img2)


def test_rotate_offsets_quarter_turn():
    rotated = rotate_offsets(np.array([[1.0, 0.0], [0.0, 2.0]]), np.pi / 2)
    assert np.allclose(rotated, [[0.0, 1.0], [-2.0, 0.0]])


def test_wrap_angle_range():
    angles = np.array([-3 * np.pi, -np.pi / 2, 0.0, 1.5 * np.pi, 4.0])
    wrapped = wrap_angle(angles)

    assert np.all(wrapped >= -np.pi) and np.all(wrapped < np.pi)
    assert np.allclose(np.cos(wrapped), np.cos(angles))
    assert np.allclose(np.sin(wrapped), np.sin(angles))
    assert abs(angle_difference(0.1, 2 * np.pi - 0.1) - 0.2) < 1e-12


def test_warp_image_identity():
    image = image_loader.synthetic_test_image(40, 30, seed=1)
    warped = transforms.warp_image(image, 0.0, translation=(0.0, 0.0))
    assert np.allclose(warped, image, atol=1e-5)


def test_warp_image_translation_moves_pixel():
    image = np.zeros((40, 50), dtype=np.float32)
    image[20, 10] = 1.0

    warped = transforms.warp_image(image, 0.0, translation=(5.0, 3.0))
    row, col = np.unravel_index(np.argmax(warped), warped.shape)

    assert (col, row) == (15, 23)


def test_warp_image_agrees_with_warp_points():
    image = np.zeros((101, 101), dtype=np.float32)
    image[30, 40] = 1.0
    angle = np.pi / 2

    warped = transforms.warp_image(image, angle)
    row, col = np.unravel_index(np.argmax(warped), warped.shape)
    expected = transforms.warp_points(np.array([[40.0, 30.0]]), image, angle)[0]

    assert np.allclose(expected, [70.0, 40.0])
    assert (col, row) == (70, 40)


def test_transform_points_inverse():
    points = np.array([[3.0, 4.0], [10.0, -2.0]])
    center = (5.0, 5.0)
    moved = transform_points(points, 0.7, center, translation=(2.0, -1.0))
    back = transform_points(moved - np.array([2.0, -1.0]), -0.7, center)
    assert np.allclose(back, points)


@pytest.mark.parametrize("k", [1, 2, 3])
def test_rotate90_points_follow_pixels(k):
    image = np.zeros((10, 20), dtype=np.float32)
    image[3, 7] = 1.0

    rotated = transforms.rotate90(image, k)
    row, col = np.unravel_index(np.argmax(rotated), rotated.shape)
    mapped = transforms.rotate90_points(np.array([[7.0, 3.0]]), image.shape, k)[0]

    assert (col, row) == (int(mapped[0]), int(mapped[1]))


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
