"""
Test script for Phase 5: End-to-End ORB Pipeline
"""

import sys
import numpy as np
import pytest
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import main as demo
from src.features.keypoint import Keypoint, Match, keypoints_to_array
from src.features.orb_detector import ORBDetector, create_descriptor, detect_orb_features
from src.matching.matcher import get_matched_points, match_descriptors
from src.preprocessing import image_loader, transforms
from utils import io_utils


@pytest.fixture(scope="module")
def image():
    return image_loader.synthetic_test_image(160, 160, seed=9)


def test_keypoint_budget_and_shapes(image):
    orb = ORBDetector(num_keypoints=60, n_levels=3, verbose=False)
    keypoints, descriptors = orb.detect_and_compute(image)

    assert 0 < len(keypoints) <= 60
    assert descriptors.shape == (len(keypoints), 256)
    assert descriptors.dtype == bool

    responses = [kp.response for kp in keypoints]
    assert responses == sorted(responses, reverse=True)
    assert all(kp.angle is not None for kp in keypoints)


def test_descriptor_length_option(image):
    orb = ORBDetector(num_keypoints=40, descriptor_length=128, n_levels=1, verbose=False)
    keypoints, descriptors = orb.detect_and_compute(image)

    assert descriptors.shape == (len(keypoints), 128)
    assert len(orb.pattern) == 128


def test_detection_is_deterministic(image):
    orb = ORBDetector(num_keypoints=100, verbose=False)
    kp1, desc1 = orb.detect_and_compute(image)
    kp2, desc2 = orb.detect_and_compute(image)

    assert kp1 == kp2
    assert np.array_equal(desc1, desc2)


def test_pyramid_keypoints_in_input_coordinates():
    big = image_loader.synthetic_test_image(200, 200, seed=4)
    orb = ORBDetector(num_keypoints=200, n_levels=3, scale_factor=1.5, verbose=False)

    pyramid = orb.build_pyramid(big)
    keypoints, _ = orb.detect_and_compute(big)
    points = keypoints_to_array(keypoints)

    assert len(pyramid) == 3
    assert pyramid[1][0].shape == (133, 133)
    assert {kp.level for kp in keypoints} <= {0, 1, 2}
    assert np.all(points >= 0) and np.all(points <= 199)


def test_flat_image_has_no_keypoints():
    orb = ORBDetector(verbose=False)
    keypoints, descriptors = orb.detect_and_compute(np.full((64, 64), 0.5, dtype=np.float32))

    assert keypoints == []
    assert descriptors.shape == (0, 256)


def test_accepts_uint8_and_rgb(image):
    orb = ORBDetector(num_keypoints=50, n_levels=1, verbose=False)
    as_uint8 = image_loader.denormalize_image(image)
    as_rgb = np.stack([as_uint8] * 3, axis=2)

    kp_gray, desc_gray = orb.detect_and_compute(as_uint8)
    kp_rgb, desc_rgb = orb.detect_and_compute(as_rgb)

    assert len(kp_gray) > 0 and len(kp_rgb) > 0
    assert desc_gray.shape[1] == desc_rgb.shape[1] == 256


@pytest.mark.parametrize("kwargs", [
    {'num_keypoints': 0},
    {'descriptor_length': 512},
    {'interpolation': 'cubic'},
    {'edge_policy': 'wrap'},
    {'n_levels': 2, 'scale_factor': 1.0},
    {'n_workers': 0},
])
def test_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        ORBDetector(**kwargs)


def test_compute_drops_boundary_keypoint():
    orb = ORBDetector(verbose=False)
    small = image_loader.synthetic_test_image(20, 20, seed=1)

    keypoints, descriptors = orb.compute(small, np.array([[0.0, 0.0]]))

    assert keypoints == []
    assert descriptors.shape == (0, 256)


def test_compute_orients_given_keypoints(image):
    orb = ORBDetector(verbose=False)
    given = [Keypoint(50.0, 60.0, response=2.0), Keypoint(100.0, 90.0, response=1.0)]

    keypoints, descriptors = orb.compute(image, given)

    assert [kp.pt for kp in keypoints] == [kp.pt for kp in given]
    assert all(kp.angle is not None for kp in keypoints)
    assert descriptors.shape == (2, 256)


def test_create_descriptor_order(image):
    descriptors, keypoints = create_descriptor(image, ORBDetector(num_keypoints=30, verbose=False))

    assert isinstance(descriptors, np.ndarray)
    assert isinstance(keypoints[0], Keypoint)
    assert len(descriptors) == len(keypoints)


def test_detect_orb_features_returns_arrays(image):
    points, descriptors = detect_orb_features(image, n_keypoints=25, n_levels=2)

    assert points.shape == (len(descriptors), 2)
    assert len(points) <= 25


def test_matches_survive_quarter_turn(image):
    orb = ORBDetector(num_keypoints=300, n_levels=1, verbose=False)
    rotated = transforms.rotate90(image)

    desc1, kp1 = create_descriptor(image, orb)
    desc2, kp2 = create_descriptor(rotated, orb)
    matches = match_descriptors(desc1, desc2)

    assert len(kp1) >= 20
    assert len(matches) >= 0.5 * len(kp1)

    points1, points2 = get_matched_points(kp1, kp2, matches)
    expected = transforms.rotate90_points(points1, image.shape)
    errors = np.linalg.norm(expected - points2, axis=1)

    assert np.mean(errors < 1.5) >= 0.8


@pytest.mark.parametrize("angle_deg", [30.0, 150.0])
def test_matches_survive_arbitrary_rotation(angle_deg):
    image = image_loader.synthetic_test_image(256, 256, seed=9)
    angle = np.deg2rad(angle_deg)
    rotated = transforms.warp_image(image, angle)

    orb = ORBDetector(num_keypoints=500, verbose=False)
    desc1, kp1 = create_descriptor(image, orb)
    desc2, kp2 = create_descriptor(rotated, orb)
    matches = match_descriptors(desc1, desc2)

    # Only queries whose true position was also detected in the rotated image can be matched
    points1 = keypoints_to_array(kp1)
    points2 = keypoints_to_array(kp2)
    expected = transforms.warp_points(points1, image, angle)
    nearest = np.linalg.norm(expected[:, np.newaxis, :] - points2[np.newaxis, :, :], axis=2).min(axis=1)
    recoverable = nearest < 3.0

    scored = [m for m in matches if recoverable[m.query_idx]]
    errors = np.array([np.linalg.norm(expected[m.query_idx] - points2[m.train_idx]) for m in scored])
    correct = int(np.sum(errors < 3.0))

    assert recoverable.sum() >= 30
    assert len(scored) >= 20
    assert correct / len(scored) >= 0.8
    assert correct >= 0.3 * recoverable.sum()


def test_features_and_matches_files(tmp_path, image):
    orb = ORBDetector(num_keypoints=40, verbose=False)
    keypoints, descriptors = orb.detect_and_compute(image)
    keypoints.append(Keypoint(5.0, 6.0))
    descriptors = np.vstack([descriptors, np.zeros((1, 256), dtype=bool)])

    features_file = tmp_path / "features" / "image.npz"
    io_utils.save_features(keypoints, descriptors, str(features_file), pattern_version=orb.pattern.version)
    loaded_kp, loaded_desc = io_utils.load_features(str(features_file))

    assert loaded_kp == keypoints
    assert loaded_kp[-1].angle is None
    assert np.array_equal(loaded_desc, descriptors)

    matches = [Match(0, 3, 12.0), Match(2, 1, 40.0)]
    matches_file = tmp_path / "matches.json"
    io_utils.save_matches(matches, str(matches_file), metadata={'threshold': 0.2})

    assert io_utils.load_matches(str(matches_file)) == matches
    assert io_utils.load_json(str(matches_file))['threshold'] == 0.2


def test_save_features_count_mismatch(tmp_path):
    with pytest.raises(ValueError):
        io_utils.save_features([Keypoint(1.0, 1.0)], np.zeros((2, 256), dtype=bool),
                               str(tmp_path / "bad.npz"))


def test_demo_writes_outputs(tmp_path):
    result = demo.main(angle_deg=30.0, shift=(10, 5), num_keypoints=150,
                       output_dir=str(tmp_path), enable_debug=True)

    stats = result['stats']
    assert stats['keypoints_1'] > 0
    assert stats['matches'] == len(result['matches'])
    assert 0.0 <= stats['precision'] <= 1.0
    assert stats['orientation_error_deg'] is None or 0.0 <= stats['orientation_error_deg'] <= 180.0

    assert (tmp_path / "reports" / "statistics.json").exists()
    assert (tmp_path / "features" / "image1.npz").exists()
    assert (tmp_path / "images" / "image1.png").exists()
    assert (tmp_path / "images" / "image2.png").exists()
    assert (tmp_path / "debug" / "keypoints_img_001.png").exists()
    assert (tmp_path / "debug" / "matches_001_002.png").exists()


def test_demo_arguments():
    args = demo.parse_args(['--angle', '45', '--shift', '3', '-4', '--num-keypoints', '500', '--no-debug'])

    assert args.angle == 45.0
    assert args.shift == [3.0, -4.0]
    assert args.num_keypoints == 500
    assert args.no_debug
    assert args.image is None


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
