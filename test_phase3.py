"""
Test script for Phase 3: Sampling Pattern and Rotated BRIEF Descriptors
"""

import sys
import numpy as np
import pytest
from pathlib import Path
from scipy.ndimage import gaussian_filter

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from src.features import descriptor, sampling_pattern
from src.features.sampling_pattern import SamplingPattern
from src.preprocessing import transforms


def smooth_noise(size=128, seed=0):
    rng = np.random.default_rng(seed)
    image = gaussian_filter(rng.random((size, size)), sigma=3.0)
    image = (image - image.min()) / (image.max() - image.min())
    return image.astype(np.float32)


INTERIOR_POINTS = np.array([[40, 40], [64, 64], [80, 50], [50, 85], [90, 90]], dtype=np.float64)


# ==================== Sampling pattern ====================

def test_default_pattern_shape():
    pattern = sampling_pattern.default_sampling_pattern(256)

    assert len(pattern) == 256
    assert pattern.pairs.shape == (256, 4)
    assert pattern.version == sampling_pattern.PATTERN_VERSION
    assert np.abs(pattern.pairs).max() <= 13
    assert pattern.extent <= 13 * np.sqrt(2) + 1e-9


def test_default_pattern_is_read_only():
    pattern = sampling_pattern.default_sampling_pattern()
    with pytest.raises(ValueError):
        pattern.pairs[0, 0] = 99


def test_truncate_keeps_prefix():
    pattern = sampling_pattern.default_sampling_pattern(256)
    short = pattern.truncate(128)

    assert len(short) == 128
    assert np.array_equal(short.pairs, pattern.pairs[:128])
    assert pattern.truncate(256) is pattern


@pytest.mark.parametrize("length", [0, -1, 257])
def test_truncate_rejects_bad_lengths(length):
    with pytest.raises(ValueError):
        sampling_pattern.default_sampling_pattern(256).truncate(length)


def test_resolve_custom_array():
    pairs = np.array([[1, 0, -1, 0], [0, 1, 0, -1], [2, 2, -2, -2]])
    pattern = sampling_pattern.resolve_sampling_pattern(pairs, descriptor_length=2)

    assert pattern.version.startswith('custom')
    assert np.array_equal(pattern.pairs, pairs[:2])

    with pytest.raises(ValueError):
        sampling_pattern.resolve_sampling_pattern(pairs, descriptor_length=4)


@pytest.mark.parametrize("suffix", [".npy", ".json"])
def test_pattern_save_and_load(tmp_path, suffix):
    pattern = sampling_pattern.default_sampling_pattern(64)
    filepath = tmp_path / f"pattern{suffix}"

    sampling_pattern.save_sampling_pattern(pattern, str(filepath))
    loaded = sampling_pattern.resolve_sampling_pattern(str(filepath), descriptor_length=64)

    assert loaded == pattern


def test_pattern_file_errors(tmp_path):
    pattern = sampling_pattern.default_sampling_pattern(8)
    with pytest.raises(ValueError):
        sampling_pattern.save_sampling_pattern(pattern, str(tmp_path / "pattern.txt"))
    with pytest.raises(ValueError):
        sampling_pattern.load_sampling_pattern(str(tmp_path / "missing.npy"))


def test_evaluate_tests_on_ramp():
    ramp = np.tile(np.arange(7, dtype=np.float32), (7, 1))[np.newaxis]
    pairs = np.array([[1, 0, -1, 0], [-2, 0, 2, 0], [0, 1, 0, -1]])

    results = sampling_pattern.evaluate_tests(ramp, pairs)

    assert results.tolist() == [[True, False, False]]


def test_learn_sampling_pattern_decorrelated_subset():
    rng = np.random.default_rng(7)
    patches = np.stack([gaussian_filter(rng.random((31, 31)), sigma=2.0) for _ in range(150)])
    candidates = sampling_pattern.candidate_tests(radius=13, n_candidates=500, seed=1)

    pattern = sampling_pattern.learn_sampling_pattern(patches, n_pairs=32, candidates=candidates,
                                                      verbose=False)

    assert len(pattern) == 32
    assert len({tuple(p) for p in pattern.pairs}) == 32
    candidate_set = {tuple(p) for p in candidates}
    assert all(tuple(p) in candidate_set for p in pattern.pairs)

    # Highest variance test is picked first
    means = sampling_pattern.evaluate_tests(patches, candidates).mean(axis=0)
    first = candidates[np.argsort(np.abs(means - 0.5), kind='stable')[0]]
    assert np.array_equal(pattern.pairs[0], first)


def test_learn_sampling_pattern_needs_enough_candidates():
    patches = np.zeros((4, 31, 31))
    with pytest.raises(ValueError):
        sampling_pattern.learn_sampling_pattern(patches, n_pairs=10,
                                                candidates=np.array([[1, 0, -1, 0]]), verbose=False)


# ==================== Descriptors ====================

def test_descriptor_shape_and_type():
    desc, valid, angles = descriptor.compute_orb_descriptors(smooth_noise(), INTERIOR_POINTS)

    assert desc.shape == (len(INTERIOR_POINTS), 256)
    assert desc.dtype == bool
    assert valid.all()
    assert angles.shape == (len(INTERIOR_POINTS),)


def test_descriptor_is_deterministic():
    image = smooth_noise()
    desc1, _, _ = descriptor.compute_orb_descriptors(image, INTERIOR_POINTS)
    desc2, _, _ = descriptor.compute_orb_descriptors(image, INTERIOR_POINTS)
    assert np.array_equal(desc1, desc2)


def test_shorter_pattern_gives_prefix_bits():
    image = smooth_noise()
    full, _, _ = descriptor.compute_orb_descriptors(image, INTERIOR_POINTS)
    short, _, _ = descriptor.compute_orb_descriptors(
        image, INTERIOR_POINTS, pattern=sampling_pattern.default_sampling_pattern(128))

    assert short.shape == (len(INTERIOR_POINTS), 128)
    assert np.array_equal(short, full[:, :128])


def test_keypoint_at_corner_is_discarded():
    image = smooth_noise(size=20)
    desc, valid, angles = descriptor.compute_orb_descriptors(image, np.array([[0.0, 0.0]]),
                                                             edge_policy='discard')
    assert desc.shape == (0, 256)
    assert valid.tolist() == [False]
    assert len(angles) == 0


def test_keypoint_at_corner_is_kept_with_clamp():
    image = smooth_noise(size=20)
    desc, valid, _ = descriptor.compute_orb_descriptors(image, np.array([[0.0, 0.0]]),
                                                        edge_policy='clamp')
    assert desc.shape == (1, 256)
    assert valid.tolist() == [True]


def test_bilinear_interpolation():
    desc, valid, _ = descriptor.compute_orb_descriptors(smooth_noise(), INTERIOR_POINTS,
                                                        interpolation='bilinear')
    assert desc.shape == (len(INTERIOR_POINTS), 256)
    assert valid.all()


def test_unknown_policies_raise():
    with pytest.raises(ValueError):
        descriptor.compute_orb_descriptors(smooth_noise(), INTERIOR_POINTS, interpolation='cubic')
    with pytest.raises(ValueError):
        descriptor.compute_orb_descriptors(smooth_noise(), INTERIOR_POINTS, edge_policy='wrap')


def test_threaded_chunks_match_serial():
    image = smooth_noise(seed=3)
    rng = np.random.default_rng(0)
    points = rng.integers(25, 103, size=(40, 2)).astype(np.float64)

    serial, _, _ = descriptor.compute_orb_descriptors(image, points, n_workers=1)
    threaded, _, _ = descriptor.compute_orb_descriptors(image, points, n_workers=4, chunk_size=6)

    assert np.array_equal(serial, threaded)


def test_descriptor_survives_quarter_turn():
    image = smooth_noise(seed=5)
    rotated = transforms.rotate90(image)

    desc1, _, _ = descriptor.compute_orb_descriptors(image, INTERIOR_POINTS)
    desc2, _, _ = descriptor.compute_orb_descriptors(
        rotated, transforms.rotate90_points(INTERIOR_POINTS, image.shape))

    distances = (desc1 != desc2).sum(axis=1)
    assert max(distances) <= 0.1 * 256


def test_sample_image_policies():
    image = np.array([[0.0, 1.0], [2.0, 3.0]])
    xs = np.array([0.5, 1.0])
    ys = np.array([0.5, 0.0])

    assert np.allclose(descriptor.sample_image(image, xs, ys, 'bilinear'), [1.5, 1.0])
    # rint rounds half to even
    assert np.allclose(descriptor.sample_image(image, xs, ys, 'nearest'), [0.0, 1.0])


def test_pack_and_unpack_odd_length():
    rng = np.random.default_rng(1)
    bits = rng.random((5, 250)) > 0.5

    packed = descriptor.pack_descriptors(bits)

    assert packed.shape == (5, 32)
    assert packed.dtype == np.uint8
    assert np.array_equal(descriptor.unpack_descriptors(packed, 250), bits)


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
