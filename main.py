"""
ORB descriptor demo
Matches an image against a rotated and translated copy of itself and draws the matches
"""

import argparse
import sys
import time
from pathlib import Path

import numpy as np

from config import cfg
from src.debug.visualizer import DebugVisualizer
from src.features.keypoint import keypoints_to_array
from src.features.orb_detector import ORBDetector, create_descriptor
from src.matching.matcher import get_matched_points, match_descriptors
from src.preprocessing import image_loader, transforms
from utils import io_utils
from utils.math_utils import angle_difference


def main(image_path: str = None, angle_deg: float = None, shift: tuple = None,
         num_keypoints: int = None, threshold: float = None, output_dir: str = None,
         enable_debug: bool = True):
    """
    Run the ORB matching demo

    Args:
        image_path: Input image (None = synthetic test image)
        angle_deg: Rotation of the second image in degrees (default: from config)
        shift: Translation (dx, dy) of the second image (default: from config)
        num_keypoints: Keypoints per image (default: from config)
        threshold: Normalized Hamming threshold for matching (default: from config)
        output_dir: Directory for output files (default: from config)
        enable_debug: Save visualizations

    Returns:
        Dictionary with keypoints, descriptors, matches and statistics
    """
    if angle_deg is None:
        angle_deg = cfg.DEMO_ROTATION_DEG
    if shift is None:
        shift = cfg.DEMO_TRANSLATION
    if threshold is None:
        threshold = cfg.MATCH_THRESHOLD
    if output_dir is None:
        output_dir = cfg.OUTPUT_DIR

    print("=" * 70)
    print(f"ORB Descriptor Demo - {image_path or 'synthetic image'}")
    print("=" * 70)

    start_time = time.time()

    # ========== Phase 1: Input images ==========
    print("\n[Phase 1] Preparing images")
    print("-" * 70)

    if image_path is None:
        img1 = image_loader.synthetic_test_image()
    else:
        img1, metadata = image_loader.load_grayscale(image_path)
        print(f"  Loaded {metadata['filename']} ({metadata['width']} x {metadata['height']})")

    angle = np.deg2rad(angle_deg)
    img2 = transforms.warp_image(img1, angle, translation=shift)
    print(f"  Second image: rotated {angle_deg:.1f} deg, shifted by {tuple(shift)}")

    # ========== Phase 2-3: ORB descriptors ==========
    print("\n[Phase 2-3] ORB keypoints and descriptors")
    print("-" * 70)

    orb = ORBDetector(num_keypoints=num_keypoints)
    print(f"  {orb}")

    desc1, keypoints1 = create_descriptor(img1, orb)
    desc2, keypoints2 = create_descriptor(img2, orb)
    print(f"  Image 1: {len(keypoints1)} keypoints, Image 2: {len(keypoints2)} keypoints")

    # ========== Phase 4: Matching ==========
    print("\n[Phase 4] Matching")
    print("-" * 70)

    matches = match_descriptors(desc1, desc2, threshold=threshold, debug=cfg.VERBOSE)

    # Ground truth: where each keypoint of image 1 should land in image 2
    correct = np.zeros(len(matches), dtype=bool)
    if matches:
        points1, points2 = get_matched_points(keypoints1, keypoints2, matches)
        expected = transforms.warp_points(points1, img1, angle, shift)
        errors = np.linalg.norm(expected - points2, axis=1)
        correct = errors < 3.0
    precision = float(correct.mean()) if matches else 0.0

    print(f"  Matches: {len(matches)}, correct (< 3 px): {int(correct.sum())} ({precision:.1%})")

    # Orientation should turn with the image
    orientation_error = None
    if correct.any():
        good = [m for m, ok in zip(matches, correct) if ok]
        diffs = angle_difference([keypoints2[m.train_idx].angle for m in good],
                                 [keypoints1[m.query_idx].angle + angle for m in good])
        orientation_error = float(np.degrees(np.median(np.abs(diffs))))
        print(f"  Median orientation error of correct matches: {orientation_error:.1f} deg")

    # ========== Outputs ==========
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    if cfg.SAVE_INTERMEDIATE_RESULTS:
        io_utils.save_image(img1, str(output_path / "images" / "image1.png"))
        io_utils.save_image(img2, str(output_path / "images" / "image2.png"))
        io_utils.save_features(keypoints1, desc1, str(output_path / "features" / "image1.npz"),
                               pattern_version=orb.pattern.version)
        io_utils.save_features(keypoints2, desc2, str(output_path / "features" / "image2.npz"),
                               pattern_version=orb.pattern.version)
        io_utils.save_matches(matches, str(output_path / "matches.json"),
                              metadata={'threshold': threshold, 'descriptor_length': orb.descriptor_length})

    if enable_debug:
        viz = DebugVisualizer(str(output_path / "debug"))
        viz.visualize_keypoints(img1, keypoints1, img_idx=1)
        viz.visualize_keypoints(img2, keypoints2, img_idx=2)
        viz.visualize_matches(img1, img2, keypoints1, keypoints2, matches, correct_mask=correct,
                              idx1=1, idx2=2)
        if matches:
            viz.plot_distance_histogram(matches, orb.descriptor_length)

    stats = {
        'keypoints_1': len(keypoints1),
        'keypoints_2': len(keypoints2),
        'matches': len(matches),
        'correct_matches': int(correct.sum()),
        'precision': precision,
        'orientation_error_deg': orientation_error,
        'rotation_deg': angle_deg,
        'translation': list(shift),
        'pattern_version': orb.pattern.version,
        'processing_time_seconds': time.time() - start_time
    }
    io_utils.save_json(stats, str(output_path / "reports" / "statistics.json"))

    elapsed = time.time() - start_time
    print("\n" + "=" * 70)
    print(f"DEMO COMPLETE in {elapsed:.1f} seconds - outputs saved to {output_dir}/")
    print("=" * 70)

    return {
        'keypoints': (keypoints1, keypoints2),
        'descriptors': (desc1, desc2),
        'matches': matches,
        'points': (keypoints_to_array(keypoints1), keypoints_to_array(keypoints2)),
        'stats': stats
    }


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Match an image against a rotated copy using ORB")
    parser.add_argument('--image', default=None, help="Input image (default: synthetic image)")
    parser.add_argument('--angle', type=float, default=None, help="Rotation in degrees")
    parser.add_argument('--shift', type=float, nargs=2, default=None, metavar=('DX', 'DY'),
                        help="Translation in pixels")
    parser.add_argument('--num-keypoints', type=int, default=None, help="Keypoints per image")
    parser.add_argument('--threshold', type=float, default=None,
                        help="Max Hamming distance as a fraction of the descriptor bits")
    parser.add_argument('--output', default=None, help="Output directory")
    parser.add_argument('--no-debug', action='store_true', help="Skip visualizations")
    return parser.parse_args(argv)


def cli(argv=None):
    args = parse_args(argv)

    try:
        main(
            image_path=args.image,
            angle_deg=args.angle,
            shift=tuple(args.shift) if args.shift is not None else None,
            num_keypoints=args.num_keypoints,
            threshold=args.threshold,
            output_dir=args.output,
            enable_debug=not args.no_debug
        )
    except Exception as e:
        print(f"\n[ERROR] ORB demo failed: {e}")
        import traceback
        traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(cli())
