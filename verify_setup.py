#!/usr/bin/env python3
"""
Setup Verification Script
Checks if all required dependencies are installed and the ORB pipeline runs.
"""

import sys

def check_dependencies():
    """Check if all required dependencies are installed."""
    print("="*70)
    print("Verifying ORB Matching Setup")
    print("="*70)

    all_ok = True

    # Check Python version
    print("\n1. Checking Python version...")
    version = sys.version_info
    if version.major == 3 and version.minor >= 8:
        print(f"   ✓ Python {version.major}.{version.minor}.{version.micro}")
    else:
        print(f"   ✗ Python {version.major}.{version.minor}.{version.micro}")
        print("     WARNING: Python 3.8 or higher is recommended")
        all_ok = False

    # Check NumPy
    print("\n2. Checking NumPy...")
    try:
        import numpy as np
        print(f"   ✓ NumPy {np.__version__}")
        # packbits/unpackbits bitorder needs NumPy >= 1.17
        np.packbits(np.ones((1, 8), dtype=bool), axis=1, bitorder='little')
    except ImportError:
        print("   ✗ NumPy not found")
        print("     Install with: pip install numpy")
        all_ok = False
    except TypeError:
        print("   ✗ NumPy is too old (bit order support missing)")
        print("     Install with: pip install --upgrade numpy")
        all_ok = False

    # Check SciPy
    print("\n3. Checking SciPy...")
    try:
        import scipy
        print(f"   ✓ SciPy {scipy.__version__}")
    except ImportError:
        print("   ✗ SciPy not found")
        print("     Install with: pip install scipy")
        all_ok = False

    # Check Pillow
    print("\n4. Checking Pillow...")
    try:
        import PIL
        from PIL import Image
        print(f"   ✓ Pillow {PIL.__version__}")
    except ImportError:
        print("   ✗ Pillow not found")
        print("     Install with: pip install pillow")
        all_ok = False

    # Check Matplotlib
    print("\n5. Checking Matplotlib...")
    try:
        import matplotlib
        print(f"   ✓ Matplotlib {matplotlib.__version__}")
    except ImportError:
        print("   ✗ Matplotlib not found")
        print("     Install with: pip install matplotlib")
        all_ok = False

    # Check pytest (tests only)
    print("\n6. Checking pytest...")
    try:
        import pytest
        print(f"   ✓ pytest {pytest.__version__}")
    except ImportError:
        print("   ℹ pytest not found (only needed for the test_phase*.py files)")
        print("     Install with: pip install -e .[test]")

    # Run the detector once
    print("\n7. Running ORB on a synthetic image...")
    if all_ok:
        try:
            from src.features.orb_detector import ORBDetector
            from src.preprocessing.image_loader import synthetic_test_image

            orb = ORBDetector(num_keypoints=100, verbose=False)
            keypoints, descriptors = orb.detect_and_compute(synthetic_test_image(128, 128))
            print(f"   ✓ {len(keypoints)} keypoints, descriptors {descriptors.shape}")
        except Exception as e:
            print(f"   ✗ ORB pipeline failed: {e}")
            all_ok = False
    else:
        print("   ⚠ Skipped (missing dependencies)")

    # Summary
    print("\n" + "="*70)
    if all_ok:
        print("✓ All dependencies are installed correctly!")
        print("  You can now run: python main.py --angle 150 --shift 50 40")
    else:
        print("✗ Some dependencies are missing!")
        print("\nQuick fix - Install all dependencies:")
        print("  pip install -e .")
    print("="*70)

    return all_ok

if __name__ == "__main__":
    success = check_dependencies()
    sys.exit(0 if success else 1)
