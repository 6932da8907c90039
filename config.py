"""
Global configuration parameters for the ORB feature matching pipeline
Oriented FAST corners + Rotated BRIEF descriptors + Hamming matching
Version 1.0
"""

class Config:
    """Global configuration class with all parameters for the ORB pipeline"""

    # ==================== Phase 1: Image Preprocessing ====================
    # Image normalization
    TARGET_IMAGE_SIZE = None  # None = keep original size, or tuple (width, height)

    # Demo input: rotation (degrees) and translation (pixels) of the second image
    DEMO_ROTATION_DEG = 150.0
    DEMO_TRANSLATION = (50, 40)
    SYNTHETIC_IMAGE_SIZE = (256, 256)  # (width, height) when no image is given

    # ==================== Phase 2: Corner Detection ====================
    # FAST segment test
    FAST_THRESHOLD = 0.08   # Intensity difference on the [0, 1] scale (~20/255)
    FAST_N = 9              # Contiguous circle pixels required (9-16)

    # Harris ranking
    HARRIS_K = 0.04
    HARRIS_WINDOW_SIZE = 5
    HARRIS_SIGMA = 1.5
    NMS_WINDOW_SIZE = 3

    # Image pyramid
    ORB_N_LEVELS = 8
    ORB_SCALE_FACTOR = 1.3
    PYRAMID_MIN_SIZE = 32   # Stop building levels below this size (pixels)

    # ==================== Phase 3: Orientation & Descriptor ====================
    ORB_N_KEYPOINTS = 1000
    PATCH_RADIUS = 15             # Intensity centroid window (circular)
    DESCRIPTOR_LENGTH = 256       # Number of sampling pairs = output bits
    BLUR_SIGMA = 2.0              # Smoothing before intensity comparisons
    INTERPOLATION = 'nearest'     # Options: 'nearest', 'bilinear'
    EDGE_POLICY = 'discard'       # Options: 'discard', 'clamp'
    SAMPLING_PATTERN = None       # None = embedded table, or path to .npy/.json

    # ==================== Phase 4: Matching ====================
    MATCH_THRESHOLD = 0.2         # Max Hamming distance as a fraction of bits
    RATIO_TEST_THRESHOLD = 0.8    # Lowe's ratio test, None or 0 = off
    MATCH_POLICY = 'one_to_one'   # Options: 'one_to_one', 'best'
    USE_CROSSCHECK = False

    # ==================== Sampling Pattern Learning ====================
    LEARN_CORRELATION_THRESHOLD = 0.2
    LEARN_CORRELATION_STEP = 0.05

    # ==================== General Settings ====================
    # Parallelism (1 = run inline)
    N_WORKERS = 1
    CHUNK_SIZE = 256

    # Logging
    VERBOSE = True
    SAVE_INTERMEDIATE_RESULTS = True

    # Output
    OUTPUT_DIR = "output"

    # Random seed for reproducibility
    RANDOM_SEED = 42


# Create a global instance
cfg = Config()
