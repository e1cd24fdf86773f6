"""
Image I/O utilities for the segmentation server.
"""
import cv2
import numpy as np
from skimage import io as skio
from skimage.util import img_as_ubyte


def to_rgb_uint8(img: np.ndarray) -> np.ndarray:
    """Any decoded image (gray, gray+alpha, RGB, RGBA; 8/16-bit or float) as RGB uint8."""
    if img.ndim == 3 and img.shape[2] in (1, 2):
        # gray or gray+alpha: drop alpha
        img = img[:, :, 0]
    if img.ndim == 2:
        img = np.repeat(img[:, :, None], 3, axis=-1)
    else:
        img = img[:, :, :3]
    return np.ascontiguousarray(img_as_ubyte(img))


def load_image(path: str) -> np.ndarray:
    """Load image as RGB numpy array (H, W, 3)."""
    return to_rgb_uint8(skio.imread(path))


def save_rgb_png(image: np.ndarray, path: str) -> None:
    """Save an RGB image (H, W, 3) as PNG."""
    # Convert RGB to BGR for OpenCV
    bgr = cv2.cvtColor(image.astype(np.uint8), cv2.COLOR_RGB2BGR)
    cv2.imwrite(path, bgr)


def save_mask_png(mask: np.ndarray, path: str) -> None:
    """Save a single-channel mask (H, W) as a grayscale PNG."""
    cv2.imwrite(path, mask.astype(np.uint8))
