import logging
import os
from dataclasses import dataclass, asdict

import cv2
import numpy as np
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend for server environment
import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)

DARK_THRESHOLD = 100
DEFAULT_STRIDE = 4
AREA_SCALE = 1500  # dark ratio -> displayed area figure


@dataclass
class BrightnessResult:
    """Display-only numbers produced by the brightness sampler"""
    sampled: int
    dark_pixels: int
    dark_ratio: float
    average_brightness: float
    edge_segments: int
    area_estimate: int

    def to_dict(self):
        return asdict(self)


def load_rgb(data: bytes) -> np.ndarray:
    """Decode encoded image bytes into an H x W x 3 RGB array"""
    if not data:
        raise ValueError("Empty image data")
    image = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image data")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def _sample_brightness(pixels: np.ndarray, stride: int) -> np.ndarray:
    if stride < 1:
        raise ValueError(f"Stride must be at least 1, got {stride}")
    flat = np.asarray(pixels).reshape(-1, 3)[::stride].astype(np.float64)
    return flat.sum(axis=1) / 3.0


def sample_brightness(pixels, stride=DEFAULT_STRIDE, threshold=DARK_THRESHOLD):
    """
    Visit every Nth pixel of an RGB grid and derive a coarse darkness score.

    Args:
        pixels: H x W x 3 array of red/green/blue intensities in [0, 255]
        stride (int): Visit every ``stride``-th pixel in row-major order
        threshold (float): Pixels with mean intensity below this count as dark

    Returns:
        BrightnessResult with the dark-pixel ratio, average brightness, the
        number of dark/light transitions between consecutive samples and a
        linearly scaled area estimate
    """
    brightness = _sample_brightness(pixels, stride)
    sampled = int(brightness.size)
    if sampled == 0:
        return BrightnessResult(0, 0, 0.0, 0.0, 0, 0)

    dark = brightness < threshold
    dark_pixels = int(np.count_nonzero(dark))
    dark_ratio = dark_pixels / sampled
    edge_segments = int(np.count_nonzero(dark[1:] != dark[:-1]))

    result = BrightnessResult(
        sampled=sampled,
        dark_pixels=dark_pixels,
        dark_ratio=round(dark_ratio, 4),
        average_brightness=round(float(brightness.mean()), 2),
        edge_segments=edge_segments,
        area_estimate=int(round(dark_ratio * AREA_SCALE)),
    )
    logger.info(f"Brightness scan: {dark_pixels}/{sampled} dark samples, {edge_segments} segments")
    return result


def brightness_histogram(pixels, output_path, stride=DEFAULT_STRIDE, threshold=DARK_THRESHOLD):
    """Save a histogram of sampled brightness with the dark threshold marked"""
    brightness = _sample_brightness(pixels, stride)

    plt.figure(figsize=(8, 4))
    plt.hist(brightness, bins=32, range=(0, 255), color='slategray')
    plt.axvline(threshold, color='indigo', linestyle='--', label=f'dark < {threshold}')
    plt.title('Sampled brightness')
    plt.xlabel('Brightness')
    plt.ylabel('Samples')
    plt.legend()
    plt.tight_layout()
    plt.savefig(output_path)
    plt.close()
    return os.path.basename(output_path)
