"""
preprocessor.py

Turns a decoded subtitle bitmap into an image Tesseract can read.

Subtitle bitmaps arrive as palette indices (DVD/VobSub style) or as
direct RGB(A)/grayscale pixels. Every path ends in the same place:
black text on a white background, cropped to the text and padded with
a white border. Tesseract's own inversion is disabled, so the polarity
decision made here is the only one.

All functions are pure. They can run on any worker thread.
"""

import logging
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

from .errors import PreprocessFailure
from .schemas import Polarity, RecognitionConfig

logger = logging.getLogger(__name__)

INK = 0
PAPER = 255

# Rec. 709 luma coefficients, applied to linear RGB
_LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722])


def preprocess_bitmap(
    bitmap: np.ndarray,
    palette: Optional[np.ndarray],
    config: RecognitionConfig,
) -> np.ndarray:
    """
    Run the full preprocessing pipeline on a single subtitle bitmap.

    Args:
        bitmap: Palette indices (H, W) when ``palette`` is given, else
            grayscale (H, W) or RGB/RGBA (H, W, 3|4) pixels.
        palette: (N, 3) RGB or (N, 4) RGBA color table, or None.
        config: Thresholds, polarity policy and border size.

    Returns:
        uint8 image, 0 for text and 255 for background.

    Raises:
        PreprocessFailure: Empty bitmap, malformed palette, palette index
            out of range, or no visible text pixels.
    """
    validate_bitmap(bitmap, palette)

    luma, alpha = resolve_luminance(bitmap, palette)
    polarity = detect_polarity(luma, alpha, config)
    mask = ink_mask(luma, alpha, polarity, config)

    x, y, w, h = ink_bounding_box(mask)
    logger.debug(
        "Bitmap %dx%d -> text box %dx%d at (%d, %d), polarity=%s",
        mask.shape[1], mask.shape[0], w, h, x, y, polarity.value,
    )
    return render_ink(mask[y:y + h, x:x + w], config.border)


def validate_bitmap(bitmap: np.ndarray, palette: Optional[np.ndarray]) -> None:
    """Reject inputs the rest of the pipeline cannot interpret."""
    if bitmap is None or bitmap.size == 0:
        raise PreprocessFailure("subtitle bitmap is empty")

    if palette is None:
        if bitmap.ndim == 2:
            return
        if bitmap.ndim == 3 and bitmap.shape[2] in (3, 4):
            return
        raise PreprocessFailure(f"unsupported bitmap shape {bitmap.shape}")

    if bitmap.ndim != 2:
        raise PreprocessFailure(
            f"indexed bitmap must be 2-D, got shape {bitmap.shape}"
        )
    if not np.issubdtype(bitmap.dtype, np.integer):
        raise PreprocessFailure(f"indexed bitmap must hold integers, got {bitmap.dtype}")
    if palette.ndim != 2 or palette.shape[0] == 0 or palette.shape[1] not in (3, 4):
        raise PreprocessFailure(f"malformed palette of shape {palette.shape}")

    low, high = int(bitmap.min()), int(bitmap.max())
    if low < 0 or high >= palette.shape[0]:
        bad = low if low < 0 else high
        raise PreprocessFailure(
            f"palette index {bad} out of range for a {palette.shape[0]}-color palette"
        )


def srgb_to_linear(channel: np.ndarray) -> np.ndarray:
    """Convert sRGB channel values (0..255) to linear light (0..1)."""
    value = np.asarray(channel, dtype=np.float64) / 255.0
    return np.where(
        value <= 0.04045,
        value / 12.92,
        ((value + 0.055) / 1.055) ** 2.4,
    )


def rgb_to_luminance(rgb: np.ndarray) -> np.ndarray:
    """Linear luminance of sRGB colors on the last axis, scaled to 0..255."""
    return srgb_to_linear(rgb[..., :3]) @ _LUMA_WEIGHTS * 255.0


def palette_to_luminance(palette: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return per-entry luminance (0..255) and alpha for a color table."""
    luma = rgb_to_luminance(palette)
    if palette.shape[1] == 4:
        alpha = palette[:, 3].astype(np.float64)
    else:
        alpha = np.full(palette.shape[0], 255.0)
    return luma, alpha


def resolve_luminance(
    bitmap: np.ndarray, palette: Optional[np.ndarray]
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Resolve a bitmap to per-pixel luminance and alpha planes.

    Both planes are float arrays of shape (H, W) in the 0..255 range.
    """
    if palette is not None:
        luma, alpha = palette_to_luminance(palette)
        return luma[bitmap], alpha[bitmap]

    if bitmap.ndim == 2:
        luma = srgb_to_linear(bitmap) * 255.0
        return luma, np.full(bitmap.shape, 255.0)

    luma = rgb_to_luminance(bitmap)
    if bitmap.shape[2] == 4:
        alpha = bitmap[:, :, 3].astype(np.float64)
    else:
        alpha = np.full(bitmap.shape[:2], 255.0)
    return luma, alpha


def _border_ring(plane: np.ndarray) -> np.ndarray:
    return np.concatenate([plane[0, :], plane[-1, :], plane[:, 0], plane[:, -1]])


def detect_polarity(
    luma: np.ndarray, alpha: np.ndarray, config: RecognitionConfig
) -> Polarity:
    """
    Decide whether the text is lighter or darker than its background.

    An explicit ``config.polarity`` wins. Otherwise the outer ring of
    pixels stands in for the background:

    - mostly transparent ring: the subtitle is drawn on nothing, the text
      is the light part if any opaque pixel is bright, else the dark part;
    - opaque ring: text is dark on a bright background, light on a dark one.
    """
    if config.polarity != Polarity.AUTO:
        return config.polarity

    ring_alpha = _border_ring(alpha)
    ring_opaque = ring_alpha >= config.alpha_threshold

    if ring_opaque.mean() < 0.5:
        opaque = alpha >= config.alpha_threshold
        bright = luma >= config.luma_threshold
        if np.any(opaque & bright):
            return Polarity.LIGHT_TEXT
        return Polarity.DARK_TEXT

    background = float(np.median(_border_ring(luma)[ring_opaque]))
    if background >= config.luma_threshold:
        return Polarity.DARK_TEXT
    return Polarity.LIGHT_TEXT


def ink_mask(
    luma: np.ndarray,
    alpha: np.ndarray,
    polarity: Polarity,
    config: RecognitionConfig,
) -> np.ndarray:
    """Boolean (H, W) mask of the pixels that belong to the text."""
    opaque = alpha >= config.alpha_threshold
    if polarity == Polarity.DARK_TEXT:
        return opaque & (luma < config.luma_threshold)
    return opaque & (luma >= config.luma_threshold)


def ink_bounding_box(mask: np.ndarray) -> Tuple[int, int, int, int]:
    """Bounding box (x, y, w, h) of the text pixels."""
    points = cv2.findNonZero(mask.astype(np.uint8))
    if points is None:
        raise PreprocessFailure("no text pixels in bitmap (zero-area bounding box)")

    x, y, w, h = cv2.boundingRect(points)
    if w == 0 or h == 0:
        raise PreprocessFailure("no text pixels in bitmap (zero-area bounding box)")
    return int(x), int(y), int(w), int(h)


def render_ink(mask: np.ndarray, border: int) -> np.ndarray:
    """Draw the mask as black text on white and pad it with a white border."""
    image = np.where(mask, INK, PAPER).astype(np.uint8)
    image = np.ascontiguousarray(image)
    if border <= 0:
        return image
    return cv2.copyMakeBorder(
        image, border, border, border, border,
        cv2.BORDER_CONSTANT, value=PAPER,
    )


def engine_variables(config: RecognitionConfig) -> Dict[str, str]:
    """
    Engine settings derived from the recognition config.

    Learning is disabled because each thread has its own engine and
    adaptive learning would make results depend on scheduling. Inversion
    is disabled because preprocess_bitmap already fixed the polarity.
    User-supplied variables are applied last and override these.
    """
    variables = {
        "classify_enable_learning": "0",
        "tessedit_do_invert": "0",
    }
    if config.blacklisted_characters:
        variables["tessedit_char_blacklist"] = "".join(sorted(config.blacklisted_characters))
    if config.whitelisted_characters:
        variables["tessedit_char_whitelist"] = "".join(sorted(config.whitelisted_characters))

    for name, value in config.engine_variables:
        variables[name] = value
    return variables
