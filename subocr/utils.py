"""
utils.py

Subtitle source loading, validation and image dumps.

A subtitle source is a directory holding one image per subtitle event
and an ``index.json`` manifest with the display times:

    {
      "palette": [[0, 0, 0, 0], [255, 255, 255, 255], ...],   (optional)
      "events": [
        {"image": "000001.png", "start": 1.25, "end": 3.5},
        ...
      ]
    }

Indexed (``P`` mode) images carry their own palette; the manifest palette,
when present, overrides it and also applies to ``L`` mode index images.
"""

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image
from pydantic import BaseModel, Field, ValidationError

from . import config
from .errors import SourceError
from .schemas import TimedBitmapEvent

logger = logging.getLogger(__name__)


class ManifestEntry(BaseModel):
    image: str
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)


class SourceManifest(BaseModel):
    events: List[ManifestEntry]
    palette: Optional[List[List[int]]] = None


def sanitize_path(path: Union[str, Path]) -> Path:
    """
    Validate a source directory path.

    Raises:
        SourceError: If the path contains traversal components, does not
            exist, or is not a directory.
    """
    raw = str(path)
    if ".." in Path(raw).parts:
        raise SourceError(f"Path traversal detected in: {raw}")

    resolved = Path(path).resolve()
    if not resolved.exists():
        raise SourceError(f"Source not found: {resolved}")
    if not resolved.is_dir():
        raise SourceError(f"Source is not a directory: {resolved}")
    return resolved


def resolve_image_path(source_dir: Path, name: str) -> Path:
    """Resolve a manifest image name, refusing paths outside the source dir."""
    candidate = (source_dir / name).resolve()
    if source_dir not in candidate.parents:
        raise SourceError(f"Image path escapes the source directory: {name}")
    return candidate


def validate_file(file_path: Path) -> None:
    """
    Validate file extension, size, and readability.

    Raises:
        SourceError: If validation fails.
    """
    if not file_path.is_file():
        raise SourceError(f"Image not found: {file_path}")

    ext = file_path.suffix.lower()
    if ext not in config.ALLOWED_EXTENSIONS:
        raise SourceError(
            f"Unsupported image extension '{ext}'. "
            f"Allowed: {config.ALLOWED_EXTENSIONS}"
        )

    size_mb = file_path.stat().st_size / (1024 * 1024)
    if size_mb > config.MAX_FILE_SIZE_MB:
        raise SourceError(
            f"Image too large: {size_mb:.1f}MB exceeds "
            f"limit of {config.MAX_FILE_SIZE_MB}MB"
        )


def load_manifest(source_dir: Path) -> SourceManifest:
    manifest_path = source_dir / config.MANIFEST_NAME
    if not manifest_path.is_file():
        raise SourceError(f"Manifest not found: {manifest_path}")

    try:
        return SourceManifest.model_validate_json(manifest_path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise SourceError(f"Invalid manifest {manifest_path.name}") from e


def palette_array(palette: List[List[int]]) -> np.ndarray:
    """Convert a manifest palette to an (N, 3|4) uint8 array."""
    array = np.asarray(palette, dtype=np.int64)
    if array.ndim != 2 or array.shape[1] not in (3, 4) or len(array) == 0:
        raise SourceError("Manifest palette must be a list of RGB or RGBA entries")
    if array.min() < 0 or array.max() > 255:
        raise SourceError("Manifest palette values must be within 0..255")
    return array.astype(np.uint8)


def _image_palette(img: Image.Image) -> np.ndarray:
    """RGBA palette of a ``P`` mode image, alpha taken from its transparency."""
    rgb = np.asarray(img.getpalette() or [], dtype=np.uint8).reshape(-1, 3)
    alpha = np.full((len(rgb), 1), 255, dtype=np.uint8)

    transparency = img.info.get("transparency")
    if isinstance(transparency, int) and transparency < len(rgb):
        alpha[transparency] = 0
    elif isinstance(transparency, (bytes, bytearray)):
        values = np.frombuffer(bytes(transparency), dtype=np.uint8)[: len(rgb)]
        alpha[: len(values), 0] = values

    return np.hstack([rgb, alpha])


def load_bitmap(
    path: Path, palette: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Load one subtitle image.

    Returns:
        (bitmap, palette): palette indices plus color table for indexed
        images, or RGBA pixels with a None palette.
    """
    with Image.open(path) as img:
        img.load()
        if img.mode == "P":
            indices = np.array(img)
            return indices, palette if palette is not None else _image_palette(img)
        if img.mode == "L" and palette is not None:
            return np.array(img), palette
        return np.array(img.convert("RGBA")), None


def load_events(source_dir: Union[str, Path]) -> List[TimedBitmapEvent]:
    """
    Load every subtitle event of a source directory, in manifest order.

    Events are indexed 0..N-1 in manifest order. An image that cannot be
    decoded is kept as an empty bitmap, so the failure is reported at its
    index by the OCR pipeline instead of shifting the others.

    Raises:
        SourceError: If the directory or manifest is unusable.
    """
    source = sanitize_path(source_dir)
    manifest = load_manifest(source)
    palette = palette_array(manifest.palette) if manifest.palette else None

    logger.info("Loading %d subtitle images from %s", len(manifest.events), source)

    events: List[TimedBitmapEvent] = []
    for index, entry in enumerate(manifest.events):
        image_path = resolve_image_path(source, entry.image)
        validate_file(image_path)

        try:
            bitmap, event_palette = load_bitmap(image_path, palette)
        except (OSError, ValueError) as e:
            logger.warning("Could not decode %s: %s", image_path.name, e)
            bitmap, event_palette = np.zeros((0, 0), dtype=np.uint8), None

        try:
            events.append(
                TimedBitmapEvent(
                    index=index,
                    start=entry.start,
                    end=entry.end,
                    bitmap=bitmap,
                    palette=event_palette,
                )
            )
        except ValidationError as e:
            raise SourceError(f"Invalid event {index} ({entry.image})") from e

    return events


def dump_images(
    images: Iterable[Tuple[int, np.ndarray]], directory: Union[str, Path]
) -> int:
    """
    Write images as NNNNNN.png files for inspection.

    Returns:
        Number of images written.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    count = 0
    for index, image in images:
        target = directory / f"{index:06d}.png"
        if not cv2.imwrite(str(target), image):
            raise OSError(f"Could not write image dump {target}")
        count += 1

    logger.info("Dumped %d images to %s", count, directory)
    return count


def raw_image(bitmap: np.ndarray, palette: Optional[np.ndarray] = None) -> np.ndarray:
    """
    A loaded bitmap as it would look on screen, before any preprocessing.

    Palette indices are resolved to their colors. Color images come back in
    OpenCV channel order (BGR / BGRA) so ``dump_images`` can write them.
    """
    if palette is not None:
        bitmap = palette[bitmap]
    if bitmap.ndim == 2:
        return np.ascontiguousarray(bitmap)
    code = cv2.COLOR_RGBA2BGRA if bitmap.shape[2] == 4 else cv2.COLOR_RGB2BGR
    return cv2.cvtColor(np.ascontiguousarray(bitmap), code)
