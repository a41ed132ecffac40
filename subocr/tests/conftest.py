"""
Shared fixtures: synthetic subtitle events and a recognition engine double.
"""

import json
import threading
import time

import numpy as np
import pytest
from PIL import Image

from subocr.errors import EngineError
from subocr.schemas import RecognitionConfig, TimedBitmapEvent

TRANSPARENT, TEXT, OUTLINE = 0, 1, 2

# Typical DVD palette: transparent background, white text, black outline
PALETTE = np.array(
    [[0, 0, 0, 0], [255, 255, 255, 255], [0, 0, 0, 255]], dtype=np.uint8
)


def indexed_bitmap(width: int, height: int = 8, margin: int = 3) -> np.ndarray:
    """White text block of width x height, outlined, on a transparent field."""
    bitmap = np.full((height + 2 * margin, width + 2 * margin), TRANSPARENT, dtype=np.uint8)
    bitmap[margin - 1:margin + height + 1, margin - 1:margin + width + 1] = OUTLINE
    bitmap[margin:margin + height, margin:margin + width] = TEXT
    return bitmap


class FakeEngine:
    """
    Engine double. Reads the width of the text box back as the line text,
    and refuses to run on any thread but the one that built it.
    """

    def __init__(self, config, delay=None, fail_widths=()):
        self.config = config
        self.owner = threading.get_ident()
        self.delay = delay
        self.fail_widths = set(fail_widths)
        self.calls = 0

    def recognize(self, image):
        if threading.get_ident() != self.owner:
            raise AssertionError("engine used outside its owning thread")
        self.calls += 1
        width = image.shape[1]
        if self.delay:
            time.sleep(self.delay(width))
        if width in self.fail_widths:
            raise EngineError(f"cannot read image of width {width}")
        return f"line {width}"


@pytest.fixture
def fake_engine():
    return FakeEngine


@pytest.fixture
def config():
    # No border, so the recognized width equals the text block width
    return RecognitionConfig(border=0, worker_count=4)


@pytest.fixture
def make_event():
    """Event i carries a text block i + 1 pixels wide, shown from i to i + 0.75s."""

    def _make(index: int, empty: bool = False) -> TimedBitmapEvent:
        bitmap = np.zeros((0, 0), dtype=np.uint8) if empty else indexed_bitmap(index + 1)
        return TimedBitmapEvent(
            index=index,
            start=float(index),
            end=float(index) + 0.75,
            bitmap=bitmap,
            palette=PALETTE,
        )

    return _make


def save_indexed_png(path, bitmap: np.ndarray) -> None:
    """Save palette indices as a P mode PNG with index 0 transparent."""
    height, width = bitmap.shape
    img = Image.new("P", (width, height), 0)
    img.putdata([int(v) for v in bitmap.flatten()])
    img.putpalette([0, 0, 0, 255, 255, 255, 0, 0, 0])
    img.save(path, transparency=0)


@pytest.fixture
def subtitle_source(tmp_path):
    """
    Build a source directory: one P mode PNG per width plus index.json.

    Entry i is shown at [i + 1, i + 2)s. Entries listed in ``corrupt`` are
    written as garbage bytes instead of an image.
    """

    def _build(widths, corrupt=()):
        source = tmp_path / "subs"
        source.mkdir()
        entries = []
        for i, width in enumerate(widths):
            name = f"{i + 1:06d}.png"
            if i in corrupt:
                (source / name).write_bytes(b"not an image")
            else:
                save_indexed_png(source / name, indexed_bitmap(width))
            entries.append({"image": name, "start": i + 1.0, "end": i + 2.0})
        (source / "index.json").write_text(json.dumps({"events": entries}), encoding="utf-8")
        return source

    return _build
