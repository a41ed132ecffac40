"""
Tests for subtitle source loading and image dumps.
"""

import json

import numpy as np
import pytest
from PIL import Image

from subocr.errors import SourceError
from subocr.utils import (
    dump_images,
    load_bitmap,
    load_events,
    palette_array,
    raw_image,
    sanitize_path,
    validate_file,
)


def _write_manifest(source, entries, **extra):
    (source / "index.json").write_text(json.dumps({"events": entries, **extra}), encoding="utf-8")


class TestSanitizePath:
    def test_valid_directory(self, tmp_path):
        assert sanitize_path(str(tmp_path)) == tmp_path.resolve()

    def test_traversal_rejected(self, tmp_path):
        with pytest.raises(SourceError, match="traversal"):
            sanitize_path(f"{tmp_path}/../etc")

    def test_missing(self, tmp_path):
        with pytest.raises(SourceError, match="not found"):
            sanitize_path(tmp_path / "nope")

    def test_file_is_not_a_source(self, tmp_path):
        path = tmp_path / "index.json"
        path.write_text("{}")
        with pytest.raises(SourceError, match="not a directory"):
            sanitize_path(path)


class TestValidateFile:
    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "sub.gif"
        path.write_bytes(b"GIF89a")
        with pytest.raises(SourceError, match="Unsupported image extension"):
            validate_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceError, match="not found"):
            validate_file(tmp_path / "000001.png")

    def test_too_large(self, tmp_path, monkeypatch):
        monkeypatch.setattr("subocr.config.MAX_FILE_SIZE_MB", 0)
        path = tmp_path / "big.png"
        path.write_bytes(b"\0" * 2048)
        with pytest.raises(SourceError, match="too large"):
            validate_file(path)


class TestPaletteArray:
    def test_rgba(self):
        result = palette_array([[0, 0, 0, 0], [255, 255, 255, 255]])
        assert result.dtype == np.uint8
        assert result.shape == (2, 4)

    def test_bad_shape(self):
        with pytest.raises(SourceError):
            palette_array([[0, 0], [1, 1]])

    def test_out_of_range(self):
        with pytest.raises(SourceError, match="0..255"):
            palette_array([[0, 0, 300]])


class TestLoadBitmap:
    def test_indexed_png_keeps_indices_and_palette(self, tmp_path):
        bitmap = np.array([[0, 1, 2], [2, 1, 0]], dtype=np.uint8)
        path = tmp_path / "sub.png"
        img = Image.new("P", (3, 2), 0)
        img.putdata([int(v) for v in bitmap.flatten()])
        img.putpalette([0, 0, 0, 255, 255, 255, 10, 10, 10])
        img.save(path, transparency=0)

        indices, palette = load_bitmap(path)
        assert np.array_equal(indices, bitmap)
        assert palette.shape[1] == 4
        assert palette[0, 3] == 0
        assert list(palette[1]) == [255, 255, 255, 255]
        assert list(palette[2][:3]) == [10, 10, 10]

    def test_manifest_palette_overrides(self, tmp_path):
        path = tmp_path / "sub.png"
        img = Image.new("P", (2, 2), 1)
        img.putpalette([0, 0, 0, 255, 255, 255])
        img.save(path)

        override = np.array([[1, 2, 3, 4], [5, 6, 7, 8]], dtype=np.uint8)
        _, palette = load_bitmap(path, override)
        assert palette is override

    def test_grayscale_indices_with_manifest_palette(self, tmp_path):
        path = tmp_path / "sub.png"
        Image.fromarray(np.array([[0, 1], [1, 0]], dtype=np.uint8)).save(path)

        override = np.array([[0, 0, 0, 0], [255, 255, 255, 255]], dtype=np.uint8)
        indices, palette = load_bitmap(path, override)
        assert indices.tolist() == [[0, 1], [1, 0]]
        assert palette is override

    def test_rgb_becomes_rgba(self, tmp_path):
        path = tmp_path / "sub.png"
        Image.new("RGB", (5, 3), (255, 0, 0)).save(path)

        pixels, palette = load_bitmap(path)
        assert palette is None
        assert pixels.shape == (3, 5, 4)
        assert list(pixels[0, 0]) == [255, 0, 0, 255]


class TestLoadEvents:
    def test_events_in_manifest_order(self, subtitle_source):
        source = subtitle_source([4, 9, 2])
        events = load_events(source)

        assert [e.index for e in events] == [0, 1, 2]
        assert [(e.start, e.end) for e in events] == [(1.0, 2.0), (2.0, 3.0), (3.0, 4.0)]
        assert events[1].bitmap.shape == (14, 15)
        assert events[1].palette[0, 3] == 0

    def test_manifest_palette_applied(self, subtitle_source):
        source = subtitle_source([4])
        manifest = json.loads((source / "index.json").read_text(encoding="utf-8"))
        manifest["palette"] = [[0, 0, 0, 0], [200, 200, 200, 255], [0, 0, 0, 255]]
        (source / "index.json").write_text(json.dumps(manifest), encoding="utf-8")

        events = load_events(source)
        assert events[0].palette.tolist()[1] == [200, 200, 200, 255]

    def test_corrupt_image_becomes_empty_bitmap(self, subtitle_source):
        source = subtitle_source([3, 3, 3], corrupt={1})
        events = load_events(source)

        assert len(events) == 3
        assert events[1].bitmap.size == 0
        assert events[0].bitmap.size > 0
        assert events[2].bitmap.size > 0

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(SourceError, match="Manifest not found"):
            load_events(tmp_path)

    def test_invalid_manifest(self, tmp_path):
        (tmp_path / "index.json").write_text('{"events": [{"image": 3}]}', encoding="utf-8")
        with pytest.raises(SourceError, match="Invalid manifest"):
            load_events(tmp_path)

    def test_image_outside_source_rejected(self, tmp_path):
        source = tmp_path / "subs"
        source.mkdir()
        Image.new("L", (2, 2)).save(tmp_path / "outside.png")
        _write_manifest(source, [{"image": "../outside.png", "start": 0, "end": 1}])

        with pytest.raises(SourceError, match="escapes"):
            load_events(source)

    def test_missing_image(self, tmp_path):
        _write_manifest(tmp_path, [{"image": "000001.png", "start": 0, "end": 1}])
        with pytest.raises(SourceError, match="not found"):
            load_events(tmp_path)

    def test_event_ending_before_start(self, tmp_path):
        Image.new("L", (2, 2)).save(tmp_path / "000001.png")
        _write_manifest(tmp_path, [{"image": "000001.png", "start": 5, "end": 1}])

        with pytest.raises(SourceError, match="Invalid event 0"):
            load_events(tmp_path)


class TestDumpImages:
    def test_writes_numbered_pngs(self, tmp_path):
        images = [(3, np.zeros((4, 6), dtype=np.uint8)), (10, np.full((2, 2), 255, dtype=np.uint8))]
        count = dump_images(images, tmp_path / "dump")

        assert count == 2
        assert sorted(p.name for p in (tmp_path / "dump").iterdir()) == ["000003.png", "000010.png"]
        with Image.open(tmp_path / "dump" / "000003.png") as img:
            assert img.size == (6, 4)


class TestRawImage:
    def test_applies_palette(self):
        palette = np.array([[0, 0, 0, 0], [255, 0, 0, 255]], dtype=np.uint8)
        bitmap = np.array([[0, 1]], dtype=np.uint8)

        image = raw_image(bitmap, palette)

        assert image.shape == (1, 2, 4)
        assert image[0, 0].tolist() == [0, 0, 0, 0]
        assert image[0, 1].tolist() == [0, 0, 255, 255]  # BGRA

    def test_rgb_to_opencv_order(self):
        bitmap = np.zeros((2, 3, 3), dtype=np.uint8)
        bitmap[..., 0] = 200

        assert raw_image(bitmap)[0, 0].tolist() == [0, 0, 200]

    def test_grayscale_unchanged(self):
        bitmap = np.arange(6, dtype=np.uint8).reshape(2, 3)
        np.testing.assert_array_equal(raw_image(bitmap), bitmap)
