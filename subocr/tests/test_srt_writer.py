"""
Tests for the SRT writer.
"""

import pytest

from subocr.schemas import RecognizedLine
from subocr.srt_writer import SRTWriter, format_timestamp


def _line(index, start, end, text):
    return RecognizedLine(index=index, start=start, end=end, text=text)


class TestFormatTimestamp:
    @pytest.mark.parametrize(
        "seconds, expected",
        [
            (0, "00:00:00,000"),
            (125.34, "00:02:05,340"),
            (3661.5, "01:01:01,500"),
            (59.9996, "00:01:00,000"),
            (-2.0, "00:00:00,000"),
        ],
    )
    def test_formats(self, seconds, expected):
        assert format_timestamp(seconds) == expected


class TestSRTWriter:
    def test_render(self):
        lines = [
            _line(0, 1.2, 4.8, "First subtitle line."),
            _line(1, 5.1, 6.3, "Second\nsubtitle."),
        ]
        assert SRTWriter().render(lines) == (
            "1\n00:00:01,200 --> 00:00:04,800\nFirst subtitle line.\n"
            "\n"
            "2\n00:00:05,100 --> 00:00:06,300\nSecond\nsubtitle.\n"
        )

    def test_empty_lines_skipped_and_renumbered(self):
        lines = [
            _line(0, 1, 2, "one"),
            _line(1, 2, 3, ""),
            _line(2, 3, 4, "  \n"),
            _line(3, 4, 5, "two"),
        ]
        rendered = SRTWriter().render(lines)
        assert "1\n00:00:01,000" in rendered
        assert "2\n00:00:04,000 --> 00:00:05,000\ntwo\n" in rendered
        assert "3\n" not in rendered

    def test_write_file(self, tmp_path):
        output = tmp_path / "out" / "movie.srt"
        count = SRTWriter().write([_line(0, 0, 1, "Olá"), _line(1, 1, 2, "")], output)

        assert count == 1
        assert output.read_text(encoding="utf-8") == "1\n00:00:00,000 --> 00:00:01,000\nOlá\n"

    def test_write_stdout(self, capsys):
        count = SRTWriter().write([_line(0, 0, 1, "hi")])
        assert count == 1
        assert capsys.readouterr().out == "1\n00:00:00,000 --> 00:00:01,000\nhi\n"

    def test_nothing_to_write(self, tmp_path):
        output = tmp_path / "empty.srt"
        assert SRTWriter().write([], output) == 0
        assert output.read_text(encoding="utf-8") == ""
