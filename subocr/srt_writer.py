"""
srt_writer.py

SubRip output for recognized subtitle lines.

Lines are written in the order given (the pipeline hands them over sorted
by source index), re-numbered sequentially from 1. Lines whose text is
empty after recognition are skipped since SRT has no use for blank cues.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional, TextIO, Union

logger = logging.getLogger(__name__)


def format_timestamp(seconds: float) -> str:
    """
    Convert seconds to SRT timestamp format: HH:MM:SS,mmm

    Args:
        seconds: Time in seconds (e.g., 125.340)

    Returns:
        Formatted timestamp string (e.g., "00:02:05,340")
    """
    if seconds < 0:
        seconds = 0.0

    total_ms = int(round(seconds * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)

    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


class SRTWriter:
    """
    Writes recognized lines as a SubRip file.

    SRT format:
        1
        00:00:01,200 --> 00:00:04,800
        First subtitle line.

        2
        00:00:05,100 --> 00:00:06,300
        Second subtitle.
    """

    def render(self, lines: Iterable) -> str:
        """Build the SRT document for lines exposing start, end and text."""
        return "\n".join(self._blocks(lines))

    def _blocks(self, lines: Iterable) -> List[str]:
        blocks: List[str] = []
        for line in lines:
            text = line.text.strip("\n")
            if not text.strip():
                logger.debug("Skipping empty subtitle at index %s", line.index)
                continue
            blocks.append(
                f"{len(blocks) + 1}\n"
                f"{format_timestamp(line.start)} --> {format_timestamp(line.end)}\n"
                f"{text}\n"
            )
        return blocks

    def write(self, lines: Iterable, output_path: Optional[Union[str, Path]] = None) -> int:
        """
        Write recognized lines as SRT.

        Args:
            lines: RecognizedLine objects, sorted by index.
            output_path: Destination file. Writes to stdout when None.

        Returns:
            Number of subtitle entries written.
        """
        blocks = self._blocks(lines)
        content = "\n".join(blocks)
        count = len(blocks)

        if output_path is None:
            self._write_stream(sys.stdout, content)
            logger.info("SRT written: %d subtitles -> <stdout>", count)
            return count

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            self._write_stream(f, content)

        logger.info("SRT written: %d subtitles -> %s", count, output_path)
        return count

    @staticmethod
    def _write_stream(stream: TextIO, content: str) -> None:
        stream.write(content)
        stream.flush()
