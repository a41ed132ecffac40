"""
postprocessor.py

Cleanup of raw Tesseract output before it becomes a subtitle line.

Handles:
- Unicode normalization (NFC)
- Form feed and zero-width characters left by the engine
- Whitespace artifacts inside and around lines
- Blank lines between subtitle rows
"""

import re
import unicodedata

_INVISIBLE = dict.fromkeys(
    map(ord, "\x0c\u200b\u200c\u200d\u200e\u200f\ufeff"), None
)


def clean_text(text: str) -> str:
    """
    Apply all cleanup steps to the text recognized for one subtitle.

    Subtitle rows stay on separate lines; empty rows are dropped.
    """
    if not text:
        return ""

    text = remove_invisible(text)
    text = unicodedata.normalize("NFC", text)

    rows = (fix_whitespace(row) for row in text.splitlines())
    return "\n".join(row for row in rows if row)


def remove_invisible(text: str) -> str:
    """Remove the page separator and zero-width / directional marks."""
    return text.translate(_INVISIBLE)


def fix_whitespace(text: str) -> str:
    """
    Fix common OCR whitespace artifacts on a single row.

    - Collapse runs of spaces and tabs into one space
    - Remove leading/trailing whitespace
    """
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()
