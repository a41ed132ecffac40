"""
errors.py

Exception hierarchy for the subtitle OCR pipeline.

Per-item failures (PreprocessFailure, EngineError, InitFailure) are raised
inside a worker and converted to RecognitionError records by the pipeline.
Only PoolConstructionFailure and SourceError stop a whole batch.
"""

from typing import List


class SubOCRError(Exception):
    """Base class for all pipeline errors."""

    pass


class PreprocessFailure(SubOCRError):
    """Raised when a subtitle bitmap cannot be turned into an OCR image."""

    pass


class EngineError(SubOCRError):
    """Raised when the recognition engine fails on a single image."""

    pass


class InitFailure(SubOCRError):
    """Raised when the recognition engine cannot be constructed on a thread."""

    pass


class PoolConstructionFailure(SubOCRError):
    """Raised when the worker pool cannot be created or cannot start threads."""

    pass


class SourceError(SubOCRError):
    """Raised when the subtitle source directory or manifest is unusable."""

    pass


def format_error_chain(exc: BaseException) -> List[str]:
    """
    Flatten an exception and its causes into a list of messages.

    Follows ``__cause__`` first, then ``__context__`` unless it was
    suppressed with ``raise ... from None``. Each link contributes its
    message, or its class name when the message is empty.
    """
    chain: List[str] = []
    seen = set()
    current = exc

    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = str(current).strip()
        chain.append(message or type(current).__name__)

        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None

    return chain
