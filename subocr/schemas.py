"""
schemas.py

Pydantic models shared by every stage of the subtitle OCR pipeline.

TimedBitmapEvent and RecognitionConfig are frozen: events are owned by the
pipeline until a worker consumes them, and the config is read concurrently
by every worker thread without locking.
"""

import os
from collections import Counter
from enum import Enum
from typing import Dict, FrozenSet, List, Literal, Optional, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from . import config
from .errors import EngineError, InitFailure, PreprocessFailure, format_error_chain
from .srt_writer import format_timestamp


def _read_only(array: np.ndarray) -> np.ndarray:
    array = np.array(array, copy=True)
    array.flags.writeable = False
    return array


class Polarity(str, Enum):
    AUTO = "auto"
    LIGHT_TEXT = "light_text"
    DARK_TEXT = "dark_text"


class ErrorKind(str, Enum):
    PREPROCESS = "preprocess"
    ENGINE = "engine"
    INIT = "init"
    CANCELLED = "cancelled"


class TimedBitmapEvent(BaseModel):
    """
    One subtitle image with its display interval.

    ``bitmap`` holds palette indices when ``palette`` is set, otherwise
    grayscale (H, W) or RGB/RGBA (H, W, C) pixels. Times are in seconds.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    index: int = Field(ge=0)
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    bitmap: np.ndarray
    palette: Optional[np.ndarray] = None

    @field_validator("bitmap", mode="before")
    @classmethod
    def _freeze_bitmap(cls, value):
        return _read_only(np.asarray(value))

    @field_validator("palette", mode="before")
    @classmethod
    def _freeze_palette(cls, value):
        if value is None:
            return None
        return _read_only(np.asarray(value))

    @model_validator(mode="after")
    def _check_interval(self):
        if self.end < self.start:
            raise ValueError(
                f"event {self.index} ends ({self.end}) before it starts ({self.start})"
            )
        return self


class RecognitionConfig(BaseModel):
    """Read-only settings shared by the preprocessor and every engine."""

    model_config = ConfigDict(frozen=True)

    blacklisted_characters: FrozenSet[str] = frozenset(config.CHAR_BLACKLIST)
    whitelisted_characters: FrozenSet[str] = frozenset(config.CHAR_WHITELIST)
    language_model: str = config.OCR_LANGUAGE
    tessdata_dir: Optional[str] = config.TESSDATA_DIR
    worker_count: Union[Literal["auto"], int] = config.WORKER_COUNT
    dpi: int = Field(default=config.SOURCE_DPI, gt=0)
    border: int = Field(default=config.BORDER_PX, ge=0)
    alpha_threshold: int = Field(default=config.ALPHA_THRESHOLD, ge=0, le=255)
    luma_threshold: int = Field(default=config.LUMA_THRESHOLD, ge=0, le=255)
    polarity: Polarity = Polarity(config.POLARITY)
    page_seg_mode: int = Field(default=config.PAGE_SEG_MODE, ge=0, le=13)
    engine_variables: Tuple[Tuple[str, str], ...] = ()
    engine_timeout: float = Field(default=config.ENGINE_TIMEOUT_SEC, ge=0)
    clean_text: bool = config.ENABLE_TEXT_CLEANUP

    @field_validator("blacklisted_characters", "whitelisted_characters", mode="before")
    @classmethod
    def _split_characters(cls, value):
        if isinstance(value, str):
            return frozenset(value)
        return value

    @field_validator("blacklisted_characters", "whitelisted_characters")
    @classmethod
    def _single_characters(cls, value: FrozenSet[str]) -> FrozenSet[str]:
        for char in value:
            if len(char) != 1:
                raise ValueError(f"expected single characters, got {char!r}")
        return value

    @field_validator("worker_count")
    @classmethod
    def _positive_workers(cls, value):
        if value != "auto" and value < 1:
            raise ValueError("worker_count must be a positive integer or 'auto'")
        return value

    @field_validator("language_model")
    @classmethod
    def _non_empty_language(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("language_model must not be empty")
        return value.strip()

    def resolved_worker_count(self) -> int:
        """Number of worker threads, with "auto" mapped to the CPU count."""
        if self.worker_count == "auto":
            return os.cpu_count() or 1
        return self.worker_count


class RecognizedLine(BaseModel):
    """Text recognized for one event."""

    index: int
    start: float
    end: float
    text: str
    worker: Optional[str] = None


_KIND_BY_EXCEPTION = (
    (PreprocessFailure, ErrorKind.PREPROCESS),
    (InitFailure, ErrorKind.INIT),
    (EngineError, ErrorKind.ENGINE),
)


class RecognitionError(BaseModel):
    """
    Failure record for one event.

    Carries the event's timing so it can be reported without the bitmap.
    ``causes`` is the flattened exception chain, outermost first.
    """

    index: int
    start: float
    end: float
    kind: ErrorKind
    message: str
    causes: List[str] = Field(default_factory=list)
    worker: Optional[str] = None

    @classmethod
    def from_exception(
        cls,
        event: TimedBitmapEvent,
        exc: BaseException,
        worker: Optional[str] = None,
    ) -> "RecognitionError":
        kind = ErrorKind.ENGINE
        for exc_type, exc_kind in _KIND_BY_EXCEPTION:
            if isinstance(exc, exc_type):
                kind = exc_kind
                break

        chain = format_error_chain(exc)
        return cls(
            index=event.index,
            start=event.start,
            end=event.end,
            kind=kind,
            message=chain[0],
            causes=chain[1:],
            worker=worker,
        )

    @classmethod
    def cancelled(cls, event: TimedBitmapEvent) -> "RecognitionError":
        return cls(
            index=event.index,
            start=event.start,
            end=event.end,
            kind=ErrorKind.CANCELLED,
            message="recognition cancelled before the image was processed",
        )

    def format(self) -> str:
        """Render the error and its cause chain for a log or terminal."""
        header = (
            f"Error while running OCR on subtitle image ({self.index + 1} - "
            f"{format_timestamp(self.start)} --> {format_timestamp(self.end)}) "
            f"[{self.kind.value}]: {self.message}"
        )
        return "\n".join([header] + [f"\t caused by: {cause}" for cause in self.causes])


class BatchResult(BaseModel):
    """Terminal artifact of a batch: ordered lines plus collected errors."""

    lines: List[RecognizedLine] = Field(default_factory=list)
    errors: List[RecognitionError] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.lines) + len(self.errors)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def error_counts(self) -> Dict[str, int]:
        return dict(Counter(error.kind.value for error in self.errors))
