"""
Subtitle OCR module

Converts timed subtitle bitmaps (DVD / Blu-ray / broadcast subtitle
images) into time-ordered text lines using Tesseract, with one engine
per worker thread and per-image failure isolation.

Public API:
    ParallelRecognitionOrchestrator - Run a batch of events on a worker pool
    recognize_events                - One-call batch recognition
    ThreadLocalEnginePool           - One engine per worker thread
    preprocess_bitmap               - Bitmap + palette -> OCR-ready image
    ResultAggregator                - Order-restoring fan-in of outcomes
    TimedBitmapEvent, RecognitionConfig, RecognizedLine,
    RecognitionError, BatchResult   - Data models
"""

from .aggregator import ResultAggregator
from .engine import TesseractEngine, ThreadLocalEnginePool
from .errors import (
    EngineError,
    InitFailure,
    PoolConstructionFailure,
    PreprocessFailure,
    SourceError,
    SubOCRError,
)
from .ocr_pipeline import ParallelRecognitionOrchestrator, recognize_events
from .preprocessor import preprocess_bitmap
from .schemas import (
    BatchResult,
    ErrorKind,
    Polarity,
    RecognitionConfig,
    RecognitionError,
    RecognizedLine,
    TimedBitmapEvent,
)
from .srt_writer import SRTWriter

__all__ = [
    "ParallelRecognitionOrchestrator",
    "recognize_events",
    "ThreadLocalEnginePool",
    "TesseractEngine",
    "preprocess_bitmap",
    "ResultAggregator",
    "SRTWriter",
    "TimedBitmapEvent",
    "RecognitionConfig",
    "RecognizedLine",
    "RecognitionError",
    "BatchResult",
    "ErrorKind",
    "Polarity",
    "SubOCRError",
    "PreprocessFailure",
    "EngineError",
    "InitFailure",
    "PoolConstructionFailure",
    "SourceError",
]
