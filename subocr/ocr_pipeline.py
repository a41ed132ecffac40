"""
ocr_pipeline.py

Main orchestrator for the subtitle OCR module.

Coordinates the per-event pipeline: preprocessing -> OCR -> text cleanup,
fanned out over a fixed pool of worker threads. Each event is an
independent unit of work; a failure on one event is recorded and the
batch carries on. Results are handed to the ResultAggregator, which
restores source order.
"""

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from . import config as defaults
from .aggregator import Outcome, ResultAggregator
from .engine import EngineFactory, ThreadLocalEnginePool, prepare_engine_environment
from .errors import PoolConstructionFailure, PreprocessFailure, SubOCRError
from .postprocessor import clean_text
from .preprocessor import preprocess_bitmap
from .schemas import (
    BatchResult,
    RecognitionConfig,
    RecognitionError,
    RecognizedLine,
    TimedBitmapEvent,
)

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[int], Executor]
PreprocessFn = Callable[[np.ndarray, Optional[np.ndarray], RecognitionConfig], np.ndarray]

# Type alias for progress callbacks: (done: int, total: int) -> None
ProgressCallback = Optional[Callable[[int, int], None]]


def thread_pool_executor(workers: int) -> Executor:
    return ThreadPoolExecutor(
        max_workers=workers,
        thread_name_prefix=defaults.WORKER_THREAD_PREFIX,
    )


class ParallelRecognitionOrchestrator:
    """
    Runs a batch of subtitle events through OCR on a fixed worker pool.

    Usage:
        orchestrator = ParallelRecognitionOrchestrator(RecognitionConfig())
        result = orchestrator.run(events)
        writer.write(result.lines, "movie.srt")
    """

    def __init__(
        self,
        config: RecognitionConfig,
        engine_factory: Optional[EngineFactory] = None,
        executor_factory: Optional[ExecutorFactory] = None,
        preprocess: PreprocessFn = preprocess_bitmap,
        postprocess: Callable[[str], str] = clean_text,
        aggregator: Optional[ResultAggregator] = None,
    ):
        self.config = config
        self._engine_factory = engine_factory
        self._executor_factory = executor_factory or thread_pool_executor
        self._preprocess = preprocess
        self._postprocess = postprocess
        self._aggregator = aggregator or ResultAggregator()
        self.engines: Optional[ThreadLocalEnginePool] = None

    def run(
        self,
        events: Iterable[TimedBitmapEvent],
        cancel_event: Optional[threading.Event] = None,
        progress_cb: ProgressCallback = None,
    ) -> BatchResult:
        """
        Recognize every event of a batch.

        Args:
            events: Timed bitmaps, enumerated once. Indices must be unique.
            cancel_event: When set, events not yet started are recorded as
                cancelled instead of being recognized.
            progress_cb: Called with (done, total) after each event.

        Returns:
            BatchResult holding one line or one error per event.

        Raises:
            PoolConstructionFailure: The worker pool could not be created or
                could not start its threads. No partial result is produced.
            ValueError: Two events share the same index.
        """
        events = list(events)
        indices = [event.index for event in events]
        if len(set(indices)) != len(indices):
            raise ValueError("subtitle events must have unique indices")

        workers = self.config.resolved_worker_count()
        start_time = time.monotonic()
        logger.info(
            "Recognizing %d subtitle images with %d worker(s) (lang=%s)",
            len(events), workers, self.config.language_model,
        )

        prepare_engine_environment()
        engines = ThreadLocalEnginePool(self.config, self._engine_factory)
        self.engines = engines

        outcomes = self._dispatch(events, engines, workers, cancel_event, progress_cb)
        result = self._aggregator.aggregate(outcomes, expected_indices=indices)

        logger.info(
            "OCR finished in %.1fs: %d lines, %d errors, engines built per thread: %s",
            time.monotonic() - start_time,
            len(result.lines),
            len(result.errors),
            engines.constructions,
        )
        return result

    def _dispatch(
        self,
        events: List[TimedBitmapEvent],
        engines: ThreadLocalEnginePool,
        workers: int,
        cancel_event: Optional[threading.Event],
        progress_cb: ProgressCallback,
    ) -> List[Tuple[int, Outcome]]:
        try:
            executor = self._executor_factory(workers)
        except Exception as e:
            raise PoolConstructionFailure(
                f"could not create a pool of {workers} worker thread(s)"
            ) from e

        outcomes: List[Tuple[int, Outcome]] = []
        with executor:
            futures: Dict = {}
            try:
                for event in events:
                    future = executor.submit(
                        self._process_event, event, engines, cancel_event
                    )
                    futures[future] = event
            except RuntimeError as e:
                executor.shutdown(wait=True, cancel_futures=True)
                raise PoolConstructionFailure("could not start worker threads") from e

            for done, future in enumerate(as_completed(futures), start=1):
                event = futures[future]
                try:
                    outcome = future.result()
                except Exception as e:
                    logger.exception("Unexpected failure on subtitle image %d", event.index)
                    outcome = RecognitionError.from_exception(event, e)

                outcomes.append((event.index, outcome))
                if progress_cb:
                    progress_cb(done, len(events))

        return outcomes

    def _process_event(
        self,
        event: TimedBitmapEvent,
        engines: ThreadLocalEnginePool,
        cancel_event: Optional[threading.Event],
    ) -> Outcome:
        """One unit of work; runs on a pool thread."""
        worker = threading.current_thread().name

        if cancel_event is not None and cancel_event.is_set():
            return RecognitionError.cancelled(event)

        try:
            image = self._run_preprocess(event)
            text = engines.recognize_on_this_thread(image)
        except SubOCRError as e:
            logger.debug("Subtitle image %d failed on %s: %s", event.index, worker, e)
            return RecognitionError.from_exception(event, e, worker=worker)

        if self.config.clean_text:
            text = self._postprocess(text)

        return RecognizedLine(
            index=event.index,
            start=event.start,
            end=event.end,
            text=text,
            worker=worker,
        )

    def _run_preprocess(self, event: TimedBitmapEvent) -> np.ndarray:
        try:
            return self._preprocess(event.bitmap, event.palette, self.config)
        except PreprocessFailure:
            raise
        except Exception as e:
            raise PreprocessFailure(f"could not prepare bitmap: {e}") from e


def recognize_events(
    events: Iterable[TimedBitmapEvent],
    config: Optional[RecognitionConfig] = None,
    **kwargs,
) -> BatchResult:
    """
    Recognize a batch of events with default Tesseract engines.

    Extra keyword arguments go to ParallelRecognitionOrchestrator.run.
    """
    orchestrator = ParallelRecognitionOrchestrator(config or RecognitionConfig())
    return orchestrator.run(events, **kwargs)
