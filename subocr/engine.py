"""
engine.py

Tesseract engine wrapper and per-thread engine ownership.

A TesseractEngine holds one initialized libtesseract API handle (language
data loaded, variables set) and is bound to the thread that built it. The
ThreadLocalEnginePool gives every worker thread its own engine, created
lazily on the first image the thread receives and reused for every image
after that. Engines are never shared between threads and never placed
behind a lock.
"""

import logging
import os
import threading
from collections import Counter
from typing import Callable, Dict, Optional

import numpy as np
from PIL import Image

from . import config as defaults
from .errors import EngineError, InitFailure
from .preprocessor import engine_variables
from .schemas import RecognitionConfig

logger = logging.getLogger(__name__)


def prepare_engine_environment() -> None:
    """
    One-time process setup, done before any worker thread starts.

    Tesseract's OpenMP threads would compete with the worker pool, so
    each engine is limited to a single thread unless the user already
    set OMP_THREAD_LIMIT. OpenMP reads the variable when libtesseract is
    loaded, so this runs before the first engine imports it.
    """
    os.environ.setdefault("OMP_THREAD_LIMIT", defaults.OMP_THREAD_LIMIT)


def _tesserocr():
    """Import the libtesseract binding on first engine construction."""
    try:
        import tesserocr
    except ImportError:
        raise ImportError(
            "tesserocr is required. Install it with: pip install tesserocr"
        )
    return tesserocr


class TesseractEngine:
    """
    One libtesseract API handle, confined to the thread that created it.

    Construction loads the language data and applies the page segmentation
    mode and engine variables once. A missing install
    or missing traineddata fails here (InitFailure) rather than on every
    image. ``recognize`` only hands a new image to the loaded handle.
    """

    def __init__(self, config: RecognitionConfig):
        self._owner = threading.get_ident()
        self._language = config.language_model
        self._timeout_ms = int(config.engine_timeout * 1000)
        self._dpi = config.dpi
        self._api = None

        try:
            tesserocr = _tesserocr()
        except ImportError as e:
            raise InitFailure(str(e)) from e

        data_path = {"path": config.tessdata_dir} if config.tessdata_dir else {}
        try:
            _, available = tesserocr.get_languages(**data_path)
        except Exception as e:
            raise InitFailure(f"could not list tesseract languages: {e}") from e

        missing = [
            lang for lang in self._language.split("+") if lang not in available
        ]
        if missing:
            raise InitFailure(
                f"tesseract language data not found: {', '.join(missing)} "
                f"(tessdata_dir={config.tessdata_dir or 'default'})"
            )

        api = tesserocr.PyTessBaseAPI(init=False)
        try:
            api.Init(lang=self._language, **data_path)
            api.SetPageSegMode(config.page_seg_mode)
            for name, value in engine_variables(config).items():
                if not api.SetVariable(name, value):
                    raise InitFailure(f"unknown tesseract variable {name!r}")
        except InitFailure:
            api.End()
            raise
        except Exception as e:
            api.End()
            raise InitFailure(f"could not initialize tesseract ({self._language}): {e}") from e

        self._api = api
        logger.debug(
            "Tesseract %s ready on thread %s (lang=%s, psm=%d)",
            tesserocr.tesseract_version().splitlines()[0],
            threading.current_thread().name, self._language, config.page_seg_mode,
        )

    def recognize(self, image: np.ndarray) -> str:
        """
        Recognize the text of one preprocessed image.

        Raises:
            EngineError: If Tesseract fails or times out on this image, or
                the engine is used from a thread other than its owner.
        """
        if threading.get_ident() != self._owner:
            raise EngineError("tesseract engine used outside its owning thread")
        if self._api is None:
            raise EngineError("tesseract engine already released")

        api = self._api
        try:
            api.SetImage(Image.fromarray(image))
            api.SetSourceResolution(self._dpi)
            if not api.Recognize(timeout=self._timeout_ms):
                raise EngineError(
                    "tesseract did not finish recognizing the image"
                    + (f" within {self._timeout_ms}ms" if self._timeout_ms else "")
                )
            return api.GetUTF8Text()
        except EngineError:
            raise
        except Exception as e:
            raise EngineError(f"tesseract failed: {e}") from e
        finally:
            api.Clear()

    def close(self) -> None:
        if self._api is not None:
            self._api.End()
            self._api = None


EngineFactory = Callable[[RecognitionConfig], object]


class ThreadLocalEnginePool:
    """
    Exactly one engine per worker thread, created on first use.

    Construction failure is final for the thread: the failure is kept in
    the thread's slot and every later image routed to that thread gets an
    InitFailure with the same cause. A failed recognition does not touch
    the slot, the engine is reused for the next image.
    """

    def __init__(
        self,
        config: RecognitionConfig,
        engine_factory: Optional[EngineFactory] = None,
    ):
        self.config = config
        self._factory = engine_factory or TesseractEngine
        self._local = threading.local()
        self._stats_lock = threading.Lock()
        self._constructions: Counter = Counter()

    @property
    def constructions(self) -> Dict[str, int]:
        """Engine construction attempts per thread name."""
        with self._stats_lock:
            return dict(self._constructions)

    def _engine_for_this_thread(self):
        thread_name = threading.current_thread().name

        if not hasattr(self._local, "engine"):
            with self._stats_lock:
                self._constructions[thread_name] += 1
            logger.info(
                "Initializing recognition engine on thread %s (lang=%s)",
                thread_name, self.config.language_model,
            )
            try:
                self._local.engine = self._factory(self.config)
                self._local.failure = None
            except Exception as e:
                logger.error("Engine initialization failed on thread %s: %s", thread_name, e)
                self._local.engine = None
                self._local.failure = e

        if self._local.failure is not None:
            raise InitFailure(
                f"no recognition engine on thread {thread_name}"
            ) from self._local.failure
        return self._local.engine

    def recognize_on_this_thread(self, image: np.ndarray) -> str:
        """
        Recognize ``image`` with the calling thread's engine.

        Every engine is built from the config the pool was created with, so
        callers pass only the image. A batch with different settings gets
        its own pool.

        Raises:
            InitFailure: The engine for this thread could not be built.
            EngineError: The engine failed on this image.
        """
        engine = self._engine_for_this_thread()
        try:
            return engine.recognize(image)
        except EngineError:
            raise
        except Exception as e:
            raise EngineError(f"recognition failed: {e}") from e

    def release_this_thread(self) -> None:
        """Drop the calling thread's engine (or cached failure), if any."""
        engine = getattr(self._local, "engine", None)
        if engine is not None and hasattr(engine, "close"):
            engine.close()
        for attr in ("engine", "failure"):
            if hasattr(self._local, attr):
                delattr(self._local, attr)
