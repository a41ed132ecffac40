"""
run_ocr.py

Command-line entry point: OCR a directory of subtitle bitmaps into SRT.

Usage:
    subocr <source_dir>
    subocr <source_dir> -o movie.srt -l eng+fra -j 4
    subocr <source_dir> -c tessedit_char_blacklist='|' --dump dumps/
    subocr <source_dir> --dump-raw raw/
    python -m subocr.run_ocr <source_dir>

Exit status: 0 when every image was recognized, 1 when some failed (the
SRT file still holds the others), 2 on a fatal error, 130 on Ctrl-C.
"""

import argparse
import logging
import sys
import threading
from typing import List, Optional, Tuple

from . import config as defaults
from .aggregator import log_errors
from .errors import SubOCRError, format_error_chain
from .ocr_pipeline import ParallelRecognitionOrchestrator
from .preprocessor import preprocess_bitmap
from .schemas import BatchResult, Polarity, RecognitionConfig
from .srt_writer import SRTWriter
from .utils import dump_images, load_events, raw_image

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130

_POLARITIES = {
    "auto": Polarity.AUTO,
    "light": Polarity.LIGHT_TEXT,
    "dark": Polarity.DARK_TEXT,
}


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging for the application (stderr, SRT may go to stdout)."""
    level = logging.DEBUG if verbose else (logging.ERROR if quiet else logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(threadName)-12s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    logging.getLogger("PIL").setLevel(logging.WARNING)


def _engine_variable(value: str) -> Tuple[str, str]:
    name, sep, setting = value.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    return name.strip(), setting


def _worker_count(value: str):
    if value == "auto":
        return value
    try:
        count = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer or 'auto', got {value!r}")
    if count < 1:
        raise argparse.ArgumentTypeError("worker count must be at least 1")
    return count


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="subocr",
        description="Convert bitmap subtitles (a directory of images plus "
                    "index.json) to SRT with Tesseract OCR",
    )
    parser.add_argument("source", help="Directory with subtitle images and index.json")
    parser.add_argument(
        "-o", "--output", default=None,
        help="Output SRT file (default: stdout)",
    )
    parser.add_argument(
        "-l", "--lang", default=defaults.OCR_LANGUAGE,
        help="Tesseract language(s), e.g. 'eng' or 'eng+fra' (default: %(default)s)",
    )
    parser.add_argument(
        "--tessdata-dir", default=defaults.TESSDATA_DIR,
        help="Directory holding Tesseract traineddata files",
    )
    parser.add_argument(
        "-c", "--config", dest="engine_variables", action="append", default=[],
        type=_engine_variable, metavar="NAME=VALUE",
        help="Set a Tesseract variable; may be repeated",
    )
    parser.add_argument(
        "--blacklist", default=defaults.CHAR_BLACKLIST,
        help="Characters Tesseract must never output (default: %(default)r)",
    )
    parser.add_argument(
        "--whitelist", default=defaults.CHAR_WHITELIST,
        help="Only output these characters (default: no restriction)",
    )
    parser.add_argument(
        "--dpi", type=int, default=defaults.SOURCE_DPI,
        help="Source resolution passed to Tesseract (default: %(default)s)",
    )
    parser.add_argument(
        "--border", type=int, default=defaults.BORDER_PX,
        help="White border added around the text, in pixels (default: %(default)s)",
    )
    parser.add_argument(
        "--polarity", choices=sorted(_POLARITIES), default="auto",
        help="Text polarity of the bitmaps (default: %(default)s)",
    )
    parser.add_argument(
        "-j", "--threads", type=_worker_count, default=defaults.WORKER_COUNT,
        help="Number of OCR worker threads, or 'auto' (default: %(default)s)",
    )
    parser.add_argument(
        "--dump", default=None, metavar="DIR",
        help="Write the preprocessed images to DIR before running OCR",
    )
    parser.add_argument(
        "--dump-raw", default=None, metavar="DIR",
        help="Write the images as loaded, before preprocessing, to DIR",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RecognitionConfig:
    """RecognitionConfig from the defaults plus command-line overrides."""
    return RecognitionConfig(
        blacklisted_characters=args.blacklist,
        whitelisted_characters=args.whitelist,
        language_model=args.lang,
        tessdata_dir=args.tessdata_dir,
        worker_count=args.threads,
        dpi=args.dpi,
        border=args.border,
        polarity=_POLARITIES[args.polarity],
        engine_variables=tuple(args.engine_variables),
    )


def _dump_preprocessed(events, recognition_config: RecognitionConfig, directory: str) -> None:
    def images():
        for event in events:
            try:
                yield event.index, preprocess_bitmap(event.bitmap, event.palette, recognition_config)
            except SubOCRError as e:
                logger.debug("Not dumping image %d: %s", event.index, e)

    dump_images(images(), directory)


def _dump_raw(events, directory: str) -> None:
    def images():
        for event in events:
            if event.bitmap.size == 0:
                logger.debug("Not dumping empty image %d", event.index)
                continue
            try:
                yield event.index, raw_image(event.bitmap, event.palette)
            except IndexError:
                logger.debug("Not dumping image %d: palette index out of range", event.index)

    dump_images(images(), directory)


def _run_batch(orchestrator, events) -> Tuple[Optional[BatchResult], bool]:
    """
    Run the batch on a helper thread so Ctrl-C can cancel pending images.

    Returns the result (None if the batch raised) and whether the user
    interrupted it.
    """
    cancel_event = threading.Event()
    outcome = {}

    def report(done: int, total: int) -> None:
        logger.debug("OCR progress %d/%d", done, total)

    def work() -> None:
        try:
            outcome["result"] = orchestrator.run(
                events, cancel_event=cancel_event, progress_cb=report
            )
        except Exception as e:
            outcome["error"] = e

    runner = threading.Thread(target=work, name="ocr-batch")
    runner.start()

    interrupted = False
    while runner.is_alive():
        try:
            runner.join(0.2)
        except KeyboardInterrupt:
            if not interrupted:
                logger.warning("Interrupted, finishing the images already in progress...")
                cancel_event.set()
                interrupted = True

    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result"), interrupted


def _report_fatal(exc: BaseException) -> None:
    chain = format_error_chain(exc)
    print(f"An error occurred: {chain[0]}", file=sys.stderr)
    for cause in chain[1:]:
        print(f"  {cause}", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet)

    try:
        recognition_config = build_config(args)
        events = load_events(args.source)

        if args.dump_raw:
            _dump_raw(events, args.dump_raw)
        if args.dump:
            _dump_preprocessed(events, recognition_config, args.dump)

        orchestrator = ParallelRecognitionOrchestrator(recognition_config)
        result, interrupted = _run_batch(orchestrator, events)
    except (SubOCRError, ValueError, OSError) as e:
        _report_fatal(e)
        return EXIT_FATAL

    log_errors(result)
    if interrupted:
        logger.warning("OCR interrupted, no subtitle file written")
        return EXIT_INTERRUPTED

    try:
        SRTWriter().write(result.lines, args.output)
    except OSError as e:
        _report_fatal(e)
        return EXIT_FATAL

    return EXIT_PARTIAL if result.has_errors else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
