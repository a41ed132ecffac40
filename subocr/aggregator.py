"""
aggregator.py

Fan-in of per-event outcomes into a BatchResult.

Workers finish in whatever order the scheduler picks. The aggregator is
the one place where source order is restored: recognized lines are sorted
by event index, errors are kept as they came.
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple, Union

from .schemas import BatchResult, ErrorKind, RecognitionError, RecognizedLine

logger = logging.getLogger(__name__)

Outcome = Union[RecognizedLine, RecognitionError]


class ResultAggregator:
    """Collects (index, outcome) pairs and checks that each index appears once."""

    def aggregate(
        self,
        outcomes: Iterable[Tuple[int, Outcome]],
        expected_indices: Optional[Iterable[int]] = None,
    ) -> BatchResult:
        """
        Build a BatchResult from unordered outcomes.

        Args:
            outcomes: (index, RecognizedLine | RecognitionError) pairs in
                completion order.
            expected_indices: Indices of the submitted events. When given,
                every one of them must have exactly one outcome.

        Raises:
            ValueError: An outcome is tagged with the wrong index, an index
                has two outcomes, or an expected index has none.
        """
        lines: List[RecognizedLine] = []
        errors: List[RecognitionError] = []
        seen: Set[int] = set()

        for index, outcome in outcomes:
            if outcome.index != index:
                raise ValueError(
                    f"outcome for index {index} is tagged with index {outcome.index}"
                )
            if index in seen:
                raise ValueError(f"duplicate outcome for index {index}")
            seen.add(index)

            if isinstance(outcome, RecognizedLine):
                lines.append(outcome)
            else:
                errors.append(outcome)

        if expected_indices is not None:
            expected = set(expected_indices)
            missing = expected - seen
            unexpected = seen - expected
            if missing or unexpected:
                raise ValueError(
                    f"outcomes do not match submitted events: "
                    f"missing={sorted(missing)}, unexpected={sorted(unexpected)}"
                )

        lines.sort(key=lambda line: line.index)

        logger.info(
            "Batch aggregated: %d recognized, %d failed", len(lines), len(errors)
        )
        return BatchResult(lines=lines, errors=errors)


def log_errors(result: BatchResult) -> None:
    """
    Log every failed event with its cause chain, then a per-kind summary.

    Events cancelled before they started are only counted in the summary.
    """
    for error in sorted(result.errors, key=lambda e: e.index):
        if error.kind != ErrorKind.CANCELLED:
            logger.warning(error.format())

    if result.errors:
        summary = ", ".join(
            f"{kind}={count}" for kind, count in sorted(result.error_counts().items())
        )
        logger.warning(
            "OCR failed on %d of %d subtitle images (%s)",
            len(result.errors), result.total, summary,
        )
