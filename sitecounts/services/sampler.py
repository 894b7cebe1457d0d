from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
import random

from sitecounts.schemas.items import Item, SelectionParameters, SelectionResult
from sitecounts.services.predicates import CandidateCheck, RejectReason, check_candidate

logger = logging.getLogger(__name__)

DUPLICATE = CandidateCheck(accepted=False, reason="duplicate")


class InvalidSelectionError(ValueError):
    """Raised when selection parameters violate the caller contract."""


@dataclass(slots=True)
class SampleReport:
    target_size: int
    selected: SelectionResult = field(default_factory=dict)
    attempts: int = 0
    rejections: Counter[RejectReason] = field(default_factory=Counter)

    @property
    def exhausted(self) -> bool:
        """True when the attempt budget ran out before the target size was met."""
        return len(self.selected) < self.target_size


def sample(
    pool: Sequence[Item],
    params: SelectionParameters,
    *,
    rng: random.Random | None = None,
) -> SelectionResult:
    return sample_with_report(pool, params, rng=rng).selected


def sample_with_report(
    pool: Sequence[Item],
    params: SelectionParameters,
    *,
    rng: random.Random | None = None,
) -> SampleReport:
    """Rejection-sample up to ``params.target_size`` distinct matching items.

    Draws are uniform over the whole pool and with replacement, so a previously
    rejected or accepted item may come up again; every draw, including one that
    hits a duplicate, spends one attempt. The loop is bounded by
    ``params.max_attempts`` and never scans the pool, so a result smaller than
    the target is a normal outcome when matches are sparse.
    """
    _validate(params)
    report = SampleReport(target_size=params.target_size)
    if not pool:
        return report

    draw = rng or random
    size = len(pool)
    while len(report.selected) < params.target_size and report.attempts < params.max_attempts:
        report.attempts += 1
        item = pool[draw.randrange(size)]
        check = _check(item, params, report.selected)
        if not check.accepted:
            report.rejections[check.reason] += 1
            continue
        report.selected[item.id] = item

    if report.exhausted:
        logger.debug(
            "attempt budget exhausted selected=%s target=%s attempts=%s rejections=%s",
            len(report.selected),
            params.target_size,
            report.attempts,
            dict(report.rejections),
        )
    return report


def _check(item: Item, params: SelectionParameters, selected: SelectionResult) -> CandidateCheck:
    check = check_candidate(item, params)
    if check.accepted and item.id in selected:
        return DUPLICATE
    return check


def _validate(params: SelectionParameters) -> None:
    if params.target_size < 0:
        raise InvalidSelectionError(f"target_size must be >= 0, got {params.target_size}")
    if params.max_attempts < 0:
        raise InvalidSelectionError(f"max_attempts must be >= 0, got {params.max_attempts}")
