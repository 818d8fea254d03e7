from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional, Sequence

from survey_risk.app.logging import get_logger
from survey_risk.db.models import AnalysisRun, Submission

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeltaSelection:
    new_submissions: List[Submission]
    last_run_at: Optional[datetime]
    consumed_ids: FrozenSet[str]
    total_submissions: int
    # Ids an earlier run already folded in.
    consumed_count: int = 0
    # Never consumed, but completed before the latest run.
    stale_count: int = 0


def last_run_timestamp(prior_runs: Sequence[AnalysisRun]) -> Optional[datetime]:
    stamps = [r.created_at for r in prior_runs if r.created_at is not None]
    return max(stamps) if stamps else None


def consumed_submission_ids(prior_runs: Sequence[AnalysisRun]) -> FrozenSet[str]:
    ids: set = set()
    for run in prior_runs:
        ids.update(run.consumed_submission_ids)
    return frozenset(ids)


def _is_new(sub: Submission, consumed: FrozenSet[str], last_run_at: Optional[datetime]) -> bool:
    # Both criteria apply: an id check alone misses legacy runs without
    # provenance, a timestamp check alone misses clock skew.
    if sub.submission_id in consumed:
        return False
    if sub.completed_at is None or last_run_at is None:
        return True
    return sub.completed_at > last_run_at


def select_delta(all_submissions: Sequence[Submission], prior_runs: Sequence[AnalysisRun]) -> DeltaSelection:
    """
    Split the submission history into what no prior run has consumed yet.

    With no prior runs everything is new. Otherwise a submission is new when
    its id was never recorded as consumed AND it completed after the latest
    run (or carries no completion time). Original order is preserved.
    """
    total = len(all_submissions)
    if not prior_runs:
        return DeltaSelection(list(all_submissions), None, frozenset(), total)

    last_run_at = last_run_timestamp(prior_runs)
    consumed = consumed_submission_ids(prior_runs)
    fresh = [s for s in all_submissions if _is_new(s, consumed, last_run_at)]
    consumed_count = sum(1 for s in all_submissions if s.submission_id in consumed)
    stale_count = total - len(fresh) - consumed_count

    logger.info(
        "Delta selected",
        extra={
            "total_submissions": total,
            "new_submissions": len(fresh),
            "consumed_submissions": consumed_count,
            "stale_submissions": stale_count,
            "prior_runs": len(prior_runs),
            "last_run_at": last_run_at.isoformat() if last_run_at else None,
        },
    )
    return DeltaSelection(fresh, last_run_at, consumed, total, consumed_count, stale_count)


def select_new(all_submissions: Sequence[Submission], prior_runs: Sequence[AnalysisRun]) -> List[Submission]:
    return select_delta(all_submissions, prior_runs).new_submissions
