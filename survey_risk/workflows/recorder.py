from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from survey_risk.app.logging import get_logger
from survey_risk.db.models import AnalysisRun
from survey_risk.db.repository import SQLiteRepository, utc_now

logger = get_logger(__name__)


class AnalysisRecorder:
    """
    Persists a finished analysis as an AnalysisRun.

    Run ids are the creation time in epoch milliseconds, bumped past the
    counselor's latest id so ids stay distinct and increasing within one
    history. Nothing is written until record() is called, and it is the
    pipeline's last step.
    """

    def __init__(self, repo: SQLiteRepository, clock: Callable[[], datetime] = utc_now):
        self.repo = repo
        self.clock = clock

    def next_run_id(self, counselor_id: str, now: datetime) -> str:
        candidate = int(now.timestamp() * 1000)
        last = self.repo.latest_run_id(counselor_id)
        if last is not None and last.isdigit() and int(last) >= candidate:
            candidate = int(last) + 1
        return str(candidate)

    def record(
        self,
        counselor_id: str,
        run_payload: Dict[str, Any],
        consumed_submission_ids: Iterable[str],
        created_at: Optional[datetime] = None,
    ) -> AnalysisRun:
        now = created_at or self.clock()
        run = AnalysisRun(
            run_id=self.next_run_id(counselor_id, now),
            counselor_id=counselor_id,
            created_at=now,
            result=run_payload.get("result", {}),
            subject_count=int(run_payload.get("subjectCount", 0)),
            submission_count=int(run_payload.get("submissionCount", 0)),
            surveys_used=list(run_payload.get("surveysUsed", [])),
            per_subject_scores=run_payload.get("perSubjectPerSurveyScores", {}),
            consumed_submission_ids=frozenset(consumed_submission_ids),
        )
        self.repo.append_analysis_run(run)
        logger.info(
            "Analysis run recorded",
            extra={
                "counselor_id": counselor_id,
                "analysis_run_id": run.run_id,
                "submission_count": run.submission_count,
                "subject_count": run.subject_count,
            },
        )
        return run
