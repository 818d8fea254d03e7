from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional


class AppError(Exception):
    # Base class for domain errors (intended, meaningful failures).
    def details(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": str(self)}


class CounselorNotFound(AppError):
    # Raised when the counselor id does not exist.
    def __init__(self, counselor_id: str):
        super().__init__(f"Counselor not found: {counselor_id}")
        self.counselor_id = counselor_id

    def details(self) -> Dict[str, Any]:
        return {**super().details(), "counselor_id": self.counselor_id}


class AnalysisRunNotFound(AppError):
    # Raised when a run id is not part of the counselor's history.
    def __init__(self, counselor_id: str, run_id: str):
        super().__init__(f"Analysis run {run_id} not found for counselor {counselor_id}")
        self.counselor_id = counselor_id
        self.run_id = run_id

    def details(self) -> Dict[str, Any]:
        return {**super().details(), "counselor_id": self.counselor_id, "run_id": self.run_id}


class NoSubjectsFound(AppError):
    # Raised when the counselor has no associated students.
    def __init__(self, counselor_id: str):
        super().__init__(f"No students are assigned to counselor {counselor_id}")
        self.counselor_id = counselor_id

    def details(self) -> Dict[str, Any]:
        return {**super().details(), "counselor_id": self.counselor_id}


class NoSubmissionsFound(AppError):
    # Raised when no survey submission exists at all.
    def __init__(self, counselor_id: str):
        super().__init__(f"No survey submissions to analyze for counselor {counselor_id}")
        self.counselor_id = counselor_id

    def details(self) -> Dict[str, Any]:
        return {**super().details(), "counselor_id": self.counselor_id}


class NoNewSubmissions(AppError):
    # Raised when every submission was already consumed by an earlier run.
    def __init__(
        self,
        counselor_id: str,
        last_run_at: Optional[datetime],
        total_submissions: int,
        consumed_submissions: int,
        stale_submissions: int = 0,
    ):
        since = last_run_at.isoformat() if last_run_at else "the last analysis"
        counts = f"{consumed_submissions} of {total_submissions} already analyzed"
        if stale_submissions:
            counts += f", {stale_submissions} completed before the last run"
        super().__init__(f"No new submissions since {since} ({counts})")
        self.counselor_id = counselor_id
        self.last_run_at = last_run_at
        self.total_submissions = total_submissions
        self.consumed_submissions = consumed_submissions
        self.stale_submissions = stale_submissions

    def details(self) -> Dict[str, Any]:
        return {
            **super().details(),
            "counselor_id": self.counselor_id,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "total_submissions": self.total_submissions,
            "consumed_submissions": self.consumed_submissions,
            "stale_submissions": self.stale_submissions,
        }


class NarrativeServiceFailure(AppError):
    # Raised when the text-generation service fails for the aggregate narrative.
    reason = "generic"

    def details(self) -> Dict[str, Any]:
        return {**super().details(), "reason": self.reason}


class NarrativeQuotaExceeded(NarrativeServiceFailure):
    # Raised when the provider reports an exhausted quota / rate limit.
    reason = "quota"


class NarrativeAuthError(NarrativeServiceFailure):
    # Raised when the provider rejects the API credentials.
    reason = "credentials"
