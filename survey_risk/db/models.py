# models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class Counselor:
    counselor_id: str
    first_name: str
    last_name: str


@dataclass(frozen=True)
class Subject:
    # A student; referenced by id from submissions and runs.
    subject_id: str
    counselor_id: str
    first_name: str
    last_name: str
    class_name: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Question:
    options: Tuple[str, ...]
    text: str = ""


@dataclass(frozen=True)
class Survey:
    survey_id: str
    counselor_id: str
    title: str
    questions: Tuple[Question, ...] = ()
    created_at: Optional[datetime] = None

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def option_count(self) -> int:
        # Uniform option count is assumed; the first question decides.
        if not self.questions:
            return 0
        return len(self.questions[0].options)

    @property
    def max_score(self) -> int:
        return self.question_count * self.option_count

    def descriptor(self) -> Dict[str, Any]:
        return {
            "id": self.survey_id,
            "title": self.title,
            "questionCount": self.question_count,
            "optionCount": self.option_count,
        }


@dataclass(frozen=True)
class Answer:
    question: str
    options: Tuple[str, ...]
    chosen_option: Optional[str]


@dataclass(frozen=True)
class Submission:
    submission_id: str
    counselor_id: str
    survey_id: str
    subject_id: str
    answers: Tuple[Answer, ...] = ()
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class AnalysisRun:
    run_id: str
    counselor_id: str
    created_at: Optional[datetime]
    result: Dict[str, Any] = field(default_factory=dict)
    subject_count: int = 0
    submission_count: int = 0
    surveys_used: List[Dict[str, Any]] = field(default_factory=list)
    per_subject_scores: Dict[str, Any] = field(default_factory=dict)
    consumed_submission_ids: FrozenSet[str] = frozenset()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.run_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "result": self.result,
            "subjectCount": self.subject_count,
            "submissionCount": self.submission_count,
            "surveysUsed": self.surveys_used,
            "perSubjectPerSurveyScores": self.per_subject_scores,
            "consumedSubmissionIds": sorted(self.consumed_submission_ids),
        }
