from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .breakdown import per_subject_per_survey, score_frame, subject_totals, survey_statistics
from .fuzzy import DEFAULT_MAX_SCORE, risk_score
from .scale import max_score_for, score_answers
from survey_risk.db.models import Subject, Submission, Survey

UNKNOWN_NAME = "Unknown"


@dataclass
class ScoringResult:
    subjects: List[Dict[str, Any]] = field(default_factory=list)
    per_subject_per_survey: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    surveys: List[Dict[str, Any]] = field(default_factory=list)
    surveys_used: List[Dict[str, Any]] = field(default_factory=list)
    aggregate: Dict[str, Any] = field(default_factory=dict)
    submission_ids: List[str] = field(default_factory=list)


def submission_max_score(sub: Submission, survey: Optional[Survey]) -> int:
    # The survey descriptor decides; without one the submission's own shape is used.
    if survey is not None:
        return survey.max_score
    if not sub.answers:
        return 0
    return max_score_for(len(sub.answers), len(sub.answers[0].options))


def _answer_rows(sub: Submission, survey: Optional[Survey]) -> List[Dict[str, Any]]:
    title = survey.title if survey is not None else sub.survey_id
    return [{"survey": title, "question": a.question, "answer": a.chosen_option} for a in sub.answers]


def score_submissions(
    submissions: Sequence[Submission],
    surveys: Mapping[str, Survey],
    subjects: Mapping[str, Subject],
    default_max_score: float = DEFAULT_MAX_SCORE,
) -> ScoringResult:
    """
    Score a batch of submissions per submission, per student and in aggregate.

    Every crisp score comes from a fuzzy model built for its own maximum:
    a survey's maximum for per-survey scores, the sum of a student's survey
    maxima for the student score and the sum over all students for the
    aggregate.
    """
    rows: List[Dict[str, Any]] = []
    answer_rows: Dict[str, List[Dict[str, Any]]] = {}

    for sub in submissions:
        survey = surveys.get(sub.survey_id)
        raw = score_answers(sub.answers)
        max_score = submission_max_score(sub, survey)
        rows.append(
            {
                "submission_id": sub.submission_id,
                "subject_id": sub.subject_id,
                "survey_id": sub.survey_id,
                "raw_score": raw,
                "max_score": max_score if max_score > 0 else default_max_score,
                "risk_score": risk_score(raw, max_score, default_max_score),
            }
        )
        answer_rows[sub.submission_id] = _answer_rows(sub, survey)

    df = score_frame(rows)
    result = ScoringResult(submission_ids=[s.submission_id for s in submissions])
    if df.empty:
        return result

    result.per_subject_per_survey = per_subject_per_survey(df)

    # Only the submissions kept after re-take de-dup feed the narrative answers.
    answers_by_subject: Dict[str, List[Dict[str, Any]]] = {}
    for r in df.itertuples(index=False):
        answers_by_subject.setdefault(str(r.subject_id), []).extend(answer_rows.get(str(r.submission_id), []))

    for t in subject_totals(df).itertuples(index=False):
        subject_id = str(t.subject_id)
        subject = subjects.get(subject_id)
        result.subjects.append(
            {
                "subjectId": subject_id,
                "name": subject.full_name if subject is not None else UNKNOWN_NAME,
                "className": subject.class_name if subject is not None else None,
                "answers": answers_by_subject.get(subject_id, []),
                "rawScore": int(t.raw_score),
                "maxScore": float(t.max_score),
                "fuzzyScore": risk_score(float(t.raw_score), float(t.max_score), default_max_score),
            }
        )

    stats = {s["surveyId"]: s for s in survey_statistics(df)}
    for survey_id in (str(s) for s in df["survey_id"].unique()):
        survey = surveys.get(survey_id)
        descriptor = survey.descriptor() if survey is not None else {
            "id": survey_id,
            "title": survey_id,
            "questionCount": 0,
            "optionCount": 0,
        }
        result.surveys_used.append(descriptor)
        result.surveys.append({**descriptor, **stats.get(survey_id, {})})

    total_raw = float(df["raw_score"].sum())
    total_max = float(df["max_score"].sum())
    result.aggregate = {
        "rawScore": int(total_raw),
        "maxScore": total_max,
        "fuzzyScore": risk_score(total_raw, total_max, default_max_score),
        "subjectCount": len(result.subjects),
        "submissionCount": len(result.submission_ids),
    }
    return result
