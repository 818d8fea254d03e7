# repository.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional
from uuid import uuid4

from .connection import apply_schema, connect, db_session
from .models import AnalysisRun, Answer, Counselor, Question, Subject, Submission, Survey
from survey_risk.app.errors import AnalysisRunNotFound, CounselorNotFound


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    # Stored timestamps are ISO-8601; naive values are read as UTC.
    if not value:
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def answers_to_json(answers: Iterable[Answer]) -> str:
    return json.dumps(
        [
            {"question": a.question, "options": list(a.options), "chosenOption": a.chosen_option}
            for a in answers
        ],
        ensure_ascii=False,
    )


def answers_from_json(raw: Optional[str]) -> tuple:
    items = json.loads(raw) if raw else []
    out = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        out.append(
            Answer(
                question=str(item.get("question", "")),
                options=tuple(str(o) for o in (item.get("options") or [])),
                chosen_option=item.get("chosenOption"),
            )
        )
    return tuple(out)


class SQLiteRepository:
    """
    Storage for counselors and the records the scoring engine reads.

    Submissions and analysis runs are append-only: there is no update or
    delete method for either, and both are returned in insertion order.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def init_schema(self) -> None:
        apply_schema(self.db_path)

    # -------------------------
    # Counselors + students
    # -------------------------
    def upsert_counselor(self, c: Counselor) -> None:
        with db_session(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO counselors(counselor_id, first_name, last_name)
                VALUES (?, ?, ?)
                ON CONFLICT(counselor_id) DO UPDATE SET
                  first_name=excluded.first_name,
                  last_name=excluded.last_name
                """,
                (c.counselor_id, c.first_name, c.last_name),
            )

    def get_counselor(self, counselor_id: str) -> Counselor:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT counselor_id, first_name, last_name FROM counselors WHERE counselor_id = ?",
                (counselor_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise CounselorNotFound(counselor_id)
        return Counselor(row["counselor_id"], row["first_name"], row["last_name"])

    def upsert_subject(self, s: Subject) -> None:
        with db_session(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO subjects(subject_id, counselor_id, first_name, last_name, class_name)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(subject_id) DO UPDATE SET
                  counselor_id=excluded.counselor_id,
                  first_name=excluded.first_name,
                  last_name=excluded.last_name,
                  class_name=excluded.class_name
                """,
                (s.subject_id, s.counselor_id, s.first_name, s.last_name, s.class_name),
            )

    def list_subjects(self, counselor_id: str) -> List[Subject]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT subject_id, counselor_id, first_name, last_name, class_name
                FROM subjects
                WHERE counselor_id = ?
                ORDER BY last_name ASC, first_name ASC
                """,
                (counselor_id,),
            ).fetchall()
            return [
                Subject(
                    subject_id=r["subject_id"],
                    counselor_id=r["counselor_id"],
                    first_name=r["first_name"],
                    last_name=r["last_name"],
                    class_name=r["class_name"],
                )
                for r in rows
            ]
        finally:
            conn.close()

    # -------------------------
    # Surveys
    # -------------------------
    def upsert_survey(self, survey: Survey) -> None:
        questions = [{"text": q.text, "options": list(q.options)} for q in survey.questions]
        with db_session(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO surveys(survey_id, counselor_id, title, questions_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(survey_id) DO UPDATE SET
                  title=excluded.title,
                  questions_json=excluded.questions_json
                """,
                (
                    survey.survey_id,
                    survey.counselor_id,
                    survey.title,
                    json.dumps(questions, ensure_ascii=False),
                    to_iso(survey.created_at or utc_now()),
                ),
            )

    def list_surveys(self, counselor_id: str) -> List[Survey]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT survey_id, counselor_id, title, questions_json, created_at
                FROM surveys
                WHERE counselor_id = ?
                ORDER BY created_at ASC
                """,
                (counselor_id,),
            ).fetchall()
        finally:
            conn.close()

        out: List[Survey] = []
        for r in rows:
            questions = tuple(
                Question(
                    options=tuple(str(o) for o in (q.get("options") or [])),
                    text=str(q.get("text", "")),
                )
                for q in json.loads(r["questions_json"] or "[]")
                if isinstance(q, dict)
            )
            out.append(
                Survey(
                    survey_id=r["survey_id"],
                    counselor_id=r["counselor_id"],
                    title=r["title"],
                    questions=questions,
                    created_at=parse_iso(r["created_at"]),
                )
            )
        return out

    # -------------------------
    # Submissions (append-only)
    # -------------------------
    def insert_submission(self, sub: Submission) -> Submission:
        # A missing id or timestamp is filled in; the stored record is returned.
        submission_id = sub.submission_id or str(uuid4())
        completed_at = sub.completed_at or utc_now()
        with db_session(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO submissions(submission_id, counselor_id, survey_id, subject_id,
                                        answers_json, completed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    submission_id,
                    sub.counselor_id,
                    sub.survey_id,
                    sub.subject_id,
                    answers_to_json(sub.answers),
                    to_iso(completed_at),
                ),
            )
        return Submission(
            submission_id=submission_id,
            counselor_id=sub.counselor_id,
            survey_id=sub.survey_id,
            subject_id=sub.subject_id,
            answers=tuple(sub.answers),
            completed_at=completed_at,
        )

    def list_submissions(self, counselor_id: str) -> List[Submission]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT submission_id, counselor_id, survey_id, subject_id, answers_json, completed_at
                FROM submissions
                WHERE counselor_id = ?
                ORDER BY seq ASC
                """,
                (counselor_id,),
            ).fetchall()
        finally:
            conn.close()

        return [
            Submission(
                submission_id=r["submission_id"],
                counselor_id=r["counselor_id"],
                survey_id=r["survey_id"],
                subject_id=r["subject_id"],
                answers=answers_from_json(r["answers_json"]),
                completed_at=parse_iso(r["completed_at"]),
            )
            for r in rows
        ]

    # -------------------------
    # Analysis runs (append-only)
    # -------------------------
    def append_analysis_run(self, run: AnalysisRun) -> None:
        with db_session(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO analysis_runs(run_id, counselor_id, created_at, result_json,
                                          subject_count, submission_count, surveys_used_json,
                                          per_subject_scores_json, consumed_ids_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.run_id,
                    run.counselor_id,
                    to_iso(run.created_at),
                    json.dumps(run.result, ensure_ascii=False),
                    run.subject_count,
                    run.submission_count,
                    json.dumps(run.surveys_used, ensure_ascii=False),
                    json.dumps(run.per_subject_scores, ensure_ascii=False),
                    json.dumps(sorted(run.consumed_submission_ids), ensure_ascii=False),
                ),
            )

    def list_analysis_runs(self, counselor_id: str) -> List[AnalysisRun]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM analysis_runs WHERE counselor_id = ? ORDER BY seq ASC",
                (counselor_id,),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_run(r) for r in rows]

    def get_analysis_run(self, counselor_id: str, run_id: str) -> AnalysisRun:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM analysis_runs WHERE counselor_id = ? AND run_id = ?",
                (counselor_id, run_id),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise AnalysisRunNotFound(counselor_id, run_id)
        return self._row_to_run(row)

    def latest_run_id(self, counselor_id: str) -> Optional[str]:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT run_id FROM analysis_runs WHERE counselor_id = ? ORDER BY seq DESC LIMIT 1",
                (counselor_id,),
            ).fetchone()
            return row["run_id"] if row else None
        finally:
            conn.close()

    def _row_to_run(self, r: Any) -> AnalysisRun:
        consumed: List[Any] = json.loads(r["consumed_ids_json"] or "[]")
        return AnalysisRun(
            run_id=r["run_id"],
            counselor_id=r["counselor_id"],
            created_at=parse_iso(r["created_at"]),
            result=json.loads(r["result_json"] or "{}"),
            subject_count=int(r["subject_count"] or 0),
            submission_count=int(r["submission_count"] or 0),
            surveys_used=json.loads(r["surveys_used_json"] or "[]"),
            per_subject_scores=json.loads(r["per_subject_scores_json"] or "{}"),
            consumed_submission_ids=frozenset(str(i) for i in consumed),
        )
