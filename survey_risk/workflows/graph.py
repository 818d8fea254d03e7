from __future__ import annotations

import contextvars
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List

from langgraph.graph import END, StateGraph

from survey_risk.agents.base import AgentError
from survey_risk.agents.summary_narrative_agent import SummaryNarrativeAgent
from survey_risk.agents.survey_narrative_agent import SurveyNarrativeAgent
from survey_risk.app.errors import (
    NarrativeServiceFailure,
    NoNewSubmissions,
    NoSubjectsFound,
    NoSubmissionsFound,
)
from survey_risk.app.logging import get_logger
from survey_risk.db.repository import SQLiteRepository
from survey_risk.scoring.delta import select_delta
from survey_risk.scoring.engine import ScoringResult, score_submissions
from survey_risk.workflows.recorder import AnalysisRecorder
from survey_risk.workflows.state import AnalysisState

logger = get_logger(__name__)


def _survey_subject_rows(scoring: ScoringResult, survey_id: str) -> List[Dict[str, Any]]:
    names = {s["subjectId"]: s["name"] for s in scoring.subjects}
    rows = []
    for subject_id, by_survey in scoring.per_subject_per_survey.items():
        cell = by_survey.get(survey_id)
        if cell is None:
            continue
        rows.append(
            {
                "subjectId": subject_id,
                "name": names.get(subject_id, ""),
                "rawScore": cell["rawScore"],
                "fuzzyScore": cell["fuzzyScore"],
            }
        )
    return rows


def build_result(state: AnalysisState) -> Dict[str, Any]:
    scoring = state.scoring or ScoringResult()
    subjects = [
        {
            "subjectId": s["subjectId"],
            "name": s["name"],
            "className": s["className"],
            "rawScore": s["rawScore"],
            "maxScore": s["maxScore"],
            "fuzzyScore": s["fuzzyScore"],
            "analysis": state.subject_analyses.get(s["subjectId"], ""),
        }
        for s in scoring.subjects
    ]
    surveys = [
        {**s, "narrative": state.survey_narratives.get(s["id"], "")}
        for s in scoring.surveys
    ]
    return {
        "subjects": subjects,
        "summary": state.summary,
        "aggregate": scoring.aggregate,
        "surveys": surveys,
        "failedSurveyNarratives": list(state.failed_surveys),
    }


def build_graph(
    repo: SQLiteRepository,
    summary_agent: SummaryNarrativeAgent,
    survey_agent: SurveyNarrativeAgent,
    recorder: AnalysisRecorder,
    default_max_score: float = 100.0,
    narrative_workers: int = 4,
):
    workflow = StateGraph(AnalysisState)

    def load_inputs(state: AnalysisState) -> Dict[str, Any]:
        """Read the counselor's history and pick the submissions no run has consumed."""
        # Runs are stamped with the time the history was read.
        started_at = recorder.clock()
        subjects = repo.list_subjects(state.counselor_id)
        if not subjects:
            raise NoSubjectsFound(state.counselor_id)

        submissions = repo.list_submissions(state.counselor_id)
        if not submissions:
            raise NoSubmissionsFound(state.counselor_id)

        delta = select_delta(submissions, repo.list_analysis_runs(state.counselor_id))
        if not delta.new_submissions:
            raise NoNewSubmissions(
                state.counselor_id,
                delta.last_run_at,
                delta.total_submissions,
                delta.consumed_count,
                delta.stale_count,
            )

        return {
            "subjects": {s.subject_id: s for s in subjects},
            "surveys": {s.survey_id: s for s in repo.list_surveys(state.counselor_id)},
            "new_submissions": delta.new_submissions,
            "started_at": started_at,
        }

    def score(state: AnalysisState) -> Dict[str, Any]:
        scoring = score_submissions(
            state.new_submissions,
            state.surveys,
            state.subjects,
            default_max_score=default_max_score,
        )
        logger.info(
            "Submissions scored",
            extra={
                "submissions": len(scoring.submission_ids),
                "subjects": len(scoring.subjects),
                "aggregate_risk": scoring.aggregate.get("fuzzyScore"),
            },
        )
        return {"scoring": scoring}

    def narrate_surveys(state: AnalysisState) -> Dict[str, Any]:
        """Fan out one narrative request per survey; a failed survey gets an empty narrative."""
        scoring = state.scoring
        if scoring is None or not scoring.surveys:
            return {"survey_narratives": {}, "failed_surveys": []}

        def one(survey: Dict[str, Any]) -> str:
            return survey_agent.narrate(survey, _survey_subject_rows(scoring, survey["id"]))

        narratives: Dict[str, str] = {}
        failed: List[str] = []
        with ThreadPoolExecutor(max_workers=max(1, narrative_workers)) as pool:
            futures = {s["id"]: pool.submit(contextvars.copy_context().run, one, s) for s in scoring.surveys}
            for survey_id, future in futures.items():
                try:
                    narratives[survey_id] = future.result()
                except (NarrativeServiceFailure, AgentError) as e:
                    logger.warning(
                        "Survey narrative failed; recorded as empty",
                        extra={"survey_id": survey_id, "error": str(e)},
                    )
                    narratives[survey_id] = ""
                    failed.append(survey_id)

        return {"survey_narratives": narratives, "failed_surveys": failed}

    def narrate_summary(state: AnalysisState) -> Dict[str, Any]:
        scoring = state.scoring or ScoringResult()
        try:
            narrative = summary_agent.narrate(scoring.subjects, scoring.surveys, scoring.aggregate)
        except AgentError as e:
            raise NarrativeServiceFailure(f"Narrative service returned unusable output: {e}") from e
        return {"subject_analyses": narrative["subjects"], "summary": narrative["summary"]}

    def record(state: AnalysisState) -> Dict[str, Any]:
        scoring = state.scoring or ScoringResult()
        payload = {
            "result": build_result(state),
            "subjectCount": len(scoring.subjects),
            "submissionCount": len(scoring.submission_ids),
            "surveysUsed": scoring.surveys_used,
            "perSubjectPerSurveyScores": scoring.per_subject_per_survey,
        }
        run = recorder.record(
            state.counselor_id, payload, scoring.submission_ids, created_at=state.started_at
        )
        return {"run": run}

    workflow.add_node("load_inputs", load_inputs)
    workflow.add_node("score", score)
    workflow.add_node("narrate_surveys", narrate_surveys)
    workflow.add_node("narrate_summary", narrate_summary)
    workflow.add_node("record", record)

    workflow.set_entry_point("load_inputs")
    workflow.add_edge("load_inputs", "score")
    workflow.add_edge("score", "narrate_surveys")
    workflow.add_edge("narrate_surveys", "narrate_summary")
    workflow.add_edge("narrate_summary", "record")
    workflow.add_edge("record", END)

    return workflow.compile()
