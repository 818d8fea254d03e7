from __future__ import annotations

from typing import List, Optional
from uuid import uuid4

from survey_risk.agents.summary_narrative_agent import SummaryNarrativeAgent
from survey_risk.agents.survey_narrative_agent import SurveyNarrativeAgent
from survey_risk.app.config import Settings
from survey_risk.app.errors import AppError
from survey_risk.app.logging import clear_run_id, get_logger, set_run_id
from survey_risk.db.models import AnalysisRun
from survey_risk.db.repository import SQLiteRepository
from survey_risk.workflows.graph import build_graph
from survey_risk.workflows.recorder import AnalysisRecorder

logger = get_logger(__name__)


class AnalysisService:
    """
    Entry point for counselors: run an incremental analysis, read the history.

    Callers must not run two analyses for the same counselor at once; the
    history is read, extended and written without a lock.
    """

    def __init__(
        self,
        settings: Settings,
        repo: Optional[SQLiteRepository] = None,
        summary_agent: Optional[SummaryNarrativeAgent] = None,
        survey_agent: Optional[SurveyNarrativeAgent] = None,
        recorder: Optional[AnalysisRecorder] = None,
    ):
        self.settings = settings
        self.repo = repo or SQLiteRepository(settings.db_path)
        self.summary_agent = summary_agent or SummaryNarrativeAgent(
            model=settings.narrative_model,
            prompts_dir=settings.prompts_dir,
            temperature=settings.llm_temperature,
            base_url=settings.llm_base_url,
        )
        self.survey_agent = survey_agent or SurveyNarrativeAgent(
            model=settings.survey_narrative_model,
            prompts_dir=settings.prompts_dir,
            temperature=settings.llm_temperature,
            base_url=settings.llm_base_url,
        )
        self.recorder = recorder or AnalysisRecorder(self.repo)
        self.graph = build_graph(
            repo=self.repo,
            summary_agent=self.summary_agent,
            survey_agent=self.survey_agent,
            recorder=self.recorder,
            default_max_score=settings.default_max_score,
            narrative_workers=settings.narrative_workers,
        )

    def analyze(self, counselor_id: str) -> AnalysisRun:
        self.repo.get_counselor(counselor_id)

        analysis_id = uuid4().hex
        set_run_id(analysis_id)
        try:
            logger.info("Analysis started", extra={"counselor_id": counselor_id})
            out = self.graph.invoke({"counselor_id": counselor_id, "analysis_id": analysis_id})
        except AppError as e:
            logger.warning("Analysis did not complete", extra={"details": e.details()})
            raise
        finally:
            clear_run_id()

        return out["run"] if isinstance(out, dict) else out.run

    def history(self, counselor_id: str) -> List[AnalysisRun]:
        self.repo.get_counselor(counselor_id)
        return self.repo.list_analysis_runs(counselor_id)

    def get_run(self, counselor_id: str, run_id: str) -> AnalysisRun:
        self.repo.get_counselor(counselor_id)
        return self.repo.get_analysis_run(counselor_id, run_id)
