# survey_risk/workflows/state.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from survey_risk.db.models import AnalysisRun, Subject, Submission, Survey
from survey_risk.scoring.engine import ScoringResult


@dataclass
class AnalysisState:
    # Identity / request
    counselor_id: str
    analysis_id: str

    # Inputs loaded from the counselor's records
    subjects: Dict[str, Subject] = field(default_factory=dict)
    surveys: Dict[str, Survey] = field(default_factory=dict)
    new_submissions: List[Submission] = field(default_factory=list)
    started_at: Optional[datetime] = None

    # Scoring
    scoring: Optional[ScoringResult] = None

    # Narratives
    survey_narratives: Dict[str, str] = field(default_factory=dict)
    failed_surveys: List[str] = field(default_factory=list)
    subject_analyses: Dict[str, str] = field(default_factory=dict)
    summary: str = ""

    # Output
    run: Optional[AnalysisRun] = None
