from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(key: str, default: int) -> int:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    v = _env_str(key)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    # Storage
    db_path: str

    # Logging
    log_level: str
    log_json: bool

    # Scoring
    default_max_score: float

    # Narrative service
    narrative_model: str
    survey_narrative_model: str
    llm_base_url: Optional[str]
    llm_temperature: float
    narrative_workers: int
    prompts_dir: Optional[str]

    @staticmethod
    def from_env(load_dotenv_file: bool = True) -> "Settings":
        # Read configuration from environment variables (and .env when present).
        if load_dotenv_file:
            load_dotenv()

        db_path = _env_str("APP_DB_PATH", "data/survey_risk.db") or "data/survey_risk.db"

        # Create the parent directory only; the DB file is created on first connect.
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        default_max_score = _env_float("APP_DEFAULT_MAX_SCORE", 100.0)
        if default_max_score <= 0:
            default_max_score = 100.0

        return Settings(
            db_path=db_path,

            log_level=_env_str("APP_LOG_LEVEL", "INFO") or "INFO",
            log_json=_env_bool("APP_LOG_JSON", True),

            default_max_score=default_max_score,

            narrative_model=_env_str("APP_MODEL_NARRATIVE", "gpt-4o-mini") or "gpt-4o-mini",
            survey_narrative_model=_env_str("APP_MODEL_SURVEY_NARRATIVE", "gpt-4o-mini") or "gpt-4o-mini",
            llm_base_url=_env_str("APP_LLM_BASE_URL"),
            llm_temperature=_env_float("APP_LLM_TEMPERATURE", 0.7),
            narrative_workers=max(1, _env_int("APP_NARRATIVE_WORKERS", 4)),
            prompts_dir=_env_str("APP_PROMPTS_DIR"),
        )
