from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd

SCORE_COLUMNS = ["submission_id", "subject_id", "survey_id", "raw_score", "max_score", "risk_score"]


def score_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    One row per scored submission, in submission order.

    When a student re-took the same survey within the batch only the latest
    submission is kept.
    """
    df = pd.DataFrame(rows, columns=SCORE_COLUMNS)
    if df.empty:
        return df
    return df.drop_duplicates(subset=["subject_id", "survey_id"], keep="last").reset_index(drop=True)


def per_subject_per_survey(df: pd.DataFrame) -> Dict[str, Dict[str, Dict[str, Any]]]:
    out: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for r in df.itertuples(index=False):
        out.setdefault(str(r.subject_id), {})[str(r.survey_id)] = {
            "submissionId": str(r.submission_id),
            "rawScore": int(r.raw_score),
            "maxScore": float(r.max_score),
            "fuzzyScore": float(r.risk_score),
        }
    return out


def subject_totals(df: pd.DataFrame) -> pd.DataFrame:
    # Raw and maximum scores summed across each student's surveys.
    if df.empty:
        return pd.DataFrame(columns=["subject_id", "raw_score", "max_score"])
    return df.groupby("subject_id", sort=False)[["raw_score", "max_score"]].sum().reset_index()


def survey_statistics(df: pd.DataFrame) -> List[Dict[str, Any]]:
    if df.empty:
        return []
    grouped = df.groupby("survey_id", sort=False).agg(
        subjects=("subject_id", "nunique"),
        mean_risk=("risk_score", "mean"),
        max_risk=("risk_score", "max"),
        min_risk=("risk_score", "min"),
    )
    return [
        {
            "surveyId": str(survey_id),
            "subjects": int(row["subjects"]),
            "meanRisk": round(float(row["mean_risk"]), 2),
            "maxRisk": round(float(row["max_risk"]), 2),
            "minRisk": round(float(row["min_risk"]), 2),
        }
        for survey_id, row in grouped.iterrows()
    ]
