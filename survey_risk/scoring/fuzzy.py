"""
Fuzzy risk model.

A raw scale score is fuzzified against three triangular input terms
(low / mid / high) laid over ``[0, max_score]``, and the resulting rule
strengths are defuzzified against three fixed output terms over the 0-100
risk axis with a sampled center of gravity.

The output terms live in absolute risk-percentage space, so risk scores are
comparable across surveys of different length. The input terms overlap on
purpose: scores near a boundary get blended strengths.

Defuzzification sums the clipped membership of every output term at every
sample point instead of taking their union (max). This differs from textbook
COG where terms overlap and is kept as is so stored scores stay comparable.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from survey_risk.app.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SCORE = 100.0

Triangle = Tuple[float, float, float]

OUTPUT_TERMS = {
    "low": (0.0, 0.0, 40.0),
    "mid": (30.0, 50.0, 70.0),
    "high": (60.0, 85.0, 100.0),
}

# Integer sample points of the output axis.
_OUTPUT_AXIS = np.arange(0, 101, dtype=float)


@dataclass(frozen=True)
class FuzzyModel:
    max_score: float
    low: Triangle
    mid: Triangle
    high: Triangle
    out_low: Triangle = OUTPUT_TERMS["low"]
    out_mid: Triangle = OUTPUT_TERMS["mid"]
    out_high: Triangle = OUTPUT_TERMS["high"]


@dataclass(frozen=True)
class RuleStrengths:
    low: float
    mid: float
    high: float

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.low, self.mid, self.high)


def resolve_max_score(max_score: Optional[float], default: float = DEFAULT_MAX_SCORE) -> float:
    # Zero, negative or unknown maxima fall back to the default.
    if max_score is None or max_score <= 0:
        logger.warning("Degenerate max score replaced by default", extra={"max_score": max_score, "default": default})
        return float(default)
    return float(max_score)


def build_model(max_score: Optional[float], default: float = DEFAULT_MAX_SCORE) -> FuzzyModel:
    m = resolve_max_score(max_score, default)
    return FuzzyModel(
        max_score=m,
        low=(0.0, 0.0, 0.40 * m),
        mid=(0.25 * m, 0.50 * m, 0.75 * m),
        high=(0.60 * m, m, m),
    )


def triangular(x: float, term: Triangle) -> float:
    a, b, c = term
    if x == b:
        return 1.0
    if x <= a or x >= c:
        return 0.0
    if x < b:
        return (x - a) / (b - a)
    return (c - x) / (c - b)


def evaluate(score: float, model: FuzzyModel) -> RuleStrengths:
    return RuleStrengths(
        low=triangular(score, model.low),
        mid=triangular(score, model.mid),
        high=triangular(score, model.high),
    )


def _triangular_axis(axis: np.ndarray, term: Triangle) -> np.ndarray:
    return np.array([triangular(float(x), term) for x in axis])


def defuzzify(strengths: RuleStrengths, model: FuzzyModel) -> float:
    weighted = 0.0
    total = 0.0
    for strength, term in (
        (strengths.low, model.out_low),
        (strengths.mid, model.out_mid),
        (strengths.high, model.out_high),
    ):
        mu = np.minimum(strength, _triangular_axis(_OUTPUT_AXIS, term))
        weighted += float(np.sum(_OUTPUT_AXIS * mu))
        total += float(np.sum(mu))

    if total == 0:
        return 0.0
    return weighted / total


def risk_score(raw_score: float, max_score: Optional[float], default: float = DEFAULT_MAX_SCORE) -> float:
    """Raw score -> crisp 0-100 risk score, rounded to two decimals."""
    model = build_model(max_score, default)
    return round(defuzzify(evaluate(raw_score, model), model), 2)
