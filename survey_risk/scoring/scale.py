from __future__ import annotations

from typing import Optional, Sequence

from survey_risk.app.logging import get_logger
from survey_risk.db.models import Answer

logger = get_logger(__name__)


def option_value(answer: Answer) -> int:
    """
    Ordinal value of the chosen option: its 1-based position in the option list.

    Returns 0 when the chosen option is not one of the listed options.
    """
    try:
        index = list(answer.options).index(answer.chosen_option)
    except ValueError:
        logger.warning(
            "Malformed answer ignored",
            extra={"question": answer.question, "chosen_option": answer.chosen_option},
        )
        return 0
    return index + 1


def score_answers(answers: Optional[Sequence[Answer]]) -> int:
    # Raw scale score of one submission; malformed answers add nothing.
    if not answers:
        return 0
    return sum(option_value(a) for a in answers)


def max_score_for(question_count: int, option_count: int) -> int:
    if question_count <= 0 or option_count <= 0:
        return 0
    return question_count * option_count
