# survey_risk/agents/survey_narrative_agent.py
from __future__ import annotations

from typing import Any, Dict, List

from .base import BaseAgent


class SurveyNarrativeAgent(BaseAgent):
    name = "survey_narrative_agent"
    prompt_file = "survey_narrative.md"
    output_schema = {
        "type": "object",
        "properties": {"narrative": {"type": "string"}},
        "required": ["narrative"],
        "additionalProperties": True,
    }

    default_prompt = """
You are a school counselor summarising the results of one questionnaire.
Write a short paragraph on what the scores suggest for this group.
Do NOT invent numbers; only use the values below.

Return ONLY JSON:
{ "narrative": "..." }

Survey:
{{survey}}

Student scores (0-100 fuzzy risk):
{{subjects}}
""".strip()

    def narrate(self, survey: Dict[str, Any], subjects: List[Dict[str, Any]]) -> str:
        payload = self.invoke({"survey": survey, "subjects": subjects}).payload
        return payload.get("narrative", "") or ""
