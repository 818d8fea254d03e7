# survey_risk/agents/summary_narrative_agent.py
from __future__ import annotations

from typing import Any, Dict, List

from .base import BaseAgent


class SummaryNarrativeAgent(BaseAgent):
    name = "summary_narrative_agent"
    prompt_file = "summary_narrative.md"
    system_prompt = (
        "You are a middle-school psychological counselor reviewing student questionnaire results. "
        "Always answer with valid JSON."
    )
    output_schema = {
        "type": "object",
        "properties": {
            "subjects": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "subjectId": {"type": "string"},
                        "analysis": {"type": "string"},
                    },
                    "required": ["subjectId", "analysis"],
                },
            },
            "summary": {"type": "string"},
        },
        "required": ["subjects", "summary"],
        "additionalProperties": True,
    }

    default_prompt = """
Below are the questionnaire answers of the students assigned to you, with a raw
scale score and a 0-100 fuzzy risk score computed for each student.

Your task:
1. Analyse each student's answers.
2. Write a short, professional assessment of emotional state, attention,
   social adjustment and signs of stress. Use the risk score as context;
   do NOT invent numbers.
3. Then write an overall assessment of the whole group.

Return ONLY JSON in exactly this shape:
{
  "subjects": [ { "subjectId": "...", "analysis": "..." } ],
  "summary": "..."
}

Group risk score (all students together):
{{aggregate}}

Per-survey statistics:
{{surveys}}

Student data:
{{subjects}}
""".strip()

    def narrate(
        self,
        subjects: List[Dict[str, Any]],
        surveys: List[Dict[str, Any]],
        aggregate: Dict[str, Any],
    ) -> Dict[str, Any]:
        request = [
            {
                "subjectId": s["subjectId"],
                "name": s["name"],
                "answers": s["answers"],
                "rawScore": s["rawScore"],
                "fuzzyScore": s["fuzzyScore"],
            }
            for s in subjects
        ]
        return self.invoke({"subjects": request, "surveys": surveys, "aggregate": aggregate}).payload

    def _normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        analyses = {
            str(item.get("subjectId")): item.get("analysis", "") or ""
            for item in payload.get("subjects", [])
        }
        return {"subjects": analyses, "summary": payload.get("summary", "") or ""}
