import json
import tempfile
import unittest
from pathlib import Path

from fakes import AuthError, FakeChatModel, QuotaError

from survey_risk.agents.base import (
    AgentOutputParseError,
    AgentOutputValidationError,
    classify_llm_error,
    parse_json_object,
    render_prompt,
)
from survey_risk.agents.summary_narrative_agent import SummaryNarrativeAgent
from survey_risk.agents.survey_narrative_agent import SurveyNarrativeAgent
from survey_risk.app.errors import NarrativeAuthError, NarrativeQuotaExceeded, NarrativeServiceFailure


class PromptAndParsingTests(unittest.TestCase):
    def test_render_prompt_serializes_structures(self) -> None:
        text = render_prompt("A={{a}} B={{ b }} C={{missing}}", {"a": 1, "b": {"k": "v"}})
        self.assertIn("A=1", text)
        self.assertIn('"k": "v"', text)
        self.assertIn("{{missing}}", text)

    def test_parse_fenced_and_embedded_json(self) -> None:
        self.assertEqual(parse_json_object('```json\n{"a": 1}\n```'), {"a": 1})
        self.assertEqual(parse_json_object('Sure! {"a": 2} hope it helps'), {"a": 2})

    def test_parse_rejects_non_objects(self) -> None:
        with self.assertRaises(AgentOutputParseError):
            parse_json_object("[1, 2]")
        with self.assertRaises(AgentOutputParseError):
            parse_json_object("no json here")


class ErrorClassificationTests(unittest.TestCase):
    def test_quota_credentials_and_generic(self) -> None:
        self.assertIsInstance(classify_llm_error(QuotaError("quota")), NarrativeQuotaExceeded)
        self.assertIsInstance(classify_llm_error(AuthError("bad key")), NarrativeAuthError)
        generic = classify_llm_error(RuntimeError("boom"))
        self.assertIs(type(generic), NarrativeServiceFailure)
        self.assertEqual(generic.details()["reason"], "generic")
        self.assertEqual(NarrativeQuotaExceeded("x").details()["reason"], "quota")
        self.assertEqual(NarrativeAuthError("x").details()["reason"], "credentials")


class NarrativeAgentTests(unittest.TestCase):
    def test_summary_agent_keys_analyses_by_subject(self) -> None:
        llm = FakeChatModel()
        agent = SummaryNarrativeAgent(llm=llm)
        subjects = [
            {"subjectId": "s1", "name": "Ali Kaya", "answers": [], "rawScore": 3, "fuzzyScore": 50.0},
            {"subjectId": "s2", "name": "Elif Sahin", "answers": [], "rawScore": 6, "fuzzyScore": 81.67},
        ]
        out = agent.narrate(subjects, [], {"fuzzyScore": 60.0})
        self.assertEqual(out["subjects"], {"s1": "analysis of s1", "s2": "analysis of s2"})
        self.assertEqual(out["summary"], "group summary")
        self.assertIn('"fuzzyScore": 81.67', llm.prompts[0])

    def test_provider_error_is_classified(self) -> None:
        agent = SummaryNarrativeAgent(llm=FakeChatModel(summary_error=QuotaError("quota")))
        with self.assertRaises(NarrativeQuotaExceeded):
            agent.narrate([], [], {})

    def test_output_missing_required_field_fails_validation(self) -> None:
        agent = SurveyNarrativeAgent(llm=FakeChatModel(raw_reply=lambda _p: json.dumps({"text": "x"})))
        with self.assertRaises(AgentOutputValidationError):
            agent.narrate({"id": "sv1", "title": "Wellbeing"}, [])

    def test_prompt_file_overrides_default(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "survey_narrative.md").write_text("CUSTOM {{survey}}", encoding="utf-8")
            llm = FakeChatModel(raw_reply=lambda _p: '{"narrative": "fine"}')
            agent = SurveyNarrativeAgent(llm=llm, prompts_dir=tmp)
            self.assertEqual(agent.narrate({"id": "sv1"}, []), "fine")
            self.assertTrue(llm.prompts[0].startswith("CUSTOM"))


if __name__ == "__main__":
    unittest.main()
