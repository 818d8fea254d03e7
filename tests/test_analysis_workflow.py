import tempfile
import unittest

from fakes import AuthError, FakeChatModel, QuotaError, at, make_settings, seeded_repo, submission

from survey_risk.agents.summary_narrative_agent import SummaryNarrativeAgent
from survey_risk.agents.survey_narrative_agent import SurveyNarrativeAgent
from survey_risk.app.errors import (
    CounselorNotFound,
    NarrativeAuthError,
    NarrativeQuotaExceeded,
    NarrativeServiceFailure,
    NoNewSubmissions,
    NoSubjectsFound,
    NoSubmissionsFound,
)
from survey_risk.workflows.analysis import AnalysisService
from survey_risk.workflows.recorder import AnalysisRecorder


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class AnalysisWorkflowTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.repo = seeded_repo(self._tmp.name)
        self.clock = Clock(at(10))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def service(self, llm=None) -> AnalysisService:
        llm = llm or FakeChatModel()
        return AnalysisService(
            make_settings(self.repo.db_path),
            repo=self.repo,
            summary_agent=SummaryNarrativeAgent(llm=llm),
            survey_agent=SurveyNarrativeAgent(llm=llm),
            recorder=AnalysisRecorder(self.repo, clock=self.clock),
        )

    def add_first_batch(self) -> None:
        rows = [
            ("a0", "s1", "sv1", ("never", "sometimes")),
            ("a1", "s1", "sv2", ("often", "often", "often")),
            ("a2", "s2", "sv1", ("never", "never")),
            ("a3", "s2", "sv2", ("never", "sometimes", "never")),
            ("a4", "s3", "sv1", ("often", "not an option")),
        ]
        for i, (sid, subject, survey_id, chosen) in enumerate(rows):
            self.repo.insert_submission(submission(sid, subject, survey_id, chosen, completed_at=at(i)))

    def test_incremental_runs_consume_each_submission_once(self) -> None:
        self.add_first_batch()
        service = self.service()

        first = service.analyze("c1")
        self.assertEqual(first.consumed_submission_ids, frozenset({"a0", "a1", "a2", "a3", "a4"}))
        self.assertEqual(first.submission_count, 5)
        self.assertEqual(first.subject_count, 3)
        self.assertEqual(first.created_at, at(10))
        self.assertEqual(first.per_subject_scores["s3"]["sv1"]["rawScore"], 3)
        self.assertEqual(first.per_subject_scores["s1"]["sv1"]["fuzzyScore"], 50.0)
        self.assertEqual(first.result["summary"], "group summary")
        analyses = {s["subjectId"]: s["analysis"] for s in first.result["subjects"]}
        self.assertEqual(analyses["s2"], "analysis of s2")
        self.assertEqual({s["id"] for s in first.surveys_used}, {"sv1", "sv2"})

        self.clock.now = at(15)
        with self.assertRaises(NoNewSubmissions) as ctx:
            service.analyze("c1")
        details = ctx.exception.details()
        self.assertEqual(details["last_run_at"], at(10).isoformat())
        self.assertEqual(details["total_submissions"], 5)
        self.assertEqual(details["consumed_submissions"], 5)

        self.repo.insert_submission(submission("b1", "s1", "sv1", ("often", "often"), completed_at=at(20)))
        self.repo.insert_submission(submission("b2", "s3", "sv2", ("never",) * 3, completed_at=at(21)))
        self.clock.now = at(30)

        second = service.analyze("c1")
        self.assertEqual(second.consumed_submission_ids, frozenset({"b1", "b2"}))
        self.assertEqual(second.submission_count, 2)
        self.assertEqual(second.subject_count, 2)
        self.assertEqual(set(second.per_subject_scores), {"s1", "s3"})

        history = service.history("c1")
        self.assertEqual([r.run_id for r in history], [first.run_id, second.run_id])
        self.assertEqual(service.get_run("c1", first.run_id), first)

    def test_submission_completed_during_narration_is_left_for_next_run(self) -> None:
        self.add_first_batch()

        def arrives_mid_run(prompt: str) -> None:
            if "Student data:" in prompt and self.clock.now == at(10):
                self.repo.insert_submission(submission("late", "s2", "sv1", ("often", "often"), completed_at=at(12)))
                self.clock.now = at(15)

        first = self.service(FakeChatModel(on_invoke=arrives_mid_run)).analyze("c1")
        self.assertEqual(first.created_at, at(10))
        self.assertNotIn("late", first.consumed_submission_ids)

        self.clock.now = at(60)
        second = self.service().analyze("c1")
        self.assertEqual(second.consumed_submission_ids, frozenset({"late"}))
        self.assertEqual(second.per_subject_scores["s2"]["sv1"]["rawScore"], 6)

    def test_narrative_workers_log_under_the_analysis_run_id(self) -> None:
        self.add_first_batch()
        llm = FakeChatModel()
        self.service(llm).analyze("c1")

        self.assertEqual(len(llm.run_ids), 3)
        self.assertIsNotNone(llm.run_ids[0])
        self.assertEqual(set(llm.run_ids), {llm.run_ids[0]})

    def test_survey_narrative_failure_is_isolated(self) -> None:
        self.add_first_batch()
        run = self.service(FakeChatModel(failing_surveys=["sv2"])).analyze("c1")

        narratives = {s["id"]: s["narrative"] for s in run.result["surveys"]}
        self.assertEqual(narratives["sv1"], "narrative for Wellbeing")
        self.assertEqual(narratives["sv2"], "")
        self.assertEqual(run.result["failedSurveyNarratives"], ["sv2"])
        self.assertEqual(len(self.repo.list_analysis_runs("c1")), 1)

    def test_summary_quota_failure_records_nothing(self) -> None:
        self.add_first_batch()
        with self.assertRaises(NarrativeQuotaExceeded) as ctx:
            self.service(FakeChatModel(summary_error=QuotaError("You exceeded your current quota"))).analyze("c1")
        self.assertEqual(ctx.exception.details()["reason"], "quota")
        self.assertEqual(self.repo.list_analysis_runs("c1"), [])

    def test_summary_auth_failure_records_nothing(self) -> None:
        self.add_first_batch()
        with self.assertRaises(NarrativeAuthError):
            self.service(FakeChatModel(summary_error=AuthError("Incorrect API key"))).analyze("c1")
        self.assertEqual(self.repo.list_analysis_runs("c1"), [])

    def test_unusable_summary_output_is_a_generic_failure(self) -> None:
        self.add_first_batch()
        with self.assertRaises(NarrativeServiceFailure) as ctx:
            self.service(FakeChatModel(raw_reply=lambda _p: "not json")).analyze("c1")
        self.assertEqual(ctx.exception.details()["reason"], "generic")
        self.assertEqual(self.repo.list_analysis_runs("c1"), [])

    def test_no_submissions(self) -> None:
        with self.assertRaises(NoSubmissionsFound):
            self.service().analyze("c1")

    def test_unknown_counselor(self) -> None:
        with self.assertRaises(CounselorNotFound):
            self.service().analyze("nobody")


class NoSubjectsTests(unittest.TestCase):
    def test_counselor_without_students(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = seeded_repo(tmp, subjects=())
            repo.insert_submission(submission("a0", completed_at=at(0)))
            llm = FakeChatModel()
            service = AnalysisService(
                make_settings(repo.db_path),
                repo=repo,
                summary_agent=SummaryNarrativeAgent(llm=llm),
                survey_agent=SurveyNarrativeAgent(llm=llm),
            )
            with self.assertRaises(NoSubjectsFound):
                service.analyze("c1")
            self.assertEqual(llm.prompts, [])


if __name__ == "__main__":
    unittest.main()
