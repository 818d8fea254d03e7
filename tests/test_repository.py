import sqlite3
import tempfile
import unittest

from fakes import T0, at, seeded_repo, submission

from survey_risk.app.errors import AnalysisRunNotFound, CounselorNotFound
from survey_risk.db.repository import parse_iso, to_iso
from survey_risk.workflows.recorder import AnalysisRecorder


class RepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.repo = seeded_repo(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_counselor_lookup(self) -> None:
        self.assertEqual(self.repo.get_counselor("c1").last_name, "Demir")
        with self.assertRaises(CounselorNotFound):
            self.repo.get_counselor("nobody")

    def test_surveys_round_trip(self) -> None:
        surveys = {s.survey_id: s for s in self.repo.list_surveys("c1")}
        self.assertEqual(surveys["sv1"].max_score, 6)
        self.assertEqual(surveys["sv2"].max_score, 9)
        self.assertEqual(surveys["sv2"].descriptor()["questionCount"], 3)

    def test_submissions_keep_insertion_order_and_answers(self) -> None:
        for sid in ("z", "a", "m"):
            self.repo.insert_submission(submission(sid, chosen=("often", "bogus"), completed_at=T0))
        stored = self.repo.list_submissions("c1")
        self.assertEqual([s.submission_id for s in stored], ["z", "a", "m"])
        self.assertEqual(stored[0].answers[1].chosen_option, "bogus")
        self.assertEqual(stored[0].answers[0].options, ("never", "sometimes", "often"))
        self.assertEqual(stored[0].completed_at, T0)

    def test_insert_fills_missing_id_and_timestamp(self) -> None:
        stored = self.repo.insert_submission(submission(""))
        self.assertTrue(stored.submission_id)
        self.assertIsNotNone(stored.completed_at)

    def test_submission_ids_are_unique(self) -> None:
        self.repo.insert_submission(submission("dup"))
        with self.assertRaises(sqlite3.IntegrityError):
            self.repo.insert_submission(submission("dup"))

    def test_unknown_run_raises(self) -> None:
        with self.assertRaises(AnalysisRunNotFound):
            self.repo.get_analysis_run("c1", "missing")

    def test_iso_helpers(self) -> None:
        self.assertEqual(parse_iso("2025-03-01T09:00:00Z"), T0)
        self.assertEqual(parse_iso(to_iso(T0.replace(tzinfo=None))), T0)
        self.assertIsNone(parse_iso("not a date"))
        self.assertIsNone(parse_iso(None))


class RecorderTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.repo = seeded_repo(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_record_appends_run_verbatim(self) -> None:
        recorder = AnalysisRecorder(self.repo, clock=lambda: at(0))
        payload = {
            "result": {"summary": "ok"},
            "subjectCount": 2,
            "submissionCount": 3,
            "surveysUsed": [{"id": "sv1", "title": "Wellbeing", "questionCount": 2, "optionCount": 3}],
            "perSubjectPerSurveyScores": {"s1": {"sv1": {"rawScore": 4}}},
        }
        run = recorder.record("c1", payload, ["x", "y", "z"])

        self.assertEqual(run.run_id, str(int(at(0).timestamp() * 1000)))
        stored = self.repo.get_analysis_run("c1", run.run_id)
        self.assertEqual(stored, run)
        self.assertEqual(stored.to_dict()["consumedSubmissionIds"], ["x", "y", "z"])
        self.assertEqual(stored.to_dict()["surveysUsed"][0]["optionCount"], 3)

    def test_run_ids_stay_distinct_under_a_frozen_clock(self) -> None:
        recorder = AnalysisRecorder(self.repo, clock=lambda: at(0))
        first = recorder.record("c1", {}, ["a"])
        second = recorder.record("c1", {}, ["b"])
        self.assertEqual(int(second.run_id), int(first.run_id) + 1)
        self.assertEqual([r.run_id for r in self.repo.list_analysis_runs("c1")], [first.run_id, second.run_id])


if __name__ == "__main__":
    unittest.main()
