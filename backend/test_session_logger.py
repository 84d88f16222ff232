import json
import tempfile
import unittest

from assessment import AssessmentRecord
from session_logger import SessionLogger


class TestSessionLogger(unittest.TestCase):
    def setUp(self):
        self.logger = SessionLogger("incident-1")
        self.logger.log_user_transcript("He's not breathing")
        self.logger.log_assistant_transcript("Check for a pulse at the neck.")
        self.logger.log_marker("neck")
        record = AssessmentRecord.create_initial().merge({
            "breathing": "absent",
            "pulse": "absent",
            "location": "51.500000, -0.120000",
        })
        self.logger.log_assessment(record, source="user")
        self.logger.log_escalation(record)
        self.logger.log_dispatch("emergency_call", True, "CA1", None)
        self.logger.log_dispatch("family_alert", False, None, "invalid number")

    def test_session_log(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = self.logger.save_session_log(tmp)
            with open(path) as f:
                data = json.load(f)

        self.assertEqual(data["session_id"], "incident-1")
        self.assertEqual([e["role"] for e in data["transcript_entries"]], ["user", "assistant"])
        self.assertEqual(data["assessment_updates"][0]["source"], "user")
        self.assertEqual(data["current_assessment"]["breathing"], "absent")
        self.assertEqual(data["markers"][0]["marker"], "neck")
        self.assertEqual(len(data["dispatches"]), 2)
        self.assertIsNotNone(data["escalated_at"])

    def test_ems_report(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = self.logger.generate_ems_report(tmp)
            with open(path) as f:
                report = f.read()

        self.assertIn("Breathing: ABSENT", report)
        self.assertIn("Pulse: ABSENT", report)
        self.assertIn("Location: 51.500000, -0.120000", report)
        self.assertIn("emergency_call: OK (CA1)", report)
        self.assertIn("family_alert: FAILED (invalid number)", report)
        self.assertIn("USER: He's not breathing", report)
        self.assertIn("END OF REPORT", report)


if __name__ == "__main__":
    unittest.main()
