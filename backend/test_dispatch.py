import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

import dispatch
from reasoning_gateway import ReasoningGateway
from server import create_web_app

PATIENT = {
    "responsive": "no",
    "airway": "clear",
    "breathing": "absent",
    "pulse": "absent",
    "patientDescription": "Adult male & grey jacket",
    "location": "40.712800, -74.006000",
}


class TestRendering(unittest.TestCase):
    def test_patient_report(self):
        report = dispatch.build_patient_report(PATIENT)
        self.assertIn("Airway: clear.", report)
        self.assertIn("Breathing: absent.", report)
        self.assertIn("Pulse: absent.", report)
        self.assertIn("Responsiveness: no.", report)
        self.assertIn("Location: 40.712800, -74.006000.", report)
        self.assertNotIn("\n", report)
        self.assertNotIn("  ", report)

    def test_patient_report_defaults(self):
        report = dispatch.build_patient_report(None)
        self.assertIn("Airway: unknown.", report)
        self.assertIn("Patient description: Patient details unavailable.", report)
        self.assertIn("Location: Location unknown.", report)

    def test_twiml_reads_report_twice(self):
        twiml = dispatch.build_call_twiml("Pulse: absent.")
        self.assertEqual(twiml.count("Pulse: absent."), 2)
        self.assertIn("I repeat. Pulse: absent.", twiml)
        self.assertIn(dispatch.DISPATCH_STATEMENT, twiml)
        self.assertIn('voice="Polly.Amy"', twiml)
        self.assertLess(twiml.index("I repeat."), twiml.index(dispatch.DISPATCH_STATEMENT))

    def test_twiml_escapes_report(self):
        twiml = dispatch.build_call_twiml(dispatch.build_patient_report(PATIENT))
        self.assertIn("Adult male &amp; grey jacket", twiml)

    def test_family_sms(self):
        sms = dispatch.build_family_sms(PATIENT, "40.712800, -74.006000")
        self.assertIn("emergency assistance to Adult male & grey jacket.", sms)
        self.assertIn("Location: 40.712800, -74.006000", sms)
        defaults = dispatch.build_family_sms({}, None)
        self.assertIn("emergency assistance to A person.", defaults)
        self.assertIn("Location: Location being determined", defaults)


class TestTwilioCalls(unittest.TestCase):
    def test_place_call_uses_default_number(self):
        client = MagicMock()
        client.calls.create.return_value = SimpleNamespace(sid="CA42")
        with patch.object(dispatch, "_get_client", return_value=client), \
                patch.object(dispatch, "EMERGENCY_PHONE_NUMBER", "+15550199"):
            result = dispatch.place_emergency_call(None, PATIENT)

        self.assertEqual(result["callSid"], "CA42")
        kwargs = client.calls.create.call_args.kwargs
        self.assertEqual(kwargs["to"], "+15550199")
        self.assertIn("<Say", kwargs["twiml"])

    def test_send_sms_to_explicit_number(self):
        client = MagicMock()
        client.messages.create.return_value = SimpleNamespace(sid="SM42")
        with patch.object(dispatch, "_get_client", return_value=client):
            result = dispatch.send_family_sms("+15550123", PATIENT, "here")

        self.assertEqual(result["messageSid"], "SM42")
        self.assertEqual(client.messages.create.call_args.kwargs["to"], "+15550123")

    def test_missing_destination(self):
        with patch.object(dispatch, "EMERGENCY_PHONE_NUMBER", ""):
            with self.assertRaises(dispatch.DispatchError):
                dispatch.place_emergency_call(None, PATIENT)


class TestRoutes(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_web_app(gateway=ReasoningGateway()))

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.json(), {"status": "ok", "reasoning_configured": False})

    def test_emergency_call_route(self):
        fake = {"callSid": "CA7", "report": "report text"}
        with patch.object(dispatch, "place_emergency_call", return_value=fake) as place:
            response = self.client.post("/api/emergency-call", json={"patientData": PATIENT})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["callSid"], "CA7")
        self.assertTrue(response.json()["success"])
        place.assert_called_once_with(None, PATIENT)

    def test_emergency_call_failure(self):
        with patch.object(dispatch, "place_emergency_call", side_effect=dispatch.DispatchError("no creds")):
            response = self.client.post("/api/emergency-call", json={"patientData": PATIENT})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"success": False, "error": "no creds"})

    def test_family_alert_route(self):
        with patch.object(dispatch, "send_family_sms", return_value={"messageSid": "SM7"}) as send:
            response = self.client.post(
                "/api/family-alert",
                json={"toNumber": "+15550123", "patientData": PATIENT, "location": "here"},
            )
        self.assertEqual(response.json()["messageSid"], "SM7")
        send.assert_called_once_with("+15550123", PATIENT, "here")

    def test_family_alert_failure(self):
        with patch.object(dispatch, "send_family_sms", side_effect=RuntimeError("bad number")):
            response = self.client.post("/api/family-alert", json={})
        self.assertEqual(response.status_code, 500)
        self.assertFalse(response.json()["success"])


if __name__ == "__main__":
    unittest.main()
