import asyncio
import base64
import unittest
from unittest.mock import MagicMock

from assessment import AssessmentRecord
from emergency import DispatchResult
from orchestrator import Orchestrator
from prompts import CANNED_RESPONSES, ESCALATION_ANNOUNCEMENT, LOCATION_UNAVAILABLE
from reasoning_gateway import ReasoningGateway


class FakeClientSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]


class FakeDispatcher:
    def __init__(self):
        self.calls = 0
        self.alerts = 0

    async def trigger_emergency_call(self, record):
        self.calls += 1
        return DispatchResult(success=True, sid="CA1")

    async def send_family_alert(self, record):
        self.alerts += 1
        return DispatchResult(success=True, sid="SM1")


class TestOrchestrator(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.ws = FakeClientSocket()
        self.dispatcher = FakeDispatcher()
        self.orch = Orchestrator(self.ws, ReasoningGateway(), dispatcher=self.dispatcher)
        self.orch.engine.frame_timeout = 0.05
        self.orch.location_timeout = 0.05

    async def _turn(self, text):
        await self.orch.handle_message({"type": "transcript", "text": text})
        await asyncio.gather(*list(self.orch._turn_tasks))

    async def test_capture_frame_round_trip(self):
        pending = asyncio.create_task(self.orch.capture_frame())
        await asyncio.sleep(0)
        self.assertEqual(self.ws.sent[-1], {"type": "capture_frame"})

        await self.orch.handle_message({"type": "frame", "data": base64.b64encode(b"jpeg").decode()})
        self.assertEqual(await pending, b"jpeg")

    async def test_location_denied(self):
        pending = asyncio.create_task(self.orch.get_current_location())
        await asyncio.sleep(0)
        await self.orch.handle_message({"type": "location", "status": "denied"})
        self.assertIsNone(await pending)

    async def test_location_coords(self):
        pending = asyncio.create_task(self.orch.get_current_location())
        await asyncio.sleep(0)
        await self.orch.handle_message({"type": "location", "lat": 51.5, "long": -0.12})
        self.assertEqual(await pending, (51.5, -0.12))

    async def test_transcript_turn_sends_instruction(self):
        await self._turn("He's not moving")

        instruction = self.ws.of_type("instruction")[-1]
        self.assertEqual(instruction["text"], CANNED_RESPONSES[0])
        self.assertIsNone(instruction["marker"])
        self.assertEqual(self.ws.of_type("speak")[-1]["text"], CANNED_RESPONSES[0])
        self.assertEqual(self.ws.of_type("assessment")[-1]["assessment"]["responsive"], "no")
        self.assertEqual(self.ws.of_type("emergency"), [])

    async def test_second_turn_sends_marker_region(self):
        await self._turn("He's not moving")
        await self._turn("He's not breathing")

        instruction = self.ws.of_type("instruction")[-1]
        self.assertEqual(instruction["marker"], "chest")
        self.assertEqual(instruction["body_region"], "chest")

    async def test_arrest_escalates_once(self):
        await self._turn("He's not breathing and no pulse")
        await self.orch.engine.wait_for_escalation()
        await self._turn("still nothing")
        await self.orch.engine.wait_for_escalation()

        self.assertEqual(len(self.ws.of_type("emergency")), 1)
        self.assertEqual(self.dispatcher.calls, 1)
        self.assertEqual(self.dispatcher.alerts, 1)
        self.assertIn(ESCALATION_ANNOUNCEMENT, [m["text"] for m in self.ws.of_type("speak")])


class TestOrchestratorShutdown(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.ws = FakeClientSocket()
        self.dispatcher = FakeDispatcher()
        self.orch = Orchestrator(self.ws, ReasoningGateway(), dispatcher=self.dispatcher)
        self.orch.session_logger.save_session_log = MagicMock()
        self.orch.session_logger.generate_ems_report = MagicMock()

    async def _wait_for_request(self, msg_type):
        for _ in range(200):
            if self.ws.of_type(msg_type):
                return
            await asyncio.sleep(0.01)
        self.fail(f"client never received {msg_type}")

    async def test_shutdown_during_location_request_still_dispatches(self):
        self.orch.engine.frame_timeout = 0.05
        self.orch.location_timeout = 30
        self.orch.engine.record = AssessmentRecord.create_initial().merge({
            "pulse": "absent",
            "breathing": "absent",
        })

        await self.orch.handle_message({"type": "transcript", "text": "still nothing"})
        await self._wait_for_request("get_location")
        await self.orch.shutdown()

        self.assertEqual(self.dispatcher.calls, 1)
        self.assertEqual(self.dispatcher.alerts, 1)
        self.assertEqual(self.orch.engine.record.location, LOCATION_UNAVAILABLE)
        self.orch.session_logger.save_session_log.assert_called_once()
        self.orch.session_logger.generate_ems_report.assert_called_once()

    async def test_shutdown_during_frame_request_finishes_turn(self):
        self.orch.engine.frame_timeout = 30

        await self.orch.handle_message({"type": "transcript", "text": "He's not moving"})
        turn_tasks = list(self.orch._turn_tasks)
        await self._wait_for_request("capture_frame")
        await self.orch.shutdown()

        for task in turn_tasks:
            self.assertTrue(task.done())
            self.assertFalse(task.cancelled())
            self.assertIsNone(task.exception())
        self.assertEqual(self.ws.of_type("instruction")[-1]["text"], CANNED_RESPONSES[0])
        self.assertIsNone(self.orch.engine.last_image)
        self.orch.session_logger.save_session_log.assert_called_once()

    async def test_requests_after_shutdown_return_none(self):
        await self.orch.shutdown()

        self.assertIsNone(await self.orch.capture_frame())
        self.assertIsNone(await self.orch.get_current_location())
        self.assertEqual(self.ws.of_type("capture_frame"), [])


if __name__ == "__main__":
    unittest.main()
