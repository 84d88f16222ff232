"""
Session orchestrator: bridges the phone client <-> ConversationEngine.

One websocket is one incident. The orchestrator plays the client-side
collaborators for the engine over the socket:
- frame source:      asks the phone for a camera frame, awaits the reply
- location provider: asks the phone for GPS, awaits the reply
- speech output:     sends text for on-device TTS
Transcripts from on-device speech-to-text each start one turn.
"""

import asyncio
import base64
import binascii
import json
import uuid

from emergency import DispatchClient, EmergencyEscalation
from engine import ConversationEngine
from session_logger import SessionLogger
from signals import marker_region

LOCATION_TIMEOUT = 5.0


class Orchestrator:
    def __init__(self, client_ws, gateway, dispatcher: DispatchClient | None = None):
        self.client_ws = client_ws
        self.gateway = gateway
        self._shutdown = False
        self._frame_waiter: asyncio.Future | None = None
        self._location_waiter: asyncio.Future | None = None
        self._turn_tasks: set[asyncio.Task] = set()
        self.location_timeout = LOCATION_TIMEOUT

        # Session logging
        self.session_id = str(uuid.uuid4())
        self.session_logger = SessionLogger(self.session_id)

        escalation = EmergencyEscalation(
            gateway=gateway,
            location=self,
            dispatcher=dispatcher or DispatchClient.from_env(),
            speech=self,
            transcript=self.session_logger,
        )
        self.engine = ConversationEngine(
            gateway=gateway,
            frame_source=self,
            speech=self,
            escalation=escalation,
            transcript=self.session_logger,
        )

    async def run(self):
        print(f"[Orchestrator] Incident {self.session_id} started")
        greeting = await self.engine.start()
        await self._send_instruction(greeting.text, greeting.marker)
        await self._client_loop()

    async def shutdown(self):
        self._shutdown = True
        # Pending phone requests resolve empty so running turns and escalation finish
        self._resolve(self._frame_waiter, None)
        self._resolve(self._location_waiter, None)
        try:
            if self._turn_tasks:
                await asyncio.gather(*self._turn_tasks, return_exceptions=True)
            await self.engine.wait_for_escalation()
        except Exception as e:
            print(f"[Orchestrator] Escalation did not finish cleanly: {e}")
        finally:
            self._save_logs()

    def _save_logs(self):
        try:
            self.session_logger.save_session_log()
            self.session_logger.generate_ems_report()
        except Exception as e:
            print(f"[Orchestrator] Error saving session logs: {e}")

    # ── Client → engine ────────────────────────────────────────────────

    async def _client_loop(self):
        while not self._shutdown:
            raw = await self.client_ws.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                print(f"[Orchestrator] Ignoring malformed message: {raw[:60]}")
                continue
            await self.handle_message(msg)

    async def handle_message(self, msg: dict):
        msg_type = msg.get("type")

        if msg_type == "transcript":
            text = msg.get("text", "")
            # Runs as its own task so this loop keeps serving frame/location replies
            task = asyncio.create_task(self._handle_transcript(text))
            self._turn_tasks.add(task)
            task.add_done_callback(self._turn_tasks.discard)

        elif msg_type == "frame":
            self._resolve(self._frame_waiter, self._decode_frame(msg.get("data")))

        elif msg_type == "location":
            if msg.get("status") == "denied" or "lat" not in msg:
                coords = None
            else:
                try:
                    coords = (float(msg["lat"]), float(msg["long"]))
                except (KeyError, TypeError, ValueError):
                    coords = None
            self._resolve(self._location_waiter, coords)

    async def _handle_transcript(self, text: str):
        result = await self.engine.process_input(text)
        if result is None:
            return
        await self._send_instruction(result.text, result.marker)
        await self._send_client({"type": "assessment", "assessment": self.engine.record.to_dict()})
        if result.escalated:
            await self._send_client({"type": "emergency", "status": "active"})

    # ── Collaborators for the engine ───────────────────────────────────

    async def capture_frame(self) -> bytes | None:
        if self._shutdown:
            return None
        loop = asyncio.get_running_loop()
        self._frame_waiter = loop.create_future()
        await self._send_client({"type": "capture_frame"})
        return await self._frame_waiter

    async def get_current_location(self):
        if self._shutdown:
            return None
        loop = asyncio.get_running_loop()
        self._location_waiter = loop.create_future()
        await self._send_client({"type": "get_location"})
        try:
            return await asyncio.wait_for(self._location_waiter, self.location_timeout)
        except asyncio.TimeoutError:
            print("[Orchestrator] Location request timed out")
            return None

    async def speak(self, text: str):
        await self._send_client({"type": "speak", "text": text})

    # ── Helpers ─────────────────────────────────────────────────────────

    def _resolve(self, waiter: asyncio.Future | None, value):
        if waiter is not None and not waiter.done():
            waiter.set_result(value)

    def _decode_frame(self, data) -> bytes | None:
        if not data:
            return None
        try:
            return base64.b64decode(data)
        except (binascii.Error, ValueError, TypeError):
            print("[Orchestrator] Could not decode frame")
            return None

    async def _send_instruction(self, text: str, marker: str | None):
        await self._send_client({
            "type": "instruction",
            "text": text,
            "marker": marker,
            "body_region": marker_region(marker),
        })

    async def _send_client(self, data: dict):
        try:
            await self.client_ws.send_json(data)
        except Exception:
            pass
