"""
ConversationEngine: turn-taking state machine for one incident.

Owns the message history and the AssessmentRecord. Each turn:
user text → (optional) frame → local signals → reasoning gateway →
model signals → escalation check. At most one turn runs at a time;
escalation fires at most once and runs in the background.
"""

import asyncio
import time
from dataclasses import dataclass

from assessment import AssessmentRecord, Message, Role
from prompts import GATEWAY_APOLOGY, TURN_APOLOGY
from signals import parse_model_text, parse_user_text, should_escalate

FRAME_CAPTURE_TIMEOUT = 1.5
FRAME_CAPTURE_INTERVAL = 5


@dataclass(frozen=True)
class TurnResult:
    text: str
    marker: str | None = None
    escalated: bool = False


class ConversationEngine:
    def __init__(
        self,
        gateway,
        frame_source=None,
        speech=None,
        escalation=None,
        transcript=None,
        record: AssessmentRecord | None = None,
        frame_timeout: float = FRAME_CAPTURE_TIMEOUT,
    ):
        self.gateway = gateway
        self.frame_source = frame_source
        self.speech = speech
        self.escalation = escalation
        self.transcript = transcript
        self.frame_timeout = frame_timeout

        self.record = record or AssessmentRecord.create_initial()
        self._history: list[Message] = []
        self.current_instruction = ""
        self.current_marker: str | None = None

        self._in_flight = False
        self._user_turns = 0
        self._has_image = False
        self.last_image: bytes | None = None

        self.emergency_active = False
        self._escalation_task: asyncio.Task | None = None

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._history)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def start(self) -> TurnResult:
        """Open the incident with a greeting from the gateway."""
        reply = await self.gateway.initial_greeting()
        self._append(Role.ASSISTANT, reply.text)
        self.current_instruction = reply.text
        self.current_marker = reply.marker
        await self._speak(reply.text)
        return TurnResult(text=reply.text, marker=reply.marker)

    async def process_input(self, user_text: str) -> TurnResult | None:
        if not user_text or not user_text.strip() or self._in_flight:
            print("[Engine] Skipping - empty text or turn already in flight")
            return None

        self._in_flight = True
        start = time.time()
        try:
            return await self._run_turn(user_text)
        except Exception as e:
            print(f"[Engine] Error processing input: {e}")
            self.current_instruction = TURN_APOLOGY
            self.current_marker = None
            await self._speak(TURN_APOLOGY)
            return TurnResult(text=TURN_APOLOGY)
        finally:
            self._in_flight = False
            print(f"[Engine] Turn finished in {time.time() - start:.2f}s")

    async def _run_turn(self, user_text: str) -> TurnResult:
        self._append(Role.USER, user_text)
        self._user_turns += 1

        image = await self._maybe_capture_frame()

        # Bystander signals land before the gateway call so this turn's
        # escalation check sees them
        self._apply(parse_user_text(user_text, self.record), source="user")

        try:
            reply = await self.gateway.respond(image, self.history)
            text, marker = reply.text, reply.marker
        except Exception as e:
            print(f"[Engine] Gateway failed: {e}")
            text, marker = GATEWAY_APOLOGY, None

        self._append(Role.ASSISTANT, text)
        self.current_instruction = text
        self.current_marker = marker
        if marker and self.transcript:
            self.transcript.log_marker(marker)
        await self._speak(text)

        self._apply(parse_model_text(text), source="model")

        escalated = False
        if should_escalate(text, self.record) and not self.emergency_active:
            print("[Engine] CPR triggered - initiating emergency escalation")
            self.emergency_active = True
            escalated = True
            self._start_escalation()

        return TurnResult(text=text, marker=marker, escalated=escalated)

    async def wait_for_escalation(self) -> None:
        if self._escalation_task is not None:
            await self._escalation_task

    # ── Helpers ─────────────────────────────────────────────────────────

    def _should_capture_frame(self) -> bool:
        return not self._has_image or self._user_turns % FRAME_CAPTURE_INTERVAL == 0

    async def _maybe_capture_frame(self) -> bytes | None:
        if self.frame_source is None or not self._should_capture_frame():
            return None
        try:
            image = await asyncio.wait_for(self.frame_source.capture_frame(), self.frame_timeout)
        except asyncio.TimeoutError:
            print("[Engine] Frame capture timed out, continuing text-only")
            return None
        except Exception as e:
            print(f"[Engine] Failed to capture frame: {e}")
            return None
        if image:
            self._has_image = True
            self.last_image = image
        return image or None

    def _apply(self, updates: dict, source: str) -> None:
        if not updates:
            return
        print(f"[Engine] Assessment updates from {source}: {updates}")
        self.record = self.record.merge(updates)
        if self.transcript:
            self.transcript.log_assessment(self.record, source=source)

    def _append(self, role: Role, text: str) -> None:
        self._history.append(Message(role=role, text=text))
        if not self.transcript:
            return
        if role == Role.USER:
            self.transcript.log_user_transcript(text)
        else:
            self.transcript.log_assistant_transcript(text)

    async def _speak(self, text: str) -> None:
        if self.speech is None:
            return
        try:
            await self.speech.speak(text)
        except Exception as e:
            print(f"[Engine] Speech output failed: {e}")

    def _start_escalation(self) -> None:
        if self.transcript:
            self.transcript.log_escalation(self.record)
        if self.escalation is None:
            return
        self._escalation_task = asyncio.create_task(
            self._run_escalation(self.record, self.last_image)
        )

    async def _run_escalation(self, record: AssessmentRecord, image: bytes | None) -> None:
        try:
            final = await self.escalation.run(record, image)
        except Exception as e:
            print(f"[Engine] Emergency escalation error: {e}")
            return
        self.record = self.record.merge({
            "location": final.location,
            "patient_description": final.patient_description,
            "timestamp": final.timestamp,
        })
