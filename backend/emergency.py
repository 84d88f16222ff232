"""
Emergency escalation: final assessment, emergency call, family alert.

EmergencyEscalation.run() assumes it is invoked at most once per incident.
The ConversationEngine's emergency latch is the only guard.
"""

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from assessment import AssessmentRecord
from prompts import DESCRIPTION_UNAVAILABLE, ESCALATION_ANNOUNCEMENT, LOCATION_UNAVAILABLE

EMERGENCY_BACKEND_URL = os.environ.get("EMERGENCY_BACKEND_URL", "http://localhost:8000")
EMERGENCY_PHONE_NUMBER = os.environ.get("EMERGENCY_PHONE_NUMBER", "")
FAMILY_PHONE_NUMBER = os.environ.get("FAMILY_PHONE_NUMBER", "")
DISPATCH_TIMEOUT = 15.0


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    sid: str | None = None
    error: str | None = None


class DispatchClient:
    """HTTP client for the /api/emergency-call and /api/family-alert endpoints."""

    def __init__(
        self,
        base_url: str = EMERGENCY_BACKEND_URL,
        emergency_number: str | None = None,
        family_number: str | None = None,
        timeout: float = DISPATCH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.emergency_number = emergency_number or None
        self.family_number = family_number or None
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> "DispatchClient":
        return cls(
            base_url=EMERGENCY_BACKEND_URL,
            emergency_number=EMERGENCY_PHONE_NUMBER,
            family_number=FAMILY_PHONE_NUMBER,
        )

    async def trigger_emergency_call(self, record: AssessmentRecord) -> DispatchResult:
        print("[Dispatch] Triggering emergency call")
        return await self._post(
            "/api/emergency-call",
            {"toNumber": self.emergency_number, "patientData": record.to_dict()},
            sid_key="callSid",
        )

    async def send_family_alert(self, record: AssessmentRecord) -> DispatchResult:
        print("[Dispatch] Sending family alert")
        return await self._post(
            "/api/family-alert",
            {
                "toNumber": self.family_number,
                "patientData": record.to_dict(),
                "location": record.location,
            },
            sid_key="messageSid",
        )

    async def _post(self, path: str, payload: dict, sid_key: str) -> DispatchResult:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(path, json=payload)
        except httpx.HTTPError as e:
            print(f"[Dispatch] {path} transport error: {e}")
            return DispatchResult(success=False, error=str(e) or type(e).__name__)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error or not body.get("success"):
            error = body.get("error") or f"HTTP {response.status_code}"
            print(f"[Dispatch] {path} failed: {error}")
            return DispatchResult(success=False, sid=body.get(sid_key), error=error)

        return DispatchResult(success=True, sid=body.get(sid_key))


def format_location(coords) -> str | None:
    if not coords:
        return None
    lat, long = coords
    return f"{lat:.6f}, {long:.6f}"


class EmergencyEscalation:
    def __init__(self, gateway, location, dispatcher, speech=None, transcript=None):
        self.gateway = gateway
        self.location = location
        self.dispatcher = dispatcher
        self.speech = speech
        self.transcript = transcript
        self.call_result: DispatchResult | None = None
        self.alert_result: DispatchResult | None = None

    async def run(self, record: AssessmentRecord, last_image: bytes | None) -> AssessmentRecord:
        """Finalize the assessment, contact emergency services and family, announce."""
        print("[Escalation] Starting emergency services trigger")

        # Location and description do not depend on each other
        location, description = await asyncio.gather(
            self._resolve_location(),
            self._describe_patient(last_image),
        )

        final = record.merge({
            "location": location,
            "patient_description": description,
            "timestamp": datetime.now(timezone.utc),
        })
        print(f"[Escalation] Final assessment: {final.to_dict()}")
        if self.transcript:
            self.transcript.log_assessment(final, source="escalation")

        call_result, alert_result = await asyncio.gather(
            self._dispatch("emergency_call", self.dispatcher.trigger_emergency_call, final),
            self._dispatch("family_alert", self.dispatcher.send_family_alert, final),
        )
        self.call_result = call_result
        self.alert_result = alert_result

        if self.speech:
            try:
                await self.speech.speak(ESCALATION_ANNOUNCEMENT)
            except Exception as e:
                print(f"[Escalation] Announcement failed: {e}")

        return final

    async def _resolve_location(self) -> str:
        try:
            coords = await self.location.get_current_location()
        except Exception as e:
            print(f"[Escalation] Location error: {e}")
            return LOCATION_UNAVAILABLE
        formatted = format_location(coords)
        print(f"[Escalation] Location: {formatted or LOCATION_UNAVAILABLE}")
        return formatted or LOCATION_UNAVAILABLE

    async def _describe_patient(self, image: bytes | None) -> str:
        if not image or not self.gateway.configured:
            return DESCRIPTION_UNAVAILABLE
        try:
            return await self.gateway.describe_patient(image)
        except Exception as e:
            print(f"[Escalation] Patient description error: {e}")
            return DESCRIPTION_UNAVAILABLE

    async def _dispatch(self, kind: str, send, record: AssessmentRecord) -> DispatchResult:
        try:
            result = await send(record)
        except Exception as e:
            result = DispatchResult(success=False, error=str(e))
        if result.success:
            print(f"[Escalation] {kind} sent: {result.sid}")
        else:
            print(f"[Escalation] {kind} failed: {result.error}")
        if self.transcript:
            self.transcript.log_dispatch(kind, result.success, result.sid, result.error)
        return result
