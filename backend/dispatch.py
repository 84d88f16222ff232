"""
Server side of emergency dispatch: renders the assessment into a spoken
report / SMS and hands it to Twilio.
"""

import os
import re

from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

TWILIO_ACCOUNT_SID = os.environ.get("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN = os.environ.get("TWILIO_AUTH_TOKEN", "")
TWILIO_PHONE_NUMBER = os.environ.get("TWILIO_PHONE_NUMBER", "")
EMERGENCY_PHONE_NUMBER = os.environ.get("EMERGENCY_PHONE_NUMBER", "")
FAMILY_PHONE_NUMBER = os.environ.get("FAMILY_PHONE_NUMBER", "")

VOICE = "Polly.Amy"
LANGUAGE = "en-GB"

DISPATCH_STATEMENT = (
    "This is an automated emergency alert. A bystander is performing CPR. "
    "Please dispatch emergency services immediately."
)

_client: Client | None = None


class DispatchError(Exception):
    pass


def _get_client() -> Client:
    global _client
    if _client is None:
        if not (TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN):
            raise DispatchError("Twilio credentials are not configured")
        _client = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)
    return _client


def build_patient_report(patient_data: dict | None) -> str:
    data = patient_data or {}
    report = f"""
        Emergency medical alert. This is an AI assistant from Emergency A R.
        A bystander has found an unresponsive person and is initiating CPR.

        Patient assessment:
        Airway: {data.get('airway') or 'unknown'}.
        Breathing: {data.get('breathing') or 'unknown'}.
        Pulse: {data.get('pulse') or 'unknown'}.
        Responsiveness: {data.get('responsive') or 'unknown'}.

        Patient description: {data.get('patientDescription') or 'Patient details unavailable'}.

        Location: {data.get('location') or 'Location unknown'}.

        CPR is in progress. Please dispatch emergency medical services immediately.
    """
    return re.sub(r"\s+", " ", report).strip()


def build_call_twiml(report: str) -> str:
    """Two readbacks of the report followed by the dispatch request."""
    response = VoiceResponse()
    response.pause(length=1)
    response.say(report, voice=VOICE, language=LANGUAGE)
    response.pause(length=2)
    response.say(f"I repeat. {report}", voice=VOICE, language=LANGUAGE)
    response.pause(length=1)
    response.say(DISPATCH_STATEMENT, voice=VOICE, language=LANGUAGE)
    return str(response)


def build_family_sms(patient_data: dict | None, location: str | None) -> str:
    description = (patient_data or {}).get("patientDescription") or "A person"
    return f"""EMERGENCY ALERT from EmergencyAR:

A bystander is providing emergency assistance to {description}.

Location: {location or 'Location being determined'}

Emergency services have been contacted. CPR is in progress.

This is an automated alert. Please stay calm and await further updates."""


def place_emergency_call(to_number: str | None, patient_data: dict | None) -> dict:
    report = build_patient_report(patient_data)
    print(f"[Dispatch] Patient report: {report}")
    destination = to_number or EMERGENCY_PHONE_NUMBER
    if not destination:
        raise DispatchError("No emergency phone number configured")

    call = _get_client().calls.create(
        twiml=build_call_twiml(report),
        to=destination,
        from_=TWILIO_PHONE_NUMBER,
    )
    print(f"[Dispatch] Call initiated: {call.sid}")
    return {"callSid": call.sid, "report": report}


def send_family_sms(to_number: str | None, patient_data: dict | None, location: str | None) -> dict:
    body = build_family_sms(patient_data, location)
    destination = to_number or FAMILY_PHONE_NUMBER
    if not destination:
        raise DispatchError("No family phone number configured")

    message = _get_client().messages.create(
        body=body,
        to=destination,
        from_=TWILIO_PHONE_NUMBER,
    )
    print(f"[Dispatch] SMS sent: {message.sid}")
    return {"messageSid": message.sid}
