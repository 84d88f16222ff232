"""
Patient assessment record and conversation messages for one incident.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum


class Responsiveness(str, Enum):
    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"


class Airway(str, Enum):
    CLEAR = "clear"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"


class Breathing(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


class Pulse(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


class Role(str, Enum):
    USER = "User"
    ASSISTANT = "Assistant"


_ENUM_FIELDS = {
    "responsive": Responsiveness,
    "airway": Airway,
    "breathing": Breathing,
    "pulse": Pulse,
}

# Wire names used by the dispatch endpoints' patientData payload
_WIRE_NAMES = {
    "patient_description": "patientDescription",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AssessmentRecord:
    """
    Patient state for one incident.

    Enum fields only move from UNKNOWN to a concrete value, or get
    overwritten by a newer signal of the same kind.
    """
    responsive: Responsiveness = Responsiveness.UNKNOWN
    airway: Airway = Airway.UNKNOWN
    breathing: Breathing = Breathing.UNKNOWN
    pulse: Pulse = Pulse.UNKNOWN
    patient_description: str = ""
    location: str = ""
    timestamp: datetime = field(default_factory=_utc_now)

    @classmethod
    def create_initial(cls) -> "AssessmentRecord":
        return cls(timestamp=_utc_now())

    def merge(self, updates: dict | None) -> "AssessmentRecord":
        """
        Return a new record with every present field of `updates` applied.

        Missing or None values keep the receiver's value. Unknown keys,
        invalid enum values, blank strings and attempts to reset a field
        to "unknown" are ignored, so merge never fails.
        """
        if not updates:
            return replace(self)

        known = {f.name for f in fields(self)}
        changes = {}
        for name, value in updates.items():
            if name not in known or value is None:
                continue
            enum_type = _ENUM_FIELDS.get(name)
            if enum_type is not None:
                try:
                    value = enum_type(value)
                except ValueError:
                    continue
                if value.value == "unknown":
                    continue
            elif name == "timestamp":
                if not isinstance(value, datetime):
                    continue
            elif not isinstance(value, str) or not value.strip():
                continue
            changes[name] = value
        return replace(self, **changes)

    def to_dict(self) -> dict:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            data[_WIRE_NAMES.get(f.name, f.name)] = value
        return data


@dataclass(frozen=True)
class Message:
    role: Role
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role.value, "text": self.text}


def serialize_history(history) -> str:
    """Render the conversation as "Role: text" lines for the model prompt."""
    return "\n".join(f"{m.role.value}: {m.text}" for m in history)
