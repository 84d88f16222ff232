"""
Keyword heuristics that turn free text into assessment updates.

Two vocabularies: what a bystander says about the scene, and how the model
phrases its own observations. Negative signals are always checked before
positive ones.
"""

import re
from dataclasses import dataclass

from assessment import AssessmentRecord, Pulse, Breathing

MARKER_PATTERN = re.compile(r"\[MARKER:\s*([^\]]*?)\s*\]", re.IGNORECASE)

KNOWN_MARKERS = {"neck", "chest", "chin", "head"}

# Overlay region shown on the client for each marker
MARKER_REGIONS = {
    "neck": "neck",
    "chest": "chest",
    "chin": "head",
    "head": "head",
}

CPR_PHRASES = (
    "begin cpr",
    "start cpr",
    "starting cpr",
    "perform cpr",
    "commence cpr",
    "cpr now",
)

NEGATORS = {
    "no", "not", "never", "none", "without", "stopped", "cannot",
    "isnt", "arent", "wasnt", "werent", "dont", "doesnt", "didnt",
    "cant", "couldnt", "wont", "hasnt", "havent", "aint",
}
NEGATION_WINDOW_BEFORE = 4
NEGATION_WINDOW_AFTER = 1

BREATHING_TERMS = {"breathing", "breathe", "breathes", "breath", "breaths"}
PULSE_TERMS = {"pulse", "heartbeat"}
RESPONSIVE_TERMS = {"responsive", "responding", "respond", "responds", "conscious", "awake", "moving"}

# Bystander phrasing that settles a field regardless of word proximity
USER_NEGATIVE_PHRASES = {
    "breathing": ("not breathing", "no breathing", "isn't breathing", "stopped breathing"),
    "pulse": ("no pulse", "can't feel", "don't feel", "cannot feel", "nothing"),
    "responsive": (
        "not responding", "no response", "won't respond", "unresponsive",
        "unconscious", "not moving", "passed out",
    ),
}

CHEST_MOTION = re.compile(r"\bchest\b(?:\s+\w+){0,2}?\s+(?:moving|rising|going up|move|rise)\b")

# Model phrasing, negative lists first
MODEL_PHRASES = {
    "breathing": (
        (Breathing.ABSENT.value, ("not breathing", "no breathing", "isn't breathing", "breathing is absent", "breathing absent", "stopped breathing")),
        (Breathing.PRESENT.value, ("breathing normally", "breathing is present", "breathing present", "breathing detected")),
    ),
    "pulse": (
        (Pulse.ABSENT.value, ("no pulse", "pulse absent", "pulse is absent", "without a pulse")),
        (Pulse.PRESENT.value, ("pulse found", "found a pulse", "pulse present", "pulse is present", "pulse detected")),
    ),
    "responsive": (
        ("no", ("not responsive", "unresponsive", "not responding", "unconscious")),
        ("yes", ("responsive now", "is awake now", "responding to you")),
    ),
    "airway": (
        ("blocked", ("airway blocked", "airway is blocked", "airway is obstructed", "airway obstruction")),
        ("clear", ("airway clear", "airway is clear", "airway is open")),
    ),
}


@dataclass(frozen=True)
class MarkerResult:
    clean_text: str
    marker: str | None = None


def _normalize(text) -> str:
    if not isinstance(text, str):
        return ""
    return text.lower().replace("’", "'")


def _tokens(lower: str) -> list[str]:
    return [t.replace("'", "") for t in re.findall(r"[a-z']+", lower)]


def _term_polarity(tokens: list[str], terms: set[str]) -> bool | None:
    """
    Return False if any occurrence of `terms` is negated, True if the terms
    only appear unnegated, None if they never appear.
    """
    found = False
    for i, token in enumerate(tokens):
        if token not in terms:
            continue
        found = True
        window = tokens[max(0, i - NEGATION_WINDOW_BEFORE):i] + tokens[i + 1:i + 1 + NEGATION_WINDOW_AFTER]
        if any(w in NEGATORS for w in window):
            return False
    return True if found else None


def parse_user_text(text, current_record: AssessmentRecord | None = None) -> dict:
    """
    Extract breathing, pulse and responsiveness updates from what the
    bystander said. Only fields with a signal are returned.
    """
    lower = _normalize(text)
    if not lower.strip():
        return {}

    updates = {}

    # Chest movement is a breathing observation, not a responsiveness one
    chest_motion = CHEST_MOTION.search(lower)
    without_chest = CHEST_MOTION.sub(" ", lower)
    tokens = _tokens(lower)
    tokens_without_chest = _tokens(without_chest)

    # Breathing
    if any(p in lower for p in USER_NEGATIVE_PHRASES["breathing"]) or (
        "don't see" in lower and "chest" in lower
    ):
        updates["breathing"] = "absent"
    else:
        polarity = _term_polarity(tokens, BREATHING_TERMS)
        if polarity is None and chest_motion:
            polarity = _term_polarity(_tokens(lower[:chest_motion.end()]), {"moving", "rising", "move", "rise", "up"})
        if polarity is False:
            updates["breathing"] = "absent"
        elif polarity is True:
            updates["breathing"] = "present"

    # Pulse
    if any(p in lower for p in USER_NEGATIVE_PHRASES["pulse"]):
        updates["pulse"] = "absent"
    else:
        polarity = _term_polarity(tokens, PULSE_TERMS)
        if polarity is False:
            updates["pulse"] = "absent"
        elif polarity is True:
            updates["pulse"] = "present"

    # Responsiveness
    if any(p in without_chest for p in USER_NEGATIVE_PHRASES["responsive"]):
        updates["responsive"] = "no"
    else:
        polarity = _term_polarity(tokens_without_chest, RESPONSIVE_TERMS)
        if polarity is False:
            updates["responsive"] = "no"
        elif polarity is True:
            updates["responsive"] = "yes"

    return updates


def parse_model_text(text) -> dict:
    """Extract updates from the assistant's own phrasing of an observation."""
    lower = _normalize(text)
    updates = {}
    for field_name, rules in MODEL_PHRASES.items():
        for value, phrases in rules:
            if any(p in lower for p in phrases):
                updates[field_name] = value
                break
    return updates


def extract_marker(text) -> MarkerResult:
    """
    Pull the first named [MARKER:<name>] tag out of raw model output and strip
    every tag from the text shown to the bystander.
    """
    if not isinstance(text, str):
        return MarkerResult(clean_text="")
    names = (m.group(1) for m in MARKER_PATTERN.finditer(text))
    # An empty tag carries no marker
    marker = next((n for n in names if n), None)
    clean = MARKER_PATTERN.sub("", text).strip()
    return MarkerResult(clean_text=clean, marker=marker)


def marker_region(marker: str | None) -> str | None:
    if not marker:
        return None
    return MARKER_REGIONS.get(marker.lower())


def should_escalate(model_text, record: AssessmentRecord) -> bool:
    """True on an explicit CPR directive, or when pulse and breathing are both absent."""
    lower = _normalize(model_text)
    if any(p in lower for p in CPR_PHRASES):
        return True
    return record.pulse == Pulse.ABSENT and record.breathing == Breathing.ABSENT
