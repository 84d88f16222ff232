"""
Reasoning gateway: one logical multimodal completion per turn.

Primary: Dedalus SDK (DAuth credential isolation: API keys encrypted
client-side, decrypted only inside sealed hardware enclaves).
Fallback: Direct OpenAI if Dedalus unavailable.
Neither configured: deterministic canned responses keyed by turn count.
"""

import base64
import os
from dataclasses import dataclass
from typing import Sequence

from dedalus_labs import AsyncDedalus
from openai import AsyncOpenAI

from assessment import Message, Role, serialize_history
from prompts import (
    CANNED_RESPONSES,
    DEFAULT_GREETING,
    EMPTY_HISTORY,
    IMAGE_NOTE,
    INITIAL_GREETING_PROMPT,
    PATIENT_DESCRIPTION_PROMPT,
    REASONING_SYSTEM_PROMPT,
    TURN_PROMPT,
)
from signals import extract_marker

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
DEDALUS_API_KEY = os.environ.get("DEDALUS_API_KEY", "")
REASONING_MODEL = os.environ.get("REASONING_MODEL", "gpt-4o")
REQUEST_TIMEOUT = 20.0
MAX_TOKENS = 100


class GatewayUnavailable(Exception):
    """The remote model errored, timed out, or returned nothing usable."""


@dataclass(frozen=True)
class GatewayReply:
    text: str
    marker: str | None = None


def _image_part(image: bytes) -> dict:
    frame_b64 = base64.b64encode(image).decode("ascii")
    return {
        "type": "image_url",
        "image_url": {
            "url": f"data:image/jpeg;base64,{frame_b64}",
            "detail": "low",
        },
    }


def _build_messages(prompt: str, image: bytes | None, system: str | None = REASONING_SYSTEM_PROMPT) -> list[dict]:
    content = [{"type": "text", "text": prompt}]
    if image:
        content.append(_image_part(image))
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": content})
    return messages


def build_turn_prompt(history: Sequence[Message], has_image: bool) -> str:
    return TURN_PROMPT.format(
        history=serialize_history(history) or EMPTY_HISTORY,
        image_note=IMAGE_NOTE if has_image else "",
    )


class ReasoningGateway:
    def __init__(
        self,
        dedalus_api_key: str = "",
        openai_api_key: str = "",
        model: str = REASONING_MODEL,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.dedalus_api_key = dedalus_api_key
        self.openai_api_key = openai_api_key
        self.model = model
        self.timeout = timeout
        self._dedalus = None
        self._openai = None

    @classmethod
    def from_env(cls) -> "ReasoningGateway":
        return cls(
            dedalus_api_key=DEDALUS_API_KEY,
            openai_api_key=OPENAI_API_KEY,
            model=REASONING_MODEL,
        )

    @property
    def configured(self) -> bool:
        return bool(self.dedalus_api_key or self.openai_api_key)

    async def respond(self, image: bytes | None, history: Sequence[Message]) -> GatewayReply:
        """
        Get the next instruction for the bystander. Raises GatewayUnavailable
        when no provider returns usable text.
        """
        if not self.configured:
            return self._canned_reply(history)

        prompt = build_turn_prompt(history, has_image=bool(image))
        raw = await self._complete(_build_messages(prompt, image))
        result = extract_marker(raw)
        if not result.clean_text:
            raise GatewayUnavailable(f"Unusable model output: {raw!r}")
        print(f"[Gateway] Reply: {result.clean_text[:60]} (marker={result.marker})")
        return GatewayReply(text=result.clean_text, marker=result.marker)

    async def describe_patient(self, image: bytes) -> str:
        """One-shot patient description for emergency services, no history."""
        if not self.configured:
            raise GatewayUnavailable("No reasoning provider configured")
        raw = await self._complete(_build_messages(PATIENT_DESCRIPTION_PROMPT, image, system=None))
        description = extract_marker(raw).clean_text
        if not description:
            raise GatewayUnavailable("Empty patient description")
        return description

    async def initial_greeting(self) -> GatewayReply:
        if not self.configured:
            return GatewayReply(text=DEFAULT_GREETING)
        try:
            raw = await self._complete(_build_messages(INITIAL_GREETING_PROMPT, None))
        except GatewayUnavailable as e:
            print(f"[Gateway] Greeting fallback: {e}")
            return GatewayReply(text=DEFAULT_GREETING)
        result = extract_marker(raw)
        return GatewayReply(text=result.clean_text or DEFAULT_GREETING, marker=result.marker)

    # ── Providers ───────────────────────────────────────────────────────

    async def _complete(self, messages: list[dict]) -> str:
        # Primary: Dedalus (DAuth credential isolation)
        if self.dedalus_api_key:
            result = await self._complete_with_dedalus(messages)
            if result:
                return result

        # Fallback: direct OpenAI
        if self.openai_api_key:
            result = await self._complete_with_openai(messages)
            if result:
                return result

        raise GatewayUnavailable("All reasoning providers failed")

    async def _complete_with_dedalus(self, messages: list[dict]) -> str | None:
        try:
            if self._dedalus is None:
                self._dedalus = AsyncDedalus(api_key=self.dedalus_api_key, timeout=self.timeout)
            response = await self._dedalus.chat.completions.create(
                model=f"openai/{self.model}",
                messages=messages,
                max_tokens=MAX_TOKENS,
            )
            print("[Gateway] Dedalus call succeeded")
            return response.choices[0].message.content
        except Exception as e:
            print(f"[Gateway] Dedalus error: {e}")
            return None

    async def _complete_with_openai(self, messages: list[dict]) -> str | None:
        try:
            if self._openai is None:
                self._openai = AsyncOpenAI(api_key=self.openai_api_key, timeout=self.timeout)
            response = await self._openai.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=MAX_TOKENS,
            )
            print("[Gateway] OpenAI call succeeded")
            return response.choices[0].message.content
        except Exception as e:
            print(f"[Gateway] OpenAI error: {e}")
            return None

    def _canned_reply(self, history: Sequence[Message]) -> GatewayReply:
        user_turns = sum(1 for m in history if m.role == Role.USER)
        index = min(max(user_turns - 1, 0), len(CANNED_RESPONSES) - 1)
        result = extract_marker(CANNED_RESPONSES[index])
        print(f"[Gateway] Canned reply #{index}")
        return GatewayReply(text=result.clean_text, marker=result.marker)
