"""
LLM provider boundary.

Model output is untrusted text. JSON answers are parsed into Ok(value) or
Malformed(raw_text) and every caller decides what an unusable answer means
for it; nothing downstream indexes into a raw model response.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Union

import anthropic

logger = logging.getLogger("llm")

LLM_MODEL = os.getenv("LLM_MODEL", "claude-sonnet-4-20250514")


class LLMError(Exception):
    """The provider call itself failed (network, auth, rate limit...)."""


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class Malformed:
    raw_text: str
    reason: str = ""


Parsed = Union[Ok, Malformed]


def get_anthropic_client() -> Optional[anthropic.Anthropic]:
    key = os.getenv("ANTHROPIC_API_KEY", "")
    if not key or key == "your_anthropic_api_key_here":
        return None
    return anthropic.Anthropic(api_key=key)


_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def strip_code_fences(text: str) -> str:
    text = (text or "").strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text)
        text = _FENCE_CLOSE.sub("", text)
    return text.strip()


def parse_json_object(raw_text: Optional[str]) -> Parsed:
    """Ok(dict) when the text is a JSON object, Malformed otherwise."""
    if raw_text is None:
        return Malformed("", "empty response")
    cleaned = strip_code_fences(raw_text)
    if not cleaned:
        return Malformed(raw_text, "empty response")
    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError as e:
        # Models sometimes wrap the object in prose; try the outermost braces.
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            return Malformed(raw_text, f"invalid JSON: {e}")
        try:
            value = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e2:
            return Malformed(raw_text, f"invalid JSON: {e2}")
    if not isinstance(value, dict):
        return Malformed(raw_text, f"expected a JSON object, got {type(value).__name__}")
    return Ok(value)


def complete_text(client, system: str, prompt: str, max_tokens: int = 4000, temperature: float = 0.7) -> str:
    try:
        message = client.messages.create(
            model=LLM_MODEL,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
    except anthropic.APIError as e:
        logger.error("LLM call failed: %s", e)
        raise LLMError(str(e)) from e
    text = "".join(getattr(block, "text", "") for block in message.content)
    logger.info("LLM call complete: %d chars (%s in / %s out tokens)",
                len(text), message.usage.input_tokens, message.usage.output_tokens)
    return text


def stream_text(client, system: str, prompt: str, max_tokens: int = 2000, temperature: float = 0.7) -> Iterator[str]:
    """Yield text deltas as the model produces them."""
    try:
        with client.messages.stream(
            model=LLM_MODEL,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            for text in stream.text_stream:
                yield text
    except anthropic.APIError as e:
        logger.error("LLM stream failed: %s", e)
        raise LLMError(str(e)) from e
