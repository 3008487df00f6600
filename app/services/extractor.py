"""
LLM-powered deadline extractor.

Converts a forwarded message into an `ExtractedReminder`. The model is forced
to answer through a single function call so the reply is always JSON.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import openai
from dateutil import parser as dateutil_parser
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from app.types.reminder_contract import ExtractedReminder

_LOGGER = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────
# Prompts & function-tool definition
# ──────────────────────────────────────────────────────────────────────────

_SYSTEM_PROMPT = (
    "You extract deadlines from messages students forward from class group "
    "chats, emails and portals. Identify the single most important task, the "
    "course it belongs to, what kind of item it is and when it is due. "
    "Resolve relative dates ('tomorrow', 'next Monday') against the current "
    "time given below and answer with an ISO 8601 datetime including the UTC "
    "offset of the user's timezone. If no due date can be determined set "
    "`deadline` to null. Never invent a date."
)

_USER_TEMPLATE = (
    "# Current time\n{now}\n\n"
    "# User timezone\n{tz}\n\n"
    "# Message\n{text}"
)

_FUNCTION_DEF = {
    "name": "record_deadline",
    "description": "Record the task and deadline found in the message.",
    "parameters": {
        "type": "object",
        "properties": {
            "task": {"type": "string"},
            "course": {"type": ["string", "null"]},
            "type": {
                "type": "string",
                "enum": ["assignment", "exam", "class", "deadline", "event", "other"],
            },
            "deadline": {"type": ["string", "null"], "format": "date-time"},
            "location": {"type": ["string", "null"]},
            "notes": {"type": ["string", "null"]},
        },
        "required": ["task", "type", "deadline"],
        "additionalProperties": False,
    },
}

TOOLS = [{"type": "function", "function": _FUNCTION_DEF}]

# Retry only on transport / rate-limit / backend errors
RETRY_ERRORS = (
    openai.APIStatusError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.APITimeoutError,
)

_MAX_MESSAGE_CHARS = 4_000


def _build_messages(text: str, now: datetime, tz_name: str) -> List[ChatCompletionMessageParam]:
    return [
        {"role": "system", "content": _SYSTEM_PROMPT},
        {
            "role": "user",
            "content": _USER_TEMPLATE.format(
                now=now.astimezone(ZoneInfo(tz_name)).isoformat(),
                tz=tz_name,
                text=text[:_MAX_MESSAGE_CHARS],
            ),
        },
    ]


def fuzzy_deadline(text: str, *, now: datetime, tz_name: str) -> Optional[datetime]:
    """Best-effort date out of free text, read in ``tz_name``.

    Fields the text leaves out come from the current local time, so "Friday
    5pm" lands on the coming Friday. A result less than a day in the past
    means the next occurrence ("11pm" said at 11:30pm).
    """
    tz = ZoneInfo(tz_name)
    local_now = now.astimezone(tz).replace(second=0, microsecond=0)
    try:
        parsed = dateutil_parser.parse(text, default=local_now.replace(tzinfo=None), fuzzy=True)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    if now - timedelta(days=1) < parsed <= now:
        parsed += timedelta(days=1)
    return parsed


def parse_arguments(
    raw: str | Dict[str, Any], tz_name: str, *, now: Optional[datetime] = None
) -> ExtractedReminder:
    """Validate the function-call arguments.

    Naive deadlines are read in ``tz_name``; anything that is not ISO 8601
    ("Friday 11:59pm") goes through `fuzzy_deadline` and becomes null when
    that fails too.
    """
    data = json.loads(raw) if isinstance(raw, str) else dict(raw)
    deadline = data.get("deadline")
    if isinstance(deadline, str) and deadline.strip():
        text = deadline.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = fuzzy_deadline(text, now=now or datetime.now(timezone.utc), tz_name=tz_name)
        if parsed is not None and parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=ZoneInfo(tz_name))
        data["deadline"] = parsed
    else:
        data["deadline"] = None
    return ExtractedReminder.model_validate(data)


def fallback_extraction(text: str, *, now: datetime, tz_name: str) -> ExtractedReminder:
    """Used when the model is unreachable: the raw text is the task."""
    return ExtractedReminder(
        task=text.strip()[:100] or "todo",
        deadline=fuzzy_deadline(text, now=now, tz_name=tz_name),
    )


class ReminderExtractor:
    """Extraction service over the OpenAI chat completions API.

    Without an API key it returns a stub "due in 48 h" reminder so the rest
    of the pipeline can be exercised locally. When the API fails, or answers
    with something unusable, it falls back to `fallback_extraction`.
    """

    def __init__(self, api_key: Optional[str], model: str = "gpt-4.1", timeout: float = 30.0):
        self._model = model
        self._timeout = timeout
        self._client = AsyncOpenAI(api_key=api_key) if api_key else None

    @retry(
        wait=wait_random_exponential(multiplier=1, max=30),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(RETRY_ERRORS),
        reraise=True,
    )
    async def _call_openai(self, messages: List[ChatCompletionMessageParam]) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            tools=TOOLS,
            tool_choice={"type": "function", "function": {"name": "record_deadline"}},
            timeout=self._timeout,
        )
        msg = response.choices[0].message
        if msg.tool_calls:
            return msg.tool_calls[0].function.arguments
        return msg.content or ""

    async def extract(self, text: str, *, now: datetime, tz_name: str) -> ExtractedReminder:
        if self._client is None:
            # local dev shortcut
            return ExtractedReminder(
                task=text.strip()[:120] or "todo",
                deadline=now + timedelta(hours=48),
            )

        try:
            raw_json = await self._call_openai(_build_messages(text, now, tz_name))
            _LOGGER.info("LLM raw JSON: %s", raw_json)
            return parse_arguments(raw_json, tz_name, now=now)
        except openai.OpenAIError as exc:
            _LOGGER.error("Extraction request failed, using fallback: %s", exc)
        except (ValueError, ValidationError) as exc:
            _LOGGER.warning("Failed to parse assistant output, using fallback: %s", exc)
        return fallback_extraction(text, now=now, tz_name=tz_name)
