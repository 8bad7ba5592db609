"""Streaming relay between the upstream model API and the browser.

The upstream prediction stream is read line by line and parsed into
:class:`UpstreamEvent` records. Two framings are understood:

* standard server-sent events (``event:`` / ``data:`` fields, dispatched on a
  blank line, multi-line data joined with ``\\n``);
* bare JSON lines carrying an ``event`` key, e.g.
  ``{"event": "output", "data": "Hello"}``.

Anything else on the wire (comments, free text) is ignored.

Browser-facing events are ``data: <json>\\n\\n`` lines holding either a
``{"content": ...}`` fragment or the terminal ``{"done": true}`` marker. Every
stream ends with exactly one ``done`` event, whether the upstream finished,
reported an error, or raised.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from . import llm
from .config import CHAT_MAX_TOKENS, CHAT_MODEL

logger = logging.getLogger(__name__)

OUTPUT = "output"
DONE = "done"
ERROR = "error"

ERROR_MESSAGE = "An error occurred while processing your request"
APOLOGY_MESSAGE = (
    "I apologize, but I encountered an error while processing your request. Please try again."
)


@dataclass
class UpstreamEvent:
    event: str
    data: str = ""


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


DONE_EVENT = format_event({"done": True})
APOLOGY_EVENT = format_event({"error": ERROR_MESSAGE, "content": APOLOGY_MESSAGE})


def _payload_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("content", "text", "output"):
            if isinstance(value.get(key), str):
                return value[key]
    return json.dumps(value)


def _parse_json_event(line: str) -> Optional[UpstreamEvent]:
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict) or not isinstance(record.get("event"), str):
        return None
    return UpstreamEvent(record["event"], _payload_text(record.get("data")))


async def parse_upstream(lines: AsyncIterable[str]) -> AsyncIterator[UpstreamEvent]:
    event_name: Optional[str] = None
    data_lines: List[str] = []

    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if event_name is not None or data_lines:
                yield UpstreamEvent(event_name or "message", "\n".join(data_lines))
            event_name, data_lines = None, []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("{"):
            record = _parse_json_event(line)
            if record is not None:
                yield record
                continue

        field, sep, value = line.partition(":")
        if not sep:
            continue
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event_name = value
        elif field == "data":
            data_lines.append(value)

    # Stream closed without a trailing blank line
    if event_name is not None or data_lines:
        yield UpstreamEvent(event_name or "message", "\n".join(data_lines))


def _error_detail(data: str) -> str:
    try:
        parsed = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return data
    if isinstance(parsed, dict) and parsed.get("detail"):
        return str(parsed["detail"])
    return data


async def relay_events(events: AsyncIterable[UpstreamEvent]) -> AsyncIterator[str]:
    forwarded = 0
    try:
        async for event in events:
            if event.event == OUTPUT:
                if event.data:
                    forwarded += 1
                    yield format_event({"content": event.data})
            elif event.event == DONE:
                break
            elif event.event == ERROR:
                logger.warning("Upstream reported an error: %s", _error_detail(event.data))
                yield APOLOGY_EVENT
                yield DONE_EVENT
                return
    except Exception as e:
        logger.error("Project chat stream failed after %d chunks: %s", forwarded, e, exc_info=True)
        yield APOLOGY_EVENT
        yield DONE_EVENT
        return
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as e:
                logger.warning("Closing upstream stream failed: %s", e)

    logger.info("Project chat stream completed (%d chunks)", forwarded)
    yield DONE_EVENT


async def _open_upstream(
    messages: List[Dict[str, str]],
    system_prompt: str,
    model: str,
    max_tokens: int,
) -> AsyncIterator[UpstreamEvent]:
    input_payload = llm.build_chat_input(messages, system_prompt, max_tokens)
    lines = llm.stream_prediction(model, input_payload)
    try:
        async for event in parse_upstream(lines):
            yield event
    finally:
        await lines.aclose()


def stream_project_chat(
    messages: List[Dict[str, str]],
    system_prompt: str,
    model: str = CHAT_MODEL,
    max_tokens: int = CHAT_MAX_TOKENS,
) -> AsyncIterator[str]:
    return relay_events(_open_upstream(messages, system_prompt, model, max_tokens))
