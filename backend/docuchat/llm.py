import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from .config import PREDICTION_TIMEOUT_SECONDS, REPLICATE_API_BASE, REPLICATE_API_TOKEN

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}
POLL_INTERVAL_SECONDS = 1.0


class LLMError(Exception):
    pass


def parse_model_string(model_string: str) -> Tuple[str, str]:
    if "/" not in model_string:
        raise LLMError(f"Invalid model format: {model_string}. Expected 'owner/model-name'.")
    owner, name = model_string.split("/", 1)
    if not owner or not name:
        raise LLMError(f"Invalid model format: {model_string}. Expected 'owner/model-name'.")
    return owner, name


def _get_api_token() -> str:
    if not REPLICATE_API_TOKEN:
        raise LLMError("Replicate API not configured")
    return REPLICATE_API_TOKEN


def _headers(api_token: str, **extra: str) -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {api_token}",
        "Content-Type": "application/json",
    }
    headers.update(extra)
    return headers


def build_chat_input(
    messages: List[Dict[str, str]],
    system_prompt: str,
    max_tokens: int,
) -> Dict[str, Any]:
    """Map chat turns onto the prompt/system_prompt input of text models.

    The last turn must come from the user; earlier turns are folded into the
    prompt as a transcript so the model keeps the conversation context.
    """
    if not messages or messages[-1].get("role") != "user":
        raise LLMError("No user message found")

    last = messages[-1].get("content", "")
    history = [m for m in messages[:-1] if m.get("role") in ("user", "assistant")]
    if history:
        transcript = "\n\n".join(f"{m['role'].capitalize()}: {m.get('content', '')}" for m in history)
        prompt = f"{transcript}\n\nUser: {last}"
    else:
        prompt = last

    return {
        "prompt": prompt,
        "system_prompt": system_prompt,
        "max_tokens": max_tokens,
    }


def _join_output(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, list):
        return "".join(str(part) for part in output)
    return str(output)


async def create_prediction(
    client: httpx.AsyncClient,
    model: str,
    input_payload: Dict[str, Any],
    stream: bool = False,
    wait: bool = False,
) -> Dict[str, Any]:
    owner, name = parse_model_string(model)
    api_token = _get_api_token()
    url = f"{REPLICATE_API_BASE}/models/{owner}/{name}/predictions"
    headers = _headers(api_token, Prefer="wait") if wait else _headers(api_token)
    payload: Dict[str, Any] = {"input": input_payload}
    if stream:
        payload["stream"] = True

    resp = await client.post(url, headers=headers, json=payload)
    if resp.status_code not in (200, 201):
        raise LLMError(f"Replicate API error ({resp.status_code}): {resp.text[:500]}")
    return resp.json()


async def stream_prediction(model: str, input_payload: Dict[str, Any]) -> AsyncIterator[str]:
    """Start a streaming prediction and yield the raw lines of its event stream."""
    async with httpx.AsyncClient(timeout=PREDICTION_TIMEOUT_SECONDS) as client:
        prediction = await create_prediction(client, model, input_payload, stream=True)
        stream_url = (prediction.get("urls") or {}).get("stream")
        if not stream_url:
            raise LLMError(f"Model {model} does not support streaming")

        headers = {
            "Authorization": f"Bearer {_get_api_token()}",
            "Accept": "text/event-stream",
            "Cache-Control": "no-store",
        }
        logger.info("Streaming prediction %s from %s", prediction.get("id"), model)
        async with client.stream("GET", stream_url, headers=headers) as resp:
            if resp.status_code != 200:
                body = await resp.aread()
                raise LLMError(f"Replicate stream error ({resp.status_code}): {body.decode()[:500]}")
            async for line in resp.aiter_lines():
                yield line


async def run_prediction(model: str, input_payload: Dict[str, Any]) -> str:
    """Run a prediction to completion and return its text output."""
    async with httpx.AsyncClient(timeout=PREDICTION_TIMEOUT_SECONDS) as client:
        prediction = await create_prediction(client, model, input_payload, wait=True)
        get_url = (prediction.get("urls") or {}).get("get")
        waited = 0.0
        while prediction.get("status") not in TERMINAL_STATUSES:
            if not get_url or waited >= PREDICTION_TIMEOUT_SECONDS:
                raise LLMError(f"Prediction {prediction.get('id')} did not finish in time")
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
            waited += POLL_INTERVAL_SECONDS
            resp = await client.get(get_url, headers=_headers(_get_api_token()))
            if resp.status_code != 200:
                raise LLMError(f"Replicate API error ({resp.status_code}): {resp.text[:500]}")
            prediction = resp.json()

    status = prediction.get("status")
    if status != "succeeded":
        raise LLMError(f"Prediction {status}: {prediction.get('error') or 'unknown error'}")
    return _join_output(prediction.get("output"))


async def complete_chat(
    messages: List[Dict[str, str]],
    model: str,
    system_prompt: str,
    max_tokens: int,
    temperature: Optional[float] = None,
) -> str:
    input_payload = build_chat_input(messages, system_prompt, max_tokens)
    if temperature is not None:
        input_payload["temperature"] = temperature
    return await run_prediction(model, input_payload)
