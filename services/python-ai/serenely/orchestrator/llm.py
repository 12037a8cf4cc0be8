"""
OpenAI-compatible chat completions client.

  - Retry with exponential backoff + jitter (429, 500, 502, 503, 504, timeouts)
  - One retry on the fallback model when the primary is missing or unauthorized
  - SSE streaming as an async generator; closing the generator closes the response
"""

import asyncio
import json
import logging
import random
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from ..core.config import Settings
from ..errors import LLMError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
FALLBACK_STATUS = {401, 404}
MAX_RETRIES = 3
BASE_DELAY = 1.0
MAX_DELAY = 16.0

Sleep = Callable[[float], Awaitable[None]]


def _supports_temperature(model: str) -> bool:
    return not model.lower().startswith("gpt-5")


def _brief_error(text: str) -> str:
    try:
        payload = json.loads(text)
    except ValueError:
        return text[:300]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return text[:300]


def _is_model_not_found(error: LLMError) -> bool:
    message = str(error).lower()
    return error.status_code in FALLBACK_STATUS or ("model" in message and "not" in message and "found" in message)


def _content_from_sse_line(line: str) -> tuple[Optional[str], bool]:
    """Returns (text, finished) for one SSE line."""
    line = line.strip()
    if not line.startswith("data:"):
        return None, False
    payload = line[5:].strip()
    if payload == "[DONE]":
        return None, True
    try:
        obj = json.loads(payload)
    except ValueError:
        return None, False
    if not isinstance(obj, dict):
        return None, False
    choices = obj.get("choices")
    if isinstance(choices, list):
        parts: List[str] = []
        finished = False
        for choice in choices:
            delta = choice.get("delta") if isinstance(choice, dict) else None
            message = choice.get("message") if isinstance(choice, dict) else None
            if isinstance(delta, dict) and isinstance(delta.get("content"), str):
                parts.append(delta["content"])
            elif isinstance(message, dict) and isinstance(message.get("content"), str):
                parts.append(message["content"])
            if isinstance(choice, dict) and choice.get("finish_reason"):
                finished = True
        return ("".join(parts) or None), finished
    if isinstance(obj.get("text"), str):
        return obj["text"], False
    return None, False


class LLMClient:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None, sleep: Sleep = asyncio.sleep, base_delay: float = BASE_DELAY) -> None:
        self._settings = settings
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._base_delay = base_delay

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.llm_timeout_seconds, connect=10),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    @property
    def _url(self) -> str:
        return f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        if not self._settings.openai_api_key:
            raise LLMError("No API key configured for the LLM provider. Set OPENAI_API_KEY.")
        return {
            "Authorization": f"Bearer {self._settings.openai_api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, messages: List[Dict[str, str]], model: str, temperature: Optional[float], max_tokens: Optional[int], stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if _supports_temperature(model):
            payload["temperature"] = temperature if temperature is not None else self._settings.llm_temperature
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if stream:
            payload["stream"] = True
        return payload

    def _backoff(self, attempt: int) -> float:
        return min(MAX_DELAY, self._base_delay * (2**attempt) + random.uniform(0, self._base_delay))

    async def _post_with_retry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        client = self._get_client()
        headers = self._headers()
        last_error: Optional[Exception] = None

        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await client.post(self._url, json=payload, headers=headers)
            except httpx.TimeoutException as error:
                last_error = error
                delay = self._backoff(attempt)
                logger.warning("LLM timeout (attempt %d/%d), retrying in %.1fs", attempt + 1, MAX_RETRIES + 1, delay)
                if attempt < MAX_RETRIES:
                    await self._sleep(delay)
                continue
            except httpx.HTTPError as error:
                raise LLMError(f"LLM transport error: {error}") from error

            if resp.status_code in RETRYABLE_STATUS:
                retry_after = resp.headers.get("retry-after")
                delay = float(retry_after) if retry_after and retry_after.isdigit() else self._backoff(attempt)
                logger.warning("LLM %d (attempt %d/%d), retrying in %.1fs", resp.status_code, attempt + 1, MAX_RETRIES + 1, delay)
                last_error = LLMError(f"HTTP {resp.status_code}: {_brief_error(resp.text)}", resp.status_code)
                if attempt < MAX_RETRIES:
                    await self._sleep(delay)
                continue

            if resp.status_code >= 400:
                logger.error("LLM API error %d: %s", resp.status_code, resp.text[:500])
                raise LLMError(f"HTTP {resp.status_code}: {_brief_error(resp.text)}", resp.status_code)

            try:
                data = resp.json()
            except ValueError as error:
                raise LLMError("LLM returned a non-JSON body") from error
            return data if isinstance(data, dict) else {}

        if isinstance(last_error, LLMError):
            raise last_error
        raise LLMError(f"LLM request failed after retries: {last_error}")

    async def _complete_once(self, messages: List[Dict[str, str]], model: str, temperature: Optional[float], max_tokens: Optional[int]) -> str:
        start = time.monotonic()
        data = await self._post_with_retry(self._payload(messages, model, temperature, max_tokens, stream=False))
        usage = data.get("usage") or {}
        logger.info(
            "LLM chat: %dms | in=%d out=%d tokens | model=%s",
            int((time.monotonic() - start) * 1000),
            usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0),
            model,
        )
        choices = data.get("choices") or []
        message = choices[0].get("message") if choices and isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise LLMError("Empty model response")
        return content

    async def complete(self, messages: List[Dict[str, str]], temperature: Optional[float] = None, max_tokens: Optional[int] = None) -> str:
        primary = self._settings.llm_model
        try:
            return await self._complete_once(messages, primary, temperature, max_tokens)
        except LLMError as error:
            fallback = self._settings.llm_fallback_model
            if not fallback or fallback == primary or not _is_model_not_found(error):
                raise
            logger.info("Model %s unavailable (%s), falling back to %s", primary, error, fallback)
            return await self._complete_once(messages, fallback, temperature, max_tokens)

    async def stream(self, messages: List[Dict[str, str]], fast_mode: bool = False) -> AsyncIterator[str]:
        model = self._settings.llm_fallback_model if fast_mode else self._settings.llm_model
        payload = self._payload(messages, model, 0.3 if fast_mode else 0.7, 160 if fast_mode else 512, stream=True)
        client = self._get_client()
        try:
            async with client.stream("POST", self._url, json=payload, headers=self._headers()) as resp:
                if resp.status_code >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise LLMError(f"HTTP {resp.status_code}: {_brief_error(body)}", resp.status_code)
                async for line in resp.aiter_lines():
                    text, finished = _content_from_sse_line(line)
                    if text:
                        yield text
                    if finished:
                        return
        except httpx.HTTPError as error:
            raise LLMError(f"LLM stream failed: {error}") from error
