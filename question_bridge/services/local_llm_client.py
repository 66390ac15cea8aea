import json
import logging
import os
import re
from typing import Any, Dict, Optional, Tuple

import httpx

from question_bridge.services.llm_config import get_env_llm_defaults

logger = logging.getLogger(__name__)

_CLIENT_CACHE: Dict[Tuple[str, float, bool], "LocalLLMClient"] = {}
_JSON_OBJECT_UNSUPPORTED_BASE_URLS: set[str] = set()
TRACE_API_CALLS = os.getenv("TRACE_API_CALLS", "false").strip().lower() in {"1", "true", "yes", "on"}
API_LOG_PREVIEW_CHARS = int(os.getenv("API_LOG_PREVIEW_CHARS", "280"))


def preview_text(value: Any, limit: int = API_LOG_PREVIEW_CHARS) -> str:
    text = str(value or "")
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...<truncated {len(text) - limit} chars>"


def extract_json_from_text(text: str) -> Any:
    """Pull the first JSON value out of a model reply (fenced, prefixed or bare)."""
    if text is None:
        raise ValueError("LLM response text is empty")

    # Reasoning models may wrap their answer in <think> blocks.
    normalized = re.sub(r"<think>.*?</think>", "", str(text), flags=re.IGNORECASE | re.DOTALL).strip()
    if not normalized:
        raise json.JSONDecodeError("No JSON object found", str(text), 0)

    try:
        return json.loads(normalized)
    except json.JSONDecodeError:
        pass

    for fence in ("```json", "```"):
        if fence in normalized:
            snippet = normalized.split(fence, 1)[1]
            if "```" in snippet:
                candidate = snippet.split("```", 1)[0].strip()
                try:
                    return json.loads(candidate)
                except json.JSONDecodeError:
                    continue

    decoder = json.JSONDecoder()
    for index, char in enumerate(normalized):
        if char not in "{[":
            continue
        try:
            decoded, _ = decoder.raw_decode(normalized[index:])
            return decoded
        except json.JSONDecodeError:
            continue

    raise json.JSONDecodeError("No JSON object found", normalized, 0)


def get_local_client(config: Optional[Dict[str, Any]] = None) -> "LocalLLMClient":
    resolved = config or get_env_llm_defaults()
    base_url = str(resolved.get("base_url", "")).rstrip("/")
    timeout = float(resolved.get("timeout_seconds", 120))
    json_mode = bool(resolved.get("json_mode", True))

    key = (base_url, timeout, json_mode)
    if key not in _CLIENT_CACHE:
        _CLIENT_CACHE[key] = LocalLLMClient(base_url, timeout_seconds=timeout, json_mode=json_mode)
    return _CLIENT_CACHE[key]


class LocalLLMClient:
    """Minimal client for an OpenAI-compatible chat completions server."""

    def __init__(self, base_url: str, timeout_seconds: float = 120, json_mode: bool = True) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.json_mode = json_mode

    async def chat(
        self,
        model: str,
        messages: list,
        temperature: float = 0.7,
        max_tokens: int = 1500,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if self.json_mode and self.base_url not in _JSON_OBJECT_UNSUPPORTED_BASE_URLS:
            payload["response_format"] = {"type": "json_object"}

        url = f"{self.base_url}/v1/chat/completions"
        if TRACE_API_CALLS:
            logger.info("[LLM API] POST %s model=%s json_mode=%s", url, model, "response_format" in payload)

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            try:
                response = await client.post(url, json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                if "response_format" not in payload:
                    raise
                logger.warning(
                    "Local LLM rejected response_format (%s); retrying without it.",
                    preview_text(exc.response.text),
                )
                _JSON_OBJECT_UNSUPPORTED_BASE_URLS.add(self.base_url)
                payload.pop("response_format", None)
                response = await client.post(url, json=payload)
                response.raise_for_status()

            if TRACE_API_CALLS:
                logger.info("[LLM API] %s status=%s preview=%s",
                            url, response.status_code, preview_text(response.text))
            return response.json()


async def local_chat_json(config: Dict[str, Any], prompt: str, temperature: float = 0.7,
                          max_tokens: int = 1500) -> Any:
    client = get_local_client(config)
    response = await client.chat(
        model=config.get("chat_model", "qwen2.5-7b-instruct"),
        messages=[{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
    )
    content = response["choices"][0]["message"]["content"]
    return extract_json_from_text(content)
