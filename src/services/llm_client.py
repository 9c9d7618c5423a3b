"""
Language-understanding client.

The pipeline needs exactly one capability from the model provider:
``understand(text, schema_hint) -> dict``. This module implements it
against an OpenAI-compatible chat-completions endpoint using JSON
response format. Anything richer the provider offers is out of scope.
"""

from __future__ import annotations

import json
import re
from typing import Any, Awaitable, Callable

import httpx

from src.config import get_settings
from src.errors import EmptyExtraction, ExtractionUnavailable
from src.logging_config import get_logger

logger = get_logger(__name__)

# text, schema_hint -> parsed JSON object
Understand = Callable[[str, str], Awaitable[dict[str, Any]]]

SYSTEM_PROMPT = (
    "You are a precise clinical data extraction system for a dental clinic. "
    "Return only valid JSON that follows the schema you are given. "
    "Never guess: leave a field null when the text does not state it. "
    'Always include "confidence" (0.0 to 1.0) and a short "explanation".'
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def strip_code_fences(content: str) -> str:
    """Models sometimes wrap JSON in markdown fences despite instructions."""
    text = content.strip()
    if text.startswith("```"):
        text = _FENCE_RE.sub("", text).strip()
    return text


def parse_model_json(content: str) -> dict[str, Any]:
    """Parse the model's message content into a JSON object."""
    text = strip_code_fences(content)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        # Last resort: the outermost {...} block.
        match = re.search(r"\{[\s\S]*\}", text)
        if not match:
            raise EmptyExtraction("Model response was not JSON")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise EmptyExtraction("Model response was not JSON") from e

    if not isinstance(parsed, dict):
        raise EmptyExtraction("Model response was not a JSON object", {"type": type(parsed).__name__})
    return parsed


class ChatCompletionsClient:
    """Calls the chat-completions API with a schema hint and returns parsed JSON."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self.temperature = settings.llm_temperature
        self._transport = transport

    async def understand(self, text: str, schema_hint: str) -> dict[str, Any]:
        prompt = (
            f"SCHEMA:\n{schema_hint}\n\n"
            f"INPUT:\n{text}\n\n"
            "Respond ONLY with the JSON object."
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "messages": [
                            {"role": "system", "content": SYSTEM_PROMPT},
                            {"role": "user", "content": prompt},
                        ],
                        "response_format": {"type": "json_object"},
                        "temperature": self.temperature,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("llm_timeout", model=self.model, timeout=self.timeout)
            raise ExtractionUnavailable("Language model timed out", {"timeout_seconds": self.timeout}) from e
        except httpx.HTTPStatusError as e:
            logger.warning("llm_http_error", model=self.model, status=e.response.status_code)
            raise ExtractionUnavailable(
                "Language model request failed", {"status": e.response.status_code}
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("llm_transport_error", model=self.model, error=str(e))
            raise ExtractionUnavailable("Language model unreachable") from e

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionUnavailable("Malformed provider response") from e

        return parse_model_json(content)


def get_understand() -> Understand:
    """Default ``understand`` bound to the configured provider."""
    return ChatCompletionsClient().understand
