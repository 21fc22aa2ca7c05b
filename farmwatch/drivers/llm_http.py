from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..domain.errors import RecommendationInvalid, RecommendationUnavailable

logger = logging.getLogger(__name__)


class ChatCompletionsBackend:
    """JSON-mode prompts against an OpenAI-compatible /chat/completions endpoint."""

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: str = "",
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = base_url.rstrip("/") + "/chat/completions"
        self._api_key = api_key
        self._model = model
        self._temperature = temperature
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def complete_json(self, system_prompt: str, user_prompt: str) -> str:
        body: dict[str, Any] = {
            "model": self._model,
            "temperature": self._temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=body, headers=self._headers())
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            raise RecommendationUnavailable(f"model endpoint returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RecommendationUnavailable(f"model endpoint unreachable: {e!r}") from e
        except ValueError as e:
            raise RecommendationInvalid("model endpoint returned non-JSON body") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise RecommendationInvalid("chat completion missing choices[0].message.content") from e
        if not isinstance(content, str):
            raise RecommendationInvalid("chat completion content is not text")

        usage = data.get("usage") or {}
        logger.debug("LLM %s tokens=%s", self._model, usage.get("total_tokens"))
        return content
