"""Chat-completion client used to translate instructions into actions."""
import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
from loguru import logger

from models.errors import (
    CompletionAuthFailed,
    CompletionRateLimited,
    CompletionUnavailable,
)
from models.schemas import CompletionResult


def normalize_completion_payload(payload: Any) -> Tuple[str, str]:
    """
    Reduce any supported response envelope to plain completion text.

    Supported shapes:
    - OpenAI style: {"choices": [{"message": {"content": "..."}}]}
    - Generic: {"response": "..."} or {"output": "..."}
    - A bare string

    Returns:
        Tuple of (text, envelope name)
    """
    if isinstance(payload, str):
        return payload, "string"

    if isinstance(payload, dict):
        choices = payload.get("choices")
        if isinstance(choices, list) and choices:
            first = choices[0] if isinstance(choices[0], dict) else {}
            message = first.get("message") or {}
            content = message.get("content") if isinstance(message, dict) else None
            if content is None:
                content = first.get("text")
            if content is not None:
                return _as_text(content), "choices"

        for key in ("response", "output"):
            if key in payload and payload[key] is not None:
                return _as_text(payload[key]), key

    raise CompletionUnavailable(
        "Unrecognized completion response shape",
        details={"payload": str(payload)[:200]},
    )


def _as_text(value: Any) -> str:
    # Some custom endpoints return the action object itself instead of text
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


class CompletionClient:
    """Client for an OpenAI-compatible endpoint with optional custom endpoint."""

    def __init__(
        self,
        api_url: str = "https://api.openai.com/v1",
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        temperature: float = 0.3,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        api_key: Optional[str] = None,
        custom_endpoint: Optional[str] = None,
    ) -> CompletionResult:
        """
        Run one completion.

        When a custom endpoint is given it is tried first and the
        OpenAI-compatible endpoint is the fallback; a failed primary call is
        retried exactly once against the fallback.

        Args:
            system_prompt: Instructions and pool context
            user_text: The user's natural-language instruction
            api_key: Per-request API key overriding the configured one
            custom_endpoint: URL of a custom completion endpoint

        Returns:
            CompletionResult with normalized text
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]

        if not custom_endpoint:
            text, envelope = await self._call_openai(messages, api_key)
            return CompletionResult(text=text, source="primary", envelope=envelope)

        try:
            text, envelope = await self._call_custom(custom_endpoint, messages)
            return CompletionResult(text=text, source="primary", envelope=envelope)
        except CompletionUnavailable as e:
            logger.warning("Custom completion endpoint failed, falling back: {}", e.message)

        text, envelope = await self._call_openai(messages, api_key)
        return CompletionResult(text=text, source="fallback", envelope=envelope)

    async def _call_openai(
        self,
        messages: List[Dict[str, str]],
        api_key: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Call the OpenAI-compatible chat-completions endpoint."""
        final_key = api_key or self.api_key
        if not final_key:
            raise CompletionUnavailable(
                "LLM service is not configured. Please provide an OpenAI API key."
            )

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {final_key}"}

        logger.debug(
            "Calling completion API: model={} messages={} temperature={}",
            self.model,
            len(messages),
            self.temperature,
        )
        data = await self._post(f"{self.api_url}/chat/completions", payload, headers)
        return normalize_completion_payload(data)

    async def _call_custom(
        self,
        endpoint: str,
        messages: List[Dict[str, str]],
    ) -> Tuple[str, str]:
        """Call a custom completion endpoint."""
        payload = {
            "messages": messages,
            "temperature": self.temperature,
        }
        logger.debug("Calling custom completion endpoint: {}", endpoint)
        data = await self._post(endpoint, payload)
        return normalize_completion_payload(data)

    async def _post(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            response = await self.client.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            body = e.response.text[:100]
            logger.error("Completion API error: HTTP {} - {}", status_code, body)
            if status_code == 401:
                raise CompletionAuthFailed(
                    "Completion API key is invalid or expired, please provide a valid key"
                ) from e
            if status_code == 429:
                raise CompletionRateLimited(
                    "Completion API rate limit exceeded or quota exhausted"
                ) from e
            raise CompletionUnavailable(f"Completion API error: {status_code} - {body}") from e
        except httpx.HTTPError as e:
            logger.error("Failed to reach completion API: {}", e)
            raise CompletionUnavailable(f"Error calling language model API: {e}") from e

        try:
            return response.json()
        except ValueError:
            # Bare text body
            return response.text
