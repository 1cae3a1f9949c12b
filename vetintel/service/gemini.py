from __future__ import annotations

from typing import Any, Optional

import httpx

from vetintel.logging import get_logger, sanitize_error_message
from vetintel.service.errors import (
    ConfigurationError,
    UpstreamEmptyResponseError,
    UpstreamUnavailableError,
)

logger = get_logger(__name__)

# Only this much of an upstream error body is kept for logs and audit
ERROR_BODY_LIMIT = 200

GENERATION_CONFIG: dict[str, Any] = {
    "temperature": 0.7,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 2048,
}

SAFETY_SETTINGS: list[dict[str, str]] = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


def extract_answer_text(data: Any) -> Optional[str]:
    """Pull ``candidates[0].content.parts[0].text`` out of a generateContent reply."""
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text else None


class GeminiClient:
    """Single-shot client for the Gemini ``generateContent`` endpoint.

    Generation parameters and safety thresholds are fixed here; callers only
    supply the composed prompt.
    """

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "gemini-pro",
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": dict(GENERATION_CONFIG),
            "safetySettings": [dict(item) for item in SAFETY_SETTINGS],
        }

    async def generate(self, prompt: str) -> str:
        """Return the model's answer text for ``prompt``.

        Raises:
            ConfigurationError: no API key configured
            UpstreamUnavailableError: non-2xx status, timeout or connection failure
            UpstreamEmptyResponseError: 2xx reply without answer text
        """
        if not self.is_configured:
            logger.error("gemini_api_key_missing")
            raise ConfigurationError("API configuration error")

        try:
            response = await self._client.post(
                self.endpoint,
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": self.api_key,
                },
                json=self.build_payload(prompt),
            )
        except httpx.TimeoutException as exc:
            logger.error("gemini_timeout", model=self.model, error=str(exc))
            raise UpstreamUnavailableError(upstream_body="upstream request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error(
                "gemini_connect_error",
                model=self.model,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise UpstreamUnavailableError(
                upstream_body=f"upstream request failed: {type(exc).__name__}"
            ) from exc

        if not response.is_success:
            body = sanitize_error_message(response.text, limit=ERROR_BODY_LIMIT)
            logger.error(
                "gemini_api_error",
                model=self.model,
                status_code=response.status_code,
                error_body=body,
            )
            raise UpstreamUnavailableError(
                upstream_status=response.status_code,
                upstream_body=body,
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        text = extract_answer_text(data)
        if text is None:
            logger.error("gemini_empty_response", model=self.model)
            raise UpstreamEmptyResponseError("No response generated")

        logger.info("gemini_success", model=self.model, response_length=len(text))
        return text

    async def close(self) -> None:
        await self._client.aclose()
