"""Generator backend for OpenAI-compatible chat completion APIs.

Works with OpenAI, OpenRouter, Groq, vLLM, LM Studio and any other server
implementing ``POST {base_url}/chat/completions``.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from devflow.exceptions import AuthenticationError, TransientIntegrationError, ValidationError
from devflow.models.domain import GeneratedContent
from devflow.providers.base import GeneratorBackend
from devflow.utils.retry import async_retry

log = structlog.get_logger(__name__)

SYSTEM_PROMPT = "You are a senior software engineer. Always answer with a single JSON object in a ```json fence."


class OpenAICompatibleBackend(GeneratorBackend):
    """Generator backend speaking the OpenAI chat completions protocol.

    Status codes map onto the error taxonomy: 401/403 raise
    ``AuthenticationError``, 429 and 5xx (and network failures) raise
    ``TransientIntegrationError`` and are retried, other 4xx raise
    ``ValidationError``.
    """

    def __init__(
        self,
        backend_id: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        api_key: str | None = None,
        temperature: float = 0.7,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            backend_id: Identifier used in candidates and weights
            model: Model identifier sent with each request
            base_url: API base URL (e.g., http://localhost:8000/v1)
            api_key: Optional API key sent as a Bearer token
            temperature: Sampling temperature
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self._backend_id = backend_id
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    @property
    def backend_id(self) -> str:
        return self._backend_id

    async def generate(self, prompt: str, context: dict[str, Any] | None = None) -> GeneratedContent:
        log.info("backend_generate", backend_id=self.backend_id, model=self.model)
        result = await self._post_completion(
            {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": self.temperature,
            }
        )

        choices = result.get("choices") or []
        if not choices:
            raise ValidationError(f"No choices returned by {self.backend_id}")
        content = choices[0].get("message", {}).get("content") or ""

        usage = result.get("usage", {})
        log.info(
            "backend_generated",
            backend_id=self.backend_id,
            output_length=len(content),
            tokens=usage.get("total_tokens", usage.get("completion_tokens", 0)),
        )
        return GeneratedContent(content=content, model_id=result.get("model", self.model))

    @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(TransientIntegrationError,))
    async def _post_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.client.post(f"{self.base_url}/chat/completions", json=payload)
        except httpx.HTTPError as e:
            raise TransientIntegrationError(f"{self.backend_id} request failed: {e}", {"cause": type(e).__name__}) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(f"{self.backend_id} rejected credentials ({status})", service=self.backend_id)
        if status == 429 or status >= 500:
            raise TransientIntegrationError(f"{self.backend_id} API error ({status})", {"status": status})
        if status >= 400:
            raise ValidationError(f"{self.backend_id} API error ({status}): {self._error_detail(response)}")

        return response.json()

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return str(error.get("message", error))
        return str(error or body)[:200]

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> OpenAICompatibleBackend:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
