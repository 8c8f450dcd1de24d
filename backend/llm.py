"""LLM client — HTTP connection to the text-generation collaborator.

The pipeline hands the rendered narrator prompt to generate(), which builds
an HttpLLM from the stored connection settings:

    {"provider_url": ..., "api_key": ..., "provider_format": ..., "model": ...}

Supported wire formats:

    koboldcpp  — POST /api/v1/generate  {"prompt": ...}
                 Response: {"results": [{"text": "..."}]}
    openai     — POST /v1/completions   {"model": ..., "prompt": ...}
                 Response: {"choices": [{"text": "..."}]}

Every transport or protocol failure is raised as LLMError so callers can
leave stored state untouched and report the failure.
"""

import logging
from typing import Any, Literal

import httpx

logger = logging.getLogger(__name__)

ProviderFormat = Literal["koboldcpp", "openai"]

DEFAULT_TIMEOUT = 120.0


class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""


class HttpLLM:
    """Async HTTP client for text-completion backends.

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "koboldcpp".
        model:           Model identifier, used only by the openai format.
        timeout:         HTTP timeout in seconds.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        if not provider_url:
            raise LLMError("No LLM provider configured — set one in Settings")
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_connection(cls, connection: dict[str, Any]) -> "HttpLLM":
        return cls(
            provider_url=connection.get("provider_url", ""),
            api_key=connection.get("api_key", ""),
            provider_format=connection.get("provider_format") or "koboldcpp",
            model=connection.get("model", ""),
        )

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            body: dict = {"prompt": prompt}
            if self._model:
                body["model"] = self._model
            return f"{self._base_url}/v1/completions", body
        return f"{self._base_url}/api/v1/generate", {"prompt": prompt}

    def _parse_response(self, data: dict) -> str:
        if self._format == "openai":
            choices = data.get("choices")
            if not choices or "text" not in choices[0]:
                raise LLMError("Unexpected response format from OpenAI-compatible backend")
            return choices[0]["text"]

        results = data.get("results")
        if not results or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        return results[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"LLM backend returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


async def generate(connection: dict[str, Any], prompt: str, stage: str = "narrator") -> str:
    """Send one completion request using the stored connection settings."""
    client = HttpLLM.from_connection(connection)
    return await client(stage, prompt)


def health_url(connection: dict[str, Any]) -> str:
    """URL that answers a cheap GET when the backend is up."""
    base = connection.get("provider_url", "").rstrip("/")
    if connection.get("provider_format") == "openai":
        return f"{base}/v1/models"
    return f"{base}/api/v1/model"
