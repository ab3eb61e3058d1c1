"""Ollama LLM provider adapter (local/free).

Ollama exposes an OpenAI-compatible ``/v1`` API, so this adapter reuses
the ``openai.AsyncOpenAI`` client pointed at the local server.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from knowledge_assistant.config.settings import Settings
from knowledge_assistant.interfaces.llm_provider import ILLMProvider
from knowledge_assistant.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)


class OllamaLLMProvider(ILLMProvider):
    """LLM provider backed by a local Ollama server (``llama3.1`` by default)."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            api_key="ollama",  # Ollama ignores the key but the SDK requires one
        )
        self._text_model = settings.ollama_text_model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
    ) -> str:
        """Generate a text completion via Ollama's OpenAI-compatible API."""
        try:
            response = await self._client.chat.completions.create(
                model=self._text_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIError as exc:
            raise LLMError(
                message=f"Ollama API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        # Small local models occasionally return no choices when the prompt
        # overflows their context window.
        content = response.choices[0].message.content if response.choices else None
        if content is None:
            raise LLMError(
                message="Ollama returned empty response",
                provider_name=self.get_provider_name(),
            )
        logger.info("ollama_completion", model=self._text_model)
        return content

    def get_model_name(self) -> str:
        return self._text_model

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama base URL is configured."""
        # No network call here; validate_credentials() checks reachability.
        return bool(self._base_url)

    async def validate_credentials(self) -> bool:
        """Check the Ollama server answers on its native ``/api/tags`` endpoint."""
        if not self.is_available():
            return False
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self._base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    def get_provider_name(self) -> str:
        return "ollama"
