from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import openai
from openai import AsyncOpenAI

from wessley.logging import get_logger

logger = get_logger(__name__)


class LLMNotConfiguredError(RuntimeError):
    """Raised when no OpenAI API key is configured."""


class LLMError(RuntimeError):
    """Raised when the provider call fails or returns nothing usable."""


@dataclass
class Completion:
    content: str
    tokens_used: int = 0


class LLMService:
    """Chat completions against OpenAI or an OpenAI-compatible endpoint."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._client or self.api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise LLMNotConfiguredError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    @staticmethod
    def _completion_kwargs(
        model: str, max_tokens: int, temperature: Optional[float]
    ) -> dict:
        # gpt-5 family takes max_completion_tokens and only the default temperature
        if model.lower().startswith("gpt-5"):
            return {"max_completion_tokens": max_tokens}
        kwargs: dict = {"max_tokens": max_tokens}
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
    ) -> Completion:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                **self._completion_kwargs(model, max_tokens, temperature),
            )
        except openai.OpenAIError as exc:
            logger.error(
                "llm_request_failed",
                model=model,
                error_type=type(exc).__name__,
                status_code=getattr(exc, "status_code", None),
            )
            raise LLMError(f"{type(exc).__name__} from {model}") from exc

        if not response.choices:
            logger.error("llm_empty_choices", model=model)
            raise LLMError(f"{model} returned no choices")

        content = response.choices[0].message.content or ""
        tokens_used = response.usage.total_tokens if response.usage else 0
        logger.info("llm_completion", model=model, tokens_used=tokens_used)
        return Completion(content=content.strip(), tokens_used=tokens_used)
