"""Text-completion clients for the waypoint proposer.

Two backends share one tiny interface, ``complete(system, prompt) -> str``:

  AnthropicCompletion: Claude through ``anthropic.AsyncAnthropic`` (default).
  OpenAICompletion:    any OpenAI-compatible chat-completions endpoint
                        through ``openai.AsyncOpenAI`` (OpenAI itself, or a
                        hosted open model such as Groq via ``base_url``).

SDK failures are re-raised as ``CompletionError`` so the proposer can treat
every provider the same way.
"""

import logging
from typing import Protocol

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from settings import Settings

logger = logging.getLogger(__name__)

# Low temperature keeps the model close to the JSON schema in the prompt.
TEMPERATURE: float = 0.1
MAX_TOKENS: int = 2000


class CompletionError(Exception):
    """The language-model provider failed to return a completion."""


class CompletionClient(Protocol):
    async def complete(self, system: str, prompt: str) -> str: ...


class AnthropicCompletion:
    """Completion client backed by Claude."""

    def __init__(self, client: AsyncAnthropic, model: str) -> None:
        self._client = client
        self._model = model

    async def complete(self, system: str, prompt: str) -> str:
        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as exc:
            raise CompletionError(f"Anthropic request failed: {exc}") from exc
        # Only text blocks carry the answer; other block types are skipped.
        text = "".join(
            block.text or ""
            for block in response.content or []
            if getattr(block, "type", None) == "text"
        )
        return text.strip()


class OpenAICompletion:
    """Completion client backed by an OpenAI-compatible chat endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self._model = model

    async def complete(self, system: str, prompt: str) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                temperature=TEMPERATURE,
                max_tokens=MAX_TOKENS,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.OpenAIError as exc:
            raise CompletionError(f"OpenAI request failed: {exc}") from exc
        if not response.choices:
            return ""
        return (response.choices[0].message.content or "").strip()


def build_completion_client(settings: Settings) -> CompletionClient:
    """Creates the completion client selected by ``settings.llm_provider``."""
    if settings.llm_provider == "openai":
        logger.info("Using OpenAI-compatible model %s", settings.openai_model)
        return OpenAICompletion(
            AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
            ),
            settings.openai_model,
        )
    logger.info("Using Anthropic model %s", settings.route_model)
    return AnthropicCompletion(
        AsyncAnthropic(api_key=settings.anthropic_api_key),
        settings.route_model,
    )
