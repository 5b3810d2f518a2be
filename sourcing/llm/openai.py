"""OpenAI chat-completions provider.

Also the base for the OpenAI-compatible endpoints (xAI, Ollama), which only
swap ``base_url`` and the key lookup.
"""

import logging

from sourcing.llm.base import LLMProvider, missing_sdk

logger = logging.getLogger(__name__)


def chat_messages(prompt: str, system: str | None) -> list[dict[str, str]]:
    """Build a chat-completions message list with an optional system turn."""
    messages: list[dict[str, str]] = []
    if system is not None:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


class OpenAIProvider(LLMProvider):
    """Provider using the OpenAI API."""

    base_url: str | None = None

    @property
    def provider_id(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4o-mini"

    @property
    def env_var(self) -> str | None:
        return "OPENAI_API_KEY"

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        try:
            import openai
        except ImportError:
            raise missing_sdk("openai") from None

        # Keyless local servers still need a non-empty key for the SDK.
        client = openai.OpenAI(api_key=self._api_key or self.provider_id, base_url=self.base_url)
        use_model = model or self.default_model

        logger.debug("Scoring request to %s (%s)", self.provider_id, use_model)
        response = client.chat.completions.create(
            model=use_model,
            messages=chat_messages(prompt, system),  # type: ignore[arg-type]
            temperature=self.temperature,
            max_tokens=self.max_output_tokens,
        )
        return response.choices[0].message.content or ""
