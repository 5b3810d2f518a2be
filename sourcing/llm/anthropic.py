"""Anthropic Claude provider."""

import logging

from sourcing.llm.base import LLMProvider, missing_sdk

logger = logging.getLogger(__name__)


class AnthropicProvider(LLMProvider):
    """Provider using the Anthropic Messages API."""

    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-sonnet-4-20250514"

    @property
    def env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        try:
            import anthropic
        except ImportError:
            raise missing_sdk("anthropic", "anthropic") from None

        request = {
            "model": model or self.default_model,
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        # The Messages API rejects an explicit null system prompt.
        if system is not None:
            request["system"] = system

        logger.debug("Scoring request to Anthropic (%s)", request["model"])
        message = anthropic.Anthropic(api_key=self._api_key).messages.create(**request)
        return "".join(block.text for block in message.content if block.type == "text")
