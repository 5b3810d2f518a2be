"""Ollama local provider (OpenAI-compatible API)."""

from sourcing.llm.openai import OpenAIProvider


class OllamaProvider(OpenAIProvider):
    """Provider using a local Ollama instance via the OpenAI-compatible API."""

    base_url = "http://localhost:11434/v1"

    @property
    def provider_id(self) -> str:
        return "ollama"

    @property
    def default_model(self) -> str:
        return "llama3"

    @property
    def env_var(self) -> None:
        return None
