"""xAI Grok provider (OpenAI-compatible API)."""

from sourcing.llm.openai import OpenAIProvider


class XAIProvider(OpenAIProvider):
    """Provider using the xAI Grok API through the OpenAI SDK."""

    base_url = "https://api.x.ai/v1"

    @property
    def provider_id(self) -> str:
        return "xai"

    @property
    def default_model(self) -> str:
        return "grok-2-1212"

    @property
    def env_var(self) -> str:
        return "XAI_API_KEY"
