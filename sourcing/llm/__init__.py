"""Reasoning-model provider registry with lazy loading.

Usage:
    from sourcing.llm import get_provider, parse_json_response

    provider = get_provider("anthropic", api_key="...")
    raw = provider.complete(prompt, system=SYSTEM_PROMPT)
    data = parse_json_response(raw)
"""

from __future__ import annotations

import importlib

from sourcing.llm.base import LLMProvider, parse_json_response

__all__ = ["LLMProvider", "available_providers", "get_provider", "parse_json_response"]

# Lazy registry: maps provider name → (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "anthropic": ("sourcing.llm.anthropic", "AnthropicProvider"),
    "openai": ("sourcing.llm.openai", "OpenAIProvider"),
    "gemini": ("sourcing.llm.gemini", "GeminiProvider"),
    "ollama": ("sourcing.llm.ollama", "OllamaProvider"),
    "xai": ("sourcing.llm.xai", "XAIProvider"),
}


def get_provider(name: str, api_key: str | None = None) -> LLMProvider:
    """Instantiate and return a provider by name.

    Args:
        name: Provider identifier (anthropic, openai, gemini, ollama, xai).
        api_key: Explicit API key. None reads the provider's environment variable.

    Returns:
        An LLMProvider instance.

    Raises:
        ValueError: If the provider name is unknown or its API key is missing.
    """
    if name not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown LLM provider '{name}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(api_key=api_key)  # type: ignore[no-any-return]


def available_providers() -> list[str]:
    """Return sorted list of registered provider names."""
    return sorted(_REGISTRY)
