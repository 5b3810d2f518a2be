"""Abstract base class for reasoning-model providers and shared logic."""

import json
import os
import re
from abc import ABC, abstractmethod
from typing import Any


def parse_json_response(raw_text: str) -> dict[str, Any]:
    """Parse a model response into a JSON object.

    Handles markdown-wrapped JSON (```json ... ```) and plain JSON.
    Raises ValueError on malformed or non-object responses.
    """
    cleaned = re.sub(r"^```(?:json)?\s*\n?", "", raw_text.strip())
    cleaned = re.sub(r"\n?```\s*$", "", cleaned)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        msg = f"Failed to parse LLM response as JSON: {e}"
        raise ValueError(msg) from e

    if not isinstance(data, dict):
        msg = f"Expected a JSON object from LLM, got {type(data).__name__}"
        raise ValueError(msg)
    return data


class LLMProvider(ABC):
    """Base class that every provider must implement.

    The API key is resolved once, at construction: an explicit key wins,
    otherwise the provider's environment variable is read. Providers that
    need a key and have none raise ValueError immediately.
    """

    # Fit scoring wants short, repeatable answers.
    max_output_tokens = 1024
    temperature = 0.0

    def __init__(self, api_key: str | None = None) -> None:
        env_var = self.env_var
        self._api_key = api_key or (os.environ.get(env_var) if env_var else None)
        if env_var and not self._api_key:
            msg = f"{env_var} environment variable is required"
            raise ValueError(msg)

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'anthropic')."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        """Send a prompt to the model and return the raw response text.

        Args:
            prompt: User message content.
            model: Override the provider's default model. None uses default.
            system: Optional system prompt.

        Returns:
            Raw text response (expected to be JSON for scoring prompts).
        """

    @property
    @abstractmethod
    def default_model(self) -> str:
        """The default model ID used when no override is specified."""

    @property
    @abstractmethod
    def env_var(self) -> str | None:
        """Environment variable name for the API key, or None if not needed."""


def missing_sdk(package: str, extra: str | None = None) -> ImportError:
    """Build the ImportError raised when a provider's SDK is not installed.

    extra names the optional-dependency group; None for SDKs installed by default.
    """
    target = f"'candidate-sourcing[{extra}]'" if extra else package
    return ImportError(f"{package} is required for this provider. Install with: pip install {target}")
