"""Google Gemini provider (google-genai SDK)."""

import logging

from sourcing.llm.base import LLMProvider, missing_sdk

logger = logging.getLogger(__name__)


class GeminiProvider(LLMProvider):
    """Provider using the Google Gemini API."""

    @property
    def provider_id(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.5-flash"

    @property
    def env_var(self) -> str:
        return "GOOGLE_API_KEY"

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
    ) -> str:
        try:
            from google import genai
            from google.genai import types as genai_types
        except ImportError:
            raise missing_sdk("google-genai", "gemini") from None

        use_model = model or self.default_model
        config = genai_types.GenerateContentConfig(
            system_instruction=system,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json",
        )

        logger.debug("Scoring request to Gemini (%s)", use_model)
        response = genai.Client(api_key=self._api_key).models.generate_content(
            model=use_model, contents=prompt, config=config,
        )
        return response.text or ""
