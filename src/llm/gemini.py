"""
Gemini client via the Google Gen AI SDK on Vertex AI.
"""

import logging
from typing import Optional

from .base import BaseLLMClient, GenerationConfig, LLMProvider, LLMResponse, call_with_retries

logger = logging.getLogger(__name__)

RETRIABLE_MARKERS = ('rate', 'quota', '429', 'internal', '500', '503')


class GeminiClient(BaseLLMClient):

    def __init__(
        self,
        model_id: str = "gemini-2.5-flash",
        project_id: Optional[str] = None,
        region: str = "europe-west4"
    ):
        super().__init__(model_id, project_id, region)
        self._client = None

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.GEMINI

    def _initialize(self) -> None:
        from google import genai

        logger.info(f"Initializing Gemini: model={self.model_id}, project={self.project_id}, region={self.region}")
        self._client = genai.Client(
            vertexai=True,
            project=self.project_id,
            location=self.region
        )

    def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        self._ensure_initialized()

        from google.genai import types

        config = config or GenerationConfig()
        gen_config = types.GenerateContentConfig(
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            top_p=config.top_p,
            top_k=config.top_k,
            system_instruction=system_prompt,
        )

        def _call() -> LLMResponse:
            response = self._client.models.generate_content(
                model=self.model_id,
                contents=prompt,
                config=gen_config
            )

            text = response.text
            finish_reason = None
            if response.candidates:
                finish_reason = getattr(response.candidates[0], 'finish_reason', None)

            if not text or not text.strip():
                raise ValueError(f"Empty response from Gemini. Finish reason: {finish_reason}")

            usage = getattr(response, 'usage_metadata', None)
            return LLMResponse(
                text=text,
                model=self.model_id,
                provider=self.provider,
                input_tokens=getattr(usage, 'prompt_token_count', None) if usage else None,
                output_tokens=getattr(usage, 'candidates_token_count', None) if usage else None,
                finish_reason=str(finish_reason) if finish_reason else None,
                raw_response=response
            )

        return call_with_retries(_call, RETRIABLE_MARKERS, f"Gemini {self.model_id}")
