"""
Claude client via the Anthropic SDK with the Vertex AI backend.

Requires: pip install 'anthropic[vertex]'
"""

import logging
from typing import Optional

from .base import BaseLLMClient, GenerationConfig, LLMProvider, LLMResponse, call_with_retries

logger = logging.getLogger(__name__)

RETRIABLE_MARKERS = ('rate', 'overloaded', '429', '500', '503', 'timeout')


class ClaudeClient(BaseLLMClient):

    def __init__(
        self,
        model_id: str = "claude-haiku-4-5@20251001",
        project_id: Optional[str] = None,
        region: str = "europe-west1"
    ):
        super().__init__(model_id, project_id, region)
        self._client = None

    @property
    def provider(self) -> LLMProvider:
        return LLMProvider.CLAUDE

    def _initialize(self) -> None:
        from anthropic import AnthropicVertex

        logger.info(f"Initializing Claude: model={self.model_id}, project={self.project_id}, region={self.region}")
        self._client = AnthropicVertex(project_id=self.project_id, region=self.region)

    def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        self._ensure_initialized()

        config = config or GenerationConfig()
        kwargs = {
            "model": self.model_id,
            "max_tokens": config.max_output_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": config.temperature,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if config.top_k:
            kwargs["top_k"] = config.top_k

        def _call() -> LLMResponse:
            response = self._client.messages.create(**kwargs)

            # Concatenate the text blocks
            text = ''.join(block.text for block in (response.content or []) if hasattr(block, 'text'))
            if not text.strip():
                raise ValueError("Empty text from Claude API")

            return LLMResponse(
                text=text,
                model=self.model_id,
                provider=self.provider,
                input_tokens=response.usage.input_tokens if response.usage else None,
                output_tokens=response.usage.output_tokens if response.usage else None,
                finish_reason=response.stop_reason,
                raw_response=response
            )

        return call_with_retries(_call, RETRIABLE_MARKERS, f"Claude {self.model_id}")
