"""
LLM provider abstraction (Gemini, Claude on Vertex AI).

Usage:
    from llm import get_client
    client = get_client()            # LLM_MODEL / LLM_PROVIDER or gemini-2.5-flash
    client = get_client("haiku")     # explicit model or alias
    response = client.generate("Name this topic...")
"""

import os
import logging
from typing import Dict, Optional

from .base import BaseLLMClient, GenerationConfig, LLMProvider, LLMResponse
from .config import (
    MODEL_ALIASES,
    MODEL_REGISTRY,
    ModelInfo,
    get_default_model,
    get_gcp_config,
    get_model_info,
    resolve_model_name,
)

logger = logging.getLogger(__name__)

_client_cache: Dict[str, BaseLLMClient] = {}


def get_client(
    model: Optional[str] = None,
    project_id: Optional[str] = None,
    region: Optional[str] = None,
    cache: bool = True,
) -> BaseLLMClient:
    """
    Get an LLM client for a model name or alias.

    Raises:
        ValueError: If the model is not in the registry
    """
    model_name = resolve_model_name(model) if model else get_default_model()

    cache_key = f"{model_name}:{project_id}:{region}"
    if cache and cache_key in _client_cache:
        return _client_cache[cache_key]

    model_info = get_model_info(model_name)
    if not model_info:
        available = ", ".join(list(MODEL_REGISTRY.keys()) + list(MODEL_ALIASES.keys()))
        raise ValueError(f"Unknown model: {model_name}. Available: {available}")

    default_project, default_region = get_gcp_config()
    project_id = project_id or default_project

    if model_info.provider == LLMProvider.GEMINI:
        from .gemini import GeminiClient

        client = GeminiClient(
            model_id=model_info.model_id,
            project_id=project_id,
            region=region or default_region
        )
    else:
        from .claude import ClaudeClient

        client = ClaudeClient(
            model_id=model_info.model_id,
            project_id=project_id,
            region=region or os.environ.get("CLAUDE_REGION", "europe-west1")
        )

    if cache:
        _client_cache[cache_key] = client

    logger.info(f"Created LLM client: {client}")
    return client


def clear_cache() -> None:
    _client_cache.clear()


__all__ = [
    "BaseLLMClient",
    "GenerationConfig",
    "LLMProvider",
    "LLMResponse",
    "ModelInfo",
    "clear_cache",
    "get_client",
    "get_default_model",
    "get_model_info",
]
