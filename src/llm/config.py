"""
LLM model registry and environment configuration.

Environment Variables:
    LLM_MODEL: Model name or alias (e.g. "gemini-2.5-flash", "haiku")
    LLM_PROVIDER: Provider preference when LLM_MODEL is unset ("gemini" or "claude")
    GCP_PROJECT: GCP project ID
    GCP_REGION: GCP region for Gemini (default: europe-west4)
    CLAUDE_REGION: GCP region for Claude (default: europe-west1)
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .base import LLMProvider

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_CLAUDE_MODEL = "claude-haiku-4-5"


@dataclass
class ModelInfo:
    model_id: str
    provider: LLMProvider
    description: str
    max_output: int
    regions: List[str] = field(default_factory=list)  # empty = global only


MODEL_REGISTRY: Dict[str, ModelInfo] = {
    "gemini-2.5-flash": ModelInfo(
        model_id="gemini-2.5-flash",
        provider=LLMProvider.GEMINI,
        description="Gemini 2.5 Flash - default for naming and reranking",
        max_output=8192,
        regions=["europe-west4", "us-central1", "asia-northeast1"],
    ),
    "gemini-2.0-flash-001": ModelInfo(
        model_id="gemini-2.0-flash-001",
        provider=LLMProvider.GEMINI,
        description="Gemini 2.0 Flash - legacy, cheapest",
        max_output=8192,
        regions=["europe-west4", "us-central1"],
    ),
    "claude-haiku-4-5": ModelInfo(
        model_id="claude-haiku-4-5@20251001",
        provider=LLMProvider.CLAUDE,
        description="Claude Haiku 4.5 on Vertex AI",
        max_output=8192,
        regions=["us-east5", "europe-west1"],
    ),
    "claude-sonnet-4-5": ModelInfo(
        model_id="claude-sonnet-4-5@20250929",
        provider=LLMProvider.CLAUDE,
        description="Claude Sonnet 4.5 on Vertex AI",
        max_output=8192,
        regions=["us-east5", "europe-west1"],
    ),
}

MODEL_ALIASES: Dict[str, str] = {
    "gemini": "gemini-2.5-flash",
    "gemini-flash": "gemini-2.5-flash",
    "claude": "claude-haiku-4-5",
    "claude-haiku": "claude-haiku-4-5",
    "haiku": "claude-haiku-4-5",
    "claude-sonnet": "claude-sonnet-4-5",
    "sonnet": "claude-sonnet-4-5",
}


def resolve_model_name(name: str) -> str:
    return MODEL_ALIASES.get(name.lower(), name)


def get_model_info(name: str) -> Optional[ModelInfo]:
    return MODEL_REGISTRY.get(resolve_model_name(name))


def get_default_model() -> str:
    """
    Pick the model from LLM_MODEL, then LLM_PROVIDER, then the Gemini default.
    """
    model = os.environ.get('LLM_MODEL')
    if model:
        resolved = resolve_model_name(model)
        if resolved in MODEL_REGISTRY:
            logger.info(f"Using model from LLM_MODEL: {resolved}")
            return resolved
        logger.warning(f"Unknown model '{model}', falling back to default")

    if os.environ.get('LLM_PROVIDER', '').lower() == 'claude':
        logger.info("Using Claude (from LLM_PROVIDER)")
        return DEFAULT_CLAUDE_MODEL

    return DEFAULT_GEMINI_MODEL


def get_gcp_config() -> Tuple[Optional[str], str]:
    """Return (project_id, region) from the environment."""
    project = os.environ.get('GCP_PROJECT')
    region = os.environ.get('GCP_REGION', 'europe-west4')
    return project, region
