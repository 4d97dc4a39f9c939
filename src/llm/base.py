"""
Generative model abstraction used for topic naming and search reranking.

Both uses only need plain text back, so every provider implements a single
`generate()` call and shares the retry loop below.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 30.0

T = TypeVar('T')


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    GEMINI = "gemini"
    CLAUDE = "claude"


@dataclass
class GenerationConfig:
    """
    Model-agnostic generation configuration.

    Topic naming and reranking want short, stable answers, hence the low
    default temperature.
    """
    temperature: float = 0.2
    max_output_tokens: int = 512
    top_p: float = 0.95
    top_k: int = 40

    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMResponse:
    text: str
    model: str
    provider: LLMProvider
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    finish_reason: Optional[str] = None
    raw_response: Optional[Any] = None


def call_with_retries(
    call: Callable[[], T],
    retriable_markers: Sequence[str],
    label: str,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Run `call` with exponential backoff on retriable errors.

    An error is retriable when its message contains one of
    `retriable_markers` (rate limits, quota, 5xx). Anything else, or the last
    failed attempt, is re-raised.
    """
    backoff = INITIAL_BACKOFF

    for attempt in range(MAX_RETRIES):
        try:
            return call()
        except Exception as e:
            error_msg = str(e).lower()
            is_retriable = any(marker in error_msg for marker in retriable_markers)

            if is_retriable and attempt < MAX_RETRIES - 1:
                logger.warning(
                    f"{label}: retriable error (attempt {attempt + 1}/{MAX_RETRIES}): {e}. "
                    f"Retrying after {backoff}s"
                )
                sleep(backoff)
                backoff = min(backoff * 2, MAX_BACKOFF)
            else:
                logger.error(f"{label} failed after {attempt + 1} attempts: {e}")
                raise

    # MAX_RETRIES is always >= 1, the loop either returns or raises
    raise RuntimeError(f"{label}: no attempts made")


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM clients.

    Clients connect lazily on the first generate() call so that building a
    router or namer never touches the network.
    """

    def __init__(self, model_id: str, project_id: Optional[str], region: str):
        self.model_id = model_id
        self.project_id = project_id
        self.region = region
        self._initialized = False

    @property
    @abstractmethod
    def provider(self) -> LLMProvider:
        """Return the provider type."""

    @abstractmethod
    def _initialize(self) -> None:
        """Create the underlying SDK client."""

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self._initialize()
            self._initialized = True

    @abstractmethod
    def generate(
        self,
        prompt: str,
        config: Optional[GenerationConfig] = None,
        system_prompt: Optional[str] = None
    ) -> LLMResponse:
        """
        Generate text from a prompt.

        Raises:
            ValueError: If the provider returns an empty answer
            Exception: SDK errors once retries are exhausted
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model_id}, region={self.region})"
