"""
Embedding generation and knowledge point content analysis.
"""

from .embeddings import EmbeddingError, EmbeddingProvider
from .processor import KnowledgePointProcessor, ProcessedContent

__all__ = [
    'EmbeddingError',
    'EmbeddingProvider',
    'KnowledgePointProcessor',
    'ProcessedContent',
]
