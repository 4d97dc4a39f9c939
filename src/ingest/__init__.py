"""
Knowledge ingestion and the engine facade.
"""

from .engine import KnowledgeEngine, KnowledgeSource

__all__ = ['KnowledgeEngine', 'KnowledgeSource']
