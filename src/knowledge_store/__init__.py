"""
Knowledge Store: persistence boundary for knowledge points, topics,
memberships and expertise signals.

Implementations:
    InMemoryKnowledgeStore      - local runs and tests
    FirestoreKnowledgeStore     - production (knowledge_store.firestore_store)
"""

from .base import KnowledgeStore, KnowledgeStoreError, StoreReadError, StoreWriteError
from .memory import InMemoryKnowledgeStore
from .models import (
    ContentEmbedding,
    ExpertMatch,
    ExpertiseSignal,
    KnowledgeMatch,
    KnowledgePoint,
    QueryResult,
    Topic,
    TopicMembership,
)

__all__ = [
    'ContentEmbedding',
    'ExpertMatch',
    'ExpertiseSignal',
    'InMemoryKnowledgeStore',
    'KnowledgeMatch',
    'KnowledgePoint',
    'KnowledgeStore',
    'KnowledgeStoreError',
    'QueryResult',
    'StoreReadError',
    'StoreWriteError',
    'Topic',
    'TopicMembership',
]
