"""
Data model shared by the clustering, topic, expertise and routing layers.

Persisted records (KnowledgePoint, Topic, TopicMembership, ExpertiseSignal)
are owned by the Knowledge Store. Query-time views (KnowledgeMatch,
ExpertMatch, QueryResult) are what the router hands back to callers.
"""

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np


def utc_now() -> datetime:
    """Timezone-aware current time (all stored timestamps are UTC)."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so naive and aware values compare."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_vector(payload: Any) -> Optional[np.ndarray]:
    """
    Convert a stored embedding payload to a float vector.

    Accepts lists, tuples, numpy arrays, Firestore Vector values and JSON
    array strings (pgvector-style "[0.1,0.2,...]"). Returns None for anything
    that is not a finite, one-dimensional numeric vector.
    """
    if payload is None:
        return None

    if hasattr(payload, 'to_map_value'):
        map_value = payload.to_map_value()
        payload = map_value.get('value', map_value)

    if isinstance(payload, (bytes, bytearray)):
        return None

    if isinstance(payload, str):
        text = payload.strip()
        if not text.startswith('['):
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return None

    if not isinstance(payload, (list, tuple, np.ndarray)):
        return None

    try:
        vector = np.asarray(payload, dtype=np.float64)
    except (TypeError, ValueError):
        return None

    if vector.ndim != 1 or vector.size == 0:
        return None
    if not np.all(np.isfinite(vector)):
        return None

    return vector


@dataclass
class ContentEmbedding:
    """One knowledge point's embedding plus the metadata clustering needs."""
    knowledge_point_id: str
    vector: Any
    platform: str = 'unknown'
    source_type: str = 'unknown'
    summary: str = ''
    keywords: List[str] = field(default_factory=list)
    author_person_id: Optional[str] = None


@dataclass
class Topic:
    id: Optional[str]
    organization_id: str
    name: str
    centroid: List[float]
    member_count: int = 0
    confidence_score: float = 0.0
    discovered_at: datetime = field(default_factory=utc_now)
    last_updated_at: datetime = field(default_factory=utc_now)
    description: str = ''


@dataclass
class TopicMembership:
    topic_id: str
    knowledge_point_id: str
    similarity_score: float = 0.8

    def __post_init__(self):
        score = float(self.similarity_score)
        if math.isnan(score):
            score = 0.0
        self.similarity_score = min(1.0, max(0.0, score))


@dataclass
class ExpertiseSignal:
    """
    A decayable record linking a person to a topic.

    One logical signal exists per (person, topic); the store's upsert keeps
    contribution_count and the latest occurrence.
    """
    person_id: str
    topic_id: str
    signal_type: str
    strength: float
    confidence: float
    source_artifact_id: str
    occurred_at: datetime
    decay_rate: float
    organization_id: str = ''
    contribution_count: int = 1

    def __post_init__(self):
        self.strength = min(2.0, max(0.0, float(self.strength)))
        self.confidence = min(1.0, max(0.0, float(self.confidence)))
        if not 0.0 < self.decay_rate <= 1.0:
            raise ValueError(f"decay_rate must be in (0, 1], got {self.decay_rate}")
        self.occurred_at = as_utc(self.occurred_at)


@dataclass
class KnowledgePoint:
    """One processed unit of platform content."""
    id: Optional[str]
    organization_id: str
    platform: str
    source_type: str
    external_id: str
    summary: str
    keywords: List[str]
    embedding: List[float]
    quality_score: float = 0.5
    quality_confidence: float = 0.5
    relevance_score: float = 0.5
    technical_depth: float = 0.0
    content_type: str = 'discussion'
    author_person_id: Optional[str] = None
    source_url: Optional[str] = None
    title: Optional[str] = None
    occurred_at: datetime = field(default_factory=utc_now)

    def to_content_embedding(self) -> ContentEmbedding:
        return ContentEmbedding(
            knowledge_point_id=self.id,
            vector=self.embedding,
            platform=self.platform,
            source_type=self.source_type,
            summary=self.summary,
            keywords=list(self.keywords),
            author_person_id=self.author_person_id,
        )


@dataclass
class KnowledgeMatch:
    knowledge_point_id: str
    summary: str
    similarity_score: float
    source_url: Optional[str] = None
    source_title: Optional[str] = None
    author_name: Optional[str] = None
    platform: str = 'unknown'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'knowledgePointId': self.knowledge_point_id,
            'summary': self.summary,
            'similarityScore': self.similarity_score,
            'sourceUrl': self.source_url,
            'sourceTitle': self.source_title,
            'authorName': self.author_name,
            'platform': self.platform,
        }


@dataclass
class ExpertMatch:
    person_id: str
    display_name: str
    expertise_score: float
    contribution_count: int
    last_contribution_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        last = self.last_contribution_at
        return {
            'personId': self.person_id,
            'displayName': self.display_name,
            'expertiseScore': self.expertise_score,
            'contributionCount': self.contribution_count,
            'lastContributionAt': last.isoformat() if last else None,
        }


@dataclass
class QueryResult:
    query: str
    knowledge_matches: List[KnowledgeMatch] = field(default_factory=list)
    suggested_experts: List[ExpertMatch] = field(default_factory=list)
    topic_matches: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'query': self.query,
            'knowledgeMatches': [m.to_dict() for m in self.knowledge_matches],
            'suggestedExperts': [e.to_dict() for e in self.suggested_experts],
            'topicMatches': list(self.topic_matches),
        }
