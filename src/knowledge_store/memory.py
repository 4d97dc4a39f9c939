"""
In-process Knowledge Store.

Dict-backed, thread-safe implementation of KnowledgeStore. Used for local
runs without GCP credentials and as the stateful store in tests.
"""

import copy
import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from clustering.similarity import cosine_similarity
from expertise.signals import rank_experts
from .base import KnowledgeStore, StoreWriteError
from .models import (
    ContentEmbedding,
    ExpertMatch,
    ExpertiseSignal,
    KnowledgeMatch,
    KnowledgePoint,
    Topic,
    TopicMembership,
    as_utc,
    coerce_vector,
)

logger = logging.getLogger(__name__)


class InMemoryKnowledgeStore(KnowledgeStore):
    """Knowledge Store held entirely in memory."""

    def __init__(self):
        self._lock = threading.RLock()
        self.knowledge_points: Dict[str, KnowledgePoint] = {}
        self.topics: Dict[str, Topic] = {}
        # topic_id -> {knowledge_point_id: membership}
        self.memberships: Dict[str, Dict[str, TopicMembership]] = {}
        # (person_id, topic_id) -> signal
        self.signals: Dict[Tuple[str, str], ExpertiseSignal] = {}
        self.people: Dict[str, str] = {}
        self.search_queries: List[Dict[str, object]] = []
        # Raw corpus rows for content that bypasses save_knowledge_point
        self.extra_embeddings: Dict[str, List[ContentEmbedding]] = {}

    def add_person(self, person_id: str, display_name: str) -> None:
        with self._lock:
            self.people[person_id] = display_name

    def add_content_embedding(self, organization_id: str, item: ContentEmbedding) -> None:
        """Register a corpus row as-is (payload is not validated here)."""
        with self._lock:
            self.extra_embeddings.setdefault(organization_id, []).append(item)

    # Knowledge points

    def save_knowledge_point(self, point: KnowledgePoint) -> str:
        if not point.organization_id:
            raise StoreWriteError("Knowledge point has no organization_id")

        with self._lock:
            for existing_id, existing in self.knowledge_points.items():
                if (existing.organization_id == point.organization_id
                        and existing.platform == point.platform
                        and existing.external_id == point.external_id):
                    point.id = existing_id
                    break

            point.id = point.id or str(uuid.uuid4())
            self.knowledge_points[point.id] = copy.deepcopy(point)
            return point.id

    def get_knowledge_points(self, knowledge_point_ids: Sequence[str]) -> List[KnowledgePoint]:
        with self._lock:
            return [
                copy.deepcopy(self.knowledge_points[kp_id])
                for kp_id in knowledge_point_ids
                if kp_id in self.knowledge_points
            ]

    def get_content_embeddings(self, organization_id: str) -> List[ContentEmbedding]:
        with self._lock:
            corpus = [
                point.to_content_embedding()
                for point in self.knowledge_points.values()
                if point.organization_id == organization_id
            ]
            corpus.extend(copy.deepcopy(self.extra_embeddings.get(organization_id, [])))
            return corpus

    def find_similar_knowledge(
        self,
        organization_id: str,
        query_vector: Sequence[float],
        similarity_threshold: float = 0.1,
        limit: int = 50
    ) -> List[KnowledgeMatch]:
        with self._lock:
            points = [
                p for p in self.knowledge_points.values()
                if p.organization_id == organization_id
            ]

        matches = []
        for point in points:
            vector = coerce_vector(point.embedding)
            if vector is None:
                continue
            similarity = cosine_similarity(query_vector, vector)
            if similarity > similarity_threshold:
                matches.append(KnowledgeMatch(
                    knowledge_point_id=point.id,
                    summary=point.summary,
                    similarity_score=similarity,
                    source_url=point.source_url,
                    source_title=point.title,
                    author_name=self.get_person_name(point.author_person_id) if point.author_person_id else None,
                    platform=point.platform,
                ))

        matches.sort(key=lambda m: m.similarity_score, reverse=True)
        return matches[:limit]

    # Topics

    def get_topics(self, organization_id: str) -> List[Topic]:
        with self._lock:
            return [
                copy.deepcopy(t) for t in self.topics.values()
                if t.organization_id == organization_id
            ]

    def create_topic(self, topic: Topic) -> str:
        with self._lock:
            topic_id = topic.id or str(uuid.uuid4())
            stored = copy.deepcopy(topic)
            stored.id = topic_id
            self.topics[topic_id] = stored
            self.memberships.setdefault(topic_id, {})
            return topic_id

    def update_topic(self, topic: Topic) -> None:
        with self._lock:
            if topic.id not in self.topics:
                raise StoreWriteError(f"Topic {topic.id} does not exist")
            self.topics[topic.id] = copy.deepcopy(topic)

    def delete_topic(self, topic_id: str) -> None:
        with self._lock:
            self.topics.pop(topic_id, None)
            self.memberships.pop(topic_id, None)
            for key in [k for k in self.signals if k[1] == topic_id]:
                del self.signals[key]

    def replace_memberships(self, topic_id: str, memberships: Sequence[TopicMembership]) -> None:
        with self._lock:
            if topic_id not in self.topics:
                raise StoreWriteError(f"Topic {topic_id} does not exist")
            self.memberships[topic_id] = {
                m.knowledge_point_id: copy.deepcopy(m) for m in memberships
            }

    def upsert_membership(self, membership: TopicMembership) -> None:
        with self._lock:
            if membership.topic_id not in self.topics:
                raise StoreWriteError(f"Topic {membership.topic_id} does not exist")
            rows = self.memberships.setdefault(membership.topic_id, {})
            rows[membership.knowledge_point_id] = copy.deepcopy(membership)

    def get_memberships_for_point(self, knowledge_point_id: str) -> List[TopicMembership]:
        with self._lock:
            return [
                copy.deepcopy(rows[knowledge_point_id])
                for rows in self.memberships.values()
                if knowledge_point_id in rows
            ]

    def get_memberships(self, topic_id: str) -> List[TopicMembership]:
        with self._lock:
            return [copy.deepcopy(m) for m in self.memberships.get(topic_id, {}).values()]

    # Expertise

    def upsert_expertise_signal(self, signal: ExpertiseSignal) -> None:
        with self._lock:
            key = (signal.person_id, signal.topic_id)
            stored = copy.deepcopy(signal)
            existing = self.signals.get(key)
            if existing is not None:
                stored.contribution_count = existing.contribution_count + 1
                if as_utc(existing.occurred_at) > as_utc(stored.occurred_at):
                    stored.occurred_at = existing.occurred_at
            self.signals[key] = stored

    def find_topic_experts(
        self,
        topic_id: str,
        limit: int = 5,
        now: Optional[datetime] = None
    ) -> List[ExpertMatch]:
        with self._lock:
            signals = [s for (_, t), s in self.signals.items() if t == topic_id]
            names = dict(self.people)
        return rank_experts(signals, names, limit, now)

    # Misc

    def get_person_name(self, person_id: str) -> Optional[str]:
        with self._lock:
            return self.people.get(person_id)

    def log_search_query(
        self,
        organization_id: str,
        query: str,
        query_vector: Sequence[float]
    ) -> None:
        with self._lock:
            self.search_queries.append({
                'organization_id': organization_id,
                'query': query,
                'dimensions': int(np.asarray(query_vector).size),
            })
