"""
Knowledge Store boundary contract.

The engine never owns persistence. It talks to an implementation of
KnowledgeStore, which provides:
  (a) vector similarity search over knowledge points
  (b) topic CRUD with centroid and membership upsert/delete
  (c) decay-aware expert ranking per topic
  (d) full-corpus retrieval of content embeddings for clustering
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .models import (
    ContentEmbedding,
    ExpertMatch,
    ExpertiseSignal,
    KnowledgeMatch,
    KnowledgePoint,
    Topic,
    TopicMembership,
)


class KnowledgeStoreError(Exception):
    """Base class for store failures."""


class StoreWriteError(KnowledgeStoreError):
    """A write to the store failed."""


class StoreReadError(KnowledgeStoreError):
    """A read from the store failed."""


class KnowledgeStore(ABC):
    """Abstract Knowledge Store."""

    # Knowledge points

    @abstractmethod
    def save_knowledge_point(self, point: KnowledgePoint) -> str:
        """
        Upsert a knowledge point (keyed by organization, platform, external id).

        Returns:
            Knowledge point id

        Raises:
            StoreWriteError: If the write fails
        """

    @abstractmethod
    def get_knowledge_points(self, knowledge_point_ids: Sequence[str]) -> List[KnowledgePoint]:
        """Fetch knowledge points by id; unknown ids are skipped."""

    @abstractmethod
    def get_content_embeddings(self, organization_id: str) -> List[ContentEmbedding]:
        """Full corpus of one organization's embeddings with platform metadata."""

    @abstractmethod
    def find_similar_knowledge(
        self,
        organization_id: str,
        query_vector: Sequence[float],
        similarity_threshold: float = 0.1,
        limit: int = 50
    ) -> List[KnowledgeMatch]:
        """Knowledge points with similarity above the threshold, best first."""

    # Topics

    @abstractmethod
    def get_topics(self, organization_id: str) -> List[Topic]:
        """All current topics for the organization."""

    @abstractmethod
    def create_topic(self, topic: Topic) -> str:
        """Persist a new topic and return its id."""

    @abstractmethod
    def update_topic(self, topic: Topic) -> None:
        """Overwrite centroid, counts, confidence and timestamps of a topic."""

    @abstractmethod
    def delete_topic(self, topic_id: str) -> None:
        """Delete a topic together with all of its memberships."""

    @abstractmethod
    def replace_memberships(self, topic_id: str, memberships: Sequence[TopicMembership]) -> None:
        """Replace (not merge) the membership rows of a topic."""

    @abstractmethod
    def upsert_membership(self, membership: TopicMembership) -> None:
        """Insert or update one (topic, knowledge point) membership row."""

    @abstractmethod
    def get_memberships_for_point(self, knowledge_point_id: str) -> List[TopicMembership]:
        """All topic memberships of a knowledge point."""

    # Expertise

    @abstractmethod
    def upsert_expertise_signal(self, signal: ExpertiseSignal) -> None:
        """
        Upsert the (person, topic) signal.

        Strength, confidence, type and decay rate are overwritten with the new
        contribution; contribution_count is incremented and occurred_at keeps
        the latest value.
        """

    @abstractmethod
    def find_topic_experts(
        self,
        topic_id: str,
        limit: int = 5,
        now: Optional[datetime] = None
    ) -> List[ExpertMatch]:
        """People ranked by decayed expertise for a topic."""

    # Misc

    @abstractmethod
    def get_person_name(self, person_id: str) -> Optional[str]:
        """Display name of a person, if known."""

    @abstractmethod
    def log_search_query(
        self,
        organization_id: str,
        query: str,
        query_vector: Sequence[float]
    ) -> None:
        """Record a search query for analytics."""
