"""
Knowledge engine: the single entry point for ingestion, discovery and search.

Ingestion of one source:
  1. Analyse the title and content (summary, keywords, quality, depth, content type)
  2. Embed the same text, cut to MAX_EMBEDDING_INPUT_CHARS (zero vector if the
     embedding service fails)
  3. Save the knowledge point (a store failure is fatal for this item)
  4. Attach it to every existing topic whose centroid is similar enough
  5. Queue expertise aggregation with the memberships just written
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from clustering.config import ClusteringConfig
from clustering.similarity import cosine_similarity
from embed.embeddings import EmbeddingProvider
from embed.processor import KnowledgePointProcessor
from expertise.aggregator import ExpertiseAggregator, ExpertiseQueue
from knowledge_store.base import KnowledgeStore, KnowledgeStoreError
from knowledge_store.models import KnowledgePoint, QueryResult, TopicMembership, coerce_vector, utc_now
from llm import BaseLLMClient
from routing.router import QueryRouter
from topics.lifecycle import DiscoveryResult, TopicLifecycleManager
from topics.naming import TopicNamer

logger = logging.getLogger(__name__)

# Longer texts are cut before embedding
MAX_EMBEDDING_INPUT_CHARS = 8000


@dataclass
class KnowledgeSource:
    """Raw content from a platform, author already resolved to a person id."""
    platform: str
    source_type: str
    external_id: str
    content: str
    title: Optional[str] = None
    source_url: Optional[str] = None
    author_person_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=utc_now)


class KnowledgeEngine:
    """
    Wires store, embedding, topics, expertise and routing together.

    Args:
        store: Knowledge Store
        embedder: Embedding provider used for content and queries
        llm_client: Model for topic naming and reranking (None disables both)
        config: Clustering configuration (ClusteringConfig.from_env() if None)
        queue: Expertise queue (a new single-worker queue if None)
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingProvider,
        llm_client: Optional[BaseLLMClient] = None,
        config: Optional[ClusteringConfig] = None,
        queue: Optional[ExpertiseQueue] = None,
        lifecycle: Optional[TopicLifecycleManager] = None
    ):
        self.store = store
        self.embedder = embedder
        self.config = config or ClusteringConfig.from_env()
        self.processor = KnowledgePointProcessor()
        self.queue = queue or ExpertiseQueue(ExpertiseAggregator(store))
        self.lifecycle = lifecycle or TopicLifecycleManager(
            store, namer=TopicNamer(llm_client), config=self.config
        )
        self.router = QueryRouter(store, embedder, llm_client)

    def ingest_knowledge_source(self, source: KnowledgeSource, organization_id: str) -> str:
        """
        Process, embed and store one source.

        Returns:
            Knowledge point id

        Raises:
            StoreWriteError: If the knowledge point cannot be saved
        """
        full_text = f"{source.title}\n\n{source.content}" if source.title else source.content
        processed = self.processor.process(full_text)
        embedding = self.embedder.embed_or_zero(full_text[:MAX_EMBEDDING_INPUT_CHARS])

        point = KnowledgePoint(
            id=None,
            organization_id=organization_id,
            platform=source.platform,
            source_type=source.source_type,
            external_id=source.external_id,
            summary=processed.summary,
            keywords=processed.keywords,
            embedding=embedding,
            quality_score=processed.quality_score,
            quality_confidence=processed.quality_confidence,
            relevance_score=processed.relevance_score,
            technical_depth=processed.technical_depth,
            content_type=processed.content_type,
            author_person_id=source.author_person_id,
            source_url=source.source_url,
            title=source.title,
            occurred_at=source.occurred_at,
        )

        try:
            kp_id = self.store.save_knowledge_point(point)
        except KnowledgeStoreError as e:
            logger.error(f"Failed to store knowledge from {source.platform}/{source.external_id}: {e}")
            raise

        memberships = self.assign_to_topics(point)
        if memberships and point.author_person_id:
            self.queue.submit(point, memberships)

        logger.info(
            f"✅ Ingested {source.platform}/{source.external_id} as {kp_id} "
            f"({processed.content_type}, {len(memberships)} topics)"
        )
        return kp_id

    def assign_to_topics(self, point: KnowledgePoint) -> List[TopicMembership]:
        """
        Attach a freshly stored point to every existing topic whose centroid
        similarity exceeds the configured threshold.
        """
        vector = coerce_vector(point.embedding)
        if vector is None or not vector.any():
            return []

        try:
            topics = self.store.get_topics(point.organization_id)
        except KnowledgeStoreError as e:
            logger.warning(f"Failed to load topics for incremental matching: {e}")
            return []

        written = []
        for topic in topics:
            centroid = coerce_vector(topic.centroid)
            if centroid is None or centroid.shape != vector.shape:
                continue

            score = cosine_similarity(vector, centroid)
            if score <= self.config.similarity_threshold:
                continue

            membership = TopicMembership(
                topic_id=topic.id,
                knowledge_point_id=point.id,
                similarity_score=score,
            )
            try:
                self.store.upsert_membership(membership)
            except KnowledgeStoreError as e:
                logger.warning(f"Failed to add {point.id} to topic {topic.id}: {e}")
                continue
            written.append(membership)

        return written

    def discover_topics(self, organization_id: str, dry_run: bool = False) -> DiscoveryResult:
        """
        Re-cluster the organization and queue expertise aggregation for every
        point whose membership was written.
        """
        result = self.lifecycle.discover_topics(organization_id, dry_run=dry_run)

        if dry_run or not result.memberships:
            return result

        memberships_by_point: Dict[str, List[TopicMembership]] = {}
        for topic_id, kp_ids in result.memberships.items():
            for kp_id in kp_ids:
                memberships_by_point.setdefault(kp_id, []).append(
                    TopicMembership(topic_id=topic_id, knowledge_point_id=kp_id)
                )

        self.queue.submit_points(memberships_by_point)
        logger.info(f"Queued expertise aggregation for {len(memberships_by_point)} knowledge points")
        return result

    def search(self, query: str, organization_id: str, expert_limit: Optional[int] = None) -> QueryResult:
        return self.router.route(query, organization_id, expert_limit=expert_limit)

    def close(self) -> None:
        """Wait for queued aggregation and stop the worker."""
        self.queue.shutdown(wait_for_jobs=True)
