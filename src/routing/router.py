"""
Query routing: question -> matching knowledge, topics and people to ask.

Every external dependency (embedding, vector search, reranking, expert
lookup, query logging) degrades to a documented fallback, so route() always
returns a QueryResult.
"""

import logging
from typing import List, Optional, Sequence

from clustering.similarity import cosine_similarity
from embed.embeddings import EmbeddingProvider
from knowledge_store.base import KnowledgeStore
from knowledge_store.models import ExpertMatch, KnowledgeMatch, QueryResult, Topic, coerce_vector
from llm import BaseLLMClient, GenerationConfig
from .rerank import MAX_SELECTED, build_rerank_prompt, parse_selection

logger = logging.getLogger(__name__)

SEARCH_SIMILARITY_THRESHOLD = 0.1
SEARCH_CANDIDATE_LIMIT = 50
TOPIC_SIMILARITY_THRESHOLD = 0.6
MAX_TOPIC_MATCHES = 3
DEFAULT_EXPERT_LIMIT = 5

RERANK_CONFIG = GenerationConfig(temperature=0.1, max_output_tokens=50)


class QueryRouter:
    """
    Answers "who knows about X" questions for one organization at a time.

    Args:
        store: Knowledge Store
        embedder: Embedding provider, must match the one used at ingestion
        llm_client: Reranking model; None disables reranking
        expert_limit: Default number of suggested experts
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingProvider,
        llm_client: Optional[BaseLLMClient] = None,
        expert_limit: int = DEFAULT_EXPERT_LIMIT
    ):
        self.store = store
        self.embedder = embedder
        self.llm_client = llm_client
        self.expert_limit = expert_limit

    def route(
        self,
        query: str,
        organization_id: str,
        expert_limit: Optional[int] = None
    ) -> QueryResult:
        logger.info(f"Routing query for {organization_id}: '{query[:80]}'")

        query_vector = self._embed(query)

        try:
            candidates = self.store.find_similar_knowledge(
                organization_id,
                query_vector,
                similarity_threshold=SEARCH_SIMILARITY_THRESHOLD,
                limit=SEARCH_CANDIDATE_LIMIT
            )
        except Exception as e:
            logger.error(f"Knowledge search failed: {e}")
            candidates = []

        knowledge_matches = self.rerank(query, candidates)
        topics = self.match_topics(organization_id, query_vector)
        experts = self._experts(topics[0], expert_limit or self.expert_limit) if topics else []

        try:
            self.store.log_search_query(organization_id, query, query_vector)
        except Exception as e:
            logger.warning(f"Failed to log search query: {e}")

        logger.info(
            f"Found {len(candidates)} candidates, returning {len(knowledge_matches)} matches, "
            f"{len(topics)} topics, {len(experts)} experts"
        )

        return QueryResult(
            query=query,
            knowledge_matches=knowledge_matches,
            suggested_experts=experts,
            topic_matches=[topic.name for topic in topics],
        )

    def _embed(self, query: str) -> List[float]:
        try:
            return self.embedder.embed(query)
        except Exception as e:
            logger.warning(f"Query embedding failed, using zero vector: {e}")
            return self.embedder.zero_vector()

    def rerank(self, query: str, candidates: Sequence[KnowledgeMatch]) -> List[KnowledgeMatch]:
        """
        Pick the best candidates. Up to MAX_SELECTED candidates pass through;
        more are reranked by the LLM, falling back to similarity order.
        """
        candidates = list(candidates)
        if len(candidates) <= MAX_SELECTED:
            return candidates

        fallback = sorted(candidates, key=lambda m: m.similarity_score, reverse=True)[:MAX_SELECTED]
        if self.llm_client is None:
            return fallback

        try:
            response = self.llm_client.generate(build_rerank_prompt(query, candidates), RERANK_CONFIG)
            selection = parse_selection(response.text, len(candidates))
        except Exception as e:
            logger.warning(f"LLM reranking failed, using similarity order: {e}")
            return fallback

        if not selection:
            logger.warning("LLM reranking returned no usable selection, using similarity order")
            return fallback

        return [candidates[i] for i in selection]

    def match_topics(self, organization_id: str, query_vector: Sequence[float]) -> List[Topic]:
        """Topics whose centroid is similar to the query (> 0.6), best first."""
        try:
            topics = self.store.get_topics(organization_id)
        except Exception as e:
            logger.error(f"Failed to load topics: {e}")
            return []

        query = coerce_vector(query_vector)
        if query is None:
            return []

        scored = []
        for topic in topics:
            centroid = coerce_vector(topic.centroid)
            if centroid is None:
                continue
            score = cosine_similarity(query, centroid)
            if score > TOPIC_SIMILARITY_THRESHOLD:
                scored.append((score, topic))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [topic for _, topic in scored[:MAX_TOPIC_MATCHES]]

    def _experts(self, topic: Topic, limit: int) -> List[ExpertMatch]:
        try:
            return self.store.find_topic_experts(topic.id, limit=limit)
        except Exception as e:
            logger.warning(f"Expert lookup failed for topic {topic.id}: {e}")
            return []
