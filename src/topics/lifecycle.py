"""
Topic lifecycle: reconcile a fresh clustering run with the persisted topics.

One discovery run for an organization:
  1. Load the corpus of content embeddings and the current topics
  2. Cluster the valid embeddings into candidates
  3. Greedily match each candidate to the most similar unclaimed topic
     (centroid cosine > MERGE_THRESHOLD): matched topics are updated in place,
     unmatched candidates become new named topics
  4. Delete every topic no candidate claimed (archival)

Topic ids stay stable for clusters that persist between runs, so links to a
topic survive re-clustering.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Set

import numpy as np

from clustering.clusterer import ClusterCandidate, SemanticClusterer
from clustering.config import ClusteringConfig
from clustering.similarity import cosine_similarity
from knowledge_store.base import KnowledgeStore, KnowledgeStoreError
from knowledge_store.models import ContentEmbedding, Topic, TopicMembership, coerce_vector, utc_now
from .naming import TopicNamer

logger = logging.getLogger(__name__)

# Candidate/topic centroid similarity needed to keep an existing topic
MERGE_THRESHOLD = 0.7

# Used when a member's similarity to the centroid cannot be computed
DEFAULT_MEMBERSHIP_SCORE = 0.8

# Cluster size at which topic confidence saturates
CONFIDENCE_SATURATION_SIZE = 10

# Discovery is single-writer per organization within this process
_org_locks: Dict[str, threading.Lock] = {}
_org_locks_guard = threading.Lock()


def organization_lock(organization_id: str) -> threading.Lock:
    with _org_locks_guard:
        if organization_id not in _org_locks:
            _org_locks[organization_id] = threading.Lock()
        return _org_locks[organization_id]


def topic_confidence(size: int) -> float:
    return round(min(size / CONFIDENCE_SATURATION_SIZE, 1.0), 2)


@dataclass
class DiscoveryResult:
    organization_id: str
    clusters_found: int = 0
    updated_topics: int = 0
    new_topics: int = 0
    archived_topics: int = 0
    errors: int = 0
    topic_ids: List[str] = field(default_factory=list)
    # topic id -> knowledge point ids whose membership was written this run
    memberships: Dict[str, List[str]] = field(default_factory=dict)
    dry_run: bool = False
    silhouette_score: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            'organizationId': self.organization_id,
            'clustersFound': self.clusters_found,
            'updatedTopics': self.updated_topics,
            'newTopics': self.new_topics,
            'archivedTopics': self.archived_topics,
            'errors': self.errors,
            'topicIds': list(self.topic_ids),
            'silhouetteScore': self.silhouette_score,
            'dryRun': self.dry_run,
        }


class TopicLifecycleManager:
    """
    Discovers, updates and archives the topics of an organization.

    Args:
        store: Knowledge Store holding corpus and topics
        clusterer: Semantic clusterer (built from config if None)
        namer: Topic namer (keyword fallback only if None)
        config: Clustering configuration (ClusteringConfig() if None)
        clock: Returns the current time, used for topic timestamps
    """

    def __init__(
        self,
        store: KnowledgeStore,
        clusterer: Optional[SemanticClusterer] = None,
        namer: Optional[TopicNamer] = None,
        config: Optional[ClusteringConfig] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.config = config or (clusterer.config if clusterer else ClusteringConfig())
        self.clusterer = clusterer or SemanticClusterer(self.config)
        self.namer = namer or TopicNamer()
        self.clock = clock

    def discover_topics(self, organization_id: str, dry_run: bool = False) -> DiscoveryResult:
        """
        Run one discovery pass for an organization.

        Concurrent calls for the same organization run one after the other.
        Store write failures are counted in `errors` and do not stop the run.
        """
        with organization_lock(organization_id):
            return self._discover(organization_id, dry_run)

    def _discover(self, organization_id: str, dry_run: bool) -> DiscoveryResult:
        result = DiscoveryResult(organization_id=organization_id, dry_run=dry_run)

        logger.info("=" * 60)
        logger.info(f"TOPIC DISCOVERY - START ({organization_id})")
        logger.info("=" * 60)

        if dry_run:
            logger.warning("⚠️  DRY RUN MODE - No writes will be performed")

        logger.info("\n[Step 1/4] Loading corpus...")
        corpus = self.store.get_content_embeddings(organization_id)
        positions, matrix = self.clusterer.validate_embeddings(corpus)
        valid = [corpus[p] for p in positions]

        logger.info(f"Loaded {len(corpus)} embeddings, {len(valid)} valid")

        if len(valid) < self.config.min_cluster_size:
            logger.info(
                f"Not enough content for topic discovery: {len(valid)} valid embeddings "
                f"< min_cluster_size {self.config.min_cluster_size}"
            )
            return result

        dim = matrix.shape[1]
        existing = self.store.get_topics(organization_id)

        logger.info(f"\n[Step 2/4] Clustering {len(valid)} knowledge points...")
        candidates = self.clusterer.cluster(valid)
        result.clusters_found = len(candidates)

        metrics = self.clusterer.compute_quality_metrics(matrix)
        result.silhouette_score = metrics.get('silhouette_score')
        logger.info(
            f"Cluster quality: silhouette={metrics.get('silhouette_score')}, "
            f"sizes={metrics.get('min_cluster_size')}-{metrics.get('max_cluster_size')}"
        )

        logger.info(f"\n[Step 3/4] Reconciling {len(candidates)} candidates with {len(existing)} topics...")
        claimed: Set[str] = set()

        for candidate in candidates:
            members = [valid[i] for i in candidate.member_indices]
            match = self._best_match(candidate, existing, claimed, dim)

            # Claim before writing so a failed update never archives the topic
            if match is not None:
                claimed.add(match.id)

            try:
                if match is not None:
                    topic_id = self._update_topic(match, candidate, members, dry_run)
                    result.updated_topics += 1
                else:
                    topic_id = self._create_topic(organization_id, candidate, members, dry_run)
                    result.new_topics += 1
            except KnowledgeStoreError as e:
                logger.error(f"Failed to persist {candidate.id} ({candidate.size} members): {e}")
                result.errors += 1
                continue

            result.topic_ids.append(topic_id)
            result.memberships[topic_id] = [m.knowledge_point_id for m in members]

        logger.info("\n[Step 4/4] Archiving unclaimed topics...")
        for topic in existing:
            if topic.id in claimed:
                continue
            if dry_run:
                logger.info(f"[DRY RUN] Would archive topic {topic.id} '{topic.name}'")
                result.archived_topics += 1
                continue
            try:
                self.store.delete_topic(topic.id)
                result.archived_topics += 1
                logger.info(f"  Archived topic {topic.id} '{topic.name}'")
            except KnowledgeStoreError as e:
                logger.error(f"Failed to archive topic {topic.id}: {e}")
                result.errors += 1

        logger.info("\n" + "=" * 60)
        logger.info("TOPIC DISCOVERY - COMPLETE")
        logger.info("=" * 60)
        logger.info(
            f"Clusters: {result.clusters_found}, updated: {result.updated_topics}, "
            f"new: {result.new_topics}, archived: {result.archived_topics}, errors: {result.errors}"
        )

        return result

    def _best_match(
        self,
        candidate: ClusterCandidate,
        topics: Sequence[Topic],
        claimed: Set[str],
        dim: int
    ) -> Optional[Topic]:
        """Most similar unclaimed topic above MERGE_THRESHOLD, if any."""
        best_topic = None
        best_score = MERGE_THRESHOLD

        for topic in topics:
            if topic.id in claimed:
                continue
            centroid = coerce_vector(topic.centroid)
            if centroid is None or centroid.shape[0] != dim:
                continue

            score = cosine_similarity(candidate.centroid, centroid)
            if score > best_score:
                best_topic = topic
                best_score = score

        if best_topic is not None:
            logger.info(f"  {candidate.id} matches topic {best_topic.id} '{best_topic.name}' ({best_score:.3f})")
        return best_topic

    def _memberships(
        self,
        topic_id: str,
        candidate: ClusterCandidate,
        members: Sequence[ContentEmbedding]
    ) -> List[TopicMembership]:
        centroid = np.asarray(candidate.centroid, dtype=np.float64)
        centroid_ok = centroid.size > 0 and np.linalg.norm(centroid) > 0

        memberships = []
        for member in members:
            score = DEFAULT_MEMBERSHIP_SCORE
            vector = coerce_vector(member.vector)
            if centroid_ok and vector is not None and vector.shape == centroid.shape and np.linalg.norm(vector) > 0:
                score = cosine_similarity(vector, centroid)
            memberships.append(TopicMembership(
                topic_id=topic_id,
                knowledge_point_id=member.knowledge_point_id,
                similarity_score=score,
            ))
        return memberships

    def _update_topic(
        self,
        topic: Topic,
        candidate: ClusterCandidate,
        members: Sequence[ContentEmbedding],
        dry_run: bool
    ) -> str:
        topic.centroid = [float(v) for v in candidate.centroid]
        topic.member_count = candidate.size
        topic.confidence_score = topic_confidence(candidate.size)
        topic.last_updated_at = self.clock()

        if dry_run:
            logger.info(f"[DRY RUN] Would update topic {topic.id} with {candidate.size} members")
            return topic.id

        self.store.update_topic(topic)
        self.store.replace_memberships(topic.id, self._memberships(topic.id, candidate, members))
        logger.info(f"  Updated topic {topic.id} '{topic.name}' ({candidate.size} members)")
        return topic.id

    def _create_topic(
        self,
        organization_id: str,
        candidate: ClusterCandidate,
        members: Sequence[ContentEmbedding],
        dry_run: bool
    ) -> str:
        name, description = self.namer.name(candidate, members)
        now = self.clock()

        topic = Topic(
            id=None,
            organization_id=organization_id,
            name=name,
            description=description,
            centroid=[float(v) for v in candidate.centroid],
            member_count=candidate.size,
            confidence_score=topic_confidence(candidate.size),
            discovered_at=now,
            last_updated_at=now,
        )

        if dry_run:
            logger.info(f"[DRY RUN] Would create topic '{name}' with {candidate.size} members")
            return candidate.id

        topic_id = self.store.create_topic(topic)
        self.store.replace_memberships(topic_id, self._memberships(topic_id, candidate, members))
        logger.info(f"  Created topic {topic_id} '{name}' ({candidate.size} members)")
        return topic_id
