"""
Firestore-backed Knowledge Store.

Collections (names overridable via environment):
    FIRESTORE_KNOWLEDGE_COLLECTION   knowledge points with `embedding` vector field (default: knowledge_points)
    FIRESTORE_TOPICS_COLLECTION      discovered topics with `centroid` vector field (default: topics)
    FIRESTORE_MEMBERSHIPS_COLLECTION topic memberships, id "<topic>_<point>" (default: topic_memberships)
    FIRESTORE_SIGNALS_COLLECTION     expertise signals, id "<person>_<topic>" (default: expertise_signals)
    FIRESTORE_PEOPLE_COLLECTION      people with `display_name` (default: people)
    FIRESTORE_QUERIES_COLLECTION     search query log (default: search_queries)

Vector similarity search uses Firestore FIND_NEAREST with COSINE distance,
which requires a vector index on knowledge_points.embedding.
"""

import hashlib
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from google.cloud import firestore
from google.cloud.firestore_v1.base_vector_query import DistanceMeasure
from google.cloud.firestore_v1.vector import Vector

from expertise.signals import rank_experts
from .base import KnowledgeStore, StoreReadError, StoreWriteError
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
    utc_now,
)

logger = logging.getLogger(__name__)

# Firestore batch limit
MAX_BATCH_OPERATIONS = 500

DISTANCE_FIELD = 'vector_distance'


def _vector_values(payload: Any) -> List[float]:
    vector = coerce_vector(payload)
    return vector.tolist() if vector is not None else []


class FirestoreKnowledgeStore(KnowledgeStore):
    """
    Knowledge Store on Google Cloud Firestore.

    Args:
        project_id: GCP project ID (uses GCP_PROJECT env var if None)
        client: Pre-built Firestore client (tests inject a mock here)
    """

    def __init__(self, project_id: Optional[str] = None, client: Optional[firestore.Client] = None):
        self.project_id = project_id or os.environ.get('GCP_PROJECT')

        if client is None:
            logger.info(f"Initializing Firestore client for project: {self.project_id}")
            client = firestore.Client(project=self.project_id)
        self.db = client

        self.knowledge_collection = os.environ.get('FIRESTORE_KNOWLEDGE_COLLECTION', 'knowledge_points')
        self.topics_collection = os.environ.get('FIRESTORE_TOPICS_COLLECTION', 'topics')
        self.memberships_collection = os.environ.get('FIRESTORE_MEMBERSHIPS_COLLECTION', 'topic_memberships')
        self.signals_collection = os.environ.get('FIRESTORE_SIGNALS_COLLECTION', 'expertise_signals')
        self.people_collection = os.environ.get('FIRESTORE_PEOPLE_COLLECTION', 'people')
        self.queries_collection = os.environ.get('FIRESTORE_QUERIES_COLLECTION', 'search_queries')

    def _stream_where(self, collection_name: str, field: str, value: str) -> List[Any]:
        """All documents with field == value; the stream is consumed here so read errors surface."""
        try:
            return list(self.db.collection(collection_name).where(field, '==', value).stream())
        except Exception as e:
            logger.error(f"Failed to read {collection_name} where {field} == {value}: {e}")
            raise StoreReadError(f"Failed to read {collection_name}: {e}") from e

    # Knowledge points

    @staticmethod
    def knowledge_point_doc_id(organization_id: str, platform: str, external_id: str) -> str:
        """Stable document id so re-ingesting the same source upserts."""
        key = f"{organization_id}:{platform}:{external_id}"
        return hashlib.sha256(key.encode('utf-8')).hexdigest()[:32]

    def save_knowledge_point(self, point: KnowledgePoint) -> str:
        doc_id = point.id or self.knowledge_point_doc_id(
            point.organization_id, point.platform, point.external_id
        )

        data = {
            'organization_id': point.organization_id,
            'platform': point.platform,
            'source_type': point.source_type,
            'external_id': point.external_id,
            'summary': point.summary,
            'keywords': list(point.keywords),
            'embedding': Vector(list(point.embedding)),
            'quality_score': point.quality_score,
            'quality_confidence': point.quality_confidence,
            'relevance_score': point.relevance_score,
            'technical_depth': point.technical_depth,
            'content_type': point.content_type,
            'author_person_id': point.author_person_id,
            'source_url': point.source_url,
            'title': point.title,
            'occurred_at': point.occurred_at,
            'updated_at': firestore.SERVER_TIMESTAMP,
        }

        try:
            self.db.collection(self.knowledge_collection).document(doc_id).set(data)
        except Exception as e:
            logger.error(f"Failed to store knowledge point {point.external_id}: {e}")
            raise StoreWriteError(f"Failed to store knowledge point {point.external_id}: {e}") from e

        point.id = doc_id
        return doc_id

    def _doc_to_knowledge_point(self, doc) -> KnowledgePoint:
        data = doc.to_dict()
        return KnowledgePoint(
            id=doc.id,
            organization_id=data.get('organization_id', ''),
            platform=data.get('platform', 'unknown'),
            source_type=data.get('source_type', 'unknown'),
            external_id=data.get('external_id', ''),
            summary=data.get('summary', ''),
            keywords=data.get('keywords', []),
            embedding=_vector_values(data.get('embedding')),
            quality_score=data.get('quality_score', 0.5),
            quality_confidence=data.get('quality_confidence', 0.5),
            relevance_score=data.get('relevance_score', 0.5),
            technical_depth=data.get('technical_depth', 0.0),
            content_type=data.get('content_type', 'discussion'),
            author_person_id=data.get('author_person_id'),
            source_url=data.get('source_url'),
            title=data.get('title'),
            occurred_at=data.get('occurred_at') or utc_now(),
        )

    def get_knowledge_points(self, knowledge_point_ids: Sequence[str]) -> List[KnowledgePoint]:
        points = []
        collection = self.db.collection(self.knowledge_collection)
        for kp_id in knowledge_point_ids:
            try:
                doc = collection.document(kp_id).get()
            except Exception as e:
                raise StoreReadError(f"Failed to read knowledge point {kp_id}: {e}") from e
            if not doc.exists:
                logger.warning(f"Knowledge point {kp_id} not found, skipping")
                continue
            points.append(self._doc_to_knowledge_point(doc))
        return points

    def get_content_embeddings(self, organization_id: str) -> List[ContentEmbedding]:
        logger.info(f"Loading content embeddings for organization {organization_id}")

        docs = self._stream_where(self.knowledge_collection, 'organization_id', organization_id)

        corpus = []
        for doc in docs:
            data = doc.to_dict()
            corpus.append(ContentEmbedding(
                knowledge_point_id=doc.id,
                vector=data.get('embedding'),
                platform=data.get('platform', 'unknown'),
                source_type=data.get('source_type', 'unknown'),
                summary=data.get('summary', ''),
                keywords=data.get('keywords', []),
                author_person_id=data.get('author_person_id'),
            ))

        logger.info(f"Loaded {len(corpus)} content embeddings")
        return corpus

    def find_similar_knowledge(
        self,
        organization_id: str,
        query_vector: Sequence[float],
        similarity_threshold: float = 0.1,
        limit: int = 50
    ) -> List[KnowledgeMatch]:
        """
        Execute vector similarity search using Firestore FIND_NEAREST.

        Cosine distance is 1 - similarity, so the similarity threshold maps to
        a distance threshold of 1 - similarity_threshold.
        """
        try:
            vector_query = self.db.collection(self.knowledge_collection).where(
                'organization_id', '==', organization_id
            ).find_nearest(
                vector_field='embedding',
                query_vector=Vector([float(v) for v in query_vector]),
                distance_measure=DistanceMeasure.COSINE,
                limit=limit,
                distance_result_field=DISTANCE_FIELD,
                distance_threshold=1.0 - similarity_threshold,
            )
            docs = list(vector_query.stream())
        except Exception as e:
            logger.error(f"Failed to execute vector search: {e}")
            return []

        matches = []
        names: Dict[str, Optional[str]] = {}
        for doc in docs:
            data = doc.to_dict()
            similarity = 1.0 - float(data.get(DISTANCE_FIELD, 1.0))
            if similarity <= similarity_threshold:
                continue

            author_id = data.get('author_person_id')
            if author_id and author_id not in names:
                names[author_id] = self._display_name(author_id)

            matches.append(KnowledgeMatch(
                knowledge_point_id=doc.id,
                summary=data.get('summary', ''),
                similarity_score=similarity,
                source_url=data.get('source_url'),
                source_title=data.get('title'),
                author_name=names.get(author_id) if author_id else None,
                platform=data.get('platform', 'unknown'),
            ))

        matches.sort(key=lambda m: m.similarity_score, reverse=True)
        logger.info(f"Found {len(matches)} similar knowledge points")
        return matches

    # Topics

    def get_topics(self, organization_id: str) -> List[Topic]:
        docs = self._stream_where(self.topics_collection, 'organization_id', organization_id)

        topics = []
        for doc in docs:
            data = doc.to_dict()
            topics.append(Topic(
                id=doc.id,
                organization_id=data.get('organization_id', organization_id),
                name=data.get('name', ''),
                centroid=_vector_values(data.get('centroid')),
                member_count=data.get('member_count', 0),
                confidence_score=data.get('confidence_score', 0.0),
                discovered_at=data.get('discovered_at') or utc_now(),
                last_updated_at=data.get('last_updated_at') or utc_now(),
                description=data.get('description', ''),
            ))
        return topics

    def _topic_data(self, topic: Topic) -> Dict[str, Any]:
        return {
            'organization_id': topic.organization_id,
            'name': topic.name,
            'description': topic.description,
            'centroid': Vector([float(v) for v in topic.centroid]),
            'member_count': topic.member_count,
            'confidence_score': topic.confidence_score,
            'discovered_at': topic.discovered_at,
            'last_updated_at': topic.last_updated_at,
        }

    def create_topic(self, topic: Topic) -> str:
        collection = self.db.collection(self.topics_collection)
        doc_ref = collection.document(topic.id) if topic.id else collection.document()
        try:
            doc_ref.set(self._topic_data(topic))
        except Exception as e:
            raise StoreWriteError(f"Failed to create topic '{topic.name}': {e}") from e
        return doc_ref.id

    def update_topic(self, topic: Topic) -> None:
        data = self._topic_data(topic)
        del data['discovered_at']
        try:
            self.db.collection(self.topics_collection).document(topic.id).update(data)
        except Exception as e:
            raise StoreWriteError(f"Failed to update topic {topic.id}: {e}") from e

    def _delete_where(self, collection_name: str, field: str, value: str) -> int:
        """Delete all documents matching field == value in batches."""
        docs = self.db.collection(collection_name).where(field, '==', value).stream()

        batch = self.db.batch()
        batch_count = 0
        total = 0
        for doc in docs:
            batch.delete(doc.reference)
            batch_count += 1
            total += 1
            if batch_count >= MAX_BATCH_OPERATIONS:
                batch.commit()
                batch = self.db.batch()
                batch_count = 0

        if batch_count > 0:
            batch.commit()
        return total

    def delete_topic(self, topic_id: str) -> None:
        try:
            removed = self._delete_where(self.memberships_collection, 'topic_id', topic_id)
            self._delete_where(self.signals_collection, 'topic_id', topic_id)
            self.db.collection(self.topics_collection).document(topic_id).delete()
        except Exception as e:
            raise StoreWriteError(f"Failed to delete topic {topic_id}: {e}") from e
        logger.info(f"Deleted topic {topic_id} and {removed} memberships")

    @staticmethod
    def membership_doc_id(topic_id: str, knowledge_point_id: str) -> str:
        return f"{topic_id}_{knowledge_point_id}"

    def replace_memberships(self, topic_id: str, memberships: Sequence[TopicMembership]) -> None:
        collection = self.db.collection(self.memberships_collection)
        try:
            self._delete_where(self.memberships_collection, 'topic_id', topic_id)

            batch = self.db.batch()
            batch_count = 0
            for membership in memberships:
                doc_ref = collection.document(
                    self.membership_doc_id(topic_id, membership.knowledge_point_id)
                )
                batch.set(doc_ref, {
                    'topic_id': topic_id,
                    'knowledge_point_id': membership.knowledge_point_id,
                    'similarity_score': membership.similarity_score,
                })
                batch_count += 1
                if batch_count >= MAX_BATCH_OPERATIONS:
                    batch.commit()
                    batch = self.db.batch()
                    batch_count = 0

            if batch_count > 0:
                batch.commit()
        except Exception as e:
            raise StoreWriteError(f"Failed to replace memberships of topic {topic_id}: {e}") from e

    def upsert_membership(self, membership: TopicMembership) -> None:
        doc_id = self.membership_doc_id(membership.topic_id, membership.knowledge_point_id)
        try:
            self.db.collection(self.memberships_collection).document(doc_id).set({
                'topic_id': membership.topic_id,
                'knowledge_point_id': membership.knowledge_point_id,
                'similarity_score': membership.similarity_score,
            })
        except Exception as e:
            raise StoreWriteError(f"Failed to upsert membership {doc_id}: {e}") from e

    def get_memberships_for_point(self, knowledge_point_id: str) -> List[TopicMembership]:
        docs = self._stream_where(self.memberships_collection, 'knowledge_point_id', knowledge_point_id)

        return [
            TopicMembership(
                topic_id=data.get('topic_id'),
                knowledge_point_id=knowledge_point_id,
                similarity_score=data.get('similarity_score', 0.0),
            )
            for data in (doc.to_dict() for doc in docs)
        ]

    # Expertise

    def upsert_expertise_signal(self, signal: ExpertiseSignal) -> None:
        doc_ref = self.db.collection(self.signals_collection).document(
            f"{signal.person_id}_{signal.topic_id}"
        )
        try:
            existing = doc_ref.get()
            occurred_at = as_utc(signal.occurred_at)
            if existing.exists:
                previous = existing.to_dict().get('occurred_at')
                if previous is not None and as_utc(previous) > occurred_at:
                    occurred_at = previous

            doc_ref.set({
                'organization_id': signal.organization_id,
                'person_id': signal.person_id,
                'topic_id': signal.topic_id,
                'signal_type': signal.signal_type,
                'strength': signal.strength,
                'confidence': signal.confidence,
                'source_artifact_id': signal.source_artifact_id,
                'occurred_at': occurred_at,
                'decay_rate': signal.decay_rate,
                'contribution_count': firestore.Increment(1),
            }, merge=True)
        except Exception as e:
            raise StoreWriteError(
                f"Failed to upsert expertise signal {signal.person_id}/{signal.topic_id}: {e}"
            ) from e

    def find_topic_experts(
        self,
        topic_id: str,
        limit: int = 5,
        now: Optional[datetime] = None
    ) -> List[ExpertMatch]:
        docs = self._stream_where(self.signals_collection, 'topic_id', topic_id)

        signals = []
        for doc in docs:
            data = doc.to_dict()
            try:
                signals.append(ExpertiseSignal(
                    person_id=data['person_id'],
                    topic_id=topic_id,
                    signal_type=data.get('signal_type', 'authored_statement'),
                    strength=data.get('strength', 0.0),
                    confidence=data.get('confidence', 0.5),
                    source_artifact_id=data.get('source_artifact_id', ''),
                    occurred_at=data.get('occurred_at') or utc_now(),
                    decay_rate=data.get('decay_rate', 0.95),
                    organization_id=data.get('organization_id', ''),
                    contribution_count=data.get('contribution_count', 1),
                ))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed expertise signal {doc.id}: {e}")

        names = {}
        for signal in signals:
            if signal.person_id not in names:
                names[signal.person_id] = self._display_name(signal.person_id) or signal.person_id

        return rank_experts(signals, names, limit, now)

    # Misc

    def get_person_name(self, person_id: str) -> Optional[str]:
        try:
            doc = self.db.collection(self.people_collection).document(person_id).get()
        except Exception as e:
            raise StoreReadError(f"Failed to read person {person_id}: {e}") from e
        if not doc.exists:
            return None
        return doc.to_dict().get('display_name')

    def _display_name(self, person_id: str) -> Optional[str]:
        """Person name for search results; a failed lookup leaves the name unset."""
        try:
            return self.get_person_name(person_id)
        except StoreReadError as e:
            logger.warning(f"Failed to look up person {person_id}: {e}")
            return None

    def log_search_query(
        self,
        organization_id: str,
        query: str,
        query_vector: Sequence[float]
    ) -> None:
        self.db.collection(self.queries_collection).add({
            'organization_id': organization_id,
            'query_text': query,
            'query_embedding': Vector([float(v) for v in query_vector]),
            'created_at': firestore.SERVER_TIMESTAMP,
        })
