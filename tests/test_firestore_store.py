"""
Unit tests for the Firestore-backed Knowledge Store.

The Firestore client is a MagicMock; each collection name maps to its own
mock so calls can be asserted per collection.
"""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from google.cloud.firestore_v1.base_vector_query import DistanceMeasure
from google.cloud.firestore_v1.vector import Vector

from knowledge_store.base import KnowledgeStoreError, StoreReadError, StoreWriteError
from knowledge_store.firestore_store import FirestoreKnowledgeStore
from knowledge_store.models import KnowledgePoint, Topic, TopicMembership, ExpertiseSignal

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def make_doc(doc_id, data, exists=True):
    doc = MagicMock()
    doc.id = doc_id
    doc.exists = exists
    doc.to_dict.return_value = data
    doc.reference = MagicMock(name=f"ref-{doc_id}")
    return doc


class FirestoreStoreTestCase(unittest.TestCase):

    def setUp(self):
        self.collections = {}
        self.db = MagicMock()
        self.db.collection.side_effect = self._collection
        self.batch = MagicMock()
        self.db.batch.return_value = self.batch
        self.store = FirestoreKnowledgeStore(project_id='test-project', client=self.db)

    def _collection(self, name):
        if name not in self.collections:
            self.collections[name] = MagicMock(name=name)
        return self.collections[name]

    def people(self, names):
        docs = {pid: make_doc(pid, {'display_name': name}) for pid, name in names.items()}
        self._collection('people').document.side_effect = (
            lambda pid: MagicMock(get=MagicMock(return_value=docs.get(pid, make_doc(pid, {}, exists=False))))
        )


class TestKnowledgePoints(FirestoreStoreTestCase):

    def make_point(self):
        return KnowledgePoint(
            id=None,
            organization_id='org-1',
            platform='github',
            source_type='pr_comment',
            external_id='pr-42',
            summary='Fix flaky deploy',
            keywords=['deployment'],
            embedding=[0.1, 0.2, 0.3],
            occurred_at=NOW,
        )

    def test_save_writes_vector_with_stable_id(self):
        point = self.make_point()

        kp_id = self.store.save_knowledge_point(point)

        expected_id = FirestoreKnowledgeStore.knowledge_point_doc_id('org-1', 'github', 'pr-42')
        self.assertEqual(kp_id, expected_id)
        self.assertEqual(point.id, expected_id)
        collection = self.collections['knowledge_points']
        collection.document.assert_called_with(expected_id)
        data = collection.document.return_value.set.call_args[0][0]
        self.assertIsInstance(data['embedding'], Vector)
        self.assertEqual(data['organization_id'], 'org-1')
        self.assertEqual(data['summary'], 'Fix flaky deploy')

    def test_save_failure_raises_store_write_error(self):
        self._collection('knowledge_points').document.return_value.set.side_effect = RuntimeError("unavailable")

        with self.assertRaises(StoreWriteError):
            self.store.save_knowledge_point(self.make_point())

    def test_get_content_embeddings_keeps_raw_payload(self):
        vector = Vector([1.0, 0.0])
        self._collection('knowledge_points').where.return_value.stream.return_value = [
            make_doc('kp-1', {'embedding': vector, 'platform': 'slack', 'source_type': 'message', 'keywords': ['sql']}),
            make_doc('kp-2', {'embedding': 'garbage'}),
        ]

        corpus = self.store.get_content_embeddings('org-1')

        self.collections['knowledge_points'].where.assert_called_with('organization_id', '==', 'org-1')
        self.assertEqual([c.knowledge_point_id for c in corpus], ['kp-1', 'kp-2'])
        self.assertIs(corpus[0].vector, vector)
        self.assertEqual(corpus[1].vector, 'garbage')
        self.assertEqual(corpus[1].platform, 'unknown')

    def test_get_knowledge_points_skips_missing(self):
        docs = {
            'kp-1': make_doc('kp-1', {'organization_id': 'org-1', 'summary': 's', 'embedding': Vector([1.0])}),
            'kp-x': make_doc('kp-x', {}, exists=False),
        }
        self._collection('knowledge_points').document.side_effect = (
            lambda kp_id: MagicMock(get=MagicMock(return_value=docs[kp_id]))
        )

        points = self.store.get_knowledge_points(['kp-1', 'kp-x'])

        self.assertEqual([p.id for p in points], ['kp-1'])
        self.assertEqual(points[0].embedding, [1.0])


    def test_get_knowledge_points_read_failure_raises(self):
        self._collection('knowledge_points').document.return_value.get.side_effect = RuntimeError("deadline exceeded")

        with self.assertRaises(StoreReadError):
            self.store.get_knowledge_points(['kp-1'])

    def test_get_content_embeddings_stream_failure_raises(self):
        def failing_stream():
            yield make_doc('kp-1', {'embedding': Vector([1.0])})
            raise RuntimeError("503 unavailable")

        self._collection('knowledge_points').where.return_value.stream.return_value = failing_stream()

        with self.assertRaises(StoreReadError):
            self.store.get_content_embeddings('org-1')


class TestVectorSearch(FirestoreStoreTestCase):

    def test_find_similar_knowledge(self):
        self.people({'alice': 'Alice'})
        vector_query = self._collection('knowledge_points').where.return_value.find_nearest.return_value
        vector_query.stream.return_value = [
            make_doc('kp-2', {'summary': 'second', 'vector_distance': 0.4, 'platform': 'slack'}),
            make_doc('kp-1', {'summary': 'first', 'vector_distance': 0.05, 'platform': 'github',
                              'author_person_id': 'alice', 'source_url': 'https://x', 'title': 'PR'}),
        ]

        matches = self.store.find_similar_knowledge('org-1', [1.0, 0.0], similarity_threshold=0.1, limit=50)

        kwargs = self.collections['knowledge_points'].where.return_value.find_nearest.call_args[1]
        self.assertEqual(kwargs['vector_field'], 'embedding')
        self.assertEqual(kwargs['distance_measure'], DistanceMeasure.COSINE)
        self.assertEqual(kwargs['limit'], 50)
        self.assertAlmostEqual(kwargs['distance_threshold'], 0.9)
        self.assertEqual(kwargs['distance_result_field'], 'vector_distance')

        self.assertEqual([m.knowledge_point_id for m in matches], ['kp-1', 'kp-2'])
        self.assertAlmostEqual(matches[0].similarity_score, 0.95)
        self.assertEqual(matches[0].author_name, 'Alice')
        self.assertEqual(matches[0].source_title, 'PR')
        self.assertIsNone(matches[1].author_name)

    def test_failed_author_lookup_keeps_match(self):
        self._collection('people').document.return_value.get.side_effect = RuntimeError("unavailable")
        vector_query = self._collection('knowledge_points').where.return_value.find_nearest.return_value
        vector_query.stream.return_value = [
            make_doc('kp-1', {'summary': 'first', 'vector_distance': 0.1, 'author_person_id': 'alice'}),
        ]

        matches = self.store.find_similar_knowledge('org-1', [1.0, 0.0])

        self.assertEqual([m.knowledge_point_id for m in matches], ['kp-1'])
        self.assertIsNone(matches[0].author_name)

    def test_search_failure_returns_empty(self):
        self._collection('knowledge_points').where.return_value.find_nearest.side_effect = RuntimeError("no index")
        self.assertEqual(self.store.find_similar_knowledge('org-1', [1.0, 0.0]), [])


class TestTopics(FirestoreStoreTestCase):

    def test_get_topics_converts_vectors(self):
        self._collection('topics').where.return_value.stream.return_value = [
            make_doc('t-1', {'organization_id': 'org-1', 'name': 'Deploys', 'centroid': Vector([0.5, 0.5]),
                             'member_count': 4, 'confidence_score': 0.4}),
        ]

        topics = self.store.get_topics('org-1')

        self.assertEqual(len(topics), 1)
        self.assertEqual(topics[0].id, 't-1')
        self.assertEqual(topics[0].centroid, [0.5, 0.5])
        self.assertEqual(topics[0].member_count, 4)

    def test_get_topics_stream_failure_raises_store_error(self):
        self._collection('topics').where.return_value.stream.side_effect = RuntimeError("503 unavailable")

        with self.assertRaises(StoreReadError) as ctx:
            self.store.get_topics('org-1')
        self.assertIsInstance(ctx.exception, KnowledgeStoreError)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)

    def test_create_topic_uses_auto_id(self):
        topics = self._collection('topics')
        topics.document.return_value.id = 'auto-1'

        topic_id = self.store.create_topic(Topic(id=None, organization_id='org-1', name='Deploys', centroid=[1.0, 0.0]))

        self.assertEqual(topic_id, 'auto-1')
        topics.document.assert_called_with()
        data = topics.document.return_value.set.call_args[0][0]
        self.assertIsInstance(data['centroid'], Vector)

    def test_update_topic_keeps_discovered_at(self):
        topic = Topic(id='t-1', organization_id='org-1', name='Deploys', centroid=[1.0, 0.0], member_count=7)

        self.store.update_topic(topic)

        data = self.collections['topics'].document.return_value.update.call_args[0][0]
        self.assertNotIn('discovered_at', data)
        self.assertEqual(data['member_count'], 7)

    def test_update_failure_raises(self):
        self._collection('topics').document.return_value.update.side_effect = RuntimeError("not found")
        with self.assertRaises(StoreWriteError):
            self.store.update_topic(Topic(id='t-1', organization_id='org-1', name='x', centroid=[1.0]))

    def test_replace_memberships_commits_in_batches(self):
        memberships_collection = self._collection('topic_memberships')
        memberships_collection.where.return_value.stream.return_value = [make_doc('old', {})]
        memberships = [TopicMembership(topic_id='t-1', knowledge_point_id=f"kp-{i}") for i in range(600)]

        self.store.replace_memberships('t-1', memberships)

        self.batch.delete.assert_called_once()
        self.assertEqual(self.batch.set.call_count, 600)
        # one commit for the delete, two for the 600 writes
        self.assertEqual(self.batch.commit.call_count, 3)
        memberships_collection.document.assert_any_call('t-1_kp-0')

    def test_delete_topic_removes_memberships_and_signals(self):
        self._collection('topic_memberships').where.return_value.stream.return_value = [
            make_doc('t-1_kp-1', {}), make_doc('t-1_kp-2', {})
        ]
        self._collection('expertise_signals').where.return_value.stream.return_value = [make_doc('alice_t-1', {})]

        self.store.delete_topic('t-1')

        self.assertEqual(self.batch.delete.call_count, 3)
        self.collections['topics'].document.assert_called_with('t-1')
        self.collections['topics'].document.return_value.delete.assert_called_once()

    def test_get_memberships_for_point(self):
        self._collection('topic_memberships').where.return_value.stream.return_value = [
            make_doc('t-1_kp-1', {'topic_id': 't-1', 'knowledge_point_id': 'kp-1', 'similarity_score': 0.93}),
        ]

        memberships = self.store.get_memberships_for_point('kp-1')

        self.assertEqual(memberships[0].topic_id, 't-1')
        self.assertAlmostEqual(memberships[0].similarity_score, 0.93)


class TestExpertise(FirestoreStoreTestCase):

    def make_signal(self, occurred_at=NOW):
        return ExpertiseSignal(
            person_id='alice', topic_id='t-1', signal_type='problem_resolution', strength=1.1,
            confidence=0.8, source_artifact_id='kp-1', occurred_at=occurred_at, decay_rate=0.98,
            organization_id='org-1',
        )

    def test_upsert_increments_count_and_keeps_latest(self):
        doc_ref = self._collection('expertise_signals').document.return_value
        doc_ref.get.return_value = make_doc('alice_t-1', {'occurred_at': NOW + timedelta(days=1)})

        self.store.upsert_expertise_signal(self.make_signal())

        self.collections['expertise_signals'].document.assert_called_with('alice_t-1')
        data, = doc_ref.set.call_args[0]
        self.assertEqual(doc_ref.set.call_args[1], {'merge': True})
        self.assertEqual(data['occurred_at'], NOW + timedelta(days=1))
        self.assertEqual(data['strength'], 1.1)
        self.assertIn('contribution_count', data)

    def test_upsert_compares_naive_stored_time(self):
        doc_ref = self._collection('expertise_signals').document.return_value
        doc_ref.get.return_value = make_doc('alice_t-1', {'occurred_at': datetime(2025, 5, 1)})

        self.store.upsert_expertise_signal(self.make_signal())

        data, = doc_ref.set.call_args[0]
        self.assertEqual(data['occurred_at'], NOW)

    def test_upsert_failure_raises(self):
        doc_ref = self._collection('expertise_signals').document.return_value
        doc_ref.get.return_value = make_doc('alice_t-1', {}, exists=False)
        doc_ref.set.side_effect = RuntimeError("permission denied")

        with self.assertRaises(StoreWriteError):
            self.store.upsert_expertise_signal(self.make_signal())

    def test_find_topic_experts(self):
        self.people({'alice': 'Alice', 'bob': 'Bob'})
        self._collection('expertise_signals').where.return_value.stream.return_value = [
            make_doc('alice_t-1', {'person_id': 'alice', 'strength': 1.0, 'confidence': 1.0,
                                   'occurred_at': NOW - timedelta(days=60), 'decay_rate': 0.95,
                                   'contribution_count': 3}),
            make_doc('bob_t-1', {'person_id': 'bob', 'strength': 1.0, 'confidence': 1.0,
                                 'occurred_at': NOW, 'decay_rate': 0.95}),
            make_doc('broken', {'strength': 1.0}),
        ]

        experts = self.store.find_topic_experts('t-1', limit=5, now=NOW)

        self.assertEqual([e.display_name for e in experts], ['Bob', 'Alice'])
        self.assertEqual(experts[1].contribution_count, 3)
        self.assertAlmostEqual(experts[1].expertise_score, 0.9025)


class TestMisc(FirestoreStoreTestCase):

    def test_log_search_query(self):
        self.store.log_search_query('org-1', 'who knows kubernetes?', [0.0, 1.0])

        data = self.collections['search_queries'].add.call_args[0][0]
        self.assertEqual(data['query_text'], 'who knows kubernetes?')
        self.assertIsInstance(data['query_embedding'], Vector)

    def test_collection_names_from_env(self):
        with patch.dict(os.environ, {'FIRESTORE_TOPICS_COLLECTION': 'org_topics'}):
            store = FirestoreKnowledgeStore(project_id='p', client=self.db)
        self.assertEqual(store.topics_collection, 'org_topics')


if __name__ == '__main__':
    unittest.main()
