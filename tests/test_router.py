"""
Unit tests for query routing and rerank parsing.
"""

import math
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from knowledge_store.memory import InMemoryKnowledgeStore
from knowledge_store.models import ExpertiseSignal, KnowledgeMatch, KnowledgePoint, Topic
from llm.base import LLMProvider, LLMResponse
from routing.rerank import build_rerank_prompt, parse_selection
from routing.router import QueryRouter

ORG = 'org-1'
DIM = 4


def vector_at(angle_deg):
    """Unit vector in the e0/e1 plane; cosine with e0 is cos(angle)."""
    rad = math.radians(angle_deg)
    return [math.cos(rad), math.sin(rad), 0.0, 0.0]


def make_embedder(vector=None, error=None):
    embedder = MagicMock()
    if error is not None:
        embedder.embed.side_effect = error
    else:
        embedder.embed.return_value = vector
    embedder.zero_vector.return_value = [0.0] * DIM
    return embedder


def llm_answer(text):
    client = MagicMock()
    client.generate.return_value = LLMResponse(text=text, model='test', provider=LLMProvider.GEMINI)
    return client


def add_point(store, external_id, vector, summary=None, author=None):
    return store.save_knowledge_point(KnowledgePoint(
        id=None,
        organization_id=ORG,
        platform='slack',
        source_type='message',
        external_id=external_id,
        summary=summary or f"summary {external_id}",
        keywords=[],
        embedding=vector,
        author_person_id=author,
        source_url=f"https://example.com/{external_id}",
    ))


class TestParseSelection(unittest.TestCase):

    def test_valid_selection(self):
        self.assertEqual(parse_selection("3,1,2", 5), [2, 0, 1])
        self.assertEqual(parse_selection(" 4 , 2 ", 5), [3, 1])
        self.assertEqual(parse_selection('"5,1"', 5), [4, 0])

    def test_duplicates_and_length(self):
        self.assertEqual(parse_selection("2,2,1", 5), [1, 0])
        self.assertEqual(parse_selection("1,2,3,4", 5), [0, 1, 2])

    def test_invalid_selection(self):
        self.assertEqual(parse_selection("", 5), [])
        self.assertEqual(parse_selection("   ", 5), [])
        self.assertEqual(parse_selection("9,1", 5), [])
        self.assertEqual(parse_selection("0", 5), [])
        self.assertEqual(parse_selection("the first one", 5), [])
        self.assertEqual(parse_selection("1,,2", 5), [])

    def test_prompt_lists_candidates(self):
        candidates = [
            KnowledgeMatch(knowledge_point_id='a', summary='Reset the cache', similarity_score=0.834, platform='github'),
            KnowledgeMatch(knowledge_point_id='b', summary='Use a feature flag', similarity_score=0.5, platform='slack'),
        ]
        prompt = build_rerank_prompt('How do I reset the cache?', candidates)

        self.assertIn('1. "Reset the cache" (Platform: github, Similarity: 83%)', prompt)
        self.assertIn('2. "Use a feature flag" (Platform: slack, Similarity: 50%)', prompt)
        self.assertIn('(1-2)', prompt)


class TestQueryRouter(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryKnowledgeStore()

    def test_identical_embedding_is_found(self):
        target = add_point(self.store, 'target', vector_at(0))
        add_point(self.store, 'other', vector_at(90))

        result = QueryRouter(self.store, make_embedder(vector_at(0))).route('deploys?', ORG)

        ids = [m.knowledge_point_id for m in result.knowledge_matches]
        self.assertEqual(ids, [target])
        self.assertAlmostEqual(result.knowledge_matches[0].similarity_score, 1.0, places=6)

    def test_author_names_are_attached(self):
        self.store.add_person('alice', 'Alice')
        add_point(self.store, 'target', vector_at(0), author='alice')

        result = QueryRouter(self.store, make_embedder(vector_at(0))).route('q', ORG)

        self.assertEqual(result.knowledge_matches[0].author_name, 'Alice')

    def seed_five(self):
        # similarities to e0: 0.97, 0.87, 0.77, 0.64, 0.5
        return [add_point(self.store, f"p{i}", vector_at(angle)) for i, angle in enumerate([15, 30, 40, 50, 60])]

    def test_rerank_selection_is_used(self):
        ids = self.seed_five()
        llm = llm_answer("4,2")

        result = QueryRouter(self.store, make_embedder(vector_at(0)), llm).route('q', ORG)

        self.assertEqual([m.knowledge_point_id for m in result.knowledge_matches], [ids[3], ids[1]])
        prompt = llm.generate.call_args[0][0]
        self.assertIn('5. "summary p4"', prompt)

    def test_out_of_range_selection_falls_back(self):
        ids = self.seed_five()

        result = QueryRouter(self.store, make_embedder(vector_at(0)), llm_answer("7,1")).route('q', ORG)

        self.assertEqual([m.knowledge_point_id for m in result.knowledge_matches], ids[:3])

    def test_empty_selection_falls_back(self):
        ids = self.seed_five()
        llm = MagicMock()
        llm.generate.return_value = MagicMock(text='')

        result = QueryRouter(self.store, make_embedder(vector_at(0)), llm).route('q', ORG)

        self.assertEqual([m.knowledge_point_id for m in result.knowledge_matches], ids[:3])

    def test_rerank_error_falls_back(self):
        ids = self.seed_five()
        llm = MagicMock()
        llm.generate.side_effect = RuntimeError("503 unavailable")

        result = QueryRouter(self.store, make_embedder(vector_at(0)), llm).route('q', ORG)

        self.assertEqual([m.knowledge_point_id for m in result.knowledge_matches], ids[:3])

    def test_three_or_fewer_skip_rerank(self):
        ids = [add_point(self.store, f"p{i}", vector_at(angle)) for i, angle in enumerate([10, 20, 30])]
        llm = llm_answer("1")

        result = QueryRouter(self.store, make_embedder(vector_at(0)), llm).route('q', ORG)

        self.assertEqual([m.knowledge_point_id for m in result.knowledge_matches], ids)
        llm.generate.assert_not_called()

    def test_embedding_failure_degrades(self):
        add_point(self.store, 'target', vector_at(0))
        self.store.create_topic(Topic(id=None, organization_id=ORG, name='Deploys', centroid=vector_at(0)))

        result = QueryRouter(self.store, make_embedder(error=RuntimeError("quota"))).route('q', ORG)

        self.assertEqual(result.knowledge_matches, [])
        self.assertEqual(result.topic_matches, [])
        self.assertEqual(result.suggested_experts, [])
        self.assertEqual(len(self.store.search_queries), 1)

    def test_store_failure_degrades(self):
        store = MagicMock()
        store.find_similar_knowledge.side_effect = RuntimeError("deadline exceeded")
        store.get_topics.side_effect = RuntimeError("deadline exceeded")
        store.log_search_query.side_effect = RuntimeError("deadline exceeded")

        result = QueryRouter(store, make_embedder(vector_at(0))).route('q', ORG)

        self.assertEqual(result.to_dict(), {
            'query': 'q', 'knowledgeMatches': [], 'suggestedExperts': [], 'topicMatches': []
        })

    def test_topics_and_experts(self):
        near = self.store.create_topic(Topic(id=None, organization_id=ORG, name='Deploys', centroid=vector_at(10)))
        self.store.create_topic(Topic(id=None, organization_id=ORG, name='Releases', centroid=vector_at(40)))
        self.store.create_topic(Topic(id=None, organization_id=ORG, name='Frontend', centroid=vector_at(80)))
        self.store.add_person('alice', 'Alice')
        self.store.add_person('bob', 'Bob')
        now = datetime.now(timezone.utc)
        for person, strength in (('alice', 0.6), ('bob', 1.2)):
            self.store.upsert_expertise_signal(ExpertiseSignal(
                person_id=person, topic_id=near, signal_type='authored_statement', strength=strength,
                confidence=1.0, source_artifact_id='kp', occurred_at=now, decay_rate=0.95,
            ))

        result = QueryRouter(self.store, make_embedder(vector_at(0)), expert_limit=1).route('q', ORG)

        self.assertEqual(result.topic_matches, ['Deploys', 'Releases'])
        self.assertEqual([e.display_name for e in result.suggested_experts], ['Bob'])

    def test_at_most_three_topics(self):
        for i, angle in enumerate([5, 10, 15, 20]):
            self.store.create_topic(Topic(id=None, organization_id=ORG, name=f"T{i}", centroid=vector_at(angle)))

        result = QueryRouter(self.store, make_embedder(vector_at(0))).route('q', ORG)

        self.assertEqual(result.topic_matches, ['T0', 'T1', 'T2'])

    def test_query_is_logged(self):
        QueryRouter(self.store, make_embedder(vector_at(0))).route('who owns billing?', ORG)
        self.assertEqual(self.store.search_queries[0]['query'], 'who owns billing?')
        self.assertEqual(self.store.search_queries[0]['dimensions'], DIM)


if __name__ == '__main__':
    unittest.main()
