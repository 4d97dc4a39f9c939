"""
Unit tests for expertise signal math, aggregation and the background queue.
"""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from expertise.aggregator import ExpertiseAggregator, ExpertiseQueue
from expertise.signals import (
    calculate_signal_strength,
    decay_rate_for,
    decayed_strength,
    rank_experts,
    select_signal_type,
)
from knowledge_store.base import StoreWriteError
from knowledge_store.memory import InMemoryKnowledgeStore
from knowledge_store.models import ExpertiseSignal, KnowledgePoint, Topic, TopicMembership, as_utc

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def make_signal(person='alice', topic='t-1', strength=1.0, confidence=1.0, days_ago=0, decay_rate=0.95):
    return ExpertiseSignal(
        person_id=person,
        topic_id=topic,
        signal_type='authored_statement',
        strength=strength,
        confidence=confidence,
        source_artifact_id='kp-1',
        occurred_at=NOW - timedelta(days=days_ago),
        decay_rate=decay_rate,
    )


def make_point(author='alice', content_type='discussion', quality=0.8, depth=0.4, kp_id='kp-1'):
    return KnowledgePoint(
        id=kp_id,
        organization_id='org-1',
        platform='slack',
        source_type='message',
        external_id=kp_id,
        summary='How we deploy',
        keywords=['deployment'],
        embedding=[1.0, 0.0],
        quality_score=quality,
        quality_confidence=0.9,
        technical_depth=depth,
        content_type=content_type,
        author_person_id=author,
        occurred_at=NOW,
    )


class TestSignalMath(unittest.TestCase):

    def test_strength_formula(self):
        self.assertAlmostEqual(calculate_signal_strength('authored_statement', 0.8, 0.4), 0.96)
        self.assertAlmostEqual(calculate_signal_strength('detailed_explanation', 1.0, 1.0), 1.8)
        self.assertAlmostEqual(calculate_signal_strength('positive_reaction', 1.0, 0.0), 0.3)

    def test_strength_is_capped(self):
        self.assertEqual(calculate_signal_strength('detailed_explanation', 1.5, 1.0), 2.0)

    def test_strength_never_negative(self):
        self.assertEqual(calculate_signal_strength('authored_statement', -1.0, 0.5), 0.0)

    def test_signal_type_selection(self):
        self.assertEqual(select_signal_type('solution', 0.1), 'problem_resolution')
        self.assertEqual(select_signal_type('explanation', 0.8), 'detailed_explanation')
        self.assertEqual(select_signal_type('explanation', 0.7), 'authored_statement')
        self.assertEqual(select_signal_type('question', 0.9), 'authored_statement')

    def test_decay_rates(self):
        self.assertEqual(decay_rate_for('problem_resolution'), 0.98)
        self.assertEqual(decay_rate_for('detailed_explanation'), 0.97)
        self.assertEqual(decay_rate_for('unknown'), 0.95)

    def test_decay_per_thirty_days(self):
        self.assertAlmostEqual(decayed_strength(make_signal(days_ago=0), NOW), 1.0)
        self.assertAlmostEqual(decayed_strength(make_signal(days_ago=30), NOW), 0.95)
        self.assertAlmostEqual(decayed_strength(make_signal(days_ago=60), NOW), 0.9025)
        self.assertAlmostEqual(decayed_strength(make_signal(confidence=0.5, days_ago=30), NOW), 0.475)

    def test_future_signals_do_not_grow(self):
        self.assertAlmostEqual(decayed_strength(make_signal(days_ago=-10), NOW), 1.0)

    def test_signal_validation(self):
        signal = make_signal(strength=5.0, confidence=1.4)
        self.assertEqual(signal.strength, 2.0)
        self.assertEqual(signal.confidence, 1.0)
        with self.assertRaises(ValueError):
            make_signal(decay_rate=0.0)


class TestRankExperts(unittest.TestCase):

    def test_ordered_by_decayed_score(self):
        signals = [
            make_signal('alice', strength=1.0, days_ago=90),
            make_signal('bob', strength=0.9, days_ago=0),
            make_signal('carol', strength=0.5, days_ago=0),
        ]
        experts = rank_experts(signals, {'bob': 'Bob'}, limit=2, now=NOW)

        self.assertEqual([e.person_id for e in experts], ['bob', 'alice'])
        self.assertEqual(experts[0].display_name, 'Bob')
        self.assertEqual(experts[1].display_name, 'alice')

    def test_ties_broken_by_latest_contribution(self):
        signals = [
            make_signal('alice', strength=1.0, decay_rate=1.0, days_ago=10),
            make_signal('bob', strength=1.0, decay_rate=1.0, days_ago=2),
        ]
        experts = rank_experts(signals, {}, limit=5, now=NOW)
        self.assertEqual([e.person_id for e in experts], ['bob', 'alice'])

    def test_empty(self):
        self.assertEqual(rank_experts([], {}, limit=5, now=NOW), [])


class TestNaiveAndAwareTimes(unittest.TestCase):

    def test_as_utc(self):
        naive = datetime(2025, 6, 1, 12, 0)
        self.assertEqual(as_utc(naive), datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))
        plus_two = datetime(2025, 6, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(as_utc(plus_two).hour, 12)
        self.assertEqual(as_utc(plus_two).tzinfo, timezone.utc)

    def test_naive_signal_time_is_stored_as_utc(self):
        signal = ExpertiseSignal(
            person_id='alice', topic_id='t-1', signal_type='authored_statement',
            strength=1.0, confidence=1.0, source_artifact_id='kp-1',
            occurred_at=datetime(2025, 5, 2), decay_rate=0.95,
        )
        self.assertEqual(signal.occurred_at.tzinfo, timezone.utc)

    def test_decay_with_naive_now(self):
        signal = make_signal(days_ago=30)
        self.assertAlmostEqual(decayed_strength(signal, datetime(2025, 6, 1)), 0.95)

    def test_decay_with_signal_time_set_naive(self):
        signal = make_signal()
        signal.occurred_at = datetime(2025, 5, 2)
        self.assertAlmostEqual(decayed_strength(signal, NOW), 0.95)

    def test_rank_with_mixed_times(self):
        naive = make_signal('alice', decay_rate=1.0)
        naive.occurred_at = datetime(2025, 5, 1)
        aware = make_signal('bob', decay_rate=1.0, days_ago=2)

        experts = rank_experts([naive, aware], {}, limit=5, now=NOW)

        self.assertEqual([e.person_id for e in experts], ['bob', 'alice'])

    def test_memory_upsert_mixes_naive_and_aware(self):
        store = InMemoryKnowledgeStore()
        first = make_signal()
        first.occurred_at = datetime(2025, 6, 1)
        second = make_signal(days_ago=10)

        store.upsert_expertise_signal(first)
        store.upsert_expertise_signal(second)

        stored = store.signals[('alice', 't-1')]
        self.assertEqual(stored.contribution_count, 2)
        self.assertEqual(as_utc(stored.occurred_at), NOW)


class TestExpertiseAggregator(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryKnowledgeStore()
        self.topic_ids = [
            self.store.create_topic(Topic(id=None, organization_id='org-1', name=name, centroid=[1.0, 0.0]))
            for name in ('Deploys', 'Infra')
        ]
        self.aggregator = ExpertiseAggregator(self.store)

    def memberships(self, kp_id='kp-1'):
        return [TopicMembership(topic_id=t, knowledge_point_id=kp_id) for t in self.topic_ids]

    def test_no_author_no_signals(self):
        point = make_point(author=None)
        self.assertEqual(self.aggregator.aggregate(point, self.memberships()), [])
        self.assertEqual(self.store.signals, {})

    def test_one_signal_per_topic(self):
        memberships = self.memberships() + self.memberships()

        written = self.aggregator.aggregate(make_point(), memberships)

        self.assertEqual(len(written), 2)
        self.assertEqual(len(self.store.signals), 2)
        signal = self.store.signals[('alice', self.topic_ids[0])]
        self.assertEqual(signal.signal_type, 'authored_statement')
        self.assertAlmostEqual(signal.strength, 0.96)
        self.assertEqual(signal.confidence, 0.9)
        self.assertEqual(signal.decay_rate, 0.95)
        self.assertEqual(signal.organization_id, 'org-1')

    def test_repeat_contribution_updates_single_signal(self):
        self.aggregator.aggregate(make_point(content_type='solution'), self.memberships())
        self.aggregator.aggregate(make_point(kp_id='kp-2', quality=0.5, depth=0.0), self.memberships('kp-2'))

        signal = self.store.signals[('alice', self.topic_ids[0])]
        self.assertEqual(len(self.store.signals), 2)
        self.assertEqual(signal.contribution_count, 2)
        self.assertAlmostEqual(signal.strength, 0.5)

        experts = self.store.find_topic_experts(self.topic_ids[0], now=NOW)
        self.assertEqual(experts[0].contribution_count, 2)

    def test_failed_topic_write_does_not_stop_others(self):
        store = MagicMock()
        store.upsert_expertise_signal.side_effect = [StoreWriteError("boom"), None]

        written = ExpertiseAggregator(store).aggregate(make_point(), self.memberships())

        self.assertEqual(len(written), 1)
        self.assertEqual(written[0].topic_id, self.topic_ids[1])

    def test_aggregate_points_loads_from_store(self):
        point = make_point(kp_id=None)
        kp_id = self.store.save_knowledge_point(point)

        written = self.aggregator.aggregate_points({kp_id: self.memberships(kp_id)})

        self.assertEqual(len(written), 2)
        self.assertEqual(written[0].source_artifact_id, kp_id)


class TestExpertiseQueue(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryKnowledgeStore()
        self.topic_id = self.store.create_topic(
            Topic(id=None, organization_id='org-1', name='Deploys', centroid=[1.0, 0.0])
        )
        self.queue = ExpertiseQueue(ExpertiseAggregator(self.store))

    def tearDown(self):
        self.queue.shutdown()

    def test_submit_runs_in_background(self):
        membership = TopicMembership(topic_id=self.topic_id, knowledge_point_id='kp-1')

        future = self.queue.submit(make_point(), [membership])

        self.assertEqual(len(future.result(timeout=5)), 1)
        self.assertTrue(self.queue.drain(timeout=5))
        self.assertIn(('alice', self.topic_id), self.store.signals)

    def test_drain_waits_for_all_jobs(self):
        for i in range(5):
            point = make_point(author=f"person-{i}", kp_id=f"kp-{i}")
            self.queue.submit(point, [TopicMembership(topic_id=self.topic_id, knowledge_point_id=f"kp-{i}")])

        self.assertTrue(self.queue.drain(timeout=5))
        self.assertEqual(len(self.store.signals), 5)

    def test_failed_job_is_reported_on_future(self):
        aggregator = MagicMock()
        aggregator.aggregate.side_effect = RuntimeError("store offline")
        queue = ExpertiseQueue(aggregator)

        with self.assertLogs('expertise.aggregator', level='ERROR'):
            future = queue.submit(make_point(), [])
            with self.assertRaises(RuntimeError):
                future.result(timeout=5)
        queue.shutdown()

    def test_drain_with_nothing_queued(self):
        self.assertTrue(self.queue.drain())


if __name__ == '__main__':
    unittest.main()
