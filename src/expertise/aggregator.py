"""
Expertise aggregation: turn authored knowledge into per-topic expertise signals.

Aggregation runs after topic memberships are written. Callers hand the
memberships they just wrote to the queue, so the aggregator never has to read
them back from the store.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence, Set

from knowledge_store.base import KnowledgeStore, KnowledgeStoreError
from knowledge_store.models import ExpertiseSignal, KnowledgePoint, TopicMembership
from .signals import calculate_signal_strength, decay_rate_for, select_signal_type

logger = logging.getLogger(__name__)


class ExpertiseAggregator:
    """Writes one expertise signal per (author, topic) for a knowledge point."""

    def __init__(self, store: KnowledgeStore):
        self.store = store

    def aggregate(
        self,
        point: KnowledgePoint,
        memberships: Sequence[TopicMembership]
    ) -> List[ExpertiseSignal]:
        """
        Upsert expertise signals for the author of `point`.

        Args:
            point: Knowledge point (id, author, quality and depth are used)
            memberships: Topic memberships of the point written by the caller

        Returns:
            Signals that were written. A point without an author yields none.
            A failed write for one topic is logged and skipped.
        """
        if not point.author_person_id:
            logger.debug(f"Knowledge point {point.id} has no author, no expertise signals")
            return []

        signal_type = select_signal_type(point.content_type, point.technical_depth)
        strength = calculate_signal_strength(signal_type, point.quality_score, point.technical_depth)

        written = []
        seen: Set[str] = set()
        for membership in memberships:
            if membership.topic_id in seen:
                continue
            seen.add(membership.topic_id)

            signal = ExpertiseSignal(
                person_id=point.author_person_id,
                topic_id=membership.topic_id,
                signal_type=signal_type,
                strength=strength,
                confidence=point.quality_confidence,
                source_artifact_id=point.id,
                occurred_at=point.occurred_at,
                decay_rate=decay_rate_for(signal_type),
                organization_id=point.organization_id,
            )
            try:
                self.store.upsert_expertise_signal(signal)
            except KnowledgeStoreError as e:
                logger.warning(
                    f"Failed to write expertise signal {point.author_person_id}/{membership.topic_id}: {e}"
                )
                continue
            written.append(signal)

        logger.info(
            f"Wrote {len(written)} {signal_type} signals for {point.author_person_id} "
            f"(strength {strength:.2f})"
        )
        return written

    def aggregate_points(
        self,
        memberships_by_point: Dict[str, Sequence[TopicMembership]]
    ) -> List[ExpertiseSignal]:
        """Load the given knowledge points and aggregate each of them."""
        if not memberships_by_point:
            return []

        points = self.store.get_knowledge_points(list(memberships_by_point))
        written = []
        for point in points:
            written.extend(self.aggregate(point, memberships_by_point.get(point.id, [])))

        logger.info(f"Aggregated expertise for {len(points)} knowledge points ({len(written)} signals)")
        return written


class ExpertiseQueue:
    """
    Single-worker background queue for expertise aggregation.

    Jobs run in submission order. Callers get a Future back and usually
    ignore it; drain() waits for everything queued so far.
    """

    def __init__(self, aggregator: ExpertiseAggregator):
        self.aggregator = aggregator
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='expertise')
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def _track(self, future: Future) -> Future:
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, job, *args):
        try:
            return job(*args)
        except Exception as e:
            logger.error(f"Expertise aggregation job failed: {e}", exc_info=True)
            raise

    def submit(self, point: KnowledgePoint, memberships: Sequence[TopicMembership]) -> Future:
        """Queue aggregation of one knowledge point with the memberships just written."""
        return self._track(
            self._executor.submit(self._run, self.aggregator.aggregate, point, list(memberships))
        )

    def submit_points(self, memberships_by_point: Dict[str, Sequence[TopicMembership]]) -> Future:
        """Queue aggregation of many knowledge points, loaded by id in the worker."""
        snapshot = {kp_id: list(ms) for kp_id, ms in memberships_by_point.items()}
        return self._track(
            self._executor.submit(self._run, self.aggregator.aggregate_points, snapshot)
        )

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for all queued jobs. Returns False if the timeout expired first."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_jobs)
