"""
Expertise signal math: base strengths, decay rates and decay-aware ranking.

Signal strength at write time:
    strength = min(2.0, base[type] * quality * (1 + 0.5 * technical_depth))

Effective strength at read time (the decay formula every store applies):
    score = strength * confidence * decay_rate ** (elapsed_days / DECAY_PERIOD_DAYS)
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from knowledge_store.models import ExpertMatch, ExpertiseSignal, as_utc, utc_now

logger = logging.getLogger(__name__)

MAX_SIGNAL_STRENGTH = 2.0

# One decay step per 30 days elapsed since the contribution
DECAY_PERIOD_DAYS = 30.0

SIGNAL_BASE_STRENGTHS: Dict[str, float] = {
    'authored_statement': 1.0,
    'helpful_response': 0.8,
    'problem_resolution': 1.1,
    'detailed_explanation': 1.2,
    'code_review': 0.9,
    'fast_response': 0.4,
    'positive_reaction': 0.3,
}

SIGNAL_DECAY_RATES: Dict[str, float] = {
    'authored_statement': 0.95,
    'helpful_response': 0.96,
    'problem_resolution': 0.98,  # solutions stay relevant longer
    'detailed_explanation': 0.97,
    'code_review': 0.96,
    'fast_response': 0.95,
    'positive_reaction': 0.95,
}

DEEP_EXPLANATION_THRESHOLD = 0.7


def calculate_signal_strength(
    signal_type: str,
    quality_score: float,
    technical_depth: float
) -> float:
    """
    Compute the strength of one contribution.

    Args:
        signal_type: One of SIGNAL_BASE_STRENGTHS (unknown types use 1.0)
        quality_score: Content quality score in [0, 1]
        technical_depth: Technical depth factor in [0, 1]

    Returns:
        Strength capped at MAX_SIGNAL_STRENGTH, never negative
    """
    base = SIGNAL_BASE_STRENGTHS.get(signal_type, 1.0)
    quality = max(0.0, quality_score)
    depth_multiplier = 1.0 + max(0.0, technical_depth) * 0.5
    return min(MAX_SIGNAL_STRENGTH, base * quality * depth_multiplier)


def decay_rate_for(signal_type: str) -> float:
    return SIGNAL_DECAY_RATES.get(signal_type, 0.95)


def select_signal_type(content_type: str, technical_depth: float) -> str:
    """Pick the signal type a contribution of this content type earns."""
    if content_type == 'solution':
        return 'problem_resolution'
    if content_type == 'explanation' and technical_depth > DEEP_EXPLANATION_THRESHOLD:
        return 'detailed_explanation'
    return 'authored_statement'


def decayed_strength(
    signal: ExpertiseSignal,
    now: Optional[datetime] = None
) -> float:
    """Effective, confidence-weighted strength of a signal at time `now`."""
    now = as_utc(now or utc_now())
    occurred_at = as_utc(signal.occurred_at)

    elapsed_days = max(0.0, (now - occurred_at).total_seconds() / 86400.0)
    periods = elapsed_days / DECAY_PERIOD_DAYS
    return signal.strength * signal.confidence * (signal.decay_rate ** periods)


def rank_experts(
    signals: Iterable[ExpertiseSignal],
    display_names: Dict[str, str],
    limit: int,
    now: Optional[datetime] = None
) -> List[ExpertMatch]:
    """
    Rank people for one topic by decayed signal strength.

    Multiple signals for the same person are summed. Ties are broken by the
    most recent contribution.
    """
    now = now or utc_now()
    scores: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    latest: Dict[str, datetime] = {}

    for signal in signals:
        person = signal.person_id
        scores[person] = scores.get(person, 0.0) + decayed_strength(signal, now)
        counts[person] = counts.get(person, 0) + signal.contribution_count
        occurred_at = as_utc(signal.occurred_at)
        if person not in latest or occurred_at > latest[person]:
            latest[person] = occurred_at

    ranked = sorted(
        scores,
        key=lambda p: (scores[p], latest[p].timestamp()),
        reverse=True
    )

    return [
        ExpertMatch(
            person_id=person,
            display_name=display_names.get(person, person),
            expertise_score=round(scores[person], 4),
            contribution_count=counts[person],
            last_contribution_at=latest[person],
        )
        for person in ranked[:limit]
    ]
