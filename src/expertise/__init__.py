"""
Expertise signals: strength and decay math, aggregation and ranking.
"""

from .aggregator import ExpertiseAggregator, ExpertiseQueue
from .signals import (
    DECAY_PERIOD_DAYS,
    SIGNAL_BASE_STRENGTHS,
    SIGNAL_DECAY_RATES,
    calculate_signal_strength,
    decayed_strength,
    rank_experts,
    select_signal_type,
)

__all__ = [
    'DECAY_PERIOD_DAYS',
    'ExpertiseAggregator',
    'ExpertiseQueue',
    'SIGNAL_BASE_STRENGTHS',
    'SIGNAL_DECAY_RATES',
    'calculate_signal_strength',
    'decayed_strength',
    'rank_experts',
    'select_signal_type',
]
