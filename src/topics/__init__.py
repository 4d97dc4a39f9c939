"""
Topic discovery and lifecycle management.
"""

from .lifecycle import (
    DEFAULT_MEMBERSHIP_SCORE,
    MERGE_THRESHOLD,
    DiscoveryResult,
    TopicLifecycleManager,
)
from .naming import TopicNamer, fallback_name

__all__ = [
    'DEFAULT_MEMBERSHIP_SCORE',
    'DiscoveryResult',
    'MERGE_THRESHOLD',
    'TopicLifecycleManager',
    'TopicNamer',
    'fallback_name',
]
