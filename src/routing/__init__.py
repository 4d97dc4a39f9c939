"""
Query routing to knowledge and experts.
"""

from .rerank import build_rerank_prompt, parse_selection
from .router import QueryRouter

__all__ = ['QueryRouter', 'build_rerank_prompt', 'parse_selection']
