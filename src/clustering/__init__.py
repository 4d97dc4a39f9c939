"""
Semantic clustering module for topic discovery.

Groups knowledge point embeddings into topic candidates using K-means++
seeding and cosine-distance Lloyd's iteration.
"""

from .clusterer import ClusterCandidate, SemanticClusterer
from .config import ClusteringConfig
from .similarity import cosine_distance, cosine_similarity

__all__ = [
    'ClusterCandidate',
    'ClusteringConfig',
    'SemanticClusterer',
    'cosine_distance',
    'cosine_similarity',
]
