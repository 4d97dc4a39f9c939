"""
Clustering configuration.

Environment Variables:
    CLUSTER_MIN_SIZE: Minimum members for a cluster to become a topic (default: 3)
    CLUSTER_MAX_CLUSTERS: Upper bound on K (default: 12)
    CLUSTER_SIMILARITY_THRESHOLD: Bar for matching a new point to an existing topic (default: 0.7)
    CLUSTER_MAX_ITERATIONS: Lloyd's iteration cap (default: 100)
    CLUSTER_RANDOM_STATE: Optional seed for K-means++ initialisation
    EMBEDDING_DIMENSIONS: Embedding dimensionality D (inferred from the corpus if unset)
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ClusteringConfig:
    min_cluster_size: int = 3
    max_clusters: int = 12
    similarity_threshold: float = 0.7
    max_iterations: int = 100
    embedding_dim: Optional[int] = None
    random_state: Optional[int] = None

    def __post_init__(self):
        if self.min_cluster_size < 1:
            raise ValueError(f"min_cluster_size must be >= 1, got {self.min_cluster_size}")
        if self.max_clusters < 1:
            raise ValueError(f"max_clusters must be >= 1, got {self.max_clusters}")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be in [0, 1], got {self.similarity_threshold}"
            )
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")

    @classmethod
    def from_env(cls) -> 'ClusteringConfig':
        """Load configuration from environment variables."""
        dim = os.environ.get('EMBEDDING_DIMENSIONS')
        seed = os.environ.get('CLUSTER_RANDOM_STATE')

        config = cls(
            min_cluster_size=int(os.environ.get('CLUSTER_MIN_SIZE', '3')),
            max_clusters=int(os.environ.get('CLUSTER_MAX_CLUSTERS', '12')),
            similarity_threshold=float(os.environ.get('CLUSTER_SIMILARITY_THRESHOLD', '0.7')),
            max_iterations=int(os.environ.get('CLUSTER_MAX_ITERATIONS', '100')),
            embedding_dim=int(dim) if dim else None,
            random_state=int(seed) if seed else None,
        )
        logger.info(f"Loaded clustering config: {config}")
        return config
