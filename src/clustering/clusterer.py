"""
Core semantic clustering logic: K-means++ seeding with cosine-distance Lloyd's iteration.

Groups a snapshot of one organization's content embeddings into K clusters.
K is a step function of corpus size and diversity. Clusters that end up
smaller than min_cluster_size are dropped; their points simply do not
form a topic this run.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics import silhouette_score

from knowledge_store.models import ContentEmbedding, coerce_vector
from .config import ClusteringConfig
from .similarity import distance_matrix

logger = logging.getLogger(__name__)

# (minimum corpus size, K) breakpoints, largest first; the first match wins
CLUSTER_COUNT_BREAKPOINTS = [
    (150, 12),
    (100, 8),
    (50, 6),
    (25, 4),
    (10, 3),
]
BASE_CLUSTER_COUNT = 2
MULTI_PLATFORM_BONUS = 2
SOURCE_TYPE_BONUS = 1


@dataclass
class ClusterCandidate:
    """Transient cluster produced by one clustering run."""
    id: str
    member_indices: List[int]
    centroid: np.ndarray
    size: int
    keywords: List[str] = field(default_factory=list)


class SemanticClusterer:
    """
    Cosine K-means clustering for content embeddings.

    Args:
        config: Clustering configuration (defaults to ClusteringConfig())
        random_state: Seed overriding config.random_state. None means a fresh,
            non-deterministic generator.
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        random_state: Optional[int] = None
    ):
        self.config = config or ClusteringConfig()
        self.random_state = random_state if random_state is not None else self.config.random_state
        self._rng = np.random.default_rng(self.random_state)

        # Set after fit
        self.labels_: Optional[np.ndarray] = None
        self.centroids_: Optional[np.ndarray] = None
        self.n_iter_ = 0
        self.n_clusters_found = 0

        logger.info(
            f"Initialized SemanticClusterer: min_cluster_size={self.config.min_cluster_size}, "
            f"max_clusters={self.config.max_clusters}, random_state={self.random_state}"
        )

    def determine_optimal_clusters(
        self,
        n_samples: int,
        platform_count: int = 1,
        source_type_count: int = 1
    ) -> int:
        """
        Pick K from corpus size and diversity.

        Base K is 2, raised at corpus-size breakpoints (10→3, 25→4, 50→6,
        100→8, 150→12). Multiple platforms add 2; more than two source types
        add 1. The result never exceeds max_clusters.
        """
        k = BASE_CLUSTER_COUNT
        for minimum, breakpoint_k in CLUSTER_COUNT_BREAKPOINTS:
            if n_samples >= minimum:
                k = breakpoint_k
                break

        if platform_count > 1:
            k += MULTI_PLATFORM_BONUS
        if source_type_count > 2:
            k += SOURCE_TYPE_BONUS

        return min(k, self.config.max_clusters)

    def validate_embeddings(
        self,
        items: Sequence[ContentEmbedding]
    ) -> Tuple[List[int], np.ndarray]:
        """
        Drop invalid embeddings.

        Invalid means non-numeric, non-finite, not one-dimensional, or of a
        length other than D. D comes from config.embedding_dim, or the most
        common vector length in the corpus.

        Returns:
            Tuple of (positions of valid items in `items`, matrix of their vectors)
        """
        vectors: List[Optional[np.ndarray]] = []
        for item in items:
            vector = coerce_vector(item.vector)
            if vector is None:
                logger.warning(
                    f"Knowledge point {item.knowledge_point_id} has invalid embedding "
                    f"payload ({type(item.vector).__name__}), skipping"
                )
            vectors.append(vector)

        dim = self.config.embedding_dim
        if dim is None:
            lengths = Counter(v.shape[0] for v in vectors if v is not None)
            if not lengths:
                return [], np.empty((0, 0))
            dim = lengths.most_common(1)[0][0]

        positions = []
        rows = []
        for position, (item, vector) in enumerate(zip(items, vectors)):
            if vector is None:
                continue
            if vector.shape[0] != dim:
                logger.warning(
                    f"Knowledge point {item.knowledge_point_id} has wrong embedding dimension: "
                    f"{vector.shape[0]}, expected {dim}"
                )
                continue
            positions.append(position)
            rows.append(vector)

        if not rows:
            return [], np.empty((0, dim))

        return positions, np.vstack(rows)

    def cluster(self, items: Sequence[ContentEmbedding]) -> List[ClusterCandidate]:
        """
        Cluster a corpus snapshot into topic candidates.

        Args:
            items: Content embeddings of one organization

        Returns:
            Cluster candidates with at least min_cluster_size members. Member
            indices are positions in `items`. Empty or fully invalid input
            returns an empty list.
        """
        positions, matrix = self.validate_embeddings(items)
        n_samples = len(positions)

        if n_samples == 0:
            logger.info("No valid embeddings to cluster")
            return []

        valid_items = [items[p] for p in positions]
        platforms = {item.platform for item in valid_items}
        source_types = {item.source_type for item in valid_items}

        k = self.determine_optimal_clusters(n_samples, len(platforms), len(source_types))
        k = min(k, n_samples)

        logger.info(
            f"Clustering {n_samples} embeddings (skipped {len(items) - n_samples}) "
            f"into k={k} clusters ({len(platforms)} platforms, {len(source_types)} source types)"
        )

        labels = self.fit_predict(matrix, k)

        candidates = []
        for label in range(k):
            rows = np.where(labels == label)[0]
            if len(rows) < self.config.min_cluster_size:
                if len(rows) > 0:
                    logger.info(
                        f"  Dropping cluster-{label}: {len(rows)} members "
                        f"< min_cluster_size {self.config.min_cluster_size}"
                    )
                continue

            keyword_counts = Counter()
            for row in rows:
                keyword_counts.update(word.lower() for word in valid_items[row].keywords if word)

            candidates.append(ClusterCandidate(
                id=f"cluster-{label}",
                member_indices=[positions[row] for row in rows],
                centroid=matrix[rows].mean(axis=0),
                size=len(rows),
                keywords=[word for word, _ in keyword_counts.most_common()],
            ))

        logger.info(f"Clustering kept {len(candidates)} of {k} clusters")
        return candidates

    def fit_predict(self, embeddings: np.ndarray, n_clusters: int) -> np.ndarray:
        """
        Run K-means++ initialisation and cosine Lloyd's iteration.

        Args:
            embeddings: Array of shape (n_samples, n_features)
            n_clusters: Number of clusters K (clipped to n_samples)

        Returns:
            Array of cluster labels in [0, K)

        Raises:
            ValueError: If embeddings are not a 2D array or n_clusters < 1
        """
        if embeddings.ndim != 2:
            raise ValueError(f"Embeddings must be 2D array, got shape {embeddings.shape}")
        if n_clusters < 1:
            raise ValueError(f"n_clusters must be >= 1, got {n_clusters}")

        n_samples = embeddings.shape[0]
        if n_samples == 0:
            self.labels_ = np.array([], dtype=int)
            self.centroids_ = np.empty((0, embeddings.shape[1]))
            self.n_clusters_found = 0
            return self.labels_

        k = min(n_clusters, n_samples)
        centroids = self._init_centroids(embeddings, k)

        labels = None
        iteration = 0
        for iteration in range(1, self.config.max_iterations + 1):
            new_labels = np.argmin(distance_matrix(embeddings, centroids), axis=1)
            if labels is not None and np.array_equal(new_labels, labels):
                break
            labels = new_labels

            for c in range(k):
                members = embeddings[labels == c]
                if len(members) == 0:
                    # Dead cluster: reseed with a fresh random vector in the same space
                    centroids[c] = self._rng.uniform(-1.0, 1.0, size=embeddings.shape[1])
                    logger.debug(f"Reseeded empty cluster {c} at iteration {iteration}")
                else:
                    centroids[c] = members.mean(axis=0)
        else:
            logger.info(f"K-means stopped after {self.config.max_iterations} iterations without converging")

        self.labels_ = labels
        self.centroids_ = centroids
        self.n_iter_ = iteration
        self.n_clusters_found = len(set(labels.tolist()))

        logger.info(
            f"K-means complete: {self.n_clusters_found} non-empty clusters "
            f"after {self.n_iter_} iterations"
        )
        return labels

    def _init_centroids(self, embeddings: np.ndarray, k: int) -> np.ndarray:
        """
        K-means++ seeding.

        First centroid uniformly at random; each further centroid sampled by
        roulette wheel over the squared cosine distance to the nearest chosen
        centroid.
        """
        n_samples = embeddings.shape[0]
        centroids = np.empty((k, embeddings.shape[1]), dtype=np.float64)

        first = int(self._rng.integers(n_samples))
        centroids[0] = embeddings[first]
        closest = distance_matrix(embeddings, centroids[:1]).ravel()

        for i in range(1, k):
            weights = np.square(np.clip(closest, 0.0, None))
            total = weights.sum()

            if total <= 0:
                # Every point sits on a chosen centroid
                index = int(self._rng.integers(n_samples))
            else:
                cumulative = np.cumsum(weights)
                target = self._rng.random() * total
                index = min(int(np.searchsorted(cumulative, target, side='right')), n_samples - 1)

            centroids[i] = embeddings[index]
            closest = np.minimum(closest, distance_matrix(embeddings, centroids[i:i + 1]).ravel())

        return centroids

    def compute_quality_metrics(self, embeddings: np.ndarray) -> Dict[str, Any]:
        """
        Compute clustering quality metrics.

        Args:
            embeddings: Embeddings used for the last fit_predict call

        Returns:
            Dictionary with silhouette_score, cluster size statistics and n_clusters

        Raises:
            ValueError: If clustering hasn't been performed yet
        """
        if self.labels_ is None:
            raise ValueError("Must call fit_predict() before computing metrics")

        metrics: Dict[str, Any] = {'silhouette_score': None}
        n_samples = len(self.labels_)

        if 2 <= self.n_clusters_found < n_samples:
            try:
                score = silhouette_score(embeddings, self.labels_, metric='cosine')
                metrics['silhouette_score'] = float(score)
                logger.info(f"Silhouette score: {score:.3f}")
            except ValueError as e:
                logger.warning(f"Failed to compute silhouette score: {e}")
        else:
            logger.warning("Too few clusters for silhouette score")

        cluster_sizes = [int(np.sum(self.labels_ == label)) for label in set(self.labels_.tolist())]
        if cluster_sizes:
            metrics['min_cluster_size'] = min(cluster_sizes)
            metrics['max_cluster_size'] = max(cluster_sizes)
            metrics['mean_cluster_size'] = float(np.mean(cluster_sizes))
            metrics['median_cluster_size'] = float(np.median(cluster_sizes))

        metrics['n_clusters'] = self.n_clusters_found
        metrics['n_iterations'] = self.n_iter_

        return metrics

    def get_cluster_members(self, cluster_id: int) -> np.ndarray:
        """
        Get row indices of all members of a cluster from the last fit.

        Raises:
            ValueError: If clustering hasn't been performed yet
        """
        if self.labels_ is None:
            raise ValueError("Must call fit_predict() before getting members")

        return np.where(self.labels_ == cluster_id)[0]
