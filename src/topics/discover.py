"""
Run one topic discovery pass for an organization against Firestore.

Usage:
    python3 -m topics --org ORG_ID [--dry-run] [--seed N] [--model NAME] [--no-llm]

Environment Variables:
    GCP_PROJECT: Google Cloud project ID
    GCP_REGION: Google Cloud region (default: europe-west4)
    CLUSTER_*: Clustering configuration (see clustering.config)
    LLM_MODEL / LLM_PROVIDER: Model used to name new topics
    FIRESTORE_*_COLLECTION: Collection name overrides
"""

import os
import sys
import json
import logging
import argparse
from dataclasses import replace

from clustering.clusterer import SemanticClusterer
from clustering.config import ClusteringConfig
from knowledge_store.firestore_store import FirestoreKnowledgeStore
from llm import get_client
from .lifecycle import TopicLifecycleManager
from .naming import TopicNamer

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Discover, update and archive topics for one organization'
    )
    parser.add_argument('--org', required=True, help='Organization ID')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Compute the result without writing to Firestore'
    )
    parser.add_argument('--seed', type=int, default=None, help='Random seed for K-means++ initialisation')
    parser.add_argument('--model', default=None, help='LLM model or alias used to name new topics')
    parser.add_argument('--no-llm', action='store_true', help='Name new topics from keywords only')
    return parser.parse_args(argv)


def main(argv=None):
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)

    project_id = os.getenv('GCP_PROJECT')
    if not project_id:
        logger.error("GCP_PROJECT environment variable not set")
        sys.exit(1)

    config = ClusteringConfig.from_env()
    if args.seed is not None:
        config = replace(config, random_state=args.seed)

    llm_client = None if args.no_llm else get_client(args.model, project_id=project_id)

    manager = TopicLifecycleManager(
        store=FirestoreKnowledgeStore(project_id=project_id),
        clusterer=SemanticClusterer(config),
        namer=TopicNamer(llm_client),
        config=config,
    )

    try:
        result = manager.discover_topics(args.org, dry_run=args.dry_run)
    except Exception as e:
        logger.error(f"Topic discovery failed: {e}", exc_info=True)
        sys.exit(1)

    print(json.dumps(result.to_dict(), indent=2))
    if result.errors:
        sys.exit(2)
