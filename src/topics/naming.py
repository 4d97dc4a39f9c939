"""
Topic naming via LLM with a keyword fallback.

The prompt shows a sample of member summaries (half closest to the centroid,
half spread across the rest of the cluster), the most frequent keywords and
the platform / source type mix, and asks for NAME: and DESCRIPTION: lines.
"""

import logging
from collections import Counter
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.metrics.pairwise import cosine_distances

from clustering.clusterer import ClusterCandidate
from knowledge_store.models import ContentEmbedding, coerce_vector
from llm import BaseLLMClient, GenerationConfig

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 12
SUMMARY_SNIPPET_LENGTH = 300
MAX_NAME_LENGTH = 80

NAMING_CONFIG = GenerationConfig(temperature=0.2, max_output_tokens=256)


def sample_members(
    members: Sequence[ContentEmbedding],
    centroid: np.ndarray,
    sample_size: int = DEFAULT_SAMPLE_SIZE
) -> List[ContentEmbedding]:
    """
    Pick a naming sample: representative members plus diverse ones.

    Half the sample are the members closest to the centroid; the rest are
    taken at even steps through the remaining members ordered by distance.
    """
    if len(members) <= sample_size:
        return list(members)

    vectors = [coerce_vector(member.vector) for member in members]
    if any(v is None or v.shape != centroid.shape for v in vectors):
        return list(members[:sample_size])

    distances = cosine_distances(np.vstack(vectors), centroid.reshape(1, -1)).ravel()
    order = np.argsort(distances, kind='stable')

    n_representative = sample_size // 2
    n_diverse = sample_size - n_representative

    representative = order[:n_representative]
    remaining = order[n_representative:]
    if len(remaining) > n_diverse:
        diverse = remaining[::len(remaining) // n_diverse][:n_diverse]
    else:
        diverse = remaining

    return [members[i] for i in np.concatenate([representative, diverse])]


def fallback_name(candidate: ClusterCandidate) -> str:
    """Two most frequent keywords joined by " & ", else "Topic <candidateId>"."""
    keywords = [k for k in candidate.keywords if k][:2]
    if keywords:
        return " & ".join(keywords)
    return f"Topic {candidate.id}"


def parse_name_response(text: str) -> Tuple[str, str]:
    name = ''
    description = ''
    for line in text.splitlines():
        line = line.strip().lstrip('*').strip()
        if line.upper().startswith('NAME:'):
            name = line[len('NAME:'):].strip().strip('"*').strip()
        elif line.upper().startswith('DESCRIPTION:'):
            description = line[len('DESCRIPTION:'):].strip().strip('*').strip()
    return name[:MAX_NAME_LENGTH], description


class TopicNamer:
    """
    Names new topics.

    Args:
        llm_client: Generative client; None means keyword fallback only
        sample_size: Number of member summaries shown to the model
    """

    def __init__(self, llm_client: Optional[BaseLLMClient] = None, sample_size: int = DEFAULT_SAMPLE_SIZE):
        self.llm_client = llm_client
        self.sample_size = sample_size

    def build_prompt(
        self,
        candidate: ClusterCandidate,
        members: Sequence[ContentEmbedding]
    ) -> str:
        sample = sample_members(members, np.asarray(candidate.centroid), self.sample_size)

        summaries = []
        for i, member in enumerate(sample):
            summary = (member.summary or '').strip()[:SUMMARY_SNIPPET_LENGTH] or '(no summary)'
            summaries.append(f"{i + 1}. [{member.platform}/{member.source_type}] {summary}")

        platforms = Counter(m.platform for m in members)
        source_types = Counter(m.source_type for m in members)
        keywords = ", ".join(candidate.keywords[:10]) or "(none)"
        platform_mix = ", ".join(f"{p} ({n})" for p, n in platforms.most_common())
        source_type_mix = ", ".join(f"{s} ({n})" for s, n in source_types.most_common())

        return f"""Analyze these {len(members)} related pieces of team knowledge and name the topic they share.

Representative samples ({len(sample)} of {len(members)}):

{chr(10).join(summaries)}

Frequent keywords: {keywords}
Platforms: {platform_mix}
Source types: {source_type_mix}

Generate:
NAME: <topic name, 2-5 words, reflecting the DOMINANT theme>
DESCRIPTION: <one sentence describing what this knowledge covers>

Format your response EXACTLY as shown above."""

    def name(
        self,
        candidate: ClusterCandidate,
        members: Sequence[ContentEmbedding]
    ) -> Tuple[str, str]:
        """
        Return (name, description) for a candidate. Never raises.
        """
        if self.llm_client is not None:
            try:
                response = self.llm_client.generate(self.build_prompt(candidate, members), NAMING_CONFIG)
                name, description = parse_name_response(response.text)
                if name:
                    logger.info(f"  Generated topic name: {name}")
                    return name, description
                logger.warning(f"Empty topic name from LLM for {candidate.id}, using fallback")
            except Exception as e:
                logger.warning(f"Failed to generate topic name for {candidate.id}: {e}")

        name = fallback_name(candidate)
        return name, f"Content related to {name}"
