"""
LLM reranking of search candidates.

The model sees the question and a numbered candidate list and answers with
comma-separated 1-based indices, e.g. "3,7,1".
"""

import logging
from typing import List, Sequence

from knowledge_store.models import KnowledgeMatch

logger = logging.getLogger(__name__)

MAX_SELECTED = 3


def build_rerank_prompt(query: str, candidates: Sequence[KnowledgeMatch]) -> str:
    candidates_text = "\n".join(
        f'{i + 1}. "{match.summary}" (Platform: {match.platform}, '
        f'Similarity: {round(match.similarity_score * 100)}%)'
        for i, match in enumerate(candidates)
    )

    return f"""You are a search result ranker. Given a user's question and a list of potentially relevant results, select and rank the TOP {MAX_SELECTED} results that best answer the question.

User Question: "{query}"

Available Results:
{candidates_text}

Instructions:
1. Judge each result's relevance to the specific question
2. Select ONLY the {MAX_SELECTED} most relevant results
3. Rank them from most relevant to least relevant
4. Respond with ONLY the numbers (1-{len(candidates)}) of your selected results, separated by commas
5. Example response format: "3,7,1"

Your selection (numbers only):"""


def parse_selection(text: str, n_candidates: int, max_selected: int = MAX_SELECTED) -> List[int]:
    """
    Parse a comma-separated 1-based selection into 0-based indices.

    Duplicates are dropped and at most `max_selected` indices are kept. An
    empty answer, a token that is not an integer, or an index outside
    1..n_candidates makes the whole selection invalid and returns [].
    """
    if not text or not text.strip():
        return []

    line = text.strip().splitlines()[0].strip().strip('"\'.')
    selected: List[int] = []

    for token in line.split(','):
        token = token.strip().rstrip('.')
        if not token.isdigit():
            logger.warning(f"Malformed rerank selection: {text!r}")
            return []

        index = int(token) - 1
        if not 0 <= index < n_candidates:
            logger.warning(f"Rerank selection out of range (1-{n_candidates}): {text!r}")
            return []

        if index not in selected:
            selected.append(index)

    return selected[:max_selected]
