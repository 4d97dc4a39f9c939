"""
Heuristic content analysis for incoming knowledge.

Turns raw text into the fields a knowledge point carries besides its
embedding: summary, keywords, quality score and confidence, relevance,
technical depth and content type. All rules are keyword and pattern based;
no model call is made here.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)

SUMMARY_MAX_LENGTH = 200
SUMMARY_MIN_SENTENCE_LENGTH = 20
MAX_TECHNICAL_TERMS = 20

TECH_KEYWORDS = [
    'react', 'javascript', 'typescript', 'node', 'api', 'database', 'sql',
    'docker', 'kubernetes', 'aws', 'authentication', 'security', 'performance',
    'bug', 'fix', 'feature', 'deployment', 'test', 'error', 'issue',
]

RELEVANCE_INDICATORS = ['how to', 'solution', 'fix', 'problem', 'issue', 'error', 'help']

# Named technologies, counted towards technical depth
TECH_ENTITIES = [
    # languages
    'javascript', 'typescript', 'python', 'java', 'golang', 'rust', 'c++', 'c#',
    'ruby', 'php', 'swift', 'kotlin',
    # frameworks
    'react', 'vue', 'angular', 'svelte', 'next.js', 'nuxt', 'express', 'fastapi',
    'django', 'rails', 'spring', 'laravel',
    # tools and platforms
    'docker', 'kubernetes', 'aws', 'azure', 'gcp', 'vercel', 'netlify', 'github',
    'gitlab', 'jenkins', 'terraform',
    # databases
    'postgresql', 'mysql', 'mongodb', 'redis', 'elasticsearch', 'sqlite',
    'supabase', 'firebase',
]

TECHNICAL_TERM_PATTERNS = [
    re.compile(r'\b[a-z]+\.js\b'),
    re.compile(r'\b[a-z]+\.py\b'),
    re.compile(r'\b[A-Z][a-zA-Z]*API\b'),
    re.compile(r'\b[a-z]+-[a-z]+\b'),
    re.compile(r'\b[A-Z]{2,}\b'),
]

# Checked in order, first hit wins
CONTENT_TYPE_RULES = [
    ('question', ['?', 'how', 'why']),
    ('solution', ['fix', 'solve', 'solution']),
    ('explanation', ['explain', 'because', 'works by']),
    ('announcement', ['announce', 'release', 'new']),
]


@dataclass
class ProcessedContent:
    summary: str
    keywords: List[str] = field(default_factory=list)
    quality_score: float = 0.5
    quality_confidence: float = 0.5
    relevance_score: float = 0.5
    technical_depth: float = 0.0
    content_type: str = 'discussion'


class KnowledgePointProcessor:
    """Derive knowledge point metadata from raw text."""

    def process(self, content: str) -> ProcessedContent:
        text = ' '.join((content or '').split())
        terms = self.extract_technical_terms(text)
        keywords = self.extract_keywords(text)

        processed = ProcessedContent(
            summary=self.summarize(text),
            keywords=keywords,
            quality_score=self.quality_score(text, keywords),
            quality_confidence=self.quality_confidence(text, terms),
            relevance_score=self.relevance_score(text),
            technical_depth=self.technical_depth(text, terms),
            content_type=self.classify_content_type(text),
        )
        logger.debug(
            f"Processed content: type={processed.content_type}, "
            f"quality={processed.quality_score}, depth={processed.technical_depth}"
        )
        return processed

    @staticmethod
    def summarize(text: str) -> str:
        """
        First sentence longer than 20 characters, else the whole text, capped
        at 200 characters.
        """
        summary = text.strip()
        for sentence in re.split(r'[.!?]+', text):
            sentence = sentence.strip()
            if len(sentence) > SUMMARY_MIN_SENTENCE_LENGTH:
                summary = sentence
                break

        if len(summary) > SUMMARY_MAX_LENGTH:
            summary = summary[:SUMMARY_MAX_LENGTH - 3] + '...'
        return summary

    @staticmethod
    def extract_keywords(text: str) -> List[str]:
        lower = text.lower()
        return [keyword for keyword in TECH_KEYWORDS if keyword in lower]

    @staticmethod
    def extract_technical_terms(text: str) -> List[str]:
        terms = []
        for pattern in TECHNICAL_TERM_PATTERNS:
            for match in pattern.findall(text):
                if 2 < len(match) < 20 and match not in terms:
                    terms.append(match)
        return terms[:MAX_TECHNICAL_TERMS]

    @staticmethod
    def quality_score(text: str, keywords: List[str]) -> float:
        score = 0.5
        if len(text) > 100:
            score += 0.1
        if len(text) > 300:
            score += 0.1

        score += min(0.3, len(keywords) * 0.1)

        if ':' in text or '```' in text or '- ' in text:
            score += 0.1

        return round(min(1.0, score), 2)

    @staticmethod
    def quality_confidence(text: str, terms: List[str]) -> float:
        return round(min(1.0, (len(text) / 200) * (1 + len(terms) * 0.1)), 2)

    @staticmethod
    def relevance_score(text: str) -> float:
        lower = text.lower()
        score = 0.5 + 0.1 * sum(1 for indicator in RELEVANCE_INDICATORS if indicator in lower)
        return round(min(1.0, score), 2)

    @staticmethod
    def technical_depth(text: str, terms: List[str]) -> float:
        lower = text.lower()
        entities = [entity for entity in TECH_ENTITIES if entity in lower]
        score = min(0.5, len(terms) * 0.05) + min(0.5, len(entities) * 0.1)
        return round(min(1.0, score), 2)

    @staticmethod
    def classify_content_type(text: str) -> str:
        lower = text.lower()
        for content_type, markers in CONTENT_TYPE_RULES:
            if any(marker in lower for marker in markers):
                return content_type
        return 'discussion'
