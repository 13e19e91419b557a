"""Keyword extraction from queries for tag-overlap scoring."""
import re
from typing import Dict, List

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
    "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
    "to", "was", "will", "with", "what", "when", "where", "who", "which",
    "how", "do", "does", "did", "can", "could", "should", "would",
    "i", "you", "your", "my", "me", "we", "they", "them", "their",
    "this", "these", "those", "there", "have", "had", "been", "were",
    "am", "about", "like", "just", "also", "any", "all", "some",
    "if", "so", "than", "or", "but", "not", "into", "through",
    "during", "before", "after", "above", "below", "between", "under",
    "again", "further", "then", "once", "here", "why", "now",
})
QUESTION_WORDS = frozenset({
    "what's", "what", "whats", "tell", "describe", "explain",
    "show", "give", "list", "share", "talk",
})
MIN_TAG_LENGTH = 3


def normalize_tag(tag: str) -> str:
    """Lowercase and drop possessives, apostrophes and hyphens ("Self-Taught" -> "selftaught")."""
    tag = re.sub(r"['’]s$", "", tag.lower().strip())
    return re.sub(r"['’\-]+", "", tag)


def _words(query: str) -> List[str]:
    normalized = re.sub(r"[^\w\s'\-]", " ", query.lower())
    return [w for w in re.sub(r"\s+", " ", normalized).strip().split(" ") if w]


def _is_candidate(word: str) -> bool:
    return (
        word not in STOP_WORDS
        and word not in QUESTION_WORDS
        and len(word) >= MIN_TAG_LENGTH
        and not word.isdigit()
    )


def extract_tags(query: str) -> List[str]:
    """
    Single-word tags from a query, in order of first appearance.

    Stop words, question words, numbers and words shorter than three
    characters are dropped.
    """
    if not query or not isinstance(query, str):
        return []
    tags = [normalize_tag(w) for w in _words(query) if _is_candidate(w)]
    return list(dict.fromkeys(t for t in tags if len(t) >= MIN_TAG_LENGTH))


def extract_tags_with_phrases(query: str) -> List[str]:
    """Single-word tags plus adjacent two-word phrases ("machine learning")."""
    tags = extract_tags(query)
    if not tags:
        return tags
    words = [w.replace("'", "") for w in _words(query)]
    phrases = [
        f"{first} {second}"
        for first, second in zip(words, words[1:])
        if _is_candidate(first) and _is_candidate(second)
    ]
    return list(dict.fromkeys(tags + phrases))


def tag_relevance(tag: str) -> float:
    """Longer tags are usually more specific."""
    if len(tag) >= 8:
        return 0.9
    if len(tag) >= 6:
        return 0.7
    if len(tag) >= 4:
        return 0.5
    return 0.3


def extract_tags_with_scores(query: str) -> List[Dict]:
    return [{"tag": tag, "score": tag_relevance(tag)} for tag in extract_tags(query)]
