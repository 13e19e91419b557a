"""Shared behaviour for category chunking strategies."""
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from config import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from models.chunk import Chunk, estimate_tokens, reindex

logger = logging.getLogger(__name__)

SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
CONNECTIVE_WORDS = re.compile(
    r"\b(however|therefore|because|as a result|consequently|meanwhile|then|after|before|"
    r"later|subsequently|during|while|since|until|finally|first|next|which|this|that)\b",
    re.IGNORECASE
)
TEMPORAL_WORDS = re.compile(
    r"\b((?:19|20)\d{2}|jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec|present|current|"
    r"month|year|quarter|week)\w*\b",
    re.IGNORECASE
)


def split_into_sentences(text: str) -> List[str]:
    return [s.strip() for s in SENTENCE_SPLIT.split(text.strip()) if s.strip()]


def semantic_overlap(sentences: List[str], count: int) -> List[str]:
    """
    Pick up to `count` trailing sentences to carry into the next chunk.

    Candidates are the last `2 * count` sentences; those with connective
    or temporal words rank first, ties keep the later sentence. The picked
    sentences are returned in their original order.
    """
    if count <= 0 or not sentences:
        return []
    window = list(enumerate(sentences))[-2 * count:]

    def signal(item):
        index, sentence = item
        score = 0
        if CONNECTIVE_WORDS.search(sentence):
            score += 2
        if TEMPORAL_WORDS.search(sentence):
            score += 1
        return (score, index)

    picked = sorted(window, key=signal, reverse=True)[:count]
    return [sentence for _, sentence in sorted(picked)]


class BaseChunker(ABC):
    """
    Base class for category chunkers.

    Subclasses segment content into structural units and re-split units that
    exceed the category's token budget.
    """

    category = "general"
    # Whether the ingestion pipeline builds parent levels for this category
    hierarchical = False

    def __init__(self, max_chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP):
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap

    @abstractmethod
    async def chunk(self, content: str, tags: Optional[List[str]] = None, source_id: Optional[str] = None) -> List[Chunk]:
        """Split content into ordered chunks."""

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def fits(self, text: str) -> bool:
        return estimate_tokens(text) <= self.max_chunk_size

    def combine_with_overlap(self, sentences: List[str], max_tokens: Optional[int] = None) -> List[str]:
        """
        Greedily pack sentences into pieces under `max_tokens`.

        Each new piece starts with a semantic overlap of at most
        min(2, 10% of the sentences) from the previous piece.
        """
        max_tokens = max_tokens or self.max_chunk_size
        if not sentences:
            return []
        overlap_count = min(2, int(len(sentences) * 0.1))

        pieces: List[str] = []
        current: List[str] = []
        for sentence in sentences:
            candidate = " ".join(current + [sentence])
            if current and estimate_tokens(candidate) > max_tokens:
                pieces.append(" ".join(current))
                carried = semantic_overlap(current, overlap_count)
                # Never carry so much that the next piece cannot grow
                if estimate_tokens(" ".join(carried + [sentence])) > max_tokens:
                    carried = []
                current = carried + [sentence]
            else:
                current.append(sentence)
        if current:
            pieces.append(" ".join(current))
        return pieces

    def split_oversized(self, text: str, max_tokens: Optional[int] = None) -> List[str]:
        """Split by paragraphs first, then by sentences with overlap."""
        max_tokens = max_tokens or self.max_chunk_size
        if estimate_tokens(text) <= max_tokens:
            return [text]

        pieces: List[str] = []
        buffer = ""
        for paragraph in [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]:
            if estimate_tokens(paragraph) > max_tokens:
                if buffer:
                    pieces.append(buffer)
                    buffer = ""
                pieces.extend(self.combine_with_overlap(split_into_sentences(paragraph), max_tokens))
                continue
            candidate = f"{buffer}\n\n{paragraph}" if buffer else paragraph
            if buffer and estimate_tokens(candidate) > max_tokens:
                pieces.append(buffer)
                buffer = paragraph
            else:
                buffer = candidate
        if buffer:
            pieces.append(buffer)
        return pieces

    def make_chunks(
        self,
        pieces: List[str],
        tags: Optional[List[str]],
        source_id: Optional[str],
        metadata: Optional[List[Dict[str, Any]]] = None,
        processing_type: str = "information"
    ) -> List[Chunk]:
        """Wrap text pieces into indexed Chunk objects."""
        chunks = []
        for i, piece in enumerate(pieces):
            piece = piece.strip()
            if not piece:
                continue
            chunks.append(Chunk(
                content=piece,
                category=self.category,
                tags=list(tags or []),
                processing_type=processing_type,
                source_id=source_id,
                metadata=dict(metadata[i]) if metadata else {},
            ))
        return reindex(chunks)
