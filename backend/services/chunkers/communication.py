"""Chunking strategy for conversations, with optional style analysis chunks."""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import STYLE_SOURCE_TAG
from models.chunk import Chunk, estimate_tokens, reindex
from services.chunkers.base import BaseChunker
from services.chunkers.rules import BoundaryRule

logger = logging.getLogger(__name__)

TURN_RULES = [
    BoundaryRule("timestamped-turn", re.compile(r"^\[.*?\]\s*(.+?):\s*(.+)$", re.MULTILINE), "turn"),
    BoundaryRule("named-turn", re.compile(r"^(\w+):\s*(.+)$", re.MULTILINE), "turn"),
    BoundaryRule("bracketed-turn", re.compile(r"^<(\w+)>\s*(.+)$", re.MULTILINE), "turn"),
    BoundaryRule("mention-turn", re.compile(r"^@(\w+)\s*(.+)$", re.MULTILINE), "turn"),
]
THREAD_BREAKS = [
    re.compile(r"^\[.*?(hours?|days?|weeks?).*?\]", re.IGNORECASE),
    re.compile(r"^---+"),
    re.compile(r"^(new topic|different|change)", re.IGNORECASE),
]
SEPARATOR_SPLIT = re.compile(r"\n\s*(?:---|===)\s*\n")
MAX_THREAD_TOKENS = 2000
MIN_SEPARATED_TOKENS = 30

CONTEXTS = [
    ("slack-discussion", re.compile(r"(slack|channel|thread)", re.IGNORECASE)),
    ("discord-chat", re.compile(r"(discord|server)", re.IGNORECASE)),
    ("help-request", re.compile(r"(help|support|question)", re.IGNORECASE)),
    ("technical-discussion", re.compile(r"(code|bug|error|fix)", re.IGNORECASE)),
    ("team-meeting", re.compile(r"(meeting|standup|sync)", re.IGNORECASE)),
    ("review-discussion", re.compile(r"(review|feedback|opinion)", re.IGNORECASE)),
]
CONVERSATION_TYPES = {
    "technical-discussion": "technical-help",
    "help-request": "support-interaction",
    "team-meeting": "team-collaboration",
    "review-discussion": "feedback-discussion",
}

TONE_INDICATORS = {
    "friendly": ("thanks", "please", "!", "awesome", "great"),
    "professional": ("however", "therefore", "regarding", "furthermore"),
    "casual": ("yeah", "cool", "sure", "no worries", "lol"),
    "helpful": ("let me", "i can", "try this", "here's how", "hope this helps"),
}
TECHNICAL_TERMS = ("function", "variable", "api", "database", "server", "code", "algorithm")


@dataclass
class Conversation:
    content: str
    participants: List[str] = field(default_factory=list)
    context: str = "general-conversation"
    message_count: int = 0

    @property
    def conversation_type(self) -> str:
        return CONVERSATION_TYPES.get(self.context, "casual-conversation")


def turn_speaker(line: str) -> Optional[str]:
    for rule in TURN_RULES:
        match = rule.pattern.match(line)
        if match:
            return match.group(1).strip()
    return None


def extract_participants(content: str) -> List[str]:
    names = []
    for line in content.split("\n"):
        speaker = turn_speaker(line.strip())
        if speaker and len(speaker) < 20:
            names.append(speaker)
    names.extend(re.findall(r"(?<![\w.])@(\w+)", content))
    return list(dict.fromkeys(names))


def infer_context(content: str) -> str:
    for context, pattern in CONTEXTS:
        if pattern.search(content):
            return context
    return "general-conversation"


def count_messages(content: str) -> int:
    lines = [l for l in content.split("\n") if l.strip()]
    turns = sum(1 for l in lines if turn_speaker(l.strip()))
    return turns or len(lines)


def analyze_style(content: str) -> Dict[str, Any]:
    """Tone, helpfulness, technical depth and response structure signals."""
    lowered = content.lower()
    tones = [tone for tone, words in TONE_INDICATORS.items() if any(w in lowered for w in words)]

    helpfulness = []
    if "example" in lowered or "like this" in lowered:
        helpfulness.append("provides-examples")
    if "?" in lowered and ("what" in lowered or "which" in lowered):
        helpfulness.append("asks-clarifying-questions")
    if "alternatively" in lowered or "or you could" in lowered:
        helpfulness.append("offers-alternatives")
    if "because" in lowered or "the reason" in lowered:
        helpfulness.append("explains-reasoning")

    technical_count = sum(1 for term in TECHNICAL_TERMS if term in lowered)
    if technical_count >= 3:
        depth = "high"
    elif technical_count == 0:
        depth = "low"
    else:
        depth = "medium"

    structure = []
    if re.search(r"\n\s*[-•*]\s", content):
        structure.append("uses-lists")
    if "`" in content:
        structure.append("includes-code")
    if len(content.split("\n")) > 3:
        structure.append("multi-paragraph")

    return {
        "tone": tones,
        "helpfulness": helpfulness,
        "technical_depth": depth,
        "response_structure": structure,
    }


class CommunicationChunker(BaseChunker):
    """
    Group chat logs into threads of turns.

    Content tagged with the style-source marker also yields a "style" chunk
    per thread carrying style signals; the information chunk is unchanged.
    """

    category = "communication"
    hierarchical = True

    def __init__(self, max_chunk_size: int = 800, overlap: int = 100, style_source_tag: str = STYLE_SOURCE_TAG):
        super().__init__(max_chunk_size, overlap)
        self.style_source_tag = style_source_tag

    async def chunk(self, content: str, tags: Optional[List[str]] = None, source_id: Optional[str] = None) -> List[Chunk]:
        tags = list(tags or [])
        chunks = self._information_chunks(content, tags, source_id)
        if self.style_source_tag in tags:
            chunks = self._interleave_style(chunks)
        return reindex(chunks)

    def style_chunks(self, content: str, tags: Optional[List[str]] = None, source_id: Optional[str] = None) -> List[Chunk]:
        """Only the style chunks for `content`, used for cross-category processing."""
        return [self._style_chunk(c) for c in self._information_chunks(content, list(tags or []), source_id)]

    def parse_conversations(self, content: str) -> List[Conversation]:
        content = content.strip()
        threads: List[str] = []
        for rule in TURN_RULES:
            if len(rule.matches(content)) >= 2:
                threads = self._group_threads(content)
                break

        if not threads:
            threads = [t.strip() for t in SEPARATOR_SPLIT.split(content)
                       if t.strip() and estimate_tokens(t) > MIN_SEPARATED_TOKENS]
        if not threads and content:
            threads = [content]

        return [
            Conversation(
                content=thread,
                participants=extract_participants(thread),
                context=infer_context(thread),
                message_count=count_messages(thread),
            )
            for thread in threads
        ]

    def _group_threads(self, content: str) -> List[str]:
        threads: List[str] = []
        current: List[str] = []
        for line in content.split("\n"):
            stripped = line.strip()
            is_break = any(p.search(stripped) for p in THREAD_BREAKS)
            too_long = estimate_tokens("\n".join(current)) > MAX_THREAD_TOKENS
            if current and (is_break or too_long):
                threads.append("\n".join(current).strip())
                current = []
            if re.fullmatch(r"-{3,}|={3,}", stripped):
                continue
            current.append(line)
        if "\n".join(current).strip():
            threads.append("\n".join(current).strip())
        return [t for t in threads if t]

    def split_conversation(self, conversation: Conversation) -> List[Conversation]:
        """Split an oversized thread at message boundaries."""
        messages: List[List[str]] = []
        for line in conversation.content.split("\n"):
            if turn_speaker(line.strip()) or not messages:
                messages.append([line])
            elif line.strip():
                messages[-1].append(line)

        parts: List[str] = []
        current = ""
        for message in messages:
            text = "\n".join(message)
            candidate = f"{current}\n{text}" if current else text
            if current and estimate_tokens(candidate) > self.max_chunk_size:
                parts.append(current)
                current = text
            else:
                current = candidate
        if current:
            parts.append(current)

        split_parts = []
        for part in parts:
            split_parts.extend(self.split_oversized(part))

        return [
            Conversation(
                content=part,
                participants=extract_participants(part),
                context=conversation.context,
                message_count=count_messages(part),
            )
            for part in split_parts
        ]

    def _information_chunks(self, content: str, tags: List[str], source_id: Optional[str]) -> List[Chunk]:
        chunks = []
        for conversation in self.parse_conversations(content):
            units = [conversation] if self.fits(conversation.content) else self.split_conversation(conversation)
            for unit in units:
                chunks.append(Chunk(
                    content=unit.content,
                    category=self.category,
                    tags=list(tags),
                    processing_type="information",
                    source_id=source_id,
                    metadata={
                        "conversation_type": unit.conversation_type,
                        "participants": unit.participants,
                        "context": unit.context,
                        "message_count": unit.message_count,
                    },
                ))
        return chunks

    def _style_chunk(self, chunk: Chunk) -> Chunk:
        return Chunk(
            content=chunk.content,
            category=self.category,
            tags=list(chunk.tags),
            processing_type="style",
            source_id=chunk.source_id,
            metadata={
                "conversation_type": chunk.metadata.get("conversation_type"),
                "style_patterns": analyze_style(chunk.content),
            },
        )

    def _interleave_style(self, chunks: List[Chunk]) -> List[Chunk]:
        result = []
        for chunk in chunks:
            result.append(chunk)
            result.append(self._style_chunk(chunk))
        return result

