"""Chunking strategy for STAR-format behavioral stories."""
import logging
import re
from typing import Dict, List, Optional, Tuple

from models.chunk import Chunk
from services.chunkers.base import BaseChunker, split_into_sentences
from services.chunkers.rules import BoundaryRule, RuleCascade

logger = logging.getLogger(__name__)

STORY_RULES = [
    BoundaryRule("markdown-header", re.compile(r"^#{1,3}\s*(.+)$", re.MULTILINE), "story"),
    BoundaryRule("title-line", re.compile(r"^([A-Z][^.\n]*[:\-–—])$", re.MULTILINE), "story"),
    BoundaryRule("bullet-title", re.compile(r"^[*\-•]\s*(.+)$", re.MULTILINE), "story"),
    BoundaryRule("numbered-item", re.compile(r"^(\d+[.)]\s*.+)$", re.MULTILINE), "story"),
]

STAR_KEYWORDS = {
    "situation": ("situation", "background", "context", "scenario", "challenge", "problem"),
    "task": ("task", "goal", "objective", "responsibility", "need", "requirement"),
    "action": ("action", "approach", "solution", "implementation", "steps", "process"),
    "result": ("result", "outcome", "achievement", "impact", "success", "improvement"),
}
STAR_MARKER = re.compile(
    r"^\s*(?:[#*_]+\s*)?(situation|task|action|result)s?\b\s*(?:[*_]+)?\s*:", re.IGNORECASE | re.MULTILINE
)

BEHAVIORAL_SKILLS = {
    "leadership": ("lead", "manage", "supervise", "mentor", "guide", "direct"),
    "problem-solving": ("solve", "resolve", "fix", "troubleshoot", "analyze", "debug"),
    "communication": ("communicate", "present", "explain", "discuss", "negotiate"),
    "teamwork": ("collaborate", "team", "together", "coordinate", "cooperate"),
    "conflict-resolution": ("conflict", "dispute", "disagreement", "mediate"),
    "time-management": ("deadline", "schedule", "prioritize", "urgent", "timeline"),
    "adaptability": ("adapt", "change", "flexible", "adjust", "pivot"),
}
STORY_TYPES = (
    ("leadership", "leadership"),
    ("problem-solving", "technical-problem"),
    ("conflict-resolution", "conflict"),
    ("teamwork", "collaboration"),
)

MIN_STORY_TOKENS = 50


def identify_star_components(content: str) -> List[str]:
    lowered = content.lower()
    components = []
    for component, keywords in STAR_KEYWORDS.items():
        if any(f"{k}:" in lowered or f"{k} was" in lowered or f"{k} involved" in lowered for k in keywords):
            components.append(component)
    return components


def extract_behavioral_skills(content: str) -> List[str]:
    lowered = content.lower()
    return [skill for skill, words in BEHAVIORAL_SKILLS.items() if any(w in lowered for w in words)]


def determine_story_type(skills: List[str]) -> str:
    for skill, story_type in STORY_TYPES:
        if skill in skills:
            return story_type
    return "general-behavioral"


def extract_story_title(content: str) -> str:
    lines = [l.strip() for l in content.split("\n") if l.strip()]
    if lines and len(lines[0]) < 100 and not lines[0].endswith("."):
        return re.sub(r"^[#*\-•\d.)\s]*", "", lines[0]).strip("*_ :")
    match = re.search(r"(?:Leading|Managing|Solving|Handling|Dealing with|Overcoming)\s+(.+?)(?:[:\n]|$)", content, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    match = re.match(r"^([^.]{10,60}?)(?:[.:]|\n|$)", content)
    return match.group(1).strip() if match else ""


def split_by_star_sections(content: str) -> List[Tuple[str, str]]:
    """
    Split at explicit Situation/Task/Action/Result markers.

    Returns (component, text) pairs; text before the first marker joins
    the first section. Fewer than two markers means no STAR structure.
    """
    markers = list(STAR_MARKER.finditer(content))
    if len(markers) < 2:
        return []
    sections = []
    for i, marker in enumerate(markers):
        start = 0 if i == 0 else marker.start()
        end = markers[i + 1].start() if i + 1 < len(markers) else len(content)
        text = content[start:end].strip()
        if text:
            sections.append((marker.group(1).lower(), text))
    return sections


class ExperienceChunker(BaseChunker):
    """Keep each STAR story whole when it fits; otherwise split along S/T/A/R."""

    category = "experience"

    def __init__(self, max_chunk_size: int = 1000, overlap: int = 100):
        super().__init__(max_chunk_size, overlap)
        self.cascade = RuleCascade(STORY_RULES, min_section_tokens=MIN_STORY_TOKENS, default_type="story")

    async def chunk(self, content: str, tags: Optional[List[str]] = None, source_id: Optional[str] = None) -> List[Chunk]:
        result = self.cascade.split(content)
        logger.debug(f"Experience stories split with strategy: {result.strategy}")

        pieces: List[str] = []
        metadata: List[Dict] = []
        for index, section in enumerate(result.sections):
            story = section.content
            skills = extract_behavioral_skills(story)
            base = {
                "story_type": determine_story_type(skills),
                "story_title": extract_story_title(story) or f"Experience Story {index + 1}",
                "behavioral_skills": skills,
                "boundary_strategy": result.strategy,
            }

            if self.fits(story):
                pieces.append(story)
                metadata.append({**base, "star_components": identify_star_components(story)})
                continue

            parts = self.split_story(story)
            for part_index, (components, text) in enumerate(parts):
                pieces.append(text)
                metadata.append({
                    **base,
                    "star_components": components,
                    "part_index": part_index + 1,
                    "total_parts": len(parts),
                })

        return self.make_chunks(pieces, tags, source_id, metadata)

    def split_story(self, story: str) -> List[Tuple[List[str], str]]:
        """STAR sections first, sentence overlap inside sections that are still too big."""
        sections = split_by_star_sections(story)
        if not sections:
            components = identify_star_components(story)
            return [(components, piece) for piece in self.combine_with_overlap(split_into_sentences(story))]

        parts: List[Tuple[List[str], str]] = []
        for component, text in sections:
            if self.fits(text):
                parts.append(([component], text))
            else:
                parts.extend(([component], piece) for piece in self.combine_with_overlap(split_into_sentences(text)))
        return parts
