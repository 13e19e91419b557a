"""Chunking strategy for skill listings and work preferences."""
import logging
import re
from typing import Dict, List, Optional

from models.chunk import Chunk
from services.chunkers.base import BaseChunker, split_into_sentences
from services.chunkers.rules import BoundaryRule, RuleCascade

logger = logging.getLogger(__name__)

SKILL_SECTION_RULES = [
    BoundaryRule("markdown-header", re.compile(r"^#{1,3}\s*(.+)$", re.MULTILINE), "skill-group"),
    BoundaryRule("category-colon", re.compile(r"^([A-Z][^.\n]*?):\s*(.*)$", re.MULTILINE), "skill-group"),
    BoundaryRule("bullet", re.compile(r"^[*\-•]\s*(.+)$", re.MULTILINE), "skill-group"),
    BoundaryRule("bold-category", re.compile(r"^\*\*([^*]+)\*\*:*\s*(.*)$", re.MULTILINE), "skill-group"),
]
SUBGROUP_RULES = [
    BoundaryRule("bullet", re.compile(r"^[*\-•]\s*(.+)$", re.MULTILINE), "subgroup", min_matches=3),
    BoundaryRule("category-colon", re.compile(r"^(\w+[^:\n]*?):\s*(.+?)$", re.MULTILINE), "subgroup", min_matches=3),
    BoundaryRule("minor-header", re.compile(r"^#{4,6}\s*(.+)$", re.MULTILINE), "subgroup", min_matches=3),
]

CATEGORY_PATTERNS = [
    ("Technical Skills", re.compile(r"(technical|programming|coding|development)", re.IGNORECASE)),
    ("Languages", re.compile(r"(languages?)", re.IGNORECASE)),
    ("Frameworks", re.compile(r"(frameworks?|libraries)", re.IGNORECASE)),
    ("Tools", re.compile(r"(tools?|software|applications)", re.IGNORECASE)),
    ("Databases", re.compile(r"(databases?)", re.IGNORECASE)),
    ("Cloud", re.compile(r"(cloud|aws|azure|gcp)", re.IGNORECASE)),
    ("Soft Skills", re.compile(r"(soft|interpersonal|communication)", re.IGNORECASE)),
    ("Preferences", re.compile(r"(preferences?|work style|career)", re.IGNORECASE)),
    ("Certifications", re.compile(r"(certifications?|certificates)", re.IGNORECASE)),
]
PROFICIENCY_WORDS = re.compile(
    r"\b(expert|advanced|intermediate|beginner|proficient)\s+(?:in|with|at)\s+([\w+#.]+)", re.IGNORECASE
)

MIN_GROUP_TOKENS = 20
MIN_SUBGROUP_TOKENS = 15


def extract_skill_category(content: str) -> str:
    lines = [l.strip() for l in content.split("\n") if l.strip()]
    if lines:
        first = re.sub(r"^\*\*([^*]+)\*\*.*", r"\1", lines[0])
        first = re.sub(r"^[#*\-•\d.)\s]*", "", first)
        first = re.sub(r":\s*.*$", "", first).strip("* ")
        if first and len(first) < 50:
            return first
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(content):
            return category
    return "General Skills"


def determine_skill_type(content: str, category: str) -> str:
    lowered = content.lower()
    category = category.lower()
    if "preference" in category or "prefer" in lowered or "day-to-day" in lowered:
        return "preferences"
    if "soft" in category or "communication" in lowered:
        return "soft-skills"
    if "salary" in lowered or "compensation" in lowered:
        return "compensation"
    if "goal" in lowered or "career" in lowered:
        return "career-goals"
    if "certification" in lowered or "certificate" in lowered:
        return "certifications"
    return "technical-skills"


def extract_skills(content: str) -> List[str]:
    """Skill names from bullets ("- React: 8/10") and lists ("Languages: Go, Python")."""
    skills: List[str] = []
    for line in content.split("\n"):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        bullet = re.match(r"^[*\-•]\s*([^:\n]+?)(?::\s*(.+))?$", line)
        if bullet:
            name, rest = bullet.group(1), bullet.group(2)
            if rest and "," in rest:
                skills.extend(rest.split(","))
            else:
                skills.append(name)
            continue
        listed = re.match(r"^[^:]{1,40}:\s*(.+)$", line)
        if listed and "," in listed.group(1):
            skills.extend(listed.group(1).split(","))

    cleaned = []
    for skill in skills:
        skill = re.sub(r"\s*\(.*?\)\s*$", "", skill.strip(" *_.;"))
        if 1 < len(skill) < 50 and not skill[0].isdigit():
            cleaned.append(skill)
    return list(dict.fromkeys(cleaned))


def extract_proficiency_levels(content: str, skills: List[str]) -> Dict[str, str]:
    levels: Dict[str, str] = {}
    for skill in skills:
        escaped = re.escape(skill)
        rated = re.search(rf"{escaped}\s*:\s*([\d/]+(?:\s*\w+)?)", content, re.IGNORECASE)
        if rated:
            levels[skill] = rated.group(1).strip()
            continue
        parenthesised = re.search(rf"{escaped}\s*\(([^)]+)\)", content, re.IGNORECASE)
        if parenthesised:
            levels[skill] = parenthesised.group(1).strip()
    for match in PROFICIENCY_WORDS.finditer(content):
        levels.setdefault(match.group(2), match.group(1).lower())
    return levels


class SkillsChunker(BaseChunker):
    """One chunk per skill group; oversized groups split into subgroups."""

    category = "skills"

    def __init__(self, max_chunk_size: int = 600, overlap: int = 100):
        super().__init__(max_chunk_size, overlap)
        self.cascade = RuleCascade(SKILL_SECTION_RULES, min_section_tokens=MIN_GROUP_TOKENS, default_type="skill-group")
        self.subgroups = RuleCascade(SUBGROUP_RULES, fallbacks=(), min_section_tokens=MIN_SUBGROUP_TOKENS)

    async def chunk(self, content: str, tags: Optional[List[str]] = None, source_id: Optional[str] = None) -> List[Chunk]:
        result = self.cascade.split(content)

        pieces: List[str] = []
        metadata: List[Dict] = []
        for index, section in enumerate(result.sections):
            group = section.content
            category = extract_skill_category(group) or f"Skills Group {index + 1}"
            skill_type = determine_skill_type(group, category)
            skills = extract_skills(group)
            levels = extract_proficiency_levels(group, skills)

            parts = [group] if self.fits(group) else self.split_group(group)
            for part_index, part in enumerate(parts):
                part_skills = [s for s in skills if s.lower() in part.lower()]
                entry = {
                    "skill_category": category,
                    "skill_type": skill_type,
                    "skills": part_skills,
                    "proficiency_levels": {s: levels[s] for s in part_skills if s in levels},
                }
                if len(parts) > 1:
                    entry.update(part_index=part_index + 1, total_parts=len(parts))
                pieces.append(part)
                metadata.append(entry)

        logger.debug(f"Skills chunker produced {len(pieces)} chunks ({result.strategy})")
        return self.make_chunks(pieces, tags, source_id, metadata)

    def split_group(self, group: str) -> List[str]:
        split = self.subgroups.split(group)
        if len(split.sections) > 1:
            parts: List[str] = []
            for section in split.sections:
                parts.extend(self.split_oversized(section.content))
            return parts
        return self.combine_with_overlap(split_into_sentences(group))
