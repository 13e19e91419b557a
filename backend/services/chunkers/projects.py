"""Chunking strategy for technical project writeups."""
import logging
import re
from typing import Dict, List, Optional, Tuple

from models.chunk import Chunk
from services.chunkers.base import BaseChunker, split_into_sentences
from services.chunkers.rules import BoundaryRule, KeywordClassifier, RuleCascade, collect_boundaries

logger = logging.getLogger(__name__)

PROJECT_RULES = [
    BoundaryRule("markdown-header", re.compile(r"^#{1,3}\s*(.+)$", re.MULTILINE), "project"),
    BoundaryRule("name-dash-description", re.compile(r"^([A-Z][^.\n]*?)\s*[-–—:]\s*.+$", re.MULTILINE), "project"),
    BoundaryRule("bullet", re.compile(r"^[*\-•]\s*(.+)$", re.MULTILINE), "project"),
    BoundaryRule("numbered", re.compile(r"^\d+[.)]\s*(.+)$", re.MULTILINE), "project"),
]

TECHNICAL_SECTION_RULES = [
    BoundaryRule("tech-stack", re.compile(r"^\W*(tech(?:nical)?\s*stack|technologies|built\s*with)\W*:", re.IGNORECASE | re.MULTILINE), "tech-stack", 1),
    BoundaryRule("architecture", re.compile(r"^\W*(architecture|design|structure)\W*:", re.IGNORECASE | re.MULTILINE), "architecture", 1),
    BoundaryRule("features", re.compile(r"^\W*(features|functionality|capabilities)\W*:", re.IGNORECASE | re.MULTILINE), "features", 1),
    BoundaryRule("challenges", re.compile(r"^\W*(challenges|problems|issues)\W*:", re.IGNORECASE | re.MULTILINE), "challenges", 1),
    BoundaryRule("results", re.compile(r"^\W*(results|outcomes|impact|achievements)\W*:", re.IGNORECASE | re.MULTILINE), "results", 1),
    BoundaryRule("implementation", re.compile(r"^\W*(implementation|development|process)\W*:", re.IGNORECASE | re.MULTILINE), "implementation", 1),
]

TECH_PATTERNS = {
    "React": r"\breact\b", "Vue": r"\bvue(?:\.js)?\b", "Angular": r"\bangular\b",
    "TypeScript": r"\btypescript\b", "JavaScript": r"\bjavascript\b", "HTML": r"\bhtml\b",
    "CSS": r"\bcss\b", "Tailwind": r"\btailwind\b",
    "Node.js": r"\bnode(?:\.js)?\b", "Express": r"\bexpress\b", "Python": r"\bpython\b",
    "Django": r"\bdjango\b", "Flask": r"\bflask\b", "FastAPI": r"\bfastapi\b", "Java": r"\bjava\b",
    "Spring": r"\bspring\b", "Go": r"\bgolang\b", "Ruby": r"\bruby\b", "PHP": r"\bphp\b",
    "PostgreSQL": r"\bpostgres(?:ql)?\b", "MySQL": r"\bmysql\b", "MongoDB": r"\bmongo(?:db)?\b",
    "Redis": r"\bredis\b", "SQLite": r"\bsqlite\b",
    "AWS": r"\baws\b", "Docker": r"\bdocker\b", "Kubernetes": r"\bkubernetes\b|\bk8s\b",
    "Vercel": r"\bvercel\b", "Heroku": r"\bheroku\b", "GCP": r"\bgcp\b|\bgoogle cloud\b",
    "Azure": r"\bazure\b", "Git": r"\bgit\b", "Webpack": r"\bwebpack\b", "Jest": r"\bjest\b",
    "Cypress": r"\bcypress\b",
}
_TECH = [(name, re.compile(pattern, re.IGNORECASE)) for name, pattern in TECH_PATTERNS.items()]

PROJECT_TYPES = KeywordClassifier([
    ("mobile-app", ("mobile", "ios", "android")),
    ("web-application", ("web", "frontend", "website")),
    ("backend-service", ("api", "backend", "server", "microservice")),
    ("data-project", ("data", "analytics", "ml", "machine learning", "pipeline")),
    ("developer-tool", ("cli", "tool", "script", "sdk")),
    ("game", ("game",)),
], default="general-software")

SCALES = (
    ("enterprise", ("enterprise", "large-scale", "production", "thousands", "millions")),
    ("medium", ("team", "hundreds", "company", "organization")),
    ("small", ("personal", "side project", "prototype", "experiment", "learning")),
)
ROLES = (
    ("architect", ("architected", "designed system", "technical design", "architecture")),
    ("lead", ("lead", "led", "managed", "directed", "oversaw")),
    ("solo", ("built", "created", "developed", "designed", "implemented")),
    ("contributor", ("contributed", "worked on", "helped", "assisted", "collaborated")),
)

MIN_PROJECT_TOKENS = 50
MIN_TECH_SECTION_TOKENS = 20


def extract_tech_stack(content: str) -> List[str]:
    return [name for name, pattern in _TECH if pattern.search(content)]


def determine_project_type(content: str, tech_stack: List[str]) -> str:
    if any(t in tech_stack for t in ("React", "Vue", "Angular")) and "mobile" not in content.lower():
        return "web-application"
    return PROJECT_TYPES.classify(content)


def _first_indicator(content: str, table, default: str) -> str:
    lowered = content.lower()
    for label, indicators in table:
        if any(re.search(rf"\b{re.escape(i)}\b", lowered) for i in indicators):
            return label
    return default


def infer_scale(content: str) -> str:
    return _first_indicator(content, SCALES, "medium")


def extract_role(content: str) -> str:
    return _first_indicator(content, ROLES, "contributor")


def extract_project_name(content: str) -> str:
    lines = [l.strip() for l in content.split("\n") if l.strip()]
    if lines and len(lines[0]) < 80:
        name = re.sub(r"^[#*\-•\d.)\s]*", "", lines[0])
        return re.sub(r"\s*[-–—:]\s*.*$", "", name).strip("*_ ")
    match = re.search(r"built\s+(.+?)(?:[.\n]|$)", content, re.IGNORECASE)
    if match and len(match.group(1)) < 60:
        return match.group(1).strip()
    return ""


def identify_technical_sections(content: str) -> List[Tuple[str, str]]:
    """(section_type, text) pairs at "Tech Stack:" / "Architecture:" style markers."""
    boundaries = collect_boundaries(content, TECHNICAL_SECTION_RULES)
    if not boundaries:
        return []
    sections: List[Tuple[str, str]] = []
    preamble = content[:boundaries[0].start].strip()
    for i, boundary in enumerate(boundaries):
        start = 0 if i == 0 and preamble else boundary.start
        end = boundaries[i + 1].start if i + 1 < len(boundaries) else len(content)
        text = content[start:end].strip()
        if sections and len(text) // 4 < MIN_TECH_SECTION_TOKENS:
            kind, previous = sections[-1]
            sections[-1] = (kind, f"{previous}\n{text}")
        elif text:
            sections.append((boundary.rule.section_type, text))
    return sections


class ProjectsChunker(BaseChunker):
    """One chunk per project, split along technical sections when too long."""

    category = "projects"

    def __init__(self, max_chunk_size: int = 1000, overlap: int = 100):
        super().__init__(max_chunk_size, overlap)
        self.cascade = RuleCascade(PROJECT_RULES, min_section_tokens=MIN_PROJECT_TOKENS, default_type="project")

    async def chunk(self, content: str, tags: Optional[List[str]] = None, source_id: Optional[str] = None) -> List[Chunk]:
        result = self.cascade.split(content)

        pieces: List[str] = []
        metadata: List[Dict] = []
        for index, section in enumerate(result.sections):
            project = section.content
            tech_stack = extract_tech_stack(project)
            base = {
                "project_name": extract_project_name(project) or f"Project {index + 1}",
                "tech_stack": tech_stack,
                "project_type": determine_project_type(project, tech_stack),
                "scale": infer_scale(project),
                "role": extract_role(project),
                "boundary_strategy": result.strategy,
            }
            for section_type, text in self.split_project(project):
                pieces.append(text)
                metadata.append({**base, "section_type": section_type})

        logger.debug(f"Projects chunker produced {len(pieces)} chunks ({result.strategy})")
        return self.make_chunks(pieces, tags, source_id, metadata)

    def split_project(self, project: str) -> List[Tuple[str, str]]:
        if self.fits(project):
            return [("complete-project", project)]

        sections = identify_technical_sections(project)
        if len(sections) < 2:
            return [("general", piece) for piece in self.combine_with_overlap(split_into_sentences(project))]

        parts: List[Tuple[str, str]] = []
        for section_type, text in sections:
            if self.fits(text):
                parts.append((section_type, text))
            else:
                parts.extend((section_type, piece) for piece in self.combine_with_overlap(split_into_sentences(text)))
        return parts
