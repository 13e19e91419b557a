"""Chunking strategy for résumés and other structured documents."""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from models.chunk import Chunk, reindex
from services.chunkers.base import BaseChunker
from services.chunkers.rules import BoundaryRule, KeywordClassifier, collect_boundaries
from services.temporal import parse_date_ranges

logger = logging.getLogger(__name__)

SECTION_TYPES = ("experience", "education", "skills", "projects", "summary", "personal", "general")

HEADER_RULES = [
    BoundaryRule("markdown-header", re.compile(r"^#{1,3}\s*(.+)$", re.MULTILINE), "general", min_matches=1),
    BoundaryRule("bold-caps-header", re.compile(r"^\*\*([A-Z][A-Z &/]+)\*\*$", re.MULTILINE), "general", min_matches=1),
    BoundaryRule("plain-caps-header", re.compile(r"^([A-Z][A-Z &/]{2,})$", re.MULTILINE), "general", min_matches=1),
]

TRUE_SECTION_KEYWORDS = (
    "work experience", "experience", "employment", "career history",
    "education", "academic background", "degrees",
    "skills", "technical skills", "expertise", "proficiencies",
    "projects", "portfolio", "accomplishments",
    "summary", "objective", "profile", "about",
    "interests", "hobbies", "activities", "volunteering",
    "certifications", "licenses", "awards",
)
HEADER_DATE = re.compile(
    r"\b(19|20)\d{2}\b|\b(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\s+\d{4}\b|\b(present|current)\b",
    re.IGNORECASE
)

SECTION_KEYWORDS = KeywordClassifier([
    ("experience", ("experience", "work", "employment", "career")),
    ("education", ("education", "school", "university", "degree")),
    ("skills", ("skill", "skills", "technical", "technologies", "proficiencies")),
    ("projects", ("project", "projects", "portfolio", "built")),
    ("summary", ("summary", "objective", "about", "profile")),
    ("personal", ("interests", "hobbies", "personal", "outside", "activities", "passion")),
])

# Fallback rules for "is this line the start of a new job entry?"
ENTRY_PATTERNS = [
    re.compile(r"^[*_][^*_]+\([A-Z][a-z]+\s+\d{4}"),   # *Role (Month Year ...
    re.compile(r"^[*_][^*_]+[*_]\s*[-–—]\s*"),         # *Role* - ...
    re.compile(r"^\*\*[A-Z][^*]+\*\*.*\d{4}"),         # **Company** ... 2019
]
COMPANY_HEADER = re.compile(r"\*\*[A-Z][^*]+\*\*.*(\d{4}|[A-Z]{2,}\s*,|\|)", re.IGNORECASE)
JOB_TITLE = re.compile(r"^#{0,3}\s*\*[^*]+\([A-Z][a-z]+\s+\d{4}", re.IGNORECASE)
HEADER_DATE_RANGE = re.compile(
    r"\|\s*[A-Z][a-z]+\s+\d{4}\s*[-–—]\s*(?:[A-Z][a-z]+\s+\d{4}|Current|Present)", re.IGNORECASE
)
BULLET = re.compile(r"^[•·*-]\s")

STICKY_HEADER_LINES = 10
MIN_ENTRY_CHARS = 80
MIN_SECTION_CHARS = 20


@dataclass
class ResumeSection:
    title: str
    content: str
    section_type: str
    is_true_header: bool


def is_true_section_header(title: str) -> bool:
    """Organisational header ("EXPERIENCE") as opposed to a job entry heading."""
    lowered = title.lower()
    if any(keyword in lowered for keyword in TRUE_SECTION_KEYWORDS):
        return True
    if HEADER_DATE.search(title):
        return False
    if re.match(r"^[*_].*[*_]$", title):
        return False
    return bool(re.fullmatch(r"[A-Z\s&/]+", title))


def strip_header_dates(line: str) -> str:
    stripped = HEADER_DATE_RANGE.sub("", line).strip()
    return re.sub(r"\|\s*$", "", stripped).strip()


def has_entry_header(text: str) -> bool:
    return any(COMPANY_HEADER.search(line) or JOB_TITLE.search(line.strip()) for line in text.split("\n"))


class ResumeChunker(BaseChunker):
    """
    Split résumés by section headers, then by job entry.

    A job's bullets always stay with its heading: entries only break at new
    job headings, never within 10 lines of a company header, and orphaned
    bullet chunks are merged back into the preceding entry.
    """

    category = "resume"
    hierarchical = True

    def __init__(self, oracle, max_chunk_size: int = 600, overlap: int = 100):
        """
        Args:
            oracle: Object with `classify(text, options, instruction)`; may return None
            max_chunk_size: Token budget per chunk
            overlap: Token overlap for sentence-level splits
        """
        super().__init__(max_chunk_size, overlap)
        self.oracle = oracle

    async def chunk(self, content: str, tags: Optional[List[str]] = None, source_id: Optional[str] = None) -> List[Chunk]:
        sections = await self.parse_sections(content)

        pieces: List[str] = []
        metadata = []
        for section in sections:
            if self.fits(section.content):
                parts = [section.content]
            else:
                parts = await self.split_section(section)
            for part in parts:
                pieces.append(part)
                metadata.append({
                    "section_type": section.section_type,
                    "section_title": section.title if section.is_true_header else None,
                    "date_ranges": [r.text for r in parse_date_ranges(part)],
                })

        chunks = self.make_chunks(pieces, tags, source_id, metadata)
        merged = self._merge_orphaned_bullets(chunks)
        logger.info(f"Resume chunker produced {len(merged)} chunks from {len(sections)} sections")
        return merged

    async def parse_sections(self, content: str) -> List[ResumeSection]:
        """Split on every detected header; short sections carry into the next one."""
        content = content.strip()
        boundaries = collect_boundaries(content, HEADER_RULES)
        if not boundaries:
            return [ResumeSection("", content, "general", False)] if content else []

        sections: List[ResumeSection] = []
        preamble = content[:boundaries[0].start].strip()
        carry = preamble
        current_type = "general"

        for i, boundary in enumerate(boundaries):
            end = boundaries[i + 1].start if i + 1 < len(boundaries) else len(content)
            body = content[boundary.start:end].strip()
            true_header = is_true_section_header(boundary.title)

            if true_header or not sections:
                preview = content[boundary.end:boundary.end + 200].strip()
                current_type = await self.determine_section_type(boundary.title, preview)
            section_type = current_type

            if carry:
                body = f"{carry}\n{body}"
                carry = ""
            if len(body) < MIN_SECTION_CHARS and i + 1 < len(boundaries):
                carry = body
                continue
            sections.append(ResumeSection(boundary.title, body, section_type, true_header))

        if carry:
            sections.append(ResumeSection("", carry, current_type, False))
        return sections

    async def determine_section_type(self, title: str, preview: str = "") -> str:
        """Oracle label for a section header, keyword rules when it has none."""
        label = await self.oracle.classify(
            f"Section title: {title}\nContent preview: {preview[:200]}",
            SECTION_TYPES,
            instruction=(
                "Classify this resume section. experience: work history, jobs, career; "
                "education: degrees, schools; skills: technical abilities; projects: things built; "
                "summary: profile or objective; personal: interests and life outside work."
            )
        )
        if label:
            return label
        return SECTION_KEYWORDS.classify(title)

    async def is_new_entry(self, line: str, context: str) -> bool:
        """Oracle yes/no for "does this line start a new job?", patterns otherwise."""
        answer = await self.oracle.classify(
            f"Current line: {line}\nPrevious lines: {context[-300:]}",
            ("yes", "no"),
            instruction=(
                "Is the current line the start of a new job role or position in a resume? "
                "Bullet points describing responsibilities are not."
            )
        )
        if answer is not None:
            return answer == "yes"
        return any(p.search(line) for p in ENTRY_PATTERNS)

    async def split_section(self, section: ResumeSection) -> List[str]:
        """Break an oversized section at job entries without separating headers from bullets."""
        lines = section.content.split("\n")
        prefix = section.title if section.is_true_header else ""
        start = 1 if section.is_true_header else 0

        company = None
        first = next((l.strip() for l in lines if l.strip()), "")
        if COMPANY_HEADER.search(first):
            company = strip_header_dates(first)

        entries: List[List[str]] = []
        current: List[str] = [lines[0]] if section.is_true_header else []
        last_header_at: Optional[int] = None

        for i in range(start, len(lines)):
            line = lines[i]
            stripped = line.strip()
            sticky = last_header_at is not None and i - last_header_at < STICKY_HEADER_LINES
            body = "\n".join(current).strip()

            if stripped and not BULLET.match(stripped) and await self.is_new_entry(stripped, body):
                if len(body) >= MIN_ENTRY_CHARS and len(body) > len(prefix) and not sticky:
                    entries.append(current)
                    current = [prefix] if prefix else []
            elif current and not self.fits("\n".join(current + [line])) and not sticky:
                entries.append(current)
                current = [prefix] if prefix else []

            current.append(line)
            if COMPANY_HEADER.search(stripped):
                last_header_at = i

        if "\n".join(current).strip():
            entries.append(current)

        pieces = ["\n".join(entry).strip() for entry in entries]
        fixed: List[str] = []
        for piece in pieces:
            if not piece:
                continue
            piece_lines = piece.split("\n")
            if prefix and piece_lines[0].strip() == prefix:
                piece_lines = piece_lines[1:]
            head = next((l.strip() for l in piece_lines if l.strip()), "")
            has_company = any(COMPANY_HEADER.search(l) for l in piece_lines)
            if company and JOB_TITLE.search(head) and not has_company:
                piece = f"{company}\n\n{piece}"
            fixed.append(piece)
        return fixed

    def _merge_orphaned_bullets(self, chunks: List[Chunk]) -> List[Chunk]:
        merged: List[Chunk] = []
        for chunk in chunks:
            if merged and BULLET.match(chunk.content.strip()) and has_entry_header(merged[-1].content):
                previous = merged[-1]
                previous.content = f"{previous.content}\n\n{chunk.content}"
                previous.metadata["date_ranges"] = [r.text for r in parse_date_ranges(previous.content)]
                continue
            merged.append(chunk)
        return reindex(merged)
