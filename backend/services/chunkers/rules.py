"""Ordered boundary rules shared by the category chunkers."""
import re
from dataclasses import dataclass, field
from typing import List, Optional, Pattern, Sequence, Tuple

from models.chunk import estimate_tokens

FALLBACK_PARAGRAPHS = "paragraphs"
FALLBACK_WHOLE = "whole"

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


@dataclass(frozen=True)
class BoundaryRule:
    """A pattern whose matches start a new section of the given type."""
    name: str
    pattern: Pattern
    section_type: str
    # The rule only applies when it matches at least this many times
    min_matches: int = 2

    def matches(self, text: str) -> List[re.Match]:
        return list(self.pattern.finditer(text))


@dataclass
class Section:
    """A contiguous slice of the source text."""
    content: str
    section_type: str
    title: str = ""
    rule: str = ""


@dataclass
class CascadeResult:
    sections: List[Section]
    strategy: str  # rule name, or one of the fallback strategies


@dataclass
class RuleCascade:
    """
    Try rules in priority order; the first one that applies splits the text.

    When no rule applies the fallback strategies run in order: paragraph
    breaks, then the whole text as one section. Sections smaller than
    `min_section_tokens` are folded into their predecessor so no text is lost.
    """
    rules: Sequence[BoundaryRule]
    fallbacks: Tuple[str, ...] = (FALLBACK_PARAGRAPHS, FALLBACK_WHOLE)
    min_section_tokens: int = 0
    default_type: str = "general"
    min_paragraphs: int = 2

    def first_applicable(self, text: str) -> Optional[Tuple[BoundaryRule, List[re.Match]]]:
        for rule in self.rules:
            found = rule.matches(text)
            if len(found) >= rule.min_matches:
                return rule, found
        return None

    def split(self, text: str) -> CascadeResult:
        text = text.strip()
        if not text:
            return CascadeResult([], FALLBACK_WHOLE)

        applicable = self.first_applicable(text)
        if applicable:
            rule, found = applicable
            return CascadeResult(self._merge_small(self._split_at(text, rule, found)), rule.name)

        for fallback in self.fallbacks:
            if fallback == FALLBACK_PARAGRAPHS:
                parts = [p.strip() for p in PARAGRAPH_BREAK.split(text) if p.strip()]
                if len(parts) >= self.min_paragraphs:
                    sections = [Section(p, self.default_type) for p in parts]
                    return CascadeResult(self._merge_small(sections), FALLBACK_PARAGRAPHS)
            elif fallback == FALLBACK_WHOLE:
                break
        return CascadeResult([Section(text, self.default_type)], FALLBACK_WHOLE)

    def _split_at(self, text: str, rule: BoundaryRule, found: List[re.Match]) -> List[Section]:
        sections: List[Section] = []
        preamble = text[:found[0].start()].strip()
        if preamble:
            sections.append(Section(preamble, self.default_type))
        for i, match in enumerate(found):
            end = found[i + 1].start() if i + 1 < len(found) else len(text)
            content = text[match.start():end].strip()
            if not content:
                continue
            title = (match.group(1) if match.groups() and match.group(1) else match.group(0)).strip()
            sections.append(Section(content, rule.section_type, title=title, rule=rule.name))
        return sections

    def _merge_small(self, sections: List[Section]) -> List[Section]:
        if self.min_section_tokens <= 0:
            return sections
        merged: List[Section] = []
        for section in sections:
            if merged and estimate_tokens(section.content) < self.min_section_tokens:
                merged[-1].content = f"{merged[-1].content}\n\n{section.content}"
            else:
                merged.append(section)
        # A small leading section is folded forward instead
        if len(merged) > 1 and estimate_tokens(merged[0].content) < self.min_section_tokens:
            first = merged.pop(0)
            merged[0].content = f"{first.content}\n\n{merged[0].content}"
        return merged


@dataclass
class Boundary:
    start: int
    end: int
    title: str
    rule: BoundaryRule


def collect_boundaries(text: str, rules: Sequence[BoundaryRule], min_gap: int = 5) -> List[Boundary]:
    """
    Union of every rule's matches, ordered by position.

    A match starting within `min_gap` characters of an earlier-priority
    match is the same boundary and is dropped.
    """
    found: List[Boundary] = []
    for rule in rules:
        for match in rule.pattern.finditer(text):
            if any(abs(match.start() - b.start) < min_gap for b in found):
                continue
            title = (match.group(1) if match.groups() and match.group(1) else match.group(0)).strip()
            found.append(Boundary(match.start(), match.end(), title, rule))
    return sorted(found, key=lambda b: b.start)


@dataclass
class KeywordClassifier:
    """Label text by counting keyword hits per label; ties go to the earlier label."""
    keywords: Sequence[Tuple[str, Sequence[str]]]
    default: str = "general"
    min_hits: int = 1
    _compiled: List[Tuple[str, List[Pattern]]] = field(init=False, default_factory=list)

    def __post_init__(self):
        self._compiled = [
            (label, [re.compile(rf"\b{re.escape(w)}\b", re.IGNORECASE) for w in words])
            for label, words in self.keywords
        ]

    def classify(self, text: str) -> str:
        best_label, best_hits = self.default, 0
        for label, patterns in self._compiled:
            hits = sum(1 for p in patterns if p.search(text))
            if hits > best_hits:
                best_label, best_hits = label, hits
        return best_label if best_hits >= self.min_hits else self.default
