"""Temporal reasoning: query detection, date-range parsing and reference years."""
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Tuple

from config import SearchSettings
from models.search import TemporalContext
from services.expiring_cache import ExpiringCache

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}
_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
)
_DASH = r"\s*(?:-|–|—|to|until)\s*"
_OPEN_END = r"(?:present|current|now|today)"

MONTH_RANGE = re.compile(
    rf"(?P<sm>{_MONTH})\s+(?P<sy>(?:19|20)\d{{2}}){_DASH}"
    rf"(?:(?P<em>{_MONTH})\s+(?P<ey>(?:19|20)\d{{2}})|(?P<open>{_OPEN_END}))",
    re.IGNORECASE
)
YEAR_RANGE = re.compile(
    rf"\b(?P<sy>(?:19|20)\d{{2}}){_DASH}(?:(?P<ey>(?:19|20)\d{{2}})\b|(?P<open>{_OPEN_END}))",
    re.IGNORECASE
)
MONTH_YEAR = re.compile(rf"\b{_MONTH}\s+(?:19|20)\d{{2}}\b", re.IGNORECASE)
YEAR = re.compile(r"\b(?:19|20)\d{2}\b")
OPEN_MARKER = re.compile(rf"\b{_OPEN_END}\b", re.IGNORECASE)

TEMPORAL_QUERY_PATTERNS = [
    re.compile(r"\b(before|after|during|prior to|since|until|while)\b", re.IGNORECASE),
    re.compile(r"\b(career (?:progression|path|journey|history)|over the years|progress(?:ed|ion)?)\b", re.IGNORECASE),
    re.compile(r"\b(first|previous|earlier|later|next|then|subsequently|most recent|latest|timeline)\b", re.IGNORECASE),
    re.compile(r"\b(when did|how long|in (?:19|20)\d{2})\b", re.IGNORECASE),
]
BROAD_CONTEXT = re.compile(
    r"\b(career|progression|journey|over the years|overall|history|background)\b", re.IGNORECASE
)

_ANCHOR_LEADS = (
    r"(?:(?:i|you)\s+(?:joined|started at|worked at|moved to|left)\s+|"
    r"(?:joining|working at|working for|starting at|leaving|my time at|your time at|at)\s+)?"
)
BEFORE_PATTERN = re.compile(
    rf"\b(?:before|prior to|earlier than|preceding)\s+{_ANCHOR_LEADS}(?P<ref>[^?.!,;]+)", re.IGNORECASE
)
AFTER_PATTERN = re.compile(
    rf"\b(?:after|following|later than|since)\s+{_ANCHOR_LEADS}(?P<ref>[^?.!,;]+)", re.IGNORECASE
)
_REF_STOP = re.compile(r"\s+(?:and|or|but|where|when|what|how|did|do|was|were)\b.*$", re.IGNORECASE)


@dataclass
class DateRange:
    """A parsed employment/activity period."""
    start_year: int
    start_month: int
    end_year: int
    end_month: int
    is_open: bool = False
    text: str = ""

    @property
    def start(self) -> Tuple[int, int]:
        return (self.start_year, self.start_month)

    @property
    def end(self) -> Tuple[int, int]:
        return (self.end_year, self.end_month)


def _month_number(token: Optional[str], default: int) -> int:
    if not token:
        return default
    return MONTHS.get(token.strip(".").lower()[:3], default)


def parse_date_ranges(text: str, today: Optional[date] = None) -> List[DateRange]:
    """
    Find "Month Year – Month Year", "… – Present/Current" and "YYYY – YYYY" ranges.

    Open-ended ranges end at `today`. Year-only ranges span January to
    December. Ranges are returned in order of appearance.
    """
    if not text:
        return []
    today = today or date.today()
    found: List[Tuple[int, DateRange]] = []
    covered: List[Tuple[int, int]] = []

    for match in MONTH_RANGE.finditer(text):
        is_open = bool(match.group("open"))
        found.append((match.start(), DateRange(
            start_year=int(match.group("sy")),
            start_month=_month_number(match.group("sm"), 1),
            end_year=today.year if is_open else int(match.group("ey")),
            end_month=today.month if is_open else _month_number(match.group("em"), 12),
            is_open=is_open,
            text=match.group(0),
        )))
        covered.append(match.span())

    for match in YEAR_RANGE.finditer(text):
        if any(start <= match.start() < end for start, end in covered):
            continue
        is_open = bool(match.group("open"))
        found.append((match.start(), DateRange(
            start_year=int(match.group("sy")),
            start_month=1,
            end_year=today.year if is_open else int(match.group("ey")),
            end_month=today.month if is_open else 12,
            is_open=is_open,
            text=match.group(0),
        )))

    found.sort(key=lambda item: item[0])
    return [r for _, r in found]


def extract_temporal_markers(text: str) -> List[str]:
    """Date ranges, month-years, bare years and present/current mentions, deduplicated."""
    if not text:
        return []
    markers: List[str] = [r.text.strip() for r in parse_date_ranges(text)]
    markers.extend(m.group(0) for m in MONTH_YEAR.finditer(text))
    markers.extend(m.group(0) for m in YEAR.finditer(text))
    markers.extend(m.group(0).lower() for m in OPEN_MARKER.finditer(text))
    return list(dict.fromkeys(markers))


def is_temporal_query(query: str) -> bool:
    return any(p.search(query or "") for p in TEMPORAL_QUERY_PATTERNS)


def favors_broad_context(query: str) -> bool:
    return bool(BROAD_CONTEXT.search(query or ""))


def _clean_reference(raw: str) -> str:
    ref = _REF_STOP.sub("", raw.strip())
    ref = re.sub(r"^(?:the|my|your)\s+", "", ref, flags=re.IGNORECASE)
    return " ".join(ref.split()[:5]).strip(" '\"")


def detect_temporal_context(query: str) -> Optional[TemporalContext]:
    """Parse "before X" / "after X" out of a query; None when absent."""
    if not query:
        return None
    for kind, pattern in (("before", BEFORE_PATTERN), ("after", AFTER_PATTERN)):
        match = pattern.search(query)
        if not match:
            continue
        reference = _clean_reference(match.group("ref"))
        # "before that", "after 2019" are not organisation anchors
        if not reference or reference.lower() in {"that", "this", "then", "it", "them"}:
            continue
        year = int(reference) if YEAR.fullmatch(reference) else None
        return TemporalContext(type=kind, reference=reference, reference_year=year)
    return None


def compute_date_boost(
    context: Optional[TemporalContext],
    ranges: List[DateRange],
    settings: SearchSettings
) -> float:
    """
    Multiplier comparing a chunk's date ranges with the query anchor.

    "before X" compares against X's start: ranges ending before X's year get
    the strong boost, ranges ending earlier in that same year the partial
    boost, and chunks running past it are suppressed (harder when they start
    at or after X). "after X" compares against X's end: ranges starting at or
    after it get the strong boost, ranges ending by then are suppressed
    hardest. When the anchor month is unknown the same-year band falls back
    to first / second half of the year. Chunks without ranges, or queries
    without a resolved year, get the neutral factor.
    """
    if context is None or context.reference_year is None or not ranges:
        return settings.temporal_unknown_factor

    year, month = context.reference_year, context.reference_month
    earliest_start = min(ranges, key=lambda r: r.start)
    latest_end = max(ranges, key=lambda r: r.end)

    if context.type == "before":
        anchor = (year, month or 1)
        if latest_end.end_year < year:
            return settings.temporal_strong_boost
        if latest_end.end_year == year:
            ended_first = latest_end.end < anchor if month else latest_end.end_month <= 6
            if ended_first:
                return settings.temporal_partial_boost
        if earliest_start.start >= anchor:
            return settings.temporal_late_penalty
        return settings.temporal_overlap_penalty

    if month:
        anchor = (year, month)
        if earliest_start.start >= anchor:
            return settings.temporal_strong_boost
        if latest_end.end <= anchor:
            return settings.temporal_late_penalty
        return settings.temporal_overlap_penalty

    if earliest_start.start_year > year:
        return settings.temporal_strong_boost
    if earliest_start.start_year == year and earliest_start.start_month > 6:
        return settings.temporal_partial_boost
    if latest_end.end_year <= year:
        return settings.temporal_late_penalty
    return settings.temporal_overlap_penalty


def count_mentions(text: str, reference: str) -> int:
    if not text or not reference:
        return 0
    return len(re.findall(rf"\b{re.escape(reference)}\b", text, re.IGNORECASE))


def mention_penalty(text: str, context: Optional[TemporalContext], settings: SearchSettings) -> float:
    """Geometric penalty per surface mention of the anchor in a "before" query."""
    if context is None or context.type != "before":
        return 1.0
    mentions = count_mentions(text, context.reference)
    return settings.mention_penalty_base ** mentions if mentions else 1.0


YearMonth = Tuple[int, Optional[int]]


class TemporalReferenceResolver:
    """
    Resolve an anchor like "Globex" to the month it starts (or ends).

    Looks up base chunks mentioning the anchor and reads the date ranges on
    the lines that mention it. Without such ranges it falls back to every
    year in the chunk, and the month stays unknown.
    """

    def __init__(self, vector_store, settings: Optional[SearchSettings] = None, today: Optional[date] = None):
        self.vector_store = vector_store
        self.settings = settings or SearchSettings()
        self.today = today
        self.cache: ExpiringCache[Tuple[YearMonth, YearMonth]] = ExpiringCache(self.settings.temporal_reference_ttl)

    async def resolve(self, context: TemporalContext) -> TemporalContext:
        """Fill the anchor: its start for "before", its end for "after"."""
        if context.reference_year is not None:
            return context
        span = await self.cache.get_or_load(
            context.reference.lower(), lambda: self._lookup_span(context.reference)
        )
        if span:
            start, end = span
            context.reference_year, context.reference_month = start if context.type == "before" else end
            logger.info(
                f"Resolved temporal reference {context.reference!r} to "
                f"{context.reference_year}-{context.reference_month or '??'}"
            )
        else:
            logger.info(f"Could not resolve a year for temporal reference {context.reference!r}")
        return context

    async def _lookup_span(self, reference: str) -> Optional[Tuple[YearMonth, YearMonth]]:
        chunks = await self.vector_store.find_by_content(reference, chunk_level=0, limit=20)
        today = self.today or date.today()
        near: List[DateRange] = []
        all_years: List[int] = []

        for chunk in chunks:
            lines = chunk.content.splitlines()
            for i, line in enumerate(lines):
                if reference.lower() not in line.lower():
                    continue
                window = "\n".join(lines[i:i + 3])
                ranges = parse_date_ranges(window, today)
                if ranges:
                    # Only the first range belongs to the anchor's own line
                    near.append(ranges[0])

            sources = [chunk.content] + list(chunk.temporal_markers)
            for source in sources:
                all_years.extend(int(y) for y in YEAR.findall(source))

        near = [r for r in near if r.start_year <= today.year + 1]
        if near:
            return (min(r.start for r in near), max(r.end for r in near))
        years = [y for y in all_years if y <= today.year + 1]
        if not years:
            return None
        return ((min(years), None), (max(years), None))

    def clear_cache(self) -> None:
        self.cache.clear()
