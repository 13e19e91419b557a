"""LLM-driven metadata extraction for chunks and queries."""
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional

from models.metadata import COMPLEXITY_LEVELS, SCOPES, TEMPORAL_CONTEXTS, ExtractedMetadata

logger = logging.getLogger(__name__)

MAX_ITEMS = 20
LIST_FIELDS = (
    "entities", "categories", "key_topics", "tools", "concepts", "relationships",
    "environment", "outcomes", "challenges", "temporal_relationships",
    "time_references", "content_structure",
)
# The prompt asks for camelCase keys; accept both spellings
CAMEL_CASE = {
    "keyTopics": "key_topics",
    "temporalRelationships": "temporal_relationships",
    "timeReferences": "time_references",
    "contentStructure": "content_structure",
    "temporalContext": "temporal_context",
    "complexityLevel": "complexity_level",
    "domainSpecific": "domain_specific",
}

SYSTEM_PROMPT = (
    "You are an expert at analyzing any type of content and extracting structured metadata. "
    "Focus on semantic understanding rather than pattern matching. "
    "Always respond with valid JSON only, no additional text."
)

EXTRACTION_PROMPT = """Analyze this {category} content and extract semantic metadata that helps with content discovery and with relating content to other content.

Content:
\"\"\"{content}\"\"\"

Return JSON with these fields, including only fields with data found in the content:
{{
  "entities": [], "categories": [], "keyTopics": [], "tools": [], "concepts": [],
  "relationships": [], "environment": [], "outcomes": [], "challenges": [],
  "temporalRelationships": [], "timeReferences": [], "contentStructure": [],
  "complexityLevel": "basic|intermediate|advanced|expert",
  "scope": "narrow|focused|broad|comprehensive",
  "domainSpecific": {{}}
}}

Rules:
- Be specific; do not infer what is not stated
- "temporalRelationships" captures sequences and before/after relationships
- "timeReferences" lists dates, periods and relative time markers
- Return only valid JSON"""


def determine_temporal_context(time_references: List[str], today: Optional[date] = None) -> str:
    """Classify a set of time references as current, recent, historical, mixed or timeless."""
    current_year = (today or date.today()).year
    text = " ".join(time_references).lower()

    if any(word in text for word in ("current", "now", "today")) or str(current_year) in text:
        return "current"
    if "recent" in text or "last year" in text or str(current_year - 1) in text:
        return "recent"

    years = [int(y) for y in re.findall(r"\b(?:19|20)\d{2}\b", text)]
    if any(year < current_year - 2 for year in years) or "historical" in text or "past" in text:
        return "historical"
    if len(time_references) > 2:
        return "mixed"
    return "timeless"


def validate_metadata(data: Dict[str, Any]) -> ExtractedMetadata:
    """
    Clean an LLM payload into ExtractedMetadata.

    List fields keep non-empty strings only, trimmed to MAX_ITEMS. Enum
    fields outside their allowed values are dropped to the defaults.
    """
    data = {CAMEL_CASE.get(key, key): value for key, value in (data or {}).items()}
    metadata = ExtractedMetadata()

    for name in LIST_FIELDS:
        value = data.get(name)
        if isinstance(value, list):
            cleaned = [item.strip() for item in value if isinstance(item, str) and item.strip()]
            setattr(metadata, name, cleaned[:MAX_ITEMS])

    if data.get("complexity_level") in COMPLEXITY_LEVELS:
        metadata.complexity_level = data["complexity_level"]
    if data.get("scope") in SCOPES:
        metadata.scope = data["scope"]
    if data.get("temporal_context") in TEMPORAL_CONTEXTS:
        metadata.temporal_context = data["temporal_context"]
    if isinstance(data.get("domain_specific"), dict):
        metadata.domain_specific = data["domain_specific"]
    return metadata


def minimal_metadata(category: str) -> ExtractedMetadata:
    return ExtractedMetadata(key_topics=[category], complexity_level="intermediate", scope="focused")


class MetadataExtractor:
    """Extract entities, topics, tools and temporal signals through the LLM oracle."""

    def __init__(self, oracle, today: Optional[date] = None):
        self.oracle = oracle
        self.today = today

    async def extract(self, content: str, category: str) -> ExtractedMetadata:
        """
        Extract metadata for one piece of content.

        Args:
            content: Chunk or query text
            category: Content category, used in the prompt

        Returns:
            Validated metadata, or minimal metadata when the LLM gives nothing
        """
        prompt = EXTRACTION_PROMPT.format(category=category, content=content)
        payload = await self.oracle.complete_json(SYSTEM_PROMPT, prompt, max_tokens=1200)
        if payload is None:
            logger.warning(f"Metadata extraction failed for {category} content, using minimal metadata")
            return minimal_metadata(category)

        metadata = validate_metadata(payload)
        if metadata.time_references:
            metadata.temporal_context = determine_temporal_context(metadata.time_references, self.today)
        logger.debug(
            f"Extracted metadata for {category}: {len(metadata.entities)} entities, "
            f"{len(metadata.tools)} tools, {len(metadata.key_topics)} topics"
        )
        return metadata

    async def describe_category(self, category: str, sample_content: str) -> Optional[str]:
        """One or two sentences describing what a category contains."""
        prompt = (
            f'Based on this sample content from the "{category}" category, write a brief '
            f"1-2 sentence description of what this category contains:\n\n"
            f'Sample content:\n"{sample_content[:300]}..."\n\nDescription:'
        )
        return await self.oracle.complete_text(prompt, max_tokens=100)
