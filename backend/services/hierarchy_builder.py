"""Build parent and grandparent chunks on top of base chunks."""
import copy
import logging
import uuid
from typing import List, Optional

from config import SearchSettings
from models.chunk import Chunk, HierarchicalChunk, SemanticBoundaries, estimate_tokens
from services.chunkers.base import semantic_overlap, split_into_sentences
from services.temporal import extract_temporal_markers

logger = logging.getLogger(__name__)

PROPORTIONAL = "proportional"
MEMBERSHIP = "membership"


def proportional_parent_index(child_index: int, child_count: int, parent_count: int) -> int:
    """Index of the parent owning `child_index` when each parent owns an equal share."""
    if child_count <= 0 or parent_count <= 0:
        return 0
    return min(parent_count - 1, (child_index * parent_count) // child_count)


class HierarchyBuilder:
    """
    Greedy merge of consecutive chunks into larger parents.

    A level-N chunk's content is always the concatenation of a contiguous
    run of level-(N-1) chunks from the same group.
    """

    def __init__(self, settings: Optional[SearchSettings] = None, parent_linking: str = PROPORTIONAL):
        """
        Args:
            settings: Provides the size multiplier and maximum depth
            parent_linking: "proportional" assigns parents by index fraction,
                "membership" uses the runs recorded while merging
        """
        if parent_linking not in (PROPORTIONAL, MEMBERSHIP):
            raise ValueError(f"Unknown parent linking mode: {parent_linking}")
        self.settings = settings or SearchSettings()
        self.parent_linking = parent_linking

    def build(
        self,
        base_chunks: List[Chunk],
        group_id: Optional[str] = None,
        base_budget: int = 800,
        max_levels: Optional[int] = None
    ) -> List[HierarchicalChunk]:
        """
        Wrap base chunks as level 0 and merge upward.

        Args:
            base_chunks: Ordered chunks from one document
            group_id: Shared by every level; generated when omitted
            base_budget: Token budget of the base chunker
            max_levels: Levels above the base (defaults to settings)

        Returns:
            Chunks of every level, ordered by level then sequence, with
            ids assigned and parent links set
        """
        if not base_chunks:
            return []
        group_id = group_id or str(uuid.uuid4())
        max_levels = self.settings.hierarchy_max_levels if max_levels is None else max_levels

        levels = [self._base_level(base_chunks, group_id)]
        budget = base_budget * self.settings.hierarchy_multiplier
        for level in range(1, max_levels + 1):
            below = levels[-1]
            if len(below) < 2:
                break
            parents = self.merge_level(below, level, budget)
            # Nothing merged: another level would just copy the one below
            if len(parents) == len(below):
                break
            levels.append(parents)
            if len(parents) < 2:
                break
            budget *= self.settings.hierarchy_multiplier

        self.link_parents(levels)
        all_chunks = [chunk for level in levels for chunk in level]
        logger.info(
            f"Built hierarchy for group {group_id}: "
            + ", ".join(f"level {i}={len(level)}" for i, level in enumerate(levels))
        )
        return all_chunks

    def _base_level(self, base_chunks: List[Chunk], group_id: str) -> List[HierarchicalChunk]:
        sentences = [split_into_sentences(c.content) for c in base_chunks]
        level: List[HierarchicalChunk] = []
        for i, chunk in enumerate(base_chunks):
            start_context = ""
            end_context = ""
            if i > 0 and sentences[i - 1]:
                start_context = " ".join(semantic_overlap(sentences[i - 1], 1))
            if i + 1 < len(base_chunks) and sentences[i + 1]:
                end_context = sentences[i + 1][0]
            level.append(HierarchicalChunk(
                id=str(uuid.uuid4()),
                content=chunk.content,
                category=chunk.category,
                chunk_index=chunk.chunk_index,
                total_chunks=chunk.total_chunks,
                tags=list(chunk.tags),
                processing_type=chunk.processing_type,
                source_id=chunk.source_id,
                metadata=copy.deepcopy(chunk.metadata),
                chunk_level=0,
                chunk_group_id=group_id,
                sequence_order=i,
                semantic_boundaries=SemanticBoundaries(
                    start_context=start_context,
                    end_context=end_context,
                    temporal_markers=extract_temporal_markers(chunk.content),
                ),
                overlap_strategy="semantic",
            ))
        return level

    def merge_level(self, below: List[HierarchicalChunk], level: int, budget: float) -> List[HierarchicalChunk]:
        """Accumulate consecutive chunks until the next one would exceed `budget`."""
        runs: List[List[HierarchicalChunk]] = []
        current: List[HierarchicalChunk] = []
        for chunk in below:
            if current:
                combined = "\n\n".join(c.content for c in current + [chunk])
                if estimate_tokens(combined) > budget:
                    runs.append(current)
                    current = []
            current.append(chunk)
        if current:
            runs.append(current)

        parents = [self._make_parent(run, level, sequence) for sequence, run in enumerate(runs)]
        total = len(parents)
        for index, parent in enumerate(parents):
            parent.chunk_index = index
            parent.total_chunks = total
        return parents

    def _make_parent(self, run: List[HierarchicalChunk], level: int, sequence: int) -> HierarchicalChunk:
        first, last = run[0], run[-1]
        markers: List[str] = []
        for child in run:
            markers.extend(child.temporal_markers)

        metadata = copy.deepcopy(first.metadata)
        metadata["child_count"] = len(run)
        tags = list(dict.fromkeys(tag for child in run for tag in child.tags))

        return HierarchicalChunk(
            id=str(uuid.uuid4()),
            content="\n\n".join(child.content for child in run),
            category=first.category,
            tags=tags,
            processing_type=first.processing_type,
            source_id=first.source_id,
            metadata=metadata,
            chunk_level=level,
            chunk_group_id=first.chunk_group_id,
            sequence_order=sequence,
            semantic_boundaries=SemanticBoundaries(
                start_context=first.semantic_boundaries.start_context,
                end_context=last.semantic_boundaries.end_context,
                temporal_markers=list(dict.fromkeys(markers)),
            ),
            overlap_strategy="semantic",
            child_sequence=[child.sequence_order for child in run],
        )

    def link_parents(self, levels: List[List[HierarchicalChunk]]) -> None:
        """Set parent_chunk_id on every chunk below the top level."""
        for depth in range(1, len(levels)):
            children, parents = levels[depth - 1], levels[depth]
            if self.parent_linking == MEMBERSHIP:
                owner = {seq: parent for parent in parents for seq in parent.child_sequence}
                for child in children:
                    parent = owner.get(child.sequence_order)
                    child.parent_chunk_id = parent.id if parent else None
                continue
            for index, child in enumerate(children):
                parent = parents[proportional_parent_index(index, len(children), len(parents))]
                child.parent_chunk_id = parent.id
