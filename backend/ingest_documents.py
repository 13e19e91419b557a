"""
Document Ingestion Script for the Persona Retrieval Engine.

This script:
1. Reads text/markdown documents from the given files or directories
2. Chunks each document with its category's strategy
3. Builds the chunk hierarchy and extracts metadata per chunk
4. Generates embeddings using HuggingFace API
5. Stores everything in Supabase pgvector

A document's category is taken from --category, or else from the name of
the directory it sits in (e.g. content/experience/acme.md).

Usage:
    python ingest_documents.py content/
    python ingest_documents.py notes.md --category communication --tags communication-style-source
    python ingest_documents.py resume.md --category resume --reingest <group-id>
"""
import argparse
import asyncio
import sys
import logging
from pathlib import Path
from typing import Dict, List, Optional

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from config import EXTRACTION_MODEL, SearchSettings
from services.chunking_engine import ChunkingEngine
from services.embedding_model import EmbeddingModel
from services.hierarchy_builder import HierarchyBuilder
from services.ingestion import IngestionOutcome, IngestionPipeline
from services.llm_client import LLMClient
from services.metadata_extractor import MetadataExtractor
from services.oracle import LLMOracle, NullOracle
from services.vector_store import VectorStore

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = {".md", ".txt"}


def collect_documents(paths: List[str], category: Optional[str], tags: List[str], known: List[str]) -> List[Dict]:
    """
    Expand files and directories into ingestion items.

    Raises:
        ValueError: If a document's category cannot be determined
    """
    files: List[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob("*") if p.suffix.lower() in DOCUMENT_SUFFIXES))
        elif path.is_file():
            files.append(path)
        else:
            logger.warning(f"Skipping missing path: {raw}")

    items = []
    for file in files:
        doc_category = category or file.parent.name.lower()
        if doc_category not in known:
            raise ValueError(
                f"Cannot determine category for {file}; pass --category ({', '.join(known)})"
            )
        items.append({
            "category": doc_category,
            "content": file.read_text(encoding="utf-8"),
            "tags": list(tags),
            "source_id": file.stem,
        })
    return items


def build_pipeline(settings: SearchSettings, use_llm: bool = True) -> IngestionPipeline:
    oracle = NullOracle()
    if use_llm:
        try:
            oracle = LLMOracle(LLMClient(), EXTRACTION_MODEL)
        except ValueError as e:
            logger.warning(f"LLM unavailable, ingesting with rule-based chunking only: {e}")

    return IngestionPipeline(
        ChunkingEngine(oracle),
        HierarchyBuilder(settings, settings.parent_linking),
        EmbeddingModel(),
        VectorStore(),
        metadata_extractor=MetadataExtractor(oracle) if use_llm else None,
        settings=settings,
    )


def report(outcomes: List[IngestionOutcome]) -> None:
    logger.info("=" * 60)
    logger.info("INGESTION COMPLETE")
    logger.info("=" * 60)
    for outcome in outcomes:
        if outcome.error:
            logger.info(f"  x {outcome.source_id} ({outcome.category}): {outcome.error}")
            continue
        levels = ", ".join(f"L{level}={count}" for level, count in sorted(outcome.levels.items()))
        logger.info(
            f"  - {outcome.source_id} ({outcome.category}): {outcome.stored_chunks}/{outcome.total_chunks} "
            f"stored [{levels}] group={outcome.chunk_group_id}"
        )
    stored = sum(o.stored_chunks for o in outcomes)
    logger.info(f"Documents processed: {len(outcomes)}, chunks stored: {stored}")


async def run(args: argparse.Namespace) -> int:
    settings = SearchSettings.from_env()
    pipeline = build_pipeline(settings, use_llm=not args.no_llm)
    tags = [t.strip() for t in (args.tags or "").split(",") if t.strip()]
    items = collect_documents(args.paths, args.category, tags, pipeline.chunking_engine.categories)
    if not items:
        logger.error("No documents found")
        return 1

    logger.info("Warming up embedding model...")
    await pipeline.embedding_model.warmup()

    if args.reingest:
        if len(items) != 1:
            logger.error("--reingest takes exactly one document")
            return 1
        item = items[0]
        outcomes = [await pipeline.reingest(
            args.reingest, item["category"], item["content"], item["tags"], item["source_id"]
        )]
    else:
        outcomes = await pipeline.ingest_many(items)

    report(outcomes)
    return 0 if all(o.succeeded for o in outcomes) else 1


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest documents into the chunk store")
    parser.add_argument("paths", nargs="+", help="Files or directories to ingest")
    parser.add_argument("--category", help="Category for every document (default: parent directory name)")
    parser.add_argument("--tags", help="Comma-separated tags added to every chunk")
    parser.add_argument("--reingest", metavar="GROUP_ID", help="Replace an existing chunk group")
    parser.add_argument("--no-llm", action="store_true", help="Skip LLM metadata extraction and classification")
    return parser.parse_args(argv)


def main():
    """Main ingestion process."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logger.warning("Ingestion interrupted by user")
        sys.exit(1)
    except (ValueError, RuntimeError) as e:
        logger.error(f"Ingestion failed: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
