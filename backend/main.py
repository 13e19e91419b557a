"""Main entry point for the Persona Retrieval Engine API."""
import logging
from dataclasses import asdict
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import (
    PORT, LOG_LEVEL, LOG_FORMAT, CORS_ORIGINS, CLASSIFIER_MODEL, EXTRACTION_MODEL, SearchSettings
)
from logger import setup_logging
from models.api import (
    SearchRequest, SearchResponseModel, SearchResultModel, CategoryWeightModel,
    ChunkRequest, ChunkResponse, ChunkModel
)
from models.search import SearchOptions
from services.category_registry import CategoryRegistry
from services.chunking_engine import ChunkingEngine
from services.cross_reference import CrossReferenceEngine
from services.embedding_model import EmbeddingModel
from services.hierarchy_builder import HierarchyBuilder
from services.ingestion import IngestionPipeline
from services.llm_client import LLMClient
from services.metadata_extractor import MetadataExtractor
from services.oracle import LLMOracle, NullOracle
from services.query_classifier import QueryClassifier
from services.retrieval_engine import RetrievalEngine
from services.search_config import SearchConfigService
from services.temporal import TemporalReferenceResolver
from services.vector_store import VectorStore

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Persona Retrieval Engine",
    description="Hierarchical chunking and multi-signal retrieval over personal knowledge",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
retrieval_engine: RetrievalEngine = None
chunking_engine: ChunkingEngine = None
ingestion_pipeline: IngestionPipeline = None
category_registry: CategoryRegistry = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global retrieval_engine, chunking_engine, ingestion_pipeline, category_registry

    setup_logging(LOG_LEVEL, LOG_FORMAT)
    logger.info("Initializing Persona Retrieval Engine services...")

    try:
        settings = SearchSettings.from_env()

        embedding_model = EmbeddingModel()
        vector_store = VectorStore()

        try:
            llm_client = LLMClient()
            extraction_oracle = LLMOracle(llm_client, EXTRACTION_MODEL)
            classifier_oracle = LLMOracle(llm_client, CLASSIFIER_MODEL)
        except ValueError as e:
            logger.warning(f"LLM unavailable, running with rule-based fallbacks only: {e}")
            extraction_oracle = classifier_oracle = NullOracle()

        metadata_extractor = MetadataExtractor(extraction_oracle)
        category_registry = CategoryRegistry(vector_store, metadata_extractor, settings)
        classifier = QueryClassifier(category_registry, classifier_oracle, embedding_model, settings)

        retrieval_engine = RetrievalEngine(
            vector_store,
            embedding_model,
            classifier,
            settings=settings,
            resolver=TemporalReferenceResolver(vector_store, settings),
            metadata_extractor=metadata_extractor,
            cross_reference_engine=CrossReferenceEngine(vector_store, settings),
            config_service=SearchConfigService(vector_store.client, ttl_seconds=settings.config_cache_ttl),
        )

        chunking_engine = ChunkingEngine(extraction_oracle)
        ingestion_pipeline = IngestionPipeline(
            chunking_engine,
            HierarchyBuilder(settings, settings.parent_linking),
            embedding_model,
            vector_store,
            metadata_extractor=metadata_extractor,
            settings=settings,
        )

        category_registry.start_background_refresh()
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the category refresh loop."""
    if category_registry is not None:
        await category_registry.stop()


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Persona Retrieval Engine API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "persona-retrieval-engine",
        "version": "1.0.0"
    }


@app.post("/search", response_model=SearchResponseModel)
async def search_endpoint(request: SearchRequest) -> SearchResponseModel:
    """
    Rank stored chunks for a query.

    Args:
        request: SearchRequest with query and search options

    Returns:
        SearchResponseModel with ranked results, category weights and
        cross references

    Raises:
        HTTPException: 400 for a missing query, 500 when the search raises.
            A failure the engine reports itself comes back in `error`
            with no results
    """
    if not request.query or not request.query.strip():
        raise HTTPException(status_code=400, detail="Query field is required and cannot be empty")

    logger.info(f"Processing search: {request.query[:100]}...")
    options = SearchOptions(
        limit=request.limit,
        threshold=request.threshold,
        categories=request.categories,
        enable_hierarchical_search=request.enable_hierarchical_search,
        prefer_parent_chunks=request.prefer_parent_chunks,
        enable_cross_references=request.enable_cross_references,
    )

    try:
        response = await retrieval_engine.search(request.query, options)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error processing search: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")

    return SearchResponseModel(
        results=[SearchResultModel(**r.to_dict()) for r in response.results],
        category_weights=[CategoryWeightModel(**asdict(w)) for w in response.category_weights],
        query_tags=response.query_tags,
        search_time_ms=response.search_time,
        search_method=response.search_method,
        cross_references=response.cross_references.to_dict() if response.cross_references else None,
        temporal_context=asdict(response.temporal_context) if response.temporal_context else None,
        error=response.error,
    )


@app.post("/chunk", response_model=ChunkResponse)
async def chunk_endpoint(request: ChunkRequest) -> ChunkResponse:
    """
    Chunk a document, optionally storing it with its hierarchy.

    Raises:
        HTTPException: 400 for invalid content or category, 500 on failure
    """
    report = chunking_engine.validate_content(request.category, request.content)
    if not report.is_valid:
        raise HTTPException(status_code=400, detail="; ".join(report.errors))

    try:
        result = await chunking_engine.chunk_cross_category(
            request.category, request.content, request.tags, request.source_id
        )
        stored_chunks = None
        group_id = None
        error = None
        if request.store:
            outcome = await ingestion_pipeline.ingest(
                request.category, request.content, request.tags, request.source_id,
                chunking_result=result,
            )
            stored_chunks = outcome.stored_chunks
            group_id = outcome.chunk_group_id
            error = outcome.error
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error chunking {request.category} content: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")

    return ChunkResponse(
        chunks=[
            ChunkModel(
                content=c.content,
                category=c.category,
                chunk_index=c.chunk_index,
                total_chunks=c.total_chunks,
                tags=c.tags,
                processing_type=c.processing_type,
                metadata=c.metadata,
            )
            for c in result.chunks
        ],
        total_chunks=result.total_chunks,
        processing_time_ms=result.processing_time,
        has_dual_purpose=result.has_dual_purpose,
        category_stats=result.category_stats,
        warnings=report.warnings,
        stored_chunks=stored_chunks,
        chunk_group_id=group_id,
        error=error,
    )


@app.get("/stats")
async def stats_endpoint():
    """Search counters, store statistics and discovered categories."""
    try:
        stats = await retrieval_engine.search_stats()
        categories = await category_registry.categories()
    except Exception as e:
        logger.error(f"Failed to collect statistics: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")

    stats["categories"] = [c.category for c in categories]
    return stats


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
