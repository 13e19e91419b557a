"""Services for the Persona Retrieval Engine."""
from .chunking_engine import ChunkingEngine
from .hierarchy_builder import HierarchyBuilder
from .embedding_model import EmbeddingModel
from .vector_store import VectorStore
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError
from .oracle import LLMOracle, NullOracle
from .metadata_extractor import MetadataExtractor
from .category_registry import CategoryRegistry
from .query_classifier import QueryClassifier
from .temporal import TemporalReferenceResolver
from .cross_reference import CrossReferenceEngine
from .search_config import SearchConfigService
from .retrieval_engine import RetrievalEngine
from .ingestion import IngestionPipeline, IngestionOutcome

__all__ = [
    'ChunkingEngine', 'HierarchyBuilder', 'EmbeddingModel', 'VectorStore',
    'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError', 'LLMOracle', 'NullOracle',
    'MetadataExtractor', 'CategoryRegistry', 'QueryClassifier', 'TemporalReferenceResolver',
    'CrossReferenceEngine', 'SearchConfigService', 'RetrievalEngine', 'IngestionPipeline',
    'IngestionOutcome',
]
