"""Configuration management for the Persona Retrieval Engine."""
import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Model Configuration
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "sentence-transformers/all-mpnet-base-v2")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "768"))
CLASSIFIER_MODEL = os.getenv("CLASSIFIER_MODEL", "llama-3.1-8b-instant")
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "llama-3.3-70b-versatile")

# Storage Configuration
CHUNKS_TABLE = os.getenv("CHUNKS_TABLE", "content_chunks")
SEARCH_CONFIG_TABLE = os.getenv("SEARCH_CONFIG_TABLE", "search_configuration")

# Chunking Configuration
DEFAULT_CHUNK_SIZE = 800  # tokens
DEFAULT_CHUNK_OVERLAP = 100  # tokens
CATEGORY_CHUNK_SIZES: Dict[str, int] = {
    "resume": 600,
    "experience": 1000,
    "projects": 1000,
    "communication": 800,
    "skills": 600,
}
STYLE_SOURCE_TAG = "communication-style-source"

# Default categories used when discovery yields nothing
DEFAULT_CATEGORIES: List[str] = [
    "resume", "experience", "projects", "communication", "skills", "personal"
]


@dataclass
class SearchSettings:
    """
    Tunable constants for chunking, classification and ranking.

    Built once at startup and passed to every service that needs it, so
    tests can construct their own instance with different numbers.
    """
    # Scoring weights
    similarity_weight: float = 0.70
    category_weight: float = 0.20
    tag_weight: float = 0.10
    tag_boost: float = 0.1

    # Thresholds
    default_threshold: float = 0.3
    basic_fallback_threshold: float = 0.3
    temporal_threshold_floor: float = 0.05
    temporal_threshold_factor: float = 0.25
    preference_threshold_floor: float = 0.08
    preference_threshold_cap: float = 0.12
    preference_threshold_factor: float = 0.5

    # Hierarchy
    hierarchy_multiplier: float = 2.5
    hierarchy_max_levels: int = 2
    parent_linking: str = "proportional"  # or "membership"
    superset_factor: int = 2
    prefer_parent_level_weights: Dict[int, float] = field(
        default_factory=lambda: {0: 0.9, 1: 1.0, 2: 0.8}
    )
    prefer_base_level_weights: Dict[int, float] = field(
        default_factory=lambda: {0: 1.0, 1: 0.8, 2: 0.6}
    )

    # Temporal boosts ("before X" / "after X")
    temporal_strong_boost: float = 4.0
    temporal_partial_boost: float = 3.5
    temporal_overlap_penalty: float = 0.08
    temporal_late_penalty: float = 0.02
    temporal_unknown_factor: float = 1.0
    mention_penalty_base: float = 0.3
    temporal_marker_boost: float = 1.1
    parent_level_temporal_boost: float = 1.2

    # Preference queries
    preference_boost: float = 4.0
    preference_min_weight: float = 0.9
    skills_min_weight: float = 0.8
    preference_categories: List[str] = field(
        default_factory=lambda: ["skills", "personal"]
    )
    preference_supplement_limit: int = 5
    preference_supplement_factor: float = 1.01
    preference_tags: List[str] = field(
        default_factory=lambda: ["preferences", "work-preferences", "career-goals", "work-style", "ideal-role"]
    )
    demotion_factor: float = 0.99

    # Classifier
    semantic_floor_weight: float = 0.2
    static_fallback_weight: float = 0.5
    unweighted_category_weight: float = 0.1
    category_sample_size: int = 100

    # Cross references
    cross_reference_limit: int = 15
    primary_category_weight: float = 0.7
    secondary_category_weight: float = 0.3

    # Embedding batches
    embedding_batch_size: int = 10
    embedding_batch_delay: float = 1.0

    # Cache TTLs (seconds)
    config_cache_ttl: float = 300.0
    temporal_reference_ttl: float = 600.0
    category_registry_ttl: float = 900.0

    @classmethod
    def from_env(cls) -> "SearchSettings":
        """Build settings, overriding a handful of values from the environment."""
        settings = cls()
        overrides = {
            "default_threshold": "SEARCH_DEFAULT_THRESHOLD",
            "temporal_strong_boost": "TEMPORAL_STRONG_BOOST",
            "temporal_partial_boost": "TEMPORAL_PARTIAL_BOOST",
            "preference_boost": "PREFERENCE_BOOST",
            "hierarchy_multiplier": "HIERARCHY_MULTIPLIER",
            "category_registry_ttl": "CATEGORY_REGISTRY_TTL",
        }
        for attr, env_name in overrides.items():
            value = os.getenv(env_name)
            if value:
                setattr(settings, attr, float(value))
        return settings


# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
