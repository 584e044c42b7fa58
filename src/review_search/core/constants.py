"""System-wide constants and configuration values."""

from typing import Final

# Embedding Model Constants
DEFAULT_EMBEDDING_MODEL: Final[str] = "BAAI/bge-small-en-v1.5"
EMBEDDING_DIMENSIONS: Final[int] = 384
BGE_QUERY_INSTRUCTION: Final[str] = "Represent this sentence for searching relevant passages: "
EMBEDDING_CACHE_KEY_LENGTH: Final[int] = 200
QUERY_CACHE_KEY_PREFIX: Final[str] = "query:"

# Retry Constants
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_BACKOFF_SECONDS: Final[float] = 2.0

# Storage Constants
LANCEDB_DIR_NAME: Final[str] = ".ai-review-lancedb"
MODEL_CACHE_DIR_NAME: Final[str] = ".ai-review-fastembed-cache"
FILE_EMBEDDINGS_TABLE: Final[str] = "file_embeddings"
DOCUMENT_CHUNK_TABLE: Final[str] = "document_chunk_embeddings"
PR_COMMENTS_TABLE: Final[str] = "pr_comments"
PROJECT_PATH_FIELD: Final[str] = "project_path"
STRUCTURE_ID_PREFIX: Final[str] = "__project_structure__"
STRUCTURE_TYPE: Final[str] = "directory-structure"

# Adaptive Index Constants
EXACT_SEARCH_MAX_ROWS: Final[int] = 1000
IVF_FLAT_MAX_ROWS: Final[int] = 10000
IVF_FLAT_ROWS_PER_PARTITION: Final[int] = 50
IVF_FLAT_MIN_PARTITIONS: Final[int] = 2
IVF_PQ_ROWS_PER_PARTITION: Final[int] = 100
IVF_PQ_MIN_PARTITIONS: Final[int] = 8
IVF_PQ_NUM_BITS: Final[int] = 8

# Project Guard Constants
MIN_PROJECT_PATH_SEGMENTS: Final[int] = 3

# Cache Constants
MAX_CACHE_SIZE: Final[int] = 1000
MAX_EMBEDDING_CACHE_SIZE: Final[int] = 1000

# Indexing Constants
EMBEDDING_BATCH_SIZE: Final[int] = 50
MAX_CODE_FILE_SIZE_BYTES: Final[int] = 1024 * 1024
MAX_DOC_FILE_SIZE_BYTES: Final[int] = 5 * 1024 * 1024
MAX_CODE_FILE_LINES: Final[int] = 1000
DIRECTORY_TREE_MAX_DEPTH: Final[int] = 5

# Retrieval Constants
MIN_OVERFETCH_ROWS: Final[int] = 20
OVERFETCH_FACTOR: Final[int] = 3
DEFAULT_DOC_LIMIT: Final[int] = 10
DEFAULT_DOC_SIMILARITY_THRESHOLD: Final[float] = 0.1
DEFAULT_CODE_LIMIT: Final[int] = 5
DEFAULT_CODE_SIMILARITY_THRESHOLD: Final[float] = 0.7
STRUCTURE_SIMILARITY_THRESHOLD: Final[float] = 0.5
MIN_RESULTS_FOR_RERANKING: Final[int] = 3
CONTEXT_BATCH_SIZE: Final[int] = 3
CONTEXT_BATCH_PAUSE_SECONDS: Final[float] = 0.01

# Reranking Weights
WEIGHT_INITIAL_SIMILARITY: Final[float] = 0.3
WEIGHT_HEADING_RELEVANCE: Final[float] = 0.15
BOOST_SAME_AREA: Final[float] = 0.4
BOOST_TECH_MATCH: Final[float] = 0.2
PENALTY_AREA_MISMATCH: Final[float] = -0.1
PENALTY_GENERIC_DOC: Final[float] = -0.1
WEIGHT_PATH_SIMILARITY: Final[float] = 0.1
GENERIC_CONTEXT_MATCH_THRESHOLD: Final[float] = 0.4

# Context Areas
AREA_UNKNOWN: Final[str] = "Unknown"
AREA_GENERAL: Final[str] = "General"
AREA_GENERAL_JS_TS: Final[str] = "GeneralJS_TS"
AREA_SCORE_THRESHOLD: Final[float] = 0.4
MAX_CONTEXT_CHARS: Final[int] = 2000

# Document Classifier Constants
CLASSIFIER_KEYWORDS: Final[str] = "keywords"
CLASSIFIER_ZERO_SHOT: Final[str] = "zero-shot"
DEFAULT_CLASSIFIER_MODEL: Final[str] = "typeform/mobilebert-uncased-mnli"
CLASSIFIER_MAX_CHARS: Final[int] = 1000
DOMAIN_MIN_CONFIDENCE: Final[float] = 0.3
TECHNOLOGY_MIN_CONFIDENCE: Final[float] = 0.35

# Custom Document Constants
CUSTOM_CHUNK_MAX_CHARS: Final[int] = 1000
CUSTOM_CHUNK_MIN_CHARS: Final[int] = 100
DEFAULT_CUSTOM_DOC_LIMIT: Final[int] = 5
DEFAULT_CUSTOM_DOC_THRESHOLD: Final[float] = 0.3
MIN_CUSTOM_RESULTS_FOR_RERANKING: Final[int] = 2

# Logging Constants
DEFAULT_LOG_LEVEL: Final[str] = "INFO"
