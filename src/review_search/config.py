"""Configuration management for the review search system."""

from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .core.constants import (
    DEFAULT_EMBEDDING_MODEL, EMBEDDING_DIMENSIONS, LANCEDB_DIR_NAME, MODEL_CACHE_DIR_NAME,
    FILE_EMBEDDINGS_TABLE, DOCUMENT_CHUNK_TABLE, PR_COMMENTS_TABLE,
    DEFAULT_MAX_RETRIES, DEFAULT_RETRY_BACKOFF_SECONDS, MAX_CACHE_SIZE, MAX_EMBEDDING_CACHE_SIZE,
    EMBEDDING_BATCH_SIZE, MAX_CODE_FILE_LINES, DEFAULT_DOC_LIMIT, DEFAULT_DOC_SIMILARITY_THRESHOLD,
    DEFAULT_CODE_LIMIT, DEFAULT_CODE_SIMILARITY_THRESHOLD, DEFAULT_LOG_LEVEL,
    CLASSIFIER_KEYWORDS, CLASSIFIER_ZERO_SHOT, DEFAULT_CLASSIFIER_MODEL
)


class StorageConfig(BaseSettings):
    """Vector store configuration settings."""

    db_path: Path = Field(default=Path.home() / LANCEDB_DIR_NAME, alias="REVIEW_SEARCH_DB_PATH")
    file_table: str = Field(default=FILE_EMBEDDINGS_TABLE, alias="FILE_EMBEDDINGS_TABLE")
    document_table: str = Field(default=DOCUMENT_CHUNK_TABLE, alias="DOCUMENT_CHUNK_TABLE")
    comments_table: str = Field(default=PR_COMMENTS_TABLE, alias="PR_COMMENTS_TABLE")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True
    )

    @property
    def table_names(self) -> list:
        return [self.file_table, self.document_table, self.comments_table]


class SemanticSearchConfig(BaseSettings):
    """Semantic search configuration settings."""

    # Embedding Model Configuration
    embedding_model: str = Field(default=DEFAULT_EMBEDDING_MODEL, alias="EMBEDDING_MODEL")
    embedding_dimensions: int = Field(default=EMBEDDING_DIMENSIONS, alias="EMBEDDING_DIMENSIONS", gt=0)
    embedding_device: str = Field(default="auto", alias="EMBEDDING_DEVICE")  # auto, cpu, cuda
    embedding_cache_dir: Path = Field(default=Path.home() / MODEL_CACHE_DIR_NAME, alias="EMBEDDING_CACHE_DIR")
    embedding_batch_size: int = Field(default=EMBEDDING_BATCH_SIZE, alias="EMBEDDING_BATCH_SIZE", gt=0)
    max_sequence_length: int = Field(default=512, alias="MAX_SEQUENCE_LENGTH", gt=0)
    model_max_retries: int = Field(default=DEFAULT_MAX_RETRIES, alias="MODEL_MAX_RETRIES", gt=0, le=10)
    model_retry_backoff_seconds: float = Field(
        default=DEFAULT_RETRY_BACKOFF_SECONDS, alias="MODEL_RETRY_BACKOFF_SECONDS", ge=0.0
    )

    # Cache Configuration
    max_cache_size: int = Field(default=MAX_CACHE_SIZE, alias="MAX_CACHE_SIZE", gt=0)
    max_embedding_cache_size: int = Field(default=MAX_EMBEDDING_CACHE_SIZE, alias="MAX_EMBEDDING_CACHE_SIZE", gt=0)

    # Retrieval Configuration
    doc_similarity_threshold: float = Field(default=DEFAULT_DOC_SIMILARITY_THRESHOLD, alias="DOC_SIMILARITY_THRESHOLD")
    doc_result_limit: int = Field(default=DEFAULT_DOC_LIMIT, alias="DOC_RESULT_LIMIT", gt=0, le=100)
    code_similarity_threshold: float = Field(default=DEFAULT_CODE_SIMILARITY_THRESHOLD, alias="CODE_SIMILARITY_THRESHOLD")
    code_result_limit: int = Field(default=DEFAULT_CODE_LIMIT, alias="CODE_RESULT_LIMIT", gt=0, le=100)

    # Indexing Configuration
    max_code_file_lines: int = Field(default=MAX_CODE_FILE_LINES, alias="MAX_CODE_FILE_LINES", gt=0)

    # Document Classification Configuration
    document_classifier: str = Field(default=CLASSIFIER_KEYWORDS, alias="DOCUMENT_CLASSIFIER")  # keywords, zero-shot
    document_classifier_model: str = Field(default=DEFAULT_CLASSIFIER_MODEL, alias="DOCUMENT_CLASSIFIER_MODEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True
    )

    @field_validator("doc_similarity_threshold", "code_similarity_threshold")
    @classmethod
    def validate_threshold(cls, v):
        """Similarity thresholds live in the unit interval."""
        if not 0.0 <= v <= 1.0:
            raise ConfigurationError(f"Similarity threshold must be within [0, 1], got {v}")
        return v

    @field_validator("document_classifier")
    @classmethod
    def validate_classifier(cls, v):
        if v not in (CLASSIFIER_KEYWORDS, CLASSIFIER_ZERO_SHOT):
            raise ConfigurationError(f"Unsupported document classifier: {v}")
        return v

    @model_validator(mode='after')
    def validate_device(self):
        """Validate the embedding device selection."""
        if self.embedding_device not in ("auto", "cpu", "cuda", "mps"):
            raise ConfigurationError(f"Unsupported embedding device: {self.embedding_device}")
        return self


class AppConfig(BaseSettings):
    """Application configuration settings."""

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Logging
    log_level: str = Field(default=DEFAULT_LOG_LEVEL, alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True
    )


class Config:
    """Main configuration class."""

    def __init__(self) -> None:
        self.storage = StorageConfig()
        self.app = AppConfig()
        self.semantic = SemanticSearchConfig()

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment and .env file."""
        return cls()


# Global configuration instance
config = Config.load()
