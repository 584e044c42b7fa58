"""Semantic indexing and retrieval over project files and documentation."""

from .custom_documents import CustomDocumentProcessor
from .embeddings import EmbeddingBackend, ModelManager, TransformersBackend
from .indexer import Indexer
from .models import CustomDocument, CustomDocumentChunk, IndexResult, IndexStrategy, SearchResult
from .search import Retriever
from .storage import EmbeddingStore
from .system import SemanticSearchSystem

__all__ = [
    "CustomDocumentProcessor",
    "CustomDocument",
    "CustomDocumentChunk",
    "EmbeddingBackend",
    "ModelManager",
    "TransformersBackend",
    "Indexer",
    "IndexResult",
    "IndexStrategy",
    "SearchResult",
    "Retriever",
    "EmbeddingStore",
    "SemanticSearchSystem",
]
