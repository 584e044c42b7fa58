"""Core infrastructure components."""

from .constants import EMBEDDING_DIMENSIONS, FILE_EMBEDDINGS_TABLE, DOCUMENT_CHUNK_TABLE, PR_COMMENTS_TABLE

__all__ = [
    "EMBEDDING_DIMENSIONS",
    "FILE_EMBEDDINGS_TABLE",
    "DOCUMENT_CHUNK_TABLE",
    "PR_COMMENTS_TABLE",
]
