"""Data models for the semantic search system."""

from typing import List, Dict, Any, Optional, Type
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
import hashlib
import re

import pyarrow as pa
from lancedb.pydantic import LanceModel, Vector

from ..core.constants import EMBEDDING_DIMENSIONS, STRUCTURE_ID_PREFIX


def compute_content_hash(content: str) -> str:
    """Short digest of text used to detect content changes."""
    return hashlib.md5(content.encode("utf-8")).hexdigest()[:8]


def slugify(text: Optional[str]) -> str:
    """Slugify text for use in record ids."""
    if not text:
        return ""
    slug = re.sub(r"\s+", "-", str(text).lower().strip())
    slug = re.sub(r"[^\w-]+", "", slug)
    return re.sub(r"--+", "-", slug)


def file_record_id(relative_path: str, content_hash: str) -> str:
    return f"{relative_path}#{content_hash}"


def chunk_record_id(relative_doc_path: str, heading: Optional[str], start_line: int) -> str:
    return f"{relative_doc_path}#{slugify(heading or 'section')}_{start_line}"


def custom_chunk_id(document_title: str, chunk_index: int) -> str:
    return f"{slugify(document_title)}_chunk_{chunk_index}"


def structure_record_id(project_path: str) -> str:
    """Id of the per-project directory structure snapshot."""
    return f"{STRUCTURE_ID_PREFIX}{Path(project_path).name}"


class ScopedRecord(LanceModel):
    """Fields shared by every stored entity: project scope, content hash and vector."""

    id: str
    project_path: str
    content_hash: str
    vector: Vector(EMBEDDING_DIMENSIONS)


class FileEmbeddingRecord(ScopedRecord):
    """A whole source file, or the directory structure snapshot of a project."""

    content: str
    type: str = "file"
    name: str
    path: str
    language: Optional[str] = None
    last_modified: str


class DocumentChunkRecord(ScopedRecord):
    """One heading-delimited chunk of a documentation file."""

    content: str
    original_document_path: str
    heading_text: Optional[str] = None
    document_title: Optional[str] = None
    start_line: int = 1
    language: Optional[str] = "markdown"
    last_modified: str


class PRCommentRecord(ScopedRecord):
    """A historical review comment; ``vector`` holds the combined comment+code embedding."""

    pr_number: int
    repository: str
    comment_type: str
    comment_text: str
    comment_embedding: Vector(EMBEDDING_DIMENSIONS)
    code_embedding: Optional[Vector(EMBEDDING_DIMENSIONS)] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    line_range_start: Optional[int] = None
    line_range_end: Optional[int] = None
    original_code: Optional[str] = None
    suggested_code: Optional[str] = None
    diff_hunk: Optional[str] = None
    author: str
    created_at: str
    updated_at: Optional[str] = None
    review_id: Optional[str] = None
    review_state: Optional[str] = None
    issue_category: Optional[str] = None
    severity: Optional[str] = None
    pattern_tags: Optional[str] = None


def arrow_schema_for(record_type: Type[LanceModel], dimensions: int = EMBEDDING_DIMENSIONS) -> pa.Schema:
    """Arrow schema of a record type with its vector columns sized to ``dimensions``."""
    schema = record_type.to_arrow_schema()
    for index, schema_field in enumerate(schema):
        if pa.types.is_fixed_size_list(schema_field.type):
            resized = pa.field(
                schema_field.name,
                pa.list_(pa.float32(), dimensions),
                nullable=schema_field.nullable
            )
            schema = schema.set(index, resized)
    return schema


class IndexKind(Enum):
    """Vector index strategies chosen from the row count."""
    EXACT = "exact"
    IVF_FLAT = "ivf_flat"
    IVF_PQ = "ivf_pq"
    EXISTING = "existing"
    EXACT_FALLBACK = "exact_fallback"


@dataclass
class IndexStrategy:
    """Outcome of adaptive index selection for one table column."""

    kind: IndexKind
    rows: int = 0
    partitions: Optional[int] = None
    sub_vectors: Optional[int] = None
    bits: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_approximate(self) -> bool:
        return self.kind in (IndexKind.IVF_FLAT, IndexKind.IVF_PQ)


@dataclass
class InitResult:
    """Tagged result of a bounded-retry initialization."""

    ok: bool
    attempts: int
    error: Optional[str] = None


@dataclass
class SearchResult:
    """Represents a semantic search result."""

    similarity: float
    type: str
    content: str
    path: Optional[str]
    language: Optional[str] = None
    heading_text: Optional[str] = None
    document_title: Optional[str] = None
    start_line: Optional[int] = None
    is_documentation: bool = False
    reranked: bool = False

    @property
    def file_path(self) -> Optional[str]:
        return self.path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "similarity": self.similarity,
            "type": self.type,
            "content": self.content,
            "path": self.path,
            "language": self.language,
            "heading_text": self.heading_text,
            "document_title": self.document_title,
            "start_line": self.start_line,
            "is_documentation": self.is_documentation,
            "reranked": self.reranked,
        }


@dataclass
class IndexResult:
    """Per-batch indexing counts with the file lists behind them."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0
    excluded: int = 0
    files: List[str] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)
    excluded_files: List[str] = field(default_factory=list)

    @classmethod
    def all_failed(cls, paths: List[str]) -> "IndexResult":
        return cls(failed=len(paths), failed_files=list(paths))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "excluded": self.excluded,
            "files": list(self.files),
            "failed_files": list(self.failed_files),
            "excluded_files": list(self.excluded_files),
        }


@dataclass
class CustomDocument:
    """Caller-supplied document searched alongside the project's own docs."""

    title: str
    content: str


@dataclass
class CustomDocumentChunk:
    """Paragraph-aligned slice of a custom document with its embedding."""

    id: str
    content: str
    document_title: str
    chunk_index: int
    original_title: str
    chunk_hash: str
    total_chunks: int = 0
    vector: Optional[List[float]] = None
    project_path: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def section_start(self) -> bool:
        return self.chunk_index == 0
