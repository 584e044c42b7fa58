"""In-memory processing and search of caller-supplied documents.

Custom documents (review guidelines, pasted specs) are never written to the
vector store. They are chunked on paragraph boundaries, embedded, kept per
project in the cache manager and searched by brute-force cosine similarity,
with the same contextual reranking as indexed documentation.
"""

from typing import List, Dict, Any, Optional, Sequence
from datetime import datetime, timezone
import asyncio
import re
import time

from ..caching import CacheManager
from ..core.constants import (
    CUSTOM_CHUNK_MAX_CHARS, CUSTOM_CHUNK_MIN_CHARS, DEFAULT_CUSTOM_DOC_LIMIT, DEFAULT_CUSTOM_DOC_THRESHOLD,
    MIN_CUSTOM_RESULTS_FOR_RERANKING
)
from ..documents import DocumentContext, ZeroShotClassifier, infer_document_context
from ..exceptions import ComputationError, ErrorCode, FileProcessingError
from ..logging import get_logger
from .embeddings import ModelManager
from .models import (
    CustomDocument, CustomDocumentChunk, SearchResult, compute_content_hash, custom_chunk_id
)
from .search import contextual_score
from .similarity import cosine_similarity, path_similarity
from .storage import resolve_project_scope

logger = get_logger(__name__)

CUSTOM_CHUNK_TYPE = "custom-document-chunk"

H1_LINE_PATTERN = re.compile(r"^#\s+(.+)$", re.MULTILINE)
TITLE_FILE_PATTERN = re.compile(r":\./([^/]+)\.([a-zA-Z]+)$")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


def custom_document_title(document: CustomDocument) -> str:
    """First H1 of the content, else a name derived from a ``label:./file.ext`` title."""
    header = H1_LINE_PATTERN.search(document.content)
    if header:
        return header.group(1).strip()
    file_match = TITLE_FILE_PATTERN.search(document.title or "")
    if file_match:
        name = file_match.group(1).replace("_", " ")
        return re.sub(r"\b\w", lambda m: m.group(0).upper(), name)
    return document.title


class CustomDocumentProcessor:
    """Chunks, embeds and searches custom documents per project."""

    def __init__(
        self,
        model_manager: ModelManager,
        cache_manager: Optional[CacheManager] = None,
        classifier: Optional[ZeroShotClassifier] = None
    ) -> None:
        self.model_manager = model_manager
        self.cache_manager = cache_manager or model_manager.cache_manager
        self.classifier = classifier
        self.performance_metrics: Dict[str, float] = {
            "documents_processed": 0,
            "chunks_generated": 0,
            "embeddings_calculated": 0,
            "batch_success_rate": 0.0,
            "average_chunk_size": 0.0,
            "processing_time": 0.0,
        }

    def chunk_document(self, document: CustomDocument) -> List[CustomDocumentChunk]:
        """Split a document at blank lines into chunks of at most about 1000 characters.

        Paragraphs are packed greedily; a chunk is only closed once it holds
        more than the minimum size, so short paragraphs never stand alone.
        A paragraph longer than the maximum becomes a chunk of its own.
        """
        if document is None or not document.content or not document.content.strip():
            raise FileProcessingError(
                "Custom document has no content",
                details={"title": getattr(document, "title", None)},
                error_code=ErrorCode.FILE_PROCESSING_FAILED
            )
        started = time.perf_counter()
        title = custom_document_title(document)

        sections: List[str] = []
        current = ""
        for section in PARAGRAPH_BREAK.split(document.content):
            section = section.strip()
            if not section:
                continue
            if len(current) + len(section) > CUSTOM_CHUNK_MAX_CHARS and len(current) > CUSTOM_CHUNK_MIN_CHARS:
                sections.append(current)
                current = section
            else:
                current = f"{current}\n\n{section}" if current else section
        if current.strip():
            sections.append(current)

        chunks = [
            CustomDocumentChunk(
                id=custom_chunk_id(title, index),
                content=text.strip(),
                document_title=title,
                chunk_index=index,
                original_title=document.title,
                chunk_hash=compute_content_hash(text.strip()),
                total_chunks=len(sections),
            )
            for index, text in enumerate(sections)
        ]

        self.performance_metrics["chunks_generated"] += len(chunks)
        self.performance_metrics["average_chunk_size"] = (
            sum(len(chunk.content) for chunk in chunks) / len(chunks) if chunks else 0.0
        )
        self.performance_metrics["processing_time"] += time.perf_counter() - started
        logger.debug("Chunked custom document", title=title, chunks=len(chunks))
        return chunks

    async def _embed_chunks(self, chunks: List[CustomDocumentChunk]) -> bool:
        """Attach vectors to ``chunks``; True when the batch call succeeded."""
        try:
            vectors = await self.model_manager.embed_batch([chunk.content for chunk in chunks])
        except ComputationError as e:
            logger.warning("Batch embedding of custom document failed, embedding chunks one by one", error=str(e))
        else:
            for chunk, vector in zip(chunks, vectors):
                chunk.vector = vector
            return True

        for chunk in chunks:
            try:
                chunk.vector = await self.model_manager.embed(chunk.content)
            except ComputationError as e:
                logger.warning("Custom document chunk embedding failed", chunk_id=chunk.id, error=str(e))
                chunk.vector = None
        return False

    async def process_documents(
        self,
        documents: Sequence[CustomDocument],
        project_path: str
    ) -> List[CustomDocumentChunk]:
        """Chunk and embed ``documents``, replacing the project's stored custom chunks.

        Documents without content and chunks without an embedding are left
        out of the result.
        """
        if not documents:
            logger.debug("No custom documents to process")
            return []

        started = time.perf_counter()
        project_scope = resolve_project_scope(project_path)
        created_at = datetime.now(timezone.utc).isoformat()
        embedded: List[CustomDocumentChunk] = []
        batches = 0
        batch_successes = 0

        for document in documents:
            try:
                chunks = self.chunk_document(document)
            except FileProcessingError as e:
                logger.warning("Skipping custom document", title=document.title, error=str(e))
                continue

            batches += 1
            if await self._embed_chunks(chunks):
                batch_successes += 1

            valid = [chunk for chunk in chunks if chunk.vector is not None]
            for chunk in valid:
                chunk.project_path = project_scope
                chunk.created_at = created_at
            if len(valid) != len(chunks):
                logger.warning(
                    "Some custom document chunks have no embedding",
                    title=document.title,
                    embedded=len(valid),
                    chunks=len(chunks)
                )
            embedded.extend(valid)
            self.performance_metrics["embeddings_calculated"] += len(valid)

        self.cache_manager.custom_documents.set(project_scope, embedded)
        self.performance_metrics["documents_processed"] += len(documents)
        self.performance_metrics["batch_success_rate"] = batch_successes / batches * 100 if batches else 0.0
        self.performance_metrics["processing_time"] += time.perf_counter() - started
        logger.info(
            "Processed custom documents",
            project_path=project_scope,
            documents=len(documents),
            chunks=len(embedded)
        )
        return embedded

    def get_existing_chunks(self, project_path: str) -> List[CustomDocumentChunk]:
        """Custom chunks processed earlier for the project, if still cached."""
        project_scope = resolve_project_scope(project_path)
        chunks = self.cache_manager.custom_documents.get(project_scope) or []
        logger.debug("Existing custom document chunks", project_path=project_scope, chunks=len(chunks))
        return list(chunks)

    def clear_project_chunks(self, project_path: str) -> bool:
        project_scope = resolve_project_scope(project_path)
        removed = self.cache_manager.custom_documents.discard(project_scope)
        logger.info("Cleared custom document chunks", project_path=project_scope, removed=removed)
        return removed

    async def find_relevant_chunks(
        self,
        query: str,
        chunks: Sequence[CustomDocumentChunk],
        limit: int = DEFAULT_CUSTOM_DOC_LIMIT,
        similarity_threshold: float = DEFAULT_CUSTOM_DOC_THRESHOLD,
        query_context: Optional[DocumentContext] = None,
        use_reranking: bool = True,
        precomputed_query_embedding: Optional[Sequence[float]] = None,
        query_file_path: Optional[str] = None
    ) -> List[SearchResult]:
        """Custom chunks most similar to ``query``, reranked when a query context is given."""
        if not query or not query.strip():
            logger.warning("Empty query for custom document search")
            return []
        if not chunks:
            logger.debug("No custom document chunks to search")
            return []

        if precomputed_query_embedding is not None:
            query_embedding = list(precomputed_query_embedding)
        else:
            query_embedding = await self.model_manager.embed_query(query)
        if query_embedding is None:
            logger.warning("No query embedding for custom document search")
            return []

        scored = [
            (chunk, cosine_similarity(query_embedding, chunk.vector))
            for chunk in chunks
            if chunk.vector is not None
        ]
        scored = [(chunk, similarity) for chunk, similarity in scored if similarity >= similarity_threshold]
        results = [
            SearchResult(
                similarity=similarity,
                type=CUSTOM_CHUNK_TYPE,
                content=chunk.content,
                path=chunk.original_title,
                document_title=chunk.document_title,
                is_documentation=True,
            )
            for chunk, similarity in scored
        ]

        if use_reranking and query_context is not None and len(results) >= MIN_CUSTOM_RESULTS_FOR_RERANKING:
            await self._rerank(results, [chunk for chunk, _ in scored], query_embedding, query_context, query_file_path)

        results.sort(key=lambda result: result.similarity, reverse=True)
        logger.info("Custom document search complete", candidates=len(chunks), results=min(len(results), limit))
        return results[:limit]

    async def _title_embeddings(self, titles: List[str]) -> Dict[str, List[float]]:
        cache = self.cache_manager.heading_embeddings
        missing = [title for title in titles if not cache.contains(title)]
        if missing:
            try:
                vectors = await self.model_manager.embed_batch(missing)
            except ComputationError as e:
                logger.warning("Custom document title embeddings failed", titles=len(missing), error=str(e))
                vectors = [None] * len(missing)
            for title, vector in zip(missing, vectors):
                if vector is not None:
                    cache.set(title, vector)
        return {title: cache.get(title) for title in titles if cache.contains(title)}

    async def _document_context(self, chunk: CustomDocumentChunk, siblings: List[Dict[str, Any]]) -> DocumentContext:
        key = f"custom:{chunk.project_path}:{chunk.original_title}"

        async def _compute() -> DocumentContext:
            try:
                return await asyncio.to_thread(
                    infer_document_context,
                    chunk.original_title,
                    chunk.document_title,
                    siblings,
                    classifier=self.classifier
                )
            except Exception as e:
                logger.debug("Custom document context inference failed", title=chunk.original_title, error=str(e))
                return DocumentContext.fallback(chunk.original_title)

        return await self.cache_manager.get_document_context(key, _compute)

    async def _rerank(
        self,
        results: List[SearchResult],
        chunks: List[CustomDocumentChunk],
        query_embedding: List[float],
        query_context: DocumentContext,
        query_file_path: Optional[str]
    ) -> None:
        titles = list(dict.fromkeys(chunk.document_title for chunk in chunks if chunk.document_title))
        title_vectors = await self._title_embeddings(titles)

        by_document: Dict[str, List[Dict[str, Any]]] = {}
        for chunk in self._sibling_chunks(chunks):
            by_document.setdefault(chunk.original_title, []).append({"content": chunk.content})

        for result, chunk in zip(results, chunks):
            context = await self._document_context(chunk, by_document.get(chunk.original_title, []))
            title_vector = title_vectors.get(chunk.document_title)
            result.similarity = contextual_score(
                result.similarity,
                query_context,
                context,
                heading_similarity=cosine_similarity(query_embedding, title_vector) if title_vector else 0.0,
                path_score=path_similarity(query_file_path, chunk.original_title) if query_file_path else 0.0
            )
            result.reranked = True
        logger.debug("Reranked custom document results", results=len(results), documents=len(titles))

    def _sibling_chunks(self, matched: List[CustomDocumentChunk]) -> List[CustomDocumentChunk]:
        """Every cached chunk of the projects behind ``matched``, or ``matched`` itself."""
        scopes = list(dict.fromkeys(chunk.project_path for chunk in matched if chunk.project_path))
        cached = [chunk for scope in scopes for chunk in (self.cache_manager.custom_documents.get(scope) or [])]
        return cached or matched

    def get_performance_metrics(self) -> Dict[str, Any]:
        return {
            **self.performance_metrics,
            "cached_projects": len(self.cache_manager.custom_documents),
        }
