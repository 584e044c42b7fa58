"""Project-scoped hybrid retrieval with contextual reranking of documentation."""

from typing import List, Dict, Any, Optional, Sequence
import asyncio
import math
import os
import time

from ..caching import CacheManager
from ..config import SemanticSearchConfig, config
from ..core.constants import (
    AREA_GENERAL, AREA_GENERAL_JS_TS, AREA_UNKNOWN, BOOST_SAME_AREA, BOOST_TECH_MATCH,
    CONTEXT_BATCH_PAUSE_SECONDS, CONTEXT_BATCH_SIZE, GENERIC_CONTEXT_MATCH_THRESHOLD,
    MIN_OVERFETCH_ROWS, MIN_RESULTS_FOR_RERANKING, OVERFETCH_FACTOR, PENALTY_AREA_MISMATCH,
    PENALTY_GENERIC_DOC, PROJECT_PATH_FIELD, STRUCTURE_ID_PREFIX, STRUCTURE_SIMILARITY_THRESHOLD,
    STRUCTURE_TYPE, WEIGHT_HEADING_RELEVANCE, WEIGHT_INITIAL_SIMILARITY, WEIGHT_PATH_SIMILARITY
)
from ..documents import (
    DocumentContext, ZeroShotClassifier, get_generic_document_context, infer_document_context,
    is_documentation_file, is_generic_document
)
from ..exceptions import ComputationError
from ..logging import get_logger
from .embeddings import ModelManager
from .models import SearchResult, structure_record_id
from .similarity import cosine_similarity, path_similarity
from .storage import EmbeddingStore, quote_sql, resolve_project_scope

logger = get_logger(__name__)

TEST_PATH_PATTERNS = ("%.test.%", "%.spec.%", "%_test.py", "test_%.py")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_doc_score(row: Dict[str, Any]) -> float:
    """Unit similarity of a documentation hit: 1 - cosine distance, else the text score."""
    if row.get("_distance") is not None:
        return _clamp(1.0 - row["_distance"])
    if row.get("_score") is not None:
        return _clamp(row["_score"])
    return 0.5


def normalize_code_score(row: Dict[str, Any]) -> float:
    """Unit similarity of a code hit, with exponential decay over the distance."""
    if row.get("_distance") is not None:
        return _clamp(math.exp(-2.0 * row["_distance"]))
    if row.get("_score") is not None:
        score = row["_score"]
        return _clamp(score / max(score, 1.0))
    return 0.5


def build_test_path_condition(is_test_file: bool) -> str:
    if is_test_file:
        return "(" + " OR ".join(f"path LIKE '{pattern}'" for pattern in TEST_PATH_PATTERNS) + ")"
    return "(" + " AND ".join(f"path NOT LIKE '{pattern}'" for pattern in TEST_PATH_PATTERNS) + ")"


def contextual_score(
    similarity: float,
    query_context: DocumentContext,
    doc_context: Optional[DocumentContext],
    heading_similarity: float = 0.0,
    path_score: float = 0.0
) -> float:
    """Blend retrieval similarity with area, technology, heading and path signals."""
    score = similarity * WEIGHT_INITIAL_SIMILARITY

    if (doc_context is not None
            and query_context.area != AREA_UNKNOWN
            and doc_context.area not in (AREA_UNKNOWN, AREA_GENERAL)):
        if query_context.area == doc_context.area:
            score += BOOST_SAME_AREA
            doc_tech = {tech.lower() for tech in doc_context.dominant_tech}
            if any(tech.lower() in doc_tech for tech in query_context.dominant_tech):
                score += BOOST_TECH_MATCH
        elif query_context.area != AREA_GENERAL_JS_TS:
            score += PENALTY_AREA_MISMATCH

    score += heading_similarity * WEIGHT_HEADING_RELEVANCE

    if doc_context is not None and doc_context.is_general_purpose_readme_style:
        context_match = 1.0 if query_context.area == doc_context.area else 0.0
        if context_match < GENERIC_CONTEXT_MATCH_THRESHOLD:
            score += PENALTY_GENERIC_DOC

    score += path_score * WEIGHT_PATH_SIMILARITY
    return _clamp(score)


class Retriever:
    """Searches code and documentation of one project at a time."""

    def __init__(
        self,
        store: EmbeddingStore,
        model_manager: ModelManager,
        cache_manager: Optional[CacheManager] = None,
        settings: Optional[SemanticSearchConfig] = None,
        classifier: Optional[ZeroShotClassifier] = None
    ) -> None:
        self.store = store
        self.model_manager = model_manager
        self.cache_manager = cache_manager or model_manager.cache_manager
        self.settings = settings or config.semantic
        self.classifier = classifier
        self.performance_metrics: Dict[str, float] = {
            "search_count": 0,
            "total_search_time": 0.0,
            "reranking_count": 0,
            "total_reranking_time": 0.0,
        }

    @staticmethod
    def _over_fetch(limit: int) -> int:
        return max(limit * OVERFETCH_FACTOR, MIN_OVERFETCH_ROWS)

    async def _query_embedding(self, query: str, precomputed: Optional[Sequence[float]]) -> Optional[List[float]]:
        if precomputed is not None:
            return list(precomputed)
        return await self.model_manager.embed_query(query)

    async def _filter_to_project(
        self,
        rows: List[Dict[str, Any]],
        project_scope: str,
        path_field: str
    ) -> List[Dict[str, Any]]:
        """Keep rows of this project; legacy rows must point at a file that still exists."""
        keep: Dict[int, bool] = {}
        to_check: List[tuple] = []

        for index, row in enumerate(rows):
            if row.get(PROJECT_PATH_FIELD):
                keep[index] = row[PROJECT_PATH_FIELD] == project_scope
                continue

            file_path = row.get(path_field) or row.get("path")
            if not file_path:
                keep[index] = False
                continue
            if os.path.isabs(file_path):
                keep[index] = file_path.startswith(project_scope)
                continue

            absolute = os.path.normpath(os.path.join(project_scope, file_path))
            if absolute.startswith(project_scope):
                to_check.append((index, absolute))
            else:
                keep[index] = False

        if to_check:
            checks = await asyncio.gather(
                *(asyncio.to_thread(os.path.exists, absolute) for _, absolute in to_check),
                return_exceptions=True
            )
            for (index, absolute), exists in zip(to_check, checks):
                keep[index] = exists is True
                if exists is not True:
                    logger.debug("Dropping result for missing file", path=absolute)

        return [row for index, row in enumerate(rows) if keep.get(index)]

    async def find_relevant_docs(
        self,
        query: str,
        project_path: str,
        limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        use_reranking: bool = True,
        query_file_path: Optional[str] = None,
        query_context: Optional[DocumentContext] = None,
        precomputed_query_embedding: Optional[Sequence[float]] = None
    ) -> List[SearchResult]:
        """Documentation chunks relevant to ``query``; empty on any failure."""
        limit = limit or self.settings.doc_result_limit
        threshold = self.settings.doc_similarity_threshold if similarity_threshold is None else similarity_threshold
        started = time.perf_counter()
        self.performance_metrics["search_count"] += 1

        if not query or not query.strip():
            logger.warning("Empty query for documentation search")
            return []

        try:
            return await self._find_relevant_docs(
                query, resolve_project_scope(project_path), limit, threshold,
                use_reranking, query_file_path, query_context, precomputed_query_embedding
            )
        except Exception as e:
            logger.error("Documentation search failed", project_path=project_path, error=str(e))
            return []
        finally:
            self.performance_metrics["total_search_time"] += time.perf_counter() - started

    async def _find_relevant_docs(
        self,
        query: str,
        project_scope: str,
        limit: int,
        threshold: float,
        use_reranking: bool,
        query_file_path: Optional[str],
        query_context: Optional[DocumentContext],
        precomputed_query_embedding: Optional[Sequence[float]]
    ) -> List[SearchResult]:
        table_name = self.store.document_table
        if await self.store.get_table(table_name) is None:
            logger.warning("Documentation table not found", table=table_name)
            return []

        query_embedding = await self._query_embedding(query, precomputed_query_embedding)
        if query_embedding is None:
            logger.warning("Could not embed documentation query")
            return []

        where = None
        if await self.store.has_column(table_name, PROJECT_PATH_FIELD):
            where = f"{PROJECT_PATH_FIELD} = {quote_sql(project_scope)}"

        rows = await self.store.hybrid_search(
            table_name, query, query_embedding, where=where, limit=self._over_fetch(limit)
        )
        rows = await self._filter_to_project(rows, project_scope, "original_document_path")

        results = [
            SearchResult(
                similarity=normalize_doc_score(row),
                type="documentation-chunk",
                content=row.get("content", ""),
                path=row.get("original_document_path"),
                language=row.get("language"),
                heading_text=row.get("heading_text"),
                document_title=row.get("document_title"),
                start_line=row.get("start_line"),
                is_documentation=True,
            )
            for row in rows
        ]
        results = [result for result in results if result.similarity >= threshold]

        if use_reranking and query_context is not None and len(results) >= MIN_RESULTS_FOR_RERANKING:
            await self._rerank(results, query_embedding, query_context, query_file_path, project_scope)

        results.sort(key=lambda result: result.similarity, reverse=True)
        logger.info("Documentation search complete", project_path=project_scope, results=min(len(results), limit))
        return results[:limit]

    async def _heading_embeddings(self, titles: List[str]) -> Dict[str, List[float]]:
        cache = self.cache_manager.heading_embeddings
        missing = [title for title in titles if not cache.contains(title)]
        if missing:
            try:
                vectors = await self.model_manager.embed_batch(missing)
            except ComputationError as e:
                logger.warning("Heading embeddings failed", titles=len(missing), error=str(e))
                vectors = [None] * len(missing)
            for title, vector in zip(missing, vectors):
                if vector is not None:
                    cache.set(title, vector)
        return {title: cache.get(title) for title in titles if cache.contains(title)}

    def _chunks_for(self, result: SearchResult, project_scope: str) -> List[Dict[str, Any]]:
        """Every indexed chunk of the result's document, or just the matched chunk."""
        known = self.cache_manager.document_chunks.get(project_scope) or {}
        return known.get(result.path) or [{"content": result.content, "heading_text": result.heading_text}]

    async def _document_context(self, key: str, result: SearchResult, project_scope: str) -> DocumentContext:
        async def _compute() -> DocumentContext:
            try:
                if is_generic_document(result.path, result.document_title):
                    return get_generic_document_context(result.path)
                return await asyncio.to_thread(
                    infer_document_context,
                    result.path,
                    result.document_title,
                    self._chunks_for(result, project_scope),
                    classifier=self.classifier
                )
            except Exception as e:
                logger.debug("Document context inference failed", doc_path=result.path, error=str(e))
                return DocumentContext.fallback(result.path)

        return await self.cache_manager.get_document_context(key, _compute)

    async def _document_contexts(self, results: List[SearchResult], project_scope: str) -> Dict[str, DocumentContext]:
        """Contexts for each distinct document, computed in small concurrent batches."""
        contexts: Dict[str, DocumentContext] = {}
        pending: Dict[str, SearchResult] = {}
        for result in results:
            if not result.path:
                continue
            key = os.path.normpath(os.path.join(project_scope, result.path))
            if key in contexts or key in pending:
                continue
            cached = self.cache_manager.document_contexts.get(key)
            if cached is not None:
                contexts[key] = cached
            else:
                pending[key] = result

        items = list(pending.items())
        for start in range(0, len(items), CONTEXT_BATCH_SIZE):
            batch = items[start:start + CONTEXT_BATCH_SIZE]
            computed = await asyncio.gather(
                *(self._document_context(key, result, project_scope) for key, result in batch)
            )
            for (key, _), context in zip(batch, computed):
                contexts[key] = context
            if start + CONTEXT_BATCH_SIZE < len(items):
                await asyncio.sleep(CONTEXT_BATCH_PAUSE_SECONDS)
        return contexts

    async def _rerank(
        self,
        results: List[SearchResult],
        query_embedding: List[float],
        query_context: DocumentContext,
        query_file_path: Optional[str],
        project_scope: str
    ) -> None:
        started = time.perf_counter()

        titles = list(dict.fromkeys(result.document_title for result in results if result.document_title))
        heading_vectors = await self._heading_embeddings(titles)
        contexts = await self._document_contexts(results, project_scope)

        for result in results:
            key = os.path.normpath(os.path.join(project_scope, result.path)) if result.path else None
            heading_vector = heading_vectors.get(result.document_title) if result.document_title else None
            result.similarity = contextual_score(
                result.similarity,
                query_context,
                contexts.get(key) if key else None,
                heading_similarity=cosine_similarity(query_embedding, heading_vector) if heading_vector else 0.0,
                path_score=path_similarity(query_file_path, result.path) if query_file_path else 0.0
            )
            result.reranked = True

        self.performance_metrics["reranking_count"] += 1
        self.performance_metrics["total_reranking_time"] += time.perf_counter() - started
        logger.debug("Reranked documentation results", results=len(results), documents=len(contexts))

    async def find_similar_code(
        self,
        query: str,
        project_path: str,
        limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        include_project_structure: bool = False,
        query_file_path: Optional[str] = None,
        is_test_file: Optional[bool] = None,
        precomputed_query_embedding: Optional[Sequence[float]] = None
    ) -> List[SearchResult]:
        """Source files similar to ``query``; empty on any failure."""
        limit = limit or self.settings.code_result_limit
        threshold = self.settings.code_similarity_threshold if similarity_threshold is None else similarity_threshold
        started = time.perf_counter()
        self.performance_metrics["search_count"] += 1

        if not query or not query.strip():
            logger.warning("Empty query for code search")
            return []

        try:
            return await self._find_similar_code(
                query, resolve_project_scope(project_path), limit, threshold,
                include_project_structure, query_file_path, is_test_file, precomputed_query_embedding
            )
        except Exception as e:
            logger.error("Code search failed", project_path=project_path, error=str(e))
            return []
        finally:
            self.performance_metrics["total_search_time"] += time.perf_counter() - started

    async def _find_similar_code(
        self,
        query: str,
        project_scope: str,
        limit: int,
        threshold: float,
        include_project_structure: bool,
        query_file_path: Optional[str],
        is_test_file: Optional[bool],
        precomputed_query_embedding: Optional[Sequence[float]]
    ) -> List[SearchResult]:
        table_name = self.store.file_table
        if await self.store.get_table(table_name) is None:
            logger.warning("File table not found", table=table_name)
            return []

        query_embedding = await self._query_embedding(query, precomputed_query_embedding)
        if query_embedding is None:
            logger.warning("Could not embed code query")
            return []

        conditions = [f"type != '{STRUCTURE_TYPE}'"]
        if is_test_file is not None:
            conditions.append(build_test_path_condition(is_test_file))
        if query_file_path:
            absolute = os.path.normpath(os.path.join(project_scope, query_file_path))
            conditions.append(f"path != {quote_sql(absolute)}")
            relative = os.path.relpath(absolute, project_scope)
            if relative and not relative.startswith(".."):
                conditions.append(f"path != {quote_sql(relative)}")
        if await self.store.has_column(table_name, PROJECT_PATH_FIELD):
            conditions.append(f"{PROJECT_PATH_FIELD} = {quote_sql(project_scope)}")

        rows = await self.store.hybrid_search(
            table_name, query, query_embedding, where=" AND ".join(conditions), limit=self._over_fetch(limit)
        )
        rows = await self._filter_to_project(rows, project_scope, "path")

        results = [
            SearchResult(
                similarity=normalize_code_score(row),
                type="file",
                content=row.get("content", ""),
                path=row.get("path"),
                language=row.get("language"),
                is_documentation=is_documentation_file(row.get("path")),
            )
            for row in rows
        ]
        results = [result for result in results if result.similarity >= threshold]

        if include_project_structure:
            structure = await self._project_structure_result(query_embedding, project_scope)
            if structure is not None:
                results.append(structure)

        results.sort(key=lambda result: result.similarity, reverse=True)
        logger.info("Code search complete", project_path=project_scope, results=min(len(results), limit))
        return results[:limit]

    async def _project_structure_result(
        self,
        query_embedding: List[float],
        project_scope: str
    ) -> Optional[SearchResult]:
        table_name = self.store.file_table
        where = f"id = {quote_sql(structure_record_id(project_scope))}"
        try:
            if await self.store.has_column(table_name, PROJECT_PATH_FIELD):
                where += f" AND {PROJECT_PATH_FIELD} = {quote_sql(project_scope)}"
            rows = await self.store.query_rows(table_name, where=where, limit=1)
            if not rows:
                rows = await self.store.query_rows(
                    table_name, where=f"id = {quote_sql(STRUCTURE_ID_PREFIX)}", limit=1
                )
        except Exception as e:
            logger.warning("Project structure lookup failed", project_path=project_scope, error=str(e))
            return None

        if not rows or rows[0].get("vector") is None:
            return None

        record = rows[0]
        similarity = cosine_similarity(query_embedding, list(record["vector"]))
        if similarity <= STRUCTURE_SIMILARITY_THRESHOLD:
            return None
        return SearchResult(
            similarity=similarity,
            type="project-structure",
            content=record.get("content", ""),
            path=record.get("path"),
            language="text",
        )

    def get_performance_metrics(self) -> Dict[str, Any]:
        search_count = self.performance_metrics["search_count"]
        return {
            **self.performance_metrics,
            "average_search_time": (
                self.performance_metrics["total_search_time"] / search_count if search_count > 0 else 0.0
            ),
            "heading_cache_size": len(self.cache_manager.heading_embeddings),
            "document_context_cache_size": len(self.cache_manager.document_contexts),
        }

    def clear_caches(self) -> None:
        self.cache_manager.heading_embeddings.clear()
        self.cache_manager.document_contexts.clear()
        self.cache_manager.document_context_flights.clear()
        logger.info("Retriever caches cleared")
