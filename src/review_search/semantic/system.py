"""Caller-facing facade over indexing and retrieval."""

from typing import List, Dict, Any, Optional, Sequence
from datetime import datetime, timezone

from ..caching import CacheManager
from ..config import Config, config as default_config
from ..core.constants import DEFAULT_CUSTOM_DOC_LIMIT, DEFAULT_CUSTOM_DOC_THRESHOLD
from ..documents import DocumentContext, build_classifier, detect_language, infer_context_from_code
from ..exceptions import IntegrityGuardError, ReviewSearchError
from ..logging import get_logger
from .custom_documents import CustomDocumentProcessor
from .embeddings import EmbeddingBackend, ModelManager
from .indexer import Indexer, ProgressCallback
from .models import CustomDocument, CustomDocumentChunk, IndexResult, IndexStrategy, SearchResult
from .search import Retriever
from .storage import EmbeddingStore

logger = get_logger(__name__)


class SemanticSearchSystem:
    """Owns the model, store and caches and wires them into the indexer and retriever."""

    def __init__(
        self,
        settings: Optional[Config] = None,
        backend: Optional[EmbeddingBackend] = None,
        store: Optional[EmbeddingStore] = None,
        cache_manager: Optional[CacheManager] = None
    ) -> None:
        """Initialize the system; collaborators default to ones built from ``settings``."""
        self.settings = settings or default_config
        self.cache_manager = cache_manager or CacheManager(
            max_cache_size=self.settings.semantic.max_cache_size,
            max_embedding_cache_size=self.settings.semantic.max_embedding_cache_size
        )
        self.model_manager = ModelManager(
            backend=backend,
            cache_manager=self.cache_manager,
            settings=self.settings.semantic
        )
        self.store = store or EmbeddingStore(
            settings=self.settings.storage,
            dimensions=self.settings.semantic.embedding_dimensions
        )
        self.classifier = build_classifier(self.settings.semantic)
        self.indexer = Indexer(self.store, self.model_manager, settings=self.settings.semantic)
        self.retriever = Retriever(
            self.store,
            self.model_manager,
            cache_manager=self.cache_manager,
            settings=self.settings.semantic,
            classifier=self.classifier
        )
        self.custom_documents = CustomDocumentProcessor(
            self.model_manager, cache_manager=self.cache_manager, classifier=self.classifier
        )
        self._initialized_at: Optional[datetime] = None

    async def __aenter__(self) -> "SemanticSearchSystem":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Load the model and open the store. Raises InitializationError on failure."""
        await self.model_manager.ensure_ready()
        await self.store.open()
        self._initialized_at = datetime.now(timezone.utc)
        logger.info("Semantic search system initialized", db_path=str(self.store.db_path))

    async def index_batch(
        self,
        paths: Sequence[str],
        project_path: str,
        exclude_patterns: Sequence[str] = (),
        respect_gitignore: bool = True,
        on_progress: Optional[ProgressCallback] = None
    ) -> IndexResult:
        return await self.indexer.index_batch(
            paths,
            project_path,
            exclude_patterns=exclude_patterns,
            respect_gitignore=respect_gitignore,
            on_progress=on_progress
        )

    async def search(
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
        """Similar code in the project; empty on failure."""
        return await self.retriever.find_similar_code(
            query,
            project_path,
            limit=limit,
            similarity_threshold=similarity_threshold,
            include_project_structure=include_project_structure,
            query_file_path=query_file_path,
            is_test_file=is_test_file,
            precomputed_query_embedding=precomputed_query_embedding
        )

    @staticmethod
    def _query_context(
        query_context: Optional[DocumentContext],
        query_code: Optional[str],
        query_file_path: Optional[str]
    ) -> Optional[DocumentContext]:
        if query_context is None and query_code:
            language = detect_language(query_file_path) if query_file_path else None
            return infer_context_from_code(query_code, language)
        return query_context

    async def search_docs(
        self,
        query: str,
        project_path: str,
        limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        use_reranking: bool = True,
        query_file_path: Optional[str] = None,
        query_context: Optional[DocumentContext] = None,
        query_code: Optional[str] = None,
        precomputed_query_embedding: Optional[Sequence[float]] = None
    ) -> List[SearchResult]:
        """Relevant documentation in the project; empty on failure.

        When no ``query_context`` is given but the code under review is, the
        context is inferred from that code.
        """
        query_context = self._query_context(query_context, query_code, query_file_path)
        return await self.retriever.find_relevant_docs(
            query,
            project_path,
            limit=limit,
            similarity_threshold=similarity_threshold,
            use_reranking=use_reranking,
            query_file_path=query_file_path,
            query_context=query_context,
            precomputed_query_embedding=precomputed_query_embedding
        )

    async def process_custom_documents(
        self,
        documents: Sequence[CustomDocument],
        project_path: str
    ) -> List[CustomDocumentChunk]:
        """Chunk and embed caller-supplied documents for the project; empty on failure."""
        try:
            return await self.custom_documents.process_documents(documents, project_path)
        except ReviewSearchError as e:
            logger.error("Custom document processing failed", project_path=project_path, error=str(e))
            return []

    def get_existing_custom_document_chunks(self, project_path: str) -> List[CustomDocumentChunk]:
        return self.custom_documents.get_existing_chunks(project_path)

    async def find_relevant_custom_doc_chunks(
        self,
        query: str,
        project_path: str,
        chunks: Optional[Sequence[CustomDocumentChunk]] = None,
        limit: Optional[int] = None,
        similarity_threshold: Optional[float] = None,
        use_reranking: bool = True,
        query_file_path: Optional[str] = None,
        query_context: Optional[DocumentContext] = None,
        query_code: Optional[str] = None,
        precomputed_query_embedding: Optional[Sequence[float]] = None
    ) -> List[SearchResult]:
        """Custom document chunks relevant to ``query``; empty on failure.

        Searches the project's previously processed chunks unless ``chunks``
        is given.
        """
        query_context = self._query_context(query_context, query_code, query_file_path)
        if chunks is None:
            chunks = self.custom_documents.get_existing_chunks(project_path)
        try:
            return await self.custom_documents.find_relevant_chunks(
                query,
                chunks,
                limit=limit or DEFAULT_CUSTOM_DOC_LIMIT,
                similarity_threshold=(
                    DEFAULT_CUSTOM_DOC_THRESHOLD if similarity_threshold is None else similarity_threshold
                ),
                query_context=query_context,
                use_reranking=use_reranking,
                precomputed_query_embedding=precomputed_query_embedding,
                query_file_path=query_file_path
            )
        except ReviewSearchError as e:
            logger.error("Custom document search failed", project_path=project_path, error=str(e))
            return []

    def clear_custom_documents(self, project_path: str) -> bool:
        return self.custom_documents.clear_project_chunks(project_path)

    async def update_pr_comments_index(self) -> Optional[IndexStrategy]:
        """Refresh the review comments indexes; None when the table is missing or the refresh fails."""
        try:
            return await self.store.update_comments_index()
        except ReviewSearchError as e:
            logger.error("Failed to update review comments index", error=str(e))
            return None

    async def calculate_embedding(self, text: str) -> Optional[List[float]]:
        """Passage embedding of ``text``, or None if it cannot be computed."""
        try:
            return await self.model_manager.embed(text)
        except ReviewSearchError as e:
            logger.error("Embedding calculation failed", error=str(e))
            return None

    async def calculate_query_embedding(self, text: str) -> Optional[List[float]]:
        """Query embedding of ``text``, shared by searches that accept a precomputed one."""
        try:
            return await self.model_manager.embed_query(text)
        except ReviewSearchError as e:
            logger.error("Query embedding calculation failed", error=str(e))
            return None

    async def clear_project(self, project_path: str) -> bool:
        """Delete every stored row of one project."""
        try:
            deleted = await self.store.delete_project_scope(project_path)
        except IntegrityGuardError as e:
            logger.error("Refused to clear project", project_path=project_path, error=str(e))
            return False
        except ReviewSearchError as e:
            logger.error("Failed to clear project", project_path=project_path, error=str(e))
            return False
        logger.info("Cleared project embeddings", project_path=project_path, rows=deleted)
        return True

    async def clear_all(self) -> bool:
        """Drop every table and empty the caches."""
        try:
            await self.store.clear_all()
        except ReviewSearchError as e:
            logger.error("Failed to clear embeddings", error=str(e))
            return False
        self.cache_manager.clear_all_caches()
        return True

    def get_system_metrics(self) -> Dict[str, Any]:
        return {
            "retrieval": self.retriever.get_performance_metrics(),
            "custom_documents": self.custom_documents.get_performance_metrics(),
            "cache": self.cache_manager.get_cache_stats(),
            "model_ready": self.model_manager.is_ready,
        }

    async def get_system_status(self) -> Dict[str, Any]:
        """Readiness, table statistics and cache summary."""
        status: Dict[str, Any] = {
            "initialized_at": self._initialized_at.isoformat() if self._initialized_at else None,
            "model": {
                "name": self.settings.semantic.embedding_model,
                "dimensions": self.settings.semantic.embedding_dimensions,
                "ready": self.model_manager.is_ready,
            },
            "storage": {
                "db_path": str(self.store.db_path),
                "connected": self.store.is_connected,
            },
            "cache": self.cache_manager.get_cache_status(),
        }
        try:
            status["storage"]["tables"] = await self.store.table_stats()
        except ReviewSearchError as e:
            status["storage"]["error"] = str(e)
        return status

    async def close(self) -> None:
        await self.model_manager.close()
        if self.classifier is not None:
            self.classifier.close()
        await self.store.close()
        logger.info("Semantic search system closed")
