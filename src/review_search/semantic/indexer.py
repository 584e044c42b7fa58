"""Incremental, content-addressed indexing of project files and documentation."""

from typing import Callable, List, Dict, Any, Optional, Sequence, Tuple
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
import asyncio
import os

from ..config import SemanticSearchConfig, config
from ..core.constants import (
    DIRECTORY_TREE_MAX_DEPTH, MAX_CODE_FILE_SIZE_BYTES, MAX_DOC_FILE_SIZE_BYTES,
    PROJECT_PATH_FIELD, STRUCTURE_TYPE
)
from ..documents import (
    detect_language, extract_markdown_chunks, find_gitignored, generate_directory_tree,
    is_documentation_file, is_excluded_by_rules
)
from ..exceptions import ComputationError, ErrorCode, FileProcessingError, ReviewSearchError, StorageError
from ..logging import get_logger
from .embeddings import ModelManager
from .models import (
    DocumentChunkRecord, FileEmbeddingRecord, IndexResult, chunk_record_id,
    compute_content_hash, file_record_id, structure_record_id
)
from .storage import EmbeddingStore, quote_sql

logger = get_logger(__name__)

ProgressCallback = Callable[[str, str], None]


@dataclass
class FileCandidate:
    """A readable, non-excluded file waiting for a hash comparison."""

    input_path: str
    absolute_path: Path
    relative_path: str
    content: str
    last_modified: str
    language: str
    content_hash: str = ""
    stale_ids: List[str] = field(default_factory=list)


def _isoformat_mtime(mtime: float) -> str:
    return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()


def _read_text(path: Path) -> Tuple[str, os.stat_result]:
    """File content and stat. A vanished file raises FileNotFoundError, other read errors FileProcessingError."""
    try:
        stats = path.stat()
        return path.read_text(encoding="utf-8", errors="replace"), stats
    except FileNotFoundError:
        raise
    except OSError as e:
        raise FileProcessingError.from_exception("Failed to read file", e, details={"file_path": str(path)})


class Indexer:
    """Keeps the file and document-chunk tables in sync with a project's files.

    Unchanged files (same content hash) are never re-embedded; changed files
    have their stale row deleted before the replacement is inserted.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        model_manager: ModelManager,
        settings: Optional[SemanticSearchConfig] = None
    ) -> None:
        self.store = store
        self.model_manager = model_manager
        self.cache_manager = model_manager.cache_manager
        self.settings = settings or config.semantic
        self.batch_size = self.settings.embedding_batch_size
        self.max_code_file_lines = self.settings.max_code_file_lines

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], status: str, path: str) -> None:
        if on_progress is not None:
            on_progress(status, path)

    async def _scope_predicate(self, table_name: str, project_path: str) -> str:
        if await self.store.has_column(table_name, PROJECT_PATH_FIELD):
            return f" AND {PROJECT_PATH_FIELD} = {quote_sql(project_path)}"
        return ""

    async def index_batch(
        self,
        paths: Sequence[str],
        project_path: str,
        exclude_patterns: Sequence[str] = (),
        respect_gitignore: bool = True,
        on_progress: Optional[ProgressCallback] = None
    ) -> IndexResult:
        """Index a batch of files belonging to ``project_path``.

        Paths may be absolute or relative to the project. Per-file failures are
        counted and reported through ``on_progress``; a missing table or an
        unavailable model fails the whole batch.
        """
        paths = list(paths)
        base_dir = Path(project_path).expanduser().resolve()
        project_scope = str(base_dir)

        try:
            await self.model_manager.ensure_ready()
            await self.store.open()
        except ReviewSearchError as e:
            logger.error("Indexing aborted, model or store unavailable", project_path=project_scope, error=str(e))
            for path in paths:
                self._report(on_progress, "failed", path)
            return IndexResult.all_failed(paths)

        logger.info("Starting batch indexing", project_path=project_scope, files=len(paths))

        try:
            await self.update_project_structure(project_scope, exclude_patterns)
        except ReviewSearchError as e:
            logger.warning("Failed to update project structure", project_path=project_scope, error=str(e))

        file_table = self.store.file_table
        try:
            if await self.store.get_table(file_table) is None:
                logger.error("File table not found, aborting batch", table=file_table)
                for path in paths:
                    self._report(on_progress, "failed", path)
                return IndexResult.all_failed(paths)
            existing_rows = await self.store.fetch_project_rows(
                file_table, project_scope, columns=["id", "path", "content_hash"]
            )
        except ReviewSearchError as e:
            logger.error("Failed to read stored file rows, aborting batch", table=file_table, error=str(e))
            for path in paths:
                self._report(on_progress, "failed", path)
            return IndexResult.all_failed(paths)

        result = IndexResult()
        held: Dict[str, str] = {}

        def _progress(status: str, path: str) -> None:
            # Documents are reported once their chunks are stored
            if status in ("processed", "skipped") and is_documentation_file(path):
                held[path] = status
            else:
                self._report(on_progress, status, path)

        candidates, documents = await self._collect_candidates(
            paths, base_dir, exclude_patterns, respect_gitignore, result, _progress
        )

        if candidates:
            await self._index_files(candidates, existing_rows, project_scope, result, _progress)

        if documents:
            await self._index_documents(documents, project_scope, result, _progress)

        for path, status in held.items():
            if path not in result.failed_files:
                self._report(on_progress, status, path)

        logger.info(
            "Batch indexing complete",
            project_path=project_scope,
            processed=result.processed,
            skipped=result.skipped,
            excluded=result.excluded,
            failed=result.failed
        )
        return result

    async def _collect_candidates(
        self,
        paths: List[str],
        base_dir: Path,
        exclude_patterns: Sequence[str],
        respect_gitignore: bool,
        result: IndexResult,
        on_progress: Optional[ProgressCallback]
    ) -> Tuple[List[FileCandidate], List[Tuple[str, Path, str]]]:
        """Apply exclusion rules and read files; returns file candidates and documents to chunk."""
        resolved: List[Tuple[str, Path, str]] = []
        for input_path in paths:
            absolute = Path(input_path) if os.path.isabs(input_path) else base_dir / input_path
            absolute = absolute.resolve()
            relative = os.path.relpath(absolute, base_dir).replace(os.sep, "/")
            resolved.append((input_path, absolute, relative))

        ignored = set()
        if respect_gitignore:
            ignored = await asyncio.to_thread(
                find_gitignored, str(base_dir), [rel for _, _, rel in resolved if not rel.startswith("..")]
            )

        candidates: List[FileCandidate] = []
        documents: List[Tuple[str, Path, str]] = []

        for input_path, absolute, relative in resolved:
            if (relative.startswith("..") or relative in ignored
                    or is_excluded_by_rules(str(absolute), relative, exclude_patterns)):
                result.excluded += 1
                result.excluded_files.append(input_path)
                self._report(on_progress, "excluded", input_path)
                continue

            try:
                content, stats = await asyncio.to_thread(_read_text, absolute)
            except FileNotFoundError:
                result.skipped += 1
                self._report(on_progress, "skipped", input_path)
                continue
            except FileProcessingError as e:
                logger.warning("Failed to read file", file_path=input_path, error=str(e))
                result.failed += 1
                result.failed_files.append(input_path)
                self._report(on_progress, "failed", input_path)
                continue

            if not content.strip():
                result.skipped += 1
                self._report(on_progress, "skipped", input_path)
                continue

            is_doc = is_documentation_file(str(absolute))
            if is_doc and stats.st_size <= MAX_DOC_FILE_SIZE_BYTES:
                documents.append((input_path, absolute, relative))

            if stats.st_size > MAX_CODE_FILE_SIZE_BYTES:
                if is_doc:
                    # Large documents are only indexed as chunks
                    result.skipped += 1
                    self._report(on_progress, "skipped", input_path)
                    continue
                content = "\n".join(content.split("\n")[:self.max_code_file_lines])
                logger.debug("Truncated large file", file_path=input_path, lines=self.max_code_file_lines)

            candidates.append(FileCandidate(
                input_path=input_path,
                absolute_path=absolute,
                relative_path=relative,
                content=content,
                last_modified=_isoformat_mtime(stats.st_mtime),
                language=detect_language(str(absolute)),
            ))

        return candidates, documents

    async def _index_files(
        self,
        candidates: List[FileCandidate],
        existing_rows: List[Dict[str, Any]],
        project_scope: str,
        result: IndexResult,
        on_progress: Optional[ProgressCallback]
    ) -> None:
        file_table = self.store.file_table
        existing_by_path: Dict[str, List[Dict[str, Any]]] = {}
        for row in existing_rows:
            existing_by_path.setdefault(row.get("path"), []).append(row)

        scheduled: List[FileCandidate] = []
        for candidate in candidates:
            candidate.content_hash = compute_content_hash(candidate.content)
            previous = existing_by_path.get(candidate.relative_path, [])
            if any(row.get("content_hash") == candidate.content_hash for row in previous):
                result.skipped += 1
                self._report(on_progress, "skipped", candidate.input_path)
                continue
            candidate.stale_ids = [row["id"] for row in previous]
            scheduled.append(candidate)

        logger.debug(
            "Planned file embeddings",
            candidates=len(candidates),
            scheduled=len(scheduled),
            existing=len(existing_rows)
        )

        scope_predicate = await self._scope_predicate(file_table, project_scope)
        inserted = 0
        for start in range(0, len(scheduled), self.batch_size):
            inserted += await self._embed_round(
                scheduled[start:start + self.batch_size], project_scope, scope_predicate, result, on_progress
            )

        if inserted:
            await self._maintain_table(file_table)

    async def _embed_round(
        self,
        round_items: List[FileCandidate],
        project_scope: str,
        scope_predicate: str,
        result: IndexResult,
        on_progress: Optional[ProgressCallback]
    ) -> int:
        def _fail(items: List[FileCandidate]) -> None:
            for item in items:
                result.failed += 1
                result.failed_files.append(item.input_path)
                self._report(on_progress, "failed", item.input_path)

        try:
            vectors = await self.model_manager.embed_batch([item.content for item in round_items])
        except ComputationError as e:
            logger.error("Embedding round failed", files=len(round_items), error=str(e))
            _fail(round_items)
            return 0

        ready: List[Tuple[FileCandidate, FileEmbeddingRecord]] = []
        for item, vector in zip(round_items, vectors):
            if vector is None:
                logger.warning("No embedding for file", file_path=item.input_path)
                _fail([item])
                continue
            ready.append((item, FileEmbeddingRecord(
                id=file_record_id(item.relative_path, item.content_hash),
                project_path=project_scope,
                content_hash=item.content_hash,
                vector=vector,
                content=item.content,
                type="file",
                name=item.absolute_path.name,
                path=item.relative_path,
                language=item.language,
                last_modified=item.last_modified,
            )))

        file_table = self.store.file_table
        for item, _ in ready:
            if not item.stale_ids:
                continue
            id_list = ", ".join(quote_sql(stale_id) for stale_id in item.stale_ids)
            predicate = (
                f"id = {quote_sql(item.stale_ids[0])}" if len(item.stale_ids) == 1 else f"id IN ({id_list})"
            )
            try:
                await self.store.delete_where(file_table, predicate + scope_predicate)
            except StorageError as e:
                logger.warning("Failed to delete stale row", file_path=item.relative_path, error=str(e))

        if not ready:
            return 0

        try:
            await self.store.add_rows(file_table, [record for _, record in ready])
        except StorageError as e:
            logger.error("Failed to insert file embeddings", files=len(ready), error=str(e))
            _fail([item for item, _ in ready])
            return 0

        for item, _ in ready:
            result.processed += 1
            result.files.append(item.input_path)
            self._report(on_progress, "processed", item.input_path)
        return len(ready)

    def _fail_document(
        self,
        result: IndexResult,
        on_progress: Optional[ProgressCallback],
        input_path: str
    ) -> None:
        """Move a document whose chunks could not be stored to the failed count."""
        if input_path in result.failed_files:
            return
        # A document reaches chunking after its file row was processed or skipped
        if input_path in result.files:
            result.files.remove(input_path)
            result.processed -= 1
        elif result.skipped > 0:
            result.skipped -= 1
        result.failed += 1
        result.failed_files.append(input_path)
        self._report(on_progress, "failed", input_path)

    async def _maintain_table(self, table_name: str) -> None:
        """Compact and index after inserts; failures here never undo the inserts."""
        try:
            await self.store.compact(table_name)
            await self.store.adaptive_index(table_name)
            await self.store.ensure_fts_index(table_name)
        except ReviewSearchError as e:
            logger.warning("Table maintenance failed", table=table_name, error=str(e))

    async def _index_documents(
        self,
        documents: List[Tuple[str, Path, str]],
        project_scope: str,
        result: IndexResult,
        on_progress: Optional[ProgressCallback]
    ) -> int:
        """Chunk documentation files and re-embed those whose chunks changed.

        A document whose chunks cannot all be embedded and stored is counted
        as failed; its previously stored chunks are left in place.
        """
        def _fail(input_paths: Sequence[str]) -> None:
            for input_path in input_paths:
                self._fail_document(result, on_progress, input_path)

        doc_table = self.store.document_table
        try:
            if await self.store.get_table(doc_table) is None:
                raise StorageError(
                    f"Table '{doc_table}' does not exist",
                    details={"table": doc_table},
                    error_code=ErrorCode.TABLE_NOT_FOUND
                )
            stored_rows = await self.store.fetch_project_rows(
                doc_table, project_scope, columns=["original_document_path", "content_hash"]
            )
        except ReviewSearchError as e:
            logger.error("Cannot chunk documents", table=doc_table, documents=len(documents), error=str(e))
            _fail([input_path for input_path, _, _ in documents])
            return 0

        stored_hashes: Dict[str, List[str]] = {}
        for row in stored_rows:
            stored_hashes.setdefault(row.get("original_document_path"), []).append(row.get("content_hash"))

        pending: List[Tuple[str, str, List[Dict[str, Any]]]] = []
        extracted: Dict[str, List[Dict[str, Any]]] = {}
        for input_path, absolute, relative in documents:
            try:
                content, stats = await asyncio.to_thread(_read_text, absolute)
            except (FileNotFoundError, FileProcessingError) as e:
                logger.warning("Failed to read document", file_path=relative, error=str(e))
                _fail([input_path])
                continue

            document = extract_markdown_chunks(str(absolute), content, relative)
            if not document.chunks:
                continue
            extracted[relative] = [
                {"heading_text": chunk.heading, "content": chunk.content} for chunk in document.chunks
            ]

            chunk_hashes = [compute_content_hash(chunk.content) for chunk in document.chunks]
            previous = stored_hashes.get(relative, [])
            if len(previous) == len(chunk_hashes) and sorted(previous) == sorted(chunk_hashes):
                logger.debug("Document unchanged", file_path=relative, chunks=len(chunk_hashes))
                continue
            self.cache_manager.document_contexts.discard(os.path.normpath(os.path.join(project_scope, relative)))

            last_modified = _isoformat_mtime(stats.st_mtime)
            pending.append((input_path, relative, [
                {
                    "chunk": chunk,
                    "hash": chunk_hash,
                    "title": document.title,
                    "last_modified": last_modified,
                }
                for chunk, chunk_hash in zip(document.chunks, chunk_hashes)
            ]))

        if extracted:
            known = dict(self.cache_manager.document_chunks.get(project_scope) or {})
            known.update(extracted)
            self.cache_manager.document_chunks.set(project_scope, known)

        if not pending:
            return 0

        all_chunks = [entry for _, _, entries in pending for entry in entries]
        try:
            vectors = await self.model_manager.embed_batch([entry["chunk"].content for entry in all_chunks])
        except ComputationError as e:
            logger.error("Document chunk embedding failed", documents=len(pending), error=str(e))
            _fail([input_path for input_path, _, _ in pending])
            return 0

        vector_iter = iter(vectors)
        scope_predicate = await self._scope_predicate(doc_table, project_scope)
        ready: List[Tuple[str, List[DocumentChunkRecord]]] = []
        for input_path, relative, entries in pending:
            records: List[DocumentChunkRecord] = []
            for entry, vector in zip(entries, vector_iter):
                chunk = entry["chunk"]
                if vector is None:
                    logger.warning(
                        "No embedding for document chunk",
                        file_path=chunk.original_document_path,
                        start_line=chunk.start_line
                    )
                    continue
                records.append(DocumentChunkRecord(
                    id=chunk_record_id(chunk.original_document_path, chunk.heading, chunk.start_line),
                    project_path=project_scope,
                    content_hash=entry["hash"],
                    vector=vector,
                    content=chunk.content,
                    original_document_path=chunk.original_document_path,
                    heading_text=chunk.heading or "",
                    document_title=entry["title"],
                    start_line=chunk.start_line,
                    language=chunk.language,
                    last_modified=entry["last_modified"],
                ))
            if len(records) != len(entries):
                _fail([input_path])
                continue

            try:
                await self.store.delete_where(
                    doc_table, f"original_document_path = {quote_sql(relative)}{scope_predicate}"
                )
            except StorageError as e:
                logger.warning("Failed to delete document chunks", file_path=relative, error=str(e))
                _fail([input_path])
                continue
            ready.append((input_path, records))

        if not ready:
            return 0

        try:
            inserted = await self.store.add_rows(doc_table, [record for _, records in ready for record in records])
        except StorageError as e:
            logger.error("Failed to insert document chunks", documents=len(ready), error=str(e))
            _fail([input_path for input_path, _ in ready])
            return 0
        logger.info("Indexed document chunks", documents=len(ready), chunks=inserted)

        if inserted:
            await self._maintain_table(doc_table)
        return inserted

    async def update_project_structure(self, project_path: str, exclude_patterns: Sequence[str] = ()) -> bool:
        """Replace the project's directory structure snapshot."""
        file_table = self.store.file_table
        if await self.store.get_table(file_table) is None:
            return False

        base_dir = Path(project_path)
        tree = await asyncio.to_thread(
            generate_directory_tree, str(base_dir), DIRECTORY_TREE_MAX_DEPTH, exclude_patterns, True
        )
        if not tree:
            logger.debug("Empty project, no structure snapshot", project_path=project_path)
            return False

        vector = await self.model_manager.embed(tree)
        if vector is None:
            logger.warning("Failed to embed project structure", project_path=project_path)
            return False

        structure_id = structure_record_id(project_path)
        scope_predicate = await self._scope_predicate(file_table, project_path)
        try:
            await self.store.delete_where(file_table, f"id = {quote_sql(structure_id)}{scope_predicate}")
        except StorageError as e:
            logger.debug("No previous structure snapshot removed", id=structure_id, error=str(e))

        label = f"{base_dir.name} Project Structure"
        await self.store.add_rows(file_table, [FileEmbeddingRecord(
            id=structure_id,
            project_path=project_path,
            content_hash=compute_content_hash(tree),
            vector=vector,
            content=tree,
            type=STRUCTURE_TYPE,
            name=label,
            path=label,
            language="text",
            last_modified=datetime.now(timezone.utc).isoformat(),
        )])
        logger.info("Updated project structure snapshot", id=structure_id)
        return True
