"""Vector storage on LanceDB: connection lifecycle, schema, indexes and scoped deletes."""

from typing import List, Dict, Any, Optional, Sequence, Type, Union
from pathlib import Path
import math

import lancedb
from lancedb.index import FTS, IvfFlat, IvfPq
from lancedb.pydantic import LanceModel

from ..caching import SingleFlight
from ..config import StorageConfig, config
from ..core.constants import (
    EXACT_SEARCH_MAX_ROWS, IVF_FLAT_MAX_ROWS, IVF_FLAT_ROWS_PER_PARTITION,
    IVF_FLAT_MIN_PARTITIONS, IVF_PQ_ROWS_PER_PARTITION, IVF_PQ_MIN_PARTITIONS,
    IVF_PQ_NUM_BITS, MIN_PROJECT_PATH_SEGMENTS, PROJECT_PATH_FIELD
)
from ..exceptions import (
    ErrorCode, InitializationError, IntegrityGuardError, SchemaDriftWarning, StorageError
)
from ..logging import get_logger
from .models import (
    DocumentChunkRecord, FileEmbeddingRecord, IndexKind, IndexStrategy, PRCommentRecord,
    arrow_schema_for, structure_record_id
)

logger = get_logger(__name__)

VECTOR_COLUMN = "vector"


def quote_sql(value: str) -> str:
    """Single-quoted SQL string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def is_already_exists_error(error: Exception) -> bool:
    return "already exists" in str(error).lower()


async def list_table_names(db: Any) -> List[str]:
    """Every table name in the database, following pagination."""
    names: List[str] = []
    page_token = None
    while True:
        response = await db.list_tables(page_token=page_token)
        names.extend(response.tables)
        page_token = response.page_token
        if not page_token:
            return names


def select_index_strategy(rows: int, dimensions: int) -> IndexStrategy:
    """Vector index strategy for a table of ``rows`` vectors.

    Small tables are scanned exactly, mid-sized tables get IVF_FLAT and large
    tables get product-quantized IVF_PQ.
    """
    if rows < EXACT_SEARCH_MAX_ROWS:
        return IndexStrategy(kind=IndexKind.EXACT, rows=rows)

    if rows < IVF_FLAT_MAX_ROWS:
        partitions = max(int(math.floor(math.sqrt(rows / IVF_FLAT_ROWS_PER_PARTITION))), IVF_FLAT_MIN_PARTITIONS)
        return IndexStrategy(kind=IndexKind.IVF_FLAT, rows=rows, partitions=partitions)

    partitions = max(int(math.floor(math.sqrt(rows / IVF_PQ_ROWS_PER_PARTITION))), IVF_PQ_MIN_PARTITIONS)
    return IndexStrategy(
        kind=IndexKind.IVF_PQ,
        rows=rows,
        partitions=partitions,
        sub_vectors=dimensions // 4,
        bits=IVF_PQ_NUM_BITS
    )


def resolve_project_scope(project_path: Union[str, Path]) -> str:
    """Absolute, symlink-free project path stored in the ``project_path`` column."""
    return str(Path(project_path).expanduser().resolve())


def validate_project_scope(project_path: str) -> str:
    """Resolved project path, rejecting roots and shallow paths before destructive deletes."""
    if not project_path or not str(project_path).strip():
        raise IntegrityGuardError("Project path is required")

    resolved = Path(resolve_project_scope(project_path))
    if str(resolved) == resolved.anchor or len(resolved.parts) < MIN_PROJECT_PATH_SEGMENTS:
        raise IntegrityGuardError(
            "Refusing to clear embeddings for an unsafe project path",
            details={"project_path": str(resolved), "min_segments": MIN_PROJECT_PATH_SEGMENTS}
        )
    return str(resolved)


class EmbeddingStore:
    """Owns the LanceDB connection and the embedding tables of every project.

    All tables live in one database directory; rows carry an absolute
    ``project_path`` for isolation between projects.
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        settings: Optional[StorageConfig] = None,
        dimensions: Optional[int] = None
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Database directory, defaults to the configured path
            settings: Storage settings, defaults to the global configuration
            dimensions: Vector dimension of new tables
        """
        self.settings = settings or config.storage
        self.db_path = Path(db_path or self.settings.db_path).expanduser()
        self.dimensions = dimensions or config.semantic.embedding_dimensions

        self.file_table = self.settings.file_table
        self.document_table = self.settings.document_table
        self.comments_table = self.settings.comments_table
        self.record_types: Dict[str, Type[LanceModel]] = {
            self.file_table: FileEmbeddingRecord,
            self.document_table: DocumentChunkRecord,
            self.comments_table: PRCommentRecord,
        }
        self.text_columns: Dict[str, str] = {
            self.file_table: "content",
            self.document_table: "content",
            self.comments_table: "comment_text",
        }

        self._db: Any = None
        self._tables: Dict[str, Any] = {}
        self._connect_flight: SingleFlight[str, Any] = SingleFlight("db_connection")
        self._schema_ready = False

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    async def __aenter__(self) -> "EmbeddingStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> "EmbeddingStore":
        """Connect and make sure every table exists."""
        await self.connect()
        await self.ensure_schema()
        return self

    async def close(self) -> None:
        """Release table handles and the connection."""
        for table in self._tables.values():
            table.close()
        self._tables.clear()
        if self._db is not None:
            self._db.close()
        self._db = None
        self._schema_ready = False
        logger.debug("Embedding store closed", db_path=str(self.db_path))

    async def connect(self) -> Any:
        """Shared connection; concurrent first calls wait on a single attempt."""
        if self._db is not None:
            return self._db
        return await self._connect_flight.run(str(self.db_path), self._open_connection)

    async def _open_connection(self) -> Any:
        try:
            self.db_path.mkdir(parents=True, exist_ok=True)
            db = await lancedb.connect_async(str(self.db_path))
        except Exception as e:
            self._db = None
            self._tables.clear()
            logger.error("Failed to connect to embedding store", db_path=str(self.db_path), error=str(e))
            raise InitializationError.from_exception(
                "Embedding store connection failed",
                e,
                details={"db_path": str(self.db_path)},
                error_code=ErrorCode.DB_CONNECTION_FAILED
            )

        self._db = db
        logger.info("Connected to embedding store", db_path=str(self.db_path))
        return db

    async def ensure_schema(self) -> None:
        """Create missing tables; report tables lacking the project scope column."""
        if self._schema_ready:
            return
        db = await self.connect()

        try:
            existing = set(await list_table_names(db))
            for name, record_type in self.record_types.items():
                if name not in existing:
                    self._tables[name] = await db.create_table(
                        name, schema=arrow_schema_for(record_type, self.dimensions)
                    )
                    logger.info("Created table", table=name)
                    continue

                table = await self.get_table(name)
                if table is not None and not await self.has_column(name, PROJECT_PATH_FIELD):
                    logger.warning(
                        "Table is missing the project scope column; legacy rows are filtered by path",
                        table=name,
                        column=PROJECT_PATH_FIELD,
                        category=SchemaDriftWarning.__name__
                    )
        except Exception as e:
            raise InitializationError.from_exception(
                "Failed to prepare embedding tables",
                e,
                error_code=ErrorCode.DB_TABLE_CREATION_FAILED
            )

        self._schema_ready = True

    async def get_table(self, name: str) -> Optional[Any]:
        """Open table handle, or None if the table does not exist."""
        if name in self._tables:
            return self._tables[name]
        db = await self.connect()
        if name not in await list_table_names(db):
            return None
        table = await db.open_table(name)
        self._tables[name] = table
        return table

    async def _require_table(self, name: str) -> Any:
        table = await self.get_table(name)
        if table is None:
            raise StorageError(
                f"Table '{name}' does not exist",
                details={"table": name},
                error_code=ErrorCode.TABLE_NOT_FOUND
            )
        return table

    async def has_column(self, table_name: str, column: str) -> bool:
        table = await self.get_table(table_name)
        if table is None:
            return False
        schema = await table.schema()
        return column in schema.names

    async def count_rows(self, table_name: str, where: Optional[str] = None) -> int:
        table = await self._require_table(table_name)
        return await table.count_rows(where)

    async def adaptive_index(self, table_name: str, column: str = VECTOR_COLUMN) -> IndexStrategy:
        """Build the vector index the row count calls for.

        An existing index counts as success; any other build error falls back
        to exact search and never propagates.
        """
        table = await self._require_table(table_name)
        rows = 0
        try:
            rows = await table.count_rows()
            strategy = select_index_strategy(rows, self.dimensions)

            if strategy.kind == IndexKind.EXACT:
                logger.debug("Using exact vector search", table=table_name, rows=rows)
                return strategy

            if strategy.kind == IndexKind.IVF_FLAT:
                index_config = IvfFlat(distance_type="cosine", num_partitions=strategy.partitions)
            else:
                index_config = IvfPq(
                    distance_type="cosine",
                    num_partitions=strategy.partitions,
                    num_sub_vectors=strategy.sub_vectors,
                    num_bits=strategy.bits
                )

            await table.create_index(column, config=index_config, replace=False)
        except Exception as e:
            if is_already_exists_error(e):
                logger.debug("Vector index already exists", table=table_name, column=column)
                return IndexStrategy(kind=IndexKind.EXISTING, rows=rows)
            logger.warning(
                "Vector index build failed, using exact search",
                table=table_name,
                rows=rows,
                error=str(e)
            )
            return IndexStrategy(kind=IndexKind.EXACT_FALLBACK, rows=rows, error=str(e))

        logger.info(
            "Created vector index",
            table=table_name,
            strategy=strategy.kind.value,
            rows=rows,
            partitions=strategy.partitions,
            sub_vectors=strategy.sub_vectors
        )
        return strategy

    async def ensure_fts_index(self, table_name: str, column: Optional[str] = None) -> bool:
        """Full-text index on the table's text column; True if one is in place."""
        column = column or self.text_columns.get(table_name, "content")
        table = await self._require_table(table_name)
        try:
            await table.create_index(column, config=FTS(), replace=False)
        except Exception as e:
            if is_already_exists_error(e):
                return True
            logger.warning("Full-text index build failed", table=table_name, column=column, error=str(e))
            return False
        logger.info("Created full-text index", table=table_name, column=column)
        return True

    async def query_rows(
        self,
        table_name: str,
        where: Optional[str] = None,
        limit: Optional[int] = None,
        columns: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """Plain scan with an optional predicate."""
        table = await self._require_table(table_name)
        try:
            query = table.query()
            if where:
                query = query.where(where)
            if columns:
                query = query.select(list(columns))
            if limit is not None:
                query = query.limit(limit)
            return await query.to_list()
        except Exception as e:
            raise StorageError.from_exception(
                "Row query failed", e, details={"table": table_name, "where": where}
            )

    async def fetch_project_rows(
        self,
        table_name: str,
        project_path: str,
        columns: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        """All rows of one project in a single round trip."""
        if await self.has_column(table_name, PROJECT_PATH_FIELD):
            where = f"{PROJECT_PATH_FIELD} = {quote_sql(project_path)}"
        else:
            where = None
        table = await self._require_table(table_name)
        try:
            rows = await table.count_rows(where)
        except Exception as e:
            raise StorageError.from_exception(
                "Row count failed", e, details={"table": table_name, "project_path": project_path}
            )
        if rows == 0:
            return []
        return await self.query_rows(table_name, where=where, limit=rows, columns=columns)

    async def add_rows(self, table_name: str, records: Sequence[Union[LanceModel, Dict[str, Any]]]) -> int:
        if not records:
            return 0
        table = await self._require_table(table_name)
        rows = [r.model_dump() if isinstance(r, LanceModel) else dict(r) for r in records]
        try:
            await table.add(rows)
        except Exception as e:
            raise StorageError.from_exception(
                "Failed to insert rows",
                e,
                details={"table": table_name, "rows": len(rows)},
                error_code=ErrorCode.DB_INSERTION_FAILED
            )
        logger.debug("Inserted rows", table=table_name, rows=len(rows))
        return len(rows)

    async def delete_where(self, table_name: str, predicate: str) -> None:
        table = await self._require_table(table_name)
        try:
            await table.delete(predicate)
        except Exception as e:
            raise StorageError.from_exception(
                "Failed to delete rows", e, details={"table": table_name, "predicate": predicate}
            )

    async def hybrid_search(
        self,
        table_name: str,
        query_text: Optional[str],
        vector: Sequence[float],
        where: Optional[str] = None,
        limit: int = 10,
        vector_column: str = VECTOR_COLUMN
    ) -> List[Dict[str, Any]]:
        """Vector nearest neighbours fused with full-text hits.

        Vector rows carry a cosine ``_distance``; rows found only by the
        full-text index carry a ``_score``. Without a usable full-text index
        the result is vector-only.
        """
        table = await self._require_table(table_name)
        try:
            vector_query = (
                table.query()
                .nearest_to(list(vector))
                .column(vector_column)
                .distance_type("cosine")
            )
            if where:
                vector_query = vector_query.where(where)
            rows = await vector_query.limit(limit).to_list()
        except Exception as e:
            raise StorageError.from_exception(
                "Vector search failed", e, details={"table": table_name, "where": where}
            )

        if not query_text or not query_text.strip():
            return rows

        try:
            text_query = table.query().nearest_to_text(
                query_text, columns=self.text_columns.get(table_name, "content")
            )
            if where:
                text_query = text_query.where(where)
            text_rows = await text_query.limit(limit).to_list()
        except Exception as e:
            logger.debug("Full-text search unavailable, using vector results only", table=table_name, error=str(e))
            return rows

        by_id = {row.get("id"): row for row in rows}
        for text_row in text_rows:
            existing = by_id.get(text_row.get("id"))
            if existing is None:
                rows.append(text_row)
                by_id[text_row.get("id")] = text_row
            elif "_score" in text_row:
                existing["_score"] = text_row["_score"]
        return rows

    async def compact(self, table_name: str) -> bool:
        """Compact table files; failures are logged and reported as False."""
        table = await self.get_table(table_name)
        if table is None:
            return False
        try:
            await table.optimize()
        except Exception as e:
            if "legacy" in str(e).lower():
                logger.info("Skipped compaction of legacy-format table", table=table_name, error=str(e))
            else:
                logger.warning("Table compaction failed", table=table_name, error=str(e))
            return False
        return True

    async def delete_project_scope(self, project_path: str) -> int:
        """Delete every row belonging to a project, returning the number removed.

        Rows are matched client-side so tables from older schema versions are
        handled the same way as current ones. Individual delete failures are
        logged and skipped.
        """
        resolved = validate_project_scope(project_path)
        structure_ids = {structure_record_id(resolved)}
        db = await self.connect()
        deleted = 0

        for table_name in await list_table_names(db):
            table = await self.get_table(table_name)
            if table is None:
                continue

            scoped = await self.has_column(table_name, PROJECT_PATH_FIELD)
            columns = ["id", PROJECT_PATH_FIELD] if scoped else ["id"]
            try:
                total = await table.count_rows()
                rows = await table.query().select(columns).limit(total).to_list() if total else []
            except Exception as e:
                raise StorageError.from_exception("Failed to scan project rows", e, details={"table": table_name})
            if not rows:
                continue

            if scoped:
                matches = [row["id"] for row in rows if row.get(PROJECT_PATH_FIELD) == resolved]
                scope_clause = f" AND {PROJECT_PATH_FIELD} = {quote_sql(resolved)}"
            else:
                matches = [row["id"] for row in rows if row.get("id") in structure_ids]
                scope_clause = ""
            removed = 0
            for row_id in matches:
                try:
                    await table.delete(f"id = {quote_sql(row_id)}{scope_clause}")
                    removed += 1
                except Exception as e:
                    logger.warning("Failed to delete row", table=table_name, id=row_id, error=str(e))

            deleted += removed
            logger.info(
                "Cleared project rows", table=table_name, project_path=resolved, rows=removed, matched=len(matches)
            )

        return deleted

    async def update_comments_index(self) -> Optional[IndexStrategy]:
        """Refresh the vector and full-text indexes of the review comments table.

        Returns None when the table does not exist.
        """
        if await self.get_table(self.comments_table) is None:
            logger.warning("Review comments table not found", table=self.comments_table)
            return None
        strategy = await self.adaptive_index(self.comments_table)
        await self.ensure_fts_index(self.comments_table)
        logger.info("Updated review comments index", table=self.comments_table, strategy=strategy.kind.value)
        return strategy

    async def clear_all(self) -> bool:
        """Drop every table and reset the connection."""
        db = await self.connect()
        try:
            for table_name in await list_table_names(db):
                await db.drop_table(table_name)
                logger.info("Dropped table", table=table_name)
        except Exception as e:
            raise StorageError.from_exception("Failed to drop tables", e)
        finally:
            await self.close()
        return True

    async def table_stats(self) -> Dict[str, Dict[str, Any]]:
        """Row counts and scope support for each existing table."""
        db = await self.connect()
        stats = {}
        for table_name in await list_table_names(db):
            stats[table_name] = {
                "rows": await self.count_rows(table_name),
                "has_project_path": await self.has_column(table_name, PROJECT_PATH_FIELD),
            }
        return stats
