"""Embedding model provider and the manager that owns its lifecycle."""

from typing import Any, List, Optional, Protocol, Sequence
import asyncio

from ..caching import CacheManager
from ..config import SemanticSearchConfig, config
from ..core.constants import (
    BGE_QUERY_INSTRUCTION, EMBEDDING_CACHE_KEY_LENGTH, QUERY_CACHE_KEY_PREFIX
)
from ..exceptions import ComputationError, InitializationError
from ..logging import get_logger
from .models import InitResult

logger = get_logger(__name__)


class EmbeddingBackend(Protocol):
    """Text encoder used by the model manager."""

    dimensions: int

    def load(self) -> None:
        """Load model weights. Blocking; called from an executor."""

    def encode(self, texts: List[str], is_query: bool = False) -> List[List[float]]:
        """Encode texts into vectors. Blocking; called from an executor."""

    def close(self) -> None:
        """Release model resources."""


class TransformersBackend:
    """Hugging Face encoder with CLS pooling and L2 normalization (bge family)."""

    def __init__(
        self,
        model_name: str,
        dimensions: int,
        device: str = "auto",
        max_sequence_length: int = 512,
        cache_dir: Optional[str] = None,
        query_instruction: str = BGE_QUERY_INSTRUCTION
    ) -> None:
        """Initialize the backend.

        Args:
            model_name: Hugging Face model id
            dimensions: Expected embedding dimension
            device: Device to run on ('cpu', 'cuda', 'mps' or 'auto')
            max_sequence_length: Maximum sequence length for tokenization
            cache_dir: Directory for downloaded model files
            query_instruction: Prefix added to retrieval queries
        """
        self.model_name = model_name
        self.dimensions = dimensions
        self.requested_device = device
        self.max_sequence_length = max_sequence_length
        self.cache_dir = cache_dir
        self.query_instruction = query_instruction
        self.device: Optional[str] = None
        self._torch: Any = None
        self._tokenizer: Any = None
        self._model: Any = None

    def load(self) -> None:
        import torch
        from transformers import AutoModel, AutoTokenizer

        logger.info("Loading embedding model", model=self.model_name, cache_dir=self.cache_dir)

        tokenizer = AutoTokenizer.from_pretrained(self.model_name, cache_dir=self.cache_dir)
        model = AutoModel.from_pretrained(self.model_name, cache_dir=self.cache_dir)

        if self.requested_device == "auto":
            if torch.cuda.is_available():
                device = "cuda"
            elif torch.backends.mps.is_available():
                device = "mps"
            else:
                device = "cpu"
        else:
            device = self.requested_device

        model.to(device)
        model.eval()

        self._torch = torch
        self._tokenizer = tokenizer
        self._model = model
        self.device = device

        logger.info(
            "Model loaded successfully",
            model=self.model_name,
            device=device,
            dimension=model.config.hidden_size
        )

    def encode(self, texts: List[str], is_query: bool = False) -> List[List[float]]:
        if self._model is None:
            raise RuntimeError("Embedding model is not loaded")
        torch = self._torch

        if is_query:
            texts = [f"{self.query_instruction}{text}" for text in texts]

        with torch.no_grad():
            inputs = self._tokenizer(
                texts,
                return_tensors="pt",
                padding=True,
                truncation=True,
                max_length=self.max_sequence_length
            )
            inputs = {k: v.to(self.device) for k, v in inputs.items()}
            outputs = self._model(**inputs)

            # CLS pooling
            embeddings = outputs.last_hidden_state[:, 0]
            embeddings = torch.nn.functional.normalize(embeddings, p=2, dim=1)

            return embeddings.cpu().numpy().tolist()

    def close(self) -> None:
        self._model = None
        self._tokenizer = None


def build_backend(settings: SemanticSearchConfig) -> TransformersBackend:
    return TransformersBackend(
        model_name=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        device=settings.embedding_device,
        max_sequence_length=settings.max_sequence_length,
        cache_dir=str(settings.embedding_cache_dir),
    )


class ModelManager:
    """Owns the embedding backend: initialization with retry, caching and validation.

    Every returned vector has exactly ``dimensions`` entries; anything else is
    reported as ``None``.
    """

    def __init__(
        self,
        backend: Optional[EmbeddingBackend] = None,
        cache_manager: Optional[CacheManager] = None,
        settings: Optional[SemanticSearchConfig] = None
    ) -> None:
        self.settings = settings or config.semantic
        self.backend = backend or build_backend(self.settings)
        self.cache_manager = cache_manager or CacheManager()
        self.dimensions = self.settings.embedding_dimensions
        self.max_retries = self.settings.model_max_retries
        self.retry_backoff_seconds = self.settings.model_retry_backoff_seconds
        self.batch_size = self.settings.embedding_batch_size

        self._ready = False
        self._init_task: Optional["asyncio.Task[InitResult]"] = None
        self.last_init_result: Optional[InitResult] = None

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def initialize(self) -> InitResult:
        """Load the backend, sharing one attempt sequence among concurrent callers."""
        if self._ready:
            return InitResult(ok=True, attempts=0)

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize_with_retry())

        task = self._init_task
        try:
            result = await asyncio.shield(task)
        finally:
            if task.done() and self._init_task is task and not self._ready:
                # Allow a later call to retry from scratch
                self._init_task = None
        return result

    async def _initialize_with_retry(self) -> InitResult:
        loop = asyncio.get_running_loop()
        last_error: Optional[str] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                await loop.run_in_executor(None, self.backend.load)
            except Exception as e:
                last_error = str(e)
                logger.warning(
                    "Embedding model initialization failed",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=last_error
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(attempt * self.retry_backoff_seconds)
                continue

            self._ready = True
            self.last_init_result = InitResult(ok=True, attempts=attempt)
            logger.info("Embedding model ready", attempts=attempt)
            return self.last_init_result

        self.last_init_result = InitResult(ok=False, attempts=self.max_retries, error=last_error)
        logger.error(
            "Embedding model initialization gave up",
            attempts=self.max_retries,
            error=last_error
        )
        return self.last_init_result

    async def ensure_ready(self) -> None:
        """Initialize if needed, raising when all attempts failed."""
        result = await self.initialize()
        if not result.ok:
            raise InitializationError(
                "Embedding model failed to initialize",
                details={"attempts": result.attempts, "error": result.error}
            )

    def _validate(self, vector: Any) -> Optional[List[float]]:
        if vector is None:
            return None
        try:
            values = [float(v) for v in vector]
        except (TypeError, ValueError):
            return None
        if len(values) != self.dimensions:
            logger.warning(
                "Discarding embedding with unexpected dimension",
                expected=self.dimensions,
                actual=len(values)
            )
            return None
        return values

    @staticmethod
    def cache_key(text: str, is_query: bool = False) -> str:
        key = text.strip()[:EMBEDDING_CACHE_KEY_LENGTH]
        return f"{QUERY_CACHE_KEY_PREFIX}{key}" if is_query else key

    async def _encode(self, texts: List[str], is_query: bool) -> List[Any]:
        await self.ensure_ready()
        loop = asyncio.get_running_loop()
        try:
            vectors = await loop.run_in_executor(None, self.backend.encode, texts, is_query)
        except Exception as e:
            raise ComputationError.from_exception(
                "Embedding generation failed", e, details={"texts": len(texts)}
            )
        if vectors is None or len(vectors) != len(texts):
            raise ComputationError(
                "Embedding backend returned a mismatched batch",
                details={"expected": len(texts), "actual": 0 if vectors is None else len(vectors)}
            )
        return list(vectors)

    async def _embed_single(self, text: str, is_query: bool) -> Optional[List[float]]:
        if not text or not text.strip():
            return None

        key = self.cache_key(text, is_query)
        cached = self.cache_manager.embeddings.get(key)
        if cached is not None:
            return cached

        async def _compute() -> Optional[List[float]]:
            vectors = await self._encode([text], is_query)
            vector = self._validate(vectors[0])
            if vector is not None:
                self.cache_manager.embeddings.set(key, vector)
            return vector

        return await self.cache_manager.embedding_flights.run(key, _compute)

    async def embed(self, text: str) -> Optional[List[float]]:
        """Embedding of a passage, or None for empty input or an invalid vector."""
        return await self._embed_single(text, is_query=False)

    async def embed_query(self, text: str) -> Optional[List[float]]:
        """Embedding of a search query (instruction-prefixed)."""
        return await self._embed_single(text, is_query=True)

    async def embed_batch(self, texts: Sequence[str]) -> List[Optional[List[float]]]:
        """Embeddings aligned with ``texts``; ``None`` marks an empty or invalid item."""
        results: List[Optional[List[float]]] = [None] * len(texts)
        pending: List[int] = []

        for index, text in enumerate(texts):
            if not text or not text.strip():
                continue
            cached = self.cache_manager.embeddings.get(self.cache_key(text))
            if cached is not None:
                results[index] = cached
            else:
                pending.append(index)

        for start in range(0, len(pending), self.batch_size):
            round_indices = pending[start:start + self.batch_size]
            vectors = await self._encode([texts[i] for i in round_indices], is_query=False)
            for index, raw in zip(round_indices, vectors):
                vector = self._validate(raw)
                results[index] = vector
                if vector is not None:
                    self.cache_manager.embeddings.set(self.cache_key(texts[index]), vector)

        logger.debug(
            "Batch embeddings generated",
            requested=len(texts),
            computed=len(pending),
            failed=sum(1 for r in results if r is None)
        )
        return results

    async def close(self) -> None:
        """Release the backend; a later call re-initializes."""
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = None
        self.backend.close()
        self._ready = False
        logger.info("Embedding model released")
