"""Project-scoped semantic search for AI code review."""

__version__ = "0.1.0"

# Import main components
from .config import Config
from .logging import get_logger
from .semantic import SemanticSearchSystem, SearchResult, IndexResult

__all__ = [
    "Config",
    "get_logger",
    "SemanticSearchSystem",
    "SearchResult",
    "IndexResult",
]
