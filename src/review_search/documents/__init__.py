"""Document handling: chunking, classification and file rules."""

from .classifier import ZeroShotClassifier, build_classifier
from .context import DocumentContext, infer_context_from_code, infer_document_context
from .detection import is_generic_document, get_generic_document_context
from .files import (
    detect_language,
    is_documentation_file,
    is_test_file,
    is_excluded_by_rules,
    find_gitignored,
    generate_directory_tree,
)
from .markdown import MarkdownChunk, MarkdownDocument, extract_markdown_chunks

__all__ = [
    "ZeroShotClassifier",
    "build_classifier",
    "DocumentContext",
    "infer_context_from_code",
    "infer_document_context",
    "is_generic_document",
    "get_generic_document_context",
    "detect_language",
    "is_documentation_file",
    "is_test_file",
    "is_excluded_by_rules",
    "find_gitignored",
    "generate_directory_tree",
    "MarkdownChunk",
    "MarkdownDocument",
    "extract_markdown_chunks",
]
