"""Heading-based chunking of markdown documents."""

import os
import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..logging import get_logger

logger = get_logger(__name__)

H1_PATTERN = re.compile(r"^#(?!#)\s*(.*)")
H2_H3_PATTERN = re.compile(r"^(##|###)\s+(.*)")
H1_SEARCH_LINES = 5


@dataclass
class MarkdownChunk:
    """One heading-delimited section of a markdown document."""

    content: str
    heading: Optional[str]
    original_document_path: str
    start_line: int
    language: str = "markdown"


@dataclass
class MarkdownDocument:
    """Chunks of a document plus its title (first H1, or the filename stem)."""

    chunks: List[MarkdownChunk] = field(default_factory=list)
    title: Optional[str] = None


def _title_from_filename(file_path: str) -> str:
    return os.path.splitext(os.path.basename(file_path))[0]


def extract_markdown_chunks(file_path: str, content: str, relative_path: str) -> MarkdownDocument:
    """Split markdown into chunks at H2/H3 headings outside code fences.

    The first H1 within the leading lines becomes the document title. A
    heading line is kept as the first line of its own chunk; text before the
    first H2/H3 (the H1 line included) forms a chunk with no heading.
    """
    document = MarkdownDocument()
    if not content or not isinstance(content, str):
        return document

    lines = content.split("\n")
    current_lines: List[str] = []
    current_heading: Optional[str] = None
    chunk_start = 1
    in_code_block = False

    def _flush() -> None:
        text = "\n".join(current_lines).strip()
        if text:
            document.chunks.append(MarkdownChunk(
                content=text,
                heading=current_heading,
                original_document_path=relative_path,
                start_line=chunk_start,
            ))

    for line_number, line in enumerate(lines, start=1):
        stripped = line.strip()
        if stripped.startswith("```"):
            in_code_block = not in_code_block

        if document.title is None and line_number <= H1_SEARCH_LINES:
            h1_match = H1_PATTERN.match(stripped)
            if h1_match:
                document.title = h1_match.group(1).strip()

        heading_match = None if in_code_block else H2_H3_PATTERN.match(stripped)
        if heading_match:
            _flush()
            current_heading = heading_match.group(2).strip()
            current_lines = [line]
            chunk_start = line_number
        else:
            current_lines.append(line)

    _flush()

    if document.title is None:
        document.title = _title_from_filename(file_path)
        logger.debug("No H1 heading, using filename as title", file_path=file_path, title=document.title)

    return document
