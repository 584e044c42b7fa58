"""Recognition of generic project documents (README, RUNBOOK, ...)."""

import os
import re
from typing import Optional

from ..core.constants import AREA_GENERAL
from .context import DocumentContext

GENERIC_DOC_PATTERN = re.compile(r"(README|RUNBOOK|CONTRIBUTING|CHANGELOG|LICENSE|SETUP|INSTALL)(\.md|$)", re.IGNORECASE)

GENERIC_TITLE_TERMS = (
    "readme", "runbook", "changelog", "contributing", "license", "setup", "installation", "getting started",
)

# (filename fragments, area, dominant technologies), first match wins
GENERIC_DOC_CONTEXTS = (
    (("readme",), "Documentation", ["markdown", "documentation"]),
    (("runbook",), "Operations", ["operations", "deployment", "devops"]),
    (("changelog",), "Documentation", ["versioning", "releases"]),
    (("contributing",), "Development", ["git", "development", "contribution"]),
    (("license",), "Legal", ["licensing"]),
    (("setup", "install"), "Setup", ["installation", "setup", "configuration"]),
)


def is_generic_document(doc_path: Optional[str], doc_title: Optional[str] = None) -> bool:
    """Whether a document is a well-known project document, by filename or H1 title."""
    if not doc_path:
        return False
    if GENERIC_DOC_PATTERN.search(doc_path):
        return True
    if doc_title:
        lower_title = doc_title.lower()
        return any(term in lower_title for term in GENERIC_TITLE_TERMS)
    return False


def get_generic_document_context(doc_path: str) -> DocumentContext:
    """Precomputed context for a generic document, skipping content inference."""
    filename = os.path.basename(doc_path).lower()
    for fragments, area, technologies in GENERIC_DOC_CONTEXTS:
        if any(fragment in filename for fragment in fragments):
            return DocumentContext(
                area=area,
                dominant_tech=list(technologies),
                is_general_purpose_readme_style=True,
                fast_path=True,
                doc_path=doc_path,
            )
    return DocumentContext(
        area=AREA_GENERAL,
        dominant_tech=[],
        is_general_purpose_readme_style=True,
        fast_path=True,
        doc_path=doc_path,
    )
