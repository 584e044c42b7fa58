"""Inference of a document's or code file's semantic area and technologies.

Documents are classified with a deterministic keyword scorer: technology
mentions, area vocabulary, path hints and README-style markers each add to
per-area scores, and the best area wins when it clears a minimum score.
An optional zero-shot classifier contributes domain confidences to the
same scores.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..core.constants import (
    AREA_UNKNOWN, AREA_GENERAL_JS_TS, AREA_SCORE_THRESHOLD, MAX_CONTEXT_CHARS
)
from ..logging import get_logger
from .classifier import ZeroShotClassifier, technology_candidates

logger = get_logger(__name__)


@dataclass
class DocumentContext:
    """Inferred semantic area and dominant technologies of a document or query."""

    area: str = AREA_UNKNOWN
    dominant_tech: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    is_general_purpose_readme_style: bool = False
    fast_path: bool = False
    doc_path: Optional[str] = None
    language: Optional[str] = None

    @classmethod
    def fallback(cls, doc_path: Optional[str] = None) -> "DocumentContext":
        """Context used when inference fails."""
        return cls(area=AREA_UNKNOWN, dominant_tech=[], is_general_purpose_readme_style=True, doc_path=doc_path)


AREAS = (
    "Frontend", "Backend", "FullStack", "Database", "DevOps", "Testing",
    "Security", "Architecture", "ToolingInternal", "GeneralProjectDoc",
)

TECHNOLOGY_KEYWORDS: Dict[str, tuple] = {
    "React": ("react", "jsx", "usestate", "useeffect"),
    "Vue": ("vue", "vuex", "nuxt"),
    "Angular": ("angular",),
    "Svelte": ("svelte",),
    "Next.js": ("next.js", "nextjs"),
    "Node.js": ("node.js", "nodejs", "npm"),
    "Express": ("express",),
    "Django": ("django",),
    "Flask": ("flask",),
    "FastAPI": ("fastapi",),
    "GraphQL": ("graphql",),
    "PostgreSQL": ("postgres", "postgresql"),
    "MySQL": ("mysql",),
    "MongoDB": ("mongodb", "mongoose"),
    "Redis": ("redis",),
    "Docker": ("docker", "dockerfile"),
    "Kubernetes": ("kubernetes", "k8s", "helm"),
    "Terraform": ("terraform",),
    "GitHub Actions": ("github actions",),
    "Jest": ("jest",),
    "Pytest": ("pytest",),
    "Playwright": ("playwright",),
    "TypeScript": ("typescript",),
    "Python": ("python",),
}

# Technology fragments that push an area score
TECHNOLOGY_AREA_HINTS = (
    (("react", "vue", "angular", "svelte", "next.js"), "Frontend"),
    (("node", "express", "django", "flask", "fastapi", "graphql"), "Backend"),
    (("postgres", "mysql", "mongodb", "redis"), "Database"),
    (("docker", "kubernetes", "terraform", "github actions"), "DevOps"),
    (("jest", "pytest", "playwright"), "Testing"),
)

AREA_VOCABULARY: Dict[str, tuple] = {
    "Frontend": ("component", "css", "layout", "browser", "render", "ui", "ux", "styling", "props", "dom"),
    "Backend": ("api", "endpoint", "server", "request", "response", "middleware", "route", "rest", "service"),
    "FullStack": ("full stack", "fullstack", "end-to-end", "client and server"),
    "Database": ("database", "schema", "migration", "query", "sql", "table", "index", "orm"),
    "DevOps": ("deploy", "deployment", "pipeline", "infrastructure", "container", "ci/cd", "monitoring", "cluster"),
    "Testing": ("test", "tests", "testing", "coverage", "mock", "fixture", "assertion", "qa"),
    "Security": ("security", "authentication", "authorization", "token", "encryption", "vulnerability", "oauth"),
    "Architecture": ("architecture", "design", "adr", "decision record", "diagram", "module boundaries"),
    "ToolingInternal": ("cli", "tool", "tooling", "script", "command", "developer tools", "lint"),
    "GeneralProjectDoc": ("overview", "introduction", "getting started", "about this project", "general"),
}
AREA_VOCABULARY_WEIGHT = 0.15
TECHNOLOGY_AREA_BONUS = 0.3
PATH_HINT_BONUS = 0.5
GENERAL_DOC_WEIGHT = 0.5

README_KEYWORD_POINTS: Dict[str, float] = {
    "getting started": 2,
    "installation": 2,
    "setup": 2,
    "how to run": 2,
    "usage": 1,
    "configuration": 1,
    "deployment": 1,
    "troubleshooting": 1,
    "prerequisites": 1,
    "table of contents": 1,
    "contributing": 0.5,
    "license": 0.5,
    "overview": 1,
    "introduction": 1,
    "purpose": 1,
    "project structure": 0.5,
}

KEYWORD_STOPWORDS = {"the", "for", "and", "with", "into", "about", "using", "docs", "this", "that"}
MAX_KEYWORDS = 15

CODE_KEYWORDS = (
    "api", "component", "module", "function", "class", "hook", "service", "database", "query", "state", "props",
)


def _contains_term(text: str, term: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(term)}(?![a-z0-9])", text) is not None


def _chunk_field(chunk: Any, name: str) -> str:
    if isinstance(chunk, Mapping):
        value = chunk.get(name)
    else:
        value = getattr(chunk, name, None)
    return (value or "").lower()


def _sample_text(chunks: Iterable[Any], lower_title: str) -> str:
    """Lowercased chunk headings and contents, up to the character budget."""
    parts = []
    used = 0
    for chunk in chunks:
        if used >= MAX_CONTEXT_CHARS:
            break
        heading = _chunk_field(chunk, "heading_text")
        text = f"{heading} " if heading and heading != lower_title else ""
        text += _chunk_field(chunk, "content")
        parts.append(text[:MAX_CONTEXT_CHARS - used])
        used += len(text)
    return " ".join(parts)


def detect_technologies(text: str) -> List[str]:
    return [tech for tech, terms in TECHNOLOGY_KEYWORDS.items() if any(_contains_term(text, term) for term in terms)]


def readme_style_points(text: str) -> float:
    return sum(points for keyword, points in README_KEYWORD_POINTS.items() if keyword in text)


def score_areas(text: str, lower_path: str, lower_title: str, technologies: List[str]) -> Dict[str, float]:
    """Per-area scores from vocabulary, technologies and path hints."""
    scores = {area: 0.0 for area in AREAS}

    for area, vocabulary in AREA_VOCABULARY.items():
        hits = sum(1 for term in vocabulary if _contains_term(text, term))
        weight = AREA_VOCABULARY_WEIGHT * (GENERAL_DOC_WEIGHT if area == "GeneralProjectDoc" else 1.0)
        scores[area] += min(1.0, hits * weight)

    for tech in technologies:
        lower_tech = tech.lower()
        for fragments, area in TECHNOLOGY_AREA_HINTS:
            if any(fragment in lower_tech for fragment in fragments):
                scores[area] += TECHNOLOGY_AREA_BONUS

    if (any(hint in lower_path for hint in ("/tools/", "/scripts/", "/cli/"))
            or " cli" in lower_title or " tool" in lower_title):
        scores["ToolingInternal"] += PATH_HINT_BONUS
    if (any(hint in lower_path for hint in ("/api/", "/server/", "/db/", "/backend/"))
            or any(hint in lower_title for hint in (" api", " server", " backend"))):
        scores["Backend"] += PATH_HINT_BONUS
    if (any(hint in lower_path for hint in ("/frontend/", "/ui/", "/components/", "/views/", "/pages/"))
            or " frontend" in lower_title or " user interface" in lower_title):
        scores["Frontend"] += PATH_HINT_BONUS
    if lower_path.endswith(("readme.md", "runbook.md", "contributing.md", "changelog.md")):
        scores["GeneralProjectDoc"] += PATH_HINT_BONUS

    return scores


def infer_document_context(
    doc_path: str,
    title: Optional[str],
    chunks: Iterable[Any] = (),
    classifier: Optional[ZeroShotClassifier] = None
) -> DocumentContext:
    """Classify a document from its path, H1 title and a sample of its chunks.

    ``chunks`` are mappings or objects with ``content`` and ``heading_text``.
    With a ``classifier``, zero-shot domain confidences are added to the
    keyword area scores and library names it confirms join the detected
    technologies.
    """
    context = DocumentContext(doc_path=doc_path)
    lower_path = (doc_path or "").replace("\\", "/").lower()
    lower_title = (title or "").lower()

    filename = re.sub(r"\.(md|rst|txt|mdx)$", "", os.path.basename(lower_path))
    primary = f"{lower_title} {lower_title} {filename.replace('-', ' ')}"
    text = re.sub(r"\s+", " ", f"{primary} {_sample_text(chunks, lower_title)}").strip()
    if not text:
        text = lower_path
    if not text:
        return context

    context.dominant_tech = detect_technologies(text)
    if classifier is not None:
        candidates = technology_candidates(text, exclude=context.dominant_tech)
        context.dominant_tech.extend(classifier.detect_technologies(text, candidates))
    scores = score_areas(text, lower_path, lower_title, context.dominant_tech)
    if classifier is not None:
        for area, confidence in classifier.score_areas(text).items():
            scores[area] += confidence

    best_area, best_score = AREA_UNKNOWN, 0.0
    for area in AREAS:
        if scores[area] > best_score:
            best_area, best_score = area, scores[area]
    context.area = best_area if best_score >= AREA_SCORE_THRESHOLD else AREA_UNKNOWN

    points = readme_style_points(text)
    directory = lower_path.rsplit("/", 1)[0] if "/" in lower_path else ""
    is_root_file = "/" not in directory
    if (is_root_file and os.path.basename(lower_path).startswith("readme") and points >= 3) or points >= 5:
        context.is_general_purpose_readme_style = True
    if context.area == "GeneralProjectDoc":
        context.is_general_purpose_readme_style = True
    if context.area == "ToolingInternal" and "readme" in lower_path and points >= 2:
        context.is_general_purpose_readme_style = True

    keywords = [tech.lower() for tech in context.dominant_tech]
    if lower_title:
        title_words = [
            word for word in re.split(r"[^a-z0-9-]+", lower_title)
            if len(word) > 3 and word not in KEYWORD_STOPWORDS
        ]
        keywords.extend(title_words[:5])
    ranked_areas = sorted((area for area in AREAS if scores[area] > 0), key=lambda a: scores[a], reverse=True)
    keywords.extend(area.lower() for area in ranked_areas[:3])
    context.keywords = list(dict.fromkeys(keywords))[:MAX_KEYWORDS]

    logger.debug(
        "Inferred document context",
        doc_path=doc_path,
        area=context.area,
        score=round(best_score, 3),
        readme_points=points
    )
    return context


def infer_context_from_code(code: str, language: Optional[str]) -> DocumentContext:
    """Heuristic area and technology guess for the code under review."""
    context = DocumentContext(language=language)
    lower_code = (code or "").lower()

    if language in ("javascript", "typescript"):
        if any(term in lower_code for term in (
            "react", "usestate", "useeffect", "angular", "vue", "document.getelementbyid", "jsx", ".tsx"
        )):
            context.area = "Frontend"
            for term, tech in (("react", "React"), ("angular", "Angular"), ("vue", "Vue")):
                if term in lower_code:
                    context.dominant_tech.append(tech)
        elif any(term in lower_code for term in (
            "require('express')", "http.createserver", "fs.readfilesync", "process.env"
        )):
            context.area = "Backend"
            context.dominant_tech.append("Node.js/Express" if "express" in lower_code else "Node.js")
        else:
            context.area = AREA_GENERAL_JS_TS
    elif language == "python":
        if "django" in lower_code or "flask" in lower_code:
            context.area = "Backend"
            if "django" in lower_code:
                context.dominant_tech.append("Django")
            if "flask" in lower_code:
                context.dominant_tech.append("Flask")
        else:
            context.area = "GeneralPython"

    context.keywords = [word for word in CODE_KEYWORDS if word in lower_code]
    context.dominant_tech = list(dict.fromkeys(context.dominant_tech))
    return context
