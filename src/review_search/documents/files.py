"""File classification and exclusion rules applied before indexing."""

import fnmatch
import os
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

from git import Repo, InvalidGitRepositoryError, NoSuchPathError, GitCommandError

from ..core.constants import (
    LANCEDB_DIR_NAME, MODEL_CACHE_DIR_NAME, DIRECTORY_TREE_MAX_DEPTH
)
from ..logging import get_logger

logger = get_logger(__name__)


EXTENSION_TO_LANGUAGE: Dict[str, str] = {
    # JavaScript / TypeScript
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript", ".cjs": "javascript",
    ".ts": "typescript", ".tsx": "typescript", ".mts": "typescript", ".cts": "typescript",
    # Web
    ".html": "html", ".htm": "html", ".css": "css", ".scss": "scss", ".sass": "sass",
    ".less": "less", ".svg": "svg",
    # Configuration
    ".json": "json", ".yaml": "yaml", ".yml": "yaml", ".toml": "toml", ".xml": "xml",
    # Documentation
    ".md": "markdown", ".mdx": "markdown", ".markdown": "markdown",
    ".rst": "restructuredtext", ".adoc": "asciidoc", ".txt": "text",
    # Python
    ".py": "python", ".pyi": "python", ".ipynb": "jupyter",
    # Ruby / PHP
    ".rb": "ruby", ".erb": "ruby", ".rake": "ruby", ".php": "php", ".phtml": "php",
    # JVM
    ".java": "java", ".kt": "kotlin", ".kts": "kotlin", ".groovy": "groovy", ".scala": "scala",
    # C family
    ".c": "c", ".h": "c", ".cpp": "cpp", ".cc": "cpp", ".cxx": "cpp", ".hpp": "cpp",
    ".c++": "cpp", ".h++": "cpp", ".cs": "csharp",
    # Systems
    ".go": "go", ".rs": "rust", ".swift": "swift",
    # Shell
    ".sh": "bash", ".bash": "bash", ".zsh": "zsh", ".fish": "fish",
    # Other languages
    ".pl": "perl", ".pm": "perl", ".lua": "lua", ".r": "r", ".dart": "dart",
    ".ex": "elixir", ".exs": "elixir", ".erl": "erlang", ".hrl": "erlang",
    ".clj": "clojure", ".cljs": "clojure", ".hs": "haskell", ".lhs": "haskell",
    ".graphql": "graphql", ".gql": "graphql",
    # Frameworks
    ".vue": "vue", ".svelte": "svelte", ".astro": "astro", ".prisma": "prisma",
}

DOCUMENTATION_LANGUAGES: Set[str] = {"markdown", "restructuredtext", "asciidoc", "text"}
DOCUMENTATION_EXTENSIONS: Set[str] = {
    ext for ext, lang in EXTENSION_TO_LANGUAGE.items() if lang in DOCUMENTATION_LANGUAGES
}
CODE_EXTENSIONS: Set[str] = set(EXTENSION_TO_LANGUAGE) - DOCUMENTATION_EXTENSIONS

BINARY_EXTENSIONS: Set[str] = {
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".ico", ".webp", ".pdf", ".doc", ".docx",
    ".ppt", ".pptx", ".xls", ".xlsx", ".zip", ".tar", ".gz", ".7z", ".rar", ".exe",
    ".dll", ".so", ".dylib", ".ttf", ".otf", ".woff", ".woff2", ".mp3", ".mp4", ".avi",
    ".mov", ".wav",
}

SKIP_DIRECTORIES: Set[str] = {"node_modules", "dist", "build", ".git", "coverage", "vendor"}

SKIP_FILENAMES: Set[str] = {
    # Lock files
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "composer.lock", "Gemfile.lock",
    # Package manifests
    "package.json", "composer.json", "Gemfile", "Cargo.toml", "go.mod", "go.sum",
    "requirements.txt", "pyproject.toml", "pom.xml", "build.gradle",
    # Tool configuration
    "tsconfig.json", "jsconfig.json", ".eslintrc", ".eslintrc.json", ".eslintrc.js",
    ".prettierrc", ".prettierrc.json", "prettier.config.js", ".babelrc", "babel.config.js",
    "jest.config.js", "jest.config.ts", "vitest.config.ts", "vitest.config.js",
    "webpack.config.js", "vite.config.js", "vite.config.ts", "rollup.config.js",
    ".dockerignore", ".gitignore", ".gitattributes", ".editorconfig", ".env.example",
    ".nvmrc", ".node-version",
}

SKIP_FILE_PATTERNS: List[re.Pattern] = [
    re.compile(r"\.min\.(js|css)$"),
    re.compile(r"\.bundle\.(js|css)$"),
    re.compile(r"\.generated\."),
    re.compile(r"\.d\.ts$"),
    re.compile(r"\.snap$"),
    re.compile(r"^\..*rc$"),
    re.compile(r"^\..*rc\.json$"),
    re.compile(r"\.config\.(js|ts|mjs|cjs)$"),
]

TEST_FILE_PATTERN = re.compile(r"(/__tests__/|/tests?/|/specs?/|_test\.|_spec\.|\.test\.|\.spec\.)", re.IGNORECASE)

DOC_FILENAMES: Set[str] = {"readme", "license", "contributing", "changelog", "copying"}
DOC_DIRECTORIES: Sequence[str] = ("/docs/", "/documentation/", "/doc/", "/wiki/", "/examples/", "/guides/")
DOC_TERMS: Sequence[str] = ("guide", "tutorial", "manual", "howto")

TREE_SKIP_NAMES: Set[str] = {LANCEDB_DIR_NAME, MODEL_CACHE_DIR_NAME} | SKIP_DIRECTORIES


def detect_language(file_path: str) -> str:
    """Language name for a file from its extension, ``text`` when unknown."""
    lower = file_path.lower()
    if lower.endswith(".d.ts"):
        return "typescript"
    return EXTENSION_TO_LANGUAGE.get(os.path.splitext(lower)[1], "text")


def is_test_file(file_path: Optional[str]) -> bool:
    if not file_path:
        return False
    return bool(TEST_FILE_PATTERN.search(file_path.replace("\\", "/").lower()))


def is_documentation_file(file_path: Optional[str]) -> bool:
    """Whether a path looks like documentation rather than source code."""
    if not file_path:
        return False
    lower_path = file_path.replace("\\", "/").lower()
    filename = lower_path.rsplit("/", 1)[-1]
    stem, extension = os.path.splitext(filename)

    if extension in CODE_EXTENSIONS:
        return False
    if extension in DOCUMENTATION_EXTENSIONS:
        return True
    if stem in DOC_FILENAMES:
        return True
    if any(directory in lower_path for directory in DOC_DIRECTORIES):
        return True
    return any(term in filename for term in DOC_TERMS)


def matches_exclude_pattern(relative_path: str, patterns: Iterable[str]) -> bool:
    """Glob match of a project-relative path against user exclude patterns."""
    posix_path = relative_path.replace("\\", "/")
    for pattern in patterns:
        if fnmatch.fnmatch(posix_path, pattern):
            return True
        # A leading "**/" also matches at the project root
        if pattern.startswith("**/") and fnmatch.fnmatch(posix_path, pattern[3:]):
            return True
    return False


def is_excluded_by_rules(absolute_path: str, relative_path: str, exclude_patterns: Sequence[str] = ()) -> bool:
    """Static exclusion rules: binary types, vendored directories, lock/config files, generated files."""
    posix_path = absolute_path.replace("\\", "/")
    filename = os.path.basename(posix_path)
    extension = os.path.splitext(filename)[1].lower()

    if extension in BINARY_EXTENSIONS:
        return True
    if any(f"/{directory}/" in posix_path for directory in SKIP_DIRECTORIES):
        return True
    if filename in SKIP_FILENAMES:
        return True
    if any(pattern.search(filename) for pattern in SKIP_FILE_PATTERNS):
        return True
    return bool(exclude_patterns) and matches_exclude_pattern(relative_path, exclude_patterns)


def find_gitignored(base_dir: str, relative_paths: Sequence[str]) -> Set[str]:
    """Subset of ``relative_paths`` ignored by git; empty outside a repository."""
    if not relative_paths:
        return set()
    try:
        repo = Repo(base_dir, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return set()

    try:
        root = Path(repo.working_tree_dir).resolve()
        base = Path(base_dir).resolve()
        by_repo_path = {
            (base / rel).resolve().relative_to(root).as_posix(): rel
            for rel in relative_paths
        }
        ignored = repo.ignored(*by_repo_path.keys())
    except (GitCommandError, ValueError) as e:
        logger.debug("Gitignore check failed", base_dir=base_dir, error=str(e))
        return set()
    finally:
        repo.close()

    return {by_repo_path[path] for path in ignored if path in by_repo_path}


def generate_directory_tree(
    root_dir: str,
    max_depth: int = DIRECTORY_TREE_MAX_DEPTH,
    ignore_patterns: Sequence[str] = (),
    show_files: bool = True
) -> str:
    """Box-drawing directory listing, directories first, used for the structure snapshot."""
    root = Path(root_dir)

    def _build(directory: Path, depth: int, prefix: str) -> List[str]:
        if depth > max_depth:
            return []
        try:
            entries = sorted(
                directory.iterdir(),
                key=lambda entry: (not entry.is_dir(), entry.name.lower())
            )
        except OSError as e:
            logger.warning("Could not read directory", directory=str(directory), error=str(e))
            return []

        entries = [
            entry for entry in entries
            if entry.name not in TREE_SKIP_NAMES
            and not (ignore_patterns and matches_exclude_pattern(
                entry.relative_to(root).as_posix(), ignore_patterns
            ))
            and (show_files or entry.is_dir())
        ]

        lines = []
        for index, entry in enumerate(entries):
            is_last = index == len(entries) - 1
            connector = "└── " if is_last else "├── "
            if entry.is_dir():
                lines.append(f"{prefix}{connector}{entry.name}/")
                lines.extend(_build(entry, depth + 1, prefix + ("    " if is_last else "│   ")))
            else:
                lines.append(f"{prefix}{connector}{entry.name}")
        return lines

    lines = _build(root, 0, "")
    return "\n".join(lines) + ("\n" if lines else "")
