"""Tests for CLI functionality."""

import pytest
import json
from unittest.mock import AsyncMock, Mock, patch
from typer.testing import CliRunner

from review_search import __version__
from review_search.cli import app, discover_files
from review_search.exceptions import InitializationError
from review_search.semantic.models import IndexKind, IndexResult, IndexStrategy, SearchResult


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def mock_system():
    """Search system double returned by the CLI factory."""
    system = Mock()
    system.index_batch = AsyncMock(return_value=IndexResult(processed=2, skipped=1, files=["a.js", "b.js"]))
    system.search = AsyncMock(return_value=[
        SearchResult(similarity=0.91, type="file", content="x", path="src/auth.js", language="javascript"),
    ])
    system.search_docs = AsyncMock(return_value=[
        SearchResult(
            similarity=0.8, type="documentation-chunk", content="y", path="docs/api.md",
            heading_text="Routes", is_documentation=True, reranked=True
        ),
    ])
    system.calculate_query_embedding = AsyncMock(return_value=[0.1, 0.2, 0.3])
    system.process_custom_documents = AsyncMock(return_value=["chunk"])
    system.find_relevant_custom_doc_chunks = AsyncMock(return_value=[
        SearchResult(
            similarity=0.7, type="custom-document-chunk", content="z", path="custom:./guide.md",
            document_title="Review Guide", is_documentation=True
        ),
    ])
    system.update_pr_comments_index = AsyncMock(
        return_value=IndexStrategy(kind=IndexKind.IVF_FLAT, rows=2400, partitions=6)
    )
    system.clear_project = AsyncMock(return_value=True)
    system.clear_all = AsyncMock(return_value=True)
    system.get_system_status = AsyncMock(return_value={
        "initialized_at": None,
        "model": {"name": "BAAI/bge-small-en-v1.5", "dimensions": 384, "ready": False},
        "storage": {
            "db_path": "/tmp/lancedb",
            "connected": True,
            "tables": {"file_embeddings": {"rows": 12, "has_project_path": True}},
        },
        "cache": {"total_cached_items": 0},
    })
    system.close = AsyncMock()

    with patch("review_search.cli.create_system", return_value=system):
        yield system


class TestVersion:
    """Test version command."""

    def test_version(self, runner):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestIndexCommand:
    """Test project indexing."""

    def test_index_summary(self, runner, mock_system, project_dir):
        (project_dir / "a.js").write_text("a")
        (project_dir / "node_modules").mkdir()
        (project_dir / "node_modules" / "dep.js").write_text("d")

        result = runner.invoke(app, ["index", str(project_dir), "-e", "*.gen.ts", "--no-gitignore"])

        assert result.exit_code == 0
        assert "Indexing Summary" in result.stdout
        args, kwargs = mock_system.index_batch.call_args
        assert args == ([str(project_dir.resolve() / "a.js")], str(project_dir.resolve()))
        assert kwargs["exclude_patterns"] == ["*.gen.ts"]
        assert kwargs["respect_gitignore"] is False
        mock_system.close.assert_awaited_once()

    def test_index_json(self, runner, mock_system, project_dir):
        result = runner.invoke(app, ["index", str(project_dir), "--output", "json"])

        assert result.exit_code == 0
        assert '"processed": 2' in result.stdout

    def test_missing_directory(self, runner, mock_system, tmp_path):
        result = runner.invoke(app, ["index", str(tmp_path / "missing")])

        assert result.exit_code == 1
        mock_system.index_batch.assert_not_called()

    def test_everything_failed(self, runner, mock_system, project_dir):
        mock_system.index_batch.return_value = IndexResult.all_failed(["a.js"])

        result = runner.invoke(app, ["index", str(project_dir)])

        assert result.exit_code == 1

    def test_initialization_failure(self, runner, mock_system, project_dir):
        mock_system.index_batch.side_effect = InitializationError("model unavailable")

        result = runner.invoke(app, ["index", str(project_dir)])

        assert result.exit_code == 1
        assert "Indexing failed" in result.stdout
        assert "try again" in result.stdout
        mock_system.close.assert_awaited_once()


class TestSearchCommands:
    """Test code and documentation search."""

    def test_search_table(self, runner, mock_system, project_dir):
        result = runner.invoke(app, ["search", "auth bug", "-p", str(project_dir), "-n", "3", "--no-tests"])

        assert result.exit_code == 0
        assert "src/auth.js" in result.stdout
        args, kwargs = mock_system.search.call_args
        assert args == ("auth bug", str(project_dir.resolve()))
        assert kwargs["limit"] == 3
        assert kwargs["is_test_file"] is False
        assert kwargs["include_project_structure"] is False

    def test_search_json(self, runner, mock_system, project_dir):
        result = runner.invoke(app, ["search", "auth bug", "-p", str(project_dir), "-o", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data[0]["path"] == "src/auth.js"
        assert data[0]["similarity"] == 0.91

    def test_search_without_results(self, runner, mock_system, project_dir):
        mock_system.search.return_value = []

        result = runner.invoke(app, ["search", "nothing", "-p", str(project_dir)])

        assert result.exit_code == 0
        assert "No results found" in result.stdout

    def test_search_docs_reads_file_under_review(self, runner, mock_system, project_dir):
        (project_dir / "src").mkdir()
        (project_dir / "src" / "app.js").write_text("const express = require('express');")

        result = runner.invoke(
            app, ["search-docs", "routing", "-p", str(project_dir), "-f", "src/app.js", "--no-rerank"]
        )

        assert result.exit_code == 0
        assert "docs/api.md" in result.stdout
        kwargs = mock_system.search_docs.call_args.kwargs
        assert kwargs["query_file_path"] == "src/app.js"
        assert "express" in kwargs["query_code"]
        assert kwargs["use_reranking"] is False

    def test_search_docs_unreadable_file(self, runner, mock_system, project_dir):
        result = runner.invoke(app, ["search-docs", "routing", "-p", str(project_dir), "-f", "missing.js"])

        assert result.exit_code == 1
        mock_system.search_docs.assert_not_called()

    def test_search_docs_with_custom_documents(self, runner, mock_system, project_dir, tmp_path):
        guide = tmp_path / "guide.md"
        guide.write_text("# Review Guide\n\nPrefer small functions.")

        result = runner.invoke(app, ["search-docs", "style", "-p", str(project_dir), "-d", str(guide)])

        assert result.exit_code == 0
        assert "custom:./guide.md" in result.stdout
        documents, project = mock_system.process_custom_documents.call_args.args
        assert documents[0].title == "custom:./guide.md"
        assert documents[0].content.startswith("# Review Guide")
        assert project == str(project_dir.resolve())
        mock_system.calculate_query_embedding.assert_awaited_once_with("style")
        custom_kwargs = mock_system.find_relevant_custom_doc_chunks.call_args.kwargs
        assert custom_kwargs["chunks"] == ["chunk"]
        assert custom_kwargs["precomputed_query_embedding"] == [0.1, 0.2, 0.3]
        assert mock_system.search_docs.call_args.kwargs["precomputed_query_embedding"] == [0.1, 0.2, 0.3]

    def test_search_docs_with_custom_documents_json(self, runner, mock_system, project_dir, tmp_path):
        guide = tmp_path / "guide.md"
        guide.write_text("Prefer small functions.")

        result = runner.invoke(app, ["search-docs", "style", "-p", str(project_dir), "-d", str(guide), "-o", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["documentation"][0]["path"] == "docs/api.md"
        assert data["custom_documents"][0]["document_title"] == "Review Guide"

    def test_search_docs_without_custom_documents(self, runner, mock_system, project_dir):
        result = runner.invoke(app, ["search-docs", "routing", "-p", str(project_dir)])

        assert result.exit_code == 0
        mock_system.calculate_query_embedding.assert_not_called()
        mock_system.process_custom_documents.assert_not_called()
        assert mock_system.search_docs.call_args.kwargs["precomputed_query_embedding"] is None

    def test_search_docs_unreadable_custom_document(self, runner, mock_system, project_dir, tmp_path):
        result = runner.invoke(app, ["search-docs", "style", "-p", str(project_dir), "-d", str(tmp_path / "nope.md")])

        assert result.exit_code == 1
        mock_system.search_docs.assert_not_called()


class TestReindexCommentsCommand:
    """Test review comments index maintenance."""

    def test_reindex(self, runner, mock_system):
        result = runner.invoke(app, ["reindex-comments"])

        assert result.exit_code == 0
        assert "ivf_flat" in result.stdout
        mock_system.update_pr_comments_index.assert_awaited_once()
        mock_system.close.assert_awaited_once()

    def test_reindex_without_table(self, runner, mock_system):
        mock_system.update_pr_comments_index.return_value = None

        result = runner.invoke(app, ["reindex-comments"])

        assert result.exit_code == 1


class TestClearCommand:
    """Test embedding deletion."""

    def test_requires_a_target(self, runner, mock_system):
        result = runner.invoke(app, ["clear"])

        assert result.exit_code == 1
        mock_system.clear_project.assert_not_called()

    def test_clear_project(self, runner, mock_system, project_dir):
        result = runner.invoke(app, ["clear", "--project", str(project_dir), "--yes"])

        assert result.exit_code == 0
        mock_system.clear_project.assert_awaited_once_with(str(project_dir.resolve()))
        assert "Cleared embeddings" in result.stdout

    def test_clear_all(self, runner, mock_system):
        result = runner.invoke(app, ["clear", "--all", "--yes"])

        assert result.exit_code == 0
        mock_system.clear_all.assert_awaited_once()
        mock_system.clear_project.assert_not_called()

    def test_confirmation_declined(self, runner, mock_system, project_dir):
        result = runner.invoke(app, ["clear", "--project", str(project_dir)], input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.stdout
        mock_system.clear_project.assert_not_called()

    def test_refused_clear(self, runner, mock_system):
        mock_system.clear_project.return_value = False

        result = runner.invoke(app, ["clear", "--project", "/", "--yes"])

        assert result.exit_code == 1
        assert "Failed to clear" in result.stdout


class TestStatusCommand:
    """Test status reporting."""

    def test_status_table(self, runner, mock_system):
        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Review Search Status" in result.stdout
        assert "file_embeddings" in result.stdout

    def test_status_json(self, runner, mock_system):
        result = runner.invoke(app, ["status", "--output", "json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["storage"]["tables"]["file_embeddings"]["rows"] == 12


class TestFileDiscovery:
    """Test the project walk used by the index command."""

    def test_skips_vendored_directories(self, project_dir):
        for relative in ("src/index.js", "node_modules/dep/index.js", ".ai-review-lancedb/data.lance", "README.md"):
            path = project_dir / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("x")

        files = discover_files(project_dir)

        assert files == [str(project_dir / "README.md"), str(project_dir / "src" / "index.js")]
