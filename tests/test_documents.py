"""Tests for file rules, generic document detection and context inference."""

import pytest
from unittest.mock import Mock, patch

import git

from review_search.config import SemanticSearchConfig

from review_search.core.constants import AREA_GENERAL_JS_TS, AREA_UNKNOWN, LANCEDB_DIR_NAME
from review_search.documents import (
    DocumentContext, detect_language, find_gitignored, generate_directory_tree,
    get_generic_document_context, infer_context_from_code, infer_document_context,
    is_documentation_file, is_excluded_by_rules, is_generic_document, is_test_file
)
from review_search.documents.classifier import (
    DOMAIN_HYPOTHESIS, ZeroShotClassifier, build_classifier, technology_candidates
)
from review_search.documents.files import matches_exclude_pattern


class TestFileClassification:
    """Test language, test-file and documentation detection."""

    @pytest.mark.parametrize("path,language", [
        ("src/app.ts", "typescript"),
        ("types/index.d.ts", "typescript"),
        ("SRC/MAIN.PY", "python"),
        ("docs/guide.md", "markdown"),
        ("Makefile", "text"),
    ])
    def test_detect_language(self, path, language):
        assert detect_language(path) == language

    @pytest.mark.parametrize("path,expected", [
        ("src/__tests__/login.js", True),
        ("src/login.test.js", True),
        ("src/tests/helpers.py", True),
        ("pkg/utils_test.go", True),
        ("src/login.js", False),
        (None, False),
    ])
    def test_is_test_file(self, path, expected):
        assert is_test_file(path) is expected

    @pytest.mark.parametrize("path,expected", [
        ("README.md", True),
        ("docs/setup.rst", True),
        ("LICENSE", True),
        ("docs/examples/guide.js", False),
        ("src/app.py", False),
        ("project/wiki/Deploy", True),
        ("", False),
    ])
    def test_is_documentation_file(self, path, expected):
        assert is_documentation_file(path) is expected


class TestExclusionRules:
    """Test static exclusion rules and user globs."""

    @pytest.mark.parametrize("absolute", [
        "/p/node_modules/lib/index.js",
        "/p/dist/bundle.js",
        "/p/package-lock.json",
        "/p/assets/app.min.js",
        "/p/assets/logo.png",
        "/p/.eslintrc",
        "/p/vite.config.ts",
        "/p/types/global.d.ts",
    ])
    def test_excluded(self, absolute):
        relative = absolute[len("/p/"):]
        assert is_excluded_by_rules(absolute, relative)

    def test_regular_source_not_excluded(self):
        assert not is_excluded_by_rules("/p/src/app.js", "src/app.js")

    def test_user_patterns(self):
        assert is_excluded_by_rules("/p/a.gen.js", "a.gen.js", ["**/*.gen.js"])
        assert is_excluded_by_rules("/p/src/b.gen.js", "src/b.gen.js", ["**/*.gen.js"])
        assert not is_excluded_by_rules("/p/src/b.js", "src/b.js", ["**/*.gen.js"])

    def test_directory_glob(self):
        assert matches_exclude_pattern("generated/api/client.ts", ["generated/*"])
        assert not matches_exclude_pattern("src/generated.ts", ["generated/*"])


class TestGitignore:
    """Test gitignore filtering through git."""

    def test_outside_repository(self, tmp_path):
        assert find_gitignored(str(tmp_path), ["a.js"]) == set()

    def test_ignored_paths(self, tmp_path):
        repo = git.Repo.init(tmp_path)
        repo.close()
        (tmp_path / ".gitignore").write_text("secret.js\nlogs/\n")
        (tmp_path / "secret.js").write_text("const key = 1;")
        (tmp_path / "app.js").write_text("const app = 1;")
        (tmp_path / "logs").mkdir()
        (tmp_path / "logs" / "out.txt").write_text("log")

        ignored = find_gitignored(str(tmp_path), ["secret.js", "app.js", "logs/out.txt"])

        assert ignored == {"secret.js", "logs/out.txt"}

    def test_empty_input(self, tmp_path):
        assert find_gitignored(str(tmp_path), []) == set()


class TestDirectoryTree:
    """Test the structure snapshot listing."""

    def test_tree_layout(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "index.js").write_text("x")
        (tmp_path / "README.md").write_text("# Readme")
        (tmp_path / "node_modules").mkdir()
        (tmp_path / "node_modules" / "lib.js").write_text("x")
        (tmp_path / LANCEDB_DIR_NAME).mkdir()

        tree = generate_directory_tree(str(tmp_path))

        assert tree == "├── src/\n│   └── index.js\n└── README.md\n"

    def test_directories_only(self, tmp_path):
        (tmp_path / "b").mkdir()
        (tmp_path / "a").mkdir()
        (tmp_path / "file.txt").write_text("x")

        assert generate_directory_tree(str(tmp_path), show_files=False) == "├── a/\n└── b/\n"

    def test_max_depth(self, tmp_path):
        (tmp_path / "a" / "b" / "c").mkdir(parents=True)

        assert generate_directory_tree(str(tmp_path), max_depth=1) == "└── a/\n    └── b/\n"

    def test_ignore_patterns(self, tmp_path):
        (tmp_path / "keep.js").write_text("x")
        (tmp_path / "skip.gen.js").write_text("x")

        assert generate_directory_tree(str(tmp_path), ignore_patterns=["*.gen.js"]) == "└── keep.js\n"

    def test_empty_directory(self, tmp_path):
        assert generate_directory_tree(str(tmp_path)) == ""


class TestGenericDocuments:
    """Test fast-path recognition of well-known project documents."""

    @pytest.mark.parametrize("path,title,expected", [
        ("README.md", None, True),
        ("docs/RUNBOOK.md", None, True),
        ("CHANGELOG", None, True),
        ("docs/api.md", "Setup guide", True),
        ("docs/api.md", "REST API", False),
        (None, "README", False),
    ])
    def test_is_generic_document(self, path, title, expected):
        assert is_generic_document(path, title) is expected

    def test_readme_context(self):
        context = get_generic_document_context("packages/web/README.md")

        assert context.area == "Documentation"
        assert context.fast_path
        assert context.is_general_purpose_readme_style

    def test_runbook_context(self):
        context = get_generic_document_context("docs/RUNBOOK.md")

        assert context.area == "Operations"
        assert "deployment" in context.dominant_tech

    def test_unknown_generic_document(self):
        context = get_generic_document_context("docs/notes.md")

        assert context.area == "General"
        assert context.dominant_tech == []


class TestDocumentContextInference:
    """Test the keyword-based document classifier."""

    def test_database_document(self):
        context = infer_document_context(
            "docs/database-migrations.md",
            "Database Migrations",
            [{"content": "Run the migration to update the schema. Uses PostgreSQL tables and sql queries."}]
        )

        assert context.area == "Database"
        assert "PostgreSQL" in context.dominant_tech
        assert not context.is_general_purpose_readme_style
        assert "postgresql" in context.keywords
        assert "database" in context.keywords

    def test_backend_document(self):
        context = infer_document_context(
            "docs/api/endpoints.md",
            "REST API Endpoints",
            [{
                "heading_text": "Routes",
                "content": "Each endpoint accepts a request and returns a response from the server. Built with Express.",
            }]
        )

        assert context.area == "Backend"
        assert "Express" in context.dominant_tech

    def test_root_readme_is_readme_style(self):
        context = infer_document_context(
            "README.md",
            "My Project",
            [{"heading_text": "Getting Started", "content": "## Getting Started\nInstallation steps and usage."}]
        )

        assert context.is_general_purpose_readme_style

    def test_unclassifiable_document(self):
        context = infer_document_context("notes.md", None, [{"content": "lorem ipsum dolor"}])

        assert context.area == AREA_UNKNOWN

    def test_fallback_context(self):
        context = DocumentContext.fallback("docs/x.md")

        assert context.area == AREA_UNKNOWN
        assert context.is_general_purpose_readme_style


class TestCodeContextInference:
    """Test the heuristic context of the code under review."""

    def test_react_component(self):
        context = infer_context_from_code("import React, { useState } from 'react';", "javascript")

        assert context.area == "Frontend"
        assert context.dominant_tech == ["React"]

    def test_express_server(self):
        context = infer_context_from_code("const express = require('express');\nconst app = express();", "javascript")

        assert context.area == "Backend"
        assert context.dominant_tech == ["Node.js/Express"]

    def test_plain_javascript(self):
        context = infer_context_from_code("export function add(a, b) { return a + b; }", "typescript")

        assert context.area == AREA_GENERAL_JS_TS
        assert "function" in context.keywords

    def test_flask_module(self):
        context = infer_context_from_code("from flask import Flask\napp = Flask(__name__)", "python")

        assert context.area == "Backend"
        assert context.dominant_tech == ["Flask"]

    def test_other_language(self):
        context = infer_context_from_code("fn main() {}", "rust")

        assert context.area == AREA_UNKNOWN
        assert context.language == "rust"


def fake_pipeline(domains=None, technologies=None):
    """Callable shaped like a zero-shot pipeline; unknown labels score 0.01."""
    def _classify(text, candidate_labels, hypothesis_template, multi_label):
        table = (domains if hypothesis_template == DOMAIN_HYPOTHESIS else technologies) or {}
        ranked = sorted(
            ((label, table.get(label, 0.01)) for label in candidate_labels), key=lambda item: item[1], reverse=True
        )
        return {"sequence": text, "labels": [label for label, _ in ranked], "scores": [score for _, score in ranked]}

    return Mock(side_effect=_classify)


class TestZeroShotClassifier:
    """Test the zero-shot domain and technology classifier."""

    def test_domain_confidence_decides_area(self):
        classifier = ZeroShotClassifier(pipeline=fake_pipeline(domains={"database": 0.9, "security": 0.25}))

        context = infer_document_context("notes.md", None, [{"content": "lorem ipsum dolor"}], classifier=classifier)

        assert context.area == "Database"
        assert "security" not in context.keywords

    def test_general_domain_counts_half(self):
        classifier = ZeroShotClassifier(pipeline=fake_pipeline(domains={"general project": 0.6}))

        assert classifier.score_areas("lorem ipsum") == {"GeneralProjectDoc": pytest.approx(0.3)}

    def test_confirmed_libraries_join_technologies(self):
        classifier = ZeroShotClassifier(pipeline=fake_pipeline(technologies={"chart.js": 0.8, "lodash.js": 0.2}))

        context = infer_document_context(
            "docs/charts.md", "Charts", [{"content": "We draw charts with Chart.js and lodash.js."}],
            classifier=classifier
        )

        assert "chart.js" in context.dominant_tech
        assert "lodash.js" not in context.dominant_tech

    def test_keyword_technologies_are_not_reclassified(self):
        assert technology_candidates("use vue.js with d3.js and vue.js", exclude=["Vue.js"]) == ["d3.js"]

    def test_text_is_truncated(self):
        pipeline = fake_pipeline()
        classifier = ZeroShotClassifier(pipeline=pipeline)

        classifier.score_areas("x" * 5000)

        assert len(pipeline.call_args.args[0]) == 1000
        assert pipeline.call_args.kwargs["multi_label"] is True

    def test_load_failure_falls_back_to_keywords(self):
        classifier = ZeroShotClassifier(model_name="missing/model")
        chunks = [{"content": "Run the migration to update the schema. Uses PostgreSQL tables and sql queries."}]

        with patch.object(ZeroShotClassifier, "_load", side_effect=OSError("offline")) as load:
            with_classifier = infer_document_context("docs/db.md", "Database", chunks, classifier=classifier)
            classifier.score_areas("second call")

        assert load.call_count == 1
        assert not classifier.available
        assert with_classifier == infer_document_context("docs/db.md", "Database", chunks)

    def test_classification_error_gives_no_scores(self):
        classifier = ZeroShotClassifier(pipeline=Mock(side_effect=RuntimeError("sequence too long")))

        assert classifier.score_areas("some text") == {}
        assert classifier.detect_technologies("some text", ["vue.js"]) == []
        assert classifier.available

    def test_build_from_settings(self):
        assert build_classifier(SemanticSearchConfig()) is None

        classifier = build_classifier(SemanticSearchConfig(
            document_classifier="zero-shot", document_classifier_model="facebook/bart-large-mnli"
        ))

        assert classifier.model_name == "facebook/bart-large-mnli"
