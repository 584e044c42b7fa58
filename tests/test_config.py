"""Tests for configuration loading and validation."""

import pytest
from pathlib import Path

from review_search.config import Config, SemanticSearchConfig, StorageConfig
from review_search.exceptions import ConfigurationError


class TestSemanticSearchConfig:
    """Test semantic search settings."""

    def test_defaults(self):
        settings = SemanticSearchConfig()

        assert settings.embedding_dimensions == 384
        assert settings.code_result_limit == 5
        assert settings.doc_result_limit == 10
        assert settings.code_similarity_threshold == 0.7
        assert settings.max_code_file_lines == 1000

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CODE_RESULT_LIMIT", "7")
        monkeypatch.setenv("DOC_SIMILARITY_THRESHOLD", "0.25")

        settings = SemanticSearchConfig()

        assert settings.code_result_limit == 7
        assert settings.doc_similarity_threshold == 0.25

    def test_threshold_outside_unit_interval(self):
        with pytest.raises(ConfigurationError):
            SemanticSearchConfig(code_similarity_threshold=1.5)

    def test_unknown_device(self):
        with pytest.raises(ConfigurationError):
            SemanticSearchConfig(embedding_device="tpu")

    def test_keyword_classifier_by_default(self):
        assert SemanticSearchConfig().document_classifier == "keywords"

    def test_zero_shot_classifier_from_environment(self, monkeypatch):
        monkeypatch.setenv("DOCUMENT_CLASSIFIER", "zero-shot")
        monkeypatch.setenv("DOCUMENT_CLASSIFIER_MODEL", "facebook/bart-large-mnli")

        settings = SemanticSearchConfig()

        assert settings.document_classifier == "zero-shot"
        assert settings.document_classifier_model == "facebook/bart-large-mnli"

    def test_unknown_classifier(self):
        with pytest.raises(ConfigurationError):
            SemanticSearchConfig(document_classifier="llm")


class TestStorageConfig:
    """Test store location and table names."""

    def test_db_path_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("REVIEW_SEARCH_DB_PATH", str(tmp_path / "db"))

        settings = StorageConfig()

        assert settings.db_path == Path(tmp_path / "db")
        assert settings.table_names == [settings.file_table, settings.document_table, settings.comments_table]

    def test_config_groups(self):
        loaded = Config.load()

        assert isinstance(loaded.storage, StorageConfig)
        assert isinstance(loaded.semantic, SemanticSearchConfig)
        assert loaded.app.log_format in ("json", "console")
