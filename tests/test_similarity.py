"""Tests for vector and path similarity helpers."""

import pytest

from review_search.semantic.similarity import cosine_similarity, path_similarity


class TestCosineSimilarity:
    """Test cosine similarity edge cases."""

    def test_identical_vectors(self):
        assert cosine_similarity([0.3, 0.4], [0.3, 0.4]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    @pytest.mark.parametrize("a,b", [
        (None, [1.0]),
        ([1.0, 2.0], [1.0]),
        ([0.0, 0.0], [1.0, 1.0]),
        ([], []),
    ])
    def test_degenerate_inputs_score_zero(self, a, b):
        assert cosine_similarity(a, b) == 0.0


class TestPathSimilarity:
    """Test directory overlap scoring."""

    def test_same_directory(self):
        assert path_similarity("src/auth/login.js", "src/auth/logout.js") == pytest.approx(1.0)

    def test_shared_prefix(self):
        assert path_similarity("src/auth/login.js", "src/db/pool.js") == pytest.approx(0.5)

    def test_different_depths(self):
        # One shared directory over an average depth of 1.5
        assert path_similarity("src/a.js", "src/components/b.js") == pytest.approx(1 / 1.5)

    def test_root_files(self):
        assert path_similarity("a.md", "b.js") == pytest.approx(1.0)

    def test_missing_path(self):
        assert path_similarity(None, "src/a.js") == 0.0
        assert path_similarity("src/a.js", "") == 0.0
