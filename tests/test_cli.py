"""
Tests para el CLI
=================
"""

import sys
from unittest.mock import MagicMock, patch

import pytest

from devmemory import cli
from devmemory.errors import ValidationError
from devmemory.models import DuplicateMatch, ReindexReport


@pytest.fixture
def fake_memory():
    memory = MagicMock()
    memory.__enter__.return_value = memory
    memory.__exit__.return_value = False
    with patch("devmemory.coordinator.MemoryCoordinator.from_settings", return_value=memory):
        yield memory


def _run(*argv):
    with patch.object(sys, "argv", ["devmemory", *argv]):
        cli.main()


class TestCli:
    """Tests de los subcomandos."""

    def test_stats(self, fake_memory):
        fake_memory.get_statistics.return_value = {
            "decisions": 2,
            "progress": 1,
            "code_patterns": 0,
            "decisions_without_embedding": 1,
            "code_patterns_without_embedding": 0,
            "projects": 1,
            "relations": 0,
            "vector_index": {"decisions": 1, "code_patterns": 0},
        }

        _run("stats")

        fake_memory.get_statistics.assert_called_once_with(None)

    def test_search_passes_options(self, fake_memory):
        fake_memory.semantic_search.return_value = []

        _run("search", "cache de sesiones", "--category", "code_patterns", "-k", "3", "-p", "web")

        fake_memory.semantic_search.assert_called_once_with(
            "cache de sesiones", "code_patterns", project="web", limit=3, threshold=None
        )

    def test_duplicates(self, fake_memory):
        fake_memory.identify_duplicates.return_value = [DuplicateMatch(
            content="def login(): ...", file_path="auth.py", language="python",
            project="web", similarity=0.91,
        )]

        _run("duplicates", "login", "-t", "0.8")

        fake_memory.identify_duplicates.assert_called_once_with("login", threshold=0.8)

    def test_reindex(self, fake_memory):
        fake_memory.reindex.return_value = ReindexReport(checked=3, repaired=1)

        _run("reindex", "--project", "web")

        fake_memory.reindex.assert_called_once_with("web")

    def test_domain_error_exits(self, fake_memory):
        fake_memory.semantic_search.side_effect = ValidationError("consulta vacía")

        with pytest.raises(SystemExit) as exc_info:
            _run("search", " ")

        assert exc_info.value.code == 1
