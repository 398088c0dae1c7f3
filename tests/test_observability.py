"""
Tests para observabilidad
=========================

Langfuse se desactiva bajo pytest; se verifica que los decoradores no
alteran el comportamiento y que el camino con cliente crea spans.
"""

from unittest.mock import MagicMock, patch

import pytest

from devmemory import observability
from devmemory.models import DecisionResult


class TestDisabled:
    """Comportamiento con Langfuse desactivado."""

    def test_disabled_under_pytest(self):
        assert observability._is_disabled() is True

    def test_decorator_is_transparent(self):
        """El decorador devuelve el resultado y conserva el nombre."""

        @observability.trace_memory_write
        def record(decision, project=None):
            return DecisionResult(structured_id=1)

        assert record("x", project="web").structured_id == 1
        assert record.__name__ == "record"

    def test_decorator_propagates_errors(self):
        @observability.trace_memory_search
        def search(query):
            raise ValueError("fallo")

        with pytest.raises(ValueError):
            search("q")

    def test_flush_without_client(self):
        """flush_traces no falla sin cliente configurado."""
        observability.flush_traces()


class TestEnabled:
    """Camino con cliente Langfuse simulado."""

    def test_span_created_with_summary(self):
        client = MagicMock()
        span = client.start_as_current_span.return_value.__enter__.return_value

        @observability.trace_memory_search
        def search(query, project=None):
            return []

        with patch.object(observability, "_is_disabled", return_value=False), \
             patch.object(observability, "_get_langfuse", return_value=client):
            assert search(query="redis", project="web") == []

        kwargs = client.start_as_current_span.call_args.kwargs
        assert kwargs["input"]["operation"] == "search"
        assert kwargs["input"]["query"] == "redis"
        assert kwargs["metadata"] == {"project": "web", "operation": "search"}
        span.update.assert_called_once_with(output={"count": 0, "top_similarity": None})
        client.flush.assert_called_once()

    def test_error_span(self):
        client = MagicMock()

        @observability.trace_memory_write
        def record(decision):
            raise RuntimeError("sqlite caída")

        with patch.object(observability, "_is_disabled", return_value=False), \
             patch.object(observability, "_get_langfuse", return_value=client):
            with pytest.raises(RuntimeError):
                record(decision="x")

        names = [c.kwargs["name"] for c in client.start_as_current_span.call_args_list]
        assert names[-1].endswith("ERROR")
