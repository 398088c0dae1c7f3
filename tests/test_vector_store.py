"""
Tests para el almacén vectorial (ChromaDB)
==========================================
"""

import pytest

from devmemory.errors import StoreUnavailable
from devmemory.models import MemoryCategory, VectorEntry


def _entry(entry_id, project, text, embedder, **metadata):
    return VectorEntry(
        id=entry_id,
        project=project,
        text=text,
        embedding=embedder.embed(text),
        metadata=metadata,
    )


class TestVectorStore:
    """Tests de VectorStore."""

    def test_search_empty_index(self, vector_store, embedder):
        """Un índice nunca escrito devuelve lista vacía."""
        hits = vector_store.search(
            MemoryCategory.DECISIONS, embedder.embed("cualquier cosa"), limit=5
        )

        assert hits == []

    def test_add_and_search(self, vector_store, embedder):
        """La entrada idéntica a la consulta es la más cercana."""
        vector_store.add(MemoryCategory.DECISIONS, [
            _entry("decision_1", "web", "usar redis para cache de sesiones", embedder, decision_id=1),
            _entry("decision_2", "web", "migrar el frontend a react", embedder, decision_id=2),
        ])

        hits = vector_store.search(
            MemoryCategory.DECISIONS,
            embedder.embed("usar redis para cache de sesiones"),
            limit=2,
        )

        assert [h.id for h in hits] == ["decision_1", "decision_2"]
        assert hits[0].similarity == pytest.approx(1.0, abs=1e-4)
        assert hits[0].metadata == {"decision_id": 1}
        assert hits[0].text == "usar redis para cache de sesiones"
        assert hits[0].distance <= hits[1].distance

    def test_search_filters_by_project(self, vector_store, embedder):
        """El filtro de proyecto excluye entradas de otros proyectos."""
        vector_store.add(MemoryCategory.CODE_PATTERNS, [
            _entry("pattern_1", "web", "def login(user): pass", embedder),
            _entry("pattern_2", "api", "def login(user): pass", embedder),
        ])

        hits = vector_store.search(
            MemoryCategory.CODE_PATTERNS, embedder.embed("login user"), limit=5, project="api"
        )

        assert [h.id for h in hits] == ["pattern_2"]
        assert hits[0].project == "api"

    def test_categories_are_independent(self, vector_store, embedder):
        """Cada categoría tiene su propio índice."""
        vector_store.add(MemoryCategory.DECISIONS, [
            _entry("decision_1", "web", "usar redis", embedder),
        ])

        assert vector_store.count(MemoryCategory.DECISIONS) == 1
        assert vector_store.count(MemoryCategory.CODE_PATTERNS) == 0

    def test_existing_ids(self, vector_store, embedder):
        """Solo se devuelven los ids presentes."""
        vector_store.add(MemoryCategory.DECISIONS, [
            _entry("decision_1", "web", "usar redis", embedder),
        ])

        present = vector_store.existing_ids(
            MemoryCategory.DECISIONS, ["decision_1", "decision_404"]
        )

        assert present == {"decision_1"}
        assert vector_store.existing_ids(MemoryCategory.DECISIONS, []) == set()

    def test_dimension_mismatch_is_store_error(self, vector_store, embedder):
        """Un vector de otra dimensión se rechaza como StoreUnavailable."""
        vector_store.add(MemoryCategory.DECISIONS, [
            _entry("decision_1", "web", "usar redis", embedder),
        ])

        with pytest.raises(StoreUnavailable):
            vector_store.add(MemoryCategory.DECISIONS, [VectorEntry(
                id="decision_2", project="web", text="corto", embedding=[1.0, 0.0, 0.0]
            )])

    def test_progress_has_no_index(self, vector_store):
        """Progreso no tiene espejo vectorial."""
        with pytest.raises(ValueError):
            vector_store.count(MemoryCategory.PROGRESS)

    def test_persistence_across_instances(self, temp_dir, embedder):
        """Un nuevo cliente sobre el mismo directorio ve las entradas previas."""
        from devmemory.storage.vector import VectorStore

        first = VectorStore(temp_dir / "persist")
        first.add(MemoryCategory.DECISIONS, [
            _entry("decision_1", "web", "usar redis", embedder),
        ])
        first.close()

        second = VectorStore(temp_dir / "persist")

        assert second.count(MemoryCategory.DECISIONS) == 1
