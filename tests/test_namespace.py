"""
Tests para la resolución de proyectos
=====================================
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from devmemory.errors import StoreUnavailable
from devmemory.storage.namespace import ProjectResolver


class TestProjectResolver:
    """Tests de ProjectResolver."""

    def test_resolve_creates_once(self, structured_store):
        """Resolver dos veces el mismo nombre devuelve el mismo id."""
        resolver = ProjectResolver(structured_store)

        first = resolver.resolve("api")
        second = resolver.resolve("api")

        assert first.id == second.id
        assert "created" in first.metadata
        assert len(structured_store.list_projects()) == 1

    def test_blank_name_uses_default(self, structured_store):
        """Nombre vacío o None resuelve al proyecto por defecto."""
        resolver = ProjectResolver(structured_store, default_name="principal")

        assert resolver.resolve(None).name == "principal"
        assert resolver.resolve("  ").name == "principal"

    def test_concurrent_first_reference(self, structured_store):
        """La primera referencia concurrente crea un único proyecto."""
        resolver = ProjectResolver(structured_store)

        with ThreadPoolExecutor(max_workers=8) as pool:
            projects = list(pool.map(lambda _: resolver.resolve("concurrente"), range(16)))

        assert len({p.id for p in projects}) == 1
        assert [p.name for p in structured_store.list_projects()] == ["concurrente"]

    def test_lost_race_rereads(self):
        """Si otro llamador crea el proyecto primero, se relee su fila."""
        from devmemory.models import Project

        existing = Project(id=7, name="api")
        store = MagicMock()
        store.get_project_by_name.side_effect = [None, existing]
        store.insert_project.return_value = None

        project = ProjectResolver(store).resolve("api")

        assert project.id == 7
        assert store.get_project_by_name.call_count == 2

    def test_unresolvable_project(self):
        """Si ni la creación ni la relectura encuentran el proyecto, falla."""
        store = MagicMock()
        store.get_project_by_name.return_value = None
        store.insert_project.return_value = None

        with pytest.raises(StoreUnavailable):
            ProjectResolver(store).resolve("fantasma")

    def test_resolved_projects_are_cached(self):
        """Tras resolver, no se vuelve a consultar el almacén."""
        from devmemory.models import Project

        store = MagicMock()
        store.get_project_by_name.return_value = Project(id=1, name="api")

        resolver = ProjectResolver(store)
        resolver.resolve("api")
        resolver.resolve("api")

        assert store.get_project_by_name.call_count == 1

        resolver.forget()
        resolver.resolve("api")
        assert store.get_project_by_name.call_count == 2
