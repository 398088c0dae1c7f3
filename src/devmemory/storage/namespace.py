"""
Resolución de espacios de nombres de proyecto
=============================================

Traduce nombres legibles de proyecto a ids estables, creando el
proyecto la primera vez que se referencia.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from devmemory.errors import StoreUnavailable
from devmemory.models import Project
from devmemory.storage.structured import StructuredStore

logger = logging.getLogger(__name__)


class ProjectResolver:
    """
    Resolver idempotente nombre → proyecto.

    Seguro ante la primera referencia concurrente a un mismo nombre:
    quien pierde la carrera de creación relee la fila existente.
    Los proyectos nunca se borran, así que se cachean en memoria.
    """

    def __init__(self, store: StructuredStore, default_name: str = "default"):
        self.store = store
        self.default_name = default_name
        self._cache: dict[str, Project] = {}
        self._lock = threading.Lock()

    def resolve(self, name: Optional[str] = None) -> Project:
        """
        Obtener (o crear) el proyecto con ese nombre.

        Args:
            name: Nombre del proyecto; vacío o None usa el proyecto por defecto
        """
        name = (name or "").strip() or self.default_name

        with self._lock:
            cached = self._cache.get(name)
        if cached is not None:
            return cached

        project = self.store.get_project_by_name(name)
        if project is None:
            project = self.store.insert_project(
                name,
                {"created": datetime.now(timezone.utc).isoformat()},
            )
            if project is None:
                # Otro llamador lo creó entre la lectura y la escritura
                project = self.store.get_project_by_name(name)
                if project is None:
                    raise StoreUnavailable(f"No se pudo resolver el proyecto '{name}'")
            else:
                logger.info(f"Proyecto creado: {name} (id={project.id})")

        with self._lock:
            self._cache.setdefault(name, project)
            return self._cache[name]

    def forget(self):
        """Vaciar la caché de proyectos resueltos."""
        with self._lock:
            self._cache.clear()
