"""
devmemory - Memoria persistente de proyectos de software
========================================================

Motor de almacenamiento dual: SQLite guarda los registros estructurados
(decisiones, progreso, patrones de código) y ChromaDB sus embeddings
para búsqueda semántica y detección de duplicados.
"""

__version__ = "0.1.0"
__author__ = "devmemory team"

from devmemory.coordinator import MemoryCoordinator, compute_pattern_hash
from devmemory.errors import (
    EmbeddingUnavailable,
    InvalidReference,
    ProjectMemoryError,
    StoreUnavailable,
    ValidationError,
)

__all__ = [
    "MemoryCoordinator",
    "compute_pattern_hash",
    "ProjectMemoryError",
    "EmbeddingUnavailable",
    "InvalidReference",
    "StoreUnavailable",
    "ValidationError",
]
