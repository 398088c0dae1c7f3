"""
Almacenamiento dual de la memoria de proyecto
=============================================

- StructuredStore: SQLite (fuente de verdad de campos y relaciones)
- VectorStore: ChromaDB (búsqueda de vecinos más cercanos)
- EmbeddingGenerator: sentence-transformers
- ProjectResolver: nombres de proyecto → ids estables
"""

from devmemory.storage.embeddings import EmbeddingGenerator
from devmemory.storage.namespace import ProjectResolver
from devmemory.storage.structured import StructuredStore
from devmemory.storage.vector import VectorStore

__all__ = ["EmbeddingGenerator", "ProjectResolver", "StructuredStore", "VectorStore"]
