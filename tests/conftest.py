"""
Configuración global de pytest para devmemory.
"""
import hashlib
import os
import re
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Desactivar Langfuse durante tests para evitar ruido en trazas de producción
os.environ["LANGFUSE_HOST"] = ""
os.environ["LANGFUSE_PUBLIC_KEY"] = ""
os.environ["LANGFUSE_SECRET_KEY"] = ""


class HashingEmbedder:
    """
    Embedder determinista para tests: bolsa de palabras con hashing.

    Textos con más palabras en común dan mayor similitud coseno, sin
    descargar ningún modelo.
    """

    dimension = 256

    def __init__(self):
        self.calls = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = np.zeros(self.dimension, dtype=np.float64)
        for word in re.findall(r"\w+", text.lower()):
            digest = hashlib.md5(word.encode("utf-8")).digest()
            vector[digest[0]] += 1.0
        norm = np.linalg.norm(vector)
        if norm == 0:
            vector[0] = 1.0
            norm = 1.0
        return (vector / norm).tolist()

    def close(self):
        pass


@pytest.fixture
def temp_dir():
    """Directorio temporal de datos."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_dir):
    """Configuración apuntando al directorio temporal."""
    from devmemory.config import Settings

    return Settings(data_root=str(temp_dir))


@pytest.fixture
def structured_store(temp_dir):
    """SQLite temporal."""
    from devmemory.storage.structured import StructuredStore

    store = StructuredStore(temp_dir / "test.db", busy_timeout=10.0)
    yield store
    store.close()


@pytest.fixture
def vector_store(temp_dir):
    """ChromaDB temporal."""
    from devmemory.storage.vector import VectorStore

    store = VectorStore(temp_dir / "vectors")
    yield store
    store.close()


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def memory(structured_store, vector_store, embedder, settings):
    """Coordinador completo sobre almacenes reales y embedder determinista."""
    from devmemory.coordinator import MemoryCoordinator

    return MemoryCoordinator(
        structured_store,
        vector_store,
        embedder,
        settings=settings,
    )
