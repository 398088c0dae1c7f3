"""
Almacén Vectorial - ChromaDB
============================

Un índice (colección de ChromaDB) por categoría: `decisions` y
`code_patterns`. Las colecciones se crean de forma diferida en el primer
uso con espacio coseno, de modo que `similitud = 1 - distancia`.

ChromaDB permite colecciones vacías, así que no se siembran entradas
de relleno al crearlas.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Optional

import chromadb
from chromadb.config import Settings as ChromaSettings

from devmemory.errors import StoreUnavailable
from devmemory.models import VECTOR_CATEGORIES, MemoryCategory, VectorEntry, VectorHit

logger = logging.getLogger(__name__)


class VectorStore:
    """
    Índices vectoriales por categoría.

    Solo añade entradas (nunca muta las existentes), así que tolera
    llamadas concurrentes a `add`.
    """

    def __init__(self, persist_dir: Path):
        """
        Args:
            persist_dir: Directorio de persistencia de ChromaDB

        Raises:
            StoreUnavailable: Si no se puede abrir el directorio
        """
        self.persist_dir = Path(persist_dir)
        self._collections = {}
        self._lock = threading.Lock()

        try:
            self.persist_dir.mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(
                path=str(self.persist_dir),
                settings=ChromaSettings(anonymized_telemetry=False)
            )
        except Exception as e:
            raise StoreUnavailable(
                f"No se pudo abrir ChromaDB en {self.persist_dir}: {e}"
            ) from e

    def _get_collection(self, category: MemoryCategory):
        """Obtener (o crear en el primer uso) la colección de una categoría."""
        if category not in VECTOR_CATEGORIES:
            raise ValueError(f"La categoría '{category.value}' no tiene índice vectorial")

        collection = self._collections.get(category)
        if collection is not None:
            return collection

        with self._lock:
            collection = self._collections.get(category)
            if collection is None:
                try:
                    collection = self.client.get_or_create_collection(
                        name=category.value,
                        metadata={
                            "hnsw:space": "cosine",
                            "description": f"Índice vectorial de {category.value}",
                        },
                        embedding_function=None,
                    )
                except Exception as e:
                    raise StoreUnavailable(
                        f"No se pudo abrir la colección '{category.value}': {e}"
                    ) from e
                self._collections[category] = collection
                logger.debug(f"Colección vectorial lista: {category.value}")

        return collection

    def add(self, category: MemoryCategory, entries: list[VectorEntry]):
        """
        Añadir entradas al índice de una categoría.

        Raises:
            StoreUnavailable: Error de ChromaDB (dimensión incorrecta, E/S...)
        """
        if not entries:
            return

        collection = self._get_collection(category)
        try:
            collection.add(
                ids=[entry.id for entry in entries],
                embeddings=[entry.embedding for entry in entries],
                documents=[entry.text for entry in entries],
                metadatas=[
                    {
                        "project": entry.project,
                        "payload": json.dumps(entry.metadata),
                    }
                    for entry in entries
                ],
            )
        except Exception as e:
            raise StoreUnavailable(
                f"Fallo escribiendo en el índice '{category.value}': {e}"
            ) from e

    def search(
        self,
        category: MemoryCategory,
        query_vector: list[float],
        limit: int,
        project: Optional[str] = None,
    ) -> list[VectorHit]:
        """
        Vecinos más cercanos, ordenados por distancia ascendente.

        Un índice vacío (o nunca escrito) devuelve una lista vacía.
        """
        collection = self._get_collection(category)

        try:
            count = collection.count()
            if count == 0:
                return []

            results = collection.query(
                query_embeddings=[query_vector],
                n_results=min(limit, count),
                where={"project": project} if project else None,
                include=["metadatas", "distances", "documents"]
            )
        except Exception as e:
            raise StoreUnavailable(
                f"Fallo consultando el índice '{category.value}': {e}"
            ) from e

        hits = []
        if results["ids"] and results["ids"][0]:
            for i, entry_id in enumerate(results["ids"][0]):
                metadata = results["metadatas"][0][i] or {}
                hits.append(VectorHit(
                    id=entry_id,
                    project=metadata.get("project", ""),
                    text=results["documents"][0][i] or "",
                    metadata=json.loads(metadata.get("payload") or "{}"),
                    distance=results["distances"][0][i],
                ))

        hits.sort(key=lambda hit: hit.distance)
        return hits

    def existing_ids(self, category: MemoryCategory, ids: list[str]) -> set[str]:
        """Subconjunto de `ids` presente en el índice."""
        if not ids:
            return set()

        collection = self._get_collection(category)
        try:
            result = collection.get(ids=ids, include=["metadatas"])
        except Exception as e:
            raise StoreUnavailable(
                f"Fallo leyendo el índice '{category.value}': {e}"
            ) from e
        return set(result["ids"] or [])

    def count(self, category: MemoryCategory) -> int:
        """Número de entradas del índice."""
        collection = self._get_collection(category)
        try:
            return collection.count()
        except Exception as e:
            raise StoreUnavailable(
                f"Fallo contando el índice '{category.value}': {e}"
            ) from e

    def close(self):
        """Olvidar las colecciones abiertas."""
        with self._lock:
            self._collections.clear()
