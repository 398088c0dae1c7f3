"""
Generador de Embeddings
=======================

Convierte texto en vectores de longitud fija normalizados (L2) usando
sentence-transformers. El modelo se carga una sola vez, en la primera
llamada, y se reutiliza durante toda la vida del proceso.
"""

import logging
import threading
from typing import Optional

import numpy as np
from sentence_transformers import SentenceTransformer

from devmemory.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)


class EmbeddingGenerator:
    """
    Generador de embeddings con carga diferida.

    Tras la carga el modelo es inmutable, por lo que `embed` puede
    llamarse concurrentemente desde varios hilos sin sincronización.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: str = "cpu"):
        """
        Args:
            model_name: Nombre del modelo de sentence-transformers
            device: Dispositivo de inferencia
        """
        self.model_name = model_name
        self.device = device
        self._model: Optional[SentenceTransformer] = None
        self._load_error: Optional[Exception] = None
        self._lock = threading.Lock()

    def _get_model(self) -> SentenceTransformer:
        """Cargar el modelo la primera vez (una sola carga aunque haya concurrencia)."""
        if self._model is not None:
            return self._model

        with self._lock:
            if self._load_error is not None:
                raise EmbeddingUnavailable(
                    f"El modelo '{self.model_name}' no está disponible: {self._load_error}"
                ) from self._load_error

            if self._model is None:
                logger.info(f"Cargando modelo de embeddings: {self.model_name}")
                try:
                    self._model = SentenceTransformer(self.model_name, device=self.device)
                except Exception as e:
                    self._load_error = e
                    logger.error(f"No se pudo cargar el modelo {self.model_name}: {e}")
                    raise EmbeddingUnavailable(
                        f"No se pudo cargar el modelo '{self.model_name}': {e}"
                    ) from e

        return self._model

    @property
    def dimension(self) -> int:
        """Longitud de los vectores producidos."""
        return self._get_model().get_sentence_embedding_dimension()

    def embed(self, text: str) -> list[float]:
        """
        Generar el embedding normalizado de un texto.

        Raises:
            EmbeddingUnavailable: Si el modelo no cargó o falla con este input
        """
        model = self._get_model()

        try:
            vector = np.asarray(model.encode(text), dtype=np.float32)
        except Exception as e:
            raise EmbeddingUnavailable(f"Fallo generando embedding: {e}") from e

        norm = float(np.linalg.norm(vector))
        if not np.isfinite(norm) or norm == 0.0:
            raise EmbeddingUnavailable("El modelo devolvió un vector nulo")

        return (vector / norm).tolist()

    def close(self):
        """Liberar el modelo cargado."""
        with self._lock:
            self._model = None
