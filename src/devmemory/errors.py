"""
Errores del motor de memoria
============================

Taxonomía de fallos que el coordinador expone a sus llamadores.
La supresión de duplicados exactos NO es un error: se reporta
como `status="exists"` en el resultado de `add_code_pattern`.
"""


class ProjectMemoryError(Exception):
    """Base de todos los errores de devmemory."""


class EmbeddingUnavailable(ProjectMemoryError):
    """El modelo de embeddings no cargó o falló con un input concreto.

    Reintentable solo reiniciando el proceso; dentro de una misma
    petición las escrituras se degradan en lugar de abortar.
    """


class InvalidReference(ProjectMemoryError):
    """Una clave foránea apunta a un proyecto o decisión inexistente."""


class StoreUnavailable(ProjectMemoryError):
    """El almacén estructurado o vectorial no se puede abrir o alcanzar."""


class ValidationError(ProjectMemoryError):
    """Input requerido ausente o inválido. Se rechaza antes de tocar los almacenes."""
