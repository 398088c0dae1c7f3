"""
Modelos de datos para devmemory
===============================

Define los esquemas Pydantic de las entidades de la memoria de proyecto
(proyectos, decisiones, progreso, patrones de código, relaciones),
las entradas del índice vectorial y los resultados que devuelve el
coordinador.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    """Obtener datetime actual en UTC."""
    return datetime.now(timezone.utc)


class ProgressStatus(str, Enum):
    """Estados posibles de un hito de progreso."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    TESTING = "testing"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class RelationType(str, Enum):
    """Tipos de arista dirigida entre dos decisiones."""

    DEPENDS_ON = "depends_on"
    CONFLICTS_WITH = "conflicts_with"
    EXTENDS = "extends"
    REPLACES = "replaces"


class MemoryCategory(str, Enum):
    """Categorías de memoria consultables."""

    DECISIONS = "decisions"
    PROGRESS = "progress"
    CODE_PATTERNS = "code_patterns"
    ALL = "all"


# Categorías con espejo en el almacén vectorial (una colección cada una)
VECTOR_CATEGORIES = (MemoryCategory.DECISIONS, MemoryCategory.CODE_PATTERNS)


class CodePatternStatus(str, Enum):
    """Resultado de registrar un patrón de código."""

    CREATED = "created"
    EXISTS = "exists"


# =============================================================================
# ENTIDADES ESTRUCTURADAS
# =============================================================================

class Project(BaseModel):
    """Espacio de nombres lógico que agrupa toda la memoria de un proyecto."""

    id: int
    name: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class Decision(BaseModel):
    """
    Decisión técnica registrada.

    `embedding_ref` apunta a la entrada del índice vectorial `decisions`.
    Si es None (o la entrada no existe) la decisión está "degradada":
    visible en listados pero ausente de la búsqueda semántica.
    """

    id: int
    project_id: int
    decision: str
    context: str = ""
    impact: Optional[str] = None
    alternatives: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utc_now)
    embedding_ref: Optional[str] = None


class Progress(BaseModel):
    """Hito de progreso, único por (proyecto, milestone)."""

    id: int
    project_id: int
    milestone: str
    status: ProgressStatus
    notes: Optional[str] = None
    blockers: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class CodePattern(BaseModel):
    """Fragmento de código registrado para detección de duplicados."""

    id: int
    project_id: int
    pattern_hash: str
    file_path: str
    language: Optional[str] = None
    content: str = Field(
        default="",
        description="Prefijo acotado del contenido (el completo vive en el índice vectorial)"
    )
    embedding_ref: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)


class DecisionRelation(BaseModel):
    """Arista dirigida entre dos decisiones existentes."""

    id: int
    decision_id: int
    related_id: int
    relation_type: RelationType
    strength: float = Field(default=0.5, ge=0.0, le=1.0)


# =============================================================================
# ÍNDICE VECTORIAL
# =============================================================================

class VectorEntry(BaseModel):
    """Entrada de un índice vectorial. `id` coincide con `embedding_ref`."""

    id: str
    project: str = Field(..., description="Nombre del proyecto, desnormalizado para filtrar")
    text: str
    embedding: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)


class VectorHit(BaseModel):
    """Vecino devuelto por el índice vectorial, con distancia coseno."""

    id: str
    project: str
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    distance: float

    @property
    def similarity(self) -> float:
        """Similitud = 1 - distancia, usada por todos los llamadores."""
        return 1.0 - self.distance


# =============================================================================
# RESULTADOS DEL COORDINADOR
# =============================================================================

class DecisionResult(BaseModel):
    """Resultado de registrar una decisión.

    Si `embedding_ref` es None la decisión no aparecerá en búsquedas
    semánticas hasta que se ejecute un `reindex`.
    """

    structured_id: int
    embedding_ref: Optional[str] = None
    warning: Optional[str] = None


class ProgressResult(BaseModel):
    """Resultado de registrar progreso."""

    id: int


class CodePatternResult(BaseModel):
    """Resultado de registrar un patrón de código."""

    id: int
    embedding_ref: Optional[str] = None
    status: CodePatternStatus
    warning: Optional[str] = None


class SearchHit(BaseModel):
    """Resultado de búsqueda semántica (sin hidratar)."""

    id: str
    category: MemoryCategory
    project: str
    text: str
    similarity: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class MemoryItem(BaseModel):
    """Elemento de memoria fusionado (recencia + similitud)."""

    category: MemoryCategory
    id: int
    timestamp: datetime
    record: dict[str, Any]
    similarity: Optional[float] = None


class DuplicateMatch(BaseModel):
    """Posible duplicado de código encontrado por similitud."""

    content: str
    file_path: str
    language: Optional[str] = None
    project: str
    similarity: float


class ReindexReport(BaseModel):
    """Resumen de una reparación de entradas vectoriales faltantes."""

    checked: int = 0
    repaired: int = 0
    failed: int = 0
