"""
Coordinador de Memoria
======================

Punto de integración del motor de memoria. Orquesta las escrituras
sobre los dos almacenes y resuelve las consultas que mezclan filtrado
exacto con ranking por similitud.

Orden de escritura: dentro de una misma operación la fila estructurada
se escribe SIEMPRE antes que la entrada vectorial. El único estado
inconsistente posible es "fila sin vector" (búsqueda degradada), que
`reindex()` repara. El inverso (vector sin fila) nunca ocurre.
"""

import logging
from typing import Optional, Union
from uuid import uuid4

from devmemory.config import Settings, get_settings, get_sqlite_path, get_vector_dir
from devmemory.errors import EmbeddingUnavailable, StoreUnavailable, ValidationError
from devmemory.models import (
    VECTOR_CATEGORIES,
    CodePattern,
    CodePatternResult,
    CodePatternStatus,
    Decision,
    DecisionRelation,
    DecisionResult,
    DuplicateMatch,
    MemoryCategory,
    MemoryItem,
    Progress,
    ProgressResult,
    ProgressStatus,
    Project,
    ReindexReport,
    RelationType,
    SearchHit,
    VectorEntry,
)
from devmemory.observability import trace_memory_search, trace_memory_write
from devmemory.storage.embeddings import EmbeddingGenerator
from devmemory.storage.namespace import ProjectResolver
from devmemory.storage.structured import StructuredStore
from devmemory.storage.vector import VectorStore

logger = logging.getLogger(__name__)

# Un umbral de 0 aceptaría cualquier vector, incluso uno nulo
MIN_SIMILARITY_THRESHOLD = 1e-6


def compute_pattern_hash(file_path: str, content: str) -> str:
    """Clave de deduplicación exacta de patrones: ruta + longitud del contenido."""
    return f"{file_path}_{len(content)}"


def _new_embedding_ref(prefix: str) -> str:
    """Token único para una entrada vectorial (nunca se reutiliza)."""
    return f"{prefix}_{uuid4().hex}"


def _memory_sort_key(item: MemoryItem):
    # Coincidencias semánticas primero (por similitud), el resto por recencia
    return (item.similarity is not None, item.similarity or 0.0, item.timestamp)


class MemoryCoordinator:
    """
    Coordinador del almacenamiento dual de la memoria de proyecto.

    Es el único componente que escribe en ambos almacenes y el dueño de
    la referencia cruzada `embedding_ref`. Las dependencias se inyectan
    ya construidas (init una vez / reutilizar / cerrar explícitamente).
    """

    def __init__(
        self,
        structured: StructuredStore,
        vectors: VectorStore,
        embedder: EmbeddingGenerator,
        resolver: Optional[ProjectResolver] = None,
        settings: Optional[Settings] = None
    ):
        """
        Inicializar el coordinador.

        Args:
            structured: Almacén relacional
            vectors: Almacén vectorial
            embedder: Generador de embeddings
            resolver: Resolver de proyectos (se crea uno si no se provee)
            settings: Configuración (usa la global si no se provee)
        """
        self.settings = settings or get_settings()
        self.structured = structured
        self.vectors = vectors
        self.embedder = embedder
        self.resolver = resolver or ProjectResolver(
            structured, default_name=self.settings.default_project
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MemoryCoordinator":
        """Construir el stack completo a partir de la configuración."""
        settings = settings or get_settings()

        structured = StructuredStore(
            get_sqlite_path(settings),
            busy_timeout=settings.sqlite_busy_timeout
        )
        vectors = VectorStore(get_vector_dir(settings))
        embedder = EmbeddingGenerator(
            settings.embedding_model,
            device=settings.embedding_device
        )
        return cls(structured, vectors, embedder, settings=settings)

    def close(self):
        """Liberar modelo y conexiones."""
        self.embedder.close()
        self.vectors.close()
        self.structured.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # =========================================================================
    # VALIDACIÓN
    # =========================================================================

    def _parse_category(
        self,
        category: Union[MemoryCategory, str],
        vector_only: bool = False
    ) -> MemoryCategory:
        try:
            parsed = MemoryCategory(category)
        except ValueError:
            raise ValidationError(f"Categoría desconocida: {category!r}")

        if vector_only and parsed not in VECTOR_CATEGORIES:
            valid = ", ".join(c.value for c in VECTOR_CATEGORIES)
            raise ValidationError(
                f"La categoría '{parsed.value}' no admite búsqueda semántica ({valid})"
            )
        return parsed

    def _resolve_limit(self, limit: Optional[int], default: int) -> int:
        if limit is None:
            return default
        if limit < 1:
            raise ValidationError(f"limit debe ser >= 1 (recibido {limit})")
        return limit

    @staticmethod
    def _require_text(value: Optional[str], field: str) -> str:
        if not value or not value.strip():
            raise ValidationError(f"'{field}' es obligatorio")
        return value

    # =========================================================================
    # ESCRITURAS
    # =========================================================================

    @trace_memory_write
    def record_decision(
        self,
        decision: str,
        context: Optional[str],
        alternatives: Optional[list[str]] = None,
        impact: Optional[str] = None,
        project: Optional[str] = None
    ) -> DecisionResult:
        """
        Registrar una decisión técnica en ambos almacenes.

        Si el embedding o la escritura vectorial fallan, la fila
        estructurada se conserva igualmente y el resultado lleva
        `embedding_ref=None` y un `warning`.

        Args:
            decision: La decisión tomada
            context: Contexto y razonamiento (None equivale a "")
            alternatives: Alternativas consideradas, en orden
            impact: Impacto esperado
            project: Nombre del proyecto (usa el de por defecto si no se especifica)

        Returns:
            DecisionResult con el id estructurado y la referencia vectorial

        Raises:
            ValidationError: Si `decision` está vacía
            StoreUnavailable: Si la escritura estructurada falla
        """
        self._require_text(decision, "decision")
        context = context or ""
        alternatives = list(alternatives or [])

        project_row = self.resolver.resolve(project)
        text_to_embed = f"{decision} {context}"

        warning = None
        embedding = None
        try:
            embedding = self.embedder.embed(text_to_embed)
        except EmbeddingUnavailable as e:
            warning = f"Decisión guardada sin embedding, no aparecerá en búsquedas semánticas: {e}"
            logger.warning(warning)

        embedding_ref = _new_embedding_ref("decision") if embedding is not None else None

        row = self.structured.insert_decision(
            project_row.id,
            decision,
            context=context,
            impact=impact,
            alternatives=alternatives,
            embedding_ref=embedding_ref,
        )

        if embedding is not None:
            try:
                self.vectors.add(MemoryCategory.DECISIONS, [VectorEntry(
                    id=embedding_ref,
                    project=project_row.name,
                    text=text_to_embed,
                    embedding=embedding,
                    metadata={
                        "decision_id": row.id,
                        "impact": impact,
                        "alternatives": alternatives,
                    },
                )])
            except StoreUnavailable as e:
                warning = f"Decisión {row.id} guardada sin entrada vectorial: {e}"
                logger.warning(warning)
                embedding_ref = None

        return DecisionResult(
            structured_id=row.id,
            embedding_ref=embedding_ref,
            warning=warning,
        )

    def track_progress(
        self,
        milestone: str,
        status: Union[ProgressStatus, str],
        notes: Optional[str] = None,
        blockers: Optional[list[str]] = None,
        project: Optional[str] = None
    ) -> ProgressResult:
        """
        Crear o actualizar un hito de progreso (sin espejo vectorial).

        Raises:
            ValidationError: Si falta el milestone o el estado no es válido
        """
        self._require_text(milestone, "milestone")
        try:
            status = ProgressStatus(status)
        except ValueError:
            valid = ", ".join(s.value for s in ProgressStatus)
            raise ValidationError(f"Estado inválido: {status!r} (válidos: {valid})")

        project_row = self.resolver.resolve(project)
        row = self.structured.upsert_progress(
            project_row.id,
            milestone,
            status,
            notes=notes,
            blockers=list(blockers or []),
        )
        return ProgressResult(id=row.id)

    @trace_memory_write
    def add_code_pattern(
        self,
        file_path: str,
        content: str,
        language: Optional[str],
        project: Optional[str] = None
    ) -> CodePatternResult:
        """
        Registrar un patrón de código para detección de duplicados.

        Un patrón con el mismo hash (ruta + longitud) ya registrado se
        devuelve sin cambios con `status="exists"` y sin generar embedding.
        En SQLite se guarda un prefijo acotado del contenido; el contenido
        completo va en la entrada vectorial.
        """
        self._require_text(file_path, "file_path")
        self._require_text(content, "content")

        project_row = self.resolver.resolve(project)
        pattern_hash = compute_pattern_hash(file_path, content)

        existing = self.structured.get_code_pattern_by_hash(pattern_hash)
        if existing:
            logger.debug(f"Patrón ya registrado: {pattern_hash}")
            return CodePatternResult(
                id=existing.id,
                embedding_ref=existing.embedding_ref,
                status=CodePatternStatus.EXISTS,
            )

        warning = None
        embedding = None
        try:
            embedding = self.embedder.embed(content)
        except EmbeddingUnavailable as e:
            warning = f"Patrón guardado sin embedding, no aparecerá como duplicado: {e}"
            logger.warning(warning)

        embedding_ref = _new_embedding_ref("pattern") if embedding is not None else None

        row, created = self.structured.insert_code_pattern(
            project_row.id,
            pattern_hash,
            file_path,
            language,
            content[:self.settings.pattern_content_limit],
            embedding_ref=embedding_ref,
        )
        if not created:
            # Otro llamador registró el mismo hash a la vez
            return CodePatternResult(
                id=row.id,
                embedding_ref=row.embedding_ref,
                status=CodePatternStatus.EXISTS,
            )

        if embedding is not None:
            try:
                self.vectors.add(MemoryCategory.CODE_PATTERNS, [VectorEntry(
                    id=embedding_ref,
                    project=project_row.name,
                    text=content,
                    embedding=embedding,
                    metadata={
                        "pattern_id": row.id,
                        "file_path": file_path,
                        "language": language,
                    },
                )])
            except StoreUnavailable as e:
                warning = f"Patrón {row.id} guardado sin entrada vectorial: {e}"
                logger.warning(warning)
                embedding_ref = None

        return CodePatternResult(
            id=row.id,
            embedding_ref=embedding_ref,
            status=CodePatternStatus.CREATED,
            warning=warning,
        )

    def relate_decisions(
        self,
        decision_id: int,
        related_id: int,
        relation_type: Union[RelationType, str],
        strength: float = 0.5
    ) -> DecisionRelation:
        """
        Registrar una relación dirigida entre dos decisiones existentes.

        Raises:
            ValidationError: Tipo desconocido, fuerza fuera de [0, 1] o auto-relación
            InvalidReference: Si alguna decisión no existe
        """
        try:
            relation_type = RelationType(relation_type)
        except ValueError:
            valid = ", ".join(r.value for r in RelationType)
            raise ValidationError(f"Tipo de relación inválido: {relation_type!r} (válidos: {valid})")

        if not 0.0 <= strength <= 1.0:
            raise ValidationError(f"strength debe estar en [0, 1] (recibido {strength})")
        if decision_id == related_id:
            raise ValidationError("Una decisión no puede relacionarse consigo misma")

        return self.structured.insert_relation(decision_id, related_id, relation_type, strength)

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    @trace_memory_search
    def semantic_search(
        self,
        query: str,
        category: Union[MemoryCategory, str],
        project: Optional[str] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None
    ) -> list[SearchHit]:
        """
        Búsqueda semántica sobre el índice de una categoría.

        Se recuperan más vecinos de los pedidos porque el filtrado por
        umbral y proyecto ocurre tras la recuperación. Un resultado con
        similitud exactamente igual al umbral se incluye.

        Args:
            query: Texto de búsqueda
            category: `decisions` o `code_patterns`
            project: Filtrar por nombre de proyecto (opcional)
            limit: Máximo de resultados
            threshold: Similitud mínima; valores <= 0 se ajustan a un épsilon positivo

        Returns:
            Resultados ordenados por similitud descendente

        Raises:
            ValidationError: Consulta vacía, categoría o límite inválidos
            EmbeddingUnavailable: Si no se puede embeber la consulta
        """
        category = self._parse_category(category, vector_only=True)
        self._require_text(query, "query")
        limit = self._resolve_limit(limit, self.settings.default_search_limit)
        if threshold is None:
            threshold = self.settings.default_similarity_threshold
        threshold = max(threshold, MIN_SIMILARITY_THRESHOLD)

        query_vector = self.embedder.embed(query)
        hits = self.vectors.search(
            category,
            query_vector,
            limit * self.settings.search_overfetch,
            project=project,
        )

        results = []
        for hit in hits:
            similarity = hit.similarity
            if similarity < threshold:
                continue
            if project and hit.project != project:
                continue
            results.append(SearchHit(
                id=hit.id,
                category=category,
                project=hit.project,
                text=hit.text,
                similarity=similarity,
                metadata=hit.metadata,
            ))

        results.sort(key=lambda result: result.similarity, reverse=True)
        return results[:limit]

    def get_project_memory(
        self,
        category: Union[MemoryCategory, str],
        query: Optional[str] = None,
        limit: Optional[int] = None,
        project: Optional[str] = None,
        threshold: Optional[float] = None
    ) -> list[MemoryItem]:
        """
        Memoria de un proyecto: recientes y, si hay consulta, semánticos.

        Sin consulta devuelve las filas más recientes. Con consulta fusiona
        las coincidencias semánticas (hidratadas desde SQLite) con las
        recientes, sin duplicar por (categoría, id); las semánticas tienen
        precedencia y van primero por similitud, el resto por recencia.

        Args:
            category: decisions, progress, code_patterns o all
            query: Consulta semántica (opcional)
            limit: Máximo de elementos
            project: Nombre del proyecto
            threshold: Similitud mínima de la parte semántica
        """
        category = self._parse_category(category)
        limit = self._resolve_limit(limit, self.settings.default_search_limit)
        if threshold is None:
            threshold = self.settings.memory_similarity_threshold

        project_row = self.resolver.resolve(project)

        if category == MemoryCategory.ALL:
            categories = [MemoryCategory.DECISIONS, MemoryCategory.PROGRESS, MemoryCategory.CODE_PATTERNS]
        else:
            categories = [category]

        merged: dict[tuple[MemoryCategory, int], MemoryItem] = {}
        for cat in categories:
            for item in self._recent_items(cat, project_row.id, limit):
                merged[(cat, item.id)] = item

        if query and query.strip():
            for cat in categories:
                if cat not in VECTOR_CATEGORIES:
                    continue
                try:
                    hits = self.semantic_search(
                        query,
                        cat,
                        project=project_row.name,
                        limit=limit,
                        threshold=threshold,
                    )
                except EmbeddingUnavailable as e:
                    logger.warning(f"Búsqueda semántica no disponible, solo recientes: {e}")
                    break

                for item in self._hydrate(cat, hits):
                    merged[(cat, item.id)] = item

        items = sorted(merged.values(), key=_memory_sort_key, reverse=True)
        return items[:limit]

    def _recent_items(self, category: MemoryCategory, project_id: int, limit: int) -> list[MemoryItem]:
        """Filas más recientes de una categoría como MemoryItem."""
        if category == MemoryCategory.DECISIONS:
            return [
                self._decision_item(row)
                for row in self.structured.list_decisions(project_id, limit)
            ]
        if category == MemoryCategory.PROGRESS:
            return [
                self._progress_item(row)
                for row in self.structured.list_progress(project_id, limit)
            ]
        return [
            self._pattern_item(row)
            for row in self.structured.list_code_patterns(project_id, limit)
        ]

    def _hydrate(self, category: MemoryCategory, hits: list[SearchHit]) -> list[MemoryItem]:
        """Recuperar las filas estructuradas de unos resultados vectoriales."""
        similarity_by_ref = {hit.id: hit.similarity for hit in hits}
        refs = list(similarity_by_ref)

        if category == MemoryCategory.DECISIONS:
            return [
                self._decision_item(row, similarity_by_ref.get(row.embedding_ref))
                for row in self.structured.get_decisions_by_refs(refs)
            ]
        return [
            self._pattern_item(row, similarity_by_ref.get(row.embedding_ref))
            for row in self.structured.get_code_patterns_by_refs(refs)
        ]

    @staticmethod
    def _decision_item(row: Decision, similarity: Optional[float] = None) -> MemoryItem:
        return MemoryItem(
            category=MemoryCategory.DECISIONS,
            id=row.id,
            timestamp=row.timestamp,
            record=row.model_dump(mode="json"),
            similarity=similarity,
        )

    @staticmethod
    def _progress_item(row: Progress) -> MemoryItem:
        return MemoryItem(
            category=MemoryCategory.PROGRESS,
            id=row.id,
            timestamp=row.updated_at,
            record=row.model_dump(mode="json"),
        )

    @staticmethod
    def _pattern_item(row: CodePattern, similarity: Optional[float] = None) -> MemoryItem:
        return MemoryItem(
            category=MemoryCategory.CODE_PATTERNS,
            id=row.id,
            timestamp=row.created_at,
            record=row.model_dump(mode="json"),
            similarity=similarity,
        )

    @trace_memory_search
    def identify_duplicates(
        self,
        feature_descriptor: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None
    ) -> list[DuplicateMatch]:
        """
        Buscar patrones de código similares en todos los proyectos.

        Raises:
            ValidationError: Si el descriptor está vacío (antes de tocar los almacenes)
        """
        self._require_text(feature_descriptor, "feature_descriptor")

        hits = self.semantic_search(
            feature_descriptor,
            MemoryCategory.CODE_PATTERNS,
            project=None,
            limit=self._resolve_limit(limit, self.settings.duplicate_search_limit),
            threshold=threshold,
        )

        return [
            DuplicateMatch(
                content=hit.text,
                file_path=hit.metadata.get("file_path", ""),
                language=hit.metadata.get("language"),
                project=hit.project,
                similarity=hit.similarity,
            )
            for hit in hits
        ]

    def list_projects(self) -> list[Project]:
        """Todos los proyectos conocidos."""
        return self.structured.list_projects()

    def get_decisions(self, project: Optional[str] = None, limit: int = 50) -> list[Decision]:
        """Decisiones de un proyecto, de la más reciente a la más antigua."""
        project_row = self.resolver.resolve(project)
        return self.structured.list_decisions(project_row.id, limit)

    def get_progress(self, project: Optional[str] = None, limit: int = 50) -> list[Progress]:
        """Hitos de un proyecto, por última actualización."""
        project_row = self.resolver.resolve(project)
        return self.structured.list_progress(project_row.id, limit)

    def get_relations(self, decision_id: int) -> list[DecisionRelation]:
        """Relaciones entrantes y salientes de una decisión."""
        return self.structured.list_relations(decision_id)

    def get_statistics(self, project: Optional[str] = None) -> dict:
        """
        Estadísticas de ambos almacenes.

        `decisions_without_embedding` y `code_patterns_without_embedding`
        cuentan las filas sin búsqueda semántica: sin `embedding_ref` o cuya
        entrada no está en el índice (las mismas que repararía `reindex`).
        """
        project_id = self.resolver.resolve(project).id if project else None
        stats = self.structured.get_statistics(project_id)
        for category in VECTOR_CATEGORIES:
            rows, present = self._rows_with_index_state(category, project_id)
            stats[f"{category.value}_without_embedding"] = sum(
                1 for row in rows if not row.embedding_ref or row.embedding_ref not in present
            )
        stats["vector_index"] = {
            category.value: self.vectors.count(category)
            for category in VECTOR_CATEGORIES
        }
        return stats

    # =========================================================================
    # RECUPERACIÓN
    # =========================================================================

    def reindex(self, project: Optional[str] = None) -> ReindexReport:
        """
        Reparar filas con búsqueda degradada.

        Para cada decisión o patrón sin `embedding_ref`, o cuya entrada
        ya no está en el índice, se regenera el embedding y se escribe la
        entrada vectorial (primero la referencia en SQLite, después el vector).
        Los patrones se re-embeben desde su prefijo guardado.

        Args:
            project: Limitar la reparación a un proyecto (opcional)
        """
        report = ReindexReport()

        project_id = None
        if project:
            project_row = self.structured.get_project_by_name(project)
            if project_row is None:
                return report
            project_id = project_row.id

        project_names = {p.id: p.name for p in self.structured.list_projects()}

        for category in VECTOR_CATEGORIES:
            rows, present = self._rows_with_index_state(category, project_id)

            for row in rows:
                report.checked += 1
                if row.embedding_ref and row.embedding_ref in present:
                    continue
                try:
                    self._reindex_row(category, row, project_names.get(row.project_id, ""))
                    report.repaired += 1
                except (EmbeddingUnavailable, StoreUnavailable) as e:
                    report.failed += 1
                    logger.warning(f"No se pudo reindexar {category.value} {row.id}: {e}")

        logger.info(
            f"Reindexado: {report.checked} revisados, "
            f"{report.repaired} reparados, {report.failed} fallidos"
        )
        return report

    def _rows_with_index_state(self, category: MemoryCategory, project_id: Optional[int]):
        """Filas de una categoría y el subconjunto de sus referencias presente en el índice."""
        if category == MemoryCategory.DECISIONS:
            rows = self.structured.list_decisions(project_id, limit=None)
        else:
            rows = self.structured.list_code_patterns(project_id, limit=None)

        present = self.vectors.existing_ids(
            category, [row.embedding_ref for row in rows if row.embedding_ref]
        )
        return rows, present

    def _reindex_row(self, category: MemoryCategory, row: Union[Decision, CodePattern], project_name: str):
        if category == MemoryCategory.DECISIONS:
            text = f"{row.decision} {row.context}"
            metadata = {
                "decision_id": row.id,
                "impact": row.impact,
                "alternatives": row.alternatives,
            }
            prefix = "decision"
        else:
            text = row.content
            metadata = {
                "pattern_id": row.id,
                "file_path": row.file_path,
                "language": row.language,
            }
            prefix = "pattern"

        embedding = self.embedder.embed(text)

        embedding_ref = row.embedding_ref
        if not embedding_ref:
            embedding_ref = _new_embedding_ref(prefix)
            self.structured.set_embedding_ref(category, row.id, embedding_ref)

        self.vectors.add(category, [VectorEntry(
            id=embedding_ref,
            project=project_name,
            text=text,
            embedding=embedding,
            metadata=metadata,
        )])
