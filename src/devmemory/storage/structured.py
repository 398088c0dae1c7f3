"""
Almacén Estructurado - SQLite vía SQLAlchemy
============================================

Fuente de verdad de los campos estructurados y las relaciones:
proyectos, decisiones, progreso, patrones de código y relaciones
entre decisiones.

SQLite corre en modo WAL (lectores y escritores concurrentes sin
bloqueos de tabla) y con claves foráneas activadas. Cada operación usa
su propia sesión y confirma de forma atómica: un fallo a mitad de
escritura deja el estado previo, nunca una fila a medias.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    or_,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from devmemory.errors import InvalidReference, StoreUnavailable
from devmemory.models import (
    CodePattern,
    Decision,
    DecisionRelation,
    MemoryCategory,
    Progress,
    ProgressStatus,
    Project,
    RelationType,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utc_now() -> datetime:
    """UTC sin tzinfo: SQLite no guarda zona horaria."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in ProgressStatus)
_RELATION_VALUES = ", ".join(f"'{r.value}'" for r in RelationType)


class ProjectRecord(Base):
    """Modelo SQLAlchemy para proyectos."""

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), unique=True, nullable=False)
    metadata_json = Column("metadata", Text)  # JSON object
    created_at = Column(DateTime, default=_utc_now)


class DecisionRecord(Base):
    """Modelo SQLAlchemy para decisiones."""

    __tablename__ = "decisions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    decision = Column(Text, nullable=False)
    context = Column(Text)
    impact = Column(Text)
    alternatives_json = Column("alternatives", Text)  # JSON array
    timestamp = Column(DateTime, default=_utc_now, index=True)

    # ID de la entrada en la colección vectorial "decisions"
    embedding_ref = Column(String(100), index=True)


class ProgressRecord(Base):
    """Modelo SQLAlchemy para hitos de progreso."""

    __tablename__ = "progress"
    __table_args__ = (
        UniqueConstraint("project_id", "milestone", name="uq_progress_project_milestone"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="ck_progress_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    milestone = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, index=True)
    notes = Column(Text)
    blockers_json = Column("blockers", Text)  # JSON array
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now)


class CodePatternRecord(Base):
    """Modelo SQLAlchemy para patrones de código."""

    __tablename__ = "code_patterns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    pattern_hash = Column(String(500), unique=True, nullable=False)
    file_path = Column(Text, nullable=False)
    language = Column(String(50))
    content = Column(Text)  # Prefijo acotado
    embedding_ref = Column(String(100), index=True)
    created_at = Column(DateTime, default=_utc_now)


class DecisionRelationRecord(Base):
    """Modelo SQLAlchemy para relaciones dirigidas entre decisiones."""

    __tablename__ = "decision_relations"
    __table_args__ = (
        CheckConstraint(f"relation_type IN ({_RELATION_VALUES})", name="ck_relation_type"),
        CheckConstraint("strength >= 0 AND strength <= 1", name="ck_relation_strength"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    decision_id = Column(Integer, ForeignKey("decisions.id"), nullable=False, index=True)
    related_id = Column(Integer, ForeignKey("decisions.id"), nullable=False, index=True)
    relation_type = Column(String(20), nullable=False)
    strength = Column(Float, default=0.5)


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Activar WAL y claves foráneas en cada conexión nueva."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _is_foreign_key_violation(error: IntegrityError) -> bool:
    return "FOREIGN KEY" in str(error.orig).upper()


class StructuredStore:
    """
    Almacén relacional de la memoria de proyecto.

    El engine se comparte en todo el proceso; la disciplina transaccional
    de SQLite (no bloqueos externos) serializa las escrituras en conflicto.
    """

    def __init__(self, sqlite_path: Path, busy_timeout: float = 30.0):
        """
        Inicializar almacenamiento.

        Args:
            sqlite_path: Path al archivo SQLite
            busy_timeout: Segundos de espera por el lock de escritura

        Raises:
            StoreUnavailable: Si la base de datos no se puede abrir
        """
        self.sqlite_path = Path(sqlite_path)
        self._init_sqlite(busy_timeout)

    def _init_sqlite(self, busy_timeout: float):
        """Inicializar base de datos SQLite."""
        try:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                f"sqlite:///{self.sqlite_path}",
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
            )
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
            Base.metadata.create_all(self.engine)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(
                f"No se pudo abrir la base de datos {self.sqlite_path}: {e}"
            ) from e

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """Sesión con commit al salir y rollback ante cualquier fallo."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except OperationalError as e:
            session.rollback()
            raise StoreUnavailable(f"SQLite no disponible: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self):
        """Cerrar todas las conexiones del engine."""
        self.engine.dispose()

    # =========================================================================
    # PROYECTOS
    # =========================================================================

    def get_project_by_name(self, name: str) -> Optional[Project]:
        """Buscar un proyecto por su nombre único."""
        with self._transaction() as session:
            record = session.query(ProjectRecord).filter(
                ProjectRecord.name == name
            ).first()
            return self._record_to_project(record) if record else None

    def get_project(self, project_id: int) -> Optional[Project]:
        """Buscar un proyecto por id."""
        with self._transaction() as session:
            record = session.get(ProjectRecord, project_id)
            return self._record_to_project(record) if record else None

    def insert_project(self, name: str, metadata: dict) -> Optional[Project]:
        """
        Insertar un proyecto nuevo.

        Returns:
            El proyecto creado, o None si otro llamador ya creó ese nombre
        """
        try:
            with self._transaction() as session:
                record = ProjectRecord(
                    name=name,
                    metadata_json=json.dumps(metadata),
                    created_at=_utc_now(),
                )
                session.add(record)
                session.flush()
                return self._record_to_project(record)
        except IntegrityError:
            logger.debug(f"El proyecto '{name}' ya existe (creación concurrente)")
            return None

    def list_projects(self) -> list[Project]:
        """Listar todos los proyectos ordenados por nombre."""
        with self._transaction() as session:
            records = session.query(ProjectRecord).order_by(ProjectRecord.name).all()
            return [self._record_to_project(r) for r in records]

    # =========================================================================
    # DECISIONES
    # =========================================================================

    def insert_decision(
        self,
        project_id: int,
        decision: str,
        context: str = "",
        impact: Optional[str] = None,
        alternatives: Optional[list[str]] = None,
        embedding_ref: Optional[str] = None,
    ) -> Decision:
        """
        Insertar una decisión.

        Raises:
            InvalidReference: Si el proyecto no existe
        """
        try:
            with self._transaction() as session:
                record = DecisionRecord(
                    project_id=project_id,
                    decision=decision,
                    context=context,
                    impact=impact,
                    alternatives_json=json.dumps(alternatives or []),
                    timestamp=_utc_now(),
                    embedding_ref=embedding_ref,
                )
                session.add(record)
                session.flush()
                return self._record_to_decision(record)
        except IntegrityError as e:
            raise InvalidReference(f"Proyecto inexistente: {project_id}") from e

    def get_decision(self, decision_id: int) -> Optional[Decision]:
        """Recuperar una decisión por id."""
        with self._transaction() as session:
            record = session.get(DecisionRecord, decision_id)
            return self._record_to_decision(record) if record else None

    def list_decisions(self, project_id: Optional[int] = None, limit: Optional[int] = 50) -> list[Decision]:
        """Decisiones en orden cronológico inverso (sin límite si limit es None)."""
        with self._transaction() as session:
            query = session.query(DecisionRecord)
            if project_id is not None:
                query = query.filter(DecisionRecord.project_id == project_id)
            query = query.order_by(DecisionRecord.timestamp.desc(), DecisionRecord.id.desc())
            if limit is not None:
                query = query.limit(limit)
            return [self._record_to_decision(r) for r in query.all()]

    def get_decisions_by_refs(self, refs: list[str]) -> list[Decision]:
        """Hidratar decisiones a partir de ids del índice vectorial."""
        if not refs:
            return []
        with self._transaction() as session:
            records = session.query(DecisionRecord).filter(
                DecisionRecord.embedding_ref.in_(refs)
            ).all()
            return [self._record_to_decision(r) for r in records]

    # =========================================================================
    # PROGRESO
    # =========================================================================

    def upsert_progress(
        self,
        project_id: int,
        milestone: str,
        status: ProgressStatus,
        notes: Optional[str] = None,
        blockers: Optional[list[str]] = None,
    ) -> Progress:
        """
        Crear o actualizar un hito (clave: proyecto + milestone).

        Si existe: el estado se reemplaza, notas y bloqueos solo si vienen
        con contenido, y `updated_at` se refresca.

        Raises:
            InvalidReference: Si el proyecto no existe
        """
        try:
            return self._write_progress(project_id, milestone, status, notes, blockers)
        except IntegrityError as e:
            if _is_foreign_key_violation(e):
                raise InvalidReference(f"Proyecto inexistente: {project_id}") from e
            # Otro llamador insertó el mismo hito a la vez: fusionar sobre su fila
            return self._write_progress(project_id, milestone, status, notes, blockers)

    def _write_progress(
        self,
        project_id: int,
        milestone: str,
        status: ProgressStatus,
        notes: Optional[str],
        blockers: Optional[list[str]],
    ) -> Progress:
        with self._transaction() as session:
            now = _utc_now()
            record = session.query(ProgressRecord).filter(
                ProgressRecord.project_id == project_id,
                ProgressRecord.milestone == milestone,
            ).first()

            if record:
                record.status = status.value
                if notes:
                    record.notes = notes
                if blockers:
                    record.blockers_json = json.dumps(blockers)
                record.updated_at = now
            else:
                record = ProgressRecord(
                    project_id=project_id,
                    milestone=milestone,
                    status=status.value,
                    notes=notes,
                    blockers_json=json.dumps(blockers or []),
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)

            session.flush()
            return self._record_to_progress(record)

    def list_progress(self, project_id: Optional[int] = None, limit: Optional[int] = 50) -> list[Progress]:
        """Hitos ordenados por última actualización (más reciente primero)."""
        with self._transaction() as session:
            query = session.query(ProgressRecord)
            if project_id is not None:
                query = query.filter(ProgressRecord.project_id == project_id)
            query = query.order_by(ProgressRecord.updated_at.desc(), ProgressRecord.id.desc())
            if limit is not None:
                query = query.limit(limit)
            return [self._record_to_progress(r) for r in query.all()]

    # =========================================================================
    # PATRONES DE CÓDIGO
    # =========================================================================

    def get_code_pattern_by_hash(self, pattern_hash: str) -> Optional[CodePattern]:
        """Búsqueda de deduplicación exacta."""
        with self._transaction() as session:
            record = session.query(CodePatternRecord).filter(
                CodePatternRecord.pattern_hash == pattern_hash
            ).first()
            return self._record_to_pattern(record) if record else None

    def insert_code_pattern(
        self,
        project_id: int,
        pattern_hash: str,
        file_path: str,
        language: Optional[str],
        content: str,
        embedding_ref: Optional[str] = None,
    ) -> tuple[CodePattern, bool]:
        """
        Insertar un patrón o devolver el existente con el mismo hash.

        Returns:
            (patrón, creado) donde creado es False si el hash ya existía

        Raises:
            InvalidReference: Si el proyecto no existe
        """
        try:
            with self._transaction() as session:
                record = CodePatternRecord(
                    project_id=project_id,
                    pattern_hash=pattern_hash,
                    file_path=file_path,
                    language=language,
                    content=content,
                    embedding_ref=embedding_ref,
                    created_at=_utc_now(),
                )
                session.add(record)
                session.flush()
                return self._record_to_pattern(record), True
        except IntegrityError as e:
            if _is_foreign_key_violation(e):
                raise InvalidReference(f"Proyecto inexistente: {project_id}") from e
            existing = self.get_code_pattern_by_hash(pattern_hash)
            if existing is None:
                raise
            return existing, False

    def list_code_patterns(self, project_id: Optional[int] = None, limit: Optional[int] = 50) -> list[CodePattern]:
        """Patrones en orden cronológico inverso."""
        with self._transaction() as session:
            query = session.query(CodePatternRecord)
            if project_id is not None:
                query = query.filter(CodePatternRecord.project_id == project_id)
            query = query.order_by(CodePatternRecord.created_at.desc(), CodePatternRecord.id.desc())
            if limit is not None:
                query = query.limit(limit)
            return [self._record_to_pattern(r) for r in query.all()]

    def get_code_patterns_by_refs(self, refs: list[str]) -> list[CodePattern]:
        """Hidratar patrones a partir de ids del índice vectorial."""
        if not refs:
            return []
        with self._transaction() as session:
            records = session.query(CodePatternRecord).filter(
                CodePatternRecord.embedding_ref.in_(refs)
            ).all()
            return [self._record_to_pattern(r) for r in records]

    def set_embedding_ref(self, category: MemoryCategory, row_id: int, embedding_ref: str):
        """Asignar la referencia vectorial de una decisión o patrón."""
        model = {
            MemoryCategory.DECISIONS: DecisionRecord,
            MemoryCategory.CODE_PATTERNS: CodePatternRecord,
        }[category]

        with self._transaction() as session:
            record = session.get(model, row_id)
            if record is None:
                raise InvalidReference(f"{category.value} inexistente: {row_id}")
            record.embedding_ref = embedding_ref

    # =========================================================================
    # RELACIONES ENTRE DECISIONES
    # =========================================================================

    def insert_relation(
        self,
        decision_id: int,
        related_id: int,
        relation_type: RelationType,
        strength: float = 0.5,
    ) -> DecisionRelation:
        """
        Registrar una arista dirigida entre dos decisiones.

        Raises:
            InvalidReference: Si alguno de los extremos no existe
        """
        try:
            with self._transaction() as session:
                for endpoint in (decision_id, related_id):
                    if session.get(DecisionRecord, endpoint) is None:
                        raise InvalidReference(f"Decisión inexistente: {endpoint}")

                record = DecisionRelationRecord(
                    decision_id=decision_id,
                    related_id=related_id,
                    relation_type=relation_type.value,
                    strength=strength,
                )
                session.add(record)
                session.flush()
                return self._record_to_relation(record)
        except IntegrityError as e:
            raise InvalidReference(
                f"Relación inválida entre {decision_id} y {related_id}"
            ) from e

    def list_relations(self, decision_id: int) -> list[DecisionRelation]:
        """Relaciones entrantes y salientes de una decisión."""
        with self._transaction() as session:
            records = session.query(DecisionRelationRecord).filter(
                or_(
                    DecisionRelationRecord.decision_id == decision_id,
                    DecisionRelationRecord.related_id == decision_id,
                )
            ).order_by(DecisionRelationRecord.id).all()
            return [self._record_to_relation(r) for r in records]

    # =========================================================================
    # ESTADÍSTICAS
    # =========================================================================

    def get_statistics(self, project_id: Optional[int] = None) -> dict:
        """Contar filas por tabla (opcionalmente de un proyecto)."""
        with self._transaction() as session:
            stats = {}
            for key, model in (
                ("decisions", DecisionRecord),
                ("progress", ProgressRecord),
                ("code_patterns", CodePatternRecord),
            ):
                query = session.query(model)
                if project_id is not None:
                    query = query.filter(model.project_id == project_id)
                stats[key] = query.count()

            decisions = session.query(DecisionRecord).filter(DecisionRecord.embedding_ref.is_(None))
            if project_id is not None:
                decisions = decisions.filter(DecisionRecord.project_id == project_id)
            stats["decisions_without_embedding"] = decisions.count()

            if project_id is None:
                stats["projects"] = session.query(ProjectRecord).count()
                stats["relations"] = session.query(DecisionRelationRecord).count()

            return stats

    # =========================================================================
    # CONVERSIONES
    # =========================================================================

    def _record_to_project(self, record: ProjectRecord) -> Project:
        return Project(
            id=record.id,
            name=record.name,
            metadata=json.loads(record.metadata_json or "{}"),
            created_at=record.created_at,
        )

    def _record_to_decision(self, record: DecisionRecord) -> Decision:
        return Decision(
            id=record.id,
            project_id=record.project_id,
            decision=record.decision,
            context=record.context or "",
            impact=record.impact,
            alternatives=json.loads(record.alternatives_json or "[]"),
            timestamp=record.timestamp,
            embedding_ref=record.embedding_ref,
        )

    def _record_to_progress(self, record: ProgressRecord) -> Progress:
        return Progress(
            id=record.id,
            project_id=record.project_id,
            milestone=record.milestone,
            status=ProgressStatus(record.status),
            notes=record.notes,
            blockers=json.loads(record.blockers_json or "[]"),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    def _record_to_pattern(self, record: CodePatternRecord) -> CodePattern:
        return CodePattern(
            id=record.id,
            project_id=record.project_id,
            pattern_hash=record.pattern_hash,
            file_path=record.file_path,
            language=record.language,
            content=record.content or "",
            embedding_ref=record.embedding_ref,
            created_at=record.created_at,
        )

    def _record_to_relation(self, record: DecisionRelationRecord) -> DecisionRelation:
        return DecisionRelation(
            id=record.id,
            decision_id=record.decision_id,
            related_id=record.related_id,
            relation_type=RelationType(record.relation_type),
            strength=record.strength,
        )
