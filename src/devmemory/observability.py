"""
Observabilidad con Langfuse v3
==============================

Dos trazas principales sobre el coordinador:
1. 📥 Escribir Memoria - decisiones y patrones registrados (y si quedaron degradados)
2. 🔍 Buscar Memoria - búsquedas semánticas y detección de duplicados

Configuración via .env:
  - LANGFUSE_PUBLIC_KEY
  - LANGFUSE_SECRET_KEY
  - LANGFUSE_HOST (opcional)
"""

import logging
import os
import sys
from functools import wraps

from langfuse import Langfuse

# Importar config primero para cargar .env
from devmemory.config import get_settings  # noqa: F401 - asegura que .env esté cargado

# Silenciar warnings molestos de Langfuse ("Calling end() on an ended span")
logging.getLogger("langfuse").setLevel(logging.ERROR)

logger = logging.getLogger(__name__)

__all__ = ["trace_memory_write", "trace_memory_search", "flush_traces"]

# Cliente Langfuse singleton
_langfuse_client = None


def _is_disabled() -> bool:
    """Verificar si Langfuse está deshabilitado (tests o credenciales vacías)."""
    if "pytest" in sys.modules:
        return True
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return True
    if not os.environ.get("LANGFUSE_PUBLIC_KEY"):
        return True
    return False


def _get_langfuse():
    """Obtener cliente Langfuse singleton."""
    global _langfuse_client
    if _langfuse_client is None and not _is_disabled():
        try:
            _langfuse_client = Langfuse()
        except Exception as e:
            logger.warning(f"Langfuse no disponible, trazas desactivadas: {e}")
    return _langfuse_client


def flush_traces():
    """Forzar envío de trazas pendientes."""
    client = _get_langfuse()
    if client:
        try:
            client.flush()
        except Exception as e:
            logger.debug(f"No se pudieron enviar las trazas: {e}")


def _summarize_result(result) -> dict:
    """Resumen serializable del resultado de una operación."""
    if isinstance(result, list):
        return {
            "count": len(result),
            "top_similarity": getattr(result[0], "similarity", None) if result else None,
        }
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    return {"result": str(result)[:200]}


def _traced(span_name: str, operation: str):
    """Fábrica de decoradores que envuelven una operación en un span."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if _is_disabled():
                return func(*args, **kwargs)

            client = _get_langfuse()
            if not client:
                return func(*args, **kwargs)

            project_name = kwargs.get("project") or "default"
            inputs = {
                key: (value[:500] if isinstance(value, str) else value)
                for key, value in kwargs.items()
                if isinstance(value, (str, int, float, bool))
            }

            try:
                with client.start_as_current_span(
                    name=span_name,
                    input={"operation": func.__name__, **inputs},
                    metadata={"project": project_name, "operation": operation}
                ) as span:
                    result = func(*args, **kwargs)
                    span.update(output=_summarize_result(result))
                    return result
            except Exception as e:
                # En caso de error, igual crear span para registrarlo
                with client.start_as_current_span(
                    name=f"{span_name} - ERROR",
                    input={"operation": func.__name__},
                    level="ERROR"
                ) as span:
                    span.update(output={"error": str(e)}, status_message=str(e))
                raise
            finally:
                client.flush()

        return wrapper

    return decorator


trace_memory_write = _traced("📥 Escribir Memoria", "write")
trace_memory_search = _traced("🔍 Buscar Memoria", "search")
