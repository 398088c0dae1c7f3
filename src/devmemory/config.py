"""
Configuración centralizada para devmemory
=========================================

Todas las rutas de persistencia cuelgan de un único `data_root` para que
los reinicios del proceso vuelvan a engancharse a la misma memoria:

- <data_root>/devmemory.db  → SQLite (tablas estructuradas, modo WAL)
- <data_root>/vectors/      → ChromaDB (una colección por categoría)
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Cargar variables de entorno (llamada única para todo el proyecto)
load_dotenv()


class Settings(BaseSettings):
    """Configuración del sistema cargada desde variables de entorno.

    pydantic-settings carga automáticamente desde .env, no usar os.getenv().
    """

    # Persistencia
    data_root: str = Field(default="./data")
    sqlite_db_name: str = Field(default="devmemory.db")
    vector_dir_name: str = Field(default="vectors")
    # Segundos que SQLite espera por un lock de escritura antes de fallar
    sqlite_busy_timeout: float = Field(default=30.0, gt=0)

    # Embeddings
    embedding_model: str = Field(default="all-MiniLM-L6-v2")
    embedding_device: str = Field(default="cpu")

    # Proyectos
    default_project: str = Field(default="default")

    # Búsqueda
    default_search_limit: int = Field(default=10, ge=1)
    default_similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    # Umbral de la parte semántica de get_project_memory (más permisivo)
    memory_similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    duplicate_search_limit: int = Field(default=20, ge=1)
    # Factor de sobre-muestreo: el filtrado por umbral ocurre tras recuperar
    search_overfetch: int = Field(default=2, ge=1)

    # Patrones de código: prefijo máximo guardado en SQLite
    pattern_content_limit: int = Field(default=1000, ge=1)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = {
        "env_file": ".env",
        "env_prefix": "DEVMEMORY_",
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """Obtener instancia singleton de configuración."""
    return Settings()


# Paths importantes
def get_data_dir(settings: Optional[Settings] = None) -> Path:
    """Obtener directorio raíz de datos."""
    settings = settings or get_settings()
    data_dir = Path(settings.data_root)
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_sqlite_path(settings: Optional[Settings] = None) -> Path:
    """Obtener path de SQLite."""
    settings = settings or get_settings()
    return get_data_dir(settings) / settings.sqlite_db_name


def get_vector_dir(settings: Optional[Settings] = None) -> Path:
    """Obtener directorio de ChromaDB."""
    settings = settings or get_settings()
    vector_dir = get_data_dir(settings) / settings.vector_dir_name
    vector_dir.mkdir(parents=True, exist_ok=True)
    return vector_dir
