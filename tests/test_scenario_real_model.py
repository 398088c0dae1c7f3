"""
Escenario completo con el modelo real de sentence-transformers
==============================================================

Se salta si el modelo no se puede cargar (sin red ni caché local).
"""

import pytest

from devmemory.coordinator import MemoryCoordinator
from devmemory.errors import EmbeddingUnavailable
from devmemory.models import CodePatternStatus


@pytest.fixture
def real_memory(settings):
    memory = MemoryCoordinator.from_settings(settings)
    try:
        memory.embedder.embed("warmup")
    except EmbeddingUnavailable as e:
        memory.close()
        pytest.skip(f"Modelo de embeddings no disponible: {e}")
    yield memory
    memory.close()


class TestRealModelScenario:
    """Flujo de uso típico con embeddings reales."""

    def test_typescript_decision_is_top_hit(self, real_memory):
        """Una decisión registrada es el mejor resultado de una consulta relacionada."""
        result = real_memory.record_decision(
            "Use TypeScript for type safety",
            "Team needs better code reliability",
            ["JavaScript with JSDoc", "Flow"],
            "Improved developer experience",
            "test_project",
        )
        real_memory.record_decision(
            "Deploy on Kubernetes",
            "Several services need independent scaling",
            project="test_project",
        )

        assert result.embedding_ref is not None
        stored = real_memory.structured.get_decision(result.structured_id)
        assert stored.alternatives == ["JavaScript with JSDoc", "Flow"]

        results = real_memory.semantic_search(
            "type safety", "decisions", project="test_project", threshold=0.5
        )

        assert results
        assert results[0].id == result.embedding_ref
        assert results[0].metadata["decision_id"] == result.structured_id

    def test_decisions_and_duplicates(self, real_memory):
        real_memory.record_decision(
            "Use Redis for session caching",
            "Sessions must be shared across several API instances",
            alternatives=["Memcached", "Sticky sessions"],
            impact="high",
            project="shop",
        )
        real_memory.record_decision(
            "Adopt Tailwind for styling",
            "The design team wants utility classes",
            project="shop",
        )

        results = real_memory.semantic_search(
            "where do we store user sessions", "decisions", project="shop", threshold=0.2
        )
        assert results
        assert "Redis" in results[0].text

        created = real_memory.add_code_pattern(
            "auth/jwt.py",
            "def verify_jwt(token, secret):\n    return jwt.decode(token, secret, algorithms=['HS256'])",
            "python",
            project="shop",
        )
        again = real_memory.add_code_pattern(
            "auth/jwt.py",
            "def verify_jwt(token, secret):\n    return jwt.decode(token, secret, algorithms=['HS256'])",
            "python",
            project="shop",
        )
        assert created.status == CodePatternStatus.CREATED
        assert again.status == CodePatternStatus.EXISTS

        matches = real_memory.identify_duplicates("decode and verify a JWT token", threshold=0.3)
        assert matches
        assert matches[0].file_path == "auth/jwt.py"

        memory_items = real_memory.get_project_memory(
            "all", query="session cache", project="shop"
        )
        assert memory_items[0].similarity is not None
