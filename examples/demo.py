"""
Ejemplo de uso de devmemory
===========================

Este script demuestra el ciclo completo sobre un directorio temporal:
1. Registrar decisiones, progreso y patrones de código
2. Consultar la memoria por similitud y por recencia
3. Detectar código duplicado entre proyectos
"""

import tempfile

from rich.console import Console
from rich.panel import Panel

from devmemory.config import Settings
from devmemory.coordinator import MemoryCoordinator

console = Console()


JWT_SNIPPET = """
def verify_token(token: str, secret: str) -> dict:
    # Validar siempre el algoritmo para evitar ataques "none"
    return jwt.decode(token, secret, algorithms=["HS256"])
"""


def demo_registro(memory: MemoryCoordinator):
    """Registrar memoria de un proyecto ficticio."""
    console.print(Panel(
        "[bold]Registrando decisiones, progreso y patrones[/bold]",
        title="📥 Escritura",
        border_style="blue"
    ))

    result = memory.record_decision(
        "Usar JWT para autenticar la API",
        "La API debe ser stateless para escalar horizontalmente",
        alternatives=["Sesiones con Redis", "OAuth2 completo"],
        impact="alto",
        project="tienda",
    )
    console.print(f"  • Decisión {result.structured_id} → {result.embedding_ref}")
    if result.warning:
        console.print(f"  [yellow]⚠️ {result.warning}[/yellow]")

    memory.record_decision(
        "Adoptar Tailwind",
        "El equipo de diseño prefiere clases utilitarias",
        project="tienda",
    )

    memory.track_progress("Login", "in_progress", notes="Falta refresh token", project="tienda")
    memory.track_progress("Login", "completed", project="tienda")

    pattern = memory.add_code_pattern("auth/jwt.py", JWT_SNIPPET, "python", project="tienda")
    console.print(f"  • Patrón {pattern.id}: {pattern.status.value}")


def demo_consulta(memory: MemoryCoordinator):
    """Consultar la memoria registrada."""
    console.print(Panel(
        "[bold]¿Cómo autenticamos a los usuarios?[/bold]",
        title="🔍 Consulta",
        border_style="cyan"
    ))

    for item in memory.get_project_memory("all", query="autenticación de usuarios", project="tienda"):
        similarity = f"{item.similarity:.2%}" if item.similarity is not None else "reciente"
        console.print(f"  • [{item.category.value}] #{item.id} ({similarity})")

    console.print("\n[bold]Posibles duplicados de 'verificar token jwt':[/bold]")
    for match in memory.identify_duplicates("verificar token jwt", threshold=0.3):
        console.print(f"  • {match.project}/{match.file_path} ({match.similarity:.2%})")


def main():
    """Ejecutar la demo completa."""
    with tempfile.TemporaryDirectory() as tmpdir:
        with MemoryCoordinator.from_settings(Settings(data_root=tmpdir)) as memory:
            demo_registro(memory)
            demo_consulta(memory)
            console.print(f"\n[dim]{memory.get_statistics()}[/dim]")


if __name__ == "__main__":
    main()
