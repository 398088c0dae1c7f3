"""
CLI de devmemory - Mantenimiento de la memoria de proyecto
==========================================================
"""

import argparse
import logging
import sys

from rich.console import Console
from rich.panel import Panel

from devmemory.config import Settings, get_settings
from devmemory.errors import ProjectMemoryError

console = Console()


def _open_coordinator(args):
    from devmemory.coordinator import MemoryCoordinator

    settings = get_settings()
    if args.data_root:
        settings = Settings(data_root=args.data_root)
    return MemoryCoordinator.from_settings(settings)


def handle_stats(args):
    """Manejar comando de estadísticas."""
    with _open_coordinator(args) as memory:
        stats = memory.get_statistics(args.project)

    scope = f"proyecto {args.project}" if args.project else "global"
    lines = [
        f"[bold]Decisiones:[/bold] {stats['decisions']} "
        f"([yellow]{stats['decisions_without_embedding']} sin embedding[/yellow])",
        f"[bold]Hitos de progreso:[/bold] {stats['progress']}",
        f"[bold]Patrones de código:[/bold] {stats['code_patterns']} "
        f"([yellow]{stats['code_patterns_without_embedding']} sin embedding[/yellow])",
    ]
    if "projects" in stats:
        lines.append(f"[bold]Proyectos:[/bold] {stats['projects']}")
        lines.append(f"[bold]Relaciones:[/bold] {stats['relations']}")
    lines.append("\n[bold]Índice vectorial:[/bold]")
    lines.extend(f"  • {k}: {v}" for k, v in stats["vector_index"].items())

    console.print(Panel(
        "\n".join(lines),
        title=f"📊 Estadísticas de Memoria ({scope})",
        border_style="blue"
    ))


def handle_projects(args):
    """Listar proyectos."""
    with _open_coordinator(args) as memory:
        projects = memory.list_projects()

    if not projects:
        console.print("[yellow]No hay proyectos registrados aún.[/yellow]")
        return

    console.print(f"\n[bold]📁 {len(projects)} proyectos:[/bold]\n")
    for project in projects:
        created = project.metadata.get("created", "?")
        console.print(f"  • [cyan]{project.name}[/cyan] (id={project.id}, creado {created})")


def handle_search(args):
    """Manejar comando de búsqueda semántica."""
    with _open_coordinator(args) as memory:
        results = memory.semantic_search(
            args.query,
            args.category,
            project=args.project,
            limit=args.top,
            threshold=args.threshold,
        )

    if not results:
        console.print("[yellow]No se encontraron resultados.[/yellow]")
        return

    console.print(f"\n[bold]🔍 {len(results)} resultados para:[/bold] {args.query}\n")

    for i, result in enumerate(results, 1):
        console.print(Panel(
            f"{result.text[:500]}\n\n"
            f"[bold]Proyecto:[/bold] {result.project} | "
            f"[bold]Similitud:[/bold] {result.similarity:.2%}",
            title=f"Resultado {i}",
            border_style="cyan"
        ))


def handle_duplicates(args):
    """Buscar código duplicado a partir de una descripción."""
    with _open_coordinator(args) as memory:
        matches = memory.identify_duplicates(args.description, threshold=args.threshold)

    if not matches:
        console.print("[green]✓ No se encontraron posibles duplicados.[/green]")
        return

    console.print(f"\n[bold]⚠️ {len(matches)} posibles duplicados:[/bold]\n")
    for match in matches:
        console.print(Panel(
            match.content[:500],
            title=f"{match.file_path} ({match.language or '?'}) · {match.project} · {match.similarity:.2%}",
            border_style="yellow"
        ))


def handle_reindex(args):
    """Regenerar entradas vectoriales faltantes."""
    with _open_coordinator(args) as memory:
        report = memory.reindex(args.project)

    border = "green" if report.failed == 0 else "red"
    console.print(Panel(
        f"[bold]Revisados:[/bold] {report.checked}\n"
        f"[bold]Reparados:[/bold] {report.repaired}\n"
        f"[bold]Fallidos:[/bold] {report.failed}",
        title="🔧 Reindexado",
        border_style=border
    ))


def main():
    """Punto de entrada del CLI."""
    parser = argparse.ArgumentParser(
        description="devmemory: memoria de proyecto (SQLite + ChromaDB)"
    )
    parser.add_argument(
        "--data-root",
        help="Directorio de datos (por defecto DEVMEMORY_DATA_ROOT o ./data)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Comandos disponibles")

    # Comando: stats
    stats_parser = subparsers.add_parser(
        "stats",
        help="Ver estadísticas de la memoria"
    )
    stats_parser.add_argument(
        "--project", "-p",
        help="Filtrar por proyecto"
    )

    # Comando: projects
    subparsers.add_parser(
        "projects",
        help="Listar proyectos"
    )

    # Comando: search
    search_parser = subparsers.add_parser(
        "search",
        help="Búsqueda semántica en decisiones o patrones"
    )
    search_parser.add_argument(
        "query",
        help="Texto de búsqueda"
    )
    search_parser.add_argument(
        "--category", "-c",
        choices=["decisions", "code_patterns"],
        default="decisions",
        help="Índice a consultar"
    )
    search_parser.add_argument(
        "--top", "-k",
        type=int,
        default=5,
        help="Número de resultados"
    )
    search_parser.add_argument(
        "--threshold", "-t",
        type=float,
        help="Similitud mínima (0-1)"
    )
    search_parser.add_argument(
        "--project", "-p",
        help="Filtrar por proyecto"
    )

    # Comando: duplicates
    duplicates_parser = subparsers.add_parser(
        "duplicates",
        help="Buscar código similar a una descripción"
    )
    duplicates_parser.add_argument(
        "description",
        help="Descripción de la funcionalidad"
    )
    duplicates_parser.add_argument(
        "--threshold", "-t",
        type=float,
        help="Similitud mínima (0-1)"
    )

    # Comando: reindex
    reindex_parser = subparsers.add_parser(
        "reindex",
        help="Reparar decisiones y patrones sin entrada vectorial"
    )
    reindex_parser.add_argument(
        "--project", "-p",
        help="Limitar a un proyecto"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    if not args.command:
        parser.print_help()
        return

    try:
        if args.command == "stats":
            handle_stats(args)
        elif args.command == "projects":
            handle_projects(args)
        elif args.command == "search":
            handle_search(args)
        elif args.command == "duplicates":
            handle_duplicates(args)
        elif args.command == "reindex":
            handle_reindex(args)
    except ProjectMemoryError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
