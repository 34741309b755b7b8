"""``apkintrospect obb PACKAGE VERSION_CODE``: resolve expansion files."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from apkintrospect.config import config
from apkintrospect.core.expansion_files import ExpansionFileResolver, obb_dir

console = Console()


def obb_cmd(
    package_id: str = typer.Argument(..., help="Package identifier."),
    version_code: int = typer.Argument(..., min=0, help="Installed version code."),
    storage_root: Path = typer.Option(None, "--storage-root", help="External storage root."),
    hash_algorithm: str = typer.Option(None, "--hash", help="Digest algorithm for the files."),
) -> None:
    """Show which main/patch expansion files belong to an installed version.

    Prints one tab-separated line per kind: ``kind  filename  algorithm:digest``.
    """
    root = storage_root or config.external_storage_root
    resolver = ExpansionFileResolver(root, hash_algorithm=hash_algorithm or config.hash_algorithm)
    try:
        resolved = resolver.resolve(package_id, version_code)
    except ValueError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    if resolved.main is None and resolved.patch is None:
        console.print(f"[dim]No expansion files in {obb_dir(root, package_id)}[/dim]")
        return

    for kind, obb in (("main", resolved.main), ("patch", resolved.patch)):
        if obb is not None:
            typer.echo(f"{kind}\t{obb.filename}\t{obb.content_hash}")
