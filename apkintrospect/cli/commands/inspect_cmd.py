"""``apkintrospect inspect APK`` — build and print an installed-artifact record.

Without a device to ask, the installer-reported metadata (label, version,
permissions, features) is taken from command-line options.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from apkintrospect.config import IntrospectConfig
from apkintrospect.core.builder import InstalledArtifactBuilder
from apkintrospect.core.errors import ArtifactBuildFailure, FingerprintUnavailable
from apkintrospect.models.artifacts import SDK_VERSION_MAX_VALUE, InstalledArtifact
from apkintrospect.models.package_info import InstalledPackageInfo

console = Console()


def render_artifact(artifact: InstalledArtifact) -> Table:
    """Return a two-column Rich table describing *artifact*."""
    table = Table(title=f"[bold]{artifact.name}[/bold]", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    max_sdk = (
        "unbounded"
        if artifact.max_sdk_version == SDK_VERSION_MAX_VALUE
        else str(artifact.max_sdk_version)
    )
    table.add_row("Package", artifact.package_identifier)
    table.add_row("Version", f"{artifact.version_name} ({artifact.version_code})")
    table.add_row(
        "SDK (min/target/max)",
        f"{artifact.min_sdk_version} / {artifact.target_sdk_version} / {max_sdk}",
    )
    table.add_row("Native ABIs", ", ".join(sorted(artifact.native_abis)) or "[dim]none[/dim]")
    table.add_row("Permissions", "\n".join(sorted(artifact.requested_permissions)) or "[dim]none[/dim]")
    table.add_row("Features", "\n".join(artifact.declared_features) or "[dim]none[/dim]")
    for label, obb in (("OBB main", artifact.expansion_main), ("OBB patch", artifact.expansion_patch)):
        table.add_row(label, f"{obb.filename}\n{obb.content_hash}" if obb else "[dim]none[/dim]")
    table.add_row("Archive", str(artifact.archive_path))
    table.add_row("Archive hash", str(artifact.archive_content_hash))
    table.add_row("Fingerprint", f"[bold green]{artifact.fingerprint}[/bold green]")
    return table


def inspect_cmd(
    archive: Path = typer.Argument(..., help="Path to the installed APK."),
    package_id: str = typer.Option(..., "--package-id", "-p", help="Package identifier."),
    label: str = typer.Option("", "--label", help="Human-readable name (defaults to the package id)."),
    version_name: str = typer.Option("", "--version-name", help="Installed version name."),
    version_code: int = typer.Option(0, "--version-code", "-v", min=0, help="Installed version code."),
    permission: list[str] = typer.Option([], "--permission", help="Requested permission (repeatable)."),
    feature: list[str] = typer.Option([], "--feature", help="Declared feature (repeatable)."),
    storage_root: Path = typer.Option(None, "--storage-root", help="External storage root for OBB lookup."),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON."),
) -> None:
    """Build the installed-artifact record for an APK."""
    overrides = {}
    if storage_root is not None:
        overrides["external_storage_root"] = storage_root
    builder = InstalledArtifactBuilder(IntrospectConfig(**overrides))

    package = InstalledPackageInfo(
        package_identifier=package_id,
        label=label or package_id,
        version_name=version_name,
        version_code=version_code,
        requested_permissions=frozenset(permission),
        declared_features=tuple(feature),
        archive_path=archive,
    )

    try:
        artifact = builder.build(package)
    except (FingerprintUnavailable, ArtifactBuildFailure) as e:
        console.print(f"[bold red]{type(e).__name__}:[/bold red] {e}")
        raise typer.Exit(code=1)

    if as_json:
        payload = artifact.model_dump(mode="json")
        for key in ("requested_permissions", "native_abis"):
            payload[key] = sorted(payload[key])
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    console.print(render_artifact(artifact))
