"""``apkintrospect fingerprint`` and ``apkintrospect abis``: single-archive queries."""

from __future__ import annotations

import zipfile
from pathlib import Path

import typer
from rich.console import Console

from apkintrospect.core.errors import FingerprintUnavailable
from apkintrospect.core.fingerprint import SigningCertificateFingerprinter
from apkintrospect.core.native_abi import scan_native_abis
from apkintrospect.core.signed_archive import SignedArchive

console = Console()


def fingerprint_cmd(
    archive: Path = typer.Argument(..., help="Path to a signed APK."),
    signed_entry: str = typer.Option(
        "AndroidManifest.xml", "--entry", help="Entry whose certificate is fingerprinted."
    ),
) -> None:
    """Print the signer fingerprint of an APK, as the repository server computes it."""
    try:
        fp = SigningCertificateFingerprinter(signed_entry).fingerprint_path(archive)
    except FingerprintUnavailable as e:
        console.print(f"[bold red]Fingerprint unavailable:[/bold red] {e}")
        raise typer.Exit(code=1)
    except (OSError, zipfile.BadZipFile, RuntimeError, NotImplementedError) as e:
        console.print(f"[bold red]Cannot read archive:[/bold red] {e}")
        raise typer.Exit(code=1)
    typer.echo(fp)


def abis_cmd(
    archive: Path = typer.Argument(..., help="Path to an APK."),
) -> None:
    """List the native-code ABIs shipped in an APK."""
    try:
        with SignedArchive(archive) as apk:
            abis = scan_native_abis(apk.entry_names())
    except (OSError, zipfile.BadZipFile) as e:
        console.print(f"[bold red]Cannot read archive:[/bold red] {e}")
        raise typer.Exit(code=1)

    if not abis:
        console.print("[dim]No native code.[/dim]")
        return
    for abi in sorted(abis):
        typer.echo(abi)
