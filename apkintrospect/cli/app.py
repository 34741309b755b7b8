"""Main Typer application — imports and registers all CLI commands.

Entry point: ``apkintrospect`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import logging

import typer

from apkintrospect.cli.commands.archive_cmds import abis_cmd, fingerprint_cmd
from apkintrospect.cli.commands.inspect_cmd import inspect_cmd
from apkintrospect.cli.commands.obb_cmd import obb_cmd
from apkintrospect.config import config

app = typer.Typer(
    name="apkintrospect",
    help="apkintrospect: installed-package introspection and signer fingerprinting.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _configure_logging(
    verbose: bool = typer.Option(False, "--verbose", help="Log at DEBUG level."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Register subcommands
app.command(name="inspect", help="Build the installed-artifact record for an APK.")(inspect_cmd)
app.command(name="fingerprint", help="Print the signer fingerprint of an APK.")(fingerprint_cmd)
app.command(name="abis", help="List native ABIs in an APK.")(abis_cmd)
app.command(name="obb", help="Resolve expansion files for an installed version.")(obb_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
