"""apkintrospect CLI — Typer-based command-line interface.

Provides the ``apkintrospect`` command with subcommands for building an
installed-artifact record, printing a signer fingerprint, listing native
ABIs, and resolving expansion files.

All output uses Rich for formatted terminal display.
"""
