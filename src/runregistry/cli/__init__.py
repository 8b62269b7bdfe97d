"""
CLI layer for run-registry.

A Typer application whose sub-commands delegate to the registry and the
management state built by :mod:`runregistry.services`. This package
handles only terminal transport: argument parsing, coloured output and
table formatting.

Entry point::

    run-registry --help
"""

from runregistry.cli.app import app

__all__ = ["app"]
