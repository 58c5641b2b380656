"""
CLI layer for site-spine.

Provides a Typer application whose commands delegate to
:mod:`sitespine.provision`. This package handles only terminal transport:
argument parsing, coloured output, and table formatting.

Entry point::

    sitespine --help
"""

from sitespine.cli.app import app

__all__ = ["app"]
