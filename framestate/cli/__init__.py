"""Framestate CLI — Typer-based command-line interface.

Provides the ``framestate`` command with subcommands for ingesting
activities, signalling session ends, computing snapshots and reading the
current state.

All output uses Rich for formatted terminal display.
"""
