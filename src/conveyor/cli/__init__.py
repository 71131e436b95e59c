"""Command-line interface for conveyor (``conveyor run|validate|health``)."""

from conveyor.cli.app import app

__all__ = ["app"]
