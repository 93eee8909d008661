"""Command-line client for Cloud Bigtable.

The command surface is implemented with Typer and Rich; credential resolution
and query option compilation live in plain modules so they can be reused and
tested without a terminal.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
