"""
Entry point for running vertexhub via `python -m vertexhub`.

Delegates to the CLI error boundary.
"""

from .cli import cli


if __name__ == "__main__":
    cli()
