"""Run the vertexhub CLI from a source checkout."""

from vertexhub.cli import cli

if __name__ == "__main__":
    cli()
