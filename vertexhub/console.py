"""
Terminal output for the CLI.

Normal output goes to stdout, errors to stderr. Anything that came from
outside (argv, proxy responses) must go through
:func:`vertexhub.sanitize.safe_display` before it is interpolated into
markup here.
"""

from rich.console import Console

console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)


def log(message: str):
    console.print(f"[cyan]\\[VertexHub][/cyan] {message}")


def ok(message: str):
    console.print(f"[green]✓[/green] {message}")


def warn(message: str):
    console.print(f"[yellow]⚠[/yellow] {message}")


def err(message: str):
    err_console.print(f"[red]✗[/red] {message}")


def hint(message: str):
    err_console.print(f"  [dim]{message}[/dim]")


def banner(title: str, color: str = "cyan"):
    width = 38
    console.print()
    console.print(f"[bold {color}]╔{'═' * width}╗[/bold {color}]")
    console.print(f"[bold {color}]║{title.center(width)}║[/bold {color}]")
    console.print(f"[bold {color}]╚{'═' * width}╝[/bold {color}]")
    console.print()


def progress_dot(attempt: int):
    console.print(".", end="")


def output_callback(level: str, message: str):
    """Route notable proxy output from the process manager to the terminal."""
    if level == "ok":
        ok(message)
    else:
        warn(message)
