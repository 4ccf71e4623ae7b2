"""Rich-based console output for jobs and the CLI"""

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

console = Console()

_STATE_STYLES = {
    "completed": "bold green",
    "failed": "bold red",
    "cancelled": "bold yellow",
}


def _print_marked(mark: str, mark_style: str, message: str, style: str) -> None:
    console.print(Text(mark, style=mark_style) + Text(message, style=style))


def print_check(message: str) -> None:
    """Print a checkmark message in bold."""
    _print_marked("✓ ", "bold green", message, "bold")


def print_success(message: str) -> None:
    _print_marked("✓ ", "green", message, "green")


def print_warning(message: str) -> None:
    _print_marked("⚠ ", "bold yellow", message, "bold")


def print_error(message: str) -> None:
    _print_marked("✗ ", "bold red", message, "bold")


def print_info(message: str) -> None:
    _print_marked("ℹ ", "bold blue", message, "blue")


def print_header(title: str, width: int = 80) -> None:
    """Print a title centered between two rules."""
    separator = Text("=" * width, style="bold blue")
    console.print(separator)
    console.print(Text(title.center(width).rstrip(), style="bold blue"))
    console.print(separator)


def print_separator() -> None:
    console.print("-" * 40, style="blue")


def print_summary_row(label: str, value: str, width: int = 12) -> None:
    """Print one aligned 'label: value' line of a job summary."""
    print_success(f"{label + ':':<{width}} {value}")


def print_job_state(job_key: str, state: str) -> None:
    """Print a job's state, colored by outcome."""
    style = _STATE_STYLES.get(state, "bold blue")
    console.print(Text(f"[{job_key}] ", style="dim") + Text(state.upper(), style=style))


def print_tool_output(output: str, title: str = "Tool output", max_chars: int = 2000) -> None:
    """Show the tail of an external tool's stderr in a panel."""
    tail = output.strip()[-max_chars:]
    if tail:
        console.print(Panel(tail, title=title, border_style="red"))
