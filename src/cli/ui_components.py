"""Rich components for the CLI.

Kept apart from the commands so tables and panels can be reused and the
commands only deal with orchestration.
"""

from __future__ import annotations

from typing import Sequence

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.domain.models import BatchItem, CommandResult, EnvelopeHeader
from core.errors import NonZeroExitError, ZiskDevError
from core.security import redact, redact_command_line


def print_banner(console: Console) -> None:
    title = Text("zisk-dev", style="bold cyan")
    subtitle = Text("Inputs • Build • Execute • Prove", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


def _human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


def build_conversion_table(items: Sequence[BatchItem]) -> Table:
    table = Table(title="Input Conversion")
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Format", style="white")
    table.add_column("Output", style="magenta")
    table.add_column("Size", style="green", justify="right")
    table.add_column("Error", style="red")

    for item in items:
        if item.result is not None:
            result = item.result
            table.add_row(
                str(item.source_path),
                result.source_format.value,
                str(result.destination_path),
                _human_size(result.byte_size),
                "",
            )
        else:
            error = item.error or {}
            table.add_row(
                str(item.source_path),
                "-",
                "-",
                "-",
                f"{error.get('kind', 'Error')}: {error.get('message', '')}",
            )
    return table


def build_header_table(header: EnvelopeHeader, *, file_size: int) -> Table:
    table = Table(title="Binary Envelope", show_header=False)
    table.add_column("Field", style="bright_green", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Magic", header.magic.decode("ascii", errors="replace"))
    table.add_row("Version", f"{header.major}.{header.minor}")
    table.add_row("Payload length", str(header.payload_length))
    table.add_row("File size", _human_size(file_size))
    return table


def build_command_panel(result: CommandResult) -> Panel:
    """Summary panel of a successful external command."""

    body = Text()
    body.append(redact_command_line(result.command, result.args) + "\n", style="dim")
    body.append(f"\nOperation: {result.operation.value}")
    body.append(f"\nExit code: {result.exit_code}")
    body.append(f"\nDuration: {result.duration_ms / 1000:.2f}s")
    return Panel(body, title=Text("Command completed", style="bold green"), border_style="green")


def print_error(console: Console, error: ZiskDevError) -> None:
    console.print(Text.assemble((error.kind, "bold red"), ": ", redact(error.message)))
    if isinstance(error, NonZeroExitError):
        tail = error.stderr_tail()
        if tail:
            console.print(Panel(Text(redact(tail)), title="stderr (tail)", border_style="red"))
