# Rich-based console for thread-safe, colored terminal output.
#
# This module provides a centralized console for all sidhound output,
# with proper handling for the multi-threaded per-server worker pool.
#
# Features:
# - Thread-safe output (no interleaving)
# - Colored status messages
# - Live progress bar for parallel resolution
# - Rich tables for identity records

import threading
from contextlib import contextmanager
from typing import Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from ..models import IdentityRecord

# Global console instance - thread-safe by default
console = Console(highlight=False)

# Lock for complex multi-line output
_output_lock = threading.RLock()


# =============================================================================
# Banner
# =============================================================================

SIDHOUND_TEAL = "#14B8A6"

BANNER_ART = f"""
[bold {SIDHOUND_TEAL}] SSS  III DDDD  H   H  OOO  U   U N   N DDDD[/]
[bold {SIDHOUND_TEAL}]S      I  D   D H   H O   O U   U NN  N D   D[/]
[bold {SIDHOUND_TEAL}] SSS   I  D   D HHHHH O   O U   U N N N D   D[/]
[bold {SIDHOUND_TEAL}]    S  I  D   D H   H O   O U   U N  NN D   D[/]
[bold {SIDHOUND_TEAL}]SSSS  III DDDD  H   H  OOO   UUU  N   N DDDD[/]
"""


def print_banner():
    """Print the colored sidhound banner."""
    console.print(BANNER_ART)


# =============================================================================
# Status Messages (thread-safe)
# =============================================================================


def status(msg: str):
    """Print a status message (always visible). Thread-safe."""
    with _output_lock:
        console.print(msg)


def good(msg: str, verbose_only: bool = False):
    """Print a success message in green. Thread-safe."""
    if verbose_only and not _is_verbose():
        return
    with _output_lock:
        console.print(f"[green][+][/] {msg}")


def warn(msg: str, verbose_only: bool = False):
    """Print a warning message in yellow. Thread-safe.

    Args:
        msg: Message to print
        verbose_only: If True, only print in verbose mode
    """
    if verbose_only and not _is_verbose():
        return
    with _output_lock:
        console.print(f"[yellow][!][/] {msg}")


def error(msg: str):
    """Print an error message in red. Thread-safe."""
    with _output_lock:
        console.print(f"[red][-][/] {msg}")


def info(msg: str, verbose_only: bool = False):
    """Print an info message in blue. Thread-safe."""
    if verbose_only and not _is_verbose():
        return
    with _output_lock:
        console.print(f"[blue][*][/] {msg}")


def debug(msg: str, exc_info: bool = False):
    """Print a debug message in dim text. Thread-safe."""
    if not _is_debug():
        return
    with _output_lock:
        console.print(f"[dim][DEBUG][/] {msg}")
        if exc_info:
            console.print_exception()


# =============================================================================
# Verbosity Control
# =============================================================================

_VERBOSE = False
_DEBUG = False


def set_verbosity(verbose: bool, debug: bool):
    """Set verbosity levels."""
    global _VERBOSE, _DEBUG
    _VERBOSE = verbose
    _DEBUG = debug


def _is_verbose() -> bool:
    return _VERBOSE or _DEBUG


def _is_debug() -> bool:
    return _DEBUG


# =============================================================================
# Progress Bar for Parallel Resolution
# =============================================================================


@contextmanager
def scan_progress(total: int, description: str = "Resolving"):
    """
    Context manager for showing a progress bar while servers are interrogated.

    Usage:
        with scan_progress(len(servers), "Resolving identities") as update:
            for server in servers:
                process(server)
                update(server)

    Yields:
        update function that takes (current_item, success=True, error_msg=None)
    """
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(bar_width=40),
        TaskProgressColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TextColumn("[dim]{task.fields[status]}"),
        console=console,
        transient=False,
    )

    task_id = progress.add_task(description, total=total, status="")
    stats = {"success": 0, "failed": 0}

    def update(item: str, success: bool = True, error_msg: Optional[str] = None):
        """Update progress with current item status."""
        if success:
            stats["success"] += 1
            status_text = f"[green][+][/] {item}"
        else:
            stats["failed"] += 1
            status_text = f"[red][-][/] {item}: {error_msg[:30]}" if error_msg else f"[red][-][/] {item}"

        progress.update(task_id, advance=1, status=status_text)

    with progress:
        yield update

    total_done = stats["success"] + stats["failed"]
    if stats["failed"] > 0:
        console.print(
            f"\n[green][+] {stats['success']}[/] succeeded, "
            f"[red][-] {stats['failed']}[/] failed out of {total_done} servers"
        )


# =============================================================================
# Identity Tables
# =============================================================================


def print_identity_table(records: Iterable[IdentityRecord], title: str = "IDENTITIES"):
    """Print resolved identity records in a styled panel."""
    records = list(records)
    if not records:
        return

    table = Table(
        show_header=True,
        header_style="bold cyan",
        border_style="dim",
        box=None,
    )
    table.add_column("Reference", style="white", no_wrap=True)
    table.add_column("SID", style="dim")
    table.add_column("NetBIOS name", style="green")
    table.add_column("DNS name", style="green")
    table.add_column("Resolved", justify="center")

    for record in records:
        table.add_row(
            record.original_reference,
            record.sid_string,
            record.short_name,
            record.fully_qualified_name,
            "[green]yes[/]" if record.resolved else "[red]no[/]",
        )

    with _output_lock:
        console.print()
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style="cyan"))


def print_run_complete(succeeded: int, failed: int, total_time: float, resolved: int, unresolved: int):
    """Print run completion summary."""
    content_lines = [
        f"  [green][+][/] Servers succeeded: [bold]{succeeded}[/]",
        f"  [red][-][/] Servers failed: [bold]{failed}[/]",
        f"  [green][+][/] Identities resolved: [bold]{resolved}[/]",
        f"  [yellow][~][/] Identities unresolved: [bold]{unresolved}[/]",
        f"  [dim]Total time: {total_time:.2f}s[/]",
    ]
    console.print()
    console.print(
        Panel(
            "\n".join(content_lines),
            title="[bold]RESOLUTION COMPLETE[/]",
            border_style="green" if failed == 0 else "yellow",
        )
    )
