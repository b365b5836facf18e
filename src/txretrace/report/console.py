"""
Console report generator for txretrace.

Renders a TraceReport in the terminal using Rich: a header with the
verification verdict, then the incoming message, money flow, compute phase
and produced actions.

Design Principles:
    - Verdict first: state-hash verification is the first thing shown
    - Amounts in TON with the exact nanoton value alongside
    - VM logs only on request (verbose)
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from txretrace.schema import ComputePhaseSummary, TraceReport

# Status icons
ICON_SUCCESS = "[green]✓[/green]"
ICON_ERROR = "[red]✗[/red]"
ICON_SKIPPED = "[dim]○[/dim]"

NANO = 10**9
VM_LOG_TAIL_LINES = 40


def generate_console_report(
    report: TraceReport,
    console: Console | None = None,
    verbose: bool = False,
) -> None:
    """
    Print a console report for a TraceReport.

    Args:
        report: Report to render
        console: Rich Console instance (creates one if not provided)
        verbose: Whether to include executor and VM logs
    """
    if console is None:
        console = Console()

    _print_header(console, report)
    console.print()

    _print_message(console, report)
    console.print()

    _print_money(console, report)
    console.print()

    _print_compute(console, report)
    console.print()

    _print_actions(console, report)

    if verbose:
        console.print()
        _print_logs(console, report)


def format_ton(nano: int | None) -> str:
    """Format a nanoton amount as TON."""
    if nano is None:
        return "—"
    sign = "-" if nano < 0 else ""
    whole, frac = divmod(abs(nano), NANO)
    frac_str = f"{frac:09d}".rstrip("0")
    return f"{sign}{whole}.{frac_str or '0'} TON"


def _print_header(console: Console, report: TraceReport) -> None:
    """Print the verdict header."""
    header = Text()
    header.append(" Transaction ", style="bold")
    header.append(f"lt {report.emulated_tx.lt}", style="bold cyan")
    header.append(" │ ", style="dim")
    if report.state_update_hash_ok:
        header.append("STATE HASH OK", style="bold green")
        header.append(" ✓", style="green")
    else:
        header.append("STATE HASH MISMATCH", style="bold red")
        header.append(" ✗", style="red")

    if report.retries:
        header.append(" │ ", style="dim")
        header.append(f"{report.retries} RETRY", style="bold magenta")

    console.print(Panel(header, expand=False))

    version = report.emulator_version
    if version.commit_hash:
        console.print(f"  [dim]Emulator:[/dim] {version.commit_hash[:12]} ({version.commit_date})")
    elif version.release:
        console.print(f"  [dim]Emulator:[/dim] {version.release}")
    if report.library_hashes:
        console.print(f"  [dim]Libraries ({len(report.library_hashes)}):[/dim]")
        for lib_hash in report.library_hashes:
            console.print(f"    • {lib_hash}")
    if report.code_cell != report.original_code_cell:
        console.print("  [dim]Code:[/dim] resolved from library cell")


def _print_message(console: Console, report: TraceReport) -> None:
    console.print("[bold]Incoming Message[/bold]")
    console.print()

    msg = report.in_msg
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value", overflow="fold")

    table.add_row("Sender", msg.sender or "[dim]external[/dim]")
    table.add_row("Contract", msg.contract)
    table.add_row("Amount", format_ton(msg.amount))
    table.add_row("Opcode", f"0x{msg.opcode:08x}" if msg.opcode is not None else "—")

    console.print(table)


def _print_money(console: Console, report: TraceReport) -> None:
    console.print("[bold]Money[/bold]")
    console.print()

    money = report.money
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Metric", style="dim")
    table.add_column("TON", justify="right")
    table.add_column("nanoton", justify="right", style="dim")

    for label, value in (
        ("Balance before", money.balance_before),
        ("Sent", money.sent_total),
        ("Fees", money.total_fees),
        ("Balance after", money.balance_after),
    ):
        table.add_row(label, format_ton(value), str(value))

    console.print(table)


def _print_compute(console: Console, report: TraceReport) -> None:
    console.print("[bold]Compute Phase[/bold]")
    console.print()

    compute = report.emulated_tx.compute_info
    if not isinstance(compute, ComputePhaseSummary):
        console.print(f"  {ICON_SKIPPED} skipped")
        return

    icon = ICON_SUCCESS if compute.success else ICON_ERROR
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="dim")
    table.add_column("Value")

    table.add_row("Success", icon)
    table.add_row(
        "Exit code",
        f"[red]{compute.exit_code}[/red]" if compute.exit_code not in (0, 1) else str(compute.exit_code),
    )
    table.add_row("VM steps", str(compute.vm_steps))
    table.add_row("Gas used", str(compute.gas_used))
    table.add_row("Gas fees", format_ton(compute.gas_fees))

    console.print(table)


def _print_actions(console: Console, report: TraceReport) -> None:
    actions = report.emulated_tx.actions
    console.print(f"[bold]Actions ({len(actions)})[/bold]")
    console.print()

    if not actions:
        console.print("  [dim]none[/dim]")
        return

    table = Table(show_header=True, header_style="bold", expand=True)
    table.add_column("#", style="dim", width=3, justify="right")
    table.add_column("Type", style="cyan", width=16)
    table.add_column("Mode", justify="right", width=6)
    table.add_column("Details", overflow="fold")

    for index, action in enumerate(actions, start=1):
        details = ", ".join(f"{k}={_truncate(str(v), 40)}" for k, v in action.details.items())
        mode = str(action.mode) if action.mode is not None else "—"
        table.add_row(str(index), action.type, mode, details)

    console.print(table)


def _print_logs(console: Console, report: TraceReport) -> None:
    emulated = report.emulated_tx
    if emulated.executor_logs:
        console.print("[bold]Executor Logs[/bold]")
        console.print(emulated.executor_logs, markup=False, highlight=False)
        console.print()

    lines = emulated.vm_logs.splitlines()
    console.print(f"[bold]VM Log[/bold] [dim](last {min(len(lines), VM_LOG_TAIL_LINES)} of {len(lines)} lines)[/dim]")
    for line in lines[-VM_LOG_TAIL_LINES:]:
        console.print(_truncate(line, 200), markup=False, highlight=False)


def _truncate(s: str, max_len: int) -> str:
    """Truncate string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[: max_len - 3] + "..."
