from __future__ import annotations

from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from achievement_points.domain.models import (
    AchievementRecord,
    PointBalance,
    PointSummary,
    RedemptionRecord,
)
from achievement_points.services.achievements import AchievementCompletion
from achievement_points.services.rewards import RedemptionOutcome

_OUTCOME_STYLE = {
    "completed": "bold green",
    "resumed": "yellow",
    "already_completed": "dim",
}


def _console(console: Optional[Console]) -> Console:
    return console or Console()


def print_balance(balance: PointBalance, console: Optional[Console] = None) -> None:
    console = _console(console)
    console.print(
        f"[cyan]{balance.user_id}[/cyan]: [bold green]{balance.balance:,}[/bold green] points "
        f"[dim](version {balance.version}, updated {balance.updated_at:%Y-%m-%d %H:%M:%S})[/dim]"
    )


def print_completion(result: AchievementCompletion, console: Optional[Console] = None) -> None:
    console = _console(console)
    style = _OUTCOME_STYLE.get(result.outcome.value, "white")
    console.print(
        f"[{style}]{result.outcome.value}[/{style}] {result.record.achievement_id} "
        f"(+{result.record.points}) for [cyan]{result.record.user_id}[/cyan]; "
        f"balance {result.balance:,}"
    )


def print_redemption(result: RedemptionOutcome, console: Optional[Console] = None) -> None:
    console = _console(console)
    label = "[dim]replayed[/dim]" if result.replayed else "[bold green]redeemed[/bold green]"
    record = result.record
    console.print(
        f"{label} {record.reward_id} (-{record.points_spent}) for [cyan]{record.user_id}[/cyan] "
        f"request {record.request_id}; balance {result.balance:,}"
    )


def print_history(records: Iterable[RedemptionRecord], console: Optional[Console] = None) -> None:
    """
    Render redemption history as a rich table, newest first.
    """
    console = _console(console)
    rows = sorted(records, key=lambda r: r.redeemed_at, reverse=True)
    if not rows:
        console.print("[yellow]No redemptions recorded.[/yellow]")
        return

    table = Table(title="Redemption History", box=box.ROUNDED)
    table.add_column("Redeemed At", style="green", no_wrap=True)
    table.add_column("Request", style="cyan")
    table.add_column("Reward", style="magenta")
    table.add_column("Points", justify="right", style="red")
    table.add_column("Balance After", justify="right", style="bold green")
    for record in rows:
        table.add_row(
            f"{record.redeemed_at:%Y-%m-%d %H:%M:%S}",
            record.request_id,
            record.reward_id,
            f"{record.points_spent:,}",
            f"{record.balance_after:,}",
        )
    console.print(table)


def print_achievements(records: Iterable[AchievementRecord], console: Optional[Console] = None) -> None:
    console = _console(console)
    table = Table(title="Achievements", box=box.ROUNDED)
    table.add_column("Achievement", style="cyan")
    table.add_column("Points", justify="right", style="green")
    table.add_column("Status")
    for record in records:
        status = "[green]Credited[/green]" if record.is_credited else "[yellow]Pending[/yellow]"
        table.add_row(record.achievement_id, f"{record.points:,}", status)
    console.print(table)


def print_summary(summary: PointSummary, console: Optional[Console] = None) -> None:
    """
    Render the per-user aggregation and whether the balance is in sync.
    """
    console = _console(console)
    table = Table(title=f"Point Summary: {summary.user_id}", box=box.ROUNDED, show_header=False)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")
    table.add_row("Credited achievements", f"{summary.credited_achievements:,}")
    table.add_row("Points credited", f"{summary.credited_points:,}")
    table.add_row("Pending achievements", f"{summary.pending_achievements:,}")
    table.add_row("Redemptions", f"{summary.redemptions:,}")
    table.add_row("Points spent", f"{summary.points_spent:,}")
    table.add_row("Expected balance", f"{summary.expected_balance:,}")
    table.add_row("Current balance", f"[bold]{summary.balance:,}[/bold]")
    table.add_row("Difference", f"{summary.difference:,}")
    console.print(table)

    if summary.in_sync:
        console.print("[green]Points are in sync.[/green]")
    elif summary.pending_achievements:
        console.print(
            f"[yellow]{summary.pending_achievements} achievement(s) pending; "
            "run `resume` to finish crediting them.[/yellow]"
        )
    else:
        console.print("[red]Balance does not match the recorded history.[/red]")


__all__ = [
    "print_achievements",
    "print_balance",
    "print_completion",
    "print_history",
    "print_redemption",
    "print_summary",
]
