from __future__ import annotations

import sys
import uuid
from contextlib import contextmanager
from typing import Generator, Optional

import typer

from achievement_points import reporter
from achievement_points.bootstrap import PointsCore, available_backends, build_core
from achievement_points.config import get_settings
from achievement_points.domain.models import RewardCatalogEntry
from achievement_points.errors import BusinessRuleError, TransientError
from achievement_points.utils.context import OperationContext
from achievement_points.utils.logging import configure_from_settings, get_logger

app = typer.Typer(help="Achievement points CLI.")
log = get_logger(__name__)

EXIT_REJECTED = 1
EXIT_TEMPFAIL = 75


@contextmanager
def _core() -> Generator[PointsCore, None, None]:
    """
    Build the core for one command and map core errors to exit codes.

    Business-rule rejections exit with 1; transient failures exit with 75
    (EX_TEMPFAIL) so wrappers know the command may be retried.
    """
    settings = get_settings()
    configure_from_settings(settings)
    core: Optional[PointsCore] = None
    try:
        core = build_core(settings)
        yield core
    except BusinessRuleError as exc:
        typer.echo(f"Rejected: {exc}", err=True)
        raise typer.Exit(code=EXIT_REJECTED)
    except TransientError as exc:
        log.warning("Command failed transiently", extra={"error": str(exc)})
        typer.echo(f"Temporarily unavailable: {exc}", err=True)
        raise typer.Exit(code=EXIT_TEMPFAIL)
    finally:
        if core is not None:
            core.close()


def _context(timeout: Optional[float]) -> OperationContext:
    return OperationContext(timeout=timeout)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"backend={settings.store_backend} (available: {', '.join(available_backends())}) | "
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"max_attempts={settings.ledger_max_attempts} "
        f"backoff={settings.ledger_backoff_base_seconds}s..{settings.ledger_backoff_cap_seconds}s"
    )


@app.command("init-db")
def init_db() -> None:
    """
    Create the records table in PostgreSQL if it is missing.
    """
    from achievement_points.store.postgres import PostgresStore

    with _core() as core:
        if not isinstance(core.store, PostgresStore):
            typer.echo("init-db only applies to the postgres backend.", err=True)
            raise typer.Exit(code=EXIT_REJECTED)
        core.store.ensure_schema()
        typer.echo("Schema ready.")


@app.command()
def complete(
    user_id: str = typer.Argument(..., help="User completing the achievement."),
    achievement_id: str = typer.Argument(..., help="Achievement identifier."),
    points: int = typer.Option(..., "--points", "-p", min=1, help="Points awarded."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after N seconds."),
) -> None:
    """
    Complete an achievement and award its points once.
    """
    with _core() as core:
        result = core.achievements.complete_achievement(
            user_id, achievement_id, points, context=_context(timeout)
        )
        reporter.print_completion(result)


@app.command()
def redeem(
    user_id: str = typer.Argument(..., help="User spending points."),
    reward_id: str = typer.Argument(..., help="Catalog reward to redeem."),
    request_id: Optional[str] = typer.Option(
        None,
        "--request-id",
        "-r",
        help="Idempotency key; reuse it when retrying the same redemption.",
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Give up after N seconds."),
) -> None:
    """
    Redeem a reward, debiting its cost exactly once per request id.
    """
    request_id = request_id or str(uuid.uuid4())
    with _core() as core:
        result = core.rewards.redeem(user_id, reward_id, request_id, context=_context(timeout))
        reporter.print_redemption(result)


@app.command()
def balance(user_id: str = typer.Argument(..., help="User to inspect.")) -> None:
    """
    Show a user's current balance.
    """
    with _core() as core:
        reporter.print_balance(core.get_balance(user_id))


@app.command()
def history(user_id: str = typer.Argument(..., help="User to inspect.")) -> None:
    """
    List a user's recorded redemptions.
    """
    with _core() as core:
        reporter.print_history(core.rewards.list_redemption_history(user_id))


@app.command()
def achievements(user_id: str = typer.Argument(..., help="User to inspect.")) -> None:
    """
    List a user's achievements and their credit status.
    """
    with _core() as core:
        reporter.print_achievements(core.achievements.list_achievements(user_id))


@app.command()
def summary(user_id: str = typer.Argument(..., help="User to inspect.")) -> None:
    """
    Compare the balance with recorded achievements and redemptions.
    """
    with _core() as core:
        reporter.print_summary(core.summarize(user_id))


@app.command()
def resume(user_id: str = typer.Argument(..., help="User whose pending achievements to finish.")) -> None:
    """
    Finish crediting achievements left Pending by interrupted completions.
    """
    with _core() as core:
        results = core.achievements.resume_pending(user_id)
        if not results:
            typer.echo("Nothing pending.")
        for result in results:
            reporter.print_completion(result)


@app.command("add-reward")
def add_reward(
    reward_id: str = typer.Argument(..., help="Catalog identifier."),
    cost: int = typer.Option(..., "--cost", "-c", min=1, help="Points per redemption."),
    title: str = typer.Option("", "--title", "-t", help="Display title."),
    stock: Optional[int] = typer.Option(None, "--stock", min=0, help="Units left; omit for unlimited."),
) -> None:
    """
    Register or replace a reward catalog entry.
    """
    with _core() as core:
        entry = core.rewards.catalog.register(
            RewardCatalogEntry(reward_id=reward_id, title=title, cost=cost, stock=stock)
        )
        typer.echo(f"Registered {entry.reward_id} (cost={entry.cost}, stock={entry.stock}).")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
