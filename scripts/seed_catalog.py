"""
Reward catalog seeding script.

The catalog is managed outside the points core; this script is the tooling
that fills it. It can generate a deterministic sample catalog as CSV and
register every row of a catalog CSV into the configured store.

CSV columns: reward_id, title, cost, stock (empty stock means unlimited).
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

import typer

from achievement_points.bootstrap import build_core
from achievement_points.config import get_settings
from achievement_points.domain.models import RewardCatalogEntry
from achievement_points.services.rewards import RewardCatalog
from achievement_points.utils.logging import configure_from_settings

app = typer.Typer(help="Generate and load reward catalog entries.")

CSV_HEADER = ["reward_id", "title", "cost", "stock"]
_ITEMS = ["sticker", "badge", "mug", "t-shirt", "hoodie", "voucher", "backpack", "poster"]


def _generate_catalog_csv(csv_path: Path, rewards: int, seed: int) -> None:
    rng = random.Random(seed)
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for i in range(rewards):
            item = rng.choice(_ITEMS)
            cost = rng.choice([10, 25, 50, 80, 100, 250, 500])
            stock = "" if rng.random() < 0.5 else str(rng.randint(0, 100))
            writer.writerow([f"{item}-{i:04d}", item.replace("-", " ").title(), cost, stock])


def _read_catalog_csv(csv_path: Path) -> List[RewardCatalogEntry]:
    entries: List[RewardCatalogEntry] = []
    with csv_path.open("r", newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            stock = (row.get("stock") or "").strip()
            entries.append(
                RewardCatalogEntry(
                    reward_id=row["reward_id"].strip(),
                    title=(row.get("title") or "").strip(),
                    cost=int(row["cost"]),
                    stock=int(stock) if stock else None,
                )
            )
    return entries


def _load_catalog(catalog: RewardCatalog, entries: List[RewardCatalogEntry]) -> int:
    for entry in entries:
        catalog.register(entry)
    return len(entries)


@app.command()
def main(
    rewards: int = typer.Option(
        20,
        "--rewards",
        "-n",
        help="Number of sample rewards to generate.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    source: Optional[Path] = typer.Option(
        None,
        "--from",
        help="Load this catalog CSV instead of generating one.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip registering entries in the store.",
    ),
) -> None:
    """
    Generate a sample catalog (or read one) and register it in the store.
    """
    settings = get_settings()
    configure_from_settings(settings)

    if source:
        csv_path = source
    else:
        if output:
            csv_path = output
            csv_path.parent.mkdir(parents=True, exist_ok=True)
        else:
            csv_path = Path(tempfile.mkdtemp(prefix="reward_catalog_")) / "catalog.csv"
        typer.echo(f"Generating {rewards:,} rewards -> {csv_path} (seed={seed})")
        _generate_catalog_csv(csv_path, rewards=rewards, seed=seed)

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    entries = _read_catalog_csv(csv_path)
    with build_core(settings) as core:
        loaded = _load_catalog(core.rewards.catalog, entries)
    typer.echo(f"Registered {loaded:,} rewards into the {settings.store_backend} store.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
