"""
Sample data generation script for livestore.

Implements deterministic pseudo-random users and jobs and inserts them into the
configured store in a single atomic write.
"""

from __future__ import annotations

import random
import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import typer

from livestore.config import get_settings
from livestore.domain.models import Job, Record, User
from livestore.infrastructure.backend_factory import open_store
from livestore.infrastructure.sqlite_backend import SqliteBackend
from livestore.utils.logging import configure_from_settings

app = typer.Typer(help="Generate sample users and jobs and insert them into a store.")

FIRST_NAMES = ["Piper", "Rhea", "James", "Kirk", "Lars", "Robert", "Ana", "Zoë", "Émile", "Taylor"]
LAST_NAMES = ["Hetfield", "Hammett", "Ulrich", "Trujillo", "Silva", "Okafor", "Brandt", "Moreau"]
CITIES = ["London", "Paris", "Downey", "Lisbon", "Berlin", "Nairobi", "Oslo"]
JOB_NAMES = ["Organize sock drawer", "Make plans with Alex", "Write report", "Water plants"]


def _generate_records(
    users: int, jobs_per_user: int, seed: int, start: Optional[datetime] = None
) -> List[Record]:
    """
    Build users and their jobs, owners first, in a reproducible order.
    """
    rng = random.Random(seed)
    start = start or datetime(2020, 1, 1, tzinfo=timezone.utc)
    records: List[Record] = []
    for _ in range(users):
        user = User(
            name=f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
            city=rng.choice(CITIES),
            join_date=start + timedelta(days=rng.randint(0, 5 * 365), minutes=rng.randint(0, 1439)),
        )
        records.append(user)
        for _ in range(jobs_per_user):
            records.append(
                Job(name=rng.choice(JOB_NAMES), priority=rng.randint(1, 5), owner=user)
            )
    return records


@app.command()
def main(
    users: int = typer.Option(10, "--users", "-u", help="Number of users to generate."),
    jobs_per_user: int = typer.Option(2, "--jobs-per-user", "-j", help="Jobs per user."),
    seed: int = typer.Option(42, "--seed", help="Random seed for deterministic output."),
    store_path: Optional[Path] = typer.Option(
        None,
        "--store-path",
        help="SQLite file to write instead of the configured backend.",
    ),
) -> None:
    """
    Generate sample users and jobs and insert them into the store.
    """
    settings = get_settings()
    configure_from_settings(settings)
    start = time.perf_counter()
    records = _generate_records(users, jobs_per_user, seed)
    backend = SqliteBackend(store_path) if store_path else None

    with open_store(settings, backend=backend) as store:
        store.insert_all(records)
        total = store.count(User)

    duration = time.perf_counter() - start
    typer.echo(
        f"Inserted {len(records):,} records ({users} users) in {duration:.2f}s; "
        f"store now holds {total} users."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
