from __future__ import annotations

import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional

import typer
from rich.console import Console

from livestore.config import get_settings
from livestore.domain.models import Job, User
from livestore.editor import BoundEditor
from livestore.errors import LiveStoreError
from livestore.infrastructure.backend_factory import open_store
from livestore.query.live import LiveQuery
from livestore.query.predicate import field
from livestore.query.sort import SortDescriptor, SortOrder
from livestore.reporter import build_jobs_table, print_users
from livestore.store.record_store import RecordStore
from livestore.utils.logging import configure_from_settings

app = typer.Typer(help="livestore: a live, query-able record store for users and jobs.")
console = Console()

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]
USER_SORT_FIELDS = ("name", "city", "join_date")


@app.callback()
def _configure() -> None:
    configure_from_settings(get_settings())


@contextmanager
def _session() -> Generator[RecordStore, None, None]:
    """Open the configured store for one command; report store errors and exit 1."""
    try:
        with open_store(get_settings()) as store:
            yield store
    except LiveStoreError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    if settings.store_backend == "postgres":
        target = f"{settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    else:
        target = settings.store_path
    typer.echo(
        f"backend={settings.store_backend} target={target} | "
        f"env={settings.app_env} log_level={settings.log_level}"
    )


@app.command("add-user")
def add_user(
    name: str = typer.Argument(..., help="Display name."),
    city: str = typer.Argument(..., help="Home city."),
    joined: Optional[datetime] = typer.Option(
        None, "--joined", "-j", formats=DATE_FORMATS, help="Join date (default: now)."
    ),
) -> None:
    """
    Insert a new user.
    """
    join_date = joined or datetime.now(timezone.utc)
    with _session() as store:
        user = store.insert(User(name=name, city=city, join_date=join_date))
        typer.echo(str(user.id))


@app.command("add-job")
def add_job(
    user_id: str = typer.Argument(..., help="Owning user ID."),
    name: str = typer.Argument(..., help="Job name."),
    priority: int = typer.Option(1, "--priority", "-p", help="Job priority."),
) -> None:
    """
    Insert a job owned by a user.
    """
    with _session() as store:
        owner = store.get(User, user_id)
        job = store.insert(Job(name=name, priority=priority, owner=owner))
        typer.echo(str(job.id))


@app.command()
def users(
    min_join_date: Optional[datetime] = typer.Option(
        None, "--min-join-date", "-m", formats=DATE_FORMATS, help="Only users joined since."
    ),
    sort: str = typer.Option(
        "name", "--sort", "-s", help=f"Sort field ({', '.join(USER_SORT_FIELDS)})."
    ),
    descending: bool = typer.Option(False, "--desc", help="Sort descending."),
    contains: Optional[str] = typer.Option(
        None, "--contains", "-c", help="Name contains text (case and accent insensitive)."
    ),
) -> None:
    """
    List users through a live query, filtered and sorted.
    """
    if sort not in USER_SORT_FIELDS:
        typer.echo(f"Error: unknown sort field '{sort}'", err=True)
        raise typer.Exit(code=2)

    predicate = None
    if min_join_date is not None:
        predicate = field("join_date") >= min_join_date
    if contains:
        name_match = field("name").contains(contains, localized=True)
        predicate = name_match if predicate is None else predicate & name_match

    order = SortOrder.DESCENDING if descending else SortOrder.ASCENDING
    with _session() as store:
        with LiveQuery(store, User, predicate=predicate, sort=SortDescriptor(sort, order)) as query:
            print_users(list(query.results), caption=query.describe(), console=console)


@app.command()
def jobs(user_id: str = typer.Argument(..., help="Owning user ID.")) -> None:
    """
    List the jobs of one user, highest priority first.
    """
    with _session() as store:
        owner = store.get(User, user_id)
        ranked = sorted(owner.jobs, key=lambda job: job.priority, reverse=True)
        console.print(build_jobs_table(ranked, title=f"Jobs of {owner.name}"))


@app.command()
def edit(
    user_id: str = typer.Argument(..., help="User ID."),
    name: Optional[str] = typer.Option(None, "--name"),
    city: Optional[str] = typer.Option(None, "--city"),
    join_date: Optional[datetime] = typer.Option(None, "--join-date", formats=DATE_FORMATS),
) -> None:
    """
    Edit a user's fields; each change is written through immediately.
    """
    changes = {"name": name, "city": city, "join_date": join_date}
    with _session() as store:
        with BoundEditor(store, store.get(User, user_id)) as editor:
            for key, value in changes.items():
                if value is not None:
                    editor[key] = value
            typer.echo(", ".join(f"{key}={value}" for key, value in editor.values().items()))


@app.command()
def delete(user_id: str = typer.Argument(..., help="User ID.")) -> None:
    """
    Delete a user and, by cascade, all of their jobs.
    """
    with _session() as store:
        user = store.get(User, user_id)
        owned = len(user.jobs)
        store.delete(user)
        typer.echo(f"Deleted user {user_id} and {owned} job(s).")


@app.command("delete-job")
def delete_job(job_id: str = typer.Argument(..., help="Job ID.")) -> None:
    """
    Delete one job; its owner is kept.
    """
    with _session() as store:
        store.delete(store.get(Job, job_id))
        typer.echo(f"Deleted job {job_id}.")


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
