from __future__ import annotations

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from livestore.domain.models import Job, User


def build_users_table(users: Sequence[User], caption: Optional[str] = None) -> Table:
    """
    Build a table of users with their job counts.

    Parameters
    ----------
    users : sequence of User
        Rows in display order (already sorted by the live query).
    caption : str | None
        Shown under the table; typically the query plan.
    """
    table = Table(title="Users", box=box.ROUNDED, caption=caption)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("City", style="magenta")
    table.add_column("Joined", justify="right", style="green")
    table.add_column("Jobs", justify="right", style="yellow")

    for user in users:
        table.add_row(
            str(user.id),
            user.name,
            user.city,
            user.join_date.strftime("%Y-%m-%d %H:%M"),
            str(len(user.jobs)),
        )
    return table


def build_jobs_table(jobs: Sequence[Job], title: str = "Jobs") -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Priority", justify="right", style="red")
    table.add_column("Owner", style="magenta")

    for job in jobs:
        owner = job.owner
        table.add_row(str(job.id), job.name, str(job.priority), owner.name if owner else "-")
    return table


def print_users(
    users: Sequence[User], caption: Optional[str] = None, console: Optional[Console] = None
) -> None:
    """Render users to the console, or a notice when there are none."""
    console = console or Console()

    if not users:
        console.print("[yellow]No users match.[/yellow]")
        if caption:
            console.print(f"[dim]{caption}[/dim]")
        return

    console.print(build_users_table(users, caption=caption))


__all__ = ["build_jobs_table", "build_users_table", "print_users"]
