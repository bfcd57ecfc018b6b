from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

import pytest
from rich.console import Console
from typer.testing import CliRunner

from livestore import config, main
from livestore.domain.models import Job, User
from livestore.infrastructure.backend_factory import build_dsn, create_backend, open_store
from livestore.infrastructure.sqlite_backend import SqliteBackend
from livestore.reporter import build_jobs_table, build_users_table
from scripts import generate_data

UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")
SAMPLE_USERS = 4
SAMPLE_JOBS_PER_USER = 3
SAMPLE_SEED = 123

runner = CliRunner()


@pytest.fixture()
def cli(cli_env, monkeypatch):
    monkeypatch.setattr(main, "console", Console(width=200, color_system=None))
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level

    def invoke(*args: str):
        return runner.invoke(main.app, list(args))

    yield invoke
    # The CLI callback points the root handler at the runner's captured stderr.
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def _new_id(result) -> str:
    assert result.exit_code == 0, result.output
    match = UUID_PATTERN.search(result.stdout)
    assert match is not None, result.output
    return match.group(0)


def test_get_settings_defaults(monkeypatch):
    for name in ("STORE_BACKEND", "STORE_PATH", "DB_HOST", "DB_PORT", "DB_USER", "DB_NAME"):
        monkeypatch.delenv(name, raising=False)
    settings = config.Settings(_env_file=None)
    assert settings.store_backend == "sqlite"
    assert settings.store_path == "livestore.sqlite3"
    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.db_name == "livestore"
    assert settings.db_pool_min_size <= settings.db_pool_max_size


def test_build_dsn_from_settings():
    settings = config.Settings(
        _env_file=None,
        db_host="db",
        db_port=6543,
        db_user="app",
        db_password="secret",
        db_name="records",
    )
    assert build_dsn(settings) == "postgresql://app:secret@db:6543/records"


def test_create_backend_defaults_to_sqlite(tmp_path):
    settings = config.Settings(
        _env_file=None, store_backend="sqlite", store_path=str(tmp_path / "x.sqlite3")
    )
    backend = create_backend(settings)
    assert isinstance(backend, SqliteBackend)
    assert backend.name == "sqlite"


def test_generate_records_is_deterministic():
    start = datetime(2020, 1, 1, tzinfo=timezone.utc)
    first = generate_data._generate_records(SAMPLE_USERS, SAMPLE_JOBS_PER_USER, SAMPLE_SEED, start)
    second = generate_data._generate_records(SAMPLE_USERS, SAMPLE_JOBS_PER_USER, SAMPLE_SEED, start)

    assert len(first) == SAMPLE_USERS * (1 + SAMPLE_JOBS_PER_USER)
    assert [r.payload() for r in first] == [r.payload() for r in second]
    assert isinstance(first[0], User)
    owned = first[1 : 1 + SAMPLE_JOBS_PER_USER]
    assert all(job.pending_parent("owner") is first[0] for job in owned)


def test_generated_records_insert_in_one_batch(tmp_path):
    records = generate_data._generate_records(SAMPLE_USERS, SAMPLE_JOBS_PER_USER, SAMPLE_SEED)

    with open_store(backend=SqliteBackend(tmp_path / "sample.sqlite3")) as store:
        store.insert_all(records)
        assert store.count(User) == SAMPLE_USERS
        assert store.count(Job) == SAMPLE_USERS * SAMPLE_JOBS_PER_USER
        assert records[0].jobs == tuple(records[1 : 1 + SAMPLE_JOBS_PER_USER])


def test_reporter_tables_have_one_row_per_record():
    user = User(name="Rhea", city="London", join_date=datetime(2024, 1, 1, tzinfo=timezone.utc))
    jobs = [Job(name="Write report", priority=2, owner=user), Job(name="Idle", priority=1)]

    assert build_users_table([user], caption="FETCH User").row_count == 1
    assert build_jobs_table(jobs).row_count == 2


def test_cli_info_reports_backend(cli, cli_env):
    result = cli("info")
    assert result.exit_code == 0
    assert "backend=sqlite" in result.stdout
    assert cli_env.store_path in result.stdout


def test_cli_user_lifecycle(cli):
    rhea = _new_id(cli("add-user", "Rhea", "London", "--joined", "2024-01-02"))
    _new_id(cli("add-user", "Piper", "London", "--joined", "2024-01-03"))
    _new_id(cli("add-user", "Émile", "Paris", "--joined", "2023-06-01"))

    listing = cli("users", "--min-join-date", "2024-01-01", "--sort", "name")
    assert listing.exit_code == 0, listing.output
    assert listing.stdout.index("Piper") < listing.stdout.index("Rhea")
    assert "Émile" not in listing.stdout

    localized = cli("users", "--contains", "emile")
    assert "Émile" in localized.stdout
    assert "Rhea" not in localized.stdout

    edited = cli("edit", rhea, "--city", "Paris")
    assert edited.exit_code == 0, edited.output
    assert "city=Paris" in edited.stdout

    _new_id(cli("add-job", rhea, "Write report", "--priority", "4"))
    jobs = cli("jobs", rhea)
    assert jobs.exit_code == 0, jobs.output
    assert "Write report" in jobs.stdout

    deleted = cli("delete", rhea)
    assert deleted.exit_code == 0, deleted.output
    assert "1 job(s)" in deleted.stdout

    remaining = cli("users", "--sort", "join_date", "--desc")
    assert "Rhea" not in remaining.stdout
    assert remaining.stdout.index("Piper") < remaining.stdout.index("Émile")


def test_cli_delete_job_keeps_owner(cli):
    owner = _new_id(cli("add-user", "Kirk", "Oslo"))
    job = _new_id(cli("add-job", owner, "Tune guitar"))

    assert cli("delete-job", job).exit_code == 0
    listing = cli("users")
    assert "Kirk" in listing.stdout


def test_cli_unknown_record_exits_with_error(cli):
    result = cli("jobs", "00000000-0000-0000-0000-000000000000")
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_cli_rejects_unknown_sort_field(cli):
    result = cli("users", "--sort", "nickname")
    assert result.exit_code == 2
