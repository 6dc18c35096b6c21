import logging

import pytest

import skills.job_sync.cli as cli
from app.utils.log import configure_logging, log_file_for
from skills.job_sync.store import JobStore
from skills.job_sync.types import SyncRunResult


@pytest.fixture
def env(tmp_path, monkeypatch):
    for name in ("GROQ_API_KEY", "GROQ_API_KEY_2"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "jobs.db"))
    monkeypatch.setenv("SYNC_STATUS_PATH", str(tmp_path / "sync-status.json"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    yield ["--env-file", str(tmp_path / "missing.env")]
    configure_logging("INFO", "")


def test_parser_requires_a_subcommand():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_sync_without_credentials_exits_with_config_error(env, capsys):
    assert cli.main([*env, "sync", "--source", "csv", "--csv-path", "x.csv"]) == 2
    assert "GROQ_API_KEY" in capsys.readouterr().err


def test_csv_sync_runs_pipeline_and_prints_summary(env, tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("GROQ_API_KEY", "k1")
    csv_path = tmp_path / "mail.csv"
    csv_path.write_text(
        "id,date,from_email,subject,snippet\n1,2026-02-01,jobs@acme.com,Thanks for applying,hi\n",
        encoding="utf-8",
    )
    captured: dict[str, object] = {}

    class FakePipeline:
        def run(self, mode):
            captured["mode"] = mode
            return SyncRunResult(run_id="r1", mode=mode, fetched=1, jobs_created=1, completed=True)

    def fake_create_pipeline(settings, source, *, store=None, stop_event=None):
        captured["ids"] = source.list_page("", None, 10).ids
        return FakePipeline()

    monkeypatch.setattr(cli, "create_pipeline", fake_create_pipeline)

    assert cli.main([*env, "backfill", "--source", "csv", "--csv-path", str(csv_path)]) == 0

    out = capsys.readouterr().out
    assert captured == {"ids": ["1"], "mode": "backfill"}
    assert "Run ID: r1" in out
    assert "jobs_created=1" in out


def test_reconcile_and_status_do_not_need_credentials(env, tmp_path, capsys):
    store = JobStore(tmp_path / "jobs.db")
    store.create_job(company="Acme", role="Analyst", status="APPLIED_CONFIRMATION")

    assert cli.main([*env, "status"]) == 0
    assert "- APPLIED_CONFIRMATION: 1" in capsys.readouterr().out

    assert cli.main([*env, "reconcile"]) == 0
    assert "orphans_removed=1" in capsys.readouterr().out


def test_cli_writes_its_log_file_under_log_dir(env, tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")

    assert cli.main([*env, "status"]) == 0
    logging.getLogger("skills.job_sync.cli").info("status printed")

    log_file = log_file_for(tmp_path / "logs")
    assert logging.getLogger().level == logging.DEBUG
    assert "status printed" in log_file.read_text(encoding="utf-8")
