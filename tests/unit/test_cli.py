"""
Unit tests for the cron command-line entry points.
"""

import json
from datetime import date

import pytest

from riskcast import cli
from riskcast.models.enums import JobStatus
from tests.conftest import USER, make_definition


@pytest.fixture
def cli_storage(storage, monkeypatch):
    monkeypatch.setattr(cli, "get_storage", lambda: storage)
    return storage


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_parser_rejects_unknown_job_type():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["work", "--job-type", "not_a_job"])


def test_dispatch_prints_summary(cli_storage, capsys):
    cli_storage.write_definition(make_definition())
    cli_storage.write_location(USER, date(2026, 7, 15), "America/New_York")

    exit_code = cli.main(["dispatch", "--now", "2026-07-15T13:05:00Z"])

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["enqueued"] == 3
    assert summary["errors"] == 0


def test_work_with_empty_queue(cli_storage, capsys):
    exit_code = cli.main(["work", "--now", "2026-07-15T13:06:00Z"])

    assert exit_code == 0
    assert json.loads(capsys.readouterr().out)["picked"] == 0


def test_work_runs_selected_job_type(cli_storage, capsys):
    cli_storage.write_location(USER, date(2026, 7, 15), "America/New_York")
    cli.main(["dispatch", "--now", "2026-07-15T13:05:00Z"])
    capsys.readouterr()

    exit_code = cli.main(["work", "--job-type", "stress_index", "--now", "2026-07-15T13:06:00Z"])

    assert exit_code == 0
    summary = json.loads(capsys.readouterr().out)
    assert [line["status"] for line in summary["results"]] == ["done_skipped_missing_inputs"]
    assert cli_storage.read_jobs()[0].status == JobStatus.DONE
