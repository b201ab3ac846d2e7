import json

from typer.testing import CliRunner

from plangen.cli import app

runner = CliRunner()


def test_repair_prints_recovered_json(tmp_path):
    raw = tmp_path / "response.txt"
    raw.write_text('```json\n{"client_type": "The Rebuilder", "sessions_per_week": 3, "plan_structure": {"weeks": 6}\n```')

    result = runner.invoke(app, ["repair", str(raw), "--compact"])

    assert result.exit_code == 0
    json_line = next(line for line in result.stdout.splitlines() if line.startswith("{"))
    assert json.loads(json_line) == {
        "client_type": "The Rebuilder",
        "sessions_per_week": 3,
        "plan_structure": {"weeks": 6},
    }
    assert "strategy=repaired" in result.stdout


def test_repair_reports_unrecoverable_output(tmp_path):
    raw = tmp_path / "response.txt"
    raw.write_text("The model refused to answer.")

    result = runner.invoke(app, ["repair", str(raw)])

    assert result.exit_code == 1
    assert "Could not recover JSON" in result.stdout


def test_job_status_not_found(tmp_path, monkeypatch):
    from plangen.db.session import create_db_engine, init_db

    engine = create_db_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    init_db(engine)
    monkeypatch.setattr("plangen.db.session._engine", engine)
    monkeypatch.setattr("plangen.db.session._SessionLocal", None)

    result = runner.invoke(app, ["job-status", "42"])

    assert result.exit_code == 1
    assert "Job 42 not found" in result.stdout
