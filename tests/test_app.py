import sys

import pytest
from loguru import logger

from app import Timesheet, main
from config import load_settings
from domain import Imputation, Task
from errors import LockedWeekError, TypeInUseError
from reports import UTES_FACTURAR


@pytest.fixture
def restore_logging():
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def ts(repo):
    repo.seed_task_types()
    repo.upsert_task(Task(id="T1", name="Portal", code="H1-001", utes=100))
    return Timesheet(repo)


def test_record_updates_ledger_and_figures(ts, analyst):
    imp = Imputation(id="i1", week_id="2024-W10", task_id="T1", user_id="u1", type="TRABAJADO",
                     hours={"mon": 8, "tue": 8, "wed": 8, "thu": 8, "fri": 8})
    ts.record(imp, analyst)
    assert ts.engine.budget_remaining("T1") == 60
    assert ts.annual_summary(2024).row(UTES_FACTURAR).months[2] == 40
    ts.delete("i1", analyst)
    assert ts.engine.budget_remaining("T1") == 100


def test_locked_week_keeps_ledger_untouched(ts, analyst, approver):
    ts.repo.set_week_lock("2024-W10", True, approver)
    with pytest.raises(LockedWeekError):
        ts.record(Imputation(id="i1", week_id="2024-W10", task_id="T1", user_id="u1",
                             type="TRABAJADO", hours={"mon": 1}), analyst)
    assert len(ts.ledger) == 0


def test_delete_task_type_in_use(ts, analyst):
    ts.record(Imputation(id="i1", week_id="2024-W10", task_id="T1", user_id="u1",
                         type="JIRA", hours={"mon": 1}), analyst)
    with pytest.raises(TypeInUseError):
        ts.delete_task_type("JIRA")
    assert "JIRA" in ts.registry
    ts.delete_task_type("FESTIVO")
    assert "FESTIVO" not in ts.registry


def test_settings_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("WEEKLY_TARGET_HOURS", "37.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = load_settings()
    assert s.data_dir == tmp_path
    assert s.database_url == f"sqlite:///{(tmp_path / 'imputaciones.db').as_posix()}"
    assert s.weekly_target_hours == 37.5
    assert s.log_level == "DEBUG"


def test_cli_seed_and_export(monkeypatch, tmp_path, capsys, restore_logging):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)
    assert main(["seed"]) == 0
    assert main(["export-tipos"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("id;label;color;structural;computesInWeek;subtractsFromBudget")
    assert 'TRABAJADO;"Trabajado";#E8F5E9;false;true;true' in out
    assert main(["resumen", "--year", "2024", "--pdf"]) == 0
    assert (tmp_path / "reportes" / "resumen_2024_ALL.pdf").exists()
