import pytest
from sqlalchemy import text

from domain import Imputation, Task, TaskType
from errors import (
    LockedWeekError, NotFoundError, PermissionDeniedError, TypeInUseError, ValidationError,
)


def _imp(id="i1", week_id="2024-W10", type="TRABAJADO", task_id="T1", **hours):
    return Imputation(id=id, week_id=week_id, task_id=task_id, user_id="u1", type=type, hours=hours)


def test_seed_task_types(repo):
    assert repo.seed_task_types() == 11
    assert repo.seed_task_types() == 0
    assert {t.id for t in repo.list_task_types()} >= {"TRABAJADO", "JIRA", "FESTIVO"}


def test_upsert_and_list_imputations(repo, analyst):
    repo.upsert_imputation(_imp(mon=8, tue=8), analyst)
    repo.upsert_imputation(_imp(id="i2", week_id="2023-W40", fri=1), analyst)
    stored = repo.list_imputations(week_id="2024-W10")
    assert len(stored) == 1
    assert stored[0].total_hours == 16
    assert stored[0].hours["sun"] == 0
    assert len(repo.list_imputations(year=2024)) == 1
    assert len(repo.list_imputations(user_id="u1")) == 2


def test_upsert_is_full_replacement(repo, analyst):
    repo.upsert_imputation(_imp(mon=8, tue=8), analyst)
    repo.upsert_imputation(_imp(type="JIRA", wed=2), analyst)
    [row] = repo.list_imputations()
    assert row.type == "JIRA"
    assert row.hours["mon"] == 0
    assert row.total_hours == 2


def test_invalid_hours_never_stored(repo, analyst):
    with pytest.raises(ValidationError):
        repo.upsert_imputation(_imp(mon=-2), analyst)
    assert repo.list_imputations() == []


def test_locked_week_rejects_analyst(repo, analyst, approver):
    repo.upsert_imputation(_imp(mon=8), analyst)
    repo.set_week_lock("2024-W10", True, approver)
    assert repo.is_week_locked("2024-W10")
    with pytest.raises(LockedWeekError):
        repo.upsert_imputation(_imp(mon=4), analyst)
    with pytest.raises(LockedWeekError):
        repo.delete_imputation("i1", analyst)
    # moving a row out of a locked week is a write on that week too
    with pytest.raises(LockedWeekError):
        repo.upsert_imputation(_imp(week_id="2024-W11", mon=4), analyst)
    repo.upsert_imputation(_imp(mon=4), approver)
    assert repo.list_imputations()[0].total_hours == 4
    repo.set_week_lock("2024-W10", False, approver)
    repo.upsert_imputation(_imp(mon=5), analyst)


def test_lock_applies_to_padded_week_ids(repo, analyst, approver):
    repo.set_week_lock("2024-W5", True, approver)
    assert repo.is_week_locked("2024-W05")
    with pytest.raises(LockedWeekError):
        repo.upsert_imputation(_imp(week_id="2024-W05", mon=8), analyst)
    stored = repo.upsert_imputation(_imp(week_id="2024-W05", mon=8), approver)
    assert stored.week_id == "2024-W5"
    assert [i.id for i in repo.list_imputations(week_id="2024-W05")] == ["i1"]
    repo.set_week_lock("2024-W05", False, approver)
    assert repo.initial_data()["weekLocks"] == {}


def test_only_approvers_lock_weeks(repo, analyst):
    with pytest.raises(PermissionDeniedError):
        repo.set_week_lock("2024-W10", True, analyst)
    assert not repo.is_week_locked("2024-W10")


def test_initial_data_shape(repo, analyst, approver):
    repo.seed_task_types()
    repo.upsert_task(Task(id="T1", name="Portal", code="H1-001", utes=100, assigned_user_ids={"u1"}))
    repo.upsert_imputation(_imp(mon=8), analyst)
    repo.set_week_lock("2024-W10", True, approver)
    repo.set_week_lock("2024-W11", False, approver)
    data = repo.initial_data()
    assert set(data) == {"taskTypes", "tasks", "imputations", "weekLocks"}
    assert data["weekLocks"] == {"2024-W10": True}
    assert data["imputations"][0]["weekId"] == "2024-W10"
    assert data["tasks"][0]["assigned_user_ids"] == ["u1"]
    assert "computesInWeek" in data["taskTypes"][0]


def test_delete_task_type_guard(repo, analyst):
    repo.seed_task_types()
    repo.upsert_imputation(_imp(type="JIRA", mon=1), analyst)
    with pytest.raises(TypeInUseError):
        repo.delete_task_type("JIRA")
    repo.delete_task_type("FESTIVO")
    assert "FESTIVO" not in {t.id for t in repo.list_task_types()}
    with pytest.raises(NotFoundError):
        repo.delete_task_type("FESTIVO")


def test_backfill_task_type_flags(repo):
    with repo.engine.begin() as conn:
        conn.execute(text(
            "INSERT INTO task_types (id, label, color, structural, computes_in_week, subtracts_from_budget) "
            "VALUES ('OLD', 'Antiguo', '#ffffff', 0, NULL, NULL), "
            "('VAC', 'Vacaciones', '#ffffff', 1, 0, NULL)"
        ))
    assert repo.backfill_task_type_flags() == 2
    types = {t.id: t for t in repo.list_task_types()}
    assert types["OLD"].computes_in_week and types["OLD"].subtracts_from_budget
    assert types["VAC"].computes_in_week is False
    assert types["VAC"].subtracts_from_budget is True
    assert repo.backfill_task_type_flags() == 0


def test_permanent_task_cannot_be_deactivated(repo):
    repo.upsert_task(Task(id="EST", name="Estructural", code="Estructural", permanent=True))
    with pytest.raises(ValidationError):
        repo.upsert_task(Task(id="EST", name="Estructural", code="Estructural", permanent=False, active=False))
    assert repo.get_task("EST").active


def test_delete_task_guard(repo, analyst):
    repo.upsert_task(Task(id="T1", name="Portal", code="H1-001"))
    repo.upsert_task(Task(id="T2", name="Otra", code="H1-002"))
    repo.upsert_imputation(_imp(mon=1), analyst)
    with pytest.raises(TypeInUseError):
        repo.delete_task("T1")
    repo.delete_task("T2")
    with pytest.raises(NotFoundError):
        repo.get_task("T2")


def test_users_round_trip(repo, approver):
    repo.upsert_user(approver)
    user = repo.get_user("boss")
    assert user.is_approver
    assert [u.id for u in repo.list_users()] == ["boss"]


def test_load_ledger_and_registry(repo, analyst):
    repo.upsert_task_type(TaskType("TRABAJADO", "Trabajado"))
    repo.upsert_imputation(_imp(mon=3), analyst)
    ledger = repo.load_ledger()
    registry = repo.load_registry(ledger)
    assert len(ledger) == 1
    with pytest.raises(TypeInUseError):
        registry.remove("TRABAJADO")
