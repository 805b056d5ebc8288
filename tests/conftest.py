import itertools

import pytest

from domain import Imputation, Task, User, ANALYST, APPROVER
from ledger import ImputationLedger
from registry import default_registry
from repository import TimesheetRepository
from services import AggregationEngine

_ids = itertools.count(1)


@pytest.fixture
def make_imp():
    def _make(week_id="2024-W10", type="TRABAJADO", task_id="T1", user_id="u1", seg=False, **hours):
        return Imputation(
            id=f"imp-{next(_ids)}", week_id=week_id, task_id=task_id, user_id=user_id,
            type=type, hours=hours, seg=seg,
        )
    return _make


@pytest.fixture
def ledger():
    return ImputationLedger()


@pytest.fixture
def registry(ledger):
    return default_registry(ledger)


@pytest.fixture
def tasks():
    return [
        Task(id="T1", name="Portal", code="H1-001", hito="H1", utes=100),
        Task(id="T2", name="Informes", code="H1-002", hito="H1"),
        Task(id="EST", name="Estructural", code="Estructural", permanent=True, is_global=True),
    ]


@pytest.fixture
def engine(ledger, registry, tasks):
    return AggregationEngine(ledger, registry, tasks)


@pytest.fixture
def analyst():
    return User(id="u1", name="Ana", roles={ANALYST})


@pytest.fixture
def approver():
    return User(id="boss", name="Jefa", roles={ANALYST, APPROVER})


@pytest.fixture
def repo():
    return TimesheetRepository("sqlite://")
