# services.py
from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from loguru import logger

from domain import (
    DAY_KEYS, PENDIENTE, PRE_IMPUTADO, REGULARIZADO, YA_IMPUTADO,
    Imputation, Task, User, total_hours,
)
from errors import NotFoundError, ValidationError
from ledger import ImputationLedger
from registry import TaskTypeRegistry
from weeks import normalize_week_id

TaskRef = Union[Task, str]


def visible_tasks(
    tasks: Iterable[Task], user_id: str, roles: Iterable[str] = (), active_only: bool = False
) -> List[Task]:
    """
    Tasks a user may log hours against: explicitly assigned, global,
    or targeted at one of the user's roles.
    """
    roles = set(roles)
    out = []
    for t in tasks:
        if active_only and not t.active:
            continue
        if user_id in t.assigned_user_ids or t.is_global or (t.target_roles & roles):
            out.append(t)
    return sorted(out, key=lambda t: t.code or "")


@dataclass(frozen=True)
class Scope:
    """Which imputations an aggregate covers. Unset fields do not filter."""
    user_id: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    week_id: Optional[str] = None
    types: Optional[FrozenSet[str]] = None
    seg: Optional[bool] = None

    def __post_init__(self):
        if self.month is not None:
            if self.year is None:
                raise ValidationError("a month scope needs a year")
            if not 1 <= self.month <= 12:
                raise ValidationError(f"month out of range: {self.month}")
        if self.types is not None and not isinstance(self.types, frozenset):
            object.__setattr__(self, "types", frozenset(self.types))
        if self.week_id is not None:
            object.__setattr__(self, "week_id", normalize_week_id(self.week_id))


@dataclass
class TypeTotals:
    by_type: Dict[str, float] = field(default_factory=dict)
    computable: float = 0.0
    other: Dict[str, float] = field(default_factory=dict)

    @property
    def total(self) -> float:
        return round(self.computable + sum(self.other.values()), 2)


@dataclass
class TaskSummary:
    task: Task
    total: float
    by_type: Dict[str, float]
    budget_remaining: Optional[float]
    preimputed_remaining: float
    pending_regularize: float


@dataclass
class MonthDetailRow:
    task_id: str
    type: str
    daily: Dict[date, float] = field(default_factory=dict)
    total: float = 0.0


@dataclass
class WeeklyStatus:
    week_id: str
    computable: float
    target: float

    @property
    def diff(self) -> float:
        return round(self.computable - self.target, 2)

    @property
    def progress(self) -> float:
        """Percentage of the target covered, capped at 100."""
        if self.target <= 0:
            return 100.0
        return round(min(self.computable / self.target * 100, 100.0), 2)

    @property
    def status(self) -> str:
        if self.computable > self.target:
            return "EXCESO"
        if self.computable == self.target:
            return "CUMPLIDO"
        return "FALTAN"


class AggregationEngine:
    """
    Hour totals over the ledger, read through the task type catalogue.

    Results are a pure function of the ledger and registry contents. The row
    selection for a scope is memoised and dropped whenever either one changes.
    """

    def __init__(
        self,
        ledger: ImputationLedger,
        registry: TaskTypeRegistry,
        tasks: Iterable[Task] = (),
        weekly_target: float = 40.0,
    ):
        self.ledger = ledger
        self.registry = registry
        self.tasks: Dict[str, Task] = {t.id: t for t in tasks}
        self.weekly_target = weekly_target
        self._cache: Dict[Scope, Tuple[Imputation, ...]] = {}
        self._cache_key: Tuple[int, int] = (-1, -1)

    def set_tasks(self, tasks: Iterable[Task]) -> None:
        self.tasks = {t.id: t for t in tasks}

    def _task(self, ref: TaskRef) -> Task:
        if isinstance(ref, Task):
            return ref
        try:
            return self.tasks[ref]
        except KeyError:
            raise NotFoundError("task", ref) from None

    # --- selection ---
    def select(self, scope: Scope = Scope()) -> Tuple[Imputation, ...]:
        key = (self.ledger.version, self.registry.version)
        if key != self._cache_key:
            self._cache.clear()
            self._cache_key = key
        rows = self._cache.get(scope)
        if rows is None:
            rows = tuple(
                imp for imp in self.ledger.query(
                    week_id=scope.week_id,
                    user_id=scope.user_id,
                    type_id=scope.types,
                    year_range=scope.year,
                    seg=scope.seg,
                )
                if scope.month is None or imp.monday.month == scope.month
            )
            self._cache[scope] = rows
        return rows

    # --- totals ---
    def daily_totals(self, scope: Scope = Scope()) -> Dict[str, float]:
        totals = {day: 0.0 for day in DAY_KEYS}
        for imp in self.select(scope):
            for day in DAY_KEYS:
                totals[day] += imp.hours.get(day, 0.0)
        return {day: round(v, 2) for day, v in totals.items()}

    def grand_total(self, scope: Scope = Scope()) -> float:
        return round(sum(self.daily_totals(scope).values()), 2)

    def type_totals(self, scope: Scope = Scope()) -> TypeTotals:
        """
        Hours per type, split into the computable sum and the itemised rest.
        Returns TypeTotals(by_type, computable, other).
        """
        by_type: Dict[str, float] = defaultdict(float)
        for imp in self.select(scope):
            by_type[imp.type] += total_hours(imp.hours)
        result = TypeTotals(by_type={k: round(v, 2) for k, v in by_type.items()})
        for type_id, hours in result.by_type.items():
            if self.registry.is_computable(type_id):
                result.computable += hours
            else:
                result.other[type_id] = hours
        result.computable = round(result.computable, 2)
        return result

    def _task_type_sum(self, task_id: str, type_ids: Iterable[str]) -> float:
        return sum(total_hours(imp.hours) for imp in self.ledger.query(task_id=task_id, type_id=set(type_ids)))

    # --- per task ---
    def budget_remaining(self, task: TaskRef) -> Optional[float]:
        """
        UTES left on a task after the budget-subtracting hours of every user.
        None when the task tracks no budget (utes unset or 0).
        """
        task = self._task(task)
        if not task.has_budget:
            return None
        consumed = sum(
            total_hours(imp.hours)
            for imp in self.ledger.query(task_id=task.id)
            if self.registry.is_budget_subtracting(imp.type)
        )
        return round(task.utes - consumed, 2)

    def preimputed_remaining(self, task: TaskRef) -> float:
        """Pre-imputed minus already-imputed hours. Negative means over-consumption."""
        task_id = task.id if isinstance(task, Task) else task
        return round(self._task_type_sum(task_id, {PRE_IMPUTADO}) - self._task_type_sum(task_id, {YA_IMPUTADO}), 2)

    def pending_regularize(self, task: TaskRef) -> float:
        task_id = task.id if isinstance(task, Task) else task
        return round(self._task_type_sum(task_id, {PENDIENTE}) - self._task_type_sum(task_id, {REGULARIZADO}), 2)

    def task_breakdown(self, scope: Scope = Scope()) -> List[TaskSummary]:
        """Per task figures for the scope. Rows pointing at unknown tasks are left out."""
        grouped: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        skipped = 0
        for imp in self.select(scope):
            if imp.task_id not in self.tasks:
                skipped += 1
                continue
            grouped[imp.task_id][imp.type] += total_hours(imp.hours)
        if skipped:
            logger.warning(f"{skipped} imputation(s) reference unknown tasks and were left out of the task breakdown")
        out = []
        for task_id, by_type in grouped.items():
            task = self.tasks[task_id]
            out.append(TaskSummary(
                task=task,
                total=round(sum(by_type.values()), 2),
                by_type={k: round(v, 2) for k, v in by_type.items()},
                budget_remaining=self.budget_remaining(task),
                preimputed_remaining=self.preimputed_remaining(task),
                pending_regularize=self.pending_regularize(task),
            ))
        return sorted(out, key=lambda s: s.task.code or "")

    # --- periods ---
    def monthly_matrix(self, year: int, seg: Optional[bool] = None) -> Dict[str, List[float]]:
        """
        Hours per type and month of `year`: {type_id: [jan, ..., dec]}.
        Each week counts in the month of its Monday. Only catalogue types get
        a row; hours under a deleted type are left out.
        """
        matrix: Dict[str, List[float]] = {t.id: [0.0] * 12 for t in self.registry}
        for imp in self.select(Scope(year=year, seg=seg)):
            row = matrix.get(imp.type)
            if row is None:
                continue
            row[imp.monday.month - 1] += total_hours(imp.hours)
        return {k: [round(v, 2) for v in months] for k, months in matrix.items()}

    def user_type_pivot(self, scope: Scope, users: Iterable[User]) -> List[dict]:
        """One row per user: {'id', 'name', 'total', 'by_type'} over the scope."""
        rows = {}
        for u in users:
            rows[u.id] = {"id": u.id, "name": u.name, "total": 0.0, "by_type": {t: 0.0 for t in self.registry.ids}}
        for imp in self.select(scope):
            row = rows.get(imp.user_id)
            if row is None:
                continue
            hours = total_hours(imp.hours)
            row["by_type"][imp.type] = row["by_type"].get(imp.type, 0.0) + hours
            row["total"] += hours
        return list(rows.values())

    def month_detail(self, user_id: str, year: int, month: int, order_by: str = "task") -> List[MonthDetailRow]:
        """
        A user's hours on each day of one calendar month, per (task, type).
        Unlike the monthly matrix, days are placed on their own date, so a week
        spanning two months is split between them.
        """
        rows: Dict[Tuple[str, str], MonthDetailRow] = {}
        for imp in self.select(Scope(user_id=user_id, year=year)) + self.select(Scope(user_id=user_id, year=year - 1)):
            monday = imp.monday
            for i, day in enumerate(DAY_KEYS):
                hours = imp.hours.get(day, 0.0)
                d = monday + timedelta(days=i)
                if not hours or (d.year, d.month) != (year, month):
                    continue
                row = rows.setdefault((imp.task_id, imp.type), MonthDetailRow(imp.task_id, imp.type))
                row.daily[d] = row.daily.get(d, 0.0) + hours
                row.total += hours
        if order_by == "type":
            key = lambda r: (self.registry.find(r.type).label if r.type in self.registry else r.type)
        else:
            key = lambda r: (self.tasks[r.task_id].code if r.task_id in self.tasks else "")
        return sorted(rows.values(), key=key)

    def weekly_status(self, user_id: str, week_id: str, target: Optional[float] = None) -> WeeklyStatus:
        """Computable hours of a user's week against the weekly target."""
        totals = self.type_totals(Scope(user_id=user_id, week_id=week_id))
        return WeeklyStatus(
            week_id=week_id,
            computable=totals.computable,
            target=self.weekly_target if target is None else target,
        )


__all__ = [
    "visible_tasks", "Scope", "TypeTotals", "TaskSummary", "MonthDetailRow",
    "WeeklyStatus", "AggregationEngine",
]
