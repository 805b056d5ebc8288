# repository.py
from __future__ import annotations

from typing import Any, List, Optional

from loguru import logger
from sqlalchemy import Column, JSON, func, text
from sqlalchemy.pool import NullPool, StaticPool
from sqlmodel import SQLModel, Field, Session, create_engine, select

from domain import DAY_KEYS, Imputation, Task, TaskType, User, WeekLock
from errors import (
    LockedWeekError, NotFoundError, PermissionDeniedError, TypeInUseError, ValidationError,
)
from ledger import ImputationLedger
from registry import DEFAULT_TASK_TYPES, TaskTypeRegistry
from weeks import normalize_week_id


class TaskTypeDB(SQLModel, table=True):
    __tablename__ = "task_types"
    id: str = Field(primary_key=True)
    label: str
    color: str = "#ffffff"
    structural: bool = False
    # Nullable for records predating the flags; see backfill_task_type_flags()
    computes_in_week: Optional[bool] = True
    subtracts_from_budget: Optional[bool] = True


class TaskDB(SQLModel, table=True):
    __tablename__ = "tasks"
    id: str = Field(primary_key=True)
    code: str = Field(default="", index=True)
    name: str
    description: Optional[str] = None
    hito: Optional[str] = None
    utes: Optional[float] = None
    permanent: bool = False
    active: bool = True
    is_global: bool = False
    target_roles: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    assigned_user_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))


class ImputationDB(SQLModel, table=True):
    __tablename__ = "imputations"
    id: str = Field(primary_key=True)
    week_id: str = Field(index=True)
    task_id: str = Field(index=True)
    user_id: str = Field(index=True)
    type: str = Field(index=True)
    mon: float = 0.0
    tue: float = 0.0
    wed: float = 0.0
    thu: float = 0.0
    fri: float = 0.0
    sat: float = 0.0
    sun: float = 0.0
    seg: bool = False
    status: str = "DRAFT"
    approved: bool = False
    note: Optional[str] = None


class WeekLockDB(SQLModel, table=True):
    __tablename__ = "week_locks"
    week_id: str = Field(primary_key=True)
    is_locked: bool = False


class UserDB(SQLModel, table=True):
    __tablename__ = "users"
    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    password: str = ""
    roles: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    active: bool = True
    max_hours: Optional[float] = None


def build_engine(db_url: str, echo: bool = False):
    is_sqlite = db_url.startswith("sqlite")
    kwargs = {
        "echo": echo,
        "pool_pre_ping": True,
        "connect_args": {},
    }
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory SQLite: one shared connection or every session sees an empty DB
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        # Serverless PG (Neon/Supabase): sin pool local y con timeout
        kwargs["poolclass"] = NullPool
        kwargs["connect_args"] = {"connect_timeout": 10}
        if "sslmode=" not in db_url:
            db_url += ("&" if "?" in db_url else "?") + "sslmode=require"
    return create_engine(db_url, **kwargs)


# --- row <-> domain ---
def _type_to_domain(r: TaskTypeDB) -> TaskType:
    return TaskType(
        id=r.id, label=r.label, color=r.color, structural=bool(r.structural),
        computes_in_week=r.computes_in_week is not False,
        subtracts_from_budget=r.subtracts_from_budget is not False,
    )


def _task_to_domain(r: TaskDB) -> Task:
    return Task(
        id=r.id, name=r.name, code=r.code or "", description=r.description, hito=r.hito,
        utes=r.utes, permanent=r.permanent, active=r.active, is_global=r.is_global,
        target_roles=set(r.target_roles or ()), assigned_user_ids=set(r.assigned_user_ids or ()),
    )


def _imputation_to_domain(r: ImputationDB) -> Imputation:
    return Imputation(
        id=r.id, week_id=r.week_id, task_id=r.task_id, user_id=r.user_id, type=r.type,
        hours={day: getattr(r, day) or 0.0 for day in DAY_KEYS},
        seg=r.seg, status=r.status, approved=r.approved, note=r.note,
    )


def _user_to_domain(r: UserDB) -> User:
    return User(
        id=r.id, name=r.name, password=r.password, roles=set(r.roles or ()),
        active=r.active, max_hours=r.max_hours,
    )


class TimesheetRepository:
    """
    Persistence for task types, tasks, imputations, week locks and users.

    Writes are checked here and not only by the callers: hours are validated,
    locked weeks only accept approvers, and referenced types or tasks cannot
    be deleted. En producción NO hacer fallback a SQLite.
    """
    def __init__(self, url: str = "sqlite:///imputaciones.db", echo: bool = False):
        self.primary_url = url
        self.engine = build_engine(url, echo=echo)

        # Si es Postgres, valida conexión (fail-fast si falla)
        if not url.startswith("sqlite"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(text("select 1"))
            except Exception as e:
                raise RuntimeError(f"No se pudo conectar a Postgres: {e}") from e
            logger.info("Connected to Postgres")

        SQLModel.metadata.create_all(self.engine)

    # --- reads ---
    def list_task_types(self) -> List[TaskType]:
        with Session(self.engine) as session:
            return [_type_to_domain(r) for r in session.exec(select(TaskTypeDB)).all()]

    def list_tasks(self) -> List[Task]:
        with Session(self.engine) as session:
            rows = session.exec(select(TaskDB).order_by(TaskDB.code)).all()
            return [_task_to_domain(r) for r in rows]

    def get_task(self, task_id: str) -> Task:
        with Session(self.engine) as session:
            row = session.get(TaskDB, task_id)
            if row is None:
                raise NotFoundError("task", task_id)
            return _task_to_domain(row)

    def list_imputations(
        self,
        week_id: Optional[str] = None,
        user_id: Optional[str] = None,
        task_id: Optional[str] = None,
        type_id: Optional[str] = None,
        year: Optional[int] = None,
    ) -> List[Imputation]:
        stmt = select(ImputationDB)
        if week_id is not None:
            stmt = stmt.where(ImputationDB.week_id == normalize_week_id(week_id))
        if user_id is not None:
            stmt = stmt.where(ImputationDB.user_id == user_id)
        if task_id is not None:
            stmt = stmt.where(ImputationDB.task_id == task_id)
        if type_id is not None:
            stmt = stmt.where(ImputationDB.type == type_id)
        if year is not None:
            stmt = stmt.where(ImputationDB.week_id.like(f"{year}-W%"))
        with Session(self.engine) as session:
            return [_imputation_to_domain(r) for r in session.exec(stmt).all()]

    def is_week_locked(self, week_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(WeekLockDB, normalize_week_id(week_id))
            return bool(row and row.is_locked)

    def week_locks(self) -> List[WeekLock]:
        with Session(self.engine) as session:
            return [WeekLock(r.week_id, r.is_locked) for r in session.exec(select(WeekLockDB)).all()]

    def list_users(self) -> List[User]:
        with Session(self.engine) as session:
            return [_user_to_domain(r) for r in session.exec(select(UserDB)).all()]

    def get_user(self, user_id: str) -> User:
        with Session(self.engine) as session:
            row = session.get(UserDB, user_id)
            if row is None:
                raise NotFoundError("user", user_id)
            return _user_to_domain(row)

    def initial_data(self) -> dict[str, Any]:
        """Everything a client needs at start-up; locks as {weekId: True} for locked weeks only."""
        return {
            "taskTypes": [t.to_record() for t in self.list_task_types()],
            "tasks": [vars(t) | {"target_roles": sorted(t.target_roles),
                                 "assigned_user_ids": sorted(t.assigned_user_ids)}
                      for t in self.list_tasks()],
            "imputations": [i.to_record() for i in self.list_imputations()],
            "weekLocks": {lock.week_id: True for lock in self.week_locks() if lock.is_locked},
        }

    def load_ledger(self) -> ImputationLedger:
        return ImputationLedger(self.list_imputations())

    def load_registry(self, ledger: ImputationLedger) -> TaskTypeRegistry:
        return TaskTypeRegistry(self.list_task_types(), ledger=ledger)

    # --- imputations ---
    def _check_week_writable(self, week_id: str, actor: User) -> None:
        if not actor.is_approver and self.is_week_locked(week_id):
            logger.warning(f"Rejected write by {actor.id} on locked week {week_id}")
            raise LockedWeekError(week_id)

    def upsert_imputation(self, imp: Imputation, actor: User) -> Imputation:
        """Stores the full record (no partial merge)."""
        imp = ImputationLedger.validate(imp)
        self._check_week_writable(imp.week_id, actor)
        with Session(self.engine) as session:
            row = session.get(ImputationDB, imp.id)
            if row is not None and row.week_id != imp.week_id:
                self._check_week_writable(row.week_id, actor)
            if row is None:
                row = ImputationDB(id=imp.id, week_id=imp.week_id, task_id=imp.task_id,
                                   user_id=imp.user_id, type=imp.type)
            row.week_id, row.task_id, row.user_id, row.type = imp.week_id, imp.task_id, imp.user_id, imp.type
            for day in DAY_KEYS:
                setattr(row, day, imp.hours[day])
            row.seg, row.status, row.approved, row.note = imp.seg, imp.status, imp.approved, imp.note
            session.add(row)
            session.commit()
        logger.debug(f"Imputation stored: {imp.id}")
        return imp

    def delete_imputation(self, imputation_id: str, actor: User) -> None:
        with Session(self.engine) as session:
            row = session.get(ImputationDB, imputation_id)
            if row is None:
                return
            self._check_week_writable(row.week_id, actor)
            session.delete(row)
            session.commit()

    def set_week_lock(self, week_id: str, locked: bool, actor: User) -> WeekLock:
        week_id = normalize_week_id(week_id)
        if not actor.is_approver:
            raise PermissionDeniedError(f"{actor.id} cannot change the lock of {week_id}")
        with Session(self.engine) as session:
            row = session.get(WeekLockDB, week_id) or WeekLockDB(week_id=week_id)
            row.is_locked = locked
            session.add(row)
            session.commit()
        logger.info(f"Week {week_id} {'locked' if locked else 'unlocked'} by {actor.id}")
        return WeekLock(week_id, locked)

    # --- task types ---
    def upsert_task_type(self, t: TaskType) -> TaskType:
        if not t.id or not t.label:
            raise ValidationError("task type needs an id and a label")
        with Session(self.engine) as session:
            row = session.get(TaskTypeDB, t.id) or TaskTypeDB(id=t.id, label=t.label)
            row.label, row.color, row.structural = t.label, t.color, t.structural
            row.computes_in_week, row.subtracts_from_budget = t.computes_in_week, t.subtracts_from_budget
            session.add(row)
            session.commit()
        return t

    def delete_task_type(self, type_id: str) -> None:
        with Session(self.engine) as session:
            row = session.get(TaskTypeDB, type_id)
            if row is None:
                raise NotFoundError("task type", type_id)
            refs = session.exec(
                select(func.count()).select_from(ImputationDB).where(ImputationDB.type == type_id)
            ).one()
            if refs:
                raise TypeInUseError("task type", type_id, refs)
            session.delete(row)
            session.commit()
        logger.info(f"Task type deleted: {type_id}")

    def seed_task_types(self) -> int:
        """Inserts the default catalogue entries that are missing. Returns how many were added."""
        existing = {t.id for t in self.list_task_types()}
        added = 0
        for t in DEFAULT_TASK_TYPES:
            if t.id not in existing:
                self.upsert_task_type(t)
                added += 1
        logger.info(f"Seeded {added} task type(s)")
        return added

    def backfill_task_type_flags(self) -> int:
        """Migration: task types stored without the counting flags get them set to True."""
        changed = 0
        with Session(self.engine) as session:
            for row in session.exec(select(TaskTypeDB)).all():
                if row.computes_in_week is None or row.subtracts_from_budget is None:
                    row.computes_in_week = row.computes_in_week is not False
                    row.subtracts_from_budget = row.subtracts_from_budget is not False
                    session.add(row)
                    changed += 1
            session.commit()
        logger.info(f"Backfilled counting flags on {changed} task type(s)")
        return changed

    # --- tasks ---
    def upsert_task(self, task: Task) -> Task:
        if not task.id or not task.name:
            raise ValidationError("task needs an id and a name")
        if task.utes is not None and task.utes < 0:
            raise ValidationError(f"task {task.id}: negative UTES budget")
        with Session(self.engine) as session:
            row = session.get(TaskDB, task.id)
            if task.permanent and not task.active:
                raise ValidationError(f"task {task.id} is permanent and cannot be deactivated")
            if row is not None and row.permanent and not task.active:
                raise ValidationError(f"task {task.id} is permanent and cannot be deactivated")
            if row is None:
                row = TaskDB(id=task.id, name=task.name)
            row.code, row.name, row.description, row.hito = task.code, task.name, task.description, task.hito
            row.utes, row.permanent, row.active, row.is_global = task.utes, task.permanent, task.active, task.is_global
            row.target_roles = sorted(task.target_roles)
            row.assigned_user_ids = sorted(task.assigned_user_ids)
            session.add(row)
            session.commit()
        return task

    def delete_task(self, task_id: str) -> None:
        with Session(self.engine) as session:
            row = session.get(TaskDB, task_id)
            if row is None:
                raise NotFoundError("task", task_id)
            refs = session.exec(
                select(func.count()).select_from(ImputationDB).where(ImputationDB.task_id == task_id)
            ).one()
            if refs:
                raise TypeInUseError("task", task_id, refs)
            session.delete(row)
            session.commit()

    # --- users ---
    def upsert_user(self, user: User) -> User:
        if not user.id or not user.name:
            raise ValidationError("user needs an id and a name")
        with Session(self.engine) as session:
            row = session.get(UserDB, user.id) or UserDB(id=user.id, name=user.name)
            row.name, row.password, row.active, row.max_hours = user.name, user.password, user.active, user.max_hours
            row.roles = sorted(user.roles)
            session.add(row)
            session.commit()
        return user


__all__ = [
    "TaskTypeDB", "TaskDB", "ImputationDB", "WeekLockDB", "UserDB",
    "TimesheetRepository", "build_engine",
]
