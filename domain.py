# domain.py
from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import date
from numbers import Real
from typing import Any, Mapping

from errors import ValidationError
from weeks import monday_for, parse_week_id

DAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

# Roles
ANALYST = "ANALYST"
APPROVER = "APPROVER"

# Task type ids with a fixed meaning in the derived figures
TRABAJADO = "TRABAJADO"
JIRA = "JIRA"
YA_IMPUTADO = "YA_IMPUTADO"
PRE_IMPUTADO = "PRE_IMPUTADO"
SIN_PROYECTO = "SIN_PROYECTO"
PENDIENTE = "PENDIENTE"
REGULARIZADO = "REGULARIZADO"
RECUPERADO = "RECUPERADO"
VACACIONES = "VACACIONES"
ENFERMEDAD = "ENFERMEDAD"
FESTIVO = "FESTIVO"

STRUCTURAL_TASK_CODE = "Estructural"


def _flag(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None:
        return default
    return bool(value)


def normalize_hours(hours: Mapping[str, Any] | None) -> dict[str, float]:
    """
    Validates a day->hours mapping and returns it with the seven day keys as floats.
    Absent or None days count as 0. Anything else that is not a finite,
    non-negative number raises ValidationError.
    """
    hours = hours or {}
    unknown = set(hours) - set(DAY_KEYS)
    if unknown:
        raise ValidationError(f"unknown day keys: {sorted(unknown)}")
    out: dict[str, float] = {}
    for day in DAY_KEYS:
        value = hours.get(day)
        if value is None:
            out[day] = 0.0
            continue
        if isinstance(value, bool) or not isinstance(value, Real):
            raise ValidationError(f"{day}: non-numeric hour value {value!r}")
        value = float(value)
        if math.isnan(value) or math.isinf(value):
            raise ValidationError(f"{day}: hour value must be finite")
        if value < 0:
            raise ValidationError(f"{day}: negative hour value {value}")
        out[day] = value
    return out


def total_hours(hours: Mapping[str, Any] | None) -> float:
    """Sum of the seven day fields; missing keys count as zero."""
    if not hours:
        return 0.0
    return float(sum(hours.get(day) or 0.0 for day in DAY_KEYS))


@dataclass
class TaskType:
    """A category of hours (worked, Jira, vacation...) and how it is counted."""
    id: str
    label: str
    color: str = "#ffffff"
    structural: bool = False
    computes_in_week: bool = True
    subtracts_from_budget: bool = True

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "TaskType":
        """Builds from a stored/API record. Legacy records lack the two counting flags: they mean True."""
        return cls(
            id=str(data["id"]),
            label=str(data.get("label") or data["id"]),
            color=data.get("color") or "#ffffff",
            structural=_flag(data, "structural", False),
            computes_in_week=_flag(data, "computesInWeek", True),
            subtracts_from_budget=_flag(data, "subtractsFromBudget", True),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "color": self.color,
            "structural": self.structural,
            "computesInWeek": self.computes_in_week,
            "subtractsFromBudget": self.subtracts_from_budget,
        }


@dataclass
class Task:
    id: str
    name: str
    code: str = ""
    description: str | None = None
    hito: str | None = None
    utes: float | None = None
    permanent: bool = False
    active: bool = True
    is_global: bool = False
    target_roles: set[str] = field(default_factory=set)
    assigned_user_ids: set[str] = field(default_factory=set)

    @property
    def is_structural(self) -> bool:
        return self.code == STRUCTURAL_TASK_CODE

    @property
    def has_budget(self) -> bool:
        return bool(self.utes) and self.utes > 0

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Task":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            code=data.get("code") or "",
            description=data.get("description"),
            hito=data.get("hito"),
            utes=data.get("utes"),
            permanent=_flag(data, "permanent", False),
            active=_flag(data, "active", True),
            is_global=_flag(data, "isGlobal", False),
            target_roles=set(data.get("targetRoles") or ()),
            assigned_user_ids=set(data.get("assignedUserIds") or ()),
        )


@dataclass
class Imputation:
    """One weekly timesheet line: a user's hours on a task, of one type, Monday to Sunday."""
    id: str
    week_id: str
    task_id: str
    user_id: str
    type: str
    hours: dict[str, float] = field(default_factory=dict)
    seg: bool = False
    status: str = "DRAFT"
    approved: bool = False
    note: str | None = None

    @property
    def total_hours(self) -> float:
        return total_hours(self.hours)

    @property
    def monday(self) -> date:
        return monday_for(self.week_id)

    @property
    def year(self) -> int:
        return parse_week_id(self.week_id)[0]

    @classmethod
    def from_record(cls, data: Mapping[str, Any]) -> "Imputation":
        return cls(
            id=str(data["id"]),
            week_id=data["weekId"],
            task_id=str(data["taskId"]),
            user_id=str(data["userId"]),
            type=data.get("type") or "",
            hours=dict(data.get("hours") or {}),
            seg=_flag(data, "seg", False),
            status=data.get("status") or "DRAFT",
            approved=_flag(data, "approved", False),
            note=data.get("note"),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "weekId": self.week_id,
            "taskId": self.task_id,
            "userId": self.user_id,
            "type": self.type,
            "hours": dict(self.hours),
            "seg": self.seg,
            "status": self.status,
            "approved": self.approved,
            "note": self.note,
        }


@dataclass
class WeekLock:
    week_id: str
    is_locked: bool = False


@dataclass
class User:
    id: str
    name: str
    password: str = ""
    roles: set[str] = field(default_factory=set)
    active: bool = True
    max_hours: float | None = None

    @property
    def is_approver(self) -> bool:
        return APPROVER in self.roles


__all__ = [
    "DAY_KEYS", "ANALYST", "APPROVER", "STRUCTURAL_TASK_CODE",
    "TRABAJADO", "JIRA", "YA_IMPUTADO", "PRE_IMPUTADO", "SIN_PROYECTO", "PENDIENTE",
    "REGULARIZADO", "RECUPERADO", "VACACIONES", "ENFERMEDAD", "FESTIVO",
    "normalize_hours", "total_hours",
    "TaskType", "Task", "Imputation", "WeekLock", "User",
]
