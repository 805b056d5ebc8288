# registry.py
from __future__ import annotations
from typing import Iterable, Optional, Union

from loguru import logger

from domain import Task, TaskType
from errors import NotFoundError, TypeInUseError, ValidationError
from ledger import ImputationLedger

TypeRef = Union[TaskType, str]

# Seeded catalogue. Structural types only apply to the "Estructural" task.
DEFAULT_TASK_TYPES = (
    TaskType("TRABAJADO", "Trabajado", "#E8F5E9"),
    TaskType("JIRA", "Jira", "#A5D6A7"),
    TaskType("YA_IMPUTADO", "Ya imputado", "#E3F2FD"),
    TaskType("PRE_IMPUTADO", "Pre-imputado", "#90CAF9"),
    TaskType("SIN_PROYECTO", "Sin proyecto", "#F5F5F5", structural=True),
    TaskType("PENDIENTE", "Pendiente", "#FCE4EC"),
    TaskType("REGULARIZADO", "Regularizado", "#FFE0B2"),
    TaskType("RECUPERADO", "Recuperado", "#E1BEE7"),
    TaskType("VACACIONES", "Vacaciones", "#ECEFF1", structural=True),
    TaskType("ENFERMEDAD", "Enfermedad", "#CFD8DC", structural=True),
    TaskType("FESTIVO", "Festivo", "#B0BEC5", structural=True),
)


class TaskTypeRegistry:
    """
    Catalogue of task types and the predicates aggregation relies on.

    A type id that is not in the catalogue (a row pointing at a deleted type)
    counts as computable and budget-subtracting, and as not structural.
    Removal is checked against `ledger`: a type still referenced is kept.
    """

    def __init__(self, types: Iterable[TaskType], ledger: ImputationLedger):
        self._types: dict[str, TaskType] = {}
        self.ledger = ledger
        self.version = 0
        for t in types:
            self.add(t)

    def __iter__(self):
        return iter(list(self._types.values()))

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, type_id: str) -> bool:
        return type_id in self._types

    @property
    def ids(self) -> list[str]:
        return list(self._types)

    def get(self, type_id: str) -> TaskType:
        try:
            return self._types[type_id]
        except KeyError:
            raise NotFoundError("task type", type_id) from None

    def find(self, type_id: str) -> Optional[TaskType]:
        return self._types.get(type_id)

    def _resolve(self, ref: TypeRef) -> Optional[TaskType]:
        if isinstance(ref, TaskType):
            return ref
        return self._types.get(ref)

    # --- predicates ---
    def is_computable(self, ref: TypeRef) -> bool:
        t = self._resolve(ref)
        return True if t is None else t.computes_in_week

    def is_budget_subtracting(self, ref: TypeRef) -> bool:
        t = self._resolve(ref)
        return True if t is None else t.subtracts_from_budget

    def is_structural(self, ref: TypeRef) -> bool:
        t = self._resolve(ref)
        return False if t is None else t.structural

    def types_for_task(self, task: Task) -> list[TaskType]:
        """Types selectable on a task: structural ones for the Estructural task, the rest otherwise."""
        return [t for t in self._types.values() if t.structural == task.is_structural]

    def accepts(self, task: Task, ref: TypeRef) -> bool:
        return self.is_structural(ref) == task.is_structural

    # --- mutations ---
    def add(self, task_type: TaskType) -> TaskType:
        if not task_type.id or not task_type.label:
            raise ValidationError("task type needs an id and a label")
        if task_type.id in self._types:
            raise ValidationError(f"task type '{task_type.id}' already exists")
        self._types[task_type.id] = task_type
        self.version += 1
        logger.debug(f"Task type added: {task_type.id}")
        return task_type

    def update(self, task_type: TaskType) -> TaskType:
        if task_type.id not in self._types:
            raise NotFoundError("task type", task_type.id)
        if not task_type.label:
            raise ValidationError("task type needs a label")
        self._types[task_type.id] = task_type
        self.version += 1
        logger.debug(f"Task type updated: {task_type.id}")
        return task_type

    def upsert(self, task_type: TaskType) -> TaskType:
        if task_type.id in self._types:
            return self.update(task_type)
        return self.add(task_type)

    def remove(self, type_id: str) -> None:
        if type_id not in self._types:
            raise NotFoundError("task type", type_id)
        refs = self.ledger.references_type(type_id)
        if refs:
            logger.warning(f"Refusing to delete task type {type_id}: {refs} imputation(s) use it")
            raise TypeInUseError("task type", type_id, refs)
        del self._types[type_id]
        self.version += 1
        logger.debug(f"Task type removed: {type_id}")


def default_registry(ledger: ImputationLedger) -> TaskTypeRegistry:
    return TaskTypeRegistry((TaskType(**vars(t)) for t in DEFAULT_TASK_TYPES), ledger=ledger)


__all__ = ["DEFAULT_TASK_TYPES", "TaskTypeRegistry", "default_registry"]
