# ledger.py
from __future__ import annotations
from dataclasses import replace
from typing import Collection, Iterable, List, Optional, Tuple, Union

from loguru import logger

from domain import Imputation, normalize_hours, total_hours
from errors import NotFoundError, ValidationError
from weeks import normalize_week_id

YearRange = Union[int, Tuple[int, int]]


class ImputationLedger:
    """
    In-memory store of imputations keyed by id.

    Every write validates the record and bumps `version`, so callers can memoise
    derived figures per version.
    """

    def __init__(self, imputations: Iterable[Imputation] = ()):
        self._rows: dict[str, Imputation] = {}
        self.version = 0
        for imp in imputations:
            self.upsert(imp)

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self):
        return iter(list(self._rows.values()))

    def __contains__(self, imputation_id: str) -> bool:
        return imputation_id in self._rows

    @staticmethod
    def validate(imp: Imputation) -> Imputation:
        """Returns a copy of `imp` with normalised hours and week id. Raises ValidationError otherwise."""
        if not imp.id:
            raise ValidationError("imputation needs an id")
        if not imp.task_id or not imp.user_id:
            raise ValidationError(f"imputation {imp.id}: task and user are required")
        return replace(imp, week_id=normalize_week_id(imp.week_id), hours=normalize_hours(imp.hours))

    def upsert(self, imp: Imputation) -> Imputation:
        """Inserts, or replaces the whole record with the same id."""
        row = self.validate(imp)
        action = "replaced" if row.id in self._rows else "inserted"
        self._rows[row.id] = row
        self.version += 1
        logger.debug(f"Imputation {action}: {row.id} ({row.week_id}, {row.user_id}, {row.task_id}, {row.type})")
        return row

    def delete(self, imputation_id: str) -> None:
        if self._rows.pop(imputation_id, None) is not None:
            self.version += 1
            logger.debug(f"Imputation deleted: {imputation_id}")

    def get(self, imputation_id: str) -> Imputation:
        try:
            return self._rows[imputation_id]
        except KeyError:
            raise NotFoundError("imputation", imputation_id) from None

    def query(
        self,
        week_id: Optional[str] = None,
        user_id: Optional[str] = None,
        task_id: Optional[str] = None,
        type_id: Union[str, Collection[str], None] = None,
        year_range: Optional[YearRange] = None,
        seg: Optional[bool] = None,
    ) -> List[Imputation]:
        """All rows matching every supplied filter. `type_id` takes one id or a collection of ids."""
        if week_id is not None:
            week_id = normalize_week_id(week_id)
        if isinstance(type_id, str):
            type_id = {type_id}
        if isinstance(year_range, int):
            year_range = (year_range, year_range)
        out = []
        for imp in self._rows.values():
            if week_id is not None and imp.week_id != week_id:
                continue
            if user_id is not None and imp.user_id != user_id:
                continue
            if task_id is not None and imp.task_id != task_id:
                continue
            if type_id is not None and imp.type not in type_id:
                continue
            if seg is not None and imp.seg != seg:
                continue
            if year_range is not None:
                lo, hi = year_range
                if not lo <= imp.year <= hi:
                    continue
            out.append(imp)
        return out

    def find(self, user_id: str, week_id: str, task_id: str, type_id: str) -> Optional[Imputation]:
        """The row for a (user, week, task, type) combination, if any."""
        week_id = normalize_week_id(week_id)
        for imp in self._rows.values():
            if (imp.user_id, imp.week_id, imp.task_id, imp.type) == (user_id, week_id, task_id, type_id):
                return imp
        return None

    @staticmethod
    def total_hours(imp: Imputation) -> float:
        return total_hours(imp.hours)

    def references_type(self, type_id: str) -> int:
        return sum(1 for imp in self._rows.values() if imp.type == type_id)

    def references_task(self, task_id: str) -> int:
        return sum(1 for imp in self._rows.values() if imp.task_id == task_id)


__all__ = ["ImputationLedger"]
