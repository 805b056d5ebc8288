# reports.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from domain import (
    ENFERMEDAD, JIRA, PENDIENTE, PRE_IMPUTADO, RECUPERADO, REGULARIZADO,
    SIN_PROYECTO, TRABAJADO, YA_IMPUTADO,
)
from services import AggregationEngine

MESES = ["Enero", "Febrero", "Marzo", "Abril", "Mayo", "Junio", "Julio",
         "Agosto", "Septiembre", "Octubre", "Noviembre", "Diciembre"]

# Derived rows, in display order
UTES_FACTURAR = "UTESFacturar"
PERDIDA_FACTURACION = "PerdidaFacturacion"
EFICIENCIA = "Eficiencia"
PENDIENTES_ACUMULADO = "PendientesAcumulado"
PREIMPUTADO_ACUMULADO = "PreimputadoAcumulado"
REALMENTE_TRABAJADAS = "RealmenteTrabajadas"

DERIVED_LABELS = {
    UTES_FACTURAR: "UTES a facturar",
    PERDIDA_FACTURACION: "Pérdida de facturación",
    EFICIENCIA: "Eficiencia (%)",
    PENDIENTES_ACUMULADO: "Pendientes acumulado",
    PREIMPUTADO_ACUMULADO: "Preimputado acumulado",
    REALMENTE_TRABAJADAS: "Realmente trabajadas",
}

FACTURABLE = {TRABAJADO, JIRA, PRE_IMPUTADO, REGULARIZADO, RECUPERADO}
PERDIDA = {SIN_PROYECTO, ENFERMEDAD}
TRABAJADAS = {TRABAJADO, JIRA, REGULARIZADO, RECUPERADO, YA_IMPUTADO}


class SegFilter(str, Enum):
    ALL = "ALL"
    SEG_ONLY = "SEG"
    NON_SEG = "NON_SEG"

    @property
    def seg(self) -> Optional[bool]:
        return {SegFilter.ALL: None, SegFilter.SEG_ONLY: True, SegFilter.NON_SEG: False}[self]


@dataclass
class TypeRow:
    type_id: str
    label: str
    color: str
    months: List[float]
    total: float
    excluded: bool = False


@dataclass
class DerivedRow:
    key: str
    label: str
    months: List[float]
    total: float


@dataclass
class AnnualSummary:
    year: int
    seg: SegFilter
    excluded: frozenset
    type_rows: List[TypeRow] = field(default_factory=list)
    column_totals: List[float] = field(default_factory=list)
    grand_total: float = 0.0
    derived: Dict[str, DerivedRow] = field(default_factory=dict)

    def row(self, key: str) -> DerivedRow:
        return self.derived[key]


def efficiency(facturar: float, perdida: float) -> float:
    """Billable share of billable + lost hours, in percent. 0 when there is nothing to divide."""
    denominator = facturar + perdida
    if denominator == 0:
        return 0.0
    return round(facturar / denominator * 100, 2)


def _running(deltas: List[float]) -> List[float]:
    out, acc = [], 0.0
    for d in deltas:
        acc += d
        out.append(round(acc, 2))
    return out


class PeriodSummaryReporter:
    """
    Twelve-month table per task type for one year, plus the derived billing rows.

    Types in `excluded` keep their row in the table but are left out of the
    column totals and of every derived figure.
    """

    def __init__(self, engine: AggregationEngine):
        self.engine = engine

    def build(self, year: int, seg: SegFilter = SegFilter.ALL, excluded: Iterable[str] = ()) -> AnnualSummary:
        seg = SegFilter(seg)
        excluded = frozenset(excluded)
        matrix = self.engine.monthly_matrix(year, seg=seg.seg)
        summary = AnnualSummary(year=year, seg=seg, excluded=excluded)

        registry = self.engine.registry
        for type_id, months in matrix.items():
            t = registry.get(type_id)
            summary.type_rows.append(TypeRow(
                type_id=type_id,
                label=t.label,
                color=t.color,
                months=list(months),
                total=round(sum(months), 2),
                excluded=type_id in excluded,
            ))

        included = {k: v for k, v in matrix.items() if k not in excluded}
        summary.column_totals = [round(sum(m[i] for m in included.values()), 2) for i in range(12)]
        summary.grand_total = round(sum(summary.column_totals), 2)

        def monthly(ids: set) -> List[float]:
            rows = [included[k] for k in ids if k in included]
            return [sum(r[i] for r in rows) for i in range(12)]

        facturar = [round(v, 2) for v in monthly(FACTURABLE)]
        recuperado = monthly({RECUPERADO})
        perdida = [round(p - r, 2) for p, r in zip(monthly(PERDIDA), recuperado)]
        pendientes = _running([p - r for p, r in zip(monthly({PENDIENTE}), monthly({REGULARIZADO}))])
        preimputado = _running([p - y for p, y in zip(monthly({PRE_IMPUTADO}), monthly({YA_IMPUTADO}))])
        trabajadas = [round(v, 2) for v in monthly(TRABAJADAS)]

        facturar_total = round(sum(facturar), 2)
        perdida_total = round(sum(perdida), 2)
        rows = [
            (UTES_FACTURAR, facturar, facturar_total),
            (PERDIDA_FACTURACION, perdida, perdida_total),
            (EFICIENCIA, [efficiency(f, p) for f, p in zip(facturar, perdida)],
             efficiency(facturar_total, perdida_total)),
            (PENDIENTES_ACUMULADO, pendientes, pendientes[-1]),
            (PREIMPUTADO_ACUMULADO, preimputado, preimputado[-1]),
            (REALMENTE_TRABAJADAS, trabajadas, round(sum(trabajadas), 2)),
        ]
        for key, months, total in rows:
            summary.derived[key] = DerivedRow(key=key, label=DERIVED_LABELS[key], months=months, total=total)
        return summary


__all__ = [
    "MESES", "SegFilter", "TypeRow", "DerivedRow", "AnnualSummary", "efficiency",
    "PeriodSummaryReporter", "UTES_FACTURAR", "PERDIDA_FACTURACION", "EFICIENCIA",
    "PENDIENTES_ACUMULADO", "PREIMPUTADO_ACUMULADO", "REALMENTE_TRABAJADAS",
]
