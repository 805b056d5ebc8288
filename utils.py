# utils.py
from __future__ import annotations
import io
import math
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import pandas as pd
from loguru import logger
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from domain import DAY_KEYS, Imputation, Task, TaskType
from errors import ValidationError
from ledger import ImputationLedger
from reports import MESES, AnnualSummary
from weeks import normalize_week_id

TASK_TYPE_HEADER = ["id", "label", "color", "structural", "computesInWeek", "subtractsFromBudget"]
IMPUTATION_HEADER = ["Semana", "CodigoTarea", "Tipo", "Lunes", "Martes", "Miercoles", "Jueves", "Viernes", "Seguimiento"]


def _bool(v: bool) -> str:
    return "true" if v else "false"


def _num(v: float) -> str:
    return f"{v:g}"


def _quoted(v: str) -> str:
    return '"' + v.replace('"', '""') + '"'


def _read_semicolon_csv(text: str) -> pd.DataFrame:
    df = pd.read_csv(io.StringIO(text), sep=";", dtype=str, keep_default_na=False, skipinitialspace=True)
    return df.fillna("")


# =========================
# Tipos de tarea (CSV ';')
# =========================
def task_types_to_csv(types: Iterable[TaskType]) -> str:
    """`;`-separated export; only the label is quoted."""
    lines = [";".join(TASK_TYPE_HEADER)]
    for t in types:
        lines.append(";".join([
            t.id, _quoted(t.label), t.color,
            _bool(t.structural), _bool(t.computes_in_week), _bool(t.subtracts_from_budget),
        ]))
    return "\n".join(lines)


def task_types_from_csv(text: str) -> List[TaskType]:
    """
    Parses an export back. Rows without id are skipped. Missing colour means white;
    structural only when the cell says `true`, the counting flags unless it says `false`.
    """
    df = _read_semicolon_csv(text)
    out = []
    for _, row in df.iterrows():
        cells = [str(row.get(col, "")).strip() for col in TASK_TYPE_HEADER]
        type_id, label, color, structural, computes, subtracts = cells
        if not type_id:
            continue
        out.append(TaskType(
            id=type_id,
            label=label or type_id,
            color=color or "#ffffff",
            structural=structural == "true",
            computes_in_week=computes != "false",
            subtracts_from_budget=subtracts != "false",
        ))
    logger.info(f"Parsed {len(out)} task type(s) from CSV")
    return out


# =========================
# Imputaciones (CSV ';')
# =========================
def imputations_to_csv(imputations: Iterable[Imputation], tasks: Iterable[Task]) -> str:
    codes = {t.id: t.code for t in tasks}
    lines = [";".join(IMPUTATION_HEADER)]
    for imp in imputations:
        lines.append(";".join(
            [imp.week_id, codes.get(imp.task_id, "UNKNOWN"), imp.type]
            + [_num(imp.hours.get(day, 0.0)) for day in DAY_KEYS[:5]]
            + ["SI" if imp.seg else "NO"]
        ))
    return "\n".join(lines)


@dataclass
class ImportResult:
    imputations: List[Imputation] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def _parse_hours(cell: str) -> float:
    cell = cell.strip().replace(",", ".")
    if not cell:
        return 0.0
    value = float(cell)
    if not math.isfinite(value) or value < 0:
        raise ValueError(cell)
    return value


def imputations_from_csv(
    text: str,
    user_id: str,
    tasks: Iterable[Task],
    ledger: ImputationLedger,
    is_week_locked: Callable[[str], bool],
    new_id: Optional[Callable[[], str]] = None,
) -> ImportResult:
    """
    Turns an export into full imputation records for `user_id`, ready to upsert.

    Tasks are matched by code. Rows with a malformed week, an unknown task,
    a locked week or unreadable hours are skipped and reported. A row matching
    an existing (user, week, task, type) keeps that record's id and its
    weekend hours, which the CSV does not carry.
    """
    new_id = new_id or (lambda: uuid.uuid4().hex)
    by_code = {t.code: t for t in tasks}
    result = ImportResult()
    df = _read_semicolon_csv(text)
    for idx, row in df.iterrows():
        cells = [str(row.get(col, "")).strip() for col in IMPUTATION_HEADER]
        week, code, type_id = cells[:3]
        if not week or not code or not type_id:
            continue
        try:
            week = normalize_week_id(week)
        except ValidationError as e:
            result.skipped.append(f"fila {idx + 2}: semana no válida {e}")
            continue
        task = by_code.get(code)
        if task is None:
            result.skipped.append(f"fila {idx + 2}: tarea desconocida {code}")
            continue
        if is_week_locked(week):
            result.skipped.append(f"fila {idx + 2}: semana bloqueada {week}")
            continue
        try:
            hours = {day: _parse_hours(cell) for day, cell in zip(DAY_KEYS[:5], cells[3:8])}
        except ValueError as e:
            result.skipped.append(f"fila {idx + 2}: horas no válidas {e}")
            continue
        existing = ledger.find(user_id, week, task.id, type_id)
        if existing is not None:
            hours["sat"] = existing.hours.get("sat", 0.0)
            hours["sun"] = existing.hours.get("sun", 0.0)
        result.imputations.append(Imputation(
            id=existing.id if existing else new_id(),
            week_id=week,
            task_id=task.id,
            user_id=user_id,
            type=type_id,
            hours=hours,
            seg=cells[8].upper() in ("SI", "TRUE"),
            status="DRAFT",
        ))
    for msg in result.skipped:
        logger.warning(msg)
    logger.info(f"Imported {len(result.imputations)} imputation(s), skipped {len(result.skipped)}")
    return result


# =========================
# Resumen anual: tabla y PDF
# =========================
def summary_to_dataframe(summary: AnnualSummary) -> pd.DataFrame:
    cols = [m[:3] for m in MESES]
    rows = []
    for r in summary.type_rows:
        rows.append({"Tipo": r.label, **dict(zip(cols, r.months)), "TOTAL": r.total, "Excluido": r.excluded})
    rows.append({"Tipo": "TOTAL ESTADÍSTICO", **dict(zip(cols, summary.column_totals)),
                 "TOTAL": summary.grand_total, "Excluido": False})
    for r in summary.derived.values():
        rows.append({"Tipo": r.label, **dict(zip(cols, r.months)), "TOTAL": r.total, "Excluido": False})
    return pd.DataFrame(rows, columns=["Tipo", *cols, "TOTAL", "Excluido"])


def summary_to_pdf(summary: AnnualSummary, titulo: str) -> bytes:
    df = summary_to_dataframe(summary)
    df = df[~df["Excluido"]].drop(columns=["Excluido"])

    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=landscape(A4), topMargin=24, bottomMargin=24, leftMargin=24, rightMargin=24)
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(name="TitleCentered", parent=styles["Title"], alignment=TA_CENTER)
    story = [Paragraph(titulo, title_style), Spacer(1, 8)]

    data = [list(df.columns)] + [
        [v if isinstance(v, str) else ("-" if v == 0 else _num(round(v, 2))) for v in row]
        for row in df.values.tolist()
    ]
    n_types = len([r for r in summary.type_rows if not r.excluded])
    table = Table(data, repeatRows=1, hAlign="CENTER")
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F5F5F7")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("ALIGN", (1, 0), (-1, -1), "CENTER"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#E0E0E0")),
        ("ROWBACKGROUNDS", (0, 1), (-1, n_types), [colors.whitesmoke, colors.white]),
        ("BACKGROUND", (0, n_types + 1), (-1, -1), colors.HexColor("#EEEEEE")),
        ("FONTNAME", (0, n_types + 1), (-1, -1), "Helvetica-Bold"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]))
    story.append(table)

    def draw_page_border(canvas, doc_obj):
        canvas.saveState()
        w, h = doc_obj.pagesize
        canvas.setStrokeColor(colors.HexColor("#C7CCD6"))
        canvas.setLineWidth(0.8)
        margin = 12
        canvas.rect(margin, margin, w - 2*margin, h - 2*margin)
        canvas.restoreState()

    doc.build(story, onFirstPage=draw_page_border, onLaterPages=draw_page_border)
    return buf.getvalue()


__all__ = [
    "task_types_to_csv", "task_types_from_csv", "imputations_to_csv", "imputations_from_csv",
    "ImportResult", "summary_to_dataframe", "summary_to_pdf",
]
