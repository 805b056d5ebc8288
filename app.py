# app.py
# -----------------------------------------------
# ⏱️ Imputación de horas: resúmenes y mantenimiento
# -----------------------------------------------
# Requiere: sqlmodel, pandas, reportlab, loguru, psycopg2-binary (si usas Postgres)
#
#   python app.py seed
#   python app.py migrate
#   python app.py resumen --year 2024 [--seg SEG|NON_SEG] [--excluir FESTIVO ...] [--pdf]
#   python app.py export-tipos > tipos_tarea.csv
#   python app.py import-tipos tipos_tarea.csv

from __future__ import annotations
import argparse
import sys
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from config import Settings, configure_logging, load_settings
from domain import Imputation, User
from errors import TimesheetError
from repository import TimesheetRepository
from reports import AnnualSummary, PeriodSummaryReporter, SegFilter
from services import AggregationEngine
from utils import summary_to_dataframe, summary_to_pdf, task_types_from_csv, task_types_to_csv


class Timesheet:
    """
    Keeps the in-memory ledger, registry and engine in step with the repository.
    Every write goes to the repository first (where locks and references are
    checked) and then to the ledger.
    """

    def __init__(self, repo: TimesheetRepository, weekly_target: float = 40.0):
        self.repo = repo
        self.weekly_target = weekly_target
        self.reload()

    def reload(self) -> None:
        self.ledger = self.repo.load_ledger()
        self.registry = self.repo.load_registry(self.ledger)
        self.engine = AggregationEngine(self.ledger, self.registry, self.repo.list_tasks(), self.weekly_target)
        self.reporter = PeriodSummaryReporter(self.engine)
        logger.debug(f"Loaded {len(self.ledger)} imputation(s), {len(self.registry)} task type(s)")

    def record(self, imp: Imputation, actor: User) -> Imputation:
        stored = self.repo.upsert_imputation(imp, actor)
        return self.ledger.upsert(stored)

    def delete(self, imputation_id: str, actor: User) -> None:
        self.repo.delete_imputation(imputation_id, actor)
        self.ledger.delete(imputation_id)

    def delete_task_type(self, type_id: str) -> None:
        self.repo.delete_task_type(type_id)
        self.registry.remove(type_id)

    def annual_summary(self, year: int, seg: SegFilter = SegFilter.ALL, excluded: Iterable[str] = ()) -> AnnualSummary:
        return self.reporter.build(year, seg=seg, excluded=excluded)


def open_timesheet(settings: Optional[Settings] = None) -> Timesheet:
    settings = settings or load_settings()
    repo = TimesheetRepository(settings.database_url)
    return Timesheet(repo, weekly_target=settings.weekly_target_hours)


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="imputaciones", description="Imputación de horas")
    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("seed", help="crea los tipos de tarea por defecto que falten")
    sub.add_parser("migrate", help="rellena computesInWeek/subtractsFromBudget a true")
    r = sub.add_parser("resumen", help="resumen anual por tipo y mes")
    r.add_argument("--year", type=int, required=True)
    r.add_argument("--seg", choices=[s.value for s in SegFilter], default=SegFilter.ALL.value)
    r.add_argument("--excluir", nargs="*", default=[], metavar="TIPO")
    r.add_argument("--pdf", action="store_true", help="guarda el PDF en DATA_DIR/reportes")
    sub.add_parser("export-tipos", help="exporta los tipos de tarea en CSV (;)")
    i = sub.add_parser("import-tipos", help="importa tipos de tarea desde CSV (;)")
    i.add_argument("fichero", type=Path)
    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = _parser().parse_args(argv)
    settings = load_settings()
    configure_logging(settings)
    ts = open_timesheet(settings)

    try:
        if args.cmd == "seed":
            ts.repo.seed_task_types()
        elif args.cmd == "migrate":
            ts.repo.backfill_task_type_flags()
        elif args.cmd == "resumen":
            summary = ts.annual_summary(args.year, seg=SegFilter(args.seg), excluded=args.excluir)
            print(summary_to_dataframe(summary).to_string(index=False))
            if args.pdf:
                carpeta = settings.data_dir / "reportes"
                carpeta.mkdir(parents=True, exist_ok=True)
                destino = carpeta / f"resumen_{args.year}_{args.seg}.pdf"
                destino.write_bytes(summary_to_pdf(summary, f"Resumen anual {args.year}"))
                logger.info(f"PDF guardado en {destino}")
        elif args.cmd == "export-tipos":
            print(task_types_to_csv(ts.repo.list_task_types()))
        elif args.cmd == "import-tipos":
            for t in task_types_from_csv(args.fichero.read_text(encoding="utf-8")):
                ts.repo.upsert_task_type(t)
    except TimesheetError as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
