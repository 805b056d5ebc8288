# config.py
# Ajustes por entorno (con fallback local SOLO para desarrollo)
from __future__ import annotations
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from loguru import logger


def _pick_data_dir() -> Path:
    candidates = []
    env = os.getenv("DATA_DIR")
    if env:
        candidates.append(Path(env))
    candidates += [Path("/data"), Path.cwd() / "data"]

    for p in candidates:
        try:
            p.mkdir(parents=True, exist_ok=True)
            t = p / ".rwtest"
            t.write_text("ok")
            t.unlink(missing_ok=True)
            return p
        except OSError:
            continue
    return Path.cwd()


def _is_hosted() -> bool:
    return "RENDER" in os.environ or "SPACE_ID" in os.environ


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    database_url: str
    weekly_target_hours: float = 40.0
    log_level: str = "INFO"
    log_file: Optional[str] = None


def load_settings() -> Settings:
    data_dir = _pick_data_dir()
    default_sqlite = f"sqlite:///{(data_dir / 'imputaciones.db').as_posix()}"
    settings = Settings(
        data_dir=data_dir,
        database_url=os.getenv("DATABASE_URL", default_sqlite),
        weekly_target_hours=float(os.getenv("WEEKLY_TARGET_HOURS", "40")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("LOG_FILE") or None,
    )
    # Exigir Postgres en hosting
    if _is_hosted() and settings.database_url.startswith("sqlite"):
        logger.warning("Falta DATABASE_URL (Postgres). Configura la variable de entorno en el hosting.")
    return settings


def configure_logging(settings: Settings) -> None:
    """Replaces loguru's default sink with stderr (and the optional log file) at the configured level."""
    logger.remove()
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention="10 days")
    logger.add(sys.stderr, level=settings.log_level)


__all__ = ["Settings", "load_settings", "configure_logging"]
