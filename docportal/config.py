from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CORS_ORIGINS = "http://localhost:5000,http://127.0.0.1:5000,http://localhost:3000"
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_TEMPLATE_NAME = "DO_UW WS TEMPLATE_May 2022_use this.docx"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_path(name: str) -> Path | None:
    raw = (os.getenv(name) or "").strip()
    return Path(raw) if raw else None


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class PortalSettings:
    host: str = "0.0.0.0"
    port: int = 5000
    log_level: str = "INFO"
    cors_allowed_origins: list[str] = field(default_factory=lambda: _split_origins(DEFAULT_CORS_ORIGINS))
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES

    processor_url: str = "http://localhost:8000"
    processor_timeout_seconds: float = 300.0

    work_dir: Path = field(default_factory=Path.cwd)
    template_path: Path | None = None
    template_filler_script: Path | None = None
    template_memory_script: Path | None = None
    python_executable: str = sys.executable
    template_timeout_seconds: float = 300.0

    results_mirror_dir: Path | None = None
    sweep_on_startup: bool = True
    sweep_on_idle: bool = True

    @classmethod
    def from_env(cls) -> "PortalSettings":
        work_dir = _env_path("DOCPORTAL_WORK_DIR") or Path.cwd()
        return cls(
            host=os.getenv("DOCPORTAL_HOST", "0.0.0.0"),
            port=int(os.getenv("DOCPORTAL_PORT", "5000")),
            log_level=os.getenv("DOCPORTAL_LOG_LEVEL", "INFO"),
            cors_allowed_origins=_split_origins(
                os.getenv("DOCPORTAL_CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)
            ),
            max_upload_bytes=int(os.getenv("DOCPORTAL_MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES))),
            processor_url=os.getenv("DOCPORTAL_PROCESSOR_URL", "http://localhost:8000"),
            processor_timeout_seconds=float(os.getenv("DOCPORTAL_PROCESSOR_TIMEOUT_SECONDS", "300")),
            work_dir=work_dir,
            template_path=_env_path("DOCPORTAL_TEMPLATE_PATH") or work_dir / "template" / DEFAULT_TEMPLATE_NAME,
            template_filler_script=_env_path("DOCPORTAL_TEMPLATE_FILLER_SCRIPT") or work_dir / "table_filler.py",
            template_memory_script=_env_path("DOCPORTAL_TEMPLATE_MEMORY_SCRIPT") or work_dir / "main.py",
            python_executable=os.getenv("DOCPORTAL_PYTHON_EXECUTABLE", sys.executable),
            template_timeout_seconds=float(os.getenv("DOCPORTAL_TEMPLATE_TIMEOUT_SECONDS", "300")),
            results_mirror_dir=_env_path("DOCPORTAL_RESULTS_MIRROR_DIR"),
            sweep_on_startup=_env_bool("DOCPORTAL_SWEEP_ON_STARTUP", True),
            sweep_on_idle=_env_bool("DOCPORTAL_SWEEP_ON_IDLE", True),
        )


def configure_logging(log_level: str = "INFO") -> logging.Logger:
    """Attach a single stdout handler to the package logger."""
    logger = logging.getLogger("docportal")
    logger.setLevel(log_level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
