import logging
from pathlib import Path

from docportal.config import DEFAULT_MAX_UPLOAD_BYTES, DEFAULT_TEMPLATE_NAME, PortalSettings, configure_logging


def test_from_env_defaults(monkeypatch, tmp_path):
    for name in (
        "DOCPORTAL_PORT",
        "DOCPORTAL_MAX_UPLOAD_BYTES",
        "DOCPORTAL_PROCESSOR_URL",
        "DOCPORTAL_TEMPLATE_PATH",
        "DOCPORTAL_RESULTS_MIRROR_DIR",
        "DOCPORTAL_SWEEP_ON_IDLE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DOCPORTAL_WORK_DIR", str(tmp_path))

    settings = PortalSettings.from_env()

    assert settings.port == 5000
    assert settings.max_upload_bytes == DEFAULT_MAX_UPLOAD_BYTES
    assert settings.processor_url == "http://localhost:8000"
    assert settings.template_path == tmp_path / "template" / DEFAULT_TEMPLATE_NAME
    assert settings.template_filler_script == tmp_path / "table_filler.py"
    assert settings.template_memory_script == tmp_path / "main.py"
    assert settings.results_mirror_dir is None
    assert settings.sweep_on_idle is True


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("DOCPORTAL_PORT", "8080")
    monkeypatch.setenv("DOCPORTAL_CORS_ALLOWED_ORIGINS", "http://a.test, ,http://b.test")
    monkeypatch.setenv("DOCPORTAL_SWEEP_ON_IDLE", "false")
    monkeypatch.setenv("DOCPORTAL_RESULTS_MIRROR_DIR", "/tmp/results")
    monkeypatch.setenv("DOCPORTAL_PROCESSOR_TIMEOUT_SECONDS", "12.5")

    settings = PortalSettings.from_env()

    assert settings.port == 8080
    assert settings.cors_allowed_origins == ["http://a.test", "http://b.test"]
    assert settings.sweep_on_idle is False
    assert settings.results_mirror_dir == Path("/tmp/results")
    assert settings.processor_timeout_seconds == 12.5


def test_configure_logging_is_idempotent():
    logger = configure_logging("debug")
    configure_logging("info")

    assert logger is logging.getLogger("docportal")
    assert len(logger.handlers) == 1
    assert logger.level == logging.INFO
