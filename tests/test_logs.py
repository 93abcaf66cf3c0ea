from __future__ import annotations

import logging
from pathlib import Path

import pytest

import app.logs as logs


@pytest.fixture
def fresh_logs(tmp_path, monkeypatch):
    monkeypatch.setenv("HM_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("HM_LOG_FILE", raising=False)
    logs.close_all()
    yield tmp_path / "data"
    logs.close_all()


def _flush():
    for h in logging.getLogger("hm").handlers:
        h.flush()


def test_log_file_lives_under_data_dir(fresh_logs):
    logs.configure(level="DEBUG")
    path = Path(logs.get_log_file())
    assert path == fresh_logs / "logs" / logs.LOG_FILE_NAME

    logs.get_logger("tests").debug("mensaje de prueba")
    _flush()
    assert "[hm.tests] mensaje de prueba" in path.read_text(encoding="utf-8-sig")


def test_explicit_log_file_from_environment(fresh_logs, tmp_path, monkeypatch):
    target = tmp_path / "custom" / "run.log"
    monkeypatch.setenv("HM_LOG_FILE", str(target))
    logs.configure()
    assert Path(logs.get_log_file()) == target


def test_level_is_applied_to_base_logger(fresh_logs):
    logs.configure(level="WARNING")
    assert logging.getLogger("hm").level == logging.WARNING
    logs.configure(level="DEBUG")
    assert logging.getLogger("hm").level == logging.DEBUG


def test_log_timing_records_duration(fresh_logs):
    logs.configure(level="INFO")
    with logs.log_timing("etapa de prueba", logs.get_logger("tests")):
        pass
    _flush()
    text = Path(logs.get_log_file()).read_text(encoding="utf-8-sig")
    assert "etapa de prueba:" in text
    assert " ms" in text


def test_close_all_releases_the_log_file(fresh_logs):
    logs.configure(level="INFO")
    assert logging.getLogger("hm").handlers
    logs.close_all()
    assert logging.getLogger("hm").handlers == []

    # Reconfigurar tras cerrar vuelve a abrir el mismo fichero
    logs.configure(level="INFO")
    assert Path(logs.get_log_file()) == fresh_logs / "logs" / logs.LOG_FILE_NAME
