from __future__ import annotations

import getpass

import pytest

import utils.runtime as runtime


@pytest.mark.parametrize("name, expected", [
    ("SYSTEM", True), ("system", True), ("WS01$", True), ("", True), ("operator", False),
])
def test_service_accounts(name, expected):
    assert runtime.is_service_account(name) is expected


def test_current_user_for_interactive_session(monkeypatch):
    monkeypatch.setattr(getpass, "getuser", lambda: "operator")
    assert runtime.current_user() == "operator"


def test_current_user_under_system_uses_console_user(monkeypatch):
    monkeypatch.setattr(getpass, "getuser", lambda: "WS01$")
    monkeypatch.setattr(runtime, "_console_user", lambda: "operator")
    assert runtime.current_user() == "operator"


def test_current_user_under_system_without_console(monkeypatch):
    monkeypatch.setattr(getpass, "getuser", lambda: "WS01$")
    monkeypatch.setattr(runtime, "_console_user", lambda: "")
    assert runtime.current_user() == runtime.SYSTEM_ACCOUNT


def test_launcher_version_from_script(tmp_path):
    script = tmp_path / "run.py"
    script.write_text('# lanzador\n__version__ = "1.4.2"\n', encoding="utf-8")
    assert runtime.launcher_version(script) == (1, 4, 2)


def test_launcher_version_unknown(tmp_path):
    script = tmp_path / "run.py"
    script.write_text("print('x')\n", encoding="utf-8")
    assert runtime.launcher_version(script) == ()
    assert runtime.launcher_version(tmp_path / "missing.py") == ()
