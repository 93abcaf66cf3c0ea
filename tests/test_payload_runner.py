from __future__ import annotations

from pathlib import Path

import pytest

from app.errors import ExitCode, LauncherFatal
from app.payload_runner import ENV_LOG_FILE, ENV_WORKDIR, launch_payload, probe_runtime


class RunRecorder:
    def __init__(self, rc=0, error=None):
        self.rc = rc
        self.error = error
        self.calls = []

    def __call__(self, argv, *, cwd=None, env=None):
        self.calls.append((list(argv), cwd, dict(env or {})))
        if self.error is not None:
            raise self.error
        return self.rc


def _entry(tmp_path: Path) -> Path:
    entry = tmp_path / "payload" / "Maintenance.ps1"
    entry.parent.mkdir(parents=True, exist_ok=True)
    entry.write_text("exit 0\n", encoding="utf-8")
    return entry


def test_probe_prefers_modern_runtime(tmp_path):
    found = {"pwsh": "/opt/pwsh", "powershell": "/opt/powershell"}
    assert probe_runtime(which=found.get, program_files=tmp_path, system_root=tmp_path) == ("pwsh", Path("/opt/pwsh"))


def test_probe_falls_back_to_legacy(tmp_path):
    legacy = tmp_path / "System32" / "WindowsPowerShell" / "v1.0" / "powershell.exe"
    legacy.parent.mkdir(parents=True)
    legacy.write_bytes(b"")
    assert probe_runtime(which=lambda n: None, program_files=tmp_path, system_root=tmp_path) == ("powershell", legacy)
    assert probe_runtime(which=lambda n: None, program_files=tmp_path / "x", system_root=tmp_path / "y") is None


def test_launch_publishes_workdir_and_log(make_ctx, tmp_path):
    entry = _entry(tmp_path)
    run = RunRecorder(rc=0)
    ctx = make_ctx()
    outcome = launch_payload(ctx, entry, runtime=("pwsh", Path("/opt/pwsh")), run=run, base_env={"PATH": "x"})

    assert outcome.succeeded
    assert outcome.runtime == "pwsh"
    argv, cwd, env = run.calls[0]
    assert argv[0] == str(Path("/opt/pwsh"))
    assert argv[-2:] == ["-File", str(entry)]
    assert cwd == str(entry.parent)
    assert env[ENV_WORKDIR] == str(ctx.workdir)
    assert env[ENV_LOG_FILE] == ctx.log_file
    assert env["PATH"] == "x"


def test_payload_failure_is_reported_not_raised(make_ctx, tmp_path):
    outcome = launch_payload(make_ctx(), _entry(tmp_path), runtime=("powershell", Path("ps")), run=RunRecorder(rc=3))
    assert not outcome.succeeded
    assert outcome.exit_status == 3


def test_vanished_entry_point_is_fatal(make_ctx, tmp_path):
    run = RunRecorder()
    with pytest.raises(LauncherFatal) as exc:
        launch_payload(make_ctx(), tmp_path / "gone.ps1", runtime=("pwsh", Path("p")), run=run)
    assert exc.value.code is ExitCode.ENTRY_POINT_MISSING
    assert run.calls == []


def test_spawn_error_is_fatal(make_ctx, tmp_path):
    with pytest.raises(LauncherFatal) as exc:
        launch_payload(make_ctx(), _entry(tmp_path), runtime=("pwsh", Path("p")),
                       run=RunRecorder(error=FileNotFoundError("pwsh")))
    assert exc.value.code is ExitCode.LAUNCH_FAILED
