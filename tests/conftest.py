from __future__ import annotations

import os
import sys
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest


def _ensure_project_root_on_path() -> None:
    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)


_ensure_project_root_on_path()

# El logger se inicializa al importar app.*: nunca debe tocar ProgramData
os.environ.setdefault("HM_DATA_DIR", tempfile.mkdtemp(prefix="hm-tests-"))
os.environ.pop("HM_LOG_CONSOLE", None)

from app.config import LauncherConfig  # noqa: E402
from app.context import build_context, parse_args  # noqa: E402
from app.tasks import ScheduledTaskDescriptor  # noqa: E402


class MemoryScheduler:
    """Programador de tareas en memoria con fallos configurables."""

    def __init__(self, fail_create_for: Tuple[str, ...] = (), fail_delete: bool = False):
        self.tasks: Dict[str, ScheduledTaskDescriptor] = {}
        self.fail_create_for = fail_create_for
        self.fail_delete = fail_delete
        self.created: List[ScheduledTaskDescriptor] = []

    def exists(self, name: str) -> bool:
        return name in self.tasks

    def create(self, task: ScheduledTaskDescriptor) -> bool:
        self.created.append(task)
        if task.principal in self.fail_create_for or "*" in self.fail_create_for:
            return False
        self.tasks[task.name] = task
        return True

    def delete(self, name: str) -> bool:
        if self.fail_delete:
            return False
        self.tasks.pop(name, None)
        return True


class ScriptedRunner:
    """
    Sustituto de run_quiet: registra cada argv y responde según `rules`
    (subcadena del comando → rc). Sin regla, `default_rc`.
    """

    def __init__(self, rules: Optional[Dict[str, int]] = None, default_rc: int = 0):
        self.rules = dict(rules or {})
        self.default_rc = default_rc
        self.calls: List[List[str]] = []

    def __call__(self, argv, **kwargs) -> Tuple[int, str, str]:
        argv = list(argv)
        self.calls.append(argv)
        text = " ".join(argv)
        for needle, rc in self.rules.items():
            if needle in text:
                return rc, "", "" if rc == 0 else "scripted failure"
        return self.default_rc, "", ""

    def ran(self, needle: str) -> bool:
        return any(needle in " ".join(c) for c in self.calls)


def write_payload_zip(dest: Path, entry_name: str = "Maintenance.ps1",
                      top: str = "Maint-main", extra: Optional[Dict[str, bytes]] = None) -> Path:
    dest.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(dest, "w") as zf:
        if entry_name:
            zf.writestr(f"{top}/{entry_name}", "exit 0\n")
        zf.writestr(f"{top}/README.md", "payload\n")
        for name, data in (extra or {}).items():
            zf.writestr(f"{top}/{name}", data)
    return dest


class FakeDownloader:
    def __init__(self, writer: Optional[Callable[[Path], None]] = None, error: Optional[Exception] = None):
        self.writer = writer or (lambda p: write_payload_zip(p))
        self.error = error
        self.calls: List[Tuple[str, Path, float]] = []

    def __call__(self, url: str, dest: Path, timeout: float) -> None:
        self.calls.append((url, Path(dest), timeout))
        if self.error is not None:
            raise self.error
        self.writer(Path(dest))


@pytest.fixture
def cfg() -> LauncherConfig:
    return LauncherConfig()


@pytest.fixture
def scheduler() -> MemoryScheduler:
    return MemoryScheduler()


@pytest.fixture
def make_ctx(tmp_path: Path):
    def _make(argv=(), *, resume_task_present=False, workdir: Optional[Path] = None, **overrides):
        args, _ = parse_args(list(argv))
        params = dict(
            launcher_path=tmp_path / "run.py",
            workdir=workdir or tmp_path,
            log_file=str(tmp_path / "launcher.log"),
            elevated=True,
            os_version="10.0.19045",
            runtime_version="5.1.19041.1",
            resume_task_present=resume_task_present,
            user="operator",
            argv=list(argv),
        )
        params.update(overrides)
        return build_context(args, **params)

    return _make
