# app/payload_runner.py: lanza el payload con el mejor runtime disponible
from __future__ import annotations
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Tuple

from app.context import RunContext
from app.errors import ExitCode, LauncherFatal
from app.logs import get_logger
from utils.winproc import run_wait

log = get_logger("payload.run")

STAGE = "payload-launcher"

ENV_WORKDIR = "HM_WORKDIR"
ENV_LOG_FILE = "HM_LOG_FILE"


@dataclass(frozen=True)
class LaunchOutcome:
    exit_status: int
    duration: float
    runtime: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0


def probe_runtime(*, which: Callable[[str], Optional[str]] = shutil.which,
                  program_files: Path = Path(r"C:\Program Files"),
                  system_root: Path = Path(r"C:\Windows")) -> Optional[Tuple[str, Path]]:
    """
    ("pwsh", ruta) si el runtime moderno está disponible; si no, el Windows PowerShell
    que trae el sistema. None si no hay ninguno.
    """
    modern = which("pwsh")
    if modern:
        return "pwsh", Path(modern)
    cand = Path(program_files) / "PowerShell" / "7" / "pwsh.exe"
    if cand.is_file():
        return "pwsh", cand

    legacy = which("powershell")
    if legacy:
        return "powershell", Path(legacy)
    cand = Path(system_root) / "System32" / "WindowsPowerShell" / "v1.0" / "powershell.exe"
    if cand.is_file():
        return "powershell", cand
    return None


def payload_env(ctx: RunContext, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Entorno del hijo: el heredado + directorio de trabajo y log publicados."""
    env = dict(os.environ if base is None else base)
    env[ENV_WORKDIR] = str(ctx.workdir)
    env[ENV_LOG_FILE] = str(ctx.log_file)
    return env


def launch_payload(ctx: RunContext, entry: Path, *,
                   runtime: Optional[Tuple[str, Path]] = None,
                   run: Callable[..., int] = run_wait,
                   base_env: Optional[Mapping[str, str]] = None,
                   clock: Callable[[], float] = time.monotonic) -> LaunchOutcome:
    """
    Ejecuta el payload y devuelve su resultado. Un código != 0 se informa pero
    no se reintenta ni se deshace nada.
    """
    entry = Path(entry)
    if not entry.is_file():
        raise LauncherFatal(ExitCode.ENTRY_POINT_MISSING, STAGE,
                            "El punto de entrada resuelto ya no existe.", path=str(entry))

    rt = runtime or probe_runtime()
    if rt is None:
        raise LauncherFatal(ExitCode.RUNTIME_UNAVAILABLE, STAGE,
                            "No hay ningún runtime de PowerShell disponible (pwsh ni powershell).")
    name, exe = rt

    argv = [str(exe), "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", str(entry)]
    log.info("Lanzando payload con %s: %s", name, argv)
    t0 = clock()
    try:
        rc = run(argv, cwd=str(entry.parent), env=payload_env(ctx, base_env))
    except OSError as e:
        raise LauncherFatal(ExitCode.LAUNCH_FAILED, STAGE, f"No se pudo arrancar el payload: {e}",
                            path=str(exe))
    outcome = LaunchOutcome(int(rc), clock() - t0, name)

    if outcome.succeeded:
        log.info("Payload terminado OK en %.1fs.", outcome.duration)
    else:
        log.warning("Payload terminado con código %s en %.1fs.", outcome.exit_status, outcome.duration)
    return outcome
