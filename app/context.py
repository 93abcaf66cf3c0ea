# app/context.py: hechos inmutables de una invocación del lanzador
from __future__ import annotations
import argparse
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

# Marcadores de línea de comandos (los comparten tareas y relanzados)
FLAG_ELEVATED = "--elevated"
FLAG_AFTER_RUNTIME_INSTALL = "--after-runtime-install"
FLAG_PAYLOAD_PATH = "--payload-path"
FLAG_RESUME_ATTEMPT = "--resume-attempt"


class InvocationReason(str, Enum):
    NORMAL = "normal"
    RESUME_AFTER_REBOOT = "post-reboot-resume"
    RUNTIME_RESTART = "post-runtime-install-restart"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hostmaint", description="Lanzador de mantenimiento desatendido")
    p.add_argument(FLAG_ELEVATED, action="store_true", help="Uso interno: proceso ya relanzado con UAC")
    p.add_argument(FLAG_AFTER_RUNTIME_INSTALL, action="store_true",
                   help="Uso interno: relanzado tras instalar pwsh (no reinstalar)")
    p.add_argument(FLAG_PAYLOAD_PATH, metavar="PATH", default=None,
                   help="Punto de entrada del payload ya resuelto en una etapa anterior")
    p.add_argument(FLAG_RESUME_ATTEMPT, metavar="N", type=int, default=0,
                   help="Uso interno: número de reanudaciones tras reinicio")
    p.add_argument("--no-pause", action="store_true", help="No esperar confirmación en errores fatales")
    p.add_argument("--skip-dependencies", action="store_true", help="Diagnóstico: omite el pipeline de dependencias")
    p.add_argument("--log-level", metavar="LEVEL", default=None, help="DEBUG/INFO/WARNING…")
    return p


def parse_args(argv: Sequence[str]) -> Tuple[argparse.Namespace, List[str]]:
    """Parsea argv[1:]; los argumentos desconocidos se devuelven aparte (no son fatales)."""
    return build_parser().parse_known_args(list(argv))


@dataclass(frozen=True)
class RunContext:
    """
    Se crea una vez al arrancar (ya elevado) y se pasa a cada componente.
    Nunca se persiste.
    """
    launcher_path: Path
    workdir: Path
    log_file: str
    elevated: bool
    os_version: str
    runtime_version: str
    reason: InvocationReason
    user: str = ""
    resume_attempt: int = 0
    carried_payload: Optional[Path] = None
    no_pause: bool = False
    skip_dependencies: bool = False
    argv: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def after_runtime_install(self) -> bool:
        return self.reason is InvocationReason.RUNTIME_RESTART

    def relaunch_args(self, *extra: str) -> List[str]:
        """
        Argumentos para volver a invocar el lanzador conservando las opciones de usuario
        (sin los marcadores internos, que decide quien relanza).
        """
        out: List[str] = []
        if self.no_pause:
            out.append("--no-pause")
        if self.skip_dependencies:
            out.append("--skip-dependencies")
        if self.carried_payload:
            out += [FLAG_PAYLOAD_PATH, str(self.carried_payload)]
        out += list(extra)
        return out


def detect_reason(args: argparse.Namespace, resume_task_present: bool) -> InvocationReason:
    """
    La presencia de la tarea de reanudación es la única señal durable de que
    esta ejecución continúa otra interrumpida por un reinicio.
    """
    if getattr(args, "after_runtime_install", False):
        return InvocationReason.RUNTIME_RESTART
    if resume_task_present:
        return InvocationReason.RESUME_AFTER_REBOOT
    return InvocationReason.NORMAL


def build_context(args: argparse.Namespace, *,
                  launcher_path: Path,
                  workdir: Path,
                  log_file: str,
                  elevated: bool,
                  os_version: str,
                  runtime_version: str,
                  resume_task_present: bool,
                  user: str = "",
                  argv: Sequence[str] = ()) -> RunContext:
    carried = Path(args.payload_path) if getattr(args, "payload_path", None) else None
    return RunContext(
        launcher_path=Path(launcher_path),
        workdir=Path(workdir),
        log_file=str(log_file),
        elevated=bool(elevated),
        os_version=os_version,
        runtime_version=runtime_version,
        reason=detect_reason(args, resume_task_present),
        user=user,
        resume_attempt=max(0, int(getattr(args, "resume_attempt", 0) or 0)),
        carried_payload=carried,
        no_pause=bool(getattr(args, "no_pause", False)),
        skip_dependencies=bool(getattr(args, "skip_dependencies", False)),
        argv=tuple(argv),
    )
