# app/tasks.py: tarea periódica y tarea de reanudación (Programador de tareas)
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Tuple

from app.config import LauncherConfig
from app.context import FLAG_RESUME_ATTEMPT
from app.errors import StepResult
from app.logs import get_logger
from utils.paths import launcher_command
from utils.runtime import command_line, is_service_account
from utils.winproc import Runner, run_quiet

log = get_logger("tasks")

PRINCIPAL_SYSTEM = "SYSTEM"
RUN_LEVEL_HIGHEST = "HIGHEST"


class TriggerKind(str, Enum):
    PERIODIC = "periodic"      # mensual
    ON_LOGON = "on-next-logon"


@dataclass(frozen=True)
class ScheduledTaskDescriptor:
    name: str
    trigger: TriggerKind
    command: Tuple[str, ...]
    run_level: str = RUN_LEVEL_HIGHEST
    principal: str = PRINCIPAL_SYSTEM
    monthly_day: int = 1
    start_time: str = "03:00"
    delay_seconds: int = 0


class TaskScheduler(Protocol):
    def exists(self, name: str) -> bool: ...
    def create(self, task: ScheduledTaskDescriptor) -> bool: ...
    def delete(self, name: str) -> bool: ...


def _delay_arg(seconds: int) -> str:
    # schtasks /DELAY usa mmmm:ss
    seconds = max(0, int(seconds))
    return f"{seconds // 60:04d}:{seconds % 60:02d}"


class SchtasksScheduler:
    """Implementación real sobre schtasks.exe (sin ventana)."""

    def __init__(self, runner: Optional[Runner] = None):
        self._run = runner or run_quiet

    def build_create_argv(self, task: ScheduledTaskDescriptor) -> list:
        argv = ["schtasks", "/Create", "/TN", task.name, "/TR", command_line(task.command)]
        if task.trigger is TriggerKind.PERIODIC:
            argv += ["/SC", "MONTHLY", "/D", str(task.monthly_day), "/ST", task.start_time]
        else:
            argv += ["/SC", "ONLOGON"]
            if task.delay_seconds:
                argv += ["/DELAY", _delay_arg(task.delay_seconds)]
        argv += ["/RL", task.run_level, "/RU", task.principal]
        if task.principal.upper() != PRINCIPAL_SYSTEM:
            # Cuenta de usuario sin contraseña: solo con sesión iniciada
            argv.append("/IT")
        argv.append("/F")
        return argv

    def exists(self, name: str) -> bool:
        rc, _out, _err = self._run(["schtasks", "/Query", "/TN", name], timeout=30)
        return rc == 0

    def create(self, task: ScheduledTaskDescriptor) -> bool:
        rc, out, err = self._run(self.build_create_argv(task), timeout=60)
        if rc != 0:
            log.warning("schtasks /Create %s rc=%s: %s", task.name, rc, (err or out)[-300:])
        return rc == 0

    def delete(self, name: str) -> bool:
        if not self.exists(name):
            return True
        rc, out, err = self._run(["schtasks", "/Delete", "/TN", name, "/F"], timeout=30)
        if rc != 0:
            log.warning("schtasks /Delete %s rc=%s: %s", name, rc, (err or out)[-300:])
        return rc == 0


class TaskRegistrar:
    """
    Registra la tarea periódica (idempotente) y gestiona la tarea de reanudación
    (como mucho una; se borra antes de crear y al consumirse).
    """

    def __init__(self, scheduler: TaskScheduler, cfg: LauncherConfig,
                 launcher: Path, user: str):
        self.scheduler = scheduler
        self.cfg = cfg
        self.launcher = Path(launcher)
        # Cuenta de máquina (HOST$) o SYSTEM: la reanudación se registra como SYSTEM, sin /IT
        self.user = PRINCIPAL_SYSTEM if is_service_account(user) else user

    # --- descriptores ----------------------------------------------------------
    def periodic_descriptor(self, principal: str = PRINCIPAL_SYSTEM) -> ScheduledTaskDescriptor:
        return ScheduledTaskDescriptor(
            name=self.cfg.periodic_task_name,
            trigger=TriggerKind.PERIODIC,
            command=tuple(launcher_command(["--no-pause"], self.launcher)),
            principal=principal,
            monthly_day=self.cfg.monthly_day,
            start_time=self.cfg.start_time,
        )

    def resume_descriptor(self, attempt: int) -> ScheduledTaskDescriptor:
        # Reanudación en la sesión interactiva, con retardo para que el escritorio se asiente
        args = ["--no-pause", FLAG_RESUME_ATTEMPT, str(attempt)]
        return ScheduledTaskDescriptor(
            name=self.cfg.resume_task_name,
            trigger=TriggerKind.ON_LOGON,
            command=tuple(launcher_command(args, self.launcher)),
            principal=self.user,
            delay_seconds=self.cfg.resume_delay_seconds,
        )

    # --- tarea periódica ----------------------------------------------------------
    def ensure_periodic_task(self) -> StepResult:
        name = self.cfg.periodic_task_name
        if self.scheduler.exists(name):
            log.info("Tarea periódica '%s' ya registrada.", name)
            return StepResult.success("present")

        if self.scheduler.create(self.periodic_descriptor(PRINCIPAL_SYSTEM)):
            log.info("Tarea periódica '%s' creada (SYSTEM, mensual día %s %s).",
                     name, self.cfg.monthly_day, self.cfg.start_time)
            return StepResult.success("created", PRINCIPAL_SYSTEM)

        log.warning("No se pudo crear '%s' como SYSTEM; reintento como %s.", name, self.user)
        if self.user != PRINCIPAL_SYSTEM and self.scheduler.create(self.periodic_descriptor(self.user)):
            log.info("Tarea periódica '%s' creada como %s.", name, self.user)
            return StepResult.success("created", self.user)

        log.warning("Tarea periódica '%s' NO registrada; sigo sin ella.", name)
        return StepResult.failure("create-failed", name)

    # --- tarea de reanudación ---------------------------------------------------
    def resume_task_present(self) -> bool:
        return self.scheduler.exists(self.cfg.resume_task_name)

    def remove_resume_task(self) -> StepResult:
        name = self.cfg.resume_task_name
        if not self.scheduler.exists(name):
            return StepResult.success("absent")
        if self.scheduler.delete(name):
            log.info("Tarea de reanudación '%s' eliminada.", name)
            return StepResult.success("deleted")
        log.warning("No se pudo eliminar la tarea de reanudación '%s'.", name)
        return StepResult.failure("delete-failed", name)

    def register_resume_task(self, attempt: int) -> StepResult:
        """Borra cualquier tarea previa y crea UNA nueva (ONLOGON + retardo)."""
        removed = self.remove_resume_task()
        if not removed.ok:
            return StepResult.failure("stale-resume-task", removed.detail)
        task = self.resume_descriptor(attempt)
        if not self.scheduler.create(task):
            return StepResult.failure("create-failed", task.name)
        log.info("Tarea de reanudación '%s' creada (intento %s, retardo %ss, usuario %s).",
                 task.name, attempt, task.delay_seconds, task.principal)
        return StepResult.success("created", task.name)

