# app/maintenance.py: HostMaint
# Secuencia completa del lanzador:
#   privilegios → tarea periódica → reinicio pendiente → dependencias
#   → payload (adquirir) → payload (lanzar) → auto-actualización diferida
# Solo la guardia de privilegios y la adquisición/lanzamiento del payload son fatales.
from __future__ import annotations
import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from app.config import LauncherConfig
from app.context import RunContext, build_context, parse_args
from app.defender import add_exclusions
from app.dependencies import DependencyCatalog
from app.elevation import ElevationStatus, Probe, ensure_elevated, relaunch_elevated
from app.errors import ExitCode, LauncherFatal, StepResult
from app.logs import get_log_file, get_logger, log_timing
from app.payload import Downloader, PayloadAcquirer, download_file
from app.payload_runner import launch_payload, probe_runtime
from app.pipeline import DependencyPipeline
from app.restart import ResolverState, RestartResolver, advisory_probe, marker_probe, request_reboot
from app.runlock import RunLock
from app.selfupdate import SelfUpdate
from app.tasks import SchtasksScheduler, TaskRegistrar, TaskScheduler
from utils.paths import get_data_dir, get_root_dir, launcher_command, launcher_path
from utils.runtime import (
    check_host_compatible,
    current_user,
    host_os_version,
    launcher_version,
    legacy_runtime_version,
)
from utils.winproc import Runner, run_detached, run_quiet, run_wait

log = get_logger("launcher")


def _interactive_console() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except Exception:
        return False


def _pause(message: str) -> None:
    try:
        input(message)
    except (EOFError, KeyboardInterrupt):
        pass


@dataclass
class Host:
    """
    Colaboradores externos del lanzador. Por defecto, los reales de Windows;
    los tests sustituyen los que necesiten.
    """
    runner: Runner = run_quiet
    scheduler: Optional[TaskScheduler] = None
    elevation_probes: Optional[Sequence[Probe]] = None
    relaunch_elevated: Callable[[Sequence[str]], bool] = relaunch_elevated
    relaunch_detached: Callable[[List[str]], bool] = run_detached
    advisory: Callable[[], Optional[int]] = advisory_probe
    marker: Callable[[], bool] = marker_probe
    reboot: Optional[Callable[[int], StepResult]] = None
    downloader: Downloader = download_file
    run_payload: Callable[..., int] = run_wait
    which: Callable[[str], Optional[str]] = shutil.which
    os_version: Callable[[], str] = host_os_version
    runtime_version: Optional[Callable[[], str]] = None
    add_exclusions: Optional[Callable[[Sequence[Path]], StepResult]] = None
    interactive: Callable[[], bool] = _interactive_console
    pause: Callable[[str], None] = _pause
    user: Callable[[], str] = current_user
    launcher_version: Callable[[Path], tuple] = launcher_version
    program_files: Path = field(default_factory=lambda: Path(os.environ.get("ProgramFiles", r"C:\Program Files")))
    system_root: Path = field(default_factory=lambda: Path(os.environ.get("SystemRoot", r"C:\Windows")))

    def get_scheduler(self) -> TaskScheduler:
        if self.scheduler is None:
            self.scheduler = SchtasksScheduler(self.runner)
        return self.scheduler

    def get_reboot(self) -> Callable[[int], StepResult]:
        if self.reboot is not None:
            return self.reboot
        return lambda grace: request_reboot(grace, runner=self.runner)

    def get_runtime_version(self) -> str:
        if self.runtime_version is not None:
            return self.runtime_version()
        return legacy_runtime_version(runner=self.runner)

    def exclude(self, paths: Sequence[Path]) -> StepResult:
        if self.add_exclusions is not None:
            return self.add_exclusions(paths)
        return add_exclusions(paths, runner=self.runner)


def _startup_banner(ctx: RunContext) -> None:
    try:
        import psutil  # type: ignore
        ppid = psutil.Process().ppid()
    except Exception:
        ppid = 0
    log.info("------------------------------------------------")
    log.info("LANZADOR DE MANTENIMIENTO INICIADO")
    log.info("------------------------------------------------")
    log.info("pid=%s ppid=%s user=%s reason=%s attempt=%s",
             os.getpid(), ppid, ctx.user or "?", ctx.reason.value, ctx.resume_attempt)
    log.info("launcher=%s workdir=%s", ctx.launcher_path, ctx.workdir)
    log.info("os=%s windows_powershell=%s", ctx.os_version or "?", ctx.runtime_version or "?")


def _run(argv: Sequence[str], cfg: LauncherConfig, workdir: Path, host: Host,
         launcher: Path, data_dir: Path) -> int:
    args, unknown = parse_args(argv)
    if unknown:
        log.warning("Argumentos ignorados: %s", unknown)

    # 1) Guardia de privilegios
    status = ensure_elevated(argv, probes=host.elevation_probes, relaunch=host.relaunch_elevated,
                             build_command=lambda a: launcher_command(a, launcher))
    if status is ElevationStatus.RELAUNCHED:
        log.info("Proceso no elevado termina; continúa la instancia elevada.")
        return ExitCode.OK

    registrar = TaskRegistrar(host.get_scheduler(), cfg, launcher, host.user())
    ctx = build_context(
        args,
        launcher_path=launcher,
        workdir=workdir,
        log_file=get_log_file(),
        elevated=True,
        os_version=host.os_version(),
        runtime_version=host.get_runtime_version(),
        resume_task_present=registrar.resume_task_present(),
        user=registrar.user,
        argv=argv,
    )
    _startup_banner(ctx)

    problem = check_host_compatible(ctx.os_version, ctx.runtime_version)
    if problem:
        raise LauncherFatal(ExitCode.INCOMPATIBLE_HOST, "host-check", problem)

    updater = SelfUpdate(ctx.launcher_path, version_of=host.launcher_version)
    updater.cleanup_leftovers()

    # 2) Tarea periódica (no fatal)
    registrar.ensure_periodic_task()

    # 3) Reinicio pendiente
    resolver = RestartResolver(registrar, cfg, resume_attempt=ctx.resume_attempt,
                               advisory=host.advisory, marker=host.marker, reboot=host.get_reboot())
    if resolver.resolve() is ResolverState.RESTART_REQUIRED:
        return ExitCode.OK

    lock = RunLock(data_dir / "launcher.lock") if cfg.single_instance_lock else None
    if lock is not None and not lock.acquire():
        log.warning("Ejecución concurrente detectada; salgo sin hacer nada.")
        return ExitCode.OK
    try:
        # 4) Dependencias (nunca aborta)
        if ctx.skip_dependencies:
            log.info("Pipeline de dependencias omitido (--skip-dependencies).")
        else:
            catalog = DependencyCatalog(ctx, cfg, runner=host.runner, relaunch=host.relaunch_detached,
                                        which=host.which, program_files=host.program_files,
                                        handover_lock=lock)
            with log_timing("pipeline de dependencias", log):
                report = DependencyPipeline(catalog.steps(), resume_after=catalog.resume_after()).run()
            if report.handed_over:
                return ExitCode.OK

        if cfg.defender_exclusions:
            host.exclude([ctx.workdir])

        # 5) Payload
        acquirer = PayloadAcquirer(ctx, cfg, downloader=host.downloader)
        entry = acquirer.resolve()
        updater.stage(acquirer.bundle)

        # 6) Lanzamiento
        runtime = probe_runtime(which=host.which, program_files=host.program_files,
                                system_root=host.system_root)
        if runtime is None:
            raise LauncherFatal(ExitCode.RUNTIME_UNAVAILABLE, "payload-launcher",
                                "No hay ningún runtime de PowerShell disponible (pwsh ni powershell).")
        outcome = launch_payload(ctx, entry, runtime=runtime, run=host.run_payload)

        # 7) Auto-actualización diferida
        updater.commit(outcome)
    finally:
        if lock is not None:
            lock.release()

    log.info("Lanzador terminado (payload rc=%s).", outcome.exit_status)
    return ExitCode.OK


def run_maintenance(argv: Sequence[str], cfg: LauncherConfig, *,
                    workdir: Optional[Path] = None,
                    host: Optional[Host] = None,
                    launcher: Optional[Path] = None,
                    data_dir: Optional[Path] = None) -> int:
    """
    Punto de entrada del lanzador (argv sin el nombre del programa).
    Devuelve el código de salida; los fatales se registran y, con consola
    interactiva, esperan confirmación antes de salir.
    """
    host = host or Host()
    argv = list(argv)
    try:
        return int(_run(argv, cfg,
                        Path(workdir) if workdir else get_root_dir(),
                        host,
                        Path(launcher) if launcher else launcher_path(),
                        Path(data_dir) if data_dir else get_data_dir()))
    except LauncherFatal as e:
        log.error("FATAL %s", e.describe())
        print(f"ERROR en la etapa '{e.stage}': {e.message}", flush=True)
        if e.path:
            print(f"  ruta: {e.path}", flush=True)
        if "--no-pause" not in argv and host.interactive():
            host.pause("Pulsa Intro para salir…")
        return int(e.code)
