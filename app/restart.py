# app/restart.py: ¿hace falta reiniciar? Si sí: tarea de reanudación + reinicio.
#
# Señales (conjunto único, evaluado una vez por ejecución):
#   1) Asesora: Windows Update Agent (COM vía pywin32), actualizaciones con RebootRequired=1
#   2) Marcador: HKLM\...\WindowsUpdate\Auto Update\RebootRequired (solo si 1 no está disponible)
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from app.config import LauncherConfig
from app.errors import StepResult
from app.logs import get_logger
from app.tasks import TaskRegistrar
from utils.winproc import Runner, run_quiet

# == Opcionales (pywin32). Si faltan, la fuente asesora se considera no disponible.
try:
    import pythoncom  # type: ignore
    import win32com.client  # type: ignore
except Exception:
    pythoncom = win32com = None

log = get_logger("restart")

REBOOT_MARKER_KEY = r"SOFTWARE\Microsoft\Windows\CurrentVersion\WindowsUpdate\Auto Update\RebootRequired"
WUA_CRITERIA = "RebootRequired=1"


class ResolverState(str, Enum):
    CHECKING = "CHECKING"
    RESTART_REQUIRED = "RESTART_REQUIRED"
    PROCEED = "PROCEED"


class RestartReason(str, Enum):
    NONE = "none"
    PENDING_UPDATES = "pending-updates"
    REBOOT_MARKER = "reboot-marker"


@dataclass(frozen=True)
class RestartDecision:
    required: bool
    reason: RestartReason
    source: str = ""


def transition(state: ResolverState, decision: RestartDecision) -> ResolverState:
    """Única transición: CHECKING → RESTART_REQUIRED | PROCEED."""
    if state is ResolverState.CHECKING:
        return ResolverState.RESTART_REQUIRED if decision.required else ResolverState.PROCEED
    return state


# --- Sondas ---------------------------------------------------------------------
def advisory_probe() -> Optional[int]:
    """
    Nº de actualizaciones que exigen reinicio según el Windows Update Agent.
    None → la fuente no está disponible (no es un error: se baja al marcador).
    """
    if not (pythoncom and win32com):
        return None
    try:
        pythoncom.CoInitialize()
        session = win32com.client.Dispatch("Microsoft.Update.Session")
        searcher = session.CreateUpdateSearcher()
        result = searcher.Search(WUA_CRITERIA)
        return int(result.Updates.Count)
    except Exception as e:
        log.info("Windows Update Agent no disponible (%s); uso el marcador de registro.", e)
        return None
    finally:
        try:
            pythoncom.CoUninitialize()
        except Exception:
            pass


def marker_probe() -> bool:
    """True si el subsistema de actualizaciones dejó la clave RebootRequired."""
    try:
        import winreg
    except ImportError:
        return False
    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, REBOOT_MARKER_KEY):
            return True
    except FileNotFoundError:
        return False
    except OSError as e:
        log.warning("No se pudo leer el marcador de reinicio: %s", e)
        return False


def request_reboot(grace_seconds: int, runner: Optional[Runner] = None) -> StepResult:
    """Pide el reinicio del host con cuenta atrás corta."""
    argv = ["shutdown", "/r", "/t", str(max(0, int(grace_seconds))),
            "/c", "HostMaint: reinicio para completar actualizaciones pendientes"]
    rc, out, err = (runner or run_quiet)(argv, timeout=30)
    return StepResult.from_rc(rc, out, err)


# --- Resolver ---------------------------------------------------------------------
class RestartResolver:

    def __init__(self, registrar: TaskRegistrar, cfg: LauncherConfig, *,
                 resume_attempt: int = 0,
                 advisory: Callable[[], Optional[int]] = advisory_probe,
                 marker: Callable[[], bool] = marker_probe,
                 reboot: Callable[[int], StepResult] = request_reboot):
        self.registrar = registrar
        self.cfg = cfg
        self.resume_attempt = resume_attempt
        self._advisory = advisory
        self._marker = marker
        self._reboot = reboot
        self.state = ResolverState.CHECKING
        self.decision: Optional[RestartDecision] = None

    def decide(self) -> RestartDecision:
        """Se calcula en fresco en cada ejecución; nunca se cachea."""
        pending = self._advisory()
        if pending is not None:
            log.info("Windows Update Agent: %d actualización(es) requieren reinicio.", pending)
            if pending > 0:
                return RestartDecision(True, RestartReason.PENDING_UPDATES, "advisory")
            return RestartDecision(False, RestartReason.NONE, "advisory")

        if self._marker():
            log.info("Marcador RebootRequired presente.")
            return RestartDecision(True, RestartReason.REBOOT_MARKER, "marker")
        return RestartDecision(False, RestartReason.NONE, "marker")

    def resolve(self) -> ResolverState:
        """
        PROCEED → seguir con el pipeline (sin tarea de reanudación pendiente).
        RESTART_REQUIRED → reinicio solicitado; el llamador debe terminar con 0.
        """
        self.state = ResolverState.CHECKING
        self.decision = self.decide()
        self.state = transition(self.state, self.decision)
        log.info("Decisión de reinicio: %s (motivo=%s, fuente=%s)",
                 self.state.value, self.decision.reason.value, self.decision.source)

        if self.state is ResolverState.PROCEED:
            self.registrar.remove_resume_task()
            return self.state

        if self.resume_attempt >= self.cfg.max_resume_reboots:
            log.warning("Sigue pendiente un reinicio tras %d reanudaciones; continúo sin reiniciar.",
                        self.resume_attempt)
            return self._proceed_without_reboot()

        created = self.registrar.register_resume_task(self.resume_attempt + 1)
        if not created.ok:
            # Reiniciar sin forma de reanudar dejaría el host abandonado
            log.error("No se pudo crear la tarea de reanudación (%s); continúo sin reiniciar.",
                      created.reason)
            return self._proceed_without_reboot()

        rebooted = self._reboot(self.cfg.reboot_grace_seconds)
        if not rebooted.ok:
            log.error("La orden de reinicio falló (%s: %s); continúo sin reiniciar.",
                      rebooted.reason, rebooted.detail)
            return self._proceed_without_reboot()

        log.info("Reinicio solicitado en %ss; la ejecución seguirá en el próximo inicio de sesión.",
                 self.cfg.reboot_grace_seconds)
        return self.state

    def _proceed_without_reboot(self) -> ResolverState:
        self.registrar.remove_resume_task()
        self.state = ResolverState.PROCEED
        return self.state
