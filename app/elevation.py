# app/elevation.py: guardia de privilegios (UAC)
# Dos sondas independientes; basta con que UNA confirme la elevación.
# Si ninguna confirma, se relanza con "runas" UNA sola vez (marcador --elevated).
from __future__ import annotations
import ctypes
import os
import subprocess
from enum import Enum
from typing import Callable, List, Optional, Sequence

from app.context import FLAG_ELEVATED
from app.errors import ExitCode, LauncherFatal
from app.logs import get_logger
from utils.paths import launcher_command
from utils.winproc import Runner, run_quiet

log = get_logger("elevation")

Probe = Callable[[], bool]

STAGE = "privilege-guard"


class ElevationStatus(Enum):
    ELEVATED = "elevated"
    RELAUNCHED = "relaunched"


# --- Sondas --------------------------------------------------------------------
def session_probe(runner: Optional[Runner] = None) -> bool:
    """
    'net session' solo responde rc=0 con un token de administrador.
    """
    rc, _out, _err = (runner or run_quiet)(["net", "session"], timeout=15)
    return rc == 0


def role_probe() -> bool:
    """Pertenencia efectiva al rol Administradores (shell32.IsUserAnAdmin)."""
    try:
        return ctypes.windll.shell32.IsUserAnAdmin() != 0
    except Exception:
        return False


def is_elevated(probes: Optional[Sequence[Probe]] = None) -> bool:
    probes = list(probes) if probes is not None else [session_probe, role_probe]
    for probe in probes:
        name = getattr(probe, "__name__", repr(probe))
        try:
            if probe():
                log.debug("Elevación confirmada por %s", name)
                return True
        except Exception as e:
            # Una sonda bloqueada por política no invalida la otra
            log.debug("Sonda %s falló: %s", name, e)
    return False


# --- Relanzado -------------------------------------------------------------------
def relaunch_elevated(command: Sequence[str], cwd: Optional[str] = None) -> bool:
    """
    Lanza `command` con el verbo 'runas'. True si ShellExecuteW aceptó (rc > 32).
    """
    exe, *rest = list(command)
    try:
        params = subprocess.list2cmdline(rest)
    except Exception:
        params = " ".join(rest)
    try:
        # SW_SHOWNORMAL = 1
        rc = ctypes.windll.shell32.ShellExecuteW(None, "runas", exe, params, cwd or os.getcwd(), 1)
    except Exception as e:
        log.error("ShellExecuteW runas no disponible: %s", e)
        return False
    if rc <= 32:
        log.error("ShellExecuteW runas rechazado (rc=%s); ¿UAC cancelado?", rc)
        return False
    return True


def ensure_elevated(argv: Sequence[str], *,
                    probes: Optional[Sequence[Probe]] = None,
                    relaunch: Callable[[Sequence[str]], bool] = relaunch_elevated,
                    build_command: Callable[[Sequence[str]], List[str]] = launcher_command) -> ElevationStatus:
    """
    ELEVATED → seguir con el pipeline.
    RELAUNCHED → el proceso elevado ya está en marcha; el actual debe salir con 0.
    Nunca continúa sin elevación: si no puede relanzar, LauncherFatal.
    """
    if is_elevated(probes):
        log.info("Permisos de administrador confirmados.")
        return ElevationStatus.ELEVATED

    args = list(argv)
    if FLAG_ELEVATED in args:
        # Ya hubo un salto de elevación y seguimos sin privilegios: cortar el bucle
        raise LauncherFatal(ExitCode.ELEVATION_FAILED, STAGE,
                            "El proceso relanzado con UAC sigue sin privilegios de administrador.")

    command = build_command(args + [FLAG_ELEVATED])
    log.info("Sin elevación: relanzando con UAC → %s", command)
    if not relaunch(command):
        raise LauncherFatal(ExitCode.ELEVATION_FAILED, STAGE,
                            "No se pudo relanzar el lanzador con privilegios elevados.",
                            path=command[0] if command else None)
    return ElevationStatus.RELAUNCHED
