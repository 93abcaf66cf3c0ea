# utils/winproc.py: HostMaint
# Ejecución de comandos sin ventana ni shell, con trazas y control de errores.

import subprocess
import os
import shlex
import time
from typing import Callable, List, Mapping, Optional, Tuple, Union
from app.logs import get_logger

log = get_logger("winproc")

# ---------------------------------------------------------------------------
# Constantes Windows (ocultar consola)
# ---------------------------------------------------------------------------
CREATE_NO_WINDOW = 0x08000000
DETACHED_PROCESS = 0x00000008
STARTF_USESHOWWINDOW = 0x00000001
SW_HIDE = 0

# Firma de los "runners" inyectables: argv -> (rc, stdout, stderr)
Runner = Callable[..., Tuple[int, str, str]]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _to_argv(args: Union[str, List[str]]) -> List[str]:
    """Convierte cadena a lista segura de argumentos (sin shell)."""
    if isinstance(args, str):
        return shlex.split(args)
    return list(args)


def _hidden_startup():
    si = None
    creationflags = 0
    if os.name == "nt":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= STARTF_USESHOWWINDOW
        si.wShowWindow = SW_HIDE
        creationflags = CREATE_NO_WINDOW
    return si, creationflags


# ---------------------------------------------------------------------------
# Ejecución sin consola
# ---------------------------------------------------------------------------
def run_quiet(args: Union[str, List[str]], *,
              timeout: Optional[float] = 30.0,
              text: bool = True) -> Tuple[int, str, str]:
    """
    Ejecuta un comando de forma silenciosa (sin ventana CMD).
    Devuelve (rc, stdout, stderr). Nunca lanza: los fallos de arranque
    se traducen a rc=1 y el timeout a rc=124.

    Ejemplo:
        rc, out, err = run_quiet(["schtasks", "/Query", "/TN", name])
    """
    argv = _to_argv(args)
    start = time.perf_counter()
    si, creationflags = _hidden_startup()

    try:
        proc = subprocess.run(
            argv,
            capture_output=True,
            text=text,
            encoding="utf-8" if text else None,
            errors="replace" if text else None,
            timeout=timeout,
            shell=False,
            startupinfo=si,
            creationflags=creationflags,
        )
        dt = (time.perf_counter() - start) * 1000
        log.debug("CMD rc=%d (%.1f ms) → %s", proc.returncode, dt, argv)
        return proc.returncode, (proc.stdout or "").strip(), (proc.stderr or "").strip()

    except subprocess.TimeoutExpired as e:
        dt = (time.perf_counter() - start) * 1000
        log.warning("CMD TIMEOUT (%.1f ms): %s", dt, argv)
        return 124, "", f"timeout: {e}"
    except Exception as e:
        dt = (time.perf_counter() - start) * 1000
        log.error("CMD ERROR (%.1f ms) %s: %s", dt, argv, e)
        return 1, "", f"error: {e}"


# =====================================================================
# PowerShell helpers (sin ventanas)
# =====================================================================
def run_powershell(cmd: str, *,
                   exe: str = "powershell",
                   timeout: Optional[float] = 120.0,
                   runner: Optional[Runner] = None) -> Tuple[int, str, str]:
    """
    Ejecuta un comando PowerShell sin abrir ventana.
    `exe` permite elegir entre Windows PowerShell ("powershell") y pwsh.
    Devuelve (rc, stdout, stderr).
    """
    argv = [exe, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", cmd]
    rc, out, err = (runner or run_quiet)(argv, timeout=timeout)
    log.debug("PS cmd rc=%s len_out=%d len_err=%d", rc, len(out or ""), len(err or ""))
    if rc != 0:
        log.debug("PowerShell rc=%d: %s", rc, (err or out or "").strip()[-300:])
    return rc, out, err


# ---------------------------------------------------------------------------
# Ejecución visible con espera (payload)
# ---------------------------------------------------------------------------
def run_wait(args: List[str], *,
             cwd: Optional[str] = None,
             env: Optional[Mapping[str, str]] = None) -> int:
    """
    Ejecuta y espera sin capturar salida (hereda la consola).
    Devuelve el código de salida del hijo. Los OSError se propagan
    para que el llamador distinga "no arrancó" de "terminó con error".
    """
    argv = _to_argv(args)
    log.debug("CMD WAIT → %s (cwd=%s)", argv, cwd)
    proc = subprocess.run(argv, cwd=cwd, env=dict(env) if env is not None else None, shell=False)
    return proc.returncode


# ---------------------------------------------------------------------------
# Ejecutar en segundo plano
# ---------------------------------------------------------------------------
def run_detached(args: Union[str, List[str]], *, cwd: Optional[str] = None) -> bool:
    """
    Ejecuta un proceso completamente separado (sin esperar a que termine).
    Devuelve True si el proceso se lanzó correctamente.
    """
    argv = _to_argv(args)
    creationflags = DETACHED_PROCESS if os.name == "nt" else 0

    try:
        subprocess.Popen(
            argv,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            stdin=subprocess.DEVNULL,
            cwd=cwd,
            shell=False,
            creationflags=creationflags,
        )
        log.debug("CMD DETACHED lanzado → %s", argv)
        return True
    except Exception as e:
        log.error("Error lanzando proceso detached: %s", e, exc_info=True)
        return False
