# utils/runtime.py: información del host y pequeños helpers de proceso
from __future__ import annotations
import getpass
import platform
import re
import sys
from pathlib import Path
from typing import Optional, Tuple

from app.logs import get_logger
from utils.winproc import Runner, run_powershell

# == Opcionales (pywin32): usuario de consola y versión de ejecutables
try:
    import win32api  # type: ignore
    import win32ts  # type: ignore
except Exception:
    win32api = win32ts = None

log = get_logger("runtime")

SYSTEM_ACCOUNT = "SYSTEM"
_NO_CONSOLE_SESSION = 0xFFFFFFFF
_VERSION_RE = re.compile(r"""^__version__\s*=\s*['"]([^'"]+)['"]""", re.M)

# Windows 10 = 10.0.10240; Windows PowerShell mínimo 5.1
MIN_WINDOWS_BUILD = 10240
MIN_LEGACY_PS = (5, 1)


def quote(s: str) -> str:
    """Quote simple para rutas con espacios en comandos de schtasks / TR."""
    s = str(s)
    if " " in s or "(" in s or ")" in s:
        if not (s.startswith('"') and s.endswith('"')):
            return f'"{s}"'
    return s


def command_line(argv) -> str:
    """argv → cadena para /TR de schtasks (cada elemento citado si hace falta)."""
    return " ".join(quote(a) for a in argv)


def _version_tuple(v: str) -> Tuple[int, ...]:
    parts = []
    for tok in re.split(r"[.\-+ ]", (v or "").strip()):
        if not tok.isdigit():
            break
        parts.append(int(tok))
    return tuple(parts)


def host_os_version() -> str:
    """Versión del SO ('10.0.19045' en Windows)."""
    try:
        if sys.platform == "win32":
            return platform.version()
        return platform.release()
    except Exception:
        return ""


def legacy_runtime_version(runner: Optional[Runner] = None) -> str:
    """Versión de Windows PowerShell ('' si no se pudo consultar)."""
    rc, out, _err = run_powershell("$PSVersionTable.PSVersion.ToString()", timeout=30, runner=runner)
    if rc != 0:
        return ""
    return (out or "").strip().splitlines()[-1].strip() if out else ""


def check_host_compatible(os_version: str, ps_version: str) -> Optional[str]:
    """
    None si el host es compatible; si no, el motivo.
    """
    osv = _version_tuple(os_version)
    if len(osv) < 3 or osv[0] < 10 or osv[2] < MIN_WINDOWS_BUILD:
        return f"Windows {os_version or '?'} no soportado (se requiere Windows 10 o superior)"
    psv = _version_tuple(ps_version)
    if len(psv) < 2 or psv[:2] < MIN_LEGACY_PS:
        return f"Windows PowerShell {ps_version or '?'} no soportado (se requiere 5.1 o superior)"
    return None


# --- Título del proceso (si setproctitle está disponible) ---------------------
def set_process_title(title: str) -> None:
    try:
        import setproctitle
        setproctitle.setproctitle(title)
    except Exception:
        pass


# --- Identidad del usuario -----------------------------------------------------
def is_service_account(name: str) -> bool:
    """SYSTEM o cuenta de máquina (HOST$): no valen como principal interactivo."""
    n = (name or "").strip()
    return not n or n.upper() == SYSTEM_ACCOUNT or n.endswith("$")


def _console_user() -> str:
    if win32ts is None:
        return ""
    try:
        sid = win32ts.WTSGetActiveConsoleSessionId()
        if sid == _NO_CONSOLE_SESSION:
            return ""
        return win32ts.WTSQuerySessionInformation(
            win32ts.WTS_CURRENT_SERVER_HANDLE, sid, win32ts.WTSUserName) or ""
    except Exception as e:
        log.debug("Usuario de consola no disponible: %s", e)
        return ""


def current_user() -> str:
    """
    Usuario que debe recibir la tarea de reanudación.
    Bajo SYSTEM, getpass devuelve HOST$: se usa el usuario de la consola activa
    y, si no hay sesión, SYSTEM.
    """
    try:
        name = getpass.getuser()
    except Exception:
        name = ""
    if not is_service_account(name):
        return name
    console = _console_user()
    if console and not is_service_account(console):
        return console
    return SYSTEM_ACCOUNT


# --- Versión del lanzador ------------------------------------------------------
def launcher_version(path) -> Tuple[int, ...]:
    """
    Versión embebida del lanzador: recurso de versión en .exe (pywin32),
    `__version__ = "x.y.z"` en scripts. () si no se puede leer.
    """
    p = Path(path)
    if p.suffix.lower() == ".exe":
        if win32api is None:
            return ()
        try:
            info = win32api.GetFileVersionInfo(str(p), "\\")
            ms, ls = info["FileVersionMS"], info["FileVersionLS"]
            return (ms >> 16, ms & 0xFFFF, ls >> 16, ls & 0xFFFF)
        except Exception as e:
            log.debug("Sin recurso de versión en %s: %s", p, e)
            return ()
    try:
        m = _VERSION_RE.search(p.read_text(encoding="utf-8", errors="replace"))
    except OSError:
        return ()
    return _version_tuple(m.group(1)) if m else ()
