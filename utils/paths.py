# utils/paths.py
from __future__ import annotations
import sys
from pathlib import Path
from typing import List, Optional, Sequence

ENTRY_SCRIPT = "run.py"


def is_frozen() -> bool:
    """True si corremos como ejecutable congelado (PyInstaller y similares)."""
    return bool(getattr(sys, "frozen", False))


def get_root_dir() -> Path:
    """
    Carpeta del lanzador: junto al .exe si está congelado, raíz del repo si no.
    """
    if is_frozen():
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent.parent


def launcher_path() -> Path:
    """
    Ruta más fiable al "ejecutable" del propio lanzador.
    Congelado → el .exe; en fuente → run.py (el script de entrada real si existe).
    """
    if is_frozen():
        return Path(sys.executable).resolve()
    try:
        argv0 = Path(sys.argv[0]).resolve()
        if argv0.name == ENTRY_SCRIPT and argv0.exists():
            return argv0
    except Exception:
        pass
    return get_root_dir() / ENTRY_SCRIPT


def interpreter_path() -> Path:
    """Intérprete para relanzar en modo fuente (python.exe, nunca pythonw: queremos consola)."""
    exe = Path(sys.executable)
    if exe.name.lower() == "pythonw.exe":
        alt = exe.with_name("python.exe")
        if alt.exists():
            return alt
    return exe


def launcher_command(args: Sequence[str] = (), launcher: Optional[Path] = None) -> List[str]:
    """
    argv completo para volver a invocar el lanzador (tareas programadas, relanzados).
    """
    target = Path(launcher) if launcher else launcher_path()
    if target.suffix.lower() == ".py":
        return [str(interpreter_path()), str(target), *args]
    return [str(target), *args]


def get_data_dir() -> Path:
    from app.logs import get_data_dir as _data_dir
    return Path(_data_dir())
