# run.py: lanzador de mantenimiento desatendido (elevación UAC + logging centralizado)
from __future__ import annotations

# =======================
# Bootstrap Python portable
# =======================
import os
import sys
from pathlib import Path

__version__ = "1.0.0"

# Endurecimiento del entorno (evita heredar cosas raras del sistema/usuario)
os.environ.setdefault("PYTHONUTF8", "1")
os.environ.setdefault("PYTHONIOENCODING", "utf-8")
os.environ.setdefault("PYTHONNOUSERSITE", "1")

# 1) Resolver rutas clave
try:
    PROJECT_ROOT = Path(__file__).resolve().parent
except Exception:
    PROJECT_ROOT = Path.cwd()

# El Programador de tareas nos lanza con cwd=System32: fuerzo cwd al proyecto
try:
    os.chdir(str(PROJECT_ROOT))
except Exception:
    pass

# 2) DLLs & paths para el intérprete portable
try:
    PYDIR = Path(sys.executable).parent
    DLLS = PYDIR / "DLLs"
    SITE = PYDIR / "Lib" / "site-packages"

    try:
        # Python 3.8+: imprescindible para evitar "DLL load failed" en portable
        os.add_dll_directory(str(PYDIR))
        os.add_dll_directory(str(DLLS))
    except Exception:
        pass

    # pywin32 system32 (si existe)
    PYW32_SYS = SITE / "pywin32_system32"
    if PYW32_SYS.exists():
        sp = str(PYW32_SYS)
        if sp not in sys.path:
            sys.path.insert(0, sp)
        os.environ["PATH"] = f"{sp};{os.environ.get('PATH', '')}"
except Exception:
    # No interferir si no estamos en portable
    pass

# inserta el directorio del proyecto al principio de sys.path
proj_str = str(PROJECT_ROOT)
if proj_str not in sys.path:
    sys.path.insert(0, proj_str)

# --- Inicializar logger muy pronto (ya con sys.path listo) ---
from app.logs import close_all, configure, get_logger, install_exception_hooks  # noqa: E402
from app.config import load_config  # noqa: E402
from app.context import parse_args  # noqa: E402
from app.maintenance import run_maintenance  # noqa: E402
from utils.runtime import set_process_title  # noqa: E402


def main(argv=None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    cfg = load_config()
    args, _ = parse_args(argv)

    # Prioridad del nivel: --log-level > HM_LOGLEVEL/launcher.json
    level = (args.log_level or cfg.log_level or "INFO").upper()
    interactive = bool(sys.stdin and sys.stdin.isatty())
    configure(level=level, console=interactive or None)
    install_exception_hooks("launcher-crash")
    set_process_title("hostmaint-launcher")

    log = get_logger("launcher")
    log.info("Argumentos: %s", argv)
    try:
        return run_maintenance(argv, cfg)
    finally:
        close_all()


if __name__ == "__main__":
    raise SystemExit(main())
