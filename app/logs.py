# app/logs.py: Logger centralizado HostMaint (ProgramData / LocalAppData compliant)
from __future__ import annotations
import logging
from logging.handlers import RotatingFileHandler
import os
import sys
import time
import threading
import traceback
from contextlib import contextmanager
from typing import Optional, Dict, Union
from pathlib import Path

# ==============================================================================
# Config base y estado global
# ==============================================================================
APP_VENDOR = "HostMaint"
LOG_FILE_NAME = "launcher.log"
_BASE_LOGGER = "hm"
_DEFAULT_MAX_BYTES = 1_048_576  # 1 MiB
_DEFAULT_BACKUP_COUNT = 5

_LOGGERS: Dict[str, logging.Logger] = {}
_LOG_FILE: Optional[str] = None
_LOG_LEVEL = logging.INFO
_HANDLER: Optional[logging.Handler] = None
_CONSOLE_HANDLER: Optional[logging.Handler] = None
_INITIALIZED = False


# ==============================================================================
# Resolución de rutas
# ==============================================================================
def _resolve_data_dir() -> Path:
    r"""
    Determina el directorio base de datos/logs del lanzador.
    Prioridad:
      1) ENV HM_DATA_DIR
      2) %ProgramData%\HostMaint  (el lanzador corre elevado)
      3) %LOCALAPPDATA%\HostMaint
      4) Último recurso: .\.hm_data
    """
    env_dir = os.getenv("HM_DATA_DIR")
    candidates = []
    if env_dir:
        candidates.append(Path(env_dir).expanduser())
    for var in ("PROGRAMDATA", "LOCALAPPDATA"):
        val = os.getenv(var)
        if val:
            candidates.append(Path(val) / APP_VENDOR)

    for base in candidates:
        try:
            base.mkdir(parents=True, exist_ok=True)
            return base
        except Exception:
            continue

    base = Path.cwd() / ".hm_data"
    try:
        base.mkdir(parents=True, exist_ok=True)
    except Exception:
        pass
    return base


def get_data_dir() -> str:
    """Devuelve el directorio base de datos/logs que está usando el lanzador."""
    return str(_resolve_data_dir())


def get_logs_dir() -> str:
    """Devuelve el directorio de logs dentro del data_dir."""
    logs = _resolve_data_dir() / "logs"
    try:
        logs.mkdir(parents=True, exist_ok=True)
    except Exception:
        pass
    return str(logs)


def _resolve_log_path() -> str:
    r"""
    Devuelve la ruta del archivo de log asegurando que es escribible.
    Prioridad:
      0) ENV HM_LOG_FILE (ruta absoluta)
      1) <data_dir>/logs/launcher.log
      2) .\launcher.log
    """
    env = os.getenv("HM_LOG_FILE")
    candidates = []
    if env:
        candidates.append(Path(env).expanduser())
    candidates.append(Path(get_logs_dir()) / LOG_FILE_NAME)
    candidates.append(Path.cwd() / LOG_FILE_NAME)

    for p in candidates:
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            with p.open("a", encoding="utf-8-sig") as f:
                f.write(time.strftime("%Y-%m-%d %H:%M:%S") + " [logs] logger-init\n")
            return str(p)
        except Exception:
            continue
    return str(candidates[-1])


# ==============================================================================
# Construcción de handlers
# ==============================================================================
def _build_file_handler(path: str,
                        max_bytes: int = _DEFAULT_MAX_BYTES,
                        backup_count: int = _DEFAULT_BACKUP_COUNT) -> RotatingFileHandler:
    """
    Handler con rotación. 'delay=True' evita abrir el archivo hasta el primer emit.
    """
    handler = RotatingFileHandler(
        path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8-sig",
        delay=True,
    )
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(process)d:%(threadName)s] [%(name)s] %(message)s",
        "%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(fmt)
    return handler


def _build_console_handler() -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stdout)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        "%H:%M:%S",
    )
    handler.setFormatter(fmt)
    return handler


# ==============================================================================
# Inicialización / Config
# ==============================================================================
def _toggle_console(enabled: bool) -> None:
    global _CONSOLE_HANDLER
    base = logging.getLogger(_BASE_LOGGER)
    if enabled and _CONSOLE_HANDLER is None:
        _CONSOLE_HANDLER = _build_console_handler()
        base.addHandler(_CONSOLE_HANDLER)
    elif not enabled and _CONSOLE_HANDLER is not None:
        try:
            base.removeHandler(_CONSOLE_HANDLER)
        finally:
            _CONSOLE_HANDLER = None


def _ensure_initialized(level: Optional[Union[int, str]] = None,
                        log_path: Optional[str] = None,
                        console: Optional[bool] = None,
                        max_bytes: int = _DEFAULT_MAX_BYTES,
                        backup_count: int = _DEFAULT_BACKUP_COUNT) -> None:
    """
    Inicializa una sola vez el handler global y la ruta. Si ya estaba
    inicializado, permite actualizar nivel/console en caliente.
    """
    global _INITIALIZED, _LOG_FILE, _LOG_LEVEL, _HANDLER, _CONSOLE_HANDLER

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if _INITIALIZED:
        if level is not None:
            _LOG_LEVEL = level
            logging.getLogger(_BASE_LOGGER).setLevel(_LOG_LEVEL)
        if console is not None:
            _toggle_console(console)
        return

    _LOG_LEVEL = level or _LOG_LEVEL
    _LOG_FILE = log_path or _resolve_log_path()
    _HANDLER = _build_file_handler(_LOG_FILE, max_bytes=max_bytes, backup_count=backup_count)

    # Logger base: todos los loggers serán hijos "hm.*"
    base = logging.getLogger(_BASE_LOGGER)
    base.setLevel(_LOG_LEVEL)
    base.propagate = False

    for h in list(base.handlers):
        base.removeHandler(h)
    base.addHandler(_HANDLER)

    if console is None:
        env_console = (os.getenv("HM_LOG_CONSOLE") or "").strip().lower()
        console = env_console in ("1", "true", "yes", "on")

    if console and _CONSOLE_HANDLER is None:
        _CONSOLE_HANDLER = _build_console_handler()
        base.addHandler(_CONSOLE_HANDLER)

    _INITIALIZED = True
    base.info("Logger inicializado → %s", _LOG_FILE)


def close_all() -> None:
    """
    Cierra todos los handlers y resetea el estado global.
    El lanzador la llama al salir para soltar launcher.log.
    """
    global _INITIALIZED, _HANDLER, _CONSOLE_HANDLER, _LOGGERS
    try:
        base = logging.getLogger(_BASE_LOGGER)
        for h in list(base.handlers):
            try:
                h.flush()
                h.close()
            except Exception:
                pass
        base.handlers.clear()
    finally:
        _HANDLER = None
        _CONSOLE_HANDLER = None
        _LOGGERS.clear()
        _INITIALIZED = False


# ==============================================================================
# API pública principal
# ==============================================================================
def configure(*,
              level: Optional[Union[int, str]] = None,
              log_path: Optional[str] = None,
              console: Optional[bool] = None,
              max_bytes: int = _DEFAULT_MAX_BYTES,
              backup_count: int = _DEFAULT_BACKUP_COUNT) -> None:
    """
    Configura el logger global (idempotente).
    Puedes forzar el directorio con HM_DATA_DIR o el fichero con HM_LOG_FILE.
    """
    _ensure_initialized(level=level,
                        log_path=log_path,
                        console=console,
                        max_bytes=max_bytes,
                        backup_count=backup_count)


def get_logger(name: str = "launcher", level: Optional[int] = None) -> logging.Logger:
    """
    Devuelve un logger con nombre (elevation, tasks, restart, pipeline…).
    Todos comparten el mismo archivo y formato, con un ÚNICO handler global.
    """
    _ensure_initialized()
    full_name = f"{_BASE_LOGGER}.{name}"
    if full_name in _LOGGERS:
        lg = _LOGGERS[full_name]
        if level is not None:
            lg.setLevel(level)
        return lg

    logger = logging.getLogger(full_name)
    if level is not None:
        logger.setLevel(level)
    logger.propagate = True  # cuelga del base "hm"
    _LOGGERS[full_name] = logger
    return logger


def get_log_file() -> str:
    """Devuelve la ruta actual del archivo de log."""
    _ensure_initialized()
    assert _LOG_FILE is not None
    return _LOG_FILE


@contextmanager
def log_timing(name: str, logger: Optional[logging.Logger] = None, level: int = logging.INFO):
    """
    Context manager para medir tiempos:

        with log_timing("pipeline", get_logger("launcher")):
            pipeline.run()
    """
    lg = logger or get_logger("perf")
    t0 = time.perf_counter()
    try:
        yield
    finally:
        dt = (time.perf_counter() - t0) * 1000.0
        lg.log(level, "%s: %.2f ms", name, dt)


# ==============================================================================
# Hooks de excepciones
# ==============================================================================
def install_exception_hooks(logger_name: str = "crash") -> None:
    """
    Redirige excepciones no capturadas (main thread + hilos) al log.
    """
    lg = get_logger(logger_name)

    def _excepthook(exc_type, exc, tb):
        try:
            tb_txt = "".join(traceback.format_exception(exc_type, exc, tb))
        except Exception:  # pragma: no cover
            tb_txt = f"{exc_type.__name__}: {exc}"
        lg.error("UNCAUGHT EXCEPTION\n%s", tb_txt)

    def _thread_excepthook(args: threading.ExceptHookArgs):
        try:
            tb_txt = "".join(traceback.format_exception(args.exc_type, args.exc_value, args.exc_traceback))
        except Exception:  # pragma: no cover
            tb_txt = f"{args.exc_type.__name__}: {args.exc_value}"
        lg.error("UNCAUGHT THREAD EXCEPTION (thread=%s)\n%s", args.thread.name, tb_txt)

    sys.excepthook = _excepthook
    threading.excepthook = _thread_excepthook
    lg.info("exception-hooks-installed")
