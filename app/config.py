# app/config.py: HostMaint
# Configuración del lanzador: defaults + launcher.json opcional + overrides por entorno.
# Se lee UNA vez al arrancar; después todo viaja en LauncherConfig.

from __future__ import annotations
import json
import os
import tempfile
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from app.logs import get_logger

log = get_logger("config")

CONFIG_FILE_NAME = "launcher.json"

DEFAULT_PAYLOAD_URL = "https://github.com/HostMaint/maintenance-payload/archive/refs/heads/main.zip"


@dataclass(frozen=True)
class LauncherConfig:
    # Tareas programadas
    periodic_task_name: str = r"HostMaint\Periodic"
    resume_task_name: str = r"HostMaint\Resume"
    monthly_day: int = 1
    start_time: str = "03:00"
    resume_delay_seconds: int = 60
    reboot_grace_seconds: int = 30
    max_resume_reboots: int = 3

    # Payload
    payload_url: str = DEFAULT_PAYLOAD_URL
    archive_name: str = "payload.zip"
    extract_dir_name: str = "payload"
    entry_point_name: str = "Maintenance.ps1"
    entry_point_glob: str = "*-main/Maintenance.ps1"

    # Tiempos (segundos)
    http_timeout: float = 60.0
    install_timeout: float = 900.0

    # Varios
    log_level: str = "INFO"
    defender_exclusions: bool = True
    single_instance_lock: bool = False


# Overrides por entorno → campo (la conversión la hace _coerce)
_ENV_OVERRIDES = {
    "HM_PAYLOAD_URL": "payload_url",
    "HM_HTTP_TIMEOUT": "http_timeout",
    "HM_LOGLEVEL": "log_level",
}


def default_config_path(root: Optional[Path] = None) -> Path:
    if root is None:
        from utils.paths import get_root_dir
        root = get_root_dir()
    return Path(root) / CONFIG_FILE_NAME


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convierte al tipo del default; si no cuadra, se queda con el default."""
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        return str(value)
    except (TypeError, ValueError):
        log.warning("Valor inválido para '%s': %r (uso default %r)", name, value, default)
        return default


def _merge(base: LauncherConfig, data: Mapping[str, Any]) -> LauncherConfig:
    known = {f.name: getattr(base, f.name) for f in fields(LauncherConfig)}
    changes: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            log.warning("Clave de configuración desconocida ignorada: %s", key)
            continue
        changes[key] = _coerce(key, value, known[key])
    return replace(base, **changes)


def load_config(path: Union[str, Path, None] = None,
                env: Optional[Mapping[str, str]] = None) -> LauncherConfig:
    """
    Devuelve la configuración efectiva.
    Prioridad: entorno (HM_*) > launcher.json > defaults.
    Un JSON ilegible no es fatal: se registra y se usan los defaults.
    """
    env = os.environ if env is None else env
    if path is None and env.get("HM_CONFIG"):
        path = env["HM_CONFIG"]
    cfg_path = Path(path) if path else default_config_path()

    cfg = LauncherConfig()
    if cfg_path.exists():
        try:
            data = json.loads(cfg_path.read_text(encoding="utf-8-sig"))
            if isinstance(data, dict):
                cfg = _merge(cfg, data)
                log.debug("Configuración cargada de %s", cfg_path)
            else:
                log.warning("%s no contiene un objeto JSON; uso defaults", cfg_path)
        except Exception as e:
            log.warning("Error al leer %s: %s (uso defaults)", cfg_path, e)

    env_data = {}
    for var, name in _ENV_OVERRIDES.items():
        val = env.get(var)
        if val:
            env_data[name] = val
    if env_data:
        cfg = _merge(cfg, env_data)
        log.debug("Overrides de entorno aplicados: %s", sorted(env_data))
    return cfg


def save_config(cfg: LauncherConfig, path: Union[str, Path, None] = None) -> Path:
    """Escritura atómica (tmp + replace) del JSON de configuración."""
    cfg_path = Path(path) if path else default_config_path()
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(asdict(cfg), ensure_ascii=False, indent=2)
    fd, tmp = tempfile.mkstemp(prefix=cfg_path.name, suffix=".tmp", dir=str(cfg_path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp, cfg_path)
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
    log.info("Configuración guardada en %s", cfg_path)
    return cfg_path
