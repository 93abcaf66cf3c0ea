# app/runlock.py: candado opcional de ejecución única (fichero con PID)
from __future__ import annotations
import os
from pathlib import Path

import psutil  # type: ignore

from app.logs import get_logger

log = get_logger("runlock")


class RunLock:
    """
    Candado consultivo: un PID en <data_dir>/launcher.lock.
    Un PID que ya no existe se considera obsoleto y se retira.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.held = False

    def _owner(self) -> int:
        try:
            return int(self.path.read_text(encoding="utf-8").strip() or "0")
        except (OSError, ValueError):
            return 0

    def acquire(self) -> bool:
        if self.path.exists():
            old = self._owner()
            if old and old != os.getpid() and psutil.pid_exists(old):
                log.warning("Otra ejecución del lanzador (pid=%s) tiene el candado %s.", old, self.path)
                return False
            log.info("Candado obsoleto (pid=%s); lo retiro.", old)
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_RDWR)
        except FileExistsError:
            return False
        try:
            os.write(fd, str(os.getpid()).encode("ascii", "ignore"))
        finally:
            os.close(fd)
        self.held = True
        return True

    def release(self) -> None:
        if not self.held:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("No se pudo liberar el candado %s: %s", self.path, e)
        self.held = False
