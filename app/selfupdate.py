# app/selfupdate.py: auto-actualización diferida del propio lanzador
# Fase 1 (tras la descarga): copiar el lanzador nuevo a <lanzador>.new
# Fase 2 (tras terminar el payload con éxito): mover .new sobre el lanzador.
from __future__ import annotations
import os
import shutil
from pathlib import Path
from typing import Callable, Optional, Tuple

from app.errors import StepResult
from app.logs import get_logger
from app.payload import PayloadBundle
from app.payload_runner import LaunchOutcome
from utils.runtime import launcher_version

log = get_logger("selfupdate")


class SelfUpdate:

    def __init__(self, launcher: Path,
                 version_of: Callable[[Path], Tuple[int, ...]] = launcher_version):
        self.launcher = Path(launcher)
        self.version_of = version_of
        self.staged: Optional[Path] = None

    @property
    def staged_path(self) -> Path:
        return self.launcher.with_name(self.launcher.name + ".new")

    @property
    def backup_path(self) -> Path:
        return self.launcher.with_name(self.launcher.name + ".old")

    def cleanup_leftovers(self) -> None:
        """
        Restos de un intercambio interrumpido en una ejecución anterior.
        Sin lanzador pero con copia .old: se restaura la copia, nunca se borra.
        """
        if not self.launcher.exists() and self.backup_path.is_file():
            try:
                os.replace(self.backup_path, self.launcher)
                log.warning("Lanzador ausente: restaurado desde %s", self.backup_path)
            except OSError as e:
                log.error("No se pudo restaurar el lanzador desde %s: %s", self.backup_path, e)
                return
        for p in (self.staged_path, self.backup_path):
            try:
                if p.exists():
                    p.unlink()
                    log.info("Resto de auto-actualización eliminado: %s", p)
            except OSError as e:
                log.warning("No se pudo eliminar %s: %s", p, e)

    def find_candidate(self, bundle: PayloadBundle) -> Optional[Path]:
        """
        Copia del lanzador en la raíz del payload o en su carpeta superior
        (<repo>-main/ de GitHub). Nunca el punto de entrada del payload.
        """
        root = Path(bundle.extract_root)
        if not root.is_dir():
            return None
        entry = Path(bundle.entry_point).resolve() if bundle.entry_point else None
        name = self.launcher.name
        top = [root / name] + sorted(d / name for d in root.iterdir() if d.is_dir())
        for cand in top:
            if not cand.is_file():
                continue
            if entry is not None and cand.resolve() == entry:
                continue
            return cand
        return None

    def stage(self, bundle: PayloadBundle) -> bool:
        """True si hay un lanzador más reciente preparado en <lanzador>.new."""
        if not bundle.downloaded:
            return False
        cand = self.find_candidate(bundle)
        if cand is None:
            log.debug("El payload no trae una versión del lanzador.")
            return False
        current, offered = self.version_of(self.launcher), self.version_of(cand)
        if not current or not offered:
            log.info("Versión del lanzador desconocida (actual=%s, payload=%s); no se actualiza.",
                     current or "?", offered or "?")
            return False
        if offered <= current:
            log.info("El lanzador ya está al día (actual=%s, payload=%s).", current, offered)
            return False
        try:
            shutil.copy2(cand, self.staged_path)
        except OSError as e:
            log.warning("No se pudo preparar la auto-actualización: %s", e)
            return False
        self.staged = self.staged_path
        log.info("Nueva versión del lanzador preparada: %s", self.staged)
        return True

    def discard(self) -> None:
        if self.staged is None:
            return
        try:
            self.staged.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("No se pudo descartar %s: %s", self.staged, e)
        self.staged = None

    def commit(self, outcome: Optional[LaunchOutcome]) -> StepResult:
        """Solo con payload OK: el lanzador actual se sustituye; si no, queda intacto."""
        if self.staged is None:
            return StepResult.success("nothing-staged")
        if outcome is None or not outcome.succeeded:
            log.info("Payload sin éxito: se descarta la auto-actualización.")
            self.discard()
            return StepResult.failure("payload-failed")

        try:
            try:
                os.replace(self.staged, self.launcher)
            except PermissionError:
                # Ejecutable en uso: se aparta y se coloca el nuevo en su sitio
                if self.backup_path.exists():
                    self.backup_path.unlink()
                os.replace(self.launcher, self.backup_path)
                try:
                    os.replace(self.staged, self.launcher)
                except OSError:
                    # La ruta del lanzador nunca queda vacía
                    os.replace(self.backup_path, self.launcher)
                    raise
        except OSError as e:
            log.error("Auto-actualización fallida: %s", e)
            self.discard()
            return StepResult.failure("replace-failed", str(e))

        self.staged = None
        log.info("Lanzador actualizado: %s", self.launcher)
        return StepResult.success("updated", str(self.launcher))
