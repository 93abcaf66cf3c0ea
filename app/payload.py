# app/payload.py: adquisición del payload (local → ya resuelto → descarga)
# Cualquier fallo en la descarga/extracción es FATAL: sin payload no hay nada que lanzar.
from __future__ import annotations
import os
import shutil
import ssl
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from app.config import LauncherConfig
from app.context import RunContext
from app.errors import ExitCode, LauncherFatal
from app.logs import get_logger, log_timing

log = get_logger("payload")

STAGE = "payload-acquirer"
_CHUNK = 1024 * 256

Downloader = Callable[[str, Path, float], None]


@dataclass
class PayloadBundle:
    """
    url: fijo. archive_path: existe solo entre descarga y extracción.
    extract_root / entry_point: se resuelven una vez por ejecución.
    """
    url: str
    archive_path: Path
    extract_root: Path
    entry_point: Optional[Path] = None
    downloaded: bool = False


# ---------------- Descarga (TLS) --------------------------------------------------
def download_file(url: str, dest: Path, timeout: float) -> None:
    """
    Descarga `url` a `dest` por HTTPS (verificación de certificado por defecto).
    Escribe en dest.part y renombra al final. Lanza RuntimeError si falla.
    """
    if urlparse(url).scheme.lower() != "https":
        raise RuntimeError(f"Solo se admiten descargas HTTPS: {url}")
    dest = Path(dest)
    part = dest.with_name(dest.name + ".part")
    req = Request(url, headers={"User-Agent": "HostMaint-Launcher/1.0"})
    ctx = ssl.create_default_context()
    try:
        with urlopen(req, timeout=timeout, context=ctx) as r, open(part, "wb") as f:
            while True:
                chunk = r.read(_CHUNK)
                if not chunk:
                    break
                f.write(chunk)
        os.replace(part, dest)
    except HTTPError as e:
        raise RuntimeError(f"HTTP {e.code} en {url}: {e.reason}")
    except URLError as e:
        raise RuntimeError(f"Error de red para {url}: {e.reason}")
    except OSError as e:
        raise RuntimeError(f"Descarga falló para {url}: {type(e).__name__}: {e}")
    finally:
        try:
            part.unlink()
        except FileNotFoundError:
            pass


def _remove_path(p: Path) -> None:
    if p.is_dir():
        shutil.rmtree(p, ignore_errors=False)
    elif p.exists():
        p.unlink()


def extract_bundle(archive: Path, target: Path) -> Path:
    """
    Extrae en <target>.partial y lo cambia por <target> de una vez:
    nunca queda un árbol a medias con el nombre definitivo.
    """
    staging = target.with_name(target.name + ".partial")
    _remove_path(staging)
    with zipfile.ZipFile(archive, "r") as z:
        z.extractall(staging)
    _remove_path(target)
    os.replace(staging, target)
    return target


def locate_entry_point(root: Path, name: str, alt_glob: str) -> Optional[Path]:
    """Nombre canónico primero; después el patrón alternativo documentado."""
    canonical = root / name
    if canonical.is_file():
        return canonical
    for cand in sorted(root.glob(alt_glob)):
        if cand.is_file():
            return cand
    return None


# ---------------- Acquirer ---------------------------------------------------------
class PayloadAcquirer:

    def __init__(self, ctx: RunContext, cfg: LauncherConfig, *,
                 downloader: Downloader = download_file):
        self.ctx = ctx
        self.cfg = cfg
        self._download = downloader
        workdir = Path(ctx.workdir)
        self.bundle = PayloadBundle(
            url=cfg.payload_url,
            archive_path=workdir / cfg.archive_name,
            extract_root=workdir / cfg.extract_dir_name,
        )

    def local_entry_point(self) -> Optional[Path]:
        cand = Path(self.ctx.workdir) / self.cfg.entry_point_name
        return cand if cand.is_file() else None

    def resolve(self) -> Path:
        if self.bundle.entry_point is not None:
            return self.bundle.entry_point

        local = self.local_entry_point()
        if local is not None:
            log.info("Payload local encontrado: %s (sin descarga).", local)
            self.bundle.entry_point = local
            return local

        carried = self.ctx.carried_payload
        if carried is not None and Path(carried).is_file():
            log.info("Payload resuelto en una etapa anterior: %s", carried)
            self.bundle.entry_point = Path(carried)
            return self.bundle.entry_point
        if carried is not None:
            log.warning("La ruta de payload heredada ya no existe: %s; descargo.", carried)

        with log_timing("descarga+extracción del payload", log):
            self.bundle.entry_point = self._download_and_extract()
        return self.bundle.entry_point

    def _download_and_extract(self) -> Path:
        b = self.bundle
        for stale in (b.archive_path, b.extract_root):
            try:
                _remove_path(stale)
            except OSError as e:
                log.warning("No se pudo limpiar %s: %s", stale, e)

        log.info("Descargando payload: %s → %s", b.url, b.archive_path)
        try:
            self._download(b.url, b.archive_path, self.cfg.http_timeout)
        except Exception as e:
            raise LauncherFatal(ExitCode.DOWNLOAD_FAILED, STAGE, f"Descarga del payload fallida: {e}",
                                path=b.url)

        if not b.archive_path.is_file() or b.archive_path.stat().st_size == 0:
            raise LauncherFatal(ExitCode.DOWNLOAD_FAILED, STAGE, "El archivo descargado no existe o está vacío.",
                                path=str(b.archive_path))
        log.info("Archivo descargado (%d bytes).", b.archive_path.stat().st_size)

        try:
            extract_bundle(b.archive_path, b.extract_root)
        except (zipfile.BadZipFile, OSError) as e:
            raise LauncherFatal(ExitCode.DOWNLOAD_FAILED, STAGE, f"No se pudo extraer el payload: {e}",
                                path=str(b.archive_path))
        try:
            b.archive_path.unlink()
        except OSError as e:
            log.warning("No se pudo borrar el archivo descargado %s: %s", b.archive_path, e)
        b.downloaded = True

        entry = locate_entry_point(b.extract_root, self.cfg.entry_point_name, self.cfg.entry_point_glob)
        if entry is None:
            raise LauncherFatal(ExitCode.PAYLOAD_MISSING, STAGE,
                                f"'{self.cfg.entry_point_name}' no aparece tras la extracción.",
                                path=str(b.extract_root))
        log.info("Punto de entrada del payload: %s", entry)
        return entry
