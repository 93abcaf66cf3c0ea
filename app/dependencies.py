# app/dependencies.py: catálogo de prerequisitos de gestión de paquetes
# winget → pwsh → proveedor NuGet → PSGallery de confianza → PSWindowsUpdate → Chocolatey
from __future__ import annotations
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from app.config import LauncherConfig
from app.context import FLAG_AFTER_RUNTIME_INSTALL, RunContext
from app.errors import StepResult
from app.logs import get_logger
from app.pipeline import DependencyStep, InstallMethod
from app.runlock import RunLock
from utils.paths import launcher_command
from utils.runtime import command_line
from utils.winproc import Runner, run_detached, run_powershell, run_quiet

log = get_logger("dependencies")

STEP_WINGET = "winget"
STEP_PWSH = "pwsh"
STEP_NUGET = "nuget-provider"
STEP_PSGALLERY = "psgallery-trusted"
STEP_PSWINDOWSUPDATE = "pswindowsupdate"
STEP_CHOCO = "chocolatey"

_WINGET_ACCEPT = ["--silent", "--accept-package-agreements", "--accept-source-agreements"]
_TLS12 = "[Net.ServicePointManager]::SecurityProtocol = [Net.ServicePointManager]::SecurityProtocol -bor 3072; "
_QUIET = "$ProgressPreference = 'SilentlyContinue'; "


def _ps_exit_if(condition: str) -> str:
    """Comando PS que sale con 0 si la condición es verdadera y 1 si no."""
    return f"if ({condition}) {{ exit 0 }} else {{ exit 1 }}"


class DependencyCatalog:
    """
    Construye los DependencyStep concretos. Todas las llamadas externas pasan por
    `runner` (inyectable en tests).
    """

    def __init__(self, ctx: RunContext, cfg: LauncherConfig, *,
                 runner: Optional[Runner] = None,
                 relaunch: Callable[[List[str]], bool] = run_detached,
                 which: Callable[[str], Optional[str]] = shutil.which,
                 program_files: Optional[Path] = None,
                 handover_lock: Optional[RunLock] = None):
        self.ctx = ctx
        self.handover_lock = handover_lock
        self.cfg = cfg
        self._run = runner or run_quiet
        self._relaunch = relaunch
        self._which = which
        self.program_files = Path(program_files) if program_files else Path(r"C:\Program Files")

    # --- helpers ------------------------------------------------------------------
    def _cmd(self, argv: Sequence[str], timeout: Optional[float] = None) -> StepResult:
        rc, out, err = self._run(list(argv), timeout=timeout or self.cfg.install_timeout)
        return StepResult.from_rc(rc, out, err)

    def _ps(self, script: str, timeout: Optional[float] = None) -> StepResult:
        rc, out, err = run_powershell(script, timeout=timeout or self.cfg.install_timeout, runner=self._run)
        return StepResult.from_rc(rc, out, err)

    def _ps_check(self, condition: str) -> bool:
        return self._ps(_ps_exit_if(condition), timeout=120).ok

    def _tool_responds(self, *argv: str) -> bool:
        rc, _out, _err = self._run(list(argv), timeout=60)
        return rc == 0

    # --- winget (gestor base) ------------------------------------------------------
    def winget_present(self) -> bool:
        return self._tool_responds("winget", "--version")

    def install_winget_appx(self) -> StepResult:
        return self._ps(_QUIET + "Add-AppxPackage -Path 'https://aka.ms/getwinget' -ErrorAction Stop")

    def register_winget_family(self) -> StepResult:
        return self._ps("Add-AppxPackage -RegisterByFamilyName "
                        "-MainPackage Microsoft.DesktopAppInstaller_8wekyb3d8bbwe -ErrorAction Stop")

    def repair_winget(self) -> StepResult:
        return self._ps(_QUIET + _TLS12 +
                        "Install-PackageProvider -Name NuGet -Force -ErrorAction Stop | Out-Null; "
                        "Install-Module -Name Microsoft.WinGet.Client -Force -Repository PSGallery -ErrorAction Stop | Out-Null; "
                        "Repair-WinGetPackageManager -AllUsers -ErrorAction Stop")

    # --- pwsh (runtime moderno) ----------------------------------------------------
    def pwsh_path(self) -> Optional[Path]:
        found = self._which("pwsh")
        if found:
            return Path(found)
        cand = self.program_files / "PowerShell" / "7" / "pwsh.exe"
        return cand if cand.exists() else None

    def pwsh_present(self) -> bool:
        return self.pwsh_path() is not None

    def install_pwsh_winget(self) -> StepResult:
        return self._cmd(["winget", "install", "--id", "Microsoft.PowerShell", "--exact",
                          "--scope", "machine", *_WINGET_ACCEPT])

    def install_pwsh_msi(self) -> StepResult:
        return self._ps(_QUIET + _TLS12 +
                        "iex \"& { $(irm https://aka.ms/install-powershell.ps1) } -UseMSI -Quiet\"")

    def relaunch_under_pwsh(self) -> bool:
        """
        Relanza el lanzador completo bajo el pwsh recién instalado, con el marcador
        para saltar este paso. True si el nuevo proceso quedó en marcha.
        """
        pwsh = self.pwsh_path()
        if pwsh is None:
            log.warning("pwsh instalado pero no localizable todavía; sigo en este proceso.")
            return False
        inner = launcher_command(self.ctx.relaunch_args(FLAG_AFTER_RUNTIME_INSTALL), self.ctx.launcher_path)
        argv = [str(pwsh), "-NoProfile", "-ExecutionPolicy", "Bypass",
                "-Command", "& " + command_line(inner)]
        log.info("Relanzando bajo pwsh → %s", argv)
        # El proceso hijo debe poder tomar el candado de ejecución única
        lock = self.handover_lock
        handed = lock is not None and lock.held
        if handed:
            lock.release()
        started = bool(self._relaunch(argv))
        if not started and handed and not lock.acquire():
            log.warning("No se pudo recuperar el candado %s tras el relanzamiento fallido.", lock.path)
        return started

    # --- módulos PowerShell ----------------------------------------------------------
    def nuget_present(self) -> bool:
        return self._ps_check("Get-PackageProvider -ListAvailable -Name NuGet -ErrorAction SilentlyContinue")

    def install_nuget(self) -> StepResult:
        return self._ps("Install-PackageProvider -Name NuGet -MinimumVersion 2.8.5.201 -Force "
                        "-ErrorAction Stop | Out-Null")

    def install_nuget_user(self) -> StepResult:
        return self._ps(_TLS12 + "Install-PackageProvider -Name NuGet -MinimumVersion 2.8.5.201 "
                        "-Scope CurrentUser -Force -ErrorAction Stop | Out-Null")

    def psgallery_trusted(self) -> bool:
        return self._ps_check("(Get-PSRepository -Name PSGallery -ErrorAction SilentlyContinue)"
                              ".InstallationPolicy -eq 'Trusted'")

    def trust_psgallery(self) -> StepResult:
        return self._ps("Set-PSRepository -Name PSGallery -InstallationPolicy Trusted -ErrorAction Stop")

    def register_and_trust_psgallery(self) -> StepResult:
        return self._ps("Register-PSRepository -Default -ErrorAction SilentlyContinue; "
                        "Set-PSRepository -Name PSGallery -InstallationPolicy Trusted -ErrorAction Stop")

    def pswindowsupdate_present(self) -> bool:
        return self._ps_check("Get-Module -ListAvailable -Name PSWindowsUpdate")

    def install_pswindowsupdate(self) -> StepResult:
        return self._ps("Install-Module -Name PSWindowsUpdate -Scope AllUsers -Force -ErrorAction Stop")

    def install_pswindowsupdate_user(self) -> StepResult:
        return self._ps(_TLS12 + "Install-Module -Name PSWindowsUpdate -Scope CurrentUser -Force "
                        "-AllowClobber -SkipPublisherCheck -ErrorAction Stop")

    # --- Chocolatey (gestor secundario) ----------------------------------------------
    def choco_present(self) -> bool:
        return self._tool_responds("choco", "--version")

    def install_choco_script(self) -> StepResult:
        return self._ps("Set-ExecutionPolicy Bypass -Scope Process -Force; " + _TLS12 +
                        "iex ((New-Object System.Net.WebClient).DownloadString("
                        "'https://community.chocolatey.org/install.ps1'))")

    def install_choco_winget(self) -> StepResult:
        return self._cmd(["winget", "install", "--id", "Chocolatey.Chocolatey", "--exact", *_WINGET_ACCEPT])

    # --- catálogo ordenado -------------------------------------------------------------
    def steps(self) -> List[DependencyStep]:
        m = InstallMethod
        return [
            DependencyStep(STEP_WINGET, self.winget_present,
                           m("appx-bundle", self.install_winget_appx),
                           (m("register-family", self.register_winget_family),
                            m("winget-client-repair", self.repair_winget))),
            DependencyStep(STEP_PWSH, self.pwsh_present,
                           m("winget", self.install_pwsh_winget),
                           (m("msi-script", self.install_pwsh_msi),),
                           on_installed=self.relaunch_under_pwsh),
            DependencyStep(STEP_NUGET, self.nuget_present,
                           m("install-provider", self.install_nuget),
                           (m("install-provider-user", self.install_nuget_user),)),
            DependencyStep(STEP_PSGALLERY, self.psgallery_trusted,
                           m("set-repository", self.trust_psgallery),
                           (m("register-default", self.register_and_trust_psgallery),)),
            DependencyStep(STEP_PSWINDOWSUPDATE, self.pswindowsupdate_present,
                           m("install-module", self.install_pswindowsupdate),
                           (m("install-module-user", self.install_pswindowsupdate_user),)),
            DependencyStep(STEP_CHOCO, self.choco_present,
                           m("install-script", self.install_choco_script),
                           (m("winget", self.install_choco_winget),)),
        ]

    def resume_after(self) -> Optional[str]:
        """Tras el relanzado por instalación de pwsh se reanuda justo después de ese paso."""
        return STEP_PWSH if self.ctx.after_runtime_install else None
