# app/defender.py: exclusiones de Windows Defender (conveniencia, nunca fatal)
from __future__ import annotations
from pathlib import Path
from typing import Iterable, Optional

from app.errors import StepResult
from app.logs import get_logger
from utils.winproc import Runner, run_powershell

log = get_logger("defender")


def _ps_literal(s: str) -> str:
    return "'" + str(s).replace("'", "''") + "'"


def add_exclusions(paths: Iterable[Path], runner: Optional[Runner] = None) -> StepResult:
    items = [str(p) for p in paths]
    if not items:
        return StepResult.success("nothing-to-do")
    cmd = "Add-MpPreference -ExclusionPath @(" + ",".join(_ps_literal(p) for p in items) + ") -ErrorAction Stop"
    rc, out, err = run_powershell(cmd, timeout=60, runner=runner)
    result = StepResult.from_rc(rc, out, err)
    if result.ok:
        log.info("Exclusiones de Defender añadidas: %s", items)
    else:
        log.warning("No se pudieron añadir exclusiones de Defender (%s): %s", result.reason, result.detail)
    return result
