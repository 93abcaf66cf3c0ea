# app/errors.py: códigos de salida, error fatal y resultado de paso
from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    OK = 0
    UNEXPECTED = 1
    INCOMPATIBLE_HOST = 10
    DOWNLOAD_FAILED = 11
    PAYLOAD_MISSING = 12        # no aparece tras extraer
    RUNTIME_UNAVAILABLE = 13
    ENTRY_POINT_MISSING = 14    # la ruta resuelta desapareció antes de lanzar
    LAUNCH_FAILED = 15
    ELEVATION_FAILED = 16


class LauncherFatal(Exception):
    """
    Error irrecuperable: el lanzador no puede seguir.
    Lleva el código de salida, la etapa y (si aplica) la ruta que se intentó.
    """

    def __init__(self, code: ExitCode, stage: str, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.code = ExitCode(code)
        self.stage = stage
        self.message = message
        self.path = path

    def describe(self) -> str:
        txt = f"[{self.stage}] {self.message} (code={int(self.code)} {self.code.name})"
        if self.path:
            txt += f" path={self.path}"
        return txt


@dataclass(frozen=True)
class StepResult:
    """Resultado explícito de una operación externa (sustituye al 'último rc')."""
    ok: bool
    reason: str = ""
    detail: str = ""

    @classmethod
    def success(cls, reason: str = "ok", detail: str = "") -> "StepResult":
        return cls(True, reason, detail)

    @classmethod
    def failure(cls, reason: str, detail: str = "") -> "StepResult":
        return cls(False, reason, detail)

    @classmethod
    def from_rc(cls, rc: int, out: str = "", err: str = "") -> "StepResult":
        if rc == 0:
            return cls(True, "rc=0", (out or "")[-400:])
        return cls(False, f"rc={rc}", (err or out or "")[-400:])
