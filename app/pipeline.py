# app/pipeline.py: pipeline ordenado de dependencias (no transaccional)
# Cada paso: ¿presente? → método principal → alternativas en orden → SIEMPRE al siguiente.
from __future__ import annotations
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from app.errors import StepResult
from app.logs import get_logger, log_timing

log = get_logger("pipeline")


@dataclass(frozen=True)
class InstallMethod:
    name: str
    run: Callable[[], StepResult]


@dataclass(frozen=True)
class DependencyStep:
    name: str
    check: Callable[[], bool]
    primary: InstallMethod
    fallbacks: Tuple[InstallMethod, ...] = ()
    fatal: bool = False
    # Tras instalar: True = el proceso ha cedido el control (relanzado) y hay que parar
    on_installed: Optional[Callable[[], bool]] = None

    @property
    def methods(self) -> Tuple[InstallMethod, ...]:
        return (self.primary,) + tuple(self.fallbacks)


class StepStatus(str, Enum):
    PRESENT = "present"
    INSTALLED = "installed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepOutcome:
    name: str
    status: StepStatus
    method: str = ""
    attempts: List[Tuple[str, StepResult]] = field(default_factory=list)


@dataclass
class PipelineReport:
    outcomes: List[StepOutcome] = field(default_factory=list)
    handed_over: bool = False  # el lanzador se relanzó (p. ej. bajo pwsh)

    @property
    def failed(self) -> List[str]:
        return [o.name for o in self.outcomes if o.status is StepStatus.FAILED]

    def summary(self) -> str:
        return ", ".join(f"{o.name}={o.status.value}" for o in self.outcomes)


def _safe_check(step: DependencyStep) -> bool:
    try:
        return bool(step.check())
    except Exception as e:
        log.warning("[%s] comprobación de presencia falló: %s", step.name, e)
        return False


def _safe_run(step: DependencyStep, method: InstallMethod) -> StepResult:
    try:
        result = method.run()
    except Exception as e:
        log.error("[%s] excepción en %s:\n%s", step.name, method.name, traceback.format_exc())
        return StepResult.failure("exception", f"{type(e).__name__}: {e}")
    if not isinstance(result, StepResult):
        return StepResult.failure("bad-result", repr(result))
    return result


class DependencyPipeline:

    def __init__(self, steps: Sequence[DependencyStep], *, resume_after: Optional[str] = None):
        self.steps = list(steps)
        if resume_after is not None and resume_after not in {s.name for s in self.steps}:
            log.warning("Paso de reanudación desconocido '%s'; ejecuto el pipeline completo.", resume_after)
            resume_after = None
        self.resume_after = resume_after

    def _run_step(self, step: DependencyStep) -> StepOutcome:
        outcome = StepOutcome(step.name, StepStatus.FAILED)
        if _safe_check(step):
            log.info("[%s] ya presente.", step.name)
            outcome.status = StepStatus.PRESENT
            return outcome

        for method in step.methods:
            log.info("[%s] instalando con %s…", step.name, method.name)
            result = _safe_run(step, method)
            outcome.attempts.append((method.name, result))
            if result.ok:
                log.info("[%s] instalado con %s.", step.name, method.name)
                outcome.status = StepStatus.INSTALLED
                outcome.method = method.name
                return outcome
            log.warning("[%s] %s falló (%s): %s", step.name, method.name, result.reason, result.detail)

        level = log.error if step.fatal else log.warning
        level("[%s] no se pudo aprovisionar tras %d método(s); continúo.", step.name, len(outcome.attempts))
        return outcome

    def run(self) -> PipelineReport:
        report = PipelineReport()
        skipping = self.resume_after is not None
        for step in self.steps:
            if skipping:
                report.outcomes.append(StepOutcome(step.name, StepStatus.SKIPPED))
                if step.name == self.resume_after:
                    skipping = False
                    log.info("Reanudando el pipeline después de '%s'.", step.name)
                continue

            with log_timing(f"dependencia {step.name}", log):
                outcome = self._run_step(step)
            report.outcomes.append(outcome)

            if outcome.status is StepStatus.INSTALLED and step.on_installed is not None:
                try:
                    handed_over = bool(step.on_installed())
                except Exception as e:
                    log.warning("[%s] acción posterior a la instalación falló: %s", step.name, e)
                    handed_over = False
                if handed_over:
                    log.info("[%s] el lanzador continúa en un proceso nuevo.", step.name)
                    report.handed_over = True
                    return report

        log.info("Pipeline de dependencias terminado: %s", report.summary())
        if report.failed:
            log.warning("Dependencias sin aprovisionar: %s", ", ".join(report.failed))
        return report
