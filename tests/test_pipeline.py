from __future__ import annotations

from app.errors import StepResult
from app.pipeline import DependencyPipeline, DependencyStep, InstallMethod, StepStatus


def _method(name, log, ok=True, exc=None):
    def run():
        log.append(name)
        if exc is not None:
            raise exc
        return StepResult.success() if ok else StepResult.failure("rc=1")
    return InstallMethod(name, run)


def _step(name, log, *, present=False, primary_ok=True, fallbacks=(), on_installed=None):
    return DependencyStep(
        name,
        lambda: present,
        _method(f"{name}:primary", log, ok=primary_ok),
        tuple(fallbacks),
        on_installed=on_installed,
    )


def test_every_step_runs_even_when_all_fail():
    log = []
    steps = [
        _step("a", log, primary_ok=False, fallbacks=[_method("a:alt", log, ok=False)]),
        DependencyStep("b", lambda: 1 / 0, _method("b:primary", log, exc=RuntimeError("boom"))),
        _step("c", log, primary_ok=False),
    ]
    report = DependencyPipeline(steps).run()

    assert [o.status for o in report.outcomes] == [StepStatus.FAILED] * 3
    assert report.failed == ["a", "b", "c"]
    assert log == ["a:primary", "a:alt", "b:primary", "c:primary"]
    assert not report.handed_over


def test_present_step_installs_nothing():
    log = []
    report = DependencyPipeline([_step("a", log, present=True)]).run()
    assert report.outcomes[0].status is StepStatus.PRESENT
    assert log == []


def test_fallbacks_tried_in_order_until_one_succeeds():
    log = []
    step = _step("a", log, primary_ok=False,
                 fallbacks=[_method("a:alt1", log, ok=False), _method("a:alt2", log),
                            _method("a:alt3", log)])
    report = DependencyPipeline([step]).run()
    outcome = report.outcomes[0]
    assert outcome.status is StepStatus.INSTALLED
    assert outcome.method == "a:alt2"
    assert log == ["a:primary", "a:alt1", "a:alt2"]


def test_resume_after_skips_through_named_step():
    log = []
    steps = [_step(n, log) for n in ("a", "b", "c", "d")]
    report = DependencyPipeline(steps, resume_after="b").run()
    assert [o.status for o in report.outcomes] == [
        StepStatus.SKIPPED, StepStatus.SKIPPED, StepStatus.INSTALLED, StepStatus.INSTALLED]
    assert log == ["c:primary", "d:primary"]


def test_unknown_resume_point_runs_everything():
    log = []
    steps = [_step(n, log) for n in ("a", "b")]
    DependencyPipeline(steps, resume_after="zzz").run()
    assert log == ["a:primary", "b:primary"]


def test_hand_over_stops_pipeline():
    log = []
    steps = [_step("a", log), _step("b", log, on_installed=lambda: True), _step("c", log)]
    report = DependencyPipeline(steps).run()
    assert report.handed_over
    assert [o.name for o in report.outcomes] == ["a", "b"]
    assert "c:primary" not in log


def test_failed_hand_over_keeps_going():
    log = []
    steps = [_step("a", log, on_installed=lambda: False), _step("b", log)]
    report = DependencyPipeline(steps).run()
    assert not report.handed_over
    assert log == ["a:primary", "b:primary"]
