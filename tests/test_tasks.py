from __future__ import annotations

from pathlib import Path

from app.tasks import (
    PRINCIPAL_SYSTEM,
    SchtasksScheduler,
    ScheduledTaskDescriptor,
    TaskRegistrar,
    TriggerKind,
)

from conftest import MemoryScheduler, ScriptedRunner

LAUNCHER = Path(r"C:\HostMaint\hostmaint.exe")


def test_periodic_task_is_registered_once(cfg, scheduler):
    registrar = TaskRegistrar(scheduler, cfg, LAUNCHER, "operator")

    first = registrar.ensure_periodic_task()
    second = registrar.ensure_periodic_task()

    assert first.ok and first.reason == "created"
    assert second.ok and second.reason == "present"
    assert len(scheduler.created) == 1
    task = scheduler.tasks[cfg.periodic_task_name]
    assert task.principal == PRINCIPAL_SYSTEM
    assert task.trigger is TriggerKind.PERIODIC
    assert task.command == (str(LAUNCHER), "--no-pause")


def test_periodic_task_falls_back_to_current_user(cfg):
    scheduler = MemoryScheduler(fail_create_for=(PRINCIPAL_SYSTEM,))
    result = TaskRegistrar(scheduler, cfg, LAUNCHER, "operator").ensure_periodic_task()

    assert result.ok and result.detail == "operator"
    assert [t.principal for t in scheduler.created] == [PRINCIPAL_SYSTEM, "operator"]


def test_periodic_task_failure_is_not_fatal(cfg):
    scheduler = MemoryScheduler(fail_create_for=("*",))
    result = TaskRegistrar(scheduler, cfg, LAUNCHER, "operator").ensure_periodic_task()
    assert not result.ok
    assert scheduler.tasks == {}


def test_resume_task_replaces_previous_one(cfg, scheduler):
    registrar = TaskRegistrar(scheduler, cfg, LAUNCHER, "operator")
    registrar.register_resume_task(1)
    registrar.register_resume_task(2)

    resume = [t for t in scheduler.tasks.values() if t.name == cfg.resume_task_name]
    assert len(resume) == 1
    assert resume[0].command[-2:] == ("--resume-attempt", "2")
    assert resume[0].trigger is TriggerKind.ON_LOGON
    assert resume[0].principal == "operator"
    assert resume[0].delay_seconds == cfg.resume_delay_seconds


def test_resume_task_not_created_when_stale_one_cannot_be_removed(cfg):
    scheduler = MemoryScheduler(fail_delete=True)
    registrar = TaskRegistrar(scheduler, cfg, LAUNCHER, "operator")
    scheduler.tasks[cfg.resume_task_name] = registrar.resume_descriptor(1)

    result = registrar.register_resume_task(2)
    assert not result.ok
    assert len(scheduler.created) == 0


def test_schtasks_argv_for_both_triggers():
    scheduler = SchtasksScheduler(ScriptedRunner())
    periodic = ScheduledTaskDescriptor("HM\\P", TriggerKind.PERIODIC, (str(LAUNCHER), "--no-pause"),
                                       monthly_day=15, start_time="02:30")
    argv = scheduler.build_create_argv(periodic)
    assert argv[:6] == ["schtasks", "/Create", "/TN", "HM\\P", "/TR", f"{LAUNCHER} --no-pause"]
    assert ["/SC", "MONTHLY", "/D", "15", "/ST", "02:30"] == argv[6:12]
    assert "/IT" not in argv
    assert argv[-1] == "/F"

    logon = ScheduledTaskDescriptor("HM\\R", TriggerKind.ON_LOGON, (str(LAUNCHER),),
                                    principal="operator", delay_seconds=90)
    argv = scheduler.build_create_argv(logon)
    assert ["/SC", "ONLOGON", "/DELAY", "0001:30"] == argv[6:10]
    assert ["/RL", "HIGHEST", "/RU", "operator", "/IT", "/F"] == argv[10:]


def test_schtasks_delete_of_absent_task_is_success():
    runner = ScriptedRunner(rules={"/Query": 1})
    assert SchtasksScheduler(runner).delete("HM\\R")
    assert not runner.ran("/Delete")


def test_machine_account_resume_task_runs_as_system(cfg, scheduler):
    registrar = TaskRegistrar(scheduler, cfg, LAUNCHER, "WS01$")
    argv = SchtasksScheduler(ScriptedRunner()).build_create_argv(registrar.resume_descriptor(1))

    assert registrar.user == PRINCIPAL_SYSTEM
    assert ["/RU", "SYSTEM"] == argv[argv.index("/RU"):argv.index("/RU") + 2]
    assert "/IT" not in argv
