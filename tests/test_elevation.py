from __future__ import annotations

import pytest

from app.context import FLAG_ELEVATED
from app.elevation import ElevationStatus, ensure_elevated, is_elevated, session_probe
from app.errors import ExitCode, LauncherFatal

from conftest import ScriptedRunner


def _cmd(args):
    return ["launcher.exe", *args]


def test_already_elevated_never_relaunches():
    relaunches = []
    status = ensure_elevated(["--no-pause"], probes=[lambda: True],
                             relaunch=lambda c: relaunches.append(c) or True, build_command=_cmd)
    assert status is ElevationStatus.ELEVATED
    assert relaunches == []


def test_one_positive_probe_is_enough():
    def blocked():
        raise PermissionError("policy")

    assert is_elevated([blocked, lambda: False, lambda: True])
    assert not is_elevated([blocked, lambda: False])


def test_unelevated_relaunches_once_with_marker():
    relaunches = []
    status = ensure_elevated(["--no-pause"], probes=[lambda: False],
                             relaunch=lambda c: relaunches.append(list(c)) or True, build_command=_cmd)
    assert status is ElevationStatus.RELAUNCHED
    assert relaunches == [["launcher.exe", "--no-pause", FLAG_ELEVATED]]


def test_relaunched_process_still_unelevated_is_fatal():
    relaunches = []
    with pytest.raises(LauncherFatal) as exc:
        ensure_elevated([FLAG_ELEVATED], probes=[lambda: False],
                        relaunch=lambda c: relaunches.append(c) or True, build_command=_cmd)
    assert exc.value.code is ExitCode.ELEVATION_FAILED
    assert relaunches == []


def test_rejected_relaunch_is_fatal():
    with pytest.raises(LauncherFatal) as exc:
        ensure_elevated([], probes=[lambda: False], relaunch=lambda c: False, build_command=_cmd)
    assert exc.value.code is ExitCode.ELEVATION_FAILED
    assert exc.value.path == "launcher.exe"


def test_session_probe_uses_net_session_exit_code():
    assert session_probe(ScriptedRunner(default_rc=0))
    runner = ScriptedRunner(default_rc=2)
    assert not session_probe(runner)
    assert runner.calls == [["net", "session"]]
