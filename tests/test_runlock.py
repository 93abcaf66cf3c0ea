from __future__ import annotations

import os

import psutil

from app.runlock import RunLock


def test_acquire_and_release(tmp_path):
    lock = RunLock(tmp_path / "launcher.lock")
    assert lock.acquire()
    assert lock.path.read_text(encoding="utf-8") == str(os.getpid())
    lock.release()
    assert not lock.path.exists()


def test_live_owner_blocks_second_instance(tmp_path, monkeypatch):
    path = tmp_path / "launcher.lock"
    path.write_text(str(os.getpid() + 1), encoding="utf-8")
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: True)

    lock = RunLock(path)
    assert not lock.acquire()
    lock.release()
    assert path.exists()


def test_stale_lock_is_taken_over(tmp_path, monkeypatch):
    path = tmp_path / "launcher.lock"
    path.write_text("999999", encoding="utf-8")
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: False)

    lock = RunLock(path)
    assert lock.acquire()
    assert path.read_text(encoding="utf-8") == str(os.getpid())
