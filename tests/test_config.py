from __future__ import annotations

import json

from app.config import LauncherConfig, load_config, save_config


def test_defaults_when_file_missing(tmp_path):
    cfg = load_config(tmp_path / "missing.json", env={})
    assert cfg == LauncherConfig()


def test_file_values_are_coerced(tmp_path):
    path = tmp_path / "launcher.json"
    path.write_text(json.dumps({
        "monthly_day": "15",
        "http_timeout": 5,
        "single_instance_lock": "yes",
        "unknown_key": 1,
    }), encoding="utf-8")
    cfg = load_config(path, env={})
    assert cfg.monthly_day == 15
    assert cfg.http_timeout == 5.0
    assert cfg.single_instance_lock is True
    assert not hasattr(cfg, "unknown_key")


def test_invalid_value_keeps_default(tmp_path):
    path = tmp_path / "launcher.json"
    path.write_text(json.dumps({"max_resume_reboots": "many"}), encoding="utf-8")
    assert load_config(path, env={}).max_resume_reboots == LauncherConfig().max_resume_reboots


def test_unreadable_json_falls_back_to_defaults(tmp_path):
    path = tmp_path / "launcher.json"
    path.write_text("{ not json", encoding="utf-8")
    assert load_config(path, env={}) == LauncherConfig()


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "launcher.json"
    path.write_text(json.dumps({"payload_url": "https://file/p.zip"}), encoding="utf-8")
    cfg = load_config(path, env={"HM_PAYLOAD_URL": "https://env/p.zip", "HM_LOGLEVEL": "DEBUG"})
    assert cfg.payload_url == "https://env/p.zip"
    assert cfg.log_level == "DEBUG"


def test_config_path_from_environment(tmp_path):
    path = tmp_path / "other.json"
    path.write_text(json.dumps({"start_time": "04:15"}), encoding="utf-8")
    assert load_config(env={"HM_CONFIG": str(path)}).start_time == "04:15"


def test_save_then_load(tmp_path):
    path = tmp_path / "cfg" / "launcher.json"
    cfg = LauncherConfig(resume_delay_seconds=120, defender_exclusions=False)
    save_config(cfg, path)
    assert load_config(path, env={}) == cfg
    assert [p.name for p in path.parent.iterdir()] == ["launcher.json"]
