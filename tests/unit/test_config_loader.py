"""Tests for recurringthings.config_loader."""

import json

import pytest

import recurringthings.config_loader as cfg
from recurringthings.models import MonthDayBehavior

pytestmark = pytest.mark.unit


def test_from_dict_applies_defaults():
    """EngineConfig.from_dict applies defaults for an empty mapping."""
    conf = cfg.EngineConfig.from_dict({})

    assert conf.fetch_timeout_seconds is None
    assert conf.yield_frequency == 50
    assert conf.default_month_day_behavior == MonthDayBehavior.THROW
    assert conf.log_level == "INFO"


def test_from_dict_none_is_defaults():
    assert cfg.EngineConfig.from_dict(None) == cfg.EngineConfig()


@pytest.mark.parametrize(
    "raw,expected",
    [(0, 1), (-5, 1), (20000, 10000), ("25", 25), ("many", 50), (None, 50)],
)
def test_yield_frequency_is_coerced(raw, expected):
    assert cfg.EngineConfig.from_dict({"yield_frequency": raw}).yield_frequency == expected


@pytest.mark.parametrize("raw,expected", [("2.5", 2.5), (10, 10.0), (0, None), (-1, None), ("soon", None)])
def test_fetch_timeout_is_coerced(raw, expected):
    assert cfg.EngineConfig.from_dict({"fetch_timeout_seconds": raw}).fetch_timeout_seconds == expected


def test_invalid_behavior_and_log_level_fall_back(caplog):
    with caplog.at_level("WARNING", logger="recurringthings.config_loader"):
        conf = cfg.EngineConfig.from_dict(
            {"default_month_day_behavior": "round", "log_level": "chatty"}
        )
    assert conf.default_month_day_behavior == MonthDayBehavior.THROW
    assert conf.log_level == "INFO"
    assert "default_month_day_behavior" in caplog.text


def test_behavior_is_case_insensitive():
    conf = cfg.EngineConfig.from_dict({"default_month_day_behavior": "CLAMP"})
    assert conf.default_month_day_behavior == MonthDayBehavior.CLAMP


def test_load_config_reads_yaml(tmp_path):
    """load_config reads a YAML file and uses values from it."""
    cfg_path = tmp_path / "engine.yaml"
    cfg_path.write_text(
        "fetch_timeout_seconds: 3\n"
        "yield_frequency: 200\n"
        "default_month_day_behavior: skip\n"
        "log_level: debug\n",
        encoding="utf-8",
    )

    conf = cfg.load_config(path=cfg_path, environ={})

    assert conf.fetch_timeout_seconds == 3.0
    assert conf.yield_frequency == 200
    assert conf.default_month_day_behavior == MonthDayBehavior.SKIP
    # log_level should be uppercased by loader
    assert conf.log_level == "DEBUG"


def test_load_config_reads_json_by_suffix(tmp_path):
    cfg_path = tmp_path / "engine.json"
    cfg_path.write_text(json.dumps({"yield_frequency": 5}), encoding="utf-8")
    assert cfg.load_config(path=str(cfg_path), environ={}).yield_frequency == 5


def test_empty_yaml_file_gives_defaults(tmp_path):
    cfg_path = tmp_path / "empty.yaml"
    cfg_path.write_text("", encoding="utf-8")
    assert cfg.load_config(path=cfg_path, environ={}) == cfg.EngineConfig()


def test_missing_file_gives_defaults(tmp_path):
    assert cfg.load_config(path=tmp_path / "absent.yaml", environ={}) == cfg.EngineConfig()


def test_non_mapping_file_rejected(tmp_path):
    cfg_path = tmp_path / "list.yaml"
    cfg_path.write_text("- one\n- two\n", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        cfg.load_config(path=cfg_path, environ={})


def test_environment_overrides_file_values(tmp_path):
    cfg_path = tmp_path / "engine.yaml"
    cfg_path.write_text("yield_frequency: 200\nlog_level: INFO\n", encoding="utf-8")
    environ = {
        cfg.ENV_YIELD_FREQUENCY: "7",
        cfg.ENV_FETCH_TIMEOUT: "1.5",
        cfg.ENV_LOG_LEVEL: "warning",
    }

    conf = cfg.load_config(path=cfg_path, environ=environ)

    assert conf.yield_frequency == 7
    assert conf.fetch_timeout_seconds == 1.5
    assert conf.log_level == "WARNING"


def test_process_environment_used_by_default(monkeypatch):
    monkeypatch.setenv(cfg.ENV_YIELD_FREQUENCY, "9")
    assert cfg.load_config().yield_frequency == 9
