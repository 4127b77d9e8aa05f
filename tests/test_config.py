"""Tests for configuration parsing, validation and discovery."""

import json

import pytest

from fakes import invalid_config, make_config, widget_config
from steelclock.core.config import (
    CONFIG_FILENAME,
    default_config,
    find_app_dir,
    load_config,
    load_env_settings,
    parse_config,
    validate_config,
)
from steelclock.core.errors import ConfigError, NoWidgetsError

SAMPLE = {
    "game_name": "MYCLOCK",
    "game_display_name": "My Clock",
    "refresh_rate_ms": 50,
    "display": {"width": 128, "height": 52},
    "batch": {"enabled": True, "size": 5},
    "widgets": [
        {
            "type": "clock",
            "id": "time",
            "position": {"x": 0, "y": 0, "w": 128, "h": 20, "z": 2},
            "style": {"background": -1, "transparent_value": 0},
            "properties": {"format": "%H:%M"},
        },
        {"type": "text", "enabled": False},
    ],
}


CLOCK = {"widgets": [{"type": "clock"}]}


def with_clock(**raw):
    return {**CLOCK, **raw}


class TestParse:
    def test_full_document(self):
        cfg = parse_config(SAMPLE)
        assert cfg.game_name == "MYCLOCK"
        assert cfg.refresh_rate_ms == 50
        assert cfg.display.height == 52
        assert cfg.resolution_token == "screened-128x52"
        assert cfg.batch.enabled and cfg.batch.size == 5
        assert cfg.batch_event_name == cfg.event_name

        clock = cfg.widgets[0]
        assert clock.position.z == 2
        assert clock.style.is_transparent
        assert clock.style.transparent_value == 0
        assert clock.properties == {"format": "%H:%M"}

    def test_defaults(self):
        cfg = parse_config(CLOCK)
        assert cfg.game_name == "STEELCLOCK"
        assert cfg.event_name == "STEELCLOCK_DISPLAY"
        assert cfg.frame_dedup_enabled is True
        assert cfg.unregister_on_exit is False
        assert cfg.backend == "gamesense"
        assert cfg.failover_backend is None
        widget = cfg.widgets[0]
        assert widget.id == "clock_1"
        assert (widget.position.w, widget.position.h) == (128, 40)

    def test_widget_defaults_follow_display(self):
        cfg = parse_config(with_clock(display={"width": 256, "height": 64}))
        assert (cfg.widgets[0].position.w, cfg.widgets[0].position.h) == (256, 64)

    def test_partial_position_keeps_display_size(self):
        cfg = parse_config(with_clock(widgets=[{"type": "clock", "position": {"x": 4}}]))
        position = cfg.widgets[0].position
        assert (position.x, position.w, position.h) == (4, 128, 40)

    def test_enabled_widgets(self):
        cfg = parse_config(SAMPLE)
        assert [w.id for w in cfg.enabled_widgets] == ["time"]

    def test_device_type_override(self):
        cfg = parse_config(with_clock(device_type="screened"))
        assert cfg.resolution_token == "screened"

    def test_unknown_keys_are_ignored(self):
        cfg = parse_config(with_clock(comment="hand edited"))
        assert cfg.game_name == "STEELCLOCK"

    @pytest.mark.parametrize(
        "raw",
        [
            [],
            with_clock(refresh_rate_ms="fast"),
            with_clock(refresh_rate_ms=True),
            with_clock(display=[]),
            with_clock(frame_dedup_enabled="yes"),
            {"widgets": {}},
            {"widgets": ["clock"]},
            {"widgets": [{"id": "no-type"}]},
            {"widgets": [{"type": "clock", "position": {"x": "left"}}]},
        ],
    )
    def test_type_errors(self, raw):
        with pytest.raises(ConfigError):
            parse_config(raw)

    def test_float_accepts_integers(self):
        cfg = parse_config({"widgets": [{"type": "clock", "update_interval": 2}]})
        assert cfg.widgets[0].update_interval == 2.0

    def test_error_names_the_field(self):
        with pytest.raises(ConfigError, match=r"widgets\.0\.style\.background"):
            parse_config({"widgets": [{"type": "clock", "style": {"background": 300}}]})


class TestValidate:
    def test_valid_config_passes(self):
        cfg = make_config()
        assert validate_config(cfg) is cfg

    def test_default_config_is_valid(self):
        validate_config(default_config())

    @pytest.mark.parametrize(
        "raw",
        [
            {"game_name": ""},
            {"game_display_name": "STEELCLOCK"},
            {"event_name": ""},
            {"backend": "serial"},
            {"failover_backend": "serial"},
            {"refresh_rate_ms": 0},
            {"deinitialize_timer_ms": 500},
            {"deinitialize_timer_ms": 60001},
            {"batch": {"size": 0}},
            {"batch": {"size": 101}},
            {"web": {"port": 0}},
            {"display": {"width": 100}},
            {"display": {"height": 0}},
            {"display": {"threshold": 0}},
            {"display": {"width": 512, "height": 128}},
        ],
    )
    def test_global_errors(self, raw):
        with pytest.raises(ConfigError):
            parse_config(with_clock(**raw))

    def test_deinitialize_timer_in_range(self):
        assert parse_config(with_clock(deinitialize_timer_ms=15000)).deinitialize_timer_ms == 15000

    @pytest.mark.parametrize(
        "widget",
        [
            {"position": {"w": 0}},
            {"position": {"h": -1}},
            {"style": {"background": -2}},
            {"style": {"background": 256}},
            {"style": {"transparent_value": 300}},
            {"style": {"border": 256}},
            {"update_interval": 0},
            {"auto_hide": {"enabled": True, "timeout": 0}},
        ],
    )
    def test_widget_errors(self, widget):
        with pytest.raises(ConfigError):
            parse_config({"widgets": [{"type": "clock", **widget}]})

    def test_duplicate_ids(self):
        raw = {"widgets": [{"type": "clock", "id": "a"}, {"type": "text", "id": "a"}]}
        with pytest.raises(ConfigError, match="duplicate"):
            parse_config(raw)

    def test_no_widgets(self):
        with pytest.raises(ConfigError, match="at least one widget"):
            parse_config({"widgets": []})

    def test_all_disabled(self):
        with pytest.raises(NoWidgetsError):
            parse_config({"widgets": [{"type": "clock", "enabled": False}]})

    def test_catches_changes_made_after_construction(self):
        cfg = make_config()
        cfg.refresh_rate_ms = 0
        with pytest.raises(ConfigError, match="refresh_rate_ms"):
            validate_config(cfg)

    def test_catches_duplicate_added_later(self):
        cfg = make_config([widget_config(widget_id="a")])
        cfg.widgets.append(widget_config(widget_id="a"))
        with pytest.raises(ConfigError, match="duplicate"):
            validate_config(cfg)

    def test_catches_disabled_widgets(self):
        with pytest.raises(NoWidgetsError):
            validate_config(invalid_config(widgets=[widget_config(enabled=False)]))


class TestLoad:
    def test_load_config(self, tmp_path):
        path = tmp_path / CONFIG_FILENAME
        path.write_text(json.dumps(SAMPLE))
        cfg = load_config(path)
        assert cfg.game_display_name == "My Clock"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="cannot read"):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / CONFIG_FILENAME
        path.write_text("{")
        with pytest.raises(ConfigError, match="invalid JSON"):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / CONFIG_FILENAME
        path.write_text(json.dumps({"refresh_rate_ms": -5, "widgets": [{"type": "clock"}]}))
        with pytest.raises(ConfigError, match="refresh_rate_ms"):
            load_config(path)


class TestAppDir:
    def test_prefers_cwd_with_config(self, tmp_path):
        cwd = tmp_path / "cwd"
        exe = tmp_path / "exe"
        cwd.mkdir()
        exe.mkdir()
        (cwd / CONFIG_FILENAME).write_text("{}")
        (exe / CONFIG_FILENAME).write_text("{}")
        assert find_app_dir(cwd, exe) == cwd

    def test_falls_back_to_exe_dir(self, tmp_path):
        cwd = tmp_path / "cwd"
        exe = tmp_path / "exe"
        cwd.mkdir()
        (exe / "profiles").mkdir(parents=True)
        assert find_app_dir(cwd, exe) == exe

    def test_defaults_to_cwd(self, tmp_path):
        assert find_app_dir(tmp_path, tmp_path / "nowhere") == tmp_path


class TestEnvSettings:
    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("STEELCLOCK_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("STEELCLOCK_SETTLE_SECONDS", "0.5")
        env = load_env_settings()
        assert env.log_level == "DEBUG"
        assert env.settle_seconds == 0.5

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("STEELCLOCK_LOG_LEVEL", raising=False)
        monkeypatch.delenv("STEELCLOCK_SETTLE_SECONDS", raising=False)
        env = load_env_settings()
        assert env.settle_seconds == 2.0
