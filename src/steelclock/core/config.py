"""
Configuration for SteelClock.

The on-disk format is a single JSON document (config.json). It is parsed
into pydantic models and validated before anything touches the gateway,
so a broken file never tears down a running session.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    BaseModel,
    Field,
    StrictBool,
    StrictInt,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError, NoWidgetsError

log = logging.getLogger(__name__)

DEFAULT_GAME_NAME = "STEELCLOCK"
DEFAULT_GAME_DISPLAY_NAME = "SteelClock"
DEFAULT_DEVELOPER = "SteelClock"
DEFAULT_EVENT_NAME = "STEELCLOCK_DISPLAY"
DEFAULT_DISPLAY_WIDTH = 128
DEFAULT_DISPLAY_HEIGHT = 40
DEFAULT_REFRESH_RATE_MS = 100
DEFAULT_THRESHOLD = 128
DEFAULT_BATCH_SIZE = 10
DEFAULT_UPDATE_INTERVAL = 1.0
DEFAULT_AUTO_HIDE_TIMEOUT = 2.0
# Encoder budget: largest frame the engine will pack (4 KB)
MAX_DISPLAY_PIXELS = 256 * 128

CONFIG_FILENAME = "config.json"
PROFILES_DIRNAME = "profiles"

Backend = Literal["gamesense", "preview"]


class EnvSettings(BaseSettings):
    """Environment overrides, read from STEELCLOCK_* variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="STEELCLOCK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_dir: Optional[str] = None
    core_props_path: Optional[str] = None
    settle_seconds: float = 2.0


def load_env_settings() -> EnvSettings:
    """Read environment settings, falling back to defaults on a bad .env."""
    try:
        return EnvSettings()
    except Exception as e:
        log.warning(f"Ignoring invalid environment settings: {e}")
        return EnvSettings.model_construct()


class DisplayConfig(BaseModel):
    """Physical display shape and encoding threshold."""

    width: StrictInt = Field(default=DEFAULT_DISPLAY_WIDTH, gt=0, multiple_of=8)
    height: StrictInt = Field(default=DEFAULT_DISPLAY_HEIGHT, gt=0)
    background: StrictInt = Field(default=0, ge=0, le=255)
    threshold: StrictInt = Field(default=DEFAULT_THRESHOLD, ge=1, le=255)

    @model_validator(mode="after")
    def check_budget(self) -> "DisplayConfig":
        if self.width * self.height > MAX_DISPLAY_PIXELS:
            raise ValueError(
                f"display {self.width}x{self.height} exceeds {MAX_DISPLAY_PIXELS} pixels"
            )
        return self


class PositionConfig(BaseModel):
    x: StrictInt = 0
    y: StrictInt = 0
    w: StrictInt = Field(default=DEFAULT_DISPLAY_WIDTH, gt=0)
    h: StrictInt = Field(default=DEFAULT_DISPLAY_HEIGHT, gt=0)
    z: StrictInt = 0


class StyleConfig(BaseModel):
    """Widget styling. background == -1 means transparent."""

    background: StrictInt = Field(default=0, ge=-1, le=255)
    transparent_value: Optional[StrictInt] = Field(default=None, ge=0, le=255)
    border: StrictInt = Field(default=-1, ge=-1, le=255)

    @property
    def is_transparent(self) -> bool:
        return self.background == -1


class AutoHideConfig(BaseModel):
    enabled: StrictBool = False
    timeout: float = Field(default=DEFAULT_AUTO_HIDE_TIMEOUT, gt=0)


class WidgetConfig(BaseModel):
    """One entry of the "widgets" array. properties is opaque to the engine."""

    type: str = Field(min_length=1)
    id: str = Field(min_length=1)
    enabled: StrictBool = True
    position: PositionConfig = Field(default_factory=PositionConfig)
    style: StyleConfig = Field(default_factory=StyleConfig)
    update_interval: float = Field(default=DEFAULT_UPDATE_INTERVAL, gt=0)
    auto_hide: AutoHideConfig = Field(default_factory=AutoHideConfig)
    properties: Dict[str, Any] = Field(default_factory=dict)


class BatchConfig(BaseModel):
    enabled: StrictBool = False
    size: StrictInt = Field(default=DEFAULT_BATCH_SIZE, ge=1, le=100)
    event_name: Optional[str] = None


class WebConfig(BaseModel):
    """Read-only web preview server."""

    enabled: StrictBool = False
    host: str = "127.0.0.1"
    port: StrictInt = Field(default=8000, ge=1, le=65535)


class Config(BaseModel):
    """
    Complete application configuration.

    Field constraints cover single values; the validators below handle the
    rules that span fields. Widgets without an id get "<type>_<n>" and
    widgets without a size cover the whole display.
    """

    game_name: str = Field(default=DEFAULT_GAME_NAME, min_length=1)
    game_display_name: str = Field(default=DEFAULT_GAME_DISPLAY_NAME, min_length=1)
    developer: str = DEFAULT_DEVELOPER
    deinitialize_timer_ms: StrictInt = 0
    refresh_rate_ms: StrictInt = Field(default=DEFAULT_REFRESH_RATE_MS, gt=0)
    frame_dedup_enabled: StrictBool = True
    unregister_on_exit: StrictBool = False
    bundled_font_url: Optional[str] = None
    event_name: str = Field(default=DEFAULT_EVENT_NAME, min_length=1)
    device_type: Optional[str] = None
    backend: Backend = "gamesense"
    failover_backend: Optional[Backend] = None
    core_props_path: Optional[str] = None
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    web: WebConfig = Field(default_factory=WebConfig)
    widgets: List[WidgetConfig] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fill_widget_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("widgets"), list):
            return data

        display = data.get("display")
        if isinstance(display, DisplayConfig):
            size = {"w": display.width, "h": display.height}
        elif isinstance(display, dict):
            size = {
                "w": display.get("width", DEFAULT_DISPLAY_WIDTH),
                "h": display.get("height", DEFAULT_DISPLAY_HEIGHT),
            }
        else:
            size = {"w": DEFAULT_DISPLAY_WIDTH, "h": DEFAULT_DISPLAY_HEIGHT}

        widgets = []
        for index, raw in enumerate(data["widgets"]):
            if isinstance(raw, dict):
                raw = dict(raw)
                if raw.get("type") and not raw.get("id"):
                    raw["id"] = f"{raw['type']}_{index + 1}"
                position = raw.get("position", {})
                if isinstance(position, dict):
                    raw["position"] = {**size, **position}
            widgets.append(raw)
        return {**data, "widgets": widgets}

    @field_validator("deinitialize_timer_ms")
    @classmethod
    def check_deinitialize_timer(cls, v: int) -> int:
        if v and not 1000 <= v <= 60000:
            raise ValueError(f"must be 0 or between 1000 and 60000 (got {v})")
        return v

    @model_validator(mode="after")
    def check_cross_fields(self) -> "Config":
        # GameSense answers 400 when both names are identical
        if self.game_name == self.game_display_name:
            raise ValueError("game_name and game_display_name must differ")

        if not self.widgets:
            raise ValueError("at least one widget must be configured")
        seen = set()
        for w in self.widgets:
            if w.id in seen:
                raise ValueError(f"duplicate widget id '{w.id}'")
            seen.add(w.id)
        if not self.enabled_widgets:
            raise NoWidgetsError()
        return self

    @property
    def resolution_token(self) -> str:
        """Gateway device-type token, e.g. "screened-128x40"."""
        if self.device_type:
            return self.device_type
        return f"screened-{self.display.width}x{self.display.height}"

    @property
    def batch_event_name(self) -> str:
        return self.batch.event_name or self.event_name

    @property
    def enabled_widgets(self) -> List[WidgetConfig]:
        return [w for w in self.widgets if w.enabled]


def _config_error(error: ValidationError) -> ConfigError:
    problems = []
    for item in error.errors():
        where = ".".join(str(part) for part in item["loc"])
        problems.append(f"{where}: {item['msg']}" if where else item["msg"])
    return ConfigError("invalid configuration: " + "; ".join(problems))


def parse_config(raw: Any) -> Config:
    """Build a Config from decoded JSON. Raises ConfigError on any invalid value."""
    try:
        return Config.model_validate(raw)
    except ValidationError as e:
        raise _config_error(e) from e


def validate_config(cfg: Config) -> Config:
    """
    Re-check a Config that was built or modified in code.

    Models only validate on construction, so attribute assignment can leave
    a Config inconsistent. Returns cfg for chaining.
    """
    try:
        Config.model_validate(cfg.model_dump())
    except ValidationError as e:
        raise _config_error(e) from e
    return cfg


def load_config(path) -> Config:
    """Read, parse and validate a config file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in {path}: {e}") from e

    cfg = parse_config(raw)
    log.info(f"Loaded config {path}: {cfg.game_name} with {len(cfg.widgets)} widget(s)")
    return cfg


def default_config() -> Config:
    """A working single-clock configuration."""
    return Config(
        widgets=[
            WidgetConfig(
                type="clock",
                id="clock",
                properties={"format": "%H:%M:%S", "align": {"h": "center", "v": "center"}},
            )
        ]
    )


# --- App directory discovery ---


def is_app_dir(path: Path) -> bool:
    """A directory qualifies if it holds config.json or a profiles/ folder."""
    return (path / CONFIG_FILENAME).is_file() or (path / PROFILES_DIRNAME).is_dir()


def find_app_dir(cwd: Optional[Path] = None, exe_dir: Optional[Path] = None) -> Path:
    """
    Locate the application directory.

    Search order: the current working directory, then the directory of the
    running script. Falls back to the working directory.
    """
    cwd = Path(cwd) if cwd is not None else Path(os.getcwd())
    if exe_dir is None:
        exe_dir = Path(sys.argv[0]).resolve().parent if sys.argv and sys.argv[0] else cwd

    for candidate in (cwd, Path(exe_dir)):
        if is_app_dir(candidate):
            return candidate
    return cwd
