from pathlib import Path
import os
import tomllib
from pydantic import BaseModel, Field, ValidationError
from typing import Literal, Optional
from jinja2 import Template

HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


# ─── Config Schema ─────────────────────────────────────────────────
class CommandsConfig(BaseModel):
    open_tab: str = "xdg-open {url}"
    open_window: str = ""
    notify: str = "notify-send --icon {icon} {title} {message}"
    default_icon: str = "icons/icon128.png"


class AlarmsConfig(BaseModel):
    poll_seconds: float = Field(6.0, gt=0)
    granularity_seconds: int = Field(60, ge=1)
    max_pending: int = Field(0, ge=0)


class StoreConfig(BaseModel):
    # chrome.storage.local allows 10 MiB
    quota_bytes: int = Field(10_485_760, ge=0)


class DelaySettings(BaseModel):
    later_today_hours: int = Field(3, ge=1, le=23)
    tonight_time: str = Field("18:00", pattern=HHMM)
    tomorrow_time: str = Field("09:00", pattern=HHMM)
    weekend_day: Literal["saturday", "sunday"] = "saturday"
    weekend_time: str = Field("09:00", pattern=HHMM)
    next_week_day: int = Field(1, ge=0, le=6)
    next_week_time: str = Field("09:00", pattern=HHMM)
    next_month_same_day: bool = True
    someday_min_months: int = Field(3, ge=1)
    someday_max_months: int = Field(12, ge=1)


class TabSnoozeConfig(BaseModel):
    title: str = "TabSnooze Configuration"
    commands: CommandsConfig = CommandsConfig()
    alarms: AlarmsConfig = AlarmsConfig()
    store: StoreConfig = StoreConfig()
    delay: DelaySettings = DelaySettings()


# ─── Commented Template ────────────────────────────────────
CONFIG_TEMPLATE = """\
title = "{{ title }}"

[commands]
# Shell commands used to restore snoozed tabs. Each is split with
# shlex before the placeholders are filled in.
#
# open_tab: {url} is replaced by the tab's url
open_tab = "{{ commands.open_tab }}"

# open_window: {urls} expands to one argument per url, in tab order.
# Leave empty to open each url with open_tab instead.
open_window = "{{ commands.open_window }}"

# notify: {title}, {message} and {icon}. Leave empty to disable.
notify = "{{ commands.notify }}"

# icon used when a snoozed tab has no favicon
default_icon = "{{ commands.default_icon }}"

[alarms]
# seconds between checks for due alarms
poll_seconds = {{ alarms.poll_seconds }}

# alarm times are rounded up to a multiple of this many seconds
granularity_seconds = {{ alarms.granularity_seconds }}

# maximum number of pending alarms; 0 means no limit
max_pending = {{ alarms.max_pending }}

[store]
# largest serialized value the store will accept, in bytes
quota_bytes = {{ store.quota_bytes }}

[delay]
# Defaults for the snooze presets. Once settings have been saved
# with "tabsnooze settings --set", the stored record takes precedence.

# later_today: hours from now
later_today_hours = {{ delay.later_today_hours }}

# times are "HH:MM" on a 24 hour clock
tonight_time = "{{ delay.tonight_time }}"
tomorrow_time = "{{ delay.tomorrow_time }}"

# weekend_day: "saturday" | "sunday"
weekend_day = "{{ delay.weekend_day }}"
weekend_time = "{{ delay.weekend_time }}"

# next_week_day: 0 = Sunday, 1 = Monday, ... 6 = Saturday
next_week_day = {{ delay.next_week_day }}
next_week_time = "{{ delay.next_week_time }}"

# true: same day of the month; false: same weekday of the month
next_month_same_day = {{ delay.next_month_same_day | lower }}

# "someday" picks a random month count in this range
someday_min_months = {{ delay.someday_min_months }}
someday_max_months = {{ delay.someday_max_months }}
"""

# ─── Save Config with Comments ───────────────────────────────


def render_config(config: TabSnoozeConfig) -> str:
    template = Template(CONFIG_TEMPLATE)
    return template.render(**config.model_dump()).strip() + "\n"


def save_config_from_template(config: TabSnoozeConfig, path: Path):
    path.write_text(render_config(config), encoding="utf-8")
    print(f"✅ Config with comments written to: {path}")


# ─── Main Environment Class ───────────────────────────────


class TabSnoozeEnvironment:
    def __init__(self):
        self._home = self._resolve_home()
        self._config: Optional[TabSnoozeConfig] = None

    @property
    def home(self) -> Path:
        return self._home

    @property
    def config_path(self) -> Path:
        return self.home / "config.toml"

    @property
    def db_path(self) -> Path:
        return self.home / "tabsnooze.db"

    @property
    def log_dir(self) -> Path:
        return self.home / "logs"

    def ensure(self, init_config: bool = True, init_db_fn: Optional[callable] = None):
        self.home.mkdir(parents=True, exist_ok=True)

        if init_config and not self.config_path.exists():
            save_config_from_template(TabSnoozeConfig(), self.config_path)

        if init_db_fn and not self.db_path.exists():
            init_db_fn(self.db_path)

    def load_config(self) -> TabSnoozeConfig:
        # Step 1: Create the file if it doesn't exist
        if not self.config_path.exists():
            config = TabSnoozeConfig()
            self.home.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(render_config(config), encoding="utf-8")
            print(f"✅ Created new config file at {self.config_path}")
            self._config = config
            return config

        # Step 2: Try to load and validate the config
        try:
            with open(self.config_path, "rb") as f:
                data = tomllib.load(f)
            config = TabSnoozeConfig.model_validate(data)
        except (ValidationError, tomllib.TOMLDecodeError) as e:
            print(f"⚠️ Config error in {self.config_path}: {e}\nUsing defaults.")
            config = TabSnoozeConfig()

        # Step 3: Always regenerate the canonical version
        rendered = render_config(config)
        current_text = self.config_path.read_text(encoding="utf-8")
        if rendered != current_text:
            self.config_path.write_text(rendered, encoding="utf-8")
            print(f"✅ Updated {self.config_path} with any missing defaults.")

        self._config = config
        return config

    @property
    def config(self) -> TabSnoozeConfig:
        if self._config is None:
            return self.load_config()
        return self._config

    def _resolve_home(self) -> Path:
        cwd = Path.cwd()
        if (cwd / "config.toml").exists() and (cwd / "tabsnooze.db").exists():
            return cwd

        env_home = os.getenv("TABSNOOZE_HOME")
        if env_home:
            return Path(env_home).expanduser()

        xdg_home = os.getenv("XDG_CONFIG_HOME")
        if xdg_home:
            return Path(xdg_home).expanduser() / "tabsnooze"
        else:
            return Path.home() / ".config" / "tabsnooze"
