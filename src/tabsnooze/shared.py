import inspect
import textwrap
import shutil
import os
import uuid
import time
from datetime import datetime
from pathlib import Path
from dateutil.parser import parse as dateutil_parse

from tabsnooze.tabsnooze_env import TabSnoozeEnvironment

ELLIPSIS_CHAR = "…"
REPEATING = "↻"  # Flag for recurring items
WINDOW = "▣"  # Flag for window groups

DT_FMT = "%Y-%m-%d %H:%M"

WEEKDAY_NAMES = [
    "sunday",
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


def ms_to_local(ms: int) -> datetime:
    """Epoch milliseconds -> local-naive datetime."""
    return datetime.fromtimestamp(ms / 1000)


def local_to_ms(dt: datetime) -> int:
    """Local-naive (or aware) datetime -> epoch milliseconds."""
    return int(round(dt.timestamp() * 1000))


def js_weekday(dt: datetime) -> int:
    """Weekday number with 0 = Sunday ... 6 = Saturday."""
    return (dt.weekday() + 1) % 7


def parse_hhmm(value: str | None) -> tuple[int, int] | None:
    """
    Parse "HH:MM" into (hour, minute).

    Returns None for anything that is not a valid time of day.
    """
    if not isinstance(value, str):
        return None
    parts = value.strip().split(":")
    if len(parts) != 2:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours, minutes


def parse_when(s: str, now: int | None = None) -> int:
    """
    Parse a user supplied date/time into epoch milliseconds.

    Accepts anything dateutil understands; missing fields default to the
    corresponding fields of `now`.
    """
    if now is None:
        now = now_ms()
    default = ms_to_local(now).replace(second=0, microsecond=0)
    dt = dateutil_parse(s, default=default)
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return local_to_ms(dt)


def fmt_ms(ms: int) -> str:
    return ms_to_local(ms).strftime(DT_FMT)


def time_left(wake_time: int, now: int | None = None) -> str:
    """Rough 'in 2d 3h' / 'overdue' phrasing for list views."""
    if now is None:
        now = now_ms()
    seconds = (wake_time - now) // 1000
    if seconds <= 0:
        return "overdue"
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes and not days:
        parts.append(f"{minutes}m")
    return "in " + (" ".join(parts) if parts else "<1m")


def truncate_string(s: str, max_length: int) -> str:
    if len(s) > max_length:
        return f"{s[: max_length - 2]} {ELLIPSIS_CHAR}"
    else:
        return s


def _get_runtime_home() -> Path:
    override = os.environ.get("TABSNOOZE_HOME")
    if override:
        return Path(override).expanduser()
    return TabSnoozeEnvironment().home


def _resolve_log_file_path(file_path: str | Path) -> Path:
    path = Path(file_path)
    if path.is_absolute():
        return path
    return _get_runtime_home() / path


def _default_log_relative_path(kind: str) -> Path:
    """Return logs/log_<YYMMDD>.md style paths under the runtime home."""
    suffix = datetime.now().strftime("%y%m%d")
    return Path("logs") / f"{kind}_{suffix}.md"


def log_msg(
    msg: str,
    file_path: str | Path | None = None,
    print_output: bool = False,
):
    """
    Log a message and save it directly to a file.

    Args:
        msg (str): The message to log.
        file_path (str | Path | None, optional): Overrides the default path when
            provided. Defaults to ``None`` which writes to ``logs/log_<YYMMDD>.md``.
        print_output (bool, optional): If True, also print to console.
    """
    frame = inspect.stack()[1].frame
    func_name = frame.f_code.co_name

    # Default: just function name
    caller_name = func_name

    # Detect instance/class/static context
    if "self" in frame.f_locals:  # instance method
        cls_name = frame.f_locals["self"].__class__.__name__
        caller_name = f"{cls_name}.{func_name}"
    elif "cls" in frame.f_locals:  # classmethod
        cls_name = frame.f_locals["cls"].__name__
        caller_name = f"{cls_name}.{func_name}"
    del frame

    lines = [
        f"- {datetime.now().strftime('%H:%M:%S')} log_msg ({caller_name}):  ",
    ]
    lines.extend(
        [
            f"\n{x}"
            for x in textwrap.wrap(
                msg.strip(),
                width=max(shutil.get_terminal_size()[0] - 6, 40),
                initial_indent="   ",
                subsequent_indent="   ",
            )
        ]
    )
    lines.append("\n\n")

    # Best-effort file logging; fall back to console when the file is unwritable.
    if file_path is None:
        file_path = _default_log_relative_path("log")
    log_path = _resolve_log_file_path(file_path)

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a", encoding="utf-8") as f:
            f.writelines(lines)
    except OSError:
        print_output = True

    if print_output:
        print("".join(lines))
