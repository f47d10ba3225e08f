import asyncio
import os
import click
from rich import print
from rich.console import Console
from rich.table import Table
from rich import box
from pydantic import ValidationError

from tabsnooze import __version__
from tabsnooze.controller import Controller, Engine
from tabsnooze.item import RECURRENCE_TYPES, RecurrencePattern
from tabsnooze.model import DatabaseManager, StoreError
from tabsnooze.presets import PRESETS, preset_wake_time
from tabsnooze.recurrence import next_occurrence
from tabsnooze.shared import (
    REPEATING,
    WINDOW,
    WEEKDAY_NAMES,
    fmt_ms,
    now_ms,
    parse_hhmm,
    parse_when,
    time_left,
    truncate_string,
)
from tabsnooze.tabsnooze_env import DelaySettings, TabSnoozeEnvironment


class _WhenParam(click.ParamType):
    name = "datetime"

    def convert(self, value, param, ctx):
        if value is None or isinstance(value, int):
            return value
        try:
            return parse_when(str(value))
        except (ValueError, OverflowError):
            self.fail("Expected a date/time such as '2025-01-16 09:00'", param, ctx)


class _DaysParam(click.ParamType):
    name = "days"

    def convert(self, value, param, ctx):
        if isinstance(value, list):
            return value
        days = []
        for part in str(value).split(","):
            part = part.strip().lower()
            if not part:
                continue
            if part.isdigit() and 0 <= int(part) <= 6:
                days.append(int(part))
                continue
            matches = [i for i, name in enumerate(WEEKDAY_NAMES) if name.startswith(part)]
            if len(part) < 2 or len(matches) != 1:
                self.fail(f"Unknown weekday {part!r}", param, ctx)
            days.append(matches[0])
        return sorted(set(days))


class _TimeParam(click.ParamType):
    name = "HH:MM"

    def convert(self, value, param, ctx):
        if parse_hhmm(value) is None:
            self.fail("Expected HH:MM on a 24 hour clock", param, ctx)
        return value


_WHEN = _WhenParam()
_DAYS = _DaysParam()
_TIME = _TimeParam()

console = Console()


def ensure_database(db_path, env: TabSnoozeEnvironment):
    print(f"[yellow]⚠️ [/yellow]Database not found. Creating new database at {db_path}")
    DatabaseManager(db_path, env).close()


def get_controller(ctx) -> Controller:
    return Controller(ctx.obj["DB"], ctx.obj["ENV"])


def resolve_or_fail(controller: Controller, tokens) -> list[str]:
    try:
        return controller.resolve_ids(tokens)
    except KeyError as e:
        raise click.ClickException(f"No snoozed tab or group with id {e.args[0]!r}")


def store_failed(e: StoreError) -> click.ClickException:
    return click.ClickException(f"Could not update the snooze store: {e}")


def pick_wake_time(controller: Controller, at, preset) -> int | None:
    if at is not None and preset is not None:
        raise click.UsageError("Use either --at or --preset, not both.")
    if preset is not None:
        settings = controller.db_manager.get_settings()
        return preset_wake_time(preset, settings, controller.clock())
    return at


@click.group()
@click.version_option(__version__, prog_name="tabsnooze", message="%(prog)s version %(version)s")
@click.option(
    "--home",
    help="Override the TabSnooze workspace directory (equivalent to setting $TABSNOOZE_HOME).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, home, verbose):
    """TabSnooze CLI – snooze tabs and windows until later."""
    if home:
        os.environ["TABSNOOZE_HOME"] = home  # Must be set before TabSnoozeEnvironment is instantiated

    env = TabSnoozeEnvironment()
    env.ensure(init_config=True, init_db_fn=lambda path: ensure_database(path, env))
    config = env.load_config()

    ctx.ensure_object(dict)
    ctx.obj["ENV"] = env
    ctx.obj["DB"] = env.db_path
    ctx.obj["CONFIG"] = config
    ctx.obj["VERBOSE"] = verbose


@cli.command()
@click.argument("urls", nargs=-1, required=True)
@click.option("--at", "at", type=_WHEN, help="Wake at this date/time.")
@click.option("--preset", type=click.Choice(PRESETS), help="Wake at a preset time.")
@click.option("--title", "titles", multiple=True, help="Title for each url, in order.")
@click.option("--window", is_flag=True, help="Snooze the urls together as one window.")
@click.option("--repeat", type=click.Choice(RECURRENCE_TYPES), help="Recurrence type.")
@click.option("--time", "time_of_day", type=_TIME, default="09:00", show_default=True)
@click.option("--days", type=_DAYS, help="Weekdays for weekly/custom, e.g. mon,wed,fri.")
@click.option("--day-of-month", type=click.IntRange(1, 31), help="Day for monthly.")
@click.option("--until", type=_WHEN, help="Stop repeating after this date/time.")
@click.pass_context
def defer(ctx, urls, at, preset, titles, window, repeat, time_of_day, days, day_of_month, until):
    """Snooze URLS until later."""
    controller = get_controller(ctx)
    try:
        pattern = None
        if repeat:
            if repeat in ("weekly", "custom") and not days:
                raise click.UsageError(f"--repeat {repeat} needs --days.")
            pattern = RecurrencePattern(
                type=repeat,
                time=time_of_day,
                days_of_week=days or [],
                day_of_month=day_of_month,
                end_date=until,
            )
        wake_time = pick_wake_time(controller, at, preset)
        if wake_time is None:
            if pattern is None:
                raise click.UsageError("Give --at, --preset or --repeat.")
            wake_time = next_occurrence(pattern, controller.clock())
            if wake_time is None:
                raise click.UsageError("That recurrence never fires.")

        items = controller.defer(
            list(urls), wake_time, titles=list(titles), pattern=pattern, window=window
        )
    except StoreError as e:
        raise store_failed(e)
    finally:
        controller.close()

    what = f"window with {len(items)} tabs" if window else f"{len(items)} tab(s)"
    print(f"✅ Snoozed {what} until {fmt_ms(wake_time)}")
    if ctx.obj["VERBOSE"]:
        for item in items:
            print(f"   {item.id}  {item.url}")


@cli.command(name="list")
@click.option("--width", type=int, default=50, show_default=True, help="Title width.")
@click.pass_context
def list_items(ctx, width):
    """Show snoozed tabs, grouped by window."""
    controller = get_controller(ctx)
    try:
        groups = controller.get_groups()
    except StoreError as e:
        raise store_failed(e)
    finally:
        controller.close()

    if not groups:
        print("[dim]Nothing snoozed.[/dim]")
        return

    now = now_ms()
    table = Table(box=box.SIMPLE_HEAVY)
    table.add_column("id", style="cyan", no_wrap=True)
    table.add_column("wakes", no_wrap=True)
    table.add_column("", no_wrap=True)
    table.add_column("", no_wrap=True)
    table.add_column("tabs")
    for group in groups:
        flags = (WINDOW if group.is_window_group else " ") + (
            REPEATING if group.is_recurring else " "
        )
        if group.is_window_group:
            titles = "\n".join(
                truncate_string(item.title or item.url or "?", width)
                for item in group.items
            )
        else:
            titles = truncate_string(group.primary.title or group.primary.url or "?", width)
        table.add_row(
            group.id,
            fmt_ms(group.wake_time),
            time_left(group.wake_time, now),
            flags,
            titles,
        )
    console.print(table)


@cli.command()
@click.argument("ids", nargs=-1, required=True)
@click.pass_context
def wake(ctx, ids):
    """Wake the given tabs or groups now."""
    controller = get_controller(ctx)
    try:
        item_ids = resolve_or_fail(controller, ids)
        result = controller.wake_ids(item_ids)
    except StoreError as e:
        raise store_failed(e)
    finally:
        controller.close()
    if not result.success:
        raise click.ClickException(f"Wake failed: {result.error}")
    print(f"✅ Woke {result.woken} tab(s)")


@cli.command()
@click.argument("ids", nargs=-1, required=True)
@click.pass_context
def remove(ctx, ids):
    """Delete snoozed tabs or groups without opening them."""
    controller = get_controller(ctx)
    try:
        item_ids = resolve_or_fail(controller, ids)
        count = controller.remove_ids(item_ids)
    except StoreError as e:
        raise store_failed(e)
    finally:
        controller.close()
    print(f"🗑️ Removed {count} tab(s)")


@cli.command()
@click.argument("ids", nargs=-1, required=True)
@click.option("--at", "at", type=_WHEN, help="New wake date/time.")
@click.option("--preset", type=click.Choice(PRESETS), help="New wake preset.")
@click.pass_context
def reschedule(ctx, ids, at, preset):
    """Change when tabs or groups wake."""
    controller = get_controller(ctx)
    try:
        item_ids = resolve_or_fail(controller, ids)
        wake_time = pick_wake_time(controller, at, preset)
        if wake_time is None:
            raise click.UsageError("Give --at or --preset.")
        count = controller.reschedule(item_ids, wake_time)
    except StoreError as e:
        raise store_failed(e)
    finally:
        controller.close()
    print(f"✅ Rescheduled {count} tab(s) to {fmt_ms(wake_time)}")


@cli.command()
@click.pass_context
def reconcile(ctx):
    """Wake everything that is overdue."""
    controller = get_controller(ctx)
    try:
        result = controller.startup()
    finally:
        controller.close()
    if not result.success:
        raise click.ClickException(f"Reconciliation failed: {result.error}")
    print(f"✅ Woke {result.woken} overdue tab(s)")


@cli.command()
@click.pass_context
def run(ctx):
    """Keep running, waking tabs as their alarms fire."""
    controller = get_controller(ctx)
    engine = Engine(controller)
    try:
        count = controller.db_manager.count_items()
    except StoreError as e:
        controller.close()
        raise store_failed(e)
    print(f"⏰ Watching {count} snoozed tab(s); Ctrl-C to stop.")
    try:
        asyncio.run(engine.run())
    except KeyboardInterrupt:
        print("\nStopped.")
    finally:
        controller.close()


@cli.command()
@click.option("--set", "assignments", multiple=True, metavar="KEY=VALUE")
@click.option("--reset", is_flag=True, help="Forget saved settings.")
@click.pass_context
def settings(ctx, assignments, reset):
    """Show or change the snooze preset settings."""
    env = ctx.obj["ENV"]
    dbm = DatabaseManager(ctx.obj["DB"], env)
    try:
        current = env.config.delay if reset else dbm.get_settings()
        if assignments or reset:
            updates = {}
            for assignment in assignments:
                key, sep, value = assignment.partition("=")
                if not sep or key not in DelaySettings.model_fields:
                    raise click.BadParameter(
                        f"Expected KEY=VALUE with KEY one of "
                        f"{', '.join(DelaySettings.model_fields)}",
                        param_hint="--set",
                    )
                updates[key] = value
            try:
                current = DelaySettings.model_validate(
                    {**current.model_dump(), **updates}
                )
            except ValidationError as e:
                raise click.BadParameter(str(e), param_hint="--set")
            dbm.set_settings(current)
    except StoreError as e:
        raise store_failed(e)
    finally:
        dbm.close()

    table = Table(box=box.SIMPLE)
    table.add_column("setting", style="cyan")
    table.add_column("value")
    for key, value in current.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


if __name__ == "__main__":
    cli()
