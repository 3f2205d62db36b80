# src/cadence/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any

from ..core.errors import CadenceError
from ..core.state import AppState
from ..recurrence.rule import WEEKDAY_NAMES, RecurrenceRule
from ..series import series_api
from ..series.series_models import SeriesState

CommandHandler = Callable[[AppState, list[str]], str]

logger = logging.getLogger(__name__)

RULE_USAGE = (
    "<daily|weekly|monthly|yearly> [every=N] [days=mon,wed] [day=N|-1] [month=N] [count=N | until=YYYY-MM-DD]"
)


class CommandRegistry:
    """Simple slash-command registry used by the operator console (/help, /create, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Domain errors (invalid rule, unknown series, ...) become the reply text.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return handler(state, args)
        except (CadenceError, ValueError) as e:
            logger.debug("Command /%s rejected: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- argument parsing ----


def _parse_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"Expected a date like 2025-01-31, got {raw!r}") from None


def _parse_weekday(raw: str) -> int:
    token = raw.strip().lower()
    if token.lstrip("-").isdigit():
        return int(token)
    for i, name in enumerate(WEEKDAY_NAMES):
        if token[:3] == name.lower():
            return i
    raise ValueError(f"Unknown weekday: {raw!r}")


def parse_rule_args(args: list[str]) -> dict[str, Any]:
    """
    Turn "weekly every=2 days=mon,wed count=5" into a pattern blob.

    The blob goes through RecurrenceRule.from_dict, so validation lives in one place.
    """
    if not args:
        raise ValueError(f"Missing rule. Usage: {RULE_USAGE}")

    pattern: dict[str, Any] = {"frequency": args[0]}
    for token in args[1:]:
        key, sep, value = token.partition("=")
        if not sep or not value:
            raise ValueError(f"Expected key=value, got {token!r}")
        key = key.lower()
        if key in ("every", "interval"):
            pattern["interval"] = int(value)
        elif key == "days":
            pattern["daysOfWeek"] = [_parse_weekday(v) for v in value.split(",") if v]
        elif key == "day":
            pattern["dayOfMonth"] = int(value)
        elif key == "month":
            pattern["monthOfYear"] = int(value)
        elif key == "count":
            pattern["count"] = int(value)
        elif key == "until":
            pattern["until"] = value
        else:
            raise ValueError(f"Unknown rule option: {key!r}")
    return pattern


def _format_series(s: SeriesState) -> str:
    last = s.last_generated_occurrence.isoformat() if s.last_generated_occurrence else "-"
    return (
        f"{s.series_id} [{s.status.value}] task={s.parent_task_id} "
        f"anchor={s.anchor_date.isoformat()} last={last} generated={s.generated_count} "
        f"| {s.rule.describe()}"
    )


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_task(state: AppState, args: list[str]) -> str:
    """
    /task <title...> [due=YYYY-MM-DD]  -> create a task that can become a series parent
    """
    due: date | None = None
    words: list[str] = []
    for token in args:
        if token.startswith("due="):
            due = _parse_date(token[4:])
        else:
            words.append(token)
    if not words:
        return "Usage: /task <title> [due=YYYY-MM-DD]"

    task_id = state.task_store.add_task(title=" ".join(words), due_date=due)
    return f"Task {task_id} created."


def cmd_create(state: AppState, args: list[str]) -> str:
    """
    /create <task_id> <anchor> <rule...>  -> make a task recurring
    """
    if len(args) < 3:
        return f"Usage: /create <task_id> <YYYY-MM-DD> {RULE_USAGE}"

    parent_id = int(args[0])
    if state.task_store.get_task(parent_id) is None:
        return f"Task {parent_id} not found."

    anchor = _parse_date(args[1])
    series_id = series_api.create_series(state, parse_rule_args(args[2:]), anchor, parent_id)
    s = series_api.get_series(state, series_id)
    return f"Series {series_id} created: {s.rule.describe()}"


def cmd_rule(state: AppState, args: list[str]) -> str:
    """
    /rule <series_id> <rule...>  -> replace the pattern for future occurrences
    """
    if len(args) < 2:
        return f"Usage: /rule <series_id> {RULE_USAGE}"
    s = series_api.update_rule(state, args[0], parse_rule_args(args[1:]))
    return f"Series {s.series_id} now: {s.rule.describe()}"


def cmd_stop(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /stop <series_id>"
    if series_api.stop_series(state, args[0]):
        return f"Series {args[0]} stopped. Existing tasks are kept."
    return f"Series {args[0]} is already inactive."


def cmd_skip(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /skip <series_id> <YYYY-MM-DD>"
    day = _parse_date(args[1])
    if series_api.add_skip_date(state, args[0], day):
        return f"{day.isoformat()} will be skipped."
    return f"{day.isoformat()} was already skipped."


def cmd_unskip(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /unskip <series_id> <YYYY-MM-DD>"
    day = _parse_date(args[1])
    if series_api.remove_skip_date(state, args[0], day):
        return f"{day.isoformat()} is no longer skipped."
    return f"{day.isoformat()} was not skipped."


def cmd_skipnext(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /skipnext <series_id>"
    day = series_api.skip_next(state, args[0])
    if day is None:
        return "Nothing left to skip."
    return f"Skipped {day.isoformat()}."


def cmd_preview(state: AppState, args: list[str]) -> str:
    """
    /preview <anchor> <rule...> [n=N]  -> list dates without creating anything
    """
    count = int(getattr(state.settings, "preview_default_count", 10))
    rest: list[str] = []
    for token in args:
        if token.startswith("n="):
            count = int(token[2:])
        else:
            rest.append(token)
    if len(rest) < 2:
        return f"Usage: /preview <YYYY-MM-DD> {RULE_USAGE} [n=N]"

    anchor = _parse_date(rest[0])
    rule = RecurrenceRule.from_dict(parse_rule_args(rest[1:]), anchor=anchor)
    dates = [d.isoformat() for d in series_api.preview_occurrences(rule, anchor, count)]
    if not dates:
        return "No occurrences."
    return f"{rule.describe()}:\n  " + "\n  ".join(dates)


def cmd_next(state: AppState, args: list[str]) -> str:
    """
    /next <series_id> [N]  -> dates the scheduler will materialize next
    """
    if not args:
        return "Usage: /next <series_id> [N]"
    count = int(args[1]) if len(args) > 1 else 1
    dates = series_api.upcoming_occurrences(state, args[0], count)
    if not dates:
        return "No upcoming occurrences."
    return "Upcoming:\n  " + "\n  ".join(d.isoformat() for d in dates)


def cmd_list(state: AppState, args: list[str]) -> str:
    active_only = bool(args) and args[0].lower() == "active"
    items = series_api.list_series(state, active_only=active_only)
    if not items:
        return "No series."
    return "Series:\n" + "\n".join(f"  {_format_series(s)}" for s in items)


def cmd_show(state: AppState, args: list[str]) -> str:
    if len(args) != 1:
        return "Usage: /show <series_id>"
    s = series_api.get_series(state, args[0])
    lines = [_format_series(s)]
    if s.skip_dates:
        lines.append("  skip: " + ", ".join(d.isoformat() for d in s.skip_dates))
    if s.pending_occurrence is not None:
        lines.append(f"  in flight: {s.pending_occurrence.isoformat()}")
    if s.last_error:
        lines.append(f"  error: {s.last_error}")

    instances = state.task_store.list_series_instances(s.series_id)
    lines.append(f"  instances: {len(instances)}")
    for t in instances:
        due = t.due_date.isoformat() if t.due_date else "-"
        lines.append(f"    #{t.id} {due} [{t.status.value}] {t.title}")
    return "\n".join(lines)


def cmd_tick(state: AppState, args: list[str]) -> str:
    report = state.scheduler.tick()
    lines = [f"Tick {report.today.isoformat()}: {report.summary()}"]
    for m in report.materialized:
        lines.append(f"  {m.series_id} {m.occurrence.isoformat()} -> task {m.task_id}")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("task", cmd_task, help_text="Create a task: /task <title> [due=YYYY-MM-DD].")
registry.register("create", cmd_create, help_text="Make a task recurring: /create <task_id> <anchor> <rule>.")
registry.register("rule", cmd_rule, help_text="Change a series pattern: /rule <series_id> <rule>.")
registry.register("stop", cmd_stop, help_text="Stop a series: /stop <series_id>.")
registry.register("skip", cmd_skip, help_text="Skip one date: /skip <series_id> <date>.")
registry.register("unskip", cmd_unskip, help_text="Remove a skip date: /unskip <series_id> <date>.")
registry.register("skipnext", cmd_skipnext, help_text="Skip the next occurrence: /skipnext <series_id>.")
registry.register("preview", cmd_preview, help_text="Preview dates: /preview <anchor> <rule> [n=N].")
registry.register("next", cmd_next, help_text="Upcoming dates of a series: /next <series_id> [N].")
registry.register("list", cmd_list, help_text="List series: /list [active].", aliases=["ls"])
registry.register("show", cmd_show, help_text="Series details and instances: /show <series_id>.")
registry.register("tick", cmd_tick, help_text="Run the materialization scheduler once.")
