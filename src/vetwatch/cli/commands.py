# src/vetwatch/cli/commands.py

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..core.state import AppState
from ..followup.models import FollowUpTask, HealthAlert, iso

CommandEmitter = Callable[[str], None]
CommandHandler = Callable[[AppState, list[str], CommandEmitter | None], Awaitable[str]]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Slash-command registry used by the console connector (/help, /tasks, ...)."""

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

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return await handler(state, parts[1:], emit)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _dump(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


def _task_line(task: FollowUpTask, overdue: bool) -> str:
    flags = []
    if task.escalation_triggered:
        flags.append("ESCALATED")
    if overdue:
        flags.append("OVERDUE")
    flag_str = f" [{', '.join(flags)}]" if flags else ""
    return (
        f"{task.id} {task.task_title} | student={task.student_id} "
        f"status={task.completion_status.value} progress={task.progress_percentage:.0f}% "
        f"priority={task.priority_level.value} due={iso(task.due_date)}{flag_str}"
    )


def _alert_line(alert: HealthAlert) -> str:
    ack = "acked" if alert.acknowledged_date else "new"
    return (
        f"{alert.id} [{alert.priority_level.value}/{alert.alert_type.value}] "
        f"{alert.title} ({ack})"
    )


def _actor(state: AppState, args: list[str]) -> str | None:
    return args[0] if args else state.actor_id


async def cmd_help(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    settings = state.settings
    tasks = await state.engine.get_all_follow_up_tasks()
    alerts = await state.engine.get_all_alerts()
    return (
        "Status:\n"
        f"  Store: {getattr(settings, 'store_backend', '?')}\n"
        f"  Serialized writes: {'ON' if getattr(settings, 'serialize_writes', False) else 'OFF'}\n"
        f"  Acting as: {state.actor_id or '-'}\n"
        f"  Tasks: {len(tasks)} ({sum(1 for t in tasks if t.is_active)} active)\n"
        f"  Open alerts: {sum(1 for a in alerts if not a.is_resolved)}"
    )


async def cmd_as(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /as          -> show current identity
    /as <id>     -> act as this educator/student
    """
    if not args:
        return f"Acting as: {state.actor_id or '-'}. Use /as <id> to change."
    state.actor_id = args[0]
    logger.debug("Console actor set to %s", state.actor_id)
    return f"Now acting as {state.actor_id}."


async def cmd_tasks(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /tasks              -> all tasks
    /tasks <student_id> -> tasks of one student
    """
    if args:
        tasks = await state.engine.get_tasks_for_student(args[0])
    else:
        tasks = await state.engine.get_all_follow_up_tasks()
    if not tasks:
        return "No follow-up tasks."
    lines = [f"Follow-up tasks ({len(tasks)}):"]
    for t in sorted(tasks, key=lambda t: t.due_date):
        lines.append("  " + _task_line(t, state.engine.is_overdue(t)))
    return "\n".join(lines)


async def cmd_updates(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /updates <task_id>"
    updates = await state.engine.get_updates_for_task(args[0])
    if not updates:
        return f"No updates for task {args[0]}."
    lines = [f"Updates for {args[0]} (newest first):"]
    for u in updates:
        lines.append(
            f"  {iso(u.update_date)} concern={u.concern_level} "
            f"assessment={u.condition_assessment.value} "
            f"quality={u.documentation_quality.value} | {u.observations}"
        )
    return "\n".join(lines)


async def cmd_overview(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /overview <student_id>"
    overview = await state.dashboard.get_student_health_overview(args[0])
    return _dump(overview.to_dict())


async def cmd_chapter(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    chapter_id = args[0] if args else "default"
    metrics = await state.dashboard.get_chapter_health_metrics(chapter_id)
    return _dump(metrics.to_dict())


async def cmd_dashboard(
    state: AppState, args: list[str], emit: CommandEmitter | None = None
) -> str:
    educator_id = _actor(state, args)
    if not educator_id:
        return "Usage: /dashboard <educator_id> (or set one with /as)"
    if emit:
        emit(f"Building dashboard for {educator_id}...")
    dashboard = await state.dashboard.get_educator_dashboard(educator_id)
    m = dashboard.chapter_metrics
    lines = [
        f"Dashboard for {educator_id} (chapter {m.chapter_id}):",
        f"  Active cases: {m.active_health_cases}  Overdue: {m.overdue_tasks}  "
        f"Urgent alerts: {m.urgent_attention_needed}",
        f"  Completed (30d): {m.completed_this_month}  "
        f"Avg resolution: {m.average_resolution_time} days",
        f"Urgent cases ({len(dashboard.urgent_cases)}):",
    ]
    lines += ["  " + _task_line(t, state.engine.is_overdue(t)) for t in dashboard.urgent_cases]
    lines.append(f"Today's follow-ups ({len(dashboard.todays_follow_ups)}):")
    lines += [
        "  " + _task_line(t, state.engine.is_overdue(t)) for t in dashboard.todays_follow_ups
    ]
    lines.append(f"Alerts ({len(dashboard.alerts)}):")
    lines += ["  " + _alert_line(a) for a in dashboard.alerts]
    return "\n".join(lines)


async def cmd_students(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    educator_id = _actor(state, args)
    if not educator_id:
        return "Usage: /students <educator_id> (or set one with /as)"
    overviews = await state.students.get_all_student_overviews(educator_id)
    if not overviews:
        return f"No supervised students for {educator_id}."
    lines = [f"Students of {educator_id}:"]
    for o in overviews:
        lines.append(
            f"  {o.student_id} {o.student_name} | urgent={o.alerts.urgent} "
            f"warnings={o.alerts.warnings} overdue={o.overdue_tasks} "
            f"response={o.response_rate}% engagement={o.engagement_score}"
        )
    return "\n".join(lines)


async def cmd_alerts(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /alerts               -> open alerts for the current identity (as educator)
    /alerts <educator_id> -> open alerts for an educator
    /alerts student <id>  -> open alerts for a student
    """
    if len(args) >= 2 and args[0].lower() == "student":
        alerts = await state.engine.get_alerts_for_student(args[1])
        who = f"student {args[1]}"
    else:
        educator_id = _actor(state, args)
        if not educator_id:
            return "Usage: /alerts <educator_id> | /alerts student <student_id>"
        alerts = await state.engine.get_alerts_for_educator(educator_id)
        who = f"educator {educator_id}"
    if not alerts:
        return f"No open alerts for {who}."
    return "\n".join([f"Open alerts for {who}:"] + ["  " + _alert_line(a) for a in alerts])


async def cmd_ack(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /ack <alert_id>"
    alert = await state.engine.acknowledge_alert(args[0])
    if alert is None:
        return f"Alert {args[0]} not found."
    return f"Alert {alert.id} acknowledged at {iso(alert.acknowledged_date)}."


async def cmd_resolve(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /resolve <alert_id> [action description]"
    description = " ".join(args[1:]) or "Resolved by educator"
    alert = await state.engine.resolve_alert(args[0], description)
    if alert is None:
        return f"Alert {args[0]} not found."
    return f"Alert {alert.id} resolved: {alert.action_description}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show store, identity and task/alert totals.")
registry.register("as", cmd_as, help_text="Set the identity used by /dashboard, /students, /alerts.")
registry.register("tasks", cmd_tasks, help_text="List follow-up tasks: /tasks [student_id].")
registry.register("updates", cmd_updates, help_text="List updates of a task: /updates <task_id>.")
registry.register(
    "overview", cmd_overview, help_text="Student health overview: /overview <student_id>."
)
registry.register("chapter", cmd_chapter, help_text="Chapter metrics: /chapter [chapter_id].")
registry.register(
    "dashboard", cmd_dashboard, help_text="Educator dashboard: /dashboard [educator_id]."
)
registry.register(
    "students", cmd_students, help_text="Supervised student overviews: /students [educator_id]."
)
registry.register(
    "alerts", cmd_alerts, help_text="Open alerts: /alerts [educator_id] | /alerts student <id>."
)
registry.register("ack", cmd_ack, help_text="Acknowledge an alert: /ack <alert_id>.")
registry.register(
    "resolve", cmd_resolve, help_text="Resolve an alert: /resolve <alert_id> [description]."
)
