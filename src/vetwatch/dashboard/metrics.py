# src/vetwatch/dashboard/metrics.py

"""
Deterministic dashboard formulas.

Inputs are engine entities plus raw reference records (journal entries, health records)
in their wire shape. Every function takes `now` explicitly when time matters.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from ..core.ports import Record
from ..followup import rules
from ..followup.models import (
    AlertType,
    CompletionStatus,
    FollowUpTask,
    FollowUpUpdate,
    HealthAlert,
    PriorityLevel,
    parse_dt,
)
from .views import AlertCounts, AlertSummary, IssueCount, PerformanceMetrics, PeriodValue

RESOLVED_CONDITION = "resolved"

TREND_PERIODS = ("This Week", "Last Week", "Two Weeks Ago")


def _categories(entry: Record) -> list[str]:
    raw = entry.get("aetCategories")
    if raw is None:
        raw = entry.get("aetSkills")
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(c) for c in raw if c]


def record_date(record: Record) -> datetime | None:
    for key in ("date", "recordedDate", "createdAt"):
        dt = parse_dt(record.get(key))
        if dt is not None:
            return dt
    return None


def is_unresolved_issue(record: Record) -> bool:
    return str(record.get("conditionStatus") or "").strip().lower() != RESOLVED_CONDITION


def calculate_competency_progress(
    journal_entries: Iterable[Record],
    tasks: Iterable[FollowUpTask],
    *,
    reflection_min_chars: int = 50,
) -> dict[str, float]:
    """
    Percent of "completed" occurrences per competency tag.

    Every occurrence of a tag counts as attempted. A journal occurrence is completed when
    the entry's reflection note is longer than `reflection_min_chars`; a task occurrence is
    completed when the task is.
    """
    attempted: Counter[str] = Counter()
    completed: Counter[str] = Counter()

    for entry in journal_entries:
        note = str(entry.get("reflectionNote") or "")
        for tag in _categories(entry):
            attempted[tag] += 1
            if len(note) > reflection_min_chars:
                completed[tag] += 1

    for task in tasks:
        for tag in task.competency_standards:
            attempted[tag] += 1
            if task.completion_status == CompletionStatus.COMPLETED:
                completed[tag] += 1

    return {
        tag: (completed[tag] / n * 100.0) if n > 0 else 0.0 for tag, n in attempted.items()
    }


def calculate_response_rate(tasks: Sequence[FollowUpTask]) -> int:
    """Rounded percent of tasks whose last update landed on or before the due date."""
    if not tasks:
        return 100
    on_time = sum(1 for t in tasks if t.last_update is not None and t.last_update <= t.due_date)
    return round(on_time / len(tasks) * 100)


def calculate_engagement_score(
    journal_entries: Iterable[Record], tasks: Iterable[FollowUpTask], now: datetime
) -> int:
    """Activity in the last 30 days: 5 points per journal entry, 10 per updated task, max 100."""
    since = now - timedelta(days=30)
    recent_journal = 0
    for entry in journal_entries:
        dt = record_date(entry)
        if dt is not None and dt >= since:
            recent_journal += 1
    recent_tasks = sum(1 for t in tasks if t.last_update is not None and t.last_update >= since)
    return round(min(100, recent_journal * 5 + recent_tasks * 10))


def count_alerts(
    tasks: Iterable[FollowUpTask], health_records: Iterable[Record], now: datetime
) -> AlertCounts:
    urgent = warnings = info = 0

    for task in tasks:
        if task.escalation_triggered or task.priority_level == PriorityLevel.URGENT:
            urgent += 1
        elif task.priority_level == PriorityLevel.HIGH:
            warnings += 1
        elif task.due_date < now and task.completion_status != CompletionStatus.COMPLETED:
            warnings += 1
        else:
            info += 1

    for record in health_records:
        severity = str(record.get("severity") or "").lower()
        status = str(record.get("status") or "").lower()
        if severity == "severe" or status == "emergency":
            urgent += 1
        elif severity == "moderate" or status == "monitoring":
            warnings += 1
        else:
            info += 1

    return AlertCounts(urgent=urgent, warnings=warnings, info=info)


def on_time_completions(tasks: Iterable[FollowUpTask]) -> int:
    return sum(
        1
        for t in tasks
        if t.completion_status == CompletionStatus.COMPLETED
        and t.completed_date is not None
        and t.completed_date <= t.due_date
    )


def performance_metrics(
    tasks: Sequence[FollowUpTask],
    updates: Sequence[FollowUpUpdate],
    journal_entries: Iterable[Record],
    *,
    reflection_min_chars: int = 50,
) -> PerformanceMetrics:
    total = len(tasks)
    on_time = on_time_completions(tasks)
    quality = (
        sum(u.update_completeness_score for u in updates) / len(updates) if updates else 0.0
    )
    return PerformanceMetrics(
        # No tasks yet means nothing was late.
        response_rate=on_time / total if total else 1.0,
        average_update_quality=quality,
        competency_progress=calculate_competency_progress(
            journal_entries, tasks, reflection_min_chars=reflection_min_chars
        ),
        timely_completion_rate=on_time / total if total else 0.0,
    )


def recommendations(
    metrics: PerformanceMetrics,
    *,
    response_rate_threshold: float = 0.8,
    update_quality_threshold: float = 0.7,
) -> list[str]:
    out: list[str] = []
    if metrics.response_rate < response_rate_threshold:
        out.append("Improve response timeliness for better health monitoring")
    if metrics.average_update_quality < update_quality_threshold:
        out.append("Focus on providing more detailed observations and measurements")
    return out


def alert_summary(alerts: Iterable[HealthAlert]) -> AlertSummary:
    urgent = overdue = pending = 0
    for a in alerts:
        if a.priority_level == PriorityLevel.URGENT:
            urgent += 1
        if a.alert_type == AlertType.OVERDUE_UPDATE:
            overdue += 1
        if a.acknowledged_date is None:
            pending += 1
    return AlertSummary(urgent=urgent, overdue=overdue, pending=pending)


def count_overdue(tasks: Iterable[FollowUpTask], now: datetime) -> int:
    return sum(1 for t in tasks if rules.task_is_overdue(t, now))


def resolution_days(task: FollowUpTask) -> float | None:
    if task.completion_status != CompletionStatus.COMPLETED or task.completed_date is None:
        return None
    return max(0.0, (task.completed_date - task.created_date).total_seconds() / 86400.0)


def average_resolution_days(tasks: Iterable[FollowUpTask]) -> float:
    days = [d for d in (resolution_days(t) for t in tasks) if d is not None]
    return round(sum(days) / len(days), 1) if days else 0.0


def engagement_rate(
    student_ids: set[str], updates: Iterable[FollowUpUpdate], start: datetime, end: datetime
) -> float:
    """Share of `student_ids` that submitted at least one update in (start, end]."""
    if not student_ids:
        return 0.0
    active = {u.student_id for u in updates if start < u.update_date <= end} & student_ids
    return round(len(active) / len(student_ids), 2)


def weekly_windows(now: datetime) -> list[tuple[str, datetime, datetime]]:
    out = []
    for i, label in enumerate(TREND_PERIODS):
        end = now - timedelta(days=7 * i)
        out.append((label, end - timedelta(days=7), end))
    return out


def resolution_trends(tasks: Sequence[FollowUpTask], now: datetime) -> list[PeriodValue]:
    out = []
    for label, start, end in weekly_windows(now):
        in_window = [
            t for t in tasks if t.completed_date is not None and start < t.completed_date <= end
        ]
        out.append(PeriodValue(period=label, value=average_resolution_days(in_window)))
    return out


def engagement_trends(
    student_ids: set[str], updates: Sequence[FollowUpUpdate], now: datetime
) -> list[PeriodValue]:
    return [
        PeriodValue(period=label, value=engagement_rate(student_ids, updates, start, end))
        for label, start, end in weekly_windows(now)
    ]


def common_issues(health_records: Iterable[Record], limit: int = 3) -> list[IssueCount]:
    """Most frequent symptoms across unresolved health records."""
    counts: Counter[str] = Counter()
    for record in health_records:
        if not is_unresolved_issue(record):
            continue
        for key in ("symptoms", "customSymptoms"):
            raw = record.get(key)
            if isinstance(raw, (list, tuple)):
                counts.update(str(s) for s in raw if s)
    return [IssueCount(issue=k, count=v) for k, v in counts.most_common(limit)]
