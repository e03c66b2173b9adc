# src/vetwatch/followup/rules.py

"""
Pure follow-up rules: progress, overdue derivation, escalation predicates, update quality.

Nothing here touches storage or the clock; callers pass `now` explicitly.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from ..config import DEFAULT_ESCALATION_KEYWORDS
from .models import (
    CompletionStatus,
    ConditionAssessment,
    DocumentationQuality,
    FollowUpTask,
    FollowUpUpdate,
    Frequency,
)

REASON_CONCERN = "High concern level reported"
REASON_WORSE = "Condition deteriorating"
REASON_KEYWORDS = "Emergency keywords detected"


def expected_updates(frequency: Frequency, duration_days: int) -> int:
    """How many updates a task of this cadence expects over its whole duration."""
    days = max(0, int(duration_days))
    if frequency == Frequency.DAILY:
        n = days
    elif frequency == Frequency.TWICE_DAILY:
        n = days * 2
    elif frequency == Frequency.WEEKLY:
        n = math.ceil(days / 7)
    else:
        n = 1
    # A zero-day schedule still expects one report.
    return max(1, n)


def compute_progress(update_count: int, expected: int) -> float:
    if expected <= 0:
        return 100.0
    return min(100.0, 100.0 * max(0, update_count) / expected)


def status_for_progress(progress: float) -> CompletionStatus:
    return CompletionStatus.COMPLETED if progress >= 100.0 else CompletionStatus.IN_PROGRESS


def is_overdue(due_date: datetime, status: CompletionStatus, now: datetime) -> bool:
    """Overdue is never stored: a task is overdue while unfinished past its due date."""
    return due_date < now and not status.is_terminal


def task_is_overdue(task: FollowUpTask, now: datetime) -> bool:
    return is_overdue(task.due_date, task.completion_status, now)


def escalation_reason(
    update: FollowUpUpdate,
    *,
    concern_threshold: int = 4,
    keywords: Iterable[str] = DEFAULT_ESCALATION_KEYWORDS,
) -> str | None:
    """
    Evaluate the three escalation predicates for one update.

    Returns the reason of the last predicate that matched (keywords beat deterioration,
    deterioration beats concern level), or None when nothing matched.
    """
    reason: str | None = None

    if update.concern_level >= concern_threshold:
        reason = REASON_CONCERN

    if update.condition_assessment == ConditionAssessment.WORSE:
        reason = REASON_WORSE

    text = f"{update.observations}\n{update.student_notes}".lower()
    if any(kw and kw.lower() in text for kw in keywords):
        reason = REASON_KEYWORDS

    return reason


def completeness_score(
    *,
    observations: str,
    action_taken: str,
    measurements: Mapping[str, Any],
    photos: list[Any],
    student_notes: str,
) -> float:
    score = 0.0
    if observations.strip():
        score += 0.3
    if action_taken.strip():
        score += 0.2
    if measurements:
        score += 0.2
    if photos:
        score += 0.2
    if student_notes.strip():
        score += 0.1
    return round(min(score, 1.0), 2)


def documentation_quality(score: float) -> DocumentationQuality:
    if score >= 0.9:
        return DocumentationQuality.EXCELLENT
    if score >= 0.7:
        return DocumentationQuality.GOOD
    if score >= 0.5:
        return DocumentationQuality.FAIR
    return DocumentationQuality.POOR
