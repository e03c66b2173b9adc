# src/vetwatch/dashboard/aggregator.py

from __future__ import annotations

"""
Read-only dashboard rollups built on the follow-up engine.

Nothing here writes to the store. Reference collections (health records, journal, profiles)
are read directly through the same PersistenceStore the engine uses.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from ..core.ports import PersistenceStore, Record
from ..followup import rules
from ..followup.engine import FollowUpTaskEngine
from ..followup.models import CompletionStatus, FollowUpTask, PriorityLevel
from ..storage.keys import StorageKey
from ..storage.records import load_records
from . import metrics
from .views import (
    ChapterHealthMetrics,
    Deadline,
    EducatorDashboard,
    StudentHealthOverview,
    TrendAnalysis,
)

logger = logging.getLogger(__name__)

DEFAULT_CHAPTER = "default"


class DashboardAggregator:
    def __init__(
        self,
        engine: FollowUpTaskEngine,
        store: PersistenceStore,
        *,
        settings: Any = None,
    ) -> None:
        self._engine = engine
        self._store = store
        self._recent_days = int(getattr(settings, "recent_completed_days", 30))
        self._deadline_days = int(getattr(settings, "deadline_window_days", 7))
        self._rate_threshold = float(getattr(settings, "response_rate_threshold", 0.8))
        self._quality_threshold = float(getattr(settings, "update_quality_threshold", 0.7))
        self._reflection_min = int(getattr(settings, "reflection_min_chars", 50))

    async def _reference(self, key: str) -> list[Record]:
        try:
            return await load_records(self._store, key)
        except Exception:
            logger.exception("Failed to load reference collection key=%s", key)
            return []

    def _completed_since(self, tasks: list[FollowUpTask], now: datetime) -> list[FollowUpTask]:
        since = now - timedelta(days=self._recent_days)
        return [
            t
            for t in tasks
            if t.completion_status == CompletionStatus.COMPLETED
            and t.completed_date is not None
            and t.completed_date > since
        ]

    # ---- per student ----

    async def get_student_health_overview(self, student_id: str) -> StudentHealthOverview:
        """Everything an educator needs to see about one student's health follow-ups."""
        try:
            return await self._student_health_overview(student_id)
        except Exception:
            logger.exception("get_student_health_overview failed student=%s", student_id)
            return StudentHealthOverview(student_id=student_id)

    async def _student_health_overview(self, student_id: str) -> StudentHealthOverview:
        now = self._engine.now()
        tasks = await self._engine.get_tasks_for_student(student_id)
        active = [t for t in tasks if t.is_active]
        updates = [u for u in await self._engine.get_all_task_updates() if u.student_id == student_id]

        health_records = [
            r for r in await self._reference(StorageKey.HEALTH_RECORDS) if r.get("studentId") == student_id
        ]
        journal = [
            j for j in await self._reference(StorageKey.JOURNAL) if j.get("userId") == student_id
        ]

        perf = metrics.performance_metrics(
            tasks, updates, journal, reflection_min_chars=self._reflection_min
        )

        horizon = now + timedelta(days=self._deadline_days)
        deadlines = [
            Deadline(
                task_id=t.id,
                title=t.task_title,
                due_date=t.due_date,
                priority=t.priority_level.value,
                overdue=rules.task_is_overdue(t, now),
            )
            for t in sorted(active, key=lambda t: t.due_date)
            if t.due_date <= horizon
        ]

        alerts = await self._engine.get_alerts_for_student(student_id)

        return StudentHealthOverview(
            student_id=student_id,
            active_tasks=active,
            recent_completed=self._completed_since(tasks, now),
            current_issues=[r for r in health_records if metrics.is_unresolved_issue(r)],
            performance_metrics=perf,
            upcoming_deadlines=deadlines,
            recommendations=metrics.recommendations(
                perf,
                response_rate_threshold=self._rate_threshold,
                update_quality_threshold=self._quality_threshold,
            ),
            alert_summary=metrics.alert_summary(alerts),
        )

    # ---- per chapter ----

    async def get_chapter_health_metrics(self, chapter_id: str) -> ChapterHealthMetrics:
        """
        Chapter rollup.

        Tasks carry no chapter, so every task and alert in the store is counted regardless
        of `chapter_id`; the id is echoed back for the caller.
        """
        try:
            return await self._chapter_health_metrics(chapter_id)
        except Exception:
            logger.exception("get_chapter_health_metrics failed chapter=%s", chapter_id)
            return ChapterHealthMetrics(chapter_id=chapter_id)

    async def _chapter_health_metrics(self, chapter_id: str) -> ChapterHealthMetrics:
        now = self._engine.now()
        tasks = await self._engine.get_all_follow_up_tasks()
        updates = await self._engine.get_all_task_updates()
        alerts = await self._engine.get_all_alerts()

        student_ids = {t.student_id for t in tasks if t.student_id}
        since = now - timedelta(days=self._recent_days)
        completed_recently = self._completed_since(tasks, now)

        journal = await self._reference(StorageKey.JOURNAL)
        health_records = await self._reference(StorageKey.HEALTH_RECORDS)

        result = ChapterHealthMetrics(
            chapter_id=chapter_id,
            total_students=len(student_ids),
            active_health_cases=sum(1 for t in tasks if t.is_active),
            urgent_attention_needed=sum(
                1 for a in alerts if a.priority_level == PriorityLevel.URGENT and not a.is_resolved
            ),
            overdue_tasks=metrics.count_overdue(tasks, now),
            completed_this_month=len(completed_recently),
            average_resolution_time=metrics.average_resolution_days(completed_recently),
            student_engagement_rate=metrics.engagement_rate(student_ids, updates, since, now),
            competency_progress=metrics.calculate_competency_progress(
                journal, tasks, reflection_min_chars=self._reflection_min
            ),
            trend_analysis=TrendAnalysis(
                common_issues=metrics.common_issues(health_records),
                resolution_trends=metrics.resolution_trends(tasks, now),
                engagement_trends=metrics.engagement_trends(student_ids, updates, now),
            ),
        )
        logger.debug(
            "Chapter metrics chapter=%s students=%s active=%s overdue=%s urgent=%s",
            chapter_id,
            result.total_students,
            result.active_health_cases,
            result.overdue_tasks,
            result.urgent_attention_needed,
        )
        return result

    # ---- per educator ----

    async def _chapter_for(self, educator_id: str) -> str:
        for profile in await self._reference(StorageKey.PROFILES):
            if profile.get("id") == educator_id:
                return str(profile.get("ffa_chapter_id") or "") or DEFAULT_CHAPTER
        return DEFAULT_CHAPTER

    async def get_educator_dashboard(self, educator_id: str) -> EducatorDashboard:
        try:
            return await self._educator_dashboard(educator_id)
        except Exception:
            logger.exception("get_educator_dashboard failed educator=%s", educator_id)
            return EducatorDashboard(
                educator_id=educator_id,
                chapter_metrics=ChapterHealthMetrics(chapter_id=DEFAULT_CHAPTER),
            )

    async def _educator_dashboard(self, educator_id: str) -> EducatorDashboard:
        now = self._engine.now()
        chapter_id = await self._chapter_for(educator_id)
        chapter = await self.get_chapter_health_metrics(chapter_id)
        alerts = await self._engine.get_alerts_for_educator(educator_id)

        mine = [t for t in await self._engine.get_all_follow_up_tasks() if t.assigned_by == educator_id]

        urgent = [
            t
            for t in mine
            if t.priority_level == PriorityLevel.URGENT
            or t.escalation_triggered
            or rules.task_is_overdue(t, now)
        ]
        today = now.date()
        todays = [t for t in mine if t.is_active and t.due_date.date() == today]

        # One student at a time.
        overviews: dict[str, StudentHealthOverview] = {}
        for student_id in dict.fromkeys(t.student_id for t in mine):
            overviews[student_id] = await self.get_student_health_overview(student_id)

        logger.info(
            "Educator dashboard educator=%s chapter=%s alerts=%s urgent=%s today=%s students=%s",
            educator_id,
            chapter_id,
            len(alerts),
            len(urgent),
            len(todays),
            len(overviews),
        )
        return EducatorDashboard(
            educator_id=educator_id,
            chapter_metrics=chapter,
            alerts=alerts,
            urgent_cases=urgent,
            todays_follow_ups=todays,
            student_overviews=overviews,
        )
