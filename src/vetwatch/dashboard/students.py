# src/vetwatch/dashboard/students.py

from __future__ import annotations

"""
Educator-facing student service.

Supervision is stored on the educator's profile (`students_supervised`), plus an implicit
link to every student-type profile in the educator's chapter. Every per-student read goes
through the same gate: an unauthorized request and a missing student both come back as None.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from ..core.ports import PersistenceStore, Record
from ..followup import rules
from ..followup.engine import FollowUpTaskEngine
from ..followup.models import CompletionStatus, parse_dt
from ..storage.keys import StorageKey
from ..storage.records import load_records
from . import metrics
from .views import StudentOverview, StudentRecord, StudentRecordSummary

logger = logging.getLogger(__name__)

EDUCATOR_TYPE = "educator"
STUDENT_TYPES = frozenset({"student", "freemium_student", "elite_student"})
ACTIVE_HEALTH_STATUSES = frozenset({"ongoing", "monitoring"})


def _supervised(profile: Record) -> list[str]:
    raw = profile.get("students_supervised")
    if not isinstance(raw, list):
        return []
    return [str(s) for s in raw if s]


def _total_hours(profile: Record) -> float:
    stats = profile.get("stats")
    if not isinstance(stats, dict):
        return 0.0
    try:
        return float(stats.get("totalHoursLogged") or 0)
    except (TypeError, ValueError):
        return 0.0


def _last_activity(dates: list[datetime | None]) -> datetime | None:
    valid = [d for d in dates if d is not None]
    return max(valid) if valid else None


class EducatorStudentService:
    def __init__(
        self,
        engine: FollowUpTaskEngine,
        store: PersistenceStore,
        *,
        settings: Any = None,
    ) -> None:
        self._engine = engine
        self._store = store
        self._reflection_min = int(getattr(settings, "reflection_min_chars", 50))

    async def _owned_by(self, key: str, field: str, owner_id: str) -> list[Record]:
        try:
            records = await load_records(self._store, key)
        except Exception:
            logger.exception("Failed to load key=%s for owner=%s", key, owner_id)
            return []
        return [r for r in records if r.get(field) == owner_id]

    # ---- supervision ----

    async def get_students_for_educator(self, educator_id: str) -> list[Record]:
        try:
            profiles = await load_records(self._store, StorageKey.PROFILES)
        except Exception:
            logger.exception("get_students_for_educator failed educator=%s", educator_id)
            return []

        educator = next((p for p in profiles if p.get("id") == educator_id), None)
        if educator is None or educator.get("type") != EDUCATOR_TYPE:
            logger.debug("Not an educator profile id=%s", educator_id)
            return []

        supervised = set(_supervised(educator))
        chapter = str(educator.get("ffa_chapter_id") or "")
        return [
            p
            for p in profiles
            if p.get("id") in supervised
            or (chapter and p.get("ffa_chapter_id") == chapter and p.get("type") in STUDENT_TYPES)
        ]

    async def _authorized_student(self, student_id: str, educator_id: str) -> Record | None:
        students = await self.get_students_for_educator(educator_id)
        student = next((s for s in students if s.get("id") == student_id), None)
        if student is not None:
            return student

        try:
            profiles = await load_records(self._store, StorageKey.PROFILES)
        except Exception:
            logger.exception("Profile lookup failed student=%s", student_id)
            return None
        if any(p.get("id") == student_id for p in profiles):
            logger.warning(
                "Educator has no access to student educator=%s student=%s", educator_id, student_id
            )
        else:
            logger.warning("Student not found student=%s educator=%s", student_id, educator_id)
        return None

    async def _edit_supervision(self, educator_id: str, student_id: str, add: bool) -> bool:
        try:
            profiles = await load_records(self._store, StorageKey.PROFILES)
            for i, profile in enumerate(profiles):
                if profile.get("id") != educator_id:
                    continue
                supervised = _supervised(profile)
                if add and student_id not in supervised:
                    supervised.append(student_id)
                elif not add and student_id in supervised:
                    supervised = [s for s in supervised if s != student_id]
                else:
                    return True
                profiles[i] = {**profile, "students_supervised": supervised}
                if not await self._store.save_data(StorageKey.PROFILES, profiles):
                    logger.error("Supervision change not saved educator=%s", educator_id)
                    return False
                logger.info(
                    "Supervision %s educator=%s student=%s",
                    "added" if add else "removed",
                    educator_id,
                    student_id,
                )
                return True
            logger.warning("Supervision change for unknown educator=%s", educator_id)
            return False
        except Exception:
            logger.exception(
                "Supervision change failed educator=%s student=%s", educator_id, student_id
            )
            return False

    async def add_student_to_supervision(self, educator_id: str, student_id: str) -> bool:
        return await self._edit_supervision(educator_id, student_id, add=True)

    async def remove_student_from_supervision(self, educator_id: str, student_id: str) -> bool:
        return await self._edit_supervision(educator_id, student_id, add=False)

    # ---- records ----

    async def get_student_record(self, student_id: str, educator_id: str) -> StudentRecord | None:
        """Full record for one supervised student, or None when missing or not supervised."""
        try:
            student = await self._authorized_student(student_id, educator_id)
            if student is None:
                return None

            animals = await self._owned_by(StorageKey.ANIMALS, "ownerId", student_id)
            journal = await self._owned_by(StorageKey.JOURNAL, "userId", student_id)
            health = await self._owned_by(StorageKey.HEALTH_RECORDS, "studentId", student_id)
            tasks = await self._engine.get_tasks_for_student(student_id)
            financial = await self._owned_by(StorageKey.FINANCIAL_ENTRIES, "userId", student_id)

            summary = StudentRecordSummary(
                total_animals=len(animals),
                active_health_issues=sum(
                    1 for h in health if str(h.get("status") or "") in ACTIVE_HEALTH_STATUSES
                ),
                completed_tasks=sum(
                    1 for t in tasks if t.completion_status == CompletionStatus.COMPLETED
                ),
                total_hours=_total_hours(student),
                last_activity=_last_activity(
                    [metrics.record_date(j) for j in journal]
                    + [metrics.record_date(h) for h in health]
                    + [t.last_update for t in tasks]
                ),
                competency_progress=metrics.calculate_competency_progress(
                    journal, tasks, reflection_min_chars=self._reflection_min
                ),
            )
            return StudentRecord(
                student=student,
                animals=animals,
                journal_entries=journal,
                health_records=health,
                follow_up_tasks=tasks,
                financial_entries=financial,
                summary=summary,
            )
        except Exception:
            logger.exception("get_student_record failed student=%s", student_id)
            return None

    async def get_student_overview(self, student_id: str, educator_id: str) -> StudentOverview | None:
        try:
            record = await self.get_student_record(student_id, educator_id)
            if record is None:
                return None

            now = self._engine.now()
            tasks = record.follow_up_tasks
            return StudentOverview(
                student_id=str(record.student.get("id") or student_id),
                student_name=str(record.student.get("name") or ""),
                last_active=parse_dt(record.student.get("lastActive")) or now,
                animals=len(record.animals),
                active_issues=record.summary.active_health_issues,
                overdue_tasks=sum(1 for t in tasks if rules.task_is_overdue(t, now)),
                response_rate=metrics.calculate_response_rate(tasks),
                engagement_score=metrics.calculate_engagement_score(
                    record.journal_entries, tasks, now
                ),
                alerts=metrics.count_alerts(tasks, record.health_records, now),
            )
        except Exception:
            logger.exception("get_student_overview failed student=%s", student_id)
            return None

    async def get_all_student_overviews(self, educator_id: str) -> list[StudentOverview]:
        """Overviews for every supervised student: most urgent first, then most recently active."""
        try:
            overviews: list[StudentOverview] = []
            for student in await self.get_students_for_educator(educator_id):
                overview = await self.get_student_overview(str(student.get("id")), educator_id)
                if overview is not None:
                    overviews.append(overview)
            overviews.sort(key=lambda o: (o.alerts.urgent, o.last_active), reverse=True)
            return overviews
        except Exception:
            logger.exception("get_all_student_overviews failed educator=%s", educator_id)
            return []

    # ---- assignments ----

    async def assign_task_to_student(
        self, educator_id: str, student_id: str, data: Mapping[str, Any]
    ) -> bool:
        try:
            if await self._authorized_student(student_id, educator_id) is None:
                return False
        except Exception:
            logger.exception("assign_task_to_student failed student=%s", student_id)
            return False
        task = await self._engine.create_follow_up_task(
            {**data, "studentId": student_id, "assignedBy": educator_id}
        )
        return task is not None
