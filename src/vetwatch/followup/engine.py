# src/vetwatch/followup/engine.py

from __future__ import annotations

"""
Follow-up task engine.

Owns the task / update / alert / monitoring collections and the rules that tie them:
- every update recomputes task progress and is checked for escalation,
- escalation is one-way (escalated tasks stay urgent),
- completion is terminal and always lands at 100%.

Storage is whole-collection read-modify-write through an injected PersistenceStore.
Public methods never raise: failures are logged and degrade to None / [] / False.
"""

import asyncio
import contextlib
import dataclasses
import logging
from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, TypeVar

from ..config import DEFAULT_ESCALATION_KEYWORDS
from ..core.errors import PersistenceError
from ..core.ids import generate_id, utc_now
from ..core.ports import Clock, PersistenceStore, Record
from ..storage.keys import StorageKey
from ..storage.records import load_records
from . import rules
from .models import (
    AlertType,
    CompletionStatus,
    ConditionAssessment,
    EducatorMonitoring,
    FollowUpTask,
    FollowUpUpdate,
    HealthAlert,
    InterventionType,
    OutcomeStatus,
    PriorityLevel,
    iso,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# Fields the generic task update may not touch.
_PROTECTED_TASK_FIELDS = frozenset({"id", "createdAt", "createdDate"})


class FollowUpTaskEngine:
    def __init__(
        self,
        store: PersistenceStore,
        *,
        settings: Any = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or utc_now
        self._concern_threshold = int(getattr(settings, "escalation_concern_level", 4))
        self._keywords = tuple(getattr(settings, "escalation_keywords", DEFAULT_ESCALATION_KEYWORDS))
        # Off by default: concurrent writers of one collection get last-writer-wins.
        self._serialize_writes = bool(getattr(settings, "serialize_writes", False))
        self._locks: dict[str, asyncio.Lock] = {}

    def now(self) -> datetime:
        return self._clock()

    # ---- low-level helpers ----

    def _guard(self, key: str) -> AbstractAsyncContextManager[Any]:
        if not self._serialize_writes:
            return contextlib.nullcontext()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _load_records(self, key: str) -> list[Record]:
        return await load_records(self._store, key)

    async def _save_records(self, key: str, records: list[Record]) -> None:
        if not await self._store.save_data(key, records):
            raise PersistenceError(key)

    async def _append(self, key: str, record: Record) -> None:
        async with self._guard(key):
            records = await self._load_records(key)
            records.append(record)
            await self._save_records(key, records)

    async def _mutate(
        self,
        key: str,
        record_id: str,
        parse: Callable[[Record], _T],
        apply: Callable[[_T], bool],
        dump: Callable[[_T], Record],
    ) -> _T | None:
        """
        Load `key`, run `apply` on the record with `record_id`, save if it reported a change.
        Returns the (possibly unchanged) entity, or None when the id is unknown.
        """
        async with self._guard(key):
            records = await self._load_records(key)
            for i, rec in enumerate(records):
                if rec.get("id") != record_id:
                    continue
                entity = parse(rec)
                if apply(entity):
                    records[i] = dump(entity)
                    await self._save_records(key, records)
                return entity
        return None

    async def _mutate_task(
        self, task_id: str, apply: Callable[[FollowUpTask], bool]
    ) -> FollowUpTask | None:
        def guarded(task: FollowUpTask) -> bool:
            was_escalated = task.escalation_triggered
            escalated_at = task.escalation_date
            if not apply(task):
                return False
            if was_escalated:
                task.escalation_triggered = True
                task.escalation_date = escalated_at
            if task.escalation_triggered:
                task.priority_level = PriorityLevel.URGENT
                if task.escalation_date is None:
                    task.escalation_date = self.now()
            task.updated_at = self.now()
            return True

        return await self._mutate(
            StorageKey.FOLLOW_UP_TASKS, task_id, FollowUpTask.from_dict, guarded, FollowUpTask.to_dict
        )

    async def _tasks(self) -> list[FollowUpTask]:
        return [FollowUpTask.from_dict(r) for r in await self._load_records(StorageKey.FOLLOW_UP_TASKS)]

    async def _updates(self) -> list[FollowUpUpdate]:
        return [
            FollowUpUpdate.from_dict(r) for r in await self._load_records(StorageKey.FOLLOW_UP_UPDATES)
        ]

    async def _alerts(self) -> list[HealthAlert]:
        return [HealthAlert.from_dict(r) for r in await self._load_records(StorageKey.HEALTH_ALERTS)]

    async def _task(self, task_id: str) -> FollowUpTask | None:
        for task in await self._tasks():
            if task.id == task_id:
                return task
        return None

    async def _new_alert(self, data: Mapping[str, Any]) -> HealthAlert:
        now = self.now()
        alert = HealthAlert.from_dict({**data, "id": generate_id()}, now=now)
        await self._append(StorageKey.HEALTH_ALERTS, alert.to_dict())
        logger.debug(
            "Alert created id=%s type=%s priority=%s student=%s educator=%s",
            alert.id,
            alert.alert_type.value,
            alert.priority_level.value,
            alert.student_id,
            alert.educator_id,
        )
        return alert

    # ---- tasks ----

    async def create_follow_up_task(self, data: Mapping[str, Any]) -> FollowUpTask | None:
        """
        Create a task from an educator request.

        Caller-supplied progress/status/escalation values are ignored: a new task always
        starts pending at 0% and not escalated. The student gets an assignment alert.
        """
        try:
            now = self.now()
            task = FollowUpTask.from_dict({**data, "id": generate_id()}, now=now)
            task.created_at = now
            task.updated_at = now
            task.progress_percentage = 0.0
            task.escalation_triggered = False
            task.escalation_date = None
            task.completion_status = CompletionStatus.PENDING
            task.completed_date = None
            task.last_update = None

            await self._append(StorageKey.FOLLOW_UP_TASKS, task.to_dict())
            logger.info(
                "Follow-up task created id=%s student=%s animal=%s frequency=%s days=%s",
                task.id,
                task.student_id,
                task.animal_id,
                task.frequency.value,
                task.duration_days,
            )

            animal_name = await self.get_animal_name(task.animal_id)
            await self._new_alert(
                {
                    "alertType": AlertType.COMPLETION_REMINDER,
                    "priorityLevel": task.priority_level,
                    "studentId": task.student_id,
                    "followUpTaskId": task.id,
                    "title": f"New Follow-up Task: {task.task_title}",
                    "message": (
                        f"You have been assigned a new health follow-up task for {animal_name}."
                    ),
                    "alertData": {"taskId": task.id, "dueDate": iso(task.due_date)},
                    "pushNotificationSent": False,
                    "dashboardNotification": True,
                }
            )
            return task
        except Exception:
            logger.exception("create_follow_up_task failed student=%s", data.get("studentId"))
            return None

    async def update_follow_up_task(
        self, task_id: str, changes: Mapping[str, Any]
    ) -> FollowUpTask | None:
        """Merge wire-shaped `changes` into a task. An escalation can never be undone here."""

        def apply(task: FollowUpTask) -> bool:
            merged = task.to_dict()
            for k, v in changes.items():
                if k not in _PROTECTED_TASK_FIELDS:
                    merged[k] = v
            updated = FollowUpTask.from_dict(merged)
            for f in dataclasses.fields(FollowUpTask):
                setattr(task, f.name, getattr(updated, f.name))
            return True

        try:
            return await self._mutate_task(task_id, apply)
        except Exception:
            logger.exception("update_follow_up_task failed task_id=%s", task_id)
            return None

    async def get_follow_up_task(self, task_id: str) -> FollowUpTask | None:
        try:
            return await self._task(task_id)
        except Exception:
            logger.exception("get_follow_up_task failed task_id=%s", task_id)
            return None

    async def get_all_follow_up_tasks(self) -> list[FollowUpTask]:
        try:
            return await self._tasks()
        except Exception:
            logger.exception("get_all_follow_up_tasks failed")
            return []

    async def get_tasks_for_student(self, student_id: str) -> list[FollowUpTask]:
        return [t for t in await self.get_all_follow_up_tasks() if t.student_id == student_id]

    async def get_active_tasks_for_student(self, student_id: str) -> list[FollowUpTask]:
        return [t for t in await self.get_tasks_for_student(student_id) if t.is_active]

    async def get_tasks_for_animal(self, animal_id: str) -> list[FollowUpTask]:
        return [t for t in await self.get_all_follow_up_tasks() if t.animal_id == animal_id]

    def is_overdue(self, task: FollowUpTask) -> bool:
        return rules.task_is_overdue(task, self.now())

    # ---- updates ----

    def _build_update(self, data: Mapping[str, Any]) -> FollowUpUpdate:
        now = self.now()
        raw = dict(data)
        if raw.get("updateCompletenessScore") is None:
            raw["updateCompletenessScore"] = rules.completeness_score(
                observations=str(raw.get("observations") or ""),
                action_taken=str(raw.get("actionTaken") or ""),
                measurements=raw.get("measurements") or {},
                photos=list(raw.get("photos") or []),
                student_notes=str(raw.get("studentNotes") or ""),
            )
        parsed = FollowUpUpdate.from_dict(raw, now=now)
        quality = raw.get("documentationQuality") or rules.documentation_quality(
            parsed.update_completeness_score
        )
        raw.update(
            {
                "id": generate_id(),
                "createdAt": now,
                "reviewStatus": "pending",
                "competencyDemonstrated": False,
                "documentationQuality": quality,
            }
        )
        return FollowUpUpdate.from_dict(raw, now=now)

    async def _recompute_progress(self, task_id: str) -> FollowUpTask | None:
        count = sum(1 for u in await self._updates() if u.follow_up_task_id == task_id)
        now = self.now()

        def apply(task: FollowUpTask) -> bool:
            task.last_update = now
            if task.completion_status.is_terminal:
                return True
            expected = rules.expected_updates(task.frequency, task.duration_days)
            task.progress_percentage = rules.compute_progress(count, expected)
            task.completion_status = rules.status_for_progress(task.progress_percentage)
            return True

        task = await self._mutate_task(task_id, apply)
        if task is not None:
            logger.debug(
                "Progress task_id=%s updates=%s progress=%.2f status=%s",
                task_id,
                count,
                task.progress_percentage,
                task.completion_status.value,
            )
        return task

    async def add_task_update(self, data: Mapping[str, Any]) -> FollowUpUpdate | None:
        """
        Append a student update, then recompute progress, evaluate escalation and notify
        the assigning educator. Updates for unknown tasks are not stored.
        """
        task_id = str(data.get("followUpTaskId") or "")
        try:
            task = await self._task(task_id)
            if task is None:
                logger.warning("add_task_update: unknown task_id=%s", task_id)
                return None

            update = self._build_update({"studentId": task.student_id, **data})
            await self._append(StorageKey.FOLLOW_UP_UPDATES, update.to_dict())
            logger.info(
                "Update added id=%s task_id=%s concern=%s assessment=%s",
                update.id,
                task_id,
                update.concern_level,
                update.condition_assessment.value,
            )

            await self._recompute_progress(task_id)
            await self._check_escalation(task_id, update)
            await self._notify_educator_of_update(task_id, update)
            return update
        except Exception:
            logger.exception("add_task_update failed task_id=%s", task_id)
            return None

    async def get_all_task_updates(self) -> list[FollowUpUpdate]:
        try:
            return await self._updates()
        except Exception:
            logger.exception("get_all_task_updates failed")
            return []

    async def get_updates_for_task(self, task_id: str) -> list[FollowUpUpdate]:
        """Updates for one task, newest first."""
        updates = [u for u in await self.get_all_task_updates() if u.follow_up_task_id == task_id]
        updates.sort(key=lambda u: u.update_date, reverse=True)
        return updates

    async def get_latest_update_for_task(self, task_id: str) -> FollowUpUpdate | None:
        updates = await self.get_updates_for_task(task_id)
        return updates[0] if updates else None

    # ---- escalation ----

    async def _check_escalation(self, task_id: str, update: FollowUpUpdate) -> str | None:
        reason = rules.escalation_reason(
            update, concern_threshold=self._concern_threshold, keywords=self._keywords
        )
        if reason is None:
            return None
        alert = await self._trigger_escalation(task_id, reason, update)
        return reason if alert is not None else None

    async def check_escalation_triggers(self, task_id: str, update: FollowUpUpdate) -> str | None:
        """Escalate `task_id` if `update` warrants it. Returns the reason when it fired now."""
        try:
            return await self._check_escalation(task_id, update)
        except Exception:
            logger.exception("check_escalation_triggers failed task_id=%s", task_id)
            return None

    async def _trigger_escalation(
        self, task_id: str, reason: str, update: FollowUpUpdate | None
    ) -> HealthAlert | None:
        now = self.now()

        fired = False

        def apply(task: FollowUpTask) -> bool:
            nonlocal fired
            if task.escalation_triggered:
                return False
            task.escalation_triggered = True
            task.escalation_date = now
            task.priority_level = PriorityLevel.URGENT
            fired = True
            return True

        task = await self._mutate_task(task_id, apply)
        if task is None or not fired:
            return None

        logger.warning(
            "Escalation triggered task_id=%s student=%s educator=%s reason=%s",
            task_id,
            task.student_id,
            task.assigned_by,
            reason,
        )

        animal_name = await self.get_animal_name(task.animal_id)
        alert_data: dict[str, Any] = {"taskId": task_id, "reason": reason}
        if update is not None:
            alert_data.update(
                {
                    "updateId": update.id,
                    "concernLevel": update.concern_level,
                    "conditionAssessment": update.condition_assessment.value,
                }
            )
        return await self._new_alert(
            {
                "alertType": AlertType.ESCALATION_NEEDED,
                "priorityLevel": PriorityLevel.URGENT,
                "studentId": task.student_id,
                "educatorId": task.assigned_by,
                "followUpTaskId": task_id,
                "title": f"URGENT: Escalation Required - {task.task_title}",
                "message": f"{reason}. Immediate attention needed for {animal_name}.",
                "alertData": alert_data,
                "pushNotificationSent": True,
                "dashboardNotification": True,
            }
        )

    async def trigger_escalation(
        self, task_id: str, reason: str, update: FollowUpUpdate | None = None
    ) -> HealthAlert | None:
        """Escalate a task unconditionally. No-op (None) if it is already escalated."""
        try:
            return await self._trigger_escalation(task_id, reason, update)
        except Exception:
            logger.exception("trigger_escalation failed task_id=%s", task_id)
            return None

    # ---- completion ----

    async def complete_task(
        self,
        task_id: str,
        resolution_notes: str,
        outcome_status: OutcomeStatus | str,
        learning_reflection: str,
    ) -> FollowUpTask | None:
        """
        Close a task: completed, 100%, completedDate=now. Appends a final reflection update
        (not evaluated for escalation) and tells the assigning educator.

        A task that reached 100% through its updates is still closed here. A task that was
        already closed (completedDate set) or cancelled is returned as stored.
        """
        outcome = OutcomeStatus.parse(outcome_status, OutcomeStatus.ONGOING)
        try:
            now = self.now()
            closed_before = False

            def apply(task: FollowUpTask) -> bool:
                nonlocal closed_before
                if task.completion_status == CompletionStatus.CANCELLED or (
                    task.completion_status == CompletionStatus.COMPLETED
                    and task.completed_date is not None
                ):
                    closed_before = True
                    return False
                task.completion_status = CompletionStatus.COMPLETED
                task.completed_date = now
                task.resolution_notes = resolution_notes
                task.outcome_status = outcome
                task.progress_percentage = 100.0
                task.last_update = now
                return True

            task = await self._mutate_task(task_id, apply)
            if task is None:
                logger.warning("complete_task: unknown task_id=%s", task_id)
                return None
            if closed_before:
                logger.info(
                    "complete_task: task already closed id=%s status=%s",
                    task_id,
                    task.completion_status.value,
                )
                return task

            final = self._build_update(
                {
                    "followUpTaskId": task_id,
                    "studentId": task.student_id,
                    "updateDate": now,
                    "observations": "Task completed successfully",
                    "measurements": {},
                    "photos": [],
                    "conditionAssessment": (
                        ConditionAssessment.RESOLVED
                        if outcome == OutcomeStatus.RESOLVED
                        else ConditionAssessment.IMPROVED
                    ),
                    "concernLevel": 1,
                    "actionTaken": "Task completion and reflection",
                    "studentNotes": learning_reflection,
                    "questionsForExpert": "",
                    "confidenceLevel": 4,
                    "updateCompletenessScore": 1.0,
                    "photoQualityScore": 0.0,
                    "documentationQuality": "good",
                }
            )
            await self._append(StorageKey.FOLLOW_UP_UPDATES, final.to_dict())
            logger.info("Task completed id=%s outcome=%s", task_id, outcome.value)

            if task.assigned_by:
                await self._new_alert(
                    {
                        "alertType": AlertType.COMPLETION_REMINDER,
                        "priorityLevel": PriorityLevel.MEDIUM,
                        "educatorId": task.assigned_by,
                        "followUpTaskId": task_id,
                        "title": f"Task Completed: {task.task_title}",
                        "message": (
                            f"Student has completed the follow-up task with outcome: {outcome.value}"
                        ),
                        "alertData": {
                            "taskId": task_id,
                            "outcomeStatus": outcome.value,
                            "resolutionNotes": resolution_notes,
                        },
                        "dashboardNotification": True,
                    }
                )
            return task
        except Exception:
            logger.exception("complete_task failed task_id=%s", task_id)
            return None

    # ---- alerts ----

    async def create_alert(self, data: Mapping[str, Any]) -> HealthAlert | None:
        try:
            return await self._new_alert(data)
        except Exception:
            logger.exception("create_alert failed type=%s", data.get("alertType"))
            return None

    async def get_all_alerts(self) -> list[HealthAlert]:
        try:
            return await self._alerts()
        except Exception:
            logger.exception("get_all_alerts failed")
            return []

    async def get_alerts_for_student(self, student_id: str) -> list[HealthAlert]:
        """Unresolved alerts for a student, newest first."""
        alerts = [
            a for a in await self.get_all_alerts() if a.student_id == student_id and not a.is_resolved
        ]
        alerts.sort(key=lambda a: a.created_date, reverse=True)
        return alerts

    async def get_alerts_for_educator(self, educator_id: str) -> list[HealthAlert]:
        """Unresolved alerts for an educator, newest first."""
        alerts = [
            a
            for a in await self.get_all_alerts()
            if a.educator_id == educator_id and not a.is_resolved
        ]
        alerts.sort(key=lambda a: a.created_date, reverse=True)
        return alerts

    async def acknowledge_alert(self, alert_id: str) -> HealthAlert | None:
        """Stamp acknowledgedDate the first time; later calls leave it untouched."""
        now = self.now()

        def apply(alert: HealthAlert) -> bool:
            if alert.acknowledged_date is not None:
                return False
            alert.acknowledged_date = now
            return True

        try:
            return await self._mutate(
                StorageKey.HEALTH_ALERTS, alert_id, HealthAlert.from_dict, apply, HealthAlert.to_dict
            )
        except Exception:
            logger.exception("acknowledge_alert failed alert_id=%s", alert_id)
            return None

    async def resolve_alert(self, alert_id: str, action_description: str) -> HealthAlert | None:
        """Record the action taken and stamp resolvedDate, once."""
        now = self.now()

        def apply(alert: HealthAlert) -> bool:
            if alert.resolved_date is not None:
                return False
            alert.action_taken = True
            alert.action_description = action_description
            alert.resolved_date = now
            return True

        try:
            return await self._mutate(
                StorageKey.HEALTH_ALERTS, alert_id, HealthAlert.from_dict, apply, HealthAlert.to_dict
            )
        except Exception:
            logger.exception("resolve_alert failed alert_id=%s", alert_id)
            return None

    async def _notify_educator_of_update(self, task_id: str, update: FollowUpUpdate) -> None:
        task = await self._task(task_id)
        if task is None or not task.assigned_by:
            return
        animal_name = await self.get_animal_name(task.animal_id)
        await self._new_alert(
            {
                "alertType": AlertType.COMPLETION_REMINDER,
                "priorityLevel": PriorityLevel.LOW,
                "educatorId": task.assigned_by,
                "followUpTaskId": task_id,
                "title": f"Student Update: {task.task_title}",
                "message": f"New update received for {animal_name}",
                "alertData": {
                    "taskId": task_id,
                    "updateId": update.id,
                    "conditionAssessment": update.condition_assessment.value,
                },
                "dashboardNotification": True,
            }
        )

    # ---- educator monitoring ----

    async def record_intervention(
        self,
        *,
        educator_id: str,
        student_id: str,
        intervention_type: InterventionType | str,
        notes: str = "",
        follow_up_task_id: str | None = None,
        outcome: str | None = None,
        competency_assessment: str | None = None,
        additional_support_needed: bool = False,
        recommended_actions: list[str] | None = None,
    ) -> EducatorMonitoring | None:
        try:
            now = self.now()
            entry = EducatorMonitoring.from_dict(
                {
                    "id": generate_id(),
                    "educatorId": educator_id,
                    "studentId": student_id,
                    "followUpTaskId": follow_up_task_id,
                    "interventionDate": now,
                    "interventionType": InterventionType.parse(
                        intervention_type, InterventionType.REMINDER
                    ),
                    "interventionNotes": notes,
                    "interventionOutcome": outcome,
                    "competencyAssessment": competency_assessment,
                    "additionalSupportNeeded": additional_support_needed,
                    "recommendedActions": recommended_actions or [],
                    "createdAt": now,
                    "updatedAt": now,
                },
                now=now,
            )
            await self._append(StorageKey.EDUCATOR_MONITORING, entry.to_dict())
            logger.info(
                "Intervention recorded educator=%s student=%s type=%s",
                educator_id,
                student_id,
                entry.intervention_type.value if entry.intervention_type else None,
            )
            return entry
        except Exception:
            logger.exception(
                "record_intervention failed educator=%s student=%s", educator_id, student_id
            )
            return None

    async def _monitoring(self) -> list[EducatorMonitoring]:
        try:
            records = await self._load_records(StorageKey.EDUCATOR_MONITORING)
        except Exception:
            logger.exception("Failed to load educator monitoring")
            return []
        return [EducatorMonitoring.from_dict(r) for r in records]

    async def get_monitoring_for_educator(self, educator_id: str) -> list[EducatorMonitoring]:
        entries = [m for m in await self._monitoring() if m.educator_id == educator_id]
        entries.sort(key=lambda m: m.created_at, reverse=True)
        return entries

    async def get_monitoring_for_student(self, student_id: str) -> list[EducatorMonitoring]:
        entries = [m for m in await self._monitoring() if m.student_id == student_id]
        entries.sort(key=lambda m: m.created_at, reverse=True)
        return entries

    # ---- display helpers ----

    async def get_animal_name(self, animal_id: str) -> str:
        try:
            animals = await self._load_records(StorageKey.ANIMALS)
        except Exception:
            logger.debug("Animal lookup failed animal_id=%s", animal_id, exc_info=True)
            return "Unknown Animal"
        for animal in animals:
            if animal.get("id") == animal_id:
                return f"{animal.get('name', 'Unnamed')} (#{animal.get('tagNumber', '?')})"
        return "Unknown Animal"
