# tests/test_engine.py

from __future__ import annotations

from datetime import timedelta

import pytest

from vetwatch.followup.engine import FollowUpTaskEngine
from vetwatch.followup.models import (
    AlertType,
    CompletionStatus,
    ConditionAssessment,
    FollowUpTask,
    InterventionType,
    PriorityLevel,
    ReviewStatus,
)
from vetwatch.storage.keys import StorageKey
from vetwatch.storage.memory_store import InMemoryCollectionStore

from .fakes import FailingStore, FakeClock

ANIMALS = [{"id": "a1", "name": "Daisy", "tagNumber": "17"}]


@pytest.fixture()
def store() -> InMemoryCollectionStore:
    return InMemoryCollectionStore({StorageKey.ANIMALS: ANIMALS})


async def _daily_task(engine: FollowUpTaskEngine, days: int = 4, **extra):
    data = {
        "studentId": "s1",
        "animalId": "a1",
        "healthRecordId": "h1",
        "frequency": "daily",
        "durationDays": days,
        **extra,
    }
    task = await engine.create_follow_up_task(data)
    assert task is not None
    return task


async def _calm_update(engine: FollowUpTaskEngine, task_id: str, **extra):
    data = {
        "followUpTaskId": task_id,
        "observations": "Eating well, temperature normal",
        "conditionAssessment": "improved",
        "concernLevel": 2,
        **extra,
    }
    return await engine.add_task_update(data)


@pytest.mark.asyncio
async def test_create_task_ignores_caller_status_and_notifies_student(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    task = await engine.create_follow_up_task(
        {
            "studentId": "s1",
            "animalId": "a1",
            "progressPercentage": 55,
            "escalationTriggered": True,
            "completionStatus": "completed",
        }
    )

    assert task is not None
    assert task.id
    assert task.completion_status == CompletionStatus.PENDING
    assert task.progress_percentage == 0.0
    assert task.escalation_triggered is False
    assert task.priority_level == PriorityLevel.MEDIUM
    assert task.task_title == "Health Monitoring Task"
    assert task.due_date == clock() + timedelta(hours=24)

    alerts = await engine.get_alerts_for_student("s1")
    assert len(alerts) == 1
    assert alerts[0].alert_type == AlertType.COMPLETION_REMINDER
    assert alerts[0].title == "New Follow-up Task: Health Monitoring Task"
    assert "Daisy (#17)" in alerts[0].message
    assert alerts[0].educator_id is None


@pytest.mark.asyncio
async def test_unknown_animal_name_falls_back(engine: FollowUpTaskEngine) -> None:
    assert await engine.get_animal_name("nope") == "Unknown Animal"


@pytest.mark.asyncio
async def test_progress_follows_update_count(engine: FollowUpTaskEngine) -> None:
    task = await _daily_task(engine, days=4)

    await _calm_update(engine, task.id)
    await _calm_update(engine, task.id)
    half = await engine.get_follow_up_task(task.id)
    assert half is not None
    assert half.progress_percentage == 50.0
    assert half.completion_status == CompletionStatus.IN_PROGRESS
    assert half.last_update is not None

    await _calm_update(engine, task.id)
    await _calm_update(engine, task.id)
    done = await engine.get_follow_up_task(task.id)
    assert done is not None
    assert done.progress_percentage == 100.0
    assert done.completion_status == CompletionStatus.COMPLETED
    assert done.escalation_triggered is False


@pytest.mark.asyncio
async def test_new_update_is_pending_review_with_derived_quality(
    engine: FollowUpTaskEngine,
) -> None:
    task = await _daily_task(engine)
    update = await engine.add_task_update(
        {
            "followUpTaskId": task.id,
            "observations": "Temp 39.1",
            "actionTaken": "Checked water",
            "reviewStatus": "reviewed",
            "competencyDemonstrated": True,
        }
    )

    assert update is not None
    assert update.student_id == "s1"
    assert update.review_status == ReviewStatus.PENDING
    assert update.competency_demonstrated is False
    assert update.update_completeness_score == 0.5
    assert update.documentation_quality.value == "fair"


@pytest.mark.asyncio
async def test_update_for_unknown_task_is_not_stored(
    engine: FollowUpTaskEngine, store: InMemoryCollectionStore
) -> None:
    assert await engine.add_task_update({"followUpTaskId": "ghost"}) is None
    assert store.snapshot(StorageKey.FOLLOW_UP_UPDATES) is None


@pytest.mark.asyncio
async def test_calm_update_does_not_escalate(engine: FollowUpTaskEngine) -> None:
    task = await _daily_task(engine, assignedBy="e1")
    await engine.add_task_update(
        {
            "followUpTaskId": task.id,
            "observations": "mild swelling on left hock",
            "conditionAssessment": "same",
            "concernLevel": 3,
        }
    )

    after = await engine.get_follow_up_task(task.id)
    assert after is not None
    assert after.escalation_triggered is False
    assert after.priority_level == PriorityLevel.MEDIUM
    alerts = await engine.get_all_alerts()
    assert not [a for a in alerts if a.alert_type == AlertType.ESCALATION_NEEDED]


@pytest.mark.asyncio
async def test_high_concern_escalates_once(engine: FollowUpTaskEngine, clock: FakeClock) -> None:
    task = await _daily_task(engine, days=5, assignedBy="e1")

    update = await engine.add_task_update(
        {"followUpTaskId": task.id, "observations": "Not eating", "concernLevel": 5}
    )
    assert update is not None

    escalated = await engine.get_follow_up_task(task.id)
    assert escalated is not None
    assert escalated.escalation_triggered is True
    assert escalated.escalation_date == clock()
    assert escalated.priority_level == PriorityLevel.URGENT

    clock.advance(hours=2)
    await engine.add_task_update(
        {"followUpTaskId": task.id, "observations": "critical, still not eating"}
    )

    still = await engine.get_follow_up_task(task.id)
    assert still is not None
    assert still.escalation_date == escalated.escalation_date

    escalations = [
        a for a in await engine.get_all_alerts() if a.alert_type == AlertType.ESCALATION_NEEDED
    ]
    assert len(escalations) == 1
    alert = escalations[0]
    assert alert.priority_level == PriorityLevel.URGENT
    assert alert.student_id == "s1"
    assert alert.educator_id == "e1"
    assert alert.push_notification_sent is True
    assert alert.alert_data["reason"] == "High concern level reported"
    assert alert.alert_data["updateId"] == update.id
    assert alert.title.startswith("URGENT: Escalation Required")


@pytest.mark.asyncio
async def test_keywords_match_student_notes_case_insensitively(engine: FollowUpTaskEngine) -> None:
    task = await _daily_task(engine, days=5)
    await _calm_update(engine, task.id, studentNotes="Vet said this could be SEVERE")

    after = await engine.get_follow_up_task(task.id)
    assert after is not None
    assert after.escalation_triggered is True

    [alert] = [
        a for a in await engine.get_all_alerts() if a.alert_type == AlertType.ESCALATION_NEEDED
    ]
    assert alert.alert_data["reason"] == "Emergency keywords detected"


@pytest.mark.asyncio
async def test_generic_update_cannot_undo_escalation(engine: FollowUpTaskEngine) -> None:
    task = await _daily_task(engine, days=5)
    await _calm_update(engine, task.id, conditionAssessment="worse")

    updated = await engine.update_follow_up_task(
        task.id,
        {
            "id": "hijacked",
            "escalationTriggered": False,
            "escalationDate": None,
            "priorityLevel": "low",
            "taskTitle": "Renamed",
        },
    )

    assert updated is not None
    assert updated.id == task.id
    assert updated.task_title == "Renamed"
    assert updated.escalation_triggered is True
    assert updated.escalation_date is not None
    assert updated.priority_level == PriorityLevel.URGENT


@pytest.mark.asyncio
async def test_generic_update_refreshes_updated_at(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    task = await _daily_task(engine)
    clock.advance(minutes=5)

    updated = await engine.update_follow_up_task(task.id, {"taskDescription": "Check twice"})

    assert updated is not None
    assert updated.task_description == "Check twice"
    assert updated.updated_at == clock()
    assert updated.created_at == task.created_at
    assert await engine.update_follow_up_task("ghost", {"taskTitle": "x"}) is None


@pytest.mark.asyncio
async def test_complete_task_is_terminal_and_full(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    task = await _daily_task(engine, days=10, assignedBy="e1")
    await _calm_update(engine, task.id)

    clock.advance(days=1)
    done = await engine.complete_task(
        task.id, "Swelling gone", "resolved", "I learned to check for an urgent fever early."
    )

    assert done is not None
    assert done.completion_status == CompletionStatus.COMPLETED
    assert done.progress_percentage == 100.0
    assert done.completed_date == clock()
    assert done.outcome_status is not None and done.outcome_status.value == "resolved"
    # The reflection mentions "urgent" but the final update is not evaluated.
    assert done.escalation_triggered is False

    latest = await engine.get_latest_update_for_task(task.id)
    assert latest is not None
    assert latest.observations == "Task completed successfully"
    assert latest.condition_assessment == ConditionAssessment.RESOLVED
    assert latest.concern_level == 1
    assert latest.confidence_level == 4
    assert latest.update_completeness_score == 1.0

    # Later updates never reopen a completed task.
    clock.advance(hours=1)
    await _calm_update(engine, task.id)
    still = await engine.get_follow_up_task(task.id)
    assert still is not None
    assert still.completion_status == CompletionStatus.COMPLETED
    assert still.progress_percentage == 100.0

    completion_alerts = [
        a for a in await engine.get_alerts_for_educator("e1") if a.title.startswith("Task Completed")
    ]
    assert len(completion_alerts) == 1
    assert completion_alerts[0].priority_level == PriorityLevel.MEDIUM
    assert completion_alerts[0].alert_data["outcomeStatus"] == "resolved"


@pytest.mark.asyncio
async def test_complete_task_non_resolved_outcome_reads_as_improved(
    engine: FollowUpTaskEngine,
) -> None:
    task = await _daily_task(engine)
    await engine.complete_task(task.id, "Sent to vet", "referred", "")

    latest = await engine.get_latest_update_for_task(task.id)
    assert latest is not None
    assert latest.condition_assessment == ConditionAssessment.IMPROVED
    assert await engine.complete_task("ghost", "", "resolved", "") is None


@pytest.mark.asyncio
async def test_one_calm_update_on_three_day_task(engine: FollowUpTaskEngine) -> None:
    task = await _daily_task(engine, days=3)
    await _calm_update(engine, task.id)

    current = await engine.get_follow_up_task(task.id)
    assert current is not None
    assert current.progress_percentage == pytest.approx(33.33, abs=0.01)
    assert current.completion_status == CompletionStatus.IN_PROGRESS
    assert current.escalation_triggered is False

    # Only the assignment notice; calm updates raise nothing.
    [alert] = await engine.get_all_alerts()
    assert alert.title.startswith("New Follow-up Task")


@pytest.mark.asyncio
async def test_completing_twice_keeps_the_first_completion(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    task = await _daily_task(engine, days=3, assignedBy="e1")
    first = await engine.complete_task(task.id, "Healed", "resolved", "Checked twice a day.")
    assert first is not None
    completed_at = first.completed_date

    clock.advance(days=5)
    again = await engine.complete_task(task.id, "Second try", "referred", "")

    assert again is not None
    assert again.completed_date == completed_at
    assert again.outcome_status is not None and again.outcome_status.value == "resolved"
    assert again.resolution_notes == "Healed"

    stored = await engine.get_follow_up_task(task.id)
    assert stored is not None
    assert stored.completed_date == completed_at

    finals = [
        u
        for u in await engine.get_updates_for_task(task.id)
        if u.observations == "Task completed successfully"
    ]
    assert len(finals) == 1
    completion_alerts = [
        a for a in await engine.get_all_alerts() if a.title.startswith("Task Completed")
    ]
    assert len(completion_alerts) == 1


@pytest.mark.asyncio
async def test_complete_task_closes_a_task_already_at_full_progress(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    task = await _daily_task(engine, days=2, assignedBy="e1")
    await _calm_update(engine, task.id)
    await _calm_update(engine, task.id)
    full = await engine.get_follow_up_task(task.id)
    assert full is not None
    assert full.progress_percentage == 100.0
    assert full.completion_status == CompletionStatus.COMPLETED
    assert full.completed_date is None

    clock.advance(hours=3)
    done = await engine.complete_task(task.id, "All good", "improved", "Kept a log.")

    assert done is not None
    assert done.completion_status == CompletionStatus.COMPLETED
    assert done.progress_percentage == 100.0
    assert done.completed_date == clock()
    assert done.resolution_notes == "All good"

    latest = await engine.get_latest_update_for_task(task.id)
    assert latest is not None
    assert latest.observations == "Task completed successfully"
    assert any(
        a.title.startswith("Task Completed") for a in await engine.get_alerts_for_educator("e1")
    )


@pytest.mark.asyncio
async def test_stored_string_flags_are_read_strictly(settings, clock: FakeClock) -> None:
    store = InMemoryCollectionStore(
        {
            StorageKey.FOLLOW_UP_TASKS: [
                {
                    "id": "t1",
                    "studentId": "s1",
                    "escalationTriggered": "false",
                    "reflectionRequired": "no",
                    "priorityLevel": "low",
                }
            ]
        }
    )
    engine = FollowUpTaskEngine(store, settings=settings, clock=clock)

    updated = await engine.update_follow_up_task("t1", {"taskTitle": "Check feed"})

    assert updated is not None
    assert updated.escalation_triggered is False
    assert updated.escalation_date is None
    assert updated.reflection_required is False
    assert updated.priority_level == PriorityLevel.LOW

    assert FollowUpTask.from_dict({"id": "a", "escalationTriggered": "TRUE"}).escalation_triggered
    assert FollowUpTask.from_dict({"id": "b", "escalationTriggered": 1}).escalation_triggered
    assert not FollowUpTask.from_dict({"id": "c", "escalationTriggered": "0"}).escalation_triggered


@pytest.mark.asyncio
async def test_updates_are_listed_newest_first(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    task = await _daily_task(engine, days=5)
    first = await _calm_update(engine, task.id)
    clock.advance(hours=3)
    second = await _calm_update(engine, task.id)

    updates = await engine.get_updates_for_task(task.id)
    assert [u.id for u in updates] == [second.id, first.id]


@pytest.mark.asyncio
async def test_overdue_is_computed_not_stored(
    engine: FollowUpTaskEngine, clock: FakeClock, store: InMemoryCollectionStore
) -> None:
    task = await _daily_task(engine)
    assert engine.is_overdue(task) is False

    clock.advance(hours=25)
    fetched = await engine.get_follow_up_task(task.id)
    assert fetched is not None
    assert engine.is_overdue(fetched) is True
    [raw] = store.snapshot(StorageKey.FOLLOW_UP_TASKS)
    assert raw["completionStatus"] == "pending"


@pytest.mark.asyncio
async def test_active_tasks_and_animal_filter(engine: FollowUpTaskEngine) -> None:
    open_task = await _daily_task(engine)
    closed = await _daily_task(engine)
    other = await engine.create_follow_up_task({"studentId": "s2", "animalId": "a2"})
    await engine.complete_task(closed.id, "ok", "resolved", "")

    active = await engine.get_active_tasks_for_student("s1")
    assert [t.id for t in active] == [open_task.id]
    assert {t.id for t in await engine.get_tasks_for_animal("a1")} == {open_task.id, closed.id}
    assert other is not None
    assert [t.id for t in await engine.get_tasks_for_animal("a2")] == [other.id]


@pytest.mark.asyncio
async def test_acknowledge_and_resolve_stamp_once(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    alert = await engine.create_alert(
        {
            "alertType": "condition_change",
            "priorityLevel": "high",
            "educatorId": "e1",
            "title": "Limping",
            "message": "Check the left leg",
        }
    )
    assert alert is not None

    first = await engine.acknowledge_alert(alert.id)
    assert first is not None and first.acknowledged_date == clock()
    clock.advance(hours=1)
    again = await engine.acknowledge_alert(alert.id)
    assert again is not None and again.acknowledged_date == first.acknowledged_date

    resolved = await engine.resolve_alert(alert.id, "Called the vet")
    assert resolved is not None
    assert resolved.action_taken is True
    assert resolved.action_description == "Called the vet"
    assert resolved.resolved_date == clock()
    assert resolved.created_date == alert.created_date

    clock.advance(hours=1)
    twice = await engine.resolve_alert(alert.id, "Something else")
    assert twice is not None
    assert twice.resolved_date == resolved.resolved_date
    assert twice.action_description == "Called the vet"

    assert await engine.get_alerts_for_educator("e1") == []
    assert await engine.acknowledge_alert("ghost") is None


@pytest.mark.asyncio
async def test_alerts_are_listed_newest_first(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    older = await engine.create_alert({"studentId": "s1", "title": "old"})
    clock.advance(minutes=1)
    newer = await engine.create_alert({"studentId": "s1", "title": "new"})

    alerts = await engine.get_alerts_for_student("s1")
    assert [a.id for a in alerts] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_update_notifies_assigning_educator(engine: FollowUpTaskEngine) -> None:
    task = await _daily_task(engine, assignedBy="e1")
    update = await _calm_update(engine, task.id)

    [note] = await engine.get_alerts_for_educator("e1")
    assert note.priority_level == PriorityLevel.LOW
    assert note.title == f"Student Update: {task.task_title}"
    assert note.alert_data["updateId"] == update.id
    assert note.message == "New update received for Daisy (#17)"


@pytest.mark.asyncio
async def test_interventions_are_recorded_per_educator_and_student(
    engine: FollowUpTaskEngine, clock: FakeClock
) -> None:
    first = await engine.record_intervention(
        educator_id="e1", student_id="s1", intervention_type="guidance", notes="Explained dosing"
    )
    clock.advance(hours=1)
    second = await engine.record_intervention(
        educator_id="e1",
        student_id="s2",
        intervention_type="not-a-type",
        additional_support_needed=True,
        recommended_actions=["Daily photos"],
    )

    assert first is not None and second is not None
    assert first.intervention_type == InterventionType.GUIDANCE
    assert second.intervention_type == InterventionType.REMINDER
    assert [m.id for m in await engine.get_monitoring_for_educator("e1")] == [second.id, first.id]
    [only] = await engine.get_monitoring_for_student("s2")
    assert only.recommended_actions == ["Daily photos"]
    assert only.additional_support_needed is True


@pytest.mark.asyncio
async def test_refused_save_degrades_to_none(settings, clock: FakeClock) -> None:
    engine = FollowUpTaskEngine(FailingStore(save_fails=True), settings=settings, clock=clock)

    assert await engine.create_follow_up_task({"studentId": "s1"}) is None
    assert await engine.create_alert({"title": "x"}) is None


@pytest.mark.asyncio
async def test_broken_store_degrades_to_empty(settings, clock: FakeClock) -> None:
    engine = FollowUpTaskEngine(FailingStore(load_fails=True), settings=settings, clock=clock)

    assert await engine.get_all_follow_up_tasks() == []
    assert await engine.get_all_alerts() == []
    assert await engine.get_follow_up_task("t1") is None
    assert await engine.add_task_update({"followUpTaskId": "t1"}) is None
    assert await engine.get_monitoring_for_student("s1") == []
    assert await engine.get_animal_name("a1") == "Unknown Animal"
