# src/vetwatch/followup/models.py

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, TypeVar

_E = TypeVar("_E", bound="WireEnum")


class WireEnum(StrEnum):
    """StrEnum that reads unknown/missing wire values as a default instead of failing."""

    @classmethod
    def parse(cls: type[_E], raw: Any, default: _E) -> _E:
        if raw is None or raw == "":
            return default
        try:
            return cls(str(raw))
        except ValueError:
            return default


class TaskType(WireEnum):
    MONITORING = "monitoring"
    TREATMENT = "treatment"
    ASSESSMENT = "assessment"
    VACCINATION = "vaccination"
    FOLLOW_UP = "follow_up"


class Frequency(WireEnum):
    ONCE = "once"
    DAILY = "daily"
    TWICE_DAILY = "twice_daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class CompletionStatus(WireEnum):
    """
    Stored task status.

    Notes:
    - "overdue" is not a member: it is derived at read time from the due date.
      Older data that persisted "overdue" is read back as pending.
    - "cancelled" is accepted from storage but nothing in this package produces it.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (CompletionStatus.COMPLETED, CompletionStatus.CANCELLED)


ACTIVE_STATUSES = frozenset({CompletionStatus.PENDING, CompletionStatus.IN_PROGRESS})


class PriorityLevel(WireEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class OutcomeStatus(WireEnum):
    RESOLVED = "resolved"
    IMPROVED = "improved"
    REFERRED = "referred"
    ONGOING = "ongoing"


class ConditionAssessment(WireEnum):
    IMPROVED = "improved"
    SAME = "same"
    WORSE = "worse"
    RESOLVED = "resolved"


class ReviewStatus(WireEnum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    FLAGGED = "flagged"


class DocumentationQuality(WireEnum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"


class AlertType(WireEnum):
    OVERDUE_UPDATE = "overdue_update"
    ESCALATION_NEEDED = "escalation_needed"
    COMPLETION_REMINDER = "completion_reminder"
    CONDITION_CHANGE = "condition_change"


class InterventionType(WireEnum):
    REMINDER = "reminder"
    GUIDANCE = "guidance"
    DIRECT_CONTACT = "direct_contact"
    ESCALATION = "escalation"


# ---- wire helpers ----


def parse_dt(raw: Any) -> datetime | None:
    """
    Read a wire timestamp: datetime, ISO-8601 string (a trailing "Z" is accepted) or
    epoch milliseconds. Naive values are taken as UTC. Anything else -> None.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, (int, float)) and not isinstance(raw, bool):
        try:
            dt = datetime.fromtimestamp(float(raw) / 1000.0, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(raw, str):
        s = raw.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def iso(dt: datetime | None) -> str | None:
    return dt.astimezone(UTC).isoformat() if dt is not None else None


def _str(raw: Any, default: str = "") -> str:
    return default if raw is None else str(raw)


def _opt_str(raw: Any) -> str | None:
    if raw is None:
        return None
    s = str(raw)
    return s if s else None


def _int(raw: Any, default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _float(raw: Any, default: float) -> float:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _bool(raw: Any, default: bool = False) -> bool:
    """Stored flags: a real bool, 1, or "true"/"1". Anything else is False."""
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int):
        return raw == 1
    if isinstance(raw, str):
        return raw.strip().lower() in ("true", "1")
    return False


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _str_list(raw: Any) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(x) for x in raw if x is not None and str(x)]


def _dict(raw: Any) -> dict[str, Any]:
    return dict(raw) if isinstance(raw, Mapping) else {}


def _dict_list(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [dict(x) for x in raw if isinstance(x, Mapping)]


# ---- entities ----


@dataclass(slots=True)
class FollowUpTask:
    id: str
    health_record_id: str
    animal_id: str
    student_id: str
    assigned_by: str | None

    task_type: TaskType
    task_title: str
    task_description: str
    detailed_instructions: str

    created_date: datetime
    due_date: datetime
    frequency: Frequency
    duration_days: int

    completion_status: CompletionStatus
    progress_percentage: float
    priority_level: PriorityLevel
    escalation_triggered: bool

    created_at: datetime
    updated_at: datetime

    last_update: datetime | None = None
    escalation_date: datetime | None = None

    learning_objectives: list[str] = field(default_factory=list)
    competency_standards: list[str] = field(default_factory=list)
    reflection_required: bool = False

    completed_date: datetime | None = None
    resolution_notes: str | None = None
    outcome_status: OutcomeStatus | None = None

    @property
    def is_active(self) -> bool:
        return self.completion_status in ACTIVE_STATUSES

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, now: datetime | None = None) -> FollowUpTask:
        """
        Build a task from its wire shape.

        Missing fields are defaulted, never rejected; `now` seeds the date defaults
        (created now, due in 24h).
        """
        now = now or datetime.now(UTC)
        created = parse_dt(data.get("createdDate")) or now
        outcome_raw = data.get("outcomeStatus")
        return cls(
            id=_str(data.get("id")),
            health_record_id=_str(data.get("healthRecordId")),
            animal_id=_str(data.get("animalId")),
            student_id=_str(data.get("studentId")),
            assigned_by=_opt_str(data.get("assignedBy")),
            task_type=TaskType.parse(data.get("taskType"), TaskType.MONITORING),
            task_title=_str(data.get("taskTitle")) or "Health Monitoring Task",
            task_description=_str(data.get("taskDescription")),
            detailed_instructions=_str(data.get("detailedInstructions")),
            created_date=created,
            due_date=parse_dt(data.get("dueDate")) or now + timedelta(hours=24),
            frequency=Frequency.parse(data.get("frequency"), Frequency.ONCE),
            duration_days=max(1, _int(data.get("durationDays"), 1)),
            completion_status=CompletionStatus.parse(
                data.get("completionStatus"), CompletionStatus.PENDING
            ),
            progress_percentage=_clamp(_float(data.get("progressPercentage"), 0.0), 0.0, 100.0),
            priority_level=PriorityLevel.parse(data.get("priorityLevel"), PriorityLevel.MEDIUM),
            escalation_triggered=_bool(data.get("escalationTriggered"), False),
            created_at=parse_dt(data.get("createdAt")) or created,
            updated_at=parse_dt(data.get("updatedAt")) or created,
            last_update=parse_dt(data.get("lastUpdate")),
            escalation_date=parse_dt(data.get("escalationDate")),
            learning_objectives=_str_list(data.get("learningObjectives")),
            competency_standards=_str_list(data.get("competencyStandards")),
            reflection_required=_bool(data.get("reflectionRequired"), False),
            completed_date=parse_dt(data.get("completedDate")),
            resolution_notes=_opt_str(data.get("resolutionNotes")),
            outcome_status=(
                OutcomeStatus.parse(outcome_raw, OutcomeStatus.ONGOING) if outcome_raw else None
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "healthRecordId": self.health_record_id,
            "animalId": self.animal_id,
            "studentId": self.student_id,
            "assignedBy": self.assigned_by,
            "taskType": self.task_type.value,
            "taskTitle": self.task_title,
            "taskDescription": self.task_description,
            "detailedInstructions": self.detailed_instructions,
            "createdDate": iso(self.created_date),
            "dueDate": iso(self.due_date),
            "frequency": self.frequency.value,
            "durationDays": self.duration_days,
            "completionStatus": self.completion_status.value,
            "progressPercentage": self.progress_percentage,
            "lastUpdate": iso(self.last_update),
            "priorityLevel": self.priority_level.value,
            "escalationTriggered": self.escalation_triggered,
            "escalationDate": iso(self.escalation_date),
            "learningObjectives": list(self.learning_objectives),
            "competencyStandards": list(self.competency_standards),
            "reflectionRequired": self.reflection_required,
            "completedDate": iso(self.completed_date),
            "resolutionNotes": self.resolution_notes,
            "outcomeStatus": self.outcome_status.value if self.outcome_status else None,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }


@dataclass(frozen=True, slots=True)
class FollowUpUpdate:
    """One observation submitted against a task. Never modified after creation."""

    id: str
    follow_up_task_id: str
    student_id: str
    update_date: datetime

    observations: str
    measurements: dict[str, Any]
    photos: list[dict[str, Any]]

    condition_assessment: ConditionAssessment
    concern_level: int
    action_taken: str

    student_notes: str
    questions_for_expert: str
    confidence_level: int

    update_completeness_score: float
    photo_quality_score: float
    documentation_quality: DocumentationQuality

    review_status: ReviewStatus
    competency_demonstrated: bool
    created_at: datetime

    reviewed_by: str | None = None
    educator_feedback: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, now: datetime | None = None) -> FollowUpUpdate:
        now = now or datetime.now(UTC)
        update_date = parse_dt(data.get("updateDate")) or now
        score = _clamp(_float(data.get("updateCompletenessScore"), 0.0), 0.0, 1.0)
        return cls(
            id=_str(data.get("id")),
            follow_up_task_id=_str(data.get("followUpTaskId")),
            student_id=_str(data.get("studentId")),
            update_date=update_date,
            observations=_str(data.get("observations")),
            measurements=_dict(data.get("measurements")),
            photos=_dict_list(data.get("photos")),
            condition_assessment=ConditionAssessment.parse(
                data.get("conditionAssessment"), ConditionAssessment.SAME
            ),
            concern_level=int(_clamp(_int(data.get("concernLevel"), 3), 1, 5)),
            action_taken=_str(data.get("actionTaken")),
            student_notes=_str(data.get("studentNotes")),
            questions_for_expert=_str(data.get("questionsForExpert")),
            confidence_level=int(_clamp(_int(data.get("confidenceLevel"), 3), 1, 5)),
            update_completeness_score=score,
            photo_quality_score=_clamp(_float(data.get("photoQualityScore"), 0.0), 0.0, 1.0),
            documentation_quality=DocumentationQuality.parse(
                data.get("documentationQuality"), DocumentationQuality.POOR
            ),
            review_status=ReviewStatus.parse(data.get("reviewStatus"), ReviewStatus.PENDING),
            competency_demonstrated=_bool(data.get("competencyDemonstrated"), False),
            created_at=parse_dt(data.get("createdAt")) or update_date,
            reviewed_by=_opt_str(data.get("reviewedBy")),
            educator_feedback=_opt_str(data.get("educatorFeedback")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "followUpTaskId": self.follow_up_task_id,
            "studentId": self.student_id,
            "updateDate": iso(self.update_date),
            "observations": self.observations,
            "measurements": dict(self.measurements),
            "photos": [dict(p) for p in self.photos],
            "conditionAssessment": self.condition_assessment.value,
            "concernLevel": self.concern_level,
            "actionTaken": self.action_taken,
            "studentNotes": self.student_notes,
            "questionsForExpert": self.questions_for_expert,
            "confidenceLevel": self.confidence_level,
            "updateCompletenessScore": self.update_completeness_score,
            "photoQualityScore": self.photo_quality_score,
            "documentationQuality": self.documentation_quality.value,
            "reviewedBy": self.reviewed_by,
            "reviewStatus": self.review_status.value,
            "educatorFeedback": self.educator_feedback,
            "competencyDemonstrated": self.competency_demonstrated,
            "createdAt": iso(self.created_at),
        }


@dataclass(slots=True)
class HealthAlert:
    id: str
    alert_type: AlertType
    priority_level: PriorityLevel
    title: str
    message: str
    created_date: datetime
    created_at: datetime

    student_id: str | None = None
    educator_id: str | None = None
    follow_up_task_id: str | None = None
    alert_data: dict[str, Any] = field(default_factory=dict)

    scheduled_delivery: datetime | None = None
    delivered_date: datetime | None = None
    acknowledged_date: datetime | None = None

    action_taken: bool = False
    action_description: str | None = None
    resolved_date: datetime | None = None

    email_sent: bool = False
    push_notification_sent: bool = False
    dashboard_notification: bool = True

    @property
    def is_resolved(self) -> bool:
        return self.resolved_date is not None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, now: datetime | None = None) -> HealthAlert:
        now = now or datetime.now(UTC)
        created = parse_dt(data.get("createdDate")) or now
        return cls(
            id=_str(data.get("id")),
            alert_type=AlertType.parse(data.get("alertType"), AlertType.COMPLETION_REMINDER),
            priority_level=PriorityLevel.parse(data.get("priorityLevel"), PriorityLevel.MEDIUM),
            title=_str(data.get("title")),
            message=_str(data.get("message")),
            created_date=created,
            created_at=parse_dt(data.get("createdAt")) or created,
            student_id=_opt_str(data.get("studentId")),
            educator_id=_opt_str(data.get("educatorId")),
            follow_up_task_id=_opt_str(data.get("followUpTaskId")),
            alert_data=_dict(data.get("alertData")),
            scheduled_delivery=parse_dt(data.get("scheduledDelivery")),
            delivered_date=parse_dt(data.get("deliveredDate")),
            acknowledged_date=parse_dt(data.get("acknowledgedDate")),
            action_taken=_bool(data.get("actionTaken"), False),
            action_description=_opt_str(data.get("actionDescription")),
            resolved_date=parse_dt(data.get("resolvedDate")),
            email_sent=_bool(data.get("emailSent"), False),
            push_notification_sent=_bool(data.get("pushNotificationSent"), False),
            dashboard_notification=_bool(data.get("dashboardNotification"), True),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "alertType": self.alert_type.value,
            "priorityLevel": self.priority_level.value,
            "studentId": self.student_id,
            "educatorId": self.educator_id,
            "followUpTaskId": self.follow_up_task_id,
            "title": self.title,
            "message": self.message,
            "alertData": dict(self.alert_data),
            "createdDate": iso(self.created_date),
            "scheduledDelivery": iso(self.scheduled_delivery),
            "deliveredDate": iso(self.delivered_date),
            "acknowledgedDate": iso(self.acknowledged_date),
            "actionTaken": self.action_taken,
            "actionDescription": self.action_description,
            "resolvedDate": iso(self.resolved_date),
            "emailSent": self.email_sent,
            "pushNotificationSent": self.push_notification_sent,
            "dashboardNotification": self.dashboard_notification,
            "createdAt": iso(self.created_at),
        }


@dataclass(slots=True)
class EducatorMonitoring:
    """Educator intervention log entry for one student (optionally one task)."""

    id: str
    educator_id: str
    student_id: str
    created_at: datetime
    updated_at: datetime

    follow_up_task_id: str | None = None
    intervention_date: datetime | None = None
    intervention_type: InterventionType | None = None
    intervention_notes: str | None = None
    intervention_outcome: str | None = None
    competency_assessment: str | None = None
    additional_support_needed: bool = False
    recommended_actions: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], *, now: datetime | None = None
    ) -> EducatorMonitoring:
        now = now or datetime.now(UTC)
        created = parse_dt(data.get("createdAt")) or now
        itype = data.get("interventionType")
        return cls(
            id=_str(data.get("id")),
            educator_id=_str(data.get("educatorId")),
            student_id=_str(data.get("studentId")),
            created_at=created,
            updated_at=parse_dt(data.get("updatedAt")) or created,
            follow_up_task_id=_opt_str(data.get("followUpTaskId")),
            intervention_date=parse_dt(data.get("interventionDate")),
            intervention_type=(
                InterventionType.parse(itype, InterventionType.REMINDER) if itype else None
            ),
            intervention_notes=_opt_str(data.get("interventionNotes")),
            intervention_outcome=_opt_str(data.get("interventionOutcome")),
            competency_assessment=_opt_str(data.get("competencyAssessment")),
            additional_support_needed=_bool(data.get("additionalSupportNeeded"), False),
            recommended_actions=_str_list(data.get("recommendedActions")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "educatorId": self.educator_id,
            "studentId": self.student_id,
            "followUpTaskId": self.follow_up_task_id,
            "interventionDate": iso(self.intervention_date),
            "interventionType": self.intervention_type.value if self.intervention_type else None,
            "interventionNotes": self.intervention_notes,
            "interventionOutcome": self.intervention_outcome,
            "competencyAssessment": self.competency_assessment,
            "additionalSupportNeeded": self.additional_support_needed,
            "recommendedActions": list(self.recommended_actions),
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }
