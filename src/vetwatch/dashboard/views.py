# src/vetwatch/dashboard/views.py

"""
Computed dashboard views. None of these are persisted; `to_dict()` is the wire shape
consumed by the presentation layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..core.ports import Record
from ..followup.models import FollowUpTask, HealthAlert, iso


@dataclass(frozen=True, slots=True)
class PerformanceMetrics:
    response_rate: float
    average_update_quality: float
    competency_progress: dict[str, float]
    timely_completion_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "responseRate": self.response_rate,
            "averageUpdateQuality": self.average_update_quality,
            "competencyProgress": dict(self.competency_progress),
            "timelyCompletionRate": self.timely_completion_rate,
        }


@dataclass(frozen=True, slots=True)
class Deadline:
    task_id: str
    title: str
    due_date: datetime
    priority: str
    overdue: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "taskId": self.task_id,
            "title": self.title,
            "dueDate": iso(self.due_date),
            "priority": self.priority,
            "overdue": self.overdue,
        }


@dataclass(frozen=True, slots=True)
class AlertSummary:
    urgent: int = 0
    overdue: int = 0
    pending: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"urgent": self.urgent, "overdue": self.overdue, "pending": self.pending}


@dataclass(frozen=True, slots=True)
class AlertCounts:
    urgent: int = 0
    warnings: int = 0
    info: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"urgent": self.urgent, "warnings": self.warnings, "info": self.info}


@dataclass(slots=True)
class StudentHealthOverview:
    student_id: str
    active_tasks: list[FollowUpTask] = field(default_factory=list)
    recent_completed: list[FollowUpTask] = field(default_factory=list)
    current_issues: list[Record] = field(default_factory=list)
    performance_metrics: PerformanceMetrics = field(
        default_factory=lambda: PerformanceMetrics(1.0, 0.0, {}, 0.0)
    )
    upcoming_deadlines: list[Deadline] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    alert_summary: AlertSummary = field(default_factory=AlertSummary)

    def to_dict(self) -> dict[str, Any]:
        return {
            "studentId": self.student_id,
            "activeTasks": [t.to_dict() for t in self.active_tasks],
            "recentCompleted": [t.to_dict() for t in self.recent_completed],
            "currentIssues": [dict(r) for r in self.current_issues],
            "performanceMetrics": self.performance_metrics.to_dict(),
            "upcomingDeadlines": [d.to_dict() for d in self.upcoming_deadlines],
            "recommendations": list(self.recommendations),
            "alertSummary": self.alert_summary.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class IssueCount:
    issue: str
    count: int


@dataclass(frozen=True, slots=True)
class PeriodValue:
    period: str
    value: float


@dataclass(slots=True)
class TrendAnalysis:
    common_issues: list[IssueCount] = field(default_factory=list)
    resolution_trends: list[PeriodValue] = field(default_factory=list)  # average days
    engagement_trends: list[PeriodValue] = field(default_factory=list)  # rate 0..1

    def to_dict(self) -> dict[str, Any]:
        return {
            "commonIssues": [{"issue": i.issue, "count": i.count} for i in self.common_issues],
            "resolutionTrends": [
                {"period": p.period, "avgDays": p.value} for p in self.resolution_trends
            ],
            "engagementTrends": [
                {"period": p.period, "rate": p.value} for p in self.engagement_trends
            ],
        }


@dataclass(slots=True)
class ChapterHealthMetrics:
    chapter_id: str
    total_students: int = 0
    active_health_cases: int = 0
    urgent_attention_needed: int = 0
    overdue_tasks: int = 0
    completed_this_month: int = 0
    average_resolution_time: float = 0.0
    student_engagement_rate: float = 0.0
    competency_progress: dict[str, float] = field(default_factory=dict)
    trend_analysis: TrendAnalysis = field(default_factory=TrendAnalysis)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chapterId": self.chapter_id,
            "totalStudents": self.total_students,
            "activeHealthCases": self.active_health_cases,
            "urgentAttentionNeeded": self.urgent_attention_needed,
            "overdueTasks": self.overdue_tasks,
            "completedThisMonth": self.completed_this_month,
            "averageResolutionTime": self.average_resolution_time,
            "studentEngagementRate": self.student_engagement_rate,
            "competencyProgress": dict(self.competency_progress),
            "trendAnalysis": self.trend_analysis.to_dict(),
        }


@dataclass(slots=True)
class EducatorDashboard:
    educator_id: str
    chapter_metrics: ChapterHealthMetrics
    alerts: list[HealthAlert] = field(default_factory=list)
    urgent_cases: list[FollowUpTask] = field(default_factory=list)
    todays_follow_ups: list[FollowUpTask] = field(default_factory=list)
    student_overviews: dict[str, StudentHealthOverview] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "educatorId": self.educator_id,
            "chapterMetrics": self.chapter_metrics.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
            "urgentCases": [t.to_dict() for t in self.urgent_cases],
            "todaysFollowUps": [t.to_dict() for t in self.todays_follow_ups],
            "studentOverviews": {k: v.to_dict() for k, v in self.student_overviews.items()},
        }


@dataclass(slots=True)
class StudentRecordSummary:
    total_animals: int
    active_health_issues: int
    completed_tasks: int
    total_hours: float
    last_activity: datetime | None
    competency_progress: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalAnimals": self.total_animals,
            "activeHealthIssues": self.active_health_issues,
            "completedTasks": self.completed_tasks,
            "totalHours": self.total_hours,
            "lastActivity": iso(self.last_activity),
            "competencyProgress": dict(self.competency_progress),
        }


@dataclass(slots=True)
class StudentRecord:
    student: Record
    animals: list[Record]
    journal_entries: list[Record]
    health_records: list[Record]
    follow_up_tasks: list[FollowUpTask]
    financial_entries: list[Record]
    summary: StudentRecordSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "student": dict(self.student),
            "animals": [dict(a) for a in self.animals],
            "journalEntries": [dict(j) for j in self.journal_entries],
            "healthRecords": [dict(h) for h in self.health_records],
            "followUpTasks": [t.to_dict() for t in self.follow_up_tasks],
            "financialEntries": [dict(f) for f in self.financial_entries],
            "summary": self.summary.to_dict(),
        }


@dataclass(slots=True)
class StudentOverview:
    student_id: str
    student_name: str
    last_active: datetime
    animals: int
    active_issues: int
    overdue_tasks: int
    response_rate: int
    engagement_score: int
    alerts: AlertCounts

    def to_dict(self) -> dict[str, Any]:
        return {
            "studentId": self.student_id,
            "studentName": self.student_name,
            "lastActive": iso(self.last_active),
            "summary": {
                "animals": self.animals,
                "activeIssues": self.active_issues,
                "overdueTasks": self.overdue_tasks,
                "responseRate": self.response_rate,
                "engagementScore": self.engagement_score,
            },
            "alerts": self.alerts.to_dict(),
        }
