from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from qms.domain.state_machine import MaintenanceRecordStatus, NcrActionStatus, NcrStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


def today_utc() -> date:
    return now_utc().date()


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    department_id: str | None = Field(default=None, index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    department_id: str | None = Field(default=None, index=True)
    action: str = Field(index=True)
    resource: str
    entity_type: str | None = Field(default=None, index=True)
    entity_id: str | None = Field(default=None, index=True)
    method: str | None = None
    status_code: int | None = None
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Department(SQLModel, table=True):
    __tablename__ = "departments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(max_length=100, index=True, unique=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class AssetType(SQLModel, table=True):
    __tablename__ = "asset_types"
    __table_args__ = (UniqueConstraint("department_id", "name", name="uq_asset_types_department_name"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    department_id: str = Field(foreign_key="departments.id", index=True)
    name: str = Field(max_length=100, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class AssetStatus(StrEnum):
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"
    RETIRED = "retired"


class Asset(SQLModel, table=True):
    __tablename__ = "assets"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    asset_type_id: str = Field(foreign_key="asset_types.id", index=True)
    asset_tag: str = Field(max_length=50, index=True, unique=True)
    name: str = Field(max_length=150)
    location: str | None = None
    status: AssetStatus = Field(default=AssetStatus.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class DocumentType(SQLModel, table=True):
    __tablename__ = "document_types"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(max_length=150, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


MAX_FREQUENCY_VALUE = 10_000


class MaintenanceFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class MaintenanceSchedule(SQLModel, table=True):
    __tablename__ = "maintenance_schedules"
    __table_args__ = (
        Index(
            "uq_maintenance_schedules_active_asset_document",
            "asset_id",
            "document_type_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_maintenance_schedules_active_next_due", "is_active", "next_due"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    asset_id: str = Field(foreign_key="assets.id", index=True)
    document_type_id: str = Field(foreign_key="document_types.id", index=True)
    frequency: MaintenanceFrequency = Field(index=True)
    frequency_value: int = Field(default=1)
    next_due: date | None = Field(default=None, index=True)
    last_done: date | None = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class MaintenanceType(StrEnum):
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"
    BREAKDOWN = "breakdown"
    CALIBRATION = "calibration"


class MaintenanceRecord(SQLModel, table=True):
    __tablename__ = "maintenance_records"
    __table_args__ = (
        ForeignKeyConstraint(["schedule_id"], ["maintenance_schedules.id"], ondelete="SET NULL"),
        ForeignKeyConstraint(["checklist_id"], ["checklists.id"], ondelete="SET NULL"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    asset_id: str = Field(foreign_key="assets.id", index=True)
    schedule_id: str | None = Field(default=None, index=True)
    checklist_id: str | None = Field(default=None, index=True)
    maintenance_type: MaintenanceType = Field(default=MaintenanceType.PREVENTIVE, index=True)
    performed_by: str = Field(index=True)
    start_time: datetime | None = None
    end_time: datetime | None = None
    status: MaintenanceRecordStatus = Field(default=MaintenanceRecordStatus.SCHEDULED, index=True)
    findings: str | None = None
    parts_used: str | None = None
    cost: float | None = None
    next_maintenance_date: date | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class ChecklistStatus(StrEnum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


PENDING_CHECKLIST_STATES: frozenset[ChecklistStatus] = frozenset({ChecklistStatus.DRAFT, ChecklistStatus.IN_PROGRESS})


class ChecklistItemResult(StrEnum):
    PASS = "pass"
    FAIL = "fail"
    NA = "na"
    PENDING = "pending"


class Checklist(SQLModel, table=True):
    __tablename__ = "checklists"
    __table_args__ = (Index("ix_checklists_asset_status", "asset_id", "status"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    asset_id: str = Field(foreign_key="assets.id", index=True)
    document_type_id: str | None = Field(default=None, foreign_key="document_types.id", index=True)
    name: str = Field(max_length=200)
    status: ChecklistStatus = Field(default=ChecklistStatus.DRAFT, index=True)
    created_by: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    completed_at: datetime | None = None


class ChecklistItem(SQLModel, table=True):
    __tablename__ = "checklist_items"
    __table_args__ = (
        ForeignKeyConstraint(["checklist_id"], ["checklists.id"], ondelete="CASCADE"),
        Index("ix_checklist_items_result_checked_at", "result", "checked_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    checklist_id: str = Field(index=True)
    question: str
    result: ChecklistItemResult = Field(default=ChecklistItemResult.PENDING, index=True)
    remarks: str | None = None
    sort_order: int = Field(default=0)
    checked_by: str | None = None
    checked_at: datetime | None = None


class NcrSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


OPEN_NCR_STATES: frozenset[NcrStatus] = frozenset({NcrStatus.OPEN, NcrStatus.IN_PROGRESS})

NCR_ACTION_EVIDENCE_MAX_LENGTH = 255


class Ncr(SQLModel, table=True):
    __tablename__ = "ncrs"
    __table_args__ = (Index("ix_ncrs_status_severity", "status", "severity"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    ncr_number: str = Field(max_length=20, index=True, unique=True)
    checklist_item_id: str | None = Field(default=None, foreign_key="checklist_items.id", index=True)
    asset_id: str | None = Field(default=None, foreign_key="assets.id", index=True)
    department_id: str = Field(foreign_key="departments.id", index=True)
    description: str
    raised_by: str = Field(index=True)
    assigned_to: str | None = Field(default=None, index=True)
    status: NcrStatus = Field(default=NcrStatus.OPEN, index=True)
    severity: NcrSeverity = Field(default=NcrSeverity.MEDIUM, index=True)
    due_date: date = Field(index=True)
    root_cause: str | None = None
    corrective_action: str | None = None
    preventive_action: str | None = None
    evidence: str | None = None
    completed_date: date | None = None
    closed_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class NcrActionType(StrEnum):
    IMMEDIATE = "immediate"
    CORRECTIVE = "corrective"
    PREVENTIVE = "preventive"
    VERIFICATION = "verification"


class NcrAction(SQLModel, table=True):
    __tablename__ = "ncr_actions"
    __table_args__ = (ForeignKeyConstraint(["ncr_id"], ["ncrs.id"], ondelete="CASCADE"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    ncr_id: str = Field(index=True)
    action_type: NcrActionType = Field(index=True)
    description: str
    assigned_to: str | None = Field(default=None, index=True)
    due_date: date | None = Field(default=None, index=True)
    completed_date: date | None = None
    status: NcrActionStatus = Field(default=NcrActionStatus.PENDING, index=True)
    evidence: str | None = Field(default=None, max_length=NCR_ACTION_EVIDENCE_MAX_LENGTH)
    remarks: str | None = None
    created_by: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    department_id: str | None = None
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class MaintenanceScheduleCreate(BaseModel):
    asset_id: str
    document_type_id: str
    frequency: MaintenanceFrequency
    frequency_value: int = PydanticField(default=1, ge=1, le=MAX_FREQUENCY_VALUE)
    next_due: date | None = None


class MaintenanceScheduleUpdate(BaseModel):
    frequency: MaintenanceFrequency | None = None
    frequency_value: int | None = PydanticField(default=None, ge=1, le=MAX_FREQUENCY_VALUE)
    next_due: date | None = None
    last_done: date | None = None
    is_active: bool | None = None


class MaintenanceScheduleRead(ORMReadModel):
    id: str
    asset_id: str
    document_type_id: str
    frequency: MaintenanceFrequency
    frequency_value: int
    next_due: date | None
    last_done: date | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class MaintenanceScheduleListItem(MaintenanceScheduleRead):
    department_id: str
    days_until_due: int | None
    due_status: str | None


class MaintenanceSchedulePage(PageMeta):
    items: list[MaintenanceScheduleListItem]


class MaintenanceRecordCreate(BaseModel):
    maintenance_type: MaintenanceType = MaintenanceType.PREVENTIVE
    status: MaintenanceRecordStatus = MaintenanceRecordStatus.COMPLETED
    checklist_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    findings: str | None = None
    parts_used: str | None = None
    cost: float | None = PydanticField(default=None, ge=0)


class MaintenanceRecordStatusRequest(BaseModel):
    status: MaintenanceRecordStatus
    findings: str | None = None


class MaintenanceRecordRead(ORMReadModel):
    id: str
    asset_id: str
    schedule_id: str | None
    checklist_id: str | None
    maintenance_type: MaintenanceType
    performed_by: str
    start_time: datetime | None
    end_time: datetime | None
    status: MaintenanceRecordStatus
    findings: str | None
    parts_used: str | None
    cost: float | None
    next_maintenance_date: date | None
    created_at: datetime


class MaintenanceScheduleDetailRead(BaseModel):
    schedule: MaintenanceScheduleRead
    recent_records: list[MaintenanceRecordRead]


class ChecklistCreate(BaseModel):
    asset_id: str
    document_type_id: str | None = None
    name: str = PydanticField(min_length=1, max_length=200)
    questions: list[str] = PydanticField(default_factory=list)


class ChecklistItemResultRequest(BaseModel):
    result: ChecklistItemResult
    remarks: str | None = None


class ChecklistRead(ORMReadModel):
    id: str
    asset_id: str
    document_type_id: str | None
    name: str
    status: ChecklistStatus
    created_by: str
    created_at: datetime
    completed_at: datetime | None


class ChecklistItemRead(ORMReadModel):
    id: str
    checklist_id: str
    question: str
    result: ChecklistItemResult
    remarks: str | None
    sort_order: int
    checked_by: str | None
    checked_at: datetime | None


class ChecklistDetailRead(BaseModel):
    checklist: ChecklistRead
    items: list[ChecklistItemRead]


class NcrCreate(BaseModel):
    description: str = PydanticField(min_length=1)
    department_id: str
    asset_id: str | None = None
    checklist_item_id: str | None = None
    severity: NcrSeverity = NcrSeverity.MEDIUM
    assigned_to: str | None = None


class NcrUpdate(BaseModel):
    status: NcrStatus | None = None
    assigned_to: str | None = None
    root_cause: str | None = None
    corrective_action: str | None = None
    preventive_action: str | None = None
    evidence: str | None = None


class NcrRead(ORMReadModel):
    id: str
    ncr_number: str
    checklist_item_id: str | None
    asset_id: str | None
    department_id: str
    description: str
    raised_by: str
    assigned_to: str | None
    status: NcrStatus
    severity: NcrSeverity
    due_date: date
    root_cause: str | None
    corrective_action: str | None
    preventive_action: str | None
    evidence: str | None
    completed_date: date | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class NcrListItem(NcrRead):
    action_count: int


class NcrPage(PageMeta):
    items: list[NcrListItem]


class NcrActionCreate(BaseModel):
    action_type: NcrActionType
    description: str = PydanticField(min_length=1)
    assigned_to: str | None = None
    due_date: date | None = None


class NcrActionUpdate(BaseModel):
    status: NcrActionStatus | None = None
    assigned_to: str | None = None
    evidence: str | None = PydanticField(default=None, max_length=NCR_ACTION_EVIDENCE_MAX_LENGTH)
    remarks: str | None = None


class NcrActionRead(ORMReadModel):
    id: str
    ncr_id: str
    action_type: NcrActionType
    description: str
    assigned_to: str | None
    due_date: date | None
    completed_date: date | None
    status: NcrActionStatus
    evidence: str | None
    remarks: str | None
    created_by: str
    created_at: datetime


class NcrDetailRead(BaseModel):
    ncr: NcrRead
    actions: list[NcrActionRead]


class ComplianceRead(BaseModel):
    window_start: date
    window_end: date
    total: int
    completed: int
    rate: float


class ComplianceTrendPoint(BaseModel):
    month: str
    month_start: date
    month_end: date
    total: int
    completed: int
    rate: float


class DepartmentComplianceRead(BaseModel):
    department_id: str
    department_name: str
    total: int
    completed: int
    rate: float


class DashboardMetricsRead(BaseModel):
    as_of: date
    department_id: str | None
    overdue_maintenance: int
    due_soon_maintenance: int
    pending_checklists: int
    open_ncrs: int
    compliance_rate: float


class NcrSeverityBreakdown(BaseModel):
    severity: NcrSeverity
    count: int
    open: int


class NcrTrendPoint(BaseModel):
    month: str
    total: int
    closed: int


class NcrAnalysisRead(BaseModel):
    window_start: date
    window_end: date
    severity_breakdown: list[NcrSeverityBreakdown]
    trends: list[NcrTrendPoint]


class ComplianceReportRead(BaseModel):
    summary: ComplianceRead
    by_department: list[DepartmentComplianceRead]


class AuditLogRead(ORMReadModel):
    id: str
    actor_id: str | None
    department_id: str | None
    action: str
    resource: str
    entity_type: str | None
    entity_id: str | None
    method: str | None
    status_code: int | None
    ts: datetime
    detail: dict[str, Any]


class AuditTrailPage(PageMeta):
    items: list[AuditLogRead]


class DailyActivityPoint(BaseModel):
    activity_date: date
    checklist_count: int


class DepartmentPerformanceRead(BaseModel):
    department_id: str
    name: str
    description: str | None
    total_assets: int
    checklists_this_month: int
    ncrs_this_month: int
    recent_activity: list[DailyActivityPoint]
