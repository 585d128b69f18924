from __future__ import annotations

from enum import StrEnum


class NcrStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    UNDER_REVIEW = "under_review"
    CLOSED = "closed"
    VERIFIED = "verified"


NCR_TERMINAL_STATES: frozenset[NcrStatus] = frozenset({NcrStatus.CLOSED, NcrStatus.VERIFIED})

# Every non-terminal state may move to any other state except back to OPEN.
NCR_ALLOWED_TRANSITIONS: dict[NcrStatus, set[NcrStatus]] = {
    source: (
        set()
        if source in NCR_TERMINAL_STATES
        else {target for target in NcrStatus if target not in {source, NcrStatus.OPEN}}
    )
    for source in NcrStatus
}


def can_ncr_transition(source: NcrStatus, target: NcrStatus) -> bool:
    return target in NCR_ALLOWED_TRANSITIONS.get(source, set())


class NcrActionStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    CANCELLED = "cancelled"


NCR_ACTION_ALLOWED_TRANSITIONS: dict[NcrActionStatus, set[NcrActionStatus]] = {
    NcrActionStatus.PENDING: {
        NcrActionStatus.IN_PROGRESS,
        NcrActionStatus.COMPLETED,
        NcrActionStatus.CANCELLED,
    },
    NcrActionStatus.IN_PROGRESS: {
        NcrActionStatus.PENDING,
        NcrActionStatus.COMPLETED,
        NcrActionStatus.CANCELLED,
    },
    NcrActionStatus.COMPLETED: {NcrActionStatus.VERIFIED, NcrActionStatus.IN_PROGRESS},
    NcrActionStatus.VERIFIED: set(),
    NcrActionStatus.CANCELLED: set(),
}


def can_ncr_action_transition(source: NcrActionStatus, target: NcrActionStatus) -> bool:
    return target in NCR_ACTION_ALLOWED_TRANSITIONS.get(source, set())


class MaintenanceRecordStatus(StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DEFERRED = "deferred"


MAINTENANCE_RECORD_ALLOWED_TRANSITIONS: dict[MaintenanceRecordStatus, set[MaintenanceRecordStatus]] = {
    MaintenanceRecordStatus.SCHEDULED: {
        MaintenanceRecordStatus.IN_PROGRESS,
        MaintenanceRecordStatus.COMPLETED,
        MaintenanceRecordStatus.CANCELLED,
        MaintenanceRecordStatus.DEFERRED,
    },
    MaintenanceRecordStatus.IN_PROGRESS: {
        MaintenanceRecordStatus.COMPLETED,
        MaintenanceRecordStatus.CANCELLED,
        MaintenanceRecordStatus.DEFERRED,
    },
    MaintenanceRecordStatus.DEFERRED: {
        MaintenanceRecordStatus.SCHEDULED,
        MaintenanceRecordStatus.CANCELLED,
    },
    MaintenanceRecordStatus.COMPLETED: set(),
    MaintenanceRecordStatus.CANCELLED: set(),
}


def can_record_transition(source: MaintenanceRecordStatus, target: MaintenanceRecordStatus) -> bool:
    return target in MAINTENANCE_RECORD_ALLOWED_TRANSITIONS.get(source, set())
