from enum import StrEnum

class JobStatus(StrEnum):
    QUEUED = "queued"         # Accepted, waiting for the drain loop
    RUNNING = "running"       # Handler in flight
    COMPLETED = "completed"   # Handler returned a result
    FAILED = "failed"         # Handler raised or timed out

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# No retries: a failed job stays failed, clients re-enqueue.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

class JobType(StrEnum):
    STEP_EXTRACTION = "step-extraction"
    HAZARD_EXTRACTION = "hazard-extraction"
    CONTROL_SUGGESTION = "control-suggestion"
    ACTION_SUGGESTION = "action-suggestion"
    INCIDENT_WITNESS_EXTRACTION = "incident-witness-extraction"
    INCIDENT_NARRATIVE_EXTRACTION = "incident-narrative-extraction"
    INCIDENT_TIMELINE_MERGE = "incident-timeline-merge"
    INCIDENT_CONSISTENCY_CHECK = "incident-consistency-check"
    INCIDENT_CAUSE_COACHING = "incident-cause-coaching"
    INCIDENT_ROOT_CAUSE_COACHING = "incident-root-cause-coaching"
    INCIDENT_ACTION_COACHING = "incident-action-coaching"
    JHA_ROW_EXTRACTION = "jha-row-extraction"
