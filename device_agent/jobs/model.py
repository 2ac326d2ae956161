"""
Value objects exchanged with the jobs service.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

UNKNOWN_JOB_ID = "unknown"


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    REJECTED = "REJECTED"
    REMOVED = "REMOVED"
    CANCELED = "CANCELED"

    @classmethod
    def parse(cls, value: Any, default: "JobStatus" = None) -> "JobStatus":
        try:
            return cls(value)
        except ValueError:
            return default if default is not None else cls.QUEUED


@dataclass(frozen=True)
class JobRequest:
    """Identifies the requesting device. Built once and reused for every request."""

    thing_name: str

    def to_payload(self) -> Dict[str, Any]:
        # The jobs service echoes clientToken back, which correlates responses to this device
        return {"clientToken": self.thing_name}


@dataclass(frozen=True)
class JobExecution:
    """A job offered by the jobs service."""

    job_id: str = UNKNOWN_JOB_ID
    status: JobStatus = JobStatus.QUEUED
    version_number: Optional[int] = None
    execution_number: Optional[int] = None
    job_document: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, response: Optional[Dict[str, Any]]) -> "JobExecution":
        """Extract the execution from a start-next response, defaulting missing fields."""
        execution = (response or {}).get("execution") or {}
        if not isinstance(execution, dict):
            execution = {}
        document = execution.get("jobDocument")
        return cls(
            job_id=execution.get("jobId") or UNKNOWN_JOB_ID,
            status=JobStatus.parse(execution.get("status")),
            version_number=execution.get("versionNumber"),
            execution_number=execution.get("executionNumber"),
            job_document=document if isinstance(document, dict) else {},
        )


@dataclass(frozen=True)
class UpdateRequest:
    """Status report for an observed job execution."""

    job_id: str
    thing_name: str
    status: JobStatus

    @classmethod
    def for_execution(cls, execution: JobExecution, request: JobRequest,
                      status: JobStatus) -> "UpdateRequest":
        return cls(job_id=execution.job_id, thing_name=request.thing_name, status=status)

    def to_payload(self) -> Dict[str, Any]:
        return {"status": self.status.value, "clientToken": self.thing_name}


@dataclass(frozen=True)
class OutboundMessage:
    """A publish produced by a handler and performed by the transport wiring."""

    topic: str
    payload: Dict[str, Any]
    qos: int = 0
    update: Optional[UpdateRequest] = None
