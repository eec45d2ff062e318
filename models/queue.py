"""Queue job models and dispatch cycle results."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    """Pipeline stage a job advances its article through."""

    EXTRACT = "extract"
    ANALYZE = "analyze"


class JobStatus(str, Enum):
    """Queue job status. ``completed`` and ``failed`` are terminal."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Follow-on job enqueued when a job of the given kind completes
NEXT_KIND: dict[JobKind, JobKind | None] = {
    JobKind.EXTRACT: JobKind.ANALYZE,
    JobKind.ANALYZE: None,
}


class QueueJob(BaseModel):
    """One unit of queued work referencing one article.

    Attributes:
        id: Opaque job id
        article_id: Article this job advances
        job_type: Stage to run; an unrecognized stored kind stays a plain
            string so the job can fail on its own instead of breaking the claim
        status: Queue status
        attempts: Failed attempts so far (never decreases)
        last_error: Most recent failure message
        url: Article URL, joined in when the job is claimed
        next_eligible_at: Earliest time a retried job may be claimed again
    """

    id: str
    article_id: str
    job_type: JobKind | str = Field(default=JobKind.EXTRACT, union_mode="left_to_right")
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    url: str = ""
    created_at: int = 0
    started_at: int | None = None
    completed_at: int | None = None
    next_eligible_at: int | None = None

    @property
    def kind(self) -> str:
        """Job kind as a plain string, for logs and messages."""
        return self.job_type.value if isinstance(self.job_type, JobKind) else self.job_type


class JobOutcome(BaseModel):
    """Result of running one job in a dispatch cycle.

    ``status`` is the job's queue status after bookkeeping: ``completed``,
    ``pending`` (will be retried) or ``failed`` (retries exhausted).
    """

    job_id: str
    article_id: str
    job_type: JobKind | str = Field(union_mode="left_to_right")
    status: JobStatus
    attempts: int = 0
    result: dict[str, Any] | None = None
    error: str | None = None


class DispatchResult(BaseModel):
    """Summary of one dispatch cycle.

    ``idle`` distinguishes "nothing was eligible" from a cycle that ran jobs
    which all failed.
    """

    processed: int = 0
    idle: bool = False
    message: str = ""
    summary: list[JobOutcome] = Field(default_factory=list)
    duration: float = 0.0

    @property
    def completed(self) -> int:
        return sum(1 for o in self.summary if o.status == JobStatus.COMPLETED)

    @property
    def retrying(self) -> int:
        return sum(1 for o in self.summary if o.status == JobStatus.PENDING)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.summary if o.status == JobStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the dispatch cycle's external JSON shape."""
        if self.idle:
            return {"processed": 0, "message": self.message or "No pending jobs"}
        summary = []
        for outcome in self.summary:
            entry: dict[str, Any] = {
                "job_id": outcome.job_id,
                "status": outcome.status.value,
            }
            if outcome.error is not None:
                entry["error"] = outcome.error
            else:
                entry["result"] = outcome.result
            summary.append(entry)
        return {"processed": self.processed, "summary": summary}
