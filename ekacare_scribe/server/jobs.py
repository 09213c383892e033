"""In-memory store for background workflow jobs with cancellation and TTL cleanup.

WHY: A complete workflow takes minutes (upload, then up to several minutes
of polling), so the HTTP API returns a job ID immediately and runs the
workflow in the background. Clients poll the job, and may cancel it while
it waits on the transcription service.

HOW: Three components work together:
  WorkflowJobStatus: enum of job states, mirroring the workflow stages
  WorkflowJob: dataclass holding the job's inputs, state, result, and an
    asyncio.Event used to cancel polling
  JobStore: lock-protected dict with create/get/list/update/cancel/delete
    and TTL cleanup of finished jobs

RULES:
- All store mutations are protected by threading.Lock
- Job IDs are UUID4 hex strings generated at creation time
- Terminal states: completed, failed, timed_out, cancelled
- cancel_job() only sets the job's cancel event; the runner records the
  cancelled state once the poller stops
- Credentials and tokens are kept on the job for the runner but never
  appear in API responses
- Default TTL is 1 hour (3600 seconds), measured from completion
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ekacare_scribe.api.models import Credentials
from ekacare_scribe.core.workflow import WorkflowOptions

logger = logging.getLogger(__name__)

# Default time-to-live for finished jobs (seconds)
DEFAULT_TTL_SECONDS = 3600


class WorkflowJobStatus(str, enum.Enum):
    """Valid states for a workflow job.

    WHY: Jobs progress through the workflow stages with four terminal
    states. Values of the running states match the stage names reported
    by run_workflow(on_stage=...).

    RULES:
    - pending: job created, not yet started
    - authenticating / uploading / initializing / polling: workflow stages
    - completed: decoded results available
    - failed: a stage error aborted the workflow
    - timed_out: polling hit its deadline; the transaction can be resumed
    - cancelled: the client cancelled the job
    """

    PENDING = "pending"
    AUTHENTICATING = "authenticating"
    UPLOADING = "uploading"
    INITIALIZING = "initializing"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_JOB_STATUSES


_TERMINAL_JOB_STATUSES = frozenset({
    WorkflowJobStatus.COMPLETED,
    WorkflowJobStatus.FAILED,
    WorkflowJobStatus.TIMED_OUT,
    WorkflowJobStatus.CANCELLED,
})


@dataclass
class WorkflowJob:
    """Inputs, state, and result of a single background workflow.

    RULES:
    - id: UUID4 hex string, unique and immutable after creation
    - file_paths: local files, uploaded in this order
    - credentials / access_token: the explicit session for this job
    - transaction_id: set once known (on completion or timeout)
    - result: WorkflowResult.to_dict() when completed, else None
    - cancel_event: set by cancel_job(), observed by the poller
    """

    id: str
    status: WorkflowJobStatus
    file_paths: List[Path]
    options: WorkflowOptions
    created_at: float
    updated_at: float
    credentials: Optional[Credentials] = None
    access_token: Optional[str] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None
    transaction_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)


class JobStore:
    """Thread-safe in-memory store for workflow jobs.

    RULES:
    - All public methods that mutate state acquire self._lock
    - get_job() returns None for missing job IDs (no exceptions)
    - update_job() applies only non-None arguments and stamps completed_at
      when the job reaches a terminal state
    - create_job() raises ValueError when max_jobs is reached
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_jobs: int = 100,
    ) -> None:
        self._jobs: Dict[str, WorkflowJob] = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self.max_jobs = max_jobs

    def create_job(
        self,
        file_paths: List[Path],
        options: Optional[WorkflowOptions] = None,
        credentials: Optional[Credentials] = None,
        access_token: Optional[str] = None,
    ) -> WorkflowJob:
        """Create a new job in PENDING state."""
        with self._lock:
            if len(self._jobs) >= self.max_jobs:
                raise ValueError(
                    "Maximum number of concurrent jobs ({}) reached".format(
                        self.max_jobs
                    )
                )

            job_id = uuid.uuid4().hex
            now = time.time()
            job = WorkflowJob(
                id=job_id,
                status=WorkflowJobStatus.PENDING,
                file_paths=list(file_paths),
                options=options or WorkflowOptions(),
                created_at=now,
                updated_at=now,
                credentials=credentials,
                access_token=access_token,
            )
            self._jobs[job_id] = job

        logger.info("Created workflow job %s for %d file(s)", job_id, len(file_paths))
        return job

    def get_job(self, job_id: str) -> Optional[WorkflowJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[WorkflowJob]:
        """Return all jobs ordered by creation time (oldest first)."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def update_job(
        self,
        job_id: str,
        status: Optional[WorkflowJobStatus] = None,
        error: Optional[str] = None,
        transaction_id: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> Optional[WorkflowJob]:
        """Update a job's mutable fields.

        RULES:
        - Returns the updated job, or None if job_id not found
        - A finished job keeps its terminal status
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None

            now = time.time()

            if status is not None and not job.status.is_terminal:
                job.status = status
            if error is not None:
                job.error = error
            if transaction_id is not None:
                job.transaction_id = transaction_id
            if result is not None:
                job.result = result

            job.updated_at = now

            if job.status.is_terminal and job.completed_at is None:
                job.completed_at = now

            return job

    def cancel_job(self, job_id: str) -> bool:
        """Request cancellation of a running job.

        RULES:
        - Returns False if the job is unknown or already finished
        - Sets the job's cancel event; the runner records CANCELLED
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal:
                return False
            job.cancel_event.set()
            job.updated_at = time.time()

        logger.info("Cancellation requested for job %s", job_id)
        return True

    def delete_job(self, job_id: str) -> bool:
        """Remove a job. Returns True if it existed."""
        with self._lock:
            job = self._jobs.pop(job_id, None)

        if job is None:
            return False

        job.cancel_event.set()
        logger.info("Deleted job %s", job_id)
        return True

    def cleanup_expired(self) -> int:
        """Remove finished jobs whose completed_at is older than the TTL.

        RULES:
        - Only terminal jobs are candidates
        - Returns the count of removed jobs
        """
        now = time.time()
        expired: List[WorkflowJob] = []

        with self._lock:
            for job_id, job in list(self._jobs.items()):
                if not job.status.is_terminal or job.completed_at is None:
                    continue
                if now - job.completed_at > self._ttl_seconds:
                    expired.append(self._jobs.pop(job_id))

        for job in expired:
            logger.info("Expired job %s (completed %.0fs ago)", job.id, now - job.completed_at)

        return len(expired)
