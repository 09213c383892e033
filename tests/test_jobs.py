"""Unit tests for the workflow job store and the background job runner.

WHY: The job store is the only state shared between HTTP requests. A job
stuck in a running state, a cancelled job that keeps polling, or a
finished job that never expires would break clients that poll it.

HOW: Tests are organized by class, one per JobStore concern:
  - TestJobCreation: create_job basics and limits
  - TestJobRetrieval: get_job and list_jobs
  - TestJobUpdate: status transitions and terminal states
  - TestCancellation: cancel_job and delete_job signalling
  - TestTTLCleanup: expiry logic
  - TestWorkflowRunner: _run_workflow_job outcomes with a patched workflow
  - TestThreadSafety: concurrent access doesn't corrupt state

RULES:
- Each test creates its own JobStore instance (no shared mutable state)
- Time-dependent tests use monkeypatch to control time.time()
"""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from conftest import CREDENTIALS
from ekacare_scribe.api.errors import PollCancelledError, PollTimeoutError, UploadError
from ekacare_scribe.core.workflow import WorkflowOptions
from ekacare_scribe.server.app import _run_workflow_job
from ekacare_scribe.server.jobs import (
    DEFAULT_TTL_SECONDS,
    JobStore,
    WorkflowJobStatus,
)

FILES = [Path("a.mp3"), Path("b.mp3")]


def _make_store(**kwargs) -> JobStore:
    return JobStore(**kwargs)


# ---------------------------------------------------------------------------
# TestJobCreation
# ---------------------------------------------------------------------------


class TestJobCreation:
    """JobStore.create_job() creates a job in PENDING state."""

    def test_creates_job_with_pending_status(self):
        job = _make_store().create_job(FILES)
        assert job.status == WorkflowJobStatus.PENDING

    def test_assigns_unique_id(self):
        store = _make_store()
        assert store.create_job(FILES).id != store.create_job(FILES).id

    def test_stores_inputs(self):
        options = WorkflowOptions(speciality="cardiology")
        job = _make_store().create_job(
            FILES, options=options, credentials=CREDENTIALS, access_token=None
        )
        assert job.file_paths == FILES
        assert job.options is options
        assert job.credentials == CREDENTIALS
        assert job.access_token is None

    def test_default_options(self):
        job = _make_store().create_job(FILES)
        assert isinstance(job.options, WorkflowOptions)

    def test_sets_timestamps(self):
        before = time.time()
        job = _make_store().create_job(FILES)
        after = time.time()
        assert before <= job.created_at <= after
        assert job.created_at == job.updated_at
        assert job.completed_at is None

    def test_cancel_event_starts_clear(self):
        job = _make_store().create_job(FILES)
        assert not job.cancel_event.is_set()

    def test_max_jobs_enforced(self):
        store = _make_store(max_jobs=2)
        store.create_job(FILES)
        store.create_job(FILES)
        with pytest.raises(ValueError, match="Maximum number"):
            store.create_job(FILES)


# ---------------------------------------------------------------------------
# TestJobRetrieval
# ---------------------------------------------------------------------------


class TestJobRetrieval:
    def test_get_existing_job(self):
        store = _make_store()
        job = store.create_job(FILES)
        assert store.get_job(job.id) is job

    def test_get_missing_job_returns_none(self):
        assert _make_store().get_job("nonexistent") is None

    def test_list_jobs_ordered_by_creation_time(self, monkeypatch):
        store = _make_store()
        monkeypatch.setattr(time, "time", lambda: 200.0)
        late = store.create_job(FILES)
        monkeypatch.setattr(time, "time", lambda: 100.0)
        early = store.create_job(FILES)
        assert [j.id for j in store.list_jobs()] == [early.id, late.id]


# ---------------------------------------------------------------------------
# TestJobUpdate
# ---------------------------------------------------------------------------


class TestJobUpdate:
    def test_update_status(self):
        store = _make_store()
        job = store.create_job(FILES)
        store.update_job(job.id, status=WorkflowJobStatus.UPLOADING)
        assert store.get_job(job.id).status == WorkflowJobStatus.UPLOADING

    def test_update_missing_job_returns_none(self):
        assert _make_store().update_job("nope", status=WorkflowJobStatus.FAILED) is None

    def test_terminal_status_sets_completed_at(self):
        store = _make_store()
        job = store.create_job(FILES)
        store.update_job(job.id, status=WorkflowJobStatus.COMPLETED, result={"outputs": []})
        assert job.completed_at is not None
        assert job.result == {"outputs": []}

    def test_running_status_does_not_set_completed_at(self):
        store = _make_store()
        job = store.create_job(FILES)
        store.update_job(job.id, status=WorkflowJobStatus.POLLING)
        assert job.completed_at is None

    def test_terminal_status_is_final(self):
        store = _make_store()
        job = store.create_job(FILES)
        store.update_job(job.id, status=WorkflowJobStatus.CANCELLED)
        store.update_job(job.id, status=WorkflowJobStatus.POLLING)
        assert job.status == WorkflowJobStatus.CANCELLED

    def test_only_non_none_fields_updated(self):
        store = _make_store()
        job = store.create_job(FILES)
        store.update_job(job.id, transaction_id="txn123")
        store.update_job(job.id, error="boom")
        assert job.transaction_id == "txn123"
        assert job.error == "boom"
        assert job.status == WorkflowJobStatus.PENDING


# ---------------------------------------------------------------------------
# TestCancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancel_running_job_sets_event(self):
        store = _make_store()
        job = store.create_job(FILES)
        store.update_job(job.id, status=WorkflowJobStatus.POLLING)
        assert store.cancel_job(job.id) is True
        assert job.cancel_event.is_set()
        assert job.status == WorkflowJobStatus.POLLING

    def test_cancel_finished_job_returns_false(self):
        store = _make_store()
        job = store.create_job(FILES)
        store.update_job(job.id, status=WorkflowJobStatus.COMPLETED)
        assert store.cancel_job(job.id) is False
        assert not job.cancel_event.is_set()

    def test_cancel_missing_job_returns_false(self):
        assert _make_store().cancel_job("nope") is False

    def test_delete_removes_and_signals(self):
        store = _make_store()
        job = store.create_job(FILES)
        assert store.delete_job(job.id) is True
        assert store.get_job(job.id) is None
        assert job.cancel_event.is_set()

    def test_delete_missing_job_returns_false(self):
        assert _make_store().delete_job("nope") is False


# ---------------------------------------------------------------------------
# TestTTLCleanup
# ---------------------------------------------------------------------------


class TestTTLCleanup:
    def test_cleanup_removes_expired_finished_job(self, monkeypatch):
        store = _make_store(ttl_seconds=60)
        job = store.create_job(FILES)
        monkeypatch.setattr(time, "time", lambda: 100.0)
        store.update_job(job.id, status=WorkflowJobStatus.FAILED, error="x")

        monkeypatch.setattr(time, "time", lambda: 161.0)
        assert store.cleanup_expired() == 1
        assert store.get_job(job.id) is None

    def test_cleanup_keeps_recent_job(self, monkeypatch):
        store = _make_store(ttl_seconds=60)
        job = store.create_job(FILES)
        monkeypatch.setattr(time, "time", lambda: 100.0)
        store.update_job(job.id, status=WorkflowJobStatus.TIMED_OUT)

        monkeypatch.setattr(time, "time", lambda: 159.0)
        assert store.cleanup_expired() == 0
        assert store.get_job(job.id) is not None

    def test_cleanup_ignores_running_jobs(self, monkeypatch):
        store = _make_store(ttl_seconds=60)
        job = store.create_job(FILES)
        store.update_job(job.id, status=WorkflowJobStatus.POLLING)
        monkeypatch.setattr(time, "time", lambda: 10.0**12)
        assert store.cleanup_expired() == 0

    def test_default_ttl_is_one_hour(self):
        assert DEFAULT_TTL_SECONDS == 3600
        assert _make_store()._ttl_seconds == 3600


# ---------------------------------------------------------------------------
# TestWorkflowRunner
# ---------------------------------------------------------------------------


def _run_job(store, job_id, workflow):
    with patch("ekacare_scribe.server.app.run_workflow", new=workflow):
        asyncio.run(_run_workflow_job(job_id, store))


class TestWorkflowRunner:
    """_run_workflow_job() maps workflow outcomes onto job states."""

    def test_success_stores_result(self):
        store = _make_store()
        job = store.create_job(FILES, credentials=CREDENTIALS)
        result = MagicMock(transaction_id="txn123")
        result.to_dict.return_value = {"transaction_id": "txn123", "outputs": []}
        seen_stages = []

        async def workflow(client, paths, options, cancel_event=None, on_stage=None):
            for stage in ("authenticating", "uploading", "initializing", "polling"):
                on_stage(stage)
                seen_stages.append(store.get_job(job.id).status)
            assert cancel_event is job.cancel_event
            assert paths == FILES
            return result

        _run_job(store, job.id, workflow)

        assert seen_stages == [
            WorkflowJobStatus.AUTHENTICATING,
            WorkflowJobStatus.UPLOADING,
            WorkflowJobStatus.INITIALIZING,
            WorkflowJobStatus.POLLING,
        ]
        assert job.status == WorkflowJobStatus.COMPLETED
        assert job.transaction_id == "txn123"
        assert job.result == {"transaction_id": "txn123", "outputs": []}
        assert job.completed_at is not None

    def test_stage_error_marks_failed(self):
        store = _make_store()
        job = store.create_job(FILES, access_token="tok-1")

        async def workflow(*args, **kwargs):
            raise UploadError("a.mp3", status_code=403, body="AccessDenied")

        _run_job(store, job.id, workflow)

        assert job.status == WorkflowJobStatus.FAILED
        assert "a.mp3" in job.error
        assert "403" in job.error

    def test_timeout_marks_timed_out_with_transaction(self):
        store = _make_store()
        job = store.create_job(FILES, access_token="tok-1")

        async def workflow(*args, **kwargs):
            raise PollTimeoutError("txn123", 300.2, 300.0)

        _run_job(store, job.id, workflow)

        assert job.status == WorkflowJobStatus.TIMED_OUT
        assert job.transaction_id == "txn123"
        assert "timed out" in job.error

    def test_cancel_marks_cancelled(self):
        store = _make_store()
        job = store.create_job(FILES, access_token="tok-1")

        async def workflow(*args, **kwargs):
            raise PollCancelledError("txn123", 1.5)

        _run_job(store, job.id, workflow)

        assert job.status == WorkflowJobStatus.CANCELLED
        assert job.transaction_id == "txn123"

    def test_missing_job_is_ignored(self):
        workflow = MagicMock()
        _run_job(_make_store(), "nonexistent", workflow)
        workflow.assert_not_called()


# ---------------------------------------------------------------------------
# TestThreadSafety
# ---------------------------------------------------------------------------


class TestThreadSafety:
    def test_concurrent_creates(self):
        store = _make_store(max_jobs=1000)
        ids = []
        lock = threading.Lock()

        def create_many():
            for _ in range(50):
                job = store.create_job(FILES)
                with lock:
                    ids.append(job.id)

        threads = [threading.Thread(target=create_many) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ids) == 500
        assert len(set(ids)) == 500
        assert len(store.list_jobs()) == 500

    def test_concurrent_updates_keep_terminal_state(self):
        store = _make_store()
        job = store.create_job(FILES)
        store.update_job(job.id, status=WorkflowJobStatus.COMPLETED)
        completed_at = job.completed_at

        def poll():
            for _ in range(100):
                store.update_job(job.id, status=WorkflowJobStatus.POLLING)

        threads = [threading.Thread(target=poll) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert job.status == WorkflowJobStatus.COMPLETED
        assert job.completed_at == completed_at


# ---------------------------------------------------------------------------
# TestWorkflowJobStatus
# ---------------------------------------------------------------------------


class TestWorkflowJobStatus:
    def test_running_values_match_workflow_stages(self):
        from ekacare_scribe.core import workflow

        for stage in (
            workflow.STAGE_AUTHENTICATING,
            workflow.STAGE_UPLOADING,
            workflow.STAGE_INITIALIZING,
            workflow.STAGE_POLLING,
        ):
            assert not WorkflowJobStatus(stage).is_terminal

    def test_terminal_states(self):
        terminal = {s for s in WorkflowJobStatus if s.is_terminal}
        assert terminal == {
            WorkflowJobStatus.COMPLETED,
            WorkflowJobStatus.FAILED,
            WorkflowJobStatus.TIMED_OUT,
            WorkflowJobStatus.CANCELLED,
        }

    def test_is_string_enum(self):
        assert WorkflowJobStatus.TIMED_OUT == "timed_out"
