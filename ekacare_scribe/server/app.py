"""FastAPI application exposing the transcription workflow over HTTP.

WHY: Other tools (web pages, automation, scripts in other languages) need
HTTP access to each workflow stage and to a background "complete workflow"
runner they can poll and cancel. FastAPI provides request validation,
OpenAPI docs, and background task support.

HOW: Every stage route opens its own EkaCareClient with the session
supplied by the caller: credentials in the body for authenticate/refresh,
the incoming Authorization bearer token for everything else. No default
client or configured credentials are substituted. The workflow routes
store jobs in an in-memory JobStore and run them as background tasks.

RULES:
- Authenticated routes require "Authorization: Bearer <access_token>"
- Service errors map to 502 (401 when the service rejected the token)
- Missing or unsupported local files map to 400; poll timeout maps to 408
- DELETE on a running workflow cancels it (202); on a finished one
  removes it (204)
- Python 3.10+; annotations keep Optional from typing
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, List, Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Query
from fastapi.responses import Response

from ekacare_scribe import __version__
from ekacare_scribe.api.client import EkaCareClient
from ekacare_scribe.api.errors import (
    EkaCareAPIError,
    PollCancelledError,
    PollTimeoutError,
)
from ekacare_scribe.api.models import Credentials, Token
from ekacare_scribe.api.poller import poll_for_completion
from ekacare_scribe.config import (
    EKACARE_POLL_INTERVAL_S,
    EKACARE_POLL_TIMEOUT_S,
    EKACARE_UPLOAD_ACTION,
    SUPPORTED_AUDIO_FORMATS,
)
from ekacare_scribe.core.decoder import decode_outputs
from ekacare_scribe.core.workflow import WorkflowOptions, run_workflow
from ekacare_scribe.server.jobs import JobStore, WorkflowJob, WorkflowJobStatus
from ekacare_scribe.server.models import (
    AuthRequest,
    DecodedOutputModel,
    ErrorResponse,
    HealthResponse,
    InitializeRequest,
    InitResponse,
    PollResponse,
    RefreshTokenRequest,
    TokenResponse,
    UploadedFileModel,
    UploadRequest,
    UploadResponse,
    UploadTargetModel,
    WorkflowCreatedResponse,
    WorkflowJobResponse,
    WorkflowRequest,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

job_store = JobStore()


async def _periodic_cleanup() -> None:
    """Run job cleanup every 5 minutes."""
    while True:
        await asyncio.sleep(300)
        job_store.cleanup_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start periodic cleanup on startup, cancel on shutdown."""
    task = asyncio.create_task(_periodic_cleanup())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


app = FastAPI(
    lifespan=lifespan,
    title="EkaCare Scribe API",
    description=(
        "HTTP front end for the EkaCare medical transcription workflow: "
        "authenticate, negotiate a presigned upload, upload audio, initialize "
        "a transaction, poll for completion, and read decoded results."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _open_client(
    credentials: Optional[Credentials] = None,
    access_token: Optional[str] = None,
) -> EkaCareClient:
    """Build a client for exactly the session the caller supplied."""
    return EkaCareClient(credentials, access_token=access_token)


def _bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an Authorization header or raise 401."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid Authorization header (expected 'Bearer <token>')",
        )
    return token.strip()


def _api_error(exc: EkaCareAPIError) -> HTTPException:
    status_code = 401 if exc.unauthorized else 502
    return HTTPException(status_code=status_code, detail=str(exc))


def _token_response(token: Token, message: str) -> TokenResponse:
    return TokenResponse(
        message=message,
        access_token=token.access_token,
        refresh_token=token.refresh_token,
        expires_in=token.expires_in,
        refresh_expires_in=token.refresh_expires_in,
    )


def _check_paths(file_paths: List[str]) -> List[Path]:
    paths = [Path(p) for p in file_paths]
    for path in paths:
        if not path.is_file():
            raise HTTPException(status_code=400, detail="File not found: {}".format(path))
        if path.suffix.lower() not in SUPPORTED_AUDIO_FORMATS:
            raise HTTPException(
                status_code=400,
                detail="Unsupported file type '{}'. Supported formats: {}".format(
                    path.suffix, ", ".join(sorted(SUPPORTED_AUDIO_FORMATS))
                ),
            )
    return paths


def _job_to_response(job: WorkflowJob) -> WorkflowJobResponse:
    return WorkflowJobResponse(
        id=job.id,
        status=job.status.value,
        file_paths=[str(p) for p in job.file_paths],
        created_at=job.created_at,
        transaction_id=job.transaction_id,
        error=job.error,
        result=job.result,
    )


AuthorizationHeader = Annotated[
    Optional[str],
    Header(description="Bearer token from /transcription/authenticate."),
]


# ---------------------------------------------------------------------------
# Endpoints: Auth
# ---------------------------------------------------------------------------


@app.post(
    "/transcription/authenticate",
    response_model=TokenResponse,
    tags=["auth"],
    summary="Log in with client credentials",
    responses={502: {"model": ErrorResponse, "description": "Login rejected"}},
)
async def authenticate(body: AuthRequest) -> TokenResponse:
    credentials = Credentials(client_id=body.client_id, client_secret=body.client_secret)
    try:
        async with _open_client(credentials) as client:
            token = await client.login(sharing_key=body.sharing_key)
    except EkaCareAPIError as exc:
        logger.error("Authentication failed: %s", exc)
        raise _api_error(exc)
    return _token_response(token, "Authentication successful")


@app.post(
    "/transcription/refresh-token",
    response_model=TokenResponse,
    tags=["auth"],
    summary="Refresh an access token",
    responses={502: {"model": ErrorResponse, "description": "Refresh rejected"}},
)
async def refresh_token(body: RefreshTokenRequest) -> TokenResponse:
    credentials = Credentials(client_id=body.client_id, client_secret="")
    try:
        async with _open_client(credentials) as client:
            token = await client.refresh(body.refresh_token, body.access_token)
    except EkaCareAPIError as exc:
        logger.error("Token refresh failed: %s", exc)
        raise _api_error(exc)
    return _token_response(token, "Token refreshed successfully")


# ---------------------------------------------------------------------------
# Endpoints: Upload
# ---------------------------------------------------------------------------


@app.post(
    "/transcription/presigned-url",
    response_model=UploadTargetModel,
    tags=["upload"],
    summary="Negotiate a presigned upload target",
    responses={
        401: {"model": ErrorResponse, "description": "Missing or rejected token"},
        502: {"model": ErrorResponse, "description": "Negotiation failed"},
    },
)
async def presigned_url(
    authorization: AuthorizationHeader = None,
    action: Annotated[str, Query(description="Upload action tag.")] = EKACARE_UPLOAD_ACTION,
) -> UploadTargetModel:
    token = _bearer_token(authorization)
    try:
        async with _open_client(access_token=token) as client:
            target = await client.get_upload_target(action)
    except EkaCareAPIError as exc:
        logger.error("Failed to get presigned URL: %s", exc)
        raise _api_error(exc)
    return UploadTargetModel.from_target(target)


@app.post(
    "/transcription/upload",
    response_model=UploadResponse,
    tags=["upload"],
    summary="Upload server-local audio files to a presigned target",
    responses={
        400: {"model": ErrorResponse, "description": "File not found"},
        502: {"model": ErrorResponse, "description": "Storage rejected an upload"},
    },
)
async def upload(body: UploadRequest) -> UploadResponse:
    paths = _check_paths(body.file_paths)
    try:
        async with _open_client() as client:
            results = await client.upload_files(body.upload_target.to_target(), paths)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except EkaCareAPIError as exc:
        logger.error("File upload failed: %s", exc)
        raise _api_error(exc)
    return UploadResponse(
        message="Files uploaded successfully",
        results=[
            UploadedFileModel(
                key=r.key,
                file_name=r.file_name,
                size_bytes=r.size_bytes,
                success=r.success,
            )
            for r in results
        ],
    )


# ---------------------------------------------------------------------------
# Endpoints: Transaction
# ---------------------------------------------------------------------------


@app.post(
    "/transcription/initialize/{txn_id}",
    response_model=InitResponse,
    tags=["transaction"],
    summary="Initialize a transcription transaction",
    responses={
        401: {"model": ErrorResponse, "description": "Missing or rejected token"},
        502: {"model": ErrorResponse, "description": "Initialization failed"},
    },
)
async def initialize(
    txn_id: str,
    body: InitializeRequest,
    authorization: AuthorizationHeader = None,
) -> InitResponse:
    token = _bearer_token(authorization)
    try:
        async with _open_client(access_token=token) as client:
            result = await client.initialize(txn_id, body.to_request())
    except EkaCareAPIError as exc:
        logger.error("Transaction initialization failed: %s", exc)
        raise _api_error(exc)
    return InitResponse(
        status=result.status,
        message=result.message,
        txn_id=result.transaction_id,
        b_id=result.batch_id,
    )


@app.get(
    "/transcription/status/{txn_id}",
    tags=["transaction"],
    summary="Fetch one raw status snapshot",
    responses={
        401: {"model": ErrorResponse, "description": "Missing or rejected token"},
        502: {"model": ErrorResponse, "description": "Status fetch failed"},
    },
)
async def get_status(txn_id: str, authorization: AuthorizationHeader = None) -> dict:
    token = _bearer_token(authorization)
    try:
        async with _open_client(access_token=token) as client:
            status = await client.get_status(txn_id)
    except EkaCareAPIError as exc:
        logger.error("Failed to get status: %s", exc)
        raise _api_error(exc)
    return status.to_dict()


@app.get(
    "/transcription/poll/{txn_id}",
    response_model=PollResponse,
    tags=["transaction"],
    summary="Poll until complete and return decoded results",
    responses={
        401: {"model": ErrorResponse, "description": "Missing token"},
        408: {"model": ErrorResponse, "description": "Polling timed out"},
    },
)
async def poll(
    txn_id: str,
    authorization: AuthorizationHeader = None,
    max_duration_seconds: Annotated[float, Query(gt=0)] = EKACARE_POLL_TIMEOUT_S,
    poll_interval_seconds: Annotated[float, Query(gt=0)] = EKACARE_POLL_INTERVAL_S,
) -> PollResponse:
    token = _bearer_token(authorization)
    try:
        async with _open_client(access_token=token) as client:
            status = await poll_for_completion(
                client,
                txn_id,
                max_duration_s=max_duration_seconds,
                poll_interval_s=poll_interval_seconds,
            )
    except PollTimeoutError as exc:
        logger.warning("Polling timeout: %s", exc)
        raise HTTPException(status_code=408, detail=str(exc))

    return PollResponse(
        message="Transcription completed",
        transaction_id=txn_id,
        results=[DecodedOutputModel(**o.to_dict()) for o in decode_outputs(status.outputs)],
    )


# ---------------------------------------------------------------------------
# Endpoints: Workflows
# ---------------------------------------------------------------------------


async def _run_workflow_job(job_id: str, store: JobStore) -> None:
    """Run the complete workflow for a stored job.

    RULES:
    - Updates job status at each workflow stage
    - Timeout, cancellation, and failure each get their own terminal state
    - Catches all exceptions and marks the job failed
    """
    job = store.get_job(job_id)
    if job is None:
        return

    def _on_stage(stage: str) -> None:
        store.update_job(job_id, status=WorkflowJobStatus(stage))

    try:
        async with _open_client(job.credentials, job.access_token) as client:
            result = await run_workflow(
                client,
                job.file_paths,
                job.options,
                cancel_event=job.cancel_event,
                on_stage=_on_stage,
            )
    except PollTimeoutError as exc:
        logger.warning("Workflow job %s timed out: %s", job_id, exc)
        store.update_job(
            job_id,
            status=WorkflowJobStatus.TIMED_OUT,
            error=str(exc),
            transaction_id=exc.transaction_id,
        )
    except PollCancelledError as exc:
        logger.info("Workflow job %s cancelled", job_id)
        store.update_job(
            job_id,
            status=WorkflowJobStatus.CANCELLED,
            transaction_id=exc.transaction_id,
        )
    except Exception as exc:
        logger.exception("Workflow failed for job %s", job_id)
        store.update_job(job_id, status=WorkflowJobStatus.FAILED, error=str(exc))
    else:
        store.update_job(
            job_id,
            status=WorkflowJobStatus.COMPLETED,
            transaction_id=result.transaction_id,
            result=result.to_dict(),
        )


@app.post(
    "/transcription/workflows",
    response_model=WorkflowCreatedResponse,
    status_code=201,
    tags=["workflows"],
    summary="Start a complete workflow in the background",
    description=(
        "Logs in (unless a bearer token is supplied), uploads the files, "
        "initializes the transaction, and polls for results in the background. "
        "Poll GET /transcription/workflows/{id} for progress."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Missing session or file"},
        429: {"model": ErrorResponse, "description": "Too many concurrent jobs"},
    },
)
async def create_workflow(
    body: WorkflowRequest,
    background_tasks: BackgroundTasks,
    authorization: AuthorizationHeader = None,
) -> WorkflowCreatedResponse:
    credentials: Optional[Credentials] = None
    access_token: Optional[str] = None
    if body.client_id and body.client_secret:
        credentials = Credentials(client_id=body.client_id, client_secret=body.client_secret)
    elif authorization:
        access_token = _bearer_token(authorization)
    else:
        raise HTTPException(
            status_code=400,
            detail="Supply client_id and client_secret, or an Authorization bearer token",
        )

    paths = _check_paths(body.file_paths)
    options = WorkflowOptions(
        action=body.action,
        mode=body.mode,
        transfer=body.transfer,
        model_type=body.model_type,
        input_languages=list(body.input_languages),
        output_language=body.output_language,
        speciality=body.speciality,
        output_templates=body.templates(),
        additional_data=body.additional_data,
        sharing_key=body.sharing_key,
        max_duration_s=body.max_poll_duration_seconds,
        poll_interval_s=body.poll_interval_seconds,
    )

    try:
        job = job_store.create_job(
            paths,
            options=options,
            credentials=credentials,
            access_token=access_token,
        )
    except ValueError as exc:
        raise HTTPException(status_code=429, detail=str(exc))

    background_tasks.add_task(_run_workflow_job, job.id, job_store)
    return WorkflowCreatedResponse(id=job.id, status=job.status.value)


@app.get(
    "/transcription/workflows/{job_id}",
    response_model=WorkflowJobResponse,
    tags=["workflows"],
    summary="Get workflow job status",
    responses={404: {"model": ErrorResponse, "description": "Job not found"}},
)
async def get_workflow(job_id: str) -> WorkflowJobResponse:
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return _job_to_response(job)


@app.delete(
    "/transcription/workflows/{job_id}",
    tags=["workflows"],
    summary="Cancel a running workflow or delete a finished one",
    responses={
        202: {"description": "Cancellation requested"},
        204: {"description": "Job deleted"},
        404: {"model": ErrorResponse, "description": "Job not found"},
    },
)
async def delete_workflow(job_id: str) -> Response:
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    if job_store.cancel_job(job_id):
        return Response(status_code=202)
    job_store.delete_job(job_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api():
    """Entry point for the ekacare-scribe-api console script."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
