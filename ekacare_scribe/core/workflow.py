"""End-to-end transcription workflow for one transaction.

WHY: The CLI, the HTTP layer, and tests all need the same ordered chain:
login → negotiate → upload → initialize → poll → decode. Keeping it in one
function means the stage order and the batch URL derivation live in one
place.

HOW: run_workflow() takes an explicit EkaCareClient session and runs each
stage in turn, reporting stage transitions through on_stage and progress
text through on_status. The batch URL and file names sent at init are
derived from the same UploadTarget the uploader used for per-file keys.

RULES:
- Stages run strictly in order; the first stage error aborts the workflow
  and propagates unchanged
- Login happens only when the session has no access token yet
- Decode failures are per-output and never abort the result set
- PollTimeoutError / PollCancelledError propagate so the caller can
  resume or report cancellation
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ekacare_scribe.api.client import EkaCareClient
from ekacare_scribe.api.models import (
    InitResult,
    OutputTemplate,
    TranscriptionRequest,
    TranscriptionStatus,
    UploadedFile,
    UploadTarget,
)
from ekacare_scribe.api.poller import poll_for_completion
from ekacare_scribe.config import (
    DEFAULT_LANGUAGE,
    DEFAULT_MODE,
    DEFAULT_MODEL_TYPE,
    DEFAULT_TEMPLATE_ID,
    DEFAULT_TRANSFER,
    EKACARE_POLL_INTERVAL_S,
    EKACARE_POLL_TIMEOUT_S,
    EKACARE_UPLOAD_ACTION,
)
from ekacare_scribe.core.decoder import DecodedOutput, decode_outputs

logger = logging.getLogger(__name__)

STAGE_AUTHENTICATING = "authenticating"
STAGE_UPLOADING = "uploading"
STAGE_INITIALIZING = "initializing"
STAGE_POLLING = "polling"


@dataclass
class WorkflowOptions:
    """Caller choices for one workflow run."""

    action: str = EKACARE_UPLOAD_ACTION
    mode: str = DEFAULT_MODE
    transfer: str = DEFAULT_TRANSFER
    model_type: str = DEFAULT_MODEL_TYPE
    input_languages: list[str] = field(default_factory=lambda: [DEFAULT_LANGUAGE])
    output_language: str = DEFAULT_LANGUAGE
    speciality: str | None = None
    output_templates: list[OutputTemplate] = field(
        default_factory=lambda: [OutputTemplate(template_id=DEFAULT_TEMPLATE_ID)]
    )
    additional_data: dict[str, Any] | None = None
    sharing_key: str | None = None
    max_duration_s: float = EKACARE_POLL_TIMEOUT_S
    poll_interval_s: float = EKACARE_POLL_INTERVAL_S

    def build_request(
        self,
        target: UploadTarget,
        uploaded: list[UploadedFile],
    ) -> TranscriptionRequest:
        return TranscriptionRequest.for_upload(
            target,
            uploaded,
            mode=self.mode,
            transfer=self.transfer,
            model_type=self.model_type,
            input_languages=list(self.input_languages),
            output_language=self.output_language,
            speciality=self.speciality,
            output_templates=list(self.output_templates),
            additional_data=self.additional_data,
        )


@dataclass
class WorkflowResult:
    """Everything produced by a completed workflow."""

    transaction_id: str
    batch_id: str
    upload_target: UploadTarget
    uploaded_files: list[UploadedFile]
    init_result: InitResult
    status: TranscriptionStatus
    outputs: list[DecodedOutput]

    def to_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "batch_id": self.batch_id,
            "uploaded_files": [
                {
                    "key": f.key,
                    "file_name": f.file_name,
                    "size_bytes": f.size_bytes,
                    "success": f.success,
                }
                for f in self.uploaded_files
            ],
            "init": {
                "status": self.init_result.status,
                "message": self.init_result.message,
            },
            "outputs": [o.to_dict() for o in self.outputs],
            "additional_data": self.status.additional_data,
        }


async def run_workflow(
    client: EkaCareClient,
    file_paths: list[str | Path],
    options: WorkflowOptions | None = None,
    cancel_event: asyncio.Event | None = None,
    on_status: Callable[[str], None] | None = None,
    on_stage: Callable[[str], None] | None = None,
) -> WorkflowResult:
    """Run the full transcription workflow for a batch of local files.

    Args:
        client: An open EkaCareClient session (credentials or token set).
        file_paths: Local audio files; uploaded and sent in this order.
        options: Request and polling options (defaults if None).
        cancel_event: Optional event; setting it cancels polling.
        on_status: Optional callback for human-readable progress.
        on_stage: Optional callback receiving each stage name as it starts.

    Returns:
        WorkflowResult with uploaded files and decoded outputs.
    """
    options = options or WorkflowOptions()
    if not file_paths:
        raise ValueError("At least one file path is required")

    def _stage(name: str) -> None:
        logger.debug("Workflow stage: %s", name)
        if on_stage:
            on_stage(name)

    if client.access_token is None:
        _stage(STAGE_AUTHENTICATING)
        await client.login(sharing_key=options.sharing_key, on_status=on_status)

    _stage(STAGE_UPLOADING)
    target = await client.get_upload_target(options.action, on_status=on_status)
    uploaded = await client.upload_files(target, file_paths, on_status=on_status)

    _stage(STAGE_INITIALIZING)
    request = options.build_request(target, uploaded)
    init_result = await client.initialize(target.transaction_id, request, on_status=on_status)

    _stage(STAGE_POLLING)
    status = await poll_for_completion(
        client,
        target.transaction_id,
        max_duration_s=options.max_duration_s,
        poll_interval_s=options.poll_interval_s,
        cancel_event=cancel_event,
        on_status=on_status,
    )

    outputs = decode_outputs(status.outputs)
    failed = [o.template_id for o in outputs if not o.ok]
    if failed:
        logger.info("Transaction %s finished with unusable outputs: %s", target.transaction_id, failed)

    return WorkflowResult(
        transaction_id=target.transaction_id,
        batch_id=init_result.batch_id,
        upload_target=target,
        uploaded_files=uploaded,
        init_result=init_result,
        status=status,
        outputs=outputs,
    )
