"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation.

HOW: Each endpoint pair (request + response) has its own model. Models
convert to and from the client dataclasses in ekacare_scribe.api.models
so the routing layer stays thin.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Secrets (client_secret) are accepted in requests but never echoed back
- Python 3.10+; annotations keep Optional from typing
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ekacare_scribe.api.models import OutputTemplate, TranscriptionRequest, UploadTarget
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


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AuthRequest(BaseModel):
    """Client credentials for POST /transcription/authenticate."""

    client_id: str = Field(min_length=1, description="EkaCare client ID.")
    client_secret: str = Field(min_length=1, description="EkaCare client secret.")
    sharing_key: Optional[str] = Field(default=None, description="Optional sharing key.")


class RefreshTokenRequest(BaseModel):
    """Body for POST /transcription/refresh-token."""

    client_id: str = Field(min_length=1, description="Client ID sent in the Client-Id header.")
    refresh_token: str = Field(min_length=1, description="Refresh token from the last login.")
    access_token: str = Field(min_length=1, description="Access token being refreshed.")


class TokenResponse(BaseModel):
    """Token pair returned by authenticate and refresh."""

    message: str = Field(description="Outcome summary.")
    access_token: str = Field(description="Bearer token for authenticated routes.")
    refresh_token: str = Field(description="Token used to obtain a new access token.")
    expires_in: int = Field(description="Access token lifetime in seconds.")
    refresh_expires_in: int = Field(description="Refresh token lifetime in seconds.")


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


class UploadTargetModel(BaseModel):
    """Presigned upload target."""

    url: str = Field(description="Storage endpoint URL.")
    fields: Dict[str, str] = Field(default_factory=dict, description="Presigned form fields.")
    folder_path: str = Field(description="Folder prefix for every file key.")
    transaction_id: str = Field(description="Transaction ID for init and status.")

    @classmethod
    def from_target(cls, target: UploadTarget) -> UploadTargetModel:
        return cls(
            url=target.url,
            fields=dict(target.fields),
            folder_path=target.folder_path,
            transaction_id=target.transaction_id,
        )

    def to_target(self) -> UploadTarget:
        return UploadTarget(
            url=self.url,
            fields={k: v for k, v in self.fields.items() if k != "key"},
            folder_path=self.folder_path,
            transaction_id=self.transaction_id,
        )


class UploadRequest(BaseModel):
    """Body for POST /transcription/upload."""

    upload_target: UploadTargetModel = Field(description="Target from /presigned-url.")
    file_paths: List[str] = Field(min_length=1, description="Server-local audio file paths.")


class UploadedFileModel(BaseModel):
    key: str = Field(description="Object key: folder path + file name.")
    file_name: str = Field(description="Uploaded file name.")
    size_bytes: int = Field(description="File size in bytes.")
    success: bool = Field(description="Whether the upload succeeded.")


class UploadResponse(BaseModel):
    message: str = Field(description="Outcome summary.")
    results: List[UploadedFileModel] = Field(description="One record per file, in input order.")


# ---------------------------------------------------------------------------
# Transaction init
# ---------------------------------------------------------------------------


class OutputTemplateModel(BaseModel):
    template_id: str = Field(description="Template identifier, e.g. transcript_template.")
    codification_needed: bool = Field(default=False, description="Request medical codification.")


def _default_template_models() -> List[OutputTemplateModel]:
    return [OutputTemplateModel(template_id=DEFAULT_TEMPLATE_ID)]


class TranscriptionOptionsModel(BaseModel):
    """Request options shared by init and complete-workflow."""

    mode: str = Field(default=DEFAULT_MODE, description="Transcription mode.")
    transfer: str = Field(default=DEFAULT_TRANSFER, description="Transfer type.")
    model_type: str = Field(default=DEFAULT_MODEL_TYPE, description="Model type.")
    input_languages: List[str] = Field(
        default_factory=lambda: [DEFAULT_LANGUAGE],
        min_length=1,
        description="Spoken languages in the audio.",
    )
    output_language: str = Field(default=DEFAULT_LANGUAGE, description="Output language.")
    speciality: Optional[str] = Field(default=None, description="Medical speciality.")
    output_templates: List[OutputTemplateModel] = Field(
        default_factory=_default_template_models,
        description="Requested outputs, in order.",
    )
    additional_data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Opaque caller data passed through unchanged.",
    )

    def templates(self) -> List[OutputTemplate]:
        return [
            OutputTemplate(template_id=t.template_id, codification_needed=t.codification_needed)
            for t in self.output_templates
        ]


class InitializeRequest(TranscriptionOptionsModel):
    """Body for POST /transcription/initialize/{txn_id}."""

    batch_source_url: str = Field(description="Upload URL + folder path of the batch.")
    file_names: List[str] = Field(min_length=1, description="Uploaded file names, in order.")

    def to_request(self) -> TranscriptionRequest:
        return TranscriptionRequest(
            batch_source_url=self.batch_source_url,
            file_names=list(self.file_names),
            mode=self.mode,
            transfer=self.transfer,
            model_type=self.model_type,
            input_languages=list(self.input_languages),
            output_language=self.output_language,
            speciality=self.speciality,
            output_templates=self.templates(),
            additional_data=self.additional_data,
        )


class InitResponse(BaseModel):
    status: str = Field(description="Service status string.")
    message: str = Field(description="Service message.")
    txn_id: str = Field(description="Transaction ID.")
    b_id: str = Field(description="Batch ID.")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class DecodedOutputModel(BaseModel):
    template_id: str = Field(description="Template the output was produced for.")
    status: str = Field(description="Terminal output status.")
    type: str = Field(description="Output type.")
    name: str = Field(description="Output name.")
    value: Any = Field(default=None, description="Decoded JSON document, if any.")
    decode_error: Optional[str] = Field(default=None, description="Why decoding failed.")
    raw_preview: Optional[str] = Field(default=None, description="First characters of the raw value.")
    errors: List[Any] = Field(default_factory=list, description="Errors reported by the service.")
    warnings: List[Any] = Field(default_factory=list, description="Warnings reported by the service.")


class PollResponse(BaseModel):
    message: str = Field(description="Outcome summary.")
    transaction_id: str = Field(description="Polled transaction ID.")
    results: List[DecodedOutputModel] = Field(description="Decoded outputs, in service order.")


# ---------------------------------------------------------------------------
# Workflow jobs
# ---------------------------------------------------------------------------


class WorkflowRequest(TranscriptionOptionsModel):
    """Body for POST /transcription/workflows.

    RULES:
    - Either client_id + client_secret, or an Authorization bearer
      header, must be supplied
    """

    file_paths: List[str] = Field(min_length=1, description="Server-local audio file paths.")
    client_id: Optional[str] = Field(default=None, description="Client ID to log in with.")
    client_secret: Optional[str] = Field(default=None, description="Client secret to log in with.")
    sharing_key: Optional[str] = Field(default=None, description="Optional sharing key.")
    action: str = Field(default=EKACARE_UPLOAD_ACTION, description="Upload action tag.")
    max_poll_duration_seconds: float = Field(
        default=EKACARE_POLL_TIMEOUT_S,
        gt=0,
        description="Maximum polling time.",
    )
    poll_interval_seconds: float = Field(
        default=EKACARE_POLL_INTERVAL_S,
        gt=0,
        description="Seconds between status polls.",
    )


class WorkflowCreatedResponse(BaseModel):
    id: str = Field(description="Job ID for polling status.")
    status: str = Field(description="Initial job status (always 'pending').")


class WorkflowJobResponse(BaseModel):
    id: str = Field(description="Job ID.")
    status: str = Field(description="Current job status.")
    file_paths: List[str] = Field(description="Files submitted with the job.")
    created_at: float = Field(description="Job creation timestamp (Unix epoch seconds).")
    transaction_id: Optional[str] = Field(default=None, description="Transaction ID, once known.")
    error: Optional[str] = Field(default=None, description="Error message for failed/timed-out jobs.")
    result: Optional[Dict[str, Any]] = Field(default=None, description="Results when completed.")


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
