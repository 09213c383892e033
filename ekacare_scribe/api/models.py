"""EkaCare API request and response dataclasses.

WHY: The EkaCare API exchanges flat JSON objects for tokens, upload
targets, transaction init, and status snapshots. Typed dataclasses make
these structures explicit and keep wire-name mapping in one place.

HOW: Each dataclass maps to one API JSON object. Factory methods
(from_dict) parse raw responses; to_dict builds request bodies. The upload
descriptor is checked against a JSON Schema before it is trusted, because
every later stage depends on it.

RULES:
- Wire names follow the service (uploadData, folderPath, txn_id, b_id,
  batch_s3_url, client_generated_files, input_language, output_format_template)
- TranscriptionRequest.to_dict omits unset optional fields instead of
  sending null
- additional_data is opaque: copied through in insertion order, never inspected
- Output status comparison is case-insensitive; only "success" and
  "failed" are terminal, every other value keeps the poller waiting
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import jsonschema

from ekacare_scribe.config import (
    DEFAULT_LANGUAGE,
    DEFAULT_MODE,
    DEFAULT_MODEL_TYPE,
    DEFAULT_TEMPLATE_ID,
    DEFAULT_TRANSFER,
)

TERMINAL_STATUSES = frozenset({"success", "failed"})

UPLOAD_DESCRIPTOR_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["uploadData", "folderPath"],
    "properties": {
        "uploadData": {
            "type": "object",
            "required": ["url", "fields"],
            "properties": {
                "url": {"type": "string", "minLength": 1},
                "fields": {
                    "type": "object",
                    "additionalProperties": {"type": ["string", "number", "boolean"]},
                },
            },
        },
        "folderPath": {"type": "string"},
        "txn_id": {"type": "string"},
    },
}


@dataclass(frozen=True)
class Credentials:
    """Client credentials, supplied once per session."""

    client_id: str
    client_secret: str


@dataclass
class Token:
    """Token pair returned by login and refresh.

    RULES:
    - expires_in / refresh_expires_in are seconds as reported by the service
    - No expiry tracking: callers detect a 401 and refresh
    """

    access_token: str
    refresh_token: str = ""
    expires_in: int = 0
    refresh_expires_in: int = 0
    token_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Token:
        """Parse a token payload. Raises KeyError if access_token is absent."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or "",
            expires_in=int(data.get("expires_in") or 0),
            refresh_expires_in=int(data.get("refresh_expires_in") or 0),
            token_type=data.get("token_type"),
        )

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "refresh_expires_in": self.refresh_expires_in,
            "token_type": self.token_type,
        }


@dataclass(frozen=True)
class UploadTarget:
    """Presigned upload destination returned by POST /v1/file-upload.

    WHY: One target is negotiated per transaction and shared by every file
    in the batch. The storage endpoint needs the presigned form fields; the
    transcription service needs the folder path to locate the batch.

    RULES:
    - fields never includes "key"; the per-file key is computed by the uploader
    - batch_url is url + folder_path, the same root used for per-file keys
    """

    url: str
    fields: dict[str, str]
    folder_path: str
    transaction_id: str

    @classmethod
    def from_dict(cls, data: Any) -> UploadTarget:
        """Parse and validate the negotiation response.

        Raises jsonschema.ValidationError when the descriptor or folder path
        is missing or has the wrong shape.
        """
        jsonschema.validate(instance=data, schema=UPLOAD_DESCRIPTOR_SCHEMA)
        upload_data = data["uploadData"]
        fields = {
            str(name): str(value)
            for name, value in upload_data["fields"].items()
            if name != "key"
        }
        return cls(
            url=upload_data["url"],
            fields=fields,
            folder_path=data["folderPath"],
            transaction_id=data.get("txn_id") or "",
        )

    @property
    def batch_url(self) -> str:
        return self.url + self.folder_path

    def key_for(self, file_name: str) -> str:
        return self.folder_path + file_name

    def to_dict(self) -> dict:
        return {
            "uploadData": {"url": self.url, "fields": dict(self.fields)},
            "folderPath": self.folder_path,
            "txn_id": self.transaction_id,
        }


@dataclass(frozen=True)
class UploadedFile:
    """Record of one file pushed to the storage endpoint."""

    key: str
    file_name: str
    size_bytes: int
    success: bool = True


@dataclass
class OutputTemplate:
    """One requested output artifact."""

    template_id: str
    codification_needed: bool = False

    def to_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "codification_needed": self.codification_needed,
        }


def _default_templates() -> list[OutputTemplate]:
    return [OutputTemplate(template_id=DEFAULT_TEMPLATE_ID)]


@dataclass
class TranscriptionRequest:
    """Body of POST /voice/api/v2/transaction/init/{txn_id}.

    WHY: Declares what the service should produce for the uploaded batch:
    languages, specialty, output templates, and caller data.

    HOW: Field defaults match the service's dictation defaults. to_dict
    maps to wire names and drops unset optional fields.

    RULES:
    - input_languages must be non-empty (ValueError otherwise)
    - file_names order matches the uploaded files
    - speciality and additional_data are omitted when None
    """

    batch_source_url: str
    file_names: list[str]
    mode: str = DEFAULT_MODE
    transfer: str = DEFAULT_TRANSFER
    model_type: str = DEFAULT_MODEL_TYPE
    input_languages: list[str] = field(default_factory=lambda: [DEFAULT_LANGUAGE])
    output_language: str = DEFAULT_LANGUAGE
    speciality: str | None = None
    output_templates: list[OutputTemplate] = field(default_factory=_default_templates)
    additional_data: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if not self.input_languages:
            raise ValueError("input_languages must contain at least one language")

    @classmethod
    def for_upload(
        cls,
        target: UploadTarget,
        uploaded: list[UploadedFile],
        **options: Any,
    ) -> TranscriptionRequest:
        """Build a request for files uploaded to target.

        batch_source_url and file_names are derived from the target and the
        uploaded records; everything else comes from options.
        """
        return cls(
            batch_source_url=target.batch_url,
            file_names=[f.file_name for f in uploaded],
            **options,
        )

    def to_dict(self) -> dict:
        body: dict[str, Any] = {
            "mode": self.mode,
            "transfer": self.transfer,
            "batch_s3_url": self.batch_source_url,
            "client_generated_files": list(self.file_names),
            "model_type": self.model_type,
            "input_language": list(self.input_languages),
            "output_language": self.output_language,
            "output_format_template": [t.to_dict() for t in self.output_templates],
        }
        if self.speciality is not None:
            body["speciality"] = self.speciality
        if self.additional_data is not None:
            body["additional_data"] = self.additional_data
        return body


@dataclass(frozen=True)
class InitResult:
    """Response of the transaction init call."""

    status: str
    message: str
    transaction_id: str
    batch_id: str

    @classmethod
    def from_dict(cls, data: dict) -> InitResult:
        return cls(
            status=data.get("status") or "",
            message=data.get("message") or "",
            transaction_id=data.get("txn_id") or "",
            batch_id=data.get("b_id") or "",
        )


@dataclass
class TranscriptionOutput:
    """One requested output inside a status snapshot.

    RULES:
    - encoded_value is the raw "value" field (base64 JSON on success)
    - errors and warnings are kept exactly as the service sent them
    """

    template_id: str
    status: str
    encoded_value: str = ""
    type: str = ""
    name: str = ""
    errors: list[Any] = field(default_factory=list)
    warnings: list[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptionOutput:
        return cls(
            template_id=data.get("template_id") or "",
            status=data.get("status") or "",
            encoded_value=data.get("value") or "",
            type=data.get("type") or "",
            name=data.get("name") or "",
            errors=list(data.get("errors") or []),
            warnings=list(data.get("warnings") or []),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.lower() in TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status.lower() == "success"


@dataclass
class TranscriptionStatus:
    """Snapshot returned by GET /voice/api/v3/status/{txn_id}.

    WHY: The poller inspects each snapshot to decide whether every
    requested output has reached a terminal state.

    RULES:
    - outputs keep the service's order
    - is_complete requires at least one output and all outputs terminal
    """

    outputs: list[TranscriptionOutput] = field(default_factory=list)
    additional_data: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptionStatus:
        payload = data.get("data") or {}
        return cls(
            outputs=[TranscriptionOutput.from_dict(o) for o in payload.get("output") or []],
            additional_data=payload.get("additional_data"),
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.outputs) and all(o.is_terminal for o in self.outputs)

    def to_dict(self) -> dict:
        return {
            "data": {
                "output": [
                    {
                        "template_id": o.template_id,
                        "value": o.encoded_value,
                        "type": o.type,
                        "name": o.name,
                        "status": o.status,
                        "errors": list(o.errors),
                        "warnings": list(o.warnings),
                    }
                    for o in self.outputs
                ],
                "additional_data": self.additional_data,
            }
        }
