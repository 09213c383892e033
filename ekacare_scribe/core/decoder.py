"""Decode terminal outputs into structured documents.

WHY: Successful outputs carry their document as base64-encoded UTF-8 JSON.
One bad payload must not hide the others, and every output's errors and
warnings have to reach the caller as sent.

HOW: decode_value() turns one encoded string into a parsed JSON value or
raises DecodeError with a preview of the raw input. decode_output() wraps
it per output and records the failure instead of raising.

RULES:
- Only outputs with status "success" (case-insensitive) and a non-empty
  value are decoded; others get value=None and no decode error
- Base64 is the standard alphabet, validated strictly once whitespace
  (e.g. 76-column line wrapping) is removed
- The preview is the first 100 characters of the raw value
- errors / warnings are copied verbatim, never merged across outputs
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any

from ekacare_scribe.api.errors import DecodeError
from ekacare_scribe.api.models import TranscriptionOutput

PREVIEW_CHARS = 100


def _preview(raw: str) -> str:
    return raw[:PREVIEW_CHARS]


def decode_value(encoded: str) -> Any:
    """Decode a base64 string holding UTF-8 JSON text.

    Raises:
        DecodeError: if any of the three layers is invalid.
    """
    # Line breaks from wrapped encoders are not part of the payload.
    compact = "".join(encoded.split())
    try:
        raw_bytes = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid base64: {exc}", _preview(encoded)) from exc

    try:
        text = raw_bytes.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"Decoded bytes are not UTF-8: {exc}", _preview(encoded)) from exc

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Decoded text is not JSON: {exc}", _preview(encoded)) from exc


@dataclass
class DecodedOutput:
    """One output after decoding.

    RULES:
    - value is the parsed document, or None when not decodable / not success
    - decode_error and raw_preview are set together, only on decode failure
    """

    template_id: str
    status: str
    type: str = ""
    name: str = ""
    value: Any = None
    decode_error: str | None = None
    raw_preview: str | None = None
    errors: list[Any] = field(default_factory=list)
    warnings: list[Any] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status.lower() == "success" and self.decode_error is None

    def to_dict(self) -> dict:
        return {
            "template_id": self.template_id,
            "status": self.status,
            "type": self.type,
            "name": self.name,
            "value": self.value,
            "decode_error": self.decode_error,
            "raw_preview": self.raw_preview,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def decode_output(output: TranscriptionOutput) -> DecodedOutput:
    decoded = DecodedOutput(
        template_id=output.template_id,
        status=output.status,
        type=output.type,
        name=output.name,
        errors=list(output.errors),
        warnings=list(output.warnings),
    )
    if output.succeeded and output.encoded_value:
        try:
            decoded.value = decode_value(output.encoded_value)
        except DecodeError as exc:
            decoded.decode_error = str(exc)
            decoded.raw_preview = exc.preview
    return decoded


def decode_outputs(outputs: list[TranscriptionOutput]) -> list[DecodedOutput]:
    """Decode every output, keeping the snapshot's order."""
    return [decode_output(o) for o in outputs]
