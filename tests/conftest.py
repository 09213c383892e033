"""Shared fixtures for the ekacare_scribe test suite.

WHY: Most test modules drive an EkaCareClient against the same fake
transcription service and fake object store. Centralizing them keeps the
wire payloads in one place and every module consistent.

HOW: FakeEkaCare and FakeStorage are plain recorders with canned replies.
They are mounted behind httpx.MockTransport, so the real client code
(request building, headers, multipart encoding) runs unchanged and no
network is touched.

RULES:
- Payload shapes match the service's JSON (uploadData, folderPath, txn_id,
  data.output[].value as base64 JSON)
- Status replies are consumed in order; the last one repeats
- Every test gets fresh fakes (function-scoped fixtures)
"""

from __future__ import annotations

import base64
import json
import re
from typing import Any, Dict, List, Optional

import httpx
import pytest

from ekacare_scribe.api.client import (
    INIT_PATH,
    LOGIN_PATH,
    REFRESH_PATH,
    UPLOAD_NEGOTIATION_PATH,
    EkaCareClient,
)
from ekacare_scribe.api.models import Credentials

BASE_URL = "https://api.eka.test"
STORAGE_URL = "https://storage.eka.test/bucket"
CREDENTIALS = Credentials(client_id="client-1", client_secret="secret-1")

TOKEN_PAYLOAD = {
    "access_token": "tok-1",
    "refresh_token": "ref-1",
    "expires_in": 1800,
    "refresh_expires_in": 86400,
}

CONNECT_ERROR = "connect-error"


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def encode_json(value: Any) -> str:
    """Base64-encode a JSON document the way the service does."""
    return base64.b64encode(json.dumps(value).encode("utf-8")).decode("ascii")


def make_output(
    template_id: str = "transcript_template",
    status: str = "success",
    value: str = "",
    errors: Optional[List[Any]] = None,
    warnings: Optional[List[Any]] = None,
) -> Dict[str, Any]:
    return {
        "template_id": template_id,
        "value": value,
        "type": "json",
        "name": "Transcript",
        "status": status,
        "errors": errors or [],
        "warnings": warnings or [],
    }


def status_payload(*outputs: Dict[str, Any], additional_data: Any = None) -> Dict[str, Any]:
    return {"data": {"output": list(outputs), "additional_data": additional_data}}


def upload_descriptor(
    folder_path: str = "/txn123/",
    txn_id: str = "txn123",
    fields: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    if fields is None:
        fields = {"policy": "p0l1cy", "x-amz-signature": "s1g"}
    return {
        "uploadData": {"url": STORAGE_URL, "fields": fields},
        "folderPath": folder_path,
        "txn_id": txn_id,
    }


def part_names(request: httpx.Request) -> List[str]:
    """Names of the multipart parts in the order they were encoded."""
    return re.findall(r'; name="([^"]+)"', request.content.decode("latin-1"))


def _reply(status_code: int, body: Any) -> httpx.Response:
    if isinstance(body, str):
        return httpx.Response(status_code, text=body)
    return httpx.Response(status_code, json=body)


# ---------------------------------------------------------------------------
# Fake services
# ---------------------------------------------------------------------------


class FakeEkaCare:
    """Canned transcription API. Records every request it receives."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.login_response = (200, dict(TOKEN_PAYLOAD))
        self.refresh_response = (200, dict(TOKEN_PAYLOAD, access_token="tok-2"))
        self.negotiation_response = (200, upload_descriptor())
        self.init_response = (
            200,
            {"status": "success", "message": "Transaction initialized", "txn_id": "txn123", "b_id": "b-1"},
        )
        self.status_responses: List[Any] = [
            (200, status_payload(make_output(value=encode_json({"a": 1})))),
        ]
        self.status_calls = 0

    def requests_to(self, path_prefix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith(path_prefix)]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == LOGIN_PATH:
            return _reply(*self.login_response)
        if path == REFRESH_PATH:
            return _reply(*self.refresh_response)
        if path == UPLOAD_NEGOTIATION_PATH:
            return _reply(*self.negotiation_response)
        if path.startswith(INIT_PATH.format(txn_id="")):
            return _reply(*self.init_response)
        if path.startswith("/voice/api/v3/status/"):
            index = min(self.status_calls, len(self.status_responses) - 1)
            self.status_calls += 1
            reply = self.status_responses[index]
            if reply == CONNECT_ERROR:
                raise httpx.ConnectError("connection refused", request=request)
            return _reply(*reply)
        return httpx.Response(404, json={"error": "unknown path {}".format(path)})


class FakeStorage:
    """Canned object store accepting presigned multipart POSTs."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.status_code = 204
        self.reject_file: Optional[str] = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        marker = 'filename="{}"'.format(self.reject_file).encode()
        if self.reject_file and marker in request.content:
            return httpx.Response(403, text="AccessDenied")
        return httpx.Response(self.status_code)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def eka():
    return FakeEkaCare()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def make_client(eka, storage):
    """Factory for EkaCareClient sessions wired to the fakes."""

    def _make(
        credentials: Optional[Credentials] = CREDENTIALS,
        access_token: Optional[str] = None,
    ) -> EkaCareClient:
        return EkaCareClient(
            credentials,
            base_url=BASE_URL,
            access_token=access_token,
            transport=httpx.MockTransport(eka.handle),
            upload_transport=httpx.MockTransport(storage.handle),
        )

    return _make


@pytest.fixture
def audio_files(tmp_path):
    """Two small fake audio files: a.mp3 and b.mp3."""
    a = tmp_path / "a.mp3"
    a.write_bytes(b"audio-a")
    b = tmp_path / "b.mp3"
    b.write_bytes(b"audio-bb")
    return [a, b]
