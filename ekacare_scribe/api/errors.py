"""Typed exceptions for every stage of the transcription workflow.

WHY: Callers need to tell apart which stage failed (login, upload
negotiation, object upload, transaction init, polling, decoding) and
whether the failure is fatal, transient, or per-output. A 401 on any
authenticated call must be recognizable so the caller can refresh the
token and retry.

HOW: Service-side failures derive from EkaCareAPIError, which carries the
HTTP status code, the response body, and the request URL. Polling and
decoding outcomes have their own classes outside that hierarchy.

RULES:
- Stage errors (Auth, Negotiation, Upload, Init) abort the whole workflow
- StatusFetchError is transient; the poller logs it and keeps polling
- PollTimeoutError is a TimeoutError, never an EkaCareAPIError, so a
  timed-out poll is distinguishable from a hard failure
- PollCancelledError is raised only when the caller asked to stop
- DecodeError is per-output and is recorded, not raised, by the decoder
- A missing local file raises the builtin FileNotFoundError
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ekacare_scribe.api.models import TranscriptionStatus


class EkaCareAPIError(Exception):
    """Raised when the EkaCare service (or its storage endpoint) rejects a call.

    WHY: Every stage needs the status code, body, and URL for diagnosis.

    RULES:
    - status_code is None when the failure happened before a response
      existed (e.g. a malformed payload in a 2xx response)
    - unauthorized is True only for HTTP 401
    """

    stage = "request"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str = "",
        url: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status {self.status_code}")
        if self.body:
            parts.append(f"response: {self.body}")
        if self.url:
            parts.append(f"request URL: {self.url}")
        return ". ".join(parts)

    @property
    def unauthorized(self) -> bool:
        """True when the service rejected the bearer token (HTTP 401)."""
        return self.status_code == 401


class AuthError(EkaCareAPIError):
    """Login or token refresh failed."""

    stage = "auth"


class NegotiationError(EkaCareAPIError):
    """The presigned upload target could not be obtained or was malformed."""

    stage = "negotiate"


class UploadError(EkaCareAPIError):
    """The storage endpoint rejected a file upload.

    RULES:
    - file_name names the file that failed; earlier files stay uploaded
    - uploaded lists the records of those earlier files when raised
      through upload_files()
    """

    stage = "upload"

    def __init__(
        self,
        file_name: str,
        status_code: int | None = None,
        body: str = "",
        url: str | None = None,
    ) -> None:
        self.file_name = file_name
        self.uploaded: list = []
        super().__init__(
            f"Upload failed for {file_name}",
            status_code=status_code,
            body=body,
            url=url,
        )


class InitError(EkaCareAPIError):
    """The transcription transaction could not be initialized."""

    stage = "initialize"


class StatusFetchError(EkaCareAPIError):
    """A single status fetch failed. Transient: absorbed by the poller."""

    stage = "status"


class PollTimeoutError(TimeoutError):
    """Raised when polling reaches the configured maximum duration.

    WHY: Long transcriptions may outlive a single wait. The caller can
    resume polling the same transaction with a fresh deadline.

    RULES:
    - Message includes the transaction id and elapsed seconds
    - last_status is the most recent snapshot fetched, or None
    """

    def __init__(
        self,
        transaction_id: str,
        elapsed_s: float,
        max_duration_s: float,
        last_status: TranscriptionStatus | None = None,
    ) -> None:
        self.transaction_id = transaction_id
        self.elapsed_s = elapsed_s
        self.max_duration_s = max_duration_s
        self.last_status = last_status
        super().__init__(
            f"Polling transaction {transaction_id} timed out after "
            f"{elapsed_s:.1f}s (limit: {max_duration_s:g}s)"
        )


class PollCancelledError(Exception):
    """Raised when the caller cancels polling before a terminal snapshot."""

    def __init__(self, transaction_id: str, elapsed_s: float) -> None:
        self.transaction_id = transaction_id
        self.elapsed_s = elapsed_s
        super().__init__(
            f"Polling transaction {transaction_id} cancelled after {elapsed_s:.1f}s"
        )


class DecodeError(ValueError):
    """An output's encoded value is not base64-encoded UTF-8 JSON.

    RULES:
    - preview holds at most the first 100 characters of the raw value
    """

    def __init__(self, message: str, preview: str) -> None:
        self.preview = preview
        super().__init__(message)
