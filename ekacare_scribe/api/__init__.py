"""EkaCare API package: async HTTP interface to the transcription service.

WHY: Submitting audio means logging in, negotiating a presigned upload,
uploading files, initializing a transaction, and polling its status. This
package encapsulates all EkaCare communication behind a session client,
an object uploader, and a poller.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. EkaCareClient holds
the session token; ObjectUploader talks to the storage endpoint with a
separate unauthenticated client; poll_for_completion drives status
polling. Response data is parsed into dataclasses defined in models.py.

RULES:
- All HTTP calls go through this package (no direct httpx usage elsewhere)
- Authentication is via a Bearer token obtained from login()/refresh()
- Errors are typed (see errors.py); no internal retries
"""

from ekacare_scribe.api.client import EkaCareClient
from ekacare_scribe.api.errors import (
    AuthError,
    DecodeError,
    EkaCareAPIError,
    InitError,
    NegotiationError,
    PollCancelledError,
    PollTimeoutError,
    StatusFetchError,
    UploadError,
)
from ekacare_scribe.api.models import (
    Credentials,
    InitResult,
    OutputTemplate,
    Token,
    TranscriptionOutput,
    TranscriptionRequest,
    TranscriptionStatus,
    UploadedFile,
    UploadTarget,
)
from ekacare_scribe.api.poller import poll_for_completion
from ekacare_scribe.api.uploader import ObjectUploader, upload_files

__all__ = [
    "AuthError",
    "Credentials",
    "DecodeError",
    "EkaCareAPIError",
    "EkaCareClient",
    "InitError",
    "InitResult",
    "NegotiationError",
    "ObjectUploader",
    "OutputTemplate",
    "PollCancelledError",
    "PollTimeoutError",
    "StatusFetchError",
    "Token",
    "TranscriptionOutput",
    "TranscriptionRequest",
    "TranscriptionStatus",
    "UploadError",
    "UploadTarget",
    "UploadedFile",
    "poll_for_completion",
    "upload_files",
]
