"""Async HTTP client for the EkaCare transcription API.

WHY: Submitting audio for transcription is a chain of dependent calls:
login → negotiate a presigned upload target → upload files → initialize
the transaction → poll status. This module holds the authenticated
session and the per-stage calls against the transcription API so callers
(CLI, HTTP layer, workflow driver, tests) never touch HTTP details.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. EkaCareClient is an
async context manager: enter it to open the connection pool, exit to close
it. The session's bearer token is set by login()/refresh() (or adopted via
set_access_token) and attached per request, so a refreshed token is used
by every later call. Each API step is a separate method:
login → get_upload_target → upload_files → initialize → get_status.

RULES:
- Always use the async context manager (async with EkaCareClient(...) as client:)
- Credentials and tokens are explicit constructor/method arguments; the
  client never falls back to configuration on its own
- Authenticated calls without a token raise RuntimeError before any request
- Stage failures raise typed errors carrying status, body, and URL
- No retries: transport errors from httpx propagate, except inside
  get_status where they become a transient StatusFetchError
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import jsonschema

from ekacare_scribe.api.errors import (
    AuthError,
    InitError,
    NegotiationError,
    StatusFetchError,
)
from ekacare_scribe.api.models import (
    Credentials,
    InitResult,
    Token,
    TranscriptionRequest,
    TranscriptionStatus,
    UploadedFile,
    UploadTarget,
)
from ekacare_scribe.api.uploader import upload_files
from ekacare_scribe.config import (
    EKACARE_BASE_URL,
    EKACARE_UPLOAD_ACTION,
    EKACARE_USER_AGENT,
)

LOGIN_PATH = "/connect-auth/v1/account/login"
REFRESH_PATH = "/connect-auth/v1/account/refresh-token"
UPLOAD_NEGOTIATION_PATH = "/v1/file-upload"
INIT_PATH = "/voice/api/v2/transaction/init/{txn_id}"
STATUS_PATH = "/voice/api/v3/status/{txn_id}"

DEFAULT_TIMEOUT = httpx.Timeout(300.0, connect=30.0)


def _is_success(resp: httpx.Response) -> bool:
    return 200 <= resp.status_code < 300


class EkaCareClient:
    """Async session against the EkaCare transcription API.

    WHY: Every stage after login needs the same bearer token and the same
    connection pool. Holding both in one session object keeps independent
    transactions independent: each gets its own client.

    HOW: Wraps httpx.AsyncClient with the service base URL and a
    User-Agent header. The token is stored on the instance and sent as
    an Authorization header on each authenticated call.

    RULES:
    - Use as: async with EkaCareClient(credentials) as client: ...
    - base_url defaults to EKACARE_BASE_URL from config
    - access_token may be supplied to adopt an existing session
    - transport / upload_transport are for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        credentials: Credentials | None = None,
        base_url: str | None = None,
        access_token: str | None = None,
        timeout: httpx.Timeout | float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        upload_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._base_url = (base_url or EKACARE_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else DEFAULT_TIMEOUT
        self._transport = transport
        self._upload_transport = upload_transport
        self._access_token = access_token
        self._token: Token | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> EkaCareClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": EKACARE_USER_AGENT},
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "EkaCareClient must be used as an async context manager: "
                "async with EkaCareClient(credentials) as client: ..."
            )
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        if not self._access_token:
            raise RuntimeError(
                "No access token: call login() or set_access_token() first."
            )
        return {"Authorization": f"Bearer {self._access_token}"}

    # ------------------------------------------------------------------
    # Session token
    # ------------------------------------------------------------------

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def token(self) -> Token | None:
        """The token pair from the last login/refresh, if any."""
        return self._token

    @property
    def credentials(self) -> Credentials | None:
        return self._credentials

    def set_access_token(self, access_token: str) -> None:
        """Adopt an access token obtained elsewhere for subsequent calls."""
        self._access_token = access_token

    # ------------------------------------------------------------------
    # Step 1: Login / refresh
    # ------------------------------------------------------------------

    async def login(
        self,
        sharing_key: str | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> Token:
        """Exchange the client credentials for a token pair.

        WHY: Every other API call needs a bearer token.

        HOW: POSTs {client_id, client_secret, sharing_key} to the login
        endpoint and parses the token payload. On success the access token
        becomes the session token.

        RULES:
        - sharing_key is sent as "" when not given
        - Raises AuthError on non-2xx or on a payload without access_token

        Args:
            sharing_key: Optional sharing key for delegated access.
            on_status: Optional callback for status updates.

        Returns:
            The new Token.
        """
        client = self._ensure_client()
        if self._credentials is None:
            raise RuntimeError("login() requires credentials")
        if on_status:
            on_status("Authenticating...")

        body = {
            "client_id": self._credentials.client_id,
            "client_secret": self._credentials.client_secret,
            "sharing_key": sharing_key or "",
        }
        resp = await client.post(LOGIN_PATH, json=body)
        token = self._parse_token(resp, "Authentication failed")
        self._set_token(token)
        return token

    async def refresh(
        self,
        refresh_token: str,
        access_token: str,
        on_status: Callable[[str], None] | None = None,
    ) -> Token:
        """Exchange a known access token and its refresh token for a new pair.

        WHY: Access tokens expire. Callers that see a 401 (see
        EkaCareAPIError.unauthorized) refresh and retry.

        HOW: POSTs {refresh_token, access_token} with the old access token
        as the bearer credential and the client id in a Client-Id header.

        RULES:
        - Requires credentials (for the client id)
        - Raises AuthError on non-2xx
        - In-flight calls already carrying the old token are not retried
        """
        client = self._ensure_client()
        if self._credentials is None:
            raise RuntimeError("refresh() requires credentials (client id)")
        if on_status:
            on_status("Refreshing access token...")

        resp = await client.post(
            REFRESH_PATH,
            json={"refresh_token": refresh_token, "access_token": access_token},
            headers={
                "Authorization": f"Bearer {access_token}",
                "Client-Id": self._credentials.client_id,
            },
        )
        token = self._parse_token(resp, "Token refresh failed")
        self._set_token(token)
        return token

    def _set_token(self, token: Token) -> None:
        self._token = token
        self._access_token = token.access_token

    @staticmethod
    def _parse_token(resp: httpx.Response, failure: str) -> Token:
        url = str(resp.request.url)
        if not _is_success(resp):
            raise AuthError(failure, status_code=resp.status_code, body=resp.text, url=url)
        try:
            return Token.from_dict(resp.json())
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise AuthError(
                f"{failure}: malformed token response ({exc})",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            ) from exc

    # ------------------------------------------------------------------
    # Step 2: Negotiate upload target
    # ------------------------------------------------------------------

    async def get_upload_target(
        self,
        action: str = EKACARE_UPLOAD_ACTION,
        on_status: Callable[[str], None] | None = None,
    ) -> UploadTarget:
        """Request a presigned upload target for a new transaction.

        WHY: Audio goes straight to the storage endpoint, not through the
        API. The service hands out a presigned form, a folder path, and
        the transaction id that later stages use.

        HOW: Authenticated POST with ?action=<tag> and no body. The
        response is validated against UPLOAD_DESCRIPTOR_SCHEMA.

        RULES:
        - Raises NegotiationError on non-2xx
        - A missing or malformed uploadData/folderPath is a fatal
          NegotiationError, never retried
        """
        client = self._ensure_client()
        headers = self._auth_headers()
        if on_status:
            on_status("Requesting upload target...")

        resp = await client.post(
            UPLOAD_NEGOTIATION_PATH,
            params={"action": action},
            headers=headers,
        )
        url = str(resp.request.url)
        if not _is_success(resp):
            raise NegotiationError(
                "Upload negotiation failed",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            )

        try:
            return UploadTarget.from_dict(resp.json())
        except ValueError as exc:
            raise NegotiationError(
                "Upload negotiation returned a non-JSON response",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            ) from exc
        except jsonschema.ValidationError as exc:
            raise NegotiationError(
                f"Malformed upload descriptor: {exc.message}",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            ) from exc

    # ------------------------------------------------------------------
    # Step 3: Upload files
    # ------------------------------------------------------------------

    async def upload_files(
        self,
        target: UploadTarget,
        local_paths: list[str | Path],
        on_status: Callable[[str], None] | None = None,
    ) -> list[UploadedFile]:
        """Upload local files to the negotiated target.

        Delegates to ekacare_scribe.api.uploader.upload_files, which uses
        a separate client that never carries this session's bearer token.
        """
        return await upload_files(
            target,
            local_paths,
            timeout=self._timeout,
            transport=self._upload_transport,
            on_status=on_status,
        )

    # ------------------------------------------------------------------
    # Step 4: Initialize transaction
    # ------------------------------------------------------------------

    async def initialize(
        self,
        transaction_id: str,
        request: TranscriptionRequest,
        on_status: Callable[[str], None] | None = None,
    ) -> InitResult:
        """Declare what should be produced for the uploaded batch.

        WHY: Uploading alone does not start processing. The init call
        tells the service which files form the batch and which templates,
        languages, and specialty to use.

        HOW: Authenticated POST of request.to_dict() (unset optional fields
        omitted) to /voice/api/v2/transaction/init/{txn_id}.

        RULES:
        - Raises InitError on non-2xx with status, body, and request URL
        """
        client = self._ensure_client()
        headers = self._auth_headers()
        if on_status:
            on_status("Initializing transaction {}...".format(transaction_id))

        resp = await client.post(
            INIT_PATH.format(txn_id=transaction_id),
            json=request.to_dict(),
            headers=headers,
        )
        url = str(resp.request.url)
        if not _is_success(resp):
            raise InitError(
                "Initialize transaction failed",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            )

        try:
            return InitResult.from_dict(resp.json())
        except (ValueError, AttributeError) as exc:
            raise InitError(
                "Initialize transaction returned a malformed response",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            ) from exc

    # ------------------------------------------------------------------
    # Step 5: Status
    # ------------------------------------------------------------------

    async def get_status(self, transaction_id: str) -> TranscriptionStatus:
        """Fetch one status snapshot for a transaction.

        RULES:
        - Any failure (transport error, non-2xx, malformed payload) raises
          StatusFetchError; the poller treats it as transient
        """
        client = self._ensure_client()
        headers = self._auth_headers()
        path = STATUS_PATH.format(txn_id=transaction_id)

        try:
            resp = await client.get(path, headers=headers)
        except httpx.HTTPError as exc:
            raise StatusFetchError(
                f"Status request failed: {exc}",
                url=self._base_url + path,
            ) from exc

        url = str(resp.request.url)
        if not _is_success(resp):
            raise StatusFetchError(
                "Status request failed",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            )

        try:
            return TranscriptionStatus.from_dict(resp.json())
        except (ValueError, TypeError, AttributeError) as exc:
            raise StatusFetchError(
                "Status response was malformed",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            ) from exc
