"""Multipart upload of local audio files to a presigned storage target.

WHY: The transcription service does not accept audio directly. It hands
out a presigned form (URL + fields) for an object store, and every file
of the batch is posted there under folder_path + file_name.

HOW: ObjectUploader owns its own httpx.AsyncClient, separate from the API
session and without an Authorization header. For each path, in input
order, it checks the file exists, builds the form (key first, then the
presigned fields, then the file bytes), and POSTs it to target.url.

RULES:
- The file part is always the last part of the multipart body; the
  object store ignores fields sent after it
- The bearer token of the transcription API is never sent to storage
- A missing file raises FileNotFoundError before any request for it;
  files uploaded before it stay recorded on the uploader, and
  upload_files() copies them onto the raised error as exc.uploaded
- HTTP 200 and 204 are success; any other status raises UploadError
- No retries; the first failure aborts the batch
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import httpx

from ekacare_scribe.api.errors import UploadError
from ekacare_scribe.api.models import UploadedFile, UploadTarget

logger = logging.getLogger(__name__)

_UPLOAD_OK_STATUSES = (200, 204)


def build_form_fields(target: UploadTarget, file_name: str) -> dict[str, str]:
    """Return the non-file form fields in the order they must be sent.

    RULES:
    - "key" comes first and equals target.folder_path + file_name
    - every presigned field follows, except one literally named "key"
    """
    fields = {"key": target.key_for(file_name)}
    for name, value in target.fields.items():
        if name != "key":
            fields[name] = value
    return fields


class ObjectUploader:
    """Uploads files to one presigned target with an unauthenticated client.

    RULES:
    - Use as: async with ObjectUploader(target) as uploader: ...
    - uploaded lists every file that reached the store, in input order,
      including those uploaded before a failure
    """

    def __init__(
        self,
        target: UploadTarget,
        timeout: httpx.Timeout | float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.target = target
        self.uploaded: list[UploadedFile] = []
        self._timeout = timeout if timeout is not None else httpx.Timeout(300.0, connect=30.0)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ObjectUploader:
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    async def upload_all(
        self,
        local_paths: list[str | Path],
        on_status: Callable[[str], None] | None = None,
    ) -> list[UploadedFile]:
        for local_path in local_paths:
            self.uploaded.append(await self.upload_one(local_path, on_status=on_status))
        return list(self.uploaded)

    async def upload_one(
        self,
        local_path: str | Path,
        on_status: Callable[[str], None] | None = None,
    ) -> UploadedFile:
        """Upload a single file and return its record."""
        if self._client is None:
            raise RuntimeError(
                "ObjectUploader must be used as an async context manager"
            )

        path = Path(local_path)
        if not path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        file_name = path.name
        content = path.read_bytes()
        data = build_form_fields(self.target, file_name)
        if on_status:
            on_status("Uploading {} ({:,} bytes)...".format(file_name, len(content)))

        resp = await self._client.post(
            self.target.url,
            data=data,
            files={"file": (file_name, content)},
        )

        if resp.status_code not in _UPLOAD_OK_STATUSES:
            raise UploadError(
                file_name,
                status_code=resp.status_code,
                body=resp.text,
                url=self.target.url,
            )

        logger.info("Uploaded %s as %s", file_name, data["key"])
        return UploadedFile(
            key=data["key"],
            file_name=file_name,
            size_bytes=len(content),
            success=True,
        )


async def upload_files(
    target: UploadTarget,
    local_paths: list[str | Path],
    timeout: httpx.Timeout | float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    on_status: Callable[[str], None] | None = None,
) -> list[UploadedFile]:
    """Upload every path to target sequentially and return the records.

    Args:
        target: Upload target from EkaCareClient.get_upload_target().
        local_paths: Local audio files, uploaded in this order.
        timeout: Optional httpx timeout for the storage client.
        transport: Optional httpx transport (tests).
        on_status: Optional callback for status updates.

    Returns:
        One UploadedFile per path, in input order.

    Raises:
        UploadError, FileNotFoundError: with an ``uploaded`` attribute
            listing the files stored before the failure.
    """
    async with ObjectUploader(target, timeout=timeout, transport=transport) as uploader:
        try:
            return await uploader.upload_all(local_paths, on_status=on_status)
        except (UploadError, FileNotFoundError) as exc:
            exc.uploaded = list(uploader.uploaded)
            raise
