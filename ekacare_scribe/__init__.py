"""EkaCare Scribe: client for the EkaCare medical transcription service.

WHY: Getting a structured transcription out of EkaCare takes a chain of
dependent calls with partial-failure points: login, presigned upload
negotiation, multipart upload to object storage, transaction init, bounded
status polling, and base64 result decoding. This package runs that chain
and reports each failure with enough context to act on.

HOW: Three layers: api (HTTP session, uploader, poller), core (decoder
and workflow driver), and thin front ends (CLI, FastAPI server). Each
layer is independently testable.

RULES:
- Sessions (credentials, tokens) are always passed explicitly
- Stage errors abort the workflow; status-fetch and decode errors do not
"""

__version__ = "0.1.0"
