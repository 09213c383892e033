"""Bounded polling of a transaction until every output is terminal.

WHY: Transcription is not instant. After init, the caller must poll
GET /voice/api/v3/status/{txn_id} until every requested output reports
success or failed, without waiting forever and without giving up on a
single flaky status response.

HOW: Fixed-interval polling against a monotonic deadline. Each cycle
checks the deadline, fetches a snapshot, and returns it if complete.
A failed fetch is logged and the loop carries on. Between cycles the
poller waits poll_interval_s, waking early if the caller sets the
cancel event.

RULES:
- Returns only a snapshot with at least one output, all terminal
  ("success"/"failed", case-insensitive); unknown statuses keep polling
- Raises PollTimeoutError once elapsed time >= max_duration_s
- StatusFetchError inside a cycle is logged at WARNING and absorbed
- Never polls faster than poll_interval_s
- Setting cancel_event stops further requests and raises PollCancelledError;
  task cancellation (asyncio.CancelledError) propagates unchanged
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ekacare_scribe.api.errors import (
    PollCancelledError,
    PollTimeoutError,
    StatusFetchError,
)
from ekacare_scribe.api.models import TranscriptionStatus
from ekacare_scribe.config import EKACARE_POLL_INTERVAL_S, EKACARE_POLL_TIMEOUT_S

if TYPE_CHECKING:
    from ekacare_scribe.api.client import EkaCareClient

logger = logging.getLogger(__name__)


async def _wait(interval_s: float, cancel_event: asyncio.Event | None) -> bool:
    """Sleep for interval_s. Returns True if cancel_event fired first."""
    if cancel_event is None:
        await asyncio.sleep(interval_s)
        return False
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=interval_s)
    except asyncio.TimeoutError:
        return False
    return True


async def poll_for_completion(
    client: EkaCareClient,
    transaction_id: str,
    max_duration_s: float = EKACARE_POLL_TIMEOUT_S,
    poll_interval_s: float = EKACARE_POLL_INTERVAL_S,
    cancel_event: asyncio.Event | None = None,
    on_status: Callable[[str], None] | None = None,
) -> TranscriptionStatus:
    """Poll a transaction until all outputs are terminal.

    Args:
        client: Authenticated EkaCareClient session.
        transaction_id: Transaction id from the upload negotiation.
        max_duration_s: Deadline measured from the first poll.
        poll_interval_s: Wait between consecutive polls.
        cancel_event: Optional event; setting it cancels the wait.
        on_status: Optional callback for status updates.

    Returns:
        The first complete TranscriptionStatus snapshot.
    """
    if poll_interval_s <= 0:
        raise ValueError("poll_interval_s must be positive")

    start_time = time.monotonic()
    last_status: TranscriptionStatus | None = None

    while True:
        elapsed = time.monotonic() - start_time
        if cancel_event is not None and cancel_event.is_set():
            raise PollCancelledError(transaction_id, elapsed)
        if elapsed >= max_duration_s:
            raise PollTimeoutError(transaction_id, elapsed, max_duration_s, last_status)

        if on_status:
            on_status("Polling status... (elapsed: {:.1f}s)".format(elapsed))

        try:
            status = await client.get_status(transaction_id)
        except StatusFetchError as exc:
            logger.warning("Error polling transaction %s: %s", transaction_id, exc)
            if on_status:
                on_status("Error during polling: {}".format(exc.message))
        else:
            last_status = status
            if status.is_complete:
                if on_status:
                    on_status("Transcription completed!")
                return status
            pending = [o.template_id for o in status.outputs if not o.is_terminal]
            logger.debug(
                "Transaction %s still pending: %s", transaction_id, pending or "no outputs yet"
            )

        if on_status:
            on_status("Waiting {:g} seconds before next poll...".format(poll_interval_s))
        if await _wait(poll_interval_s, cancel_event):
            raise PollCancelledError(transaction_id, time.monotonic() - start_time)
