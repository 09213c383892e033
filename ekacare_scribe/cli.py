"""Command-line interface for EkaCare Scribe.

WHY: Users need a simple way to transcribe local audio files from the
terminal. The CLI wires together the full workflow (credential loading,
login, upload negotiation, multipart upload, transaction init, polling,
and result decoding) behind a single command.

HOW: Uses argparse to accept one or more audio files plus request and
polling options. Runs the async workflow via asyncio.run(). Status
messages go to stderr; the JSON result set goes to stdout (or --output).

RULES:
- Positional arguments: one or more audio file paths
- Validates existence and extension of every file before any API call
- Credentials come from .env (EKACARE_CLIENT_ID / EKACARE_CLIENT_SECRET)
- --template is repeatable; "id:codify" requests codification
- --additional-data must be a JSON object; it is sent untouched
- Exit codes: 0 success, 1 error, 2 poll timeout (resumable), 130 cancelled
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from ekacare_scribe.api.client import EkaCareClient
from ekacare_scribe.api.errors import (
    EkaCareAPIError,
    PollCancelledError,
    PollTimeoutError,
)
from ekacare_scribe.api.models import OutputTemplate
from ekacare_scribe.config import (
    DEFAULT_LANGUAGE,
    DEFAULT_MODE,
    DEFAULT_MODEL_TYPE,
    DEFAULT_TEMPLATE_ID,
    DEFAULT_TRANSFER,
    EKACARE_POLL_INTERVAL_S,
    EKACARE_POLL_TIMEOUT_S,
    EKACARE_UPLOAD_ACTION,
    SUPPORTED_AUDIO_FORMATS,
    load_credentials,
)
from ekacare_scribe.core.workflow import WorkflowOptions, run_workflow

EXIT_ERROR = 1
EXIT_TIMEOUT = 2
EXIT_CANCELLED = 130


def _status(msg: str) -> None:
    """Print a status message to stderr.

    WHY: Status output must not pollute stdout so the CLI can be piped.
    """
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str, code: int = EXIT_ERROR) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(code)


def parse_template(value: str) -> OutputTemplate:
    """Parse a --template value: "template_id" or "template_id:codify"."""
    template_id, _, flag = value.partition(":")
    template_id = template_id.strip()
    if not template_id:
        raise argparse.ArgumentTypeError("Template id must not be empty")
    flag = flag.strip().lower()
    if flag not in ("", "codify"):
        raise argparse.ArgumentTypeError(
            "Unknown template flag '{}' (expected 'codify')".format(flag)
        )
    return OutputTemplate(template_id=template_id, codification_needed=flag == "codify")


def parse_additional_data(value: str) -> Dict[str, Any]:
    """Parse --additional-data as a JSON object."""
    try:
        data = json.loads(value)
    except json.JSONDecodeError as exc:
        raise argparse.ArgumentTypeError("Invalid JSON: {}".format(exc))
    if not isinstance(data, dict):
        raise argparse.ArgumentTypeError("Additional data must be a JSON object")
    return data


def _validate_files(paths: List[str]) -> List[Path]:
    resolved = []
    for raw in paths:
        path = Path(raw).resolve()
        if not path.is_file():
            _fail("File not found: {}".format(path))
        ext = path.suffix.lower()
        if ext not in SUPPORTED_AUDIO_FORMATS:
            _fail(
                "Unsupported file type '{}'. Supported formats: {}".format(
                    ext, ", ".join(sorted(SUPPORTED_AUDIO_FORMATS))
                )
            )
        resolved.append(path)
    return resolved


def _options_from_args(args: argparse.Namespace) -> WorkflowOptions:
    return WorkflowOptions(
        action=args.action,
        mode=args.mode,
        transfer=args.transfer,
        model_type=args.model_type,
        input_languages=args.input_language or [DEFAULT_LANGUAGE],
        output_language=args.output_language,
        speciality=args.speciality,
        output_templates=args.template or [OutputTemplate(template_id=DEFAULT_TEMPLATE_ID)],
        additional_data=args.additional_data,
        sharing_key=args.sharing_key,
        max_duration_s=args.max_duration,
        poll_interval_s=args.poll_interval,
    )


async def _run_pipeline(args: argparse.Namespace) -> None:
    """Execute the full workflow and write the result set.

    RULES:
    - File and config errors are reported before any API call
    - A poll timeout prints the transaction id so polling can be resumed
    - Network failures (httpx.HTTPError) exit 1 with a message
    """
    file_paths = _validate_files(args.files)

    try:
        credentials = load_credentials()
    except ValueError as e:
        _fail(str(e))

    options = _options_from_args(args)

    try:
        async with EkaCareClient(credentials, base_url=args.base_url) as client:
            result = await run_workflow(client, file_paths, options, on_status=_status)
    except PollTimeoutError as e:
        _status(str(e))
        _fail(
            "Transcription not finished; resume polling transaction {}".format(e.transaction_id),
            EXIT_TIMEOUT,
        )
    except PollCancelledError as e:
        _status(str(e))
        sys.exit(EXIT_CANCELLED)
    except (EkaCareAPIError, FileNotFoundError, ValueError) as e:
        _fail(str(e))
    except httpx.HTTPError as e:
        _fail("Request to EkaCare failed: {}".format(e))

    for uploaded in result.uploaded_files:
        _status("Uploaded: {} ({:,} bytes) -> {}".format(
            uploaded.file_name, uploaded.size_bytes, uploaded.key
        ))
    for output in result.outputs:
        if output.decode_error:
            _status("Could not decode {}: {}".format(output.template_id, output.decode_error))
            _status("  Raw value: {}...".format(output.raw_preview))
        if output.errors:
            _status("Errors ({}): {}".format(output.template_id, output.errors))
        if output.warnings:
            _status("Warnings ({}): {}".format(output.template_id, output.warnings))

    text = json.dumps(result.to_dict(), indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        _status("Saved results to {}".format(args.output))
    else:
        print(text)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable: tests can inspect the parser without running the workflow.
    """
    parser = argparse.ArgumentParser(
        prog="ekacare-scribe",
        description="Transcribe medical audio files with the EkaCare API and "
                    "print the decoded results as JSON.",
    )

    parser.add_argument(
        "files",
        nargs="+",
        help="Audio files to upload as one transcription batch.",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Override the EkaCare API base URL.",
    )
    parser.add_argument(
        "--action",
        default=EKACARE_UPLOAD_ACTION,
        help="Upload action tag (default: %(default)s).",
    )
    parser.add_argument("--mode", default=DEFAULT_MODE, help="Mode (default: %(default)s).")
    parser.add_argument(
        "--transfer",
        default=DEFAULT_TRANSFER,
        help="Transfer type (default: %(default)s).",
    )
    parser.add_argument(
        "--model-type",
        default=DEFAULT_MODEL_TYPE,
        help="Model type (default: %(default)s).",
    )
    parser.add_argument(
        "--input-language",
        action="append",
        default=None,
        help="Input language code; repeat for several (default: {}).".format(DEFAULT_LANGUAGE),
    )
    parser.add_argument(
        "--output-language",
        default=DEFAULT_LANGUAGE,
        help="Output language code (default: %(default)s).",
    )
    parser.add_argument(
        "--speciality",
        default=None,
        help="Medical speciality, e.g. general_medicine.",
    )
    parser.add_argument(
        "--template",
        action="append",
        type=parse_template,
        default=None,
        help="Output template id, optionally 'id:codify'. Repeatable "
             "(default: {}).".format(DEFAULT_TEMPLATE_ID),
    )
    parser.add_argument(
        "--additional-data",
        type=parse_additional_data,
        default=None,
        help="JSON object attached to the transaction as-is.",
    )
    parser.add_argument(
        "--sharing-key",
        default=None,
        help="Optional sharing key sent at login.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=EKACARE_POLL_INTERVAL_S,
        help="Seconds between status polls (default: %(default)s).",
    )
    parser.add_argument(
        "--max-duration",
        type=float,
        default=EKACARE_POLL_TIMEOUT_S,
        help="Maximum seconds to wait for results (default: %(default)s).",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Write the JSON results to this file instead of stdout.",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Ctrl-C cancels the running workflow and exits with 130
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        asyncio.run(_run_pipeline(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(EXIT_CANCELLED)


if __name__ == "__main__":
    main()
