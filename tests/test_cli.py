"""Tests for the command-line interface.

WHY: The CLI is the main entry point for users. Argument parsing, option
defaults, and exit codes must stay stable for scripts that call it.

HOW: Tests exercise build_parser() and the value parsers directly, and
run main() with run_workflow patched to a stub so no network is used.
"""

from __future__ import annotations

import argparse
import json
from unittest.mock import patch

import httpx
import pytest

from ekacare_scribe.api.errors import NegotiationError, PollCancelledError, PollTimeoutError
from ekacare_scribe.api.models import OutputTemplate
from ekacare_scribe.cli import (
    EXIT_CANCELLED,
    EXIT_ERROR,
    EXIT_TIMEOUT,
    _options_from_args,
    build_parser,
    main,
    parse_additional_data,
    parse_template,
)
from ekacare_scribe.config import EKACARE_POLL_INTERVAL_S, EKACARE_POLL_TIMEOUT_S


@pytest.fixture
def credentials_env(monkeypatch):
    monkeypatch.setenv("EKACARE_CLIENT_ID", "client-1")
    monkeypatch.setenv("EKACARE_CLIENT_SECRET", "secret-1")


class TestParseTemplate:
    def test_plain_id(self):
        assert parse_template("transcript_template") == OutputTemplate("transcript_template")

    def test_codify_flag(self):
        template = parse_template("clinical_notes_template:codify")
        assert template.template_id == "clinical_notes_template"
        assert template.codification_needed is True

    def test_unknown_flag(self):
        with pytest.raises(argparse.ArgumentTypeError, match="Unknown template flag"):
            parse_template("t:fast")

    def test_empty_id(self):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_template(":codify")


class TestParseAdditionalData:
    def test_object(self):
        assert parse_additional_data('{"b": 1, "a": [2]}') == {"b": 1, "a": [2]}

    def test_invalid_json(self):
        with pytest.raises(argparse.ArgumentTypeError, match="Invalid JSON"):
            parse_additional_data("{nope")

    def test_non_object(self):
        with pytest.raises(argparse.ArgumentTypeError, match="JSON object"):
            parse_additional_data("[1, 2]")


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["a.mp3"])
        options = _options_from_args(args)
        assert args.files == ["a.mp3"]
        assert options.action == "ekascribe-v2"
        assert options.input_languages == ["en-IN"]
        assert options.output_templates == [OutputTemplate("transcript_template")]
        assert options.poll_interval_s == EKACARE_POLL_INTERVAL_S
        assert options.max_duration_s == EKACARE_POLL_TIMEOUT_S
        assert options.speciality is None

    def test_repeatable_options(self):
        args = build_parser().parse_args([
            "a.mp3", "b.wav",
            "--input-language", "en-IN",
            "--input-language", "hi",
            "--template", "transcript_template",
            "--template", "clinical_notes_template:codify",
            "--additional-data", '{"visit": 3}',
            "--poll-interval", "2",
        ])
        options = _options_from_args(args)
        assert args.files == ["a.mp3", "b.wav"]
        assert options.input_languages == ["en-IN", "hi"]
        assert [t.template_id for t in options.output_templates] == [
            "transcript_template",
            "clinical_notes_template",
        ]
        assert options.output_templates[1].codification_needed
        assert options.additional_data == {"visit": 3}
        assert options.poll_interval_s == 2.0

    def test_requires_a_file(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


def _fake_result():
    class Result:
        uploaded_files = []
        outputs = []

        def to_dict(self):
            return {"transaction_id": "txn123", "outputs": []}

    return Result()


class TestMain:
    def test_missing_file_exits_with_error(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main([str(tmp_path / "missing.mp3")])
        assert excinfo.value.code == EXIT_ERROR
        assert "File not found" in capsys.readouterr().err

    def test_unsupported_extension_exits_with_error(self, tmp_path, capsys):
        path = tmp_path / "notes.txt"
        path.write_text("hi")
        with pytest.raises(SystemExit) as excinfo:
            main([str(path)])
        assert excinfo.value.code == EXIT_ERROR
        assert "Unsupported file type" in capsys.readouterr().err

    def test_missing_credentials_exits_with_error(self, audio_files, monkeypatch, capsys):
        monkeypatch.delenv("EKACARE_CLIENT_ID", raising=False)
        monkeypatch.delenv("EKACARE_CLIENT_SECRET", raising=False)
        with pytest.raises(SystemExit) as excinfo:
            main([str(audio_files[0])])
        assert excinfo.value.code == EXIT_ERROR
        assert "EKACARE_CLIENT_ID" in capsys.readouterr().err

    def test_success_prints_json(self, audio_files, credentials_env, capsys):
        async def workflow(client, paths, options, on_status=None):
            assert client.credentials.client_id == "client-1"
            return _fake_result()

        with patch("ekacare_scribe.cli.run_workflow", new=workflow):
            main([str(p) for p in audio_files])

        out = capsys.readouterr().out
        assert json.loads(out) == {"transaction_id": "txn123", "outputs": []}

    def test_output_file(self, audio_files, credentials_env, tmp_path):
        async def workflow(client, paths, options, on_status=None):
            return _fake_result()

        target = tmp_path / "result.json"
        with patch("ekacare_scribe.cli.run_workflow", new=workflow):
            main([str(audio_files[0]), "--output", str(target)])

        assert json.loads(target.read_text(encoding="utf-8"))["transaction_id"] == "txn123"

    def test_timeout_exit_code_names_transaction(self, audio_files, credentials_env, capsys):
        async def workflow(*args, **kwargs):
            raise PollTimeoutError("txn123", 300.0, 300.0)

        with patch("ekacare_scribe.cli.run_workflow", new=workflow):
            with pytest.raises(SystemExit) as excinfo:
                main([str(audio_files[0])])

        assert excinfo.value.code == EXIT_TIMEOUT
        assert "txn123" in capsys.readouterr().err

    def test_cancel_exit_code(self, audio_files, credentials_env):
        async def workflow(*args, **kwargs):
            raise PollCancelledError("txn123", 3.0)

        with patch("ekacare_scribe.cli.run_workflow", new=workflow):
            with pytest.raises(SystemExit) as excinfo:
                main([str(audio_files[0])])
        assert excinfo.value.code == EXIT_CANCELLED

    def test_stage_error_exit_code(self, audio_files, credentials_env, capsys):
        async def workflow(*args, **kwargs):
            raise NegotiationError("Upload negotiation failed", status_code=500, body="down")

        with patch("ekacare_scribe.cli.run_workflow", new=workflow):
            with pytest.raises(SystemExit) as excinfo:
                main([str(audio_files[0])])
        assert excinfo.value.code == EXIT_ERROR
        assert "Upload negotiation failed" in capsys.readouterr().err


    def test_network_error_exits_with_error(self, audio_files, credentials_env, capsys):
        async def workflow(*args, **kwargs):
            raise httpx.ConnectError("All connection attempts failed")

        with patch("ekacare_scribe.cli.run_workflow", new=workflow):
            with pytest.raises(SystemExit) as excinfo:
                main([str(audio_files[0])])
        assert excinfo.value.code == EXIT_ERROR
        assert "All connection attempts failed" in capsys.readouterr().err
