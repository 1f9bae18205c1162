"""Tests for AI response parsing and the Claude CLI backend."""

import json
import subprocess
from unittest.mock import patch

import pytest

from retro_core.analysis.backend import parse_pattern_updates, parse_validation
from retro_core.analysis.claude_cli import ClaudeCliBackend, _child_env
from retro_core.analysis.prompts import MAX_SESSION_CHARS, build_analysis_prompt, load_session_excerpt
from retro_core.exceptions import BackendError, GenerationError
from retro_core.models import NewPattern, PatternType, SuggestedTarget, UpdateExisting


class TestParsePatternUpdates:
    def test_new_and_update(self):
        text = json.dumps(
            {
                "patterns": [
                    {
                        "action": "new",
                        "pattern_type": "recurring_mistake",
                        "description": " Forgets to run migrations ",
                        "confidence": 0.7,
                        "source_sessions": ["s1"],
                        "suggested_target": "skill",
                    },
                    {"action": "update", "existing_id": "p1", "new_sessions": ["s2"], "new_confidence": 0.9},
                ]
            }
        )
        new, update = parse_pattern_updates(text)
        assert isinstance(new, NewPattern)
        assert new.description == "Forgets to run migrations"
        assert new.pattern_type == PatternType.RECURRING_MISTAKE
        assert new.suggested_target == SuggestedTarget.SKILL
        assert isinstance(update, UpdateExisting)
        assert update.existing_id == "p1"
        assert update.draft is None

    def test_code_fences_stripped(self):
        text = '```json\n{"patterns": []}\n```'
        assert parse_pattern_updates(text) == []

    def test_update_with_description_carries_draft(self):
        text = json.dumps(
            {"patterns": [{"action": "update", "existing_id": "ghost", "new_confidence": 0.8, "description": "Use uv"}]}
        )
        [update] = parse_pattern_updates(text)
        assert update.draft.description == "Use uv"
        assert update.draft.confidence == 0.8

    def test_bad_items_skipped(self):
        text = json.dumps(
            {
                "patterns": [
                    "nope",
                    {"action": "delete"},
                    {"action": "new", "confidence": 0.5},
                    {"action": "new", "description": "x", "confidence": "high"},
                    {"action": "update", "new_confidence": 0.5},
                    {"action": "new", "description": "kept", "confidence": 0.5, "suggested_target": "weird"},
                ]
            }
        )
        [kept] = parse_pattern_updates(text)
        assert kept.description == "kept"
        assert kept.suggested_target == SuggestedTarget.DB_ONLY

    @pytest.mark.parametrize(
        "field,value",
        [
            ("suggested_content", {"body": "oops"}),
            ("related_files", "src/app.py"),
            ("source_sessions", [1, 2]),
            ("suggested_target", ["skill"]),
            ("confidence", True),
        ],
    )
    def test_wrongly_typed_field_drops_only_that_item(self, field, value):
        """A wrongly typed field skips its item; the rest of the response survives."""
        bad = {"action": "new", "description": "Broken item", "confidence": 0.8, field: value}
        text = json.dumps(
            {"patterns": [{"action": "new", "description": "Good item", "confidence": 0.8}, bad]}
        )
        [kept] = parse_pattern_updates(text)
        assert kept.description == "Good item"

    @pytest.mark.parametrize("text", ["not json", "[]", '{"items": []}', '{"patterns": {}}'])
    def test_wrong_shape_raises(self, text):
        with pytest.raises(BackendError):
            parse_pattern_updates(text)


class TestParseValidation:
    def test_valid(self):
        assert parse_validation('{"valid": false, "feedback": "vague"}').feedback == "vague"

    def test_unparseable(self):
        assert parse_validation("looks good to me") is None
        assert parse_validation('{"valid": "yes"}') is None


def _completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=["claude"], returncode=returncode, stdout=stdout, stderr=stderr)


def _wrapped(result, is_error=False):
    return _completed(json.dumps({"result": result, "is_error": is_error}))


class TestClaudeCliBackend:
    @pytest.fixture
    def backend(self, config):
        return ClaudeCliBackend(config)

    def test_execute_passes_prompt_on_stdin(self, backend):
        with patch("retro_core.analysis.claude_cli.subprocess.run", return_value=_wrapped("ok")) as run:
            assert backend.execute("hello") == "ok"
        args, kwargs = run.call_args
        assert args[0][:3] == ["claude", "-p", "-"]
        assert "--model" in args[0]
        assert kwargs["input"] == "hello"
        assert kwargs["timeout"] == 600

    def test_usage_accumulates_across_calls(self, backend):
        reply = _completed(
            json.dumps(
                {
                    "result": "ok",
                    "is_error": False,
                    "usage": {
                        "input_tokens": 100,
                        "cache_creation_input_tokens": 20,
                        "cache_read_input_tokens": 5,
                        "output_tokens": 40,
                    },
                }
            )
        )
        with patch("retro_core.analysis.claude_cli.subprocess.run", return_value=reply):
            backend.execute("one")
            backend.execute("two")
        with patch("retro_core.analysis.claude_cli.subprocess.run", return_value=_wrapped("no usage")):
            backend.execute("three")
        assert (backend.usage.input_tokens, backend.usage.output_tokens) == (250, 80)

    def test_child_env_drops_nested_session_marker(self, monkeypatch):
        monkeypatch.setenv("CLAUDECODE", "1")
        assert "CLAUDECODE" not in _child_env()

    @pytest.mark.parametrize(
        "side_effect",
        [
            subprocess.TimeoutExpired(cmd="claude", timeout=600),
            FileNotFoundError("claude"),
        ],
    )
    def test_spawn_failures(self, backend, side_effect):
        with patch("retro_core.analysis.claude_cli.subprocess.run", side_effect=side_effect):
            with pytest.raises(BackendError):
                backend.execute("hello")

    @pytest.mark.parametrize(
        "completed",
        [
            _completed(returncode=1, stderr="boom"),
            _completed("not json"),
            _wrapped("rate limited", is_error=True),
            _wrapped("   "),
        ],
    )
    def test_bad_results(self, backend, completed):
        with patch("retro_core.analysis.claude_cli.subprocess.run", return_value=completed):
            with pytest.raises(BackendError):
                backend.execute("hello")

    def test_generate_requires_frontmatter_name(self, backend, make_pattern):
        with patch("retro_core.analysis.claude_cli.subprocess.run", return_value=_wrapped("no frontmatter")):
            with pytest.raises(GenerationError):
                backend.generate_artifact(make_pattern())

    def test_generate_strips_fences(self, backend, make_pattern):
        reply = "```markdown\n---\nname: lint-first\n---\nRun the linter.\n```"
        with patch("retro_core.analysis.claude_cli.subprocess.run", return_value=_wrapped(reply)):
            draft = backend.generate_artifact(make_pattern())
        assert draft.name == "lint-first"
        assert draft.content.startswith("---")

    def test_validation_failure_accepts_draft(self, backend, make_pattern):
        with patch("retro_core.analysis.claude_cli.subprocess.run", return_value=_completed(returncode=1)):
            assert backend.validate_artifact("content", make_pattern()).valid


class TestPrompts:
    def test_excerpt_scrubs_and_truncates(self, make_session, write_transcript):
        marker = make_session("s1")
        write_transcript("s1", messages=["token=abcdefghijklmnopqrstuvwx", "x" * (MAX_SESSION_CHARS * 2)])

        excerpt = load_session_excerpt(marker)

        assert "abcdefghijklmnopqrstuvwx" not in excerpt
        assert len(excerpt) <= MAX_SESSION_CHARS

    def test_analysis_prompt_lists_existing(self, make_session, make_pattern):
        pattern = make_pattern(description="Use uv instead of pip")
        prompt = build_analysis_prompt([make_session("s1")], [pattern])
        assert pattern.id in prompt
        assert '"session_id": "s1"' in prompt
