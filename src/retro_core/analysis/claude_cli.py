"""
AI backend that spawns ``claude -p`` in non-interactive mode.

The prompt is piped via stdin; ``--output-format json`` wraps the model's
reply in ``{"result": "...", "is_error": false, ...}``.
"""

import json
import logging
import os
import subprocess
from typing import Any

from ..artifacts import parse_frontmatter_name
from ..config import get_ai_config
from ..exceptions import BackendError, GenerationError
from ..models import Pattern, PatternUpdate, SessionMarker
from ..util import strip_code_fences, truncate_for_error
from .backend import (
    ArtifactDraft,
    TokenUsage,
    ValidationResult,
    parse_pattern_updates,
    parse_validation,
)
from .prompts import build_analysis_prompt, build_generation_prompt, build_validation_prompt

logger = logging.getLogger(__name__)

CLAUDE_BINARY = "claude"


class ClaudeCliBackend:
    """Backend over the Claude Code CLI."""

    def __init__(self, config: dict[str, Any]):
        ai_config = get_ai_config(config)
        self.model: str = ai_config["model"]
        self.timeout: int = int(ai_config["timeout_seconds"])
        self.scrub: bool = bool(config.get("privacy", {}).get("scrub_secrets", True))
        self.usage = TokenUsage()

    @staticmethod
    def is_available() -> bool:
        """Check if the claude CLI is on PATH."""
        try:
            result = subprocess.run(
                [CLAUDE_BINARY, "--version"],
                capture_output=True,
                timeout=10,
                env=_child_env(),
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False

    def execute(self, prompt: str) -> str:
        """Run one prompt and return the inner result text.

        Raises:
            BackendError: Spawn failure, timeout, non-zero exit, error result,
                          or an unparseable wrapper
        """
        args = [
            CLAUDE_BINARY,
            "-p",
            "-",
            "--output-format",
            "json",
            "--model",
            self.model,
            "--max-turns",
            "1",
        ]
        try:
            result = subprocess.run(
                args,
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=_child_env(),
            )
        except subprocess.TimeoutExpired:
            raise BackendError(f"claude CLI timed out after {self.timeout}s")
        except OSError as e:
            raise BackendError(f"failed to spawn claude CLI: {e}. Is claude installed and on PATH?")

        if result.returncode != 0:
            raise BackendError(
                f"claude CLI exited with {result.returncode}: {truncate_for_error(result.stderr)}"
            )

        try:
            wrapper = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise BackendError(
                f"failed to parse claude CLI output: {e}\nraw output: "
                f"{truncate_for_error(result.stdout)}"
            )

        if not isinstance(wrapper, dict):
            raise BackendError("claude CLI output is not a JSON object")
        self.usage.add(*_usage_tokens(wrapper.get("usage")))
        if wrapper.get("is_error"):
            raise BackendError(f"claude CLI returned error: {wrapper.get('result') or 'unknown error'}")

        text = wrapper.get("result")
        if not isinstance(text, str) or not text.strip():
            raise BackendError("claude CLI returned empty result")
        return text

    def propose_patterns(
        self, sessions: list[SessionMarker], existing: list[Pattern]
    ) -> list[PatternUpdate]:
        prompt = build_analysis_prompt(sessions, existing, scrub=self.scrub)
        logger.debug(f"Analysis prompt: {len(prompt)} chars, {len(sessions)} sessions")
        return parse_pattern_updates(self.execute(prompt))

    def generate_artifact(self, pattern: Pattern, feedback: str | None = None) -> ArtifactDraft:
        content = strip_code_fences(self.execute(build_generation_prompt(pattern, feedback)))
        name = parse_frontmatter_name(content)
        if name is None:
            raise GenerationError(
                "The artifact must have valid YAML frontmatter with a 'name' field."
            )
        return ArtifactDraft(name=name, content=content)

    def validate_artifact(self, content: str, pattern: Pattern) -> ValidationResult:
        try:
            reply = self.execute(build_validation_prompt(content, pattern))
        except BackendError as e:
            # Structural validity is enough when the reviewer call fails
            logger.warning(f"Validation call failed, accepting structurally valid draft: {e}")
            return ValidationResult(valid=True)

        parsed = parse_validation(reply)
        if parsed is None:
            return ValidationResult(valid=True)
        return parsed


def _usage_tokens(usage: Any) -> tuple[int, int]:
    """(input, output) tokens from the CLI usage block; cache reads count as input."""
    if not isinstance(usage, dict):
        return 0, 0

    def count(key: str) -> int:
        value = usage.get(key)
        return value if isinstance(value, int) and not isinstance(value, bool) else 0

    input_tokens = (
        count("input_tokens")
        + count("cache_creation_input_tokens")
        + count("cache_read_input_tokens")
    )
    return input_tokens, count("output_tokens")


def _child_env() -> dict[str, str]:
    # Nested-session guard: the CLI refuses to run inside another session
    env = dict(os.environ)
    env.pop("CLAUDECODE", None)
    return env
