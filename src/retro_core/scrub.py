"""Secret redaction for session text sent to the AI backend."""

import re

SCRUB_PATTERNS: list[tuple[re.Pattern, str]] = [
    # AWS access key IDs
    (re.compile(r"AKIA[0-9A-Z]{16}"), "[REDACTED_AWS_KEY]"),
    # GitHub tokens
    (re.compile(r"gh[ps]_[A-Za-z0-9_]{36,}"), "[REDACTED_GH_TOKEN]"),
    (re.compile(r"gho_[A-Za-z0-9_]{36,}"), "[REDACTED_GH_OAUTH]"),
    # key=..., token: ..., password=...
    (
        re.compile(
            r"(?i)(api[_-]?key|token|secret|password|passwd|authorization)"
            r"\s*[=:]\s*['\"]?([A-Za-z0-9_\-./+]{16,})['\"]?"
        ),
        r"\1=[REDACTED]",
    ),
    (re.compile(r"(?i)Bearer\s+[A-Za-z0-9_\-./+]{20,}"), "Bearer [REDACTED]"),
    (re.compile(r"-----BEGIN[A-Z ]*PRIVATE KEY-----"), "[REDACTED_PRIVATE_KEY]"),
    # Anthropic before OpenAI: sk-ant- would also match the sk- rule
    (re.compile(r"sk-ant-[A-Za-z0-9_\-]{20,}"), "[REDACTED_ANTHROPIC_KEY]"),
    (re.compile(r"sk-[A-Za-z0-9]{20,}"), "[REDACTED_OPENAI_KEY]"),
]


def scrub_secrets(text: str) -> str:
    """Replace anything that looks like a credential with a placeholder."""
    for pattern, replacement in SCRUB_PATTERNS:
        text = pattern.sub(replacement, text)
    return text
