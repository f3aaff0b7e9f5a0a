"""
User input sanitization applied before a reply is captured into a session.

Strips common prompt-injection markers so captured values can be handed
to downstream tools that may build prompts from them.
"""
from __future__ import annotations

import re
from typing import Union

import structlog

from config.settings import SecurityConfig

logger = structlog.get_logger()

REDACTED = "[REDACTED]"


class InputSanitizationError(ValueError):
    """Input is too long or does not match any allowed pattern."""


PROMPT_INJECTION_PATTERNS = [
    # instruction overrides
    re.compile(r"ignore\s+(previous|above|all|prior)\s+instructions?", re.IGNORECASE),
    re.compile(r"disregard\s+(previous|above|all|prior)\s+instructions?", re.IGNORECASE),
    re.compile(r"forget\s+(previous|above|all|prior)\s+instructions?", re.IGNORECASE),
    # system prompt markers
    re.compile(r"system\s*:\s*you\s+are", re.IGNORECASE),
    re.compile(r"\[\s*system\s*\]", re.IGNORECASE),
    re.compile(r"\{\s*system\s*\}", re.IGNORECASE),
    # role markers
    re.compile(r"\bhuman\s*:", re.IGNORECASE),
    re.compile(r"\bassistant\s*:", re.IGNORECASE),
    re.compile(r"\buser\s*:", re.IGNORECASE),
    # special tokens
    re.compile(r"<\|.*?\|>"),
    re.compile(r"</?(?:system|human|assistant|user)>", re.IGNORECASE),
]

_WHITESPACE = re.compile(r"\s+")


def _matches_any(text: str, patterns: list[str]) -> bool:
    for pattern in patterns:
        try:
            if re.search(pattern, text):
                return True
        except re.error:
            logger.warning("invalid_allowed_input_pattern", pattern=pattern)
    return False


def sanitize_input(value: Union[str, int, float], security: SecurityConfig) -> Union[str, int, float]:
    """
    Clean a raw reply. Numbers pass through unchanged.

    Raises:
        InputSanitizationError: input longer than ``max_input_length`` or,
            when ``allowed_input_patterns`` is configured, matching none.
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value

    text = str(value)
    if len(text) > security.max_input_length:
        raise InputSanitizationError(
            f"Input exceeds maximum length of {security.max_input_length} characters")

    for pattern in PROMPT_INJECTION_PATTERNS:
        text = pattern.sub(REDACTED, text)

    text = _WHITESPACE.sub(" ", text).strip()

    if security.allowed_input_patterns and not _matches_any(text, security.allowed_input_patterns):
        raise InputSanitizationError("Input does not match allowed patterns")

    return text
