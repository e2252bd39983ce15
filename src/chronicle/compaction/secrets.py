"""Secret detection and redaction for content leaving the live view."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import structlog

REDACTION_PLACEHOLDER = "[REDACTED]"

_logger = structlog.get_logger("chronicle.compaction.secrets")


@dataclass(frozen=True)
class SecretPattern:
    name: str
    pattern: re.Pattern[str]
    reason: str


@dataclass
class SecretMatch:
    type: str
    start: int
    end: int
    reason: str


@dataclass
class Redaction:
    path: str
    reason: str


@dataclass
class RedactionResult:
    """Redacted text plus a ``(path, reason)`` record per replaced span."""

    clean: str
    redactions: list[Redaction] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.redactions)


SECRET_PATTERNS: tuple[SecretPattern, ...] = (
    SecretPattern(
        "api_key",
        re.compile(r"['\"]?api[_-]?key['\"]?\s*[:=]\s*['\"]?([a-zA-Z0-9_-]{20,})['\"]?", re.I),
        "API key detected",
    ),
    SecretPattern(
        "bearer_token",
        re.compile(r"bearer\s+([a-zA-Z0-9_-]{30,})", re.I),
        "Bearer token detected",
    ),
    SecretPattern(
        "jwt_token",
        re.compile(r"eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"),
        "JWT token detected",
    ),
    SecretPattern(
        "aws_access_key",
        re.compile(r"AKIA[0-9A-Z]{16}"),
        "AWS access key detected",
    ),
    SecretPattern(
        "aws_secret_key",
        re.compile(
            r"['\"]?aws[_-]?secret[_-]?access[_-]?key['\"]?\s*[:=]\s*['\"]?([a-zA-Z0-9/+]{40})['\"]?",
            re.I,
        ),
        "AWS secret key detected",
    ),
    SecretPattern(
        "private_key",
        re.compile(
            r"-----BEGIN\s+(?:RSA\s+)?PRIVATE\s+KEY-----[\s\S]*?-----END\s+(?:RSA\s+)?PRIVATE\s+KEY-----",
            re.I,
        ),
        "Private key detected",
    ),
    SecretPattern(
        "password",
        re.compile(r"['\"]?(?:password|passwd|pwd)['\"]?\s*[:=]\s*['\"]?([^'\s\"]{8,})['\"]?", re.I),
        "Password field detected",
    ),
    SecretPattern(
        "secret",
        re.compile(r"['\"]?(?:secret|api[_-]?secret)['\"]?\s*[:=]\s*['\"]?([a-zA-Z0-9_-]{16,})['\"]?", re.I),
        "Secret field detected",
    ),
    SecretPattern(
        "token",
        re.compile(
            r"['\"]?(?:token|access[_-]?token|auth[_-]?token)['\"]?\s*[:=]\s*['\"]?([a-zA-Z0-9_-]{30,})['\"]?",
            re.I,
        ),
        "Auth token detected",
    ),
    SecretPattern(
        "github_token",
        re.compile(r"gh[pous]_[a-zA-Z0-9]{36}"),
        "GitHub token detected",
    ),
    SecretPattern(
        "openai_key",
        re.compile(r"sk-[a-zA-Z0-9]{48}"),
        "OpenAI API key detected",
    ),
    SecretPattern(
        "database_url",
        re.compile(r"(?:mongodb|postgres|mysql|redis)://[^\s'\"]+", re.I),
        "Database connection URL detected",
    ),
    SecretPattern(
        "credit_card",
        re.compile(r"\b(?:\d[ -]*?){13,16}\b"),
        "Potential credit card number detected",
    ),
    SecretPattern(
        "email",
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        "Email address detected",
    ),
    SecretPattern(
        "ip_address",
        re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
        "IP address detected",
    ),
)


def detect_secrets(content: str) -> list[SecretMatch]:
    """All raw matches of every pattern, sorted by start offset."""
    matches = [
        SecretMatch(type=p.name, start=m.start(), end=m.end(), reason=p.reason)
        for p in SECRET_PATTERNS
        for m in p.pattern.finditer(content)
    ]
    return sorted(matches, key=lambda m: m.start)


def _merge_overlapping(matches: list[SecretMatch]) -> list[SecretMatch]:
    merged: list[SecretMatch] = []
    for match in matches:
        if merged and match.start <= merged[-1].end:
            last = merged[-1]
            last.end = max(last.end, match.end)
            if match.reason not in last.reason:
                last.reason = f"{last.reason} | {match.reason}"
        else:
            merged.append(
                SecretMatch(type=match.type, start=match.start, end=match.end, reason=match.reason)
            )
    return merged


def redact_secrets(content: str, path: str = "unknown") -> RedactionResult:
    """
    Replace every detected secret in ``content`` with ``[REDACTED]``.

    Overlapping matches collapse into a single replacement whose reason joins
    the individual reasons. Each redaction is reported as
    ``<path>[start:end]`` against the original offsets.
    """
    if not content:
        return RedactionResult(clean=content)

    merged = _merge_overlapping(detect_secrets(content))
    if not merged:
        return RedactionResult(clean=content)

    pieces: list[str] = []
    redactions: list[Redaction] = []
    cursor = 0
    for match in merged:
        pieces.append(content[cursor : match.start])
        pieces.append(REDACTION_PLACEHOLDER)
        cursor = match.end
        redactions.append(Redaction(path=f"{path}[{match.start}:{match.end}]", reason=match.reason))
    pieces.append(content[cursor:])

    _logger.debug(
        "secrets_detected",
        path=path,
        count=len(redactions),
        types=sorted({m.type for m in merged}),
    )
    return RedactionResult(clean="".join(pieces), redactions=redactions)


def has_secrets(content: str) -> bool:
    if not content:
        return False
    return any(p.pattern.search(content) for p in SECRET_PATTERNS)


def redact_value(
    value: Any, path: str = "root", redactions: list[Redaction] | None = None
) -> Any:
    """
    Recursively redact strings inside dicts, lists and tuples.

    Other values pass through unchanged. When ``redactions`` is given, every
    individual redaction is appended to it.
    """
    if isinstance(value, str):
        result = redact_secrets(value, path)
        if redactions is not None:
            redactions.extend(result.redactions)
        return result.clean
    if isinstance(value, dict):
        return {
            key: redact_value(item, f"{path}.{key}", redactions) for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [
            redact_value(item, f"{path}[{index}]", redactions) for index, item in enumerate(value)
        ]
    return value
