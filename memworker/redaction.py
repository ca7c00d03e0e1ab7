from __future__ import annotations

import re

REDACTION_PATTERNS = [
    re.compile(r"api[_-]?key\s*[:=]\s*['\"]?[A-Za-z0-9_-]{20,}", re.IGNORECASE),
    re.compile(r"sk-ant-[A-Za-z0-9_-]{10,}", re.IGNORECASE),
    re.compile(r"sk-[A-Za-z0-9]{10,}", re.IGNORECASE),
    re.compile(r"Bearer\s+[A-Za-z0-9._-]{10,}"),
]


def redact(text: str) -> str:
    redacted = text
    for pattern in REDACTION_PATTERNS:
        redacted = pattern.sub("[REDACTED]", redacted)
    return redacted


def redact_snippet(text: str, limit: int = 400) -> str:
    """Redact secrets and clip to ``limit`` characters for log output."""
    cleaned = redact(text.strip())
    if len(cleaned) > limit:
        return cleaned[:limit].rstrip() + "…"
    return cleaned
