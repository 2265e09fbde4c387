from __future__ import annotations

"""Detect credential- and PII-shaped text in user inputs and event payloads."""

import re
from typing import Any, Callable, Iterator


SECRET_PATTERNS = {
    "openai_key": re.compile(r"\bsk-(?:proj-)?[A-Za-z0-9_-]{16,}\b"),
    "stripe_key": re.compile(r"\b[sp]k_(?:live|test)_[A-Za-z0-9]{16,}\b"),
    "github_token": re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
    "slack_token": re.compile(r"\bxox[baprs]-[A-Za-z0-9-]{20,}\b"),
    "google_key": re.compile(r"\b(?:AIza[0-9A-Za-z\-_]{20,}|ya29\.[A-Za-z0-9\-_]{20,})\b"),
    "aws_key": re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    "jwt": re.compile(r"\b[A-Za-z0-9\-_]{16,}\.[A-Za-z0-9\-_]{16,}\.[A-Za-z0-9\-_]{16,}\b"),
    "bearer": re.compile(r"\b(?:Bearer|Token)\s+[A-Za-z0-9\-_\.]{16,}\b", re.IGNORECASE),
    "private_key": re.compile(r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----"),
}

PII_PATTERNS = {
    "email": re.compile(r"\b[\w\.-]+@[\w\.-]+\.\w{2,}\b"),
    "ssn": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "phone": re.compile(r"\+?\b\d{1,3}[ .-]?\(?\d{3}\)?[ .-]\d{3}[ .-]\d{4}\b"),
    "ipv4": re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
}


def _strings(payload: Any, path: str = "") -> Iterator[tuple[str, str]]:
    if isinstance(payload, str):
        yield path, payload
    elif isinstance(payload, dict):
        for key, value in payload.items():
            yield from _strings(value, f"{path}.{key}" if path else str(key))
    elif isinstance(payload, (list, tuple)):
        for index, item in enumerate(payload):
            yield from _strings(item, f"{path}[{index}]")


def is_secret_like_text(text: str) -> bool:
    return any(pattern.search(text) for pattern in SECRET_PATTERNS.values())


def is_pii_like_text(text: str) -> bool:
    return any(pattern.search(text) for pattern in PII_PATTERNS.values())


def _matching_paths(payload: Any, predicate: Callable[[str], bool]) -> list[str]:
    return [path for path, text in _strings(payload) if predicate(text)]


def secret_fields(payload: Any) -> list[str]:
    """Dotted paths of string leaves that look like credentials."""

    return _matching_paths(payload, is_secret_like_text)


def payload_contains_secrets(payload: Any) -> bool:
    return bool(secret_fields(payload))


def payload_contains_pii(payload: Any) -> bool:
    return bool(_matching_paths(payload, is_pii_like_text))
