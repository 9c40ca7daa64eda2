from __future__ import annotations

import re
from typing import Any

PASSWORD_PAIR_RE = re.compile(r"(password\s*[=:]\s*)([^\s,;]+)", re.IGNORECASE)
TOKEN_RE = re.compile(r"(token\s*[=:]\s*)([^\s,;]+)", re.IGNORECASE)
URL_CREDENTIALS_RE = re.compile(r"([a-z][a-z0-9+.-]*://[^:@/\s]+:)([^@/\s]+)(@)", re.IGNORECASE)
DEVICE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")


def validate_device_id(device_id: str) -> str:
    value = str(device_id)
    if not DEVICE_ID_RE.fullmatch(value):
        raise ValueError("Invalid device id")
    return value


def redact_secrets(text: str) -> str:
    text = URL_CREDENTIALS_RE.sub(r"\1***\3", text)
    text = PASSWORD_PAIR_RE.sub(r"\1***", text)
    text = TOKEN_RE.sub(r"\1***", text)
    return text


def scrub_sensitive(obj: Any) -> Any:
    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for key, value in obj.items():
            lowered = str(key).lower()
            if "password" in lowered or "token" in lowered or "secret" in lowered:
                out[key] = "***"
            else:
                out[key] = scrub_sensitive(value)
        return out
    if isinstance(obj, list):
        return [scrub_sensitive(v) for v in obj]
    if isinstance(obj, str):
        return redact_secrets(obj)
    return obj
