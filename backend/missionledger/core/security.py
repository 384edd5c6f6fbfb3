from __future__ import annotations

import hmac
import json
import re
from typing import Any

_NON_DIGITS = re.compile(r"[^\d]")


def stable_json_dumps(obj: Any) -> str:
    """
    Deterministic JSON canonicalization:
    - sort keys
    - no whitespace
    - ensure_ascii=False
    Used for event envelopes and audit payloads.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def mask_account_number(raw: str) -> str:
    # only the last 4 digits ever reach the database
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) <= 4:
        return "****"
    return f"****-****-{digits[-4:]}"


def verify_shared_secret(provided: str | None, expected: str | None) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
