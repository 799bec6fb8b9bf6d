"""Deterministic request signing shared by clients and the signature gate.

A signed payload carries a ``signed`` field holding the SHA-256 hex digest of
the canonical JSON form of the payload (without ``signed``) followed by the
API secret.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping
from typing import Any

SIGNATURE_FIELD = "signed"


def stable_stringify(payload: Any) -> str:
    """Serialize ``payload`` with sorted keys and no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def unsign(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``payload`` without its signature field."""
    return {key: value for key, value in payload.items() if key != SIGNATURE_FIELD}


def compute_signature(payload: Mapping[str, Any], secret: str) -> str:
    canonical = stable_stringify(unsign(payload))
    return hashlib.sha256(f"{canonical}{secret}".encode()).hexdigest()


def sign(payload: Mapping[str, Any], secret: str) -> dict[str, Any]:
    """Return a copy of ``payload`` with a fresh ``signed`` field."""
    signed = unsign(payload)
    signed[SIGNATURE_FIELD] = compute_signature(signed, secret)
    return signed


def verify(payload: Mapping[str, Any], secret: str) -> bool:
    """Check the ``signed`` field of ``payload`` against ``secret``."""
    received = payload.get(SIGNATURE_FIELD)
    if not isinstance(received, str) or not received:
        return False
    expected = compute_signature(payload, secret)
    return hmac.compare_digest(expected.encode(), received.encode())
