from __future__ import annotations

"""Structural decoding of federated sign-in identity tokens.

Tokens are three period-separated URL-safe base64 segments (header, payload,
signature). Only the payload is read. The signature is NOT verified: tokens
are trusted because they arrive through the federated sign-in widget, so this
module is a trust boundary, not an authentication check.
"""

import base64
import binascii
import json
from typing import Any

from .errors import MalformedTokenError


def _b64url_decode(segment: str) -> bytes:
    standard = segment.replace("-", "+").replace("_", "/")
    padded = standard + "=" * (-len(standard) % 4)
    return base64.b64decode(padded, validate=True)


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_identity_token(token: str) -> dict[str, Any]:
    """Return the claim set carried in the token payload."""

    if not isinstance(token, str):
        raise MalformedTokenError("Identity token must be a string.")
    segments = token.strip().split(".")
    if len(segments) != 3:
        raise MalformedTokenError("Identity token must have three segments.", segments=len(segments))
    payload = segments[1]
    if not payload:
        raise MalformedTokenError("Identity token payload is empty.")
    try:
        text = _b64url_decode(payload).decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise MalformedTokenError("Identity token payload is not valid base64url UTF-8.") from exc
    try:
        claims = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedTokenError("Identity token payload is not valid JSON.") from exc
    if not isinstance(claims, dict):
        raise MalformedTokenError("Identity token payload must be a JSON object.")
    return claims


def encode_identity_token(claims: dict[str, Any], header: dict[str, Any] | None = None) -> str:
    """Build an unsigned token carrying `claims`, for fixtures and local tooling."""

    header_segment = _b64url_encode(_safe_dumps(header or {"alg": "none", "typ": "JWT"}))
    payload_segment = _b64url_encode(_safe_dumps(claims))
    return f"{header_segment}.{payload_segment}."


def _safe_dumps(value: dict[str, Any]) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
