from __future__ import annotations

"""Sign-in paths that produce the cached custom session shape."""

from typing import Any, Iterable

from .config import DEFAULT_GUEST_EMAIL, DEFAULT_GUEST_NAME
from .errors import DomainNotAllowedError, MalformedTokenError
from .tokens import decode_identity_token


def email_domain_allowed(email: str, allowed_domains: Iterable[str]) -> bool:
    lowered = email.strip().lower()
    return any(lowered.endswith(suffix.lower()) for suffix in allowed_domains)


def session_from_token(token: str, allowed_domains: Iterable[str]) -> dict[str, Any]:
    """Decode a federated identity token and build a session for an allowed email."""

    allowed = tuple(allowed_domains)
    claims = decode_identity_token(token)
    email = claims.get("email")
    if not isinstance(email, str) or not email.strip():
        raise MalformedTokenError("Identity token does not carry an email claim.")
    if not email_domain_allowed(email, allowed):
        raise DomainNotAllowedError(
            f"Access is restricted to {', '.join(allowed)} e-mail addresses.",
            allowed_domains=list(allowed),
        )
    name = claims.get("name")
    picture = claims.get("picture")
    return {
        "email": email.strip(),
        "name": name if isinstance(name, str) else None,
        "picture": picture if isinstance(picture, str) else None,
        "isGuest": False,
    }


def guest_session(email: str = DEFAULT_GUEST_EMAIL, name: str = DEFAULT_GUEST_NAME) -> dict[str, Any]:
    return {"email": email, "name": name, "picture": None, "isGuest": True}
