from __future__ import annotations

"""Identity sources, the cached custom session, and identity resolution.

Two independent sources can vouch for a user: a federated session reported by
the external sign-in provider, and a custom session cached locally after a
token or guest sign-in. `select_source` applies precedence (federated first)
and `resolve_identity` turns the winning source into one `Identity`.
"""

import json
from dataclasses import dataclass
from typing import Any, Protocol, Union

from .storage import KeyValueStore


CUSTOM_SESSION_KEY = "vark_user_session"


@dataclass(frozen=True)
class Identity:
    email: str
    display_name: str
    avatar_ref: str | None = None
    is_guest: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "display_name": self.display_name,
            "avatar_ref": self.avatar_ref,
            "is_guest": self.is_guest,
        }


@dataclass(frozen=True)
class NoSession:
    kind = "none"


@dataclass(frozen=True)
class FederatedSession:
    claims: dict[str, Any]
    kind = "federated"


@dataclass(frozen=True)
class CustomSession:
    session: dict[str, Any]
    kind = "custom"


SessionSource = Union[NoSession, FederatedSession, CustomSession]


class FederatedProvider(Protocol):
    """External sign-in provider; only session presence and sign-out are used."""

    def get_session(self) -> dict[str, Any] | None: ...

    def sign_out(self) -> None: ...


class NullFederatedProvider:
    def get_session(self) -> dict[str, Any] | None:
        return None

    def sign_out(self) -> None:
        return None


class InMemoryFederatedProvider:
    """Holds a session descriptor handed over by an embedding application."""

    def __init__(self, session: dict[str, Any] | None = None) -> None:
        self.session = session
        self.sign_out_calls = 0

    def get_session(self) -> dict[str, Any] | None:
        return self.session

    def sign_out(self) -> None:
        self.sign_out_calls += 1
        self.session = None


def _clean_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def federated_claims(descriptor: dict[str, Any] | None) -> dict[str, Any] | None:
    """Extract user claims from a provider session descriptor, if it has an email."""

    if not isinstance(descriptor, dict):
        return None
    user = descriptor.get("user", descriptor)
    if not isinstance(user, dict):
        return None
    metadata = user.get("user_metadata") if isinstance(user.get("user_metadata"), dict) else {}
    email = _clean_str(user.get("email"))
    if email is None:
        return None
    return {
        "email": email,
        "name": _clean_str(user.get("name")) or _clean_str(metadata.get("full_name")) or email,
        "picture": _clean_str(user.get("picture")) or _clean_str(metadata.get("avatar_url")),
    }


def select_source(federated: dict[str, Any] | None, custom: dict[str, Any] | None) -> SessionSource:
    claims = federated_claims(federated)
    if claims is not None:
        return FederatedSession(claims=claims)
    if custom is not None:
        return CustomSession(session=custom)
    return NoSession()


def resolve_identity(source: SessionSource) -> Identity | None:
    if isinstance(source, FederatedSession):
        claims = source.claims
        return Identity(
            email=claims["email"],
            display_name=claims.get("name") or claims["email"],
            avatar_ref=claims.get("picture"),
            is_guest=False,
        )
    if isinstance(source, CustomSession):
        session = source.session
        return Identity(
            email=session["email"],
            display_name=_clean_str(session.get("name")) or session["email"],
            avatar_ref=_clean_str(session.get("picture")),
            is_guest=bool(session.get("isGuest", False)),
        )
    return None


def parse_custom_session(text: str) -> dict[str, Any]:
    """Parse the cached session shape; raises `ValueError` when malformed."""

    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError("custom session must be a JSON object")
    email = _clean_str(payload.get("email"))
    if email is None:
        raise ValueError("custom session is missing an email")
    is_guest = payload.get("isGuest", False)
    if not isinstance(is_guest, bool):
        raise ValueError("custom session isGuest must be a boolean")
    return {
        "email": email,
        "name": payload.get("name") if isinstance(payload.get("name"), str) else None,
        "picture": payload.get("picture") if isinstance(payload.get("picture"), str) else None,
        "isGuest": is_guest,
    }


@dataclass(frozen=True)
class SessionLoad:
    session: dict[str, Any] | None = None
    error: str | None = None


class CustomSessionStore:
    """Reads and writes the cached custom session through the storage port."""

    def __init__(self, store: KeyValueStore, key: str = CUSTOM_SESSION_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> SessionLoad:
        try:
            text = self.store.get(self.key)
            if text is None:
                return SessionLoad()
            return SessionLoad(session=parse_custom_session(text))
        except ValueError as exc:
            # StorageError and JSONDecodeError are both ValueErrors.
            return SessionLoad(error=str(exc) or exc.__class__.__name__)

    def save(self, session: dict[str, Any]) -> None:
        self.store.set(self.key, json.dumps(session, ensure_ascii=False))

    def clear(self) -> None:
        self.store.remove(self.key)
