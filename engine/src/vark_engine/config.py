from __future__ import annotations

"""Assessment configuration loading, schema validation, and env overrides."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator


CONFIG_SCHEMA_VERSION = "0.1"
CATEGORY_KEYS = ("A", "B", "C", "D")
HISTORY_SCOPES = {"identity", "global"}
DEFAULT_GUEST_EMAIL = "guest"
DEFAULT_GUEST_NAME = "Visitante"


@dataclass(frozen=True)
class Category:
    key: str
    label: str
    color: str


DEFAULT_CATEGORIES = (
    Category("A", "Visual", "#93C5FD"),
    Category("B", "Auditivo", "#6EE7B7"),
    Category("C", "Leitor/Escrita", "#FCD34D"),
    Category("D", "Cinestésico", "#FCA5A5"),
)


@dataclass(frozen=True)
class AssessmentConfig:
    """Validated settings the engine reads at startup."""

    assessment_id: str
    title: str
    total_points: int
    categories: tuple[Category, ...]
    allowed_domains: tuple[str, ...]
    guest_email: str
    guest_name: str
    history_scope: str
    document_path: str | None = None
    document_filename: str | None = None
    source_path: str | None = None

    def category(self, key: str) -> Category:
        for item in self.categories:
            if item.key == key:
                return item
        raise KeyError(f"Unknown category: {key}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "assessment_id": self.assessment_id,
            "title": self.title,
            "total_points": self.total_points,
            "categories": [{"key": c.key, "label": c.label, "color": c.color} for c in self.categories],
            "allowed_domains": list(self.allowed_domains),
            "guest": {"email": self.guest_email, "name": self.guest_name},
            "history_scope": self.history_scope,
            "document": {"path": self.document_path, "filename": self.document_filename},
            "source_path": self.source_path,
        }


def _schema_path(repo_root: Path) -> Path:
    return repo_root / "config" / "schema" / "assessment.schema.json"


def config_path(repo_root: Path) -> Path:
    configured = os.environ.get("VARK_CONFIG", "").strip()
    if configured:
        return Path(configured).expanduser().resolve()
    return repo_root / "config" / "assessment.yaml"


def _load_schema(repo_root: Path) -> dict[str, Any]:
    path = _schema_path(repo_root)
    if not path.exists():
        raise ValueError(f"Config schema file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Config schema is not valid JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Config schema must be a JSON object: {path}")
    return payload


def _split_env_list(raw: str) -> tuple[str, ...]:
    values: list[str] = []
    for part in raw.split(os.pathsep):
        for item in part.split(","):
            item = item.strip()
            if item and item not in values:
                values.append(item)
    return tuple(values)


def _normalize_domain(value: str) -> str:
    value = value.strip().lower()
    return value if value.startswith("@") else f"@{value}"


def load_config(repo_root: Path) -> AssessmentConfig:
    """Load `config/assessment.yaml`, validate it, and apply `VARK_*` overrides."""

    path = config_path(repo_root)
    if not path.exists():
        raise ValueError(f"Config file not found: {path}")
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Config file must be a mapping: {path}")
    validator = Draft202012Validator(_load_schema(repo_root))
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise ValueError(f"Config schema validation failed for {path} at {where}: {first.message}")

    assessment = payload["assessment"]
    categories = tuple(
        Category(key=item["key"], label=item["label"], color=item["color"].upper()) for item in assessment["categories"]
    )
    if sorted(c.key for c in categories) != list(CATEGORY_KEYS):
        raise ValueError(f"Config categories must define each of {', '.join(CATEGORY_KEYS)} exactly once: {path}")
    categories = tuple(sorted(categories, key=lambda c: c.key))

    sign_in = payload["sign_in"]
    allowed_domains = tuple(_normalize_domain(value) for value in sign_in["allowed_domains"])
    env_domains = os.environ.get("VARK_ALLOWED_DOMAINS", "").strip()
    if env_domains:
        allowed_domains = tuple(_normalize_domain(value) for value in _split_env_list(env_domains))
    guest = sign_in.get("guest", {})

    history_scope = payload["history"]["scope"]
    env_scope = os.environ.get("VARK_HISTORY_SCOPE", "").strip().lower()
    if env_scope:
        if env_scope not in HISTORY_SCOPES:
            raise ValueError(f"VARK_HISTORY_SCOPE must be one of {sorted(HISTORY_SCOPES)}.")
        history_scope = env_scope

    document = assessment.get("document", {})
    return AssessmentConfig(
        assessment_id=assessment["id"],
        title=assessment["title"],
        total_points=int(assessment["total_points"]),
        categories=categories,
        allowed_domains=allowed_domains,
        guest_email=guest.get("email", DEFAULT_GUEST_EMAIL),
        guest_name=guest.get("name", DEFAULT_GUEST_NAME),
        history_scope=history_scope,
        document_path=document.get("path"),
        document_filename=document.get("filename"),
        source_path=str(path),
    )
