"""TOML reading and writing for changeset records.

Uses tomlkit so records are written with a fixed field order and read back
without losing anything a person added by hand. Records are small key-value
documents:

    id = "1718000000000-0000-a1b2c3"
    package = "@acme/core"
    bump = "minor"
    description = "Add streaming API"
    author = "dev@acme.test"
    created_at = "2024-06-10T06:13:20.000Z"
    environments = ["staging"]
    status = "pending"
    production_deployment = false
"""

from __future__ import annotations

from datetime import datetime, timezone

import tomlkit
from pydantic import ValidationError

from .models import Changeset

CHANGESET_FIELDS = (
    "id",
    "package",
    "bump",
    "description",
    "author",
    "created_at",
    "environments",
    "status",
    "production_deployment",
)


def format_timestamp(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def dump_changeset(changeset: Changeset) -> str:
    """Serialize a changeset in the fixed field order."""
    doc = tomlkit.document()
    doc.add("id", changeset.id)
    doc.add("package", changeset.package)
    doc.add("bump", changeset.bump.value)
    doc.add("description", changeset.description)
    doc.add("author", changeset.author)
    doc.add("created_at", format_timestamp(changeset.created_at))
    doc.add("environments", list(changeset.environments))
    doc.add("status", changeset.status.value)
    doc.add("production_deployment", changeset.production_deployment)
    return tomlkit.dumps(doc)


def load_changeset(text: str) -> Changeset:
    """Parse a changeset record.

    Unknown keys are ignored so records written by newer versions still load.

    Raises:
        ValueError: If the text is not TOML, or a field is missing or invalid.
    """
    data = tomlkit.parse(text).unwrap()
    missing = [f for f in CHANGESET_FIELDS[:6] if f not in data]
    if missing:
        raise ValueError(f"changeset record is missing: {', '.join(missing)}")
    try:
        return Changeset.model_validate({k: data[k] for k in CHANGESET_FIELDS if k in data})
    except ValidationError as e:
        raise ValueError(f"invalid changeset record: {e}") from e
