"""Input validation and identifier normalisation helpers."""
from __future__ import annotations

import re

from .errors import InvalidIdError, InvalidNameError, ValidationError

SNAPSHOT_NAME_MAX_LENGTH = 63
SNAPSHOT_NAME_PATTERN = re.compile(r"[a-z0-9_-]{1,63}")
DEFAULT_RESOURCE_PREFIX = "cloudypad"


def validate_snapshot_name(name: str) -> str:
    """Return *name* unchanged or raise :class:`InvalidNameError`.

    Only lower-case letters, digits, ``-`` and ``_`` are accepted, with a
    length between 1 and 63 characters.
    """
    if not isinstance(name, str) or not name:
        raise InvalidNameError("Snapshot name must be a non-empty string.", context={"name": name})
    if len(name) > SNAPSHOT_NAME_MAX_LENGTH:
        raise InvalidNameError(
            f"Snapshot name '{name}' is longer than {SNAPSHOT_NAME_MAX_LENGTH} characters.",
            context={"name": name, "length": len(name)},
        )
    if not SNAPSHOT_NAME_PATTERN.fullmatch(name):
        raise InvalidNameError(
            f"Invalid snapshot name '{name}'. Allowed characters: a-z, 0-9, '-' and '_'.",
            context={"name": name},
        )
    return name


def normalize_volume_id(volume_id: str | None) -> str | None:
    """Strip an optional ``<zone>/`` prefix from *volume_id*.

    Returns ``None`` for empty input. A zone-qualified identifier without a
    trailing segment (``"fr-par-1/"``) is rejected.
    """
    if not volume_id:
        return None
    if "/" not in volume_id:
        return volume_id
    tail = volume_id.rsplit("/", 1)[-1]
    if not tail:
        raise InvalidIdError(
            f"Invalid volume ID '{volume_id}': missing identifier after zone prefix.",
            context={"volume_id": volume_id},
        )
    return tail


def require_value(value: str | None, label: str) -> str:
    """Return the stripped *value* or raise when it is empty."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} cannot be empty.")
    return str(value).strip()


def require_volume_id(volume_id: str | None, label: str = "Volume ID") -> str:
    """Return the normalised, non-empty *volume_id* or raise a validation error."""
    normalized = normalize_volume_id(require_value(volume_id, label))
    if normalized is None:
        raise InvalidIdError(f"{label} cannot be empty.", context={"volume_id": volume_id})
    return normalized


def snapshot_resource_name(instance: str, snapshot_name: str, *, prefix: str = DEFAULT_RESOURCE_PREFIX) -> str:
    """Return the deterministic resource name of a data-disk snapshot."""
    return f"{prefix}-{instance}-data-{snapshot_name}"


def restored_volume_resource_name(
    instance: str,
    snapshot_name: str,
    *,
    prefix: str = DEFAULT_RESOURCE_PREFIX,
) -> str:
    """Return the deterministic resource name of a volume restored from a snapshot."""
    return f"{prefix}-{instance}-data-from-{snapshot_name}"


__all__ = [
    "DEFAULT_RESOURCE_PREFIX",
    "SNAPSHOT_NAME_MAX_LENGTH",
    "SNAPSHOT_NAME_PATTERN",
    "normalize_volume_id",
    "require_value",
    "require_volume_id",
    "restored_volume_resource_name",
    "snapshot_resource_name",
    "validate_snapshot_name",
]
