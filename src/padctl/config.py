"""Configuration loader for padctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``~/.config/padctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``PADCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PADCTL_RETRIES__VOLUME_DELETE_ATTEMPTS=5
    export PADCTL_AWS__REGION=eu-west-3

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load padctl configuration. Install with "
        "`pip install padctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "PADCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class TimeoutsConfig:
    """Wait budgets (seconds) for instance and volume state transitions."""

    instance_operation: float = 300.0
    volume_attach: float = 60.0
    volume_detach: float = 60.0
    volume_usable: float = 120.0
    instance_poll_interval: float = 5.0
    volume_poll_interval: float = 2.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "instance_operation": self.instance_operation,
            "volume_attach": self.volume_attach,
            "volume_detach": self.volume_detach,
            "volume_usable": self.volume_usable,
            "instance_poll_interval": self.instance_poll_interval,
            "volume_poll_interval": self.volume_poll_interval,
        }


@dataclass(frozen=True)
class RetriesConfig:
    """Fixed retry budget for volume deletion."""

    volume_delete_attempts: int = 10
    volume_delete_delay: float = 3.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "volume_delete_attempts": self.volume_delete_attempts,
            "volume_delete_delay": self.volume_delete_delay,
        }


@dataclass(frozen=True)
class StorageConfig:
    """Volume defaults and the storage-class to attach-parameter mapping."""

    default_iops: int = 5000
    default_volume_type: str = "gp3"
    attach_types: Mapping[str, str] = field(default_factory=dict)
    default_attach_type: str = "/dev/sdf"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "default_iops": self.default_iops,
            "default_volume_type": self.default_volume_type,
            "attach_types": dict(self.attach_types),
            "default_attach_type": self.default_attach_type,
        }


@dataclass(frozen=True)
class SafetyConfig:
    """Safety policy switches."""

    root_guard_fail_closed: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"root_guard_fail_closed": self.root_guard_fail_closed}


@dataclass(frozen=True)
class AWSConfig:
    """Credentials profile and region used to build the boto3 session."""

    profile: str | None = None
    region: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"profile": self.profile, "region": self.region}


@dataclass(frozen=True)
class AnsibleConfig:
    """Remote configuration runner settings."""

    playbook: Path = Path("~/.local/share/padctl/ansible/playbook.yml").expanduser()
    ansible_playbook_bin: str = "ansible-playbook"
    extra_args: tuple[str, ...] = ()
    playbook_timeout: float = 1800.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "playbook": str(self.playbook),
            "ansible_playbook_bin": self.ansible_playbook_bin,
            "extra_args": list(self.extra_args),
            "playbook_timeout": self.playbook_timeout,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for padctl."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    stacks_dir: Path
    resource_prefix: str
    timeouts: TimeoutsConfig
    retries: RetriesConfig
    storage: StorageConfig
    safety: SafetyConfig
    aws: AWSConfig
    ansible: AnsibleConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "stacks_dir": str(self.stacks_dir),
            "resource_prefix": self.resource_prefix,
            "timeouts": self.timeouts.to_dict(),
            "retries": self.retries.to_dict(),
            "storage": self.storage.to_dict(),
            "safety": self.safety.to_dict(),
            "aws": self.aws.to_dict(),
            "ansible": self.ansible.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/padctl/config.yml",
    "state_dir": "~/.local/state/padctl",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": None,  # derived from state_dir when absent
    "stacks_dir": None,  # derived from state_dir when absent
    "resource_prefix": "cloudypad",
    "timeouts": {
        "instance_operation": 300,
        "volume_attach": 60,
        "volume_detach": 60,
        "volume_usable": 120,
        "instance_poll_interval": 5,
        "volume_poll_interval": 2,
    },
    "retries": {
        "volume_delete_attempts": 10,
        "volume_delete_delay": 3,
    },
    "storage": {
        "default_iops": 5000,
        "default_volume_type": "gp3",
        "attach_types": {},
        "default_attach_type": "/dev/sdf",
    },
    "safety": {
        "root_guard_fail_closed": False,
    },
    "aws": {
        "profile": None,
        "region": None,
    },
    "ansible": {
        "playbook": "~/.local/share/padctl/ansible/playbook.yml",
        "ansible_playbook_bin": "ansible-playbook",
        "extra_args": [],
        "playbook_timeout": 1800.0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], DEFAULTS[section]).keys())
    for section in ("timeouts", "retries", "storage", "safety", "aws", "ansible")
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        section_map = _as_dict(value, section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    prefix = raw.get("resource_prefix")
    if not isinstance(prefix, str) or not prefix.strip():
        raise ConfigError("resource_prefix must be a non-empty string.")

    storage_map = _as_dict(raw.get("storage"), "storage")
    attach_types = _as_dict(storage_map.get("attach_types"), "storage.attach_types")
    for storage_class, attach_type in attach_types.items():
        if not isinstance(attach_type, str) or not attach_type.strip():
            raise ConfigError(
                f"storage.attach_types.{storage_class} must be a non-empty string."
            )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))

    registry_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_value) if registry_value else state_dir / "registry"
    logs_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_value) if logs_value else state_dir / "logs"
    stacks_value = raw.get("stacks_dir")
    stacks_dir = _to_path(stacks_value) if stacks_value else state_dir / "stacks"

    timeouts_map = _as_dict(raw.get("timeouts"), "timeouts")
    default_timeouts = TimeoutsConfig()
    timeouts = TimeoutsConfig(
        instance_operation=_expect_positive_float(
            timeouts_map.get("instance_operation"),
            "timeouts.instance_operation",
            default=default_timeouts.instance_operation,
        ),
        volume_attach=_expect_positive_float(
            timeouts_map.get("volume_attach"),
            "timeouts.volume_attach",
            default=default_timeouts.volume_attach,
        ),
        volume_detach=_expect_positive_float(
            timeouts_map.get("volume_detach"),
            "timeouts.volume_detach",
            default=default_timeouts.volume_detach,
        ),
        volume_usable=_expect_positive_float(
            timeouts_map.get("volume_usable"),
            "timeouts.volume_usable",
            default=default_timeouts.volume_usable,
        ),
        instance_poll_interval=_expect_positive_float(
            timeouts_map.get("instance_poll_interval"),
            "timeouts.instance_poll_interval",
            default=default_timeouts.instance_poll_interval,
        ),
        volume_poll_interval=_expect_positive_float(
            timeouts_map.get("volume_poll_interval"),
            "timeouts.volume_poll_interval",
            default=default_timeouts.volume_poll_interval,
        ),
    )

    retries_map = _as_dict(raw.get("retries"), "retries")
    attempts = _expect_int(
        retries_map.get("volume_delete_attempts"),
        "retries.volume_delete_attempts",
        default=10,
    )
    if attempts <= 0:
        raise ConfigError("retries.volume_delete_attempts must be greater than zero.")
    retries = RetriesConfig(
        volume_delete_attempts=attempts,
        volume_delete_delay=_expect_positive_float(
            retries_map.get("volume_delete_delay"),
            "retries.volume_delete_delay",
            default=3.0,
        ),
    )

    storage_map = _as_dict(raw.get("storage"), "storage")
    default_iops = _expect_int(storage_map.get("default_iops"), "storage.default_iops", default=5000)
    if default_iops <= 0:
        raise ConfigError("storage.default_iops must be greater than zero.")
    attach_types = {
        str(key): str(value).strip()
        for key, value in _as_dict(storage_map.get("attach_types"), "storage.attach_types").items()
    }
    storage = StorageConfig(
        default_iops=default_iops,
        default_volume_type=str(storage_map.get("default_volume_type") or "gp3"),
        attach_types=attach_types,
        default_attach_type=str(storage_map.get("default_attach_type") or "/dev/sdf"),
    )

    safety_map = _as_dict(raw.get("safety"), "safety")
    safety = SafetyConfig(
        root_guard_fail_closed=_expect_bool(
            safety_map.get("root_guard_fail_closed"),
            "safety.root_guard_fail_closed",
            default=False,
        ),
    )

    aws_map = _as_dict(raw.get("aws"), "aws")
    aws = AWSConfig(
        profile=_optional_str(aws_map.get("profile")),
        region=_optional_str(aws_map.get("region")),
    )

    ansible_map = _as_dict(raw.get("ansible"), "ansible")
    extra_raw = ansible_map.get("extra_args") or []
    if isinstance(extra_raw, str):
        extra_args: tuple[str, ...] = tuple(extra_raw.split())
    elif isinstance(extra_raw, (list, tuple)):
        extra_args = tuple(str(item) for item in extra_raw)
    else:
        raise ConfigError("ansible.extra_args must be a list of strings.")
    ansible = AnsibleConfig(
        playbook=_to_path(ansible_map.get("playbook", AnsibleConfig.playbook)),
        ansible_playbook_bin=str(ansible_map.get("ansible_playbook_bin") or "ansible-playbook"),
        extra_args=extra_args,
        playbook_timeout=_expect_positive_float(
            ansible_map.get("playbook_timeout"),
            "ansible.playbook_timeout",
            default=AnsibleConfig.playbook_timeout,
        ),
    )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        stacks_dir=stacks_dir,
        resource_prefix=str(raw.get("resource_prefix")).strip(),
        timeouts=timeouts,
        retries=retries,
        storage=storage,
        safety=safety,
        aws=aws,
        ansible=ansible,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AWSConfig",
    "AnsibleConfig",
    "AppConfig",
    "ConfigError",
    "RetriesConfig",
    "SafetyConfig",
    "StorageConfig",
    "TimeoutsConfig",
    "load_config",
]
