"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from padctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "absent.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.resource_prefix == "cloudypad"
    assert config.state_dir == Path("~/.local/state/padctl").expanduser()
    assert config.registry_dir == config.state_dir / "registry"
    assert config.stacks_dir == config.state_dir / "stacks"
    assert config.retries.volume_delete_attempts == 10
    assert config.retries.volume_delete_delay == 3.0
    assert config.storage.default_iops == 5000
    assert config.storage.default_attach_type == "/dev/sdf"
    assert config.safety.root_guard_fail_closed is False
    assert config.aws.region is None


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "padctl.yml"
    cfg.write_text(
        f"state_dir: {tmp_path / 'state'}\n"
        "resource_prefix: mypad\n"
        "storage:\n"
        "  attach_types:\n"
        "    io2: /dev/sdg\n"
        "safety:\n"
        "  root_guard_fail_closed: true\n"
        "aws:\n"
        "  region: eu-west-3\n"
        "ansible:\n"
        "  extra_args: --diff --check\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.state_dir == tmp_path / "state"
    assert config.logs_dir == tmp_path / "state" / "logs"
    assert config.resource_prefix == "mypad"
    assert dict(config.storage.attach_types) == {"io2": "/dev/sdg"}
    assert config.safety.root_guard_fail_closed is True
    assert config.aws.region == "eu-west-3"
    assert config.ansible.extra_args == ("--diff", "--check")


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("retries:\n  volume_delete_attempts: 4\n")
    state_dir = tmp_path / "state"
    env = {
        "PADCTL_STATE_DIR": str(state_dir),
        "PADCTL_STACKS_DIR": str(tmp_path / "pulumi"),
        "PADCTL_RETRIES__VOLUME_DELETE_ATTEMPTS": "7",
        "PADCTL_TIMEOUTS__VOLUME_DETACH": "15",
        "PADCTL_SAFETY__ROOT_GUARD_FAIL_CLOSED": "true",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.state_dir == state_dir
    assert config.registry_dir == state_dir / "registry"
    assert config.stacks_dir == tmp_path / "pulumi"
    assert config.retries.volume_delete_attempts == 7
    assert config.timeouts.volume_detach == 15.0
    assert config.safety.root_guard_fail_closed is True


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("resource_prefix: other\n")

    config = load_config(env={"PADCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.resource_prefix == "other"


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A YAML list at the top level raises ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_section_key_raises(tmp_path: Path) -> None:
    """Extra keys inside a section produce ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("retries:\n  forever: true\n")

    with pytest.raises(ConfigError, match="Unknown retries configuration keys"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize(
    ("contents", "message"),
    [
        ("retries:\n  volume_delete_attempts: 0\n", "greater than zero"),
        ("timeouts:\n  volume_attach: -1\n", "greater than zero"),
        ("storage:\n  default_iops: many\n", "Invalid integer"),
        ("safety:\n  root_guard_fail_closed: maybe\n", "boolean"),
        ("resource_prefix: '  '\n", "non-empty"),
        ("storage:\n  attach_types:\n    io2: ''\n", "non-empty string"),
        ("ansible:\n  playbook_timeout: 0\n", "greater than zero"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, contents: str, message: str) -> None:
    """Out-of-range or mistyped values are rejected."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(contents)

    with pytest.raises(ConfigError, match=message):
        load_config(config_file=cfg, env={})


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """to_dict renders paths as strings."""
    config = load_config(config_file=tmp_path / "none.yml", env={"PADCTL_STATE_DIR": str(tmp_path)})

    payload = config.to_dict()

    assert payload["state_dir"] == str(tmp_path)
    assert payload["retries"] == {"volume_delete_attempts": 10, "volume_delete_delay": 3.0}


def test_playbook_timeout_default_and_override(tmp_path: Path) -> None:
    """The playbook timeout has a default and follows env overrides."""
    missing = tmp_path / "none.yml"

    assert load_config(config_file=missing, env={}).ansible.playbook_timeout == 1800.0
    overridden = load_config(config_file=missing, env={"PADCTL_ANSIBLE__PLAYBOOK_TIMEOUT": "120"})
    assert overridden.ansible.playbook_timeout == 120.0
