"""Tests for the Ansible-backed configuration runner."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest
import yaml

from padctl.errors import ConfigurationRunError
from padctl.logging import StructuredLogger
from padctl.models import SSHTarget
from padctl.providers.ansible import AnsibleRunner


class RecordingRun:
    """Stand-in for subprocess.run capturing arguments and inventory."""

    def __init__(self, returncode: int = 0, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.args: list[str] = []
        self.inventory: dict[str, object] = {}

    def __call__(self, args: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        self.args = list(args)
        inventory_path = Path(self.args[self.args.index("-i") + 1])
        self.inventory = yaml.safe_load(inventory_path.read_text(encoding="utf-8"))
        return subprocess.CompletedProcess(self.args, self.returncode, stdout="", stderr=self.stderr)


@pytest.fixture()
def ansible(logger: StructuredLogger, tmp_path: Path) -> AnsibleRunner:
    return AnsibleRunner(
        logger=logger,
        playbook=tmp_path / "playbook.yml",
        extra_args=("--diff",),
    )


def test_run_data_disk_invokes_playbook_with_tag(
    ansible: AnsibleRunner,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    """The playbook runs restricted to the data-disk tag with a one-host inventory."""
    recorder = RecordingRun()
    monkeypatch.setattr(subprocess, "run", recorder)
    key = tmp_path / "id_ed25519"

    ansible.run_data_disk("gaming", SSHTarget(host="203.0.113.10", private_key=key), "vol-new")

    assert recorder.args[0] == "ansible-playbook"
    assert recorder.args[3:6] == ["-t", "data-disk", "--diff"]
    assert recorder.args[-1] == str(tmp_path / "playbook.yml")
    assert recorder.inventory == {
        "all": {
            "hosts": {
                "gaming": {
                    "ansible_host": "203.0.113.10",
                    "ansible_user": "ubuntu",
                    "ansible_ssh_private_key_file": str(key),
                    "data_disk_id": "vol-new",
                }
            }
        }
    }


def test_run_data_disk_failure_raises(ansible: AnsibleRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    """A non-zero exit surfaces stderr in ConfigurationRunError."""
    monkeypatch.setattr(subprocess, "run", RecordingRun(returncode=2, stderr="UNREACHABLE!"))

    with pytest.raises(ConfigurationRunError, match="UNREACHABLE!") as excinfo:
        ansible.run_data_disk("gaming", SSHTarget(host="203.0.113.10"), "vol-new")

    assert excinfo.value.context["returncode"] == 2


def test_missing_binary_raises(ansible: AnsibleRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing ansible-playbook executable is a configuration failure."""

    def missing(*_args: object, **_kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError("ansible-playbook")

    monkeypatch.setattr(subprocess, "run", missing)

    with pytest.raises(ConfigurationRunError, match="not found"):
        ansible.run_data_disk("gaming", SSHTarget(host="203.0.113.10"), "vol-new")


def test_playbook_timeout_is_passed_and_mapped(
    logger: StructuredLogger,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A hung playbook is cut off at the configured timeout."""
    seen: dict[str, object] = {}

    def hung(args: Sequence[str], **kwargs: object) -> subprocess.CompletedProcess[str]:
        seen.update(kwargs)
        raise subprocess.TimeoutExpired(list(args), 90.0)

    monkeypatch.setattr(subprocess, "run", hung)
    runner = AnsibleRunner(logger=logger, playbook=tmp_path / "playbook.yml", timeout=90.0)

    with pytest.raises(ConfigurationRunError, match="timed out after 90s") as excinfo:
        runner.run_data_disk("gaming", SSHTarget(host="203.0.113.10"), "vol-new")

    assert seen["timeout"] == 90.0
    assert excinfo.value.context["timeout"] == 90.0


def test_non_executable_binary_raises(logger: StructuredLogger, tmp_path: Path) -> None:
    """An OSError starting the playbook becomes a configuration failure."""
    binary = tmp_path / "ansible-playbook"
    binary.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    binary.chmod(0o644)
    runner = AnsibleRunner(
        logger=logger,
        playbook=tmp_path / "playbook.yml",
        ansible_playbook_bin=str(binary),
    )

    with pytest.raises(ConfigurationRunError, match="could not be started") as excinfo:
        runner.run_data_disk("gaming", SSHTarget(host="203.0.113.10"), "vol-new")

    assert isinstance(excinfo.value.__cause__, PermissionError)


def test_inventory_write_failure_raises(
    ansible: AnsibleRunner,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failure writing the inventory is reported before anything runs."""

    def refuse(*_args: object, **_kwargs: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(AnsibleRunner, "write_inventory", refuse)
    monkeypatch.setattr(subprocess, "run", RecordingRun())

    with pytest.raises(ConfigurationRunError, match="disk full"):
        ansible.run_data_disk("gaming", SSHTarget(host="203.0.113.10"), "vol-new")
