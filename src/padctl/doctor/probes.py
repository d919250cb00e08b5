"""Probe registration entry point for the doctor command."""

from __future__ import annotations

import os
import platform
import shutil
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

from .. import __version__
from ..models import STACK_PROJECTS, StackKey
from ..state.registry import StateRegistryError
from .models import (
    DoctorImpact,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
)


def collect_probes(context: ProbeContext) -> Sequence[ProbeDefinition]:
    """Return the set of probes that should run for the current context."""
    probes: list[ProbeDefinition] = []
    probes.extend(_env_probes())
    probes.extend(_config_probes())
    probes.extend(_state_probes())
    probes.extend(_stack_probes())
    if not context.options.skip_cloud:
        probes.extend(_cloud_probes())
    return tuple(probes)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_probe(
    probe_id: str,
    category: ProbeCategory,
    handler: Callable[[ProbeContext], ProbeResult],
) -> ProbeDefinition:
    return ProbeDefinition(id=probe_id, category=category, run=handler)


def _command_exists(command: str) -> bool:
    path = Path(command)
    if path.is_absolute() or str(path.parent) not in {"", "."}:
        return path.exists() and os.access(path, os.X_OK)
    resolved = shutil.which(command)
    return resolved is not None and os.access(resolved, os.X_OK)


def _directory_writable(path: Path) -> bool:
    candidate = path
    while not candidate.exists():
        if candidate.parent == candidate:
            return False
        candidate = candidate.parent
    return candidate.is_dir() and os.access(candidate, os.W_OK | os.X_OK)


# ---------------------------------------------------------------------------
# Environment probes
# ---------------------------------------------------------------------------


def _env_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("env-python", "env", _probe_env_python),
        _make_probe("env-ansible-playbook", "env", _probe_env_ansible),
    )


def _probe_env_python(_context: ProbeContext) -> ProbeResult:
    version = platform.python_version()
    return ProbeResult(
        id="env-python",
        category="env",
        status=ProbeStatus.GREEN,
        impact=DoctorImpact.OK,
        message=f"Python {version} with padctl {__version__}.",
        data={"executable": sys.executable, "version": version},
    )


def _probe_env_ansible(context: ProbeContext) -> ProbeResult:
    binary = context.config.ansible.ansible_playbook_bin
    if _command_exists(binary):
        return ProbeResult(
            id="env-ansible-playbook",
            category="env",
            status=ProbeStatus.GREEN,
            impact=DoctorImpact.OK,
            message=f"Binary '{binary}' available.",
        )
    return ProbeResult(
        id="env-ansible-playbook",
        category="env",
        status=ProbeStatus.RED,
        impact=DoctorImpact.ENVIRONMENT,
        message=f"Required binary '{binary}' not found; restores cannot mount the new disk.",
        remediation="Install Ansible or set ansible.ansible_playbook_bin in the config file.",
    )


# ---------------------------------------------------------------------------
# Config probes
# ---------------------------------------------------------------------------


def _config_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("config-file", "config", _probe_config_file),
        _make_probe("config-playbook", "config", _probe_config_playbook),
    )


def _probe_config_file(context: ProbeContext) -> ProbeResult:
    path = context.config.config_file
    if path.exists():
        return ProbeResult(
            id="config-file",
            category="config",
            status=ProbeStatus.GREEN,
            impact=DoctorImpact.OK,
            message=f"Configuration loaded from {path}.",
        )
    return ProbeResult(
        id="config-file",
        category="config",
        status=ProbeStatus.YELLOW,
        impact=DoctorImpact.OK,
        message=f"No configuration file at {path}; built-in defaults in use.",
        warnings=("config-defaults",),
    )


def _probe_config_playbook(context: ProbeContext) -> ProbeResult:
    playbook = context.config.ansible.playbook
    if playbook.is_file():
        return ProbeResult(
            id="config-playbook",
            category="config",
            status=ProbeStatus.GREEN,
            impact=DoctorImpact.OK,
            message=f"Playbook {playbook} present.",
        )
    return ProbeResult(
        id="config-playbook",
        category="config",
        status=ProbeStatus.RED,
        impact=DoctorImpact.VALIDATION,
        message=f"Playbook {playbook} not found.",
        remediation="Set ansible.playbook to the instance playbook path.",
    )


# ---------------------------------------------------------------------------
# State probes
# ---------------------------------------------------------------------------


def _state_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("state-dirs", "state", _probe_state_dirs),
        _make_probe("state-registry", "state", _probe_state_registry),
    )


def _probe_state_dirs(context: ProbeContext) -> ProbeResult:
    config = context.config
    directories = {
        "registry_dir": config.registry_dir,
        "logs_dir": config.logs_dir,
        "stacks_dir": config.stacks_dir,
    }
    unwritable = [f"{label}={path}" for label, path in directories.items() if not _directory_writable(path)]
    if unwritable:
        return ProbeResult(
            id="state-dirs",
            category="state",
            status=ProbeStatus.RED,
            impact=DoctorImpact.ENVIRONMENT,
            message=f"State directories not writable: {', '.join(unwritable)}.",
            data={key: str(value) for key, value in directories.items()},
        )
    return ProbeResult(
        id="state-dirs",
        category="state",
        status=ProbeStatus.GREEN,
        impact=DoctorImpact.OK,
        message="State directories writable.",
        data={key: str(value) for key, value in directories.items()},
    )


def _probe_state_registry(context: ProbeContext) -> ProbeResult:
    try:
        entries = context.registry.list_instances()
    except StateRegistryError as exc:
        return ProbeResult(
            id="state-registry",
            category="state",
            status=ProbeStatus.RED,
            impact=DoctorImpact.ENVIRONMENT,
            message=f"Instance registry unreadable: {exc}",
        )
    missing_disk = [entry["name"] for entry in entries if not entry.get("data_disk_id")]
    if missing_disk:
        return ProbeResult(
            id="state-registry",
            category="state",
            status=ProbeStatus.YELLOW,
            impact=DoctorImpact.OK,
            message=f"Instances without a recorded data disk: {', '.join(missing_disk)}.",
            warnings=tuple(f"no-data-disk:{name}" for name in missing_disk),
            data={"instances": len(entries)},
        )
    return ProbeResult(
        id="state-registry",
        category="state",
        status=ProbeStatus.GREEN,
        impact=DoctorImpact.OK,
        message=f"{len(entries)} instance(s) registered.",
        data={"instances": len(entries)},
    )


# ---------------------------------------------------------------------------
# Stack probes
# ---------------------------------------------------------------------------


def _stack_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("stacks-locks", "stacks", _probe_stack_locks),)


def _probe_stack_locks(context: ProbeContext) -> ProbeResult:
    try:
        names = [entry["name"] for entry in context.registry.list_instances()]
    except StateRegistryError:
        names = []
    locked: list[str] = []
    for name in names:
        for project in STACK_PROJECTS:
            key = StackKey(project=project, stack=name)
            if context.stacks.lock_files(key):
                locked.append(str(key))
    if locked:
        return ProbeResult(
            id="stacks-locks",
            category="stacks",
            status=ProbeStatus.YELLOW,
            impact=DoctorImpact.OK,
            message=f"Leftover stack locks: {', '.join(locked)}.",
            remediation="Run `padctl stack diagnose <instance>` to clean them up.",
            warnings=tuple(f"lock:{item}" for item in locked),
        )
    return ProbeResult(
        id="stacks-locks",
        category="stacks",
        status=ProbeStatus.GREEN,
        impact=DoctorImpact.OK,
        message="No leftover stack locks.",
    )


# ---------------------------------------------------------------------------
# Cloud probes
# ---------------------------------------------------------------------------


def _cloud_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("cloud-credentials", "cloud", _probe_cloud_credentials),)


def _probe_cloud_credentials(context: ProbeContext) -> ProbeResult:
    check = context.credentials_check
    if check is None:
        return ProbeResult(
            id="cloud-credentials",
            category="cloud",
            status=ProbeStatus.YELLOW,
            impact=DoctorImpact.OK,
            message="Cloud credential check unavailable.",
            warnings=("credentials-unchecked",),
        )
    problem = check()
    if problem:
        return ProbeResult(
            id="cloud-credentials",
            category="cloud",
            status=ProbeStatus.RED,
            impact=DoctorImpact.PROVIDER,
            message=f"Cloud credentials unusable: {problem}",
            remediation="Configure AWS credentials or set aws.profile in the config file.",
        )
    return ProbeResult(
        id="cloud-credentials",
        category="cloud",
        status=ProbeStatus.GREEN,
        impact=DoctorImpact.OK,
        message="Cloud credentials resolved.",
    )


__all__ = ["collect_probes"]
