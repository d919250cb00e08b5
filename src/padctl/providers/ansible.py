"""Configuration runner that mounts a restored data disk via Ansible."""
from __future__ import annotations

import os
import subprocess
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ..errors import ConfigurationRunError
from ..logging import StructuredLogger
from ..models import SSHTarget

DATA_DISK_TAG = "data-disk"
DEFAULT_PLAYBOOK_TIMEOUT = 1800.0


@dataclass(slots=True)
class AnsibleRunner:
    """Run the instance playbook restricted to the ``data-disk`` role."""

    logger: StructuredLogger
    playbook: Path
    ansible_playbook_bin: str = "ansible-playbook"
    extra_args: Sequence[str] = field(default_factory=tuple)
    timeout: float | None = DEFAULT_PLAYBOOK_TIMEOUT

    def run_data_disk(self, instance: str, target: SSHTarget, data_disk_id: str) -> None:
        """Mount *data_disk_id* on *target*; raise :class:`ConfigurationRunError` on failure."""
        with tempfile.TemporaryDirectory(prefix="padctl-ansible-") as tmpdir:
            inventory = Path(tmpdir) / "inventory.yml"
            try:
                self.write_inventory(inventory, instance, target, data_disk_id)
            except OSError as exc:
                raise ConfigurationRunError(
                    f"Could not write Ansible inventory {inventory}: {exc}",
                    context={"instance": instance},
                ) from exc
            args = [
                self.ansible_playbook_bin,
                "-i",
                str(inventory),
                "-t",
                DATA_DISK_TAG,
                *self.extra_args,
                str(self.playbook),
            ]
            self.logger.info(
                "Running data-disk configuration.",
                instance=instance,
                host=target.host,
                data_disk_id=data_disk_id,
            )
            self._run_command(args, error_prefix=f"{self.ansible_playbook_bin} -t {DATA_DISK_TAG}")

    def write_inventory(
        self,
        path: Path,
        instance: str,
        target: SSHTarget,
        data_disk_id: str,
    ) -> None:
        """Write a single-host YAML inventory for *instance* to *path*."""
        host_vars: dict[str, object] = {
            "ansible_host": target.host,
            "ansible_user": target.user,
            "data_disk_id": data_disk_id,
        }
        if target.private_key is not None:
            host_vars["ansible_ssh_private_key_file"] = str(target.private_key)
        document = {"all": {"hosts": {instance: host_vars}}}
        path.write_text(yaml.safe_dump(document, sort_keys=True), encoding="utf-8")
        os.chmod(path, 0o600)

    def _run_command(
        self,
        args: Sequence[str],
        *,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise ConfigurationRunError(f"{args[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ConfigurationRunError(
                f"{error_prefix} timed out after {exc.timeout:g}s.",
                context={"timeout": exc.timeout},
            ) from exc
        except OSError as exc:
            raise ConfigurationRunError(f"{error_prefix} could not be started: {exc}") from exc
        if result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise ConfigurationRunError(
                f"{error_prefix} failed (exit {result.returncode}): {message}",
                context={"returncode": result.returncode},
            )
        return result


__all__ = ["AnsibleRunner", "DATA_DISK_TAG", "DEFAULT_PLAYBOOK_TIMEOUT"]
