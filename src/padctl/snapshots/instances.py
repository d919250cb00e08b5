"""Idempotent stop/start/restart of instances with bounded waits."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from ..errors import CloudError, InstanceOperationError, InstanceTimeoutError
from ..logging import StructuredLogger
from ..models import InstanceInfo, InstanceStatus
from ..providers.base import CloudClient
from ..retry import Clock, poll_until
from .volumes import VolumeOperations

DEFAULT_INSTANCE_TIMEOUT = 300.0


@dataclass(slots=True)
class InstanceOperations:
    """Power actions used around volume swaps."""

    client: CloudClient
    logger: StructuredLogger
    volumes: VolumeOperations
    poll_interval: float = 5.0
    clock: Clock = field(default_factory=Clock)

    def stop(self, instance_id: str, *, wait: bool = True, timeout: float = DEFAULT_INSTANCE_TIMEOUT) -> None:
        """Stop *instance_id* unless it is already stopped or stopping."""
        info = self._describe(instance_id, "stop")
        if info.status in (InstanceStatus.STOPPED, InstanceStatus.STOPPING):
            self.logger.info("Instance already stopped or stopping.", instance_id=instance_id, status=info.status.value)
        else:
            self.logger.info("Stopping instance.", instance_id=instance_id)
            self._issue(instance_id, "stop", self.client.stop_instance)
        if wait:
            self._wait_for(instance_id, InstanceStatus.STOPPED, "stop", timeout)

    def start(self, instance_id: str, *, wait: bool = True, timeout: float = DEFAULT_INSTANCE_TIMEOUT) -> None:
        """Start *instance_id* unless it is already running or starting.

        When the start is rejected because attached volumes are not usable
        yet, wait for them to be in use and retry the start once.
        """
        info = self._describe(instance_id, "start")
        if info.status in (InstanceStatus.RUNNING, InstanceStatus.STARTING):
            self.logger.info("Instance already running or starting.", instance_id=instance_id, status=info.status.value)
        else:
            self.logger.info("Starting instance.", instance_id=instance_id)
            try:
                self.client.start_instance(instance_id)
            except CloudError as exc:
                if not exc.is_conflict:
                    raise _action_error(instance_id, "start", exc) from exc
                self.logger.warning(
                    "Start rejected while volumes settle; waiting before one retry.",
                    instance_id=instance_id,
                    error=str(exc),
                )
                if not self.volumes.all_in_use(info.volume_ids):
                    self.logger.warning("Attached volumes still not in use; retrying start anyway.", instance_id=instance_id)
                self._issue(instance_id, "start", self.client.start_instance)
        if wait:
            self._wait_for(instance_id, InstanceStatus.RUNNING, "start", timeout)

    def restart(self, instance_id: str, *, wait: bool = True, timeout: float = DEFAULT_INSTANCE_TIMEOUT) -> None:
        """Reboot *instance_id* unconditionally."""
        self.logger.info("Rebooting instance.", instance_id=instance_id)
        self._issue(instance_id, "restart", self.client.reboot_instance)
        if wait:
            self._wait_for(instance_id, InstanceStatus.RUNNING, "restart", timeout)

    # ------------------------------------------------------------------
    def _describe(self, instance_id: str, action: str) -> InstanceInfo:
        try:
            return self.client.get_instance(instance_id)
        except CloudError as exc:
            raise _action_error(instance_id, action, exc) from exc

    def _issue(self, instance_id: str, action: str, command: Callable[[str], None]) -> None:
        try:
            command(instance_id)
        except CloudError as exc:
            raise _action_error(instance_id, action, exc) from exc

    def _wait_for(self, instance_id: str, expected: InstanceStatus, action: str, timeout: float) -> None:
        def _check() -> bool:
            return self._describe(instance_id, action).status is expected

        if not poll_until(_check, timeout=timeout, interval=self.poll_interval, clock=self.clock):
            raise InstanceTimeoutError(
                f"Instance {instance_id} did not reach '{expected.value}' within {timeout:.0f}s during {action}.",
                context={"instance_id": instance_id, "action": action, "timeout": timeout},
            )
        self.logger.info("Instance reached expected state.", instance_id=instance_id, status=expected.value)


def _action_error(instance_id: str, action: str, exc: Exception) -> InstanceOperationError:
    return InstanceOperationError(
        f"Failed to {action} instance {instance_id}: {exc}",
        context={"instance_id": instance_id, "action": action},
    )


__all__ = ["DEFAULT_INSTANCE_TIMEOUT", "InstanceOperations"]
