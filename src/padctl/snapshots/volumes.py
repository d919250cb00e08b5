"""Attach, detach and delete data volumes with bounded waits and retries."""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from ..errors import CloudError, CriticalError
from ..logging import StructuredLogger
from ..models import VolumeInfo, VolumeStatus
from ..providers.base import CloudClient, StorageClassMapping
from ..retry import Clock, RetryExhaustedError, RetryPolicy, poll_until, retry_call


@dataclass(slots=True, frozen=True)
class VolumeTimeouts:
    """Wait budgets (seconds) for volume state transitions."""

    attach: float = 60.0
    detach: float = 60.0
    usable: float = 120.0
    poll_interval: float = 2.0


def is_delete_conflict(exc: Exception) -> bool:
    """Return ``True`` for errors worth retrying during a volume delete."""
    return isinstance(exc, CloudError) and exc.is_conflict


@dataclass(slots=True)
class VolumeOperations:
    """Volume lifecycle helpers shared by the archive and restore workflows."""

    client: CloudClient
    logger: StructuredLogger
    attach_types: StorageClassMapping
    timeouts: VolumeTimeouts = field(default_factory=VolumeTimeouts)
    delete_policy: RetryPolicy = field(default_factory=RetryPolicy)
    clock: Clock = field(default_factory=Clock)

    def detach(self, instance_id: str, volume_id: str, *, role: str = "data") -> None:
        """Detach *volume_id*, treating "not attached"/"not found" as done.

        Waits until the volume leaves ``in_use``; a wait timeout is logged and
        the caller proceeds.
        """
        self.logger.info("Detaching volume.", instance_id=instance_id, volume_id=volume_id, role=role)
        try:
            self.client.detach_volume(instance_id, volume_id)
        except CloudError as exc:
            if not exc.is_not_found:
                raise
            self.logger.warning(
                "Volume already detached or missing; continuing.",
                instance_id=instance_id,
                volume_id=volume_id,
                role=role,
                error=str(exc),
            )
            return

        detached = self.wait_for_status(
            volume_id,
            lambda info: info.status is not VolumeStatus.IN_USE,
            timeout=self.timeouts.detach,
            missing_ok=True,
        )
        if not detached:
            self.logger.warning(
                "Timed out waiting for volume to detach; continuing.",
                volume_id=volume_id,
                timeout=self.timeouts.detach,
            )

    def attach(self, instance_id: str, volume_id: str) -> None:
        """Attach *volume_id* and wait (best effort) until it is in use."""
        storage_class: str | None = None
        try:
            storage_class = self.client.get_volume(volume_id).storage_class
        except CloudError as exc:
            self.logger.warning(
                "Could not read volume storage class; using default attach type.",
                volume_id=volume_id,
                default=self.attach_types.default,
                error=str(exc),
            )
        attach_type = self.attach_types.resolve(storage_class)

        self.logger.info(
            "Attaching volume.",
            instance_id=instance_id,
            volume_id=volume_id,
            attach_type=attach_type,
        )
        self.client.attach_volume(instance_id, volume_id, attach_type)

        attached = self.wait_for_status(
            volume_id,
            lambda info: info.status is VolumeStatus.IN_USE,
            timeout=self.timeouts.attach,
        )
        if not attached:
            self.logger.warning(
                "Timed out waiting for volume to attach; continuing.",
                volume_id=volume_id,
                timeout=self.timeouts.attach,
            )

    def delete_with_retry(self, volume_id: str, context: Mapping[str, object] | None = None) -> None:
        """Delete *volume_id*, retrying only transient conflicts.

        A volume that no longer exists counts as deleted. Any other error, or
        running out of attempts, raises :class:`CriticalError`: a snapshot may
        already exist while the volume is stuck, which needs an operator.
        """
        details = dict(context or {})

        def _on_retry(attempt: int, exc: Exception) -> None:
            self.logger.warning(
                "Volume busy; retrying delete.",
                volume_id=volume_id,
                attempt=attempt,
                attempts=self.delete_policy.attempts,
                error=str(exc),
            )

        try:
            retry_call(
                lambda: self.client.delete_volume(volume_id),
                should_retry=is_delete_conflict,
                policy=self.delete_policy,
                clock=self.clock,
                on_retry=_on_retry,
            )
        except RetryExhaustedError as exc:
            self.logger.error(
                "Volume delete exhausted retries.",
                volume_id=volume_id,
                attempts=exc.attempts,
                context=details,
            )
            raise CriticalError(
                f"Volume {volume_id} could not be deleted after {exc.attempts} attempts: "
                f"{exc.last_error}. Delete it manually.",
                resource_id=volume_id,
                operation="delete_volume",
                context={"attempts": exc.attempts, **details},
            ) from exc.last_error
        except CloudError as exc:
            if exc.is_not_found:
                self.logger.warning("Volume already deleted.", volume_id=volume_id, error=str(exc), context=details)
                return
            self.logger.error("Volume delete failed.", volume_id=volume_id, error=str(exc), context=details)
            raise CriticalError(
                f"Volume {volume_id} could not be deleted: {exc}. Delete it manually.",
                resource_id=volume_id,
                operation="delete_volume",
                context={"kind": exc.kind.value, **details},
            ) from exc
        self.logger.info("Volume deleted.", volume_id=volume_id, context=details)

    def wait_for_status(
        self,
        volume_id: str,
        predicate: Callable[[VolumeInfo], bool],
        *,
        timeout: float,
        missing_ok: bool = False,
    ) -> bool:
        """Poll *volume_id* until *predicate* holds; ``False`` on timeout.

        Lookup errors are ignored and polling continues. With *missing_ok*, a
        volume that no longer exists ends the wait as satisfied.
        """
        def _check() -> bool:
            try:
                info = self.client.get_volume(volume_id)
            except CloudError as exc:
                self.logger.debug("Volume lookup failed while waiting.", volume_id=volume_id, error=str(exc))
                return missing_ok and exc.is_not_found
            return predicate(info)

        return poll_until(
            _check,
            timeout=timeout,
            interval=self.timeouts.poll_interval,
            clock=self.clock,
        )

    def all_in_use(self, volume_ids: tuple[str, ...], *, timeout: float | None = None) -> bool:
        """Wait until every volume in *volume_ids* is in use."""
        budget = self.timeouts.usable if timeout is None else timeout

        def _check() -> bool:
            for volume_id in volume_ids:
                try:
                    info = self.client.get_volume(volume_id)
                except CloudError:
                    return False
                if info.status is not VolumeStatus.IN_USE:
                    return False
            return True

        return poll_until(_check, timeout=budget, interval=self.timeouts.poll_interval, clock=self.clock)


__all__ = ["VolumeOperations", "VolumeTimeouts", "is_delete_conflict"]
