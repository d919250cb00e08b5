"""Refuse data-disk operations that target an instance's boot volume."""
from __future__ import annotations

from ..errors import CloudError, RootVolumeProtectionError
from ..logging import StructuredLogger
from ..providers.base import CloudClient
from ..validation import normalize_volume_id


def assert_not_root_volume(
    client: CloudClient,
    logger: StructuredLogger,
    instance_id: str,
    candidate_volume_id: str,
    *,
    fail_closed: bool = False,
) -> None:
    """Raise :class:`RootVolumeProtectionError` if *candidate_volume_id* is the root volume.

    When instance metadata cannot be fetched the check is skipped with a
    warning, unless *fail_closed* is set.
    """
    candidate = normalize_volume_id(candidate_volume_id)
    try:
        info = client.get_instance(instance_id)
    except CloudError as exc:
        if fail_closed:
            raise RootVolumeProtectionError(
                f"Cannot verify that volume {candidate_volume_id} is not the root volume of "
                f"instance {instance_id}: {exc}",
                context={"instance_id": instance_id, "volume_id": candidate_volume_id},
            ) from exc
        logger.warning(
            "Could not fetch instance metadata; skipping root volume check.",
            instance_id=instance_id,
            volume_id=candidate_volume_id,
            error=str(exc),
        )
        return

    root = normalize_volume_id(info.root_volume_id)
    if root is not None and candidate is not None and root == candidate:
        raise RootVolumeProtectionError(
            f"Refusing to operate on volume {candidate_volume_id}: it is the root volume of "
            f"instance {instance_id}.",
            context={"instance_id": instance_id, "volume_id": candidate_volume_id},
        )
    logger.debug("Root volume check passed.", instance_id=instance_id, volume_id=candidate_volume_id)


__all__ = ["assert_not_root_volume"]
