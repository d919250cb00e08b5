"""Inspect and repair persisted reconciler state for one instance."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import StackStoreError
from ..logging import StructuredLogger
from ..models import STACK_PROJECTS, StackKey
from ..stacks import StackStore


@dataclass(slots=True)
class StackDiagnosis:
    """Findings of :func:`diagnose`."""

    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    auto_fix_applied: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "auto_fix_applied": self.auto_fix_applied,
        }


def diagnose(
    store: StackStore,
    instance: str,
    logger: StructuredLogger,
    *,
    projects: Sequence[str] = STACK_PROJECTS,
) -> StackDiagnosis:
    """Report leftover locks and stacks for *instance*, removing what is safe.

    Every lock file is removed, including one held by a command that is still
    running, so callers must not diagnose during an operation. Stacks that
    still record resources are reported as potentially orphaned and left
    alone; empty stacks are removed.
    """
    diagnosis = StackDiagnosis()
    keys = [StackKey(project=project, stack=instance) for project in projects]

    lock_count = sum(len(store.lock_files(key)) for key in keys)
    if lock_count:
        diagnosis.issues.append(f"Found {lock_count} orphaned lock file(s) for '{instance}'.")
        diagnosis.recommendations.append(
            "Stale locks were removed; re-run the interrupted command. Locks are removed "
            "unconditionally, so never run diagnose while a snapshot or restore is in progress."
        )
        for key in keys:
            removed = store.remove_lock_files(key)
            if removed:
                logger.info("Removed orphaned stack locks.", stack=str(key), count=len(removed))
        diagnosis.auto_fix_applied = True

    for key in keys:
        if not store.exists(key):
            continue
        try:
            resources = store.resources(key)
        except StackStoreError as exc:
            # Unreadable state is treated as holding resources.
            logger.warning("Stack file unreadable.", stack=str(key), error=str(exc))
            resources = [{"urn": "unknown"}]
        if resources:
            diagnosis.issues.append(
                f"Found potentially orphaned stack {key} with {len(resources)} resource(s)."
            )
            diagnosis.recommendations.append(
                f"Check the resources of stack {key} in the cloud console; run "
                f"`padctl stack destroy {instance} --yes` only once they are accounted for."
            )
            logger.warning("Stack still records resources.", stack=str(key), resources=len(resources))
            continue
        store.remove_stack_files(key)
        diagnosis.issues.append(f"Removed empty stack {key}.")
        diagnosis.auto_fix_applied = True
        logger.info("Removed empty stack.", stack=str(key))

    return diagnosis


def force_destroy(
    store: StackStore,
    instance: str,
    logger: StructuredLogger,
    *,
    projects: Sequence[str] = STACK_PROJECTS,
) -> list[Path]:
    """Remove stack, history, backup and lock files for *instance* unconditionally."""
    removed: list[Path] = []
    for project in projects:
        key = StackKey(project=project, stack=instance)
        logger.warning("Force destroying stack state.", stack=str(key))
        try:
            removed.extend(store.purge(key))
        except OSError as exc:
            raise StackStoreError(
                f"Failed to remove state for stack {key}: {exc}",
                context={"stack": str(key)},
            ) from exc
    return removed


__all__ = ["StackDiagnosis", "diagnose", "force_destroy"]
