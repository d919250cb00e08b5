"""Probe execution harness for the doctor command."""

from __future__ import annotations

import concurrent.futures
import time
import traceback
from collections.abc import Mapping, Sequence
from dataclasses import replace

from .models import (
    DoctorImpact,
    DoctorReport,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
    build_report,
)


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _stamp(probe: ProbeDefinition, result: ProbeResult, duration_ms: int) -> ProbeResult:
    """Force the probe's own id/category onto *result* and fill in its duration."""
    changes: dict[str, object] = {}
    if result.id != probe.id:
        changes["id"] = probe.id
    if result.category != probe.category:
        changes["category"] = probe.category
    if result.duration_ms is None:
        changes["duration_ms"] = duration_ms
    return replace(result, **changes) if changes else result


def _unexpected_failure(
    probe: ProbeDefinition,
    exc: Exception,
    duration_ms: int,
) -> ProbeResult:
    return ProbeResult(
        id=probe.id,
        category=probe.category,
        status=ProbeStatus.RED,
        impact=DoctorImpact.PROVIDER,
        message=f"Probe '{probe.id}' raised an unexpected error: {exc}",
        duration_ms=duration_ms,
        data={"exception": repr(exc), "traceback": traceback.format_exc()},
        warnings=("unhandled-exception",),
    )


def _run_single_probe(probe: ProbeDefinition, context: ProbeContext) -> ProbeResult:
    start = time.perf_counter()
    try:
        result = probe.run(context)
    except Exception as exc:
        failure = _unexpected_failure(probe, exc, _duration_ms(start))
        context.logger.warning("Doctor probe crashed.", probe=probe.id, error=repr(exc))
        return failure
    return _stamp(probe, result, _duration_ms(start))


def run_probes(
    context: ProbeContext,
    probes: Sequence[ProbeDefinition],
) -> list[ProbeResult]:
    """Execute probes with bounded concurrency; results follow *probes* order."""
    if not probes:
        return []

    workers = min(max(1, context.options.max_concurrency), len(probes))
    if workers == 1:
        return [_run_single_probe(probe, context) for probe in probes]

    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(lambda probe: _run_single_probe(probe, context), probes))


class DoctorEngine:
    """Run a set of probes against one context and summarise them."""

    def __init__(self, context: ProbeContext) -> None:
        """Store the probe execution context."""
        self._context = context

    def run(
        self,
        probes: Sequence[ProbeDefinition],
        *,
        metadata: Mapping[str, object] | None = None,
    ) -> DoctorReport:
        """Run *probes* and return the aggregated report."""
        options = self._context.options
        start = time.perf_counter()
        results = run_probes(self._context, probes)
        run_metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "probe_count": len(results),
            "categories": sorted({probe.category for probe in probes}),
            "concurrency": options.max_concurrency,
            "skip_cloud": options.skip_cloud,
        }
        if metadata:
            run_metadata.update(metadata)
        report = build_report(results, metadata=run_metadata)
        self._context.logger.info(
            "Doctor run finished.",
            status=report.summary.status.value,
            exit_code=report.summary.exit_code,
            probes=len(results),
        )
        return report


__all__ = ["DoctorEngine", "run_probes"]
