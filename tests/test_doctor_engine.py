"""Tests for the doctor probe execution engine."""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any

import pytest

from padctl.doctor import (
    PROBE_CATEGORY_VALUES,
    DoctorEngine,
    DoctorImpact,
    ProbeContext,
    ProbeDefinition,
    ProbeExecutorOptions,
    ProbeResult,
    ProbeStatus,
    aggregate_results,
    run_probes,
)
from padctl.doctor.engine import (
    _duration_ms,
    _run_single_probe,
    _unexpected_failure,
)


class RecordingLogger:
    """Collects leveled events emitted by the engine."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, object]]] = []

    def info(self, message: str, **context: object) -> None:
        self.events.append(("info", message, context))

    def warning(self, message: str, **context: object) -> None:
        self.events.append(("warning", message, context))


def _dummy_context(
    options: ProbeExecutorOptions,
    logger: RecordingLogger | None = None,
) -> ProbeContext:
    """Return a probe context populated with sentinel dependencies."""
    sentinel: Any = object()
    recorder: Any = logger or RecordingLogger()
    return ProbeContext(
        config=sentinel,
        registry=sentinel,
        stacks=sentinel,
        logger=recorder,
        options=options,
    )


def _result(
    status: ProbeStatus,
    impact: DoctorImpact,
    *,
    message: str = "ok",
) -> ProbeResult:
    return ProbeResult(
        id="probe",
        category="env",
        status=status,
        impact=impact,
        message=message,
    )


def _green(probe_id: str) -> Callable[[ProbeContext], ProbeResult]:
    return lambda ctx: ProbeResult(
        id=probe_id,
        category="env",
        status=ProbeStatus.GREEN,
        impact=DoctorImpact.OK,
        message="ok",
    )


def test_aggregate_results_yellow_overrides_green() -> None:
    """A yellow result should promote the summary to yellow without failing."""
    summary = aggregate_results(
        [
            _result(ProbeStatus.GREEN, DoctorImpact.OK),
            _result(ProbeStatus.YELLOW, DoctorImpact.OK),
        ]
    )
    assert summary.status is ProbeStatus.YELLOW
    assert summary.exit_code == 0
    assert summary.totals[ProbeStatus.YELLOW] == 1


def test_aggregate_results_worst_impact_wins() -> None:
    """The highest impact decides the exit code."""
    summary = aggregate_results(
        [
            _result(ProbeStatus.RED, DoctorImpact.VALIDATION),
            _result(ProbeStatus.RED, DoctorImpact.PROVIDER, message="credentials missing"),
            _result(ProbeStatus.RED, DoctorImpact.ENVIRONMENT),
        ]
    )
    assert summary.status is ProbeStatus.RED
    assert summary.exit_code == DoctorImpact.PROVIDER.value
    assert summary.impact is DoctorImpact.PROVIDER
    assert summary.totals[ProbeStatus.RED] == 3


def test_impact_from_exit_code() -> None:
    assert DoctorImpact.from_exit_code(3) is DoctorImpact.ENVIRONMENT
    with pytest.raises(ValueError):
        DoctorImpact.from_exit_code(9)


def test_run_probes_sequential_order_and_duration() -> None:
    """Sequential execution should preserve ordering and record durations."""
    options = ProbeExecutorOptions(max_concurrency=1)
    context = _dummy_context(options)

    def first_probe(ctx: ProbeContext) -> ProbeResult:
        assert ctx is context
        return ProbeResult(
            id="mismatch",
            category="state",
            status=ProbeStatus.GREEN,
            impact=DoctorImpact.OK,
            message="first",
        )

    def second_probe(ctx: ProbeContext) -> ProbeResult:
        assert ctx is context
        return ProbeResult(
            id="second",
            category="env",
            status=ProbeStatus.YELLOW,
            impact=DoctorImpact.OK,
            message="second",
        )

    probes = [
        ProbeDefinition(id="probe-1", category="env", run=first_probe),
        ProbeDefinition(id="probe-2", category="config", run=second_probe),
    ]

    results = run_probes(context, probes)
    assert [result.id for result in results] == ["probe-1", "probe-2"]
    assert [result.category for result in results] == ["env", "config"]
    assert all(result.duration_ms is not None for result in results)
    assert results[1].status is ProbeStatus.YELLOW


def test_run_probes_parallel_preserves_order() -> None:
    """Parallel execution should still return results in probe order."""
    context = _dummy_context(ProbeExecutorOptions(max_concurrency=4))

    def slow_probe(ctx: ProbeContext) -> ProbeResult:
        time.sleep(0.01)
        return _green("slow")(ctx)

    probes = [
        ProbeDefinition(id="slow-probe", category="env", run=slow_probe),
        ProbeDefinition(id="fast-probe", category="env", run=_green("fast")),
    ]

    results = run_probes(context, probes)
    assert [result.id for result in results] == ["slow-probe", "fast-probe"]


def test_run_probes_empty() -> None:
    assert run_probes(_dummy_context(ProbeExecutorOptions()), []) == []


def test_run_probes_converts_exceptions_to_provider_failures() -> None:
    """Unhandled probe exceptions should become provider failures."""
    logger = RecordingLogger()
    context = _dummy_context(ProbeExecutorOptions(max_concurrency=2), logger)

    def boom(ctx: ProbeContext) -> ProbeResult:
        raise RuntimeError("kaboom")

    results = run_probes(context, [ProbeDefinition(id="broken", category="cloud", run=boom)])
    assert results[0].status is ProbeStatus.RED
    assert results[0].impact is DoctorImpact.PROVIDER
    assert "unexpected error" in results[0].message
    assert results[0].data is not None
    assert "kaboom" in str(results[0].data)
    assert logger.events[0][:2] == ("warning", "Doctor probe crashed.")


def test_doctor_engine_run_returns_report_with_metadata() -> None:
    """Running the engine should produce a report with aggregated metadata."""
    context = _dummy_context(ProbeExecutorOptions(max_concurrency=1))
    probes = [ProbeDefinition(id="healthy", category="env", run=_green("healthy"))]

    report = DoctorEngine(context).run(probes, metadata={"session": "test"})

    assert report.summary.status is ProbeStatus.GREEN
    assert report.summary.exit_code == 0
    assert report.metadata is not None
    assert report.metadata["probe_count"] == 1
    assert report.metadata["concurrency"] == 1
    assert report.metadata["session"] == "test"
    payload = report.to_dict()
    assert payload["summary"] == {
        "status": "green",
        "impact": "ok",
        "exit_code": 0,
        "totals": {"green": 1, "yellow": 0, "red": 0},
    }


def test_duration_ms_tracks_elapsed(monkeypatch: pytest.MonkeyPatch) -> None:
    """_duration_ms should convert perf_counter deltas to milliseconds."""
    monkeypatch.setattr("padctl.doctor.engine.time.perf_counter", lambda: 10.5)
    assert _duration_ms(10.0) == 500


def test_unexpected_failure_wraps_exception() -> None:
    """_unexpected_failure should capture metadata about probe errors."""
    probe = ProbeDefinition(id="failing", category="env", run=_green("failing"))
    try:
        raise RuntimeError("boom")
    except RuntimeError as caught:
        exc = caught
        result = _unexpected_failure(probe, caught, 42)
    assert result.status is ProbeStatus.RED
    assert "failing" in result.message and "boom" in result.message
    assert result.duration_ms == 42
    assert result.warnings == ("unhandled-exception",)
    assert isinstance(result.data, dict)
    assert result.data["exception"] == repr(exc)
    assert "RuntimeError" in result.data["traceback"]


def test_run_single_probe_coerces_metadata(monkeypatch: pytest.MonkeyPatch) -> None:
    """_run_single_probe should align id/category and populate duration."""
    probe = ProbeDefinition(
        id="expected-id",
        category="env",
        run=lambda ctx: ProbeResult(
            id="mismatch",
            category="config",
            status=ProbeStatus.GREEN,
            impact=DoctorImpact.OK,
            message="done",
        ),
    )

    monkeypatch.setattr("padctl.doctor.engine._duration_ms", lambda start: 100)
    result = _run_single_probe(probe, _dummy_context(ProbeExecutorOptions()))
    assert result.id == "expected-id"
    assert result.category == "env"
    assert result.duration_ms == 100


def test_run_probes_caps_workers(monkeypatch: pytest.MonkeyPatch) -> None:
    """The pool never exceeds max_concurrency or the number of probes."""
    captured: dict[str, object] = {}

    class FakeExecutor:
        def __init__(self, max_workers: int) -> None:
            captured["max_workers"] = max_workers

        def __enter__(self) -> FakeExecutor:
            return self

        def __exit__(self, *exc_info: object) -> bool:
            return False

        def map(
            self,
            func: Callable[[ProbeDefinition], ProbeResult],
            items: Iterable[ProbeDefinition],
        ) -> Iterator[ProbeResult]:
            return (func(item) for item in items)

    monkeypatch.setattr(concurrent.futures, "ThreadPoolExecutor", FakeExecutor)

    context = _dummy_context(ProbeExecutorOptions(max_concurrency=3))
    probes = [ProbeDefinition(id=f"p{i}", category="env", run=_green(f"p{i}")) for i in range(5)]
    results = run_probes(context, probes)
    assert captured["max_workers"] == 3
    assert [result.id for result in results] == ["p0", "p1", "p2", "p3", "p4"]

    run_probes(context, probes[:2])
    assert captured["max_workers"] == 2


def test_doctor_categories_and_status_severity() -> None:
    assert PROBE_CATEGORY_VALUES == ("env", "config", "state", "stacks", "cloud")
    assert [status.severity for status in ProbeStatus] == [0, 1, 2]


def test_result_to_dict_copies_collections() -> None:
    result = ProbeResult(
        id="lock:snapshot/gaming",
        category="stacks",
        status=ProbeStatus.YELLOW,
        impact=DoctorImpact.OK,
        message="1 lock file",
        data={"count": 1},
        warnings=("stale",),
    )

    assert result.to_dict() == {
        "id": "lock:snapshot/gaming",
        "category": "stacks",
        "status": "yellow",
        "message": "1 lock file",
        "remediation": None,
        "duration_ms": None,
        "data": {"count": 1},
        "warnings": ["stale"],
    }
