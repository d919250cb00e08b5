"""Probe, result and report types for ``padctl doctor``.

Probes cover five areas: the local toolchain (``env``), the config file and
playbook (``config``), the state directories and instance registry
(``state``), reconciler stacks and their locks (``stacks``) and cloud
credentials (``cloud``). Each probe returns one :class:`ProbeResult`; the
report's exit code is the worst impact among them.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, get_args

from ..exit_codes import ExitCode

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..logging import StructuredLogger
    from ..stacks import StackStore
    from ..state.registry import StateRegistry


class ProbeStatus(str, Enum):
    """Traffic-light outcome of a probe, ordered by severity."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {ProbeStatus.GREEN: 0, ProbeStatus.YELLOW: 1, ProbeStatus.RED: 2}


class DoctorImpact(Enum):
    """What a failing probe blocks; the value is the process exit code."""

    OK = int(ExitCode.OK)
    VALIDATION = int(ExitCode.VALIDATION)
    ENVIRONMENT = int(ExitCode.ENVIRONMENT)
    PROVIDER = int(ExitCode.PROVIDER)

    @classmethod
    def from_exit_code(cls, code: int) -> DoctorImpact:
        try:
            return cls(code)
        except ValueError:
            raise ValueError(f"Unsupported doctor exit code: {code}") from None


ProbeCategory = Literal["env", "config", "state", "stacks", "cloud"]

PROBE_CATEGORY_VALUES: tuple[ProbeCategory, ...] = get_args(ProbeCategory)


@dataclass(slots=True, frozen=True)
class ProbeExecutorOptions:
    """How many probes run at once, and whether the cloud is contacted."""

    max_concurrency: int = 4
    skip_cloud: bool = False


@dataclass(slots=True, frozen=True)
class ProbeContext:
    """Everything a probe may inspect.

    ``credentials_check`` returns a problem description, or ``None`` when the
    cloud credentials work; it is only called by the ``cloud`` probes.
    """

    config: AppConfig
    registry: StateRegistry
    stacks: StackStore
    logger: StructuredLogger
    options: ProbeExecutorOptions
    credentials_check: Callable[[], str | None] | None = None


@dataclass(slots=True, frozen=True)
class ProbeResult:
    id: str
    category: ProbeCategory
    status: ProbeStatus
    impact: DoctorImpact
    message: str
    remediation: str | None = None
    duration_ms: int | None = None
    data: Mapping[str, Any] | None = None
    warnings: Sequence[str] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "category": self.category,
            "status": self.status.value,
            "message": self.message,
            "remediation": self.remediation,
            "duration_ms": self.duration_ms,
            "data": dict(self.data or {}),
            "warnings": list(self.warnings),
        }


@dataclass(slots=True, frozen=True)
class ProbeDefinition:
    """A named probe and the function that runs it."""

    id: str
    category: ProbeCategory
    run: Callable[[ProbeContext], ProbeResult]


@dataclass(slots=True, frozen=True)
class DoctorSummary:
    """Worst status and worst impact over a set of results."""

    status: ProbeStatus
    impact: DoctorImpact
    exit_code: int
    totals: Mapping[ProbeStatus, int]

    @classmethod
    def from_results(cls, results: Iterable[ProbeResult]) -> DoctorSummary:
        counts: Counter[ProbeStatus] = Counter({status: 0 for status in ProbeStatus})
        status = ProbeStatus.GREEN
        impact = DoctorImpact.OK
        for result in results:
            counts[result.status] += 1
            status = max(status, result.status, key=lambda item: item.severity)
            impact = max(impact, result.impact, key=lambda item: item.value)
        return cls(status=status, impact=impact, exit_code=impact.value, totals=dict(counts))


@dataclass(slots=True, frozen=True)
class DoctorReport:
    results: Sequence[ProbeResult]
    summary: DoctorSummary
    metadata: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, object]:
        """Return the JSON payload printed by ``padctl doctor --json``."""
        return {
            "summary": {
                "status": self.summary.status.value,
                "impact": self.summary.impact.name.lower(),
                "exit_code": self.summary.exit_code,
                "totals": {status.value: count for status, count in self.summary.totals.items()},
            },
            "results": [result.to_dict() for result in self.results],
            "metadata": dict(self.metadata or {}),
        }


def aggregate_results(results: Iterable[ProbeResult]) -> DoctorSummary:
    return DoctorSummary.from_results(results)


def build_report(
    results: Sequence[ProbeResult],
    metadata: Mapping[str, Any] | None = None,
) -> DoctorReport:
    return DoctorReport(results=tuple(results), summary=aggregate_results(results), metadata=metadata)
