"""Doctor command infrastructure."""

from __future__ import annotations

from .engine import DoctorEngine, run_probes
from .models import (
    PROBE_CATEGORY_VALUES,
    DoctorImpact,
    DoctorReport,
    DoctorSummary,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeExecutorOptions,
    ProbeResult,
    ProbeStatus,
    aggregate_results,
    build_report,
)
from .probes import collect_probes
from .stacks import StackDiagnosis, diagnose, force_destroy

__all__ = [
    "DoctorEngine",
    "DoctorImpact",
    "DoctorReport",
    "DoctorSummary",
    "ProbeCategory",
    "PROBE_CATEGORY_VALUES",
    "ProbeContext",
    "ProbeDefinition",
    "ProbeExecutorOptions",
    "ProbeResult",
    "ProbeStatus",
    "StackDiagnosis",
    "aggregate_results",
    "build_report",
    "collect_probes",
    "diagnose",
    "force_destroy",
    "run_probes",
]
