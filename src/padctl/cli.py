"""Typer-powered command line interface for ``padctl``.

Every command opens a structured operation scope, resolves the instance entry
from the registry, and hands off to the snapshot workflows. Workflow errors
carry their own exit code (see :mod:`padctl.exit_codes`); the CLI only prints
them and records the failure.
"""
from __future__ import annotations

import json
import logging
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .doctor import (
    PROBE_CATEGORY_VALUES,
    DoctorEngine,
    DoctorImpact,
    DoctorReport,
    ProbeContext,
    ProbeExecutorOptions,
    ProbeResult,
    ProbeStatus,
    StackDiagnosis,
    collect_probes,
    diagnose,
    force_destroy,
)
from .errors import CriticalError, PadctlError, RestoreConfigurationError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .models import SnapshotRecord
from .providers import (
    AnsibleRunner,
    AWSCloudClient,
    CloudClient,
    ConfigurationRunner,
    StorageClassMapping,
    credentials_problem,
)
from .retry import Clock, RetryPolicy
from .snapshots import (
    InstanceOperations,
    RestoreRequest,
    VolumeOperations,
    VolumeTimeouts,
    WorkflowContext,
    create_data_disk_snapshot,
    restore_data_disk_snapshot,
    snapshot_and_delete_data_disk,
)
from .stacks import LocalReconciler, StackStore
from .state.registry import StateRegistry, StateRegistryError
from .validation import normalize_volume_id

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to padctl's YAML config file.",
)
INSTANCE_OPTION = typer.Option(
    ...,
    "--instance",
    "-i",
    help="Registered instance name.",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Confirm destructive actions (deleting disks, snapshots or stack state).",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit JSON output.")

DOCTOR_ONLY_OPTION = typer.Option(
    None,
    "--only",
    help="Comma-separated probe categories to run (env, config, state, stacks, cloud).",
)
DOCTOR_EXCLUDE_OPTION = typer.Option(
    None,
    "--exclude",
    help="Comma-separated probe categories to skip.",
)
DOCTOR_MAX_CONCURRENCY_OPTION = typer.Option(
    None,
    "--max-concurrency",
    min=1,
    help="Limit the number of probes executed concurrently.",
)
DOCTOR_SKIP_CLOUD_OPTION = typer.Option(
    False,
    "--skip-cloud",
    help="Do not contact the cloud provider.",
)

_PROBE_CATEGORY_SET = frozenset(PROBE_CATEGORY_VALUES)
_PROBE_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]PASS[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]FAIL[/red]",
}
_SUMMARY_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]GREEN[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]RED[/red]",
}
_DOCTOR_IMPACT_MESSAGES = {
    DoctorImpact.OK: "Doctor run completed successfully.",
    DoctorImpact.VALIDATION: "Doctor detected configuration validation errors.",
    DoctorImpact.ENVIRONMENT: "Doctor detected environment dependency errors.",
    DoctorImpact.PROVIDER: "Doctor detected cloud provider failures.",
}


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Cloud gaming instance data-disk admin CLI.

        Snapshot, archive and restore the data disk of registered instances,
        and inspect or repair the local reconciler state behind them.
        """
    ).strip(),
)
snapshot_app = typer.Typer(help="Snapshot, archive and restore instance data disks.")
stack_app = typer.Typer(help="Inspect and repair persisted reconciler stacks.")
instances_app = typer.Typer(help="Manage the local instance registry.")
config_app = typer.Typer(help="Inspect configuration.")

app.add_typer(snapshot_app, name="snapshot")
app.add_typer(stack_app, name="stack")
app.add_typer(instances_app, name="instance")
app.add_typer(config_app, name="config")


def build_cloud_client(config: AppConfig) -> CloudClient:
    """Return the cloud adapter for *config*."""
    return AWSCloudClient.from_session(
        profile=config.aws.profile,
        region=config.aws.region,
        default_volume_type=config.storage.default_volume_type,
    )


def build_configuration_runner(config: AppConfig, logger: StructuredLogger) -> ConfigurationRunner:
    """Return the runner that mounts restored disks."""
    return AnsibleRunner(
        logger=logger,
        playbook=config.ansible.playbook,
        ansible_playbook_bin=config.ansible.ansible_playbook_bin,
        extra_args=config.ansible.extra_args,
        timeout=config.ansible.playbook_timeout,
    )


@dataclass
class RuntimeContext:
    """Objects shared across CLI commands for a single invocation."""

    config: AppConfig
    registry: StateRegistry
    stacks: StackStore
    logger: StructuredLogger
    clock: Clock = field(default_factory=Clock)
    _client: CloudClient | None = None
    _workflow: WorkflowContext | None = None

    @property
    def client(self) -> CloudClient:
        """Return the cloud adapter, creating it on first use."""
        if self._client is None:
            self._client = build_cloud_client(self.config)
        return self._client

    def workflow(self) -> WorkflowContext:
        """Return the collaborators used by the snapshot workflows."""
        if self._workflow is not None:
            return self._workflow
        config = self.config
        timeouts = config.timeouts
        volumes = VolumeOperations(
            client=self.client,
            logger=self.logger,
            attach_types=StorageClassMapping(
                default=config.storage.default_attach_type,
                mapping=dict(config.storage.attach_types),
            ),
            timeouts=VolumeTimeouts(
                attach=timeouts.volume_attach,
                detach=timeouts.volume_detach,
                usable=timeouts.volume_usable,
                poll_interval=timeouts.volume_poll_interval,
            ),
            delete_policy=RetryPolicy(
                attempts=config.retries.volume_delete_attempts,
                delay=config.retries.volume_delete_delay,
            ),
            clock=self.clock,
        )
        instances = InstanceOperations(
            client=self.client,
            logger=self.logger,
            volumes=volumes,
            poll_interval=timeouts.instance_poll_interval,
            clock=self.clock,
        )
        self._workflow = WorkflowContext(
            client=self.client,
            reconciler=LocalReconciler(self.stacks, self.logger),
            volumes=volumes,
            instances=instances,
            logger=self.logger,
            resource_prefix=config.resource_prefix,
            default_iops=config.storage.default_iops,
            root_guard_fail_closed=config.safety.root_guard_fail_closed,
            instance_timeout=timeouts.instance_operation,
        )
        return self._workflow

    def runner(self) -> ConfigurationRunner:
        """Return the data-disk configuration runner."""
        return build_configuration_runner(self.config, self.logger)


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    registry = StateRegistry(config.registry_dir)
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        stacks=StackStore(config.stacks_dir),
        logger=StructuredLogger(config.logs_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _configure_verbose_logging() -> None:
    stdlib_logger = logging.getLogger("padctl")
    stdlib_logger.setLevel(logging.DEBUG)
    if any(isinstance(handler, RichHandler) for handler in stdlib_logger.handlers):
        return
    stdlib_logger.addHandler(RichHandler(console=err_console, show_path=False))


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the padctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Mirror workflow events to stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if verbose:
        _configure_verbose_logging()

    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"padctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc, context=context)
    raise typer.Exit(code=rc)


def _workflow_failure(op: OperationScope, exc: PadctlError) -> NoReturn:
    """Report a workflow error using the exit code it carries."""
    context = dict(exc.context)
    if isinstance(exc, CriticalError):
        console.print(
            f"[bold red]CRITICAL:[/bold red] {exc.operation} of {exc.resource_id} did not "
            "complete; manual cleanup is required."
        )
    if isinstance(exc, RestoreConfigurationError):
        state = "re-attached" if exc.rollback_succeeded else "NOT fully re-attached"
        console.print(f"[bold red]CRITICAL:[/bold red] the previous data disk was {state}.")
    _command_error(op, str(exc), rc=int(exc.exit_code), errors=[str(exc)], context=context)


def _require_instance(op: OperationScope, runtime: RuntimeContext, name: str) -> dict[str, Any]:
    try:
        return runtime.registry.require_instance(name)
    except StateRegistryError as exc:
        _command_error(op, str(exc), rc=int(ExitCode.VALIDATION))


def _update_instance(op: OperationScope, runtime: RuntimeContext, name: str, updates: Mapping[str, object]) -> None:
    try:
        runtime.registry.update_instance(name, updates)
    except StateRegistryError as exc:
        _command_error(op, f"Failed to update registry: {exc}", rc=int(ExitCode.ENVIRONMENT))


def _print_snapshot(record: SnapshotRecord) -> None:
    console.print(f"Snapshot [bold]{record.name}[/bold] ({record.id}) from {record.source_volume_id}.")


# ---------------------------------------------------------------------------
# snapshot
# ---------------------------------------------------------------------------


@snapshot_app.command("create")
def snapshot_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Snapshot name ([a-z0-9_-], at most 63 characters)."),
    instance: str = INSTANCE_OPTION,
    delete_data_disk: bool = typer.Option(
        False,
        "--delete-data-disk",
        help="Delete the data disk once the snapshot exists (requires --yes).",
    ),
    yes: bool = YES_OPTION,
) -> None:
    """Snapshot an instance's data disk, optionally deleting the disk afterwards."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "snapshot create",
        args={"name": name, "delete_data_disk": delete_data_disk, "yes": yes},
        target={"kind": "instance", "name": instance},
    ) as op:
        entry = _require_instance(op, runtime, instance)
        data_disk_id = entry.get("data_disk_id")
        if not data_disk_id:
            _command_error(
                op,
                f"Instance '{instance}' has no data disk recorded; nothing to snapshot.",
                rc=int(ExitCode.VALIDATION),
            )

        archive = delete_data_disk
        if delete_data_disk and not yes:
            console.print("[yellow]--delete-data-disk ignored: pass --yes to confirm deletion.[/yellow]")
            op.add_step("delete-data-disk", status="skipped", detail="confirmation missing")
            archive = False

        workflow = runtime.workflow()
        try:
            if archive:
                record = snapshot_and_delete_data_disk(
                    workflow,
                    instance_name=instance,
                    instance_id=entry["instance_id"],
                    snapshot_name=name,
                    data_disk_id=data_disk_id,
                )
            else:
                record = create_data_disk_snapshot(
                    workflow,
                    instance_name=instance,
                    snapshot_name=name,
                    data_disk_id=data_disk_id,
                )
        except PadctlError as exc:
            _workflow_failure(op, exc)

        _print_snapshot(record)
        if archive:
            _update_instance(op, runtime, instance, {"data_disk_id": None})
            console.print(f"Data disk {data_disk_id} deleted.")
            op.add_step("delete-data-disk", status="success", detail=str(data_disk_id))
        op.success(
            "Snapshot created.",
            changed=2 if archive else 1,
            context={"snapshot_id": record.id, "snapshot_name": record.name},
        )


@snapshot_app.command("restore")
def snapshot_restore(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Name of the snapshot to restore."),
    instance: str = INSTANCE_OPTION,
    delete_old_disk: bool = typer.Option(
        False,
        "--delete-old-disk",
        help="Delete the previous data disk after a successful restore (requires --yes).",
    ),
    delete_snapshot: bool = typer.Option(
        False,
        "--delete-snapshot",
        help="Delete the snapshot after a successful restore (requires --yes).",
    ),
    yes: bool = YES_OPTION,
) -> None:
    """Replace an instance's data disk with a volume restored from a snapshot."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "snapshot restore",
        args={
            "name": name,
            "delete_old_disk": delete_old_disk,
            "delete_snapshot": delete_snapshot,
            "yes": yes,
        },
        target={"kind": "instance", "name": instance},
    ) as op:
        entry = _require_instance(op, runtime, instance)
        host = entry.get("host")
        if not host:
            _command_error(
                op,
                f"Instance '{instance}' has no host recorded; register it with --host.",
                rc=int(ExitCode.VALIDATION),
            )

        unconfirmed = [
            flag
            for flag, requested in (("--delete-old-disk", delete_old_disk), ("--delete-snapshot", delete_snapshot))
            if requested and not yes
        ]
        for flag in unconfirmed:
            console.print(f"[yellow]{flag} ignored: pass --yes to confirm deletion.[/yellow]")
            op.add_step(flag.lstrip("-"), status="skipped", detail="confirmation missing")

        key = entry.get("ssh_private_key")
        request = RestoreRequest(
            instance_name=instance,
            instance_id=entry["instance_id"],
            snapshot_name=name,
            host=host,
            ssh_user=entry.get("ssh_user") or "ubuntu",
            ssh_private_key=Path(key).expanduser() if key else None,
            old_data_disk_id=entry.get("data_disk_id"),
            delete_old_disk=delete_old_disk and yes,
            delete_snapshot=delete_snapshot and yes,
        )
        try:
            result = restore_data_disk_snapshot(runtime.workflow(), runtime.runner(), request)
        except PadctlError as exc:
            _workflow_failure(op, exc)

        _update_instance(op, runtime, instance, {"data_disk_id": result.new_data_disk_id})
        console.print(f"Restored data disk {result.new_data_disk_id} attached to '{instance}'.")
        op.success(
            "Data disk restored.",
            changed=1,
            context={"new_data_disk_id": result.new_data_disk_id},
        )


# ---------------------------------------------------------------------------
# stack
# ---------------------------------------------------------------------------


def _render_diagnosis(instance: str, diagnosis: StackDiagnosis) -> None:
    if not diagnosis.issues:
        console.print(f"[green]No stack issues found for '{instance}'.[/green]")
        return
    for issue in diagnosis.issues:
        console.print(f"[yellow]-[/yellow] {issue}")
    for recommendation in diagnosis.recommendations:
        console.print(f"  recommendation: {recommendation}")
    if diagnosis.auto_fix_applied:
        console.print("[green]Safe fixes were applied.[/green]")


@stack_app.command("diagnose")
def stack_diagnose(
    ctx: typer.Context,
    instance: str = typer.Argument(..., help="Instance whose stacks to inspect."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Report leftover locks and stacks, removing locks and empty stacks.

    Do not run this while a snapshot or restore for INSTANCE is in progress:
    its lock would be removed too.
    """
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "stack diagnose",
        args={"json": json_output},
        target={"kind": "instance", "name": instance},
    ) as op:
        try:
            diagnosis = diagnose(runtime.stacks, instance, runtime.logger)
        except PadctlError as exc:
            _workflow_failure(op, exc)

        if json_output:
            console.print_json(data=diagnosis.to_dict())
        else:
            _render_diagnosis(instance, diagnosis)

        if diagnosis.recommendations and not diagnosis.auto_fix_applied:
            op.warning(
                "Stacks need attention.",
                warnings=diagnosis.issues,
                context=diagnosis.to_dict(),
            )
            return
        op.success(
            "Stack diagnosis complete.",
            changed=1 if diagnosis.auto_fix_applied else 0,
            context=diagnosis.to_dict(),
        )


@stack_app.command("destroy")
def stack_destroy(
    ctx: typer.Context,
    instance: str = typer.Argument(..., help="Instance whose stack state to remove."),
    yes: bool = YES_OPTION,
) -> None:
    """Remove all persisted stack state for an instance (cloud resources are untouched)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "stack destroy",
        args={"yes": yes},
        target={"kind": "instance", "name": instance},
    ) as op:
        if not yes:
            _command_error(
                op,
                "Refusing to destroy stack state without --yes.",
                rc=int(ExitCode.VALIDATION),
            )
        try:
            removed = force_destroy(runtime.stacks, instance, runtime.logger)
        except PadctlError as exc:
            _workflow_failure(op, exc)

        console.print(f"Removed {len(removed)} stack file(s) for '{instance}'.")
        op.success(
            "Stack state destroyed.",
            changed=len(removed),
            context={"removed": [str(path) for path in removed]},
        )


# ---------------------------------------------------------------------------
# instance
# ---------------------------------------------------------------------------


@instances_app.command("register")
def instance_register(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance name used by padctl."),
    instance_id: str = typer.Option(..., "--instance-id", help="Cloud instance id (e.g. i-0abc...)."),
    data_disk_id: str | None = typer.Option(None, "--data-disk-id", help="Current data disk volume id."),
    host: str | None = typer.Option(None, "--host", help="SSH host used for configuration."),
    ssh_user: str | None = typer.Option(None, "--ssh-user", help="SSH user (defaults to ubuntu)."),
    ssh_key: Path | None = typer.Option(None, "--ssh-key", dir_okay=False, help="SSH private key path."),
    zone: str | None = typer.Option(None, "--zone", help="Availability zone of the instance."),
) -> None:
    """Add or update an instance entry in the registry."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance register",
        args={"instance_id": instance_id, "data_disk_id": data_disk_id, "host": host},
        target={"kind": "instance", "name": name},
    ) as op:
        entry: dict[str, object] = {
            "name": name,
            "instance_id": instance_id,
            "data_disk_id": normalize_volume_id(data_disk_id),
            "host": host,
            "ssh_user": ssh_user,
            "ssh_private_key": str(ssh_key) if ssh_key else None,
            "zone": zone,
        }
        try:
            runtime.registry.upsert_instance(entry)
        except StateRegistryError as exc:
            _command_error(op, str(exc), rc=int(ExitCode.VALIDATION))
        console.print(f"Instance '{name}' registered.")
        op.success("Instance registered.", changed=1)


@instances_app.command("list")
def instance_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List registered instances."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance list",
        args={"json": json_output},
        target={"kind": "registry", "scope": "instances"},
    ) as op:
        try:
            entries = runtime.registry.list_instances()
        except StateRegistryError as exc:
            _command_error(op, str(exc), rc=int(ExitCode.ENVIRONMENT))

        if json_output:
            console.print_json(data={"instances": entries})
        elif not entries:
            console.print("No instances registered.")
        else:
            table = Table(title="Instances", show_header=True, header_style="bold magenta")
            table.add_column("Name")
            table.add_column("Instance ID")
            table.add_column("Data disk")
            table.add_column("Host")
            for entry in entries:
                table.add_row(
                    entry["name"],
                    entry["instance_id"],
                    entry.get("data_disk_id") or "-",
                    entry.get("host") or "-",
                )
            console.print(table)
        op.success("Listed instances.", context={"count": len(entries)})


@instances_app.command("show")
def instance_show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Instance name."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show one registered instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance show",
        args={"json": json_output},
        target={"kind": "instance", "name": name},
    ) as op:
        entry = _require_instance(op, runtime, name)
        if json_output:
            console.print_json(data=entry)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Field")
            table.add_column("Value")
            for key, value in entry.items():
                table.add_row(key, "-" if value is None else str(value))
            console.print(table)
        op.success("Displayed instance.")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


def _flatten(data: Mapping[str, object], prefix: str = "") -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    for key, value in data.items():
        label = f"{prefix}{key}"
        if isinstance(value, Mapping):
            rows.extend(_flatten(value, f"{label}."))
        else:
            rows.append((label, json.dumps(value) if not isinstance(value, str) else value))
    return rows


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the resolved configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config", "path": str(runtime.config.config_file)},
    ) as op:
        data = runtime.config.to_dict()
        if json_output:
            console.print_json(data=data)
        else:
            table = Table(title="padctl configuration", show_header=True, header_style="bold magenta")
            table.add_column("Key")
            table.add_column("Value")
            for key, value in _flatten(data):
                table.add_row(key, value)
            console.print(table)
        op.success("Displayed configuration.")


# ---------------------------------------------------------------------------
# doctor
# ---------------------------------------------------------------------------


def _parse_probe_categories(raw: str | None) -> set[str]:
    """Parse comma-separated probe categories into a normalised set."""
    if raw is None:
        return set()
    return {part.strip().lower() for part in raw.split(",") if part.strip()}


def _collect_status_identifiers(results: Sequence[ProbeResult], status: ProbeStatus) -> list[str]:
    return [f"{result.category}:{result.id}" for result in results if result.status is status]


def _render_doctor_report(report: DoctorReport) -> None:
    """Render a doctor report in a human-friendly format."""
    summary = report.summary
    totals = summary.totals
    console.print(
        f"Doctor summary: {_SUMMARY_STATUS_STYLE[summary.status]} "
        f"(impact={summary.impact.name.lower()}, exit={summary.exit_code})"
    )
    console.print(
        f"Totals: green={totals.get(ProbeStatus.GREEN, 0)} "
        f"warn={totals.get(ProbeStatus.YELLOW, 0)} "
        f"red={totals.get(ProbeStatus.RED, 0)}"
    )
    if not report.results:
        console.print("No probes were executed.")
        return

    console.print()
    for result in report.results:
        console.print(f"{_PROBE_STATUS_STYLE[result.status]} [{result.category}] {result.id}: {result.message}")
        if result.remediation:
            console.print(f"  remediation: {result.remediation}")
        if result.warnings:
            console.print(f"  notes: {', '.join(result.warnings)}")
        if result.duration_ms is not None:
            console.print(f"  duration: {result.duration_ms} ms")


@app.command()
def doctor(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    only: str | None = DOCTOR_ONLY_OPTION,
    exclude: str | None = DOCTOR_EXCLUDE_OPTION,
    max_concurrency: int | None = DOCTOR_MAX_CONCURRENCY_OPTION,
    skip_cloud: bool = DOCTOR_SKIP_CLOUD_OPTION,
) -> None:
    """Run environment, state and credential health checks."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "doctor",
        args={
            "json": json_output,
            "only": only,
            "exclude": exclude,
            "max_concurrency": max_concurrency,
            "skip_cloud": skip_cloud,
        },
        target={"kind": "system", "scope": "health"},
    ) as op:
        include_categories = _parse_probe_categories(only)
        exclude_categories = _parse_probe_categories(exclude)
        invalid_categories = (include_categories | exclude_categories) - _PROBE_CATEGORY_SET
        if invalid_categories:
            _command_error(op, f"Unknown probe categories: {', '.join(sorted(invalid_categories))}", rc=2)
        if only is not None and exclude is not None:
            _command_error(op, "Cannot combine --only and --exclude.", rc=2)

        defaults = ProbeExecutorOptions()
        options = ProbeExecutorOptions(
            max_concurrency=max_concurrency if max_concurrency is not None else defaults.max_concurrency,
            skip_cloud=skip_cloud,
        )
        config = runtime.config
        context = ProbeContext(
            config=config,
            registry=runtime.registry,
            stacks=runtime.stacks,
            logger=runtime.logger,
            options=options,
            credentials_check=lambda: credentials_problem(
                profile=config.aws.profile, region=config.aws.region
            ),
        )
        discovered = list(collect_probes(context))
        matched = discovered
        if include_categories:
            matched = [probe for probe in matched if probe.category in include_categories]
        if exclude_categories:
            matched = [probe for probe in matched if probe.category not in exclude_categories]

        metadata = {
            "filters": {
                "only": sorted(include_categories) if only is not None else None,
                "exclude": sorted(exclude_categories) if exclude is not None else None,
            },
            "discovered_probes": len(discovered),
            "matched_probes": len(matched),
            "options": asdict(options),
        }
        report = DoctorEngine(context).run(matched, metadata=metadata)
        payload = report.to_dict()

        if json_output:
            console.print_json(data=payload, default=str)
        else:
            _render_doctor_report(report)

        summary = report.summary
        warning_ids = _collect_status_identifiers(report.results, ProbeStatus.YELLOW)
        error_ids = _collect_status_identifiers(report.results, ProbeStatus.RED)
        impact_message = _DOCTOR_IMPACT_MESSAGES.get(summary.impact, "Doctor detected issues.")

        if summary.exit_code == 0:
            if summary.status is ProbeStatus.YELLOW:
                if not json_output:
                    console.print("[yellow]Doctor completed with warnings.[/yellow]")
                op.warning("Doctor completed with warnings.", warnings=warning_ids or None, context=payload)
            else:
                op.success(impact_message, context=payload)
            return

        if not json_output:
            console.print(f"[red]{impact_message}[/red]")
        op.error(impact_message, rc=summary.exit_code, errors=error_ids or None, context=payload)
        raise typer.Exit(code=summary.exit_code)


def main() -> None:
    """Entry point used by the console script."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
