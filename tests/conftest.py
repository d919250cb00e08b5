"""Shared fixtures: a fake cloud with one instance and a ready workflow context."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import (
    DATA_VOLUME_ID,
    INSTANCE_ID,
    ROOT_VOLUME_ID,
    FakeClock,
    FakeCloud,
    FakeRunner,
    build_workflow,
)

from padctl.logging import StructuredLogger
from padctl.snapshots import WorkflowContext
from padctl.stacks import StackStore


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cloud() -> FakeCloud:
    fake = FakeCloud()
    fake.add_instance(INSTANCE_ID, root_volume_id=ROOT_VOLUME_ID)
    fake.add_volume(DATA_VOLUME_ID, attached_to=INSTANCE_ID, storage_class="gp3", iops=4000)
    return fake


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def logger(tmp_path: Path) -> StructuredLogger:
    return StructuredLogger(tmp_path / "logs")


@pytest.fixture()
def stack_store(tmp_path: Path) -> StackStore:
    return StackStore(tmp_path / "stacks")


@pytest.fixture()
def workflow(
    cloud: FakeCloud,
    stack_store: StackStore,
    logger: StructuredLogger,
    fake_clock: FakeClock,
) -> WorkflowContext:
    return build_workflow(cloud, stack_store, logger, fake_clock)
