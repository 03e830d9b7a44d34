"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import io
import shutil
from collections.abc import Iterator

import pytest
from click.testing import CliRunner
from rich.console import Console

from tchantrace.core.renderer import TraceRenderer
from tchantrace.utils.context import ExecutionContext
from tests.fixtures import FakeCaptureSource, PcapBuilder


@pytest.fixture
def runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _reset_strict_mode() -> Iterator[None]:
    """Strict mode is process-wide; never let one test leak it into another."""
    ExecutionContext.set_strict(False)
    yield
    ExecutionContext.set_strict(False)


@pytest.fixture
def console() -> Console:
    """A rich console writing to memory, wide enough that nothing wraps."""
    return Console(file=io.StringIO(), width=400, color_system=None, force_terminal=False)


@pytest.fixture
def output(console: Console):
    """Return a callable giving everything printed so far, one entry per line."""

    def lines() -> list[str]:
        return console.file.getvalue().splitlines()  # type: ignore[attr-defined]

    return lines


@pytest.fixture
def renderer(console: Console) -> TraceRenderer:
    return TraceRenderer(console=console)


@pytest.fixture
def conversation() -> PcapBuilder:
    """A client/server conversation on the default TChannel port."""
    return PcapBuilder()


@pytest.fixture
def fake_sources() -> dict[str, FakeCaptureSource]:
    """Registry of fake sources by name, filled by the test."""
    return {}


@pytest.fixture
def source_factory(fake_sources: dict[str, FakeCaptureSource]):
    """Coordinator source factory serving ``fake_sources`` (empty sources by default)."""

    def factory(name: str) -> FakeCaptureSource:
        return fake_sources.setdefault(name, FakeCaptureSource(name))

    return factory


@pytest.fixture
def tshark_available() -> None:
    """Skip the test unless a real tshark is installed."""
    if shutil.which("tshark") is None:
        pytest.skip("tshark not installed")
