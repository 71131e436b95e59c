"""
Shared pytest fixtures for conveyor tests.

This module provides:
- A recording stub container runtime
- The sample three-step build job used across runner tests
- Descriptor files written to a temp directory

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_something(stub_runtime, build_job):
        ...
"""

import os
import sys
from pathlib import Path

import pytest

# Ensure conveyor package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conveyor.core.settings import get_settings
from conveyor.execution.models import ContainerStage, JobDefinition
from conveyor.execution.runtimes import StubContainerRuntime

BUILDER_IMAGE = "registry.example/build-tools/higgs-boson-builder:newest"

BUILD_DESCRIPTOR = f"""\
job:
  name: Build the project using the higgs-boson build system
  containers:
    - display_name: Build the default bit-quark Linux Binaries
      image: {BUILDER_IMAGE}
      script: |
        download
        build-deps
        build
"""


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "docker"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    """Isolate every test from CONVEYOR_* variables and the settings cache."""
    for key in list(os.environ):
        if key.startswith("CONVEYOR_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Runtime and job fixtures
# =============================================================================


@pytest.fixture
def stub_runtime() -> StubContainerRuntime:
    return StubContainerRuntime()


@pytest.fixture
def build_job() -> JobDefinition:
    """One stage, three steps: download, build-deps, build."""
    return JobDefinition(
        name="Build the project using the higgs-boson build system",
        stages=(
            ContainerStage(
                image=BUILDER_IMAGE,
                steps=("download", "build-deps", "build"),
                display_name="Build the default bit-quark Linux Binaries",
            ),
        ),
    )


@pytest.fixture
def two_stage_job() -> JobDefinition:
    """Two stages with flattened step indices 0-1 and 2-3."""
    return JobDefinition(
        name="compile-and-test",
        stages=(
            ContainerStage(image="compiler:1", steps=("configure", "compile")),
            ContainerStage(image="tester:1", steps=("unit", "integration")),
        ),
    )


@pytest.fixture
def descriptor_file(tmp_path) -> Path:
    path = tmp_path / "conveyor.yaml"
    path.write_text(BUILD_DESCRIPTOR, encoding="utf-8")
    return path


@pytest.fixture
def write_descriptor(tmp_path):
    """Write YAML text to a descriptor file and return its path."""

    def _write(content: str, name: str = "conveyor.yaml") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write
