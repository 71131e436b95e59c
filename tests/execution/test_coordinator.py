"""Tests for RunCoordinator - one job in, one result out."""

import pytest

from conveyor.core.errors import DescriptorError
from conveyor.descriptors.protocol import StaticDescriptorSource
from conveyor.execution.coordinator import RunCoordinator
from conveyor.execution.job_runner import JobRunner
from conveyor.execution.models import ExecutionResult, OutcomeKind
from conveyor.execution.runtimes import StubContainerRuntime


class _RaisingSource:
    def next_job(self):
        raise ValueError("bad step list")


class _WrongTypeSource:
    def next_job(self):
        return {"name": "not-a-job"}


class _FixedRunner:
    """Runner double returning a prepared result."""

    def __init__(self, result: ExecutionResult) -> None:
        self.result = result
        self.jobs = []

    async def execute(self, job, *, abort=None):
        self.jobs.append(job)
        return self.result


class TestRun:

    @pytest.mark.asyncio
    async def test_runs_exactly_one_job(self, stub_runtime, build_job, two_stage_job):
        source = StaticDescriptorSource(build_job, two_stage_job)
        result = await RunCoordinator.for_runtime(stub_runtime).run(source)

        assert result.job_name == build_job.name
        assert result.outcome is OutcomeKind.SUCCESS
        assert len(source) == 1

    @pytest.mark.asyncio
    async def test_result_passes_through_unchanged(self, build_job):
        prepared = ExecutionResult.step_failed(build_job.name, index=2, exit_code=9)
        runner = _FixedRunner(prepared)
        result = await RunCoordinator(runner).run(StaticDescriptorSource(build_job))

        assert result is prepared
        assert runner.jobs == [build_job]
        assert RunCoordinator.exit_code(result) == 1

    @pytest.mark.asyncio
    async def test_step_failure_maps_to_exit_one(self, build_job):
        runtime = StubContainerRuntime(exit_codes={"build-deps": 1})
        result = await RunCoordinator(JobRunner(runtime)).run(StaticDescriptorSource(build_job))

        assert result.failed_step_index == 1
        assert RunCoordinator.exit_code(result) == 1


class TestDescriptorErrors:

    @pytest.mark.asyncio
    async def test_empty_source(self, stub_runtime):
        with pytest.raises(DescriptorError):
            await RunCoordinator.for_runtime(stub_runtime).run(StaticDescriptorSource())
        assert stub_runtime.provision_count == 0

    @pytest.mark.asyncio
    async def test_source_error_is_wrapped(self, stub_runtime):
        with pytest.raises(DescriptorError, match="bad step list"):
            await RunCoordinator.for_runtime(stub_runtime).run(_RaisingSource())

    @pytest.mark.asyncio
    async def test_wrong_type_rejected(self, stub_runtime):
        with pytest.raises(DescriptorError, match="expected JobDefinition"):
            await RunCoordinator.for_runtime(stub_runtime).run(_WrongTypeSource())
