"""Tests for JobRunner - fail-fast execution of a job definition.

Tests:
    - Successful run executes every step in order
    - First failing step ends the job with its flattened index and code
    - Step indices are flattened across stages
    - Provisioning failures report CONTAINER_UNAVAILABLE
    - Transport failures during a step report CONTAINER_UNAVAILABLE
    - Abort kills the running step and tears the session down
    - Abort during provisioning cancels it and runs no step
    - Each opened session is closed exactly once on every path
"""

import asyncio

import pytest

from conveyor.execution.abort import AbortSignal
from conveyor.execution.job_runner import JobRunner
from conveyor.execution.models import (
    EXIT_ABORTED,
    EXIT_CONTAINER_UNAVAILABLE,
    EXIT_STEP_FAILED,
    ContainerStage,
    JobDefinition,
    OutcomeKind,
)
from conveyor.execution.runtimes import STDERR, StubContainerRuntime


class TestSuccess:
    """All steps exit 0."""

    @pytest.mark.asyncio
    async def test_all_steps_run_in_order(self, stub_runtime, build_job):
        result = await JobRunner(stub_runtime).execute(build_job)

        assert result.outcome is OutcomeKind.SUCCESS
        assert result.succeeded
        assert result.exit_code == 0
        assert stub_runtime.executed == ["download", "build-deps", "build"]
        assert [s.index for s in result.steps] == [0, 1, 2]
        assert result.failed_step_index is None

    @pytest.mark.asyncio
    async def test_one_session_per_stage(self, stub_runtime, build_job):
        await JobRunner(stub_runtime).execute(build_job)

        assert stub_runtime.provision_count == 1
        assert stub_runtime.teardown_count == 1

    @pytest.mark.asyncio
    async def test_output_is_captured_per_step(self, build_job):
        runtime = StubContainerRuntime(
            outputs={"download": ["fetching sources", (STDERR, "mirror slow")]},
        )
        result = await JobRunner(runtime).execute(build_job)

        assert result.steps[0].output == ("fetching sources", "mirror slow")
        assert result.steps[1].output == ("[stub] build-deps",)

    @pytest.mark.asyncio
    async def test_stage_env_reaches_every_step(self):
        job = JobDefinition(
            name="env-job",
            stages=(ContainerStage(image="img:1", steps=("a", "b"), env={"MODE": "ci"}),),
        )
        runtime = StubContainerRuntime()
        await JobRunner(runtime).execute(job)

        assert runtime.exec_envs == [{"MODE": "ci"}, {"MODE": "ci"}]

    @pytest.mark.asyncio
    async def test_output_listener_sees_lines_live(self, stub_runtime, build_job):
        seen = []
        await JobRunner(stub_runtime, on_output=seen.append).execute(build_job)

        assert [(line.step_index, line.text) for line in seen] == [
            (0, "[stub] download"),
            (1, "[stub] build-deps"),
            (2, "[stub] build"),
        ]

    @pytest.mark.asyncio
    async def test_timestamps_are_ordered(self, stub_runtime, build_job):
        result = await JobRunner(stub_runtime).execute(build_job)
        assert result.finished_at >= result.started_at
        assert result.duration_seconds >= 0


class TestStepFailure:
    """A non-zero exit ends the job."""

    @pytest.mark.asyncio
    async def test_failing_step_stops_the_job(self, build_job):
        runtime = StubContainerRuntime(exit_codes={"build-deps": 1})
        result = await JobRunner(runtime).execute(build_job)

        assert result.outcome is OutcomeKind.STEP_FAILED
        assert result.failed_step_index == 1
        assert result.failed_exit_code == 1
        assert result.exit_code == EXIT_STEP_FAILED
        assert result.message == "Step 1 exited with code 1"
        assert "build" not in runtime.executed
        assert runtime.teardown_count == 1

    @pytest.mark.asyncio
    async def test_exit_code_is_reported_verbatim(self, build_job):
        runtime = StubContainerRuntime(exit_codes={"download": 137})
        result = await JobRunner(runtime).execute(build_job)

        assert result.failed_step_index == 0
        assert result.failed_exit_code == 137
        assert runtime.executed == ["download"]

    @pytest.mark.asyncio
    async def test_failed_step_is_last_record(self, build_job):
        runtime = StubContainerRuntime(exit_codes={"build": 2})
        result = await JobRunner(runtime).execute(build_job)

        assert [s.exit_code for s in result.steps] == [0, 0, 2]


class TestMultiStage:
    """Several container stages in one job."""

    @pytest.mark.asyncio
    async def test_indices_are_flattened(self, two_stage_job):
        runtime = StubContainerRuntime(exit_codes={"unit": 2})
        result = await JobRunner(runtime).execute(two_stage_job)

        assert result.failed_step_index == 2
        assert [(s.index, s.stage_index) for s in result.steps] == [(0, 0), (1, 0), (2, 1)]

    @pytest.mark.asyncio
    async def test_stages_use_their_own_images(self, stub_runtime, two_stage_job):
        result = await JobRunner(stub_runtime).execute(two_stage_job)

        assert result.succeeded
        assert stub_runtime.provisioned == ["compiler:1", "tester:1"]
        assert stub_runtime.teardown_count == 2

    @pytest.mark.asyncio
    async def test_failure_skips_later_stages(self, two_stage_job):
        runtime = StubContainerRuntime(exit_codes={"configure": 1})
        await JobRunner(runtime).execute(two_stage_job)

        assert runtime.provisioned == ["compiler:1"]
        assert runtime.teardown_count == 1


class TestContainerUnavailable:
    """Sandbox failures are distinct from step failures."""

    @pytest.mark.asyncio
    async def test_provision_failure(self, build_job):
        runtime = StubContainerRuntime()
        runtime.fail_provision = True
        result = await JobRunner(runtime).execute(build_job)

        assert result.outcome is OutcomeKind.CONTAINER_UNAVAILABLE
        assert result.exit_code == EXIT_CONTAINER_UNAVAILABLE
        assert result.failed_step_index is None
        assert result.steps == ()
        assert runtime.executed == []
        assert runtime.teardown_count == 0

    @pytest.mark.asyncio
    async def test_second_stage_provision_failure(self, two_stage_job):
        runtime = StubContainerRuntime(unavailable_images={"tester:1"})
        result = await JobRunner(runtime).execute(two_stage_job)

        assert result.outcome is OutcomeKind.CONTAINER_UNAVAILABLE
        assert "tester:1" in result.message
        assert len(result.steps) == 2
        assert runtime.provision_attempts == 2
        assert runtime.teardown_count == 1

    @pytest.mark.asyncio
    async def test_exec_failure_closes_session(self, build_job):
        runtime = StubContainerRuntime()
        runtime.fail_exec = True
        result = await JobRunner(runtime).execute(build_job)

        assert result.outcome is OutcomeKind.CONTAINER_UNAVAILABLE
        assert result.steps[0].exit_code is None
        assert runtime.teardown_count == 1


class TestAbort:
    """Cooperative abort through AbortSignal."""

    @pytest.mark.asyncio
    async def test_abort_kills_running_step(self, build_job):
        runtime = StubContainerRuntime(block_on={"build-deps"})
        abort = AbortSignal()
        task = asyncio.create_task(JobRunner(runtime).execute(build_job, abort=abort))

        await asyncio.wait_for(runtime.blocked.wait(), timeout=5)
        abort.abort("Stopped by user")
        result = await asyncio.wait_for(task, timeout=5)

        assert result.outcome is OutcomeKind.ABORTED
        assert result.exit_code == EXIT_ABORTED
        assert result.message == "Stopped by user"
        assert runtime.killed == ["build-deps"]
        assert runtime.executed == ["download", "build-deps"]
        assert runtime.teardown_count == 1
        assert result.steps[-1].index == 1
        assert result.steps[-1].exit_code is None

    @pytest.mark.asyncio
    async def test_abort_before_start_provisions_nothing(self, stub_runtime, build_job):
        abort = AbortSignal()
        abort.abort()
        result = await JobRunner(stub_runtime).execute(build_job, abort=abort)

        assert result.outcome is OutcomeKind.ABORTED
        assert result.steps == ()
        assert stub_runtime.provision_count == 0

    @pytest.mark.asyncio
    async def test_abort_during_provisioning_cancels_it(self, two_stage_job):
        runtime = StubContainerRuntime(slow_images={"tester:1"})
        abort = AbortSignal()
        task = asyncio.create_task(JobRunner(runtime).execute(two_stage_job, abort=abort))

        await asyncio.wait_for(runtime.blocked.wait(), timeout=5)
        abort.abort("Stopped by user")
        result = await asyncio.wait_for(task, timeout=5)

        assert result.outcome is OutcomeKind.ABORTED
        assert result.message == "Stopped by user"
        assert [step.index for step in result.steps] == [0, 1]
        assert runtime.provisioned == ["compiler:1"]
        assert runtime.provision_attempts == 2
        assert runtime.teardown_count == 1

    @pytest.mark.asyncio
    async def test_session_provisioned_after_abort_is_closed(self, build_job):
        abort = AbortSignal()

        class AbortingRuntime(StubContainerRuntime):
            async def _do_provision(self, image, *, job_name, env):
                handle = await super()._do_provision(image, job_name=job_name, env=env)
                abort.abort("Received SIGTERM")
                return handle

        runtime = AbortingRuntime()
        result = await JobRunner(runtime).execute(build_job, abort=abort)

        assert result.outcome is OutcomeKind.ABORTED
        assert result.steps == ()
        assert runtime.executed == []
        assert runtime.provision_count == 1
        assert runtime.teardown_count == 1

    @pytest.mark.asyncio
    async def test_cancelling_the_runner_still_closes_session(self, build_job):
        runtime = StubContainerRuntime(block_on={"download"})
        task = asyncio.create_task(JobRunner(runtime).execute(build_job))

        await asyncio.wait_for(runtime.blocked.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert runtime.killed == ["download"]
        assert runtime.teardown_count == 1


class TestConcurrentJobs:
    @pytest.mark.asyncio
    async def test_jobs_share_no_state(self, stub_runtime, build_job, two_stage_job):
        runner = JobRunner(stub_runtime)
        first, second = await asyncio.gather(
            runner.execute(build_job), runner.execute(two_stage_job),
        )

        assert first.succeeded and second.succeeded
        assert len(first.steps) == 3
        assert len(second.steps) == 4
        assert stub_runtime.teardown_count == 3
