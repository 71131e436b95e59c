"""Tests for the conveyor error hierarchy."""

from conveyor.core.errors import (
    ConfigError,
    ContainerUnavailableError,
    ConveyorError,
    DescriptorError,
    ErrorCategory,
    SessionBusyError,
    SessionError,
    categorize_error,
    is_retryable,
)


class TestHierarchy:

    def test_categories(self):
        assert ContainerUnavailableError("x").category is ErrorCategory.RUNTIME
        assert DescriptorError("x").category is ErrorCategory.DESCRIPTOR
        assert ConfigError("x").category is ErrorCategory.CONFIG
        assert SessionBusyError("x").category is ErrorCategory.INTERNAL

    def test_session_errors_share_base(self):
        assert issubclass(SessionBusyError, SessionError)
        assert issubclass(SessionError, ConveyorError)

    def test_retryable_defaults(self):
        assert is_retryable(ContainerUnavailableError("x"))
        assert not is_retryable(DescriptorError("x"))
        assert not is_retryable(ContainerUnavailableError("x", retryable=False))
        assert is_retryable(ConnectionError())


class TestContext:

    def test_known_and_extra_keys(self):
        err = ContainerUnavailableError("pull failed").with_context(
            image="alpine:3", step=2, path="/tmp/x",
        )
        assert err.context.image == "alpine:3"
        assert err.context.step == 2
        assert err.context.metadata == {"path": "/tmp/x"}

    def test_to_dict(self):
        cause = OSError("no route")
        err = ContainerUnavailableError("gone", cause=cause).with_context(runtime="docker")
        data = err.to_dict()

        assert data["error_type"] == "ContainerUnavailableError"
        assert data["category"] == "RUNTIME"
        assert data["retryable"] is True
        assert data["context"] == {"runtime": "docker"}
        assert data["cause"] == "no route"
        assert err.__cause__ is cause


class TestCategorize:

    def test_foreign_errors(self):
        assert categorize_error(OSError()) is ErrorCategory.RUNTIME
        assert categorize_error(ValueError()) is ErrorCategory.DESCRIPTOR
        assert categorize_error(KeyError()) is ErrorCategory.UNKNOWN
