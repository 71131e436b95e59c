"""Descriptor source protocol and the in-memory source.

A descriptor source is whatever turns job descriptors into
``JobDefinition`` values. The engine only ever calls ``next_job()``.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from conveyor.execution.models import JobDefinition


@runtime_checkable
class DescriptorSource(Protocol):
    """Yields parsed job definitions one at a time."""

    def next_job(self) -> JobDefinition | None:
        """Return the next job, or None when the source is exhausted.

        Raises:
            DescriptorError: If the descriptor is malformed.
        """
        ...


class StaticDescriptorSource:
    """Descriptor source over job definitions built in code.

    Example:
        >>> source = StaticDescriptorSource(JobDefinition("build", [stage]))
        >>> source.next_job().name
        'build'
        >>> source.next_job() is None
        True
    """

    def __init__(self, *jobs: JobDefinition) -> None:
        self._pending: deque[JobDefinition] = deque(jobs)

    def next_job(self) -> JobDefinition | None:
        if not self._pending:
            return None
        return self._pending.popleft()

    def __len__(self) -> int:
        return len(self._pending)
