"""External abort requests for a running job."""

from __future__ import annotations

import asyncio


class AbortSignal:
    """One-shot abort flag a host sets to stop a job run.

    The job runner races every blocked step against ``wait()``; once set,
    the running step is killed and no further step starts.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "Run aborted") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


__all__ = ["AbortSignal"]
