"""Work queue of logging stacks to reconcile."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import timedelta

from ..exceptions import QueueShutDownError
from ..models.domain.reconcile import ReconcileRequest

__all__ = ["ReconcileQueue"]


class ReconcileQueue:
    """Queue of requests to reconcile logging stacks.

    The queue guarantees that a given stack is only reconciled by one worker
    at a time. A request is queued at most once. If a request is added while
    the same stack is being reconciled, it is queued again when that
    reconcile is done, so that changes made during a reconcile are not lost.

    Every worker must call `done` for each request returned by `get` once it
    has finished processing it.
    """

    def __init__(self) -> None:
        self._queue: deque[ReconcileRequest] = deque()
        self._dirty: set[ReconcileRequest] = set()
        self._processing: set[ReconcileRequest] = set()
        self._timers: dict[ReconcileRequest, asyncio.TimerHandle] = {}
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._shutdown = False

    def __len__(self) -> int:
        return len(self._queue)

    def add(self, request: ReconcileRequest) -> None:
        """Add a request to the queue.

        Parameters
        ----------
        request
            Request to add. Does nothing if the same request is already
            queued.
        """
        if self._shutdown or request in self._dirty:
            return
        self._dirty.add(request)
        if request in self._processing:
            return
        self._queue.append(request)
        self._wakeup()

    def add_after(self, request: ReconcileRequest, delay: timedelta) -> None:
        """Add a request to the queue after a delay.

        If there is already a delayed add pending for the same request, only
        the one that fires first is kept.

        Parameters
        ----------
        request
            Request to add.
        delay
            How long to wait before adding it.
        """
        if self._shutdown:
            return
        seconds = delay.total_seconds()
        if seconds <= 0:
            self.add(request)
            return
        loop = asyncio.get_running_loop()
        existing = self._timers.get(request)
        if existing:
            if existing.when() <= loop.time() + seconds:
                return
            existing.cancel()
        timer = loop.call_later(seconds, self._add_delayed, request)
        self._timers[request] = timer

    def done(self, request: ReconcileRequest) -> None:
        """Mark processing of a request as finished.

        Parameters
        ----------
        request
            Request returned by `get`.
        """
        self._processing.discard(request)
        if request in self._dirty and not self._shutdown:
            self._queue.append(request)
            self._wakeup()

    async def get(self) -> ReconcileRequest:
        """Wait for the next request to process.

        Returns
        -------
        ReconcileRequest
            Next request. The same stack will not be returned again until
            `done` has been called for it.

        Raises
        ------
        QueueShutDownError
            Raised if the queue has been shut down.
        """
        loop = asyncio.get_running_loop()
        while True:
            if self._shutdown:
                raise QueueShutDownError("Reconcile queue was shut down")
            if self._queue:
                request = self._queue.popleft()
                self._dirty.discard(request)
                self._processing.add(request)
                return request
            waiter = loop.create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            except asyncio.CancelledError:
                # Pass on a wakeup that arrived just before cancellation.
                if waiter.done() and not waiter.cancelled():
                    self._wakeup()
                raise
            finally:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)

    def is_processing(self, request: ReconcileRequest) -> bool:
        """Whether a request is currently being processed by a worker."""
        return request in self._processing

    def shutdown(self) -> None:
        """Shut down the queue.

        Pending delayed adds are cancelled, any waiting calls to `get` raise
        `~efkoperator.exceptions.QueueShutDownError`, and all further
        requests are ignored.
        """
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

    def _add_delayed(self, request: ReconcileRequest) -> None:
        """Add a request whose delay has expired."""
        self._timers.pop(request, None)
        self.add(request)

    def _wakeup(self) -> None:
        """Wake up one waiting call to `get`, if any."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
