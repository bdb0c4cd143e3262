# fanout/services/pool.py
"""
Bounded work pool.

Pulls units of work from a producer and runs at most ``concurrency`` of
them at once. A failing unit is recorded in the completion report and
never stops its siblings; the pool itself never retries. A producer that
raises stops further pulls, the units already in flight run to completion,
and the error is reported as one more failed unit.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Union

from fanout.config import MAX_CONCURRENT
from fanout.errors import ConfigurationError, WorkItemFailure

log = logging.getLogger(__name__)


class PoolState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class WorkUnit:
    """A labelled, lazily started piece of async work."""
    label: Any
    run: Callable[[], Awaitable[Any]]


@dataclass
class CompletionReport:
    processed: int = 0
    results: List[Any] = field(default_factory=list)
    failures: List[WorkItemFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.processed - len(self.failures)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: "CompletionReport") -> "CompletionReport":
        return CompletionReport(
            processed=self.processed + other.processed,
            results=self.results + other.results,
            failures=self.failures + other.failures,
        )

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": [{"unit": str(f.unit), "error": str(f.cause)} for f in self.failures],
        }


Producer = Union[
    Callable[[], Any],
    Iterable[Any],
    AsyncIterator[Any],
]

_EXHAUSTED = object()


def _as_unit(item: Any) -> WorkUnit:
    if isinstance(item, WorkUnit):
        return item
    if inspect.isawaitable(item):
        return WorkUnit(label=getattr(item, "__qualname__", repr(item)), run=lambda: item)
    if callable(item):
        return WorkUnit(label=getattr(item, "__name__", repr(item)), run=item)
    raise TypeError(f"Cannot run {item!r} as a unit of work")


class BoundedWorkPool:
    """
    Runs units of work with a hard ceiling on how many are in flight.

    States move ``IDLE -> RUNNING -> DRAINING -> DONE``. A pool instance is
    single use: once DONE, build a new one for the next batch.
    """

    def __init__(self, concurrency: Optional[int] = MAX_CONCURRENT, name: str = "pool"):
        """
        Initialize the pool.

        Args:
            concurrency: Maximum units in flight, or None for no ceiling
            name: Label used in log lines
        """
        self._check_concurrency(concurrency)
        self.concurrency = concurrency
        self.name = name
        self.state = PoolState.IDLE
        self.in_flight = 0
        self.peak_in_flight = 0
        self._pull_lock = asyncio.Lock()
        self._producer_error: Optional[BaseException] = None

    @staticmethod
    def _check_concurrency(concurrency: Optional[int]) -> None:
        if concurrency is not None and (not isinstance(concurrency, int) or concurrency < 1):
            raise ConfigurationError(f"Pool concurrency must be >= 1, got {concurrency!r}")

    async def start(self, producer: Producer, concurrency: Optional[int] = -1) -> CompletionReport:
        """
        Drain the producer and return the completion report.

        Args:
            producer: One of
                - a zero-argument callable returning the next unit, or None
                  once exhausted (it may be a coroutine function),
                - an iterable of units,
                - an async iterator of units (for queues fed by slower scans).
              A unit is a WorkUnit, an awaitable, or a zero-argument callable
              returning an awaitable.
            concurrency: Overrides the pool's ceiling for this run

        Returns:
            CompletionReport with one entry per unit pulled
        """
        if concurrency != -1:
            self._check_concurrency(concurrency)
            self.concurrency = concurrency
        if self.state is not PoolState.IDLE:
            raise RuntimeError(f"Pool {self.name} already started")

        report = CompletionReport()
        next_unit = self._puller(producer)
        self.state = PoolState.RUNNING

        if self.concurrency is None:
            tasks = []
            while True:
                unit = await next_unit()
                if unit is _EXHAUSTED:
                    break
                tasks.append(asyncio.ensure_future(self._run_unit(unit, report)))
            self.state = PoolState.DRAINING
            await asyncio.gather(*tasks)
        else:
            workers = [self._worker(next_unit, report) for _ in range(self.concurrency)]
            await asyncio.gather(*workers)

        self.state = PoolState.DONE
        error = self._producer_error
        if error is not None:
            if isinstance(error, ConfigurationError):
                raise error
            report.failures.append(WorkItemFailure(f"{self.name}:producer", error))
            report.processed += 1
        log.info(
            "Pool %s done: %d processed, %d failed (peak in flight %d)",
            self.name, report.processed, report.failed, self.peak_in_flight,
        )
        return report

    def _puller(self, producer: Producer) -> Callable[[], Awaitable[Any]]:
        exhausted = False

        if hasattr(producer, "__anext__"):
            async def pull():
                return await producer.__anext__()
        elif callable(producer):
            async def pull():
                item = producer()
                if inspect.iscoroutinefunction(producer):
                    item = await item
                if item is None:
                    raise StopAsyncIteration
                return item
        else:
            iterator = iter(producer)

            async def pull():
                try:
                    return next(iterator)
                except StopIteration:
                    raise StopAsyncIteration

        async def next_unit():
            nonlocal exhausted
            async with self._pull_lock:
                if exhausted:
                    return _EXHAUSTED
                try:
                    return _as_unit(await pull())
                except StopAsyncIteration:
                    exhausted = True
                except Exception as exc:
                    log.error("Pool %s: producer failed, draining %d unit(s) in flight: %s",
                              self.name, self.in_flight, exc)
                    self._producer_error = exc
                    exhausted = True
                if self.state is PoolState.RUNNING:
                    self.state = PoolState.DRAINING
                return _EXHAUSTED

        return next_unit

    async def _worker(self, next_unit, report: CompletionReport) -> None:
        while True:
            unit = await next_unit()
            if unit is _EXHAUSTED:
                return
            await self._run_unit(unit, report)

    async def _run_unit(self, unit: WorkUnit, report: CompletionReport) -> None:
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            result = await unit.run()
            report.results.append(result)
        except Exception as exc:
            log.error("Pool %s: unit %s failed: %s", self.name, unit.label, exc)
            report.failures.append(WorkItemFailure(unit.label, exc))
        finally:
            self.in_flight -= 1
            report.processed += 1


async def run_all(units: Producer, concurrency: Optional[int] = MAX_CONCURRENT,
                  name: str = "pool") -> CompletionReport:
    """Run units through a fresh pool."""
    return await BoundedWorkPool(concurrency, name=name).start(units)
