"""Owned timers, in-flight guards and transition tables shared by the workflows."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Mapping, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)
E = TypeVar("E", bound=Enum)


class InvalidTransition(Exception):
    """An event was fired in a step that does not accept it."""

    def __init__(self, workflow: str, step: Enum, event: Enum):
        super().__init__(f"{workflow}: '{event.value}' is not allowed in step '{step.value}'")
        self.workflow = workflow
        self.step = step
        self.event = event


def transition(workflow: str, table: Mapping[tuple[S, E], S], step: S, event: E) -> S:
    """Pure lookup of the next step; raises InvalidTransition for undefined moves."""
    try:
        return table[(step, event)]
    except KeyError:
        raise InvalidTransition(workflow, step, event) from None


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class IntervalTimer:
    """
    Repeating async callback owned by exactly one workflow.

    Ticks run sequentially, so a slow callback delays the next tick instead of
    overlapping it. A callback may cancel its own timer. Exceptions escaping
    the callback are logged and the timer keeps running.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable[None]]):
        self.name = name
        self.interval = interval
        self.callback = callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, immediate: bool = False) -> bool:
        """Start ticking. Returns False (and does nothing) if already running."""
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run(immediate), name=self.name)
        return True

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        # Cancelling from inside a tick: the loop sees _task changed and exits.
        if task is not _current_task():
            task.cancel()

    async def _run(self, immediate: bool) -> None:
        me = asyncio.current_task()
        if immediate:
            await self._tick()
        while self._task is me:
            await asyncio.sleep(self.interval)
            if self._task is not me:
                break
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self.callback()
        except Exception:
            logger.exception(f"Timer {self.name} callback failed")


@dataclass
class Ticket:
    """Claim on one in-flight call; invalid once its scope is torn down."""

    scope: "WorkflowScope"
    kind: str
    generation: int

    @property
    def valid(self) -> bool:
        return self.scope.generation == self.generation

    def release(self) -> None:
        self.scope._release(self)


class WorkflowScope:
    """
    Resources of one workflow: its timers and its outstanding calls.

    teardown() cancels the timers and bumps the generation, so any call that
    resolves afterwards finds its ticket invalid and must not write state.
    """

    def __init__(self, name: str):
        self.name = name
        self.generation = 0
        self._timers: dict[str, IntervalTimer] = {}
        self._inflight: dict[str, Ticket] = {}

    def timer(self, key: str, interval: float, callback: Callable[[], Awaitable[None]]) -> IntervalTimer:
        """Get the scope's timer for key, creating it on first use."""
        timer = self._timers.get(key)
        if timer is None:
            timer = IntervalTimer(f"{self.name}:{key}", interval, callback)
            self._timers[key] = timer
        return timer

    def cancel_timer(self, key: str) -> None:
        timer = self._timers.get(key)
        if timer is not None:
            timer.cancel()

    def timer_running(self, key: str) -> bool:
        timer = self._timers.get(key)
        return timer is not None and timer.running

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._timers.values() if t.running)

    def claim(self, kind: str) -> Ticket | None:
        """Claim a call of this kind, or None if one is already outstanding."""
        if kind in self._inflight:
            logger.debug(f"{self.name}: '{kind}' already in flight; ignoring")
            return None
        ticket = Ticket(self, kind, self.generation)
        self._inflight[kind] = ticket
        return ticket

    def in_flight(self, kind: str) -> bool:
        return kind in self._inflight

    def _release(self, ticket: Ticket) -> None:
        if self._inflight.get(ticket.kind) is ticket:
            del self._inflight[ticket.kind]

    def teardown(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._inflight.clear()
        self.generation += 1
