"""Scheduler/dispatcher: one loop multiplexing clock ticks and bus events."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any

from accubooks_automation.automations.event_bus import WILDCARD, EventBus
from accubooks_automation.automations.models import AutomationExecution, TriggerType
from accubooks_automation.automations.schedule import ScheduleParser
from accubooks_automation.automations.store import RuleStore
from accubooks_automation.errors import NotFoundError

logger = logging.getLogger(__name__)

Runner = Callable[[str, str, Any], Awaitable[AutomationExecution]]


@dataclass(frozen=True)
class _Tick:
    at: datetime


@dataclass(frozen=True)
class _Emission:
    name: str
    payload: Any


class Dispatcher:
    """Selects firing rules and fans each firing out into its own task.

    A ticker task and the event bus subscription both feed one queue; a
    single loop drains it, so rule selection is serialised. Executions
    themselves run concurrently, bounded by ``max_concurrent``.

    Schedule rules are matched once per wall-clock minute. A minute the
    loop never sees (downtime, a stalled host) is not fired retroactively.
    """

    def __init__(
        self,
        store: RuleStore,
        bus: EventBus,
        runner: Runner,
        *,
        timezone: tzinfo,
        tick_seconds: float = 60.0,
        max_concurrent: int = 8,
        drain_timeout: float = 10.0,
        clock: Callable[[tzinfo], datetime] | None = None,
    ) -> None:
        self._store = store
        self._bus = bus
        self._runner = runner
        self._timezone = timezone
        self._tick_seconds = tick_seconds
        self._drain_timeout = drain_timeout
        self._clock = clock or (lambda tz: datetime.now(tz))
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._queue: asyncio.Queue[_Tick | _Emission] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._in_flight: set[asyncio.Task[None]] = set()
        self._unsubscribe: Callable[[], None] | None = None
        self._last_minute: datetime | None = None
        self._running = False

    @property
    def running(self) -> bool:
        """Whether the dispatch loop is running."""
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> None:
        """Subscribe to the bus and start the ticker and dispatch loop."""
        if self._running:
            logger.warning("Dispatcher already running")
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._unsubscribe = self._bus.subscribe(WILDCARD, self._on_event)
        self._running = True
        self._tasks = [
            asyncio.create_task(self._dispatch_loop(), name="automation-dispatch"),
            asyncio.create_task(self._ticker(), name="automation-ticker"),
        ]
        logger.info("Automation dispatcher started (tick=%ss)", self._tick_seconds)

    async def stop(self) -> None:
        """Stop accepting stimuli, then wait for in-flight executions.

        Executions still running after ``drain_timeout`` are cancelled.
        """
        if not self._running:
            return
        self._running = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("Dispatcher task %s cancelled", task.get_name())
        self._tasks = []

        pending = list(self._in_flight)
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self._drain_timeout or None)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning("Cancelled %d executions still running at shutdown", len(still_running))
                await asyncio.gather(*still_running, return_exceptions=True)
        self._queue = None
        self._loop = None
        logger.info("Automation dispatcher stopped")

    async def drain(self) -> None:
        """Wait until queued stimuli are dispatched and their executions finish."""
        await asyncio.sleep(0)
        if self._queue is not None:
            await self._queue.join()
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def tick(self, now: datetime | None = None) -> list[asyncio.Task[None]]:
        """Fire every enabled schedule rule matching the minute of *now*.

        A minute already processed is ignored. Requires a running event loop.
        """
        now = now or self._clock(self._timezone)
        minute = now.replace(second=0, microsecond=0)
        if minute == self._last_minute:
            return []
        self._last_minute = minute

        spawned = []
        for rule in self._store.enabled_rules(TriggerType.SCHEDULE):
            expression = rule.trigger.config.get("schedule", "")
            try:
                due = ScheduleParser.matches(expression, minute)
            except ValueError as exc:
                logger.warning("Rule %s has a bad schedule %r: %s", rule.id, expression, exc)
                continue
            if due:
                spawned.append(self._spawn(rule.id, "schedule", None))
        return spawned

    def dispatch_event(self, name: str, payload: Any = None) -> list[asyncio.Task[None]]:
        """Fire every enabled event rule listening for *name*, once each."""
        return [
            self._spawn(rule.id, "event", payload)
            for rule in self._store.enabled_rules(TriggerType.EVENT)
            if rule.trigger.config.get("event") == name
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_event(self, name: str, payload: Any) -> None:
        """Bus handler: hand the emission to the loop (safe from any thread)."""
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            logger.debug("Event %r dropped: dispatcher not running", name)
            return
        loop.call_soon_threadsafe(queue.put_nowait, _Emission(name, payload))

    async def _dispatch_loop(self) -> None:
        """Main loop: take one stimulus at a time and select rules for it."""
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            try:
                if isinstance(item, _Tick):
                    self.tick(item.at)
                else:
                    self.dispatch_event(item.name, item.payload)
            except Exception:
                logger.exception("Dispatcher failed to handle %r", item)
            finally:
                self._queue.task_done()

    async def _ticker(self) -> None:
        assert self._queue is not None
        while True:
            await asyncio.sleep(self._seconds_until_next_tick())
            self._queue.put_nowait(_Tick(self._clock(self._timezone)))

    def _seconds_until_next_tick(self) -> float:
        if self._tick_seconds < 60:
            return self._tick_seconds
        now = self._clock(self._timezone)
        # Land just after the next minute boundary.
        return 60 - now.second - now.microsecond / 1_000_000 + 0.05

    def _spawn(self, rule_id: str, trigger: str, data: Any) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(rule_id, trigger, data))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run(self, rule_id: str, trigger: str, data: Any) -> None:
        async with self._semaphore:
            try:
                await self._runner(rule_id, trigger, data)
            except NotFoundError:
                logger.info("Rule %s was deleted before it could run", rule_id)
            except Exception:
                logger.exception("Execution of rule %s crashed", rule_id)
