"""Deterministic deferred effects on a simulated clock.

Some commands change state later rather than immediately (``sbatch`` queues
a job that starts running a moment afterwards). Instead of timers, such
effects are recorded as :class:`ScheduledEvent` entries inside the cluster
state and applied when the simulated clock is advanced. Because the events
are plain data they are captured by snapshots along with everything else.

Usage:
    queue = EventQueue(store)
    queue.register_handler("job.start", start_job)
    queue.schedule(100, "job.start", {"job_id": 1000})
    queue.advance(100)   # start_job runs here
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from clustersim.state.models import ScheduledEvent
from clustersim.utils.logger import get_logger

if TYPE_CHECKING:
    from clustersim.state.store import ClusterStore

logger = get_logger(__name__)

EventHandler = Callable[["ClusterStore", Dict[str, Any]], None]


class EventQueue:
    def __init__(self, store: "ClusterStore") -> None:
        self._store = store
        self._handlers: Dict[str, EventHandler] = {}

    def register_handler(self, kind: str, handler: EventHandler) -> None:
        self._handlers[kind] = handler

    @property
    def now(self) -> int:
        return self._store.state.clock_ms

    def pending(self) -> List[ScheduledEvent]:
        return sorted(self._store.state.pending_events, key=lambda e: (e.due_ms, e.seq))

    def schedule(
        self,
        delay_ms: int,
        kind: str,
        payload: Optional[Dict[str, Any]] = None,
        description: str = "",
    ) -> ScheduledEvent:
        state = self._store.state
        event = ScheduledEvent(
            due_ms=state.clock_ms + max(0, int(delay_ms)),
            seq=state.next_event_seq,
            kind=kind,
            payload=dict(payload or {}),
            description=description,
        )
        state.next_event_seq += 1
        state.pending_events.append(event)
        logger.debug(f"Scheduled {kind} at t={event.due_ms}ms: {description}")
        return event

    def advance(self, delta_ms: int) -> int:
        """Move the clock forward and apply every event that became due.

        Events run in (due time, scheduling order). An event scheduled by a
        handler for a time still inside the window also runs. Returns the
        number of events applied.
        """
        state = self._store.state
        target = state.clock_ms + max(0, int(delta_ms))
        applied = 0
        while True:
            due = [e for e in state.pending_events if e.due_ms <= target]
            if not due:
                break
            event = min(due, key=lambda e: (e.due_ms, e.seq))
            state.pending_events.remove(event)
            state.clock_ms = max(state.clock_ms, event.due_ms)
            self._dispatch(event)
            applied += 1
        state.clock_ms = target
        return applied

    def run_pending(self) -> int:
        """Apply every pending event regardless of due time."""
        pending = self._store.state.pending_events
        if not pending:
            return 0
        horizon = max(e.due_ms for e in pending) - self._store.state.clock_ms
        return self.advance(horizon)

    def _dispatch(self, event: ScheduledEvent) -> None:
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.warning(f"No handler registered for event kind '{event.kind}', dropping it")
            return
        handler(self._store, event.payload)
