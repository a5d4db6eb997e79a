from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from wanroute.core.types import SimTime

Action = Callable[[], None]
Observer = Callable[[str, Dict[str, Any]], None]

log = logging.getLogger("wanroute.scheduler")


@dataclass(frozen=True)
class EventToken:
    seq: int


@dataclass(order=True)
class ScheduledEvent:
    time: SimTime
    seq: int
    kind: str = field(compare=False)
    action: Optional[Action] = field(compare=False, default=None)
    payload: Dict[str, Any] = field(compare=False, default_factory=dict)


class EventScheduler:
    """Single-threaded discrete-event loop.

    Events run in (time, submission order); the clock jumps straight to the next due
    event. Observers subscribed to a kind receive every payload published under that
    kind and never take part in routing decisions.
    """

    def __init__(self, start: SimTime = 0.0) -> None:
        self._queue: List[ScheduledEvent] = []
        self._seq = 0
        self._cancelled: set[int] = set()
        self._observers: Dict[str, List[Observer]] = {}
        self.now: SimTime = float(start)
        self.executed = 0
        self.observer_errors = 0

    @property
    def pending(self) -> int:
        return sum(1 for ev in self._queue if ev.seq not in self._cancelled)

    def schedule(
        self,
        time: SimTime,
        action: Optional[Action] = None,
        kind: str = "action",
        payload: Optional[Dict[str, Any]] = None,
    ) -> EventToken:
        time = float(time)
        if time < self.now:
            raise ValueError(f"Cannot schedule {kind} at t={time} before now={self.now}")
        self._seq += 1
        heapq.heappush(
            self._queue,
            ScheduledEvent(time=time, seq=self._seq, kind=kind, action=action, payload=dict(payload or {})),
        )
        return EventToken(self._seq)

    def cancel(self, token: EventToken) -> bool:
        if token.seq in self._cancelled:
            return False
        if not any(ev.seq == token.seq for ev in self._queue):
            return False
        self._cancelled.add(token.seq)
        return True

    def subscribe(self, kind: str, observer: Observer) -> None:
        self._observers.setdefault(kind, []).append(observer)

    def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        """Deliver ``payload`` to every observer of ``kind``.

        A failing observer is logged and counted in ``observer_errors``; the remaining
        observers still run and the event in progress completes.
        """
        for observer in self._observers.get(kind, []):
            try:
                observer(kind, payload)
            except Exception:
                self.observer_errors += 1
                log.exception("observer %r failed on %s at t=%s", observer, kind, self.now)

    def peek_time(self) -> Optional[SimTime]:
        self._drop_cancelled_head()
        return self._queue[0].time if self._queue else None

    def step(self) -> Optional[ScheduledEvent]:
        self._drop_cancelled_head()
        if not self._queue:
            return None
        event = heapq.heappop(self._queue)
        self.now = event.time
        if event.action is not None:
            event.action()
        self.executed += 1
        return event

    def run_until(self, deadline: SimTime) -> int:
        """Execute every event due at or before ``deadline``; returns how many ran."""
        ran = 0
        while True:
            due = self.peek_time()
            if due is None or due > deadline:
                break
            self.step()
            ran += 1
        self.now = max(self.now, float(deadline))
        log.debug("run_until t=%s executed=%d pending=%d", deadline, ran, self.pending)
        return ran

    def _drop_cancelled_head(self) -> None:
        while self._queue and self._queue[0].seq in self._cancelled:
            ev = heapq.heappop(self._queue)
            self._cancelled.discard(ev.seq)

    def queued(self) -> List[Tuple[SimTime, str]]:
        return [(ev.time, ev.kind) for ev in sorted(self._queue) if ev.seq not in self._cancelled]
