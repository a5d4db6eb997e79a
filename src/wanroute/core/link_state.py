from __future__ import annotations

import logging
from typing import Dict, List, Optional

from wanroute.core.errors import DuplicateLinkEvent
from wanroute.core.eventlog import EventLog
from wanroute.core.scheduler import EventScheduler, EventToken
from wanroute.core.topology import Topology
from wanroute.core.types import LinkId, LinkState, LinkTransition, NodeId, SimTime
from wanroute.model.routing import RoutingTable

log = logging.getLogger("wanroute.link_state")


class LinkStateController:
    def __init__(
        self,
        topology: Topology,
        tables: Dict[NodeId, RoutingTable],
        logger: Optional[EventLog] = None,
    ) -> None:
        self.topology = topology
        self.tables = tables
        self.logger = logger or EventLog(path=None)
        self.timeline: List[LinkTransition] = []
        self.duplicates = 0

    def sync(self) -> None:
        """Suppress routes over links that start the run Down."""
        for link in self.topology.links():
            if not link.is_up:
                for table in self.tables.values():
                    table.invalidate(link.link_id)

    def schedule(
        self,
        scheduler: EventScheduler,
        time: SimTime,
        link_id: LinkId,
        state: LinkState,
    ) -> EventToken:
        self.topology.link(link_id)
        return scheduler.schedule(
            time,
            lambda: self.apply(link_id, state, scheduler.now),
            kind="link",
            payload={"link_id": link_id, "state": state.value},
        )

    def apply(self, link_id: LinkId, state: LinkState, time: SimTime) -> bool:
        try:
            self._transition(link_id, state, time)
        except DuplicateLinkEvent as exc:
            self.duplicates += 1
            log.warning("ignored link event: %s", exc)
            self.logger.log("link_duplicate", time=time, link_id=link_id, state=state.value)
            return False
        return True

    def _transition(self, link_id: LinkId, state: LinkState, time: SimTime) -> None:
        link = self.topology.link(link_id)
        if link.state is state:
            raise DuplicateLinkEvent(link_id, state.value, time)
        self.topology.set_link_state(link_id, state)
        affected = 0
        for node in sorted(self.tables):
            table = self.tables[node]
            if state is LinkState.DOWN:
                affected += len(table.invalidate(link_id))
            else:
                affected += len(table.revalidate(link_id))
        self.timeline.append(LinkTransition(time=time, link_id=link_id, state=state))
        log.info(
            "t=%.3fs link %s (%s-%s) %s, %d route entries affected",
            time,
            link_id,
            link.u,
            link.v,
            state.value.upper(),
            affected,
        )
        self.logger.log("link_state", time=time, link_id=link_id, state=state.value, affected=affected)
