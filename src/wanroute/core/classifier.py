from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from wanroute.core.types import Protocol, TrafficClass


@dataclass(frozen=True)
class ClassRule:
    protocol: Protocol
    low: int
    high: int
    traffic_class: TrafficClass

    def matches(self, protocol: Protocol, port: int) -> bool:
        return protocol is self.protocol and self.low <= port <= self.high


DEFAULT_RULES: Tuple[ClassRule, ...] = (
    ClassRule(Protocol.UDP, 5000, 5010, TrafficClass.HIGH_PRIORITY),
    ClassRule(Protocol.UDP, 6000, 6010, TrafficClass.SUSPICIOUS),
    ClassRule(Protocol.TCP, 80, 80, TrafficClass.WEB),
    ClassRule(Protocol.TCP, 443, 443, TrafficClass.WEB),
)


class TrafficClassifier:
    """Maps (protocol, destination port) to a traffic class; first matching rule wins.

    Holds only an immutable rule tuple, so one instance can serve any number of runs.
    The class is reporting metadata and never feeds into route selection.
    """

    def __init__(self, rules: Sequence[ClassRule] = DEFAULT_RULES) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> Tuple[ClassRule, ...]:
        return self._rules

    def classify(self, protocol: Any, destination_port: int) -> TrafficClass:
        proto = _known_protocol(protocol)
        if proto is None:
            return TrafficClass.BEST_EFFORT
        port = int(destination_port)
        for rule in self._rules:
            if rule.matches(proto, port):
                return rule.traffic_class
        return TrafficClass.BEST_EFFORT


def _known_protocol(value: Any) -> Optional[Protocol]:
    # rules only name TCP and UDP; any other protocol is best effort
    try:
        return Protocol.parse(value)
    except ValueError:
        return None


_DEFAULT = TrafficClassifier()


def classify(protocol: Any, destination_port: int) -> TrafficClass:
    return _DEFAULT.classify(protocol, destination_port)


def parse_rules(raw: Sequence[dict]) -> Tuple[ClassRule, ...]:
    rules = []
    for item in raw:
        ports = item.get("ports", item.get("port"))
        if isinstance(ports, (list, tuple)):
            low, high = int(ports[0]), int(ports[-1])
        else:
            low = high = int(ports)
        rules.append(
            ClassRule(
                protocol=Protocol.parse(item["protocol"]),
                low=low,
                high=high,
                traffic_class=TrafficClass(str(item["class"])),
            )
        )
    return tuple(rules)
