from __future__ import annotations

import random
from typing import Optional

from wanroute.core.topology import Link


class Channel:
    """Opaque point-to-point delivery: propagation plus serialization delay, optional random loss."""

    def __init__(self, loss_prob: float = 0.0, seed: int = 0) -> None:
        self.loss_prob = max(0.0, min(1.0, float(loss_prob)))
        self.rng = random.Random(seed)
        self.delivered_hops = 0
        self.dropped_hops = 0

    def hop_delay(self, link: Link, size: int) -> float:
        serialization = (int(size) * 8.0 / link.bandwidth) if link.bandwidth > 0 else 0.0
        return link.delay + serialization

    def transmit(self, link: Link, size: int) -> Optional[float]:
        """Delay across ``link``, or None when the hop drops the packet."""
        if not link.is_up:
            self.dropped_hops += 1
            return None
        if self.loss_prob > 0.0 and self.rng.random() < self.loss_prob:
            self.dropped_hops += 1
            return None
        self.delivered_hops += 1
        return self.hop_delay(link, size)
