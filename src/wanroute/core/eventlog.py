from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional, TextIO


class EventLog:
    """Per-run record of packets, link transitions and snapshots.

    Every record gets a run-wide sequence number, so the JSON-lines file can be replayed
    in execution order. Records are counted per event kind whether or not a file is open.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else None
        self.seq = 0
        self.counts: Counter = Counter()
        self._fh: Optional[TextIO] = None
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = self.path.open("w", encoding="utf-8")

    def log(self, event: str, **fields: Any) -> None:
        self.seq += 1
        self.counts[event] += 1
        if self._fh is None:
            return
        row = {"seq": self.seq, "event": event, **fields}
        self._fh.write(json.dumps(row, sort_keys=True, default=str) + "\n")
        self._fh.flush()

    def summary(self) -> Dict[str, int]:
        return dict(sorted(self.counts.items()))

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
