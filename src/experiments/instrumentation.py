from __future__ import annotations

import csv
import json
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, TextIO

INCREMENT_EVENT = "increment_complete"


@dataclass
class FraggerProfiler:
    """
    Event recorder and log sink for a fragger run.

    Every component records structured events here (increment summaries,
    promotion trials, pauses). Human-readable progress goes to `log` only when
    verbose. flush() writes all events as JSONL plus one CSV row per completed
    increment, which is the table most runs get plotted from.
    """

    run_id: str
    output_dir: Optional[str] = None
    write_immediately: bool = False
    verbose: bool = False
    log: TextIO = field(default_factory=lambda: sys.stdout)
    events: List[Dict[str, object]] = field(default_factory=list)

    def record_event(self, event_type: str, payload: Dict[str, object]) -> None:
        record = {"timestamp": time.time(), "run_id": self.run_id, "event": event_type, **payload}
        self.events.append(record)
        if self.write_immediately and self.output_dir:
            with self._path(".jsonl").open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record) + "\n")

    def say(self, message: str) -> None:
        if not self.verbose:
            return
        self.log.write(message + "\n")
        self.log.flush()

    def events_of(self, event_type: str) -> List[Dict[str, object]]:
        return [event for event in list(self.events) if event["event"] == event_type]

    def flush(self) -> None:
        # Other threads may still be recording; write what was there on entry.
        events = list(self.events)
        if not self.output_dir or not events:
            return
        if not self.write_immediately:
            with self._path(".jsonl").open("w", encoding="utf-8") as handle:
                handle.writelines(json.dumps(record) + "\n" for record in events)
        increments = [event for event in events if event["event"] == INCREMENT_EVENT]
        if not increments:
            return
        with self._path("_increments.csv").open("w", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=list(increments[0].keys()))
            writer.writeheader()
            writer.writerows(increments)

    def _path(self, suffix: str) -> Path:
        output_path = Path(self.output_dir)
        output_path.mkdir(parents=True, exist_ok=True)
        return output_path / f"{self.run_id}{suffix}"
