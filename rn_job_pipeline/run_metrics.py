import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_METRICS_FILE = "output/{pipeline}_metrics_{timestamp}.json"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunMetrics:
    """
    Counters, gauges and events for one pipeline run (scraper, indexing, indexnow).

    Counters are run totals (listings_seen, jobs_rejected, submitted_updated, ...).
    Per-employer figures go in gauges keyed "<employer-slug>.<name>".
    """

    pipeline: str
    started_at: datetime = field(default_factory=_now)
    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    finished_at: Optional[datetime] = None
    _started: float = field(default_factory=time.monotonic, repr=False)
    _elapsed: Optional[float] = field(default=None, repr=False)

    def inc(self, key: str, amount: int = 1) -> None:
        self.counters[key] = self.counters.get(key, 0) + amount

    def counter(self, key: str) -> int:
        return self.counters.get(key, 0)

    def set_gauge(self, key: str, value: Any) -> None:
        self.gauges[key] = value

    def record_event(self, kind: str, **data: Any) -> None:
        event = {"kind": kind, "at": _now().isoformat()}
        event.update({k: v for k, v in data.items() if v is not None})
        self.events.append(event)

    def events_of(self, kind: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["kind"] == kind]

    def finish(self) -> None:
        if self.finished_at is None:
            self.finished_at = _now()
            self._elapsed = time.monotonic() - self._started

    def summary(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        elapsed = self._elapsed if self._elapsed is not None else time.monotonic() - self._started
        summary: Dict[str, Any] = {
            "pipeline": self.pipeline,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(elapsed, 3),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "events": list(self.events),
        }
        if extra:
            summary.update(extra)
        return summary

    def write_json(self, *, template: str, extra: Optional[Dict[str, Any]] = None) -> Path:
        """Write the summary to `template` with {pipeline} and {timestamp} expanded."""
        stamp = self.started_at.strftime("%Y%m%d_%H%M%S")
        path = Path((template or DEFAULT_METRICS_FILE).format(pipeline=self.pipeline, timestamp=stamp))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.summary(extra), indent=2, default=str), encoding="utf-8")
        return path
