"""Per-attempt metrics for the model router.

Every attempt is appended to a daily JSONL audit file and folded into
per-model outcome counters and a latency histogram. ``MetricsLogger.render``
returns the Prometheus exposition text served by ``/metrics``; the same text is
mirrored to ``prometheus.prom`` for file-based scrapers.
"""

from __future__ import annotations

import asyncio
import bisect
import json
import os
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional

from .rate_limit import FailureKind

SUCCESS_OUTCOME = "success"
OUTCOMES: tuple[str, ...] = (SUCCESS_OUTCOME,) + tuple(kind.value for kind in FailureKind)
LATENCY_BUCKETS: tuple[float, ...] = (0.25, 0.5, 1.0, 2.0, 4.0, 8.0)

_PROM_FILE = "prometheus.prom"


@dataclass
class _ModelStats:
    outcomes: Counter = field(default_factory=Counter)
    # per-bucket hits; the last slot holds attempts slower than every bound
    hits: list[int] = field(default_factory=lambda: [0] * (len(LATENCY_BUCKETS) + 1))
    latency_sum: float = 0.0

    def observe(self, outcome: str, seconds: float) -> None:
        self.outcomes[outcome] += 1
        self.hits[bisect.bisect_left(LATENCY_BUCKETS, seconds)] += 1
        self.latency_sum += seconds

    def counter_lines(self, model: str) -> list[str]:
        out = [
            f'chat_attempts_total{{model="{model}",outcome="{outcome}"}} {self.outcomes[outcome]}'
            for outcome in OUTCOMES
        ]
        out.extend(
            f'chat_attempts_total{{model="{model}",outcome="{outcome}"}} {count}'
            for outcome, count in sorted(self.outcomes.items())
            if outcome not in OUTCOMES
        )
        return out

    def histogram_lines(self, model: str) -> list[str]:
        out: list[str] = []
        running = 0
        for bound, hits in zip(LATENCY_BUCKETS, self.hits):
            running += hits
            out.append(f'chat_attempt_latency_seconds_bucket{{model="{model}",le="{bound:g}"}} {running}')
        total = running + self.hits[-1]
        out.append(f'chat_attempt_latency_seconds_bucket{{model="{model}",le="+Inf"}} {total}')
        out.append(f'chat_attempt_latency_seconds_count{{model="{model}"}} {total}')
        out.append(f'chat_attempt_latency_seconds_sum{{model="{model}"}} {self.latency_sum}')
        return out


class MetricsLogger:
    def __init__(self, dirpath: str):
        self.dir = dirpath
        os.makedirs(self.dir, exist_ok=True)
        self._lock: Optional[asyncio.Lock] = None
        self._stats_lock = threading.Lock()
        self._stats: dict[str, _ModelStats] = {}

    def _file(self) -> str:
        return os.path.join(self.dir, f"requests-{time.strftime('%Y%m%d')}.jsonl")

    async def write(self, record: dict[str, Any]) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            with open(self._file(), "a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, ensure_ascii=False) + "\n")
        self._observe(record)

    def _observe(self, record: dict[str, Any]) -> None:
        model = str(record.get("model") or "unknown")
        outcome = str(record.get("outcome") or "unknown")
        seconds = max(float(record.get("latency_ms") or 0) / 1000.0, 0.0)
        with self._stats_lock:
            self._stats.setdefault(model, _ModelStats()).observe(outcome, seconds)
            prom_path = os.path.join(self.dir, _PROM_FILE)
            tmp_path = f"{prom_path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as handle:
                handle.write(self._render_locked())
            os.replace(tmp_path, prom_path)

    def render(self) -> str:
        with self._stats_lock:
            return self._render_locked()

    def _render_locked(self) -> str:
        lines = [
            "# HELP chat_attempts_total Model attempts by outcome",
            "# TYPE chat_attempts_total counter",
        ]
        for model in sorted(self._stats):
            lines.extend(self._stats[model].counter_lines(model))
        lines.append("# HELP chat_attempt_latency_seconds Latency of individual model attempts")
        lines.append("# TYPE chat_attempt_latency_seconds histogram")
        for model in sorted(self._stats):
            lines.extend(self._stats[model].histogram_lines(model))
        return "\n".join(lines) + "\n"
