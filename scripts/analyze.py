import datetime
import json
import math
import pathlib
import statistics
from collections import Counter, defaultdict
from typing import Sequence

LOG_DIR = pathlib.Path("metrics")
LOG_GLOB = "requests-*.jsonl"
REPORT = pathlib.Path("reports/attempts.md")


def _normalize_duration(value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return 0
        return int(value)
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return 0
        if not math.isfinite(parsed):
            return 0
        return int(parsed)
    return 0


def load_attempts() -> list[dict]:
    attempts: list[dict] = []
    if not LOG_DIR.exists():
        return attempts
    for path in sorted(LOG_DIR.glob(LOG_GLOB)):
        with path.open(encoding="utf-8") as f:
            for line in f:
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    obj = json.loads(stripped)
                except json.JSONDecodeError:
                    continue
                if isinstance(obj, dict) and obj.get("model"):
                    attempts.append(obj)
    return attempts


def compute_p95(durations: Sequence[object]) -> int:
    normalized = [_normalize_duration(value) for value in durations]
    if not normalized:
        return 0
    if len(normalized) == 1:
        return normalized[0]
    sorted_durations = sorted(normalized)
    try:
        return int(statistics.quantiles(sorted_durations, n=20, method="inclusive")[18])
    except statistics.StatisticsError:
        index = min(len(sorted_durations) - 1, math.ceil(0.95 * len(sorted_durations)) - 1)
        return int(sorted_durations[index])


def summarize(attempts: Sequence[dict]) -> dict:
    outcomes: dict[str, Counter] = defaultdict(Counter)
    latencies: dict[str, list[object]] = defaultdict(list)
    fallbacks = 0
    for attempt in attempts:
        model = str(attempt.get("model"))
        outcomes[model][str(attempt.get("outcome") or "unknown")] += 1
        latencies[model].append(attempt.get("latency_ms"))
        if attempt.get("ok") and _normalize_duration(attempt.get("attempt")) > 1:
            fallbacks += 1
    successes = sum(counter["success"] for counter in outcomes.values())
    return {
        "total": len(attempts),
        "successes": successes,
        "fallback_successes": fallbacks,
        "models": {
            model: {
                "outcomes": dict(outcomes[model]),
                "p95_ms": compute_p95(latencies[model]),
            }
            for model in sorted(outcomes)
        },
    }


def _success_rate_text(total: int, successes: int) -> str:
    if total == 0:
        return "n/a"
    return f"{successes / total:.2%}"


def _write_report(report_path: pathlib.Path, summary: dict, timestamp: str) -> None:
    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", encoding="utf-8") as handle:
        handle.write(f"# Model Attempt Report ({timestamp})\n\n")
        handle.write(f"- Attempts: {summary['total']}\n")
        handle.write(
            f"- Attempt success rate: {_success_rate_text(summary['total'], summary['successes'])}\n"
        )
        handle.write(f"- Successes after fallback: {summary['fallback_successes']}\n\n")
        if summary["models"]:
            handle.write("| model | outcomes | p95 latency |\n")
            handle.write("| --- | --- | --- |\n")
            for model, stats in summary["models"].items():
                outcome_text = ", ".join(
                    f"{name}={count}" for name, count in sorted(stats["outcomes"].items())
                )
                handle.write(f"| {model} | {outcome_text} | {stats['p95_ms']} ms |\n")


def main() -> None:
    attempts = load_attempts()
    timestamp = datetime.datetime.now(datetime.timezone.utc).isoformat()
    _write_report(REPORT, summarize(attempts), timestamp)


if __name__ == "__main__":
    main()
