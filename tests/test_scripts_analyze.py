import json
from pathlib import Path

import scripts.analyze as analyze


def write_log(path: Path, records: list) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fp:
        for record in records:
            fp.write((record if isinstance(record, str) else json.dumps(record)) + "\n")


def test_analyze_main_generates_report(tmp_path, monkeypatch):
    log_dir = tmp_path / "metrics"
    report_path = tmp_path / "reports" / "attempts.md"
    write_log(
        log_dir / "requests-20240101.jsonl",
        [
            {"model": "gpt-4.1", "outcome": "rate_limited", "ok": False, "attempt": 1, "latency_ms": 40},
            {"model": "gpt-4.1-bytez", "outcome": "success", "ok": True, "attempt": 2, "latency_ms": 900},
            "not json",
            "",
        ],
    )
    write_log(
        log_dir / "requests-20240102.jsonl",
        [{"model": "gpt-4.1", "outcome": "success", "ok": True, "attempt": 1, "latency_ms": 200}],
    )

    monkeypatch.setattr(analyze, "LOG_DIR", log_dir)
    monkeypatch.setattr(analyze, "REPORT", report_path)

    analyze.main()

    text = report_path.read_text(encoding="utf-8")
    assert "- Attempts: 3" in text
    assert "- Attempt success rate: 66.67%" in text
    assert "- Successes after fallback: 1" in text
    assert "| gpt-4.1 | rate_limited=1, success=1 |" in text


def test_main_without_logs_writes_empty_report(tmp_path, monkeypatch):
    report_path = tmp_path / "reports" / "attempts.md"
    monkeypatch.setattr(analyze, "LOG_DIR", tmp_path / "missing")
    monkeypatch.setattr(analyze, "REPORT", report_path)

    analyze.main()

    text = report_path.read_text(encoding="utf-8")
    assert "- Attempts: 0" in text
    assert "n/a" in text
    assert "| model |" not in text


def test_summarize_counts_per_model():
    summary = analyze.summarize(
        [
            {"model": "a", "outcome": "timeout", "latency_ms": 8000, "attempt": 1},
            {"model": "a", "outcome": "success", "ok": True, "latency_ms": 100, "attempt": 1},
            {"model": "b", "outcome": "hard", "latency_ms": "12.5", "attempt": 2},
        ]
    )

    assert summary["total"] == 3
    assert summary["successes"] == 1
    assert summary["fallback_successes"] == 0
    assert summary["models"]["a"]["outcomes"] == {"timeout": 1, "success": 1}
    assert summary["models"]["b"]["p95_ms"] == 12


def test_compute_p95_handles_invalid_values():
    assert analyze.compute_p95([]) == 0
    assert analyze.compute_p95([float("nan")]) == 0
    assert analyze.compute_p95(["bad", 10, 10]) == 10
    assert analyze.compute_p95(list(range(1, 101))) == 95
