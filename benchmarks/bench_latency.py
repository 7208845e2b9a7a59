"""Benchmark: lock operation latency (p50/p95/mean).

Measures per-call latency of an uncontended read/unread cycle and an
uncontended write/release cycle on a temporary lock path.
"""
from __future__ import annotations

import json
import sys
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cliengine.lock import LockManager

_WARMUP: int = 50
_ITERATIONS: int = 1_000


def _summarise(operation: str, latencies_ms: list[float]) -> dict[str, object]:
    sorted_lats = sorted(latencies_ms)
    n = len(sorted_lats)
    total = sum(latencies_ms) / 1000
    return {
        "operation": operation,
        "iterations": n,
        "total_seconds": round(total, 4),
        "ops_per_second": round(n / total, 1),
        "avg_latency_ms": round(sum(latencies_ms) / n, 4),
        "p50_ms": round(sorted_lats[int(n * 0.50)], 4),
        "p95_ms": round(sorted_lats[min(int(n * 0.95), n - 1)], 4),
    }


def _measure(cycle: Callable[[], None], iterations: int) -> list[float]:
    for _ in range(min(_WARMUP, iterations)):
        cycle()
    latencies_ms: list[float] = []
    for _ in range(iterations):
        t0 = time.perf_counter()
        cycle()
        latencies_ms.append((time.perf_counter() - t0) * 1000)
    return latencies_ms


def _report(result: dict[str, object]) -> None:
    print(
        f"[bench_latency] {result['operation']}: "
        f"p50={result['p50_ms']:.4f}ms  p95={result['p95_ms']:.4f}ms  "
        f"mean={result['avg_latency_ms']:.4f}ms"
    )


def bench_read_latency(iterations: int = _ITERATIONS) -> dict[str, object]:
    """Benchmark registering and unregistering as a reader.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    avg_latency_ms, p50_ms, p95_ms.
    """
    locks = LockManager()
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "update.lock"

        def cycle() -> None:
            locks.read(path, timeout=0)()

        result = _summarise("lock_read_unread", _measure(cycle, iterations))
    _report(result)
    return result


def bench_write_latency(iterations: int = _ITERATIONS) -> dict[str, object]:
    """Benchmark taking and releasing the writer lock."""
    locks = LockManager()
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "update.lock"

        def cycle() -> None:
            locks.write(path, timeout=0)()

        result = _summarise("lock_write_release", _measure(cycle, iterations))
    _report(result)
    return result


if __name__ == "__main__":
    results = [bench_read_latency(), bench_write_latency()]
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)
    output_path = results_dir / "latency_baseline.json"
    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(results, fh, indent=2)
    print(f"Results saved to {output_path}")
