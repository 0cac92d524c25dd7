"""Utility helpers for deconfuser."""

import time
from typing import Dict, Mapping


class Timer:
    """High-resolution timer for pass timings."""

    def __init__(self):
        self.start_ns = 0
        self.end_ns = 0

    def __enter__(self):
        self.start_ns = time.perf_counter_ns()
        return self

    def __exit__(self, *exc):
        self.end_ns = time.perf_counter_ns()

    @property
    def elapsed_ns(self) -> int:
        return self.end_ns - self.start_ns

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_ns / 1_000_000.0


def format_stats(stats: Mapping[str, Mapping[str, float]], timings: Dict[str, float]) -> str:
    """
    Render per-pass statistics as a fixed-width table.

    Usage:
        >>> print(format_stats({'anti_tooling': {'calls_removed': 2}}, {'anti_tooling': 1.5}))
    """
    lines = [f"{'pass':<22} {'ms':>9}  counters", '-' * 60]
    for name, elapsed in timings.items():
        counters = ', '.join(f'{k}={v}' for k, v in sorted(stats.get(name, {}).items()) if v)
        lines.append(f'{name:<22} {elapsed:>9.2f}  {counters or "-"}')
    return '\n'.join(lines)
