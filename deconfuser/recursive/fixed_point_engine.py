"""
Fixed-Point Engine
==================

Repeats a rewriting step until it stops changing the program.

Each step reports how many rewrites it made. The program is at its fixed
point once a step makes none; an iteration cap bounds the work for inputs
that keep producing rewrites.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, List

logger = logging.getLogger(__name__)


class ConvergenceStatus(Enum):
    """Status of fixed-point convergence."""
    CONVERGED = auto()           # A step made no rewrites
    MAX_ITERATIONS = auto()      # Cap reached while steps still rewrote


@dataclass
class ConvergenceResult:
    """Result of a fixed-point iteration process."""
    status: ConvergenceStatus
    iterations: int
    total_changes: int
    changes_history: List[int] = field(default_factory=list)
    wall_time_seconds: float = 0.0

    @property
    def converged(self) -> bool:
        return self.status == ConvergenceStatus.CONVERGED


class FixedPointEngine:
    """
    Fixed-point iteration over an in-place rewriting step.

    Usage:
        engine = FixedPointEngine(max_iterations=32)
        result = engine.iterate(lambda i: fold(tree))
        print(f"Status: {result.status}")
    """

    def __init__(self, max_iterations: int = 32):
        if max_iterations < 1:
            raise ValueError('max_iterations must be positive')
        self.max_iterations = max_iterations

    def iterate(self, step: Callable[[int], int]) -> ConvergenceResult:
        """
        Call ``step(i)`` until it returns 0.

        Args:
            step: Rewrites the program in place and returns its rewrite count

        Returns:
            ConvergenceResult with the per-iteration rewrite counts
        """
        start_time = time.perf_counter()
        history: List[int] = []

        for i in range(self.max_iterations):
            changes = step(i)
            history.append(changes)
            if changes == 0:
                return ConvergenceResult(
                    status=ConvergenceStatus.CONVERGED,
                    iterations=i + 1,
                    total_changes=sum(history),
                    changes_history=history,
                    wall_time_seconds=time.perf_counter() - start_time,
                )

        logger.debug('No fixed point after %d iterations (%s)', self.max_iterations, history)
        return ConvergenceResult(
            status=ConvergenceStatus.MAX_ITERATIONS,
            iterations=self.max_iterations,
            total_changes=sum(history),
            changes_history=history,
            wall_time_seconds=time.perf_counter() - start_time,
        )
