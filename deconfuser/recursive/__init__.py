"""
Fixed-point machinery
=====================

1. **Purity lattice**: expressions are classified CONSTANT ⊂ PURE ⊂
   READ_ONLY ⊂ IMPURE before code is dropped or sent to the oracle.

2. **Fixed-point iteration**: a rewriting step is repeated until it makes
   no change, under an iteration cap.

3. **Abstract stack interpretation**: array-indexed parameter stacks are
   resolved by replaying their writes over abstract cells, folding
   constants between rounds.
"""

from deconfuser.recursive.fixed_point_engine import (
    ConvergenceResult,
    ConvergenceStatus,
    FixedPointEngine,
)
from deconfuser.recursive.purity_analyzer import (
    PurityAnalyzer,
    PurityLevel,
    PurityReport,
)
from deconfuser.recursive.stack_interpreter import (
    Cell,
    CellKind,
    StackInterpreter,
)

__all__ = [
    'ConvergenceResult',
    'ConvergenceStatus',
    'FixedPointEngine',
    'PurityAnalyzer',
    'PurityLevel',
    'PurityReport',
    'Cell',
    'CellKind',
    'StackInterpreter',
]
