"""
Pipeline Orchestrator
=====================

Runs the de-transform passes over one program tree in a fixed order:

     1. anti_tooling         decoy call wrappers
     2. minify_arrow         parameter-count wrappers of lambdas
     3. duplicate_literal    hoisted literal arrays
     4. stack                function-length helper + rest-parameter stacks
     5. string_compression   compressed string table
     6. string_concealing    encoded strings behind getters
     7. placeholder          single-use placeholder literals
     8. constant_fold
     9. stack                second round, on freshly inlined literals
    10. opaque_predicates
    11. constant_fold
    12. branch_prune
    13. global_concealing
    14. flatten_object
    15. constant_fold

No step is retried at this level; the stack interpreter and the
concealed-string closure loop iterate internally. A step that finds
nothing is a no-op.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from deconfuser.analysis.scope import BindingTracker
from deconfuser.compiler.ast_optimizer import fold, prune
from deconfuser.compiler.codegen import generate
from deconfuser.compiler.nodes import Node
from deconfuser.compiler.parser import parse
from deconfuser.passes import PASSES
from deconfuser.runtime.context import PassContext
from deconfuser.runtime.oracle import DEFAULT_TIMEOUT_MS, Oracle
from deconfuser.utils.helpers import Timer

logger = logging.getLogger(__name__)

PASS_ORDER = (
    'anti_tooling',
    'minify_arrow',
    'duplicate_literal',
    'stack',
    'string_compression',
    'string_concealing',
    'placeholder',
    'constant_fold',
    'stack',
    'opaque_predicates',
    'constant_fold',
    'branch_prune',
    'global_concealing',
    'flatten_object',
    'constant_fold',
)


@dataclass
class DeobfuscationResult:
    code: str
    stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    oracle_stats: Dict[str, int] = field(default_factory=dict)
    timings: Dict[str, float] = field(default_factory=dict)
    elapsed_ms: float = 0.0


class Deobfuscator:
    """
    Fixed-order deobfuscation pipeline.

    Usage:
        >>> result = Deobfuscator().run('function f(){} f(log(1), log(2));')
        >>> print(result.code)
        log(1);
        log(2);

        >>> Deobfuscator(passes=['anti_tooling', 'constant_fold']).run(code)
    """

    def __init__(
        self,
        passes: Optional[Sequence[str]] = None,
        oracle_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_stack_iterations: int = 32,
        max_closure_retries: int = 64,
        enable_logging: bool = False,
    ):
        enabled = set(PASS_ORDER if passes is None else passes)
        unknown = enabled - set(PASS_ORDER)
        if unknown:
            raise ValueError(f'Unknown passes: {", ".join(sorted(unknown))}')
        # order is fixed; the argument only selects
        self.enabled_passes: List[str] = [name for name in PASS_ORDER if name in enabled]
        self.oracle_timeout_ms = oracle_timeout_ms
        self.max_stack_iterations = max_stack_iterations
        self.max_closure_retries = max_closure_retries
        if enable_logging:
            logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    def _context(self) -> PassContext:
        return PassContext(
            oracle=Oracle(self.oracle_timeout_ms),
            max_stack_iterations=self.max_stack_iterations,
            max_closure_retries=self.max_closure_retries,
        )

    def run(self, code: str) -> DeobfuscationResult:
        """
        Deobfuscate ``code``.

        Raises:
            ParseFailure: the input cannot be parsed
        """
        with Timer() as total:
            program = parse(code)
            context = self._context()
            self.transform(program, context)
            output = generate(program)
        return DeobfuscationResult(
            code=output,
            stats={name: dict(counters) for name, counters in context.stats.items()},
            oracle_stats=dict(context.oracle.stats),
            timings=dict(context.timings),
            elapsed_ms=total.elapsed_ms,
        )

    def transform(self, program: Node, context: Optional[PassContext] = None) -> PassContext:
        """Run the enabled steps over ``program`` in place."""
        context = context or self._context()
        tracker = BindingTracker(program)
        for step, pass_name in enumerate(self.enabled_passes, 1):
            tracker.recrawl()
            with Timer() as t:
                changes = self._run_step(pass_name, program, tracker, context)
            context.timings[pass_name] = context.timings.get(pass_name, 0.0) + t.elapsed_ms
            logger.debug('Step %d %s: %d changes in %.2f ms', step, pass_name, changes, t.elapsed_ms)
        return context

    def _run_step(self, pass_name: str, program: Node, tracker: BindingTracker,
                  context: PassContext) -> int:
        transformer = getattr(self, f'_pass_{pass_name}', None)
        if transformer is not None:
            return transformer(program, context)
        return PASSES[pass_name](context).run(program, tracker)

    # ---- Folding steps ----

    def _pass_constant_fold(self, program: Node, context: PassContext) -> int:
        """Evaluate literal arithmetic, comparisons and unary operators."""
        return fold(program, context.counters('constant_fold'))

    def _pass_branch_prune(self, program: Node, context: PassContext) -> int:
        """Keep the taken branch of conditionals with a literal test."""
        return prune(program, context.counters('branch_prune'))


def deobfuscate(code: str, **options) -> str:
    """Deobfuscate ``code`` with a default pipeline; ``options`` go to ``Deobfuscator``."""
    return Deobfuscator(**options).run(code).code
