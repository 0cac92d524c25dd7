"""
Pass context: the state shared by the passes of one deobfuscation run.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from deconfuser.compiler.nodes import Node
from deconfuser.runtime.oracle import Oracle


@dataclass
class PassContext:
    """
    Configuration plus cross-pass hints, threaded through every pass.

    ``arrow_wrapper`` is the name of the minified-arrow helper once found;
    ``length_hints`` pairs a function node with the parameter count its
    length helper declared, for the stack interpreter.
    """
    oracle: Oracle
    max_stack_iterations: int = 32
    max_closure_retries: int = 64
    arrow_wrapper: Optional[str] = None
    length_hints: List[Tuple[Node, int]] = field(default_factory=list)
    stats: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: defaultdict(int)))
    timings: Dict[str, float] = field(default_factory=dict)

    def counters(self, pass_name: str) -> Dict[str, int]:
        return self.stats[pass_name]

    def length_hint(self, function: Node) -> Optional[int]:
        for node, length in self.length_hints:
            if node is function:
                return length
        return None
