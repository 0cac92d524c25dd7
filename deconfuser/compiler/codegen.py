"""
Code Generator
==============

Prints a program tree back to JavaScript source with ``escodegen``.

Output is deterministic and comment-free: two-space indentation and double
quoted strings. Nodes are handed to escodegen as plain ESTree mappings;
source ranges are dropped and values escodegen cannot spell as a literal
(``NaN``, the infinities) are rewritten into the expressions that produce
them.
"""

import math
import re
from typing import Any

import escodegen

from deconfuser.compiler.nodes import Node, value_to_node

FORMAT = {
    'indent': {'style': '  ', 'base': 0},
    'quotes': 'double',
}


def to_estree(value: Any) -> Any:
    """``Node`` tree → plain ESTree mappings, with esprima's field names."""
    if isinstance(value, list):
        return [to_estree(item) for item in value]
    if isinstance(value, dict):
        return {key: to_estree(item) for key, item in value.items()}
    if not isinstance(value, Node):
        return value
    if value.type == 'Literal' and isinstance(value.get('value'), float) \
            and not math.isfinite(value.value):
        return to_estree(value_to_node(value.value))
    fields = {key: to_estree(item) for key, item in vars(value).items() if key != 'range'}
    if 'is_async' in fields:
        fields['isAsync'] = fields.pop('is_async')
    return fields


def generate(node: Node) -> str:
    """Print ``node`` (a program, statement or expression) to source text."""
    return escodegen.generate(to_estree(node), {'format': FORMAT})


def flatten(node: Node) -> str:
    """Whitespace-free rendering used for structural fingerprints."""
    return re.sub(r'\s+', '', generate(node))
