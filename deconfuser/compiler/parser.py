"""
Source → tree conversion.

Wraps ``esprima`` (tolerant mode, with source ranges) and converts its
node objects into ``deconfuser.compiler.nodes.Node`` trees.
"""

import logging
from typing import Any

import esprima
from esprima.error_handler import Error as EsprimaError

from deconfuser.compiler.nodes import Node, walk_nodes
from deconfuser.errors import ParseFailure

logger = logging.getLogger(__name__)

PARSE_OPTIONS = {'range': True, 'tolerant': True}


def _convert(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_convert(item) for item in value]
    if isinstance(value, dict):
        fields = {k: _convert(v) for k, v in value.items()}
    elif hasattr(value, '__dict__') and not isinstance(value, type):
        fields = {k: _convert(v) for k, v in vars(value).items()}
    else:
        return value
    node_type = fields.pop('type', None)
    if node_type is None:
        return fields
    if 'isAsync' in fields:
        fields['is_async'] = fields.pop('isAsync')
    if node_type == 'Literal' and fields.get('regex') is None:
        number = fields.get('value')
        if isinstance(number, float) and number.is_integer() and abs(number) < 2 ** 53:
            fields['value'] = int(number)
    return Node(node_type, **fields)


def from_estree(tree: Any) -> Node:
    """Convert an esprima result (node objects or plain dicts) to ``Node``."""
    return _convert(tree)


def parse(code: str) -> Node:
    """
    Parse a script.

    Recoverable syntax errors are tolerated and logged; anything esprima
    cannot recover from raises ``ParseFailure``.
    """
    try:
        script = esprima.parseScript(code, PARSE_OPTIONS)
    except (EsprimaError, RecursionError) as e:
        raise ParseFailure(f'Cannot parse code: {e}') from e
    program = from_estree(script)
    program.type = 'Program'
    for error in program.__dict__.pop('errors', None) or []:
        logger.warning('Tolerated parse error: %s', error.get('description', error)
                       if isinstance(error, dict) else error)
    return program


def parse_expression(source: str) -> Node:
    """Parse a single expression (used to re-read values printed by the oracle)."""
    program = parse(f'({source}\n)')
    if len(program.body) != 1 or program.body[0].type != 'ExpressionStatement':
        raise ParseFailure(f'Not a single expression: {source[:60]!r}')
    expression = program.body[0].expression
    _strip_ranges(expression)
    return expression


def _strip_ranges(node: Node) -> None:
    for child in walk_nodes(node):
        child.range = None
