"""
Pass Base
=========

Every de-transform is a ``Pass`` subclass pairing a pure matcher (returns a
match dataclass or ``None``, never mutates) with the rewrite that consumes
the match. Passes share a ``PassContext`` and a ``BindingTracker`` over the
one program tree they all mutate.
"""

import logging
import re
from typing import Iterator, List, Optional, Tuple

from deconfuser.analysis.scope import Binding, BindingTracker, ScopeIndex
from deconfuser.compiler.nodes import FUNCTION_TYPES, Node, NodePath
from deconfuser.errors import OracleFailure
from deconfuser.recursive.purity_analyzer import is_constant_expression
from deconfuser.runtime.context import PassContext

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r'^[A-Za-z_$][\w$]*$')

RESERVED_WORDS = frozenset({
    'break', 'case', 'catch', 'class', 'const', 'continue', 'debugger', 'default',
    'delete', 'do', 'else', 'enum', 'export', 'extends', 'false', 'finally', 'for',
    'function', 'if', 'import', 'in', 'instanceof', 'new', 'null', 'return', 'super',
    'switch', 'this', 'throw', 'true', 'try', 'typeof', 'var', 'void', 'while', 'with',
    'yield', 'let', 'static', 'implements', 'interface', 'package', 'private',
    'protected', 'public', 'await',
})


def is_identifier_name(name: str) -> bool:
    return bool(IDENTIFIER_RE.match(name)) and name not in RESERVED_WORDS


def function_of(binding: Binding) -> Optional[Node]:
    """The function a binding names: ``function f(){}`` or ``var f = function(){}``."""
    if binding.kind in ('param', 'catch', 'local'):
        return None
    node = binding.path.node
    if node.type == 'FunctionDeclaration':
        return node
    if node.type == 'VariableDeclarator' and node.init is not None \
            and node.init.type in FUNCTION_TYPES:
        return node.init
    return None


def declared_functions(tracker: BindingTracker) -> Iterator[Tuple[Binding, Node]]:
    """Every binding that names a function, with that function."""
    for binding in list(tracker.index.all_bindings()):
        function = function_of(binding)
        if function is not None:
            yield binding, function


def is_call_of(path: NodePath) -> bool:
    """``path`` is the callee of a call expression."""
    return path.key == 'callee' and path.parent is not None \
        and path.parent.type == 'CallExpression'


def constant_arguments(call: Node) -> bool:
    return all(is_constant_expression(arg) for arg in call.arguments)


def enclosing_function_binding(ref_path: NodePath, index: ScopeIndex) -> Optional[Binding]:
    """Binding of the named function a reference sits in, if it has one."""
    function_path = ref_path.function_parent()
    if function_path is None:
        return None
    function = function_path.node
    if function.type == 'FunctionDeclaration' and function.id is not None:
        return index.binding_for_declaration(function, function.id.name)
    holder = function_path.parent
    if holder is not None and holder.type == 'VariableDeclarator' \
            and function_path.key == 'init' and holder.id.type == 'Identifier':
        return index.binding_for_declaration(holder, holder.id.name)
    return None


class Pass:
    """
    Base class of the template passes.

    Subclasses set ``name`` and implement ``run``, which returns the
    number of rewritten sites.
    """

    name = ''

    def __init__(self, context: PassContext):
        self.context = context
        self.oracle = context.oracle
        self.stats = context.counters(self.name)

    def run(self, program: Node, tracker: BindingTracker) -> int:
        raise NotImplementedError

    # ---- Helpers shared by the passes ----

    def call_sites(self, binding: Binding, what: str) -> List[NodePath]:
        """Reference paths of ``binding`` that are callees; other references are logged."""
        sites = []
        for ref in binding.reference_paths:
            if is_call_of(ref):
                sites.append(ref.parent_path)
            else:
                logger.warning('Unexpected reference of %s %s at offset %s',
                               what, binding.name, ref.node.start)
        return sites

    def extract(self, closure, target: Node, site: Node) -> Optional[Node]:
        """Evaluate one site; the replacement node, or ``None`` when it failed."""
        try:
            result = self.oracle.evaluate_or_raise(closure, target, site)
        except OracleFailure as e:
            logger.warning('%s: site at offset %s left as is: %s', self.name, site.start, e)
            self.stats['sites_failed'] += 1
            return None
        if result.node is None:
            logger.warning('Value at offset %s has no source form', site.start)
            self.stats['sites_failed'] += 1
            return None
        self.stats['sites_evaluated'] += 1
        return result.node

    def delete(self, tracker: BindingTracker, binding_name: str, node: Node,
               keep_side_effects: bool = True) -> bool:
        deleted = tracker.try_safe_delete(binding_name, node, keep_side_effects)
        if deleted:
            self.stats['declarations_removed'] += 1
            logger.debug('%s: removed %s', self.name, binding_name)
        return deleted
