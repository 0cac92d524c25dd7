"""
Tree model, parser, printer and the folding passes run between templates.
"""

from deconfuser.compiler.nodes import Node, NodePath, NodeTransformer, NodeVisitor, walk
from deconfuser.compiler.parser import parse, parse_expression
from deconfuser.compiler.codegen import flatten, generate
from deconfuser.compiler.ast_optimizer import BranchPruner, ConstantFolder, fold, prune

__all__ = [
    'Node',
    'NodePath',
    'NodeTransformer',
    'NodeVisitor',
    'walk',
    'parse',
    'parse_expression',
    'generate',
    'flatten',
    'BranchPruner',
    'ConstantFolder',
    'fold',
    'prune',
]
