"""
Template passes
===============

One module per obfuscation template. Each pairs a pure ``match_*``
function (a match dataclass or ``None``) with a ``Pass`` that rewrites the
program and removes the helpers it made dead.
"""

from deconfuser.passes.base import Pass
from deconfuser.passes.anti_tooling import AntiToolingPass
from deconfuser.passes.minify_arrow import MinifyArrowPass
from deconfuser.passes.duplicate_literal import DuplicateLiteralPass
from deconfuser.passes.stack import StackPass
from deconfuser.passes.string_compression import StringCompressionPass
from deconfuser.passes.string_concealing import StringConcealingPass
from deconfuser.passes.placeholder import PlaceholderPass
from deconfuser.passes.opaque_predicates import OpaquePredicatesPass
from deconfuser.passes.global_concealing import GlobalConcealingPass
from deconfuser.passes.flatten_object import FlattenObjectPass

PASSES = {
    cls.name: cls for cls in (
        AntiToolingPass,
        MinifyArrowPass,
        DuplicateLiteralPass,
        StackPass,
        StringCompressionPass,
        StringConcealingPass,
        PlaceholderPass,
        OpaquePredicatesPass,
        GlobalConcealingPass,
        FlattenObjectPass,
    )
}

__all__ = [
    'PASSES',
    'Pass',
    'AntiToolingPass',
    'MinifyArrowPass',
    'DuplicateLiteralPass',
    'StackPass',
    'StringCompressionPass',
    'StringConcealingPass',
    'PlaceholderPass',
    'OpaquePredicatesPass',
    'GlobalConcealingPass',
    'FlattenObjectPass',
]
