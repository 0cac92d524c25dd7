"""
Structural fingerprints.

A helper emitted by the obfuscator is recognized by the order in which
certain tokens appear in its code, independent of its (randomized) names
and whitespace. The subtree is printed, whitespace is removed, and each
fragment of the pattern must occur after the previous one.
"""

from typing import Sequence, Union

from deconfuser.compiler.codegen import flatten
from deconfuser.compiler.nodes import Node


def contains_in_order(text: str, fragments: Sequence[str]) -> bool:
    position = 0
    for fragment in fragments:
        position = text.find(fragment, position)
        if position < 0:
            return False
        position += len(fragment)
    return True


def has_fingerprint(subject: Union[Node, str], fragments: Sequence[str]) -> bool:
    """
    Whether ``subject`` (a subtree or flattened text) contains ``fragments`` in order.

    Usage:
        >>> has_fingerprint(realm_fn, ('try', '__proto__', 'constructor', 'catch'))
        True
    """
    text = subject if isinstance(subject, str) else flatten(subject)
    return contains_in_order(text, fragments)


def has_fragments(subject: Union[Node, str], fragments: Sequence[str]) -> bool:
    """Whether every fragment occurs in ``subject``, in any order."""
    text = subject if isinstance(subject, str) else flatten(subject)
    return all(fragment in text for fragment in fragments)
