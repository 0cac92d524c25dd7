"""
Static analysis shared by the passes: scopes and liveness, structural
fingerprints, dependency closures.
"""

from deconfuser.analysis.scope import (
    Binding,
    BindingTracker,
    Scope,
    ScopeIndex,
    ScopeKind,
    crawl,
    try_safe_delete,
)
from deconfuser.analysis.fingerprint import has_fingerprint, has_fragments
from deconfuser.analysis.closure import ClosureItem, DependencyClosure

__all__ = [
    'Binding',
    'BindingTracker',
    'Scope',
    'ScopeIndex',
    'ScopeKind',
    'crawl',
    'try_safe_delete',
    'has_fingerprint',
    'has_fragments',
    'ClosureItem',
    'DependencyClosure',
]
