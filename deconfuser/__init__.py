"""
deconfuser: Deobfuscator for JS-Confuser Output
===============================================

Reverses the structural transforms of the JS-Confuser obfuscator by
pattern recognition, sandboxed partial evaluation and fixed-point
simplification over the program tree.

Core Components:
    - compiler: ESTree model, parser, printer, constant folding, branch pruning
    - analysis: scopes and liveness, fingerprints, dependency closures
    - recursive: purity lattice, fixed-point engine, abstract stack interpreter
    - runtime: V8 evaluation oracle and the pipeline orchestrator
    - passes: the ten template de-transforms

Usage:
    >>> import deconfuser
    >>> deconfuser.deobfuscate('function f(){} f(log(1), log(2));')
    'log(1);\\nlog(2);'

    >>> from deconfuser import Deobfuscator
    >>> result = Deobfuscator(passes=['anti_tooling']).run(source)
    >>> result.stats['anti_tooling']
"""

__version__ = "1.0.0"

from deconfuser.errors import DeconfuserError, OracleFailure, ParseFailure, UndefinedReference
from deconfuser.runtime.pipeline import PASS_ORDER, DeobfuscationResult, Deobfuscator, deobfuscate
from deconfuser.runtime.oracle import Oracle
