"""Sandboxed evaluation and the state shared by one deobfuscation run."""

from deconfuser.runtime.oracle import EvalResult, Fatal, MissingName, Ok, Oracle
from deconfuser.runtime.context import PassContext

__all__ = ['EvalResult', 'Fatal', 'MissingName', 'Ok', 'Oracle', 'PassContext']
