"""
Exception taxonomy.

    DeconfuserError
    ├── ParseFailure          unrecoverable, aborts the run
    └── OracleFailure         one extraction site failed (threw / timed out)
        └── UndefinedReference  a free name was missing from the closure

A matcher that does not recognize its template returns ``None``; that is
never an exception.
"""


class DeconfuserError(Exception):
    """Base class of every error raised by deconfuser."""


class ParseFailure(DeconfuserError):
    """The input could not be parsed; no output is produced."""


class OracleFailure(DeconfuserError):
    """Sandboxed evaluation of one site threw or timed out."""

    def __init__(self, message: str, source: str = ''):
        super().__init__(message)
        self.source = source


class UndefinedReference(OracleFailure):
    """Evaluation hit a ``ReferenceError`` for ``name``."""

    def __init__(self, name: str, source: str = ''):
        super().__init__(f'{name} is not defined', source)
        self.name = name
