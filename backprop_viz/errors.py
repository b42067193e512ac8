"""
errors.py
~~~~~~~~~

Exceptions raised by the network engine.

Two kinds of failure are distinguished:
- ConfigurationError: the requested architecture, sample, learning rate,
  activation or mode is invalid. Raised at configuration time.
- PreconditionError: an operation was called out of order (backward before
  forward, update before backward) or with a sample that does not fit the
  current architecture.
"""


class EngineError(Exception):
    """Base class for all network engine errors."""


class ConfigurationError(EngineError, ValueError):
    """Raised when engine configuration is rejected."""


class PreconditionError(EngineError, RuntimeError):
    """Raised when an engine operation is called on unsuitable state."""
