"""Exceptions raised by the encoder trunk.

Every failure in the trunk is one of three kinds.  Configuration errors
are detected while the model is being constructed, before any tensor is
allocated.  Shape errors can occur at construction (e.g. a hidden size
that cannot be split across heads) or during a forward pass (e.g. a mask
of the wrong rank).  Computation errors wrap failures of the underlying
tensor operations.  None of them are recovered from locally: they abort
the forward pass and propagate to the caller.
"""

from __future__ import annotations

from typing import Any, Optional


class TrunkError(Exception):
  """Base class for all errors raised by :mod:`multitrunk`."""


class ConfigurationError(TrunkError, ValueError):
  """Raised for an invalid configuration or an incompatible combination
  of model family and position embeddings."""


class ShapeError(TrunkError, ValueError):
  """Raised when a tensor or configuration dimension does not match.

  Attributes
  ----------
  operation:
      Name of the operation that detected the mismatch.
  expected:
      Description of the expected shape or dimension.
  actual:
      The shape or dimension that was encountered.
  """

  def __init__(
    self,
    operation: str,
    expected: Any,
    actual: Any,
    message: Optional[str] = None,
  ) -> None:
    self.operation = operation
    self.expected = expected
    self.actual = actual
    detail = f"{operation}: expected {expected}, got {actual}"
    if message is not None:
      detail = f"{detail} ({message})"
    super().__init__(detail)


class ComputationError(TrunkError, RuntimeError):
  """Raised when a numeric operation fails or produces non-finite values."""

  def __init__(self, operation: str, message: str) -> None:
    self.operation = operation
    super().__init__(f"{operation}: {message}")
