"""Per-layer outputs of an encoder stack.

An encoder stack returns a *layer trace*: the embedding output followed
by the output of every encoder layer, in ascending layer order.  Each
entry is one of two tagged values, :class:`EmbeddingOutput` or
:class:`EncoderLayerOutput`.  Entries are immutable; transformations of
the trace (such as layer dropout) produce new entries with
:meth:`with_hidden_state`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Union

import torch


@dataclass(frozen=True)
class EmbeddingOutput:
  """Output of the embedding layer, shape ``(batch_size, seq_len, hidden_size)``."""

  hidden_state: torch.Tensor

  @property
  def attention(self) -> Optional[torch.Tensor]:
    return None

  def with_hidden_state(self, hidden_state: torch.Tensor) -> "EmbeddingOutput":
    return replace(self, hidden_state=hidden_state)


@dataclass(frozen=True)
class EncoderLayerOutput:
  """Output of one encoder layer.

  Attributes
  ----------
  hidden_state:
      Tensor of shape ``(batch_size, seq_len, hidden_size)``.
  attention:
      Pre-softmax attention scores of shape
      ``(batch_size, num_heads, seq_len, seq_len)``, kept for inspection.
  """

  hidden_state: torch.Tensor
  attention: torch.Tensor

  def with_hidden_state(self, hidden_state: torch.Tensor) -> "EncoderLayerOutput":
    return replace(self, hidden_state=hidden_state)


LayerOutput = Union[EmbeddingOutput, EncoderLayerOutput]


def stack_hidden_states(layer_outputs: List[LayerOutput]) -> torch.Tensor:
  """Stack the trace into ``(batch_size, seq_len, n_layers, hidden_size)``."""
  return torch.stack([output.hidden_state for output in layer_outputs], dim=2)
