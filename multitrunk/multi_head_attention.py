"""Multi-head self-attention implementation.

This module contains the :class:`BertSelfAttention` class, which performs
the core computation of the transformer encoder layer.  It projects the
input tensor into query, key and value tensors, splits them across
multiple heads, computes scaled dot-product attention and merges the
heads back into a single representation.  The output projection is not
part of this block: it belongs to the residual-and-normalize sublayer
that follows it.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import torch
from torch import nn
import torch.nn.functional as F

from .config import BertConfig
from .errors import ShapeError
from .layers import bert_linear
from .utils import MASK_VALUE


def split_heads(x: torch.Tensor, num_heads: int) -> torch.Tensor:
  """Reshape a tensor for multi-head attention.

  Given a tensor of shape ``(batch_size, seq_len, hidden_size)`` this
  function splits the last dimension into ``(num_heads, head_size)`` and
  moves the head axis forward, producing a tensor of shape
  ``(batch_size, num_heads, seq_len, head_size)``.
  """
  hidden_size = x.size(-1)
  if hidden_size % num_heads != 0:
    raise ShapeError(
      "split_heads",
      f"last dimension divisible by {num_heads} heads",
      tuple(x.shape),
    )
  new_shape = x.size()[:-1] + (num_heads, hidden_size // num_heads)
  return x.view(*new_shape).permute(0, 2, 1, 3)


def merge_heads(x: torch.Tensor) -> torch.Tensor:
  """Inverse of :func:`split_heads`.

  ``(batch_size, num_heads, seq_len, head_size)`` becomes
  ``(batch_size, seq_len, num_heads * head_size)``.
  """
  x = x.permute(0, 2, 1, 3).contiguous()
  new_shape = x.size()[:-2] + (x.size(-2) * x.size(-1),)
  return x.view(*new_shape)


def check_logits_mask(
  attention_mask: Optional[torch.Tensor], seq_len: int, operation: str
) -> None:
  """Check that an additive mask broadcasts to ``(batch, heads, seq_len, seq_len)``."""
  if attention_mask is None:
    return
  if attention_mask.dim() != 4 or attention_mask.size(-1) != seq_len:
    raise ShapeError(
      operation,
      f"mask of shape (batch_size, 1, 1, {seq_len})",
      tuple(attention_mask.shape),
    )


def masked_softmax(
  attention_scores: torch.Tensor, attention_mask: Optional[torch.Tensor]
) -> torch.Tensor:
  """Softmax over the last axis of masked attention scores.

  The mask must already have been added to the scores.  A row in which
  every key position is masked has no meaningful distribution; such rows
  attend uniformly to all positions.
  """
  attention_probs = F.softmax(attention_scores, dim=-1)
  if attention_mask is None:
    return attention_probs

  # (batch_size, 1, 1, 1): True when the sequence has no active position.
  fully_masked = (attention_mask <= MASK_VALUE / 2).all(dim=-1, keepdim=True)
  if not bool(fully_masked.any()):
    return attention_probs
  uniform = torch.full_like(attention_probs, 1.0 / attention_probs.size(-1))
  return torch.where(fully_masked, uniform, attention_probs)


class BertSelfAttention(nn.Module):
  """Multi-head self-attention layer.

  Parameters
  ----------
  config:
      Instance of :class:`BertConfig` specifying model sizes.
  """

  def __init__(self, config: BertConfig) -> None:
    super().__init__()
    self.num_attention_heads = config.num_attention_heads
    self.attention_head_size = config.attention_head_size
    self.all_head_size = self.num_attention_heads * self.attention_head_size

    # Projection matrices for query, key and value.  Each maps from
    # hidden_size to hidden_size.  They are split into heads in the
    # forward pass.
    self.query = bert_linear(
      config.hidden_size, self.all_head_size, config.initializer_range
    )
    self.key = bert_linear(
      config.hidden_size, self.all_head_size, config.initializer_range
    )
    self.value = bert_linear(
      config.hidden_size, self.all_head_size, config.initializer_range
    )

    self.dropout = nn.Dropout(config.attention_probs_dropout_prob)

  def forward(
    self,
    hidden_states: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> Tuple[torch.Tensor, torch.Tensor]:
    """Compute self-attention over the input.

    Parameters
    ----------
    hidden_states:
        Tensor of shape ``(batch_size, seq_len, hidden_size)`` representing
        the sequence of hidden states to attend over.
    attention_mask:
        Optional tensor broadcastable to ``(batch_size, 1, 1, seq_len)``
        containing additive mask values.  Positions with large negative
        values will be ignored by the softmax.

    Returns
    -------
    Tuple[torch.Tensor, torch.Tensor]
        A tuple of ``(context_layer, attention_scores)`` where
        ``context_layer`` has shape ``(batch_size, seq_len, hidden_size)``
        and ``attention_scores`` has shape
        ``(batch_size, num_heads, seq_len, seq_len)`` and contains the
        scaled, masked scores before the softmax.
    """
    check_logits_mask(attention_mask, hidden_states.size(1), "BertSelfAttention")

    query_layer = split_heads(self.query(hidden_states), self.num_attention_heads)
    key_layer = split_heads(self.key(hidden_states), self.num_attention_heads)
    value_layer = split_heads(self.value(hidden_states), self.num_attention_heads)

    # (batch, heads, seq_len, head_size) x (batch, heads, head_size, seq_len)
    # -> (batch, heads, seq_len, seq_len)
    attention_scores = torch.matmul(query_layer, key_layer.transpose(-1, -2))
    attention_scores = attention_scores / math.sqrt(self.attention_head_size)

    if attention_mask is not None:
      attention_scores = attention_scores + attention_mask

    attention_probs = masked_softmax(attention_scores, attention_mask)

    # Drop out entire tokens to attend to, following the original
    # transformer paper.
    attention_probs = self.dropout(attention_probs)

    context_layer = merge_heads(torch.matmul(attention_probs, value_layer))
    return context_layer, attention_scores
