"""SqueezeBERT encoder layer.

SqueezeBERT replaces the position-wise linear projections of BERT with
grouped 1x1 convolutions.  To make the convolutions cheap, its layers
operate on channels-first hidden states of shape ``(batch_size,
hidden_size, seq_len)``.  The encoder stacks convert from and to the
canonical ``(batch_size, seq_len, hidden_size)`` layout at their boundary,
so this layout never leaks out of the stack.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import torch
from torch import nn

from .config import SqueezeBertConfig
from .layer_output import EncoderLayerOutput
from .layers import bert_conv1d, get_activation
from .multi_head_attention import check_logits_mask, masked_softmax


class ChannelsFirstLayerNorm(nn.LayerNorm):
  """Layer normalization over the channel axis of a ``(batch, channels, seq)`` tensor."""

  def forward(self, x: torch.Tensor) -> torch.Tensor:
    return super().forward(x.permute(0, 2, 1)).permute(0, 2, 1)


class SqueezeBertSelfAttention(nn.Module):
  """Multi-head self-attention with grouped convolution projections."""

  def __init__(self, config: SqueezeBertConfig) -> None:
    super().__init__()
    self.num_attention_heads = config.num_attention_heads
    self.attention_head_size = config.attention_head_size
    self.all_head_size = self.num_attention_heads * self.attention_head_size

    self.query = bert_conv1d(
      config.hidden_size, self.all_head_size, config.q_groups, config.initializer_range
    )
    self.key = bert_conv1d(
      config.hidden_size, self.all_head_size, config.k_groups, config.initializer_range
    )
    self.value = bert_conv1d(
      config.hidden_size, self.all_head_size, config.v_groups, config.initializer_range
    )

    self.dropout = nn.Dropout(config.attention_probs_dropout_prob)

  def _split_heads(self, x: torch.Tensor) -> torch.Tensor:
    # (batch, channels, seq) -> (batch, heads, head_size, seq)
    return x.view(x.size(0), self.num_attention_heads, self.attention_head_size, x.size(-1))

  def forward(
    self,
    hidden_states: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> Tuple[torch.Tensor, torch.Tensor]:
    """Compute self-attention over channels-first hidden states.

    Returns the context of shape ``(batch_size, hidden_size, seq_len)``
    and the pre-softmax attention scores of shape
    ``(batch_size, num_heads, seq_len, seq_len)``.
    """
    check_logits_mask(attention_mask, hidden_states.size(-1), "SqueezeBertSelfAttention")

    query_layer = self._split_heads(self.query(hidden_states)).permute(0, 1, 3, 2)
    # The key is already laid out as (batch, heads, head_size, seq).
    key_layer = self._split_heads(self.key(hidden_states))
    value_layer = self._split_heads(self.value(hidden_states)).permute(0, 1, 3, 2)

    attention_scores = torch.matmul(query_layer, key_layer)
    attention_scores = attention_scores / math.sqrt(self.attention_head_size)

    if attention_mask is not None:
      attention_scores = attention_scores + attention_mask

    attention_probs = self.dropout(masked_softmax(attention_scores, attention_mask))

    # (batch, heads, seq, head_size) -> (batch, channels, seq)
    context_layer = torch.matmul(attention_probs, value_layer)
    context_layer = context_layer.permute(0, 1, 3, 2).contiguous()
    context_layer = context_layer.view(
      context_layer.size(0), self.all_head_size, context_layer.size(-1)
    )
    return context_layer, attention_scores


class ConvResidualOutput(nn.Module):
  """Channels-first residual-and-normalize sublayer.

  Computes ``LayerNorm(Dropout(Conv1d(hidden_states)) + input_tensor)``
  with a grouped 1x1 convolution in place of the linear projection.
  """

  def __init__(self, config: SqueezeBertConfig, in_channels: int, groups: int) -> None:
    super().__init__()
    self.conv1d = bert_conv1d(
      in_channels, config.hidden_size, groups, config.initializer_range
    )
    self.dropout = nn.Dropout(config.hidden_dropout_prob)
    self.layer_norm = ChannelsFirstLayerNorm(config.hidden_size, eps=config.layer_norm_eps)

  def forward(self, hidden_states: torch.Tensor, input_tensor: torch.Tensor) -> torch.Tensor:
    hidden_states = self.dropout(self.conv1d(hidden_states))
    return self.layer_norm(hidden_states + input_tensor)


class ConvIntermediate(nn.Module):
  """Channels-first feed-forward expansion."""

  def __init__(self, config: SqueezeBertConfig) -> None:
    super().__init__()
    self.conv1d = bert_conv1d(
      config.hidden_size,
      config.intermediate_size,
      config.intermediate_groups,
      config.initializer_range,
    )
    self.act = get_activation(config.hidden_act)

  def forward(self, hidden_states: torch.Tensor) -> torch.Tensor:
    return self.act(self.conv1d(hidden_states))


class SqueezeBertLayer(nn.Module):
  """SqueezeBERT encoder layer over ``(batch_size, hidden_size, seq_len)`` states."""

  def __init__(self, config: SqueezeBertConfig) -> None:
    super().__init__()
    self.attention = SqueezeBertSelfAttention(config)
    self.post_attention = ConvResidualOutput(
      config, config.hidden_size, config.post_attention_groups
    )
    self.intermediate = ConvIntermediate(config)
    self.output = ConvResidualOutput(
      config, config.intermediate_size, config.output_groups
    )

  def forward(
    self,
    hidden_states: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> EncoderLayerOutput:
    attention_output, attention_scores = self.attention(hidden_states, attention_mask)
    post_attention_output = self.post_attention(attention_output, hidden_states)
    intermediate_output = self.intermediate(post_attention_output)
    layer_output = self.output(intermediate_output, post_attention_output)
    return EncoderLayerOutput(hidden_state=layer_output, attention=attention_scores)
