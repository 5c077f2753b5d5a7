"""Transformer encoder layer used by the BERT-style encoders.

A :class:`BertLayer` is composed of multi-head self-attention followed by
a position-wise feed-forward network.  Both sublayers merge their result
back into the residual stream with the same residual-and-normalize
component, :class:`BertResidualOutput`.  The order of operations is
fixed: attend, normalize, expand, normalize.
"""

from __future__ import annotations

from typing import Optional, Tuple

import torch
from torch import nn

from .config import BertConfig
from .layer_output import EncoderLayerOutput
from .layers import bert_layer_norm, bert_linear, get_activation
from .multi_head_attention import BertSelfAttention


class BertResidualOutput(nn.Module):
  """Project, drop out, add the residual and normalize.

  Computes ``LayerNorm(Dropout(Linear(hidden_states)) + input_tensor)``.
  The same component merges the attention context (``in_features ==
  hidden_size``) and the feed-forward expansion (``in_features ==
  intermediate_size``) back into the residual stream.
  """

  def __init__(self, config: BertConfig, in_features: int) -> None:
    super().__init__()
    self.dense = bert_linear(in_features, config.hidden_size, config.initializer_range)
    self.dropout = nn.Dropout(config.hidden_dropout_prob)
    self.layer_norm = bert_layer_norm(config.hidden_size, config.layer_norm_eps)

  def forward(self, hidden_states: torch.Tensor, input_tensor: torch.Tensor) -> torch.Tensor:
    hidden_states = self.dropout(self.dense(hidden_states))
    return self.layer_norm(hidden_states + input_tensor)


class BertIntermediate(nn.Module):
  """Feed-forward expansion from ``hidden_size`` to ``intermediate_size``."""

  def __init__(self, config: BertConfig) -> None:
    super().__init__()
    self.dense = bert_linear(
      config.hidden_size, config.intermediate_size, config.initializer_range
    )
    self.intermediate_act_fn = get_activation(config.hidden_act)

  def forward(self, hidden_states: torch.Tensor) -> torch.Tensor:
    return self.intermediate_act_fn(self.dense(hidden_states))


class BertAttention(nn.Module):
  """Self-attention followed by its residual-and-normalize sublayer."""

  def __init__(self, config: BertConfig) -> None:
    super().__init__()
    self.self = BertSelfAttention(config)
    self.output = BertResidualOutput(config, config.hidden_size)

  def forward(
    self,
    hidden_states: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> Tuple[torch.Tensor, torch.Tensor]:
    context_layer, attention_scores = self.self(hidden_states, attention_mask)
    return self.output(context_layer, hidden_states), attention_scores


class BertLayer(nn.Module):
  """Single transformer encoder layer.

  Parameters
  ----------
  config:
      Configuration containing model hyper-parameters.
  """

  def __init__(self, config: BertConfig) -> None:
    super().__init__()
    self.attention = BertAttention(config)
    self.intermediate = BertIntermediate(config)
    self.output = BertResidualOutput(config, config.intermediate_size)

  def forward(
    self,
    hidden_states: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> EncoderLayerOutput:
    """Apply the transformer layer to the hidden states.

    Parameters
    ----------
    hidden_states:
        Tensor of shape ``(batch_size, seq_len, hidden_size)`` containing
        the input activations.
    attention_mask:
        Optional tensor broadcastable to ``(batch_size, 1, 1, seq_len)``
        containing additive mask values.

    Returns
    -------
    EncoderLayerOutput
        The output of the layer with shape ``(batch_size, seq_len,
        hidden_size)`` together with the pre-softmax attention scores of
        the self-attention module.
    """
    post_attention_output, attention_scores = self.attention(
      hidden_states, attention_mask
    )
    intermediate_output = self.intermediate(post_attention_output)
    layer_output = self.output(intermediate_output, post_attention_output)
    return EncoderLayerOutput(hidden_state=layer_output, attention=attention_scores)
