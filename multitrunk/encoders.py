"""Encoder stacks of the supported model families.

Every encoder stack holds an ordered sequence of encoder layers and
exposes the same contract:

* :meth:`Encoder.encode` accepts hidden states of shape ``(batch_size,
  seq_len, width)`` and an optional boolean/0-1 attention mask of shape
  ``(batch_size, seq_len)``, and returns the layer trace: the (projected)
  input as an :class:`EmbeddingOutput`, followed by one
  :class:`EncoderLayerOutput` per layer.  All hidden states in the trace
  have shape ``(batch_size, seq_len, hidden_size)``.
* :meth:`Encoder.n_layers` is the length of that trace.

The families differ internally.  ALBERT-style encoders project the
factorized embeddings to the hidden size and share layer parameters
across groups of layers.  SqueezeBERT-style encoders run their layers on
channels-first hidden states and transpose back before returning.
"""

from __future__ import annotations

from typing import List, Optional, Union

import torch
from torch import nn

from .config import AlbertConfig, BertConfig, SqueezeAlbertConfig, SqueezeBertConfig
from .errors import ShapeError
from .layer_output import EmbeddingOutput, EncoderLayerOutput, LayerOutput
from .layers import bert_linear
from .squeeze_bert import SqueezeBertLayer
from .transformer_encoder_layer import BertLayer
from .utils import create_extended_attention_mask


def _check_input(input: torch.Tensor, width: int, operation: str) -> None:
  if input.dim() != 3 or input.size(-1) != width:
    raise ShapeError(operation, f"(batch_size, seq_len, {width})", tuple(input.shape))


def _logits_mask(
  attention_mask: Optional[torch.Tensor], input: torch.Tensor, operation: str
) -> Optional[torch.Tensor]:
  if attention_mask is None:
    return None
  if tuple(attention_mask.shape) != tuple(input.shape[:2]):
    raise ShapeError(
      f"{operation} attention_mask",
      tuple(input.shape[:2]),
      tuple(attention_mask.shape),
    )
  return create_extended_attention_mask(attention_mask, dtype=input.dtype)


def _to_channels_last(layer_outputs: List[LayerOutput]) -> List[LayerOutput]:
  # (batch_size, hidden_size, seq_len) -> (batch_size, seq_len, hidden_size)
  return [
    output.with_hidden_state(output.hidden_state.permute(0, 2, 1))
    for output in layer_outputs
  ]


def _apply_group(
  group: nn.ModuleList,
  hidden_states: torch.Tensor,
  attention_mask: Optional[torch.Tensor],
) -> EncoderLayerOutput:
  layer_output = None
  for layer in group:
    layer_output = layer(hidden_states, attention_mask)
    hidden_states = layer_output.hidden_state
  return layer_output


class Encoder(nn.Module):
  """Common interface of the encoder stacks."""

  num_hidden_layers: int

  def encode(
    self, input: torch.Tensor, attention_mask: Optional[torch.Tensor] = None
  ) -> List[LayerOutput]:
    """Encode ``input`` and return the layer trace."""
    return self(input, attention_mask)

  def n_layers(self) -> int:
    """Length of the layer trace, including the embedding output."""
    return self.num_hidden_layers + 1


class BertEncoder(Encoder):
  """Stack of independent BERT encoder layers.

  Parameters
  ----------
  config:
      Model configuration specifying the number of layers and other
      hyper-parameters.
  """

  def __init__(self, config: BertConfig) -> None:
    super().__init__()
    self.hidden_size = config.hidden_size
    self.num_hidden_layers = config.num_hidden_layers
    self.layer = nn.ModuleList(
      [BertLayer(config) for _ in range(config.num_hidden_layers)]
    )

  def forward(
    self,
    input: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> List[LayerOutput]:
    """Apply the encoder stack to the embeddings.

    Parameters
    ----------
    input:
        Embeddings of shape ``(batch_size, seq_len, hidden_size)``.
    attention_mask:
        Optional mask of shape ``(batch_size, seq_len)``, ``True``/1 for
        pieces that can be attended to.

    Returns
    -------
    List[LayerOutput]
        The layer trace of length ``num_hidden_layers + 1``.
    """
    _check_input(input, self.hidden_size, "BertEncoder")
    logits_mask = _logits_mask(attention_mask, input, "BertEncoder")

    hidden_states = input
    all_layer_outputs: List[LayerOutput] = [EmbeddingOutput(hidden_states)]
    for layer in self.layer:
      layer_output = layer(hidden_states, logits_mask)
      hidden_states = layer_output.hidden_state
      all_layer_outputs.append(layer_output)

    return all_layer_outputs


class AlbertEncoder(Encoder):
  """ALBERT encoder.

  The embeddings are first projected from ``embedding_size`` to
  ``hidden_size``.  The projected embeddings are the first entry of the
  trace.  Layer ``i`` then applies the layers of group ``i //
  (num_hidden_layers / num_hidden_groups)``, so consecutive layers share
  parameters.
  """

  def __init__(self, config: AlbertConfig) -> None:
    super().__init__()
    bert_config = config.to_bert_config()
    self.embedding_size = config.embedding_size
    self.num_hidden_layers = config.num_hidden_layers
    self.layers_per_group = config.num_hidden_layers // config.num_hidden_groups

    self.embedding_projection = bert_linear(
      config.embedding_size, config.hidden_size, config.initializer_range
    )
    self.groups = nn.ModuleList(
      [
        nn.ModuleList([BertLayer(bert_config) for _ in range(config.inner_group_num)])
        for _ in range(config.num_hidden_groups)
      ]
    )

  def forward(
    self,
    input: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> List[LayerOutput]:
    _check_input(input, self.embedding_size, "AlbertEncoder")
    logits_mask = _logits_mask(attention_mask, input, "AlbertEncoder")

    hidden_states = self.embedding_projection(input)
    all_layer_outputs: List[LayerOutput] = [EmbeddingOutput(hidden_states)]
    for idx in range(self.num_hidden_layers):
      group = self.groups[idx // self.layers_per_group]
      layer_output = _apply_group(group, hidden_states, logits_mask)
      hidden_states = layer_output.hidden_state
      all_layer_outputs.append(layer_output)

    return all_layer_outputs


class SqueezeBertEncoder(Encoder):
  """SqueezeBERT encoder.

  Even though SqueezeBERT uses ``(batch_size, hidden_size, seq_len)``
  hidden states internally, the encoder accepts and returns the regular
  ``(batch_size, seq_len, hidden_size)`` format.
  """

  def __init__(self, config: SqueezeBertConfig) -> None:
    super().__init__()
    self.hidden_size = config.hidden_size
    self.num_hidden_layers = config.num_hidden_layers
    self.layer = nn.ModuleList(
      [SqueezeBertLayer(config) for _ in range(config.num_hidden_layers)]
    )

  def forward(
    self,
    input: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> List[LayerOutput]:
    _check_input(input, self.hidden_size, "SqueezeBertEncoder")
    logits_mask = _logits_mask(attention_mask, input, "SqueezeBertEncoder")

    hidden_states = input.permute(0, 2, 1)
    all_layer_outputs: List[LayerOutput] = [EmbeddingOutput(hidden_states)]
    for layer in self.layer:
      layer_output = layer(hidden_states, logits_mask)
      hidden_states = layer_output.hidden_state
      all_layer_outputs.append(layer_output)

    return _to_channels_last(all_layer_outputs)


class SqueezeAlbertEncoder(Encoder):
  """SqueezeALBERT encoder: ALBERT projection and layer sharing over
  SqueezeBERT layers."""

  def __init__(self, config: SqueezeAlbertConfig) -> None:
    super().__init__()
    squeeze_config = config.to_squeeze_bert_config()
    self.embedding_size = config.embedding_size
    self.num_hidden_layers = config.num_hidden_layers
    self.layers_per_group = config.num_hidden_layers // config.num_hidden_groups

    self.embedding_projection = bert_linear(
      config.embedding_size, config.hidden_size, config.initializer_range
    )
    self.groups = nn.ModuleList(
      [
        nn.ModuleList(
          [SqueezeBertLayer(squeeze_config) for _ in range(config.inner_group_num)]
        )
        for _ in range(config.num_hidden_groups)
      ]
    )

  def forward(
    self,
    input: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
  ) -> List[LayerOutput]:
    _check_input(input, self.embedding_size, "SqueezeAlbertEncoder")
    logits_mask = _logits_mask(attention_mask, input, "SqueezeAlbertEncoder")

    hidden_states = self.embedding_projection(input).permute(0, 2, 1)
    all_layer_outputs: List[LayerOutput] = [EmbeddingOutput(hidden_states)]
    for idx in range(self.num_hidden_layers):
      group = self.groups[idx // self.layers_per_group]
      layer_output = _apply_group(group, hidden_states, logits_mask)
      hidden_states = layer_output.hidden_state
      all_layer_outputs.append(layer_output)

    return _to_channels_last(all_layer_outputs)


EncoderVariant = Union[AlbertEncoder, BertEncoder, SqueezeAlbertEncoder, SqueezeBertEncoder]
