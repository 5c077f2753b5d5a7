"""Multi-task sequence labeling model over a transformer trunk.

This module assembles an embedding layer, an encoder stack and the
sequence labeling heads into a single model.  The embedding and encoder
variants are selected once, at construction, from the family of the
configuration and the requested position embeddings.  After that the
model only uses the shared contract of the variants.

Training can exclude parts of the model from backpropagation with
:class:`FreezeLayers`: a frozen stage runs under ``torch.no_grad()``.
Freezing changes which gradients are tracked, never the computed values.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

import torch
from torch import nn

from .config import (
  AlbertConfig,
  BertConfig,
  PositionEmbeddings,
  PretrainConfig,
  SqueezeAlbertConfig,
  SqueezeBertConfig,
  XlmRobertaConfig,
  pretrain_bert_config,
)
from .embeddings import (
  AlbertEmbeddings,
  BertEmbeddings,
  EmbeddingVariant,
  RobertaEmbeddings,
  SinusoidalEmbeddings,
)
from .encoders import (
  AlbertEncoder,
  BertEncoder,
  EncoderVariant,
  SqueezeAlbertEncoder,
  SqueezeBertEncoder,
)
from .errors import ComputationError, ConfigurationError, TrunkError
from .heads import SequenceClassifiers, SequenceClassifiersLoss, TopK
from .layer_output import LayerOutput
from .utils import no_grad_if

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreezeLayers:
  """Parts of the model that are excluded from backpropagation."""

  embeddings: bool = False
  encoder: bool = False
  classifiers: bool = False

  @classmethod
  def all(cls) -> "FreezeLayers":
    return cls(embeddings=True, encoder=True, classifiers=True)


def build_embeddings(
  config: PretrainConfig, position_embeddings: PositionEmbeddings
) -> EmbeddingVariant:
  """Construct the embedding layer for a model family.

  Raises
  ------
  ConfigurationError
      For XLM-RoBERTa with sinusoidal position embeddings, or for an
      unknown configuration type.
  """
  sinusoidal = position_embeddings.is_sinusoidal
  normalize = position_embeddings.normalize

  # XlmRobertaConfig is a BertConfig, so it must be matched first.
  if isinstance(config, XlmRobertaConfig):
    if sinusoidal:
      raise ConfigurationError(
        "XLM-RoBERTa models cannot be used with sinusoidal position embeddings."
      )
    return RobertaEmbeddings(config)
  if isinstance(config, BertConfig):
    return SinusoidalEmbeddings(config, normalize) if sinusoidal else BertEmbeddings(config)
  if isinstance(config, AlbertConfig):
    return SinusoidalEmbeddings(config, normalize) if sinusoidal else AlbertEmbeddings(config)
  if isinstance(config, SqueezeAlbertConfig):
    if sinusoidal:
      return SinusoidalEmbeddings(config, normalize)
    return AlbertEmbeddings(config.to_albert_config())
  if isinstance(config, SqueezeBertConfig):
    bert_config = config.to_bert_config()
    if sinusoidal:
      return SinusoidalEmbeddings(bert_config, normalize)
    return BertEmbeddings(bert_config)
  raise ConfigurationError(f"Unknown model configuration: {type(config).__name__}")


def build_encoder(config: PretrainConfig) -> EncoderVariant:
  """Construct the encoder stack for a model family."""
  # Also covers XlmRobertaConfig.
  if isinstance(config, BertConfig):
    return BertEncoder(config)
  if isinstance(config, AlbertConfig):
    return AlbertEncoder(config)
  if isinstance(config, SqueezeAlbertConfig):
    return SqueezeAlbertEncoder(config)
  if isinstance(config, SqueezeBertConfig):
    return SqueezeBertEncoder(config)
  raise ConfigurationError(f"Unknown model configuration: {type(config).__name__}")


class BertModel(nn.Module):
  """Multi-task classifier using a BERT-style trunk with scalar weighting.

  Parameters
  ----------
  config:
      Configuration of one of the supported families.
  tasks:
      Mapping from task name to number of labels.  A model without tasks
      can only be used to :meth:`encode` inputs.
  layers_dropout:
      Dropout probability applied to every hidden state of the layer trace
      before it reaches the classifiers.
  position_embeddings:
      Learned (``PositionEmbeddings.model()``, the default) or sinusoidal
      position embeddings.
  classifier_layer_dropout:
      Probability with which the classifiers drop a layer from their
      scalar weighting during training.
  check_finite:
      Raise :class:`ComputationError` when a hidden state contains
      non-finite values.
  """

  def __init__(
    self,
    config: PretrainConfig,
    tasks: Optional[Mapping[str, int]] = None,
    layers_dropout: float = 0.1,
    position_embeddings: Optional[PositionEmbeddings] = None,
    classifier_layer_dropout: float = 0.0,
    check_finite: bool = False,
  ) -> None:
    super().__init__()
    if position_embeddings is None:
      position_embeddings = PositionEmbeddings.model()

    self.config = config
    self.check_finite = check_finite
    self.embeddings = build_embeddings(config, position_embeddings)
    self.encoder = build_encoder(config)
    self.seq_classifiers = SequenceClassifiers(
      pretrain_bert_config(config),
      self.encoder.n_layers(),
      tasks or {},
      classifier_layer_dropout,
    )
    self.layers_dropout = nn.Dropout(layers_dropout)

    logger.info(
      f"Constructed {type(self.embeddings).__name__} and "
      f"{type(self.encoder).__name__} with {self.encoder.n_layers()} layer outputs"
    )

  def n_layers(self) -> int:
    """Length of the layer trace, including the embedding output."""
    return self.encoder.n_layers()

  def _run_stage(self, name: str, stage: Callable, *args) -> object:
    try:
      return stage(*args)
    except TrunkError:
      raise
    except RuntimeError as err:
      raise ComputationError(name, str(err)) from err

  def _check_finite(self, layer_outputs: List[LayerOutput]) -> None:
    for idx, layer_output in enumerate(layer_outputs):
      if not bool(torch.isfinite(layer_output.hidden_state).all()):
        raise ComputationError(f"layer {idx}", "hidden state contains non-finite values")

  def encode(
    self,
    inputs: torch.Tensor,
    attention_mask: Optional[torch.Tensor],
    train: bool = False,
    freeze_layers: FreezeLayers = FreezeLayers(),
    token_type_ids: Optional[torch.Tensor] = None,
  ) -> List[LayerOutput]:
    """Encode a batch of inputs.

    Parameters
    ----------
    inputs:
        Piece ids of shape ``(batch_size, seq_len)``.
    attention_mask:
        Optional mask of shape ``(batch_size, seq_len)``, ``True``/1 for
        non-padding pieces.
    train:
        Whether this forward pass will be used for backpropagation.  This
        puts the model in training mode, enabling dropout.
    freeze_layers:
        Stages to exclude from backpropagation.  ``classifiers`` freezes
        the layer dropout that feeds the classifiers.
    token_type_ids:
        Optional segment ids of shape ``(batch_size, seq_len)``.

    Returns
    -------
    List[LayerOutput]
        The layer trace of length :meth:`n_layers`.
    """
    start = time.perf_counter()
    self.train(train)

    with no_grad_if(freeze_layers.embeddings):
      embeds = self._run_stage("embeddings", self.embeddings, inputs, token_type_ids)

    with no_grad_if(freeze_layers.encoder):
      encoded = self._run_stage("encoder", self.encoder, embeds, attention_mask)

    with no_grad_if(freeze_layers.classifiers):
      encoded = [
        layer.with_hidden_state(self.layers_dropout(layer.hidden_state))
        for layer in encoded
      ]

    if self.check_finite:
      self._check_finite(encoded)

    batch_size, seq_len = inputs.shape
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.debug(
      f"Encoded {batch_size} inputs with length {seq_len} in {elapsed_ms:.1f}ms"
    )
    return encoded

  def logits(
    self,
    inputs: torch.Tensor,
    attention_mask: Optional[torch.Tensor],
    train: bool = False,
    freeze_layers: FreezeLayers = FreezeLayers(),
    token_type_ids: Optional[torch.Tensor] = None,
  ) -> Dict[str, torch.Tensor]:
    """Compute the logits of every task for a batch of inputs."""
    encoding = self.encode(inputs, attention_mask, train, freeze_layers, token_type_ids)
    return self.logits_from_encoding(encoding, train)

  def logits_from_encoding(
    self, layer_outputs: List[LayerOutput], train: bool = False
  ) -> Dict[str, torch.Tensor]:
    """Compute the logits of every task from an existing layer trace."""
    self.seq_classifiers.train(train)
    return self.seq_classifiers(layer_outputs)

  def loss(
    self,
    inputs: torch.Tensor,
    attention_mask: torch.Tensor,
    token_mask: torch.Tensor,
    targets: Mapping[str, torch.Tensor],
    label_smoothing: Optional[float] = None,
    train: bool = False,
    freeze_layers: FreezeLayers = FreezeLayers(),
    include_continuations: bool = False,
    token_type_ids: Optional[torch.Tensor] = None,
  ) -> SequenceClassifiersLoss:
    """Compute the loss given a batch of inputs and target labels.

    Parameters
    ----------
    attention_mask:
        Specifies which sequence elements should be masked when applying
        the encoder.
    token_mask:
        Specifies which sequence elements should be used when computing
        the loss.  Typically, this is used to exclude padding and
        continuation word pieces.
    targets:
        The labels to be predicted, per task name.
    label_smoothing:
        Apply label smoothing, redistributing the given probability to
        non-target labels.
    train:
        Indicates whether this forward pass will be used for
        backpropagation.
    freeze_layers:
        Stages to exclude from backpropagation.
    include_continuations:
        Also compute the loss for continuation pieces.
    """
    encoding = self.encode(inputs, attention_mask, train, freeze_layers, token_type_ids)

    with no_grad_if(freeze_layers.classifiers):
      return self.seq_classifiers.loss(
        encoding,
        attention_mask,
        token_mask,
        targets,
        label_smoothing=label_smoothing,
        include_continuations=include_continuations,
      )

  def top_k(
    self,
    inputs: torch.Tensor,
    attention_mask: Optional[torch.Tensor],
    k: int = 3,
    token_type_ids: Optional[torch.Tensor] = None,
  ) -> Dict[str, TopK]:
    """Compute the top-k labels of every task for the input."""
    with torch.no_grad():
      encoding = self.encode(
        inputs, attention_mask, False, FreezeLayers.all(), token_type_ids
      )
      return self.seq_classifiers.top_k(encoding, k)
