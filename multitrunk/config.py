"""Configuration dataclasses for the supported encoder families.

This module defines one immutable configuration record per architecture
family.  The records hold all hyper-parameters needed to construct the
embeddings and the encoder stack of a model, and they validate their own
invariants on construction so that an invalid model is rejected before
any parameter is allocated.

Families that share a structural implementation can be converted into
each other's configuration (for instance, an ALBERT encoder is built from
BERT layers, so :meth:`AlbertConfig.to_bert_config` derives the generic
BERT configuration it needs).  These derivations are plain field copies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .errors import ConfigurationError, ShapeError

ACTIVATIONS = ("gelu", "gelu_new", "relu")


def _check_heads(config) -> None:
  if config.num_attention_heads <= 0:
    raise ConfigurationError(
      f"num_attention_heads must be positive, got {config.num_attention_heads}."
    )
  if config.hidden_size % config.num_attention_heads != 0:
    raise ShapeError(
      "attention_head_size",
      f"hidden_size divisible by num_attention_heads ({config.num_attention_heads})",
      config.hidden_size,
    )


def _check_activation(config) -> None:
  if config.hidden_act not in ACTIVATIONS:
    raise ConfigurationError(
      f"Unsupported hidden_act '{config.hidden_act}', expected one of {ACTIVATIONS}."
    )


def _check_layer_sharing(config) -> None:
  if config.num_hidden_groups <= 0 or config.inner_group_num <= 0:
    raise ConfigurationError(
      "num_hidden_groups and inner_group_num must be positive, got "
      f"{config.num_hidden_groups} and {config.inner_group_num}."
    )
  if config.num_hidden_layers % config.num_hidden_groups != 0:
    raise ConfigurationError(
      f"num_hidden_layers ({config.num_hidden_layers}) must be divisible by "
      f"num_hidden_groups ({config.num_hidden_groups})."
    )


def _check_conv_groups(config) -> None:
  # A grouped convolution needs its group count to divide both the input
  # and the output channel count.
  convolutions = (
    ("q_groups", config.q_groups, config.hidden_size, config.hidden_size),
    ("k_groups", config.k_groups, config.hidden_size, config.hidden_size),
    ("v_groups", config.v_groups, config.hidden_size, config.hidden_size),
    (
      "post_attention_groups",
      config.post_attention_groups,
      config.hidden_size,
      config.hidden_size,
    ),
    (
      "intermediate_groups",
      config.intermediate_groups,
      config.hidden_size,
      config.intermediate_size,
    ),
    (
      "output_groups",
      config.output_groups,
      config.intermediate_size,
      config.hidden_size,
    ),
  )
  for name, groups, in_channels, out_channels in convolutions:
    if groups <= 0 or in_channels % groups != 0 or out_channels % groups != 0:
      raise ConfigurationError(
        f"{name} ({groups}) must divide both {in_channels} and {out_channels}."
      )


@dataclass(frozen=True)
class BertConfig:
  """Hyper-parameters of a BERT model.

  Attributes
  ----------
  vocab_size:
      Size of the word piece vocabulary.
  hidden_size:
      Dimensionality of hidden representations within the model.
  num_attention_heads:
      Number of attention heads used in each encoder layer.  The
      ``hidden_size`` must be divisible by this value.
  num_hidden_layers:
      Number of stacked encoder layers.
  intermediate_size:
      Dimensionality of the feed-forward expansion within each layer.
  hidden_act:
      Activation of the feed-forward expansion, one of ``gelu``,
      ``gelu_new`` (tanh approximation) or ``relu``.
  max_position_embeddings:
      Maximum sequence length supported by learned position embeddings.
  type_vocab_size:
      Number of distinct segment (token type) ids.
  hidden_dropout_prob:
      Dropout probability applied after embeddings and in every
      residual-and-normalize sublayer.
  attention_probs_dropout_prob:
      Dropout probability applied to attention probabilities.
  initializer_range:
      Standard deviation of the normal distribution used to initialize
      weights.
  layer_norm_eps:
      Epsilon added to the variance in layer normalization.
  pad_token_id:
      Id of the padding piece.
  """

  vocab_size: int = 30522
  hidden_size: int = 768
  num_attention_heads: int = 12
  num_hidden_layers: int = 12
  intermediate_size: int = 3072
  hidden_act: str = "gelu"
  max_position_embeddings: int = 512
  type_vocab_size: int = 2
  hidden_dropout_prob: float = 0.1
  attention_probs_dropout_prob: float = 0.1
  initializer_range: float = 0.02
  layer_norm_eps: float = 1e-12
  pad_token_id: int = 0

  def __post_init__(self) -> None:
    _check_heads(self)
    _check_activation(self)

  @property
  def attention_head_size(self) -> int:
    return self.hidden_size // self.num_attention_heads


@dataclass(frozen=True)
class XlmRobertaConfig(BertConfig):
  """BERT configuration with the defaults of XLM-RoBERTa.

  XLM-RoBERTa uses the BERT encoder unchanged, but its position ids are
  offset past the padding id, hence the larger position table.
  """

  vocab_size: int = 250002
  max_position_embeddings: int = 514
  type_vocab_size: int = 1
  layer_norm_eps: float = 1e-5
  pad_token_id: int = 1


@dataclass(frozen=True)
class AlbertConfig:
  """Hyper-parameters of an ALBERT model.

  ALBERT factorizes the embeddings (``embedding_size`` is usually much
  smaller than ``hidden_size``) and shares layer parameters: the
  ``num_hidden_layers`` layers are served by ``num_hidden_groups`` groups
  of ``inner_group_num`` layers each.  The remaining fields have the
  same meaning as in :class:`BertConfig`.
  """

  vocab_size: int = 30000
  embedding_size: int = 128
  hidden_size: int = 768
  num_attention_heads: int = 12
  num_hidden_layers: int = 12
  num_hidden_groups: int = 1
  inner_group_num: int = 1
  intermediate_size: int = 3072
  hidden_act: str = "gelu_new"
  max_position_embeddings: int = 512
  type_vocab_size: int = 2
  hidden_dropout_prob: float = 0.0
  attention_probs_dropout_prob: float = 0.0
  initializer_range: float = 0.02
  layer_norm_eps: float = 1e-12
  pad_token_id: int = 0

  def __post_init__(self) -> None:
    _check_heads(self)
    _check_activation(self)
    _check_layer_sharing(self)

  @property
  def attention_head_size(self) -> int:
    return self.hidden_size // self.num_attention_heads

  def to_bert_config(self) -> BertConfig:
    """The BERT configuration of the layers shared by this model."""
    return BertConfig(
      vocab_size=self.vocab_size,
      hidden_size=self.hidden_size,
      num_attention_heads=self.num_attention_heads,
      num_hidden_layers=self.num_hidden_layers,
      intermediate_size=self.intermediate_size,
      hidden_act=self.hidden_act,
      max_position_embeddings=self.max_position_embeddings,
      type_vocab_size=self.type_vocab_size,
      hidden_dropout_prob=self.hidden_dropout_prob,
      attention_probs_dropout_prob=self.attention_probs_dropout_prob,
      initializer_range=self.initializer_range,
      layer_norm_eps=self.layer_norm_eps,
      pad_token_id=self.pad_token_id,
    )


@dataclass(frozen=True)
class SqueezeBertConfig:
  """Hyper-parameters of a SqueezeBERT model.

  SqueezeBERT replaces the position-wise linear projections of BERT by
  grouped 1x1 convolutions.  The ``*_groups`` fields give the number of
  groups of each convolution.  The embeddings are BERT embeddings, so
  ``embedding_size`` must equal ``hidden_size``.
  """

  vocab_size: int = 30528
  embedding_size: int = 768
  hidden_size: int = 768
  num_attention_heads: int = 12
  num_hidden_layers: int = 12
  intermediate_size: int = 3072
  hidden_act: str = "gelu"
  max_position_embeddings: int = 512
  type_vocab_size: int = 2
  hidden_dropout_prob: float = 0.1
  attention_probs_dropout_prob: float = 0.1
  initializer_range: float = 0.02
  layer_norm_eps: float = 1e-12
  pad_token_id: int = 0
  q_groups: int = 4
  k_groups: int = 4
  v_groups: int = 4
  post_attention_groups: int = 1
  intermediate_groups: int = 4
  output_groups: int = 4

  def __post_init__(self) -> None:
    _check_heads(self)
    _check_activation(self)
    if self.embedding_size != self.hidden_size:
      raise ConfigurationError(
        f"SqueezeBERT requires embedding_size ({self.embedding_size}) to equal "
        f"hidden_size ({self.hidden_size})."
      )
    _check_conv_groups(self)

  @property
  def attention_head_size(self) -> int:
    return self.hidden_size // self.num_attention_heads

  def to_bert_config(self) -> BertConfig:
    """The BERT configuration used to construct the embeddings."""
    return BertConfig(
      vocab_size=self.vocab_size,
      hidden_size=self.hidden_size,
      num_attention_heads=self.num_attention_heads,
      num_hidden_layers=self.num_hidden_layers,
      intermediate_size=self.intermediate_size,
      hidden_act=self.hidden_act,
      max_position_embeddings=self.max_position_embeddings,
      type_vocab_size=self.type_vocab_size,
      hidden_dropout_prob=self.hidden_dropout_prob,
      attention_probs_dropout_prob=self.attention_probs_dropout_prob,
      initializer_range=self.initializer_range,
      layer_norm_eps=self.layer_norm_eps,
      pad_token_id=self.pad_token_id,
    )


@dataclass(frozen=True)
class SqueezeAlbertConfig:
  """Hyper-parameters of a SqueezeALBERT model.

  SqueezeALBERT combines ALBERT's factorized embeddings and layer sharing
  with SqueezeBERT layers.
  """

  vocab_size: int = 30000
  embedding_size: int = 128
  hidden_size: int = 768
  num_attention_heads: int = 12
  num_hidden_layers: int = 12
  num_hidden_groups: int = 1
  inner_group_num: int = 1
  intermediate_size: int = 3072
  hidden_act: str = "gelu"
  max_position_embeddings: int = 512
  type_vocab_size: int = 2
  hidden_dropout_prob: float = 0.1
  attention_probs_dropout_prob: float = 0.1
  initializer_range: float = 0.02
  layer_norm_eps: float = 1e-12
  pad_token_id: int = 0
  q_groups: int = 4
  k_groups: int = 4
  v_groups: int = 4
  post_attention_groups: int = 1
  intermediate_groups: int = 4
  output_groups: int = 4

  def __post_init__(self) -> None:
    _check_heads(self)
    _check_activation(self)
    _check_layer_sharing(self)
    _check_conv_groups(self)

  @property
  def attention_head_size(self) -> int:
    return self.hidden_size // self.num_attention_heads

  def to_albert_config(self) -> AlbertConfig:
    """The ALBERT configuration used to construct the embeddings."""
    return AlbertConfig(
      vocab_size=self.vocab_size,
      embedding_size=self.embedding_size,
      hidden_size=self.hidden_size,
      num_attention_heads=self.num_attention_heads,
      num_hidden_layers=self.num_hidden_layers,
      num_hidden_groups=self.num_hidden_groups,
      inner_group_num=self.inner_group_num,
      intermediate_size=self.intermediate_size,
      hidden_act=self.hidden_act,
      max_position_embeddings=self.max_position_embeddings,
      type_vocab_size=self.type_vocab_size,
      hidden_dropout_prob=self.hidden_dropout_prob,
      attention_probs_dropout_prob=self.attention_probs_dropout_prob,
      initializer_range=self.initializer_range,
      layer_norm_eps=self.layer_norm_eps,
      pad_token_id=self.pad_token_id,
    )

  def to_squeeze_bert_config(self) -> SqueezeBertConfig:
    """The SqueezeBERT configuration of the shared layers."""
    return SqueezeBertConfig(
      vocab_size=self.vocab_size,
      # The layers operate on projected embeddings.
      embedding_size=self.hidden_size,
      hidden_size=self.hidden_size,
      num_attention_heads=self.num_attention_heads,
      num_hidden_layers=self.num_hidden_layers,
      intermediate_size=self.intermediate_size,
      hidden_act=self.hidden_act,
      max_position_embeddings=self.max_position_embeddings,
      type_vocab_size=self.type_vocab_size,
      hidden_dropout_prob=self.hidden_dropout_prob,
      attention_probs_dropout_prob=self.attention_probs_dropout_prob,
      initializer_range=self.initializer_range,
      layer_norm_eps=self.layer_norm_eps,
      pad_token_id=self.pad_token_id,
      q_groups=self.q_groups,
      k_groups=self.k_groups,
      v_groups=self.v_groups,
      post_attention_groups=self.post_attention_groups,
      intermediate_groups=self.intermediate_groups,
      output_groups=self.output_groups,
    )

  def to_bert_config(self) -> BertConfig:
    return self.to_albert_config().to_bert_config()


PretrainConfig = Union[
  AlbertConfig, BertConfig, SqueezeAlbertConfig, SqueezeBertConfig, XlmRobertaConfig
]


def pretrain_bert_config(config: PretrainConfig) -> BertConfig:
  """Return the generic BERT view of a configuration of any family."""
  if isinstance(config, BertConfig):
    return config
  if isinstance(config, (AlbertConfig, SqueezeAlbertConfig, SqueezeBertConfig)):
    return config.to_bert_config()
  raise ConfigurationError(f"Unknown model configuration: {type(config).__name__}")


@dataclass(frozen=True)
class PositionEmbeddings:
  """Choice of position embeddings.

  ``kind`` is ``"model"`` for the position embeddings learned by the
  model family, or ``"sinusoidal"`` for fixed sinusoidal embeddings.
  With sinusoidal embeddings, ``normalize`` rescales each position
  vector to unit L2 norm.
  """

  kind: str = "model"
  normalize: bool = True

  def __post_init__(self) -> None:
    if self.kind not in ("model", "sinusoidal"):
      raise ConfigurationError(
        f"Unknown position embeddings '{self.kind}', expected 'model' or 'sinusoidal'."
      )

  @classmethod
  def model(cls) -> "PositionEmbeddings":
    return cls(kind="model")

  @classmethod
  def sinusoidal(cls, normalize: bool = True) -> "PositionEmbeddings":
    return cls(kind="sinusoidal", normalize=normalize)

  @property
  def is_sinusoidal(self) -> bool:
    return self.kind == "sinusoidal"
