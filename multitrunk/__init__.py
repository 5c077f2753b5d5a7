"""Top-level package of the multi-task transformer trunk.

This module exposes the core classes used throughout the project.
Importing from :mod:`multitrunk` makes it easy to access the
configurations, the model and the building blocks without referencing
deeply nested modules.
"""

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
from .errors import ComputationError, ConfigurationError, ShapeError, TrunkError
from .layer_output import EmbeddingOutput, EncoderLayerOutput, LayerOutput
from .embeddings import (
  AlbertEmbeddings,
  BertEmbeddings,
  RobertaEmbeddings,
  SinusoidalEmbeddings,
)
from .multi_head_attention import BertSelfAttention, merge_heads, split_heads
from .transformer_encoder_layer import BertIntermediate, BertLayer, BertResidualOutput
from .squeeze_bert import SqueezeBertLayer
from .encoders import AlbertEncoder, BertEncoder, SqueezeAlbertEncoder, SqueezeBertEncoder
from .heads import SequenceClassifiers, SequenceClassifiersLoss, TopK
from .bert_model import BertModel, FreezeLayers, build_embeddings, build_encoder
from .utils import convert_hf_state_dict, create_extended_attention_mask

__all__ = [
    "AlbertConfig",
    "BertConfig",
    "PositionEmbeddings",
    "PretrainConfig",
    "SqueezeAlbertConfig",
    "SqueezeBertConfig",
    "XlmRobertaConfig",
    "pretrain_bert_config",
    "ComputationError",
    "ConfigurationError",
    "ShapeError",
    "TrunkError",
    "EmbeddingOutput",
    "EncoderLayerOutput",
    "LayerOutput",
    "AlbertEmbeddings",
    "BertEmbeddings",
    "RobertaEmbeddings",
    "SinusoidalEmbeddings",
    "BertSelfAttention",
    "merge_heads",
    "split_heads",
    "BertIntermediate",
    "BertLayer",
    "BertResidualOutput",
    "SqueezeBertLayer",
    "AlbertEncoder",
    "BertEncoder",
    "SqueezeAlbertEncoder",
    "SqueezeBertEncoder",
    "SequenceClassifiers",
    "SequenceClassifiersLoss",
    "TopK",
    "BertModel",
    "FreezeLayers",
    "build_embeddings",
    "build_encoder",
    "convert_hf_state_dict",
    "create_extended_attention_mask",
]
