"""Unit tests for the configuration records."""

import dataclasses

import pytest

from multitrunk.config import (
  AlbertConfig,
  BertConfig,
  PositionEmbeddings,
  SqueezeAlbertConfig,
  SqueezeBertConfig,
  XlmRobertaConfig,
  pretrain_bert_config,
)
from multitrunk.errors import ConfigurationError, ShapeError


def test_hidden_size_must_divide_into_heads() -> None:
  with pytest.raises(ShapeError) as excinfo:
    BertConfig(hidden_size=30, num_attention_heads=4)
  assert excinfo.value.operation == "attention_head_size"
  assert excinfo.value.actual == 30
  # Callers that only know about ValueError still catch it.
  assert isinstance(excinfo.value, ValueError)

  for config_cls in (AlbertConfig, SqueezeBertConfig, SqueezeAlbertConfig):
    with pytest.raises(ShapeError):
      config_cls(hidden_size=30, embedding_size=30, num_attention_heads=4)


def test_attention_head_size() -> None:
  config = BertConfig(hidden_size=768, num_attention_heads=12)
  assert config.attention_head_size == 64
  assert config.num_attention_heads * config.attention_head_size == config.hidden_size


def test_unknown_activation_is_rejected() -> None:
  with pytest.raises(ConfigurationError):
    BertConfig(hidden_act="swish")


def test_albert_layer_sharing_must_divide_layers() -> None:
  with pytest.raises(ConfigurationError):
    AlbertConfig(num_hidden_layers=12, num_hidden_groups=5)
  with pytest.raises(ConfigurationError):
    AlbertConfig(inner_group_num=0)


def test_squeeze_bert_embedding_size_must_match_hidden_size() -> None:
  with pytest.raises(ConfigurationError):
    SqueezeBertConfig(embedding_size=128, hidden_size=768)


def test_squeeze_bert_groups_must_divide_channels() -> None:
  with pytest.raises(ConfigurationError):
    SqueezeBertConfig(hidden_size=32, embedding_size=32, num_attention_heads=4, q_groups=3)
  with pytest.raises(ConfigurationError):
    SqueezeBertConfig(
      hidden_size=32,
      embedding_size=32,
      num_attention_heads=4,
      intermediate_size=36,
      intermediate_groups=8,
    )


def test_configurations_are_immutable() -> None:
  config = BertConfig()
  with pytest.raises(dataclasses.FrozenInstanceError):
    config.hidden_size = 32


def test_albert_to_bert_config() -> None:
  config = AlbertConfig(
    vocab_size=100,
    embedding_size=16,
    hidden_size=32,
    num_attention_heads=4,
    num_hidden_layers=4,
    num_hidden_groups=2,
    intermediate_size=64,
    hidden_act="gelu",
  )
  bert_config = config.to_bert_config()
  assert isinstance(bert_config, BertConfig)
  assert bert_config.hidden_size == 32
  assert bert_config.num_attention_heads == 4
  assert bert_config.num_hidden_layers == 4
  assert bert_config.intermediate_size == 64
  assert bert_config.hidden_act == "gelu"
  # Derivation is deterministic.
  assert config.to_bert_config() == bert_config


def test_squeeze_albert_derivations() -> None:
  config = SqueezeAlbertConfig(
    embedding_size=16, hidden_size=32, num_attention_heads=4, intermediate_size=64
  )
  albert_config = config.to_albert_config()
  assert albert_config.embedding_size == 16
  assert albert_config.hidden_size == 32

  squeeze_config = config.to_squeeze_bert_config()
  assert squeeze_config.embedding_size == squeeze_config.hidden_size == 32
  assert squeeze_config.q_groups == config.q_groups
  assert squeeze_config.output_groups == config.output_groups

  assert config.to_bert_config() == albert_config.to_bert_config()


def test_pretrain_bert_config() -> None:
  bert_config = BertConfig(hidden_size=32, num_attention_heads=4)
  assert pretrain_bert_config(bert_config) is bert_config

  xlm_config = XlmRobertaConfig(hidden_size=32, num_attention_heads=4)
  assert pretrain_bert_config(xlm_config) is xlm_config

  squeeze_config = SqueezeBertConfig(
    hidden_size=32, embedding_size=32, num_attention_heads=4, intermediate_size=64
  )
  assert pretrain_bert_config(squeeze_config) == squeeze_config.to_bert_config()

  with pytest.raises(ConfigurationError):
    pretrain_bert_config(object())


def test_xlm_roberta_defaults() -> None:
  config = XlmRobertaConfig()
  assert config.pad_token_id == 1
  assert config.type_vocab_size == 1
  assert config.max_position_embeddings == 514


def test_position_embeddings() -> None:
  assert not PositionEmbeddings().is_sinusoidal
  assert PositionEmbeddings.model() == PositionEmbeddings()
  sinusoidal = PositionEmbeddings.sinusoidal(normalize=False)
  assert sinusoidal.is_sinusoidal
  assert not sinusoidal.normalize
  with pytest.raises(ConfigurationError):
    PositionEmbeddings(kind="rotary")
