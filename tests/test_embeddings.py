"""Unit tests for the embeddings module."""

import pytest
import torch

from multitrunk.config import AlbertConfig, BertConfig, XlmRobertaConfig
from multitrunk.embeddings import (
  AlbertEmbeddings,
  BertEmbeddings,
  RobertaEmbeddings,
  SinusoidalEmbeddings,
  sinusoidal_positions,
)
from multitrunk.errors import ShapeError


def test_embeddings_shape() -> None:
  config = BertConfig(
    vocab_size=100, hidden_size=32, num_attention_heads=4, max_position_embeddings=20
  )
  embeddings = BertEmbeddings(config)
  input_ids = torch.randint(0, 100, (4, 10))
  token_type_ids = torch.zeros_like(input_ids)
  output = embeddings(input_ids, token_type_ids)
  assert output.shape == (4, 10, 32)


def test_albert_embeddings_use_embedding_size() -> None:
  config = AlbertConfig(
    vocab_size=100, embedding_size=16, hidden_size=32, num_attention_heads=4
  )
  embeddings = AlbertEmbeddings(config)
  output = embeddings(torch.randint(0, 100, (2, 6)))
  assert output.shape == (2, 6, 16)


def test_too_long_input_is_rejected() -> None:
  config = BertConfig(
    vocab_size=100, hidden_size=32, num_attention_heads=4, max_position_embeddings=8
  )
  embeddings = BertEmbeddings(config)
  embeddings(torch.randint(0, 100, (1, 8)))
  with pytest.raises(ShapeError):
    embeddings(torch.randint(0, 100, (1, 9)))


def test_roberta_position_ids_skip_padding() -> None:
  config = XlmRobertaConfig(
    vocab_size=100, hidden_size=32, num_attention_heads=4, max_position_embeddings=10
  )
  embeddings = RobertaEmbeddings(config)
  input_ids = torch.tensor([[0, 5, 6, 7, 1, 1], [0, 5, 6, 7, 8, 9]])
  position_ids = embeddings.position_ids(input_ids)
  assert position_ids.tolist() == [[2, 3, 4, 5, 1, 1], [2, 3, 4, 5, 6, 7]]
  assert embeddings(input_ids).shape == (2, 6, 32)

  # The largest position id is seq_len + pad_token_id.
  embeddings(torch.full((1, 8), 5))
  with pytest.raises(ShapeError):
    embeddings(torch.full((1, 9), 5))


def test_sinusoidal_positions() -> None:
  positions = sinusoidal_positions(6, 8)
  assert positions.shape == (6, 8)
  assert torch.allclose(positions[0, 0::2], torch.zeros(4))
  assert torch.allclose(positions[0, 1::2], torch.ones(4))
  assert torch.allclose(positions[3, 0], torch.sin(torch.tensor(3.0)))

  normalized = sinusoidal_positions(6, 8, normalize=True)
  assert torch.allclose(normalized.norm(dim=-1), torch.ones(6), atol=1e-6)

  # Odd widths are supported as well.
  assert sinusoidal_positions(4, 7).shape == (4, 7)


def test_sinusoidal_embeddings() -> None:
  config = BertConfig(
    vocab_size=100, hidden_size=32, num_attention_heads=4, max_position_embeddings=8
  )
  embeddings = SinusoidalEmbeddings(config, normalize=True)
  names = {name for name, _ in embeddings.named_parameters()}
  assert names == {"word_embeddings.weight", "layer_norm.weight", "layer_norm.bias"}
  # Sinusoidal positions are not limited by max_position_embeddings.
  assert embeddings(torch.randint(0, 100, (2, 12))).shape == (2, 12, 32)

  albert_config = AlbertConfig(
    vocab_size=100, embedding_size=16, hidden_size=32, num_attention_heads=4
  )
  albert_embeddings = SinusoidalEmbeddings(albert_config)
  assert albert_embeddings(torch.randint(0, 100, (2, 5))).shape == (2, 5, 16)
