"""Unit tests for the multi-head self-attention implementation."""

import pytest
import torch
import torch.nn.functional as F

from multitrunk.config import BertConfig
from multitrunk.errors import ShapeError
from multitrunk.multi_head_attention import (
  BertSelfAttention,
  masked_softmax,
  merge_heads,
  split_heads,
)
from multitrunk.utils import create_extended_attention_mask


def small_config() -> BertConfig:
  # Use dropout 0 to simplify the tests
  return BertConfig(
    vocab_size=100,
    hidden_size=64,
    num_attention_heads=8,
    num_hidden_layers=1,
    intermediate_size=128,
    max_position_embeddings=20,
    hidden_dropout_prob=0.0,
    attention_probs_dropout_prob=0.0,
  )


def test_attention_output_shape_and_probs() -> None:
  config = small_config()
  attn = BertSelfAttention(config)
  attn.eval()
  batch_size, seq_len = 2, 5
  hidden_states = torch.randn(batch_size, seq_len, config.hidden_size)
  context, scores = attn(hidden_states)
  assert context.shape == (batch_size, seq_len, config.hidden_size)
  assert scores.shape == (batch_size, config.num_attention_heads, seq_len, seq_len)
  # The scores are returned before the softmax, so turning them into
  # probabilities gives distributions over the key positions.
  prob_sums = F.softmax(scores, dim=-1).sum(dim=-1)
  assert torch.allclose(prob_sums, torch.ones_like(prob_sums), atol=1e-5)


def test_attention_scores_are_scaled_dot_products() -> None:
  config = small_config()
  attn = BertSelfAttention(config)
  attn.eval()
  hidden_states = torch.randn(1, 4, config.hidden_size)
  _, scores = attn(hidden_states)

  query = split_heads(attn.query(hidden_states), config.num_attention_heads)
  key = split_heads(attn.key(hidden_states), config.num_attention_heads)
  expected = query @ key.transpose(-1, -2) / config.attention_head_size ** 0.5
  assert torch.allclose(scores, expected, atol=1e-5)


def test_masked_positions_get_no_attention() -> None:
  config = small_config()
  attn = BertSelfAttention(config)
  attn.eval()
  hidden_states = torch.randn(2, 6, config.hidden_size)
  mask = torch.tensor([[1, 1, 1, 1, 0, 0], [1, 1, 1, 1, 1, 1]])
  logits_mask = create_extended_attention_mask(mask)
  _, scores = attn(hidden_states, logits_mask)

  probs = masked_softmax(scores, logits_mask)
  assert torch.all(probs[0, :, :, 4:] < 1e-6)
  prob_sums = probs.sum(dim=-1)
  assert torch.allclose(prob_sums, torch.ones_like(prob_sums), atol=1e-5)


def test_padding_does_not_change_context() -> None:
  config = small_config()
  attn = BertSelfAttention(config)
  attn.eval()
  hidden_states = torch.randn(1, 5, config.hidden_size)
  padded = torch.cat([hidden_states, torch.randn(1, 3, config.hidden_size)], dim=1)
  mask = torch.tensor([[1] * 5 + [0] * 3])

  context, _ = attn(hidden_states)
  padded_context, _ = attn(padded, create_extended_attention_mask(mask))
  assert torch.allclose(context, padded_context[:, :5], atol=1e-5)


def test_fully_masked_rows_attend_uniformly() -> None:
  scores = torch.randn(2, 2, 3, 3)
  logits_mask = create_extended_attention_mask(torch.tensor([[0, 0, 0], [1, 1, 0]]))
  probs = masked_softmax(scores + logits_mask, logits_mask)
  assert torch.allclose(probs[0], torch.full((2, 3, 3), 1.0 / 3))
  assert torch.all(probs[1, :, :, 2] < 1e-6)
  assert not torch.isnan(probs).any()


def test_split_and_merge_heads_round_trip() -> None:
  x = torch.randn(2, 7, 64)
  heads = split_heads(x, 8)
  assert heads.shape == (2, 8, 7, 8)
  merged = merge_heads(heads)
  assert merged.shape == x.shape
  assert torch.equal(merged, x)
  assert merge_heads(split_heads(merged, 8)).shape == x.shape


def test_split_heads_rejects_indivisible_width() -> None:
  with pytest.raises(ShapeError):
    split_heads(torch.randn(2, 7, 30), 8)


def test_mask_rank_mismatch_is_a_shape_error() -> None:
  config = small_config()
  attn = BertSelfAttention(config)
  hidden_states = torch.randn(2, 5, config.hidden_size)
  with pytest.raises(ShapeError) as excinfo:
    attn(hidden_states, torch.zeros(2, 5))
  assert excinfo.value.operation == "BertSelfAttention"
  with pytest.raises(ShapeError):
    create_extended_attention_mask(torch.ones(2, 1, 5))
