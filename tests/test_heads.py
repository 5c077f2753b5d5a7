"""Unit tests for the sequence labeling heads."""

import pytest
import torch

from multitrunk.config import BertConfig
from multitrunk.heads import ScalarWeight, SequenceClassifiers
from multitrunk.layer_output import EmbeddingOutput, EncoderLayerOutput


def make_trace(batch_size: int, seq_len: int, hidden_size: int, n_layers: int):
  trace = [EmbeddingOutput(torch.randn(batch_size, seq_len, hidden_size))]
  for _ in range(n_layers - 1):
    trace.append(
      EncoderLayerOutput(
        torch.randn(batch_size, seq_len, hidden_size),
        torch.randn(batch_size, 4, seq_len, seq_len),
      )
    )
  return trace


def config() -> BertConfig:
  return BertConfig(
    hidden_size=32,
    num_attention_heads=4,
    hidden_dropout_prob=0.0,
    attention_probs_dropout_prob=0.0,
  )


def test_scalar_weight_starts_as_mean() -> None:
  scalar_weight = ScalarWeight(3)
  layers = torch.randn(2, 5, 3, 8)
  assert torch.allclose(scalar_weight(layers), layers.mean(dim=-2), atol=1e-6)


def test_scalar_weight_never_drops_all_layers() -> None:
  scalar_weight = ScalarWeight(3, layer_dropout_prob=1.0)
  scalar_weight.train()
  layers = torch.randn(2, 5, 3, 8)
  mixed = scalar_weight(layers)
  assert any(torch.allclose(mixed, layers[:, :, idx]) for idx in range(3))


def test_classifier_logits_shape() -> None:
  classifiers = SequenceClassifiers(config(), 4, {"pos": 7, "ner": 3})
  classifiers.eval()
  logits = classifiers(make_trace(2, 6, 32, 4))
  assert set(logits) == {"pos", "ner"}
  assert logits["pos"].shape == (2, 6, 7)
  assert logits["ner"].shape == (2, 6, 3)


def test_classifier_loss() -> None:
  classifiers = SequenceClassifiers(config(), 4, {"pos": 7})
  trace = make_trace(2, 6, 32, 4)
  attention_mask = torch.tensor([[1, 1, 1, 1, 0, 0], [1, 1, 1, 1, 1, 1]])
  token_mask = torch.tensor([[1, 0, 1, 1, 0, 0], [1, 1, 0, 1, 1, 1]])
  targets = {"pos": torch.randint(0, 7, (2, 6))}

  loss = classifiers.loss(trace, attention_mask, token_mask, targets)
  assert loss.summed_loss.dim() == 0
  assert torch.isfinite(loss.summed_loss)
  assert torch.allclose(loss.summed_loss, loss.task_losses["pos"])
  assert 0.0 <= loss.task_accuracies["pos"].item() <= 1.0

  logits = classifiers(trace)["pos"]
  expected = torch.nn.functional.cross_entropy(
    logits[token_mask.bool()], targets["pos"][token_mask.bool()]
  )
  assert torch.allclose(loss.task_losses["pos"], expected, atol=1e-6)

  with_continuations = classifiers.loss(
    trace, attention_mask, token_mask, targets, include_continuations=True
  )
  expected = torch.nn.functional.cross_entropy(
    logits[attention_mask.bool()], targets["pos"][attention_mask.bool()]
  )
  assert torch.allclose(with_continuations.task_losses["pos"], expected, atol=1e-6)

  smoothed = classifiers.loss(
    trace, attention_mask, token_mask, targets, label_smoothing=0.1
  )
  assert not torch.allclose(smoothed.summed_loss, loss.summed_loss)

  loss.summed_loss.backward()
  assert classifiers.classifiers["pos"].linear.weight.grad is not None


def test_classifier_loss_requires_targets() -> None:
  classifiers = SequenceClassifiers(config(), 2, {"pos": 7})
  mask = torch.ones(1, 3)
  with pytest.raises(ValueError):
    classifiers.loss(make_trace(1, 3, 32, 2), mask, mask, {})


def test_top_k() -> None:
  classifiers = SequenceClassifiers(config(), 3, {"pos": 7})
  classifiers.eval()
  top_k = classifiers.top_k(make_trace(2, 5, 32, 3), 3)["pos"]
  assert top_k.probs.shape == top_k.labels.shape == (2, 5, 3)
  assert torch.all(top_k.probs[..., :-1] >= top_k.probs[..., 1:])
  assert torch.all((top_k.labels >= 0) & (top_k.labels < 7))
