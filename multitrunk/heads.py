"""Sequence labeling heads on top of the encoder trunk.

The heads in this module consume the layer trace produced by an encoder
stack.  Rather than using only the last layer, each task learns a scalar
weighting of all layers (including the embeddings), so that tasks can
draw on the layers that suit them best.  The mixed representation is
passed through a small non-linear transformation and projected to the
task's labels.  :class:`SequenceClassifiers` bundles one such head per
task and computes logits, losses and top-k predictions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import torch
from torch import nn
import torch.nn.functional as F

from .config import BertConfig
from .errors import ShapeError
from .layer_output import LayerOutput, stack_hidden_states
from .layers import bert_layer_norm, bert_linear, get_activation


class ScalarWeight(nn.Module):
  """Learned softmax-normalized weighting of layers.

  During training, each layer is dropped from the weighting with
  probability ``layer_dropout_prob``.  At least one layer is always kept.
  """

  def __init__(self, n_layers: int, layer_dropout_prob: float = 0.0) -> None:
    super().__init__()
    self.n_layers = n_layers
    self.layer_dropout_prob = layer_dropout_prob
    self.layer_weights = nn.Parameter(torch.zeros(n_layers))
    self.scale = nn.Parameter(torch.ones(1))

  def forward(self, layers: torch.Tensor) -> torch.Tensor:
    """Mix ``(batch_size, seq_len, n_layers, hidden_size)`` into
    ``(batch_size, seq_len, hidden_size)``."""
    if layers.dim() != 4 or layers.size(-2) != self.n_layers:
      raise ShapeError(
        "ScalarWeight",
        f"(batch_size, seq_len, {self.n_layers}, hidden_size)",
        tuple(layers.shape),
      )

    layer_weights = self.layer_weights
    if self.training and self.layer_dropout_prob > 0:
      dropout_mask = torch.rand_like(layer_weights) < self.layer_dropout_prob
      if bool(dropout_mask.all()):
        dropout_mask[torch.randint(self.n_layers, (1,))] = False
      layer_weights = layer_weights.masked_fill(dropout_mask, float("-inf"))

    weights = F.softmax(layer_weights, dim=-1)
    mixed = (layers * weights.unsqueeze(-1)).sum(dim=-2)
    return self.scale * mixed


class ScalarWeightClassifier(nn.Module):
  """Classifier over a scalar weighting of the layer trace."""

  def __init__(
    self,
    config: BertConfig,
    n_layers: int,
    n_labels: int,
    layer_dropout_prob: float = 0.0,
  ) -> None:
    super().__init__()
    self.scalar_weight = ScalarWeight(n_layers, layer_dropout_prob)
    self.dense = bert_linear(config.hidden_size, config.hidden_size, config.initializer_range)
    self.activation = get_activation(config.hidden_act)
    self.layer_norm = bert_layer_norm(config.hidden_size, config.layer_norm_eps)
    self.dropout = nn.Dropout(config.hidden_dropout_prob)
    self.linear = bert_linear(config.hidden_size, n_labels, config.initializer_range)

  def forward(self, layers: torch.Tensor) -> torch.Tensor:
    x = self.scalar_weight(layers)
    x = self.layer_norm(self.activation(self.dense(x)))
    return self.linear(self.dropout(x))


@dataclass
class SequenceClassifiersLoss:
  """Losses of a batch.

  ``summed_loss`` is the sum of the per-task losses and is the value to
  backpropagate.  ``task_losses`` and ``task_accuracies`` are keyed by
  task name.
  """

  summed_loss: torch.Tensor
  task_losses: Dict[str, torch.Tensor]
  task_accuracies: Dict[str, torch.Tensor]


@dataclass
class TopK:
  """The ``k`` most probable labels per piece, most probable first."""

  probs: torch.Tensor
  labels: torch.Tensor


class SequenceClassifiers(nn.Module):
  """One scalar-weighting classifier per task.

  Parameters
  ----------
  config:
      Generic BERT view of the model configuration.
  n_layers:
      Length of the layer trace that will be classified.
  tasks:
      Mapping from task name to the number of labels of the task.
  layer_dropout_prob:
      Layer dropout probability of the scalar weighting.
  """

  def __init__(
    self,
    config: BertConfig,
    n_layers: int,
    tasks: Mapping[str, int],
    layer_dropout_prob: float = 0.0,
  ) -> None:
    super().__init__()
    self.classifiers = nn.ModuleDict(
      {
        name: ScalarWeightClassifier(config, n_layers, n_labels, layer_dropout_prob)
        for name, n_labels in tasks.items()
      }
    )

  def forward(self, layer_outputs: List[LayerOutput]) -> Dict[str, torch.Tensor]:
    """Logits of shape ``(batch_size, seq_len, n_labels)`` per task."""
    layers = stack_hidden_states(layer_outputs)
    return {name: classifier(layers) for name, classifier in self.classifiers.items()}

  def loss(
    self,
    layer_outputs: List[LayerOutput],
    attention_mask: torch.Tensor,
    token_mask: torch.Tensor,
    targets: Mapping[str, torch.Tensor],
    label_smoothing: Optional[float] = None,
    include_continuations: bool = False,
  ) -> SequenceClassifiersLoss:
    """Compute the cross-entropy loss of every task.

    Parameters
    ----------
    layer_outputs:
        Layer trace of the batch.
    attention_mask:
        Mask of shape ``(batch_size, seq_len)`` marking non-padding pieces.
    token_mask:
        Mask of shape ``(batch_size, seq_len)`` marking the pieces that
        carry a label, typically the first piece of every token.
    targets:
        Gold labels of shape ``(batch_size, seq_len)`` per task.
    label_smoothing:
        Probability mass to redistribute from the gold label to the other
        labels.
    include_continuations:
        Compute the loss over all non-padding pieces instead of only the
        pieces in ``token_mask``.
    """
    mask = (attention_mask if include_continuations else token_mask).bool()
    logits = self(layer_outputs)

    task_losses: Dict[str, torch.Tensor] = {}
    task_accuracies: Dict[str, torch.Tensor] = {}
    for name, task_logits in logits.items():
      if name not in targets:
        raise ValueError(f"No targets given for task '{name}'.")
      active_logits = task_logits[mask]
      active_targets = targets[name][mask]
      task_losses[name] = F.cross_entropy(
        active_logits, active_targets, label_smoothing=label_smoothing or 0.0
      )
      task_accuracies[name] = (active_logits.argmax(-1) == active_targets).float().mean()

    if task_losses:
      summed_loss = torch.stack(list(task_losses.values())).sum()
    else:
      summed_loss = torch.zeros((), device=mask.device)
    return SequenceClassifiersLoss(summed_loss, task_losses, task_accuracies)

  def top_k(self, layer_outputs: List[LayerOutput], k: int) -> Dict[str, TopK]:
    """The ``k`` best labels and their probabilities per piece and task."""
    result = {}
    for name, task_logits in self(layer_outputs).items():
      probs, labels = F.softmax(task_logits, dim=-1).topk(k, dim=-1)
      result[name] = TopK(probs=probs, labels=labels)
    return result
