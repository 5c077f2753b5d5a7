"""Leaf building blocks shared by all encoder families.

The constructors in this module create the standard PyTorch layers used
throughout the trunk and apply the parameter initialization policy at
the point where the parameters are created: weights are drawn from a
normal distribution with mean 0 and standard deviation
``initializer_range``, biases start at 0, and layer normalization starts
as the identity (scale 1, shift 0).
"""

from __future__ import annotations

from typing import Callable

import torch
from torch import nn
import torch.nn.functional as F

from .errors import ConfigurationError


def bert_linear(
  in_features: int, out_features: int, initializer_range: float
) -> nn.Linear:
  """Affine projection ``in_features -> out_features``."""
  linear = nn.Linear(in_features, out_features)
  nn.init.normal_(linear.weight, mean=0.0, std=initializer_range)
  nn.init.zeros_(linear.bias)
  return linear


def bert_conv1d(
  in_channels: int, out_channels: int, groups: int, initializer_range: float
) -> nn.Conv1d:
  """Grouped 1x1 convolution over a channels-first ``[B, C, S]`` tensor.

  A 1x1 convolution is a position-wise projection; grouping splits the
  channels into ``groups`` independent projections.
  """
  conv = nn.Conv1d(in_channels, out_channels, kernel_size=1, groups=groups)
  nn.init.normal_(conv.weight, mean=0.0, std=initializer_range)
  nn.init.zeros_(conv.bias)
  return conv


def bert_embedding(
  num_embeddings: int, embedding_dim: int, initializer_range: float
) -> nn.Embedding:
  embedding = nn.Embedding(num_embeddings, embedding_dim)
  nn.init.normal_(embedding.weight, mean=0.0, std=initializer_range)
  return embedding


def bert_layer_norm(normalized_size: int, eps: float) -> nn.LayerNorm:
  # nn.LayerNorm already initializes to scale 1, shift 0.
  return nn.LayerNorm(normalized_size, eps=eps)


def _gelu_new(x: torch.Tensor) -> torch.Tensor:
  return F.gelu(x, approximate="tanh")


_ACTIVATIONS = {
  "gelu": F.gelu,
  "gelu_new": _gelu_new,
  "relu": F.relu,
}


def get_activation(name: str) -> Callable[[torch.Tensor], torch.Tensor]:
  """Look up the activation function configured as ``hidden_act``."""
  try:
    return _ACTIVATIONS[name]
  except KeyError:
    raise ConfigurationError(
      f"Unsupported activation '{name}', expected one of {sorted(_ACTIVATIONS)}."
    ) from None
