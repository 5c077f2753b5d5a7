"""Utility functions for the encoder trunk.

This module contains helpers that are not specific to any particular
layer.  They prepare attention masks, scope gradient tracking for frozen
stages, and map pretrained Hugging Face weights onto the parameter names
used in this project.
"""

from __future__ import annotations

import contextlib
import re
from typing import Any, ContextManager, Dict

import torch

from .errors import ShapeError

# Additive logit for masked positions.  exp(-10000) underflows to exactly
# zero in single precision.
MASK_VALUE = -10000.0


def create_extended_attention_mask(
  attention_mask: torch.Tensor, dtype: torch.dtype = torch.float32
) -> torch.Tensor:
  """Convert a 2D attention mask to an additive 4D logits mask.

  The mask is expected to have shape ``(batch_size, seq_len)`` and to
  contain ``True``/1 for pieces that should be attended to and
  ``False``/0 for padding.  This function converts that mask into a shape
  ``(batch_size, 1, 1, seq_len)`` and changes the value range to either
  0.0 for attendable pieces or a large negative value for masked pieces.
  The negative values ensure that masked positions have zero attention
  probability after the softmax.

  Parameters
  ----------
  attention_mask:
      Tensor of shape ``(batch_size, seq_len)`` with boolean or binary values.
  dtype:
      Floating point type of the returned mask; this should match the
      hidden states it will be added to.

  Returns
  -------
  torch.Tensor
      A broadcastable attention mask of shape ``(batch_size, 1, 1, seq_len)``.
  """
  if attention_mask.dim() != 2:
    raise ShapeError(
      "create_extended_attention_mask",
      "(batch_size, seq_len)",
      tuple(attention_mask.shape),
    )
  extended_attention_mask = attention_mask[:, None, None, :].to(dtype)
  return (1.0 - extended_attention_mask) * MASK_VALUE


def no_grad_if(frozen: bool) -> ContextManager[Any]:
  """Scope in which gradient tracking is suspended when ``frozen`` is set.

  ``torch.no_grad`` restores the previous gradient mode on every exit
  path, including exceptions.  When ``frozen`` is not set the scope does
  nothing, so an enclosing ``no_grad`` scope stays in effect.
  """
  return torch.no_grad() if frozen else contextlib.nullcontext()


_MODEL_PREFIXES = ("bert.", "albert.", "roberta.", "transformer.")
_DROPPED_PREFIXES = ("pooler.", "cls.", "predictions.", "sop_classifier.", "lm_head.")
_DROPPED_KEYS = ("embeddings.position_ids", "embeddings.token_type_ids")

_ALBERT_LAYER = re.compile(
  r"^encoder\.albert_layer_groups\.(\d+)\.albert_layers\.(\d+)\.(.+)\.(weight|bias)$"
)
_ALBERT_MODULES = {
  "attention.query": "attention.self.query",
  "attention.key": "attention.self.key",
  "attention.value": "attention.self.value",
  "attention.dense": "attention.output.dense",
  "attention.LayerNorm": "attention.output.layer_norm",
  "ffn": "intermediate.dense",
  "ffn_output": "output.dense",
  "full_layer_layer_norm": "output.layer_norm",
}


def convert_hf_state_dict(state_dict: Dict[str, Any]) -> Dict[str, Any]:
  """Map Hugging Face encoder state dict keys to this project's keys.

  Handles the BERT, RoBERTa/XLM-RoBERTa, ALBERT and SqueezeBERT models
  of the ``transformers`` library, with or without their task-specific
  wrappers.  Only the embeddings and the encoder are kept: poolers,
  pretraining heads and non-parameter buffers are dropped.  The result
  can be passed to ``load_state_dict`` of a :class:`~multitrunk.BertModel`
  of the matching family (constructed without tasks).

  Parameters
  ----------
  state_dict:
      The original state dictionary from a Hugging Face model.

  Returns
  -------
  Dict[str, Any]
      A new state dictionary with remapped keys.
  """
  new_state_dict: Dict[str, Any] = {}
  for key, value in state_dict.items():
    for prefix in _MODEL_PREFIXES:
      if key.startswith(prefix):
        key = key[len(prefix):]
        break

    if key in _DROPPED_KEYS or key.startswith(_DROPPED_PREFIXES):
      continue

    # Ex: encoder.albert_layer_groups.0.albert_layers.0.ffn.weight
    # -> encoder.groups.0.0.intermediate.dense.weight
    albert_match = _ALBERT_LAYER.match(key)
    if albert_match is not None:
      group, inner, module, param = albert_match.groups()
      key = f"encoder.groups.{group}.{inner}.{_ALBERT_MODULES[module]}.{param}"
    elif key.startswith("encoder.embedding_hidden_mapping_in."):
      key = key.replace("embedding_hidden_mapping_in", "embedding_projection", 1)
    elif key.startswith("encoder.layers."):
      # SqueezeBERT names its layer list ``layers``.
      key = key.replace("encoder.layers.", "encoder.layer.", 1)

    key = key.replace("LayerNorm", "layer_norm").replace("layernorm", "layer_norm")
    new_state_dict[key] = value
  return new_state_dict


def get_torch_accelerator() -> torch.device:
  if torch.cuda.is_available():
    return torch.device("cuda")

  if torch.backends.mps.is_available():
    return torch.device("mps")

  return torch.device("cpu")
