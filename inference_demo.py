"""Demonstration of running inference with a pretrained trunk.

This script compares the output of our encoder trunks with Hugging
Face's reference implementations.  It loads a pre-trained model using
the ``transformers`` library, converts its weights and loads them into
``multitrunk.BertModel``.  A sample input is tokenised and fed through
both models, and the difference between their last hidden states is
reported, together with the hidden state norm of every layer in the
trace.

The model is selected through environment variables (a ``.env`` file is
honoured):

* ``MODEL_NAME``: Hugging Face model name, ``bert-base-uncased`` by
  default.
* ``MODEL_FAMILY``: one of ``bert``, ``albert``, ``squeeze_bert`` or
  ``xlm_roberta``; ``bert`` by default.

Usage
-----
Run this script with ``python inference_demo.py`` from the repository
root.  Ensure that dependencies are installed and that PyTorch can
locate a GPU if available.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict

import torch
from transformers import AutoModel, AutoTokenizer
from dotenv import load_dotenv

from multitrunk.bert_model import BertModel
from multitrunk.config import (
  AlbertConfig,
  BertConfig,
  PretrainConfig,
  SqueezeBertConfig,
  XlmRobertaConfig,
)
from multitrunk.utils import convert_hf_state_dict, get_torch_accelerator

CONFIG_CLASSES = {
  "bert": BertConfig,
  "albert": AlbertConfig,
  "squeeze_bert": SqueezeBertConfig,
  "xlm_roberta": XlmRobertaConfig,
}

COMMON_FIELDS = (
  "vocab_size",
  "hidden_size",
  "num_attention_heads",
  "num_hidden_layers",
  "intermediate_size",
  "hidden_act",
  "max_position_embeddings",
  "type_vocab_size",
  "initializer_range",
  "layer_norm_eps",
  "pad_token_id",
)

FAMILY_FIELDS = {
  "albert": ("embedding_size", "num_hidden_groups", "inner_group_num"),
  "squeeze_bert": (
    "embedding_size",
    "q_groups",
    "k_groups",
    "v_groups",
    "post_attention_groups",
    "intermediate_groups",
    "output_groups",
  ),
}


def setup_logging() -> None:
  logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
  )


def config_from_hf(family: str, hf_config) -> PretrainConfig:
  """Copy the hyper-parameters of a Hugging Face configuration.

  Dropout is disabled, since the model is only used for inference.
  """
  fields = COMMON_FIELDS + FAMILY_FIELDS.get(family, ())
  kwargs = {field: getattr(hf_config, field) for field in fields}
  return CONFIG_CLASSES[family](
    hidden_dropout_prob=0.0, attention_probs_dropout_prob=0.0, **kwargs
  )


def main() -> None:
  setup_logging()
  logger = logging.getLogger(__name__)
  # Load environment variables
  load_dotenv()
  model_name = os.getenv("MODEL_NAME", "bert-base-uncased")
  family = os.getenv("MODEL_FAMILY", "bert")
  if family not in CONFIG_CLASSES:
    raise ValueError(
      f"Unknown MODEL_FAMILY '{family}', expected one of {sorted(CONFIG_CLASSES)}"
    )
  logger.info(f"Loading {model_name} as a {family} model")

  # Load Hugging Face model and tokenizer
  tokenizer = AutoTokenizer.from_pretrained(model_name)
  hf_model = AutoModel.from_pretrained(model_name)
  hf_model.eval()

  model = BertModel(config_from_hf(family, hf_model.config), layers_dropout=0.0)

  # Transfer weights from HF model
  hf_state_dict: Dict[str, torch.Tensor] = hf_model.state_dict()
  missing, unexpected = model.load_state_dict(
    convert_hf_state_dict(hf_state_dict), strict=False
  )
  if missing:
    logger.warning(f"Missing keys during load: {missing}")
  if unexpected:
    logger.warning(f"Unexpected keys during load: {unexpected}")

  device = get_torch_accelerator()
  hf_model.to(device)
  model.to(device)

  encoded = tokenizer(
    ["Hello, my dog is cute", "Did the AWO embezzle donations?"],
    return_tensors="pt",
    padding=True,
  )
  input_ids = encoded["input_ids"].to(device)
  attention_mask = encoded["attention_mask"].to(device)

  with torch.no_grad():
    hf_seq_output = hf_model(
      input_ids=input_ids, attention_mask=attention_mask
    ).last_hidden_state
    trace = model.encode(input_ids, attention_mask)
  seq_output = trace[-1].hidden_state

  # Compare non-padding pieces only
  mask = attention_mask.bool()
  diff = (seq_output[mask] - hf_seq_output[mask]).abs().mean().item()
  logger.info(f"Mean absolute difference between custom and HF outputs: {diff:.6f}")
  for idx, layer_output in enumerate(trace):
    norm = layer_output.hidden_state[mask].norm(dim=-1).mean().item()
    logger.info(f"Layer {idx}: mean hidden state norm = {norm:.3f}")

  # Save outputs to results for inspection
  results_dir = Path("results")
  results_dir.mkdir(parents=True, exist_ok=True)
  torch.save(
    {
      "input_ids": input_ids.cpu(),
      "hf_seq_output": hf_seq_output.cpu(),
      "custom_seq_output": seq_output.cpu(),
    },
    results_dir / "inference_outputs.pt",
  )
  logger.info(f"Inference outputs saved to {results_dir / 'inference_outputs.pt'}")


if __name__ == "__main__":
  main()
