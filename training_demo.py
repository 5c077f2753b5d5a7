"""Demonstration of training the multi-task model on a toy dataset.

This script tags a handful of sentences with two tasks, coarse
part-of-speech tags and a capitalization flag, and trains a small
randomly initialized ``BertModel`` on them.  The word pieces are
produced by the ``bert-base-uncased`` tokenizer.  Only the first piece
of every word carries a label; continuation pieces are excluded from the
loss through the token mask.  The goal is not to train a useful tagger,
but to illustrate how the trunk, the layer trace and the classifiers
come together.

The embeddings are frozen for the first epoch, to show how
``FreezeLayers`` excludes parts of the model from backpropagation.
Training progress is logged, and the resulting model weights are saved
to the ``results`` directory.

Usage
-----
Run this script with ``python training_demo.py`` from the repository
root.  Ensure that dependencies are installed and that PyTorch can
locate a GPU if available.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Tuple

import torch
from torch.utils.data import DataLoader, Dataset
from transformers import BertTokenizer
from dotenv import load_dotenv

from multitrunk.bert_model import BertModel, FreezeLayers
from multitrunk.config import BertConfig
from multitrunk.utils import get_torch_accelerator

POS_TAGS = ["DET", "NOUN", "VERB", "ADJ", "ADP", "PUNCT"]

SENTENCES: List[List[Tuple[str, str]]] = [
  [("The", "DET"), ("quick", "ADJ"), ("fox", "NOUN"), ("jumps", "VERB"), (".", "PUNCT")],
  [("A", "DET"), ("cat", "NOUN"), ("sleeps", "VERB"), ("on", "ADP"), ("the", "DET"),
   ("sofa", "NOUN"), (".", "PUNCT")],
  [("Transformers", "NOUN"), ("revolutionized", "VERB"), ("parsing", "NOUN"), (".", "PUNCT")],
  [("Did", "VERB"), ("the", "DET"), ("AWO", "NOUN"), ("embezzle", "VERB"),
   ("donations", "NOUN"), ("?", "PUNCT")],
]


def setup_logging() -> None:
  logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
  )


class ToyTaggingDataset(Dataset):
  """A toy dataset for demonstrating multi-task sequence labeling.

  During initialisation the dataset tokenises the pre-split sentences and
  aligns the word-level labels with the first piece of every word.
  """

  def __init__(
    self,
    tokenizer: BertTokenizer,
    sentences: List[List[Tuple[str, str]]],
    max_length: int = 24,
  ) -> None:
    self.examples = []
    for sentence in sentences:
      words = [word for word, _ in sentence]
      enc = tokenizer(
        words,
        is_split_into_words=True,
        truncation=True,
        padding="max_length",
        max_length=max_length,
        return_tensors="pt",
      )

      pos = torch.zeros(max_length, dtype=torch.long)
      capitalized = torch.zeros(max_length, dtype=torch.long)
      token_mask = torch.zeros(max_length, dtype=torch.long)
      previous_word = None
      for idx, word_idx in enumerate(enc.word_ids(0)):
        # Special pieces and continuation pieces are not labeled.
        if word_idx is not None and word_idx != previous_word:
          word, tag = sentence[word_idx]
          pos[idx] = POS_TAGS.index(tag)
          capitalized[idx] = int(word[0].isupper())
          token_mask[idx] = 1
        previous_word = word_idx

      self.examples.append(
        {
          "input_ids": enc["input_ids"][0],
          "attention_mask": enc["attention_mask"][0],
          "token_mask": token_mask,
          "pos": pos,
          "capitalized": capitalized,
        }
      )

  def __len__(self) -> int:
    return len(self.examples)

  def __getitem__(self, idx: int) -> Dict[str, torch.Tensor]:
    return self.examples[idx]


def main() -> None:
  setup_logging()
  logger = logging.getLogger(__name__)
  load_dotenv()
  data_dir = Path(os.getenv("DATA_DIR", "."))
  logger.info(f"Using DATA_DIR at {data_dir.resolve()}")

  tokenizer = BertTokenizer.from_pretrained("bert-base-uncased")
  config = BertConfig(
    vocab_size=tokenizer.vocab_size,
    hidden_size=128,
    num_attention_heads=4,
    num_hidden_layers=4,
    intermediate_size=256,
  )
  tasks = {"pos": len(POS_TAGS), "capitalized": 2}

  # Duplicate the dataset to have more examples
  dataset = ToyTaggingDataset(tokenizer, SENTENCES * 4)
  dataloader = DataLoader(dataset, batch_size=2, shuffle=True)

  model = BertModel(config, tasks, layers_dropout=0.1, classifier_layer_dropout=0.1)
  device = get_torch_accelerator()
  model.to(device)

  optimizer = torch.optim.AdamW(model.parameters(), lr=1e-4)

  num_epochs = 3
  logger.info(f"Starting training for {num_epochs} epochs on {len(dataset)} examples")
  for epoch in range(num_epochs):
    freeze_layers = FreezeLayers(embeddings=epoch == 0)
    total_loss = 0.0
    total_accuracy = 0.0
    for batch in dataloader:
      optimizer.zero_grad()
      batch = {key: value.to(device) for key, value in batch.items()}
      loss = model.loss(
        batch["input_ids"],
        batch["attention_mask"],
        batch["token_mask"],
        {task: batch[task] for task in tasks},
        label_smoothing=0.03,
        train=True,
        freeze_layers=freeze_layers,
      )
      loss.summed_loss.backward()
      optimizer.step()
      total_loss += loss.summed_loss.item()
      total_accuracy += loss.task_accuracies["pos"].item()
    avg_loss = total_loss / len(dataloader)
    avg_accuracy = total_accuracy / len(dataloader)
    logger.info(
      f"Epoch {epoch + 1}/{num_epochs}: average loss = {avg_loss:.4f}, "
      f"pos accuracy = {avg_accuracy:.3f}"
    )

  example = dataset[0]
  top_k = model.top_k(
    example["input_ids"].unsqueeze(0).to(device),
    example["attention_mask"].unsqueeze(0).to(device),
    k=2,
  )
  pieces = tokenizer.convert_ids_to_tokens(example["input_ids"])
  for idx in example["token_mask"].nonzero().flatten().tolist():
    labels = [POS_TAGS[label] for label in top_k["pos"].labels[0, idx].tolist()]
    logger.info(f"{pieces[idx]}: {labels}")

  # Save model weights
  results_dir = Path("results")
  results_dir.mkdir(parents=True, exist_ok=True)
  model_path = results_dir / "toy_tagger.pth"
  torch.save(model.state_dict(), model_path)
  logger.info(f"Trained model saved to {model_path}")


if __name__ == "__main__":
  main()
