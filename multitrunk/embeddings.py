"""Embedding layers of the supported model families.

All embedding layers map piece ids of shape ``(batch_size, seq_len)`` to
embeddings of shape ``(batch_size, seq_len, embedding_size)``, where the
embedding size is the hidden size for BERT-style models and the
(smaller) factorized embedding size for ALBERT-style models.  Word,
position and (optionally) segment embeddings are summed, normalized and
passed through dropout.

* :class:`BertEmbeddings` learns absolute position embeddings.
* :class:`AlbertEmbeddings` does the same in ``embedding_size`` dimensions.
* :class:`RobertaEmbeddings` numbers positions past the padding id and
  skips padding pieces.
* :class:`SinusoidalEmbeddings` uses fixed sinusoidal position
  embeddings instead of learned ones.
"""

from __future__ import annotations

import math
from typing import Optional, Union

import torch
from torch import nn

from .config import AlbertConfig, BertConfig, SqueezeAlbertConfig
from .errors import ShapeError
from .layers import bert_embedding, bert_layer_norm


class _LearnedPositionEmbeddings(nn.Module):
  """Word, learned position and token type embeddings.

  Parameters
  ----------
  config:
      Configuration containing model hyper-parameters.  Only those fields
      relevant to the embeddings are used.
  embedding_size:
      Dimensionality of the embeddings.
  """

  # Position of the first piece.
  position_offset = 0

  def __init__(self, config: Union[AlbertConfig, BertConfig], embedding_size: int) -> None:
    super().__init__()
    self.max_position_embeddings = config.max_position_embeddings
    self.word_embeddings = bert_embedding(
      config.vocab_size, embedding_size, config.initializer_range
    )
    self.position_embeddings = bert_embedding(
      config.max_position_embeddings, embedding_size, config.initializer_range
    )
    self.token_type_embeddings = bert_embedding(
      config.type_vocab_size, embedding_size, config.initializer_range
    )

    self.layer_norm = bert_layer_norm(embedding_size, config.layer_norm_eps)
    self.dropout = nn.Dropout(config.hidden_dropout_prob)

  def position_ids(self, input_ids: torch.Tensor) -> torch.Tensor:
    # Create position IDs from 0 to seq_length - 1 and expand to batch size
    batch_size, seq_length = input_ids.size()
    position_ids = torch.arange(seq_length, dtype=torch.long, device=input_ids.device)
    return position_ids.unsqueeze(0).expand(batch_size, seq_length)

  def forward(
    self,
    input_ids: torch.Tensor,
    token_type_ids: Optional[torch.Tensor] = None,
  ) -> torch.Tensor:
    """Embed the input piece IDs and segment IDs.

    Parameters
    ----------
    input_ids:
        Tensor of shape ``(batch_size, seq_length)`` containing piece
        indices in the vocabulary.
    token_type_ids:
        Optional tensor of shape ``(batch_size, seq_length)`` indicating
        segment membership.  If ``None``, all pieces are assumed to belong
        to segment 0.

    Returns
    -------
    torch.Tensor
        The embedded representation of shape ``(batch_size, seq_length,
        embedding_size)``.
    """
    if input_ids.dim() != 2:
      raise ShapeError(
        type(self).__name__, "(batch_size, seq_len)", tuple(input_ids.shape)
      )
    seq_length = input_ids.size(1)
    if seq_length + self.position_offset > self.max_position_embeddings:
      raise ShapeError(
        type(self).__name__,
        f"at most {self.max_position_embeddings - self.position_offset} pieces",
        seq_length,
      )
    if token_type_ids is None:
      token_type_ids = torch.zeros_like(input_ids)

    word_embed = self.word_embeddings(input_ids)
    pos_embed = self.position_embeddings(self.position_ids(input_ids))
    token_type_embed = self.token_type_embeddings(token_type_ids)

    embeddings = self.layer_norm(word_embed + pos_embed + token_type_embed)
    return self.dropout(embeddings)


class BertEmbeddings(_LearnedPositionEmbeddings):
  """BERT embeddings in ``hidden_size`` dimensions."""

  def __init__(self, config: BertConfig) -> None:
    super().__init__(config, config.hidden_size)


class AlbertEmbeddings(_LearnedPositionEmbeddings):
  """ALBERT embeddings in ``embedding_size`` dimensions."""

  def __init__(self, config: AlbertConfig) -> None:
    super().__init__(config, config.embedding_size)


class RobertaEmbeddings(BertEmbeddings):
  """RoBERTa embeddings.

  Positions are counted over non-padding pieces only, starting at
  ``pad_token_id + 1``.  Padding pieces get the position ``pad_token_id``.
  """

  def __init__(self, config: BertConfig) -> None:
    super().__init__(config)
    self.padding_idx = config.pad_token_id
    self.position_offset = config.pad_token_id + 1

  def position_ids(self, input_ids: torch.Tensor) -> torch.Tensor:
    mask = input_ids.ne(self.padding_idx).long()
    return torch.cumsum(mask, dim=1) * mask + self.padding_idx


def sinusoidal_positions(
  n_positions: int,
  dims: int,
  normalize: bool = False,
  device: Optional[torch.device] = None,
  dtype: torch.dtype = torch.float32,
) -> torch.Tensor:
  """Sinusoidal position table of shape ``(n_positions, dims)``.

  Even columns hold ``sin(pos / 10000^(i / dims))``, odd columns the
  cosine of the same angle.  With ``normalize``, every row is rescaled to
  unit L2 norm.
  """
  position = torch.arange(n_positions, dtype=torch.float32, device=device).unsqueeze(1)
  div_term = torch.exp(
    torch.arange(0, dims, 2, dtype=torch.float32, device=device)
    * (-math.log(10000.0) / dims)
  )
  positions = torch.zeros(n_positions, dims, device=device)
  positions[:, 0::2] = torch.sin(position * div_term)
  positions[:, 1::2] = torch.cos(position * div_term[: dims // 2])
  if normalize:
    positions = positions / positions.norm(p=2, dim=-1, keepdim=True)
  return positions.to(dtype)


class SinusoidalEmbeddings(nn.Module):
  """Word embeddings with fixed sinusoidal position embeddings.

  There are no learned position or token type embeddings, so sequences
  of any length can be embedded and ``token_type_ids`` are ignored.
  ALBERT-style configurations embed in ``embedding_size`` dimensions,
  others in ``hidden_size`` dimensions.
  """

  def __init__(
    self,
    config: Union[AlbertConfig, BertConfig, SqueezeAlbertConfig],
    normalize: bool = True,
  ) -> None:
    super().__init__()
    embedding_size = getattr(config, "embedding_size", config.hidden_size)
    self.normalize = normalize
    self.word_embeddings = bert_embedding(
      config.vocab_size, embedding_size, config.initializer_range
    )
    self.layer_norm = bert_layer_norm(embedding_size, config.layer_norm_eps)
    self.dropout = nn.Dropout(config.hidden_dropout_prob)

  def forward(
    self,
    input_ids: torch.Tensor,
    token_type_ids: Optional[torch.Tensor] = None,
  ) -> torch.Tensor:
    if input_ids.dim() != 2:
      raise ShapeError("SinusoidalEmbeddings", "(batch_size, seq_len)", tuple(input_ids.shape))
    word_embed = self.word_embeddings(input_ids)
    positions = sinusoidal_positions(
      input_ids.size(1),
      word_embed.size(-1),
      normalize=self.normalize,
      device=word_embed.device,
      dtype=word_embed.dtype,
    )
    embeddings = self.layer_norm(word_embed + positions.unsqueeze(0))
    return self.dropout(embeddings)


EmbeddingVariant = Union[AlbertEmbeddings, BertEmbeddings, RobertaEmbeddings, SinusoidalEmbeddings]
