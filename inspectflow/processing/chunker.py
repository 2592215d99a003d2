"""
Sentence-greedy text chunking for embedding.

Text is split on runs of sentence terminators (``.``, ``!``, ``?``); sentences
are packed into a buffer until the next one would push it past
``max_chunk_size``, then the buffer is flushed.  A sentence longer than the
limit becomes a chunk of its own.  Chunks shorter than ``min_chunk_length``
are noise and dropped.  Output depends only on the arguments.
"""

from __future__ import annotations

import re

from inspectflow.processing.schemas import Chunk

DEFAULT_MAX_CHUNK_SIZE = 500
DEFAULT_MIN_CHUNK_LENGTH = 20
SENTENCE_JOINER = ". "

_TERMINATORS = re.compile(r"[.!?]+")


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _TERMINATORS.split(text) if s.strip()]


def chunk_text(
    text: str,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    min_chunk_length: int = DEFAULT_MIN_CHUNK_LENGTH,
) -> list[Chunk]:
    pieces: list[str] = []
    buffer = ""

    for sentence in split_sentences(text):
        candidate = f"{buffer}{SENTENCE_JOINER}{sentence}" if buffer else sentence
        if buffer and len(candidate) > max_chunk_size:
            pieces.append(buffer)
            buffer = sentence
        else:
            buffer = candidate

    if buffer:
        pieces.append(buffer)

    kept = [p for p in pieces if len(p) >= min_chunk_length]
    return [Chunk(text=p, index=i) for i, p in enumerate(kept)]
