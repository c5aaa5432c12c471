"""Sentence-transformers embedding helpers for knowledge retrieval."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Sequence

import numpy as np

from .config import CONFIG


@lru_cache(maxsize=1)
def _get_model():
    """Return a cached embedding model instance."""

    from sentence_transformers import SentenceTransformer

    return SentenceTransformer(CONFIG.knowledge.embed_model)


def embed_texts(texts: Sequence[str]) -> List[List[float]]:
    """Embed a collection of texts as dense, normalized vectors."""

    cleaned = [text.strip() for text in texts if text and text.strip()]
    if not cleaned:
        return []
    model = _get_model()
    embeddings = model.encode(cleaned, batch_size=8, normalize_embeddings=True)
    return [vec.tolist() if hasattr(vec, "tolist") else list(vec) for vec in embeddings]


def embed_single(text: str) -> List[float]:
    """Embed a single string and return one vector."""

    vectors = embed_texts([text])
    return vectors[0] if vectors else []


def cosine_similarity(query: Sequence[float], candidates: Sequence[Sequence[float]]) -> np.ndarray:
    """Cosine similarity between one query vector and each candidate row."""

    if not candidates:
        return np.zeros(0)
    matrix = np.asarray(candidates, dtype=float)
    vector = np.asarray(query, dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    norms[norms == 0] = 1.0
    return matrix @ vector / norms
