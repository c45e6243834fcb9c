from dataclasses import dataclass
from typing import Sequence

import numpy as np

from smartsafe.services.store import SafeStore


class EmbeddingLengthError(ValueError):
    pass


@dataclass(frozen=True)
class FaceMatch:
    user_id: str
    distance: float


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    if a.shape != b.shape:
        raise EmbeddingLengthError(f"Embedding length mismatch: {a.shape[0]} != {b.shape[0]}")
    return float(np.linalg.norm(a - b))


class FaceMatcher:
    """
    Linear nearest-neighbour scan over the stored templates. The template set
    is re-read on every call so enrollments and deletions apply immediately.
    """

    def __init__(self, store: SafeStore, threshold: float = 0.6):
        self.store = store
        self.threshold = threshold

    async def match(self, embedding: Sequence[float]) -> FaceMatch | None:
        query = np.asarray(embedding, dtype=np.float64)
        best: FaceMatch | None = None
        for template in await self.store.list_face_templates():
            distance = euclidean_distance(query, np.asarray(template.embedding, dtype=np.float64))
            if distance >= self.threshold:
                continue
            # strict comparison keeps the first template on ties
            if best is None or distance < best.distance:
                best = FaceMatch(user_id=template.user_id, distance=distance)
        return best
