"""
Match scorer comparing a live descriptor with the enrolled reference
"""
import numpy as np

from ..models.data_models import MatchResult


def score(descriptor_a: np.ndarray, descriptor_b: np.ndarray, threshold: float = 80.0) -> MatchResult:
    """
    Score two descriptors by Euclidean distance.

    The match rate is (1 - distance) * 100, clamped to [0, 100] and rounded
    to 2 decimals. Descriptors are compared as produced by the backend; no
    renormalisation is applied here.

    Args:
        descriptor_a: First descriptor vector
        descriptor_b: Second descriptor vector of the same length
        threshold: Minimum match rate (percent) for a match

    Returns:
        MatchResult: Match rate, verdict and raw distance

    Raises:
        ValueError: If the descriptors are empty or differ in length
    """
    a = np.asarray(descriptor_a, dtype=np.float64).reshape(-1)
    b = np.asarray(descriptor_b, dtype=np.float64).reshape(-1)

    if a.size == 0 or b.size == 0:
        raise ValueError("Descriptors must not be empty")
    if a.size != b.size:
        raise ValueError(f"Descriptor length mismatch: {a.size} != {b.size}")

    distance = float(np.linalg.norm(a - b))
    match_rate = round(float(np.clip((1.0 - distance) * 100.0, 0.0, 100.0)), 2)

    return MatchResult(
        match_rate=match_rate,
        is_match=match_rate >= threshold,
        distance=distance
    )
