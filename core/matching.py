"""
Fuzzy matching of model-returned category labels against a user's vocabulary.
Uses exact comparison first, then Levenshtein similarity.
"""
from typing import Optional, Sequence

import Levenshtein

from core.logger import setup_logger
from core.schema import UNASSIGNED

logger = setup_logger(__name__)

DEFAULT_THRESHOLD = 0.75


def normalize_label(text: Optional[str]) -> str:
    """
    Normalize a label for matching: uppercase, trimmed, words joined by underscores.

    Args:
        text: Input label

    Returns:
        Normalized label
    """
    if not text or not isinstance(text, str):
        return ""

    return "_".join(text.upper().replace("-", " ").split())


def calculate_similarity(s1: str, s2: str) -> float:
    """
    Calculate Levenshtein similarity ratio between two labels.

    Args:
        s1: First label
        s2: Second label

    Returns:
        Similarity score (0.0 to 1.0)
    """
    s1_norm = normalize_label(s1)
    s2_norm = normalize_label(s2)

    if not s1_norm or not s2_norm:
        return 0.0

    return Levenshtein.ratio(s1_norm, s2_norm)


def resolve_category(
    label: Optional[str],
    vocabulary: Sequence[str],
    threshold: Optional[float] = None
) -> str:
    """
    Map a model-returned label onto the vocabulary.

    Exact matches are kept; near misses such as GROCERY for GROCERIES are
    snapped to the closest entry scoring at least the threshold; anything
    else becomes UNASSIGNED.

    Args:
        label: Category returned by the model
        vocabulary: Active category names
        threshold: Minimum similarity for a fuzzy match

    Returns:
        A vocabulary entry or UNASSIGNED
    """
    threshold = threshold if threshold is not None else DEFAULT_THRESHOLD
    label_norm = normalize_label(label)

    if not label_norm or label_norm == UNASSIGNED:
        return UNASSIGNED

    if label_norm in vocabulary:
        return label_norm

    best_match = None
    best_score = 0.0
    for name in vocabulary:
        score = calculate_similarity(label_norm, name)
        if score > best_score:
            best_match = name
            best_score = score

    if best_match and best_score >= threshold:
        logger.debug(f"Category '{label}' matched '{best_match}' (score: {best_score:.2f})")
        return best_match

    logger.warning(f"Category '{label}' is not in the vocabulary, using {UNASSIGNED}")
    return UNASSIGNED
