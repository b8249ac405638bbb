"""Convergence detection for loop output histories.

Similarity is the normalized Levenshtein ratio ``1 - distance / max(len)``.
All functions here are pure.
"""

from __future__ import annotations

import re
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_CONVERGENCE_THRESHOLD = 0.95
DEFAULT_OSCILLATION_THRESHOLD = 0.9

_NUMBER_PATTERN = re.compile(r"-?\d+\.?\d*")


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance using two rolling rows."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,         # deletion
                current[j - 1] + 1,      # insertion
                previous[j - 1] + cost,  # substitution
            ))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """Similarity of two strings in ``[0, 1]``.

    Identical strings (two empty strings included) score 1.0; a pair where
    exactly one side is empty scores 0.0.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    distance = levenshtein_distance(a, b)
    return 1.0 - distance / max(len(a), len(b))


class ConvergenceInfo(BaseModel):
    """Convergence verdict for a history."""

    similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    converged: bool = False
    oscillating: bool = False
    change_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def undetermined(cls) -> ConvergenceInfo:
        return cls()


def change_rate(history: Sequence[str]) -> float:
    """How much the last output differs from the one before (1.0 with < 2 entries)."""
    if len(history) < 2:
        return 1.0
    return 1.0 - string_similarity(history[-2], history[-1])


def window_similarity(history: Sequence[str], window: int = 1) -> float:
    """Average similarity of the last output to up to ``window`` earlier outputs."""
    if len(history) < 2:
        return 0.0
    last = history[-1]
    previous = history[-window - 1:-1]
    return sum(string_similarity(last, p) for p in previous) / len(previous)


def is_oscillating(
    history: Sequence[str],
    threshold: float = DEFAULT_CONVERGENCE_THRESHOLD,
    oscillation_threshold: float = DEFAULT_OSCILLATION_THRESHOLD,
) -> bool:
    """Output moved away from n-1 while returning close to n-2."""
    if len(history) < 3:
        return False
    recent = string_similarity(history[-1], history[-2])
    two_back = string_similarity(history[-1], history[-3])
    return recent < threshold and two_back >= oscillation_threshold


def check_convergence(
    history: Sequence[str],
    threshold: float = DEFAULT_CONVERGENCE_THRESHOLD,
    oscillation_threshold: float = DEFAULT_OSCILLATION_THRESHOLD,
    window: int = 1,
) -> ConvergenceInfo:
    """Evaluate a loop history.

    Args:
        history: Representative outputs in iteration order.
        threshold: Similarity at or above which the loop has converged.
        oscillation_threshold: Similarity to the entry two back that marks
            oscillation.
        window: Number of earlier outputs the latest is averaged against.

    Returns:
        ConvergenceInfo; an undetermined verdict when fewer than two
        entries exist.
    """
    if len(history) < 2:
        return ConvergenceInfo.undetermined()

    similarity = string_similarity(history[-2], history[-1])
    score = similarity if window <= 1 else window_similarity(history, window)
    return ConvergenceInfo(
        similarity=similarity,
        converged=score >= threshold,
        oscillating=is_oscillating(history, threshold, oscillation_threshold),
        change_rate=1.0 - similarity,
    )


class ConvergenceDetector:
    """Convergence checks bound to a configured set of thresholds.

    Example:
        >>> detector = ConvergenceDetector(threshold=0.9)
        >>> detector.check(["draft one", "draft one"]).converged
        True
    """

    def __init__(
        self,
        threshold: float = DEFAULT_CONVERGENCE_THRESHOLD,
        oscillation_threshold: float = DEFAULT_OSCILLATION_THRESHOLD,
        window: int = 1,
    ) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        if not 0.0 <= oscillation_threshold <= 1.0:
            raise ValueError("oscillation_threshold must be between 0 and 1")
        if window < 1:
            raise ValueError("window must be >= 1")
        self._threshold = threshold
        self._oscillation_threshold = oscillation_threshold
        self._window = window

    @property
    def threshold(self) -> float:
        return self._threshold

    def check(self, history: Sequence[str], threshold: float | None = None) -> ConvergenceInfo:
        """Check a history, optionally overriding the convergence threshold."""
        return check_convergence(
            history,
            threshold=self._threshold if threshold is None else threshold,
            oscillation_threshold=self._oscillation_threshold,
            window=self._window,
        )


def extract_numeric_value(text: str) -> float | None:
    """Last number in ``text``, or None."""
    matches = _NUMBER_PATTERN.findall(text)
    if not matches:
        return None
    try:
        return float(matches[-1])
    except ValueError:
        return None


def has_numeric_converged(
    values: Sequence[float],
    threshold: float = 0.001,
    window: int = 3,
) -> bool:
    """Whether the last ``window`` values are all within ``threshold`` of the latest."""
    if len(values) < window + 1:
        return False
    recent = values[-window - 1:]
    last = recent[-1]
    return all(abs(v - last) <= threshold for v in recent[:-1])
